import concurrent.futures
import os
import pathlib as pl
import tempfile
import threading
import typing as tp

if not os.environ.get("CASTLE_WORKING_DIR"):
    os.environ["CASTLE_WORKING_DIR"] = tempfile.mkdtemp(prefix="castle-framework-tests-")

import pytest

from castle.orchestration import cluster as cluster_mod
from castle.orchestration import roles
from castle.orchestration import uplink as uplink_mod
from castle.utils import castle_log


class FakeUplink(uplink_mod.Uplink):
    """Uplink that only records what was asked of it."""

    def __init__(
        self,
        *,
        started: bool = False,
        role: roles.DockerNodeRole | None = None,
        startup_error: Exception | None = None,
        shutdown_error: Exception | None = None,
    ) -> None:
        self._started = started
        self.role = role
        self.startup_error = startup_error
        self.shutdown_error = shutdown_error
        self.startup_calls = 0
        self.shutdown_calls = 0
        self.closed = False
        self._lock = threading.Lock()

    def started(self) -> bool:
        return self._started

    def startup(self) -> None:
        with self._lock:
            self.startup_calls += 1
        if self.startup_error is not None:
            raise self.startup_error
        self._started = True
        if self.role is not None:
            self.role.container_name = self.role.container_name or "fake-container"

    def shutdown(self) -> "concurrent.futures.Future[None]":
        with self._lock:
            self.shutdown_calls += 1
        if self.shutdown_error is not None:
            return uplink_mod.completed_future(self.shutdown_error)
        self._started = False
        if self.role is not None:
            self.role.container_name = ""
        return uplink_mod.completed_future()

    def close(self) -> None:
        self.closed = True


class ClusterFactory(tp.Protocol):
    def __call__(
        self, node_names: tp.Iterable[str] = ..., *, docker: bool = ..., started: bool = ...
    ) -> cluster_mod.Cluster: ...


@pytest.fixture
def make_cluster(tmp_path: pl.Path) -> tp.Iterator[ClusterFactory]:
    """Return factory for clusters with fake uplinks and discarded logs."""
    clusters: list[cluster_mod.Cluster] = []

    def _make(
        node_names: tp.Iterable[str] = ("n1",), *, docker: bool = False, started: bool = False
    ) -> cluster_mod.Cluster:
        env = cluster_mod.Environment(tmp_path)
        cluster = cluster_mod.Cluster(env, cluster_log=castle_log.CastleLog.from_devnull("cluster"))
        for name in node_names:
            roles_set = roles.RoleSet()
            docker_role = None
            if docker:
                docker_role = roles.DockerNodeRole(
                    image="busybox", container_name=f"c-{name}" if started else ""
                )
                roles_set.add(docker_role)
            cluster.add_node(
                cluster_mod.Node(
                    name,
                    uplink=FakeUplink(started=started, role=docker_role),
                    log=castle_log.CastleLog.from_devnull(name, enable_debug=True),
                    roles_set=roles_set,
                )
            )
        clusters.append(cluster)
        return cluster

    yield _make

    for cluster in clusters:
        cluster.close()
