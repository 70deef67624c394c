"""Uplinks - lifecycle handles of cluster nodes.

Uplink hides the backend hosting the node (Docker, SSH, cloud API). The orchestration core uses
only the three operations of the `Uplink` base class:

* `started()` - non-blocking liveness probe, safe to call at any time
* `startup()` - blocking call that brings the node to the running state
* `shutdown()` - asynchronous teardown returning a future that completes once the resource is
  released
"""

import concurrent.futures
import logging
import threading

from castle.orchestration import errors
from castle.orchestration import roles
from castle.utils import configuration
from castle.utils import helpers

LOGGER = logging.getLogger(__name__)


def completed_future(exc: BaseException | None = None) -> "concurrent.futures.Future[None]":
    """Return future that is already done."""
    future: concurrent.futures.Future[None] = concurrent.futures.Future()
    if exc is None:
        future.set_result(None)
    else:
        future.set_exception(exc)
    return future


class Uplink:
    """Base class for uplinks."""

    def started(self) -> bool:
        raise NotImplementedError

    def startup(self) -> None:
        raise NotImplementedError

    def shutdown(self) -> "concurrent.futures.Future[None]":
        raise NotImplementedError

    def close(self) -> None:
        """Release resources held by the uplink itself. The node is left as it is."""


class NullUplink(Uplink):
    """Uplink of a node that needs no provisioning (e.g. an already running bare metal host)."""

    def __init__(self, *, started: bool = False) -> None:
        self._started = started
        self._lock = threading.Lock()

    def started(self) -> bool:
        return self._started

    def startup(self) -> None:
        with self._lock:
            self._started = True

    def shutdown(self) -> "concurrent.futures.Future[None]":
        with self._lock:
            self._started = False
        return completed_future()


class DockerUplink(Uplink):
    """Uplink of a node running in a Docker container managed through the `docker` CLI."""

    def __init__(
        self,
        node_name: str,
        role: roles.DockerNodeRole,
        *,
        docker_bin: str = "",
        inspect_timeout: float = 0,
    ) -> None:
        self.node_name = node_name
        self.role = role
        self.docker_bin = docker_bin or configuration.DOCKER_BIN
        self.inspect_timeout = inspect_timeout or configuration.DOCKER_INSPECT_TIMEOUT
        self._lock = threading.Lock()
        self._executor: concurrent.futures.ThreadPoolExecutor | None = None

    def _docker(self, *args: str, step: str) -> str:
        try:
            out = helpers.run_command([self.docker_bin, *args])
        except (RuntimeError, OSError) as exc:
            msg = f"Failed to {step} container for node '{self.node_name}': {exc}"
            raise errors.UplinkError(msg) from exc
        return out.decode().strip()

    def _container_state(self, container_name: str) -> str:
        """Return container state ("running", "exited", ...) or empty string if there's none."""
        try:
            out = helpers.run_command(
                [self.docker_bin, "inspect", "-f", "{{.State.Status}}", container_name],
                ignore_fail=True,
                timeout=self.inspect_timeout,
            )
        except (RuntimeError, OSError) as exc:
            LOGGER.debug(f"Cannot inspect container '{container_name}': {exc}")
            return ""
        return out.decode().strip()

    def started(self) -> bool:
        container_name = self.role.container_name
        if not container_name:
            return False
        return self._container_state(container_name) == "running"

    def _create_or_start(self, container_name: str, state: str) -> None:
        if state:
            # Left over from an interrupted run, resume it
            self._docker("start", container_name, step="start")
            return
        self._docker(
            "run",
            "-d",
            "--name",
            container_name,
            "--hostname",
            self.node_name,
            *self.role.docker_args,
            self.role.image,
            step="create",
        )

    def startup(self) -> None:
        with self._lock:
            container_name = self.role.container_name or f"castle-{self.node_name}"
            state = self._container_state(container_name)
            if state == "running":
                LOGGER.debug(f"Container '{container_name}' is already running.")
            else:
                try:
                    self._create_or_start(container_name, state)
                except errors.UplinkError:
                    # `docker run` can create the container and then fail to start it
                    if self._container_state(container_name):
                        self.role.container_name = container_name
                    raise
            self.role.container_name = container_name

    def _remove(self, container_name: str) -> None:
        try:
            self._docker("rm", "-f", container_name, step="remove")
        except errors.UplinkError:
            if self._container_state(container_name):
                raise
            LOGGER.debug(f"Container '{container_name}' is already gone.")
        with self._lock:
            if self.role.container_name == container_name:
                self.role.container_name = ""

    def shutdown(self) -> "concurrent.futures.Future[None]":
        with self._lock:
            container_name = self.role.container_name
            if not container_name:
                return completed_future()
            if self._executor is None:
                self._executor = concurrent.futures.ThreadPoolExecutor(
                    max_workers=1, thread_name_prefix=f"uplink-{self.node_name}"
                )
            return self._executor.submit(self._remove, container_name)

    def close(self) -> None:
        """Wait for pending shutdowns and stop the background worker."""
        with self._lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=True)
