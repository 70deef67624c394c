"""Actions for nodes hosted in Docker containers."""

import logging
import threading
import typing as tp

from castle.orchestration import action as action_mod
from castle.orchestration import cluster as cluster_mod
from castle.orchestration import roles
from castle.orchestration import shutdown_hooks
from castle.utils import configuration

LOGGER = logging.getLogger(__name__)

DOCKER_INIT = "dockerInit"
DOCKER_DESTROY = "dockerDestroy"


class DestroyDockerInstancesShutdownHook(shutdown_hooks.ShutdownHook):
    """Make sure Docker containers are not leaked when the run fails.

    On success the hook just persists the final cluster state. If that fails, or if the run
    failed, all containers of the cluster are destroyed.
    """

    NAME: tp.ClassVar[str] = "DestroyDockerInstancesShutdownHook"

    def __init__(self, cluster: cluster_mod.Cluster) -> None:
        super().__init__(self.NAME)
        self.cluster = cluster
        self._terminate_lock = threading.Lock()

    def run(self, return_code: shutdown_hooks.ReturnCode) -> None:
        if return_code != shutdown_hooks.ReturnCode.SUCCESS:
            self.terminate_instances()
            return

        try:
            self.cluster.write_to_disk()
        except Exception as exc:
            self.cluster.cluster_log.error(
                f"*** Failed to write cluster file to {self.cluster.env.cluster_output_path}",
                exc=exc,
            )
            self.terminate_instances()
            raise

    def terminate_instances(self) -> bool:
        """Shut down every node with a Docker container and wait until they are gone.

        Returns:
            bool: True if any container was terminated.
        """
        with self._terminate_lock:
            shutdowns = []
            for node in self.cluster.nodes.values():
                docker_role = node.get_role(roles.DockerNodeRole)
                if docker_role is None or not docker_role.container_name:
                    continue
                shutdowns.append((node, node.uplink.shutdown()))

            first_err: Exception | None = None
            for node, future in shutdowns:
                try:
                    future.result(timeout=configuration.SHUTDOWN_TIMEOUT)
                except Exception as exc:
                    node.log.error(f"*** Failed to terminate node {node.name}", exc=exc)
                    first_err = first_err or exc
                else:
                    node.log.info(f"*** Terminated docker container of node {node.name}.")

            if shutdowns:
                self.cluster.cluster_log.info("*** Terminated docker nodes.")
            if first_err is not None:
                raise first_err
            return bool(shutdowns)


class DockerInitAction(action_mod.Action):
    """Create the Docker container of a node."""

    TYPE: tp.ClassVar[str] = DOCKER_INIT

    def __init__(self, scope: str, node_names: tp.Iterable[str] = ()) -> None:
        super().__init__(
            id=action_mod.ActionId(self.TYPE, scope),
            node_names=node_names or (scope,),
        )

    def invoke(self, cluster: cluster_mod.Cluster, node: cluster_mod.Node | None) -> None:
        if node is None:
            msg = f"Action '{self.id}' needs a node."
            raise ValueError(msg)

        if node.uplink.started():
            node.log.printf("*** Skipping %s, because the node is already running.\n", self.TYPE)
            return

        # Make sure that we don't leak a Docker container if we shut down unexpectedly
        cluster.shutdown_hooks.add_hook_if_missing(DestroyDockerInstancesShutdownHook(cluster))

        node.uplink.startup()
        node.log.info(f"*** Started docker container of node {node.name}.")

        cluster.write_to_disk()


class DockerDestroyAction(action_mod.Action):
    """Destroy the Docker container of a node."""

    TYPE: tp.ClassVar[str] = DOCKER_DESTROY

    def __init__(self, scope: str, node_names: tp.Iterable[str] = ()) -> None:
        super().__init__(
            id=action_mod.ActionId(self.TYPE, scope),
            node_names=node_names or (scope,),
        )

    def invoke(self, cluster: cluster_mod.Cluster, node: cluster_mod.Node | None) -> None:
        if node is None:
            msg = f"Action '{self.id}' needs a node."
            raise ValueError(msg)

        # A stopped or crashed container still has to be removed
        docker_role = node.get_role(roles.DockerNodeRole)
        if docker_role is None or not docker_role.container_name:
            node.log.printf("*** Skipping %s, because the node has no container.\n", self.TYPE)
            return

        node.uplink.shutdown().result(timeout=configuration.SHUTDOWN_TIMEOUT)
        node.log.info(f"*** Destroyed docker container of node {node.name}.")

        cluster.write_to_disk()


def docker_nodes(cluster: cluster_mod.Cluster) -> list[str]:
    """Return names of nodes with the Docker role."""
    return [n.name for n in cluster.nodes.values() if roles.DockerNodeRole.ROLE_ID in n.roles]


def init_catalog(cluster: cluster_mod.Cluster) -> list[action_mod.Action]:
    """Return actions that bring up all Docker nodes of the cluster."""
    return [DockerInitAction(scope=n) for n in docker_nodes(cluster)]


def destroy_catalog(cluster: cluster_mod.Cluster) -> list[action_mod.Action]:
    """Return actions that destroy all Docker nodes of the cluster."""
    return [DockerDestroyAction(scope=n) for n in docker_nodes(cluster)]
