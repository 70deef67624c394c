"""Cluster aggregate - nodes, environment, shutdown hooks and logs of a single run."""

import logging
import pathlib as pl
import threading
import types
import typing as tp

import castle.utils.types as ttypes
from castle.orchestration import roles
from castle.orchestration import shutdown_hooks
from castle.orchestration import uplink as uplink_mod
from castle.utils import castle_log
from castle.utils import configuration
from castle.utils import helpers
from castle.utils import locking

LOGGER = logging.getLogger(__name__)

UplinkFactory = tp.Callable[[str, roles.RoleSet], uplink_mod.Uplink]


class Environment:
    """Paths derived from the working directory."""

    def __init__(self, working_directory: ttypes.FileType | None = None) -> None:
        self.working_directory = pl.Path(working_directory or "").expanduser().absolute()

    @property
    def cluster_output_path(self) -> pl.Path:
        return self.working_directory / configuration.CLUSTER_FILE_NAME

    def log_path(self, node_name: str) -> pl.Path:
        return self.working_directory / f"{node_name}{configuration.NODE_LOG_SUFFIX}"

    def create_castle_log(self, node_name: str) -> castle_log.CastleLog:
        return castle_log.CastleLog.from_file(self.working_directory, node_name, enable_debug=True)


class Node:
    """Single cluster member."""

    def __init__(
        self,
        name: str,
        *,
        uplink: uplink_mod.Uplink,
        log: castle_log.CastleLog,
        roles_set: roles.RoleSet | None = None,
    ) -> None:
        self.name = name
        self.uplink = uplink
        self.log = log
        self.roles = roles_set if roles_set is not None else roles.RoleSet()

    @tp.overload
    def get_role(self, role: type[roles.TRole]) -> roles.TRole | None: ...

    @tp.overload
    def get_role(self, role: str) -> roles.Role | None: ...

    def get_role(self, role: type[roles.TRole] | str) -> roles.Role | None:
        """Return role by its type or role identifier, or `None` when the node doesn't have it."""
        if isinstance(role, str):
            return self.roles.get(role)
        return self.roles.get_typed(role)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.name!r})"


def default_uplink_factory(node_name: str, roles_set: roles.RoleSet) -> uplink_mod.Uplink:
    """Return uplink matching the roles of the node."""
    docker_role = roles_set.get_typed(roles.DockerNodeRole)
    if docker_role is not None:
        return uplink_mod.DockerUplink(node_name=node_name, role=docker_role)
    return uplink_mod.NullUplink(started=True)


class Cluster:
    """Nodes of the cluster together with everything the actions share."""

    def __init__(
        self,
        env: Environment,
        *,
        cluster_log: castle_log.CastleLog | None = None,
        hooks: shutdown_hooks.ShutdownHookStack | None = None,
    ) -> None:
        self.env = env
        self.cluster_log = cluster_log or castle_log.CastleLog.from_stdout(
            "cluster", enable_debug=configuration.DEBUG
        )
        self.shutdown_hooks = hooks or shutdown_hooks.ShutdownHookStack()
        self._nodes: dict[str, Node] = {}
        self._nodes_lock = threading.Lock()

    @classmethod
    def from_descriptor(
        cls,
        env: Environment,
        *,
        uplink_factory: UplinkFactory = default_uplink_factory,
        cluster_log: castle_log.CastleLog | None = None,
    ) -> "Cluster":
        """Load cluster from the descriptor in the working directory."""
        content = helpers.read_json(env.cluster_output_path)
        cluster = cls(env, cluster_log=cluster_log)
        try:
            for node_name, node_rec in (content.get("nodes") or {}).items():
                roles_set = roles.RoleSet.from_dict(node_rec.get("roles") or {})
                cluster.add_node(
                    Node(
                        node_name,
                        uplink=uplink_factory(node_name, roles_set),
                        log=env.create_castle_log(node_name),
                        roles_set=roles_set,
                    )
                )
        except Exception:
            cluster.close()
            raise
        return cluster

    @property
    def nodes(self) -> types.MappingProxyType[str, Node]:
        """Read-only snapshot of the node map, in order in which nodes were added."""
        with self._nodes_lock:
            return types.MappingProxyType(dict(self._nodes))

    def node(self, name: str) -> Node:
        with self._nodes_lock:
            try:
                return self._nodes[name]
            except KeyError:
                msg = f"Unknown node '{name}'."
                raise KeyError(msg) from None

    def add_node(self, node: Node) -> None:
        with self._nodes_lock:
            if node.name in self._nodes:
                msg = f"Node '{node.name}' already exists."
                raise ValueError(msg)
            self._nodes[node.name] = node

    def remove_node(self, name: str) -> Node:
        with self._nodes_lock:
            node = self._nodes.pop(name)
        node.log.close()
        return node

    def to_dict(self) -> dict[str, tp.Any]:
        return {
            "nodes": {name: {"roles": n.roles.to_dict()} for name, n in self.nodes.items()}
        }

    def write_to_disk(self) -> pl.Path:
        """Overwrite the cluster descriptor with the current state of the nodes."""
        out_path = self.env.cluster_output_path
        out_path.parent.mkdir(parents=True, exist_ok=True)
        content = self.to_dict()
        with locking.descriptor_lock(out_path):
            helpers.write_json(out_file=out_path, content=content)
        LOGGER.debug(f"Wrote cluster descriptor '{out_path}'.")
        return out_path

    def close(self) -> None:
        """Close uplinks and logs of all nodes and the cluster log."""
        for node in self.nodes.values():
            node.uplink.close()
            node.log.close()
        self.cluster_log.close()

    def __enter__(self) -> "Cluster":
        return self

    def __exit__(self, *args: object) -> None:
        self.close()
