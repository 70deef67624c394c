"""Actions and their identities.

An action is identified by `ActionId` - a pair of action type (e.g. "dockerInit") and scope (a
node name, role name or any other name that makes the action unique). Dependencies are declared
with `TargetId` which may match several actions at once:

* `TargetId("dockerInit")` - every "dockerInit" action, whatever its scope
* `TargetId("dockerInit", "broker*")` - "dockerInit" actions with scope matching the glob
* `TargetId("dockerInit", "broker1")` - exactly one action
"""

import dataclasses
import fnmatch
import typing as tp

if tp.TYPE_CHECKING:
    from castle.orchestration import cluster as cluster_mod

SCOPE_SEP = ":"


def _id_str(action_type: str, scope: str) -> str:
    return f"{action_type}{SCOPE_SEP}{scope}" if scope else action_type


@dataclasses.dataclass(frozen=True, order=True)
class ActionId:
    type: str
    scope: str = ""

    def matches(self, target: "TargetId") -> bool:
        """Check if this action satisfies the dependency `target`."""
        if self.type != target.type:
            return False
        if not target.scope:
            return True
        return fnmatch.fnmatchcase(self.scope, target.scope)

    def __str__(self) -> str:
        return _id_str(self.type, self.scope)


@dataclasses.dataclass(frozen=True, order=True)
class TargetId:
    type: str
    scope: str = ""

    @classmethod
    def parse(cls, target_str: str) -> "TargetId":
        """Parse `type` or `type:scope`."""
        action_type, __, scope = target_str.partition(SCOPE_SEP)
        if not action_type:
            msg = f"Invalid target '{target_str}': missing action type."
            raise ValueError(msg)
        return cls(type=action_type, scope=scope)

    def __str__(self) -> str:
        return _id_str(self.type, self.scope)


class Action:
    """A named, scoped unit of work with declared dependencies.

    Attributes:
        id: Identity of the action.
        targets: Dependencies that must succeed before the action may start.
        node_names: Nodes the action runs on. One execution is scheduled for each node. When
            empty, the action runs exactly once with no node.
        priority: Hint for ordering of actions that are ready at the same time. Lower value
            is dispatched first.
    """

    def __init__(
        self,
        id: ActionId,
        targets: tp.Iterable[TargetId] = (),
        node_names: tp.Iterable[str] = (),
        priority: int = 0,
    ) -> None:
        self.id = id
        # Keep declaration order, drop duplicates
        self.targets: tuple[TargetId, ...] = tuple(dict.fromkeys(targets))
        self.node_names: tuple[str, ...] = tuple(dict.fromkeys(node_names))
        self.priority = priority

    def invoke(
        self, cluster: "cluster_mod.Cluster", node: "cluster_mod.Node | None"
    ) -> None:
        """Do the work. Raise an exception on failure."""
        raise NotImplementedError

    def __repr__(self) -> str:
        targets_str = ", ".join(str(t) for t in self.targets)
        return (
            f"{self.__class__.__name__}(id={self.id}, targets=[{targets_str}], "
            f"node_names={list(self.node_names)}, priority={self.priority})"
        )


class FunctionAction(Action):
    """Action that calls a plain function.

    Handy for small actions that don't need a class of their own.
    """

    def __init__(
        self,
        id: ActionId,
        func: tp.Callable[["cluster_mod.Cluster", "cluster_mod.Node | None"], None],
        targets: tp.Iterable[TargetId] = (),
        node_names: tp.Iterable[str] = (),
        priority: int = 0,
    ) -> None:
        super().__init__(id=id, targets=targets, node_names=node_names, priority=priority)
        self.func = func

    def invoke(
        self, cluster: "cluster_mod.Cluster", node: "cluster_mod.Node | None"
    ) -> None:
        self.func(cluster, node)
