"""Exceptions raised by the orchestration core."""

import typing as tp

if tp.TYPE_CHECKING:
    from castle.orchestration import action


class CastleError(Exception):
    pass


class GraphError(CastleError):
    """The action graph cannot be built. Nothing was executed."""


class DuplicateActionError(GraphError):
    pass


class MissingDependencyError(GraphError):
    pass


class UnknownNodeError(GraphError):
    pass


class CycleError(GraphError):
    def __init__(self, cycle: "list[action.ActionId]") -> None:
        self.cycle = cycle
        cycle_str = " -> ".join(str(a) for a in cycle)
        super().__init__(f"Dependency cycle detected: {cycle_str}")


class UplinkError(CastleError):
    """A single remote operation of an uplink failed."""


class FatalActionError(CastleError):
    """Action failure that must stop dispatching of any further actions."""
