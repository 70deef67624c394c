"""Roles - capabilities attached to cluster nodes.

A node carries a set of roles keyed by a stable role identifier (e.g. "docker"). Roles are
serialized to the cluster descriptor, so every role type is registered by its identifier.
"""

import dataclasses
import typing as tp

TRole = tp.TypeVar("TRole", bound="Role")

ROLE_TYPES: dict[str, type["Role"]] = {}


def register_role(role_cls: type[TRole]) -> type[TRole]:
    """Register role type so it can be loaded from the descriptor - class decorator."""
    if not role_cls.ROLE_ID:
        msg = f"Role type '{role_cls.__name__}' has no ROLE_ID."
        raise ValueError(msg)
    ROLE_TYPES[role_cls.ROLE_ID] = role_cls
    return role_cls


class Role:
    ROLE_ID: tp.ClassVar[str] = ""

    @property
    def role_id(self) -> str:
        return self.ROLE_ID

    def to_dict(self) -> dict[str, tp.Any]:
        raise NotImplementedError

    @classmethod
    def from_dict(cls, data: dict[str, tp.Any]) -> "Role":
        raise NotImplementedError


@dataclasses.dataclass
class GenericRole(Role):
    """Role of a type this process doesn't know. Kept so it survives descriptor rewrites."""

    generic_id: str
    data: dict[str, tp.Any] = dataclasses.field(default_factory=dict)

    @property
    def role_id(self) -> str:
        return self.generic_id

    def to_dict(self) -> dict[str, tp.Any]:
        return dict(self.data)


@register_role
@dataclasses.dataclass
class DockerNodeRole(Role):
    """Node hosted in a Docker container."""

    ROLE_ID: tp.ClassVar[str] = "docker"

    image: str
    # Empty until the container was created
    container_name: str = ""
    docker_args: list[str] = dataclasses.field(default_factory=list)

    def to_dict(self) -> dict[str, tp.Any]:
        return dataclasses.asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, tp.Any]) -> "DockerNodeRole":
        return cls(
            image=data["image"],
            container_name=data.get("container_name") or "",
            docker_args=list(data.get("docker_args") or []),
        )


class RoleSet:
    """Roles of a single node, at most one role per role identifier."""

    def __init__(self, roles: tp.Iterable[Role] = ()) -> None:
        self._roles: dict[str, Role] = {}
        for role in roles:
            self.add(role)

    def add(self, role: Role) -> None:
        if role.role_id in self._roles:
            msg = f"Role '{role.role_id}' is already attached."
            raise ValueError(msg)
        self._roles[role.role_id] = role

    def get(self, role_id: str) -> Role | None:
        return self._roles.get(role_id)

    def get_typed(self, role_cls: type[TRole]) -> TRole | None:
        """Return role of the given type, or `None` when the node doesn't have it."""
        role = self._roles.get(role_cls.ROLE_ID)
        if isinstance(role, role_cls):
            return role
        return None

    def __contains__(self, role_id: object) -> bool:
        return role_id in self._roles

    def __iter__(self) -> tp.Iterator[Role]:
        return iter(self._roles.values())

    def __len__(self) -> int:
        return len(self._roles)

    def to_dict(self) -> dict[str, dict[str, tp.Any]]:
        return {role_id: role.to_dict() for role_id, role in self._roles.items()}

    @classmethod
    def from_dict(cls, data: dict[str, dict[str, tp.Any]]) -> "RoleSet":
        roles: list[Role] = []
        for role_id, role_data in data.items():
            role_cls = ROLE_TYPES.get(role_id)
            if role_cls is None:
                roles.append(GenericRole(generic_id=role_id, data=dict(role_data)))
            else:
                roles.append(role_cls.from_dict(role_data))
        return cls(roles)
