"""Role-based permission policy."""

from collections.abc import Mapping
from enum import Enum


class Role(str, Enum):
    """Actor role enumeration."""

    ADMIN = "ADMIN"
    DOCTOR = "DOCTOR"
    NURSE = "NURSE"


class Action(str, Enum):
    """Appointment action enumeration."""

    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"


APPOINTMENTS = "appointments"

# role -> resource -> allowed actions
ROLE_PERMISSIONS: dict[str, dict[str, frozenset[str]]] = {
    Role.ADMIN.value: {
        "users": frozenset({"create", "read", "update", "delete"}),
        "patients": frozenset({"create", "read", "update", "delete"}),
        APPOINTMENTS: frozenset({"create", "read", "update", "delete"}),
        "bills": frozenset({"create", "read", "update", "delete"}),
        "reports": frozenset({"create", "read", "export"}),
        "settings": frozenset({"read", "update"}),
        "audit": frozenset({"read"}),
        "printables": frozenset({"create", "read", "print"}),
        "receipts": frozenset({"create", "read", "print"}),
    },
    Role.DOCTOR.value: {
        "patients": frozenset({"read", "update"}),
        APPOINTMENTS: frozenset({"create", "read", "update"}),
        "bills": frozenset({"read", "update"}),
        "reports": frozenset({"read"}),
        "printables": frozenset({"read", "print"}),
        "receipts": frozenset({"create", "read", "print"}),
    },
    Role.NURSE.value: {
        "patients": frozenset({"create", "read", "update"}),
        APPOINTMENTS: frozenset({"read", "update"}),
        "bills": frozenset({"read"}),
        "printables": frozenset({"read", "print"}),
        "receipts": frozenset({"read", "print"}),
    },
}


def _key(value: str | Enum) -> str:
    return value.value if isinstance(value, Enum) else value


class PermissionPolicy:
    """Lookup of (role, resource, action) grants over a static table."""

    def __init__(self, table: Mapping[str, Mapping[str, frozenset[str]]] = ROLE_PERMISSIONS):
        """Initialize policy with a role -> resource -> actions table."""
        self._table = {
            role: {resource: frozenset(actions) for resource, actions in resources.items()}
            for role, resources in table.items()
        }

    @classmethod
    def with_overrides(
        cls,
        overrides: Mapping[str, list[str]],
        resource: str = APPOINTMENTS,
    ) -> "PermissionPolicy":
        """
        Build a policy from the defaults with some roles' grants replaced.

        Args:
            overrides: role -> full list of allowed actions on ``resource``
            resource: Resource the overrides apply to

        Returns:
            New policy
        """
        table = {role: dict(resources) for role, resources in ROLE_PERMISSIONS.items()}
        for role, actions in overrides.items():
            table.setdefault(role.upper(), {})[resource] = frozenset(a.lower() for a in actions)
        return cls(table)

    def authorize(
        self,
        role: str | Role | None,
        action: str | Action,
        resource: str = APPOINTMENTS,
    ) -> bool:
        """Return True if ``role`` may perform ``action`` on ``resource``."""
        if role is None:
            return False
        resources = self._table.get(_key(role))
        if resources is None:
            return False
        return _key(action) in resources.get(resource, frozenset())

    def allowed_actions(self, role: str | Role, resource: str = APPOINTMENTS) -> frozenset[str]:
        """Return every action ``role`` may perform on ``resource``."""
        return self._table.get(_key(role), {}).get(resource, frozenset())


default_policy = PermissionPolicy()


def authorize(
    role: str | Role | None,
    action: str | Action,
    resource: str = APPOINTMENTS,
) -> bool:
    """Check a grant against the default policy. Unknown roles are denied."""
    return default_policy.authorize(role, action, resource)
