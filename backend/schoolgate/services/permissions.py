"""Permission catalog - static role to permission mapping.

Permissions are ``resource.action`` strings. The catalog is immutable once
built; a different catalog is a deployment change, injected through
SecurityPolicy.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType


class Role(str, Enum):
    """Closed set of identity roles."""

    SUPERADMIN = "superadmin"
    ADMIN = "admin"
    TEACHER = "teacher"
    STUDENT = "student"
    PARENT = "parent"


# Roles an admin-tier caller must hold to create an identity with the given role
ELEVATED_ROLES = frozenset({Role.ADMIN.value, Role.SUPERADMIN.value})

_CRUD = ("create", "read", "update", "delete")


def _crud(resource: str, *extra: str) -> tuple[str, ...]:
    return tuple(f"{resource}.{action}" for action in (*_CRUD, *extra))


_ADMIN_PERMISSIONS: tuple[str, ...] = (
    *_crud("users"),
    *_crud("students"),
    *_crud("teachers"),
    *_crud("classrooms", "assign_students", "assign_subjects"),
    *_crud("subjects"),
    *_crud("terms", "activate"),
    *_crud("attendance"),
    "reports.read",
    "reports.export",
    "audit.read",
    *_crud("timetables"),
)

_READ_ONLY_PERMISSIONS: tuple[str, ...] = (
    "users.read",
    "students.read",
    "classrooms.read",
    "terms.read",
    "attendance.read",
    "reports.read",
)

DEFAULT_ROLE_PERMISSIONS: dict[str, tuple[str, ...]] = {
    Role.SUPERADMIN.value: (
        *_ADMIN_PERMISSIONS,
        "users.manage_admins",
        "users.manage_superadmins",
        "system.configure",
    ),
    Role.ADMIN.value: _ADMIN_PERMISSIONS,
    Role.TEACHER.value: (
        "users.read",
        "students.read",
        "teachers.read",
        "classrooms.read",
        "terms.read",
        "attendance.create",
        "attendance.read",
        "attendance.update",
        "timetables.create",
        "timetables.read",
        "timetables.update",
        "reports.read",
    ),
    Role.STUDENT.value: _READ_ONLY_PERMISSIONS,
    Role.PARENT.value: _READ_ONLY_PERMISSIONS,
}


@dataclass(frozen=True)
class PermissionCatalog:
    """Role -> ordered permission tuple. Unknown roles have no permissions."""

    roles: Mapping[str, tuple[str, ...]] = field(
        default_factory=lambda: MappingProxyType(dict(DEFAULT_ROLE_PERMISSIONS))
    )

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Iterable[str]]) -> "PermissionCatalog":
        # dict.fromkeys keeps first-seen order while dropping duplicates
        frozen = {role: tuple(dict.fromkeys(perms)) for role, perms in mapping.items()}
        return cls(roles=MappingProxyType(frozen))

    def permissions_for(self, role: str | None) -> tuple[str, ...]:
        if role is None:
            return ()
        return self.roles.get(role, ())

    def has_permission(self, role: str | None, permission: str) -> bool:
        return permission in self.permissions_for(role)

    def has_any(self, role: str | None, permissions: Iterable[str]) -> bool:
        granted = self.permissions_for(role)
        return any(p in granted for p in permissions)

    def has_all(self, role: str | None, permissions: Iterable[str]) -> bool:
        granted = self.permissions_for(role)
        return all(p in granted for p in permissions)

    def missing(self, role: str | None, permissions: Iterable[str]) -> list[str]:
        """Required permissions the role lacks, in the order requested."""
        granted = self.permissions_for(role)
        return [p for p in permissions if p not in granted]


DEFAULT_CATALOG = PermissionCatalog()
