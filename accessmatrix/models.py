"""
Core data models for accessmatrix.

Permissions are plain dotted strings at every boundary (``ipd.beds.write``,
``clinical.*``, ``*``).  Internally they are parsed once into a
``ParsedPermission`` so the resolver and mutator can work with explicit
group / subject / action parts instead of re-splitting strings.

Roles are immutable values.  Mutations never edit a role in place -- they
build a new ``Role`` via ``model_copy(update=...)`` and leave persistence to
the caller.
"""

from __future__ import annotations

import enum
import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import lru_cache
from typing import Iterable

from pydantic import BaseModel, ConfigDict, Field, field_validator


UNIVERSAL_WILDCARD = "*"
WILDCARD_SUFFIX = ".*"

_SEGMENT = r"[A-Za-z0-9_-]+"
_PERMISSION_RE = re.compile(rf"^(\*|{_SEGMENT}(\.{_SEGMENT})*(\.\*)?)$")


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class SystemRoleId(str, enum.Enum):
    """Identifiers of the built-in roles the product always expects to exist.

    System roles can be renamed and have their grants tuned, but they can
    never be deleted.
    """

    SUPER_ADMIN = "SUPER_ADMIN"
    HOSPITAL_ADMIN = "HOSPITAL_ADMIN"
    DOCTOR = "DOCTOR"
    NURSE = "NURSE"
    RECEPTION = "RECEPTION"
    CARE_COORDINATOR = "CARE_COORDINATOR"
    INFECTION_CONTROL = "INFECTION_CONTROL"
    LAB_TECH = "LAB_TECH"
    RADIOLOGY_TECH = "RADIOLOGY_TECH"
    PHARMACIST = "PHARMACIST"
    BILLING = "BILLING"
    INVENTORY = "INVENTORY"
    PATIENT_PORTAL = "PATIENT_PORTAL"
    AUDITOR = "AUDITOR"


class StaffUserStatus(str, enum.Enum):
    ACTIVE = "active"
    INVITED = "invited"
    SUSPENDED = "suspended"


# ---------------------------------------------------------------------------
# Permission grammar
# ---------------------------------------------------------------------------

def is_valid_permission(permission: str) -> bool:
    """Return True if ``permission`` matches the dotted-path grammar."""
    return bool(_PERMISSION_RE.match(permission))


def validate_permission(permission: str) -> str:
    """Validate a permission string at a system boundary.

    Raises:
        ValueError: If the string has empty segments, illegal characters,
            or a ``*`` anywhere other than the final segment.
    """
    if not isinstance(permission, str) or not is_valid_permission(permission):
        raise ValueError(f"Invalid permission string: {permission!r}")
    return permission


def normalize_permissions(permissions: Iterable[str]) -> frozenset[str]:
    """Strip whitespace, drop blank entries and collapse duplicates."""
    return frozenset(p.strip() for p in permissions if p and p.strip())


@dataclass(frozen=True)
class ParsedPermission:
    """A permission string split into its group, subject and action parts.

    For ``clinical.orders.write``: group ``clinical``, subjects
    ``("orders",)``, action ``write`` and subject key ``clinical.orders``.
    For ``clinical.read`` the subject key is the group id itself.  For a
    scoped wildcard such as ``clinical.orders.*`` the action is ``*``.
    """

    raw: str
    group: str
    subjects: tuple[str, ...]
    action: str

    @property
    def is_universal(self) -> bool:
        return self.raw == UNIVERSAL_WILDCARD

    @property
    def is_wildcard(self) -> bool:
        return self.action == UNIVERSAL_WILDCARD

    @property
    def subject_key(self) -> str:
        return ".".join((self.group,) + self.subjects)

    @property
    def segments(self) -> tuple[str, ...]:
        parts = (self.group,) + self.subjects
        return parts + (self.action,) if self.action else parts

    def ancestor_prefixes(self) -> tuple[str, ...]:
        """Proper, non-empty prefixes of the path, longest first.

        ``a.b.c`` yields ``("a.b", "a")``.
        """
        segments = self.segments
        return tuple(
            ".".join(segments[:i]) for i in range(len(segments) - 1, 0, -1)
        )


@lru_cache(maxsize=4096)
def parse_permission(permission: str) -> ParsedPermission:
    """Parse a permission string without validating it.

    Single-segment strings become a group with no subject and no action.
    Parsing is memoised; the result is immutable and safe to share.
    """
    parts = permission.split(".")
    if len(parts) == 1:
        return ParsedPermission(raw=permission, group=parts[0], subjects=(), action="")
    return ParsedPermission(
        raw=permission,
        group=parts[0],
        subjects=tuple(parts[1:-1]),
        action=parts[-1],
    )


# ---------------------------------------------------------------------------
# Data models
# ---------------------------------------------------------------------------

class Role(BaseModel):
    """A named bundle of permission grants.

    ``permissions`` is an unordered, deduplicated set.  ``stashed_permissions``
    holds the grants displaced when full access was switched on, so that
    switching it back off restores them.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, description="Stable role identifier.")
    label: str = Field(..., min_length=1, description="Display name.")
    description: str = Field(default="", description="Free-text description.")
    is_system: bool = Field(
        default=False,
        description="Built-in role. System roles can never be deleted.",
    )
    is_active: bool = Field(default=True)
    permissions: frozenset[str] = Field(
        default_factory=frozenset,
        description="Granted permission strings, including wildcards.",
    )
    stashed_permissions: frozenset[str] = Field(
        default_factory=frozenset,
        description="Grants displaced by the universal wildcard.",
    )
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
    )

    @field_validator("permissions", "stashed_permissions", mode="before")
    @classmethod
    def validate_permissions(cls, v: Iterable[str]) -> frozenset[str]:
        if isinstance(v, str):
            raise ValueError("permissions must be a collection of strings, not a string")
        normalized = normalize_permissions(v or ())
        for permission in normalized:
            validate_permission(permission)
        return normalized


class StaffUser(BaseModel):
    """A staff member holding exactly one role at a time."""

    id: str = Field(default_factory=lambda: f"user-{uuid.uuid4().hex[:8]}")
    name: str = Field(..., min_length=1)
    email: str = Field(..., min_length=1)
    role_id: str = Field(..., min_length=1)
    department: str = Field(default="")
    title: str = Field(default="")
    status: StaffUserStatus = Field(default=StaffUserStatus.INVITED)


# ---------------------------------------------------------------------------
# Catalog models
# ---------------------------------------------------------------------------

class PermissionLeaf(BaseModel):
    """A concrete, addressable permission in the catalog."""

    model_config = ConfigDict(frozen=True)

    key: str
    action: str
    action_label: str


class PermissionSubject(BaseModel):
    """A resource within a group and the actions available on it."""

    model_config = ConfigDict(frozen=True)

    key: str
    label: str
    leaves: tuple[PermissionLeaf, ...] = ()

    @property
    def actions(self) -> tuple[str, ...]:
        return tuple(leaf.action for leaf in self.leaves)


class PermissionGroup(BaseModel):
    """Top-level category of functionality in the catalog."""

    model_config = ConfigDict(frozen=True)

    id: str
    label: str
    subjects: tuple[PermissionSubject, ...] = ()

    def leaf_keys(self) -> tuple[str, ...]:
        return tuple(leaf.key for subject in self.subjects for leaf in subject.leaves)
