"""
Grant Resolver -- wildcard-aware permission checks.

Decides whether a role grants a permission string.  Evaluation order,
short-circuiting on the first match:

1. the role holds the universal wildcard ``*``;
2. the role holds the permission verbatim;
3. the role holds ``<p>.*`` for some proper prefix ``p`` of the
   permission, checked from the longest prefix to the shortest.

There is no deny rule: a permission is refused only when nothing grants
it.  An unknown or malformed permission string simply resolves to False.

Every function here is pure and reads an immutable snapshot, so callers
may resolve concurrently without locking.
"""

from __future__ import annotations

from typing import AbstractSet, Iterable, Union

from accessmatrix.models import (
    UNIVERSAL_WILDCARD,
    WILDCARD_SUFFIX,
    Role,
    parse_permission,
)

Grants = Union[Role, AbstractSet[str], Iterable[str]]


def _grant_set(grants: Grants) -> AbstractSet[str]:
    if isinstance(grants, Role):
        return grants.permissions
    if isinstance(grants, (set, frozenset)):
        return grants
    return frozenset(grants)


def is_granted(role: Grants, permission: str) -> bool:
    """Check whether a role grants a permission.

    Args:
        role: A ``Role`` or any collection of granted permission strings.
        permission: The permission to check (e.g. ``clinical.orders.read``).

    Returns:
        True if the permission is granted directly or through a wildcard.
    """
    grants = _grant_set(role)
    if UNIVERSAL_WILDCARD in grants:
        return True
    if not permission:
        return False
    if permission in grants:
        return True
    for prefix in parse_permission(permission).ancestor_prefixes():
        if prefix + WILDCARD_SUFFIX in grants:
            return True
    return False


def has_full_access(role: Grants) -> bool:
    return UNIVERSAL_WILDCARD in _grant_set(role)


def group_has_wildcard(role: Grants, group_id: str) -> bool:
    """Literal membership check for ``<group_id>.*``."""
    return group_id + WILDCARD_SUFFIX in _grant_set(role)


def subject_has_wildcard(role: Grants, subject_key: str) -> bool:
    """Literal membership check for ``<subject_key>.*``."""
    return subject_key + WILDCARD_SUFFIX in _grant_set(role)


def has_any_permission(role: Grants, required: Iterable[str]) -> bool:
    """True if at least one of ``required`` is granted."""
    grants = _grant_set(role)
    return any(is_granted(grants, permission) for permission in required)


def require_permission(role: Role, permission: str) -> None:
    """Enforce a permission check; raise if denied.

    Raises:
        PermissionError: If the role does not grant ``permission``.
    """
    if not is_granted(role, permission):
        raise PermissionError(
            f"Role '{role.id}' is not permitted to perform '{permission}'."
        )


def roles_for_permissions(
    roles: Iterable[Role], required: Iterable[str]
) -> list[str]:
    """Return the ids of roles granting at least one required permission.

    An empty ``required`` list matches no role.
    """
    required = list(required)
    if not required:
        return []
    return [role.id for role in roles if has_any_permission(role, required)]
