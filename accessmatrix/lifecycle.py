"""
Role Lifecycle Manager.

Creates, edits and deletes roles, and applies permission mutations to
stored roles.  Grant checks and permission rewrites are total; lifecycle
operations validate their input and refuse operations the product
forbids.

**Rules enforced here, regardless of what the UI disables:**

* A role label can never be blank.
* System roles can be relabelled and have their grants tuned, but never
  deleted.
* Deleting a role requires another existing role to receive its users.
  The users are moved before the role is removed.  If the move fails, the
  role is not removed.
* Action and group toggles are refused while a role holds full access.
  Full access must be switched off first.

Every successful change is written to the store with compare-and-swap and
recorded in the audit trail.  A failed operation leaves the store unchanged.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional

from accessmatrix import mutator
from accessmatrix.audit import RoleAuditEventType, RoleAuditLog, permission_diff
from accessmatrix.catalog import find_leaf
from accessmatrix.models import (
    UNIVERSAL_WILDCARD,
    WILDCARD_SUFFIX,
    PermissionGroup,
    Role,
    normalize_permissions,
    parse_permission,
    validate_permission,
)
from accessmatrix.registry import RoleStore, UserDirectory

logger = logging.getLogger(__name__)

_NON_ALNUM = re.compile(r"[^A-Z0-9]+")


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class RoleError(Exception):
    """Base class for role lifecycle errors."""
    pass


class RoleValidationError(RoleError):
    """Raised for a blank label, a self-reassignment, or an unknown
    clone / reassignment target."""
    pass


class RoleNotFoundError(RoleError):
    """Raised when the role being operated on does not exist."""
    pass


class RoleForbiddenError(RoleError):
    """Raised when deleting a system role, or when fine-grained changes are
    attempted while the role holds full access."""
    pass


class ReassignmentError(RoleError):
    """Raised when the user directory could not move a deleted role's users."""
    pass


class ConcurrentRoleUpdateError(RoleError):
    """Raised when a role kept changing underneath a mutation."""
    pass


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def generate_role_id(label: str, existing_ids: Iterable[str]) -> str:
    """Derive a unique ``CUSTOM_*`` id from a label.

    ``"Night Nurse"`` becomes ``CUSTOM_NIGHT_NURSE``, then
    ``CUSTOM_NIGHT_NURSE_2`` and so on when taken.
    """
    existing = set(existing_ids)
    base = _NON_ALNUM.sub("_", label.strip().upper()).strip("_") or "CUSTOM_ROLE"
    prefix = base if base.startswith("CUSTOM_") else f"CUSTOM_{base}"
    candidate = prefix
    counter = 2
    while candidate in existing:
        candidate = f"{prefix}_{counter}"
        counter += 1
    return candidate


def _validated_permissions(permissions: Iterable[str]) -> frozenset[str]:
    normalized = normalize_permissions(permissions)
    try:
        for permission in normalized:
            validate_permission(permission)
    except ValueError as exc:
        raise RoleValidationError(str(exc)) from exc
    return normalized


def _validated_leaf(permission_key: str) -> str:
    """A single action permission: well formed and not a wildcard."""
    try:
        validate_permission(permission_key)
    except ValueError as exc:
        raise RoleValidationError(str(exc)) from exc
    if permission_key == UNIVERSAL_WILDCARD or permission_key.endswith(WILDCARD_SUFFIX):
        raise RoleValidationError(
            f"'{permission_key}' is a wildcard, not an action permission."
        )
    return permission_key


def _validated_group_id(group_id: str) -> str:
    if not group_id or "." in group_id:
        raise RoleValidationError(f"Invalid permission group id: '{group_id}'")
    try:
        validate_permission(group_id + WILDCARD_SUFFIX)
    except ValueError as exc:
        raise RoleValidationError(str(exc)) from exc
    return group_id


# ---------------------------------------------------------------------------
# Lifecycle manager
# ---------------------------------------------------------------------------

class RoleLifecycleManager:
    """Applies role CRUD and permission mutations to a ``RoleStore``.

    Args:
        store: Where roles live.
        users: The user directory, used to count and reassign users.
        audit_log: Optional audit trail; a private one is created if omitted.
        max_retries: Compare-and-swap attempts before giving up on a role
            that keeps changing concurrently.
    """

    def __init__(
        self,
        store: RoleStore,
        users: UserDirectory,
        audit_log: Optional[RoleAuditLog] = None,
        max_retries: int = 5,
    ) -> None:
        self._store = store
        self._users = users
        self._audit_log = audit_log if audit_log is not None else RoleAuditLog()
        self._max_retries = max_retries

    @property
    def audit_log(self) -> RoleAuditLog:
        return self._audit_log

    # -- reads --

    def get_role(self, role_id: str) -> Role:
        role = self._store.find(role_id)
        if role is None:
            raise RoleNotFoundError(f"Role '{role_id}' does not exist.")
        return role

    def list_roles(self, search: str = "") -> list[Role]:
        """All roles in display order, optionally filtered by label or id."""
        query = search.strip().lower()
        roles = self._store.list_roles()
        if not query:
            return roles
        return [
            role
            for role in roles
            if query in role.label.lower() or query in role.id.lower()
        ]

    def user_count(self, role_id: str) -> int:
        return self._users.count_users_by_role(role_id)

    # -- role CRUD --

    def add_role(
        self,
        label: str,
        description: str = "",
        clone_from_id: Optional[str] = None,
        actor_id: str = "SYSTEM",
    ) -> str:
        """Create a custom role, optionally copying another role's grants.

        Args:
            label: Display name; must not be blank.
            description: Optional description.
            clone_from_id: Role whose permission set is copied.
            actor_id: Who is making the change (for the audit trail).

        Returns:
            The generated role id.

        Raises:
            RoleValidationError: If the label is blank or ``clone_from_id``
                does not name an existing role.
        """
        label = label.strip()
        if not label:
            raise RoleValidationError("Role name is required.")

        permissions: frozenset[str] = frozenset()
        if clone_from_id:
            source = self._store.find(clone_from_id)
            if source is None:
                raise RoleValidationError(
                    f"Cannot clone from unknown role '{clone_from_id}'."
                )
            permissions = frozenset(source.permissions)

        with self._store.transaction():
            role_id = generate_role_id(label, self._store.ids())
            role = Role(
                id=role_id,
                label=label,
                description=description.strip(),
                is_system=False,
                permissions=permissions,
            )
            self._store.insert(role)

        self._audit_log.record(
            RoleAuditEventType.ROLE_CREATED,
            role_id,
            actor_id=actor_id,
            label=label,
            cloned_from=clone_from_id,
            permissions=sorted(permissions),
        )
        logger.info("Created role %s (cloned from %s)", role_id, clone_from_id)
        return role_id

    def update_role(
        self,
        role_id: str,
        *,
        label: Optional[str] = None,
        description: Optional[str] = None,
        permissions: Optional[Iterable[str]] = None,
        is_active: Optional[bool] = None,
        actor_id: str = "SYSTEM",
    ) -> Role:
        """Edit a role's label, description, active flag or permission set.

        System roles accept every change here; only deletion is blocked.
        Replacing the permission set discards any stashed full-access grants.

        Raises:
            RoleNotFoundError: If ``role_id`` does not exist.
            RoleValidationError: If ``label`` is blank or a permission string
                is malformed.
        """
        self.get_role(role_id)

        changes: dict = {}
        if label is not None:
            label = label.strip()
            if not label:
                raise RoleValidationError("Role name is required.")
            changes["label"] = label
        if description is not None:
            changes["description"] = description.strip()
        if is_active is not None:
            changes["is_active"] = is_active
        if permissions is not None:
            changes["permissions"] = _validated_permissions(permissions)
            changes["stashed_permissions"] = frozenset()

        if not changes:
            return self.get_role(role_id)

        def _apply(role: Role) -> Role:
            return role.model_copy(update={**changes, "updated_at": datetime.now(timezone.utc)})

        before, after = self._swap(role_id, _apply)
        details = {k: v for k, v in changes.items() if k in ("label", "description", "is_active")}
        if details:
            self._audit_log.record(
                RoleAuditEventType.ROLE_UPDATED, role_id, actor_id=actor_id, **details
            )
        self._record_permission_change(before, after, actor_id)
        logger.info("Updated role %s: %s", role_id, sorted(changes))
        return after

    def delete_role(
        self,
        role_id: str,
        reassign_to_id: str,
        actor_id: str = "SYSTEM",
    ) -> None:
        """Delete a custom role after moving its users to another role.

        The store lock is held across reassignment and removal, so the pair
        behaves as one operation: a failed reassignment leaves the role in
        place.

        Raises:
            RoleNotFoundError: If ``role_id`` does not exist.
            RoleForbiddenError: If the role is a system role.
            RoleValidationError: If ``reassign_to_id`` is ``role_id`` or does
                not exist.
            ReassignmentError: If the user directory failed to move users.
        """
        with self._store.transaction():
            role = self.get_role(role_id)
            if role.is_system:
                logger.warning("Refused to delete system role %s", role_id)
                raise RoleForbiddenError(f"System role '{role_id}' cannot be deleted.")
            if reassign_to_id == role_id:
                raise RoleValidationError("Users cannot be reassigned to the role being deleted.")
            if reassign_to_id not in self._store:
                raise RoleValidationError(
                    f"Cannot reassign users to unknown role '{reassign_to_id}'."
                )

            moved = self._users.count_users_by_role(role_id)
            try:
                self._users.reassign_users(role_id, reassign_to_id)
            except Exception as exc:
                logger.warning(
                    "Reassigning users from %s to %s failed: %s",
                    role_id,
                    reassign_to_id,
                    exc,
                )
                raise ReassignmentError(
                    f"Could not reassign users of role '{role_id}'; role not deleted."
                ) from exc
            self._store.delete(role_id)

        self._audit_log.record(
            RoleAuditEventType.USERS_REASSIGNED,
            role_id,
            actor_id=actor_id,
            reassigned_to=reassign_to_id,
            user_count=moved,
        )
        self._audit_log.record(
            RoleAuditEventType.ROLE_DELETED,
            role_id,
            actor_id=actor_id,
            label=role.label,
            permissions=sorted(role.permissions),
        )
        logger.info(
            "Deleted role %s; %d users moved to %s", role_id, moved, reassign_to_id
        )

    # -- permission mutations --

    def apply(
        self,
        role_id: str,
        mutation: Callable[[Role], Role],
        actor_id: str = "SYSTEM",
    ) -> Role:
        """Apply a pure ``Role -> Role`` mutation and persist the result.

        Raises:
            RoleNotFoundError: If ``role_id`` does not exist.
            ConcurrentRoleUpdateError: If compare-and-swap kept failing.
        """
        before, after = self._swap(role_id, mutation)
        self._record_permission_change(before, after, actor_id)
        return after

    def toggle_action(
        self,
        role_id: str,
        permission_key: str,
        catalog: Iterable[PermissionGroup] = (),
        actor_id: str = "SYSTEM",
    ) -> Role:
        """Flip one action permission, using the catalog for sibling actions.

        If the permission is not in the catalog, it is treated as the only
        action of its subject.

        Raises:
            RoleValidationError: If ``permission_key`` is malformed or a
                wildcard.
            RoleNotFoundError: If ``role_id`` does not exist.
            RoleForbiddenError: If the role holds full access.
        """
        permission_key = _validated_leaf(permission_key)
        catalog = list(catalog)

        located = find_leaf(catalog, permission_key)
        if located is not None:
            group, subject = located
            group_id, subject_key, actions = group.id, subject.key, subject.actions
            group_leaves = group.leaf_keys()
        else:
            parsed = parse_permission(permission_key)
            group_id, subject_key = parsed.group, parsed.subject_key
            actions = (parsed.action,) if parsed.action else ()
            group_leaves = ()

        def _toggle(role: Role) -> Role:
            self._require_fine_grained(role)
            return mutator.toggle_action(
                role,
                permission_key,
                group_id,
                subject_key,
                actions,
                group_leaves=group_leaves,
            )

        return self.apply(role_id, _toggle, actor_id=actor_id)

    def toggle_group_access(
        self, role_id: str, group_id: str, actor_id: str = "SYSTEM"
    ) -> Role:
        """Switch a group's wildcard on or off.

        Raises:
            RoleValidationError: If ``group_id`` is not a single segment.
            RoleNotFoundError: If ``role_id`` does not exist.
            RoleForbiddenError: If the role holds full access.
        """
        group_id = _validated_group_id(group_id)

        def _toggle(role: Role) -> Role:
            self._require_fine_grained(role)
            return mutator.toggle_group_access(role, group_id)

        return self.apply(role_id, _toggle, actor_id=actor_id)

    def toggle_full_access(self, role_id: str, actor_id: str = "SYSTEM") -> Role:
        before, after = self._swap(role_id, mutator.toggle_full_access)
        enabled = UNIVERSAL_WILDCARD in after.permissions
        self._audit_log.record(
            RoleAuditEventType.FULL_ACCESS_ENABLED
            if enabled
            else RoleAuditEventType.FULL_ACCESS_DISABLED,
            role_id,
            actor_id=actor_id,
            **permission_diff(before.permissions, after.permissions),
        )
        logger.info("Full access %s for role %s", "enabled" if enabled else "disabled", role_id)
        return after

    def assign_permissions(
        self, role_id: str, permission_keys: Iterable[str], actor_id: str = "SYSTEM"
    ) -> Role:
        keys = _validated_permissions(permission_keys)
        return self.apply(
            role_id, lambda role: mutator.assign_permissions(role, keys), actor_id=actor_id
        )

    def remove_permission(
        self, role_id: str, permission_key: str, actor_id: str = "SYSTEM"
    ) -> Role:
        return self.apply(
            role_id,
            lambda role: mutator.remove_permission(role, permission_key),
            actor_id=actor_id,
        )

    # -- internals --

    def _require_fine_grained(self, role: Role) -> None:
        # Runs inside the compare-and-swap loop, against the role being swapped.
        if UNIVERSAL_WILDCARD in role.permissions:
            logger.warning("Refused fine-grained change on full-access role %s", role.id)
            raise RoleForbiddenError(
                f"Role '{role.id}' has full access; switch it off before "
                "changing individual permissions."
            )

    def _swap(
        self, role_id: str, mutation: Callable[[Role], Role]
    ) -> tuple[Role, Role]:
        for _ in range(self._max_retries):
            current = self.get_role(role_id)
            updated = mutation(current)
            if updated is current:
                return current, current
            if self._store.compare_and_swap(current, updated):
                return current, updated
            logger.debug("Compare-and-swap lost on role %s; retrying", role_id)
        raise ConcurrentRoleUpdateError(
            f"Role '{role_id}' changed concurrently {self._max_retries} times."
        )

    def _record_permission_change(
        self, before: Role, after: Role, actor_id: str
    ) -> None:
        if before.permissions == after.permissions:
            return
        self._audit_log.record(
            RoleAuditEventType.PERMISSIONS_CHANGED,
            after.id,
            actor_id=actor_id,
            **permission_diff(before.permissions, after.permissions),
        )
