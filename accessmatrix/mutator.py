"""
Permission Mutator -- toggle group, subject and action access.

Each function takes a ``Role`` and returns a new ``Role`` whose stored
permission set has been rewritten.  The rewrite changes the grant status
of the targeted permission only; everything else the resolver can observe
for the same subject stays as it was.

**Action toggle (expand, toggle, collapse):**

    1. If a wildcard on the subject's ancestor chain (``clinical.orders.*``
       up to ``clinical.*``) currently grants the subject, replace it with
       explicit literals for every action of the subject.
    2. Flip the literal permission.
    3. Drop the group wildcard if it survived, then remove entries made
       redundant by a remaining wildcard.

**Group toggle** is lossy: enabling ``group.*`` discards the
group's fine-grained grants, and disabling it does not bring them back.

**Full access** swaps the whole set for ``{"*"}`` and remembers the
displaced grants so the next toggle restores them.

None of these functions raise.  Under the universal wildcard, fine-grained
toggles are no-ops; clear full access first.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable, Optional

from accessmatrix.models import (
    UNIVERSAL_WILDCARD,
    WILDCARD_SUFFIX,
    Role,
    parse_permission,
)
from accessmatrix.resolver import is_granted


def _with_permissions(
    role: Role,
    permissions: Iterable[str],
    stashed: Optional[frozenset[str]] = None,
) -> Role:
    update = {
        "permissions": frozenset(permissions),
        "updated_at": datetime.now(timezone.utc),
    }
    if stashed is not None:
        update["stashed_permissions"] = stashed
    return role.model_copy(update=update)


def _wildcard_chain(group_id: str, subject_key: str) -> list[str]:
    """Wildcards that can grant ``subject_key``, narrowest first.

    ``clinical.lab.results`` in group ``clinical`` yields
    ``clinical.lab.results.*``, ``clinical.lab.*``, ``clinical.*``.
    """
    chain = [subject_key + WILDCARD_SUFFIX]
    if subject_key == group_id:
        return chain
    for prefix in parse_permission(subject_key + ".x").ancestor_prefixes()[1:]:
        chain.append(prefix + WILDCARD_SUFFIX)
        if prefix == group_id:
            break
    return chain


def collapse_redundant(permissions: Iterable[str]) -> frozenset[str]:
    """Remove entries already granted by a broader wildcard in the same set.

    ``{"clinical.*", "clinical.orders.read"}`` collapses to ``{"clinical.*"}``.
    The resolver's answer is unchanged for every permission.
    """
    permissions = frozenset(permissions)
    if UNIVERSAL_WILDCARD in permissions:
        return frozenset({UNIVERSAL_WILDCARD})
    kept = set()
    for permission in permissions:
        prefixes = parse_permission(permission).ancestor_prefixes()
        if permission.endswith(WILDCARD_SUFFIX):
            # "a.b.*" is covered by "a.*", never by itself.
            prefixes = prefixes[1:]
        if any(prefix + WILDCARD_SUFFIX in permissions for prefix in prefixes):
            continue
        kept.add(permission)
    return frozenset(kept)


def toggle_action(
    role: Role,
    permission_key: str,
    group_id: str,
    subject_key: str,
    subject_actions: Iterable[str],
    *,
    group_leaves: Optional[Iterable[str]] = None,
) -> Role:
    """Flip a single action permission for a role.

    Args:
        role: The role to rewrite.
        permission_key: The leaf permission to flip (``ipd.beds.write``).
        group_id: The leaf's group (``ipd``).
        subject_key: The leaf's subject key (``ipd.beds``).
        subject_actions: Every catalog action of the subject.  Used to turn
            a subject or group wildcard into explicit sibling literals.
        group_leaves: Optional catalog leaves of the whole group.  When given,
            expanding a broader wildcard also re-grants these leaves so other
            subjects under that wildcard keep their access.

    Returns:
        A new ``Role``.  Unchanged if the role holds ``*``.
    """
    if UNIVERSAL_WILDCARD in role.permissions:
        return role

    permissions = set(role.permissions)
    subject_actions = list(subject_actions)
    group_leaves = list(group_leaves or ())

    for wildcard in _wildcard_chain(group_id, subject_key):
        if wildcard not in permissions:
            continue
        permissions.discard(wildcard)
        for action in subject_actions:
            permissions.add(f"{subject_key}.{action}")
        scope = wildcard[: -len(WILDCARD_SUFFIX)] + "."
        permissions.update(leaf for leaf in group_leaves if leaf.startswith(scope))

    if permission_key in permissions:
        permissions.discard(permission_key)
    else:
        permissions.add(permission_key)

    permissions.discard(group_id + WILDCARD_SUFFIX)
    return _with_permissions(role, collapse_redundant(permissions))


def toggle_group_access(role: Role, group_id: str) -> Role:
    """Switch the ``<group_id>.*`` wildcard on or off.

    Enabling removes every entry under ``<group_id>.`` in favour of the
    single wildcard; disabling removes the wildcard only.
    """
    if UNIVERSAL_WILDCARD in role.permissions:
        return role

    wildcard = group_id + WILDCARD_SUFFIX
    if wildcard in role.permissions:
        return _with_permissions(role, role.permissions - {wildcard})

    scope = group_id + "."
    kept = {p for p in role.permissions if not p.startswith(scope)}
    kept.add(wildcard)
    return _with_permissions(role, kept)


def toggle_full_access(role: Role) -> Role:
    """Switch the universal wildcard on or off.

    Turning it on replaces the whole set with ``{"*"}`` and stashes the
    previous grants; turning it off (only when the set is exactly ``{"*"}``)
    restores the stash, or empties the set if nothing was stashed.
    """
    if role.permissions == frozenset({UNIVERSAL_WILDCARD}):
        return _with_permissions(role, role.stashed_permissions, stashed=frozenset())
    stash = role.permissions - {UNIVERSAL_WILDCARD}
    return _with_permissions(role, {UNIVERSAL_WILDCARD}, stashed=frozenset(stash))


def assign_permissions(role: Role, permission_keys: Iterable[str]) -> Role:
    """Grant a batch of selected permissions.

    Keys already granted (directly or through a wildcard) are skipped so the
    stored set does not pick up redundant literals.
    """
    additions = {
        key for key in permission_keys if key and not is_granted(role, key)
    }
    if not additions:
        return role
    return _with_permissions(role, collapse_redundant(role.permissions | additions))


def remove_permission(role: Role, permission_key: str) -> Role:
    """Remove a literally assigned permission.  No-op if it is not stored."""
    if permission_key not in role.permissions:
        return role
    return _with_permissions(role, role.permissions - {permission_key})
