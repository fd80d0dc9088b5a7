"""
Permission Catalog Builder.

Aggregates every permission string the system knows about -- the grants of
every role plus the navigation, clinical-module and extra feeds -- into a
two-level taxonomy used to render and address the permission matrix:

    Group (``clinical``) -> Subject (``clinical.orders``) -> Action (``write``)

The catalog is advisory.  It drives display only and is never consulted
for authorization, so it does not reject anything: wildcards are skipped
(they are not addressable leaves), and malformed strings are shown as a
group of their own.
"""

from __future__ import annotations

import re
from typing import Iterable, Optional, Sequence, Union

from accessmatrix.config import PERMISSION_GROUPS, GroupDefinition, RoleDefinition
from accessmatrix.models import (
    UNIVERSAL_WILDCARD,
    WILDCARD_SUFFIX,
    PermissionGroup,
    PermissionLeaf,
    PermissionSubject,
    Role,
    parse_permission,
)

_SEPARATORS = re.compile(r"[._]")
_WORD_START = re.compile(r"\b\w")


def title_case(value: str) -> str:
    """``flow_overview`` -> ``Flow Overview``; ``lab.results`` -> ``Lab Results``."""
    spaced = _SEPARATORS.sub(" ", value)
    return _WORD_START.sub(lambda m: m.group(0).upper(), spaced)


class _LeafInfo:
    """Display metadata derived from a single permission string."""

    def __init__(self, key: str, group_labels: dict[str, str]) -> None:
        parsed = parse_permission(key)
        segments = key.split(".")
        malformed = len(segments) == 1 or any(not s for s in segments)

        if malformed:
            self.group_id = segments[0] or key
            self.subject_key = self.group_id
            self.action = key[len(segments[0]) + 1:] if len(segments) > 1 else ""
        else:
            self.group_id = parsed.group
            self.subject_key = parsed.subject_key
            self.action = parsed.action

        self.key = key
        self.group_label = group_labels.get(self.group_id) or title_case(self.group_id)
        if self.subject_key == self.group_id:
            self.subject_label = self.group_label
        else:
            self.subject_label = title_case(self.subject_key[len(self.group_id) + 1:])
        self.action_label = title_case(self.action)

    def matches(self, query: str) -> bool:
        return any(
            query in text.lower()
            for text in (self.key, self.group_label, self.subject_label, self.action_label)
        )


def collect_permissions(
    sources: Iterable[Union[Role, RoleDefinition]],
    nav_permissions: Iterable[str] = (),
    module_permissions: Iterable[str] = (),
    extra: Iterable[str] = (),
) -> set[str]:
    """Union every feed into the set of addressable leaf permissions."""
    collected: set[str] = set()
    for source in sources:
        collected.update(source.permissions)
    collected.update(nav_permissions)
    collected.update(module_permissions)
    collected.update(extra)
    return {
        p
        for p in collected
        if p and p != UNIVERSAL_WILDCARD and not p.endswith(WILDCARD_SUFFIX)
    }


def build_catalog(
    sources: Iterable[Union[Role, RoleDefinition]],
    nav_permissions: Iterable[str] = (),
    module_permissions: Iterable[str] = (),
    extra: Iterable[str] = (),
    search_query: str = "",
    groups: Sequence[GroupDefinition] = PERMISSION_GROUPS,
) -> list[PermissionGroup]:
    """Build the Group -> Subject -> Action catalog.

    Args:
        sources: Roles (or role definitions) whose grants seed the catalog.
        nav_permissions: Permissions required by navigation items.
        module_permissions: Permissions required by clinical modules.
        extra: Additional permissions to always show.
        search_query: Case-insensitive substring matched against the
            permission key and its group, subject and action labels.
            Blank means no filtering.
        groups: Known groups, in display order.

    Returns:
        Groups in display order (known groups first, then unknown groups by
        id), each holding its non-empty subjects.  Never raises.
    """
    group_labels = {g.id: g.label for g in groups}
    group_order = {g.id: idx for idx, g in enumerate(groups)}
    query = (search_query or "").strip().lower()

    leaves = [
        _LeafInfo(key, group_labels)
        for key in collect_permissions(sources, nav_permissions, module_permissions, extra)
    ]
    if query:
        leaves = [leaf for leaf in leaves if leaf.matches(query)]

    by_group: dict[str, dict[str, list[_LeafInfo]]] = {}
    for leaf in leaves:
        by_group.setdefault(leaf.group_id, {}).setdefault(leaf.subject_key, []).append(leaf)

    ordered_ids = sorted(
        by_group,
        key=lambda gid: (gid not in group_order, group_order.get(gid, 0), gid),
    )

    catalog: list[PermissionGroup] = []
    for group_id in ordered_ids:
        subjects = []
        for subject_key, subject_leaves in by_group[group_id].items():
            subject_leaves.sort(key=lambda leaf: (leaf.action_label, leaf.key))
            subjects.append(
                PermissionSubject(
                    key=subject_key,
                    label=subject_leaves[0].subject_label,
                    leaves=tuple(
                        PermissionLeaf(
                            key=leaf.key,
                            action=leaf.action,
                            action_label=leaf.action_label,
                        )
                        for leaf in subject_leaves
                    ),
                )
            )
        # The group's own actions (``clinical.read``) lead the list.
        subjects.sort(key=lambda s: (s.key != group_id, s.label, s.key))
        catalog.append(
            PermissionGroup(
                id=group_id,
                label=group_labels.get(group_id) or title_case(group_id),
                subjects=tuple(subjects),
            )
        )
    return catalog


def find_leaf(
    catalog: Iterable[PermissionGroup], permission: str
) -> Optional[tuple[PermissionGroup, PermissionSubject]]:
    """Locate the group and subject holding ``permission`` in a catalog."""
    for group in catalog:
        for subject in group.subjects:
            if any(leaf.key == permission for leaf in subject.leaves):
                return group, subject
    return None
