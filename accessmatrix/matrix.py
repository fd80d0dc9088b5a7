"""
Permission Matrix -- the data a rendering layer needs for one role.

Combines the catalog with the resolver's answers for a single role into a
structure of groups, subject rows and action cells.  Each cell carries both
its grant status and whether it can be toggled individually:

* under full access (``*``) every cell is checked and disabled;
* under a group wildcard every cell in that group is checked and disabled,
  because an action cannot be revoked on its own while the broader wildcard
  is active -- the group checkbox has to be cleared first.

Also lists catalog leaves that are not granted (``available``) and those
stored literally on the role (``assigned``), for the assign/remove
privilege panels.
"""

from __future__ import annotations

from typing import Any, Iterable

from accessmatrix.models import PermissionGroup, Role
from accessmatrix.resolver import (
    group_has_wildcard,
    has_full_access,
    is_granted,
    subject_has_wildcard,
)


class ActionCell:
    def __init__(
        self, key: str, action: str, action_label: str, granted: bool, disabled: bool
    ) -> None:
        self.key = key
        self.action = action
        self.action_label = action_label
        self.granted = granted
        self.disabled = disabled

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "action": self.action,
            "action_label": self.action_label,
            "granted": self.granted,
            "disabled": self.disabled,
        }


class SubjectRow:
    def __init__(
        self, key: str, label: str, wildcard: bool, cells: list[ActionCell]
    ) -> None:
        self.key = key
        self.label = label
        self.wildcard = wildcard
        self.cells = cells

    @property
    def all_granted(self) -> bool:
        return bool(self.cells) and all(cell.granted for cell in self.cells)

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "label": self.label,
            "wildcard": self.wildcard,
            "all_granted": self.all_granted,
            "cells": [cell.to_dict() for cell in self.cells],
        }


class GroupSection:
    def __init__(
        self, id: str, label: str, wildcard: bool, rows: list[SubjectRow]
    ) -> None:
        self.id = id
        self.label = label
        self.wildcard = wildcard
        self.rows = rows

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "label": self.label,
            "wildcard": self.wildcard,
            "rows": [row.to_dict() for row in self.rows],
        }


class PermissionMatrix:
    """Render-ready permission state for one role."""

    def __init__(
        self,
        role_id: str,
        full_access: bool,
        groups: list[GroupSection],
        available_permissions: list[str],
        assigned_permissions: list[str],
    ) -> None:
        self.role_id = role_id
        self.full_access = full_access
        self.groups = groups
        self.available_permissions = available_permissions
        self.assigned_permissions = assigned_permissions

    def cell(self, key: str) -> ActionCell:
        """Look up a cell by permission key.

        Raises:
            KeyError: If the key is not in the matrix.
        """
        for group in self.groups:
            for row in group.rows:
                for cell in row.cells:
                    if cell.key == key:
                        return cell
        raise KeyError(key)

    def to_dict(self) -> dict[str, Any]:
        return {
            "role_id": self.role_id,
            "full_access": self.full_access,
            "groups": [group.to_dict() for group in self.groups],
            "available_permissions": self.available_permissions,
            "assigned_permissions": self.assigned_permissions,
        }

    def __repr__(self) -> str:
        return (
            f"PermissionMatrix(role_id={self.role_id}, "
            f"full_access={self.full_access}, groups={len(self.groups)})"
        )


def build_permission_matrix(
    role: Role, catalog: Iterable[PermissionGroup]
) -> PermissionMatrix:
    """Resolve every catalog leaf for ``role``.

    Args:
        role: The role being displayed.
        catalog: Output of ``build_catalog()``.

    Returns:
        A ``PermissionMatrix`` mirroring the catalog's order.
    """
    full_access = has_full_access(role)
    sections: list[GroupSection] = []
    available: list[str] = []
    assigned: list[str] = []

    for group in catalog:
        group_wildcard = group_has_wildcard(role, group.id)
        locked = full_access or group_wildcard
        rows = []
        for subject in group.subjects:
            cells = []
            for leaf in subject.leaves:
                granted = is_granted(role, leaf.key)
                cells.append(ActionCell(
                    key=leaf.key,
                    action=leaf.action,
                    action_label=leaf.action_label,
                    granted=granted,
                    disabled=locked,
                ))
                if not granted:
                    available.append(leaf.key)
                if leaf.key in role.permissions:
                    assigned.append(leaf.key)
            rows.append(SubjectRow(
                key=subject.key,
                label=subject.label,
                wildcard=subject_has_wildcard(role, subject.key),
                cells=cells,
            ))
        sections.append(GroupSection(
            id=group.id, label=group.label, wildcard=group_wildcard, rows=rows
        ))

    return PermissionMatrix(
        role_id=role.id,
        full_access=full_access,
        groups=sections,
        available_permissions=available,
        assigned_permissions=assigned,
    )
