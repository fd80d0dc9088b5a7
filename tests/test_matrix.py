"""
Tests for accessmatrix.matrix -- render-ready permission state for a role.
"""

import pytest

from accessmatrix.catalog import build_catalog
from accessmatrix.matrix import build_permission_matrix
from accessmatrix.models import Role


def _make_role(*permissions: str, role_id: str = "TEST") -> Role:
    return Role(id=role_id, label=role_id.title(), permissions=frozenset(permissions))


def _catalog():
    return build_catalog([
        _make_role(
            "clinical.orders.read",
            "clinical.orders.write",
            "clinical.read",
            "ipd.beds.read",
            "ipd.beds.write",
            "help.read",
        )
    ])


class TestCells:
    def test_group_wildcard_checks_and_locks_group(self):
        matrix = build_permission_matrix(_make_role("clinical.*", "ipd.beds.read"), _catalog())

        orders_write = matrix.cell("clinical.orders.write")
        assert orders_write.granted is True
        assert orders_write.disabled is True

        beds_read = matrix.cell("ipd.beds.read")
        assert beds_read.granted is True
        assert beds_read.disabled is False
        assert matrix.cell("ipd.beds.write").granted is False

    def test_full_access_checks_and_locks_everything(self):
        matrix = build_permission_matrix(_make_role("*"), _catalog())
        assert matrix.full_access is True
        cells = [c for g in matrix.groups for r in g.rows for c in r.cells]
        assert cells
        assert all(c.granted and c.disabled for c in cells)
        assert matrix.available_permissions == []

    def test_unknown_cell(self):
        matrix = build_permission_matrix(_make_role(), _catalog())
        with pytest.raises(KeyError):
            matrix.cell("billing.read")


class TestRowsAndSections:
    def test_subject_wildcard_flag_and_all_granted(self):
        matrix = build_permission_matrix(_make_role("ipd.beds.*"), _catalog())
        ipd = next(g for g in matrix.groups if g.id == "ipd")
        beds = ipd.rows[0]
        assert ipd.wildcard is False
        assert beds.wildcard is True
        assert beds.all_granted is True

    def test_group_order_follows_catalog(self):
        matrix = build_permission_matrix(_make_role(), _catalog())
        assert [g.id for g in matrix.groups] == ["clinical", "ipd", "help"]


class TestPrivilegeLists:
    def test_available_and_assigned(self):
        matrix = build_permission_matrix(_make_role("ipd.*", "help.read"), _catalog())
        assert matrix.assigned_permissions == ["help.read"]
        assert matrix.available_permissions == [
            "clinical.read",
            "clinical.orders.read",
            "clinical.orders.write",
        ]

    def test_to_dict(self):
        data = build_permission_matrix(_make_role("help.read"), _catalog()).to_dict()
        assert data["role_id"] == "TEST"
        assert data["full_access"] is False
        help_group = data["groups"][-1]
        assert help_group["rows"][0]["cells"][0] == {
            "key": "help.read",
            "action": "read",
            "action_label": "Read",
            "granted": True,
            "disabled": False,
        }
