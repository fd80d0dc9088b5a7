"""
Tests for accessmatrix.config -- system roles, overrides and YAML loading.

Covers: built-in role table, role definition validation, merging overrides
onto system roles, YAML loaders for roles and catalog sources, and nested
navigation traversal.
"""

from pathlib import Path

import pytest
import yaml

from accessmatrix.config import (
    DEFAULT_REASSIGN_ROLE_ID,
    EXTRA_PERMISSIONS,
    PERMISSION_GROUPS,
    SYSTEM_ROLE_DEFINITIONS,
    CatalogSources,
    NavItem,
    RoleDefinition,
    load_catalog_sources_from_yaml,
    load_role_definitions_from_yaml,
    merge_role_definitions,
)
from accessmatrix.models import SystemRoleId


def _write_yaml(path: Path, data: object) -> Path:
    with open(path, "w") as f:
        yaml.dump(data, f)
    return path


# ---------------------------------------------------------------------------
# 1. Built-in roles
# ---------------------------------------------------------------------------

class TestSystemRoles:
    def test_every_system_role_is_defined_in_enum_order(self):
        assert [d.id for d in SYSTEM_ROLE_DEFINITIONS] == [r.value for r in SystemRoleId]

    def test_all_system_roles_flagged(self):
        assert all(d.is_system for d in SYSTEM_ROLE_DEFINITIONS)

    def test_super_admin_has_full_access(self):
        super_admin = SYSTEM_ROLE_DEFINITIONS[0]
        assert super_admin.id == "SUPER_ADMIN"
        assert super_admin.permissions == ["*"]

    def test_default_reassign_target_is_a_system_role(self):
        assert DEFAULT_REASSIGN_ROLE_ID in {d.id for d in SYSTEM_ROLE_DEFINITIONS}

    def test_group_ids_are_unique(self):
        ids = [g.id for g in PERMISSION_GROUPS]
        assert len(ids) == len(set(ids))


class TestRoleDefinition:
    def test_permissions_sorted_and_deduplicated(self):
        definition = RoleDefinition(
            id="CUSTOM_X", label="X", permissions=["help.read", "ipd.*", "help.read"]
        )
        assert definition.permissions == ["help.read", "ipd.*"]

    def test_malformed_permission_rejected(self):
        with pytest.raises(Exception):
            RoleDefinition(id="CUSTOM_X", label="X", permissions=["ipd..read"])

    def test_empty_label_rejected(self):
        with pytest.raises(Exception):
            RoleDefinition(id="CUSTOM_X", label="")

    def test_to_role(self):
        role = RoleDefinition(id="CUSTOM_X", label="X", permissions=["ipd.*"]).to_role()
        assert role.id == "CUSTOM_X"
        assert role.permissions == frozenset({"ipd.*"})
        assert role.is_system is False


# ---------------------------------------------------------------------------
# 2. Merging overrides
# ---------------------------------------------------------------------------

class TestMergeRoleDefinitions:
    def test_empty_overrides_yield_system_roles(self):
        assert merge_role_definitions([]) == list(SYSTEM_ROLE_DEFINITIONS)

    def test_override_replaces_system_role_but_stays_system(self):
        merged = merge_role_definitions([
            RoleDefinition(id="NURSE", label="Ward Nurse", permissions=["ipd.*"]),
        ])
        nurse = next(d for d in merged if d.id == "NURSE")
        assert nurse.label == "Ward Nurse"
        assert nurse.permissions == ["ipd.*"]
        assert nurse.is_system is True
        assert len(merged) == len(SYSTEM_ROLE_DEFINITIONS)

    def test_custom_roles_appended_after_system_roles(self):
        merged = merge_role_definitions([
            RoleDefinition(id="CUSTOM_PORTER", label="Porter", is_system=True),
        ])
        assert merged[-1].id == "CUSTOM_PORTER"
        assert merged[-1].is_system is False
        assert len(merged) == len(SYSTEM_ROLE_DEFINITIONS) + 1


# ---------------------------------------------------------------------------
# 3. YAML loading
# ---------------------------------------------------------------------------

class TestLoadRoleDefinitions:
    def test_load_roles(self, tmp_path):
        path = _write_yaml(tmp_path / "roles.yaml", {
            "roles": [
                {"id": "DOCTOR", "label": "Physician", "permissions": ["clinical.*"]},
                {"id": "CUSTOM_TRIAGE", "label": "Triage"},
            ]
        })
        definitions = load_role_definitions_from_yaml(path)
        assert [d.id for d in definitions] == ["DOCTOR", "CUSTOM_TRIAGE"]
        assert definitions[1].permissions == []

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_role_definitions_from_yaml(tmp_path / "missing.yaml")

    def test_missing_top_level_key(self, tmp_path):
        path = _write_yaml(tmp_path / "roles.yaml", {"policies": []})
        with pytest.raises(ValueError, match="top-level 'roles' key"):
            load_role_definitions_from_yaml(path)

    def test_roles_must_be_a_list(self, tmp_path):
        path = _write_yaml(tmp_path / "roles.yaml", {"roles": {"id": "X"}})
        with pytest.raises(ValueError, match="must be a list"):
            load_role_definitions_from_yaml(path)

    def test_entry_must_be_a_mapping(self, tmp_path):
        path = _write_yaml(tmp_path / "roles.yaml", {"roles": ["NURSE"]})
        with pytest.raises(ValueError, match="index 0"):
            load_role_definitions_from_yaml(path)

    def test_invalid_permission_in_file(self, tmp_path):
        path = _write_yaml(tmp_path / "roles.yaml", {
            "roles": [{"id": "X", "label": "X", "permissions": ["clinical.*.read"]}]
        })
        with pytest.raises(Exception):
            load_role_definitions_from_yaml(path)


class TestLoadCatalogSources:
    def test_load_catalog(self, tmp_path):
        path = _write_yaml(tmp_path / "catalog.yaml", {
            "catalog": {
                "nav_items": [
                    {
                        "route": "/ipd",
                        "required_permissions": ["ipd.read"],
                        "children": [
                            {"route": "/ipd/beds", "required_permissions": ["ipd.beds.read"]},
                        ],
                    },
                ],
                "clinical_modules": [
                    {"slug": "welcome-kiosk", "required_permissions": ["clinical.kiosk.read"]},
                ],
            }
        })
        sources = load_catalog_sources_from_yaml(path)
        assert sources.nav_permissions() == ["ipd.read", "ipd.beds.read"]
        assert sources.module_permissions() == ["clinical.kiosk.read"]
        assert sources.extra_permissions == list(EXTRA_PERMISSIONS)

    def test_catalog_must_be_a_mapping(self, tmp_path):
        path = _write_yaml(tmp_path / "catalog.yaml", {"catalog": ["ipd.read"]})
        with pytest.raises(ValueError):
            load_catalog_sources_from_yaml(path)


class TestNavTraversal:
    def test_depth_first_order(self):
        sources = CatalogSources(nav_items=[
            NavItem(route="/a", children=[NavItem(route="/a/1"), NavItem(route="/a/2")]),
            NavItem(route="/b"),
        ])
        assert [i.route for i in sources.iter_nav_items()] == ["/a", "/a/1", "/a/2", "/b"]
