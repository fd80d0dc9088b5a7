"""
Role Administration Walkthrough
===============================

This script drives the accessmatrix role engine through a typical
administration session against an in-memory store with synthetic staff.

Steps demonstrated:
  1. Load role overrides and catalog sources from YAML
  2. Seed the role store and a synthetic user directory
  3. Build the permission catalog and a role's permission matrix
  4. Toggle an action under a group wildcard
  5. Switch full access on and off
  6. Clone a role, then delete it with user reassignment
  7. Check route access and export the audit trail

Usage:
    python -m examples.role_admin_walkthrough
    # or: python examples/role_admin_walkthrough.py
"""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path

# Ensure the project root is on the path
sys.path.insert(0, str(Path(__file__).parent.parent))

from accessmatrix.catalog import build_catalog
from accessmatrix.config import (
    DEFAULT_REASSIGN_ROLE_ID,
    CatalogSources,
    load_catalog_sources_from_yaml,
    load_role_definitions_from_yaml,
    merge_role_definitions,
)
from accessmatrix.lifecycle import RoleForbiddenError, RoleLifecycleManager
from accessmatrix.matrix import build_permission_matrix
from accessmatrix.models import StaffUser, StaffUserStatus
from accessmatrix.registry import InMemoryUserDirectory, RoleStore
from accessmatrix.resolver import is_granted
from accessmatrix.route_access import RouteAccessTable


def _banner(text: str) -> None:
    print(f"\n{'=' * 60}")
    print(f"  {text}")
    print(f"{'=' * 60}\n")


def _show_grants(manager: RoleLifecycleManager, role_id: str, keys: list[str]) -> None:
    role = manager.get_role(role_id)
    for key in keys:
        print(f"  {key:<28} {'granted' if is_granted(role, key) else '-'}")


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    _banner("accessmatrix: Role Administration Walkthrough")

    # ------------------------------------------------------------------
    # Step 1: Load configuration
    # ------------------------------------------------------------------
    _banner("Step 1: Load Configuration")

    here = Path(__file__).parent
    roles_yaml = here / "role_definitions.yaml"
    catalog_yaml = here / "catalog_sources.yaml"
    overrides = load_role_definitions_from_yaml(roles_yaml) if roles_yaml.exists() else []
    sources = (
        load_catalog_sources_from_yaml(catalog_yaml)
        if catalog_yaml.exists()
        else CatalogSources()
    )
    definitions = merge_role_definitions(overrides)
    print(f"Role definitions: {len(definitions)} ({len(overrides)} from YAML)")

    # ------------------------------------------------------------------
    # Step 2: Seed store and users
    # ------------------------------------------------------------------
    _banner("Step 2: Seed Store and Users")

    store = RoleStore.from_definitions(definitions)
    users = InMemoryUserDirectory([
        StaffUser(name="Synthetic Nurse A", email="nurse.a@example.org", role_id="NURSE",
                  status=StaffUserStatus.ACTIVE),
        StaffUser(name="Synthetic Nurse B", email="nurse.b@example.org", role_id="NURSE"),
        StaffUser(name="Synthetic Porter", email="porter@example.org",
                  role_id="CUSTOM_BED_MANAGER", status=StaffUserStatus.ACTIVE),
    ])
    manager = RoleLifecycleManager(store, users)
    for role in manager.list_roles():
        kind = "system" if role.is_system else "custom"
        print(f"  {role.id:<22} {kind:<7} users={manager.user_count(role.id)}")

    # ------------------------------------------------------------------
    # Step 3: Catalog and matrix
    # ------------------------------------------------------------------
    _banner("Step 3: Permission Catalog and Matrix")

    catalog = build_catalog(
        manager.list_roles(),
        nav_permissions=sources.nav_permissions(),
        module_permissions=sources.module_permissions(),
        extra=sources.extra_permissions,
        groups=sources.groups,
    )
    print(f"Catalog groups: {[group.id for group in catalog]}")

    matrix = build_permission_matrix(manager.get_role("NURSE"), catalog)
    print(f"{matrix}")
    ipd = next(section for section in matrix.groups if section.id == "ipd")
    print(f"  ipd wildcard: {ipd.wildcard}")
    for row in ipd.rows:
        cells = ", ".join(
            f"{cell.action}{'*' if cell.granted else ''}{' (locked)' if cell.disabled else ''}"
            for cell in row.cells
        )
        print(f"  {row.label:<14} {cells}")

    # ------------------------------------------------------------------
    # Step 4: Toggle one action under a group wildcard
    # ------------------------------------------------------------------
    _banner("Step 4: Revoke ipd.beds.write from Ward Nurse")

    keys = ["ipd.beds.read", "ipd.beds.write", "ipd.rounds.read", "ipd.read"]
    print("Before:")
    _show_grants(manager, "NURSE", keys)
    manager.toggle_action("NURSE", "ipd.beds.write", catalog, actor_id="admin_demo")
    print("After:")
    _show_grants(manager, "NURSE", keys)

    # ------------------------------------------------------------------
    # Step 5: Full access switch
    # ------------------------------------------------------------------
    _banner("Step 5: Full Access On and Off")

    before = manager.get_role("NURSE").permissions
    manager.toggle_full_access("NURSE", actor_id="admin_demo")
    print(f"Full access on: {sorted(manager.get_role('NURSE').permissions)}")
    try:
        manager.toggle_group_access("NURSE", "billing", actor_id="admin_demo")
    except RoleForbiddenError as exc:
        print(f"Refused while full access is on: {exc}")
    manager.toggle_full_access("NURSE", actor_id="admin_demo")
    restored = manager.get_role("NURSE").permissions == before
    print(f"Full access off; previous grants restored: {restored}")

    # ------------------------------------------------------------------
    # Step 6: Clone and delete
    # ------------------------------------------------------------------
    _banner("Step 6: Clone a Role, Then Delete One")

    clone_id = manager.add_role("Night Nurse", clone_from_id="NURSE", actor_id="admin_demo")
    print(f"Cloned NURSE -> {clone_id}")

    try:
        manager.delete_role("NURSE", DEFAULT_REASSIGN_ROLE_ID, actor_id="admin_demo")
    except RoleForbiddenError as exc:
        print(f"System role delete refused: {exc}")

    manager.delete_role("CUSTOM_BED_MANAGER", DEFAULT_REASSIGN_ROLE_ID, actor_id="admin_demo")
    print(
        f"Deleted CUSTOM_BED_MANAGER; {DEFAULT_REASSIGN_ROLE_ID} now has "
        f"{manager.user_count(DEFAULT_REASSIGN_ROLE_ID)} user(s)"
    )

    # ------------------------------------------------------------------
    # Step 7: Route access and audit export
    # ------------------------------------------------------------------
    _banner("Step 7: Route Access and Audit Export")

    routes = RouteAccessTable(sources)
    nurse = manager.get_role("NURSE")
    for path in ("/ipd/beds", "/encounters/42/orders", "/clinical/modules/infection-control"):
        info = routes.access_info(path)
        print(f"  {path:<38} {info}  can_access={routes.can_access(path, nurse)}")

    export = manager.audit_log.export_for_review()
    print("\nExport metadata:")
    print(json.dumps(export["export_metadata"], indent=2))
    for entry in export["entries"]:
        print(f"  {entry['event_type']:<22} {entry['role_id']:<22} {entry['metadata']}")

    _banner("Walkthrough Complete")


if __name__ == "__main__":
    main()
