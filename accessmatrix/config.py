"""
Role and Catalog Configuration for accessmatrix.

Holds the built-in (system) role definitions, the known permission groups,
and the loaders that read deployment-specific overrides from YAML.

Two kinds of configuration exist:

* **Role definitions** -- the grants each role starts with.  System roles
  always exist; a deployment may relabel them or tune their grants, and may
  add custom roles of its own.
* **Catalog sources** -- the permission strings that navigation items,
  clinical modules, and an explicit extras list require.  The catalog
  builder unions these with the grants of every role to decide which
  checkboxes the permission matrix shows.

Every structure is validated through pydantic on load so a malformed file
fails loudly instead of silently granting or hiding access.
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, field_validator

from accessmatrix.models import (
    Role,
    SystemRoleId,
    normalize_permissions,
    validate_permission,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Permission groups
# ---------------------------------------------------------------------------

class GroupDefinition(BaseModel):
    """A known permission group and its display label."""

    id: str = Field(..., min_length=1)
    label: str = Field(..., min_length=1)


PERMISSION_GROUPS: tuple[GroupDefinition, ...] = tuple(
    GroupDefinition(id=group_id, label=label)
    for group_id, label in (
        ("dashboard", "Dashboard"),
        ("patients", "Patients"),
        ("appointments", "Appointments"),
        ("clinical", "Clinical"),
        ("clinical_core", "Clinical Core"),
        ("ipd", "Inpatient"),
        ("emergency", "Emergency"),
        ("surgery", "Surgery"),
        ("radiology", "Radiology"),
        ("laboratory", "Laboratory"),
        ("orders", "Orders"),
        ("diagnostics", "Diagnostics"),
        ("pharmacy", "Pharmacy"),
        ("patient_access", "Patient Access"),
        ("scheduling", "Scheduling"),
        ("revenue_cycle", "Revenue Cycle"),
        ("billing", "Billing"),
        ("inventory", "Inventory"),
        ("patient_portal", "Patient Portal"),
        ("interoperability", "Interoperability"),
        ("population_health", "Population Health"),
        ("oncology", "Oncology"),
        ("cardiology", "Cardiology"),
        ("reports", "Reports"),
        ("admin", "Admin"),
        ("staff", "Staff"),
        ("help", "Help"),
    )
)
"""Known groups in display order.  Unknown groups sort after these."""

EXTRA_PERMISSIONS: tuple[str, ...] = (
    "staff.users.write",
    "staff.roles.write",
    "staff.roster.write",
    "admin.audit.write",
    "reports.analytics.write",
)
"""Permissions no navigation item or module requires but admins still grant."""


# ---------------------------------------------------------------------------
# Role definitions
# ---------------------------------------------------------------------------

class RoleDefinition(BaseModel):
    """Configured starting point for a role.

    Converted to a ``Role`` value with ``to_role()`` when seeding a store.
    """

    id: str = Field(..., min_length=1)
    label: str = Field(..., min_length=1)
    description: str = Field(default="")
    permissions: list[str] = Field(default_factory=list)
    is_system: bool = Field(default=False)

    @field_validator("permissions")
    @classmethod
    def validate_permissions(cls, v: list[str]) -> list[str]:
        return sorted(validate_permission(p) for p in normalize_permissions(v))

    def to_role(self) -> Role:
        return Role(
            id=self.id,
            label=self.label,
            description=self.description,
            is_system=self.is_system,
            permissions=frozenset(self.permissions),
        )


_SYSTEM_ROLE_METADATA: dict[SystemRoleId, tuple[str, str]] = {
    SystemRoleId.SUPER_ADMIN: (
        "Super Admin",
        "Full access to every module and configuration setting.",
    ),
    SystemRoleId.HOSPITAL_ADMIN: (
        "Hospital Admin",
        "Oversees hospital-wide operations, staff, and configuration.",
    ),
    SystemRoleId.DOCTOR: (
        "Doctor",
        "Clinical provider managing OPD/IPD encounters, orders, and notes.",
    ),
    SystemRoleId.NURSE: (
        "Nurse",
        "Supports triage, vitals, clinical documentation, and inpatient care.",
    ),
    SystemRoleId.RECEPTION: (
        "Front Desk",
        "Handles registration, appointments, check-in, and front-desk workflows.",
    ),
    SystemRoleId.CARE_COORDINATOR: (
        "Care Coordinator",
        "Manages follow-ups, care plans, and patient engagement.",
    ),
    SystemRoleId.INFECTION_CONTROL: (
        "Infection Control",
        "Tracks infection cases, isolation, and safety audits.",
    ),
    SystemRoleId.LAB_TECH: (
        "Lab Technician",
        "Processes laboratory orders and results.",
    ),
    SystemRoleId.RADIOLOGY_TECH: (
        "Radiology Technician",
        "Manages imaging orders and radiology reporting.",
    ),
    SystemRoleId.PHARMACIST: (
        "Pharmacist",
        "Verifies prescriptions, dispenses medications, and manages stock.",
    ),
    SystemRoleId.BILLING: (
        "Billing",
        "Handles claims, payments, and revenue cycle workflows.",
    ),
    SystemRoleId.INVENTORY: (
        "Inventory",
        "Procurement, stock management, and vendor coordination.",
    ),
    SystemRoleId.PATIENT_PORTAL: (
        "Patient Portal",
        "Patient-facing access for results, appointments, and invoices.",
    ),
    SystemRoleId.AUDITOR: (
        "Auditor",
        "Read-only access for compliance and reporting.",
    ),
}

_SYSTEM_ROLE_PERMISSIONS: dict[SystemRoleId, list[str]] = {
    SystemRoleId.SUPER_ADMIN: ["*"],
    SystemRoleId.HOSPITAL_ADMIN: [
        "dashboard.read", "patients.*", "appointments.*", "ipd.*",
        "clinical.*", "orders.*", "diagnostics.*", "pharmacy.*", "billing.*",
        "inventory.*", "staff.*", "reports.*", "admin.*", "help.read",
    ],
    SystemRoleId.DOCTOR: [
        "dashboard.read", "patients.read", "patients.profile.read",
        "appointments.*", "ipd.read", "ipd.admissions.read",
        "ipd.admissions.write", "ipd.transfer.write", "ipd.beds.read",
        "ipd.rounds.read", "ipd.rounds.write", "ipd.discharge.read",
        "ipd.discharge.write", "clinical.read", "clinical.flow_overview.read",
        "clinical.ambulatory.*", "clinical.clindoc.*",
        "clinical.care_companion.read", "clinical.notes.write",
        "clinical.orders.read", "clinical.orders.write",
        "clinical.prescriptions.write", "orders.*", "diagnostics.read",
        "pharmacy.read", "help.read",
    ],
    SystemRoleId.NURSE: [
        "dashboard.read", "patients.read", "patients.profile.read",
        "appointments.read", "ipd.read", "ipd.admissions.read",
        "ipd.beds.read", "ipd.beds.write", "ipd.rounds.read",
        "ipd.rounds.write", "ipd.discharge.read", "clinical.read",
        "clinical.flow_overview.read", "clinical.ambulatory.read",
        "clinical.clindoc.read", "clinical.kiosk.read",
        "clinical.care_companion.read", "clinical.vitals.write",
        "clinical.notes.write", "clinical.orders.read", "orders.read",
        "diagnostics.read", "help.read",
    ],
    SystemRoleId.RECEPTION: [
        "dashboard.read", "patients.*", "appointments.*", "ipd.read",
        "ipd.admissions.read", "ipd.admissions.write", "clinical.kiosk.*",
        "clinical.flow_overview.read", "billing.read", "help.read",
    ],
    SystemRoleId.CARE_COORDINATOR: [
        "dashboard.read", "patients.read", "patients.profile.read",
        "appointments.read", "ipd.read", "ipd.discharge.read",
        "clinical.care_companion.*", "clinical.flow_overview.read",
        "help.read",
    ],
    SystemRoleId.INFECTION_CONTROL: [
        "dashboard.read", "patients.read", "patients.profile.read",
        "clinical.infection_control.*", "clinical.flow_overview.read",
        "diagnostics.read", "ipd.read", "help.read",
    ],
    SystemRoleId.LAB_TECH: [
        "dashboard.read", "orders.lab.*", "diagnostics.lab.*", "help.read",
    ],
    SystemRoleId.RADIOLOGY_TECH: [
        "dashboard.read", "orders.radiology.*", "diagnostics.radiology.*",
        "help.read",
    ],
    SystemRoleId.PHARMACIST: [
        "dashboard.read", "clinical.prescriptions.write",
        "clinical.prescriptions.read", "pharmacy.*", "inventory.items.read",
        "help.read",
    ],
    SystemRoleId.BILLING: [
        "dashboard.read", "patients.read", "billing.*", "reports.billing.*",
        "help.read",
    ],
    SystemRoleId.INVENTORY: [
        "dashboard.read", "inventory.*", "reports.inventory.*", "help.read",
    ],
    SystemRoleId.PATIENT_PORTAL: ["patient-portal.*"],
    SystemRoleId.AUDITOR: [
        "dashboard.read", "patients.read", "billing.read", "reports.*",
        "admin.audit.read", "help.read",
    ],
}

SYSTEM_ROLE_DEFINITIONS: tuple[RoleDefinition, ...] = tuple(
    RoleDefinition(
        id=role_id.value,
        label=_SYSTEM_ROLE_METADATA[role_id][0],
        description=_SYSTEM_ROLE_METADATA[role_id][1],
        permissions=_SYSTEM_ROLE_PERMISSIONS[role_id],
        is_system=True,
    )
    for role_id in SystemRoleId
)
"""Built-in roles in display order.  Enum order is the display order."""

DEFAULT_REASSIGN_ROLE_ID = SystemRoleId.HOSPITAL_ADMIN.value
"""Suggested target when a custom role is deleted and its users need a home."""


def merge_role_definitions(
    overrides: list[RoleDefinition],
) -> list[RoleDefinition]:
    """Overlay configured roles on the built-in system roles.

    A definition whose id matches a system role replaces that role's label,
    description and permissions but always stays a system role.  Every other
    definition is appended as a custom role.  An empty list yields the
    system roles unchanged.

    Args:
        overrides: Definitions loaded from deployment configuration.

    Returns:
        System roles (in display order) followed by custom roles.
    """
    by_id = {d.id: d for d in overrides}
    merged = []
    for system in SYSTEM_ROLE_DEFINITIONS:
        override = by_id.pop(system.id, None)
        if override is None:
            merged.append(system)
            continue
        merged.append(
            override.model_copy(update={"id": system.id, "is_system": True})
        )
    for custom in by_id.values():
        merged.append(custom.model_copy(update={"is_system": False}))
    return merged


# ---------------------------------------------------------------------------
# Catalog sources
# ---------------------------------------------------------------------------

class NavItem(BaseModel):
    """A navigation entry and the permissions any of which unlock it."""

    route: str = Field(..., min_length=1)
    title: str = Field(default="")
    required_permissions: list[str] = Field(default_factory=list)
    children: list["NavItem"] = Field(default_factory=list)


class ClinicalModule(BaseModel):
    """A clinical module reachable at ``/clinical/modules/<slug>``."""

    slug: str = Field(..., min_length=1)
    name: str = Field(default="")
    required_permissions: list[str] = Field(default_factory=list)


class CatalogSources(BaseModel):
    """External feeds of permission strings used to build the catalog.

    Strings here are advisory: they are not validated against the grammar
    because the catalog tolerates malformed entries.
    """

    nav_items: list[NavItem] = Field(default_factory=list)
    clinical_modules: list[ClinicalModule] = Field(default_factory=list)
    extra_permissions: list[str] = Field(
        default_factory=lambda: list(EXTRA_PERMISSIONS)
    )
    groups: list[GroupDefinition] = Field(
        default_factory=lambda: list(PERMISSION_GROUPS)
    )

    def iter_nav_items(self):
        stack = list(reversed(self.nav_items))
        while stack:
            item = stack.pop()
            yield item
            stack.extend(reversed(item.children))

    def nav_permissions(self) -> list[str]:
        return [p for item in self.iter_nav_items() for p in item.required_permissions]

    def module_permissions(self) -> list[str]:
        return [p for module in self.clinical_modules for p in module.required_permissions]


NavItem.model_rebuild()


# ---------------------------------------------------------------------------
# YAML loaders
# ---------------------------------------------------------------------------

def _read_yaml_mapping(path: Path, key: str) -> object:
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    with open(path, "r") as f:
        raw = yaml.safe_load(f)

    if not isinstance(raw, dict) or key not in raw:
        raise ValueError(f"YAML file must contain a top-level '{key}' key.")
    return raw[key]


def load_role_definitions_from_yaml(path: str | Path) -> list[RoleDefinition]:
    """Load role definitions from a YAML file.

    The file must contain a top-level ``roles`` list::

        roles:
          - id: "DOCTOR"
            label: "Physician"
            permissions: ["clinical.*", "help.read"]
          - id: "CUSTOM_TRIAGE"
            label: "Triage"
            permissions: ["clinical.vitals.write"]

    The result is not merged with the system roles; pass it through
    ``merge_role_definitions()`` for that.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the YAML structure is invalid.
        pydantic.ValidationError: If any definition fails validation.
    """
    path = Path(path)
    entries = _read_yaml_mapping(path, "roles")
    if not isinstance(entries, list):
        raise ValueError("'roles' must be a list of role objects.")

    definitions: list[RoleDefinition] = []
    for idx, entry in enumerate(entries):
        if not isinstance(entry, dict):
            raise ValueError(f"Role entry at index {idx} must be a mapping.")
        definitions.append(RoleDefinition(**entry))

    logger.info("Loaded %d role definitions from %s", len(definitions), path)
    return definitions


def load_catalog_sources_from_yaml(path: str | Path) -> CatalogSources:
    """Load navigation, module and extra permission feeds from YAML.

    Expected structure::

        catalog:
          nav_items:
            - route: "/ipd"
              required_permissions: ["ipd.read"]
          clinical_modules:
            - slug: "welcome-kiosk"
              required_permissions: ["clinical.kiosk.read"]
          extra_permissions: ["staff.roles.write"]

    Omitted keys fall back to the built-in defaults.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the YAML structure is invalid.
        pydantic.ValidationError: If any entry fails validation.
    """
    path = Path(path)
    section = _read_yaml_mapping(path, "catalog")
    if not isinstance(section, dict):
        raise ValueError("'catalog' must be a mapping.")

    sources = CatalogSources(**section)
    logger.info(
        "Loaded catalog sources from %s (%d nav items, %d modules)",
        path,
        len(sources.nav_items),
        len(sources.clinical_modules),
    )
    return sources
