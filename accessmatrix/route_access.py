"""
Route Access -- which permissions unlock an application route.

Maps a request path to the permissions it requires and checks them against
a role's grants.  Lookup order:

1. explicit route overrides (encounter and visit pages);
2. the navigation item whose route matches exactly;
3. clinical module pages (``/clinical/modules/<slug>``): the module's own
   requirements, or ``clinical.read`` when the module declares none.

A path with no known requirement is open.  A route with several required
permissions needs any one of them.
"""

from __future__ import annotations

import re
from typing import Iterable, Optional

from accessmatrix.config import CatalogSources
from accessmatrix.resolver import Grants, has_any_permission

CLINICAL_MODULE_PREFIX = "/clinical/modules/"
CLINICAL_MODULE_FALLBACK = ("clinical.read",)

ROUTE_PERMISSION_OVERRIDES: tuple[tuple[re.Pattern, tuple[str, ...]], ...] = (
    (re.compile(r"^/appointments/visit$"), ("clinical.ambulatory.write",)),
    (re.compile(r"^/encounters/[^/]+$"), ("clinical.ambulatory.write",)),
    (re.compile(r"^/encounters/[^/]+/orders$"), ("clinical.orders.write",)),
    (re.compile(r"^/encounters/[^/]+/prescriptions$"), ("clinical.prescriptions.write",)),
)


class RouteAccessInfo:
    """Permissions a route requires and where the requirement came from."""

    def __init__(self, required_permissions: Iterable[str], source: str) -> None:
        self.required_permissions = tuple(required_permissions)
        self.source = source

    def __repr__(self) -> str:
        return (
            f"RouteAccessInfo(source='{self.source}', "
            f"required_permissions={list(self.required_permissions)})"
        )


def normalize_pathname(pathname: str) -> str:
    if not pathname or pathname == "/":
        return pathname
    return pathname.rstrip("/") or "/"


class RouteAccessTable:
    """Route lookups built from the navigation and module catalog sources."""

    def __init__(self, sources: CatalogSources) -> None:
        self._nav_routes: dict[str, tuple[str, ...]] = {}
        for item in sources.iter_nav_items():
            route = normalize_pathname(item.route)
            if item.required_permissions and route not in self._nav_routes:
                self._nav_routes[route] = tuple(item.required_permissions)
        self._modules: dict[str, tuple[str, ...]] = {
            module.slug: tuple(module.required_permissions)
            for module in sources.clinical_modules
        }

    def access_info(self, pathname: str) -> Optional[RouteAccessInfo]:
        """Return the requirement for ``pathname``, or None if it is open."""
        if not pathname:
            return None
        path = normalize_pathname(pathname)

        for pattern, required in ROUTE_PERMISSION_OVERRIDES:
            if pattern.match(path):
                return RouteAccessInfo(required, "route-override")

        required = self._nav_routes.get(path)
        if required:
            return RouteAccessInfo(required, "nav")

        if path.startswith(CLINICAL_MODULE_PREFIX):
            slug = path.rsplit("/", 1)[-1]
            required = self._modules.get(slug)
            if required:
                return RouteAccessInfo(required, "clinical-module")
            return RouteAccessInfo(CLINICAL_MODULE_FALLBACK, "fallback")

        return None

    def can_access(self, pathname: str, grants: Grants) -> bool:
        """True if the route is open or any of its requirements is granted."""
        info = self.access_info(pathname)
        if info is None or not info.required_permissions:
            return True
        return has_any_permission(grants, info.required_permissions)
