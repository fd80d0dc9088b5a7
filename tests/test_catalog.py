"""
Tests for accessmatrix.catalog -- Group -> Subject -> Action taxonomy.

Covers: feed aggregation, wildcard exclusion, display ordering, labels,
search filtering, tolerance of malformed strings, and leaf lookup.
"""

from accessmatrix.catalog import build_catalog, collect_permissions, find_leaf, title_case
from accessmatrix.config import RoleDefinition
from accessmatrix.models import Role


def _make_role(*permissions: str) -> Role:
    return Role(id="TEST", label="Test", permissions=frozenset(permissions))


def _sample_catalog(search_query: str = ""):
    return build_catalog(
        [
            _make_role("clinical.*", "clinical.orders.write", "clinical.read", "ipd.beds.read"),
            _make_role("*", "ipd.beds.write", "ipd.beds.create"),
        ],
        nav_permissions=["ipd.read"],
        module_permissions=["clinical.kiosk.read"],
        extra=["staff.roles.write"],
        search_query=search_query,
    )


# ---------------------------------------------------------------------------
# 1. Aggregation
# ---------------------------------------------------------------------------

class TestCollectPermissions:
    def test_unions_all_feeds(self):
        collected = collect_permissions(
            [_make_role("help.read")],
            nav_permissions=["ipd.read"],
            module_permissions=["clinical.kiosk.read"],
            extra=["staff.roles.write"],
        )
        assert collected == {"help.read", "ipd.read", "clinical.kiosk.read", "staff.roles.write"}

    def test_excludes_wildcards_and_blanks(self):
        collected = collect_permissions(
            [_make_role("*", "ipd.*", "ipd.beds.*", "ipd.beds.read")], extra=[""]
        )
        assert collected == {"ipd.beds.read"}

    def test_accepts_role_definitions(self):
        definition = RoleDefinition(id="X", label="X", permissions=["help.read"])
        assert collect_permissions([definition]) == {"help.read"}


# ---------------------------------------------------------------------------
# 2. Structure and ordering
# ---------------------------------------------------------------------------

class TestBuildCatalog:
    def test_groups_follow_configured_order(self):
        assert [g.id for g in _sample_catalog()] == ["clinical", "ipd", "staff"]

    def test_group_labels_come_from_configuration(self):
        ipd = _sample_catalog()[1]
        assert ipd.label == "Inpatient"

    def test_group_own_subject_listed_first(self):
        clinical = _sample_catalog()[0]
        assert [s.key for s in clinical.subjects] == [
            "clinical",
            "clinical.kiosk",
            "clinical.orders",
        ]
        assert clinical.subjects[0].label == "Clinical"
        assert clinical.subjects[2].label == "Orders"

    def test_leaves_sorted_by_action_label(self):
        ipd = _sample_catalog()[1]
        beds = next(s for s in ipd.subjects if s.key == "ipd.beds")
        assert beds.actions == ("create", "read", "write")
        assert [leaf.action_label for leaf in beds.leaves] == ["Create", "Read", "Write"]

    def test_no_wildcard_leaves(self):
        keys = [k for group in _sample_catalog() for k in group.leaf_keys()]
        assert all(not k.endswith("*") for k in keys)

    def test_unknown_groups_sort_after_known_by_id(self):
        catalog = build_catalog([_make_role("zeta.things.read", "alpha.read", "help.read")])
        assert [g.id for g in catalog] == ["help", "alpha", "zeta"]
        assert catalog[2].label == "Zeta"

    def test_nested_subject_label(self):
        catalog = build_catalog([_make_role("diagnostics.lab.results.read")])
        subject = catalog[0].subjects[0]
        assert subject.key == "diagnostics.lab.results"
        assert subject.label == "Lab Results"

    def test_empty_sources(self):
        assert build_catalog([]) == []


# ---------------------------------------------------------------------------
# 3. Search
# ---------------------------------------------------------------------------

class TestSearch:
    def test_filters_by_key_case_insensitive(self):
        catalog = _sample_catalog(search_query="ORDERS")
        keys = [k for g in catalog for k in g.leaf_keys()]
        assert keys == ["clinical.orders.write"]

    def test_filters_by_group_label(self):
        catalog = _sample_catalog(search_query="inpatient")
        assert [g.id for g in catalog] == ["ipd"]

    def test_filters_by_action_label(self):
        catalog = _sample_catalog(search_query="create")
        assert [k for g in catalog for k in g.leaf_keys()] == ["ipd.beds.create"]

    def test_blank_query_does_not_filter(self):
        assert _sample_catalog(search_query="   ") == _sample_catalog()

    def test_no_match_returns_empty(self):
        assert _sample_catalog(search_query="nothing-like-this") == []


# ---------------------------------------------------------------------------
# 4. Malformed input and lookup
# ---------------------------------------------------------------------------

class TestMalformedPermissions:
    def test_malformed_strings_become_their_own_group(self):
        catalog = build_catalog([], extra=["orphan", "broken..thing"])
        by_id = {g.id: g for g in catalog}
        assert set(by_id) == {"orphan", "broken"}
        assert by_id["orphan"].subjects[0].key == "orphan"
        assert by_id["broken"].leaf_keys() == ("broken..thing",)


class TestFindLeaf:
    def test_locates_group_and_subject(self):
        group, subject = find_leaf(_sample_catalog(), "ipd.beds.write")
        assert group.id == "ipd"
        assert subject.key == "ipd.beds"

    def test_unknown_permission(self):
        assert find_leaf(_sample_catalog(), "billing.read") is None


class TestTitleCase:
    def test_separators_become_spaces(self):
        assert title_case("flow_overview") == "Flow Overview"
        assert title_case("lab.results") == "Lab Results"
