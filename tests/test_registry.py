"""
Tests for accessmatrix.registry -- role store and in-memory user directory.
"""

import threading

import pytest

from accessmatrix.config import SYSTEM_ROLE_DEFINITIONS
from accessmatrix.models import Role, StaffUser
from accessmatrix.registry import InMemoryUserDirectory, RoleStore


def _make_role(role_id: str = "CUSTOM_TRIAGE", *permissions: str) -> Role:
    return Role(id=role_id, label=role_id.title(), permissions=frozenset(permissions))


def _make_user(user_id: str, role_id: str) -> StaffUser:
    return StaffUser(id=user_id, name=user_id, email=f"{user_id}@example.org", role_id=role_id)


class TestRoleStore:
    def test_seeded_from_system_definitions(self):
        store = RoleStore.from_definitions()
        assert len(store) == len(SYSTEM_ROLE_DEFINITIONS)
        assert [r.id for r in store.list_roles()] == [d.id for d in SYSTEM_ROLE_DEFINITIONS]
        assert store.get("SUPER_ADMIN").permissions == frozenset({"*"})

    def test_get_unknown_raises(self):
        with pytest.raises(KeyError):
            RoleStore().get("MISSING")

    def test_find_unknown_returns_none(self):
        assert RoleStore().find("MISSING") is None

    def test_duplicate_insert_rejected(self):
        store = RoleStore([_make_role()])
        with pytest.raises(ValueError):
            store.insert(_make_role())

    def test_compare_and_swap_succeeds_on_current_value(self):
        role = _make_role("CUSTOM_TRIAGE", "help.read")
        store = RoleStore([role])
        updated = role.model_copy(update={"permissions": frozenset({"ipd.*"})})

        assert store.compare_and_swap(role, updated) is True
        assert store.get("CUSTOM_TRIAGE").permissions == frozenset({"ipd.*"})

    def test_compare_and_swap_rejects_stale_value(self):
        role = _make_role("CUSTOM_TRIAGE", "help.read")
        store = RoleStore([role])
        first = role.model_copy(update={"permissions": frozenset({"ipd.*"})})
        second = role.model_copy(update={"permissions": frozenset({"billing.*"})})

        assert store.compare_and_swap(role, first) is True
        assert store.compare_and_swap(role, second) is False
        assert store.get("CUSTOM_TRIAGE").permissions == frozenset({"ipd.*"})

    def test_compare_and_swap_rejects_deleted_role(self):
        role = _make_role()
        store = RoleStore([role])
        store.delete(role.id)
        assert store.compare_and_swap(role, role.model_copy(update={"label": "X"})) is False

    def test_compare_and_swap_cannot_change_id(self):
        role = _make_role()
        store = RoleStore([role])
        with pytest.raises(ValueError):
            store.compare_and_swap(role, role.model_copy(update={"id": "OTHER"}))

    def test_delete_returns_role(self):
        role = _make_role()
        store = RoleStore([role])
        assert store.delete(role.id) is role
        assert role.id not in store

    def test_concurrent_swaps_never_lose_a_write(self):
        store = RoleStore([_make_role("CUSTOM_TRIAGE")])
        keys = [f"reports.r{i}.read" for i in range(20)]

        def add(key):
            while True:
                current = store.get("CUSTOM_TRIAGE")
                updated = current.model_copy(
                    update={"permissions": current.permissions | {key}}
                )
                if store.compare_and_swap(current, updated):
                    return

        threads = [threading.Thread(target=add, args=(k,)) for k in keys]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert store.get("CUSTOM_TRIAGE").permissions == frozenset(keys)


class TestInMemoryUserDirectory:
    def test_counts_by_role(self):
        users = InMemoryUserDirectory([
            _make_user("u1", "NURSE"),
            _make_user("u2", "NURSE"),
            _make_user("u3", "DOCTOR"),
        ])
        assert users.count_users_by_role("NURSE") == 2
        assert users.count_users_by_role("BILLING") == 0
        assert users.role_user_counts() == {"NURSE": 2, "DOCTOR": 1}

    def test_reassign_moves_every_user(self):
        users = InMemoryUserDirectory([
            _make_user("u1", "CUSTOM_TRIAGE"),
            _make_user("u2", "CUSTOM_TRIAGE"),
            _make_user("u3", "DOCTOR"),
        ])
        users.reassign_users("CUSTOM_TRIAGE", "NURSE")

        assert users.count_users_by_role("CUSTOM_TRIAGE") == 0
        assert users.count_users_by_role("NURSE") == 2
        assert users.get_user("u3").role_id == "DOCTOR"

    def test_assign_role(self):
        users = InMemoryUserDirectory([_make_user("u1", "NURSE")])
        users.assign_role("u1", "DOCTOR")
        assert [u.id for u in users.users_for_role("DOCTOR")] == ["u1"]

    def test_duplicate_user_rejected(self):
        users = InMemoryUserDirectory()
        users.add_user(_make_user("u1", "NURSE"))
        with pytest.raises(ValueError):
            users.add_user(_make_user("u1", "DOCTOR"))
        assert len(users) == 1
