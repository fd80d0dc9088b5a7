"""
In-memory role store and user directory.

The engine itself never persists anything: mutators return new ``Role``
values and the caller writes them back.  This module provides the reference
collaborators that the lifecycle manager writes through:

* ``RoleStore`` -- a keyed collection of roles.  Writes are serialised by a
  re-entrant lock, and ``compare_and_swap()`` rejects a write whose
  expected value is stale, so two concurrent toggles on the same role
  cannot silently lose one change.  Reads return the stored immutable
  value and take no lock.
* ``UserDirectory`` -- the protocol for the external user store, and
  ``InMemoryUserDirectory`` implementing it.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Iterable, Iterator, Optional, Protocol

from accessmatrix.config import SYSTEM_ROLE_DEFINITIONS, RoleDefinition
from accessmatrix.models import Role, StaffUser

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Role store
# ---------------------------------------------------------------------------

class RoleStore:
    """Thread-safe keyed collection of ``Role`` values.

    Insertion order is preserved and used as display order.
    """

    def __init__(self, roles: Iterable[Role] = ()) -> None:
        self._roles: dict[str, Role] = {}
        self._lock = threading.RLock()
        for role in roles:
            self.insert(role)

    @classmethod
    def from_definitions(
        cls, definitions: Iterable[RoleDefinition] = SYSTEM_ROLE_DEFINITIONS
    ) -> "RoleStore":
        return cls(definition.to_role() for definition in definitions)

    @contextmanager
    def transaction(self) -> Iterator["RoleStore"]:
        """Hold the write lock across several store operations."""
        with self._lock:
            yield self

    def get(self, role_id: str) -> Role:
        """Return the stored role.

        Raises:
            KeyError: If no role has ``role_id``.
        """
        try:
            return self._roles[role_id]
        except KeyError:
            raise KeyError(f"No role registered with id '{role_id}'") from None

    def find(self, role_id: str) -> Optional[Role]:
        return self._roles.get(role_id)

    def insert(self, role: Role) -> None:
        """Add a new role.

        Raises:
            ValueError: If a role with the same id already exists.
        """
        with self._lock:
            if role.id in self._roles:
                raise ValueError(f"Role '{role.id}' already exists.")
            self._roles[role.id] = role

    def compare_and_swap(self, expected: Role, updated: Role) -> bool:
        """Replace ``expected`` with ``updated`` if nobody changed it meanwhile.

        Returns:
            True if the swap happened, False if the stored value differs
            from ``expected`` (or the role no longer exists).
        """
        if expected.id != updated.id:
            raise ValueError("compare_and_swap cannot change a role's id.")
        with self._lock:
            current = self._roles.get(expected.id)
            if current is None or current != expected:
                return False
            self._roles[updated.id] = updated
            return True

    def delete(self, role_id: str) -> Role:
        """Remove and return a role.

        Raises:
            KeyError: If no role has ``role_id``.
        """
        with self._lock:
            role = self.get(role_id)
            del self._roles[role_id]
            return role

    def list_roles(self) -> list[Role]:
        return list(self._roles.values())

    def ids(self) -> set[str]:
        return set(self._roles)

    def __len__(self) -> int:
        return len(self._roles)

    def __contains__(self, role_id: object) -> bool:
        return role_id in self._roles


# ---------------------------------------------------------------------------
# User directory
# ---------------------------------------------------------------------------

class UserDirectory(Protocol):
    """The slice of the external user store the role engine depends on."""

    def count_users_by_role(self, role_id: str) -> int:
        ...

    def reassign_users(self, from_role_id: str, to_role_id: str) -> None:
        """Move every user holding ``from_role_id`` to ``to_role_id``.

        Implementations raise on failure and must leave users untouched
        when they do.
        """
        ...


class InMemoryUserDirectory:
    """Reference ``UserDirectory`` keeping ``StaffUser`` records in a dict."""

    def __init__(self, users: Iterable[StaffUser] = ()) -> None:
        self._users: dict[str, StaffUser] = {u.id: u for u in users}
        self._lock = threading.Lock()

    def add_user(self, user: StaffUser) -> StaffUser:
        with self._lock:
            if user.id in self._users:
                raise ValueError(f"User '{user.id}' already exists.")
            self._users[user.id] = user
        return user

    def get_user(self, user_id: str) -> StaffUser:
        return self._users[user_id]

    def users_for_role(self, role_id: str) -> list[StaffUser]:
        return [u for u in self._users.values() if u.role_id == role_id]

    def count_users_by_role(self, role_id: str) -> int:
        return len(self.users_for_role(role_id))

    def role_user_counts(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for user in self._users.values():
            counts[user.role_id] = counts.get(user.role_id, 0) + 1
        return counts

    def assign_role(self, user_id: str, role_id: str) -> StaffUser:
        with self._lock:
            user = self._users[user_id].model_copy(update={"role_id": role_id})
            self._users[user_id] = user
        return user

    def reassign_users(self, from_role_id: str, to_role_id: str) -> None:
        with self._lock:
            moved = {
                user_id: user.model_copy(update={"role_id": to_role_id})
                for user_id, user in self._users.items()
                if user.role_id == from_role_id
            }
            self._users.update(moved)
        logger.info(
            "Reassigned %d users from role %s to %s",
            len(moved),
            from_role_id,
            to_role_id,
        )

    def __len__(self) -> int:
        return len(self._users)
