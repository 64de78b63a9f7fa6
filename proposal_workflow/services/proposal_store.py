"""
Proposal Workflow Service
In-memory proposal repository and user directory.

ProposalRepository.save() is an optimistic-concurrency write: the caller
passes the version it read, and the save fails with ConflictError when a
newer version has been stored in the meantime. ``lock(proposal_id)`` gives
callers a per-proposal mutex for read-modify-write sequences.
"""

from __future__ import annotations

import copy
import logging
import threading

from proposal_workflow.core.exceptions import ConflictError, NotFoundError, ValidationError
from proposal_workflow.models.proposal import Proposal, ProposalStatus, User, UserRole

logger = logging.getLogger(__name__)


class ProposalRepository:

    def __init__(self):
        self._items: dict[str, Proposal] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def lock(self, proposal_id: str) -> threading.Lock:
        """Per-proposal mutex; only stored proposals have one."""
        with self._guard:
            lock = self._locks.get(proposal_id)
        if lock is None:
            raise NotFoundError("Proposal", proposal_id)
        return lock

    def add(self, proposal: Proposal) -> Proposal:
        with self._guard:
            if proposal.id in self._items:
                raise ValidationError(f"Proposal {proposal.id} already exists",
                                      details={"id": proposal.id})
            stored = copy.deepcopy(proposal)
            stored.version = 1
            self._items[stored.id] = stored
            self._locks[stored.id] = threading.Lock()
        return copy.deepcopy(stored)

    def get(self, proposal_id: str) -> Proposal | None:
        stored = self._items.get(proposal_id)
        return copy.deepcopy(stored) if stored else None

    def require(self, proposal_id: str) -> Proposal:
        proposal = self.get(proposal_id)
        if proposal is None:
            raise NotFoundError("Proposal", proposal_id)
        return proposal

    def list(self, workflow_id: str | None = None,
             status: ProposalStatus | None = None) -> list[Proposal]:
        items = list(self._items.values())
        if workflow_id:
            items = [p for p in items if p.workflow_id == workflow_id]
        if status:
            items = [p for p in items if p.status == ProposalStatus(status)]
        return [copy.deepcopy(p) for p in sorted(items, key=lambda p: p.created_at)]

    def save(self, proposal: Proposal, expected_version: int) -> Proposal:
        """Store ``proposal`` if the stored version still equals ``expected_version``.

        Returns the stored copy with its bumped version.
        """
        with self._guard:
            current = self._items.get(proposal.id)
            if current is None:
                raise NotFoundError("Proposal", proposal.id)
            if current.version != expected_version:
                logger.warning(
                    "Version conflict on proposal %s: stored v%d, expected v%s",
                    proposal.id, current.version, expected_version,
                    extra={"proposal_id": proposal.id},
                )
                raise ConflictError("Proposal", "version", str(expected_version))
            stored = copy.deepcopy(proposal)
            stored.version = current.version + 1
            self._items[stored.id] = stored
        return copy.deepcopy(stored)

    def __len__(self):
        return len(self._items)


class UserDirectory:

    def __init__(self, users=None):
        self._users: dict[str, User] = {}
        for user in users or ():
            self.register(user)

    def register(self, user: User) -> User:
        self._users[user.id] = user
        return user

    def get(self, user_id: str) -> User | None:
        return self._users.get(user_id)

    def active_with_role(self, role: UserRole) -> list[User]:
        return [u for u in self._users.values() if u.is_active and u.role == role]

    def all(self) -> list[User]:
        return list(self._users.values())
