"""
Copyright registry state machine.

Holds author profiles, works and disputes. Fingerprints and author ids are
stored only as encrypted handles issued by an ``FHEBackend``; dispute
resolution compares two handles and waits for the backend to deliver the
decrypted result.

All operations run under one re-entrant lock, and every check and backend
call that can fail happens before state is touched, so a rejected operation
leaves the registry unchanged.
"""

import threading
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

import structlog
from pydantic import BaseModel, Field

from copyright_registry.core.errors import (
    AlreadyPending, AlreadyRegistered, AlreadyResolved, AuthorNotRegistered,
    CannotDisputeOwnWork, CategoryRequired, InvalidDisputeIndex, InvalidWorkId,
    NotAuthorized, RegistryError, TitleRequired, UnknownDecryptionRequest,
)
from copyright_registry.core.utils import normalize_address, now_timestamp
from copyright_registry.models.registry import AuthorStats, DisputeInfo, WorkInfo
from copyright_registry.services import events
from copyright_registry.services.fhe import EncryptedHandle, FHEBackend

logger = structlog.get_logger()


class MismatchPolicy(str, Enum):
    """Who wins a dispute whose fingerprints do not match."""
    REGISTRANT = "registrant"
    NONE = "none"


class AuthorProfile(BaseModel):
    registered: bool = False
    encrypted_author_id: Optional[EncryptedHandle] = None
    work_count: int = Field(0, ge=0)
    total_disputes: int = Field(0, ge=0)
    won_disputes: int = Field(0, ge=0)


class Work(BaseModel):
    registrant: str
    encrypted_content_hash: EncryptedHandle
    title: str
    category: str
    timestamp: int
    verified: bool = False
    disputed: bool = False
    dispute_count: int = Field(0, ge=0)


class Dispute(BaseModel):
    challenger: str
    challenger_content_hash: EncryptedHandle
    timestamp: int
    resolved: bool = False
    winner: Optional[str] = None


DisputeKey = Tuple[int, int]


class CopyrightRegistry:
    """Registry of authors, works and disputes owned by a single owner address."""

    def __init__(
        self,
        owner: str,
        backend: FHEBackend,
        address: str,
        event_log: Optional[events.EventLog] = None,
        mismatch_policy: MismatchPolicy = MismatchPolicy.REGISTRANT,
        clock: Callable[[], int] = now_timestamp,
    ):
        self.owner = normalize_address(owner)
        self.address = normalize_address(address)
        self.backend = backend
        self.event_log = event_log if event_log is not None else events.EventLog()
        self.mismatch_policy = MismatchPolicy(mismatch_policy)
        self._clock = clock
        self._lock = threading.RLock()

        self._work_counter = 0
        self._works: Dict[int, Work] = {}
        self._disputes: Dict[int, List[Dispute]] = {}
        self._authors: Dict[str, AuthorProfile] = {}
        self._author_work_ids: Dict[str, List[int]] = {}
        self._pending: Dict[str, DisputeKey] = {}

        logger.info("Copyright registry created",
                    owner=self.owner, address=self.address,
                    backend=backend.name, mismatch_policy=self.mismatch_policy.value)

    # Guards

    def _reject(self, error: RegistryError, operation: str, **context) -> None:
        logger.warning("Registry operation rejected",
                       operation=operation, error=error.code, **context)
        raise error

    def _require_owner(self, caller: str, operation: str) -> None:
        if caller != self.owner:
            self._reject(NotAuthorized(), operation, caller=caller)

    def _require_author(self, caller: str, operation: str) -> AuthorProfile:
        profile = self._authors.get(caller)
        if profile is None or not profile.registered:
            self._reject(AuthorNotRegistered(), operation, caller=caller)
        return profile

    def _require_work(self, work_id: int, operation: str) -> Work:
        work = self._works.get(work_id)
        if work is None:
            self._reject(InvalidWorkId(), operation, work_id=work_id)
        return work

    def _require_dispute(self, work_id: int, dispute_index: int, operation: str) -> Dispute:
        disputes = self._disputes.get(work_id, [])
        if not 0 <= dispute_index < len(disputes):
            self._reject(InvalidDisputeIndex(), operation, work_id=work_id, dispute_index=dispute_index)
        return disputes[dispute_index]

    def _grant(self, handle: EncryptedHandle, caller: str) -> None:
        self.backend.allow(handle, self.address)
        self.backend.allow(handle, caller)

    # State-changing operations

    def register_author(self, caller: str, author_id: int) -> None:
        """Register the caller as an author with an encrypted identifier."""
        caller = normalize_address(caller)
        with self._lock:
            existing = self._authors.get(caller)
            if existing is not None and existing.registered:
                self._reject(AlreadyRegistered(), "register_author", caller=caller)

            handle = self.backend.encrypt(author_id)
            self._grant(handle, caller)
            timestamp = self._clock()

            self.event_log.emit(events.AuthorRegistered(address=caller, timestamp=timestamp))

            self._authors[caller] = AuthorProfile(registered=True, encrypted_author_id=handle)
            self._author_work_ids.setdefault(caller, [])

        logger.info("Author registered", caller=caller)

    def register_work(self, caller: str, content_hash: int, title: str, category: str) -> int:
        """Register a work with an encrypted content fingerprint and return its id."""
        caller = normalize_address(caller)
        with self._lock:
            profile = self._require_author(caller, "register_work")
            if not title:
                self._reject(TitleRequired(), "register_work", caller=caller)
            if not category:
                self._reject(CategoryRequired(), "register_work", caller=caller)

            handle = self.backend.encrypt(content_hash)
            self._grant(handle, caller)
            work_id = self._work_counter + 1
            timestamp = self._clock()

            self.event_log.emit(events.WorkRegistered(
                work_id=work_id, registrant=caller, title=title, timestamp=timestamp,
            ))

            self._works[work_id] = Work(
                registrant=caller,
                encrypted_content_hash=handle,
                title=title,
                category=category,
                timestamp=timestamp,
            )
            self._disputes[work_id] = []
            self._author_work_ids.setdefault(caller, []).append(work_id)
            profile.work_count += 1
            self._work_counter = work_id

        logger.info("Work registered", work_id=work_id, caller=caller, category=category)
        return work_id

    def mark_work_as_verified(self, caller: str, work_id: int) -> None:
        """Owner-only: flag a work as verified."""
        caller = normalize_address(caller)
        with self._lock:
            self._require_owner(caller, "mark_work_as_verified")
            work = self._require_work(work_id, "mark_work_as_verified")

            self.event_log.emit(events.WorkVerified(work_id=work_id, verifier=caller))
            work.verified = True

        logger.info("Work verified", work_id=work_id, verifier=caller)

    def file_dispute(self, caller: str, work_id: int, challenger_content_hash: int) -> int:
        """File a dispute against another author's work and return its index."""
        caller = normalize_address(caller)
        with self._lock:
            challenger = self._require_author(caller, "file_dispute")
            work = self._require_work(work_id, "file_dispute")
            if work.registrant == caller:
                self._reject(CannotDisputeOwnWork(), "file_dispute", caller=caller, work_id=work_id)

            handle = self.backend.encrypt(challenger_content_hash)
            self._grant(handle, caller)
            disputes = self._disputes[work_id]
            dispute_index = len(disputes)
            timestamp = self._clock()

            self.event_log.emit(events.DisputeFiled(
                work_id=work_id, challenger=caller, dispute_index=dispute_index,
            ))

            disputes.append(Dispute(
                challenger=caller,
                challenger_content_hash=handle,
                timestamp=timestamp,
            ))
            work.disputed = True
            work.dispute_count = len(disputes)
            challenger.total_disputes += 1
            self._authors[work.registrant].total_disputes += 1

        logger.info("Dispute filed", work_id=work_id, dispute_index=dispute_index, challenger=caller)
        return dispute_index

    def resolve_dispute(self, caller: str, work_id: int, dispute_index: int) -> str:
        """
        Owner-only: start resolving a dispute.

        Compares the work's fingerprint with the challenger's under
        encryption and requests asynchronous decryption of the result. The
        dispute stays unresolved until ``fulfill_decryption`` receives it.

        Returns:
            The decryption request id.
        """
        caller = normalize_address(caller)
        with self._lock:
            self._require_owner(caller, "resolve_dispute")
            work = self._require_work(work_id, "resolve_dispute")
            dispute = self._require_dispute(work_id, dispute_index, "resolve_dispute")
            if dispute.resolved:
                self._reject(AlreadyResolved(), "resolve_dispute", work_id=work_id, dispute_index=dispute_index)
            if (work_id, dispute_index) in self._pending.values():
                self._reject(AlreadyPending(), "resolve_dispute", work_id=work_id, dispute_index=dispute_index)

            matched = self.backend.eq(work.encrypted_content_hash, dispute.challenger_content_hash)
            self.backend.allow(matched, self.address)
            request_id = self.backend.request_decryption(matched, self.fulfill_decryption)
            self._pending[request_id] = (work_id, dispute_index)

        logger.info("Dispute resolution requested",
                    work_id=work_id, dispute_index=dispute_index, request_id=request_id)
        return request_id

    def fulfill_decryption(self, request_id: str, matched: bool) -> Optional[str]:
        """
        Finish a resolution with the decrypted comparison result.

        Each request id is accepted once. A match awards the dispute to the
        challenger; a mismatch follows ``mismatch_policy``.

        Returns:
            The winning address, or None when the policy names no winner.
        """
        with self._lock:
            key = self._pending.get(request_id)
            if key is None:
                self._reject(UnknownDecryptionRequest(), "fulfill_decryption", request_id=request_id)

            work_id, dispute_index = key
            work = self._works[work_id]
            dispute = self._disputes[work_id][dispute_index]

            if matched:
                winner = dispute.challenger
            elif self.mismatch_policy == MismatchPolicy.REGISTRANT:
                winner = work.registrant
            else:
                winner = None

            self.event_log.emit(events.DisputeResolved(
                work_id=work_id, dispute_index=dispute_index, winner=winner,
            ))

            del self._pending[request_id]
            dispute.resolved = True
            dispute.winner = winner
            if winner is not None:
                self._authors[winner].won_disputes += 1

        logger.info("Dispute resolved",
                    work_id=work_id, dispute_index=dispute_index,
                    request_id=request_id, matched=bool(matched), winner=winner)
        return winner

    # Views

    def is_registered_author(self, address: str) -> bool:
        address = normalize_address(address)
        with self._lock:
            profile = self._authors.get(address)
            return profile is not None and profile.registered

    def get_author_stats(self, address: str) -> AuthorStats:
        """Counters of an author; unknown addresses read as an empty, unregistered profile."""
        address = normalize_address(address)
        with self._lock:
            profile = self._authors.get(address) or AuthorProfile()
            return AuthorStats(
                registered=profile.registered,
                work_count=profile.work_count,
                total_disputes=profile.total_disputes,
                won_disputes=profile.won_disputes,
            )

    def get_author_encrypted_id(self, address: str) -> EncryptedHandle:
        address = normalize_address(address)
        with self._lock:
            profile = self._require_author(address, "get_author_encrypted_id")
            return profile.encrypted_author_id

    def get_work_info(self, work_id: int) -> WorkInfo:
        with self._lock:
            work = self._require_work(work_id, "get_work_info")
            return WorkInfo(
                work_id=work_id,
                registrant=work.registrant,
                title=work.title,
                category=work.category,
                timestamp=work.timestamp,
                verified=work.verified,
                disputed=work.disputed,
                dispute_count=work.dispute_count,
            )

    def get_work_content_hash(self, work_id: int) -> EncryptedHandle:
        with self._lock:
            return self._require_work(work_id, "get_work_content_hash").encrypted_content_hash

    def get_author_works(self, address: str) -> List[int]:
        address = normalize_address(address)
        with self._lock:
            return list(self._author_work_ids.get(address, []))

    def get_dispute_info(self, work_id: int, dispute_index: int) -> DisputeInfo:
        with self._lock:
            self._require_work(work_id, "get_dispute_info")
            dispute = self._require_dispute(work_id, dispute_index, "get_dispute_info")
            return DisputeInfo(
                work_id=work_id,
                dispute_index=dispute_index,
                challenger=dispute.challenger,
                timestamp=dispute.timestamp,
                resolved=dispute.resolved,
                pending=(work_id, dispute_index) in self._pending.values(),
                winner=dispute.winner,
            )

    def get_dispute_count(self, work_id: int) -> int:
        with self._lock:
            return self._require_work(work_id, "get_dispute_count").dispute_count

    def get_total_works(self) -> int:
        with self._lock:
            return self._work_counter

    def pending_requests(self) -> Dict[str, DisputeKey]:
        with self._lock:
            return dict(self._pending)
