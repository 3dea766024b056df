"""
Group membership mutation.

Bulk additions and removals are split into fixed-size batches, one modify
request per batch. A failing batch is recorded and the remaining batches are
still attempted; the outcome of every batch is returned to the caller as an
immutable MembershipResult.
"""

import logging
from typing import Callable, List, NamedTuple, Optional, Sequence, Tuple

from ldap3 import MODIFY_ADD, MODIFY_DELETE

from ldap_groups.config import DirectorySettings
from ldap_groups.errors import (
    DirectoryError,
    RetryInterrupted,
    TransientDirectoryError,
    ensure_valid_dn,
)
from ldap_groups.logging_setup import audit_logger
from ldap_groups.paging import MEMBER_ATTRIBUTE, PagedSearchAccumulator
from ldap_groups.resolver import IdentifierResolver
from ldap_groups.retry import RetryExecutor

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 100


class BatchOutcome(NamedTuple):
    """Result of one batched modify request."""
    members: Tuple[str, ...]
    succeeded: bool


class MembershipResult(NamedTuple):
    """Outcome of a bulk membership call, in batch order."""
    outcomes: Tuple[BatchOutcome, ...]

    @property
    def succeeded(self) -> Tuple[str, ...]:
        """Member DNs of every successful batch, flattened."""
        return tuple(dn for outcome in self.outcomes if outcome.succeeded
                     for dn in outcome.members)

    @property
    def failed(self) -> Tuple[Tuple[str, ...], ...]:
        """Member DNs of each failed batch, one tuple per batch."""
        return tuple(outcome.members for outcome in self.outcomes if not outcome.succeeded)

    @property
    def has_failures(self) -> bool:
        return any(not outcome.succeeded for outcome in self.outcomes)


def partition(items: Sequence[str], size: int) -> List[Tuple[str, ...]]:
    """Split ``items`` into contiguous tuples of at most ``size`` elements."""
    if size < 1:
        raise ValueError("batch size must be at least 1")
    return [tuple(items[i:i + size]) for i in range(0, len(items), size)]


def membership_changes(operation: str, member_dns: Sequence[str]) -> dict:
    """Build an ldap3 changes dict with one change item per member DN."""
    return {MEMBER_ATTRIBUTE: [(operation, [dn]) for dn in member_dns]}


class _BulkSession:
    """
    Session shared by the batches of one bulk call.

    The session is opened lazily and dropped after a transient failure, so the
    next attempt or batch runs on a fresh connection.
    """

    def __init__(self, session_factory: Callable):
        self.session_factory = session_factory
        self.session = None

    def get(self):
        if self.session is None:
            self.session = self.session_factory()
        return self.session

    def discard(self) -> None:
        if self.session is not None:
            session, self.session = self.session, None
            session.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.discard()


class MembershipMutator:
    """Adds and removes group members, singly or in batches."""

    def __init__(self, settings: DirectorySettings,
                 session_factory: Callable,
                 resolver: Optional[IdentifierResolver] = None,
                 accumulator: Optional[PagedSearchAccumulator] = None,
                 batch_size: int = DEFAULT_BATCH_SIZE,
                 retry_executor: Optional[RetryExecutor] = None):
        """
        Initialize the mutator.

        Args:
            settings: Directory settings used to build group DNs
            session_factory: Callable returning a new DirectorySession
            resolver: Resolver for user CNs (defaults to one over ``settings``)
            accumulator: Paged reader for membership lists
            batch_size: Maximum member DNs per modify request
            retry_executor: Optional executor each modify request runs through
        """
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.settings = settings
        self.session_factory = session_factory
        self.accumulator = accumulator or PagedSearchAccumulator(settings.page_size)
        self.resolver = resolver or IdentifierResolver(settings, self.accumulator)
        self.batch_size = batch_size
        self.retry_executor = retry_executor

    def add_members(self, group_dn: str, member_dns: Sequence[str]) -> MembershipResult:
        """Add ``member_dns`` to the group in batches."""
        with _BulkSession(self.session_factory) as bulk:
            return self._apply_batches(bulk, group_dn, member_dns, MODIFY_ADD)

    def remove_members(self, group_dn: str, member_dns: Sequence[str]) -> MembershipResult:
        """Remove ``member_dns`` from the group in batches."""
        with _BulkSession(self.session_factory) as bulk:
            return self._apply_batches(bulk, group_dn, member_dns, MODIFY_DELETE)

    def add_users(self, user_cns: Sequence[str], group_cn: str) -> MembershipResult:
        """Resolve ``user_cns`` in one search and add them to the group in batches."""
        return self._bulk_by_name(user_cns, group_cn, MODIFY_ADD)

    def remove_users(self, user_cns: Sequence[str], group_cn: str) -> MembershipResult:
        """Resolve ``user_cns`` in one search and remove them from the group in batches."""
        return self._bulk_by_name(user_cns, group_cn, MODIFY_DELETE)

    def add_member(self, user_cn: str, group_cn: str) -> None:
        """Add a single user to a group. Fails if the user cannot be resolved."""
        self._single(user_cn, group_cn, MODIFY_ADD)

    def remove_member(self, user_cn: str, group_cn: str) -> None:
        """Remove a single user from a group. Fails if the user cannot be resolved."""
        self._single(user_cn, group_cn, MODIFY_DELETE)

    def list_members(self, group_cn: str) -> List[str]:
        """Return the member DNs of a group, following server paging."""
        with self.session_factory() as session:
            return self.accumulator.collect_values(session, self.settings.object_dn(group_cn))

    def count_members(self, group_cn: str) -> int:
        """Return the number of members of a group, following server paging."""
        with self.session_factory() as session:
            return self.accumulator.count_values(session, self.settings.object_dn(group_cn))

    def _bulk_by_name(self, user_cns, group_cn, operation) -> MembershipResult:
        group_dn = self.settings.object_dn(group_cn)
        with _BulkSession(self.session_factory) as bulk:
            member_dns = self.resolver.resolve_many(bulk.get(), user_cns)
            return self._apply_batches(bulk, group_dn, member_dns, operation)

    def _single(self, user_cn: str, group_cn: str, operation: str) -> None:
        group_dn = self.settings.object_dn(group_cn)

        def attempt():
            with self.session_factory() as session:
                user_dn = self.resolver.resolve_one(session, user_cn)
                session.modify(group_dn, membership_changes(operation, [user_dn]))

        self._attempt(attempt)

        audit_logger.log_membership_change(_verb(operation), group_dn, 1, True)
        logger.info(f"User {user_cn} {_verb(operation)} group {group_cn}")

    def _apply_batches(self, bulk: _BulkSession, group_dn: str, member_dns: Sequence[str],
                       operation: str) -> MembershipResult:
        ensure_valid_dn(group_dn)
        outcomes = []

        for number, batch in enumerate(partition(list(member_dns), self.batch_size), start=1):
            try:
                self._modify_batch(bulk, group_dn, membership_changes(operation, batch))
            except RetryInterrupted:
                raise
            except DirectoryError as e:
                logger.warning(f"Batch {number} ({len(batch)} members) failed for {group_dn}: {e}")
                outcomes.append(BatchOutcome(batch, False))
            else:
                outcomes.append(BatchOutcome(batch, True))
            audit_logger.log_membership_change(_verb(operation), group_dn, len(batch),
                                               outcomes[-1].succeeded)

        result = MembershipResult(tuple(outcomes))
        logger.info(f"{_verb(operation).capitalize()} {group_dn}: {len(result.succeeded)} succeeded, "
                    f"{sum(len(batch) for batch in result.failed)} failed "
                    f"in {len(outcomes)} batches")
        return result

    def _modify_batch(self, bulk: _BulkSession, group_dn: str, changes: dict) -> None:
        def attempt():
            try:
                bulk.get().modify(group_dn, changes)
            except TransientDirectoryError:
                bulk.discard()
                raise

        self._attempt(attempt)

    def _attempt(self, operation: Callable[[], None]) -> None:
        if self.retry_executor is not None:
            self.retry_executor.run_with_retry(operation)
        else:
            operation()


def _verb(operation: str) -> str:
    return 'added to' if operation == MODIFY_ADD else 'removed from'
