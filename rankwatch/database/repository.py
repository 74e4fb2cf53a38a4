"""
Repository Layer - Rank history store contract

Everything above this module works with plain BucketRecord objects; all
SQLAlchemy complexity stays here.

Writers never read-modify-write blindly:
- creation is INSERT ... ON CONFLICT DO NOTHING on the unique bucket key
- mutation is UPDATE ... WHERE id = :id AND revision = :revision
A lost race re-reads the row and tries again. Transient store failures
(lock timeouts, statement timeouts, pool exhaustion) are retried with
exponential backoff and surface as StoreTimeout.
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple, TypeVar
from uuid import UUID, uuid4

from sqlalchemy import and_, delete, insert, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session, sessionmaker

from rankwatch.errors import StoreError, StoreTimeout
from rankwatch.models import BucketKey, BucketRecord, UpsertStatus, client_key_for
from rankwatch.utils.config import get_settings
from rankwatch.utils.dates import Period, utcnow
from .models import BUCKET_SCHEMA_VERSION, RankBucket

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Builds new column values from the current row (None when absent).
# Returning None means "nothing to write".
BucketBuilder = Callable[[Optional[BucketRecord]], Optional[Dict[str, Any]]]

_KEY_COLUMNS = ["client_key", "keyword", "year", "month"]


@dataclass
class StoreRetryConfig:
    """Configuration for store retry behavior."""
    max_attempts: int = 4
    initial_delay: float = 0.5
    max_delay: float = 8.0
    exponential_base: float = 2.0
    max_conflicts: int = 10  # Lost compare-and-swap races before giving up

    @classmethod
    def from_settings(cls) -> "StoreRetryConfig":
        settings = get_settings()
        return cls(
            max_attempts=settings.STORE_MAX_ATTEMPTS,
            initial_delay=settings.STORE_RETRY_INITIAL_DELAY,
            max_delay=settings.STORE_RETRY_MAX_DELAY,
        )


# =============================================================================
# CONTRACT
# =============================================================================

class RankHistoryRepository(ABC):
    """Abstract store for monthly rank buckets."""

    @abstractmethod
    def find_bucket(self, key: BucketKey) -> Optional[BucketRecord]:
        """Get the bucket for an exact key."""
        pass

    @abstractmethod
    def find_previous_bucket(self, key: BucketKey) -> Optional[BucketRecord]:
        """Most recent bucket strictly before key's period, same owner and keyword."""
        pass

    @abstractmethod
    def find_next_bucket(self, key: BucketKey) -> Optional[BucketRecord]:
        """Earliest bucket strictly after key's period, same owner and keyword."""
        pass

    @abstractmethod
    def upsert_bucket(
        self,
        key: BucketKey,
        template: Dict[str, Any],
        build: BucketBuilder,
    ) -> Tuple[BucketRecord, UpsertStatus]:
        """Create or conditionally update the bucket for key."""
        pass

    @abstractmethod
    def update_bucket(self, bucket_id: UUID, revision: int, values: Dict[str, Any]) -> bool:
        """Compare-and-swap update. False when the revision moved on."""
        pass

    @abstractmethod
    def list_buckets(
        self,
        client_id: Optional[UUID] = None,
        domain: Optional[str] = None,
        start: Optional[Period] = None,
        end: Optional[Period] = None,
    ) -> List[BucketRecord]:
        """Buckets for a client (plus its domain's orphans) or a domain."""
        pass

    @abstractmethod
    def list_unlinked_buckets(self) -> List[BucketRecord]:
        """Buckets with no client."""
        pass

    @abstractmethod
    def relink_bucket(self, bucket_id: UUID, revision: int, client_id: UUID) -> bool:
        """Attach a client and re-key the bucket. False on conflict."""
        pass

    @abstractmethod
    def delete_bucket(self, bucket_id: UUID, revision: int) -> bool:
        """Delete a bucket if its revision still matches."""
        pass

    @abstractmethod
    def iter_buckets(self, batch_size: int = 500) -> Iterator[BucketRecord]:
        """Every bucket, ordered by key."""
        pass


# =============================================================================
# SQLALCHEMY IMPLEMENTATION
# =============================================================================

class SQLRankHistoryRepository(RankHistoryRepository):
    """
    Rank history store backed by the rank_buckets table.

    Usage:
        repo = SQLRankHistoryRepository(get_session_factory())
        bucket = repo.find_bucket(observation.bucket_key)
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        retry_config: Optional[StoreRetryConfig] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._session_factory = session_factory
        self.retry_config = retry_config or StoreRetryConfig.from_settings()
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Retry wrapper
    # ------------------------------------------------------------------

    def _run(self, operation: str, fn: Callable[[Session], T]) -> T:
        """Run fn in its own session, retrying transient failures."""
        config = self.retry_config
        delay = config.initial_delay
        last_error: Optional[Exception] = None

        for attempt in range(1, config.max_attempts + 1):
            session = self._session_factory()
            try:
                return fn(session)
            except (OperationalError, PoolTimeoutError) as e:
                session.rollback()
                last_error = e
                if attempt < config.max_attempts:
                    logger.warning(
                        f"Store {operation} failed (attempt {attempt}/{config.max_attempts}): {e}. "
                        f"Retrying in {delay}s..."
                    )
                    self._sleep(delay)
                    delay = min(delay * config.exponential_base, config.max_delay)
            except SQLAlchemyError as e:
                session.rollback()
                raise StoreError(f"Store {operation} failed: {e}") from e
            finally:
                session.close()

        logger.error(f"Store {operation} gave up after {config.max_attempts} attempts: {last_error}")
        raise StoreTimeout(
            f"Store {operation} did not complete after {config.max_attempts} attempts",
            attempts=config.max_attempts,
        ) from last_error

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @staticmethod
    def _key_filter(key: BucketKey):
        return and_(
            RankBucket.client_key == key.client_key,
            RankBucket.keyword == key.keyword,
            RankBucket.year == key.year,
            RankBucket.month == key.month,
        )

    @staticmethod
    def _fetch(session: Session, stmt) -> Optional[BucketRecord]:
        row = session.execute(stmt.execution_options(populate_existing=True)).scalars().first()
        return row.to_record() if row else None

    def find_bucket(self, key: BucketKey) -> Optional[BucketRecord]:
        stmt = select(RankBucket).where(self._key_filter(key))
        return self._run("find_bucket", lambda s: self._fetch(s, stmt))

    def find_previous_bucket(self, key: BucketKey) -> Optional[BucketRecord]:
        stmt = (
            select(RankBucket)
            .where(
                RankBucket.client_key == key.client_key,
                RankBucket.keyword == key.keyword,
                or_(
                    RankBucket.year < key.year,
                    and_(RankBucket.year == key.year, RankBucket.month < key.month),
                ),
            )
            .order_by(RankBucket.year.desc(), RankBucket.month.desc())
            .limit(1)
        )
        return self._run("find_previous_bucket", lambda s: self._fetch(s, stmt))

    def find_next_bucket(self, key: BucketKey) -> Optional[BucketRecord]:
        stmt = (
            select(RankBucket)
            .where(
                RankBucket.client_key == key.client_key,
                RankBucket.keyword == key.keyword,
                or_(
                    RankBucket.year > key.year,
                    and_(RankBucket.year == key.year, RankBucket.month > key.month),
                ),
            )
            .order_by(RankBucket.year.asc(), RankBucket.month.asc())
            .limit(1)
        )
        return self._run("find_next_bucket", lambda s: self._fetch(s, stmt))

    def list_buckets(
        self,
        client_id: Optional[UUID] = None,
        domain: Optional[str] = None,
        start: Optional[Period] = None,
        end: Optional[Period] = None,
    ) -> List[BucketRecord]:
        if client_id is None and not domain:
            raise ValueError("list_buckets needs a client_id or a domain")

        if client_id is not None:
            scope = RankBucket.client_id == client_id
            if domain:
                # Orphans recorded before the client was linked
                scope = or_(scope, and_(RankBucket.client_id.is_(None), RankBucket.domain == domain))
        else:
            scope = RankBucket.domain == domain

        period = RankBucket.year * 100 + RankBucket.month
        conditions = [scope]
        if start:
            conditions.append(period >= start[0] * 100 + start[1])
        if end:
            conditions.append(period <= end[0] * 100 + end[1])

        stmt = (
            select(RankBucket)
            .where(*conditions)
            .order_by(RankBucket.keyword, RankBucket.year, RankBucket.month, RankBucket.client_key)
        )

        def _list(session: Session) -> List[BucketRecord]:
            rows = session.execute(stmt.execution_options(populate_existing=True)).scalars().all()
            return [row.to_record() for row in rows]

        return self._run("list_buckets", _list)

    def list_unlinked_buckets(self) -> List[BucketRecord]:
        stmt = (
            select(RankBucket)
            .where(RankBucket.client_id.is_(None))
            .order_by(RankBucket.domain, RankBucket.keyword, RankBucket.year, RankBucket.month)
        )
        return self._run(
            "list_unlinked_buckets",
            lambda s: [row.to_record() for row in s.execute(stmt).scalars().all()],
        )

    def iter_buckets(self, batch_size: int = 500) -> Iterator[BucketRecord]:
        offset = 0
        while True:
            stmt = (
                select(RankBucket)
                .order_by(RankBucket.client_key, RankBucket.keyword, RankBucket.year, RankBucket.month)
                .offset(offset)
                .limit(batch_size)
            )
            batch = self._run(
                "iter_buckets",
                lambda s: [row.to_record() for row in s.execute(stmt).scalars().all()],
            )
            if not batch:
                return
            yield from batch
            offset += len(batch)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _insert_if_absent(self, session: Session, values: Dict[str, Any]) -> bool:
        """Insert a new bucket. False when another writer created the key first."""
        table = RankBucket.__table__
        dialect = session.get_bind().dialect.name

        if dialect == "postgresql":
            stmt = pg_insert(table).values(**values).on_conflict_do_nothing(index_elements=_KEY_COLUMNS)
        elif dialect == "sqlite":
            stmt = sqlite_insert(table).values(**values).on_conflict_do_nothing(index_elements=_KEY_COLUMNS)
        else:
            stmt = insert(table).values(**values)

        try:
            result = session.execute(stmt)
            session.commit()
        except IntegrityError as e:
            session.rollback()
            if dialect in ("postgresql", "sqlite"):
                # Key conflicts never get here; ON CONFLICT DO NOTHING absorbs them
                raise StoreError(f"Bucket insert rejected: {e.orig}") from e
            key_taken = session.execute(
                select(table.c.id).where(*(table.c[name] == values[name] for name in _KEY_COLUMNS))
            ).first()
            if key_taken is None:
                raise StoreError(f"Bucket insert rejected: {e.orig}") from e
            return False
        return result.rowcount == 1

    def _compare_and_swap(self, session: Session, bucket_id: UUID, revision: int, values: Dict[str, Any]) -> bool:
        table = RankBucket.__table__
        stmt = (
            update(table)
            .where(table.c.id == bucket_id, table.c.revision == revision)
            .values(**values, revision=revision + 1, updated_at=utcnow())
        )
        result = session.execute(stmt)
        session.commit()
        return result.rowcount == 1

    def upsert_bucket(
        self,
        key: BucketKey,
        template: Dict[str, Any],
        build: BucketBuilder,
    ) -> Tuple[BucketRecord, UpsertStatus]:
        """
        Create or update the bucket for key.

        Args:
            key: Bucket key
            template: Identity columns for a new row (domain, client_id, ...)
            build: Called with the current row (or None); returns the
                   column values to write, or None for "nothing changed"

        Returns:
            (resulting bucket, created | updated | duplicate)

        Raises:
            StoreTimeout: transient store failures outlasted the retries
            StoreError: the write kept losing races, or the store rejected it
        """
        def _attempt(session: Session) -> Optional[Tuple[BucketRecord, UpsertStatus]]:
            current = self._fetch(session, select(RankBucket).where(self._key_filter(key)))

            if current is None:
                values = build(None)
                if values is None:
                    raise StoreError(f"Nothing to write for new bucket {key}")
                bucket_id = uuid4()
                row = {
                    **template,
                    **values,
                    "id": bucket_id,
                    "client_key": key.client_key,
                    "keyword": key.keyword,
                    "year": key.year,
                    "month": key.month,
                    "revision": 1,
                    "schema_version": BUCKET_SCHEMA_VERSION,
                    "created_at": utcnow(),
                    "updated_at": utcnow(),
                }
                if not self._insert_if_absent(session, row):
                    return None
                created = self._fetch(session, select(RankBucket).where(RankBucket.id == bucket_id))
                return created, UpsertStatus.CREATED

            values = build(current)
            if values is None:
                return current, UpsertStatus.DUPLICATE
            if not self._compare_and_swap(session, current.id, current.revision, values):
                return None
            updated = self._fetch(session, select(RankBucket).where(RankBucket.id == current.id))
            return updated, UpsertStatus.UPDATED

        for conflict in range(self.retry_config.max_conflicts):
            outcome = self._run("upsert_bucket", _attempt)
            if outcome is not None:
                return outcome
            logger.debug(f"Lost write race on {key} (conflict {conflict + 1}), retrying")

        raise StoreError(
            f"Bucket {key} changed under {self.retry_config.max_conflicts} consecutive writes"
        )

    def update_bucket(self, bucket_id: UUID, revision: int, values: Dict[str, Any]) -> bool:
        return self._run(
            "update_bucket",
            lambda s: self._compare_and_swap(s, bucket_id, revision, values),
        )

    def relink_bucket(self, bucket_id: UUID, revision: int, client_id: UUID) -> bool:
        values = {"client_id": client_id, "client_key": client_key_for(client_id, "")}

        def _relink(session: Session) -> bool:
            try:
                return self._compare_and_swap(session, bucket_id, revision, values)
            except IntegrityError:
                # Target key already owned by a linked bucket
                session.rollback()
                return False

        return self._run("relink_bucket", _relink)

    def delete_bucket(self, bucket_id: UUID, revision: int) -> bool:
        table = RankBucket.__table__

        def _delete(session: Session) -> bool:
            result = session.execute(
                delete(table).where(table.c.id == bucket_id, table.c.revision == revision)
            )
            session.commit()
            return result.rowcount == 1

        return self._run("delete_bucket", _delete)
