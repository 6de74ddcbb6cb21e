"""
Content-Addressed Result Cache

Maps the fingerprint of a normalized video URL to learning material that
was already produced for it, so identical submissions skip the pipeline.

Semantics:
- lookup() only returns active, unexpired entries. Expiry is passive; the
  maintenance task in services/tasks.py owns physical deletion.
- store() is a single INSERT ... ON CONFLICT statement keyed by the unique
  fingerprint. The first writer wins: a live row is never overwritten, and
  a duplicate insert surfaces as CacheWriteConflictError, which store()
  swallows before returning the canonical row. A stale row (inactive or
  expired) is replaced in place by the newer result.
- record_access() increments access_count atomically in SQL and appends a
  row to cache_access_logs.

Usage:
    from tubelearn.services.result_cache import ResultCache

    cache = ResultCache()
    entry = await cache.lookup(url)
    if entry:
        await cache.record_access(entry, CacheAccessType.REUSE, requester=email)
    else:
        stored = await cache.store(url, payload, metadata={"title": title})
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tubelearn.config import ProcessingSettings, processing_settings
from tubelearn.db.models import CacheAccessLog, CacheEntry
from tubelearn.enums import CacheAccessType
from tubelearn.middleware.error_handling import CacheWriteConflictError
from tubelearn.utils.url_utils import calculate_fingerprint, normalize_video_url, short_hash

logger = logging.getLogger(__name__)

_DIALECT_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


def _utc_now() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


@dataclass
class CacheStoreResult:
    """
    Outcome of store().

    Attributes:
        entry: The canonical cache row for the fingerprint
        created: True if this call wrote the payload, False if another
            writer got there first
    """

    entry: CacheEntry
    created: bool


class ResultCache:
    """
    Fingerprint-keyed store of completed learning material.

    Args:
        session_maker: Factory for database sessions
        config: Processing settings (default TTL)
    """

    def __init__(
        self,
        session_maker: Optional[async_sessionmaker[AsyncSession]] = None,
        config: Optional[ProcessingSettings] = None,
    ) -> None:
        if session_maker is None:
            from tubelearn.db.base import async_session_maker

            session_maker = async_session_maker
        self.session_maker = session_maker
        self.config = config or processing_settings

    # =========================================================================
    # Reads
    # =========================================================================

    async def lookup(self, input_url: str) -> Optional[CacheEntry]:
        """
        Find a usable entry for a URL.

        Args:
            input_url: URL in any supported form

        Returns:
            The active, unexpired CacheEntry, or None on a miss
        """
        fingerprint = calculate_fingerprint(input_url)
        now = _utc_now()

        async with self.session_maker() as session:
            result = await session.execute(
                select(CacheEntry).where(
                    CacheEntry.fingerprint == fingerprint,
                    CacheEntry.is_active.is_(True),
                    or_(CacheEntry.expires_at.is_(None), CacheEntry.expires_at > now),
                )
            )
            entry = result.scalar_one_or_none()

        if entry:
            logger.info(f"Cache hit for {short_hash(fingerprint)} ({entry.video_title})")
        else:
            logger.debug(f"Cache miss for {short_hash(fingerprint)}")
        return entry

    async def get_stats(self) -> dict[str, int]:
        """Return entry and access counts for reporting."""
        now = _utc_now()
        async with self.session_maker() as session:
            total = await session.scalar(select(func.count(CacheEntry.id)))
            active = await session.scalar(
                select(func.count(CacheEntry.id)).where(
                    CacheEntry.is_active.is_(True),
                    or_(CacheEntry.expires_at.is_(None), CacheEntry.expires_at > now),
                )
            )
            accesses = await session.scalar(
                select(func.coalesce(func.sum(CacheEntry.access_count), 0))
            )
            reuses = await session.scalar(
                select(func.count(CacheAccessLog.id)).where(
                    CacheAccessLog.access_type == CacheAccessType.REUSE.value
                )
            )

        return {
            "total_entries": total or 0,
            "active_entries": active or 0,
            "total_accesses": int(accesses or 0),
            "reuse_count": reuses or 0,
        }

    # =========================================================================
    # Writes
    # =========================================================================

    async def store(
        self,
        input_url: str,
        result_payload: dict[str, Any],
        metadata: Optional[dict[str, Any]] = None,
        ttl_days: Optional[int] = None,
        requester: Optional[str] = None,
        job_id: Optional[uuid.UUID] = None,
    ) -> CacheStoreResult:
        """
        Insert the result for a URL unless a live entry already exists.

        Args:
            input_url: URL in any supported form
            result_payload: Learning material to cache
            metadata: Extra descriptive data (title, channel, duration)
            ttl_days: Days until expiry; defaults to CACHE_TTL_DAYS, 0 means never
            requester: Recorded on the "create" access log row
            job_id: Job that produced the payload

        Returns:
            CacheStoreResult with the canonical entry
        """
        fingerprint = calculate_fingerprint(input_url)

        try:
            entry = await self._insert_if_absent(
                fingerprint=fingerprint,
                normalized_url=normalize_video_url(input_url),
                result_payload=result_payload,
                metadata=metadata or {},
                ttl_days=self.config.CACHE_TTL_DAYS if ttl_days is None else ttl_days,
                requester=requester,
                job_id=job_id,
            )
            logger.info(f"Cached result for {short_hash(fingerprint)}")
            return CacheStoreResult(entry=entry, created=True)

        except CacheWriteConflictError:
            logger.info(
                f"Result for {short_hash(fingerprint)} already cached by another job, keeping existing entry"
            )

        async with self.session_maker() as session:
            result = await session.execute(
                select(CacheEntry).where(CacheEntry.fingerprint == fingerprint)
            )
            entry = result.scalar_one()
        return CacheStoreResult(entry=entry, created=False)

    async def _insert_if_absent(
        self,
        fingerprint: str,
        normalized_url: str,
        result_payload: dict[str, Any],
        metadata: dict[str, Any],
        ttl_days: int,
        requester: Optional[str],
        job_id: Optional[uuid.UUID],
    ) -> CacheEntry:
        now = _utc_now()
        expires_at = now + timedelta(days=ttl_days) if ttl_days else None
        table = CacheEntry.__table__

        async with self.session_maker() as session:
            dialect = session.get_bind().dialect.name
            insert_fn = _DIALECT_INSERTS.get(dialect)
            if insert_fn is None:
                raise RuntimeError(f"Result cache does not support the {dialect} dialect")

            stmt = insert_fn(table).values(
                id=uuid.uuid4(),
                fingerprint=fingerprint,
                normalized_url=normalized_url,
                video_title=metadata.get("title"),
                result_payload=result_payload,
                metadata=metadata,
                access_count=1,
                last_accessed_at=now,
                created_at=now,
                expires_at=expires_at,
                is_active=True,
            )
            # Only a stale row may be replaced; a live row keeps its payload
            stale = or_(
                table.c.is_active.is_(False),
                and_(table.c.expires_at.is_not(None), table.c.expires_at <= now),
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=[table.c.fingerprint],
                set_={
                    "normalized_url": stmt.excluded.normalized_url,
                    "video_title": stmt.excluded.video_title,
                    "result_payload": stmt.excluded.result_payload,
                    "metadata": stmt.excluded["metadata"],
                    "access_count": table.c.access_count + 1,
                    "last_accessed_at": stmt.excluded.last_accessed_at,
                    "created_at": stmt.excluded.created_at,
                    "expires_at": stmt.excluded.expires_at,
                    "is_active": True,
                },
                where=stale,
            ).returning(table.c.id)

            try:
                result = await session.execute(stmt)
                entry_id = result.scalar_one_or_none()
            except IntegrityError as e:
                await session.rollback()
                raise CacheWriteConflictError(
                    f"Concurrent cache write for {short_hash(fingerprint)}"
                ) from e

            if entry_id is None:
                await session.rollback()
                raise CacheWriteConflictError(
                    f"Live cache entry already exists for {short_hash(fingerprint)}"
                )

            session.add(
                CacheAccessLog(
                    cache_entry_id=entry_id,
                    access_type=CacheAccessType.CREATE.value,
                    requester=requester,
                    job_id=job_id,
                )
            )
            await session.commit()

            entry = await session.get(CacheEntry, entry_id)
        return entry

    async def record_access(
        self,
        entry: CacheEntry,
        access_type: CacheAccessType,
        requester: Optional[str] = None,
        job_id: Optional[uuid.UUID] = None,
    ) -> None:
        """
        Count an access to an entry and log it.

        Args:
            entry: Cache entry that was used
            access_type: create or reuse
            requester: Who triggered the access
            job_id: Job that consumed the entry
        """
        async with self.session_maker() as session:
            await session.execute(
                update(CacheEntry)
                .where(CacheEntry.id == entry.id)
                .values(
                    access_count=CacheEntry.access_count + 1,
                    last_accessed_at=_utc_now(),
                )
            )
            session.add(
                CacheAccessLog(
                    cache_entry_id=entry.id,
                    access_type=access_type.value,
                    requester=requester,
                    job_id=job_id,
                )
            )
            await session.commit()

        logger.debug(f"Recorded {access_type.value} access for cache entry {entry.id}")

    async def deactivate(self, input_url: str) -> bool:
        """
        Mark the entry for a URL inactive so lookups miss it.

        Returns:
            True if an entry was deactivated
        """
        fingerprint = calculate_fingerprint(input_url)
        async with self.session_maker() as session:
            result = await session.execute(
                update(CacheEntry)
                .where(CacheEntry.fingerprint == fingerprint, CacheEntry.is_active.is_(True))
                .values(is_active=False)
            )
            await session.commit()

        deactivated = (result.rowcount or 0) > 0
        if deactivated:
            logger.info(f"Deactivated cache entry {short_hash(fingerprint)}")
        return deactivated
