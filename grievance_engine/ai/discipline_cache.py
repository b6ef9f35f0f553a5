"""
Discipline-Guidance Cache.

One row per grievance (unique on ``grievance_id``) holding AI-extracted
reference material and the misconduct topics it covers.

    get(grievance_id)         → entry, or None on miss / expiry
    put(grievance_id, ...)    → atomic upsert, expires_at = now + TTL
    invalidate(grievance_id)  → delete-if-exists

Expiry is absolute: an entry is never served once ``expires_at <= now``,
and a read that finds an expired entry deletes it. The TTL is fixed at
write time and never extended by reads.

``put`` is a single INSERT ... ON CONFLICT DO UPDATE on PostgreSQL and
SQLite, so two concurrent writers for the same grievance leave exactly one
row behind (last write wins). All writes ``flush``; the caller owns the commit.
"""

import logging
from datetime import datetime, timedelta
from threading import Lock

from flask import current_app, has_app_context
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from grievance_engine.core.exceptions import InvalidArgumentError
from grievance_engine.models import db
from grievance_engine.models.discipline import GrievanceDisciplineCache
from grievance_engine.utils.helpers import utcnow

logger = logging.getLogger(__name__)

DEFAULT_TTL_DAYS = 30


def validate_ttl_days(ttl_days) -> int:
    """TTL must be a whole number of days, at least one."""
    if isinstance(ttl_days, bool) or not isinstance(ttl_days, int) or ttl_days < 1:
        raise InvalidArgumentError(
            f"Guidance cache TTL must be a positive number of days, got {ttl_days!r}",
            details={"ttl_days": ttl_days},
        )
    return ttl_days


def _dialect_insert(dialect_name: str):
    if dialect_name == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
        return insert
    if dialect_name == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
        return insert
    return None


class DisciplineGuidanceCache:
    """Per-grievance guidance cache backed by ``grievance_discipline_cache``."""

    def __init__(self, ttl_days: int | None = None):
        self._ttl_days = ttl_days
        self._lock = Lock()
        self._stats = {"hits": 0, "misses": 0, "writes": 0, "invalidations": 0, "expired": 0}

    @property
    def ttl_days(self) -> int:
        if self._ttl_days is not None:
            return validate_ttl_days(self._ttl_days)
        if has_app_context():
            return validate_ttl_days(current_app.config.get("GUIDANCE_CACHE_TTL_DAYS", DEFAULT_TTL_DAYS))
        return DEFAULT_TTL_DAYS

    def _count(self, key: str) -> None:
        with self._lock:
            self._stats[key] += 1

    @staticmethod
    def _load(grievance_id: str) -> GrievanceDisciplineCache | None:
        # populate_existing: the upsert bypasses the identity map
        return db.session.execute(
            select(GrievanceDisciplineCache)
            .where(GrievanceDisciplineCache.grievance_id == grievance_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def get(self, grievance_id: str, now: datetime | None = None) -> GrievanceDisciplineCache | None:
        entry = self._load(grievance_id)
        if entry is None:
            self._count("misses")
            return None
        if entry.is_expired(now):
            logger.info(
                "Discipline guidance for grievance %s expired; evicting",
                grievance_id, extra={"grievance_id": grievance_id},
            )
            db.session.delete(entry)
            db.session.flush()
            self._count("expired")
            self._count("misses")
            return None
        self._count("hits")
        return entry

    def put(
        self,
        grievance_id: str,
        relevant_sections: str,
        topics: list[str],
        ttl_days: int | None = None,
        now: datetime | None = None,
    ) -> GrievanceDisciplineCache:
        """Insert or replace the entry for ``grievance_id``."""
        days = validate_ttl_days(ttl_days) if ttl_days is not None else self.ttl_days
        created_at = now or utcnow()
        values = {
            "grievance_id": grievance_id,
            "relevant_sections": relevant_sections,
            "topics": list(topics),
            "created_at": created_at,
            "expires_at": created_at + timedelta(days=days),
        }

        insert = _dialect_insert(db.session.get_bind().dialect.name)
        if insert is not None:
            stmt = insert(GrievanceDisciplineCache.__table__).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=["grievance_id"],
                set_={k: stmt.excluded[k] for k in ("relevant_sections", "topics", "created_at", "expires_at")},
            )
            db.session.execute(stmt)
        else:
            self._put_portable(values)

        self._count("writes")
        return self._load(grievance_id)

    def _put_portable(self, values: dict) -> None:
        """Insert-or-update for dialects without ON CONFLICT."""
        try:
            with db.session.begin_nested():
                db.session.add(GrievanceDisciplineCache(**values))
        except IntegrityError:
            (
                GrievanceDisciplineCache.query
                .filter_by(grievance_id=values["grievance_id"])
                .update({k: v for k, v in values.items() if k != "grievance_id"})
            )
        db.session.flush()

    def invalidate(self, grievance_id: str) -> bool:
        """Delete the entry if present. Returns True when a row was removed."""
        deleted = GrievanceDisciplineCache.query.filter_by(grievance_id=grievance_id).delete()
        db.session.flush()
        if deleted:
            self._count("invalidations")
            logger.info(
                "Discipline guidance for grievance %s invalidated",
                grievance_id, extra={"grievance_id": grievance_id},
            )
        return bool(deleted)

    def cleanup_expired(self, now: datetime | None = None) -> int:
        """Remove expired entries. Returns count of deleted entries."""
        now = now or utcnow()
        deleted = GrievanceDisciplineCache.query.filter(
            GrievanceDisciplineCache.expires_at <= now
        ).delete(synchronize_session="fetch")
        db.session.flush()
        return deleted

    def get_stats(self) -> dict:
        with self._lock:
            stats = dict(self._stats)
        total = stats["hits"] + stats["misses"]
        stats["hit_rate_pct"] = round(stats["hits"] / total * 100, 2) if total else 0.0
        stats["entries"] = GrievanceDisciplineCache.query.count()
        stats["ttl_days"] = self.ttl_days
        return stats

    def reset_stats(self) -> None:
        with self._lock:
            for key in self._stats:
                self._stats[key] = 0


discipline_cache = DisciplineGuidanceCache()
