"""SQL window store with optimistic locking.

Each key is one row in ``rate_limits``. A write only succeeds when the row
still carries the ``version`` that was read, so two workers racing for the
last slot of a window cannot both commit: the loser gets
``StoreContentionError`` and the retry policy re-runs it against fresh data.

We use synchronous SQLAlchemy 2.0; the limiter runs the call in a worker
thread so the event loop is not blocked.
"""

from __future__ import annotations

import logging

from sqlalchemy import JSON, BigInteger, Integer, String, create_engine, delete, func, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

from gatekeeper.adapters.rate_limit.base import WindowCount, WindowStore, apply_request
from gatekeeper.core.errors import StoreContentionError, StoreUnavailableError

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


class RateLimitRow(Base):
    """Persisted sliding window for one ``scope:identifier`` key."""

    __tablename__ = "rate_limits"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    timestamps: Mapped[list[int]] = mapped_column(JSON, nullable=False, default=list)
    # Newest recorded request; the sweeper filters on it
    newest_at: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    last_updated: Mapped[int] = mapped_column(BigInteger, nullable=False)


def build_engine(database_url: str, *, timeout_seconds: float, echo: bool = False) -> Engine:
    """Create an engine whose connections respect the storage timeout.

    SQLite gets a busy timeout (and a shared connection for in-memory URLs);
    other databases get a bounded pool checkout plus pre-ping.
    """
    if database_url.startswith("sqlite"):
        kwargs: dict = {
            "connect_args": {"timeout": timeout_seconds, "check_same_thread": False},
        }
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, echo=echo, **kwargs)

    return create_engine(
        database_url,
        echo=echo,
        pool_pre_ping=True,
        pool_timeout=timeout_seconds,
    )


class SqlWindowStore(WindowStore):
    """Window store backed by a relational table."""

    def __init__(self, engine: Engine, *, create_tables: bool = True) -> None:
        self._engine = engine
        self._session_factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
        if create_tables:
            Base.metadata.create_all(engine)

    @classmethod
    def from_url(
        cls, database_url: str, *, timeout_seconds: float = 2.0, echo: bool = False
    ) -> "SqlWindowStore":
        return cls(build_engine(database_url, timeout_seconds=timeout_seconds, echo=echo))

    def record_and_count(
        self, key: str, *, now_ms: int, window_ms: int, limit: int
    ) -> WindowCount:
        if not key:
            raise ValueError("key must be a non-empty string")

        try:
            with self._session_factory() as session:
                row = session.execute(
                    select(RateLimitRow.timestamps, RateLimitRow.version).where(
                        RateLimitRow.key == key
                    )
                ).one_or_none()

                current = list(row.timestamps) if row is not None else []
                timestamps, result = apply_request(
                    current, now_ms=now_ms, window_ms=window_ms, limit=limit
                )
                newest_at = timestamps[-1] if timestamps else now_ms

                if row is None:
                    session.add(
                        RateLimitRow(
                            key=key,
                            timestamps=timestamps,
                            newest_at=newest_at,
                            version=1,
                            created_at=now_ms,
                            last_updated=now_ms,
                        )
                    )
                    session.flush()
                else:
                    updated = session.execute(
                        update(RateLimitRow)
                        .where(RateLimitRow.key == key, RateLimitRow.version == row.version)
                        .values(
                            timestamps=timestamps,
                            newest_at=newest_at,
                            version=row.version + 1,
                            last_updated=now_ms,
                        )
                        .execution_options(synchronize_session=False)
                    )
                    if updated.rowcount != 1:
                        raise StoreContentionError(
                            code="store_contention",
                            message="Rate limit record changed during update",
                            details={"hint": "retry against the current version"},
                        )

                session.commit()
                return result
        except IntegrityError as exc:
            # Another worker inserted the first record for this key
            raise StoreContentionError(
                code="store_contention",
                message="Rate limit record created concurrently",
            ) from exc
        except SQLAlchemyError as exc:
            raise StoreUnavailableError(
                code="store_unavailable",
                message="Rate limit store operation failed",
                details={"context": {"error_type": type(exc).__name__}},
            ) from exc

    def purge_idle(self, threshold_ms: int) -> int:
        try:
            with self._session_factory() as session:
                deleted = session.execute(
                    delete(RateLimitRow)
                    .where(RateLimitRow.newest_at < threshold_ms)
                    .execution_options(synchronize_session=False)
                )
                session.commit()
                return deleted.rowcount or 0
        except SQLAlchemyError as exc:
            raise StoreUnavailableError(
                code="store_unavailable",
                message="Rate limit store purge failed",
            ) from exc

    def count_records(self) -> int:
        try:
            with self._session_factory() as session:
                return session.execute(select(func.count()).select_from(RateLimitRow)).scalar_one()
        except SQLAlchemyError as exc:
            raise StoreUnavailableError(
                code="store_unavailable",
                message="Rate limit store count failed",
            ) from exc

    def get_timestamps(self, key: str) -> list[int] | None:
        """Return the persisted timestamps for ``key`` (inspection and tests)."""
        with self._session_factory() as session:
            row = session.execute(
                select(RateLimitRow.timestamps).where(RateLimitRow.key == key)
            ).one_or_none()
            return list(row.timestamps) if row is not None else None

    def close(self) -> None:
        logger.debug("store.sql.dispose")
        self._engine.dispose()
