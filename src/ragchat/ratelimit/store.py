"""Relational rate-limit store built on SQLAlchemy."""

from __future__ import annotations

from sqlalchemy import Boolean, Column, Float, Integer, MetaData, String, Table, case, create_engine, delete, select
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import SQLAlchemyError

from ragchat.errors import UnknownFailure
from ragchat.metrics.observability import get_logger
from ragchat.models import RateWindow

metadata = MetaData()

rate_limits = Table(
    "rate_limits",
    metadata,
    Column("user_id", String(255), primary_key=True),
    Column("endpoint", String(255), primary_key=True),
    Column("request_count", Integer, nullable=False, default=0),
    # epoch seconds
    Column("window_start", Float, nullable=False),
    # outcome of the most recent increment
    Column("last_admitted", Boolean, nullable=False, default=True),
)


def _insert_for(dialect: str):
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert

        return insert
    if dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert

        return insert
    raise ValueError(f"Unsupported rate limit database dialect: {dialect}")


class SqlRateLimitStore:
    """Rate windows kept in a ``rate_limits`` table.

    Each request is one ``INSERT ... ON CONFLICT DO UPDATE ... RETURNING``
    statement, so the decide-and-write step happens inside the database under
    the row lock for that key. The same statement records whether the request
    was admitted in ``last_admitted``, so the returned row alone tells an
    admitted request apart from a denied one while ``request_count`` never
    exceeds the limit.
    """

    def __init__(self, engine: Engine, *, create_schema: bool = True) -> None:
        self._engine = engine
        self._insert = _insert_for(engine.dialect.name)
        self._logger = get_logger("ratelimit.sql")
        if create_schema:
            metadata.create_all(engine)

    @classmethod
    def from_url(cls, url: str, *, timeout_seconds: float = 5.0) -> "SqlRateLimitStore":
        backend = make_url(url).get_backend_name()
        if backend == "sqlite":
            connect_args: dict[str, object] = {"timeout": timeout_seconds, "check_same_thread": False}
        elif backend == "postgresql":
            connect_args = {
                "connect_timeout": max(1, int(timeout_seconds)),
                "options": f"-c statement_timeout={int(timeout_seconds * 1000)}",
            }
        else:
            connect_args = {}
        engine = create_engine(url, connect_args=connect_args, pool_pre_ping=True)
        return cls(engine)

    def increment(
        self,
        user_id: str,
        endpoint: str,
        *,
        now: float,
        limit: int,
        window_seconds: float,
    ) -> tuple[RateWindow, bool]:
        expired = rate_limits.c.window_start <= now - window_seconds
        stmt = self._insert(rate_limits).values(
            user_id=user_id,
            endpoint=endpoint,
            request_count=1,
            window_start=now,
            last_admitted=True,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[rate_limits.c.user_id, rate_limits.c.endpoint],
            set_={
                "request_count": case(
                    (expired, 1),
                    (rate_limits.c.request_count < limit, rate_limits.c.request_count + 1),
                    else_=rate_limits.c.request_count,
                ),
                "window_start": case((expired, now), else_=rate_limits.c.window_start),
                "last_admitted": case(
                    (expired, True),
                    (rate_limits.c.request_count < limit, True),
                    else_=False,
                ),
            },
        ).returning(rate_limits.c.request_count, rate_limits.c.window_start, rate_limits.c.last_admitted)
        try:
            with self._engine.begin() as conn:
                row = conn.execute(stmt).one()
        except SQLAlchemyError as exc:
            self._logger.error("rate_limit.store_error", user_id=user_id, endpoint=endpoint, detail=str(exc))
            raise UnknownFailure("rate limit store unavailable") from exc
        window = RateWindow(
            user_id=user_id,
            endpoint=endpoint,
            request_count=int(row.request_count),
            window_start=float(row.window_start),
        )
        return window, bool(row.last_admitted)

    def get(self, user_id: str, endpoint: str) -> RateWindow | None:
        stmt = select(rate_limits.c.request_count, rate_limits.c.window_start).where(
            rate_limits.c.user_id == user_id,
            rate_limits.c.endpoint == endpoint,
        )
        with self._engine.connect() as conn:
            row = conn.execute(stmt).first()
        if row is None:
            return None
        return RateWindow(
            user_id=user_id,
            endpoint=endpoint,
            request_count=int(row.request_count),
            window_start=float(row.window_start),
        )

    def purge_before(self, horizon: float) -> int:
        with self._engine.begin() as conn:
            result = conn.execute(delete(rate_limits).where(rate_limits.c.window_start < horizon))
        return int(result.rowcount or 0)
