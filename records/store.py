"""
records/store.py -- SQLAlchemy-backed persistence for budgets, allocations, forum data and check-ins.

Uses SQLAlchemy Core (not ORM) so the dataclasses in records/models.py remain
the authoritative domain representation. Swapping SQLite for PostgreSQL is a
connection string change, not a rewrite.

Pattern: Repository + Data Mapper. RecordStore is the repository; the
_row_to_* functions are the mappers. Route handlers never touch SQL directly.

Security: all queries use bound parameters. No f-strings in SQL.

Failure policy: the methods used by request handlers (fetch_page,
create_forum_post, get_forum_post, get_check_in, create_checkin_note)
log the driver exception and raise core.errors.DataAccessError, whose message
is generic. ping() logs and returns False. Nothing else is retried or swallowed.

Usage:
    store = RecordStore()                               # DATABASE_URL default
    store = RecordStore("postgresql://user:pw@host/db") # PostgreSQL
    rows, page = store.fetch_page(build_query(params, ALLOCATIONS))
    post = store.create_forum_post(topic_id=3, content="Hi", api_key_id=7)
    store.close()
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Column,
    Date,
    DateTime,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    Text,
    create_engine,
    event,
    select,
    text,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from core.config import get_settings
from core.errors import DataAccessError
from listing.builder import ListingQuery, PageResult
from records.models import Allocation, Budget, CheckIn, CheckInNote, ForumPost, ForumTopic

logger = logging.getLogger("checkin.records")

# Dialects that support a snapshot isolation level for the count/data pair.
# SQLite serializes writers and reads the count and the page back to back.
_SNAPSHOT_DIALECTS = {"postgresql", "mysql", "mariadb"}

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

budgets = Table(
    "budgets",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False),
    Column("fiscal_year_start", Date, nullable=False),
    Column("grant_id", Integer),
    Column("department_id", Integer),
    Column("user_id", Integer),  # budget owner
    Column("deleted_at", String(32)),  # NULL = live row
)

budget_allocations = Table(
    "budget_allocations",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("budget_id", Integer, nullable=False),
    Column("transaction_date", Date, nullable=False),
    Column("amount", Numeric(12, 2, asdecimal=False), nullable=False),
    Column("description", Text),
    Column("created_by_user_id", Integer),
    Column("created_at", String(32), nullable=False),
    Column("deleted_at", String(32)),
)

forum_topics = Table(
    "forum_topics",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("title", String(255), nullable=False),
    Column("is_locked", Integer, nullable=False, server_default="0"),  # boolean stored as 0/1
    Column("last_post_at", String(32)),
    Column("last_post_user_id", Integer),
    Column("created_at", String(32), nullable=False),
    Column("deleted_at", String(32)),
)

forum_posts = Table(
    "forum_posts",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("topic_id", Integer, nullable=False),
    Column("content", Text, nullable=False),
    Column("user_id", Integer),  # NULL for posts made with an API key
    Column("created_by_api_key_id", Integer),
    Column("created_at", String(32), nullable=False),
    Column("deleted_at", String(32)),
)

check_ins = Table(
    "check_ins",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("site_id", Integer, nullable=False),
    Column("first_name", String(100), nullable=False),
    Column("last_name", String(100), nullable=False),
    Column("check_in_time", DateTime, nullable=False),
    Column("client_email", String(255)),
    Column("notified_staff_id", Integer),
    Column("created_at", String(32), nullable=False),
    Column("deleted_at", String(32)),
)

checkin_notes = Table(
    "checkin_notes",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("check_in_id", Integer, nullable=False),
    Column("note_text", Text, nullable=False),
    Column("created_by_api_key_id", Integer),
    Column("created_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class RecordStore:
    def __init__(self, db_url: Optional[str] = None) -> None:
        db_url = db_url or get_settings().database_url
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            # FastAPI runs sync handlers in a thread pool, so a pooled
            # connection may be used from a thread other than its creator.
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        metadata.create_all(self.engine)

    def _read_connection(self) -> Connection:
        conn = self.engine.connect()
        if self.engine.dialect.name in _SNAPSHOT_DIALECTS:
            conn.execution_options(isolation_level="REPEATABLE READ")
        return conn

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError:
            logger.exception("Database health check failed")
            return False
        return True

    # ------------------------------------------------------------------
    # Paginated listings
    # ------------------------------------------------------------------

    def fetch_page(self, query: ListingQuery) -> tuple[list[dict], PageResult]:
        """Run the COUNT and DATA statements of a listing query in one transaction.

        Returns (rows, pagination). Each row is a plain dict keyed by the
        registry's selected column labels.
        """
        name = query.registry.name
        with self._read_connection() as conn, conn.begin():
            try:
                total = conn.execute(query.count_statement()).scalar_one()
            except SQLAlchemyError as exc:
                logger.exception("Database error counting %s", name)
                raise DataAccessError() from exc
            try:
                rows = conn.execute(query.data_statement()).fetchall()
            except SQLAlchemyError as exc:
                logger.exception("Database error fetching %s page %d", name, query.page.page)
                raise DataAccessError() from exc
        return [dict(r._mapping) for r in rows], query.result(int(total))

    # ------------------------------------------------------------------
    # Budgets and allocations
    # ------------------------------------------------------------------

    def create_budget(self, budget: Budget) -> int:
        """Insert a new budget and return its assigned database ID."""
        with self.engine.connect() as conn:
            result = conn.execute(
                budgets.insert().values(
                    name=budget.name,
                    fiscal_year_start=budget.fiscal_year_start,
                    grant_id=budget.grant_id,
                    department_id=budget.department_id,
                    user_id=budget.user_id,
                    deleted_at=budget.deleted_at,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def create_allocation(self, allocation: Allocation) -> int:
        """Insert a new allocation and return its assigned database ID."""
        with self.engine.connect() as conn:
            result = conn.execute(
                budget_allocations.insert().values(
                    budget_id=allocation.budget_id,
                    transaction_date=allocation.transaction_date,
                    amount=allocation.amount,
                    description=allocation.description,
                    created_by_user_id=allocation.created_by_user_id,
                    created_at=allocation.created_at or _now_iso(),
                    deleted_at=allocation.deleted_at,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def soft_delete_budget(self, budget_id: int) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(
                budgets.update()
                .where((budgets.c.id == budget_id) & budgets.c.deleted_at.is_(None))
                .values(deleted_at=_now_iso())
            )
            conn.commit()
        return result.rowcount > 0

    def soft_delete_allocation(self, allocation_id: int) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(
                budget_allocations.update()
                .where((budget_allocations.c.id == allocation_id) & budget_allocations.c.deleted_at.is_(None))
                .values(deleted_at=_now_iso())
            )
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Forum
    # ------------------------------------------------------------------

    def create_topic(self, topic: ForumTopic) -> int:
        """Insert a new forum topic and return its assigned database ID."""
        with self.engine.connect() as conn:
            result = conn.execute(
                forum_topics.insert().values(
                    title=topic.title,
                    is_locked=1 if topic.is_locked else 0,
                    created_at=topic.created_at or _now_iso(),
                    deleted_at=topic.deleted_at,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_topic(self, topic_id: int) -> Optional[ForumTopic]:
        with self.engine.connect() as conn:
            row = conn.execute(forum_topics.select().where(forum_topics.c.id == topic_id)).fetchone()
        return _row_to_topic(row) if row is not None else None

    def soft_delete_topic(self, topic_id: int) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(
                forum_topics.update()
                .where((forum_topics.c.id == topic_id) & forum_topics.c.deleted_at.is_(None))
                .values(deleted_at=_now_iso())
            )
            conn.commit()
        return result.rowcount > 0

    def insert_post(self, post: ForumPost) -> int:
        """Insert a post as-is (seeding and tests). API posts go through create_forum_post()."""
        with self.engine.connect() as conn:
            result = conn.execute(
                forum_posts.insert().values(
                    topic_id=post.topic_id,
                    content=post.content,
                    user_id=post.user_id,
                    created_by_api_key_id=post.created_by_api_key_id,
                    created_at=post.created_at or _now_iso(),
                    deleted_at=post.deleted_at,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def soft_delete_post(self, post_id: int) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(
                forum_posts.update()
                .where((forum_posts.c.id == post_id) & forum_posts.c.deleted_at.is_(None))
                .values(deleted_at=_now_iso())
            )
            conn.commit()
        return result.rowcount > 0

    def create_forum_post(self, topic_id: int, content: str, api_key_id: int) -> Optional[ForumPost]:
        """Create a post on behalf of an API key.

        Runs in one transaction:
          1. the topic must exist, be unlocked and not soft-deleted;
          2. the post is inserted with user_id NULL and the key id recorded;
          3. the topic's last_post_at is stamped and last_post_user_id cleared.

        Returns the stored post, or None when the topic is missing or locked
        (nothing is written in that case).
        """
        now = _now_iso()
        try:
            with self.engine.begin() as conn:
                open_topic = conn.execute(
                    select(forum_topics.c.id).where(
                        (forum_topics.c.id == topic_id)
                        & (forum_topics.c.is_locked == 0)
                        & forum_topics.c.deleted_at.is_(None)
                    )
                ).fetchone()
                if open_topic is None:
                    return None
                result = conn.execute(
                    forum_posts.insert().values(
                        topic_id=topic_id,
                        content=content,
                        user_id=None,
                        created_by_api_key_id=api_key_id,
                        created_at=now,
                    )
                )
                post_id = result.inserted_primary_key[0]
                conn.execute(
                    forum_topics.update()
                    .where(forum_topics.c.id == topic_id)
                    .values(last_post_at=now, last_post_user_id=None)
                )
        except SQLAlchemyError as exc:
            logger.exception("Database error creating forum post in topic %d", topic_id)
            raise DataAccessError() from exc

        post = self.get_forum_post(post_id)
        if post is None:
            logger.error("Forum post %d missing right after commit", post_id)
            raise DataAccessError("Failed to retrieve the created post after insertion.")
        return post

    def get_forum_post(self, post_id: int) -> Optional[ForumPost]:
        try:
            with self.engine.connect() as conn:
                row = conn.execute(forum_posts.select().where(forum_posts.c.id == post_id)).fetchone()
        except SQLAlchemyError as exc:
            logger.exception("Database error fetching forum post %d", post_id)
            raise DataAccessError() from exc
        return _row_to_post(row) if row is not None else None

    # ------------------------------------------------------------------
    # Check-ins
    # ------------------------------------------------------------------

    def create_check_in(self, check_in: CheckIn) -> int:
        """Insert a check-in and return its assigned database ID."""
        with self.engine.connect() as conn:
            result = conn.execute(
                check_ins.insert().values(
                    site_id=check_in.site_id,
                    first_name=check_in.first_name,
                    last_name=check_in.last_name,
                    check_in_time=check_in.check_in_time,
                    client_email=check_in.client_email,
                    notified_staff_id=check_in.notified_staff_id,
                    created_at=check_in.created_at or _now_iso(),
                    deleted_at=check_in.deleted_at,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_check_in(self, check_in_id: int) -> Optional[CheckIn]:
        """Return a live check-in, or None if it is missing or soft-deleted."""
        try:
            with self.engine.connect() as conn:
                row = conn.execute(
                    check_ins.select().where((check_ins.c.id == check_in_id) & check_ins.c.deleted_at.is_(None))
                ).fetchone()
        except SQLAlchemyError as exc:
            logger.exception("Database error fetching check-in %d", check_in_id)
            raise DataAccessError() from exc
        return _row_to_check_in(row) if row is not None else None

    def soft_delete_check_in(self, check_in_id: int) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(
                check_ins.update()
                .where((check_ins.c.id == check_in_id) & check_ins.c.deleted_at.is_(None))
                .values(deleted_at=_now_iso())
            )
            conn.commit()
        return result.rowcount > 0

    def create_checkin_note(self, check_in_id: int, note_text: str, api_key_id: int) -> Optional[CheckInNote]:
        """Attach a note to a live check-in on behalf of an API key.

        The existence check and the insert share one transaction. Returns the
        stored note, or None when the check-in is missing or soft-deleted.
        """
        try:
            with self.engine.begin() as conn:
                live = conn.execute(
                    select(check_ins.c.id).where((check_ins.c.id == check_in_id) & check_ins.c.deleted_at.is_(None))
                ).fetchone()
                if live is None:
                    return None
                result = conn.execute(
                    checkin_notes.insert().values(
                        check_in_id=check_in_id,
                        note_text=note_text,
                        created_by_api_key_id=api_key_id,
                        created_at=_now_iso(),
                    )
                )
                note_id = result.inserted_primary_key[0]
        except SQLAlchemyError as exc:
            logger.exception("Database error adding note to check-in %d", check_in_id)
            raise DataAccessError() from exc

        note = self.get_checkin_note(note_id)
        if note is None:
            logger.error("Check-in note %d missing right after commit", note_id)
            raise DataAccessError("Failed to retrieve the created note after insertion.")
        return note

    def get_checkin_note(self, note_id: int) -> Optional[CheckInNote]:
        try:
            with self.engine.connect() as conn:
                row = conn.execute(checkin_notes.select().where(checkin_notes.c.id == note_id)).fetchone()
        except SQLAlchemyError as exc:
            logger.exception("Database error fetching check-in note %d", note_id)
            raise DataAccessError() from exc
        return _row_to_note(row) if row is not None else None

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_topic(row) -> ForumTopic:
    return ForumTopic(
        id=row.id,
        title=row.title,
        is_locked=bool(row.is_locked),
        last_post_at=row.last_post_at,
        last_post_user_id=row.last_post_user_id,
        created_at=row.created_at,
        deleted_at=row.deleted_at,
    )


def _row_to_post(row) -> ForumPost:
    return ForumPost(
        id=row.id,
        topic_id=row.topic_id,
        content=row.content,
        user_id=row.user_id,
        created_by_api_key_id=row.created_by_api_key_id,
        created_at=row.created_at,
        deleted_at=row.deleted_at,
    )


def _row_to_check_in(row) -> CheckIn:
    return CheckIn(
        id=row.id,
        site_id=row.site_id,
        first_name=row.first_name,
        last_name=row.last_name,
        check_in_time=row.check_in_time,
        client_email=row.client_email,
        notified_staff_id=row.notified_staff_id,
        created_at=row.created_at,
        deleted_at=row.deleted_at,
    )


def _row_to_note(row) -> CheckInNote:
    return CheckInNote(
        id=row.id,
        check_in_id=row.check_in_id,
        note_text=row.note_text,
        created_by_api_key_id=row.created_by_api_key_id,
        created_at=row.created_at,
    )
