"""Database operations for the Tesla Notes embedded store and client state."""

import os
import time
from datetime import date, datetime, timedelta
from typing import List, Optional
from uuid import uuid4

from sqlalchemy import and_, create_engine, func, or_, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from shared.config import get_client_state_url, get_database_url
from shared.db_models import Base, ClientSetting, ClientStateBase, CloudCredential, DailyPlanRow, MemoRow
from shared.errors import NotFound
from shared.models import DEFAULT_CATEGORY, DailyPlan, Memo, next_completion_status


def now_ts() -> int:
    """Current time in whole seconds since the epoch."""
    return int(time.time())


def _build_engine(database_url: str):
    kwargs = {"pool_pre_ping": True}
    if database_url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if ":memory:" in database_url or database_url in ("sqlite://", "sqlite:///"):
            kwargs["poolclass"] = StaticPool
    return create_engine(database_url, **kwargs)


def _ensure_sqlite_dir(engine) -> None:
    database = engine.url.database
    if engine.url.get_backend_name() == "sqlite" and database and database != ":memory:":
        directory = os.path.dirname(os.path.abspath(database))
        os.makedirs(directory, exist_ok=True)


def _day_bounds(day: str) -> tuple:
    """Local-time epoch bounds [start, end) of a YYYY-MM-DD day."""
    start = datetime.combine(date.fromisoformat(day), datetime.min.time())
    end = start + timedelta(days=1)
    return int(start.timestamp()), int(end.timestamp())


class DatabaseOperations:
    """Handles all database operations for the embedded memo store."""

    def __init__(self, database_url: Optional[str] = None):
        """Initialize database connection."""
        self.database_url = database_url or get_database_url()
        self.engine = _build_engine(self.database_url)
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)

    def create_tables(self):
        """Create all tables in the database."""
        _ensure_sqlite_dir(self.engine)
        Base.metadata.create_all(bind=self.engine)

    def get_session(self) -> Session:
        """Get a new database session."""
        return self.SessionLocal()

    # Memo Operations

    def _get_memo_row(self, session: Session, memo_id: int) -> MemoRow:
        row = session.get(MemoRow, memo_id)
        if row is None:
            raise NotFound(f"Memo {memo_id} not found", {"id": memo_id})
        return row

    def create_memo(
        self,
        content: str,
        category: Optional[str] = None,
        target_date: Optional[str] = None
    ) -> Memo:
        """
        Insert a new memo. The store assigns id, uid and timestamps.

        Args:
            content: Memo text
            category: Category name, defaults to ``daily``
            target_date: Optional YYYY-MM-DD date the memo belongs to

        Returns:
            The created Memo
        """
        ts = now_ts()
        with self.get_session() as session:
            row = MemoRow(
                uid=str(uuid4()),
                created_ts=ts,
                updated_ts=ts,
                category=category or DEFAULT_CATEGORY,
                target_date=target_date,
                completion_status='pending',
                content=content,
                pinned=False,
                archived=False,
            )
            session.add(row)
            session.commit()
            return Memo.from_dict(row.to_dict())

    def get_memo(self, memo_id: int) -> Memo:
        """
        Get a memo by id.

        Raises:
            NotFound: If no memo has this id
        """
        with self.get_session() as session:
            return Memo.from_dict(self._get_memo_row(session, memo_id).to_dict())

    def get_memos(
        self,
        limit: int = 100,
        offset: int = 0,
        category: Optional[str] = None
    ) -> List[Memo]:
        """
        List non-archived memos, pinned first, newest first.

        Args:
            limit: Maximum number of memos to return
            offset: Number of memos to skip
            category: Optional category filter

        Returns:
            List of Memo records
        """
        with self.get_session() as session:
            stmt = select(MemoRow).where(MemoRow.archived.is_(False))
            if category:
                stmt = stmt.where(MemoRow.category == category)
            stmt = stmt.order_by(
                MemoRow.pinned.desc(),
                MemoRow.created_ts.desc()
            ).limit(limit).offset(offset)

            result = session.execute(stmt)
            return [Memo.from_dict(row.to_dict()) for row in result.scalars().all()]

    def update_memo(
        self,
        memo_id: int,
        content: Optional[str] = None,
        category: Optional[str] = None,
        target_date: Optional[str] = None,
        completion_status: Optional[str] = None,
        pinned: Optional[bool] = None,
        archived: Optional[bool] = None
    ) -> Memo:
        """
        Partially update a memo. Fields left as None are not changed;
        ``updated_ts`` is always refreshed.

        Raises:
            NotFound: If no memo has this id
        """
        with self.get_session() as session:
            row = self._get_memo_row(session, memo_id)

            if content is not None:
                row.content = content
            if category is not None:
                row.category = category
            if target_date is not None:
                row.target_date = target_date
            if completion_status is not None:
                row.completion_status = completion_status
            if pinned is not None:
                row.pinned = pinned
            if archived is not None:
                row.archived = archived
            row.updated_ts = now_ts()

            session.commit()
            return Memo.from_dict(row.to_dict())

    def delete_memo(self, memo_id: int) -> None:
        """
        Delete a memo.

        Raises:
            NotFound: If no memo has this id
        """
        with self.get_session() as session:
            deleted = session.query(MemoRow).filter(MemoRow.id == memo_id).delete()
            session.commit()
            if not deleted:
                raise NotFound(f"Memo {memo_id} not found", {"id": memo_id})

    def toggle_memo_status(self, memo_id: int) -> Memo:
        """Advance a memo's completion status within a single transaction."""
        with self.get_session() as session:
            row = self._get_memo_row(session, memo_id)
            row.completion_status = next_completion_status(row.completion_status)
            row.updated_ts = now_ts()
            session.commit()
            return Memo.from_dict(row.to_dict())

    def search_memos(self, query: str, limit: int = 50) -> List[Memo]:
        """Case-insensitive substring search over non-archived memo content."""
        with self.get_session() as session:
            stmt = select(MemoRow).where(
                MemoRow.content.ilike(f"%{query}%"),
                MemoRow.archived.is_(False)
            ).order_by(
                MemoRow.created_ts.desc()
            ).limit(limit)

            result = session.execute(stmt)
            return [Memo.from_dict(row.to_dict()) for row in result.scalars().all()]

    def get_memos_by_date(self, day: str) -> List[Memo]:
        """Memos targeted at ``day`` or created on it (local time)."""
        start, end = _day_bounds(day)
        with self.get_session() as session:
            stmt = select(MemoRow).where(
                or_(
                    MemoRow.target_date == day,
                    and_(MemoRow.created_ts >= start, MemoRow.created_ts < end)
                ),
                MemoRow.archived.is_(False)
            ).order_by(
                MemoRow.pinned.desc(),
                MemoRow.created_ts.desc()
            )

            result = session.execute(stmt)
            return [Memo.from_dict(row.to_dict()) for row in result.scalars().all()]

    def count_memos(self) -> int:
        with self.get_session() as session:
            return session.execute(select(func.count()).select_from(MemoRow)).scalar()

    def get_memo_batch(self, offset: int, limit: int) -> List[Memo]:
        """
        Read memos in creation order, archived ones included.

        Used by the migration tool, which copies every row.
        """
        with self.get_session() as session:
            stmt = select(MemoRow).order_by(
                MemoRow.created_ts.asc(),
                MemoRow.id.asc()
            ).limit(limit).offset(offset)

            result = session.execute(stmt)
            return [Memo.from_dict(row.to_dict()) for row in result.scalars().all()]

    # Daily Plan Operations

    def _get_plan_row(self, session: Session, plan_id: int) -> DailyPlanRow:
        row = session.get(DailyPlanRow, plan_id)
        if row is None:
            raise NotFound(f"Plan {plan_id} not found", {"id": plan_id})
        return row

    def create_plan(
        self,
        plan_date: str,
        title: str,
        description: Optional[str] = None,
        category: Optional[str] = None,
        priority: Optional[int] = None
    ) -> DailyPlan:
        """Insert a new daily plan."""
        ts = now_ts()
        with self.get_session() as session:
            row = DailyPlanRow(
                plan_date=plan_date,
                title=title,
                description=description,
                category=category or DEFAULT_CATEGORY,
                completed=False,
                priority=priority or 0,
                created_ts=ts,
                updated_ts=ts,
            )
            session.add(row)
            session.commit()
            return DailyPlan.from_dict(row.to_dict())

    def get_plans_by_date(self, plan_date: str) -> List[DailyPlan]:
        """Plans for a date, highest priority first, then oldest first."""
        with self.get_session() as session:
            stmt = select(DailyPlanRow).where(
                DailyPlanRow.plan_date == plan_date
            ).order_by(
                DailyPlanRow.priority.desc(),
                DailyPlanRow.created_ts.asc(),
                DailyPlanRow.id.asc()
            )

            result = session.execute(stmt)
            return [DailyPlan.from_dict(row.to_dict()) for row in result.scalars().all()]

    def get_all_plans(self) -> List[DailyPlan]:
        with self.get_session() as session:
            stmt = select(DailyPlanRow).order_by(DailyPlanRow.created_ts.asc(), DailyPlanRow.id.asc())
            result = session.execute(stmt)
            return [DailyPlan.from_dict(row.to_dict()) for row in result.scalars().all()]

    def count_plans(self) -> int:
        with self.get_session() as session:
            return session.execute(select(func.count()).select_from(DailyPlanRow)).scalar()

    def toggle_plan_completion(self, plan_id: int) -> DailyPlan:
        """Flip a plan's completed flag, stamping or clearing ``completed_ts``."""
        ts = now_ts()
        with self.get_session() as session:
            row = self._get_plan_row(session, plan_id)
            if row.completed:
                row.completed = False
                row.completed_ts = None
            else:
                row.completed = True
                row.completed_ts = ts
            row.updated_ts = ts
            session.commit()
            return DailyPlan.from_dict(row.to_dict())

    def update_plan(
        self,
        plan_id: int,
        title: Optional[str] = None,
        description: Optional[str] = None
    ) -> DailyPlan:
        with self.get_session() as session:
            row = self._get_plan_row(session, plan_id)
            if title is not None:
                row.title = title
            if description is not None:
                row.description = description
            row.updated_ts = now_ts()
            session.commit()
            return DailyPlan.from_dict(row.to_dict())

    def delete_plan(self, plan_id: int) -> None:
        with self.get_session() as session:
            deleted = session.query(DailyPlanRow).filter(DailyPlanRow.id == plan_id).delete()
            session.commit()
            if not deleted:
                raise NotFound(f"Plan {plan_id} not found", {"id": plan_id})


class ClientStateOperations:
    """Client-local key/value settings and encrypted cloud credentials."""

    def __init__(self, database_url: Optional[str] = None):
        self.database_url = database_url or get_client_state_url()
        self.engine = _build_engine(self.database_url)
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)

    def create_tables(self):
        _ensure_sqlite_dir(self.engine)
        ClientStateBase.metadata.create_all(bind=self.engine)

    def get_session(self) -> Session:
        return self.SessionLocal()

    def get_setting(self, key: str) -> Optional[str]:
        with self.get_session() as session:
            setting = session.get(ClientSetting, key)
            return setting.value if setting else None

    def set_setting(self, key: str, value: str) -> None:
        with self.get_session() as session:
            setting = session.get(ClientSetting, key)
            if setting:
                setting.value = value
                setting.updated_at = datetime.utcnow()
            else:
                session.add(ClientSetting(key=key, value=value))
            session.commit()

    def delete_setting(self, key: str) -> bool:
        with self.get_session() as session:
            deleted = session.query(ClientSetting).filter(ClientSetting.key == key).delete()
            session.commit()
            return bool(deleted)

    def store_cloud_credentials(
        self,
        url: str,
        api_key: str,
        encryption_service: 'EncryptionService',
        changes_url: Optional[str] = None,
        profile: str = "default"
    ) -> None:
        """
        Store or replace hosted backend credentials; the API key is encrypted.

        Args:
            url: Base URL of the hosted backend
            api_key: API key (will be encrypted)
            encryption_service: Encryption service for encrypting the key
            changes_url: Optional change-feed URL
            profile: Credential profile name
        """
        with self.get_session() as session:
            credential = session.get(CloudCredential, profile)
            encrypted_key = encryption_service.encrypt(api_key)

            if credential:
                credential.url = url
                credential.api_key = encrypted_key
                credential.changes_url = changes_url
                credential.updated_at = datetime.utcnow()
            else:
                session.add(CloudCredential(
                    profile=profile,
                    url=url,
                    api_key=encrypted_key,
                    changes_url=changes_url
                ))
            session.commit()

    def get_cloud_credentials(
        self,
        encryption_service: 'EncryptionService',
        profile: str = "default"
    ) -> Optional[dict]:
        """Retrieve and decrypt hosted backend credentials, or None if absent."""
        with self.get_session() as session:
            credential = session.get(CloudCredential, profile)
            if not credential:
                return None
            return {
                "url": credential.url,
                "api_key": encryption_service.decrypt(credential.api_key),
                "changes_url": credential.changes_url,
            }
