"""SQLAlchemy database models for the Tesla Notes embedded store and client state."""

from sqlalchemy import (
    BigInteger, Boolean, Column, Index, Integer, String, Text, DateTime
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func


Base = declarative_base()

# Preferences and credentials live in their own database so that they exist
# in browser deployments where there is no embedded store.
ClientStateBase = declarative_base()


class MemoRow(Base):
    """Model for memo table."""
    __tablename__ = 'memo'

    id = Column(Integer, primary_key=True, autoincrement=True)
    uid = Column(String(64), nullable=False, unique=True)
    created_ts = Column(BigInteger, nullable=False)
    updated_ts = Column(BigInteger, nullable=False)
    category = Column(String(32), nullable=False, default='daily')
    target_date = Column(String(10), nullable=True)  # YYYY-MM-DD
    completion_status = Column(String(16), nullable=False, default='pending')
    content = Column(Text, nullable=False, default='')
    pinned = Column(Boolean, nullable=False, default=False)
    archived = Column(Boolean, nullable=False, default=False)

    __table_args__ = (
        Index('idx_memo_category', 'category'),
        Index('idx_memo_target_date', 'target_date'),
        Index('idx_memo_created_ts', 'created_ts'),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "uid": self.uid,
            "created_ts": self.created_ts,
            "updated_ts": self.updated_ts,
            "category": self.category,
            "target_date": self.target_date,
            "completion_status": self.completion_status,
            "content": self.content,
            "pinned": bool(self.pinned),
            "archived": bool(self.archived),
        }


class DailyPlanRow(Base):
    """Model for daily_plan table."""
    __tablename__ = 'daily_plan'

    id = Column(Integer, primary_key=True, autoincrement=True)
    plan_date = Column(String(10), nullable=False)
    title = Column(Text, nullable=False)
    description = Column(Text, nullable=True, default='')
    category = Column(String(32), nullable=True, default='daily')
    completed = Column(Boolean, nullable=False, default=False)
    priority = Column(Integer, nullable=True, default=0)
    created_ts = Column(BigInteger, nullable=False)
    updated_ts = Column(BigInteger, nullable=False)
    completed_ts = Column(BigInteger, nullable=True)

    __table_args__ = (
        Index('idx_daily_plan_date', 'plan_date'),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "plan_date": self.plan_date,
            "title": self.title,
            "description": self.description,
            "category": self.category or 'daily',
            "completed": bool(self.completed),
            "priority": self.priority or 0,
            "created_ts": self.created_ts,
            "updated_ts": self.updated_ts,
            "completed_ts": self.completed_ts,
        }


class ClientSetting(ClientStateBase):
    """Model for client_settings table (client-local key/value storage)."""
    __tablename__ = 'client_settings'

    key = Column(String(128), primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime, nullable=False, server_default=func.now(), onupdate=func.now())


class CloudCredential(ClientStateBase):
    """Model for cloud_credentials table."""
    __tablename__ = 'cloud_credentials'

    profile = Column(String(64), primary_key=True)
    url = Column(String(512), nullable=False)
    api_key = Column(Text, nullable=False)  # Encrypted
    changes_url = Column(String(512), nullable=True)
    updated_at = Column(DateTime, nullable=False, server_default=func.now(), onupdate=func.now())
