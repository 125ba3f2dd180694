"""Initial schema

Revision ID: 001
Revises:
Create Date: 2026-02-01

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Create memo table
    op.execute("""
        CREATE TABLE IF NOT EXISTS memo (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            uid VARCHAR(64) NOT NULL UNIQUE,
            created_ts BIGINT NOT NULL,
            updated_ts BIGINT NOT NULL,
            category VARCHAR(32) NOT NULL DEFAULT 'daily',
            target_date VARCHAR(10),
            completion_status VARCHAR(16) NOT NULL DEFAULT 'pending',
            content TEXT NOT NULL DEFAULT '',
            pinned BOOLEAN NOT NULL DEFAULT 0,
            archived BOOLEAN NOT NULL DEFAULT 0
        )
    """)

    op.execute("CREATE INDEX IF NOT EXISTS idx_memo_category ON memo (category)")
    op.execute("CREATE INDEX IF NOT EXISTS idx_memo_target_date ON memo (target_date)")
    op.execute("CREATE INDEX IF NOT EXISTS idx_memo_created_ts ON memo (created_ts)")

    # Create daily_plan table
    op.execute("""
        CREATE TABLE IF NOT EXISTS daily_plan (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            plan_date VARCHAR(10) NOT NULL,
            title TEXT NOT NULL,
            description TEXT DEFAULT '',
            category VARCHAR(32) DEFAULT 'daily',
            completed BOOLEAN NOT NULL DEFAULT 0,
            priority INTEGER DEFAULT 0,
            created_ts BIGINT NOT NULL,
            updated_ts BIGINT NOT NULL,
            completed_ts BIGINT
        )
    """)

    op.execute("CREATE INDEX IF NOT EXISTS idx_daily_plan_date ON daily_plan (plan_date)")


def downgrade() -> None:
    op.execute("DROP INDEX IF EXISTS idx_daily_plan_date")
    op.execute("DROP TABLE IF EXISTS daily_plan")
    op.execute("DROP INDEX IF EXISTS idx_memo_created_ts")
    op.execute("DROP INDEX IF EXISTS idx_memo_target_date")
    op.execute("DROP INDEX IF EXISTS idx_memo_category")
    op.execute("DROP TABLE IF EXISTS memo")
