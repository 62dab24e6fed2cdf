"""Gamification schema.

Creates users, habits, habit_logs, xp_ledger, badge_definitions,
user_badges, challenges and challenge_participants.

Revision ID: 001_gamification_schema
Revises:
Create Date: 2026-10-18
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_gamification_schema"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Users ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS users (
            id BIGSERIAL PRIMARY KEY,
            display_name VARCHAR(64),
            total_xp BIGINT NOT NULL DEFAULT 0,
            level INTEGER NOT NULL DEFAULT 1,
            week_start SMALLINT NOT NULL DEFAULT 1,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)

    # --- Habits ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS habits (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            title VARCHAR(200) NOT NULL,
            current_streak INTEGER NOT NULL DEFAULT 0,
            longest_streak INTEGER NOT NULL DEFAULT 0,
            last_completed_at DATE,
            is_archived BOOLEAN NOT NULL DEFAULT false,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_habits_user_id ON habits(user_id)")

    # --- Habit Logs ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS habit_logs (
            id BIGSERIAL PRIMARY KEY,
            habit_id BIGINT NOT NULL REFERENCES habits(id) ON DELETE CASCADE,
            log_date DATE NOT NULL,
            value INTEGER NOT NULL DEFAULT 1,
            completed BOOLEAN NOT NULL DEFAULT true,
            notes TEXT,
            xp_earned INTEGER NOT NULL DEFAULT 0,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT habit_logs_habit_id_log_date_key UNIQUE (habit_id, log_date)
        )
    """)

    # --- XP Ledger ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS xp_ledger (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            amount INTEGER NOT NULL,
            source VARCHAR(32) NOT NULL,
            source_id VARCHAR(128),
            idempotency_key VARCHAR(256) NOT NULL UNIQUE,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_xp_ledger_user_id ON xp_ledger(user_id)")
    op.execute("CREATE INDEX IF NOT EXISTS ix_xp_ledger_user_id_source ON xp_ledger(user_id, source)")
    op.execute("CREATE INDEX IF NOT EXISTS ix_xp_ledger_created_at ON xp_ledger(created_at)")

    # --- Badge Definitions ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS badge_definitions (
            id SERIAL PRIMARY KEY,
            name VARCHAR(128) NOT NULL UNIQUE,
            description TEXT NOT NULL,
            category VARCHAR(32) NOT NULL,
            tier VARCHAR(16) NOT NULL,
            rarity VARCHAR(16) NOT NULL,
            threshold INTEGER NOT NULL,
            xp_reward INTEGER NOT NULL DEFAULT 0,
            metric VARCHAR(32) NOT NULL,
            icon VARCHAR(16),
            color VARCHAR(16),
            sort_order INTEGER NOT NULL DEFAULT 0,
            is_active BOOLEAN NOT NULL DEFAULT true,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)

    # --- User Badges ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_badges (
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            badge_id INTEGER NOT NULL REFERENCES badge_definitions(id) ON DELETE CASCADE,
            progress INTEGER NOT NULL DEFAULT 0,
            state VARCHAR(16) NOT NULL DEFAULT 'locked',
            earned_at TIMESTAMPTZ,
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            PRIMARY KEY (user_id, badge_id),
            CONSTRAINT user_badges_progress_check CHECK (progress >= 0)
        )
    """)

    # --- Challenges ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS challenges (
            id SERIAL PRIMARY KEY,
            title VARCHAR(200) NOT NULL,
            description TEXT,
            type VARCHAR(16) NOT NULL DEFAULT 'global',
            target_type VARCHAR(32) NOT NULL,
            target_value INTEGER NOT NULL,
            difficulty VARCHAR(16) NOT NULL DEFAULT 'medium',
            xp_reward INTEGER NOT NULL DEFAULT 0,
            start_date TIMESTAMPTZ NOT NULL,
            end_date TIMESTAMPTZ,
            status VARCHAR(16) NOT NULL DEFAULT 'upcoming',
            created_by BIGINT REFERENCES users(id) ON DELETE SET NULL,
            is_active BOOLEAN NOT NULL DEFAULT true,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT challenges_target_value_check CHECK (target_value > 0)
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_challenges_status_end_date ON challenges(status, end_date)")

    # --- Challenge Participants ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS challenge_participants (
            challenge_id INTEGER NOT NULL REFERENCES challenges(id) ON DELETE CASCADE,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            progress INTEGER NOT NULL DEFAULT 0,
            state VARCHAR(16) NOT NULL DEFAULT 'active',
            joined_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            completed_at TIMESTAMPTZ,
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            PRIMARY KEY (challenge_id, user_id)
        )
    """)
    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_challenge_participants_user_id_state "
        "ON challenge_participants(user_id, state)"
    )


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS challenge_participants CASCADE")
    op.execute("DROP TABLE IF EXISTS challenges CASCADE")
    op.execute("DROP TABLE IF EXISTS user_badges CASCADE")
    op.execute("DROP TABLE IF EXISTS badge_definitions CASCADE")
    op.execute("DROP TABLE IF EXISTS xp_ledger CASCADE")
    op.execute("DROP TABLE IF EXISTS habit_logs CASCADE")
    op.execute("DROP TABLE IF EXISTS habits CASCADE")
    op.execute("DROP TABLE IF EXISTS users CASCADE")
