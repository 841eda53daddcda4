# database/__init__.py - Database package initialization
import logging

import aiosqlite

from .models import (
    Meeting, MeetingAccess,
    IMeetingRepository, MeetingRepository,
    DatabaseManager, DIContainer
)

logger = logging.getLogger(__name__)

SCHEMA_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS meetings (
        meeting_id TEXT PRIMARY KEY,
        title TEXT NOT NULL,
        organizer_id TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'scheduled'
            CHECK (status IN ('scheduled', 'ongoing', 'completed', 'cancelled')),
        notes TEXT,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS meeting_attendees (
        meeting_id TEXT NOT NULL REFERENCES meetings(meeting_id) ON DELETE CASCADE,
        user_id TEXT NOT NULL,
        PRIMARY KEY (meeting_id, user_id)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_meeting_attendees_user ON meeting_attendees(user_id)",
]

async def init_database(db_path: str):
    """Create the meeting tables if they do not exist yet"""
    async with aiosqlite.connect(db_path) as db:
        for statement in SCHEMA_STATEMENTS:
            await db.execute(statement)
        await db.commit()

    logger.info(f"Database schema ready at {db_path}")

__all__ = [
    'Meeting', 'MeetingAccess',
    'IMeetingRepository', 'MeetingRepository',
    'DatabaseManager', 'DIContainer',
    'SCHEMA_STATEMENTS', 'init_database'
]
