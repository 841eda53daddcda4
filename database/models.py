# database/models.py - Meeting records read and written by the call coordinator

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Any
from dataclasses import dataclass, field
from datetime import datetime
import aiosqlite
import logging
from contextlib import asynccontextmanager

from error_handler import DatabaseError

logger = logging.getLogger(__name__)

# =============================================================================
# DATA MODELS
# =============================================================================

@dataclass
class Meeting:
    """Meeting domain model"""
    meeting_id: str
    title: str
    organizer_id: str
    attendee_ids: List[str] = field(default_factory=list)
    status: str = "scheduled"
    notes: Optional[str] = None
    created_at: Optional[datetime] = None

@dataclass
class MeetingAccess:
    """The slice of a meeting the coordinator needs to authorize a join"""
    meeting_id: str
    organizer_id: str
    title: str
    attendee_ids: List[str] = field(default_factory=list)

    def is_organizer(self, user_id: str) -> bool:
        return self.organizer_id == user_id

    def is_attendee(self, user_id: str) -> bool:
        return user_id in self.attendee_ids

    def can_join(self, user_id: str) -> bool:
        return self.is_organizer(user_id) or self.is_attendee(user_id)

# =============================================================================
# REPOSITORY INTERFACE
# =============================================================================

class IMeetingRepository(ABC):
    """Meeting collaborator consumed by the room coordinator"""

    @abstractmethod
    async def find_meeting_with_participants(self, meeting_id: str) -> Optional[MeetingAccess]:
        """Load organizer, title and attendee ids; None when the meeting does not exist"""
        pass

    @abstractmethod
    async def set_status(self, meeting_id: str, status: str) -> bool:
        """Persist the meeting status (ongoing / completed)"""
        pass

    @abstractmethod
    async def append_completion_note(self, meeting_id: str, text: str) -> bool:
        """Append a line to the meeting notes"""
        pass

# =============================================================================
# DATABASE CONNECTION MANAGER
# =============================================================================

class DatabaseManager:
    """Database connection manager, one transaction per connection"""

    def __init__(self, db_path: str):
        self.db_path = db_path

    @asynccontextmanager
    async def get_connection(self):
        """Get database connection with proper transaction management"""
        connection = None
        try:
            connection = await aiosqlite.connect(self.db_path)
            await connection.execute("PRAGMA foreign_keys = ON")
            await connection.execute("BEGIN IMMEDIATE")
            yield connection
            await connection.commit()
        except Exception as e:
            if connection:
                await connection.rollback()
            logger.error(f"Database transaction failed: {e}")
            raise
        finally:
            if connection:
                await connection.close()

    async def execute_query(self, query: str, params: tuple = ()) -> List[Dict[str, Any]]:
        """Execute a SELECT query with parameterized inputs"""
        async with self.get_connection() as conn:
            async with conn.execute(query, params) as cursor:
                columns = [desc[0] for desc in cursor.description] if cursor.description else []
                rows = await cursor.fetchall()
                return [dict(zip(columns, row)) for row in rows]

    async def execute_command(self, query: str, params: tuple = ()) -> int:
        """Execute an INSERT/UPDATE/DELETE command"""
        async with self.get_connection() as conn:
            cursor = await conn.execute(query, params)
            return cursor.rowcount

# =============================================================================
# CONCRETE REPOSITORY
# =============================================================================

class MeetingRepository(IMeetingRepository):
    """SQLite-backed meeting repository"""

    def __init__(self, db_manager: DatabaseManager):
        self.db = db_manager

    async def create(self, meeting: Meeting) -> bool:
        """Create a meeting together with its attendee rows"""
        try:
            async with self.db.get_connection() as conn:
                await conn.execute(
                    """
                    INSERT INTO meetings (meeting_id, title, organizer_id, status, notes, created_at)
                    VALUES (?, ?, ?, ?, ?, CURRENT_TIMESTAMP)
                    """,
                    (meeting.meeting_id, meeting.title, meeting.organizer_id, meeting.status, meeting.notes)
                )
                for attendee_id in meeting.attendee_ids:
                    await conn.execute(
                        "INSERT OR IGNORE INTO meeting_attendees (meeting_id, user_id) VALUES (?, ?)",
                        (meeting.meeting_id, attendee_id)
                    )
            return True
        except Exception as e:
            logger.error(f"Failed to create meeting: {e}")
            return False

    async def get_by_id(self, meeting_id: str) -> Optional[Meeting]:
        """Get the full meeting record"""
        rows = await self.db.execute_query(
            """
            SELECT meeting_id, title, organizer_id, status, notes, created_at
            FROM meetings
            WHERE meeting_id = ?
            """,
            (meeting_id,)
        )
        if not rows:
            return None

        row = rows[0]
        return Meeting(
            meeting_id=row['meeting_id'],
            title=row['title'],
            organizer_id=row['organizer_id'],
            attendee_ids=await self._attendee_ids(meeting_id),
            status=row['status'],
            notes=row['notes'],
            created_at=datetime.fromisoformat(row['created_at']) if row['created_at'] else None
        )

    async def _attendee_ids(self, meeting_id: str) -> List[str]:
        rows = await self.db.execute_query(
            "SELECT user_id FROM meeting_attendees WHERE meeting_id = ? ORDER BY user_id",
            (meeting_id,)
        )
        return [row['user_id'] for row in rows]

    async def find_meeting_with_participants(self, meeting_id: str) -> Optional[MeetingAccess]:
        """Lookup used by join; a storage failure is not the same as a missing meeting"""
        try:
            rows = await self.db.execute_query(
                "SELECT meeting_id, title, organizer_id FROM meetings WHERE meeting_id = ?",
                (meeting_id,)
            )
            if not rows:
                return None

            row = rows[0]
            return MeetingAccess(
                meeting_id=row['meeting_id'],
                organizer_id=row['organizer_id'],
                title=row['title'],
                attendee_ids=await self._attendee_ids(meeting_id)
            )
        except aiosqlite.Error as e:
            logger.error(f"Failed to load meeting {meeting_id}: {e}")
            raise DatabaseError("Could not load meeting")

    async def set_status(self, meeting_id: str, status: str) -> bool:
        try:
            rows_affected = await self.db.execute_command(
                "UPDATE meetings SET status = ? WHERE meeting_id = ?",
                (status, meeting_id)
            )
            return rows_affected > 0
        except Exception as e:
            logger.error(f"Failed to set status of meeting {meeting_id}: {e}")
            return False

    async def append_completion_note(self, meeting_id: str, text: str) -> bool:
        try:
            rows_affected = await self.db.execute_command(
                """
                UPDATE meetings
                SET notes = CASE
                    WHEN notes IS NULL OR notes = '' THEN ?
                    ELSE notes || char(10) || ?
                END
                WHERE meeting_id = ?
                """,
                (text, text, meeting_id)
            )
            return rows_affected > 0
        except Exception as e:
            logger.error(f"Failed to append note to meeting {meeting_id}: {e}")
            return False

class DIContainer:
    """Dependency injection container"""

    def __init__(self, db_path: str):
        self._db_manager = DatabaseManager(db_path)
        self._repositories = {}

    def get_meeting_repository(self) -> MeetingRepository:
        """Get meeting repository instance"""
        if 'meeting' not in self._repositories:
            self._repositories['meeting'] = MeetingRepository(self._db_manager)
        return self._repositories['meeting']

    def get_db_manager(self) -> DatabaseManager:
        """Get database manager instance"""
        return self._db_manager
