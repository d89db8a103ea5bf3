"""
Database Module for EchoPost

This module handles the SQL Server connection and the durable post store.
Each draft is one row: the draft body and the error log are stored as JSON
columns, status and bookkeeping fields as plain columns.

Expected table (name from settings.DB_POST_TABLE):

    CREATE TABLE [dbo].[tbl_Draft_Post] (
        [Draft_Post_ID] NVARCHAR(64) NOT NULL PRIMARY KEY,
        [Draft_JSON]    NVARCHAR(MAX) NOT NULL,
        [Platforms]     NVARCHAR(256) NOT NULL,   -- ",bluesky,twitter,"
        [Status]        NVARCHAR(16) NOT NULL,
        [Created_At]    DATETIME2 NOT NULL,       -- UTC
        [Updated_At]    DATETIME2 NOT NULL,
        [Last_Attempt]  DATETIME2 NULL,
        [Retry_Count]   INT NOT NULL DEFAULT 0,
        [Error_Log]     NVARCHAR(MAX) NOT NULL DEFAULT '[]'
    )
"""

import json
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any

import pyodbc

from config import settings
from data.models import DraftPost, PostRecord, PostFilter, PostStatus, ErrorLogEntry
from utils.exceptions import ConnectionError as DatabaseConnectionError, QueryError, DuplicatePost
from utils.helpers import utc_now
from utils.logger import get_logger

logger = get_logger(__name__)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _as_db_time(value: datetime) -> datetime:
    # DATETIME2 has no offset; store UTC wall time
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _platform_column(draft: DraftPost) -> str:
    return "," + ",".join(p.value for p in draft.platforms) + ","


class DatabaseConnection:
    """SQL Server connection manager and PostStorage implementation."""

    def __init__(self, connection_string: Optional[str] = None, table: Optional[str] = None):
        """Initialize the database connection (lazily connected)."""
        self.conn = None
        self.connection_string = connection_string or settings.DB_CONNECTION_STRING
        self.table = table or settings.DB_POST_TABLE
        pyodbc.pooling = False

    def connect(self) -> bool:
        """
        Establish a connection to the database.

        Returns:
            bool: True if connection was successful, False otherwise.

        Raises:
            DatabaseConnectionError: Re-raised unchanged when raised by the driver layer.
        """
        try:
            self.conn = pyodbc.connect(self.connection_string)
            self.conn.setdecoding(pyodbc.SQL_CHAR, encoding='utf-8')
            logger.info("Successfully connected to database")
            return True
        except DatabaseConnectionError:
            self.conn = None
            raise
        except Exception as e:
            logger.error(f"Failed to connect to database: {e}")
            self.conn = None
            return False

    def close(self) -> None:
        """Close the database connection."""
        try:
            if self.conn:
                self.conn.close()
                logger.info("Database connection closed")
        except Exception as e:
            logger.error(f"Error closing database connection: {e}")
        finally:
            self.conn = None

    def __enter__(self):
        if not self.conn and not self.connect():
            raise DatabaseConnectionError("Could not connect to database")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def execute_query(self, query: str, params: Optional[tuple] = None) -> List[Dict]:
        """
        Execute a SQL query and return the results.

        Args:
            query: The SQL query to execute.
            params: Query parameters (optional).

        Returns:
            List[Dict]: Rows as dictionaries (empty for statements without results).

        Raises:
            DatabaseConnectionError: If no connection can be established.
            QueryError: If the statement fails; the transaction is rolled back.
        """
        if not self.conn and not self.connect():
            raise DatabaseConnectionError("Could not connect to database")

        try:
            cursor = self.conn.cursor()
            if params:
                cursor.execute(query, params)
            else:
                cursor.execute(query)

            # Check if this is a SELECT query with results
            if cursor.description:
                columns = [column[0] for column in cursor.description]
                return [dict(zip(columns, row)) for row in cursor.fetchall()]

            self.conn.commit()
            return []

        except Exception as e:
            logger.error(f"Error executing query: {e}")
            try:
                self.conn.rollback()
            except Exception as rollback_error:
                logger.debug(f"Rollback failed: {rollback_error}")
            raise QueryError(str(e)) from e

    # =========================================================================
    # PostStorage
    # =========================================================================

    def save(self, draft: DraftPost) -> str:
        """Insert a draft as a new pending post row."""
        now = _as_db_time(utc_now())
        query = f"""
        INSERT INTO [dbo].[{self.table}]
            ([Draft_Post_ID], [Draft_JSON], [Platforms], [Status],
             [Created_At], [Updated_At], [Last_Attempt], [Retry_Count], [Error_Log])
        VALUES (?, ?, ?, ?, ?, ?, NULL, 0, '[]')
        """
        try:
            self.execute_query(query, (
                draft.id,
                json.dumps(draft.to_dict()),
                _platform_column(draft),
                PostStatus.PENDING.value,
                now,
                now,
            ))
        except QueryError as e:
            if isinstance(e.__cause__, pyodbc.IntegrityError):
                raise DuplicatePost(f"Post {draft.id} is already stored") from e
            raise
        logger.info(f"Saved draft {draft.id} to database")
        return draft.id

    def update(self, post_id: str, draft: DraftPost) -> None:
        """Replace the stored draft body."""
        query = f"""
        UPDATE [dbo].[{self.table}]
        SET [Draft_JSON] = ?,
            [Platforms] = ?,
            [Updated_At] = ?
        WHERE [Draft_Post_ID] = ?
        """
        self.execute_query(query, (
            json.dumps(draft.to_dict()),
            _platform_column(draft),
            _as_db_time(utc_now()),
            post_id,
        ))

    def delete(self, post_id: str) -> None:
        """Delete a post row."""
        self.execute_query(
            f"DELETE FROM [dbo].[{self.table}] WHERE [Draft_Post_ID] = ?", (post_id,)
        )
        logger.info(f"Deleted draft {post_id} from database")

    def stream(self, post_filter: Optional[PostFilter] = None) -> List[PostRecord]:
        """Load stored posts, newest first."""
        post_filter = post_filter or PostFilter()
        conditions = []
        params: List[Any] = [post_filter.limit]
        if post_filter.status is not None:
            conditions.append("[Status] = ?")
            params.append(post_filter.status.value)
        if post_filter.platform is not None:
            conditions.append("[Platforms] LIKE ?")
            params.append(f"%,{post_filter.platform.value},%")

        where = ("WHERE " + " AND ".join(conditions)) if conditions else ""
        query = f"""
        SELECT TOP (?) [Draft_Post_ID], [Draft_JSON], [Status], [Created_At],
               [Updated_At], [Last_Attempt], [Retry_Count], [Error_Log]
        FROM [dbo].[{self.table}]
        {where}
        ORDER BY [Created_At] DESC
        """
        rows = self.execute_query(query, tuple(params))

        records = []
        for row in rows:
            try:
                records.append(self._row_to_record(row))
            except (ValueError, KeyError, TypeError) as e:
                logger.warning(f"Skipping unreadable post row {row.get('Draft_Post_ID')}: {e}")
        return records

    def record_outcome(self, post_id: str, status: PostStatus,
                       errors: Optional[List[ErrorLogEntry]] = None) -> None:
        """Write the terminal status, append error entries, stamp the attempt."""
        rows = self.execute_query(
            f"SELECT [Error_Log] FROM [dbo].[{self.table}] WHERE [Draft_Post_ID] = ?", (post_id,)
        )
        if not rows:
            raise QueryError(f"No stored post with id {post_id}")

        error_log = json.loads(rows[0].get("Error_Log") or "[]")
        error_log.extend(e.to_dict() for e in errors or [])
        now = _as_db_time(utc_now())

        query = f"""
        UPDATE [dbo].[{self.table}]
        SET [Status] = ?,
            [Error_Log] = ?,
            [Last_Attempt] = ?,
            [Updated_At] = ?,
            [Retry_Count] = [Retry_Count] + ?
        WHERE [Draft_Post_ID] = ?
        """
        self.execute_query(query, (
            status.value,
            json.dumps(error_log),
            now,
            now,
            1 if status == PostStatus.FAILED else 0,
            post_id,
        ))
        logger.info(f"Recorded outcome '{status.value}' for draft {post_id}")

    @staticmethod
    def _row_to_record(row: Dict[str, Any]) -> PostRecord:
        return PostRecord(
            draft=DraftPost.from_dict(json.loads(row["Draft_JSON"])),
            status=PostStatus(row["Status"]),
            created_at=_as_utc(row.get("Created_At")),
            updated_at=_as_utc(row.get("Updated_At")),
            last_attempt=_as_utc(row.get("Last_Attempt")),
            retry_count=int(row.get("Retry_Count") or 0),
            error_log=[ErrorLogEntry.from_dict(e) for e in json.loads(row.get("Error_Log") or "[]")],
        )
