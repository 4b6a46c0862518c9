"""
Database module for the Job Multi-Poster API.
Implements the posting repository on SQLite with async support.
"""

import json
import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional

import aiosqlite

from core.errors import RepositoryUnavailableError
from core.models import Board, Job, JobStatus, Posting, PostingStatus
from core.repository import PostingRepository, check_posting_fields

SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS boards (
        id TEXT PRIMARY KEY,
        code TEXT,
        name TEXT NOT NULL,
        base_url TEXT NOT NULL,
        post_url TEXT NOT NULL,
        selectors_json TEXT,
        location TEXT,
        enabled BOOLEAN DEFAULT 1
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS jobs (
        id TEXT PRIMARY KEY,
        title TEXT NOT NULL,
        description TEXT NOT NULL,
        location TEXT,
        company TEXT,
        contact_email TEXT,
        salary_min INTEGER,
        salary_max INTEGER,
        employment_type TEXT,
        department TEXT,
        status TEXT NOT NULL DEFAULT 'pending',
        created_at TEXT,
        updated_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS postings (
        id TEXT PRIMARY KEY,
        job_id TEXT NOT NULL,
        board_id TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'pending',
        external_url TEXT,
        error_message TEXT,
        posted_at TEXT,
        retry_count INTEGER DEFAULT 0,
        last_attempt_at TEXT,
        created_at TEXT,
        UNIQUE (job_id, board_id),
        FOREIGN KEY (job_id) REFERENCES jobs(id),
        FOREIGN KEY (board_id) REFERENCES boards(id)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_postings_job_id ON postings(job_id)",
    "CREATE INDEX IF NOT EXISTS idx_postings_status ON postings(status)",
]


def _dt(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _row_to_board(row) -> Board:
    return Board(
        id=row["id"],
        code=row["code"],
        name=row["name"],
        base_url=row["base_url"],
        post_url=row["post_url"],
        selectors=json.loads(row["selectors_json"]) if row["selectors_json"] else None,
        location=row["location"],
        enabled=bool(row["enabled"]),
    )


def _row_to_job(row) -> Job:
    return Job(
        id=row["id"],
        title=row["title"],
        description=row["description"],
        location=row["location"] or "",
        company=row["company"] or "",
        contact_email=row["contact_email"] or "",
        salary_min=row["salary_min"],
        salary_max=row["salary_max"],
        employment_type=row["employment_type"],
        department=row["department"],
        status=JobStatus(row["status"]),
        created_at=_parse_dt(row["created_at"]) or datetime.now(),
    )


def _row_to_posting(row, board: Optional[Board] = None) -> Posting:
    return Posting(
        id=row["id"],
        job_id=row["job_id"],
        board_id=row["board_id"],
        status=PostingStatus(row["status"]),
        external_url=row["external_url"],
        error_message=row["error_message"],
        posted_at=_parse_dt(row["posted_at"]),
        retry_count=row["retry_count"] or 0,
        last_attempt_at=_parse_dt(row["last_attempt_at"]),
        board=board,
    )


class SqliteRepository(PostingRepository):
    """
    aiosqlite-backed repository.

    Every call opens its own connection, so each update_posting is one
    committed statement and later reads see it. Connection and SQL errors are
    raised as RepositoryUnavailableError.
    """

    def __init__(self, db_path):
        self.db_path = Path(db_path)

    @asynccontextmanager
    async def get_db(self):
        """Get a database connection."""
        try:
            db = await aiosqlite.connect(self.db_path)
        except (aiosqlite.Error, OSError) as e:
            raise RepositoryUnavailableError(f"Cannot open database {self.db_path}: {e}")
        db.row_factory = aiosqlite.Row
        try:
            yield db
        except aiosqlite.IntegrityError:
            raise
        except aiosqlite.Error as e:
            raise RepositoryUnavailableError(f"Database error: {e}")
        finally:
            await db.close()

    async def init_database(self, boards: Iterable[Board] = ()):
        """Create the schema and seed boards that are not there yet."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        async with self.get_db() as db:
            for statement in SCHEMA:
                await db.execute(statement)
            for board in boards:
                await db.execute(
                    """
                    INSERT OR IGNORE INTO boards
                    (id, code, name, base_url, post_url, selectors_json, location, enabled)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        board.id, board.code, board.name, board.base_url, board.post_url,
                        json.dumps(board.selectors) if board.selectors else None,
                        board.location, int(board.enabled),
                    ),
                )
            await db.commit()

    # ============== Boards ==============

    async def list_boards(self) -> List[Board]:
        async with self.get_db() as db:
            cursor = await db.execute("SELECT * FROM boards ORDER BY name")
            return [_row_to_board(row) for row in await cursor.fetchall()]

    async def _boards_by_id(self, db) -> Dict[str, Board]:
        cursor = await db.execute("SELECT * FROM boards")
        return {row["id"]: _row_to_board(row) for row in await cursor.fetchall()}

    # ============== Jobs ==============

    async def save_job(self, job: Job) -> Job:
        async with self.get_db() as db:
            now = datetime.now().isoformat()
            await db.execute(
                """
                INSERT OR REPLACE INTO jobs
                (id, title, description, location, company, contact_email, salary_min, salary_max,
                 employment_type, department, status, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    job.id, job.title, job.description, job.location, job.company, job.contact_email,
                    job.salary_min, job.salary_max, job.employment_type, job.department,
                    job.status.value, _dt(job.created_at), now,
                ),
            )
            await db.commit()
        return job

    async def load_job(self, job_id: str) -> Optional[Job]:
        async with self.get_db() as db:
            cursor = await db.execute("SELECT * FROM jobs WHERE id = ?", (job_id,))
            row = await cursor.fetchone()
            return _row_to_job(row) if row else None

    async def update_job_status(self, job_id: str, status: JobStatus) -> None:
        async with self.get_db() as db:
            cursor = await db.execute(
                "UPDATE jobs SET status = ?, updated_at = ? WHERE id = ?",
                (JobStatus(status).value, datetime.now().isoformat(), job_id),
            )
            await db.commit()
            if cursor.rowcount == 0:
                raise KeyError(f"Job {job_id} not found")

    # ============== Postings ==============

    async def create_postings(self, job_id: str, board_ids: Iterable[str]) -> List[Posting]:
        created = []
        async with self.get_db() as db:
            boards = await self._boards_by_id(db)
            now = datetime.now().isoformat()
            for board_id in dict.fromkeys(board_ids):
                posting = Posting(id=str(uuid.uuid4()), job_id=job_id, board_id=board_id)
                cursor = await db.execute(
                    """
                    INSERT OR IGNORE INTO postings (id, job_id, board_id, status, retry_count, created_at)
                    VALUES (?, ?, ?, ?, 0, ?)
                    """,
                    (posting.id, job_id, board_id, PostingStatus.PENDING.value, now),
                )
                if cursor.rowcount:
                    posting.board = boards.get(board_id)
                    created.append(posting)
            await db.commit()
        return created

    async def _select_postings(self, where: str, params: tuple) -> List[Posting]:
        async with self.get_db() as db:
            boards = await self._boards_by_id(db)
            cursor = await db.execute(f"SELECT * FROM postings WHERE {where} ORDER BY created_at", params)
            return [_row_to_posting(row, boards.get(row["board_id"])) for row in await cursor.fetchall()]

    async def load_pending_postings(self, job_id: str) -> List[Posting]:
        return await self._select_postings(
            "job_id = ? AND status IN (?, ?)",
            (job_id, PostingStatus.PENDING.value, PostingStatus.POSTING.value),
        )

    async def load_postings(self, job_id: str) -> List[Posting]:
        return await self._select_postings("job_id = ?", (job_id,))

    async def load_posting(self, posting_id: str) -> Optional[Posting]:
        postings = await self._select_postings("id = ?", (posting_id,))
        return postings[0] if postings else None

    async def update_posting(self, posting_id: str, **fields) -> Posting:
        check_posting_fields(fields)
        values = {}
        for key, value in fields.items():
            if key == "status":
                value = PostingStatus(value).value
            elif isinstance(value, datetime):
                value = value.isoformat()
            values[key] = value

        async with self.get_db() as db:
            if values:
                assignments = ", ".join(f"{key} = ?" for key in values)
                cursor = await db.execute(
                    f"UPDATE postings SET {assignments} WHERE id = ?",
                    (*values.values(), posting_id),
                )
                await db.commit()
                if cursor.rowcount == 0:
                    raise KeyError(f"Posting {posting_id} not found")

        posting = await self.load_posting(posting_id)
        if posting is None:
            raise KeyError(f"Posting {posting_id} not found")
        return posting
