"""
Screenshot archive for posting attempts.

Every outcome carries a PNG of the page as it was when the attempt ended.
ScreenshotArchive writes them to disk with consistent names so operators can
audit what a board showed; ArchivingExecutor plugs it in front of the
posting executor.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from core.models import Job, Outcome, Posting

logger = logging.getLogger(__name__)


@dataclass
class ArchivedScreenshot:
    path: Path
    job_id: str
    posting_id: str
    board: str
    success: bool
    timestamp: datetime


class ScreenshotArchive:
    """
    Writes posting screenshots under base_dir/<job_id>/.

    Usage:
        archive = ScreenshotArchive(Path("./data/screenshots"))
        saved = await archive.save(job, posting, outcome)
    """

    naming_template = "{board}_{posting_id}_{label}_{timestamp}.png"

    def __init__(self, base_dir: Path, max_per_job: int = 50):
        self.base_dir = Path(base_dir)
        self.max_per_job = max_per_job

    def _path_for(self, job: Job, posting: Posting, outcome: Outcome, timestamp: datetime) -> Path:
        board = (posting.board.code or posting.board.name) if posting.board else posting.board_id
        filename = self.naming_template.format(
            board="".join(c if c.isalnum() else "_" for c in str(board)).lower(),
            posting_id=posting.id[:8],
            label="success" if outcome.success else "failed",
            timestamp=timestamp.strftime("%Y%m%d_%H%M%S"),
        )
        return self.base_dir / job.id / filename

    async def save(self, job: Job, posting: Posting, outcome: Outcome) -> Optional[ArchivedScreenshot]:
        if not outcome.screenshot:
            return None
        timestamp = datetime.now()
        path = self._path_for(job, posting, outcome, timestamp)
        if len(self.list_for_job(job.id)) >= self.max_per_job:
            logger.warning(f"Screenshot limit reached for job {job.id}, not saving {path.name}")
            return None
        try:
            await asyncio.to_thread(self._write, path, outcome.screenshot)
        except OSError as e:
            logger.warning(f"Could not save screenshot {path}: {e}")
            return None
        logger.debug(f"Saved screenshot {path}")
        return ArchivedScreenshot(
            path=path,
            job_id=job.id,
            posting_id=posting.id,
            board=posting.board.name if posting.board else posting.board_id,
            success=outcome.success,
            timestamp=timestamp,
        )

    @staticmethod
    def _write(path: Path, data: bytes):
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)

    def list_for_job(self, job_id: str) -> List[Path]:
        directory = self.base_dir / job_id
        if not directory.exists():
            return []
        return sorted(directory.glob("*.png"))


class ArchivingExecutor:
    """Posting executor wrapper that archives each outcome's screenshot."""

    def __init__(self, executor, archive: ScreenshotArchive):
        self.executor = executor
        self.archive = archive

    async def execute(self, job: Job, posting: Posting) -> Outcome:
        outcome = await self.executor.execute(job, posting)
        await self.archive.save(job, posting, outcome)
        return outcome
