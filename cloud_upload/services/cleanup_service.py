# services/cleanup_service.py
import asyncio
import logging
from datetime import timedelta
from typing import Optional

from cloud_upload.services.resumable_service import ResumableUploader

logger = logging.getLogger(__name__)

# Back-off after a failed cleanup run
ERROR_RETRY_DELAY = 60


class CleanupService:
    def __init__(
        self,
        uploader: ResumableUploader,
        interval: timedelta = timedelta(hours=6),
        max_age: Optional[timedelta] = None,
    ):
        self.uploader = uploader
        self.interval = interval
        self.max_age = max_age

    async def run_once(self) -> int:
        """Remove expired upload records and abort their orphaned sessions"""
        removed = await self.uploader.cleanup(self.max_age)
        logger.info(f"Upload cleanup completed. Removed {removed} records")
        return removed

    async def start_cleanup_scheduler(self):
        """Start the cleanup scheduler"""
        while True:
            try:
                await self.run_once()
                await asyncio.sleep(self.interval.total_seconds())
            except asyncio.CancelledError:
                logger.info("Cleanup scheduler cancelled")
                break
            except Exception as e:
                logger.error(f"Error in cleanup scheduler: {e}")
                await asyncio.sleep(ERROR_RETRY_DELAY)
