"""Message ingestion: extract, deduplicate, store, remember the source.

Only one sync runs at a time. The dedup check is read-then-write, so two
overlapping syncs could both insert the same transaction.
"""

import asyncio
import logging
import time
from uuid import uuid4

from finwise.config import Settings
from finwise.db.sqlite import Database
from finwise.models import BatchIngestSummary, IncomingMessage, IngestResult
from finwise.parsers.hybrid import HybridExtractionPipeline
from finwise.services.dedup import DeduplicationEngine
from finwise.services.progress import update_progress

logger = logging.getLogger(__name__)


class SyncInProgressError(Exception):
    """Raised when a batch sync is requested while another is running."""

    pass


class IngestionService:
    """Runs messages through the extraction pipeline and into the store."""

    def __init__(
        self,
        config: Settings,
        pipeline: HybridExtractionPipeline,
        dedup: DeduplicationEngine,
        db: Database,
    ):
        self.config = config
        self.pipeline = pipeline
        self.dedup = dedup
        self.db = db
        self._sync_lock = asyncio.Lock()

    @property
    def sync_running(self) -> bool:
        return self._sync_lock.locked()

    async def ingest(self, message: IncomingMessage) -> IngestResult:
        """
        Ingest a single message.

        The source is marked processed only when extraction produced a parsed
        transaction; an unparsed transaction is still stored, and the source
        stays eligible for another attempt. Storage errors propagate.
        """
        if self.db.is_message_processed(message.source_id):
            return IngestResult(source_id=message.source_id, status="already_processed")

        result = await self.pipeline.extract(
            message.body,
            subject=message.subject,
            snippet=message.snippet,
            received_at=message.received_at,
        )
        candidate = result.transaction.model_copy(update={"source_id": message.source_id})
        stored = self.dedup.insert(candidate)
        status = "added" if stored.id == candidate.id else "duplicate"

        if result.success:
            self.db.mark_message_processed(message.source_id, stored.id)
        else:
            logger.warning(f"Message {message.source_id} not parsed; left for retry")

        return IngestResult(
            source_id=message.source_id,
            status=status,
            transaction=stored,
            method=result.method,
            error=result.error,
        )

    async def ingest_batch(self, messages: list[IncomingMessage], job_id: str | None = None) -> BatchIngestSummary:
        """
        Ingest messages sequentially with a rate-limit delay between model calls.

        At most `batch_max_items` messages are handled, and the run stops early
        once `batch_time_budget_seconds` is spent. Unhandled source ids are
        returned so the next run can resume them.

        Raises:
            SyncInProgressError: If another batch is running
        """
        if self._sync_lock.locked():
            raise SyncInProgressError("A sync is already running")

        async with self._sync_lock:
            job_id = job_id or f"sync-{uuid4().hex[:8]}"
            started = time.monotonic()
            delay = self.config.batch_rate_limit_ms / 1000
            items = messages[: self.config.batch_max_items]
            remaining = [m.source_id for m in messages[self.config.batch_max_items :]]
            summary = BatchIngestSummary(job_id=job_id)
            called_pipeline = False

            update_progress(job_id, "processing", 0, len(items), f"Starting sync of {len(items)} messages")

            for index, message in enumerate(items):
                if time.monotonic() - started >= self.config.batch_time_budget_seconds:
                    summary.stopped_early = True
                    remaining = [m.source_id for m in items[index:]] + remaining
                    logger.info(f"Sync time budget spent after {index} messages")
                    break

                if called_pipeline and delay > 0:
                    await asyncio.sleep(delay)

                try:
                    result = await self.ingest(message)
                except Exception as e:
                    update_progress(job_id, "error", index, len(items), f"Storage error: {e}")
                    raise

                called_pipeline = result.status != "already_processed"
                summary.processed += 1
                if result.status == "added":
                    summary.added += 1
                elif result.status == "duplicate":
                    summary.duplicates += 1
                else:
                    summary.already_processed += 1
                if result.error:
                    summary.failed += 1
                if result.transaction is not None and not result.transaction.is_parsed:
                    summary.unparsed += 1

                update_progress(
                    job_id,
                    "processing",
                    index + 1,
                    len(items),
                    f"Processed {index + 1}/{len(items)}",
                    details=summary.model_dump(exclude={"remaining_source_ids"}),
                )

            summary.remaining_source_ids = remaining
            summary.elapsed_seconds = time.monotonic() - started
            update_progress(
                job_id,
                "stopped" if remaining else "complete",
                summary.processed,
                len(items),
                f"Added {summary.added}, duplicates {summary.duplicates}, remaining {len(remaining)}",
                details=summary.model_dump(exclude={"remaining_source_ids"}),
            )
            logger.info(f"Sync {job_id} finished: {summary.added} added, {summary.duplicates} duplicates")
            return summary
