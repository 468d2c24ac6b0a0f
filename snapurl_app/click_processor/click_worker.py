"""
Click Processor Worker

This worker consumes click events published by the redirect route and records
them through ClickRecorder.

Architecture:
- Consumes messages from the queue in batches
- Each event is recorded in its own session and transaction
- A failing event is logged and acknowledged; it never blocks the batch
- Runs standalone (python -m snapurl_app.click_processor.click_worker)
  or embedded in the API process (see main.py lifespan)
"""

import asyncio
import logging
import signal
import sys
from typing import List, Optional

from snapurl_app.config import settings
from snapurl_app.database.connection import SessionLocal
from snapurl_app.exceptions import LinkUnavailableError
from snapurl_app.geo.strategies import GeoLookupStrategy
from snapurl_app.log_config import configure_logging
from snapurl_app.queue.models import ClickEvent
from snapurl_app.queue.strategies import QueueStrategy
from snapurl_app.services.click_recorder import ClickRecorder

logger = logging.getLogger(__name__)


class ClickWorker:
    """
    Click processor worker with batch consumption.

    Features:
    - Batch consumption (settings.queue_batch_size)
    - Per-event transactions: one bad event does not roll back the others
    - Strategy pattern for queue and geo lookup
    """

    def __init__(
        self,
        queue: QueueStrategy,
        db_session_factory=SessionLocal,
        geo: Optional[GeoLookupStrategy] = None,
        queue_name: Optional[str] = None,
        batch_size: Optional[int] = None,
    ):
        """
        Initialize worker with dependencies.

        Args:
            queue: Queue strategy for consuming messages
            db_session_factory: Factory for creating database sessions
            geo: Geo lookup strategy passed to the recorder
        """
        self.queue = queue
        self.db_session_factory = db_session_factory
        self.geo = geo
        self.queue_name = queue_name or settings.queue_name
        self.batch_size = batch_size or settings.queue_batch_size
        self.block_ms = settings.queue_block_ms
        self.idle_sleep = 0.2
        self.running = False
        self.processed_count = 0
        self.failed_count = 0

    async def run(self):
        """Consume until stop() is called or the task is cancelled"""
        self.running = True
        logger.info(f"Click worker started (queue={self.queue_name}, batch size={self.batch_size})")

        while self.running:
            try:
                events = await self.queue.consume(
                    queue_name=self.queue_name,
                    batch_size=self.batch_size,
                    block_time=self.block_ms
                )
                if events:
                    await self.process_batch(events)
                else:
                    await asyncio.sleep(self.idle_sleep)

            except asyncio.CancelledError:
                logger.info("Click worker task cancelled")
                break
            except Exception as e:
                logger.error(f"Error processing click batch: {e}")
                await asyncio.sleep(1)

        self.running = False
        logger.info(f"Click worker stopped. Processed {self.processed_count}, failed {self.failed_count}")

    async def process_batch(self, events: List[ClickEvent]) -> int:
        """
        Record a batch of click events.

        Every event is acknowledged, recorded or not: click delivery is
        best-effort and a poisoned event must not be redelivered forever.

        Returns:
            Number of events recorded
        """
        recorded = 0
        for event in events:
            if await self._record(event):
                recorded += 1

        message_ids = [event.message_id for event in events if event.message_id]
        if message_ids:
            await self.queue.ack(self.queue_name, message_ids)

        self.processed_count += recorded
        self.failed_count += len(events) - recorded
        logger.debug(f"Recorded {recorded}/{len(events)} clicks. Total: {self.processed_count}")
        return recorded

    async def _record(self, event: ClickEvent) -> bool:
        db = self.db_session_factory()
        try:
            await ClickRecorder(db, geo=self.geo).record_event(event)
            return True
        except LinkUnavailableError:
            db.rollback()
            logger.info(f"Skipped click for unavailable link {event.link_id} ({event.short_code})")
            return False
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to record click for link {event.link_id}: {e}")
            return False
        finally:
            db.close()

    async def drain(self) -> int:
        """Process everything currently queued, then return (used by tests and scripts)."""
        total = 0
        while True:
            events = await self.queue.consume(
                queue_name=self.queue_name,
                batch_size=self.batch_size,
                block_time=0
            )
            if not events:
                return total
            total += await self.process_batch(events)

    def _signal_handler(self, signum, frame):
        """Handle signals for graceful shutdown"""
        logger.info(f"Received signal {signum}. Shutting down gracefully...")
        self.stop()

    def stop(self):
        """Stop the worker"""
        self.running = False


async def main():
    """
    Main entry point for the standalone click worker.

    Usage:
        python -m snapurl_app.click_processor.click_worker
    """
    configure_logging()
    logger.info(f"SnapURL click worker | environment={settings.environment} "
                f"queue={settings.queue_backend} geo={settings.geo_backend}")

    from snapurl_app.geo.factory import GeoLookupFactory, GeoBackend
    from snapurl_app.queue.factory import QueueFactory, QueueBackend

    queue = QueueFactory.create(QueueBackend(settings.queue_backend))
    geo = GeoLookupFactory.create(GeoBackend(settings.geo_backend))

    worker = ClickWorker(queue=queue, geo=geo)
    signal.signal(signal.SIGINT, worker._signal_handler)
    signal.signal(signal.SIGTERM, worker._signal_handler)

    try:
        await worker.run()
    except Exception as e:
        logger.critical(f"Fatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
