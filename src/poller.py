"""
Long-Polling Transport

Pulls updates with getUpdates and hands each to the dispatcher, for
deployments that do not expose a webhook:

    python -m src.poller
"""

import time
import traceback
from typing import Optional

from src.core.config import settings
from src.core.database import create_db_and_tables
from src.core.exceptions import TransferError
from src.core.logging import get_logger, setup_logging
from src.modules.telegram.client import TelegramClient, get_telegram_client
from src.modules.telegram.schemas import TelegramUpdate
from src.pipeline.dispatcher import UpdateDispatcher
from src.pipeline.services import get_watermark_store
from src.pipeline.tasks import CeleryJobQueue

logger = get_logger(__name__)


class UpdatePoller:

    def __init__(
        self,
        client: TelegramClient,
        dispatcher: UpdateDispatcher,
        timeout: int = 50,
        error_delay: float = 5.0
    ):
        self.client = client
        self.dispatcher = dispatcher
        self.timeout = timeout
        self.error_delay = error_delay
        self.offset: Optional[int] = None
        self._running = False

    def poll_once(self) -> int:
        """Fetch one batch and dispatch it. Returns the number of updates seen."""
        updates = self.client.get_updates(offset=self.offset, timeout=self.timeout)
        for update in updates:
            # Acknowledged even when dispatch fails
            self.offset = update.update_id + 1
            self._dispatch(update)
        return len(updates)

    def _dispatch(self, update: TelegramUpdate):
        try:
            outcome = self.dispatcher.dispatch_update(update)
            logger.debug("poller_update_dispatched", update_id=update.update_id, outcome=outcome.value)
        except Exception as e:
            logger.error(
                "poller_dispatch_failed",
                update_id=update.update_id,
                error=str(e),
                error_type=type(e).__name__,
                traceback=traceback.format_exc()
            )

    def run(self):
        self._running = True
        logger.info("poller_started", timeout=self.timeout)
        while self._running:
            try:
                self.poll_once()
            except TransferError as e:
                logger.warning("poller_fetch_failed", retry_in=self.error_delay, **e.to_log_dict())
                time.sleep(self.error_delay)
        logger.info("poller_stopped")

    def stop(self):
        self._running = False


def main():
    setup_logging(log_level=settings.LOG_LEVEL, json_format=settings.LOG_FORMAT_JSON)
    create_db_and_tables()
    client = get_telegram_client()
    poller = UpdatePoller(
        client=client,
        dispatcher=UpdateDispatcher(get_watermark_store(), CeleryJobQueue()),
        timeout=settings.POLL_TIMEOUT_SECONDS,
        error_delay=settings.POLL_ERROR_DELAY_SECONDS,
    )
    try:
        poller.run()
    except KeyboardInterrupt:
        logger.info("poller_interrupted")
    finally:
        client.close()


if __name__ == "__main__":
    main()
