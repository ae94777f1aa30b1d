"""Run a consumer as a long-lived worker process."""

import asyncio
import logging
import signal

from .consumer import AmqpConsumer
from .handler import MessageHandler

logger = logging.getLogger(__name__)


def install_signal_handlers(consumer: AmqpConsumer) -> None:
    """Stop the consumer on SIGINT/SIGTERM."""
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, consumer.stop)
        except NotImplementedError:
            # Windows event loops do not support signal handlers
            logger.debug(f"Signal handler for {sig.name} not supported")


async def run_worker(
    consumer: AmqpConsumer,
    handler: MessageHandler,
    handle_signals: bool = True,
) -> None:
    """
    Declare, consume until stopped, then release the connection.

    Args:
        consumer: Idle consumer
        handler: Application message handler
        handle_signals: Stop on SIGINT/SIGTERM

    Raises:
        BowlerError: If the connection or topology declaration fails
    """
    if handle_signals:
        install_signal_handlers(consumer)

    try:
        await consumer.listen(handler)
    finally:
        await consumer.close()
        logger.info(f"Worker finished: {consumer.metrics.to_dict()}")
