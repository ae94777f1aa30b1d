"""Factory functions for creating consumers and producers from settings."""

import logging

from .connection import AmqpConnection
from .consumer import AmqpConsumer
from .handler import ExceptionHandler
from .producer import AmqpProducer
from .settings import BowlerSettings, get_settings
from .translator import ExceptionTranslator

logger = logging.getLogger(__name__)


def create_connection(
    settings: BowlerSettings | None = None,
    exception_handler: ExceptionHandler | None = None,
) -> AmqpConnection:
    """
    Create an unconnected broker connection.

    Args:
        settings: Settings; defaults to get_settings()
        exception_handler: Application exception handler; defaults to logging

    Returns:
        AmqpConnection
    """
    settings = settings or get_settings()
    return AmqpConnection(
        config=settings.get_amqp_config(),
        translator=ExceptionTranslator(exception_handler),
    )


def create_consumer(
    settings: BowlerSettings | None = None,
    exception_handler: ExceptionHandler | None = None,
) -> AmqpConsumer:
    """
    Create a consumer with its own connection.

    Args:
        settings: Settings; defaults to get_settings()
        exception_handler: Application exception handler; defaults to logging

    Returns:
        AmqpConsumer, idle until declare() or listen()
    """
    settings = settings or get_settings()
    connection = create_connection(settings, exception_handler)

    logger.debug(
        f"Creating consumer for exchange={settings.exchange_name or '<default>'}, "
        f"queue={settings.queue_name or '<broker-named>'}"
    )
    return AmqpConsumer(
        connection=connection,
        exchange=settings.get_exchange_settings(),
        queue=settings.get_queue_settings(),
        bindings=settings.get_bindings(),
        consume_settings=settings.get_consume_settings(),
    )


def create_producer(
    settings: BowlerSettings | None = None,
    exception_handler: ExceptionHandler | None = None,
) -> AmqpProducer:
    """Create a standalone producer with its own connection."""
    settings = settings or get_settings()
    connection = create_connection(settings, exception_handler)
    return AmqpProducer(connection, settings.get_exchange_settings())


def create_producer_from_consumer(consumer: AmqpConsumer) -> AmqpProducer:
    """
    Create a producer sharing an existing consumer's connection.

    Publishes to the consumer's exchange.
    """
    return AmqpProducer(consumer.connection, consumer.exchange, consumer.translator)
