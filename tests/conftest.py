"""Shared fixtures: mocked channel, connection and deliveries (no real broker)."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from bowler.config import Binding, ConsumeSettings, ExchangeSettings, ExchangeType, QueueSettings
from bowler.consumer import AmqpConsumer
from bowler.handler import Delivery, ExceptionHandler
from bowler.translator import ExceptionTranslator


class RecordingExceptionHandler(ExceptionHandler):
    """Records every hook call in order."""

    def __init__(self):
        self.calls: list[tuple[str, Exception, Delivery | None]] = []

    def report_error(self, error, delivery):
        self.calls.append(("report_error", error, delivery))

    def render_error(self, error, delivery):
        self.calls.append(("render_error", error, delivery))

    def report_queue(self, error, delivery):
        self.calls.append(("report_queue", error, delivery))

    def render_queue(self, error, delivery):
        self.calls.append(("render_queue", error, delivery))

    @property
    def names(self) -> list[str]:
        return [name for name, _, _ in self.calls]


def make_message(delivery_tag: int = 1, routing_key: str = "order.created.eu", body: bytes = b"{}"):
    message = MagicMock()
    message.body = body
    message.delivery_tag = delivery_tag
    message.routing_key = routing_key
    message.exchange = "orders"
    message.headers = {}
    message.redelivered = False
    message.message_id = f"msg-{delivery_tag}"
    message.content_type = "application/json"
    message.timestamp = None
    message.ack = AsyncMock()
    message.nack = AsyncMock()
    message.reject = AsyncMock()
    return message


@pytest.fixture
def exception_handler() -> RecordingExceptionHandler:
    return RecordingExceptionHandler()


@pytest.fixture
def translator(exception_handler: RecordingExceptionHandler) -> ExceptionTranslator:
    return ExceptionTranslator(exception_handler)


@pytest.fixture
def mock_queue() -> MagicMock:
    queue = MagicMock()
    queue.name = "orders.created"
    queue.bind = AsyncMock()
    queue.consume = AsyncMock(return_value="ctag-1")
    queue.cancel = AsyncMock()
    return queue


@pytest.fixture
def mock_exchange() -> MagicMock:
    exchange = MagicMock()
    exchange.name = "orders"
    exchange.publish = AsyncMock()
    return exchange


@pytest.fixture
def mock_channel(mock_queue: MagicMock, mock_exchange: MagicMock) -> MagicMock:
    channel = MagicMock()
    channel.declare_exchange = AsyncMock(return_value=mock_exchange)
    channel.declare_queue = AsyncMock(return_value=mock_queue)
    channel.set_qos = AsyncMock()
    channel.default_exchange = MagicMock(name="default_exchange")
    return channel


@pytest.fixture
def mock_connection(mock_channel: MagicMock, translator: ExceptionTranslator) -> MagicMock:
    connection = MagicMock()
    connection.connect = AsyncMock()
    connection.close = AsyncMock()
    connection.channel = mock_channel
    connection.translator = translator
    connection.is_connected = True
    connection.is_recovering = False
    connection.active_consumer_count = AsyncMock(return_value=1)
    return connection


@pytest.fixture
def orders_exchange() -> ExchangeSettings:
    return ExchangeSettings("orders", ExchangeType.TOPIC, durable=True)


@pytest.fixture
def orders_queue() -> QueueSettings:
    return QueueSettings("orders.created", durable=True)


@pytest.fixture
def consumer(
    mock_connection: MagicMock,
    orders_exchange: ExchangeSettings,
    orders_queue: QueueSettings,
) -> AmqpConsumer:
    return AmqpConsumer(
        mock_connection,
        orders_exchange,
        orders_queue,
        [Binding("order.created.*")],
        ConsumeSettings(poll_interval=0.01),
    )


def deliver(mock_queue: MagicMock, mock_connection: MagicMock, *messages) -> None:
    """Make queue.consume() push messages through the callback, then end consumption."""

    async def fake_consume(callback, **kwargs):
        for message in messages:
            await callback(message)
        mock_connection.active_consumer_count.return_value = 0
        return "ctag-1"

    mock_queue.consume.side_effect = fake_consume
