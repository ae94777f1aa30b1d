"""Message handler and exception handler contracts.

Defines the interface applications implement to process deliveries and to
report or render errors.
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from aio_pika.abc import AbstractIncomingMessage

from .errors import BowlerError

if TYPE_CHECKING:
    from .consumer import AmqpConsumer


class DeliveryState(str, Enum):
    """Settlement state of a delivery."""

    PENDING = "pending"
    ACKED = "acked"
    NACKED = "nacked"
    REJECTED = "rejected"


@dataclass
class Delivery:
    """An inbound message and the channel-scoped tag used to settle it."""

    body: bytes
    delivery_tag: int | None
    routing_key: str | None
    exchange: str | None
    headers: dict[str, Any]
    redelivered: bool
    message_id: str | None
    content_type: str | None
    timestamp: datetime | None
    message: AbstractIncomingMessage = field(repr=False)
    state: DeliveryState = DeliveryState.PENDING

    @classmethod
    def from_message(cls, message: AbstractIncomingMessage) -> "Delivery":
        return cls(
            body=message.body,
            delivery_tag=message.delivery_tag,
            routing_key=message.routing_key,
            exchange=message.exchange,
            headers=dict(message.headers or {}),
            redelivered=bool(message.redelivered),
            message_id=message.message_id,
            content_type=message.content_type,
            timestamp=message.timestamp,
            message=message,
        )

    @property
    def is_settled(self) -> bool:
        return self.state is not DeliveryState.PENDING

    def text(self, encoding: str = "utf-8") -> str:
        return self.body.decode(encoding)

    def json(self) -> Any:
        """Decode the body as JSON."""
        return json.loads(self.body.decode("utf-8"))


class MessageHandler(ABC):
    """
    Abstract base class for message handlers.

    Subclasses implement handle(). The consumer acks the delivery when
    handle() returns and leaves it to handle_error() when it raises.

    Hook convention:
    - set_consumer() is called once before consumption starts
    - handle_error() is called after a failure was reported and rendered;
      call consumer.nack() or consumer.reject() there to settle explicitly
    """

    consumer: "AmqpConsumer | None" = None

    def set_consumer(self, consumer: "AmqpConsumer") -> None:
        """Keep a reference to the consumer for explicit ack/nack/reject."""
        self.consumer = consumer

    @abstractmethod
    async def handle(self, delivery: Delivery) -> None:
        """
        Process one delivery.

        Args:
            delivery: The inbound message

        Raises:
            Exception: Any failure; the delivery will not be acked
        """
        pass

    async def handle_error(self, error: Exception, delivery: Delivery) -> None:
        """
        Called after handle() raised.

        Override to nack, reject or retry explicitly.

        Args:
            error: The exception raised by handle()
            delivery: The delivery that failed
        """
        pass


class ExceptionHandler(ABC):
    """
    Application hook for reporting (logging, alerting) and rendering errors.

    report_* is always called before render_* for the same error.
    """

    @abstractmethod
    def report_error(self, error: Exception, delivery: Delivery | None) -> None:
        pass

    @abstractmethod
    def render_error(self, error: Exception, delivery: Delivery | None) -> None:
        pass

    def report_queue(self, error: BowlerError, delivery: Delivery) -> None:
        """Report a broker failure tied to a delivery."""
        self.report_error(error, delivery)

    def render_queue(self, error: BowlerError, delivery: Delivery) -> None:
        """Render a broker failure tied to a delivery."""
        self.render_error(error, delivery)


class LoggingExceptionHandler(ExceptionHandler):
    """Default exception handler that writes to the log."""

    def __init__(self, logger_name: str = "bowler.errors"):
        self.logger = logging.getLogger(logger_name)

    def report_error(self, error: Exception, delivery: Delivery | None) -> None:
        where = _describe(delivery)
        if isinstance(error, BowlerError):
            self.logger.error(
                f"{error}{where} parameters={error.parameters} "
                f"arguments={error.arguments}\n{error.trace}"
            )
        else:
            self.logger.error(f"Unhandled error{where}: {error!r}", exc_info=error)

    def render_error(self, error: Exception, delivery: Delivery | None) -> None:
        self.logger.warning(f"{error.__class__.__name__}{_describe(delivery)}: {error}")


def _describe(delivery: Delivery | None) -> str:
    if delivery is None:
        return ""
    return f" (delivery_tag={delivery.delivery_tag}, routing_key={delivery.routing_key})"
