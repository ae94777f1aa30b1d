"""Abstract base classes for AMQP consumers and producers."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel

logger = logging.getLogger(__name__)


class ConsumerState(str, Enum):
    """Consumption loop lifecycle states."""

    IDLE = "idle"
    DECLARED = "declared"  # Topology declared, not yet consuming
    CONSUMING = "consuming"
    STOPPED = "stopped"


@dataclass
class ConsumerMetrics:
    """Counters for a single consumer instance."""

    messages_processed: int = 0
    messages_succeeded: int = 0
    messages_failed: int = 0
    messages_acked: int = 0
    messages_nacked: int = 0
    messages_rejected: int = 0
    total_processing_time: float = 0.0
    last_message_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "processed": self.messages_processed,
            "succeeded": self.messages_succeeded,
            "failed": self.messages_failed,
            "acked": self.messages_acked,
            "nacked": self.messages_nacked,
            "rejected": self.messages_rejected,
            "avg_processing_time": (
                self.total_processing_time / self.messages_processed
                if self.messages_processed > 0
                else 0
            ),
            "last_message_at": (
                self.last_message_at.isoformat() if self.last_message_at else None
            ),
        }


@dataclass
class PublishResult:
    """Result of a publish operation."""

    success: bool
    exchange: str | None = None
    routing_key: str | None = None
    message_id: str | None = None
    error: str | None = None


class BaseConsumer(ABC):
    """
    Abstract base class for message consumers.

    Implementations must handle:
    - Topology declaration
    - Message acknowledgment/rejection
    - Cooperative shutdown
    - Metrics collection
    """

    @property
    @abstractmethod
    def state(self) -> ConsumerState:
        """Current lifecycle state."""
        pass

    @property
    @abstractmethod
    def metrics(self) -> ConsumerMetrics:
        """Get consumer metrics."""
        pass

    @abstractmethod
    async def declare(self) -> None:
        """Declare exchange, queue and bindings."""
        pass

    @abstractmethod
    async def listen(self, handler: Any) -> None:
        """Consume until stopped or cancelled."""
        pass

    @abstractmethod
    def stop(self) -> None:
        """Signal the consumption loop to exit."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Stop and release broker resources."""
        pass

    async def __aenter__(self) -> "BaseConsumer":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


class BaseProducer(ABC):
    """Abstract base class for message producers."""

    @abstractmethod
    async def publish(
        self,
        body: bytes | str | dict[str, Any] | BaseModel,
        routing_key: str = "",
        headers: dict[str, Any] | None = None,
        message_id: str | None = None,
        persistent: bool = True,
    ) -> PublishResult:
        """
        Publish a message to the producer's exchange.

        Args:
            body: Message body (bytes, str, dict or Pydantic model)
            routing_key: Routing key
            headers: Optional message headers
            message_id: Optional message ID
            persistent: Persistent (2) or transient (1) delivery mode

        Returns:
            PublishResult with publish outcome
        """
        pass

    async def publish_batch(
        self,
        bodies: list[Any],
        routing_key: str = "",
    ) -> list[PublishResult]:
        """Publish several messages in order with the same routing key."""
        results = [await self.publish(body, routing_key=routing_key) for body in bodies]

        success_count = sum(1 for r in results if r.success)
        logger.info(f"Published {success_count}/{len(bodies)} messages")
        return results
