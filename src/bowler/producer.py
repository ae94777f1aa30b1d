"""AMQP producer for publishing messages to an exchange."""

import json
import logging
from typing import Any

import aio_pika
from aio_pika.abc import AbstractExchange
from pydantic import BaseModel

from .base import BaseProducer, PublishResult
from .config import ExchangeSettings
from .connection import AmqpConnection
from .topology import TopologyDeclarator
from .translator import ExceptionTranslator

logger = logging.getLogger(__name__)


def encode_body(body: bytes | str | dict[str, Any] | BaseModel) -> tuple[bytes, str]:
    """Serialize a message body; returns (bytes, content type)."""
    if isinstance(body, bytes):
        return body, "application/octet-stream"
    if isinstance(body, str):
        return body.encode("utf-8"), "text/plain"
    if isinstance(body, BaseModel):
        return body.model_dump_json().encode(), "application/json"
    return json.dumps(body).encode(), "application/json"


class AmqpProducer(BaseProducer):
    """
    AMQP producer publishing to a single exchange.

    Usage:
        producer = AmqpProducer(connection, ExchangeSettings("orders", ExchangeType.TOPIC))
        await producer.declare()
        result = await producer.publish({"id": 1}, routing_key="order.created.eu")
    """

    def __init__(
        self,
        connection: AmqpConnection,
        exchange: ExchangeSettings,
        translator: ExceptionTranslator | None = None,
    ):
        self.connection = connection
        self.exchange_settings = exchange
        self.translator = translator or connection.translator
        self._exchange: AbstractExchange | None = None

    @property
    def is_connected(self) -> bool:
        return self.connection.is_connected

    async def declare(self) -> AbstractExchange:
        """
        Declare the exchange this producer publishes to.

        Raises:
            BowlerError: DeclarationMismatchError on a conflicting declaration
        """
        await self.connection.connect()
        declarator = TopologyDeclarator(self.connection.channel, self.translator)
        self._exchange = await declarator.declare_exchange(self.exchange_settings)
        return self._exchange

    async def publish(
        self,
        body: bytes | str | dict[str, Any] | BaseModel,
        routing_key: str = "",
        headers: dict[str, Any] | None = None,
        message_id: str | None = None,
        persistent: bool = True,
    ) -> PublishResult:
        if self._exchange is None:
            await self.declare()

        data, content_type = encode_body(body)
        message = aio_pika.Message(
            data,
            headers=headers or {},
            message_id=message_id,
            content_type=content_type,
            delivery_mode=(
                aio_pika.DeliveryMode.PERSISTENT
                if persistent
                else aio_pika.DeliveryMode.NOT_PERSISTENT
            ),
        )

        try:
            await self._exchange.publish(message, routing_key=routing_key)
        except Exception as e:
            classified = self.translator.translate(
                e,
                {"exchange": self.exchange_settings.name, "routing_key": routing_key},
                {},
            )
            return PublishResult(
                success=False,
                exchange=self.exchange_settings.name,
                routing_key=routing_key,
                message_id=message_id,
                error=str(classified),
            )

        logger.debug(
            f"Published to exchange={self.exchange_settings.name or '<default>'}, "
            f"routing_key={routing_key}"
        )
        return PublishResult(
            success=True,
            exchange=self.exchange_settings.name,
            routing_key=routing_key,
            message_id=message_id,
        )
