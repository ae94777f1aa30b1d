"""AMQP consumer implementation.

Provides message consumption with:
- Topology declaration before consumption starts
- Prefetch of one unacknowledged delivery at a time
- Ack on handler success, report/render and error hook on failure
- Cooperative shutdown through a cancellation signal
- Metrics
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from datetime import datetime, timezone
from typing import Any

from aio_pika.abc import AbstractIncomingMessage

from .base import BaseConsumer, ConsumerMetrics, ConsumerState
from .config import (
    Binding,
    ConsumeSettings,
    ExchangeSettings,
    FailurePolicy,
    QueueSettings,
)
from .connection import AmqpConnection
from .handler import Delivery, DeliveryState, MessageHandler
from .topology import DeclaredTopology, TopologyDeclarator
from .translator import ExceptionTranslator

logger = logging.getLogger(__name__)


class AmqpConsumer(BaseConsumer):
    """
    AMQP consumer with manual acknowledgment and classified broker errors.

    Usage:
        consumer = AmqpConsumer(
            connection,
            ExchangeSettings("orders", ExchangeType.TOPIC, durable=True),
            QueueSettings("orders.created", durable=True),
            [Binding("order.created.*")],
        )
        async with consumer:
            await consumer.listen(OrderHandler())
            # Runs until consumer.stop() or the broker cancels the consumer
    """

    def __init__(
        self,
        connection: AmqpConnection,
        exchange: ExchangeSettings,
        queue: QueueSettings | None = None,
        bindings: Sequence[Binding] | None = None,
        consume_settings: ConsumeSettings | None = None,
        translator: ExceptionTranslator | None = None,
    ):
        self.connection = connection
        self.exchange = exchange
        self.queue_settings = queue or QueueSettings()
        self.bindings = list(bindings or [])
        self.consume_settings = consume_settings or ConsumeSettings()
        self.translator = translator or connection.translator

        self._state = ConsumerState.IDLE
        self._topology: DeclaredTopology | None = None
        self._handler: MessageHandler | None = None
        self._consumer_tag: str | None = None
        self._stop_event = asyncio.Event()
        self._metrics = ConsumerMetrics()

    @property
    def state(self) -> ConsumerState:
        return self._state

    @property
    def metrics(self) -> ConsumerMetrics:
        return self._metrics

    @property
    def topology(self) -> DeclaredTopology | None:
        return self._topology

    @property
    def consumer_tag(self) -> str | None:
        return self._consumer_tag

    async def __aenter__(self) -> "AmqpConsumer":
        await self.connection.connect()
        return self

    async def declare(self) -> DeclaredTopology:
        """
        Declare exchange, queue and bindings.

        On failure the consumer stays IDLE and the classified error is raised.

        Raises:
            BowlerError: DeclarationMismatchError, InvalidSetupError or
                BowlerGeneralError
        """
        await self.connection.connect()

        declarator = TopologyDeclarator(self.connection.channel, self.translator)
        self._topology = await declarator.declare(
            self.exchange, self.queue_settings, self.bindings
        )
        self._state = ConsumerState.DECLARED
        return self._topology

    async def listen(self, handler: MessageHandler) -> None:
        """
        Consume messages with the handler until cancelled.

        Declares the topology if needed, sets QoS, registers a manual-ack
        consumer and waits. Returns when stop() is called or the broker
        holds no consumer registration for the channel anymore.

        Args:
            handler: Application message handler

        Raises:
            BowlerError: If declaration or consumer registration fails
        """
        if self._state is ConsumerState.IDLE:
            await self.declare()
        if self._state is not ConsumerState.DECLARED:
            raise RuntimeError(f"Cannot listen while {self._state.value}")

        self._handler = handler
        self._stop_event.clear()
        queue = self._topology.queue
        settings = self.consume_settings

        try:
            await self.connection.channel.set_qos(prefetch_count=settings.prefetch_count)
            handler.set_consumer(self)
            self._consumer_tag = await queue.consume(
                self._on_message,
                no_ack=False,
                exclusive=settings.exclusive,
                consumer_tag=settings.consumer_tag,
            )
        except Exception as e:
            parameters = {
                "queue": queue.name,
                "prefetch_count": settings.prefetch_count,
                "consumer_tag": settings.consumer_tag,
                "exclusive": settings.exclusive,
            }
            raise self.translator.translate(e, parameters, {}) from e

        self._state = ConsumerState.CONSUMING
        logger.info(f" [*] Waiting for messages on {queue.name}. To exit press CTRL+C")

        try:
            await self._wait()
        finally:
            await self._cancel()
            self._state = ConsumerState.STOPPED
            logger.info("Consumer stopped")

    listen_to_queue = listen

    def stop(self) -> None:
        """Signal the consumption loop to exit."""
        logger.info("Consumer stop requested")
        self._stop_event.set()

    async def close(self) -> None:
        self.stop()
        await self.connection.close()

    async def ack(self, delivery: Delivery, multiple: bool = False) -> None:
        """Acknowledge the delivery (and earlier ones if multiple)."""
        await delivery.message.ack(multiple=multiple)
        delivery.state = DeliveryState.ACKED
        self._metrics.messages_acked += 1
        logger.debug(f"Acked delivery {delivery.delivery_tag}")

    async def nack(
        self, delivery: Delivery, multiple: bool = False, requeue: bool = True
    ) -> None:
        """Negatively acknowledge the delivery (and earlier ones if multiple)."""
        await delivery.message.nack(multiple=multiple, requeue=requeue)
        delivery.state = DeliveryState.NACKED
        self._metrics.messages_nacked += 1
        logger.debug(f"Nacked delivery {delivery.delivery_tag} (requeue={requeue})")

    async def reject(self, delivery: Delivery, requeue: bool = False) -> None:
        """Reject the delivery."""
        await delivery.message.reject(requeue=requeue)
        delivery.state = DeliveryState.REJECTED
        self._metrics.messages_rejected += 1
        logger.debug(f"Rejected delivery {delivery.delivery_tag} (requeue={requeue})")

    async def _wait(self) -> None:
        """Idle until the stop signal fires or no consumer is left."""
        while not self._stop_event.is_set():
            if self.connection.is_recovering:
                logger.debug("Channel is recovering, waiting for restore")
            elif await self.connection.active_consumer_count() == 0:
                logger.info("No active consumers left on channel")
                break
            try:
                await asyncio.wait_for(
                    self._stop_event.wait(),
                    timeout=self.consume_settings.poll_interval,
                )
            except asyncio.TimeoutError:
                continue

    async def _cancel(self) -> None:
        if self._consumer_tag is None or self._topology is None:
            return
        if await self.connection.active_consumer_count() > 0:
            try:
                await self._topology.queue.cancel(self._consumer_tag)
                logger.info(f"Cancelled consumer {self._consumer_tag}")
            except Exception as e:
                logger.error(f"Error cancelling consumer {self._consumer_tag}: {e}")
        self._consumer_tag = None

    async def _on_message(self, message: AbstractIncomingMessage) -> None:
        """
        Handle a single delivery.

        Success acks exactly once, unless the handler already settled the
        delivery. Failure is reported, rendered and passed to the handler's
        error hook; the delivery is never acked.
        """
        delivery = Delivery.from_message(message)

        logger.info(
            f"Processing delivery {delivery.delivery_tag} "
            f"(routing_key={delivery.routing_key}, redelivered={delivery.redelivered})"
        )

        self._metrics.messages_processed += 1
        self._metrics.last_message_at = datetime.now(timezone.utc)
        start_time = time.monotonic()

        try:
            await self._handler.handle(delivery)
        except Exception as e:
            self._metrics.messages_failed += 1
            self._metrics.total_processing_time += time.monotonic() - start_time
            logger.debug(f"Handler failed for delivery {delivery.delivery_tag}: {e}")
            await self._handle_failure(e, delivery)
            return

        self._metrics.messages_succeeded += 1
        self._metrics.total_processing_time += time.monotonic() - start_time

        if delivery.is_settled:
            logger.debug(
                f"Delivery {delivery.delivery_tag} already {delivery.state.value} by handler"
            )
            return

        await self._settle(self.ack, delivery)
        logger.info(f"Completed delivery {delivery.delivery_tag}")

    async def _handle_failure(self, error: Exception, delivery: Delivery) -> None:
        try:
            self.translator.report_error(error, delivery)
            self.translator.render_error(error, delivery)
        except Exception as handler_error:
            logger.exception(
                f"Exception handler failed for delivery {delivery.delivery_tag}: {handler_error}"
            )

        try:
            await self._handler.handle_error(error, delivery)
        except Exception as hook_error:
            logger.exception(
                f"Error hook failed for delivery {delivery.delivery_tag}: {hook_error}"
            )

        if delivery.is_settled:
            return

        policy = self.consume_settings.failure_policy
        if policy is FailurePolicy.REJECT:
            await self._settle(self.reject, delivery, requeue=False)
        elif policy is FailurePolicy.REQUEUE:
            await self._settle(self.nack, delivery, requeue=True)
        else:
            logger.warning(f"Delivery {delivery.delivery_tag} left unacknowledged")

    async def _settle(
        self,
        primitive: Callable[..., Awaitable[None]],
        delivery: Delivery,
        **kwargs: Any,
    ) -> None:
        try:
            await primitive(delivery, **kwargs)
        except Exception as e:
            # Broker failures while settling must not stop the loop
            self.translator.translate_queue(e, delivery)

    async def get_queue_stats(self) -> dict[str, Any]:
        """Get current queue statistics."""
        if self._topology is None or not self.connection.is_connected:
            return {"error": "Not declared"}

        try:
            queue = await self.connection.channel.declare_queue(
                self._topology.queue.name, passive=True
            )
            result = queue.declaration_result
            return {
                "queue": queue.name,
                "messages": result.message_count,
                "consumers": result.consumer_count,
                "state": self._state.value,
                "metrics": self._metrics.to_dict(),
            }
        except Exception as e:
            return {"error": str(e)}
