"""Exchange, queue and binding declaration.

Declarations are idempotent: declaring the same topology twice with the
same parameters is safe. A declaration that conflicts with what the broker
already holds (different type or durability) surfaces as a
DeclarationMismatchError and is never retried.
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from aio_pika.abc import AbstractChannel, AbstractExchange, AbstractQueue

from .config import Binding, DeadLetterSettings, ExchangeSettings, ExchangeType, QueueSettings
from .translator import ExceptionTranslator

logger = logging.getLogger(__name__)


@dataclass
class DeclaredTopology:
    """Handles to what was declared."""

    queue: AbstractQueue
    exchange: AbstractExchange | None
    routing_keys: list[str]
    dead_letter_queue: AbstractQueue | None = None


def declaration_parameters(
    exchange: ExchangeSettings,
    queue: QueueSettings,
    bindings: Sequence[Binding],
) -> dict[str, Any]:
    """The full parameter set attached to a failed declaration."""
    return {
        "exchange": exchange.name,
        "type": exchange.type.value,
        "passive": exchange.passive,
        "durable": exchange.durable,
        "auto_delete": exchange.auto_delete,
        "queue": queue.name,
        "queue_passive": queue.passive,
        "queue_durable": queue.durable,
        "exclusive": queue.exclusive,
        "queue_auto_delete": queue.auto_delete,
        "bindings": [binding.routing_key for binding in bindings],
    }


class TopologyDeclarator:
    """
    Declares an exchange, a queue and the bindings between them.

    Usage:
        declarator = TopologyDeclarator(channel, translator)
        topology = await declarator.declare(
            ExchangeSettings("orders", ExchangeType.TOPIC, durable=True),
            QueueSettings("orders.created", durable=True),
            [Binding("order.created.*")],
        )
    """

    def __init__(self, channel: AbstractChannel, translator: ExceptionTranslator):
        self.channel = channel
        self.translator = translator

    async def declare(
        self,
        exchange: ExchangeSettings,
        queue: QueueSettings,
        bindings: Sequence[Binding] | None = None,
    ) -> DeclaredTopology:
        """
        Declare exchange, then queue, then bindings.

        With no bindings, one binding with an empty routing key is created.
        The default exchange (empty name) is neither declared nor bound to;
        the broker routes to every queue by its name there.

        Args:
            exchange: Exchange settings
            queue: Queue settings (dead-letter arguments are merged in)
            bindings: Routing keys to bind the queue with

        Returns:
            DeclaredTopology with the declared queue and exchange

        Raises:
            BowlerError: DeclarationMismatchError on a conflicting declaration
        """
        bindings = list(bindings) if bindings else [Binding()]
        arguments = queue.declare_arguments()
        parameters = declaration_parameters(exchange, queue, bindings)

        try:
            dead_letter_queue = None
            if queue.dead_letter is not None and queue.dead_letter.declare_topology:
                dead_letter_queue = await self._declare_dead_letter(queue.dead_letter)

            declared_exchange = None
            if not exchange.is_default:
                logger.info(f"Declaring exchange {exchange.name} ({exchange.type.value})")
                declared_exchange = await self.channel.declare_exchange(
                    exchange.name,
                    exchange.type.to_aio_pika(),
                    passive=exchange.passive,
                    durable=exchange.durable,
                    auto_delete=exchange.auto_delete,
                )

            logger.info(f"Declaring queue {queue.name or '<broker-named>'}")
            declared_queue = await self.channel.declare_queue(
                queue.name or None,
                passive=queue.passive,
                durable=queue.durable,
                exclusive=queue.exclusive,
                auto_delete=queue.auto_delete,
                arguments=arguments or None,
            )

            routing_keys = []
            if declared_exchange is not None:
                for binding in bindings:
                    logger.info(
                        f"Binding {declared_queue.name} to {exchange.name} "
                        f"with key '{binding.routing_key}'"
                    )
                    await declared_queue.bind(declared_exchange, routing_key=binding.routing_key)
                    routing_keys.append(binding.routing_key)

        except Exception as e:
            logger.error(f"Failed to declare topology: {e}")
            raise self.translator.translate(e, parameters, arguments) from e

        logger.info("Topology declared successfully")
        return DeclaredTopology(
            queue=declared_queue,
            exchange=declared_exchange,
            routing_keys=routing_keys,
            dead_letter_queue=dead_letter_queue,
        )

    async def declare_exchange(self, exchange: ExchangeSettings) -> AbstractExchange:
        """Declare a single exchange, for producers."""
        if exchange.is_default:
            return self.channel.default_exchange

        try:
            return await self.channel.declare_exchange(
                exchange.name,
                exchange.type.to_aio_pika(),
                passive=exchange.passive,
                durable=exchange.durable,
                auto_delete=exchange.auto_delete,
            )
        except Exception as e:
            parameters = {
                "exchange": exchange.name,
                "type": exchange.type.value,
                "passive": exchange.passive,
                "durable": exchange.durable,
                "auto_delete": exchange.auto_delete,
            }
            raise self.translator.translate(e, parameters, {}) from e

    async def _declare_dead_letter(self, dead_letter: DeadLetterSettings) -> AbstractQueue:
        # Queue catches every key unless a dead-letter routing key is configured
        logger.info(f"Declaring dead-letter exchange {dead_letter.exchange}")
        dlx = await self.channel.declare_exchange(
            dead_letter.exchange,
            dead_letter.exchange_type.to_aio_pika(),
            durable=dead_letter.durable,
        )
        dlq = await self.channel.declare_queue(
            dead_letter.queue_name,
            durable=dead_letter.durable,
        )
        routing_key = dead_letter.routing_key or ""
        if dead_letter.exchange_type is ExchangeType.TOPIC and not dead_letter.routing_key:
            routing_key = "#"
        await dlq.bind(dlx, routing_key=routing_key)
        logger.info(f"Dead-letter queue {dlq.name} bound to {dead_letter.exchange}")
        return dlq
