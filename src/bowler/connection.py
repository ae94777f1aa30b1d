"""AMQP broker connection and channel management."""

import asyncio
import logging
from typing import Any

import aio_pika
from aio_pika.abc import AbstractChannel, AbstractRobustConnection
from aio_pika.exceptions import (
    AMQPConnectionError,
    AuthenticationError,
    ChannelInvalidStateError,
    ProbableAuthenticationError,
)
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from .config import AmqpConfig
from .errors import InvalidSetupError
from .translator import ExceptionTranslator

logger = logging.getLogger(__name__)


def _is_transient(error: BaseException) -> bool:
    """Connection failures worth another attempt. Bad credentials are not."""
    if isinstance(error, (AuthenticationError, ProbableAuthenticationError)):
        return False
    return isinstance(error, (AMQPConnectionError, ConnectionError, OSError, asyncio.TimeoutError))


class AmqpConnection:
    """
    Owns one robust broker connection and one channel.

    Each consumer should own its own AmqpConnection; channels are not
    shared across consumption loops.

    Usage:
        async with AmqpConnection(AmqpConfig(url="amqp://...")) as connection:
            channel = connection.channel
    """

    def __init__(
        self,
        config: AmqpConfig | None = None,
        translator: ExceptionTranslator | None = None,
    ):
        self.config = config or AmqpConfig()
        self.translator = translator or ExceptionTranslator()

        self._connection: AbstractRobustConnection | None = None
        self._channel: AbstractChannel | None = None

    @property
    def is_connected(self) -> bool:
        return (
            self._connection is not None
            and not self._connection.is_closed
            and self._channel is not None
            and not self._channel.is_closed
        )

    @property
    def channel(self) -> AbstractChannel:
        """Return the open channel; raises if not connected."""
        if self._channel is None:
            raise InvalidSetupError("Not connected. Call connect() first.")
        return self._channel

    @property
    def broker_address(self) -> str:
        # Strip credentials before logging
        return self.config.url.rsplit("@", 1)[-1]

    async def __aenter__(self) -> "AmqpConnection":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def connect(self) -> None:
        """
        Open the connection and channel. Idempotent while connected.

        Transient failures are retried with exponential backoff; the final
        failure is translated and raised.

        Raises:
            BowlerError: InvalidSetupError for connection protocol failures
        """
        if self.is_connected:
            return

        logger.info(f"Connecting to AMQP broker at {self.broker_address}")

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.config.connect_attempts),
                wait=wait_exponential(
                    multiplier=1,
                    min=self.config.retry_wait_min,
                    max=self.config.retry_wait_max,
                ),
                retry=retry_if_exception(_is_transient),
                before_sleep=before_sleep_log(logger, logging.WARNING),
                reraise=True,
            ):
                with attempt:
                    self._connection = await aio_pika.connect_robust(
                        self.config.url,
                        timeout=self.config.connect_timeout,
                    )
            self._channel = await self._connection.channel()
        except Exception as e:
            raise self.translator.translate(e, self._parameters(), {}) from e

        logger.info("Connected to AMQP broker")

    @property
    def is_recovering(self) -> bool:
        """Robust connection is alive but its channel is being restored."""
        return (
            self._connection is not None
            and not self._connection.is_closed
            and self._channel is not None
            and self._channel.is_closed
        )

    async def active_consumer_count(self) -> int:
        """Number of consumer registrations the broker still holds on the channel."""
        if self._channel is None or self._channel.is_closed:
            return 0
        try:
            underlay = await self._channel.get_underlay_channel()
        except ChannelInvalidStateError:
            return 0
        return len(underlay.consumers)

    async def health_check(self) -> bool:
        return self.is_connected

    async def close(self) -> None:
        """Close channel and connection."""
        if self._channel is not None:
            try:
                if not self._channel.is_closed:
                    await self._channel.close()
            except Exception as e:
                logger.error(f"Error closing AMQP channel: {e}")
            self._channel = None

        if self._connection is not None:
            try:
                await self._connection.close()
            except Exception as e:
                logger.error(f"Error closing AMQP connection: {e}")
            self._connection = None
            logger.info("AMQP connection closed")

    def _parameters(self) -> dict[str, Any]:
        return {
            "broker": self.broker_address,
            "connect_timeout": self.config.connect_timeout,
            "connect_attempts": self.config.connect_attempts,
        }
