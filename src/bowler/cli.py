import asyncio
import importlib
import logging
from functools import wraps

import typer

from .errors import BowlerError
from .factory import create_consumer
from .handler import MessageHandler
from .settings import configure_logging, get_settings
from .worker import run_worker

logger = logging.getLogger("bowler-cli")

app = typer.Typer(help="Declare AMQP topology and run consumers.")


def coro(f):
    @wraps(f)
    def wrapper(*args, **kwargs):
        return asyncio.run(f(*args, **kwargs))

    return wrapper


def load_handler(path: str) -> MessageHandler:
    """Instantiate a handler from 'package.module:ClassName'."""
    module_name, _, attr = path.partition(":")
    if not module_name or not attr:
        raise typer.BadParameter(f"Expected 'module:ClassName', got '{path}'")

    handler_cls = getattr(importlib.import_module(module_name), attr, None)
    if not (isinstance(handler_cls, type) and issubclass(handler_cls, MessageHandler)):
        raise typer.BadParameter(f"{path} is not a MessageHandler subclass")
    return handler_cls()


@app.command()
@coro
async def consume(handler: str):
    """
    Consume the configured queue with a handler.

    Args:
        handler: Handler class as 'package.module:ClassName'
    """
    settings = get_settings()
    configure_logging(settings.log_level)

    message_handler = load_handler(handler)
    consumer = create_consumer(settings)

    logger.info(f"Starting consumer with handler {handler}")
    try:
        await run_worker(consumer, message_handler)
    except BowlerError as e:
        logger.error(f"Consumer failed: {e}")
        raise typer.Exit(code=1) from e


@app.command()
@coro
async def declare():
    """Declare the configured exchange, queue and bindings, then exit."""
    settings = get_settings()
    configure_logging(settings.log_level)

    consumer = create_consumer(settings)
    try:
        topology = await consumer.declare()
        typer.echo(
            f"Declared queue {topology.queue.name} "
            f"with routing keys {topology.routing_keys}"
        )
    except BowlerError as e:
        logger.error(f"Declaration failed: {e}")
        raise typer.Exit(code=1) from e
    finally:
        await consumer.close()


if __name__ == "__main__":
    app()
