"""Tests for exchange/queue/binding declaration and dead-letter wiring."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from aio_pika.exceptions import ChannelPreconditionFailed

from bowler.config import (
    Binding,
    DeadLetterSettings,
    ExchangeSettings,
    ExchangeType,
    QueueSettings,
    with_dead_letter,
)
from bowler.errors import BowlerGeneralError, DeclarationMismatchError
from bowler.topology import TopologyDeclarator


@pytest.fixture
def declarator(mock_channel, translator) -> TopologyDeclarator:
    return TopologyDeclarator(mock_channel, translator)


def test_with_dead_letter_exchange_only() -> None:
    assert with_dead_letter("orders.dlx") == {"x-dead-letter-exchange": "orders.dlx"}


def test_with_dead_letter_routing_key_override() -> None:
    assert with_dead_letter("orders.dlx", "failed.orders") == {
        "x-dead-letter-exchange": "orders.dlx",
        "x-dead-letter-routing-key": "failed.orders",
    }


def test_with_dead_letter_requires_exchange() -> None:
    with pytest.raises(ValueError):
        with_dead_letter("")
    with pytest.raises(ValueError):
        DeadLetterSettings(exchange="")


def test_queue_arguments_merge_dead_letter() -> None:
    queue = QueueSettings(
        "orders.created",
        arguments={"x-max-length": 1000},
        dead_letter=DeadLetterSettings(exchange="orders.dlx", routing_key="dead"),
    )

    assert queue.declare_arguments() == {
        "x-max-length": 1000,
        "x-dead-letter-exchange": "orders.dlx",
        "x-dead-letter-routing-key": "dead",
    }
    # Original arguments are not mutated
    assert queue.arguments == {"x-max-length": 1000}


def test_exchange_type_is_validated() -> None:
    assert ExchangeSettings("x", "topic").type is ExchangeType.TOPIC
    with pytest.raises(ValueError):
        ExchangeSettings("x", "round-robin")


@pytest.mark.asyncio
async def test_declares_exchange_queue_then_bindings(declarator, mock_channel, mock_queue, mock_exchange) -> None:
    calls = []
    mock_channel.declare_exchange.side_effect = lambda *a, **k: calls.append("exchange") or mock_exchange
    mock_channel.declare_queue.side_effect = lambda *a, **k: calls.append("queue") or mock_queue
    mock_queue.bind.side_effect = lambda *a, **k: calls.append("bind")

    topology = await declarator.declare(
        ExchangeSettings("orders", ExchangeType.TOPIC, durable=True),
        QueueSettings("orders.created", durable=True),
        [Binding("order.created.*"), Binding("order.updated.*")],
    )

    assert calls == ["exchange", "queue", "bind", "bind"]
    assert topology.routing_keys == ["order.created.*", "order.updated.*"]
    assert topology.queue is mock_queue


@pytest.mark.asyncio
async def test_no_bindings_creates_default_binding(declarator, mock_queue, mock_exchange) -> None:
    topology = await declarator.declare(ExchangeSettings("events"), QueueSettings(""))

    mock_queue.bind.assert_awaited_once_with(mock_exchange, routing_key="")
    assert topology.routing_keys == [""]


@pytest.mark.asyncio
async def test_empty_queue_name_asks_broker_for_one(declarator, mock_channel) -> None:
    await declarator.declare(ExchangeSettings("events"), QueueSettings(""))

    assert mock_channel.declare_queue.call_args.args[0] is None


@pytest.mark.asyncio
async def test_queue_declared_with_dead_letter_arguments(declarator, mock_channel) -> None:
    queue = QueueSettings(
        "orders.created",
        durable=True,
        dead_letter=DeadLetterSettings(exchange="orders.dlx", declare_topology=False),
    )

    await declarator.declare(ExchangeSettings("orders", ExchangeType.TOPIC), queue)

    mock_channel.declare_queue.assert_awaited_once()
    kwargs = mock_channel.declare_queue.call_args.kwargs
    assert kwargs["arguments"] == {"x-dead-letter-exchange": "orders.dlx"}
    assert kwargs["durable"] is True


@pytest.mark.asyncio
async def test_dead_letter_topology_is_declared(declarator, mock_channel) -> None:
    dlx = MagicMock(name="dlx")
    dlq = MagicMock(name="dlq")
    dlq.name = "orders.dlx.queue"
    dlq.bind = AsyncMock()
    main_exchange = MagicMock(name="orders")
    main_queue = MagicMock(name="orders.created")
    main_queue.bind = AsyncMock()
    mock_channel.declare_exchange.side_effect = [dlx, main_exchange]
    mock_channel.declare_queue.side_effect = [dlq, main_queue]

    topology = await declarator.declare(
        ExchangeSettings("orders", ExchangeType.TOPIC),
        QueueSettings("orders.created", dead_letter=DeadLetterSettings(exchange="orders.dlx")),
        [Binding("order.created.*")],
    )

    assert mock_channel.declare_exchange.call_args_list[0].args[0] == "orders.dlx"
    assert mock_channel.declare_queue.call_args_list[0].args[0] == "orders.dlx.queue"
    dlq.bind.assert_awaited_once_with(dlx, routing_key="")
    assert topology.dead_letter_queue is dlq


@pytest.mark.asyncio
async def test_mismatch_carries_exact_parameters_and_arguments(declarator, mock_channel) -> None:
    original = ChannelPreconditionFailed(406, "PRECONDITION_FAILED - inequivalent arg 'durable'")
    mock_channel.declare_queue.side_effect = original
    queue = QueueSettings("orders.created", durable=True, arguments={"x-max-length": 10})

    with pytest.raises(DeclarationMismatchError) as exc_info:
        await declarator.declare(
            ExchangeSettings("orders", ExchangeType.TOPIC, durable=True),
            queue,
            [Binding("order.created.*")],
        )

    error = exc_info.value
    assert error.__cause__ is original
    assert error.original is original
    assert error.parameters == {
        "exchange": "orders",
        "type": "topic",
        "passive": False,
        "durable": True,
        "auto_delete": False,
        "queue": "orders.created",
        "queue_passive": False,
        "queue_durable": True,
        "exclusive": False,
        "queue_auto_delete": False,
        "bindings": ["order.created.*"],
    }
    assert error.arguments == {"x-max-length": 10}


@pytest.mark.asyncio
async def test_mismatch_without_arguments_has_empty_dict(declarator, mock_channel) -> None:
    mock_channel.declare_exchange.side_effect = ChannelPreconditionFailed(406, "mismatch")

    with pytest.raises(DeclarationMismatchError) as exc_info:
        await declarator.declare(ExchangeSettings("orders", ExchangeType.DIRECT), QueueSettings("q"))

    assert exc_info.value.arguments == {}
    assert exc_info.value.parameters["exchange"] == "orders"


@pytest.mark.asyncio
async def test_unexpected_failure_is_general(declarator, mock_queue) -> None:
    mock_queue.bind.side_effect = RuntimeError("lost")

    with pytest.raises(BowlerGeneralError):
        await declarator.declare(ExchangeSettings("orders"), QueueSettings("q"))


@pytest.mark.asyncio
async def test_redeclaring_identical_topology_is_idempotent(declarator, mock_channel, exception_handler) -> None:
    exchange = ExchangeSettings("orders", ExchangeType.TOPIC, durable=True)
    queue = QueueSettings("orders.created", durable=True)
    bindings = [Binding("order.created.*")]

    await declarator.declare(exchange, queue, bindings)
    await declarator.declare(exchange, queue, bindings)

    first, second = mock_channel.declare_exchange.call_args_list
    assert first == second
    assert exception_handler.calls == []


@pytest.mark.asyncio
async def test_declare_exchange_for_default_returns_default(declarator, mock_channel) -> None:
    exchange = await declarator.declare_exchange(ExchangeSettings(""))

    assert exchange is mock_channel.default_exchange
    mock_channel.declare_exchange.assert_not_awaited()
