# tests/test_transports.py

from __future__ import annotations

from types import SimpleNamespace

import pytest
from nio import RoomSendError, RoomSendResponse

from taskwatch.connectors.matrix_connector import (
    MatrixTransport,
    localpart,
    matrix_context,
    send_result_from_response,
)
from taskwatch.core.ports import Affordance, SendStatus
from taskwatch.core.transport import CompositeTransport, with_affordances

from .fakes import FakeTransport


class FakeMatrixClient:
    def __init__(self, response=None, error: Exception | None = None) -> None:
        self.response = response
        self.error = error
        self.calls: list[dict] = []

    async def room_send(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return self.response


def test_rate_limit_response_maps_to_retry() -> None:
    resp = RoomSendError(message="Too many requests", status_code="M_LIMIT_EXCEEDED", retry_after_ms=2500)
    result = send_result_from_response(resp)
    assert result.status is SendStatus.RATE_LIMITED
    assert result.retry_after == 2.5

    no_hint = RoomSendError(message="slow down", status_code="M_LIMIT_EXCEEDED")
    assert send_result_from_response(no_hint).retry_after is None


def test_other_errors_map_to_failure() -> None:
    resp = RoomSendError(message="You are not in this room", status_code="M_FORBIDDEN")
    result = send_result_from_response(resp)
    assert result.status is SendStatus.FAILED
    assert "M_FORBIDDEN" in result.error


@pytest.mark.asyncio
async def test_matrix_transport_renders_affordances() -> None:
    client = FakeMatrixClient(response=RoomSendResponse("$event", "!room:example.org"))
    transport = MatrixTransport(client)

    result = await transport.send_to_address("!room:example.org", "hi", [Affordance("Take", "/take 3")])

    assert result.ok
    [call] = client.calls
    assert call["room_id"] == "!room:example.org"
    assert call["content"]["body"] == "hi\n  [Take] /take 3"


@pytest.mark.asyncio
async def test_matrix_transport_never_raises() -> None:
    transport = MatrixTransport(FakeMatrixClient(error=ConnectionError("down")))
    result = await transport.send_to_address("!room:example.org", "hi")
    assert result.status is SendStatus.FAILED


def test_matrix_context() -> None:
    dm = SimpleNamespace(room_id="!dm:example.org", member_count=2)
    group = SimpleNamespace(room_id="!team:example.org", member_count=5)

    ctx = matrix_context(dm, "@Bob:example.org")
    assert ctx.actor.handle == "bob"
    assert ctx.conversation.is_private
    assert ctx.address == "!dm:example.org"

    ctx = matrix_context(group, "@bob:example.org")
    assert not ctx.conversation.is_private
    assert ctx.address is None
    assert localpart("@carol.x:matrix.org") == "carol.x"


@pytest.mark.asyncio
async def test_composite_routes_by_longest_prefix() -> None:
    composite = CompositeTransport()
    rooms, console, special = FakeTransport(), FakeTransport(), FakeTransport()
    composite.attach("!", rooms)
    composite.attach("console:", console)
    composite.attach("!ops", special)

    await composite.send_to_address("!team:example.org", "a")
    await composite.send_to_address("console:alice", "b")
    await composite.send_to_address("!ops:example.org", "c")

    assert rooms.addresses() == ["!team:example.org"]
    assert console.addresses() == ["console:alice"]
    assert special.addresses() == ["!ops:example.org"]

    result = await composite.send_to_address("tg:123", "d")
    assert result.status is SendStatus.FAILED

    composite.detach("console:")
    assert composite.owner_of("console:alice") is None


def test_with_affordances_plain_text() -> None:
    assert with_affordances("x", []) == "x"
