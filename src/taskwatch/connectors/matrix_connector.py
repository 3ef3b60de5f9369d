# src/taskwatch/connectors/matrix_connector.py

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Sequence

from nio import InviteMemberEvent, MatrixRoom, RoomMessageText, RoomSendError, exceptions

from ..cli.commands import MessageContext, dispatch_message
from ..core.ports import Affordance, SendResult
from ..core.state import AppState
from ..core.transport import with_affordances
from ..tasks.task_models import Actor, ConversationRef
from .matrix_client import create_matrix_client

logger = logging.getLogger(__name__)

# Matrix room ids look like "!abc123:example.org".
ROOM_PREFIX = "!"
RATE_LIMIT_CODE = "M_LIMIT_EXCEEDED"


def _ms_now() -> int:
    return int(time.time() * 1000)


def _room_allowlist(settings_rooms: list[str]) -> set[str] | None:
    rooms = [r.strip() for r in (settings_rooms or []) if str(r).strip()]
    return set(rooms) if rooms else None


def localpart(user_id: str) -> str:
    """'@alice:example.org' -> 'alice' (the handle used in @mentions)."""
    return (user_id or "").lstrip("@").split(":", 1)[0].lower()


def is_private_room(room: MatrixRoom) -> bool:
    # Bot plus one person.
    return room.member_count <= 2


def send_result_from_response(resp) -> SendResult:
    if isinstance(resp, RoomSendError):
        if resp.status_code == RATE_LIMIT_CODE:
            retry_ms = resp.retry_after_ms
            return SendResult.rate_limited(retry_ms / 1000 if retry_ms is not None else None)
        return SendResult.failed(f"{resp.status_code}: {resp.message}")
    return SendResult.success()


class MatrixTransport:
    """Delivers to room ids. Never raises: every problem becomes a SendResult."""

    def __init__(self, client) -> None:
        self._client = client

    async def send_to_address(
            self,
            address: str,
            text: str,
            affordances: Sequence[Affordance] = (),
    ) -> SendResult:
        try:
            resp = await self._client.room_send(
                room_id=address,
                message_type="m.room.message",
                content={"msgtype": "m.text", "body": with_affordances(text, affordances)},
                ignore_unverified_devices=True,
            )
        except exceptions.OlmUnverifiedDeviceError as e:
            logger.warning("Cannot send to %s: unverified device.", address)
            return SendResult.failed(repr(e))
        except Exception as e:
            logger.debug("room_send to %s raised.", address, exc_info=True)
            return SendResult.failed(repr(e))
        return send_result_from_response(resp)


def matrix_context(room: MatrixRoom, sender: str) -> MessageContext:
    private = is_private_room(room)
    return MessageContext(
        actor=Actor(id=sender, handle=localpart(sender)),
        conversation=ConversationRef(room.room_id, is_private=private),
        address=room.room_id if private else None,
    )


async def run_matrix_bot(state: AppState, stop_event: asyncio.Event) -> None:
    """
    Matrix connector (async):

    client -> transport attach -> callbacks -> sync loop

    Runs on the engine loop; stops when stop_event is set or the task is cancelled.
    """
    settings = state.settings
    startup_ts = _ms_now()

    allowed_rooms = _room_allowlist(getattr(settings, "matrix_rooms", []) or [])
    logger.info("Matrix allowed_rooms=%s", allowed_rooms if allowed_rooms is not None else "ALL")

    client = await create_matrix_client(settings)
    if client is None:
        logger.error("Matrix client creation failed; connector will stop.")
        return

    state.transport.attach(ROOM_PREFIX, MatrixTransport(client))
    transport = state.transport

    async def invite_callback(room: MatrixRoom, event: InviteMemberEvent) -> None:
        if event.state_key != client.user_id or event.membership != "invite":
            return
        if allowed_rooms is not None and room.room_id not in allowed_rooms and room.member_count > 2:
            logger.info("Ignoring invite to %s (not allowlisted).", room.room_id)
            return
        try:
            await client.join(room.room_id)
            logger.info("Joined %s after invite from %s.", room.room_id, event.sender)
        except Exception:
            logger.exception("Failed to join %s.", room.room_id)

    async def message_callback(room: MatrixRoom, event: RoomMessageText) -> None:
        # Ignore backlog, own messages and rooms outside the allowlist (DMs always pass).
        ts = getattr(event, "server_timestamp", None)
        if ts is not None and ts <= startup_ts:
            return
        if event.sender == client.user_id:
            return
        ctx = matrix_context(room, event.sender)
        if allowed_rooms is not None and not ctx.conversation.is_private and room.room_id not in allowed_rooms:
            return

        body = (event.body or "").strip()
        if not body:
            return

        logger.info("Matrix <%s> %s: %r", room.display_name, event.sender, body)

        # Any private message makes the sender reachable.
        if ctx.address:
            state.identities.register(ctx.actor.handle, ctx.address)

        reply = dispatch_message(state, body, ctx)
        if not reply:
            return
        result = await transport.send_to_address(room.room_id, reply)
        if not result.ok:
            logger.warning("Reply to %s not sent: %s", room.room_id, result.error or result.status.value)

    client.add_event_callback(invite_callback, InviteMemberEvent)
    client.add_event_callback(message_callback, RoomMessageText)

    try:
        logger.info("Matrix initial sync...")
        await client.sync(timeout=30000, full_state=True)
        logger.info("Matrix initial sync done. Joined rooms: %d", len(client.rooms))

        while not stop_event.is_set():
            await client.sync(timeout=30000, full_state=False)

    except asyncio.CancelledError:
        logger.info("Matrix connector cancelled.")
    except Exception:
        logger.exception("Matrix connector crashed.")
    finally:
        state.transport.detach(ROOM_PREFIX)
        with contextlib.suppress(Exception):
            await client.close()
        logger.info("Matrix connector stopped.")
