# src/taskwatch/connectors/console_connector.py

from __future__ import annotations

import getpass
import logging
import sys
from collections.abc import Sequence
from datetime import datetime

from ..cli.commands import MessageContext, dispatch_message
from ..core.ports import Affordance, SendResult
from ..core.state import AppState
from ..core.transport import with_affordances
from ..tasks.identity import normalize_handle
from ..tasks.task_models import Actor, ConversationRef

logger = logging.getLogger(__name__)

ADDRESS_PREFIX = "console:"
# Shared conversation every console actor sits in.
CONSOLE_ROOM = f"{ADDRESS_PREFIX}room"


def _ts_local() -> str:
    return datetime.now().astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _rewrite_prev_line(line: str) -> None:
    """
    Replace the last terminal line with `line`.
    Best-effort: if not a TTY, just print a new line.
    """
    try:
        if sys.stdout.isatty():
            sys.stdout.write("\033[1A\033[2K\r")
            sys.stdout.write(line + "\n")
            sys.stdout.flush()
        else:
            print(line)
    except Exception:
        print(line)


def console_address(handle: str) -> str:
    return f"{ADDRESS_PREFIX}{normalize_handle(handle)}"


class ConsoleTransport:
    """Prints deliveries; every console address is reachable."""

    async def send_to_address(
            self,
            address: str,
            text: str,
            affordances: Sequence[Affordance] = (),
    ) -> SendResult:
        print(f"\n[{_ts_local()}] [to {address}] {with_affordances(text, affordances)}", flush=True)
        return SendResult.success()


def _console_context(handle: str, private: bool) -> MessageContext:
    actor = Actor(id=console_address(handle), handle=normalize_handle(handle))
    if private:
        return MessageContext(
            actor=actor,
            conversation=ConversationRef(actor.id, is_private=True),
            address=actor.id,
        )
    return MessageContext(actor=actor, conversation=ConversationRef(CONSOLE_ROOM))


def run_console_loop(state: AppState) -> None:
    """
    Blocking REPL.

    Console-only commands:
      /as NAME   act as another person (registers their console address)
      /dm        toggle between the shared room and a private chat
      /exit      quit
    """
    state.transport.attach(ADDRESS_PREFIX, ConsoleTransport())

    handle = normalize_handle(getpass.getuser()) or "console"
    private = False
    state.identities.register(handle, console_address(handle))

    logger.info("Console connector started (as @%s).", handle)
    print(f"[{_ts_local()}] [CONSOLE] Acting as @{handle}. Use /help for commands, /as NAME, /dm, /exit.\n")

    while True:
        where = "dm" if private else "room"
        try:
            user_input = input(f"@{handle} ({where}) >>> ").strip()
            _rewrite_prev_line(f"[{_ts_local()}] @{handle} ({where}) >>> {user_input}")
        except EOFError:
            logger.info("Console EOF received, exiting.")
            break
        except KeyboardInterrupt:
            logger.info("Console KeyboardInterrupt, exiting.")
            print()
            break

        if not user_input:
            continue

        low = user_input.lower()
        if low in ("/exit", "/quit"):
            logger.info("Console exit command received.")
            break

        if low.startswith("/as"):
            parts = user_input.split()
            new_handle = normalize_handle(parts[1]) if len(parts) > 1 else ""
            if not new_handle:
                print(f"[{_ts_local()}] Usage: /as NAME")
                continue
            handle = new_handle
            state.identities.register(handle, console_address(handle))
            print(f"[{_ts_local()}] Now acting as @{handle}.")
            continue

        if low == "/dm":
            private = not private
            print(f"[{_ts_local()}] Now in the {'private chat' if private else 'shared room'}.")
            continue

        reply = dispatch_message(state, user_input, _console_context(handle, private))
        if reply:
            print(f"[{_ts_local()}] {reply}\n")

    state.transport.detach(ADDRESS_PREFIX)
    logger.info("Console connector finished.")
