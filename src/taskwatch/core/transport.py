# src/taskwatch/core/transport.py

from __future__ import annotations

import logging
from collections.abc import Sequence

from .ports import Affordance, SendResult, Transport

logger = logging.getLogger(__name__)


def render_affordances(affordances: Sequence[Affordance]) -> str:
    """Plain-text fallback for transports without buttons."""
    return "\n".join(f"  [{a.label}] {a.command}" for a in affordances)


def with_affordances(text: str, affordances: Sequence[Affordance]) -> str:
    if not affordances:
        return text
    return f"{text}\n{render_affordances(affordances)}"


class CompositeTransport:
    """
    Route each address to the connector that owns it.

    Connectors attach under an address prefix ("console:" for the REPL, "!"
    for Matrix room ids) once they are ready; an address with no attached
    owner fails like any other undeliverable send.
    """

    def __init__(self) -> None:
        self._routes: dict[str, Transport] = {}

    def attach(self, prefix: str, transport: Transport) -> None:
        self._routes[prefix] = transport
        logger.debug("Transport attached for prefix %r", prefix)

    def detach(self, prefix: str) -> None:
        self._routes.pop(prefix, None)

    def owner_of(self, address: str) -> Transport | None:
        best: str | None = None
        for prefix in self._routes:
            if address.startswith(prefix) and (best is None or len(prefix) > len(best)):
                best = prefix
        return self._routes.get(best) if best is not None else None

    async def send_to_address(
            self,
            address: str,
            text: str,
            affordances: Sequence[Affordance] = (),
    ) -> SendResult:
        transport = self.owner_of(address)
        if transport is None:
            return SendResult.failed(f"no transport for {address}")
        return await transport.send_to_address(address, text, affordances)
