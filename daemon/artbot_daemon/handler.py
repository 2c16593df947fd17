"""Project handlers: the targets messages are routed to."""

from __future__ import annotations

import logging
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from artbot_daemon.config import NamedMappings
from artbot_daemon.message import ChatMessage

log = logging.getLogger(__name__)

# Publishes reply text for the message being handled.
ReplyPublisher = Callable[[ChatMessage, str], Awaitable[None]]

TOKENS_PER_PROJECT = 1_000_000

_NUMBER_RE = re.compile(r"#(\d+)", re.ASCII)


@dataclass(frozen=True, slots=True)
class ProjectHandler:
    """Handler record for one project plus its message handling.

    Equality covers the fetched metadata and named mappings only, so handlers
    rebuilt from unchanged data compare equal.
    """

    project_id: int
    contract_id: str
    invocations: int
    name: str
    active: bool
    named_mappings: NamedMappings = field(default_factory=NamedMappings)
    reply: ReplyPublisher | None = field(default=None, compare=False, repr=False)

    def token_id(self, number: int) -> int:
        """On-chain token id for the ``number``-th mint of this project."""
        return self.project_id * TOKENS_PER_PROJECT + number

    def reply_text(self, content: str) -> str:
        match = _NUMBER_RE.search(content)
        if match is None:
            state = "active" if self.active else "paused"
            return f"{self.name}: {self.invocations} minted ({state})"
        number = int(match.group(1))
        if number >= self.invocations:
            return f"Invalid #, only {self.invocations} pieces minted for {self.name}."
        return f"{self.name} #{number} (token {self.token_id(number)})"

    async def handle_message(self, message: ChatMessage) -> None:
        text = self.reply_text(message.content)
        if self.reply is None:
            log.info("no reply publisher for %s, dropping reply to %s: %s", self.name, message.id, text)
            return
        await self.reply(message, text)
