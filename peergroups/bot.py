"""Client that answers slash commands."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence

from .client import Client
from .constants import GroupEvent
from .transport import TransportPeer

logger = logging.getLogger(__name__)

CommandHandler = Callable[[Sequence[str], str], None]


class Bot(Client):
    """A client that dispatches ``/command arg ...`` group messages.

    Example:
        bot = Bot(peer)
        bot.register_command("echo", lambda args, sender: bot.send(" ".join(args)))
        bot.join(host_id, "echobot")
    """

    role = "bot"

    def __init__(self, peer: TransportPeer) -> None:
        super().__init__(peer)
        self._commands: dict[str, CommandHandler] = {}
        self.subscribe(GroupEvent.MESSAGE, self._handle_message)

    @property
    def commands(self) -> list[str]:
        return sorted(self._commands)

    def register_command(self, name: str, handler: CommandHandler) -> None:
        """Register a slash command.

        Args:
            name: Command name without slash, e.g. "help"
            handler: Called as handler(args, from_id)
        """
        if not isinstance(name, str) or not name or name.startswith("/"):
            raise ValueError(f"Invalid command name: {name!r}")
        self._commands[name] = handler

    def unregister_command(self, name: str) -> None:
        self._commands.pop(name, None)

    def _handle_message(self, text: str, from_id: str) -> None:
        if not text.startswith("/"):
            return
        body = text[1:]
        if not body or body[0].isspace():
            return
        parts = body.split()
        name, args = parts[0], parts[1:]
        handler = self._commands.get(name)
        if handler is None:
            logger.debug("Ignoring unknown command /%s from %s", name, from_id)
            return
        try:
            handler(args, from_id)
        except Exception as e:
            logger.exception("Error in command handler /%s: %s", name, e)
            self.publish(GroupEvent.ERROR, e)
