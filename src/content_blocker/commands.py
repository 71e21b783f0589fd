"""Slash commands that let the user change the filter from the chat input."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

import structlog

from .settings import SettingsStore, SettingsStoreError

logger = structlog.get_logger(__name__)


class ResultLevel(str, Enum):
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class CommandResult:
    level: ResultLevel
    message: str

    @property
    def ok(self) -> bool:
        return self.level is ResultLevel.SUCCESS


CommandHandler = Callable[[list[str]], CommandResult]


@dataclass
class Command:
    name: str
    handler: CommandHandler
    usage: str = ""
    help_text: str = ""


@dataclass
class CommandRegistry:
    commands: dict[str, Command] = field(default_factory=dict)

    def register(
        self,
        name: str,
        handler: CommandHandler,
        usage: str = "",
        help_text: str = "",
    ) -> None:
        key = name.lstrip("/").lower()
        if key in self.commands:
            logger.warning("Replacing existing command", command=key)
        self.commands[key] = Command(key, handler, usage, help_text)

    def dispatch(self, line: str) -> CommandResult:
        """Parse ``/name arg1 arg2`` and run the matching handler."""
        # Plain whitespace split: quotes and backslashes stay part of the tag.
        tokens = line.split()
        if not tokens:
            return CommandResult(ResultLevel.ERROR, "Empty command")

        name = tokens[0].lstrip("/").lower()
        command = self.commands.get(name)
        if command is None:
            return CommandResult(ResultLevel.ERROR, f"Unknown command: /{name}")

        try:
            return command.handler(tokens[1:])
        except SettingsStoreError as e:
            logger.error("Command could not persist settings", command=name, error=str(e))
            return CommandResult(ResultLevel.ERROR, f"/{name} applied but not saved: {e}")

    def help(self) -> list[str]:
        return [
            f"/{c.name} {c.usage}".rstrip() + (f" - {c.help_text}" if c.help_text else "")
            for c in sorted(self.commands.values(), key=lambda c: c.name)
        ]


def register_blocker_commands(
    registry: CommandRegistry,
    store: SettingsStore,
) -> None:
    """Register ``/blockcontent`` and ``/toggleblocker`` against ``store``."""

    def block_content(args: list[str]) -> CommandResult:
        if len(args) < 2:
            return CommandResult(
                ResultLevel.WARNING,
                "Please give a start and an end tag, e.g. /blockcontent <tag> </tag>",
            )
        start_tag, end_tag = args[0], args[1]
        store.set_tags(start_tag, end_tag)
        logger.info("Block tags changed", start_tag=start_tag, end_tag=end_tag)
        return CommandResult(
            ResultLevel.SUCCESS,
            f"Content blocker tags set to {start_tag} and {end_tag}",
        )

    def toggle_blocker(args: list[str]) -> CommandResult:
        enabled = store.toggle_enabled()
        logger.info("Content blocker toggled", enabled=enabled)
        state = "enabled" if enabled else "disabled"
        return CommandResult(ResultLevel.SUCCESS, f"Content blocker {state}")

    registry.register(
        "blockcontent",
        block_content,
        usage="<start_tag> <end_tag>",
        help_text="Set the start and end tags of blocked content",
    )
    registry.register(
        "toggleblocker",
        toggle_blocker,
        help_text="Enable or disable the content blocker",
    )
