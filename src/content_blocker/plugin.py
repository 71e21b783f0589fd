"""Host-facing adapter that wires the tag filter into prompt assembly."""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable, Sequence
from typing import Any, Protocol

import structlog

from .commands import CommandRegistry, CommandResult, register_blocker_commands
from .filters import (
    SegmentPreview,
    SegmentSummary,
    filter_segments,
    preview_segments,
    summarize_segments,
)
from .settings import SettingsStore, SettingsStoreError

logger = structlog.get_logger(__name__)

BEFORE_COMBINE_PROMPTS = "generate_before_combine_prompts"
CHAT_CHANGED = "chat_changed"


class HostEventSource(Protocol):
    def on(self, event: str, handler: Callable[..., Any]) -> None: ...


class EventSource:
    """Small synchronous event bus for hosts that do not bring their own."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[Callable[..., Any]]] = defaultdict(list)

    def on(self, event: str, handler: Callable[..., Any]) -> None:
        self._handlers[event].append(handler)

    def emit(self, event: str, *args: Any, **kwargs: Any) -> list[Any]:
        return [handler(*args, **kwargs) for handler in list(self._handlers[event])]


class ContentBlockerPlugin:
    name = "content-blocker"

    def __init__(self, store: SettingsStore):
        self.store = store
        self.commands = CommandRegistry()
        self._initialized = False

    def initialize(self, event_source: HostEventSource | None = None) -> None:
        """Load settings, register commands and subscribe to host events."""
        if self._initialized:
            logger.debug("Content blocker already initialized")
            return
        self._attach_store(self.store)
        if event_source is not None:
            event_source.on(BEFORE_COMBINE_PROMPTS, self.on_before_combine_prompts)
            event_source.on(CHAT_CHANGED, self.on_chat_changed)
        self._initialized = True
        logger.info("Content blocker loaded", settings_path=str(self.store.path))

    def _attach_store(self, store: SettingsStore) -> None:
        store.load()
        try:
            # Persist defaults for keys missing from the file.
            store.save()
        except SettingsStoreError as e:
            logger.warning("Could not persist initial settings", error=str(e))
        commands = CommandRegistry()
        register_blocker_commands(commands, store)
        self.store = store
        self.commands = commands

    def replace_store(self, store: SettingsStore) -> None:
        """Switch to another settings store, e.g. after a config reload.

        Commands are re-registered so they act on the new store.
        """
        self._attach_store(store)

    def on_before_combine_prompts(self, prompt_bits: Sequence[str]) -> list[str]:
        """Return the prompt segments with blocked spans removed.

        This runs on the generation path, so it never raises: a storage
        failure is logged and filtering continues, and any unexpected error
        returns the segments unchanged.
        """
        original = list(prompt_bits)
        try:
            self.store.record_prompt_list(original)
        except SettingsStoreError as e:
            logger.warning("Could not persist last prompt list", error=str(e))

        try:
            config = self.store.filter_config()
            exemptions = self.store.exemptions.snapshot()
        except Exception as e:
            logger.exception("Settings unavailable, leaving prompts untouched", error=str(e))
            return original

        stale = self.store.exemptions.stale_indices(len(original))
        if stale:
            logger.warning(
                "Exempt indices beyond current prompt list",
                stale=stale,
                segments=len(original),
            )

        try:
            return filter_segments(original, config, exemptions)
        except Exception as e:
            logger.exception("Tag filtering failed, leaving prompts untouched", error=str(e))
            return original

    def on_chat_changed(self, *args: Any, **kwargs: Any) -> None:
        logger.debug("Chat context changed")

    def set_exempt(self, index: int, exempt: bool) -> bool:
        return self.store.set_exempt(index, exempt)

    def is_exempt(self, index: int) -> bool:
        return self.store.is_exempt(index)

    def prompt_list(self) -> list[SegmentSummary]:
        return summarize_segments(
            self.store.last_prompt_list, self.store.exemptions.snapshot()
        )

    def preview(self) -> list[SegmentPreview]:
        return preview_segments(
            self.store.last_prompt_list,
            self.store.filter_config(),
            self.store.exemptions.snapshot(),
        )

    def run_command(self, line: str) -> CommandResult:
        return self.commands.dispatch(line)
