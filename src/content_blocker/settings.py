"""Persisted plugin settings: tags, enabled flag, exemptions and last prompt list."""

from __future__ import annotations

import os
import tempfile
import threading
from collections.abc import Sequence
from pathlib import Path

import structlog
import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from .config.schema import FilterConfig
from .filters.exemptions import ExemptionSet

logger = structlog.get_logger(__name__)


class SettingsStoreError(Exception):
    """Raised when persisted settings cannot be written."""


class BlockerSettings(BaseModel):
    enabled: bool = Field(default=True)
    start_tag: str = Field(default="<content>")
    end_tag: str = Field(default="</content>")
    whitelisted_prompts: list[int] = Field(default_factory=list)
    last_prompt_list: list[str] = Field(default_factory=list)

    @field_validator("whitelisted_prompts")
    @classmethod
    def validate_indices(cls, v: list[int]) -> list[int]:
        if any(i < 0 for i in v):
            raise ValueError("Whitelisted prompt indices must be non-negative")
        return sorted(set(v))

    @classmethod
    def from_defaults(cls, defaults: FilterConfig) -> "BlockerSettings":
        return cls(**defaults.model_dump())

    def filter_config(self) -> FilterConfig:
        return FilterConfig(
            enabled=self.enabled, start_tag=self.start_tag, end_tag=self.end_tag
        )


class SettingsStore:
    """File-backed owner of the mutable plugin state.

    Every setter changes the in-memory state first and then writes the file,
    so a failed write leaves the running process with the new value and
    raises :class:`SettingsStoreError` for the caller to report.
    """

    def __init__(self, path: Path, defaults: FilterConfig | None = None):
        self.path = Path(path)
        self.defaults = defaults or FilterConfig()
        self._lock = threading.RLock()
        self._filter_config = self.defaults
        self._last_prompt_list: list[str] = []
        self.exemptions = ExemptionSet()

    def load(self) -> BlockerSettings:
        """Load settings from disk, filling missing keys from the defaults."""
        data: dict = {}
        try:
            if self.path.exists():
                with open(self.path, encoding="utf-8") as f:
                    loaded = yaml.safe_load(f)
                if loaded is None:
                    loaded = {}
                if not isinstance(loaded, dict):
                    raise TypeError("settings file must contain a mapping")
                data = loaded
                logger.info("Settings loaded", path=str(self.path))
            else:
                logger.info("Settings file not found, using defaults", path=str(self.path))
            settings = BlockerSettings(
                **{**BlockerSettings.from_defaults(self.defaults).model_dump(), **data}
            )
        except (yaml.YAMLError, ValidationError, TypeError) as e:
            logger.error("Failed to load settings, using defaults", error=str(e))
            settings = BlockerSettings.from_defaults(self.defaults)
        except OSError as e:
            logger.error("Could not read settings, using defaults", error=str(e))
            settings = BlockerSettings.from_defaults(self.defaults)

        self._apply(settings)
        return settings

    def _apply(self, settings: BlockerSettings) -> None:
        with self._lock:
            self._filter_config = settings.filter_config()
            self._last_prompt_list = list(settings.last_prompt_list)
            self.exemptions = ExemptionSet(settings.whitelisted_prompts)

    def to_settings(self) -> BlockerSettings:
        with self._lock:
            cfg = self._filter_config
            return BlockerSettings(
                enabled=cfg.enabled,
                start_tag=cfg.start_tag,
                end_tag=cfg.end_tag,
                whitelisted_prompts=self.exemptions.to_list(),
                last_prompt_list=list(self._last_prompt_list),
            )

    def save(self) -> None:
        """Write the current state atomically.

        The lock is held from snapshot to replace so an older snapshot can
        never overwrite a newer file. Non-ASCII characters are written as
        escapes; raw U+0085 inside a quoted scalar reloads as a space.
        """
        with self._lock:
            payload = self.to_settings().model_dump(mode="json")
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                fd, tmp_name = tempfile.mkstemp(
                    dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
                )
                try:
                    with os.fdopen(fd, "w", encoding="utf-8") as f:
                        yaml.safe_dump(payload, f, sort_keys=False)
                    os.replace(tmp_name, self.path)
                except BaseException:
                    Path(tmp_name).unlink(missing_ok=True)
                    raise
            except (OSError, yaml.YAMLError) as e:
                raise SettingsStoreError(
                    f"Could not save settings to {self.path}: {e}"
                ) from e
        logger.debug("Settings saved", path=str(self.path))

    def filter_config(self) -> FilterConfig:
        with self._lock:
            return self._filter_config

    def set_enabled(self, enabled: bool) -> None:
        with self._lock:
            self._filter_config = self._filter_config.model_copy(
                update={"enabled": enabled}
            )
        self.save()

    def toggle_enabled(self) -> bool:
        with self._lock:
            enabled = not self._filter_config.enabled
            self._filter_config = self._filter_config.model_copy(
                update={"enabled": enabled}
            )
        self.save()
        return enabled

    def set_tags(self, start_tag: str | None = None, end_tag: str | None = None) -> None:
        update: dict[str, str] = {}
        if start_tag is not None:
            update["start_tag"] = start_tag
        if end_tag is not None:
            update["end_tag"] = end_tag
        if not update:
            return
        with self._lock:
            self._filter_config = self._filter_config.model_copy(update=update)
        self.save()

    def set_exempt(self, index: int, exempt: bool) -> bool:
        changed = self.exemptions.set_exempt(index, exempt)
        if changed:
            self.save()
        return changed

    def is_exempt(self, index: int) -> bool:
        return self.exemptions.is_exempt(index)

    @property
    def last_prompt_list(self) -> list[str]:
        with self._lock:
            return list(self._last_prompt_list)

    def record_prompt_list(self, prompt_bits: Sequence[str]) -> None:
        with self._lock:
            self._last_prompt_list = list(prompt_bits)
        self.save()
