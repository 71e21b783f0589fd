import os
from collections.abc import Callable
from pathlib import Path
from types import TracebackType

import structlog
import yaml
from pydantic import ValidationError
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer
from watchdog.observers.api import BaseObserver

from .schema import Config

logger = structlog.get_logger(__name__)

ReloadCallback = Callable[[Config], None]


class ConfigReloadHandler(FileSystemEventHandler):
    """Reload the config when its file is written, created or renamed into place."""

    def __init__(self, config_loader: "ConfigLoader"):
        self.config_loader = config_loader

    def _is_config_file(self, path: str | bytes | None) -> bool:
        if not path:
            return False
        target = Path(os.fsdecode(path)).resolve()
        return target == self.config_loader.config_path.resolve()

    def _handle(self, event: FileSystemEvent, path: str | bytes | None) -> None:
        if event.is_directory or not self._is_config_file(path):
            return
        logger.info("Config file changed, reloading", path=os.fsdecode(path))
        self.config_loader.reload()

    def on_modified(self, event: FileSystemEvent) -> None:
        self._handle(event, event.src_path)

    def on_created(self, event: FileSystemEvent) -> None:
        self._handle(event, event.src_path)

    def on_moved(self, event: FileSystemEvent) -> None:
        # Editors that save atomically rename a temp file over the config.
        self._handle(event, getattr(event, "dest_path", None))


class ConfigLoader:
    """YAML-backed :class:`Config` with optional hot reload.

    ``reload_callback`` receives the new config only when a reload produced a
    config that differs from the one in use.
    """

    def __init__(
        self,
        config_path: Path | None = None,
        enable_hot_reload: bool = False,
        reload_callback: ReloadCallback | None = None,
    ):
        self.config_path = config_path or Path("config/content_blocker.yaml")
        self.enable_hot_reload = enable_hot_reload
        self.reload_callback = reload_callback
        self._config: Config | None = None
        self._last_modified: float | None = None
        self._observer: BaseObserver | None = None

        self.load()

        if enable_hot_reload:
            self._setup_hot_reload()

    def _read(self) -> Config:
        if not self.config_path.exists():
            logger.info(
                "Config file not found, using defaults", path=str(self.config_path)
            )
            return Config()

        with open(self.config_path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
        self._last_modified = os.path.getmtime(self.config_path)
        config = Config(**(data or {}))
        logger.info("Config loaded successfully", path=str(self.config_path))
        return config

    def load(self) -> Config:
        """Load configuration from file, falling back to defaults on any error."""
        try:
            self._config = self._read()
        except (yaml.YAMLError, ValidationError, TypeError) as e:
            logger.error("Failed to load config, using defaults", error=str(e))
            self._config = Config()
        except OSError as e:
            logger.error("Could not read config, using defaults", error=str(e))
            self._config = Config()
        return self._config

    def reload(self) -> Config:
        """Reload if the file changed and notify ``reload_callback`` of a new config."""
        previous = self._config
        if not self.config_path.exists():
            return previous or Config()

        current_mtime = os.path.getmtime(self.config_path)
        if self._last_modified is not None and current_mtime <= self._last_modified:
            return previous or Config()

        config = self.load()
        if config != previous and self.reload_callback is not None:
            try:
                self.reload_callback(config)
            except Exception as e:
                # Runs on the watchdog thread; keep watching after a bad apply.
                logger.exception("Config reload callback failed", error=str(e))
        return config

    def get_config(self) -> Config:
        """Get current configuration."""
        if self._config is None:
            return self.load()
        return self._config

    def _setup_hot_reload(self) -> None:
        """Watch the config directory for changes to the config file."""
        directory = self.config_path.parent
        if not directory.exists():
            logger.warning(
                "Config directory missing, hot reload disabled", path=str(directory)
            )
            return

        self._observer = Observer()
        self._observer.schedule(ConfigReloadHandler(self), str(directory), recursive=False)
        self._observer.start()
        logger.info("Hot reload enabled for config file", path=str(self.config_path))

    def stop_hot_reload(self) -> None:
        """Stop file watching."""
        if self._observer:
            self._observer.stop()
            self._observer.join()
            self._observer = None
            logger.info("Hot reload stopped")

    def __enter__(self) -> "ConfigLoader":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.stop_hot_reload()
