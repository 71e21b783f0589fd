from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path

import structlog
import uvicorn
from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from . import __version__
from .commands import CommandResult
from .config import Config, ConfigLoader
from .filters import render_preview_markup
from .plugin import ContentBlockerPlugin
from .settings import SettingsStore, SettingsStoreError

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8790
LOG_LEVELS = {"DEBUG": 10, "INFO": 20, "WARNING": 30, "ERROR": 40, "CRITICAL": 50}


def configure_logging(level: str = "info") -> None:
    """Configure structlog console output at the given level."""
    structlog.configure(
        processors=[
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            LOG_LEVELS.get(level.upper(), 20)
        ),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,
    )


logger = structlog.get_logger(__name__)


class CombineRequest(BaseModel):
    prompt_bits: list[str] = Field(default_factory=list)


class CombineResponse(BaseModel):
    prompt_bits: list[str]


class ExemptRequest(BaseModel):
    exempt: bool


class SettingsUpdate(BaseModel):
    enabled: bool | None = None
    start_tag: str | None = None
    end_tag: str | None = None


class CommandRequest(BaseModel):
    command: str


class BlockerServer:
    def __init__(self, config_loader: ConfigLoader, store: SettingsStore | None = None):
        self.config_loader = config_loader
        self.config: Config = config_loader.get_config()

        configure_logging(self.config.logging.level)

        self.plugin = ContentBlockerPlugin(
            store
            or SettingsStore(self.config.settings.path, defaults=self.config.defaults)
        )
        self.plugin.initialize()
        config_loader.reload_callback = self.apply_config

        self.app = FastAPI(
            title="Content Blocker",
            description="Strips tag-delimited content from prompts before generation",
            version=__version__,
            lifespan=self._lifespan,
        )

        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

        self._setup_routes()

    @property
    def store(self) -> SettingsStore:
        return self.plugin.store

    def apply_config(self, config: Config) -> None:
        """Apply a reloaded config: log level, and the settings store when its
        path or first-run defaults changed."""
        previous = self.config
        self.config = config
        configure_logging(config.logging.level)

        if config.settings != previous.settings or config.defaults != previous.defaults:
            store = SettingsStore(config.settings.path, defaults=config.defaults)
            self.plugin.replace_store(store)
            logger.info(
                "Settings store replaced after config reload",
                settings_path=str(store.path),
            )
        logger.info("Config reloaded", log_level=config.logging.level)

    def _setup_routes(self) -> None:
        """Setup FastAPI routes."""
        app = self.app
        plugin = self.plugin

        @app.get("/health")
        async def health_check() -> dict[str, str]:
            return {"status": "healthy", "version": __version__}

        @app.post("/v1/prompts/combine")
        def combine_prompts(body: CombineRequest) -> CombineResponse:
            return CombineResponse(
                prompt_bits=plugin.on_before_combine_prompts(body.prompt_bits)
            )

        @app.get("/v1/prompts")
        def list_prompts() -> list[dict]:
            return [s.model_dump() for s in plugin.prompt_list()]

        @app.put("/v1/prompts/{index}/exempt")
        def set_exempt(index: int, body: ExemptRequest) -> dict:
            try:
                changed = plugin.set_exempt(index, body.exempt)
            except ValueError as e:
                raise HTTPException(status_code=400, detail=str(e))
            except SettingsStoreError as e:
                logger.error("Could not persist exemption", index=index, error=str(e))
                raise HTTPException(status_code=500, detail="Could not save settings")
            return {"index": index, "exempt": plugin.is_exempt(index), "changed": changed}

        @app.get("/v1/preview")
        def preview(
            output_format: str = Query(
                default="json", alias="format", pattern="^(json|markup)$"
            ),
        ) -> list[dict]:
            previews = plugin.preview()
            if output_format == "markup":
                return [
                    {
                        "index": p.index,
                        "label": p.label,
                        "exempt": p.exempt,
                        "markup": render_preview_markup(p),
                    }
                    for p in previews
                ]
            return [p.model_dump(mode="json") for p in previews]

        @app.get("/v1/settings")
        def get_settings() -> dict:
            settings = plugin.store.to_settings()
            return settings.model_dump(exclude={"last_prompt_list"})

        @app.patch("/v1/settings")
        def update_settings(body: SettingsUpdate) -> dict:
            try:
                if body.start_tag is not None or body.end_tag is not None:
                    plugin.store.set_tags(body.start_tag, body.end_tag)
                if body.enabled is not None:
                    plugin.store.set_enabled(body.enabled)
            except SettingsStoreError as e:
                logger.error("Could not persist settings", error=str(e))
                raise HTTPException(status_code=500, detail="Could not save settings")
            logger.info("Settings updated", **body.model_dump(exclude_none=True))
            return get_settings()

        @app.post("/v1/commands")
        def run_command(body: CommandRequest) -> dict:
            result: CommandResult = plugin.run_command(body.command)
            return {"ok": result.ok, "level": result.level.value, "message": result.message}

    async def startup(self) -> None:
        """Startup tasks."""
        logger.info(
            "Starting Content Blocker",
            config_path=str(self.config_loader.config_path),
            settings_path=str(self.store.path),
            listen=self.config.server.listen,
        )

    @asynccontextmanager
    async def _lifespan(self, app: FastAPI) -> AsyncGenerator[None]:
        """FastAPI lifespan context that runs startup tasks."""
        await self.startup()
        yield
        self.config_loader.stop_hot_reload()


def create_app(
    config_loader: ConfigLoader, store: SettingsStore | None = None
) -> FastAPI:
    """Create FastAPI application with given config loader."""
    server = BlockerServer(config_loader, store)
    return server.app


def parse_listen(
    listen: str, default_host: str = DEFAULT_HOST, default_port: int = DEFAULT_PORT
) -> tuple[str, int]:
    """Split ``host:port``; a missing or non-numeric port uses the default."""
    host, sep, port = listen.rpartition(":")
    if not sep:
        return listen or default_host, default_port
    if not port.isdigit():
        return host or default_host, default_port
    return host or default_host, int(port)


def main() -> None:
    """Main entry point."""
    import argparse

    from dotenv import load_dotenv

    load_dotenv(override=True)

    parser = argparse.ArgumentParser(description="Content Blocker prompt filter service")
    parser.add_argument(
        "--config",
        type=Path,
        default=Path("config/content_blocker.yaml"),
        help="Path to configuration file (default: config/content_blocker.yaml)",
    )
    parser.add_argument("--host", default=None, help="Host to bind to")
    parser.add_argument("--port", type=int, default=None, help="Port to bind to")
    args = parser.parse_args()

    config_loader = ConfigLoader(args.config, enable_hot_reload=True)
    config = config_loader.get_config()

    listen_host, listen_port = parse_listen(config.server.listen)
    host = args.host or listen_host
    port = args.port or listen_port

    # Registers itself as the loader's reload callback.
    app = create_app(config_loader)
    logger.info(f"Starting server on {host}:{port}")
    try:
        uvicorn.run(app, host=host, port=port, log_level="info", access_log=False)
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received")
    finally:
        config_loader.stop_hot_reload()


if __name__ == "__main__":
    main()
