import re
from functools import lru_cache
from pathlib import Path
from re import Pattern

from pydantic import BaseModel, ConfigDict, Field, field_validator


@lru_cache(maxsize=64)
def compile_span_pattern(start_tag: str, end_tag: str) -> Pattern[str] | None:
    """Compile the literal, non-greedy, multiline span pattern for a tag pair.

    Returns None when either tag is empty so callers treat it as a no-op.
    """
    if not start_tag or not end_tag:
        return None
    return re.compile(f"{re.escape(start_tag)}.*?{re.escape(end_tag)}", re.DOTALL)


class FilterConfig(BaseModel):
    enabled: bool = Field(default=True, description="Strip tagged spans when true")
    start_tag: str = Field(default="<content>", description="Opening delimiter")
    end_tag: str = Field(default="</content>", description="Closing delimiter")

    # Frozen so a filtering call works on a consistent snapshot.
    model_config = ConfigDict(frozen=True)

    @property
    def compiled_pattern(self) -> Pattern[str] | None:
        return compile_span_pattern(self.start_tag, self.end_tag)


class ServerConfig(BaseModel):
    listen: str = Field(default="127.0.0.1:8790", description="Host:port to listen on")


class LoggingConfig(BaseModel):
    level: str = Field(default="info")

    @field_validator("level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        if v.lower() not in ["debug", "info", "warning", "error", "critical"]:
            raise ValueError("Invalid log level")
        return v.lower()


class SettingsStoreConfig(BaseModel):
    path: Path = Field(
        default=Path("content_blocker.settings.yaml"),
        description="File holding tags, exemptions and the last prompt list",
    )


class Config(BaseModel):
    server: ServerConfig = Field(default_factory=ServerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    settings: SettingsStoreConfig = Field(default_factory=SettingsStoreConfig)
    defaults: FilterConfig = Field(
        default_factory=FilterConfig,
        description="Filter settings used when no persisted settings exist",
    )

    model_config = ConfigDict(extra="forbid")  # Prevent unknown fields
