from pathlib import Path
from typing import Any, Literal

from pydantic import Field, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from mnemo.domain.constants import MAX_QUALITY, MIN_QUALITY, UI_QUALITIES


def _default_database_url() -> str:
    return f"sqlite:///{Path.home() / '.config/mnemo/mnemo.db'}"


class AppConfig(BaseSettings):
    """
    Configuration model for mnemo.
    Supports loading from:
    1. Environment variables (MNEMO_*)
    2. Config file (~/.config/mnemo/config.toml)
    3. Manual overrides (CLI / server)
    """

    model_config = SettingsConfigDict(
        env_prefix="MNEMO_",
        extra="ignore",
    )

    # Storage
    store: Literal["memory", "sql"] = "sql"
    database_url: str = Field(default_factory=_default_database_url)

    # Server
    host: str = "127.0.0.1"
    port: int = 8000

    # Review
    allowed_qualities: list[int] = Field(default_factory=lambda: list(UI_QUALITIES))
    default_learner: str = "local"

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        from pydantic_settings import TomlConfigSettingsSource

        # Re-evaluated on every load so a patched HOME is honoured
        toml_file = Path.home() / ".config/mnemo/config.toml"

        # Earlier sources win: overrides, then env, then the TOML file
        if toml_file.exists():
            return (
                init_settings,
                env_settings,
                TomlConfigSettingsSource(settings_cls, toml_file=toml_file),
            )
        return (init_settings, env_settings)

    @field_validator("allowed_qualities")
    @classmethod
    def check_qualities(cls, v: list[int]) -> list[int]:
        if not v:
            raise ValueError("allowed_qualities must not be empty")
        for q in v:
            if q < MIN_QUALITY or q > MAX_QUALITY:
                raise ValueError(f"quality {q} is outside [{MIN_QUALITY}, {MAX_QUALITY}]")
        return sorted(set(v))

    @field_validator("log_level", mode="before")
    @classmethod
    def upper_log_level(cls, v: Any) -> Any:
        return v.upper() if isinstance(v, str) else v


def resolve_config(overrides: dict[str, Any] | None = None) -> AppConfig:
    """
    Multi-layered configuration resolution.
    1. Defaults in AppConfig
    2. ~/.config/mnemo/config.toml (if exists)
    3. Environment variables (MNEMO_*)
    4. overrides (passed from Typer or the server), None values ignored
    """
    clean = {k: v for k, v in (overrides or {}).items() if v is not None}
    return AppConfig(**clean)
