from pathlib import Path
from typing import Any

from pydantic import Field, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from mnemo.domain.constants import SAVE_DEBOUNCE_MS

CONFIG_FILES = [
    Path.home() / ".config/mnemo/config.toml",
    Path.home() / ".mnemo.toml",
]

DATA_DIR_NAME = ".mnemo"
DATA_FILE_NAME = "data.json"


class AppConfig(BaseSettings):
    """
    Configuration for mnemo.
    Supports loading from:
    1. Environment variables (MNEMO_*)
    2. Config file (~/.config/mnemo/config.toml)
    3. Manual overrides (CLI)
    """

    model_config = SettingsConfigDict(
        env_prefix="MNEMO_",
        extra="ignore",
    )

    # Paths
    vault_root: Path | None = None
    data_file: Path | None = None
    log_dir: Path = Field(default_factory=lambda: Path.home() / ".config/mnemo/logs")

    # Persistence
    save_debounce_ms: int = Field(default=SAVE_DEBOUNCE_MS, ge=0)

    # Scheduling defaults, used until the document carries its own
    desired_retention: float | None = Field(default=None, ge=0.7, le=0.97)
    maximum_interval: int | None = Field(default=None, ge=1)
    enable_fuzz: bool | None = None

    verbose: int = 1

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

        toml_file = next((f for f in CONFIG_FILES if f.exists()), None)
        if toml_file:
            return (
                init_settings,
                env_settings,
                TomlConfigSettingsSource(settings_cls, toml_file=toml_file),
            )
        return (init_settings, env_settings)

    @field_validator("vault_root", "data_file", mode="before")
    @classmethod
    def resolve_path(cls, v: Any) -> Path | None:
        if v is None or v == "":
            return None
        return Path(v).expanduser().resolve()

    @property
    def fsrs_overrides(self) -> dict[str, Any]:
        """Scheduler settings given explicitly in config, keyed like FsrsParams."""
        overrides: dict[str, Any] = {}
        if self.desired_retention is not None:
            overrides["request_retention"] = self.desired_retention
        if self.maximum_interval is not None:
            overrides["maximum_interval"] = self.maximum_interval
        if self.enable_fuzz is not None:
            overrides["enable_fuzz"] = self.enable_fuzz
        return overrides


def resolve_config(cli_overrides: dict[str, Any] | None = None) -> AppConfig:
    """
    Multi-layered configuration resolution.
    1. Defaults in AppConfig
    2. ~/.config/mnemo/config.toml (if exists)
    3. Environment variables (MNEMO_*)
    4. cli_overrides (passed from Typer)
    """
    overrides = {k: v for k, v in (cli_overrides or {}).items() if v is not None}
    config = AppConfig(**overrides)

    if config.vault_root is None:
        config.vault_root = Path.cwd().resolve()

    if config.data_file is None:
        # The document lives inside the vault so it travels with the notes.
        config.data_file = config.vault_root / DATA_DIR_NAME / DATA_FILE_NAME

    return config
