from typing import List, Literal

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_PROTECTED_TOOLS = [
    "task",
    "todowrite",
    "todoread",
    "prune",
    "distill",
    "compress",
    "batch",
]


class DeduplicationConfig(BaseModel):
    enabled: bool = True
    protected_tools: List[str] = Field(default_factory=list)


class SupersedeWritesConfig(BaseModel):
    enabled: bool = True
    write_tools: List[str] = Field(default_factory=lambda: ["write", "edit"])
    target_keys: List[str] = Field(
        default_factory=lambda: ["filePath", "file_path", "path"]
    )
    # "exact" compares target strings as-is; "normpath" compares after
    # os.path.normpath. Neither does prefix or glob matching.
    match_policy: Literal["exact", "normpath"] = "exact"


class PurgeErrorsConfig(BaseModel):
    enabled: bool = True
    turns: int = Field(default=4, ge=1)
    protected_tools: List[str] = Field(default_factory=list)


class StrategiesConfig(BaseModel):
    deduplication: DeduplicationConfig = Field(default_factory=DeduplicationConfig)
    supersede_writes: SupersedeWritesConfig = Field(default_factory=SupersedeWritesConfig)
    purge_errors: PurgeErrorsConfig = Field(default_factory=PurgeErrorsConfig)


class TurnProtectionConfig(BaseModel):
    enabled: bool = False
    turns: int = Field(default=4, ge=1)


class ManualModeConfig(BaseModel):
    enabled: bool = False
    automatic_strategies: bool = True


class Settings(BaseSettings):
    """Context garbage-collection configuration."""

    enabled: bool = True
    host: str = "0.0.0.0"
    port: int = 8000
    debug: bool = False
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    cors_origins: str = "*"

    protected_tools: List[str] = Field(
        default_factory=lambda: list(DEFAULT_PROTECTED_TOOLS)
    )
    allow_prune_inputs: List[str] = Field(default_factory=list)
    protected_file_patterns: List[str] = Field(default_factory=list)

    context_limit: int = Field(default=100000, gt=0)
    nudge_enabled: bool = True
    nudge_frequency: int = Field(default=10, ge=1)
    prune_notification: Literal["off", "minimal", "detailed"] = "detailed"

    tokenizer_encoding: str = "o200k_base"

    turn_protection: TurnProtectionConfig = Field(default_factory=TurnProtectionConfig)
    manual_mode: ManualModeConfig = Field(default_factory=ManualModeConfig)
    strategies: StrategiesConfig = Field(default_factory=StrategiesConfig)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="CONTEXTGC_",
        env_nested_delimiter="__",
        extra="ignore",
    )


def get_settings() -> Settings:
    """Return the application settings singleton (loaded from env / .env)."""
    global _SETTINGS
    try:
        return _SETTINGS
    except NameError:
        _SETTINGS = Settings()
        return _SETTINGS
