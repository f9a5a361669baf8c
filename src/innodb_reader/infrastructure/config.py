"""Configuration management for the tablespace reader."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ReaderConfig(BaseModel):
    """Page and record decoding configuration."""

    page_size: int | None = Field(
        default=None,
        ge=4096,
        le=65536,
        description="Page size override in bytes (default: detect from page 0)",
    )
    strict_chains: bool = Field(
        default=True,
        description="Raise on record/page chain corruption instead of stopping quietly",
    )
    text_encoding: str = Field(default="utf-8", description="Charset for text columns")

    @field_validator("page_size")
    @classmethod
    def _power_of_two(cls, value: int | None) -> int | None:
        if value is not None and value & (value - 1):
            raise ValueError(f"page_size must be a power of two, got {value}")
        return value


class ChecksumConfig(BaseModel):
    """Page checksum validation configuration."""

    algorithm: Literal["detect", "crc32", "innodb", "none"] = Field(
        default="detect", description="Checksum algorithm to validate against"
    )
    verify: bool = Field(default=True, description="Validate checksums when pages are parsed")


class ObservabilityConfig(BaseModel):
    """Observability configuration."""

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Log level"
    )
    log_format: Literal["json", "console"] = Field(default="json", description="Log format")
    otel_endpoint: str | None = Field(
        default=None, description="OpenTelemetry collector endpoint"
    )
    otel_service_name: str = Field(
        default="innodb_reader", description="Service name for tracing"
    )


class Config(BaseSettings):
    """Main configuration for the tablespace reader."""

    model_config = SettingsConfigDict(
        env_prefix="INNODB_READER_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    reader: ReaderConfig = Field(default_factory=ReaderConfig)
    checksum: ChecksumConfig = Field(default_factory=ChecksumConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)


@lru_cache
def get_config() -> Config:
    """Get the global configuration instance."""
    return Config()
