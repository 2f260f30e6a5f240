from __future__ import annotations

from typing import Literal

from pydantic import Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError

from dining_pipeline.core.exceptions import ConfigError
from dining_pipeline.devkit.db import normalize_postgres_dsn
from dining_pipeline.fetchers.base import SourceConfig


class PipelineSettings(BaseSettings):
    model_config = SettingsConfigDict(extra="ignore")

    DB_URL: str = Field(min_length=1)
    PIPELINE_SOURCE_KIND: Literal["paged_json", "concept3d"] = "paged_json"
    PIPELINE_SOURCE_BASE_URL: str = Field(min_length=1)
    PIPELINE_SOURCE_AUTH_TOKEN: str | None = None
    PIPELINE_PAGE_SIZE: int = Field(default=200, gt=0)
    PIPELINE_START_PAGE: int = Field(default=1, gt=0)
    PIPELINE_END_PAGE: int = Field(default=1, gt=0)
    PIPELINE_CATEGORY_IDS: str = ""
    PIPELINE_MAX_CONCURRENCY: int = Field(default=5, gt=0)
    PIPELINE_REQUEST_INTERVAL_SECONDS: float = Field(default=0.0, ge=0)
    PIPELINE_HTTP_CONNECT_TIMEOUT_SECONDS: float = Field(default=2.0, ge=0)
    PIPELINE_HTTP_READ_TIMEOUT_SECONDS: float = Field(default=5.0, ge=0)
    PIPELINE_FAIL_FAST: bool = False
    PIPELINE_FETCH_DETAILS: bool = False
    PIPELINE_MAX_REJECT_RATIO: float = Field(default=0.2, ge=0, le=1)
    PIPELINE_REJECT_SAMPLE_SIZE: int = Field(default=5, ge=0)
    PIPELINE_RUN_TIMEOUT_SECONDS: float = Field(default=300.0, gt=0)
    PIPELINE_DB_BATCH_SIZE: int = Field(default=1000, gt=0)
    PIPELINE_CREATE_TABLES: bool = False
    PIPELINE_METRICS_TEXTFILE: str | None = None
    PIPELINE_LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"

    @field_validator("DB_URL")
    @classmethod
    def _check_db_url(cls, value: str) -> str:
        try:
            make_url(normalize_postgres_dsn(value))
        except ArgumentError as exc:
            raise ValueError(f"not a database URL: {exc}") from exc
        return value

    @field_validator("PIPELINE_LOG_LEVEL", mode="before")
    @classmethod
    def _upper_log_level(cls, value: object) -> object:
        return value.strip().upper() if isinstance(value, str) else value

    @model_validator(mode="after")
    def _check_page_range(self) -> "PipelineSettings":
        if self.PIPELINE_END_PAGE < self.PIPELINE_START_PAGE:
            raise ValueError("PIPELINE_END_PAGE must be >= PIPELINE_START_PAGE")
        return self

    @property
    def category_ids(self) -> frozenset[int]:
        raw = [part.strip() for part in self.PIPELINE_CATEGORY_IDS.split(",")]
        try:
            return frozenset(int(part) for part in raw if part)
        except ValueError as exc:
            raise ConfigError(f"PIPELINE_CATEGORY_IDS must be comma-separated integers: {self.PIPELINE_CATEGORY_IDS!r}") from exc

    def source_config(self) -> SourceConfig:
        return SourceConfig(
            base_url=self.PIPELINE_SOURCE_BASE_URL,
            page_size=self.PIPELINE_PAGE_SIZE,
            start_page=self.PIPELINE_START_PAGE,
            end_page=self.PIPELINE_END_PAGE,
            auth_token=self.PIPELINE_SOURCE_AUTH_TOKEN or None,
            category_ids=self.category_ids,
        )


def load_settings() -> PipelineSettings:
    try:
        settings = PipelineSettings()
    except ValidationError as exc:
        problems = [
            f"{'.'.join(str(part) for part in error['loc']) or 'settings'}: {error['msg']}" for error in exc.errors()
        ]
        raise ConfigError(f"invalid pipeline configuration: {'; '.join(problems)}") from exc
    # category ids are parsed lazily; force it here.
    settings.category_ids
    return settings
