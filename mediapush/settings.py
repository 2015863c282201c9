from __future__ import annotations

from typing import Literal

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class StorageSettings(BaseSettings):
    """Configuration for the S3-compatible media store."""

    model_config = SettingsConfigDict(
        env_prefix="", case_sensitive=False, extra="ignore"
    )

    endpoint: str | None = Field(
        default=None,
        validation_alias="MEDIAPUSH_STORAGE_ENDPOINT",
    )
    access_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "MEDIAPUSH_STORAGE_ACCESS_KEY",
            "AWS_ACCESS_KEY_ID",
        ),
    )
    secret_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "MEDIAPUSH_STORAGE_SECRET_KEY",
            "AWS_SECRET_ACCESS_KEY",
        ),
    )
    session_token: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "MEDIAPUSH_STORAGE_SESSION_TOKEN",
            "AWS_SESSION_TOKEN",
        ),
    )
    region: str = Field(
        default="us-east-1",
        validation_alias=AliasChoices(
            "MEDIAPUSH_STORAGE_REGION",
            "AWS_REGION",
        ),
    )
    addressing_style: Literal["auto", "virtual", "path"] = Field(
        default="path",
        validation_alias="MEDIAPUSH_STORAGE_ADDRESSING_STYLE",
    )
    media_bucket: str = Field(
        default="media",
        validation_alias="MEDIAPUSH_MEDIA_BUCKET",
    )
    media_prefix: str = Field(
        default="",
        validation_alias="MEDIAPUSH_MEDIA_PREFIX",
    )
    locator_cache_ttl: float = Field(
        default=30.0,
        ge=0,
        validation_alias="MEDIAPUSH_LOCATOR_CACHE_TTL",
    )

    @field_validator("media_prefix", mode="after")
    @classmethod
    def _normalise_prefix(cls, value: str) -> str:
        value = value.strip().strip("/")
        return f"{value}/" if value else ""


class StateSettings(BaseSettings):
    """Where the token registry and pending jobs live."""

    model_config = SettingsConfigDict(
        env_prefix="", case_sensitive=False, extra="ignore"
    )

    backend: Literal["memory", "s3"] = Field(
        default="memory",
        validation_alias="MEDIAPUSH_STATE_BACKEND",
    )
    bucket: str = Field(
        default="mediapush-state",
        validation_alias="MEDIAPUSH_STATE_BUCKET",
    )
    token_prefix: str = Field(
        default="tokens/",
        validation_alias="MEDIAPUSH_STATE_TOKEN_PREFIX",
    )
    job_prefix: str = Field(
        default="jobs/",
        validation_alias="MEDIAPUSH_STATE_JOB_PREFIX",
    )


class PushSettings(BaseSettings):
    """Configuration for the FCM v1 push gateway."""

    model_config = SettingsConfigDict(
        env_prefix="", case_sensitive=False, extra="ignore"
    )

    service_account_file: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "MEDIAPUSH_FCM_SERVICE_ACCOUNT_FILE",
            "GOOGLE_APPLICATION_CREDENTIALS",
        ),
    )
    project_id: str | None = Field(
        default=None,
        validation_alias="MEDIAPUSH_FCM_PROJECT_ID",
    )
    endpoint: str = Field(
        default="https://fcm.googleapis.com",
        validation_alias="MEDIAPUSH_FCM_ENDPOINT",
    )
    timeout: float = Field(
        default=10.0,
        gt=0,
        validation_alias="MEDIAPUSH_FCM_TIMEOUT",
    )
    max_concurrency: int = Field(
        default=100,
        ge=1,
        validation_alias="MEDIAPUSH_PUSH_MAX_CONCURRENCY",
    )

    @property
    def enabled(self) -> bool:
        """Check if a service account has been configured."""
        return bool(self.service_account_file)


class SchedulerSettings(BaseSettings):
    """Configuration for deferred deliveries."""

    model_config = SettingsConfigDict(
        env_prefix="", case_sensitive=False, extra="ignore"
    )

    utc_offset: str = Field(
        default="+00:00",
        pattern=r"^[+-]\d{2}:\d{2}$",
        validation_alias="MEDIAPUSH_SCHEDULER_UTC_OFFSET",
    )
    missed_job_policy: Literal["fire", "discard"] = Field(
        default="fire",
        validation_alias="MEDIAPUSH_SCHEDULER_MISSED_JOB_POLICY",
    )
