from __future__ import annotations

import os
from typing import Dict, Optional

import yaml
from pydantic import AliasChoices, BaseModel, Field

from .contracts import HttpRequestSpec, RetryPolicy

DEFAULT_TARGET_URI = "https://www.google.com/"


class TargetConfig(BaseModel):
    """The external endpoint called by ``fetch_fixed_http``."""

    uri: str = Field(
        default=DEFAULT_TARGET_URI,
        validation_alias=AliasChoices("uri", "targetUri", "target_uri"),
    )
    method: str = "GET"
    headers: Dict[str, str] = Field(default_factory=dict)
    body: Optional[str] = None
    content_type: Optional[str] = None

    def to_request(self) -> HttpRequestSpec:
        return HttpRequestSpec(
            method=self.method.upper(),
            uri=self.uri,
            headers=self.headers,
            body=self.body,
            content_type=self.content_type,
        )


class RetryConfig(BaseModel):
    """Retry settings, see :class:`durafetch.contracts.RetryPolicy`."""

    max_attempts: int = Field(
        default=3, ge=1, validation_alias=AliasChoices("max_attempts", "maxAttempts")
    )
    initial_backoff: float = Field(
        default=5.0,
        gt=0,
        validation_alias=AliasChoices("initial_backoff", "initialBackoff"),
    )
    backoff_multiplier: float = Field(
        default=2.0,
        ge=1,
        validation_alias=AliasChoices("backoff_multiplier", "backoffMultiplier"),
    )
    max_backoff: Optional[float] = Field(
        default=None, validation_alias=AliasChoices("max_backoff", "maxBackoff")
    )

    def to_policy(self) -> RetryPolicy:
        return RetryPolicy(**self.model_dump())


class DurafetchConfig(BaseModel):
    """Top-level configuration model."""

    target: TargetConfig = TargetConfig()
    retry: RetryConfig = RetryConfig()
    wait_timeout: float = Field(
        default=60.0, ge=0, validation_alias=AliasChoices("wait_timeout", "waitTimeout")
    )
    poll_interval: float = Field(default=0.5, gt=0)
    request_timeout: float = Field(default=30.0, gt=0)
    database_url: Optional[str] = None


def load_config(path: Optional[str] = None) -> DurafetchConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to DURAFETCH_CONFIG env
            variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("DURAFETCH_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = DurafetchConfig(**data)
    else:
        config = DurafetchConfig()

    env_db_url = os.getenv("DURAFETCH_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    env_target = os.getenv("DURAFETCH_TARGET_URI")
    if env_target:
        config.target = config.target.model_copy(update={"uri": env_target})
    return config
