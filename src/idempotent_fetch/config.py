"""Configuration module for the idempotent fetch service.

This module provides the IdempotencyConfig class. One instance is built at
startup and passed explicitly to the coordinator, the stores, the business
logic and the app factory.

Example:
    Basic usage with defaults:

        >>> config = IdempotencyConfig()
        >>> config.key_path
        'parse_json(body).address'

    Custom configuration:

        >>> config = IdempotencyConfig(
        ...     result_ttl_seconds=600,
        ...     storage_backend="dynamodb",
        ...     table_name="idempotency",
        ... )

    Loading from environment:

        >>> import os
        >>> os.environ['IDEMPOTENCY_TABLE_NAME'] = 'prod-idempotency'
        >>> os.environ['IDEMPOTENCY_STORAGE_BACKEND'] = 'dynamodb'
        >>> config = IdempotencyConfig.from_env()
"""

import hashlib
import os
from typing import Any, Literal

import jmespath
from jmespath.exceptions import JMESPathError
from pydantic import BaseModel, Field, field_validator, model_validator

VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


class IdempotencyConfig(BaseModel):
    """Configuration for the idempotency layer and the service around it.

    Attributes:
        key_path: JMESPath expression evaluated against the request event to
            select the value the idempotency key is derived from.
            ``parse_json(<field>)`` decodes a JSON-encoded string field.
        payload_validation_path: Optional expression selecting the part of the
            event that must match on a cache hit. None disables validation.
        key_prefix: Namespace prepended to every derived key.
        hash_function: hashlib algorithm used to normalize resolved values.
        in_progress_ttl_seconds: How long a claim stays exclusive before a
            later caller may reclaim it. Capped by the invocation deadline.
        result_ttl_seconds: How long a completed result is served from the
            store.
        invocation_timeout_seconds: Time budget of one invocation; the HTTP
            adapter registers ``now + invocation_timeout_seconds`` as deadline.
        storage_backend: "memory" or "dynamodb".
        table_name: DynamoDB table holding idempotency records.
        dynamodb_endpoint_url: Endpoint override (DynamoDB Local, LocalStack).
        aws_region: AWS region for the DynamoDB client.
        fetch_timeout_seconds: HTTP timeout for the remote fetch.
        cleanup_interval_seconds: Sweep interval for the in-memory store.
        log_level: Log level for structlog.
        json_logs: Emit JSON logs when True, console logs otherwise.

    Note:
        This class is immutable (frozen=True). Create a new instance if you
        need different settings.
    """

    key_path: str = Field(
        default="parse_json(body).address",
        description="JMESPath expression selecting the idempotency key source",
    )
    payload_validation_path: str | None = Field(
        default=None,
        description="JMESPath expression selecting the payload to validate on cache hits",
    )
    key_prefix: str = Field(
        default="fetch-location",
        description="Namespace prepended to derived keys",
    )
    hash_function: str = Field(
        default="md5",
        description="hashlib algorithm used to hash resolved key values",
    )
    in_progress_ttl_seconds: int = Field(
        default=60,
        description="Seconds a claim stays exclusive (1-3600)",
    )
    result_ttl_seconds: int = Field(
        default=3600,
        description="Seconds a completed result is cached (1-604800)",
    )
    invocation_timeout_seconds: int = Field(
        default=30,
        description="Time budget of one invocation in seconds (1-900)",
    )
    storage_backend: Literal["memory", "dynamodb"] = Field(
        default="memory",
        description="Persistence store backend",
    )
    table_name: str = Field(
        default="idempotency",
        description="DynamoDB table name",
    )
    dynamodb_endpoint_url: str | None = Field(
        default=None,
        description="DynamoDB endpoint override",
    )
    aws_region: str | None = Field(
        default=None,
        description="AWS region for the DynamoDB client",
    )
    fetch_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="HTTP timeout for the remote fetch",
    )
    cleanup_interval_seconds: int = Field(
        default=300,
        ge=1,
        description="Sweep interval for expired in-memory records",
    )
    log_level: str = Field(
        default="INFO",
        description="Log level",
    )
    json_logs: bool = Field(
        default=True,
        description="Emit JSON formatted logs",
    )

    model_config = {"frozen": True}

    @field_validator("key_path", "payload_validation_path")
    @classmethod
    def validate_expression(cls, v: str | None) -> str | None:
        """Validate that path expressions compile.

        Raises:
            ValueError: If the expression is empty or not valid JMESPath.

        Example:
            >>> IdempotencyConfig(key_path="parse_json(body).[address, delay]").key_path
            'parse_json(body).[address, delay]'
        """
        if v is None:
            return v
        if not v.strip():
            raise ValueError("path expression must not be empty")
        try:
            jmespath.compile(v)
        except JMESPathError as e:
            raise ValueError(f"Invalid path expression {v!r}: {e}") from e
        return v

    @field_validator("hash_function")
    @classmethod
    def validate_hash_function(cls, v: str) -> str:
        """Validate that the hash algorithm is available on every platform."""
        name = v.lower()
        if name not in hashlib.algorithms_guaranteed:
            raise ValueError(
                f"Unsupported hash_function {v!r}. "
                f"Valid choices are: {', '.join(sorted(hashlib.algorithms_guaranteed))}"
            )
        if name.startswith("shake_"):
            raise ValueError("Variable-length shake digests are not supported")
        return name

    @field_validator("in_progress_ttl_seconds")
    @classmethod
    def validate_in_progress_ttl(cls, v: int) -> int:
        if not (1 <= v <= 3600):
            raise ValueError(f"in_progress_ttl_seconds must be between 1 and 3600, got {v}")
        return v

    @field_validator("result_ttl_seconds")
    @classmethod
    def validate_result_ttl(cls, v: int) -> int:
        if not (1 <= v <= 604800):
            raise ValueError(
                f"result_ttl_seconds must be between 1 and 604800 (7 days), got {v}"
            )
        return v

    @field_validator("invocation_timeout_seconds")
    @classmethod
    def validate_invocation_timeout(cls, v: int) -> int:
        if not (1 <= v <= 900):
            raise ValueError(
                f"invocation_timeout_seconds must be between 1 and 900 (15 minutes), got {v}"
            )
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in VALID_LOG_LEVELS:
            raise ValueError(
                f"Invalid log level {v!r}. Valid levels are: {', '.join(sorted(VALID_LOG_LEVELS))}"
            )
        return level

    @model_validator(mode="after")
    def validate_ttls(self) -> "IdempotencyConfig":
        """A claim must not outlive the cached result it protects.

        Raises:
            ValueError: If in_progress_ttl_seconds exceeds result_ttl_seconds.
        """
        if self.in_progress_ttl_seconds > self.result_ttl_seconds:
            raise ValueError(
                "in_progress_ttl_seconds must not exceed result_ttl_seconds "
                f"({self.in_progress_ttl_seconds} > {self.result_ttl_seconds})"
            )
        return self

    @classmethod
    def from_env(cls, prefix: str = "IDEMPOTENCY_") -> "IdempotencyConfig":
        """Create configuration from environment variables.

        Variable names are the uppercase field names with the prefix, e.g.
        ``IDEMPOTENCY_TABLE_NAME`` or ``IDEMPOTENCY_RESULT_TTL_SECONDS``.
        Missing variables keep the defaults.

        Args:
            prefix: Prefix for environment variable names.

        Returns:
            IdempotencyConfig instance populated from environment variables.
        """
        config_dict: dict[str, Any] = {}

        field_types = {
            "key_path": str,
            "payload_validation_path": str,
            "key_prefix": str,
            "hash_function": str,
            "in_progress_ttl_seconds": int,
            "result_ttl_seconds": int,
            "invocation_timeout_seconds": int,
            "storage_backend": str,
            "table_name": str,
            "dynamodb_endpoint_url": str,
            "aws_region": str,
            "fetch_timeout_seconds": float,
            "cleanup_interval_seconds": int,
            "log_level": str,
            "json_logs": bool,
        }

        for field_name, field_type in field_types.items():
            env_var = f"{prefix}{field_name.upper()}"
            env_value = os.environ.get(env_var)

            if env_value is not None:
                if field_type is int:
                    config_dict[field_name] = int(env_value)
                elif field_type is float:
                    config_dict[field_name] = float(env_value)
                elif field_type is bool:
                    config_dict[field_name] = env_value.strip().lower() in {"1", "true", "yes"}
                else:
                    config_dict[field_name] = env_value

        return cls(**config_dict)
