"""Configuration module for the idempotency engine.

This module provides the IdempotencyOptions class for configuring the
behavior of the engine: record expiry, the key header, cache key prefix,
lock timeout, caching policy and validation behavior.

Example:
    Basic usage with defaults:

        >>> options = IdempotencyOptions()
        >>> options.header_key_name
        'IdempotencyKey'

    Custom configuration:

        >>> options = IdempotencyOptions(
        ...     expires_in_seconds=3600,
        ...     lock_timeout_seconds=None,
        ...     is_optional=True,
        ... )

    Loading from environment:

        >>> import os
        >>> os.environ['IDEMPOTENCY_EXPIRES_IN_SECONDS'] = '3600'
        >>> os.environ['IDEMPOTENCY_LOCK_TIMEOUT_SECONDS'] = 'disabled'
        >>> options = IdempotencyOptions.from_env()
"""

import os
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

from idempotent_api.models import ResultKind

# Valid HTTP methods for idempotency
VALID_HTTP_METHODS = {
    "GET",
    "HEAD",
    "POST",
    "PUT",
    "DELETE",
    "CONNECT",
    "OPTIONS",
    "TRACE",
    "PATCH",
}

MAX_EXPIRY_SECONDS = 604800

DISABLED = "disabled"


class IdempotencyOptions(BaseModel):
    """Configuration for the idempotency engine.

    Attributes:
        enabled: Master switch. When False the engine never engages.
        enabled_methods: HTTP methods the engine applies to. Default includes
            all state-changing methods: POST, PUT, PATCH, DELETE.
        expires_in_seconds: Time-to-live of cache records. Must be greater
            than 0 and at most 604800 (7 days). Default is 86400 (24 hours).
        header_key_name: Request header carrying the idempotency key.
            Lookup is case-insensitive. Default is "IdempotencyKey".
        cache_key_prefix: Prefix prepended to every key before it reaches
            the cache backend. Default is "IdempAPI_".
        lock_timeout_seconds: How long to wait for a record lock, and for a
            concurrent in-flight request with the same key to finish.
            None disables locking and waiting. Default is 30 seconds.
        cache_only_success_responses: When True, only 2xx results are stored;
            other results free the key so the client can retry.
        is_optional: When True, requests without a key bypass the engine
            instead of being rejected.
        use_problem_details_for_errors: When True, validation and mismatch
            errors are returned as application/problem+json.
        excluded_result_kinds: Result kinds that are never cached.
        lock_failure_policy: "reject" answers 409 on lock failures,
            "proceed" runs the handler without idempotency protection.

    Note:
        This class is immutable (frozen=True). Create a new instance if you
        need different settings.
    """

    enabled: bool = Field(default=True, description="Master switch for the engine")
    enabled_methods: list[str] | str = Field(
        default=["POST", "PUT", "PATCH", "DELETE"],
        description="List of HTTP methods that require idempotency checks",
    )
    expires_in_seconds: float = Field(
        default=86400,
        description="Time-to-live in seconds for cache records (0-604800]",
    )
    header_key_name: str = Field(
        default="IdempotencyKey",
        description="Request header carrying the idempotency key",
        min_length=1,
    )
    cache_key_prefix: str = Field(
        default="IdempAPI_",
        description="Prefix for every cache key",
    )
    lock_timeout_seconds: float | None = Field(
        default=30.0,
        description="Lock and in-flight wait timeout in seconds, None when disabled",
    )
    cache_only_success_responses: bool = Field(
        default=True,
        description="Store only 2xx responses",
    )
    is_optional: bool = Field(
        default=False,
        description="Bypass the engine when the key header is absent",
    )
    use_problem_details_for_errors: bool = Field(
        default=False,
        description="Emit application/problem+json for validation and mismatch errors",
    )
    excluded_result_kinds: frozenset[ResultKind] = Field(
        default=frozenset({ResultKind.STREAM, ResultKind.FILE}),
        description="Result kinds never cached",
    )
    lock_failure_policy: Literal["reject", "proceed"] = Field(
        default="reject",
        description="Policy when a lock cannot be acquired: 'reject' or 'proceed'",
    )

    model_config = {"frozen": True}

    @field_validator("enabled_methods", mode="before")
    @classmethod
    def validate_enabled_methods(cls, v: Any) -> list[str]:
        """Validate and normalize enabled HTTP methods.

        Args:
            v: List of HTTP method strings or comma-separated string.

        Returns:
            List of uppercase, validated HTTP methods.

        Raises:
            ValueError: If any method is not a valid HTTP method.
        """
        if isinstance(v, str):
            v = [method.strip() for method in v.split(",") if method.strip()]

        if not isinstance(v, list):
            raise ValueError("enabled_methods must be a list or comma-separated string")

        methods = [method.upper() for method in v]

        invalid_methods = set(methods) - VALID_HTTP_METHODS
        if invalid_methods:
            raise ValueError(
                f"Invalid HTTP methods: {', '.join(sorted(invalid_methods))}. "
                f"Valid methods are: {', '.join(sorted(VALID_HTTP_METHODS))}"
            )

        return methods

    @field_validator("expires_in_seconds")
    @classmethod
    def validate_expires_in_seconds(cls, v: float) -> float:
        """Validate the record TTL is within acceptable range.

        Raises:
            ValueError: If TTL is not in (0, 604800].
        """
        if not (0 < v <= MAX_EXPIRY_SECONDS):
            raise ValueError(
                f"expires_in_seconds must be greater than 0 and at most "
                f"{MAX_EXPIRY_SECONDS} (7 days), got {v}"
            )
        return v

    @field_validator("lock_timeout_seconds", mode="before")
    @classmethod
    def validate_lock_timeout_seconds(cls, v: Any) -> float | None:
        """Normalize the disabled sentinel.

        None, a negative number or the string "disabled" all mean locking is
        disabled.

        Example:
            >>> IdempotencyOptions(lock_timeout_seconds=-1).lock_timeout_seconds is None
            True
        """
        if v is None:
            return None
        if isinstance(v, str):
            if v.strip().lower() in (DISABLED, "none", ""):
                return None
            v = float(v)
        if v < 0:
            return None
        return float(v)

    @field_validator("excluded_result_kinds", mode="before")
    @classmethod
    def validate_excluded_result_kinds(cls, v: Any) -> frozenset[ResultKind]:
        """Normalize excluded result kinds into a frozen set.

        Accepts a collection of ResultKind members or names, or a
        comma-separated string (from environment variables).

        Raises:
            ValueError: If a name is not a known ResultKind.
        """
        if isinstance(v, str):
            v = [name.strip() for name in v.split(",") if name.strip()]

        kinds: set[ResultKind] = set()
        for item in v:
            if isinstance(item, ResultKind):
                kinds.add(item)
                continue
            try:
                kinds.add(ResultKind(str(item).upper()))
            except ValueError as e:
                raise ValueError(
                    f"Invalid result kind: {item}. "
                    f"Valid kinds are: {', '.join(k.value for k in ResultKind)}"
                ) from e
        return frozenset(kinds)

    def cache_key(self, key: str) -> str:
        """Return the backend key for an idempotency key.

        Example:
            >>> IdempotencyOptions().cache_key("abc")
            'IdempAPI_abc'
        """
        return f"{self.cache_key_prefix}{key}"

    @classmethod
    def from_env(cls, prefix: str = "IDEMPOTENCY_") -> "IdempotencyOptions":
        """Create configuration from environment variables.

        Variable names are uppercase field names with the prefix. Missing
        variables use the defaults defined in the model.

        Args:
            prefix: Prefix for environment variable names. Default is "IDEMPOTENCY_".

        Returns:
            IdempotencyOptions instance populated from environment variables.
        """
        config_dict: dict[str, Any] = {}

        field_types = {
            "enabled": bool,
            "enabled_methods": list,
            "expires_in_seconds": float,
            "header_key_name": str,
            "cache_key_prefix": str,
            "lock_timeout_seconds": str,
            "cache_only_success_responses": bool,
            "is_optional": bool,
            "use_problem_details_for_errors": bool,
            "excluded_result_kinds": list,
            "lock_failure_policy": str,
        }

        for field_name, field_type in field_types.items():
            env_var = f"{prefix}{field_name.upper()}"
            env_value = os.environ.get(env_var)

            if env_value is not None:
                if field_type is float:
                    config_dict[field_name] = float(env_value)
                elif field_type is bool:
                    config_dict[field_name] = env_value.strip().lower() in ("1", "true", "yes", "on")
                else:
                    # Lists and the lock timeout are parsed by their validators
                    config_dict[field_name] = env_value

        return cls(**config_dict)

    @classmethod
    def from_dict(cls, config_dict: dict[str, Any]) -> "IdempotencyOptions":
        """Create configuration from a dictionary.

        Raises:
            ValidationError: If the dictionary contains invalid values.
        """
        return cls(**config_dict)
