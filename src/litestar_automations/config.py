"""Configuration for the automation engine.

This module provides the engine-wide options: retry policy, default delay
unit, and the scheduler's batch and reconciliation settings.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, fields
from datetime import timedelta
from typing import Any

from litestar_automations.core.types import DelayUnit
from litestar_automations.exceptions import ConfigurationError

__all__ = ["EngineConfig"]

_CAMEL_CASE_KEYS = {
    "maxAttempts": "max_attempts",
    "backoffBaseSeconds": "backoff_base_seconds",
    "backoffCapSeconds": "backoff_cap_seconds",
    "defaultDelayUnit": "default_delay_unit",
    "pollBatchSize": "poll_batch_size",
    "staleClaimSeconds": "stale_claim_seconds",
    "invokerTimeoutSeconds": "invoker_timeout_seconds",
}


@dataclass(frozen=True)
class EngineConfig:
    """Engine-wide configuration.

    Attributes:
        max_attempts: Invocations of one action node before the instance fails.
        backoff_base_seconds: Wait before the first retry; doubles on each retry.
        backoff_cap_seconds: Upper bound of the retry wait.
        default_delay_unit: Unit used by delay nodes that do not name one.
        poll_batch_size: Maximum instances claimed by one ``poll_ready`` call.
        stale_claim_seconds: Age after which an owned instance is presumed
            abandoned by a dead worker and released.
        invoker_timeout_seconds: Longest an action invocation is expected to
            take. An instance with an action in flight is not released as
            stale before this much time has passed since its intent was saved.

    Example:
        >>> config = EngineConfig.from_mapping({"maxAttempts": 5, "defaultDelayUnit": "hours"})
        >>> config.max_attempts
        5
    """

    max_attempts: int = 3
    backoff_base_seconds: int = 30
    backoff_cap_seconds: int = 3600
    default_delay_unit: DelayUnit = DelayUnit.MINUTES
    poll_batch_size: int = 50
    stale_claim_seconds: int = 300
    invoker_timeout_seconds: int = 900

    def __post_init__(self) -> None:
        if not isinstance(self.default_delay_unit, DelayUnit):
            try:
                object.__setattr__(self, "default_delay_unit", DelayUnit(self.default_delay_unit))
            except ValueError as e:
                units = [u.value for u in DelayUnit]
                msg = f"default_delay_unit must be one of {units}, got {self.default_delay_unit!r}"
                raise ConfigurationError(msg) from e

        for name in ("max_attempts", "poll_batch_size"):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool) or value < 1:
                msg = f"{name} must be a positive integer, got {value!r}"
                raise ConfigurationError(msg)

        for name in (
            "backoff_base_seconds",
            "backoff_cap_seconds",
            "stale_claim_seconds",
            "invoker_timeout_seconds",
        ):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool) or value < 0:
                msg = f"{name} must be a non-negative integer, got {value!r}"
                raise ConfigurationError(msg)

        if self.backoff_cap_seconds < self.backoff_base_seconds:
            msg = "backoff_cap_seconds must not be lower than backoff_base_seconds"
            raise ConfigurationError(msg)

    @classmethod
    def from_mapping(cls, options: Mapping[str, Any]) -> EngineConfig:
        """Build a config from user options.

        Accepts both the camelCase names (``maxAttempts``) and the attribute
        names (``max_attempts``).

        Raises:
            ConfigurationError: On unknown options or invalid values.
        """
        known = {f.name for f in fields(cls)}
        values: dict[str, Any] = {}
        for key, value in options.items():
            name = _CAMEL_CASE_KEYS.get(key, key)
            if name not in known:
                msg = f"Unknown engine option: {key!r}"
                raise ConfigurationError(msg)
            values[name] = value
        return cls(**values)

    def backoff(self, attempts: int) -> timedelta:
        """Wait before the next attempt after ``attempts`` failed invocations.

        Example:
            >>> [EngineConfig().backoff(n).total_seconds() for n in (1, 2, 3)]
            [30.0, 60.0, 120.0]
        """
        exponent = max(attempts - 1, 0)
        return timedelta(seconds=min(self.backoff_cap_seconds, self.backoff_base_seconds * 2**exponent))

    @property
    def stale_claim_grace(self) -> timedelta:
        return timedelta(seconds=self.stale_claim_seconds)

    @property
    def invoker_timeout(self) -> timedelta:
        return timedelta(seconds=self.invoker_timeout_seconds)
