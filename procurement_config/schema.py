"""
Material request policy schema.

Defines the typed, frozen runtime form of a configuration set.  YAML
fragments are parsed into these types by the loader; services receive a
``MaterialRequestPolicy`` and never read files themselves.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from enum import Enum
from typing import Any, Self

from procurement_kernel.domain.calculator import OverpaymentPolicy
from procurement_kernel.exceptions import ConfigError
from procurement_kernel.logging_config import get_logger

logger = get_logger("config.schema")


class OverDeliveryPolicy(str, Enum):
    """What to do when a delivered quantity exceeds the ordered quantity."""

    REJECT = "reject"
    ALLOW_AND_FLAG = "allow_and_flag"


@dataclass(frozen=True)
class MaterialRequestPolicy:
    """
    Policy knobs for the material request workflow.

    Field defaults mirror ``sets/default.yaml``.  Override for tests with
    ``MaterialRequestPolicy(overpayment_policy=OverpaymentPolicy.REJECT)``.
    """

    request_number_prefix: str = "MR"
    sequence_width: int = 5
    overpayment_policy: OverpaymentPolicy = OverpaymentPolicy.CLAMP
    over_delivery_policy: OverDeliveryPolicy = OverDeliveryPolicy.REJECT
    default_page_size: int = 20
    max_page_size: int = 100
    max_notes_length: int = 2000
    max_reason_length: int = 1000
    max_comment_length: int = 2000

    def __post_init__(self):
        try:
            object.__setattr__(
                self, "overpayment_policy", OverpaymentPolicy(self.overpayment_policy)
            )
        except ValueError:
            raise ConfigError(
                "overpayment_policy",
                f"expected one of {[p.value for p in OverpaymentPolicy]}, "
                f"got {self.overpayment_policy!r}",
            ) from None
        try:
            object.__setattr__(
                self, "over_delivery_policy", OverDeliveryPolicy(self.over_delivery_policy)
            )
        except ValueError:
            raise ConfigError(
                "over_delivery_policy",
                f"expected one of {[p.value for p in OverDeliveryPolicy]}, "
                f"got {self.over_delivery_policy!r}",
            ) from None

        if not isinstance(self.request_number_prefix, str) or not self.request_number_prefix:
            raise ConfigError("request_number_prefix", "must be a non-empty string")

        for name in (
            "sequence_width",
            "default_page_size",
            "max_page_size",
            "max_notes_length",
            "max_reason_length",
            "max_comment_length",
        ):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value < 1:
                raise ConfigError(name, f"must be a positive integer, got {value!r}")

        if self.default_page_size > self.max_page_size:
            raise ConfigError(
                "default_page_size",
                f"{self.default_page_size} exceeds max_page_size {self.max_page_size}",
            )

        logger.debug(
            "material_request_policy_initialized",
            extra={
                "overpayment_policy": self.overpayment_policy.value,
                "over_delivery_policy": self.over_delivery_policy.value,
                "default_page_size": self.default_page_size,
                "max_page_size": self.max_page_size,
            },
        )

    @classmethod
    def with_defaults(cls) -> Self:
        return cls()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        """Create a policy from a parsed mapping; unknown keys are an error."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigError(unknown[0], "unknown configuration key")
        return cls(**data)


@dataclass(frozen=True)
class ConfigurationSet:
    """A loaded configuration set with its identity."""

    config_id: str
    version: int
    material_requests: MaterialRequestPolicy
