"""
CPDEX Exchange Registry

Global exchange state: the administrator identity, the fee schedule that new
pools copy at creation, the protocol/provider fee split, the protocol fee
collector and the monotonic pool counter.

The fee schedule is a rational fee_numerator / fee_denominator charged on
every swap input; protocol_fee_percentage (0..100) of that fee is diverted to
the collector, the remainder stays in the pool for liquidity providers.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict

from ..constants import PROTOCOL_FEE_BASE, U64_MAX
from ..exceptions import AuthorizationError, ConfigurationError
from .arithmetic import checked_add


def validate_fee_schedule(
    fee_numerator: int,
    fee_denominator: int,
    protocol_fee_percentage: int,
) -> None:
    """
    Reject fee schedules outside ``0 < fee_numerator < fee_denominator`` or a
    protocol share above 100%.

    Raises:
        ConfigurationError: on any out-of-range value
    """
    for name, value in (
        ("fee_numerator", fee_numerator),
        ("fee_denominator", fee_denominator),
        ("protocol_fee_percentage", protocol_fee_percentage),
    ):
        if isinstance(value, bool) or not isinstance(value, int):
            raise ConfigurationError(f"{name} must be an integer")
        if value < 0 or value > U64_MAX:
            raise ConfigurationError(f"{name} out of u64 range: {value}")

    if fee_numerator == 0 or fee_numerator >= fee_denominator:
        raise ConfigurationError(
            f"Invalid fees: need 0 < fee_numerator < fee_denominator "
            f"(got {fee_numerator}/{fee_denominator})"
        )
    if protocol_fee_percentage > PROTOCOL_FEE_BASE:
        raise ConfigurationError(
            f"Invalid fees: protocol_fee_percentage must be <= {PROTOCOL_FEE_BASE} "
            f"(got {protocol_fee_percentage})"
        )


@dataclass
class Registry:
    """Persisted exchange-wide record."""
    admin: str
    fee_numerator: int
    fee_denominator: int
    protocol_fee_percentage: int
    fee_collector: str
    pools_count: int = 0

    @classmethod
    def initialize(
        cls,
        configured_admin: str,
        caller: str,
        fee_numerator: int,
        fee_denominator: int,
        protocol_fee_percentage: int,
        fee_collector: str,
    ) -> "Registry":
        """
        Build a fresh registry after checking the caller and the fee schedule.

        Raises:
            AuthorizationError: caller is not the configured administrator
            ConfigurationError: fee schedule out of range
        """
        if caller != configured_admin:
            raise AuthorizationError("Exchange must be initialized by the admin")
        validate_fee_schedule(fee_numerator, fee_denominator, protocol_fee_percentage)
        if not fee_collector:
            raise ConfigurationError("fee_collector must be set")
        return cls(
            admin=caller,
            fee_numerator=fee_numerator,
            fee_denominator=fee_denominator,
            protocol_fee_percentage=protocol_fee_percentage,
            fee_collector=fee_collector,
            pools_count=0,
        )

    def next_pool_index(self) -> int:
        """Increment pools_count. Callers hold the registry lock."""
        self.pools_count = checked_add(self.pools_count, 1, limit=U64_MAX)
        return self.pools_count

    def is_admin(self, identity: str) -> bool:
        return identity == self.admin

    @property
    def fee_rate(self) -> float:
        """Fee as a fraction, for display only."""
        return self.fee_numerator / self.fee_denominator

    # -- Serialisation ------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Registry":
        registry = cls(
            admin=data["admin"],
            fee_numerator=int(data["fee_numerator"]),
            fee_denominator=int(data["fee_denominator"]),
            protocol_fee_percentage=int(data["protocol_fee_percentage"]),
            fee_collector=data["fee_collector"],
            pools_count=int(data.get("pools_count", 0)),
        )
        validate_fee_schedule(
            registry.fee_numerator,
            registry.fee_denominator,
            registry.protocol_fee_percentage,
        )
        return registry
