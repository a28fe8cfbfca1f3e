"""
Transaction cost models for backtesting.

Provides pluggable commission and slippage calculators:
- Commission: zero, fixed per trade, percentage of notional, per share
- Slippage: none, fixed basis points, volume-based, spread-based
- Broker presets and dict-driven factories for configuration files

Every model is a frozen pydantic model tagged with a ``kind`` literal, so
the set of variants is closed, parameters are validated at construction and
evaluation is a pure function of its inputs. Models are safe to share
between concurrent runs.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Annotated, Any, Literal, Mapping, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, model_validator
from pydantic import ValidationError as PydanticValidationError

from quant_backtester.core.data_types import ZERO, Bar, Order, OrderSide
from quant_backtester.core.exceptions import InvalidConfigError, MissingConfigError

logger = logging.getLogger(__name__)

BPS_DIVISOR = Decimal("10000")


def _clamp(value: Decimal, min_fee: Decimal, max_fee: Decimal | None) -> Decimal:
    value = max(value, min_fee)
    if max_fee is not None:
        value = min(value, max_fee)
    return value


def _check_fee_bounds(min_fee: Decimal, max_fee: Decimal | None) -> None:
    if max_fee is not None and max_fee < min_fee:
        raise ValueError(f"max_fee ({max_fee}) must be >= min_fee ({min_fee})")


def _directional(rate: Decimal, order: Order) -> Decimal:
    """Buyers pay more, sellers receive less."""
    return rate if order.side == OrderSide.BUY else -rate


# =============================================================================
# Commission Models
# =============================================================================


class BaseCommissionModel(BaseModel, ABC):
    """Base class for commission models."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    @abstractmethod
    def calculate(self, order: Order, fill_price: Decimal) -> Decimal:
        """Calculate the commission for executing ``order`` at ``fill_price``.

        Args:
            order: Order being executed.
            fill_price: Execution price, slippage included.

        Returns:
            Commission in dollars (never negative).
        """

    @abstractmethod
    def describe(self) -> str:
        """Short human-readable description."""


class ZeroCommission(BaseCommissionModel):
    """Commission-free broker."""

    kind: Literal["zero"] = "zero"

    def calculate(self, order: Order, fill_price: Decimal) -> Decimal:
        return ZERO

    def describe(self) -> str:
        return "Zero commission"


class FixedPerTradeCommission(BaseCommissionModel):
    """Flat fee per order regardless of size."""

    kind: Literal["fixed"] = "fixed"
    fee: Decimal = Field(..., ge=0, description="Fee per trade in dollars")

    def calculate(self, order: Order, fill_price: Decimal) -> Decimal:
        return self.fee

    def describe(self) -> str:
        return f"Fixed ${self.fee} per trade"


class PercentageCommission(BaseCommissionModel):
    """Commission as basis points of trade value, clamped to [min_fee, max_fee]."""

    kind: Literal["percentage"] = "percentage"
    basis_points: Decimal = Field(..., ge=0, description="Commission in basis points")
    min_fee: Decimal = Field(default=ZERO, ge=0, description="Minimum fee per trade")
    max_fee: Decimal | None = Field(default=None, ge=0, description="Maximum fee per trade")

    @model_validator(mode="after")
    def validate_bounds(self) -> "PercentageCommission":
        """Reject a maximum below the minimum."""
        _check_fee_bounds(self.min_fee, self.max_fee)
        return self

    def calculate(self, order: Order, fill_price: Decimal) -> Decimal:
        trade_value = order.quantity * fill_price
        return _clamp(trade_value * self.basis_points / BPS_DIVISOR, self.min_fee, self.max_fee)

    def describe(self) -> str:
        text = f"{self.basis_points} bps (min ${self.min_fee}"
        if self.max_fee is not None:
            text += f", max ${self.max_fee}"
        return text + ")"


class PerShareCommission(BaseCommissionModel):
    """Commission per share, clamped to [min_fee, max_fee]."""

    kind: Literal["per_share"] = "per_share"
    fee_per_share: Decimal = Field(..., ge=0, description="Fee per share in dollars")
    min_fee: Decimal = Field(default=ZERO, ge=0, description="Minimum fee per trade")
    max_fee: Decimal | None = Field(default=None, ge=0, description="Maximum fee per trade")

    @model_validator(mode="after")
    def validate_bounds(self) -> "PerShareCommission":
        """Reject a maximum below the minimum."""
        _check_fee_bounds(self.min_fee, self.max_fee)
        return self

    def calculate(self, order: Order, fill_price: Decimal) -> Decimal:
        return _clamp(order.quantity * self.fee_per_share, self.min_fee, self.max_fee)

    def describe(self) -> str:
        text = f"${self.fee_per_share}/share (min ${self.min_fee}"
        if self.max_fee is not None:
            text += f", max ${self.max_fee}"
        return text + ")"


CommissionModel = Annotated[
    Union[ZeroCommission, FixedPerTradeCommission, PercentageCommission, PerShareCommission],
    Field(discriminator="kind"),
]


class CommissionPresets:
    """Commission schedules of common brokers."""

    # Interactive Brokers Pro tiered (simplified)
    IBKR_PRO_TIERED = PerShareCommission(fee_per_share=Decimal("0.005"), min_fee=Decimal("1"))
    TRADITIONAL_DISCOUNT = FixedPerTradeCommission(fee=Decimal("4.95"))
    TRADITIONAL_FULL_SERVICE = FixedPerTradeCommission(fee=Decimal("29.95"))
    PERCENTAGE_BASED = PercentageCommission(
        basis_points=Decimal("10"), min_fee=Decimal("1"), max_fee=Decimal("100")
    )
    ROBINHOOD = ZeroCommission()
    WEBULL = ZeroCommission()
    IBKR_LITE = ZeroCommission()


# =============================================================================
# Slippage Models
# =============================================================================


class BaseSlippageModel(BaseModel, ABC):
    """Base class for slippage models.

    ``calculate_rate`` returns a signed decimal rate applied as
    ``fill_price = base_price * (1 + rate)``: positive for buys, negative for
    sells.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    @abstractmethod
    def calculate_rate(
        self,
        order: Order,
        bar: Bar,
        avg_volume: float | None = None,
        spread: Decimal | None = None,
    ) -> Decimal:
        """Calculate the signed slippage rate for an order.

        Args:
            order: Order being executed.
            bar: Bar the order executes against.
            avg_volume: Average daily volume of the symbol, if known.
            spread: Explicit bid-ask spread as a fraction of price, if known.

        Returns:
            Signed slippage rate.
        """

    @abstractmethod
    def describe(self) -> str:
        """Short human-readable description."""


class NoSlippage(BaseSlippageModel):
    """Perfect execution at the base price."""

    kind: Literal["none"] = "none"

    def calculate_rate(
        self,
        order: Order,
        bar: Bar,
        avg_volume: float | None = None,
        spread: Decimal | None = None,
    ) -> Decimal:
        return ZERO

    def describe(self) -> str:
        return "No slippage"


class FixedBPSSlippage(BaseSlippageModel):
    """Constant slippage in basis points."""

    kind: Literal["fixed_bps"] = "fixed_bps"
    basis_points: Decimal = Field(..., ge=0, description="Slippage in basis points")

    def calculate_rate(
        self,
        order: Order,
        bar: Bar,
        avg_volume: float | None = None,
        spread: Decimal | None = None,
    ) -> Decimal:
        return _directional(self.basis_points / BPS_DIVISOR, order)

    def describe(self) -> str:
        return f"Fixed {self.basis_points} bps"


class VolumeBasedSlippage(BaseSlippageModel):
    """Slippage growing with order size relative to average volume.

    rate = (base_bps + quantity / avg_volume * scale_factor) / 10000
    """

    kind: Literal["volume_based"] = "volume_based"
    base_bps: Decimal = Field(..., ge=0, description="Base slippage in basis points")
    scale_factor: Decimal = Field(default=Decimal("100"), ge=0, description="Basis points per 100% of volume")

    def calculate_rate(
        self,
        order: Order,
        bar: Bar,
        avg_volume: float | None = None,
        spread: Decimal | None = None,
    ) -> Decimal:
        if not avg_volume:
            return _directional(self.base_bps / BPS_DIVISOR, order)

        volume_ratio = Decimal(order.quantity) / Decimal(str(avg_volume))
        total_bps = self.base_bps + volume_ratio * self.scale_factor
        return _directional(total_bps / BPS_DIVISOR, order)

    def describe(self) -> str:
        return f"Volume-based ({self.base_bps} bps base, scale {self.scale_factor})"


class SpreadBasedSlippage(BaseSlippageModel):
    """Half the (estimated) bid-ask spread.

    Without an explicit spread, the spread is estimated as half the bar range
    over its midpoint, floored at ``min_spread_bps``.
    """

    kind: Literal["spread_based"] = "spread_based"
    min_spread_bps: Decimal = Field(default=Decimal("5"), ge=0, description="Spread floor in basis points")
    multiplier: Decimal = Field(default=Decimal("1"), ge=0, description="Multiplier for the spread estimate")

    def calculate_rate(
        self,
        order: Order,
        bar: Bar,
        avg_volume: float | None = None,
        spread: Decimal | None = None,
    ) -> Decimal:
        if spread is not None and spread > 0:
            estimated = Decimal(spread)
        else:
            range_pct = (bar.high - bar.low) / bar.mid * Decimal("0.5")
            estimated = max(self.min_spread_bps / BPS_DIVISOR, range_pct)

        half_spread = estimated * self.multiplier / 2
        return _directional(half_spread, order)

    def describe(self) -> str:
        return f"Spread-based (min {self.min_spread_bps} bps, x{self.multiplier})"


SlippageModel = Annotated[
    Union[NoSlippage, FixedBPSSlippage, VolumeBasedSlippage, SpreadBasedSlippage],
    Field(discriminator="kind"),
]


# =============================================================================
# Factories
# =============================================================================


_COMMISSION_ADAPTER: TypeAdapter = TypeAdapter(CommissionModel)
_SLIPPAGE_ADAPTER: TypeAdapter = TypeAdapter(SlippageModel)

_COMMISSION_KINDS = {
    "zero": "zero",
    "fixed": "fixed",
    "fixed_per_trade": "fixed",
    "percentage": "percentage",
    "per_share": "per_share",
}

_SLIPPAGE_KINDS = {
    "none": "none",
    "fixed_bps": "fixed_bps",
    "volume_based": "volume_based",
    "spread_based": "spread_based",
}


def _build_model(
    family: str,
    config: Mapping[str, Any],
    kinds: dict[str, str],
    adapter: TypeAdapter,
) -> Any:
    params = dict(config)
    kind = params.pop("kind", None)
    legacy_kind = params.pop("type", None)
    kind = kind or legacy_kind
    if kind is None:
        raise MissingConfigError(f"{family.capitalize()} model type is required", config_key=f"{family}.kind")

    canonical = kinds.get(str(kind).strip().lower())
    if canonical is None:
        raise InvalidConfigError(
            f"Unknown {family} model type: {kind}",
            config_key=f"{family}.kind",
            value=kind,
            expected=", ".join(sorted(set(kinds))),
        )

    try:
        return adapter.validate_python({"kind": canonical, **params})
    except PydanticValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ()))
        raise InvalidConfigError(
            f"Invalid {family} model parameters: {first.get('msg')}",
            config_key=f"{family}.{location}" if location else family,
            value=params,
        ) from e


def create_commission_model(
    config: Mapping[str, Any] | BaseCommissionModel,
) -> BaseCommissionModel:
    """Create a commission model from a configuration mapping.

    Args:
        config: Mapping with a ``kind`` (or ``type``) key and the model's
            parameters, e.g. ``{"kind": "percentage", "basis_points": 10}``.
            An already built model is returned unchanged.

    Returns:
        Validated commission model.

    Raises:
        MissingConfigError: If no model type is given.
        InvalidConfigError: If the type is unknown or parameters are invalid.
    """
    if isinstance(config, BaseCommissionModel):
        return config
    return _build_model("commission", config, _COMMISSION_KINDS, _COMMISSION_ADAPTER)


def create_slippage_model(
    config: Mapping[str, Any] | BaseSlippageModel,
) -> BaseSlippageModel:
    """Create a slippage model from a configuration mapping.

    Args:
        config: Mapping with a ``kind`` (or ``type``) key and the model's
            parameters, e.g. ``{"kind": "fixed_bps", "basis_points": 5}``.
            An already built model is returned unchanged.

    Returns:
        Validated slippage model.

    Raises:
        MissingConfigError: If no model type is given.
        InvalidConfigError: If the type is unknown or parameters are invalid.
    """
    if isinstance(config, BaseSlippageModel):
        return config
    return _build_model("slippage", config, _SLIPPAGE_KINDS, _SLIPPAGE_ADAPTER)
