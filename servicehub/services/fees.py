"""Platform fee and provider payout split."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP

from servicehub.config import FeesConfig, get_settings
from servicehub.errors import ValidationError


def _half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def to_cents(amount: float) -> int:
    """Dollars to integer cents, rounding half away from zero."""
    return _half_up(Decimal(str(amount)) * 100)


@dataclass(frozen=True)
class PayoutSplit:
    total_cents: int
    platform_fee_cents: int
    provider_amount_cents: int

    @property
    def provider_amount(self) -> float:
        return self.provider_amount_cents / 100

    @property
    def platform_fee(self) -> float:
        return self.platform_fee_cents / 100


def calculate_payouts(total: float, fees: FeesConfig | None = None) -> PayoutSplit:
    if not total or total <= 0:
        raise ValidationError("Total amount must be greater than 0")
    fees = fees or get_settings().fees

    total_cents = to_cents(total)
    platform_fee_cents = max(
        _half_up(Decimal(total_cents) * Decimal(str(fees.platform_fee_percentage))),
        to_cents(fees.platform_fee_minimum),
    )
    return PayoutSplit(
        total_cents=total_cents,
        platform_fee_cents=platform_fee_cents,
        provider_amount_cents=total_cents - platform_fee_cents,
    )
