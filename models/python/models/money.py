"""Integer-cent money helpers."""

from decimal import Decimal, ROUND_HALF_UP
from typing import Union

BPS_DENOMINATOR = 10000


def _div_round_half_up(numerator: int, denominator: int) -> int:
    return int((Decimal(numerator) / Decimal(denominator)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def to_cents(amount: Union[Decimal, int, float, str]) -> int:
    """Dollar amount -> cents, rounding half-up at the cent."""
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def to_dollars(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(Decimal("0.01"))


def apply_markup(price_cents: int, markup_bps: int) -> int:
    """price * (1 + bps/10000), rounded half-up to the cent."""
    return _div_round_half_up(price_cents * (BPS_DENOMINATOR + markup_bps), BPS_DENOMINATOR)


def split_commission(gross_cents: int, rate_bps: int) -> tuple[int, int]:
    """Return (platform_fee, net). fee + net == gross always."""
    fee = _div_round_half_up(gross_cents * rate_bps, BPS_DENOMINATOR)
    return fee, gross_cents - fee
