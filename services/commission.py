from decimal import Decimal, ROUND_HALF_UP
from typing import NamedTuple

CURRENCY_SYMBOLS = {"gbp": "£", "usd": "$", "eur": "€"}


class PayoutSplit(NamedTuple):
    payout_amount: int
    commission_amount: int


def split_amount(total_amount: int, commission_percent) -> PayoutSplit:
    """
    Split a minor-unit total into (provider payout, platform commission).

    Commission is rounded half-up to a whole minor unit and the payout is
    whatever remains, so the two always add back up to ``total_amount``.
    e.g. 9999 at 10% -> commission 1000 (999.9 rounded), payout 8999.
    """
    if total_amount is None or int(total_amount) != total_amount:
        raise ValueError("total_amount must be an integer number of minor units")
    if total_amount < 0:
        raise ValueError("total_amount must be >= 0")

    percent = Decimal(str(commission_percent))
    if percent < 0 or percent > 100:
        raise ValueError("commission_percent must be between 0 and 100")

    raw = Decimal(int(total_amount)) * percent / Decimal(100)
    commission = int(raw.quantize(Decimal(1), rounding=ROUND_HALF_UP))
    return PayoutSplit(payout_amount=int(total_amount) - commission, commission_amount=commission)


def to_decimal_string(minor_amount: int) -> str:
    return str((Decimal(int(minor_amount)) / Decimal(100)).quantize(Decimal("0.01")))


def format_amount(minor_amount: int, currency: str) -> str:
    symbol = CURRENCY_SYMBOLS.get((currency or "").lower())
    amount = to_decimal_string(minor_amount)
    if symbol:
        return f"{symbol}{amount}"
    return f"{amount} {(currency or '').upper()}".strip()
