from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

CENTS = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value):
    """Coerce user or DB input into a 2dp Decimal. Raises ValueError on junk."""
    if value is None or isinstance(value, bool):
        raise ValueError("amount is required")
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValueError(f"invalid amount: {value!r}")
    if not amount.is_finite():
        raise ValueError(f"invalid amount: {value!r}")
    return amount.quantize(CENTS, rounding=ROUND_HALF_UP)


def split_commission(total_amount, commission_rate):
    """Return (commission_amount, seller_amount) for a total and a percent rate."""
    total = to_money(total_amount)
    rate = Decimal(str(commission_rate))
    commission = (total * rate / Decimal("100")).quantize(CENTS, rounding=ROUND_HALF_UP)
    return commission, total - commission


def to_minor_units(amount):
    return int((to_money(amount) * 100).to_integral_value(rounding=ROUND_HALF_UP))


def mask_account(account_number):
    if not account_number:
        return None
    return f"****{str(account_number)[-4:]}"
