"""
Rate and amount calculations for invoice financing.

Design Decisions:
- 360-day year convention for converting annual rates to a period rate
- Decimal arithmetic with 10 fractional digits before the final rounding
- ROUND_HALF_UP everywhere; results must match to the cent
"""

from datetime import date
from decimal import ROUND_HALF_UP, Context, Decimal

DAYS_IN_YEAR = 360

BPS_DENOMINATOR = 10_000

# Intermediate precision kept before rounding to a whole bps / cent
INTERMEDIATE_SCALE = Decimal("1E-10")

_WHOLE = Decimal("1")

# Wide enough for any BigInteger amount times any rate, plus the 10 fractional digits
_CONTEXT = Context(prec=60, rounding=ROUND_HALF_UP)


def _ratio(numerator_a: int, numerator_b: int, denominator: int) -> Decimal:
    product = _CONTEXT.multiply(Decimal(numerator_a), Decimal(numerator_b))
    return _CONTEXT.divide(product, Decimal(denominator))


def _round_half_up(value: Decimal) -> int:
    """Round to 10 fractional digits, then to an integer, both half-up."""
    scaled = value.quantize(INTERMEDIATE_SCALE, context=_CONTEXT)
    return int(scaled.quantize(_WHOLE, context=_CONTEXT))


def financing_days(evaluation_date: date, maturity_date: date) -> int:
    """Whole days from the evaluation date to the maturity date (negative if past due)."""
    return (maturity_date - evaluation_date).days


def effective_rate(annual_rate_in_bps: int, financing_days: int) -> int:
    """
    Convert an annual rate into the rate for the actual financing period.
    
    Args:
        annual_rate_in_bps: Nominal annual rate in basis points
        financing_days: Days between evaluation date and maturity
        
    Returns:
        Period rate in basis points, rounded half-up
        
    Example:
        >>> effective_rate(40, 30)
        3
    """
    period_rate = _ratio(annual_rate_in_bps, financing_days, DAYS_IN_YEAR)
    return _round_half_up(period_rate)


def discount_amount(value_in_cents: int, rate_in_bps: int) -> int:
    """
    Amount the purchaser keeps for financing an invoice.
    
    Example:
        >>> discount_amount(1_000_000, 3)
        300
    """
    discount = _ratio(value_in_cents, rate_in_bps, BPS_DENOMINATOR)
    return _round_half_up(discount)
