"""
Cost estimation for PageSpeed Insights usage.

Requests up to the daily free quota cost nothing; each request past it is
billed at a flat per-request price.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Union

COST_QUANTUM = Decimal("0.0001")


def to_cost(value: Union[Decimal, float, int, str, None]) -> Decimal:
    """Normalize a stored or configured amount to a 4-place Decimal."""
    if value is None:
        value = 0
    if not isinstance(value, Decimal):
        # str() first so floats read back from SQLite keep their printed value
        value = Decimal(str(value))
    return value.quantize(COST_QUANTUM, rounding=ROUND_HALF_UP)


def estimate_cost(
    requests_total: int,
    daily_limit: int,
    cost_per_request: Union[Decimal, float, str]
) -> Decimal:
    """Estimated cost for a day with ``requests_total`` requests.

    Computed from the total every time, never accumulated, so repeated
    updates cannot drift:

        max(0, requests_total - daily_limit) * cost_per_request

    Args:
        requests_total: Requests made on the day
        daily_limit: Free daily quota
        cost_per_request: Price of each request past the quota

    Returns:
        Cost in USD rounded to 4 decimal places
    """
    if requests_total < 0:
        raise ValueError("requests_total cannot be negative")
    excess = max(0, requests_total - daily_limit)
    return to_cost(Decimal(excess) * Decimal(str(cost_per_request)))
