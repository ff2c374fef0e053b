"""Small numeric helpers."""

from __future__ import annotations

import math


def percentage(total: float, amount: float) -> float:
    """Return ``amount`` as a percentage of ``total``.

    Raises ``ValueError`` if ``amount`` exceeds ``total``. A zero total
    behaves like floating-point division: ``0 / 0`` yields NaN.
    """
    if total < amount:
        raise ValueError(
            f"total must be at least amount; total={total}, amount={amount}"
        )
    if total == 0:
        if amount == 0:
            return math.nan
        return math.copysign(math.inf, amount)
    return (amount / total) * 100.0


def percent_of(amount: float, total: float) -> float:
    """Return what percentage ``amount`` is of ``total``.

    Integer arguments give an integer result, truncated toward zero; a
    result that is not finite (such as ``0`` of ``0``) becomes ``0``.
    """
    result = percentage(float(total), float(amount))
    if isinstance(amount, int) and isinstance(total, int):
        return int(result) if math.isfinite(result) else 0
    return result