# purchase_system/utils/money.py
"""
Money helpers.

All commission amounts go through to_money() so that every line item and
every total is rounded by the same rule (0.01, ROUND_HALF_UP).
"""
from decimal import Decimal, ROUND_DOWN, ROUND_HALF_UP
from typing import List, Sequence

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_decimal(value) -> Decimal:
    """Convert int/float/str/Decimal to Decimal without float artifacts."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def to_money(value) -> Decimal:
    """Round to cents, half up."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def _to_cents(value: Decimal, rounding=ROUND_DOWN) -> int:
    return int((to_decimal(value) / CENT).to_integral_value(rounding=rounding))


def split_evenly(total, count: int) -> List[Decimal]:
    """
    Split total into count parts that sum exactly to to_money(total).

    Each part gets the floor share in cents, the leftover cents go to the
    first part.

    Example:
        split_evenly(Decimal("10.00"), 3)  # [3.34, 3.33, 3.33]
    """
    if count <= 0:
        return []

    cents = _to_cents(to_money(total))
    base, remainder = divmod(cents, count)

    parts = [Decimal(base) * CENT for _ in range(count)]
    parts[0] = Decimal(base + remainder) * CENT
    return parts


def scale_to_cap(amounts: Sequence[Decimal], cap) -> List[Decimal]:
    """
    Scale amounts down proportionally so they sum exactly to cap.

    cap is floored to cents first. Every positive amount keeps at least one
    cent; the rest of the cap is shared in proportion to what each amount
    holds above that cent. Cents lost to flooring are handed out by largest
    remainder, ties broken by position, so the result is stable for
    identical input.

    When the cap has fewer cents than there are positive amounts, the
    largest amounts get one cent each and the others get zero.

    Args:
        amounts: Cent-rounded amounts, all >= 0
        cap: Upper bound for the sum

    Returns:
        New list of amounts, same order, summing to the floored cap
    """
    total = sum(amounts, Decimal("0"))
    capCents = _to_cents(cap)

    if total <= 0 or _to_cents(total) <= capCents:
        return [to_money(a) for a in amounts]

    cents = [_to_cents(to_money(a)) for a in amounts]
    positive = [i for i, c in enumerate(cents) if c > 0]

    if capCents < len(positive):
        keep = sorted(positive, key=lambda i: (-cents[i], i))[:capCents]
        return [CENT if i in keep else ZERO for i in range(len(cents))]

    excess = [c - 1 if c > 0 else 0 for c in cents]
    excessTotal = sum(excess)
    spare = capCents - len(positive)

    scaled = []
    fractions = []
    for i, c in enumerate(cents):
        base = 1 if c > 0 else 0
        exact = Decimal(excess[i] * spare) / excessTotal
        whole = int(exact.to_integral_value(rounding=ROUND_DOWN))
        scaled.append(base + whole)
        fractions.append(exact - whole)

    leftover = capCents - sum(scaled)
    order = sorted(range(len(cents)), key=lambda i: (-fractions[i], i))
    for index in order[:leftover]:
        scaled[index] += 1

    return [Decimal(c) * CENT for c in scaled]
