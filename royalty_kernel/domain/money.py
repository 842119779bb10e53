"""
Money -- integer-cent arithmetic and deterministic rounding.

Responsibility:
    The foundation for every royalty calculation: banker's rounding at the
    final division step, the largest-remainder allocator used for ownership
    splits, basis-point helpers and rounding reconciliation.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - All money is integer cents.  No float ever enters a sum or a split;
      exact intermediate values use ``fractions.Fraction``.
    - ``allocate`` conserves cents: ``sum(result) == total_cents`` exactly,
      or AllocationConservationError is raised.
    - Rounding happens once, at the final division.  Partial sums are never
      rounded.

Failure modes:
    - InvalidBasisPointsError for bps outside 0..10000.
    - OwnershipSplitError when ownership shares do not sum to 10000 bps.
    - ValueError for non-positive denominators or negative weights.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from fractions import Fraction

from royalty_kernel.exceptions import (
    AllocationConservationError,
    InvalidBasisPointsError,
    OwnershipSplitError,
)

BPS_DENOMINATOR = 10_000


def round_half_even(numerator: int, denominator: int) -> int:
    """
    Divide two integers and round the quotient half-to-even.

    Examples:
        round_half_even(5, 2) == 2, round_half_even(7, 2) == 4,
        round_half_even(-5, 2) == -2.
    """
    if denominator == 0:
        raise ValueError("denominator must be non-zero")
    if denominator < 0:
        numerator, denominator = -numerator, -denominator

    quotient, remainder = divmod(numerator, denominator)
    twice = remainder * 2
    if twice > denominator:
        return quotient + 1
    if twice == denominator:
        return quotient + (quotient % 2)
    return quotient


def allocate(total_cents: int, weights: Sequence[int]) -> list[int]:
    """
    Split ``total_cents`` across ``weights`` by the largest-remainder method.

    Each share first receives the floor of its exact value.  The cents left
    over (always fewer than ``len(weights)``) go one at a time to the shares
    with the largest fractional remainder; ties go to the earlier share.
    Negative totals are allocated by magnitude and negated.

    Raises:
        ValueError: empty weights, a negative weight, or all-zero weights
            with a non-zero total.
        AllocationConservationError: if the result does not sum to the total.
    """
    if not weights:
        raise ValueError("allocate requires at least one weight")
    if any(w < 0 for w in weights):
        raise ValueError("allocation weights must be non-negative")

    total_weight = sum(weights)
    if total_weight == 0:
        if total_cents == 0:
            return [0] * len(weights)
        raise ValueError("cannot allocate a non-zero amount over zero weight")

    if total_cents < 0:
        return [-share for share in allocate(-total_cents, weights)]

    floors: list[int] = []
    remainders: list[int] = []
    for weight in weights:
        share, rem = divmod(total_cents * weight, total_weight)
        floors.append(share)
        remainders.append(rem)

    leftover = total_cents - sum(floors)
    order = sorted(range(len(weights)), key=lambda i: (-remainders[i], i))
    for i in order[:leftover]:
        floors[i] += 1

    allocated = sum(floors)
    if allocated != total_cents:
        raise AllocationConservationError(total_cents, allocated)
    return floors


def validate_basis_points(value: int, field: str = "share_bps") -> int:
    """Return ``value`` if it is an int within 0..10000."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidBasisPointsError(field, value)
    if value < 0 or value > BPS_DENOMINATOR:
        raise InvalidBasisPointsError(field, value)
    return value


def bps_share(amount_cents: int, bps: int) -> int:
    """``amount_cents * bps / 10000`` rounded half-to-even."""
    validate_basis_points(bps, "bps")
    return round_half_even(amount_cents * bps, BPS_DENOMINATOR)


def validate_ownership_split(
    asset_id: str,
    shares_bps: Iterable[int],
    license_id: str | None = None,
) -> int:
    """
    Check that an asset's ownership shares sum to exactly 10000 bps.

    Returns the total.  Raises OwnershipSplitError otherwise.
    """
    values = list(shares_bps)
    for value in values:
        validate_basis_points(value)
    total = sum(values)
    if total != BPS_DENOMINATOR:
        raise OwnershipSplitError(asset_id, total, license_id)
    return total


def sum_cents(amounts: Iterable[int]) -> int:
    """Sum integer cents, rejecting anything that is not an int."""
    total = 0
    for amount in amounts:
        if isinstance(amount, bool) or not isinstance(amount, int):
            raise TypeError(f"cent amounts must be int, got {type(amount).__name__}")
        total += amount
    return total


def format_cents(cents: int, symbol: str = "$") -> str:
    """Human-readable rendering, e.g. ``-$1,234.05``."""
    sign = "-" if cents < 0 else ""
    dollars, rem = divmod(abs(cents), 100)
    return f"{sign}{symbol}{dollars:,}.{rem:02d}"


@dataclass(frozen=True)
class RoundingReconciliation:
    """
    Comparison of an allocation against its exact (unrounded) shares.

    Guarantees:
        - ``total_difference_cents == sum(allocated) - total_cents``.
        - ``max_item_deviation`` is the largest |allocated - exact| (< 1 cent
          for any largest-remainder allocation).
    """

    total_cents: int
    allocated_cents: int
    total_difference_cents: int
    max_item_deviation: Fraction
    item_count: int
    tolerance_cents: int

    @property
    def within_tolerance(self) -> bool:
        return (
            abs(self.total_difference_cents) <= self.tolerance_cents
            and self.max_item_deviation < 1
        )

    def to_dict(self) -> dict:
        return {
            "total_cents": self.total_cents,
            "allocated_cents": self.allocated_cents,
            "total_difference_cents": self.total_difference_cents,
            "max_item_deviation": str(self.max_item_deviation),
            "item_count": self.item_count,
            "tolerance_cents": self.tolerance_cents,
            "within_tolerance": self.within_tolerance,
        }


def rounding_tolerance(item_count: int) -> int:
    """One cent per hundred items, never less than one cent."""
    return max(1, math.ceil(item_count / 100))


def reconcile_rounding(
    total_cents: int,
    weights: Sequence[int],
    allocated: Sequence[int],
) -> RoundingReconciliation:
    """Measure how far ``allocated`` drifts from the exact split of ``total_cents``."""
    if len(weights) != len(allocated):
        raise ValueError("weights and allocated must be the same length")

    total_weight = sum(weights)
    max_dev = Fraction(0)
    if total_weight:
        for weight, cents in zip(weights, allocated):
            exact = Fraction(total_cents * weight, total_weight)
            max_dev = max(max_dev, abs(cents - exact))

    allocated_total = sum(allocated)
    return RoundingReconciliation(
        total_cents=total_cents,
        allocated_cents=allocated_total,
        total_difference_cents=allocated_total - total_cents,
        max_item_deviation=max_dev,
        item_count=len(allocated),
        tolerance_cents=rounding_tolerance(len(allocated)),
    )
