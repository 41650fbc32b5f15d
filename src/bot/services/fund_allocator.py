"""
Fund Allocator

Splits the simulated community budget across choices in proportion to their
weighted totals. Values stay floating point; rounding is presentation only.
"""

from dataclasses import dataclass
from typing import Mapping

from models.poll import Choice

DEFAULT_FUND_AMOUNT = 1_000_000


@dataclass(frozen=True)
class FundAllocation:
    """Share of the fund assigned to one choice."""

    choice: Choice
    percentage: float
    amount: float

    @property
    def display_percentage(self) -> str:
        return f"{self.percentage:.1f}%"

    @property
    def display_amount(self) -> str:
        return f"{self.amount:,.0f}"


def allocate_funds(
    weighted: Mapping[Choice, int],
    fund: float = DEFAULT_FUND_AMOUNT,
) -> dict[Choice, FundAllocation]:
    """Allocate ``fund`` across all choices; an empty poll splits evenly."""
    total = sum(weighted.get(choice, 0) for choice in Choice)
    choices = list(Choice)

    if total == 0:
        even_share = 100 / len(choices)
        return {
            choice: FundAllocation(choice=choice, percentage=even_share, amount=fund / len(choices))
            for choice in choices
        }

    allocations = {}
    for choice in choices:
        share = weighted.get(choice, 0) / total
        allocations[choice] = FundAllocation(
            choice=choice,
            percentage=share * 100,
            amount=fund * share,
        )
    return allocations
