"""
Rebalance planning for RangeGuard LP.
Decides which asset to sell, and how much, to restore a 50/50 value split.
No network and no clock here.
"""
from fractions import Fraction
from numbers import Real
from typing import Optional, Tuple

from domain import Asset, RebalancePlan

BPS_DENOMINATOR = 10_000


class RebalancePlanner:
    """
    Equal-value rebalance planner.

    Values are expressed in raw units of asset X. The reference price is
    taken as an exact ratio (a float converts to its exact binary value), so
    a per-wei price of 3e-9 raw USDC keeps its precision and every amount is
    computed with integer arithmetic.
    """

    def __init__(self, range_half_width: int = 5, min_swap_threshold_bps: int = 100):
        self.range_half_width = range_half_width
        self.min_swap_threshold_bps = min_swap_threshold_bps

    @classmethod
    def from_config(cls, config) -> "RebalancePlanner":
        return cls(
            range_half_width=config.RANGE_HALF_WIDTH,
            min_swap_threshold_bps=config.MIN_SWAP_THRESHOLD_BPS,
        )

    @staticmethod
    def price_ratio(reference_price: Real) -> Fraction:
        return Fraction(reference_price)

    @classmethod
    def value_in_x(cls, y_amount: int, reference_price: Real) -> int:
        """Raw Y amount valued in raw units of X, rounded down"""
        ratio = cls.price_ratio(reference_price)
        return y_amount * ratio.numerator // ratio.denominator

    def plan(self, x_amount: int, y_amount: int, reference_price: Real) -> Optional[RebalancePlan]:
        """
        Plan the swap for a rebalance.

        Args:
            x_amount: Raw balance of X
            y_amount: Raw balance of Y
            reference_price: Price of one raw unit of Y in raw units of X
                (float, int or Fraction)

        Returns:
            RebalancePlan, or None when no swap is worth doing
        """
        x_value = x_amount
        y_value = self.value_in_x(y_amount, reference_price)
        total_value = x_value + y_value
        target_value = total_value // 2

        # Sell half of whichever side is worth more
        if x_value > y_value:
            sell_asset = Asset.X
            sell_amount = x_amount // 2
            sell_value = x_value
        else:
            sell_asset = Asset.Y
            sell_amount = y_amount // 2
            sell_value = y_value

        # Skip swaps too small to be worth the fees
        min_swap_threshold = total_value * self.min_swap_threshold_bps // BPS_DENOMINATOR
        if sell_amount <= 0 or sell_value <= min_swap_threshold:
            return None

        return RebalancePlan(
            sell_asset=sell_asset,
            sell_amount=sell_amount,
            range_half_width=self.range_half_width,
            x_value=x_value,
            y_value=y_value,
            total_value=total_value,
            target_value=target_value,
        )

    def new_range(self, active_index: int) -> Tuple[int, int]:
        """Bin range centered on active_index"""
        return active_index - self.range_half_width, active_index + self.range_half_width
