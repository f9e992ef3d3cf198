"""Unit tests for RebalancePlanner."""
from fractions import Fraction

import pytest
import sys
import os
from unittest.mock import Mock

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from domain import Asset
from rebalance_planner import RebalancePlanner


class TestRebalancePlanner:
    """Test swap sizing and the minimum swap threshold."""

    def setup_method(self):
        self.planner = RebalancePlanner(range_half_width=5, min_swap_threshold_bps=100)

    def test_sells_larger_side(self):
        """X worth 1000 against Y worth 400 sells half of X."""
        plan = self.planner.plan(1000, 400, 1.0)

        assert plan is not None
        assert plan.sell_asset == Asset.X
        assert plan.buy_asset == Asset.Y
        assert plan.sell_amount == 500
        assert plan.total_value == 1400
        assert plan.target_value == 700
        assert plan.range_half_width == 5

    def test_sells_y_when_y_worth_more(self):
        """Y is valued through the reference price."""
        plan = self.planner.plan(1000, 10, 200.0)

        assert plan.sell_asset == Asset.Y
        assert plan.y_value == 2000
        assert plan.sell_amount == 5

    def test_equal_values_sell_y(self):
        """Ties go to Y and still proceed above the threshold."""
        plan = self.planner.plan(10, 10, 1.0)

        assert plan is not None
        assert plan.sell_asset == Asset.Y
        assert plan.sell_amount == 5

    def test_tiny_balances_no_action(self):
        """Half of 1 unit rounds to zero, nothing to sell."""
        assert self.planner.plan(1, 1, 1.0) is None

    def test_empty_wallet_no_action(self):
        assert self.planner.plan(0, 0, 1.0) is None

    def test_zero_value_sell_side_no_action(self):
        """A sell side valued at zero never clears the threshold."""
        # 100 * 1e-7 rounds down to zero value
        assert self.planner.plan(0, 100, 0.0000001) is None

    def test_threshold_is_relative_to_total(self):
        """The threshold scales with the total value, not an absolute constant."""
        planner = RebalancePlanner(min_swap_threshold_bps=6000)
        # Sell side is X worth 1000 of 1900 total; threshold is 1140
        assert planner.plan(1000, 900, 1.0) is None
        # Same proportions, larger amounts
        assert planner.plan(10_000, 9_000, 1.0) is None
        # Sell side worth 1000 of 1500; threshold 900
        assert planner.plan(1000, 500, 1.0) is not None

    def test_y_value_uses_integer_math(self):
        """Y value is floor(y * price) computed on the exact ratio."""
        assert RebalancePlanner.value_in_x(7, Fraction(1, 3)) == 2
        plan = self.planner.plan(0, 10**18, 0.5)
        assert plan.y_value == 10**18 // 2

    def test_wei_priced_eth_against_usdc(self):
        """10 ETH at 3000 USDC/ETH outweighs 100 USDC, so Y is sold."""
        price = Fraction(3000 * 10**6, 10**18)

        plan = self.planner.plan(100 * 10**6, 10 * 10**18, price)

        assert plan.sell_asset == Asset.Y
        assert plan.sell_amount == 5 * 10**18
        assert plan.y_value == 30_000 * 10**6
        assert plan.total_value == 30_100 * 10**6

    def test_eth_only_wallet_sells_half_the_eth(self):
        plan = self.planner.plan(0, 2 * 10**18, Fraction(3000 * 10**6, 10**18))

        assert plan.sell_asset == Asset.Y
        assert plan.sell_amount == 10**18

    def test_usdc_heavy_wallet_sells_usdc(self):
        """A float price of 3e-9 keeps its precision."""
        plan = self.planner.plan(10_000 * 10**6, 10**18, 3e-9)

        assert plan.sell_asset == Asset.X
        assert plan.sell_amount == 5_000 * 10**6
        assert 2_999 * 10**6 <= plan.y_value <= 3_000 * 10**6

    def test_new_range_centered_on_index(self):
        assert self.planner.new_range(100) == (95, 105)
        assert RebalancePlanner(range_half_width=0).new_range(-3) == (-3, -3)

    def test_from_config(self):
        config = Mock()
        config.RANGE_HALF_WIDTH = 8
        config.MIN_SWAP_THRESHOLD_BPS = 250

        planner = RebalancePlanner.from_config(config)

        assert planner.range_half_width == 8
        assert planner.min_swap_threshold_bps == 250
