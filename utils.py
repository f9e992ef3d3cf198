"""
RangeGuard LP - Utility Functions
Logging setup, bounded collaborator calls, amount formatting and Uniswap V3 helpers
"""
import asyncio
import functools
import logging
import math
import os
from fractions import Fraction
from typing import Any, Callable, Optional, Tuple

from errors import CollaboratorTimeout

logger = logging.getLogger(__name__)

Q96 = 2 ** 96


async def call_with_timeout(func: Callable, *args, timeout: Optional[float] = None,
                            description: Optional[str] = None, **kwargs) -> Any:
    """
    Run a blocking collaborator call in a worker thread with an upper time bound.

    Args:
        func: Blocking callable
        timeout: Seconds to wait, None for no bound
        description: Human readable name used in the timeout error

    Returns:
        Whatever func returns

    Raises:
        CollaboratorTimeout: if the call did not finish within timeout
    """
    call = functools.partial(func, *args, **kwargs)
    try:
        return await asyncio.wait_for(asyncio.to_thread(call), timeout=timeout)
    except asyncio.TimeoutError:
        name = description or getattr(func, '__name__', 'external call')
        logger.error(f"{name} timed out after {timeout}s")
        raise CollaboratorTimeout(name, timeout)


def format_token_amount(amount: int, decimals: int, symbol: str = "") -> str:
    """
    Format token amount for display

    Args:
        amount: Amount in raw units
        decimals: Token decimals
        symbol: Token symbol

    Returns:
        Formatted string
    """
    formatted_amount = amount / (10 ** decimals)
    return f"{formatted_amount:.6f} {symbol}".strip()


def to_raw_amount(amount: float, decimals: int) -> int:
    """Convert a human amount (e.g. 0.07) to raw units"""
    return int(round(amount * (10 ** decimals)))


class UniswapV3Utils:
    """Tick, bin and liquidity helpers for Uniswap V3 pools"""

    @staticmethod
    def calculate_tick_spacing(fee: int) -> int:
        """
        Calculate tick spacing for a given fee tier

        Args:
            fee: Fee in hundredths of a bip (100, 500, 3000, 10000)

        Returns:
            Tick spacing
        """
        if fee == 100:  # 0.01%
            return 1
        elif fee == 500:  # 0.05%
            return 10
        elif fee == 3000:  # 0.3%
            return 60
        elif fee == 10000:  # 1%
            return 200
        else:
            raise ValueError(f"Unsupported fee tier: {fee}")

    # A "bin" is one tick-spacing wide bucket: bin b covers ticks
    # [b * spacing, (b + 1) * spacing).

    @staticmethod
    def tick_to_bin(tick: int, tick_spacing: int) -> int:
        return tick // tick_spacing

    @staticmethod
    def ticks_to_bin_range(tick_lower: int, tick_upper: int, tick_spacing: int) -> Tuple[int, int]:
        """Inclusive bin range covered by a [tick_lower, tick_upper) position"""
        return tick_lower // tick_spacing, tick_upper // tick_spacing - 1

    @staticmethod
    def bin_range_to_ticks(lower_bin: int, upper_bin: int, tick_spacing: int) -> Tuple[int, int]:
        """Tick bounds for an inclusive bin range"""
        return lower_bin * tick_spacing, (upper_bin + 1) * tick_spacing

    @staticmethod
    def sqrt_price_x96_to_ratio(sqrt_price_x96: int) -> Fraction:
        """Exact token1-per-token0 price from sqrtPriceX96"""
        return Fraction(sqrt_price_x96 ** 2, Q96 ** 2)

    @staticmethod
    def tick_to_sqrt_price(tick: int) -> float:
        return math.sqrt(1.0001 ** tick)

    @staticmethod
    def amounts_for_liquidity(liquidity: int, sqrt_price_x96: int,
                              tick_lower: int, tick_upper: int) -> Tuple[int, int]:
        """
        Token amounts held by a position with the given liquidity

        Args:
            liquidity: Position liquidity
            sqrt_price_x96: Current pool sqrt price (Q64.96)
            tick_lower: Lower tick of the position
            tick_upper: Upper tick of the position

        Returns:
            Tuple of (amount0, amount1) in raw units
        """
        sqrt_p = sqrt_price_x96 / Q96
        sqrt_a = UniswapV3Utils.tick_to_sqrt_price(tick_lower)
        sqrt_b = UniswapV3Utils.tick_to_sqrt_price(tick_upper)

        if sqrt_p <= sqrt_a:
            amount0 = liquidity * (sqrt_b - sqrt_a) / (sqrt_a * sqrt_b)
            amount1 = 0.0
        elif sqrt_p >= sqrt_b:
            amount0 = 0.0
            amount1 = liquidity * (sqrt_b - sqrt_a)
        else:
            amount0 = liquidity * (sqrt_b - sqrt_p) / (sqrt_p * sqrt_b)
            amount1 = liquidity * (sqrt_p - sqrt_a)

        return int(amount0), int(amount1)

    @staticmethod
    def liquidity_for_amounts(amount0: int, amount1: int, sqrt_price_x96: int,
                              tick_lower: int, tick_upper: int) -> int:
        """Largest liquidity that can be minted from the given amounts"""
        sqrt_p = sqrt_price_x96 / Q96
        sqrt_a = UniswapV3Utils.tick_to_sqrt_price(tick_lower)
        sqrt_b = UniswapV3Utils.tick_to_sqrt_price(tick_upper)

        if sqrt_p <= sqrt_a:
            return int(amount0 * sqrt_a * sqrt_b / (sqrt_b - sqrt_a))
        if sqrt_p >= sqrt_b:
            return int(amount1 / (sqrt_b - sqrt_a))

        liquidity0 = amount0 * sqrt_p * sqrt_b / (sqrt_b - sqrt_p)
        liquidity1 = amount1 / (sqrt_p - sqrt_a)
        return int(min(liquidity0, liquidity1))


class Logger:
    """Enhanced logging utilities"""

    @staticmethod
    def setup_logging(level: str = "INFO", log_file: str = None):
        """
        Set up logging configuration

        Args:
            level: Logging level (DEBUG, INFO, WARNING, ERROR)
            log_file: Optional log file path
        """
        log_level = getattr(logging, level.upper())

        # Create formatter
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

        # Set up console handler
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)

        # Set up file handler if specified
        handlers = [console_handler]
        if log_file:
            log_dir = os.path.dirname(log_file)
            if log_dir:
                os.makedirs(log_dir, exist_ok=True)
            file_handler = logging.FileHandler(log_file)
            file_handler.setFormatter(formatter)
            handlers.append(file_handler)

        # Configure root logger
        logging.basicConfig(
            level=log_level,
            handlers=handlers,
            force=True
        )

    @staticmethod
    def log_transaction(tx_hash: str, operation: str, success: bool):
        """
        Log transaction outcome

        Args:
            tx_hash: Transaction hash
            operation: Operation description
            success: Whether transaction was successful
        """
        status = "SUCCESS" if success else "FAILED"
        logger.info(f"Transaction {status}: {operation} - {tx_hash}")
