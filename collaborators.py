"""
Abstract base classes for the external collaborators used by the monitor.

Concrete implementations live in uniswap_client.py, lp_position_manager.py,
lifi_client.py and alert_manager.py. Everything except Notifier is called
synchronously from a worker thread (see utils.call_with_timeout), so
implementations may block on network I/O.
"""
from abc import ABC, abstractmethod
from numbers import Real
from typing import List, Optional, Tuple

from domain import (
    ExecutedRoute,
    PendingTransaction,
    Position,
    Route,
    TransactionRef,
)


class PositionSource(ABC):
    """Read-only view of the pool and the owner's positions"""

    @abstractmethod
    def list_positions(self, owner: str) -> List[Position]:
        """
        List positions held by owner in the monitored pool.

        Args:
            owner: Owner address

        Returns:
            Positions with bin bounds and held quantities
        """
        pass

    @abstractmethod
    def active_index(self) -> int:
        """Return the pool's current active bin index"""
        pass

    @abstractmethod
    def reference_price(self) -> Real:
        """
        Return the price of one raw unit of asset Y expressed in raw units
        of asset X at the active index. Prices of 18-decimal assets against
        6-decimal ones are tiny (about 3e-9), so prefer an exact Fraction.
        """
        pass


class BalanceSource(ABC):
    """Wallet balance lookups"""

    @abstractmethod
    def balance(self, owner: str, asset: str) -> int:
        """Return owner's raw balance of asset"""
        pass

    @abstractmethod
    def decimals(self, asset: str) -> int:
        pass


class SwapService(ABC):
    """Route discovery and execution"""

    @abstractmethod
    def find_routes(self, from_asset: str, to_asset: str, amount: int,
                    from_address: str, slippage_bps: int) -> List[Route]:
        """
        Request candidate routes, best first.

        Args:
            from_asset: Asset identifier to sell
            to_asset: Asset identifier to buy
            amount: Raw amount of from_asset to sell
            from_address: Wallet that holds from_asset
            slippage_bps: Maximum slippage in basis points

        Returns:
            Routes ordered best first, possibly empty
        """
        pass

    @abstractmethod
    def execute(self, route: Route) -> ExecutedRoute:
        """Execute a route and return the realized amounts"""
        pass

    def max_transactions(self, route: Route) -> int:
        """Upper bound on the transactions execute() confirms for this route"""
        return 1


class LiquidityManager(ABC):
    """Builds the transactions that move liquidity in and out of the pool"""

    @abstractmethod
    def build_withdrawal(self, position: Position, bin_range: Tuple[int, int],
                         bps_to_remove: int, claim_and_close: bool) -> List[PendingTransaction]:
        """
        Build the transactions that withdraw liquidity from a position.

        Args:
            position: Position to withdraw from
            bin_range: Inclusive (lower, upper) bins to withdraw
            bps_to_remove: Share of liquidity to remove, 10000 = all
            claim_and_close: Also claim fees and close the position

        Returns:
            Transactions to submit in order
        """
        pass

    @abstractmethod
    def new_position_key(self) -> str:
        """Return an identity for a position about to be opened"""
        pass

    @abstractmethod
    def build_deposit(self, new_position_key: str, owner: str, x_amount: int, y_amount: int,
                      bin_range: Tuple[int, int], slippage_bps: int) -> List[PendingTransaction]:
        """
        Build the transactions that open a new position.

        The last transaction in the returned list is the one that opens
        the position.
        """
        pass

    def opened_position_key(self, new_position_key: str, ref: TransactionRef) -> str:
        """Resolve the final identity of an opened position from its confirmation"""
        return new_position_key


class TransactionSubmitter(ABC):
    """Signs, sends and confirms transactions"""

    @abstractmethod
    def submit_and_confirm(self, transaction: PendingTransaction,
                           timeout: Optional[float] = None) -> TransactionRef:
        """
        Sign, send and wait for confirmation.

        Raises:
            TransactionError: if the transaction is rejected or reverts
        """
        pass


class Notifier(ABC):
    """Operator notification channel"""

    @abstractmethod
    async def send(self, message: str) -> bool:
        """
        Deliver a text message.

        Best effort: delivery failures are logged and reported through the
        return value, never raised.
        """
        pass
