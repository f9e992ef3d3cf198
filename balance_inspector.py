"""
Balance inspector.
Reads wallet holdings of the two pool assets. No retries here: a failed or
timed out lookup propagates to the caller as QueryError.
"""
import logging
from typing import Dict, Optional

from collaborators import BalanceSource
from domain import Balances
from errors import QueryError
from utils import call_with_timeout

logger = logging.getLogger(__name__)


class BalanceInspector:
    """Queries held quantities of assets X and Y"""

    def __init__(self, source: BalanceSource, owner: str, x_asset: str, y_asset: str,
                 timeout: Optional[float] = None):
        """
        Args:
            source: Balance collaborator
            owner: Wallet address
            x_asset: Identifier of asset X
            y_asset: Identifier of asset Y (read as the native balance by the source)
            timeout: Per-call timeout in seconds
        """
        self.source = source
        self.owner = owner
        self.x_asset = x_asset
        self.y_asset = y_asset
        self.timeout = timeout
        self._decimals: Dict[str, int] = {}

    async def _call(self, func, *args, description: str):
        try:
            return await call_with_timeout(func, *args, timeout=self.timeout, description=description)
        except QueryError:
            raise
        except Exception as e:
            raise QueryError(f"{description} failed: {e}") from e

    async def _asset_decimals(self, asset: str) -> int:
        # Decimals never change, cache after the first lookup
        if asset not in self._decimals:
            self._decimals[asset] = int(
                await self._call(self.source.decimals, asset, description=f"Decimals query for {asset}")
            )
        return self._decimals[asset]

    async def read_balances(self) -> Balances:
        x_amount = await self._call(self.source.balance, self.owner, self.x_asset,
                                    description="Balance query for X")
        y_amount = await self._call(self.source.balance, self.owner, self.y_asset,
                                    description="Balance query for Y")
        balances = Balances(
            x_amount=int(x_amount),
            y_amount=int(y_amount),
            x_decimals=await self._asset_decimals(self.x_asset),
            y_decimals=await self._asset_decimals(self.y_asset),
        )
        logger.info(f"Balances: X={balances.x_amount}, Y={balances.y_amount}")
        return balances
