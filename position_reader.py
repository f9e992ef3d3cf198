"""
Position snapshot reader.
Fetches the owner's positions and the pool's active index / reference price
through a PositionSource, with every call bounded by a timeout.
"""
import logging
from numbers import Real
from typing import List, Optional

from collaborators import PositionSource
from domain import Position, PositionSnapshot
from errors import QueryError
from utils import call_with_timeout

logger = logging.getLogger(__name__)


class PositionSnapshotReader:
    """Reads positions and pool price for one owner"""

    def __init__(self, source: PositionSource, owner: str, timeout: Optional[float] = None):
        self.source = source
        self.owner = owner
        self.timeout = timeout

    async def _call(self, func, *args, description: str):
        try:
            return await call_with_timeout(func, *args, timeout=self.timeout, description=description)
        except QueryError:
            raise
        except Exception as e:
            raise QueryError(f"{description} failed: {e}") from e

    async def read(self) -> PositionSnapshot:
        """
        Fetch owned positions and the active index.

        Returns:
            PositionSnapshot

        Raises:
            QueryError: if either lookup fails or times out
        """
        positions: List[Position] = await self._call(
            self.source.list_positions, self.owner, description="Position query"
        )
        active_index = await self.active_index()

        logger.debug(f"Snapshot: {len(positions)} positions, active index {active_index}")
        return PositionSnapshot(positions=list(positions), active_index=active_index)

    async def active_index(self) -> int:
        return int(await self._call(self.source.active_index, description="Active index query"))

    async def reference_price(self) -> Real:
        price = await self._call(self.source.reference_price, description="Price query")
        if price is None or price <= 0:
            raise QueryError("Could not get active bin price")
        return price
