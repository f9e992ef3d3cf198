"""Unit tests for PositionSnapshotReader and BalanceInspector."""
import time
import pytest
import sys
import os
from unittest.mock import Mock

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from balance_inspector import BalanceInspector
from domain import Position
from errors import CollaboratorTimeout, QueryError
from position_reader import PositionSnapshotReader

OWNER = '0x' + 'aa' * 20


class TestPositionSnapshotReader:
    """Test snapshot reads through the timeout wrapper."""

    def setup_method(self):
        self.source = Mock()
        self.source.list_positions.return_value = [Position(key='1', lower_bin=1, upper_bin=2)]
        self.source.active_index.return_value = 5
        self.source.reference_price.return_value = 2.5
        self.reader = PositionSnapshotReader(self.source, OWNER, timeout=1)

    @pytest.mark.asyncio
    async def test_read_snapshot(self):
        snapshot = await self.reader.read()

        assert snapshot.active_index == 5
        assert [p.key for p in snapshot.positions] == ['1']
        self.source.list_positions.assert_called_once_with(OWNER)

    @pytest.mark.asyncio
    async def test_source_errors_become_query_errors(self):
        self.source.list_positions.side_effect = ConnectionError("rpc down")

        with pytest.raises(QueryError) as exc_info:
            await self.reader.read()

        assert "Position query failed" in str(exc_info.value)
        assert isinstance(exc_info.value.__cause__, ConnectionError)

    @pytest.mark.asyncio
    async def test_timeout(self):
        self.source.active_index.side_effect = lambda: time.sleep(0.5)
        reader = PositionSnapshotReader(self.source, OWNER, timeout=0.05)

        with pytest.raises(CollaboratorTimeout):
            await reader.active_index()

    @pytest.mark.asyncio
    async def test_reference_price(self):
        assert await self.reader.reference_price() == 2.5

    @pytest.mark.asyncio
    async def test_non_positive_price_rejected(self):
        self.source.reference_price.return_value = 0

        with pytest.raises(QueryError, match="Could not get active bin price"):
            await self.reader.reference_price()


class TestBalanceInspector:
    """Test balance reads."""

    def setup_method(self):
        self.source = Mock()
        self.source.balance.side_effect = lambda owner, asset: {'0xX': 1500, '0xY': 3 * 10 ** 18}[asset]
        self.source.decimals.side_effect = lambda asset: {'0xX': 6, '0xY': 18}[asset]
        self.inspector = BalanceInspector(self.source, OWNER, '0xX', '0xY', timeout=1)

    @pytest.mark.asyncio
    async def test_read_balances(self):
        balances = await self.inspector.read_balances()

        assert balances.x_amount == 1500
        assert balances.y_amount == 3 * 10 ** 18
        assert balances.x_decimals == 6
        assert balances.y_decimals == 18

    @pytest.mark.asyncio
    async def test_decimals_cached(self):
        await self.inspector.read_balances()
        await self.inspector.read_balances()

        assert self.source.decimals.call_count == 2

    @pytest.mark.asyncio
    async def test_failure_propagates_without_retry(self):
        self.source.balance.side_effect = ConnectionError("rpc down")

        with pytest.raises(QueryError):
            await self.inspector.read_balances()

        assert self.source.balance.call_count == 1
