"""Shared fixtures for the RangeGuard LP test suite."""
import os
import sys
from typing import List
from unittest.mock import Mock

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from collaborators import Notifier


class RecordingNotifier(Notifier):
    """Notifier that keeps every message in memory."""

    def __init__(self):
        self.messages: List[str] = []

    async def send(self, message: str) -> bool:
        self.messages.append(message)
        return True

    def count(self, text: str) -> int:
        return sum(1 for message in self.messages if text in message)


def make_config(**overrides):
    """Mock config carrying the monitor's settings."""
    config = Mock()
    config.TOKEN_X_ADDRESS = '0x' + '11' * 20
    config.TOKEN_Y_ADDRESS = '0x' + '22' * 20
    config.WETH_ADDRESS = '0x' + '22' * 20
    config.NATIVE_TOKEN_ADDRESS = '0x0000000000000000000000000000000000000000'
    config.UNISWAP_V3_FACTORY = '0x' + '33' * 20
    config.UNISWAP_V3_POSITION_MANAGER = '0x' + '44' * 20
    config.CHAIN_ID = 1
    config.CHAIN_NAME = 'Ethereum Mainnet'
    config.FEE_TIER = 500
    config.MAX_GAS_LIMIT = 500000
    config.MONITORING_INTERVAL_SECONDS = 180
    config.REBALANCE_ENABLED = True
    config.RANGE_HALF_WIDTH = 5
    config.MIN_SWAP_THRESHOLD_BPS = 100
    config.SWAP_SLIPPAGE_BPS = 50
    config.DEPOSIT_SLIPPAGE_BPS = 50
    config.SETTLEMENT_DELAY_SECONDS = 0
    config.SETTLEMENT_MODE = 'fixed'
    config.SETTLEMENT_POLL_INTERVAL_SECONDS = 0.01
    config.NATIVE_FEE_RESERVE = 0.07
    config.EXTERNAL_CALL_TIMEOUT_SECONDS = 5
    config.TRANSACTION_TIMEOUT_SECONDS = 5
    config.TELEGRAM_BOT_TOKEN = 'test-token'
    config.TELEGRAM_CHAT_ID = '12345'
    config.TELEGRAM_ENABLED = True
    config.LIFI_API_URL = 'https://li.quest/v1'
    config.LIFI_INTEGRATOR = 'rangeguard-lp'
    config.LIFI_API_KEY = ''
    config.PRIVATE_KEY = None
    config.get_chain_info.return_value = {'chain_id': 1, 'chain_name': 'Ethereum Mainnet'}
    for name, value in overrides.items():
        setattr(config, name, value)
    return config


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def config():
    return make_config()
