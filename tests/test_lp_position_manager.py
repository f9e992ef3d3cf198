"""
Unit tests for LPPositionManager.
Calldata is encoded against the real position manager ABI and decoded back.
"""
import pytest
import sys
import os
from unittest.mock import Mock

from hexbytes import HexBytes
from web3 import Web3

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from conftest import make_config
from domain import PendingTransaction, Position, TransactionRef
from lp_position_manager import DEADLINE_SECONDS, MAX_UINT128, LPPositionManager
from uniswap_client import ZERO_ADDRESS, UniswapV3Client
from utils import Q96

OWNER = Web3.to_checksum_address('0x' + 'aa' * 20)
TOKEN_X = Web3.to_checksum_address('0x' + '11' * 20)
TOKEN_Y = Web3.to_checksum_address('0x' + '22' * 20)
MANAGER = Web3.to_checksum_address('0x' + '44' * 20)
NOW = 1_700_000_000

MINT_FIELDS = ['token0', 'token1', 'fee', 'tickLower', 'tickUpper', 'amount0Desired',
               'amount1Desired', 'amount0Min', 'amount1Min', 'recipient', 'deadline']
DECREASE_FIELDS = ['tokenId', 'liquidity', 'amount0Min', 'amount1Min', 'deadline']
COLLECT_FIELDS = ['tokenId', 'recipient', 'amount0Max', 'amount1Max']


def as_struct(value, fields):
    """Decoded tuple arguments as a dict, whichever form web3 returns"""
    return dict(value) if isinstance(value, dict) else dict(zip(fields, value))


def make_client():
    contract = Web3().eth.contract(
        address=MANAGER, abi=UniswapV3Client._get_position_manager_abi(Mock())
    )
    client = Mock()
    client.config = make_config()
    client.position_manager = contract
    client.wallet_address = OWNER
    client.token_x = TOKEN_X
    client.fee = 500
    client.tick_spacing = 10
    client.latest_timestamp.return_value = NOW
    client.pool_state.return_value = (Q96, 0)
    client.pool_tokens.return_value = (TOKEN_X, TOKEN_Y)
    client.x_is_token0.return_value = True
    client.allowance.return_value = 0
    client.build_approval.return_value = PendingTransaction('Approve X', {'to': TOKEN_X, 'data': '0x'})
    return client


class TestBuildWithdrawal:
    """Test decrease/collect/burn transaction building."""

    def setup_method(self):
        self.client = make_client()
        self.contract = self.client.position_manager
        self.manager = LPPositionManager(self.client, slippage_bps=50)
        self.position = Position(key='42', lower_bin=-10, upper_bin=9, x_amount=1000, y_amount=1000,
                                 liquidity=10 ** 15)

    def decode(self, data):
        fn, params = self.contract.decode_function_input(data)
        return fn.fn_name, params

    def test_full_withdrawal_sequence(self):
        transactions = self.manager.build_withdrawal(self.position, self.position.bin_range, 10000, True)

        assert [tx.description for tx in transactions] == [
            "Decrease liquidity of 42", "Collect tokens of 42", "Burn position 42"
        ]
        for transaction in transactions:
            assert transaction.tx['to'] == MANAGER
            assert transaction.tx['value'] == 0

        name, params = self.decode(transactions[0].tx['data'])
        decrease = as_struct(params['params'], DECREASE_FIELDS)
        assert name == 'decreaseLiquidity'
        assert decrease['tokenId'] == 42
        assert decrease['liquidity'] == 10 ** 15
        assert decrease['deadline'] == NOW + DEADLINE_SECONDS
        assert 0 < decrease['amount0Min'] and 0 < decrease['amount1Min']

        name, params = self.decode(transactions[2].tx['data'])
        assert name == 'burn'
        assert params['tokenId'] == 42

    def test_collect_unwraps_and_sweeps_to_owner(self):
        transactions = self.manager.build_withdrawal(self.position, self.position.bin_range, 10000, True)

        name, params = self.decode(transactions[1].tx['data'])
        assert name == 'multicall'
        inner = [self.decode(call) for call in params['data']]
        assert [call[0] for call in inner] == ['collect', 'unwrapWETH9', 'sweepToken']

        collect = as_struct(inner[0][1]['params'], COLLECT_FIELDS)
        assert collect['tokenId'] == 42
        assert collect['recipient'] == ZERO_ADDRESS
        assert collect['amount0Max'] == MAX_UINT128
        assert inner[1][1]['recipient'] == OWNER
        assert inner[2][1]['token'] == TOKEN_X
        assert inner[2][1]['recipient'] == OWNER

    def test_partial_withdrawal_keeps_position(self):
        transactions = self.manager.build_withdrawal(self.position, self.position.bin_range, 5000, True)

        assert len(transactions) == 2
        _, params = self.decode(transactions[0].tx['data'])
        assert as_struct(params['params'], DECREASE_FIELDS)['liquidity'] == 5 * 10 ** 14

    def test_empty_position_only_collects_and_burns(self):
        empty = Position(key='42', lower_bin=-10, upper_bin=9, x_amount=0, y_amount=0, liquidity=0)

        transactions = self.manager.build_withdrawal(empty, empty.bin_range, 10000, True)

        assert [tx.description for tx in transactions] == ["Collect tokens of 42", "Burn position 42"]

    def test_no_burn_without_close(self):
        transactions = self.manager.build_withdrawal(self.position, self.position.bin_range, 10000, False)

        assert transactions[-1].description == "Collect tokens of 42"


class TestBuildDeposit:
    """Test approval and mint transaction building."""

    def setup_method(self):
        self.client = make_client()
        self.contract = self.client.position_manager
        self.manager = LPPositionManager(self.client)

    def decode_mint(self, transaction):
        fn, params = self.contract.decode_function_input(transaction.tx['data'])
        assert fn.fn_name == 'multicall'
        calls = [self.contract.decode_function_input(call) for call in params['data']]
        assert [call[0].fn_name for call in calls] == ['mint', 'refundETH']
        return as_struct(calls[0][1]['params'], MINT_FIELDS)

    def test_deposit_with_approval(self):
        transactions = self.manager.build_deposit('pending-1', OWNER, 10 ** 6, 10 ** 6, (-5, 4), 50)

        assert [tx.description for tx in transactions] == ['Approve X', 'Mint position pending-1']
        self.client.build_approval.assert_called_once_with(TOKEN_X, MANAGER, 10 ** 6)

        mint_tx = transactions[1]
        assert mint_tx.tx['to'] == MANAGER
        assert mint_tx.tx['value'] == 10 ** 6

        mint = self.decode_mint(mint_tx)
        assert mint['token0'] == TOKEN_X
        assert mint['token1'] == TOKEN_Y
        assert mint['fee'] == 500
        assert (mint['tickLower'], mint['tickUpper']) == (-50, 50)
        assert mint['amount0Desired'] == 10 ** 6
        assert mint['amount1Desired'] == 10 ** 6
        assert mint['amount0Min'] <= mint['amount0Desired']
        assert mint['amount1Min'] <= mint['amount1Desired']
        assert mint['recipient'] == OWNER
        assert mint['deadline'] == NOW + DEADLINE_SECONDS

    def test_existing_allowance_skips_approval(self):
        self.client.allowance.return_value = 10 ** 18

        transactions = self.manager.build_deposit('pending-1', OWNER, 10 ** 6, 10 ** 6, (-5, 4), 50)

        assert len(transactions) == 1
        self.client.build_approval.assert_not_called()

    def test_no_x_needs_no_approval(self):
        transactions = self.manager.build_deposit('pending-1', OWNER, 0, 10 ** 6, (1, 5), 50)

        assert len(transactions) == 1
        self.client.allowance.assert_not_called()

    def test_amounts_follow_pool_order(self):
        """When X is token1 the desired amounts are swapped into pool order."""
        self.client.x_is_token0.return_value = False
        self.client.pool_tokens.return_value = (TOKEN_Y, TOKEN_X)
        self.client.allowance.return_value = 10 ** 18

        transactions = self.manager.build_deposit('pending-1', OWNER, 3 * 10 ** 6, 10 ** 6, (-5, 4), 50)

        mint = self.decode_mint(transactions[-1])
        assert mint['token0'] == TOKEN_Y
        assert mint['amount0Desired'] == 10 ** 6
        assert mint['amount1Desired'] == 3 * 10 ** 6

    def test_new_position_key_placeholder(self):
        first = self.manager.new_position_key()
        second = self.manager.new_position_key()

        assert first.startswith("pending-")
        assert first != second


class TestOpenedPositionKey:
    """Test reading the minted NFT id from the receipt."""

    def setup_method(self):
        self.client = make_client()
        self.manager = LPPositionManager(self.client)

    def transfer_log(self, token_id, address=MANAGER):
        def word(value):
            return HexBytes(value.to_bytes(32, 'big'))

        return {
            'address': address,
            'topics': [
                Web3.keccak(text="Transfer(address,address,uint256)"),
                word(0),
                HexBytes(b'\x00' * 12 + HexBytes(OWNER)),
                word(token_id),
            ],
            'data': HexBytes(b''),
            'blockNumber': 1,
            'blockHash': HexBytes(b'\x01' * 32),
            'transactionHash': HexBytes(b'\x02' * 32),
            'transactionIndex': 0,
            'logIndex': 0,
        }

    def test_reads_token_id_from_transfer(self):
        ref = TransactionRef(reference='0xmint', receipt={'logs': [self.transfer_log(777)]})

        assert self.manager.opened_position_key('pending-1', ref) == '777'

    def test_ignores_logs_from_other_contracts(self):
        log = self.transfer_log(777, address=TOKEN_X)
        ref = TransactionRef(reference='0xmint', receipt={'logs': [log]})

        assert self.manager.opened_position_key('pending-1', ref) == 'pending-1'

    def test_missing_receipt_keeps_placeholder(self):
        ref = TransactionRef(reference='0xmint')

        assert self.manager.opened_position_key('pending-1', ref) == 'pending-1'


@pytest.mark.parametrize("amount,bps,expected", [(10000, 50, 9950), (10000, 0, 10000), (0, 50, 0)])
def test_apply_slippage(amount, bps, expected):
    assert LPPositionManager._apply_slippage(amount, bps) == expected
