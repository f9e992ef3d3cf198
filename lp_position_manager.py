"""
LP Position Manager for Uniswap V3
Builds the transactions that withdraw from and open liquidity positions
"""
import logging
import uuid
from typing import List, Tuple

from hexbytes import HexBytes
from web3 import Web3
from web3.exceptions import LogTopicError, MismatchedABI

from collaborators import LiquidityManager
from domain import PendingTransaction, Position, TransactionRef
from uniswap_client import ZERO_ADDRESS, UniswapV3Client
from utils import UniswapV3Utils

logger = logging.getLogger(__name__)

MAX_UINT128 = 2 ** 128 - 1
BPS_DENOMINATOR = 10_000
DEADLINE_SECONDS = 1800  # 30 minutes


class LPPositionManager(LiquidityManager):
    """
    Manager for Uniswap V3 LP positions.

    Asset Y is the pool's WETH side. Withdrawals unwrap it to native ETH and
    deposits send native ETH as msg.value, so the wallet only ever holds X
    and ETH.
    """

    def __init__(self, client: UniswapV3Client, slippage_bps: int = 50):
        """
        Initialize the LP Position Manager

        Args:
            client: Uniswap V3 client for the monitored pool
            slippage_bps: Tolerance applied to withdrawal minimum amounts
        """
        self.client = client
        self.w3 = client.w3
        self.config = client.config
        self.slippage_bps = slippage_bps
        self.position_manager = client.position_manager
        self.manager_address = self.position_manager.address

    def _deadline(self) -> int:
        return self.client.latest_timestamp() + DEADLINE_SECONDS

    def _call_data(self, fn_name: str, *args) -> HexBytes:
        return HexBytes(self.position_manager.encode_abi(fn_name, args=list(args)))

    def _manager_tx(self, description: str, data, value: int = 0) -> PendingTransaction:
        return PendingTransaction(
            description=description,
            tx={'to': self.manager_address, 'data': HexBytes(data).to_0x_hex(), 'value': value}
        )

    def _to_pool_order(self, x_amount: int, y_amount: int) -> Tuple[int, int]:
        return (x_amount, y_amount) if self.client.x_is_token0() else (y_amount, x_amount)

    @staticmethod
    def _apply_slippage(amount: int, slippage_bps: int) -> int:
        return amount * (BPS_DENOMINATOR - slippage_bps) // BPS_DENOMINATOR

    def _min_amounts(self, liquidity: int, tick_lower: int, tick_upper: int,
                     slippage_bps: int) -> Tuple[int, int]:
        sqrt_price_x96, _ = self.client.pool_state()
        amount0, amount1 = UniswapV3Utils.amounts_for_liquidity(liquidity, sqrt_price_x96, tick_lower, tick_upper)
        return self._apply_slippage(amount0, slippage_bps), self._apply_slippage(amount1, slippage_bps)

    def build_withdrawal(self, position: Position, bin_range: Tuple[int, int],
                         bps_to_remove: int, claim_and_close: bool) -> List[PendingTransaction]:
        """
        Build decreaseLiquidity, collect and burn transactions for a position

        Args:
            position: Position to withdraw from
            bin_range: Inclusive bin range of the position
            bps_to_remove: Share of liquidity to remove, 10000 = all
            claim_and_close: Collect fees and burn the NFT

        Returns:
            Transactions to submit in order
        """
        token_id = int(position.key)
        owner = self.client.wallet_address
        tick_lower, tick_upper = UniswapV3Utils.bin_range_to_ticks(
            bin_range[0], bin_range[1], self.client.tick_spacing
        )
        liquidity = position.liquidity * bps_to_remove // BPS_DENOMINATOR

        logger.info(f"Removing {liquidity} liquidity from position {token_id} "
                    f"(ticks {tick_lower} to {tick_upper})")

        transactions = []
        deadline = self._deadline()

        if liquidity > 0:
            amount0_min, amount1_min = self._min_amounts(liquidity, tick_lower, tick_upper, self.slippage_bps)
            decrease_params = {
                'tokenId': token_id,
                'liquidity': liquidity,
                'amount0Min': amount0_min,
                'amount1Min': amount1_min,
                'deadline': deadline
            }
            transactions.append(self._manager_tx(
                f"Decrease liquidity of {token_id}",
                self._call_data('decreaseLiquidity', decrease_params)
            ))

        # Collect into the manager itself (recipient 0x0), then unwrap WETH
        # to the owner and sweep the X token
        collect_params = {
            'tokenId': token_id,
            'recipient': ZERO_ADDRESS,
            'amount0Max': MAX_UINT128,
            'amount1Max': MAX_UINT128
        }
        collect_calls = [
            self._call_data('collect', collect_params),
            self._call_data('unwrapWETH9', 0, owner),
            self._call_data('sweepToken', self.client.token_x, 0, owner),
        ]
        transactions.append(self._manager_tx(
            f"Collect tokens of {token_id}",
            self._call_data('multicall', collect_calls)
        ))

        if claim_and_close and bps_to_remove >= BPS_DENOMINATOR:
            transactions.append(self._manager_tx(
                f"Burn position {token_id}",
                self._call_data('burn', token_id)
            ))

        return transactions

    def new_position_key(self) -> str:
        # Uniswap assigns the NFT id at mint time; this placeholder is replaced
        # by opened_position_key once the mint is confirmed
        return f"pending-{uuid.uuid4().hex[:8]}"

    def build_deposit(self, new_position_key: str, owner: str, x_amount: int, y_amount: int,
                      bin_range: Tuple[int, int], slippage_bps: int) -> List[PendingTransaction]:
        """
        Build the approval (if needed) and mint transactions for a new position

        Y is supplied as native ETH in msg.value; the manager wraps it and
        refundETH returns whatever the mint did not use.

        Returns:
            Transactions to submit in order, the mint last
        """
        owner = Web3.to_checksum_address(owner)
        token0, token1 = self.client.pool_tokens()
        tick_lower, tick_upper = UniswapV3Utils.bin_range_to_ticks(
            bin_range[0], bin_range[1], self.client.tick_spacing
        )
        amount0, amount1 = self._to_pool_order(x_amount, y_amount)

        sqrt_price_x96, _ = self.client.pool_state()
        liquidity = UniswapV3Utils.liquidity_for_amounts(amount0, amount1, sqrt_price_x96, tick_lower, tick_upper)
        expected0, expected1 = UniswapV3Utils.amounts_for_liquidity(liquidity, sqrt_price_x96, tick_lower, tick_upper)

        logger.info(f"Adding liquidity: {amount0} token0, {amount1} token1")
        logger.info(f"Tick range: {tick_lower} to {tick_upper} (liquidity {liquidity})")

        transactions = []
        if x_amount > 0 and self.client.allowance(self.client.token_x, owner, self.manager_address) < x_amount:
            transactions.append(self.client.build_approval(self.client.token_x, self.manager_address, x_amount))

        mint_params = {
            'token0': token0,
            'token1': token1,
            'fee': self.client.fee,
            'tickLower': tick_lower,
            'tickUpper': tick_upper,
            'amount0Desired': amount0,
            'amount1Desired': amount1,
            'amount0Min': self._apply_slippage(expected0, slippage_bps),
            'amount1Min': self._apply_slippage(expected1, slippage_bps),
            'recipient': owner,
            'deadline': self._deadline()
        }
        mint_calls = [
            self._call_data('mint', mint_params),
            self._call_data('refundETH'),
        ]
        transactions.append(self._manager_tx(
            f"Mint position {new_position_key}",
            self._call_data('multicall', mint_calls),
            value=y_amount
        ))
        return transactions

    def opened_position_key(self, new_position_key: str, ref: TransactionRef) -> str:
        """NFT id of the minted position, read from the mint receipt"""
        if ref.receipt is None:
            return new_position_key

        manager = self.manager_address.lower()
        for log in ref.receipt.get('logs', []):
            if str(log.get('address', '')).lower() != manager:
                continue
            for event in (self.position_manager.events.IncreaseLiquidity(),
                          self.position_manager.events.Transfer()):
                try:
                    decoded = event.process_log(log)
                except (MismatchedABI, LogTopicError):
                    continue
                return str(decoded['args']['tokenId'])

        logger.warning(f"No position id found in receipt {ref.reference}")
        return new_position_key
