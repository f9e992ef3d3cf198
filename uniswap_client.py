"""
Uniswap V3 client for RangeGuard LP.
Handles pool queries, position enumeration, balances and signed transactions.
"""
import logging
from fractions import Fraction
from typing import Any, Dict, List, Optional, Tuple

from eth_account import Account
from web3 import Web3
from web3.exceptions import TimeExhausted

from collaborators import BalanceSource, PositionSource, TransactionSubmitter
from config import Config
from domain import PendingTransaction, Position, TransactionRef
from errors import QueryError, TransactionError
from utils import Logger, UniswapV3Utils

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


class UniswapV3Client(PositionSource, BalanceSource, TransactionSubmitter):
    """Client for one Uniswap V3 pool and one wallet"""

    def __init__(self, config: Config = None, w3: Web3 = None, read_only: bool = False):
        """
        Initialize the Uniswap V3 client

        Args:
            config: Configuration object
            w3: Pre-built Web3 instance, built from ETHEREUM_RPC_URL if None
            read_only: Skip loading the signing account
        """
        self.config = config or Config()

        # Initialize Web3 connection
        if w3 is None:
            w3 = Web3(Web3.HTTPProvider(self.config.ETHEREUM_RPC_URL))
            if not w3.is_connected():
                raise ConnectionError("Failed to connect to Ethereum network")
        self.w3 = w3

        # Initialize account only if not in read-only mode
        if not read_only and self.config.PRIVATE_KEY:
            self.account = Account.from_key(self.config.PRIVATE_KEY)
            self.wallet_address = self.account.address
        else:
            self.account = None
            self.wallet_address = None

        self.chain_info = self.config.get_chain_info()
        logger.info(f"Connected to {self.chain_info['chain_name']} (Chain ID: {self.chain_info['chain_id']})")
        if self.wallet_address:
            logger.info(f"Wallet: {self.wallet_address}")

        self.token_x = Web3.to_checksum_address(self.config.TOKEN_X_ADDRESS)
        self.token_y = Web3.to_checksum_address(self.config.TOKEN_Y_ADDRESS)
        self.fee = self.config.FEE_TIER
        self.tick_spacing = UniswapV3Utils.calculate_tick_spacing(self.fee)

        # Y is the wrapped native token; any of these identifiers means "native balance"
        self._native_aliases = {
            address.lower() for address in (
                self.config.TOKEN_Y_ADDRESS,
                self.config.WETH_ADDRESS,
                self.config.NATIVE_TOKEN_ADDRESS,
            ) if address
        }

        self.token_decimals_cache: Dict[str, int] = {}
        self._pool_address: Optional[str] = None
        self._pool_tokens: Optional[Tuple[str, str]] = None

        self.position_manager_abi = self._get_position_manager_abi()
        self.factory_abi = self._get_factory_abi()
        self.pool_abi = self._get_pool_abi()
        self.erc20_abi = self._get_erc20_abi()

        self.position_manager = self.w3.eth.contract(
            address=Web3.to_checksum_address(self.config.UNISWAP_V3_POSITION_MANAGER),
            abi=self.position_manager_abi
        )
        self.factory = self.w3.eth.contract(
            address=Web3.to_checksum_address(self.config.UNISWAP_V3_FACTORY),
            abi=self.factory_abi
        )

    def _get_position_manager_abi(self) -> list:
        """NonfungiblePositionManager ABI (functions and events used by the monitor)"""
        mint_params = [
            {"internalType": "address", "name": "token0", "type": "address"},
            {"internalType": "address", "name": "token1", "type": "address"},
            {"internalType": "uint24", "name": "fee", "type": "uint24"},
            {"internalType": "int24", "name": "tickLower", "type": "int24"},
            {"internalType": "int24", "name": "tickUpper", "type": "int24"},
            {"internalType": "uint256", "name": "amount0Desired", "type": "uint256"},
            {"internalType": "uint256", "name": "amount1Desired", "type": "uint256"},
            {"internalType": "uint256", "name": "amount0Min", "type": "uint256"},
            {"internalType": "uint256", "name": "amount1Min", "type": "uint256"},
            {"internalType": "address", "name": "recipient", "type": "address"},
            {"internalType": "uint256", "name": "deadline", "type": "uint256"}
        ]
        decrease_params = [
            {"internalType": "uint256", "name": "tokenId", "type": "uint256"},
            {"internalType": "uint128", "name": "liquidity", "type": "uint128"},
            {"internalType": "uint256", "name": "amount0Min", "type": "uint256"},
            {"internalType": "uint256", "name": "amount1Min", "type": "uint256"},
            {"internalType": "uint256", "name": "deadline", "type": "uint256"}
        ]
        collect_params = [
            {"internalType": "uint256", "name": "tokenId", "type": "uint256"},
            {"internalType": "address", "name": "recipient", "type": "address"},
            {"internalType": "uint128", "name": "amount0Max", "type": "uint128"},
            {"internalType": "uint128", "name": "amount1Max", "type": "uint128"}
        ]
        return [
            {
                "inputs": [{"components": mint_params, "internalType": "struct INonfungiblePositionManager.MintParams",
                            "name": "params", "type": "tuple"}],
                "name": "mint",
                "outputs": [
                    {"internalType": "uint256", "name": "tokenId", "type": "uint256"},
                    {"internalType": "uint128", "name": "liquidity", "type": "uint128"},
                    {"internalType": "uint256", "name": "amount0", "type": "uint256"},
                    {"internalType": "uint256", "name": "amount1", "type": "uint256"}
                ],
                "stateMutability": "payable",
                "type": "function"
            },
            {
                "inputs": [{"components": decrease_params,
                            "internalType": "struct INonfungiblePositionManager.DecreaseLiquidityParams",
                            "name": "params", "type": "tuple"}],
                "name": "decreaseLiquidity",
                "outputs": [
                    {"internalType": "uint256", "name": "amount0", "type": "uint256"},
                    {"internalType": "uint256", "name": "amount1", "type": "uint256"}
                ],
                "stateMutability": "payable",
                "type": "function"
            },
            {
                "inputs": [{"components": collect_params,
                            "internalType": "struct INonfungiblePositionManager.CollectParams",
                            "name": "params", "type": "tuple"}],
                "name": "collect",
                "outputs": [
                    {"internalType": "uint256", "name": "amount0", "type": "uint256"},
                    {"internalType": "uint256", "name": "amount1", "type": "uint256"}
                ],
                "stateMutability": "payable",
                "type": "function"
            },
            {
                "inputs": [{"internalType": "uint256", "name": "tokenId", "type": "uint256"}],
                "name": "burn",
                "outputs": [],
                "stateMutability": "payable",
                "type": "function"
            },
            {
                "inputs": [{"internalType": "bytes[]", "name": "data", "type": "bytes[]"}],
                "name": "multicall",
                "outputs": [{"internalType": "bytes[]", "name": "results", "type": "bytes[]"}],
                "stateMutability": "payable",
                "type": "function"
            },
            {
                "inputs": [
                    {"internalType": "uint256", "name": "amountMinimum", "type": "uint256"},
                    {"internalType": "address", "name": "recipient", "type": "address"}
                ],
                "name": "unwrapWETH9",
                "outputs": [],
                "stateMutability": "payable",
                "type": "function"
            },
            {
                "inputs": [
                    {"internalType": "address", "name": "token", "type": "address"},
                    {"internalType": "uint256", "name": "amountMinimum", "type": "uint256"},
                    {"internalType": "address", "name": "recipient", "type": "address"}
                ],
                "name": "sweepToken",
                "outputs": [],
                "stateMutability": "payable",
                "type": "function"
            },
            {
                "inputs": [],
                "name": "refundETH",
                "outputs": [],
                "stateMutability": "payable",
                "type": "function"
            },
            {
                "inputs": [{"internalType": "uint256", "name": "tokenId", "type": "uint256"}],
                "name": "positions",
                "outputs": [
                    {"internalType": "uint96", "name": "nonce", "type": "uint96"},
                    {"internalType": "address", "name": "operator", "type": "address"},
                    {"internalType": "address", "name": "token0", "type": "address"},
                    {"internalType": "address", "name": "token1", "type": "address"},
                    {"internalType": "uint24", "name": "fee", "type": "uint24"},
                    {"internalType": "int24", "name": "tickLower", "type": "int24"},
                    {"internalType": "int24", "name": "tickUpper", "type": "int24"},
                    {"internalType": "uint128", "name": "liquidity", "type": "uint128"},
                    {"internalType": "uint256", "name": "feeGrowthInside0LastX128", "type": "uint256"},
                    {"internalType": "uint256", "name": "feeGrowthInside1LastX128", "type": "uint256"},
                    {"internalType": "uint128", "name": "tokensOwed0", "type": "uint128"},
                    {"internalType": "uint128", "name": "tokensOwed1", "type": "uint128"}
                ],
                "stateMutability": "view",
                "type": "function"
            },
            {
                "inputs": [{"internalType": "address", "name": "owner", "type": "address"}],
                "name": "balanceOf",
                "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
                "stateMutability": "view",
                "type": "function"
            },
            {
                "inputs": [
                    {"internalType": "address", "name": "owner", "type": "address"},
                    {"internalType": "uint256", "name": "index", "type": "uint256"}
                ],
                "name": "tokenOfOwnerByIndex",
                "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
                "stateMutability": "view",
                "type": "function"
            },
            {
                "anonymous": False,
                "inputs": [
                    {"indexed": True, "internalType": "uint256", "name": "tokenId", "type": "uint256"},
                    {"indexed": False, "internalType": "uint128", "name": "liquidity", "type": "uint128"},
                    {"indexed": False, "internalType": "uint256", "name": "amount0", "type": "uint256"},
                    {"indexed": False, "internalType": "uint256", "name": "amount1", "type": "uint256"}
                ],
                "name": "IncreaseLiquidity",
                "type": "event"
            },
            {
                "anonymous": False,
                "inputs": [
                    {"indexed": True, "internalType": "address", "name": "from", "type": "address"},
                    {"indexed": True, "internalType": "address", "name": "to", "type": "address"},
                    {"indexed": True, "internalType": "uint256", "name": "tokenId", "type": "uint256"}
                ],
                "name": "Transfer",
                "type": "event"
            }
        ]

    def _get_factory_abi(self) -> list:
        """Get Factory ABI"""
        return [
            {
                "inputs": [
                    {"internalType": "address", "name": "tokenA", "type": "address"},
                    {"internalType": "address", "name": "tokenB", "type": "address"},
                    {"internalType": "uint24", "name": "fee", "type": "uint24"}
                ],
                "name": "getPool",
                "outputs": [
                    {"internalType": "address", "name": "pool", "type": "address"}
                ],
                "stateMutability": "view",
                "type": "function"
            }
        ]

    def _get_pool_abi(self) -> list:
        """Get Pool ABI"""
        return [
            {
                "inputs": [],
                "name": "slot0",
                "outputs": [
                    {"internalType": "uint160", "name": "sqrtPriceX96", "type": "uint160"},
                    {"internalType": "int24", "name": "tick", "type": "int24"},
                    {"internalType": "uint16", "name": "observationIndex", "type": "uint16"},
                    {"internalType": "uint16", "name": "observationCardinality", "type": "uint16"},
                    {"internalType": "uint16", "name": "observationCardinalityNext", "type": "uint16"},
                    {"internalType": "uint8", "name": "feeProtocol", "type": "uint8"},
                    {"internalType": "bool", "name": "unlocked", "type": "bool"}
                ],
                "stateMutability": "view",
                "type": "function"
            },
            {
                "inputs": [],
                "name": "token0",
                "outputs": [{"internalType": "address", "name": "", "type": "address"}],
                "stateMutability": "view",
                "type": "function"
            },
            {
                "inputs": [],
                "name": "token1",
                "outputs": [{"internalType": "address", "name": "", "type": "address"}],
                "stateMutability": "view",
                "type": "function"
            }
        ]

    def _get_erc20_abi(self) -> list:
        """Get ERC20 ABI for token interactions"""
        return [
            {
                "inputs": [],
                "name": "decimals",
                "outputs": [{"internalType": "uint8", "name": "", "type": "uint8"}],
                "stateMutability": "view",
                "type": "function"
            },
            {
                "inputs": [],
                "name": "symbol",
                "outputs": [{"internalType": "string", "name": "", "type": "string"}],
                "stateMutability": "view",
                "type": "function"
            },
            {
                "inputs": [{"internalType": "address", "name": "account", "type": "address"}],
                "name": "balanceOf",
                "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
                "stateMutability": "view",
                "type": "function"
            },
            {
                "inputs": [
                    {"internalType": "address", "name": "owner", "type": "address"},
                    {"internalType": "address", "name": "spender", "type": "address"}
                ],
                "name": "allowance",
                "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
                "stateMutability": "view",
                "type": "function"
            },
            {
                "inputs": [
                    {"internalType": "address", "name": "spender", "type": "address"},
                    {"internalType": "uint256", "name": "amount", "type": "uint256"}
                ],
                "name": "approve",
                "outputs": [{"internalType": "bool", "name": "", "type": "bool"}],
                "stateMutability": "nonpayable",
                "type": "function"
            }
        ]

    def erc20(self, token_address: str):
        return self.w3.eth.contract(address=Web3.to_checksum_address(token_address), abi=self.erc20_abi)

    def is_native(self, asset: str) -> bool:
        return asset.lower() in self._native_aliases

    # ------------------------------------------------------------------
    # Pool queries
    # ------------------------------------------------------------------

    def get_pool_address(self) -> str:
        """Pool address for the configured pair and fee tier (cached)"""
        if self._pool_address is None:
            pool_address = self.factory.functions.getPool(self.token_x, self.token_y, self.fee).call()
            if pool_address == ZERO_ADDRESS:
                raise QueryError(f"No pool found for tokens {self.token_x}/{self.token_y} with fee {self.fee}")
            self._pool_address = pool_address
            logger.info(f"Monitoring pool {pool_address}")
        return self._pool_address

    def pool(self):
        return self.w3.eth.contract(address=self.get_pool_address(), abi=self.pool_abi)

    def pool_tokens(self) -> Tuple[str, str]:
        """(token0, token1) of the pool, in the pool's own ordering"""
        if self._pool_tokens is None:
            pool = self.pool()
            self._pool_tokens = (pool.functions.token0().call(), pool.functions.token1().call())
        return self._pool_tokens

    def x_is_token0(self) -> bool:
        return self.pool_tokens()[0].lower() == self.token_x.lower()

    def pool_state(self) -> Tuple[int, int]:
        """Current (sqrtPriceX96, tick) from slot0"""
        slot0 = self.pool().functions.slot0().call()
        return slot0[0], slot0[1]

    def active_index(self) -> int:
        _, tick = self.pool_state()
        return UniswapV3Utils.tick_to_bin(tick, self.tick_spacing)

    def reference_price(self) -> Fraction:
        """Raw units of X per raw unit of Y, as an exact ratio"""
        sqrt_price_x96, _ = self.pool_state()
        if sqrt_price_x96 <= 0:
            return Fraction(0)
        token1_per_token0 = UniswapV3Utils.sqrt_price_x96_to_ratio(sqrt_price_x96)
        # If X is token0, Y is token1 and one unit of Y is worth 1/p units of X
        return 1 / token1_per_token0 if self.x_is_token0() else token1_per_token0

    def latest_timestamp(self) -> int:
        return int(self.w3.eth.get_block('latest')['timestamp'])

    # ------------------------------------------------------------------
    # Positions
    # ------------------------------------------------------------------

    def get_owned_token_ids(self, owner: str) -> List[int]:
        """NFT position ids held by owner"""
        owner = Web3.to_checksum_address(owner)
        balance = self.position_manager.functions.balanceOf(owner).call()
        return [
            self.position_manager.functions.tokenOfOwnerByIndex(owner, i).call()
            for i in range(balance)
        ]

    def get_position_info(self, token_id: int) -> Dict[str, Any]:
        """Get information about a specific position"""
        position = self.position_manager.functions.positions(token_id).call()
        return {
            'token_id': token_id,
            'token0': position[2],
            'token1': position[3],
            'fee': position[4],
            'tick_lower': position[5],
            'tick_upper': position[6],
            'liquidity': position[7],
            'tokens_owed0': position[10],
            'tokens_owed1': position[11]
        }

    def list_positions(self, owner: str) -> List[Position]:
        """Open positions of owner in the monitored pool"""
        token0, token1 = self.pool_tokens()
        sqrt_price_x96, _ = self.pool_state()
        x_is_token0 = self.x_is_token0()

        positions = []
        for token_id in self.get_owned_token_ids(owner):
            info = self.get_position_info(token_id)

            if (info['token0'].lower() != token0.lower() or info['token1'].lower() != token1.lower()
                    or info['fee'] != self.fee):
                continue
            if info['liquidity'] == 0:
                continue

            amount0, amount1 = UniswapV3Utils.amounts_for_liquidity(
                info['liquidity'], sqrt_price_x96, info['tick_lower'], info['tick_upper']
            )
            lower_bin, upper_bin = UniswapV3Utils.ticks_to_bin_range(
                info['tick_lower'], info['tick_upper'], self.tick_spacing
            )
            positions.append(Position(
                key=str(token_id),
                lower_bin=lower_bin,
                upper_bin=upper_bin,
                x_amount=amount0 if x_is_token0 else amount1,
                y_amount=amount1 if x_is_token0 else amount0,
                liquidity=info['liquidity'],
            ))

        logger.debug(f"Found {len(positions)} open positions in pool")
        return positions

    # ------------------------------------------------------------------
    # Balances
    # ------------------------------------------------------------------

    def balance(self, owner: str, asset: str) -> int:
        """Raw balance; the wrapped native token is read as the native balance"""
        owner = Web3.to_checksum_address(owner)
        if self.is_native(asset):
            return self.w3.eth.get_balance(owner)
        return self.erc20(asset).functions.balanceOf(owner).call()

    def decimals(self, asset: str) -> int:
        if asset.lower() == self.config.NATIVE_TOKEN_ADDRESS.lower():
            return 18

        if asset not in self.token_decimals_cache:
            self.token_decimals_cache[asset] = self.erc20(asset).functions.decimals().call()
            logger.debug(f"Fetched decimals for token {asset}: {self.token_decimals_cache[asset]}")
        return self.token_decimals_cache[asset]

    def allowance(self, token_address: str, owner: str, spender: str) -> int:
        return self.erc20(token_address).functions.allowance(
            Web3.to_checksum_address(owner), Web3.to_checksum_address(spender)
        ).call()

    def build_approval(self, token_address: str, spender: str, amount: int) -> PendingTransaction:
        data = self.erc20(token_address).encode_abi("approve", args=[Web3.to_checksum_address(spender), amount])
        return PendingTransaction(
            description=f"Approve {token_address}",
            tx={'to': Web3.to_checksum_address(token_address), 'data': data, 'value': 0}
        )

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def get_gas_price(self) -> int:
        """Get current gas price dynamically from the network"""
        gas_price = self.w3.eth.gas_price
        try:
            # Use base fee + priority fee on EIP-1559 chains
            base_fee = self.w3.eth.get_block('latest')['baseFeePerGas']
            gas_price = base_fee + self.w3.eth.max_priority_fee
        except (KeyError, ValueError) as e:
            logger.debug(f"EIP-1559 fee data unavailable, using legacy gas price: {e}")

        logger.debug(f"Dynamic gas price: {gas_price} wei ({self.w3.from_wei(gas_price, 'gwei')} gwei)")
        return gas_price

    def estimate_gas(self, transaction: Dict[str, Any]) -> int:
        """Estimate gas for a transaction"""
        try:
            gas_estimate = self.w3.eth.estimate_gas(transaction)
            return min(gas_estimate, self.config.MAX_GAS_LIMIT)
        except Exception as e:
            logger.error(f"Error estimating gas: {e}")
            return self.config.MAX_GAS_LIMIT

    def submit_and_confirm(self, transaction: PendingTransaction,
                           timeout: Optional[float] = None) -> TransactionRef:
        """
        Sign, send and wait for a transaction receipt

        Args:
            transaction: Unsigned transaction (to/data/value at minimum)
            timeout: Seconds to wait for the receipt

        Returns:
            TransactionRef with the hash and receipt

        Raises:
            TransactionError: if sending fails, the receipt times out or the transaction reverts
        """
        if self.account is None:
            raise TransactionError("No signing account configured")

        tx = dict(transaction.tx)
        tx['from'] = self.wallet_address
        tx.setdefault('value', 0)
        tx['chainId'] = self.config.CHAIN_ID
        tx['nonce'] = self.w3.eth.get_transaction_count(self.wallet_address, 'pending')
        if 'gas' not in tx:
            tx['gas'] = self.estimate_gas(tx)
        if 'gasPrice' not in tx and 'maxFeePerGas' not in tx:
            tx['gasPrice'] = self.get_gas_price()

        try:
            signed_txn = self.account.sign_transaction(tx)
            tx_hash = self.w3.eth.send_raw_transaction(signed_txn.raw_transaction)
        except Exception as e:
            logger.error(f"Error sending {transaction.description}: {e}")
            raise TransactionError(f"{transaction.description} could not be sent: {e}") from e

        reference = tx_hash.to_0x_hex()
        logger.info(f"{transaction.description} sent: {reference}")

        try:
            receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout or 120)
        except TimeExhausted as e:
            Logger.log_transaction(reference, transaction.description, False)
            raise TransactionError(f"{transaction.description} not confirmed in time", reference) from e

        if receipt['status'] != 1:
            Logger.log_transaction(reference, transaction.description, False)
            raise TransactionError(f"{transaction.description} reverted", reference)

        Logger.log_transaction(reference, transaction.description, True)
        return TransactionRef(reference=reference, receipt=receipt)
