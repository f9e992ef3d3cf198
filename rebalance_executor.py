"""
Rebalance executor for RangeGuard LP.
Runs withdraw -> swap -> settle -> redeposit for one position, with a
single-slot lock so at most one rebalance is in flight.
"""
import asyncio
import logging
from typing import Dict, Optional, Tuple

from balance_inspector import BalanceInspector
from collaborators import LiquidityManager, Notifier, SwapService, TransactionSubmitter
from domain import (
    Asset,
    Balances,
    ExecutedRoute,
    PendingTransaction,
    Position,
    RebalanceOutcome,
    RebalancePlan,
    RebalanceResult,
    RebalanceStage,
    Route,
    TransactionRef,
)
from errors import QueryError, RebalanceError, RouteNotFoundError, SwapError, TransactionError
from position_reader import PositionSnapshotReader
from rebalance_planner import RebalancePlanner
from utils import call_with_timeout, format_token_amount, to_raw_amount

logger = logging.getLogger(__name__)

FULL_WITHDRAW_BPS = 10_000


class RebalanceExecutor:
    """Sequences a full rebalance of one position"""

    def __init__(self, config, notifier: Notifier, reader: PositionSnapshotReader,
                 balances: BalanceInspector, planner: RebalancePlanner,
                 swap_service: SwapService, liquidity: LiquidityManager,
                 submitter: TransactionSubmitter, owner: str):
        """
        Initialize the executor

        Args:
            config: Configuration object
            notifier: Operator notification channel
            reader: Position/price reader
            balances: Wallet balance inspector
            planner: Swap planner
            swap_service: Route discovery and execution
            liquidity: Withdraw/deposit transaction builder
            submitter: Transaction signer and sender
            owner: Wallet address
        """
        self.config = config
        self.notifier = notifier
        self.reader = reader
        self.balances = balances
        self.planner = planner
        self.swap_service = swap_service
        self.liquidity = liquidity
        self.submitter = submitter
        self.owner = owner

        self.swap_assets: Dict[Asset, str] = {
            Asset.X: config.TOKEN_X_ADDRESS,
            Asset.Y: config.NATIVE_TOKEN_ADDRESS,
        }
        self.call_timeout = config.EXTERNAL_CALL_TIMEOUT_SECONDS
        self.tx_timeout = config.TRANSACTION_TIMEOUT_SECONDS

        self._lock = asyncio.Lock()
        self._stage = RebalanceStage.IDLE

    @property
    def is_rebalancing(self) -> bool:
        return self._lock.locked()

    @property
    def stage(self) -> RebalanceStage:
        return self._stage

    async def rebalance_position(self, position: Position) -> RebalanceResult:
        """
        Rebalance a position into a new range around the current price.

        Returns a SKIPPED result without waiting if another rebalance holds
        the lock. Any failure is reported to the operator once and then
        raised as RebalanceError; the lock is released on every path.

        Args:
            position: The out-of-range position to rebalance

        Returns:
            RebalanceResult

        Raises:
            RebalanceError: if any stage fails
        """
        if self._lock.locked():
            logger.warning(f"Rebalance of {position.key} skipped, another rebalance is in progress")
            await self.notifier.send("⚠️ Rebalancing already in progress, skipping...")
            return RebalanceResult(outcome=RebalanceOutcome.SKIPPED)

        async with self._lock:
            try:
                return await self._run(position)
            except Exception as e:
                failed_stage = self._stage
                self._stage = RebalanceStage.FAILED
                logger.error(f"Rebalancing of {position.key} failed during {failed_stage.value}: {e}")
                await self.notifier.send(f"❌ Rebalancing failed during {failed_stage.value}: {e}")
                raise RebalanceError(failed_stage.value, e) from e
            finally:
                self._stage = RebalanceStage.IDLE

    async def _run(self, position: Position) -> RebalanceResult:
        logger.info(f"Starting rebalance of position {position.key}")
        await self.notifier.send("🔄 Starting position rebalancing process...")

        self._stage = RebalanceStage.WITHDRAWING
        withdraw_failures = await self._withdraw(position)

        self._stage = RebalanceStage.PLANNING
        pre_swap = await self.balances.read_balances()
        price = await self.reader.reference_price()
        plan = self.planner.plan(pre_swap.x_amount, pre_swap.y_amount, price)

        swap = None
        if plan is not None:
            logger.info(f"Plan: sell {plan.sell_amount} {plan.sell_asset.value} "
                        f"(X value {plan.x_value}, Y value {plan.y_value})")
            self._stage = RebalanceStage.SWAPPING
            swap = await self._swap(plan, pre_swap)
        else:
            logger.info("Holdings already balanced within threshold, no swap needed")

        self._stage = RebalanceStage.SETTLING
        await self._settle(plan, pre_swap)

        self._stage = RebalanceStage.DEPOSITING
        new_key, new_range, deposit_ref = await self._deposit()

        await self.notifier.send("✅ Position rebalancing completed successfully!")
        logger.info(f"Rebalance of {position.key} completed, new position {new_key}")

        return RebalanceResult(
            outcome=RebalanceOutcome.COMPLETED,
            plan=plan,
            swap=swap,
            new_position_key=new_key,
            new_range=new_range,
            deposit_reference=deposit_ref.reference,
            withdraw_failures=withdraw_failures,
        )

    async def _call(self, func, *args, description: str, timeout: Optional[float] = None):
        return await call_with_timeout(
            func, *args,
            timeout=timeout if timeout is not None else self.call_timeout,
            description=description
        )

    def swap_timeout(self, route: Route) -> float:
        """Bound for executing a route: one confirmation window per transaction it may submit"""
        return self.swap_service.max_transactions(route) * (self.tx_timeout + self.call_timeout)

    async def _submit(self, transaction: PendingTransaction) -> TransactionRef:
        return await self._call(
            self.submitter.submit_and_confirm, transaction, self.tx_timeout,
            description=transaction.description,
            timeout=self.tx_timeout + self.call_timeout
        )

    async def _withdraw(self, position: Position) -> int:
        """
        Remove all liquidity, claim fees and close the position.

        Building the transactions may raise and abort the rebalance. Each
        transaction is then submitted on its own: a failed submission is
        reported and the remaining ones are still attempted.

        Returns:
            Number of failed submissions
        """
        transactions = await self._call(
            self.liquidity.build_withdrawal, position, position.bin_range, FULL_WITHDRAW_BPS, True,
            description="Withdrawal build"
        )

        failures = 0
        for transaction in transactions:
            try:
                ref = await self._submit(transaction)
            except Exception as e:
                failures += 1
                logger.error(f"Error removing liquidity ({transaction.description}): {e}")
                await self.notifier.send(
                    f"❌ Failed to remove liquidity from position {position.key}\n"
                    f"Error: {e}"
                )
                continue

            await self.notifier.send(
                f"🔄 Removed liquidity from position {position.key}\n"
                f"Transaction: {ref.reference}"
            )

        return failures

    def _decimals(self, asset: Asset, balances: Balances) -> int:
        return balances.x_decimals if asset is Asset.X else balances.y_decimals

    async def _swap(self, plan: RebalancePlan, balances: Balances) -> ExecutedRoute:
        from_asset = self.swap_assets[plan.sell_asset]
        to_asset = self.swap_assets[plan.buy_asset]
        in_decimals = self._decimals(plan.sell_asset, balances)
        out_decimals = self._decimals(plan.buy_asset, balances)

        routes = await self._call(
            self.swap_service.find_routes, from_asset, to_asset, plan.sell_amount,
            self.owner, self.config.SWAP_SLIPPAGE_BPS,
            description="Route query"
        )
        if not routes:
            raise RouteNotFoundError("No routes found for the swap")

        best_route = routes[0]
        await self.notifier.send(
            f"🔄 Executing swap:\n"
            f"From: {best_route.from_symbol}\n"
            f"To: {best_route.to_symbol}\n"
            f"Amount: {format_token_amount(best_route.from_amount, in_decimals)}\n"
            f"Expected output: {format_token_amount(best_route.to_amount, out_decimals)}"
        )

        try:
            executed = await self._call(
                self.swap_service.execute, best_route,
                description="Swap execution",
                timeout=self.swap_timeout(best_route)
            )
        except (TransactionError, SwapError, QueryError):
            raise
        except Exception as e:
            raise SwapError(str(e)) from e

        await self.notifier.send(
            f"✅ Swap completed!\n"
            f"Transaction: {executed.reference}\n"
            f"From: {format_token_amount(executed.realized_input, in_decimals)} {best_route.from_symbol}\n"
            f"To: {format_token_amount(executed.realized_output, out_decimals)} {best_route.to_symbol}"
        )
        return executed

    def _bought_amount(self, plan: RebalancePlan, balances: Balances) -> int:
        return balances.y_amount if plan.buy_asset is Asset.Y else balances.x_amount

    async def _settle(self, plan: Optional[RebalancePlan], pre_swap: Balances):
        """Wait for wallet balances to reflect the swap"""
        delay = self.config.SETTLEMENT_DELAY_SECONDS

        if self.config.SETTLEMENT_MODE != 'poll' or plan is None:
            logger.info(f"Waiting {delay:.0f}s for balances to update...")
            await asyncio.sleep(delay)
            return

        loop = asyncio.get_running_loop()
        deadline = loop.time() + delay
        before = self._bought_amount(plan, pre_swap)

        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                logger.warning("Settlement window elapsed before the swap output was visible")
                return
            await asyncio.sleep(min(self.config.SETTLEMENT_POLL_INTERVAL_SECONDS, remaining))
            try:
                current = await self.balances.read_balances()
            except QueryError as e:
                logger.warning(f"Balance poll during settlement failed: {e}")
                continue
            if self._bought_amount(plan, current) > before:
                logger.info("Swap output visible in wallet")
                return

    async def _deposit(self) -> Tuple[str, Tuple[int, int], TransactionRef]:
        balances = await self.balances.read_balances()

        # Keep some native balance back for future transaction fees
        reserved = to_raw_amount(self.config.NATIVE_FEE_RESERVE, balances.y_decimals)
        y_to_deposit = balances.y_amount - reserved if balances.y_amount > reserved else 0

        # Center on the index at deposit time, which may have moved since planning
        active_index = await self.reader.active_index()
        bin_range = self.planner.new_range(active_index)

        logger.info(f"Position creation details: X={balances.x_amount}, Y={y_to_deposit}, "
                    f"reserved={reserved}, range={bin_range}")

        new_key = self.liquidity.new_position_key()
        transactions = await self._call(
            self.liquidity.build_deposit, new_key, self.owner, balances.x_amount, y_to_deposit,
            bin_range, self.config.DEPOSIT_SLIPPAGE_BPS,
            description="Deposit build"
        )
        if not transactions:
            raise TransactionError("Deposit produced no transactions")

        ref = None
        for transaction in transactions:
            ref = await self._submit(transaction)

        position_key = self.liquidity.opened_position_key(new_key, ref)
        await self.notifier.send(
            f"✅ New position created!\n"
            f"Position: {position_key}\n"
            f"Transaction: {ref.reference}\n"
            f"Range: {bin_range[0]} - {bin_range[1]}\n"
            f"X Amount: {format_token_amount(balances.x_amount, balances.x_decimals)}\n"
            f"Y Amount: {format_token_amount(y_to_deposit, balances.y_decimals)}"
        )
        return position_key, bin_range, ref
