"""
LI.FI swap client for RangeGuard LP.
Finds same-chain swap routes through the LI.FI API and executes them with
the wallet's transaction submitter.
"""
import logging
from typing import Any, Dict, List, Optional

import requests

from collaborators import SwapService, TransactionSubmitter
from domain import ExecutedRoute, PendingTransaction, Route
from errors import QueryError, SwapError

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT_SECONDS = 30


def _to_int(value: Any) -> int:
    """Parse LI.FI numeric fields, which arrive as decimal or 0x-hex strings"""
    if value is None:
        return 0
    if isinstance(value, int):
        return value
    value = str(value)
    return int(value, 16) if value.startswith('0x') else int(value)


class LiFiSwapService(SwapService):
    """SwapService backed by the LI.FI routing API"""

    def __init__(self, config, client, submitter: Optional[TransactionSubmitter] = None):
        """
        Initialize the LI.FI client

        Args:
            config: Configuration object
            client: UniswapV3Client, used for allowance checks and approvals
            submitter: Transaction submitter, defaults to client
        """
        self.config = config
        self.client = client
        self.submitter = submitter or client
        self.api_url = config.LIFI_API_URL.rstrip('/')
        self.chain_id = config.CHAIN_ID
        self.native_address = config.NATIVE_TOKEN_ADDRESS

    def _headers(self) -> Dict[str, str]:
        headers = {'Content-Type': 'application/json'}
        if self.config.LIFI_API_KEY:
            headers['x-lifi-api-key'] = self.config.LIFI_API_KEY
        return headers

    def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = requests.post(
                f"{self.api_url}{path}",
                json=payload,
                headers=self._headers(),
                timeout=REQUEST_TIMEOUT_SECONDS
            )
        except requests.RequestException as e:
            logger.error(f"LI.FI request {path} failed: {e}")
            raise QueryError(f"LI.FI request {path} failed: {e}") from e

        if response.status_code != 200:
            logger.error(f"LI.FI request {path} failed: {response.status_code} - {response.text}")
            raise QueryError(f"LI.FI request {path} failed with status {response.status_code}")
        return response.json()

    @staticmethod
    def parse_route(route: Dict[str, Any]) -> Route:
        """Convert a LI.FI route object to a Route"""
        from_token = route.get('fromToken') or {}
        to_token = route.get('toToken') or {}
        return Route(
            from_asset=from_token.get('address', ''),
            to_asset=to_token.get('address', ''),
            from_amount=_to_int(route.get('fromAmount')),
            to_amount=_to_int(route.get('toAmount')),
            from_symbol=from_token.get('symbol', ''),
            to_symbol=to_token.get('symbol', ''),
            raw=route,
        )

    def find_routes(self, from_asset: str, to_asset: str, amount: int,
                    from_address: str, slippage_bps: int) -> List[Route]:
        """
        Request same-chain routes, cheapest first

        Args:
            from_asset: Token address to sell (zero address for native)
            to_asset: Token address to buy
            amount: Raw amount to sell
            from_address: Wallet address
            slippage_bps: Maximum slippage in basis points

        Returns:
            List of routes, empty if LI.FI found none
        """
        payload = {
            'fromChainId': self.chain_id,
            'toChainId': self.chain_id,
            'fromTokenAddress': from_asset,
            'toTokenAddress': to_asset,
            'fromAmount': str(amount),
            'fromAddress': from_address,
            'options': {
                'slippage': slippage_bps / 10_000,
                'order': 'CHEAPEST',
                'allowSwitchChain': False,
                'integrator': self.config.LIFI_INTEGRATOR,
            }
        }
        logger.info(f"Requesting LI.FI routes: {amount} {from_asset} -> {to_asset}")

        data = self._post('/advanced/routes', payload)
        routes = [self.parse_route(route) for route in data.get('routes', [])]

        logger.info(f"LI.FI returned {len(routes)} routes")
        return routes

    def _ensure_allowance(self, step: Dict[str, Any]):
        action = step.get('action') or {}
        estimate = step.get('estimate') or {}
        token = (action.get('fromToken') or {}).get('address', '')
        spender = estimate.get('approvalAddress')
        amount = _to_int(action.get('fromAmount'))

        if not spender or not token or token.lower() == self.native_address.lower():
            return

        owner = self.client.wallet_address
        if self.client.allowance(token, owner, spender) >= amount:
            return

        logger.info(f"Approving {amount} of {token} for {spender}")
        self.submitter.submit_and_confirm(
            self.client.build_approval(token, spender, amount),
            self.config.TRANSACTION_TIMEOUT_SECONDS
        )

    def _step_transaction(self, step: Dict[str, Any]) -> PendingTransaction:
        populated = self._post('/advanced/stepTransaction', step)
        request = populated.get('transactionRequest')
        if not request:
            raise SwapError(f"LI.FI returned no transaction for step {step.get('id', '?')}")

        tx = {
            'to': request['to'],
            'data': request['data'],
            'value': _to_int(request.get('value')),
        }
        if request.get('gasLimit'):
            tx['gas'] = _to_int(request['gasLimit'])
        if request.get('gasPrice'):
            tx['gasPrice'] = _to_int(request['gasPrice'])

        tool = step.get('toolDetails', {}).get('name') or step.get('tool', 'LI.FI')
        return PendingTransaction(description=f"Swap via {tool}", tx=tx)

    def _received_amount(self, tx_hash: str) -> Optional[int]:
        try:
            response = requests.get(
                f"{self.api_url}/status",
                params={'txHash': tx_hash, 'fromChain': self.chain_id, 'toChain': self.chain_id},
                headers=self._headers(),
                timeout=REQUEST_TIMEOUT_SECONDS
            )
        except requests.RequestException as e:
            logger.warning(f"LI.FI status lookup failed: {e}")
            return None

        if response.status_code != 200:
            logger.warning(f"LI.FI status lookup failed: {response.status_code}")
            return None

        amount = (response.json().get('receiving') or {}).get('amount')
        return _to_int(amount) if amount is not None else None

    def max_transactions(self, route: Route) -> int:
        # Each step may need an approval before its own transaction
        return 2 * max(len(route.raw.get('steps') or []), 1)

    def execute(self, route: Route) -> ExecutedRoute:
        """
        Execute every step of a route in order

        Returns:
            Realized input and output amounts and the last transaction hash

        Raises:
            SwapError: if the route has no steps or a step cannot be built
            TransactionError: if a step transaction fails
        """
        steps = route.raw.get('steps') or []
        if not steps:
            raise SwapError("Route has no executable steps")

        reference = None
        realized_output = route.to_amount
        for step in steps:
            self._ensure_allowance(step)
            ref = self.submitter.submit_and_confirm(
                self._step_transaction(step),
                self.config.TRANSACTION_TIMEOUT_SECONDS
            )
            reference = ref.reference

            received = self._received_amount(reference)
            if received is None:
                received = _to_int((step.get('estimate') or {}).get('toAmount'))
            realized_output = received

        logger.info(f"Swap executed: {route.from_amount} {route.from_symbol} -> "
                    f"{realized_output} {route.to_symbol} ({reference})")
        return ExecutedRoute(
            realized_input=route.from_amount,
            realized_output=realized_output,
            reference=reference,
        )
