"""
Configuration management for RangeGuard LP.
Loads settings from environment variables.
"""
import logging
import os
from typing import Dict, Any
from dotenv import load_dotenv

# Load environment variables from .env if present
load_dotenv()

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ('1', 'true', 'yes', 'on')


class Config:
    """Configuration class for the position monitor"""

    # Network settings
    ETHEREUM_RPC_URL = os.getenv('ETHEREUM_RPC_URL', 'https://mainnet.infura.io/v3/YOUR_PROJECT_ID')

    # Private key handling - ONLY environment variable references allowed
    PRIVATE_KEY = os.getenv('PRIVATE_KEY')
    if PRIVATE_KEY:
        if not PRIVATE_KEY.startswith('${') or not PRIVATE_KEY.endswith('}'):
            raise ValueError("PRIVATE_KEY must reference an environment variable using ${VARIABLE_NAME} format. Never store private keys directly in files!")

        # Extract environment variable name and get its value
        env_var_name = PRIVATE_KEY[2:-1]
        PRIVATE_KEY = os.getenv(env_var_name)

        if not PRIVATE_KEY:
            raise ValueError(f"Environment variable '{env_var_name}' referenced in PRIVATE_KEY is not set")
    else:
        # PRIVATE_KEY not set - this is OK for testing/imports
        PRIVATE_KEY = None

    # Chain configuration
    CHAIN_ID = int(os.getenv('CHAIN_ID', '1'))
    CHAIN_NAME = os.getenv('CHAIN_NAME', 'Ethereum Mainnet')

    # Gas settings
    MAX_GAS_LIMIT = int(os.getenv('MAX_GAS_LIMIT', '500000'))

    # Pool assets. X is an ERC20, Y is the wrapped native token whose
    # balance is read from the native account balance.
    TOKEN_X_ADDRESS = os.getenv('TOKEN_X_ADDRESS')
    TOKEN_Y_ADDRESS = os.getenv('TOKEN_Y_ADDRESS')
    WETH_ADDRESS = os.getenv('WETH_ADDRESS')
    NATIVE_TOKEN_ADDRESS = os.getenv('NATIVE_TOKEN_ADDRESS', '0x0000000000000000000000000000000000000000')

    # Fee tier configuration (hundredths of a bip, Uniswap V3 convention)
    FEE_TIER = int(os.getenv('FEE_TIER', '500'))

    # Uniswap V3 contract addresses
    UNISWAP_V3_FACTORY = os.getenv('UNISWAP_V3_FACTORY')
    UNISWAP_V3_POSITION_MANAGER = os.getenv('UNISWAP_V3_POSITION_MANAGER')

    # Monitoring
    MONITORING_INTERVAL_SECONDS = int(os.getenv('MONITORING_INTERVAL_SECONDS', '180'))
    REBALANCE_ENABLED = _env_bool('REBALANCE_ENABLED', 'true')

    # Rebalance planning
    RANGE_HALF_WIDTH = int(os.getenv('RANGE_HALF_WIDTH', '5'))
    MIN_SWAP_THRESHOLD_BPS = int(os.getenv('MIN_SWAP_THRESHOLD_BPS', '100'))  # 1% of total value
    SWAP_SLIPPAGE_BPS = int(os.getenv('SWAP_SLIPPAGE_BPS', '50'))
    DEPOSIT_SLIPPAGE_BPS = int(os.getenv('DEPOSIT_SLIPPAGE_BPS', '50'))

    # Settlement after swap: 'fixed' sleeps the full delay, 'poll' stops
    # early once the bought asset shows up in the wallet
    SETTLEMENT_DELAY_SECONDS = float(os.getenv('SETTLEMENT_DELAY_SECONDS', '50'))
    SETTLEMENT_MODE = os.getenv('SETTLEMENT_MODE', 'fixed').strip().lower()
    SETTLEMENT_POLL_INTERVAL_SECONDS = float(os.getenv('SETTLEMENT_POLL_INTERVAL_SECONDS', '5'))

    # Native units kept back from deposits for future transaction fees
    NATIVE_FEE_RESERVE = float(os.getenv('NATIVE_FEE_RESERVE', '0.07'))

    # Bounds on external calls
    EXTERNAL_CALL_TIMEOUT_SECONDS = float(os.getenv('EXTERNAL_CALL_TIMEOUT_SECONDS', '60'))
    TRANSACTION_TIMEOUT_SECONDS = float(os.getenv('TRANSACTION_TIMEOUT_SECONDS', '180'))

    # Telegram alerting
    TELEGRAM_BOT_TOKEN = os.getenv('TELEGRAM_BOT_TOKEN', '')
    TELEGRAM_CHAT_ID = os.getenv('TELEGRAM_CHAT_ID', '')
    TELEGRAM_ENABLED = bool(TELEGRAM_BOT_TOKEN and TELEGRAM_CHAT_ID)
    TELEGRAM_COMMANDS_ENABLED = _env_bool('TELEGRAM_COMMANDS_ENABLED', 'true')
    TELEGRAM_POLL_TIMEOUT_SECONDS = int(os.getenv('TELEGRAM_POLL_TIMEOUT_SECONDS', '10'))

    # LI.FI routing
    LIFI_API_URL = os.getenv('LIFI_API_URL', 'https://li.quest/v1')
    LIFI_INTEGRATOR = os.getenv('LIFI_INTEGRATOR', 'rangeguard-lp')
    LIFI_API_KEY = os.getenv('LIFI_API_KEY', '')

    # Logging
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
    LOG_FILE = os.getenv('LOG_FILE', 'logs/monitor.log')

    VALID_FEE_TIERS = (100, 500, 3000, 10000)

    @classmethod
    def validate_config(cls) -> bool:
        """Validate that required configuration is present"""
        errors = []

        if not cls.ETHEREUM_RPC_URL or 'YOUR_PROJECT_ID' in cls.ETHEREUM_RPC_URL:
            errors.append("ETHEREUM_RPC_URL must be set to a valid RPC endpoint")

        if not cls.PRIVATE_KEY:
            errors.append("PRIVATE_KEY is required")

        for name in ('TOKEN_X_ADDRESS', 'TOKEN_Y_ADDRESS', 'WETH_ADDRESS',
                     'UNISWAP_V3_FACTORY', 'UNISWAP_V3_POSITION_MANAGER'):
            value = getattr(cls, name)
            if not value:
                errors.append(f"{name} is required")
            elif not cls._is_valid_address(value):
                errors.append(f"Invalid {name} format: {value}")

        if cls.TOKEN_X_ADDRESS and cls.TOKEN_Y_ADDRESS and cls.TOKEN_X_ADDRESS.lower() == cls.TOKEN_Y_ADDRESS.lower():
            errors.append("TOKEN_X_ADDRESS and TOKEN_Y_ADDRESS cannot be the same")

        if cls.FEE_TIER not in cls.VALID_FEE_TIERS:
            errors.append(f"FEE_TIER must be one of {list(cls.VALID_FEE_TIERS)}, got {cls.FEE_TIER}")

        if cls.MONITORING_INTERVAL_SECONDS <= 0:
            errors.append("MONITORING_INTERVAL_SECONDS must be positive")

        if cls.RANGE_HALF_WIDTH < 0:
            errors.append("RANGE_HALF_WIDTH cannot be negative")

        if not 0 <= cls.MIN_SWAP_THRESHOLD_BPS <= 10000:
            errors.append("MIN_SWAP_THRESHOLD_BPS must be between 0 and 10000")

        if cls.SETTLEMENT_MODE not in ('fixed', 'poll'):
            errors.append(f"SETTLEMENT_MODE must be 'fixed' or 'poll', got '{cls.SETTLEMENT_MODE}'")

        if cls.NATIVE_FEE_RESERVE < 0:
            errors.append("NATIVE_FEE_RESERVE cannot be negative")

        if errors:
            raise ValueError("Configuration validation failed:\n" + "\n".join(f"- {error}" for error in errors))

        return True

    @classmethod
    def get_chain_info(cls) -> Dict[str, Any]:
        """Get chain information from environment"""
        return {
            'chain_id': cls.CHAIN_ID,
            'chain_name': cls.CHAIN_NAME,
            'factory': cls.UNISWAP_V3_FACTORY,
            'position_manager': cls.UNISWAP_V3_POSITION_MANAGER,
            'weth': cls.WETH_ADDRESS
        }

    @staticmethod
    def _is_valid_address(address: str) -> bool:
        """Check if address is valid Ethereum address format"""
        if not address:
            return False

        # Check basic format
        if not (address.startswith('0x') and len(address) == 42):
            return False

        # Check that all characters after 0x are valid hex
        if not all(c in '0123456789abcdefABCDEF' for c in address[2:]):
            return False

        try:
            from web3 import Web3
            return Web3.to_checksum_address(address) is not None
        except (ValueError, TypeError) as e:
            logger.debug(f"Address validation failed for {address}: {e}")
            return False
