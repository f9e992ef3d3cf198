"""
RangeGuard LP - Domain types
Positions, tracker status, plans and collaborator payloads.
All token quantities are raw integer units (no decimals applied).
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class Asset(Enum):
    """The two pool assets"""
    X = "X"
    Y = "Y"

    @property
    def other(self) -> "Asset":
        return Asset.Y if self is Asset.X else Asset.X


class Transition(Enum):
    """Result of evaluating a position against the active index"""
    ENTERED = "entered"
    EXITED = "exited"
    UNCHANGED = "unchanged"


class RebalanceStage(Enum):
    """Pipeline stages of a rebalance, in execution order"""
    IDLE = "idle"
    WITHDRAWING = "withdrawing"
    PLANNING = "planning"
    SWAPPING = "swapping"
    SETTLING = "settling"
    DEPOSITING = "depositing"
    FAILED = "failed"


@dataclass(frozen=True)
class Position:
    """A liquidity position as returned by one poll"""
    key: str
    lower_bin: int
    upper_bin: int
    x_amount: int = 0
    y_amount: int = 0
    liquidity: int = 0

    def contains(self, active_index: int) -> bool:
        """True if the active index lies inside [lower_bin, upper_bin]"""
        return self.lower_bin <= active_index <= self.upper_bin

    @property
    def bin_range(self) -> Tuple[int, int]:
        return self.lower_bin, self.upper_bin


@dataclass
class PositionStatus:
    """Tracker state for one position key"""
    is_in_range: bool
    notified: bool = False
    rebalance_pending: bool = False


@dataclass(frozen=True)
class PositionSnapshot:
    """Positions and active index read in one pass"""
    positions: List[Position]
    active_index: int


@dataclass(frozen=True)
class Balances:
    """Wallet holdings of the two pool assets"""
    x_amount: int
    y_amount: int
    x_decimals: int
    y_decimals: int


@dataclass(frozen=True)
class RebalancePlan:
    """Swap needed to bring asset values back to 50/50"""
    sell_asset: Asset
    sell_amount: int
    range_half_width: int
    x_value: int = 0
    y_value: int = 0
    total_value: int = 0
    target_value: int = 0

    @property
    def buy_asset(self) -> Asset:
        return self.sell_asset.other


@dataclass
class Route:
    """A candidate swap path from the swap service"""
    from_asset: str
    to_asset: str
    from_amount: int
    to_amount: int
    from_symbol: str = ""
    to_symbol: str = ""
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ExecutedRoute:
    """Outcome of a filled swap"""
    realized_input: int
    realized_output: int
    reference: str


@dataclass
class PendingTransaction:
    """An unsigned transaction ready for submission"""
    description: str
    tx: Dict[str, Any]


@dataclass(frozen=True)
class TransactionRef:
    """A confirmed transaction"""
    reference: str
    receipt: Any = None


class RebalanceOutcome(Enum):
    COMPLETED = "completed"
    SKIPPED = "skipped"


@dataclass
class RebalanceResult:
    """What a rebalance attempt produced"""
    outcome: RebalanceOutcome
    plan: Optional[RebalancePlan] = None
    swap: Optional[ExecutedRoute] = None
    new_position_key: Optional[str] = None
    new_range: Optional[Tuple[int, int]] = None
    deposit_reference: Optional[str] = None
    withdraw_failures: int = 0


@dataclass(frozen=True)
class PositionStatusRow:
    key: str
    lower_bin: int
    upper_bin: int
    in_range: bool


@dataclass(frozen=True)
class StatusReport:
    """Result of an on-demand status query"""
    active_index: int
    positions: List[PositionStatusRow]
    rebalancing: bool = False
