"""
Range tracker.
Edge-triggered in-range / out-of-range state machine per position, owning
the dedup state that keeps alerts to one per transition.
"""
import logging
from typing import Dict, Iterable, Optional

from collaborators import Notifier
from domain import Position, PositionStatus, Transition

logger = logging.getLogger(__name__)


def generate_out_of_range_message(position: Position, active_index: int) -> str:
    """Build the out-of-range alert text"""
    if active_index < position.lower_bin:
        distance = f"{position.lower_bin - active_index} bins below"
    else:
        distance = f"{active_index - position.upper_bin} bins above"

    return (
        f"⚠️ Position Out of Range Alert!\n\n"
        f"Position: {position.key}\n"
        f"Current Bin: {active_index}\n"
        f"Range: {position.lower_bin} - {position.upper_bin}\n"
        f"Position is {distance} current range\n"
        f"Total X Amount: {position.x_amount}\n"
        f"Total Y Amount: {position.y_amount}"
    )


def generate_back_in_range_message(position: Position, active_index: int) -> str:
    return f"✅ Position {position.key} is back in range!\nCurrent bin: {active_index}"


class RangeTracker:
    """
    Tracks each position's last observed range status.

    A key seen for the first time is recorded silently, even when it is
    already out of range; the out-of-range alert fires on the following
    poll if the position is still out. After that, alerts fire only on
    edges: once when a position leaves its range and once when it returns.
    """

    def __init__(self, notifier: Notifier):
        self.notifier = notifier
        self._statuses: Dict[str, PositionStatus] = {}

    def status(self, key: str) -> Optional[PositionStatus]:
        return self._statuses.get(key)

    def __len__(self) -> int:
        return len(self._statuses)

    def _transition(self, position: Position, active_index: int) -> Transition:
        # No await between the read and the write of a status
        in_range = position.contains(active_index)
        status = self._statuses.get(position.key)

        if status is None:
            self._statuses[position.key] = PositionStatus(is_in_range=in_range)
            if not in_range:
                logger.info(f"Position {position.key} first seen out of range at bin {active_index}")
            return Transition.UNCHANGED

        transition = Transition.UNCHANGED
        if not in_range and not status.notified:
            status.notified = True
            transition = Transition.EXITED
        elif in_range and status.notified:
            status.notified = False
            transition = Transition.ENTERED

        if in_range:
            status.rebalance_pending = False
        status.is_in_range = in_range
        return transition

    async def evaluate(self, position: Position, active_index: int) -> Transition:
        """
        Update the status of a position and alert on edges.

        Args:
            position: Position from the latest snapshot
            active_index: Pool active bin index

        Returns:
            Transition for this observation
        """
        transition = self._transition(position, active_index)

        if transition is Transition.EXITED:
            logger.warning(f"Position {position.key} left its range "
                           f"[{position.lower_bin}, {position.upper_bin}] at bin {active_index}")
            await self.notifier.send(generate_out_of_range_message(position, active_index))
        elif transition is Transition.ENTERED:
            logger.info(f"Position {position.key} back in range at bin {active_index}")
            await self.notifier.send(generate_back_in_range_message(position, active_index))

        return transition

    def mark_rebalance_pending(self, key: str, pending: bool = True):
        """Flag a key whose rebalance failed or was skipped so the next cycle retries it"""
        status = self._statuses.get(key)
        if status is not None:
            status.rebalance_pending = pending

    def needs_rebalance_retry(self, key: str) -> bool:
        status = self._statuses.get(key)
        return bool(status and status.rebalance_pending and not status.is_in_range)

    def forget_missing(self, present_keys: Iterable[str]) -> int:
        """
        Drop statuses of positions no longer returned by the pool.

        Returns:
            Number of statuses removed
        """
        present = set(present_keys)
        stale = [key for key in self._statuses if key not in present]
        for key in stale:
            del self._statuses[key]
            logger.info(f"Position {key} no longer held, dropped from tracking")
        return len(stale)
