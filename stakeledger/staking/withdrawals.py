"""
Stake Ledger Withdrawal Manager

Pays out undelegated stake once both the time and the epoch delay have
passed, minus the slashing penalty of a cheater validator.
"""

from dataclasses import dataclass

from ..constants import DECIMAL_UNIT
from ..logger import get_logger
from .clock import LedgerClock
from .errors import (
    NotEnoughEpochsPassed,
    NotEnoughTimePassed,
    RequestNotExists,
    StakeIsFullySlashed,
)
from .params import ParameterStore
from .registry import ValidatorRegistry
from .types import LedgerState, WithdrawalRequest

logger = get_logger(__name__)


@dataclass
class Withdrawal:
    """Outcome of a completed withdrawal."""
    delegator: str
    validator_id: int
    request_id: int
    amount: int
    penalty: int

    @property
    def paid(self) -> int:
        return self.amount - self.penalty


def slashing_penalty(amount: int, refund_ratio: int) -> int:
    """
    Part of `amount` lost to slashing with the given refund ratio.

    Rounds up by one unit and never exceeds `amount`.
    """
    if refund_ratio >= DECIMAL_UNIT:
        return 0
    penalty = amount * (DECIMAL_UNIT - refund_ratio) // DECIMAL_UNIT + 1
    if penalty > amount:
        return amount
    return penalty


class WithdrawalManager:
    """Withdrawal delay gate for requests created by undelegation."""

    def __init__(
        self,
        state: LedgerState,
        params: ParameterStore,
        clock: LedgerClock,
        registry: ValidatorRegistry,
    ):
        self.state = state
        self.params = params
        self.clock = clock
        self.registry = registry

    def get_request(self, delegator: str, validator_id: int, request_id: int) -> WithdrawalRequest:
        request = self.state.withdrawal_requests.get((delegator, validator_id, request_id))
        if request is None:
            raise RequestNotExists(delegator, validator_id, request_id)
        return request

    def ready_at(self, request: WithdrawalRequest, validator_id: int):
        """
        Time and epoch from which a request counts its delay.

        Stake of a validator deactivated before the request was made counts
        from the deactivation.
        """
        validator = self.registry.get(validator_id)
        request_time, request_epoch = request.time, request.epoch
        if validator.deactivated_time != 0 and validator.deactivated_time < request_time:
            request_time = validator.deactivated_time
            request_epoch = validator.deactivated_epoch
        return (
            request_time + self.params.withdrawal_period_time,
            request_epoch + self.params.withdrawal_period_epochs,
        )

    def withdraw(self, delegator: str, validator_id: int, request_id: int) -> Withdrawal:
        """
        Complete a withdrawal request.

        Returns:
            Withdrawal with the requested amount and the slashing penalty

        Raises:
            RequestNotExists: If there is no such request
            NotEnoughTimePassed: If the time delay has not passed
            NotEnoughEpochsPassed: If the epoch delay has not passed
            StakeIsFullySlashed: If slashing takes the whole amount
        """
        request = self.get_request(delegator, validator_id, request_id)

        ready_time, ready_epoch = self.ready_at(request, validator_id)
        now = self.clock.now()
        if now < ready_time:
            raise NotEnoughTimePassed(ready_time, now)
        if self.state.current_epoch < ready_epoch:
            raise NotEnoughEpochsPassed(ready_epoch, self.state.current_epoch)

        validator = self.registry.get(validator_id)
        penalty = 0
        if validator.is_slashed:
            penalty = slashing_penalty(request.amount, validator.slashing_refund_ratio)
        if request.amount <= penalty:
            raise StakeIsFullySlashed(validator_id, request.amount)

        del self.state.withdrawal_requests[(delegator, validator_id, request_id)]

        if penalty:
            self.state.total_slashed_stake += penalty
            self.state.burn(penalty)
            logger.warning(
                f"Withdrawal from slashed validator #{validator_id}: penalty={penalty} burnt"
            )

        result = Withdrawal(delegator, validator_id, request_id, request.amount, penalty)
        logger.info(
            f"Withdrawn amount={result.paid} by {delegator} from validator #{validator_id} "
            f"(request {request_id})"
        )
        return result
