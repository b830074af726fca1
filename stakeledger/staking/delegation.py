"""
Stake Ledger Delegation Ledger

Per (delegator, validator) stake, lockups, reward checkpoints and the
early-unlock penalty bookkeeping. Every stake-changing operation stashes
pending rewards first so rewards are always computed on the stake that
earned them.
"""

import copy
from dataclasses import replace
from typing import List

from ..constants import (
    FREE_RELOCKS,
    MAX_ONGOING_RELOCKS,
    RELOCK_DUST_DIVISOR,
    RELOCK_EXTENSION_THRESHOLD,
    VALIDATOR_LOCKUP_GRACE,
    WITHDRAWN_BIT,
)
from ..logger import get_logger
from .clock import LedgerClock
from .errors import (
    AlreadyLockedUp,
    IncorrectDuration,
    InsufficientSelfStake,
    LockupDurationDecreased,
    NotEnoughLockedStake,
    NotEnoughUnlockedStake,
    NotLockedUp,
    RequestExists,
    TooFrequentReLocks,
    TooManyReLocks,
    ValidatorLockupTooShort,
    ValidatorNotActive,
    ZeroAmount,
    ZeroRewards,
)
from .params import ParameterStore
from .registry import ValidatorRegistry
from .rewards import RewardEngine
from .types import Delegation, LedgerState, LockedDelegation, Penalty, Rewards, WithdrawalRequest

logger = get_logger(__name__)


class DelegationLedger:
    """
    Stake accounting for delegations.

    Validators are registered in the `ValidatorRegistry`; a validator's
    self-stake is simply the delegation of its auth address to itself.
    """

    def __init__(
        self,
        state: LedgerState,
        params: ParameterStore,
        clock: LedgerClock,
        registry: ValidatorRegistry,
        rewards: RewardEngine,
    ):
        self.state = state
        self.params = params
        self.clock = clock
        self.registry = registry
        self.rewards = rewards

    # =========================================================================
    # QUERIES
    # =========================================================================

    def get_stake(self, delegator: str, validator_id: int) -> int:
        return self.state.peek_delegation(delegator, validator_id).stake

    def get_lockup_info(self, delegator: str, validator_id: int) -> LockedDelegation:
        return replace(self.state.peek_delegation(delegator, validator_id).lockup)

    def is_locked_up(self, delegator: str, validator_id: int) -> bool:
        return self.rewards.is_locked_up(delegator, validator_id)

    def get_locked_stake(self, delegator: str, validator_id: int) -> int:
        return self.rewards.locked_stake(delegator, validator_id)

    def get_unlocked_stake(self, delegator: str, validator_id: int) -> int:
        return self.get_stake(delegator, validator_id) - self.get_locked_stake(delegator, validator_id)

    def get_stashed_penalties(self, delegator: str, validator_id: int) -> List[Penalty]:
        record = self.state.peek_delegation(delegator, validator_id)
        return [replace(p) for p in record.stashed_penalties]

    # =========================================================================
    # REWARD CHECKPOINTS
    # =========================================================================

    def stash_rewards(self, delegator: str, validator_id: int) -> Rewards:
        """
        Move newly accrued rewards into the stash and advance the checkpoint.

        An expired lockup is cleared here, together with the lockup rewards
        its penalty would have been based on.

        Returns:
            The rewards moved into the stash, empty for an unknown delegation
        """
        record = self.state.delegations.get((delegator, validator_id))
        if record is None:
            return Rewards()

        new_rewards = self.rewards.new_rewards(delegator, validator_id)
        record.stashed_rewards_until_epoch = self.rewards.highest_payable_epoch(validator_id)
        record.rewards_stash = record.rewards_stash + new_rewards
        record.stashed_lockup_rewards = record.stashed_lockup_rewards + new_rewards

        if not self.is_locked_up(delegator, validator_id):
            record.lockup = LockedDelegation()
            record.stashed_lockup_rewards = Rewards()

        if new_rewards.total:
            logger.debug(
                f"Stashed amount={new_rewards.total} for {delegator} on validator #{validator_id} "
                f"until epoch {record.stashed_rewards_until_epoch}"
            )
        return new_rewards

    # =========================================================================
    # DELEGATION
    # =========================================================================

    def delegate(self, delegator: str, validator_id: int, amount: int) -> None:
        """
        Add stake to an active validator.

        Raises:
            ValidatorNotExists: If the validator is unknown
            ValidatorNotActive: If the validator is deactivated
            ZeroAmount: If amount is zero
            ValidatorDelegationLimitExceeded: If the validator's self-stake
                cannot back the new received stake
        """
        validator = self.registry.get(validator_id)
        if not validator.is_active:
            raise ValidatorNotActive(validator_id, validator.status)

        self.raw_delegate(delegator, validator_id, amount)
        self.registry.check_delegation_limit(validator_id)

    def raw_delegate(self, delegator: str, validator_id: int, amount: int) -> None:
        """Add stake without status or delegation limit checks."""
        if amount == 0:
            raise ZeroAmount()

        self.stash_rewards(delegator, validator_id)

        validator = self.registry.get(validator_id)
        is_new = (delegator, validator_id) not in self.state.delegations
        record = self.state.delegation(delegator, validator_id)
        if is_new:
            # New stake earns from the next payable epoch on
            record.stashed_rewards_until_epoch = self.rewards.highest_payable_epoch(validator_id)
        orig_received = validator.received_stake

        record.stake += amount
        validator.received_stake += amount
        self.state.total_stake += amount
        if validator.is_active:
            self.state.total_active_stake += amount

        self.registry.sync(validator_id, sync_pubkey=orig_received == 0)
        logger.info(f"Delegated amount={amount} from {delegator} to validator #{validator_id}")

    def undelegate(self, delegator: str, validator_id: int, request_id: int, amount: int) -> WithdrawalRequest:
        """
        Remove unlocked stake into a withdrawal request.

        Args:
            delegator: Delegating account
            validator_id: Validator id
            request_id: Caller-chosen id of the withdrawal request
            amount: Amount to undelegate

        Returns:
            The new withdrawal request

        Raises:
            ZeroAmount: If amount is zero
            NotEnoughUnlockedStake: If amount exceeds the unlocked stake
            RequestExists: If the request id is already used
            InsufficientSelfStake: If the validator's remaining self-stake is below minimum
            ValidatorDelegationLimitExceeded: If the remaining self-stake cannot
                back the validator's received stake
        """
        self.registry.get(validator_id)
        self.stash_rewards(delegator, validator_id)

        if amount == 0:
            raise ZeroAmount()

        unlocked = self.get_unlocked_stake(delegator, validator_id)
        if amount > unlocked:
            raise NotEnoughUnlockedStake(amount, unlocked)

        key = (delegator, validator_id, request_id)
        if key in self.state.withdrawal_requests:
            raise RequestExists(request_id)

        self.raw_undelegate(delegator, validator_id, amount, check_limit=True)

        request = WithdrawalRequest(
            amount=amount,
            epoch=self.state.current_epoch,
            time=self.clock.now(),
        )
        self.state.withdrawal_requests[key] = request

        logger.info(
            f"Undelegated amount={amount} from validator #{validator_id} "
            f"for {delegator} (request {request_id})"
        )
        return request

    def raw_undelegate(self, delegator: str, validator_id: int, amount: int, check_limit: bool) -> None:
        """
        Remove stake and enforce the validator's self-stake rules.

        A validator whose self-stake drops to zero is deactivated as withdrawn.
        """
        validator = self.registry.get(validator_id)
        record = self.state.delegation(delegator, validator_id)

        record.stake -= amount
        validator.received_stake -= amount
        self.state.total_stake -= amount
        if validator.is_active:
            self.state.total_active_stake -= amount

        self_stake = self.registry.self_stake(validator_id)
        if self_stake == 0:
            self.registry.set_deactivated(validator_id, WITHDRAWN_BIT)
        elif validator.is_active:
            if self_stake < self.params.min_self_stake:
                raise InsufficientSelfStake(self.params.min_self_stake, self_stake)
            if check_limit:
                self.registry.check_delegation_limit(validator_id)

        self.registry.sync(validator_id)

    # =========================================================================
    # LOCKUP
    # =========================================================================

    def lock_stake(self, delegator: str, validator_id: int, duration: int, amount: int) -> None:
        """
        Lock part of a delegation for `duration` seconds.

        Raises:
            ZeroAmount: If amount is zero
            AlreadyLockedUp: If a lock is active, use `relock_stake` instead
        """
        self.registry.get(validator_id)
        if amount == 0:
            raise ZeroAmount()
        if self.is_locked_up(delegator, validator_id):
            raise AlreadyLockedUp(delegator, validator_id)

        self._lock(delegator, validator_id, duration, amount, relock=False)

    def relock_stake(self, delegator: str, validator_id: int, duration: int, amount: int) -> None:
        """
        Extend an active lock and optionally add stake to it.

        The penalty accrued by the current episode is kept as a stashed
        penalty until the episode's original end.

        Raises:
            NotLockedUp: If no lock is active
        """
        self.registry.get(validator_id)
        if not self.is_locked_up(delegator, validator_id):
            raise NotLockedUp(delegator, validator_id)

        self._lock(delegator, validator_id, duration, amount, relock=True)

    def _lock(self, delegator: str, validator_id: int, duration: int, amount: int, relock: bool) -> None:
        validator = self.registry.get(validator_id)

        unlocked = self.get_unlocked_stake(delegator, validator_id)
        if amount > unlocked:
            raise NotEnoughUnlockedStake(amount, unlocked)
        if not validator.is_active:
            raise ValidatorNotActive(validator_id, validator.status)

        min_duration = self.params.min_lockup_duration
        max_duration = self.params.max_lockup_duration
        if duration < min_duration or duration > max_duration:
            raise IncorrectDuration(duration, min_duration, max_duration)

        end_time = self.clock.now() + duration
        if delegator != validator.auth:
            validator_end = self.state.peek_delegation(validator.auth, validator_id).lockup.end_time
            if validator_end + VALIDATOR_LOCKUP_GRACE < end_time:
                raise ValidatorLockupTooShort(validator_id, validator_end, end_time)

        self.stash_rewards(delegator, validator_id)

        record = self.state.delegation(delegator, validator_id)
        self._drop_stale_penalties(record)
        lockup = record.lockup

        if relock:
            penalty = self._pop_current_episode_penalty(record, lockup.locked_stake, lockup.locked_stake)
            if penalty != 0:
                record.stashed_penalties.append(Penalty(amount=penalty, end=lockup.end_time))
                ongoing = len(record.stashed_penalties)
                if ongoing > MAX_ONGOING_RELOCKS:
                    raise TooManyReLocks(ongoing)
                if (
                    amount <= lockup.locked_stake // RELOCK_DUST_DIVISOR
                    and ongoing > FREE_RELOCKS
                    and end_time < lockup.end_time + RELOCK_EXTENSION_THRESHOLD
                ):
                    raise TooFrequentReLocks(ongoing)

        if duration < lockup.duration:
            raise LockupDurationDecreased(duration, lockup.duration)

        lockup.locked_stake += amount
        lockup.from_epoch = self.state.current_epoch
        lockup.end_time = end_time
        lockup.duration = duration

        logger.info(
            f"{'Relocked' if relock else 'Locked'} amount={amount} of {delegator} on validator "
            f"#{validator_id} until {end_time} (locked={lockup.locked_stake})"
        )

    def unlock_stake(self, delegator: str, validator_id: int, amount: int) -> int:
        """
        Unlock stake before the lock ends.

        The early-unlock penalty is removed from the delegation's stake and
        burnt.

        Returns:
            The penalty charged

        Raises:
            ZeroAmount: If amount is zero
            NotLockedUp: If no lock is active
            NotEnoughLockedStake: If amount exceeds the locked stake
        """
        self._check_unlock(delegator, validator_id, amount)

        self.stash_rewards(delegator, validator_id)

        record = self.state.delegation(delegator, validator_id)
        penalty = self._pop_penalties(record, amount)
        record.lockup.locked_stake -= amount

        if penalty != 0:
            self.raw_undelegate(delegator, validator_id, penalty, check_limit=False)
            self.state.burn(penalty)
            logger.warning(
                f"Early unlock of {delegator} on validator #{validator_id}: penalty={penalty} burnt"
            )

        logger.info(f"Unlocked amount={amount} of {delegator} on validator #{validator_id}")
        return penalty

    def estimate_unlock_penalty(self, delegator: str, validator_id: int, amount: int) -> int:
        """
        Penalty `unlock_stake` would charge now.

        Works on a copy of the delegation record with its pending rewards
        stashed; the state is not touched.

        Raises:
            Same as `unlock_stake`, plus InsufficientSelfStake if the penalty
            would leave an active validator below the minimum self-stake
        """
        self._check_unlock(delegator, validator_id, amount)

        record = copy.deepcopy(self.state.peek_delegation(delegator, validator_id))
        record.stashed_lockup_rewards = (
            record.stashed_lockup_rewards + self.rewards.new_rewards(delegator, validator_id)
        )
        penalty = self._pop_penalties(record, amount)

        validator = self.registry.get(validator_id)
        if penalty and validator.auth == delegator and validator.is_active:
            remaining = record.stake - penalty
            if 0 < remaining < self.params.min_self_stake:
                raise InsufficientSelfStake(self.params.min_self_stake, remaining)
        return penalty

    def _check_unlock(self, delegator: str, validator_id: int, amount: int) -> None:
        self.registry.get(validator_id)
        if amount == 0:
            raise ZeroAmount()
        if not self.is_locked_up(delegator, validator_id):
            raise NotLockedUp(delegator, validator_id)

        locked = self.state.peek_delegation(delegator, validator_id).lockup.locked_stake
        if amount > locked:
            raise NotEnoughLockedStake(amount, locked)

    def _pop_penalties(self, record: Delegation, amount: int) -> int:
        """Take the penalty for unlocking `amount` out of the record's stashes, capped at `amount`."""
        locked = record.lockup.locked_stake
        penalty = (
            self._pop_current_episode_penalty(record, amount, locked)
            + self._pop_superseded_penalties(record, amount, locked)
        )
        return min(penalty, amount)

    def _pop_current_episode_penalty(self, record: Delegation, amount: int, total: int) -> int:
        penalty, extra_share, base_share = RewardEngine.current_episode_penalty(
            record.stashed_lockup_rewards, amount, total
        )
        stashed = record.stashed_lockup_rewards
        record.stashed_lockup_rewards = Rewards(
            lockup_extra_reward=stashed.lockup_extra_reward - extra_share,
            lockup_base_reward=stashed.lockup_base_reward - base_share,
            unlocked_reward=stashed.unlocked_reward,
        )
        return penalty

    def _pop_superseded_penalties(self, record: Delegation, amount: int, total: int) -> int:
        self._drop_stale_penalties(record)
        shares = self.rewards.superseded_penalty_shares(record.stashed_penalties, amount, total)
        for penalty, share in zip(record.stashed_penalties, shares):
            penalty.amount -= share
        self._drop_stale_penalties(record)
        return sum(shares)

    def _drop_stale_penalties(self, record: Delegation) -> None:
        now = self.clock.now()
        record.stashed_penalties = [
            p for p in record.stashed_penalties
            if p.end >= now and p.amount != 0
        ]

    # =========================================================================
    # REWARD PAYOUT
    # =========================================================================

    def claim_rewards(self, delegator: str, validator_id: int) -> Rewards:
        """
        Pay out all stashed and pending rewards.

        Raises:
            ZeroRewards: If there is nothing to claim
        """
        self.registry.get(validator_id)
        self.stash_rewards(delegator, validator_id)

        record = self.state.delegation(delegator, validator_id)
        rewards = record.rewards_stash
        if rewards.total == 0:
            raise ZeroRewards(delegator, validator_id)

        record.rewards_stash = Rewards()
        self.state.mint(rewards.total)

        logger.info(f"Claimed amount={rewards.total} by {delegator} from validator #{validator_id}")
        return rewards

    def restake_rewards(self, delegator: str, validator_id: int) -> Rewards:
        """
        Claim rewards and delegate them to the same validator.

        While the delegation is locked, the lockup part of the rewards is
        added to the locked stake.
        """
        rewards = self.claim_rewards(delegator, validator_id)
        locked = self.is_locked_up(delegator, validator_id)

        self.delegate(delegator, validator_id, rewards.total)
        if locked:
            self.state.delegation(delegator, validator_id).lockup.locked_stake += rewards.lockup_reward

        logger.info(f"Restaked amount={rewards.total} by {delegator} on validator #{validator_id}")
        return rewards
