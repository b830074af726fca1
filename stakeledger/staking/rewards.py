"""
Stake Ledger Reward Engine

Reward arithmetic of the ledger:
- Pending rewards of a delegation between two checkpoints
- Lockup-duration scaling of rewards
- Per-epoch settlement of the validator reward pool
- Early-unlock penalty shares

All values are integers; every division floors. The engine only reads the
ledger state. Applying its results is up to the delegation ledger and the
epoch sealer.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Sequence, Tuple

from ..constants import DECIMAL_UNIT
from ..logger import get_logger
from .clock import LedgerClock
from .params import ParameterStore
from .types import EpochSnapshot, LedgerState, LockedDelegation, Penalty, Rewards

logger = get_logger(__name__)


@dataclass
class ValidatorSettlement:
    """Settlement of one validator for one epoch."""
    validator_id: int
    originated_fee: int = 0
    base_reward_weight: int = 0
    tx_reward_weight: int = 0
    raw_reward: int = 0
    commission: int = 0
    commission_rewards: Rewards = field(default_factory=Rewards)
    reward_per_token: int = 0


@dataclass
class EpochSettlement:
    """Result of settling the reward pool of one epoch."""
    duration: int
    epoch_fee: int = 0
    total_base_reward_weight: int = 0
    total_tx_reward_weight: int = 0
    treasury_fee: int = 0
    validators: List[ValidatorSettlement] = field(default_factory=list)

    @property
    def total_raw_reward(self) -> int:
        return sum(v.raw_reward for v in self.validators)


class RewardEngine:
    """
    Computes rewards from the epoch snapshots and delegation checkpoints.

    Rewards accrue per token of stake: every sealed epoch stores the
    accumulated reward per token of each validator, so a delegation's
    rewards between two epochs are the difference of two accumulators
    times its stake.
    """

    def __init__(self, state: LedgerState, params: ParameterStore, clock: LedgerClock):
        self.state = state
        self.params = params
        self.clock = clock

    # =========================================================================
    # LOCKUP SCALING
    # =========================================================================

    def scale_lockup_reward(self, full_reward: int, lockup_duration: int) -> Rewards:
        """
        Split a full reward by lockup duration.

        Unlocked stake earns `unlocked_reward_ratio` of the full reward.
        Locked stake earns an extra share growing linearly with the lockup
        duration, reaching the full reward at `max_lockup_duration`.

        Args:
            full_reward: Reward at ratio 1.0
            lockup_duration: Lockup duration in seconds, 0 for unlocked stake

        Returns:
            Rewards split into extra, base and unlocked parts
        """
        unlocked_ratio = self.params.unlocked_reward_ratio

        if lockup_duration == 0:
            return Rewards(unlocked_reward=full_reward * unlocked_ratio // DECIMAL_UNIT)

        max_duration = self.params.max_lockup_duration
        extra_ratio = (DECIMAL_UNIT - unlocked_ratio) * lockup_duration // max_duration
        total = full_reward * (unlocked_ratio + extra_ratio) // DECIMAL_UNIT
        base = full_reward * unlocked_ratio // DECIMAL_UNIT
        return Rewards(lockup_extra_reward=total - base, lockup_base_reward=base)

    # =========================================================================
    # EPOCH WINDOWS
    # =========================================================================

    def highest_payable_epoch(self, validator_id: int) -> int:
        """Last epoch whose rewards are payable for a validator."""
        sealed = self.state.current_sealed_epoch
        validator = self.state.validators.get(validator_id)
        if validator is not None and validator.deactivated_epoch != 0:
            return min(sealed, validator.deactivated_epoch)
        return sealed

    def _is_locked_up_at_epoch(self, lockup: LockedDelegation, epoch: int) -> bool:
        snapshot = self.state.epoch_snapshots.get(epoch) or EpochSnapshot()
        return lockup.from_epoch <= epoch and snapshot.end_time <= lockup.end_time

    def highest_lockup_epoch(self, lockup: LockedDelegation) -> int:
        """
        Last sealed epoch that ended inside the lockup window.

        Binary search over `[from_epoch, current_sealed_epoch]`; epoch end
        times are increasing so the locked epochs form a prefix.

        Returns:
            The epoch, or 0 if no sealed epoch of the episode is locked
        """
        if lockup.end_time == 0:
            return 0

        left = lockup.from_epoch
        right = self.state.current_sealed_epoch

        if self._is_locked_up_at_epoch(lockup, right):
            return right
        if not self._is_locked_up_at_epoch(lockup, left):
            return 0
        if left > right:
            return 0

        while left < right:
            middle = (left + right) // 2
            if self._is_locked_up_at_epoch(lockup, middle):
                left = middle + 1
            else:
                right = middle

        if right == 0:
            return 0
        return right - 1

    def is_locked_up(self, delegator: str, validator_id: int) -> bool:
        """True while the delegation has locked stake and the lock has not ended."""
        lockup = self.state.peek_delegation(delegator, validator_id).lockup
        return (
            lockup.end_time != 0
            and lockup.locked_stake != 0
            and self.clock.now() <= lockup.end_time
        )

    def locked_stake(self, delegator: str, validator_id: int) -> int:
        if not self.is_locked_up(delegator, validator_id):
            return 0
        return self.state.peek_delegation(delegator, validator_id).lockup.locked_stake

    # =========================================================================
    # PENDING REWARDS
    # =========================================================================

    def new_rewards_of(self, stake: int, validator_id: int, from_epoch: int, to_epoch: int) -> int:
        """Full (unscaled) reward of `stake` over epochs `(from_epoch, to_epoch]`."""
        if from_epoch >= to_epoch:
            return 0

        stashed_rate = self._accumulated_rate(from_epoch, validator_id)
        current_rate = self._accumulated_rate(to_epoch, validator_id)
        return (current_rate - stashed_rate) * stake // DECIMAL_UNIT

    def _accumulated_rate(self, epoch: int, validator_id: int) -> int:
        snapshot = self.state.epoch_snapshots.get(epoch)
        if snapshot is None:
            return 0
        return snapshot.accumulated_reward_per_token.get(validator_id, 0)

    def new_rewards(self, delegator: str, validator_id: int) -> Rewards:
        """
        Rewards accrued by a delegation since its checkpoint.

        Locked stake earns scaled rewards for the epochs inside its lockup
        window; after the window the whole stake earns as unlocked.
        """
        record = self.state.peek_delegation(delegator, validator_id)
        lockup = record.lockup

        stashed_until = record.stashed_rewards_until_epoch
        payable_until = self.highest_payable_epoch(validator_id)
        locked_until = self.highest_lockup_epoch(lockup)
        if locked_until > payable_until:
            locked_until = payable_until
        if locked_until < stashed_until:
            locked_until = stashed_until

        whole_stake = record.stake
        unlocked_stake = whole_stake - lockup.locked_stake

        # During lockup
        plocked = self.scale_lockup_reward(
            self.new_rewards_of(lockup.locked_stake, validator_id, stashed_until, locked_until),
            lockup.duration,
        )
        punlocked = self.scale_lockup_reward(
            self.new_rewards_of(unlocked_stake, validator_id, stashed_until, locked_until),
            0,
        )
        # After lockup
        wunlocked = self.scale_lockup_reward(
            self.new_rewards_of(whole_stake, validator_id, locked_until, payable_until),
            0,
        )
        return plocked + punlocked + wunlocked

    def pending_rewards(self, delegator: str, validator_id: int) -> Rewards:
        """Stashed plus newly accrued rewards."""
        record = self.state.peek_delegation(delegator, validator_id)
        return record.rewards_stash + self.new_rewards(delegator, validator_id)

    # =========================================================================
    # EARLY-UNLOCK PENALTIES
    # =========================================================================

    @staticmethod
    def current_episode_penalty(
        stashed_lockup_rewards: Rewards, amount: int, total: int
    ) -> Tuple[int, int, int]:
        """
        Penalty share of the current lock episode for unlocking `amount` of `total`.

        The whole extra reward share and half of the base reward share are
        forfeited.

        Returns:
            (penalty, extra_share, base_share)
        """
        if total == 0:
            return 0, 0, 0
        extra_share = stashed_lockup_rewards.lockup_extra_reward * amount // total
        base_share = stashed_lockup_rewards.lockup_base_reward * amount // total
        return extra_share + base_share // 2, extra_share, base_share

    def superseded_penalty_shares(
        self, penalties: Sequence[Penalty], amount: int, total: int
    ) -> List[int]:
        """Share of each superseded episode's penalty charged for unlocking `amount` of `total`."""
        if total == 0:
            return [0 for _ in penalties]
        return [p.amount * amount // total for p in penalties]

    # =========================================================================
    # EPOCH SETTLEMENT
    # =========================================================================

    def settle_epoch(
        self,
        duration: int,
        snapshot: EpochSnapshot,
        prev_snapshot: EpochSnapshot,
        validator_ids: Sequence[int],
        uptimes: Sequence[int],
        accumulated_originated_txs_fee: Sequence[int],
    ) -> EpochSettlement:
        """
        Divide the reward pool of an epoch among its validators.

        Base rewards are proportional to snapshot stake weighted by the
        square of uptime; transaction rewards are proportional to fees
        originated by each validator weighted by uptime, after the burnt
        and treasury shares. The validator commission is returned as
        scaled rewards for the validator's own stash; the rest becomes
        the validator's reward per token.

        Args:
            duration: Epoch duration in seconds
            snapshot: Snapshot of the epoch being sealed
            prev_snapshot: Snapshot of the previous sealed epoch
            validator_ids: Validator set of the epoch
            uptimes: Uptime per validator
            accumulated_originated_txs_fee: Accumulated originated fee per validator

        Returns:
            EpochSettlement with per-validator results
        """
        result = EpochSettlement(duration=duration)
        settlements: Dict[int, ValidatorSettlement] = {}

        # 1. Transaction reward weights
        for i, validator_id in enumerate(validator_ids):
            prev_fee = prev_snapshot.accumulated_originated_txs_fee.get(validator_id, 0)
            originated = accumulated_originated_txs_fee[i] - prev_fee
            if originated < 0:
                originated = 0

            s = ValidatorSettlement(validator_id=validator_id, originated_fee=originated)
            s.tx_reward_weight = originated * uptimes[i] // duration
            settlements[validator_id] = s

            result.total_tx_reward_weight += s.tx_reward_weight
            result.epoch_fee += originated

        # 2. Base reward weights
        for i, validator_id in enumerate(validator_ids):
            stake = snapshot.received_stake.get(validator_id, 0)
            weight = (stake * uptimes[i] // duration) * uptimes[i] // duration
            settlements[validator_id].base_reward_weight = weight
            result.total_base_reward_weight += weight

        # 3. Raw rewards, commission and reward per token
        for validator_id in validator_ids:
            s = settlements[validator_id]
            s.raw_reward = self.calc_raw_validator_epoch_base_reward(
                duration, self.params.base_reward_per_second,
                s.base_reward_weight, result.total_base_reward_weight,
            ) + self.calc_raw_validator_epoch_tx_reward(
                result.epoch_fee, s.tx_reward_weight, result.total_tx_reward_weight,
            )
            s.commission = self.calc_validator_commission(s.raw_reward, self.params.validator_commission)
            s.commission_rewards = self._scale_commission(validator_id, s.commission)

            received = self.state.validators[validator_id].received_stake
            if received != 0:
                s.reward_per_token = (s.raw_reward - s.commission) * DECIMAL_UNIT // received

            result.validators.append(s)

        if self.state.treasury_address is not None:
            result.treasury_fee = result.epoch_fee * self.params.treasury_fee_share // DECIMAL_UNIT

        logger.debug(
            f"Settled {len(result.validators)} validators: fee={result.epoch_fee}, "
            f"base_weight={result.total_base_reward_weight}, tx_weight={result.total_tx_reward_weight}"
        )
        return result

    def _scale_commission(self, validator_id: int, commission: int) -> Rewards:
        """Split a commission between the validator's locked and unlocked self-stake."""
        auth = self.state.validators[validator_id].auth
        self_stake = self.state.peek_delegation(auth, validator_id).stake
        if self_stake == 0:
            return Rewards()

        locked = self.locked_stake(auth, validator_id)
        duration = self.state.peek_delegation(auth, validator_id).lockup.duration
        locked_commission = commission * locked // self_stake
        unlocked_commission = commission - locked_commission
        return (
            self.scale_lockup_reward(locked_commission, duration)
            + self.scale_lockup_reward(unlocked_commission, 0)
        )

    @staticmethod
    def calc_raw_validator_epoch_base_reward(
        duration: int, base_reward_per_second: int, base_weight: int, total_base_weight: int
    ) -> int:
        if base_weight == 0:
            return 0
        total_reward = duration * base_reward_per_second
        return total_reward * base_weight // total_base_weight

    def calc_raw_validator_epoch_tx_reward(
        self, epoch_fee: int, tx_weight: int, total_tx_weight: int
    ) -> int:
        if tx_weight == 0:
            return 0
        tx_reward = epoch_fee * tx_weight // total_tx_weight
        # Burnt and treasury shares come off the top
        kept = DECIMAL_UNIT - self.params.burnt_fee_share - self.params.treasury_fee_share
        return tx_reward * kept // DECIMAL_UNIT

    @staticmethod
    def calc_validator_commission(raw_reward: int, commission: int) -> int:
        return raw_reward * commission // DECIMAL_UNIT
