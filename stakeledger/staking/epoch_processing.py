"""
Stake Ledger Epoch Processing

Implements the epoch transition driven by the node:
- Offline penalties
- Reward settlement into the epoch snapshot
- Uptime averaging and low-uptime deactivation
- Minimum gas price control loop
- Validator set rotation for the next epoch

Sealing runs inside an atomic ledger call, so a failure at any step
leaves the epoch open and the state untouched.
"""

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Sequence

from ..constants import (
    DECIMAL_UNIT,
    GAS_PRICE_MAX_DECREASE,
    GAS_PRICE_MAX_INCREASE,
    MIN_GAS_PRICE_CEILING,
    MIN_GAS_PRICE_FLOOR,
    OFFLINE_BIT,
)
from ..logger import get_logger
from .clock import LedgerClock
from .driver import NodeSignal, SignalKind
from .errors import MalformedMetrics
from .params import ParameterStore
from .registry import ValidatorRegistry
from .rewards import RewardEngine
from .types import EpochSnapshot, LedgerState

logger = get_logger(__name__)


@dataclass
class EpochSealResult:
    """Result of sealing one epoch."""
    epoch: int
    duration: int
    end_time: int = 0

    # Rewards
    epoch_fee: int = 0
    treasury_fee: int = 0
    total_raw_reward: int = 0
    rewards_by_validator: Dict[int, int] = field(default_factory=dict)
    reward_per_token: Dict[int, int] = field(default_factory=dict)

    # Validator changes
    offline_validators: List[int] = field(default_factory=list)
    low_uptime_validators: List[int] = field(default_factory=list)

    # Gas price
    min_gas_price: int = 0


def next_min_gas_price(
    price: int,
    duration: int,
    epoch_gas: int,
    target_gas_power_per_second: int,
    counterweight: int,
) -> int:
    """
    One step of the minimum gas price control loop.

    The price moves by the ratio of used gas to target gas, damped by the
    counterweight and limited to +-5% per epoch.

    Args:
        price: Current minimum gas price
        duration: Epoch duration in seconds
        epoch_gas: Gas consumed during the epoch
        target_gas_power_per_second: Target gas consumption rate
        counterweight: Damping in seconds of neutral ratio

    Returns:
        New minimum gas price within [1 gwei, 1M gwei]
    """
    target_epoch_gas = duration * target_gas_power_per_second + 1
    ratio = epoch_gas * DECIMAL_UNIT // target_epoch_gas

    ratio = (duration * ratio + counterweight * DECIMAL_UNIT) // (duration + counterweight)

    if ratio > GAS_PRICE_MAX_INCREASE:
        ratio = GAS_PRICE_MAX_INCREASE
    if ratio < GAS_PRICE_MAX_DECREASE:
        ratio = GAS_PRICE_MAX_DECREASE

    price = price * ratio // DECIMAL_UNIT

    if price > MIN_GAS_PRICE_CEILING:
        price = MIN_GAS_PRICE_CEILING
    if price < MIN_GAS_PRICE_FLOOR:
        price = MIN_GAS_PRICE_FLOOR
    return price


class EpochSealer:
    """
    Seals epochs and installs the validator set of the next epoch.

    The open epoch's snapshot receives its validator set from
    `seal_epoch_validators`; `seal_epoch` settles it and makes it final.
    """

    def __init__(
        self,
        state: LedgerState,
        params: ParameterStore,
        clock: LedgerClock,
        registry: ValidatorRegistry,
        rewards: RewardEngine,
        emit: Callable[[NodeSignal], None],
    ):
        self.state = state
        self.params = params
        self.clock = clock
        self.registry = registry
        self.rewards = rewards
        self._emit = emit

    def pending_epoch_duration(self) -> int:
        """Seconds since the last sealed epoch ended, at least 1."""
        prev = self.state.snapshot(self.state.current_sealed_epoch)
        now = self.clock.now()
        if now <= prev.end_time:
            return 1
        return now - prev.end_time

    def seal_epoch(
        self,
        offline_times: Sequence[int],
        offline_blocks: Sequence[int],
        uptimes: Sequence[int],
        originated_txs_fee: Sequence[int],
        epoch_gas: int,
    ) -> EpochSealResult:
        """
        Seal the open epoch.

        Args:
            offline_times: Offline seconds per validator of the epoch's set
            offline_blocks: Missed blocks per validator
            uptimes: Uptime seconds per validator
            originated_txs_fee: Accumulated originated fee per validator
            epoch_gas: Gas consumed during the epoch

        Returns:
            EpochSealResult with all changes

        Raises:
            MalformedMetrics: If a metric list does not match the validator set
        """
        epoch = self.state.current_epoch
        snapshot = self.state.snapshot(epoch)
        prev_snapshot = self.state.snapshot(self.state.current_sealed_epoch)
        validator_ids = list(snapshot.validator_ids)

        lengths = (len(offline_times), len(offline_blocks), len(uptimes), len(originated_txs_fee))
        if any(n != len(validator_ids) for n in lengths):
            raise MalformedMetrics(len(validator_ids), lengths)

        duration = self.pending_epoch_duration()
        result = EpochSealResult(epoch=epoch, duration=duration)

        # Genesis import ends with the first sealed epoch
        self.state.genesis_open = False

        # 1. Offline penalties
        self._seal_offline(snapshot, validator_ids, offline_times, offline_blocks, result)

        # 2. Rewards
        self._seal_rewards(
            duration, snapshot, prev_snapshot, validator_ids, uptimes, originated_txs_fee, result
        )

        # 3. Average uptime
        self._seal_average_uptime(duration, validator_ids, uptimes, result)

        # 4. Minimum gas price
        self._seal_min_gas_price(duration, epoch_gas, result)

        # 5. Finalize snapshot
        now = self.clock.now()
        self.state.current_sealed_epoch = epoch
        snapshot.end_time = now
        snapshot.end_block = self.clock.block_number()
        snapshot.base_reward_per_second = self.params.base_reward_per_second
        snapshot.total_supply = self.state.total_supply
        result.end_time = now

        logger.info(
            f"Sealed epoch {epoch}: duration={duration}s, "
            f"validators={len(validator_ids)}, "
            f"rewards={result.total_raw_reward}, "
            f"fee={result.epoch_fee}, "
            f"offline={len(result.offline_validators) + len(result.low_uptime_validators)}, "
            f"min_gas_price={result.min_gas_price}"
        )
        return result

    def _seal_offline(
        self,
        snapshot: EpochSnapshot,
        validator_ids: List[int],
        offline_times: Sequence[int],
        offline_blocks: Sequence[int],
        result: EpochSealResult,
    ) -> None:
        """Deactivate validators offline for too long and record offline metrics."""
        threshold_blocks = self.params.offline_penalty_threshold_blocks_num
        threshold_time = self.params.offline_penalty_threshold_time

        for i, validator_id in enumerate(validator_ids):
            if offline_blocks[i] > threshold_blocks and offline_times[i] >= threshold_time:
                self.registry.set_deactivated(validator_id, OFFLINE_BIT)
                self.registry.sync(validator_id)
                result.offline_validators.append(validator_id)
                logger.warning(
                    f"Validator #{validator_id} offline for {offline_times[i]}s "
                    f"({offline_blocks[i]} blocks) in epoch {result.epoch}"
                )

            snapshot.offline_time[validator_id] = offline_times[i]
            snapshot.offline_blocks[validator_id] = offline_blocks[i]

    def _seal_rewards(
        self,
        duration: int,
        snapshot: EpochSnapshot,
        prev_snapshot: EpochSnapshot,
        validator_ids: List[int],
        uptimes: Sequence[int],
        originated_txs_fee: Sequence[int],
        result: EpochSealResult,
    ) -> None:
        """Settle the reward pool and write accumulators into the snapshot."""
        settlement = self.rewards.settle_epoch(
            duration, snapshot, prev_snapshot, validator_ids, uptimes, originated_txs_fee
        )

        for i, s in enumerate(settlement.validators):
            validator_id = s.validator_id

            # Commission goes straight into the validator's own stash
            if s.commission_rewards.total:
                auth = self.state.validators[validator_id].auth
                record = self.state.delegation(auth, validator_id)
                record.rewards_stash = record.rewards_stash + s.commission_rewards
                record.stashed_lockup_rewards = record.stashed_lockup_rewards + s.commission_rewards

            snapshot.accumulated_reward_per_token[validator_id] = (
                prev_snapshot.accumulated_reward_per_token.get(validator_id, 0) + s.reward_per_token
            )
            snapshot.accumulated_originated_txs_fee[validator_id] = originated_txs_fee[i]
            snapshot.accumulated_uptime[validator_id] = (
                prev_snapshot.accumulated_uptime.get(validator_id, 0) + uptimes[i]
            )

            result.rewards_by_validator[validator_id] = s.raw_reward
            result.reward_per_token[validator_id] = s.reward_per_token

        snapshot.epoch_fee = settlement.epoch_fee
        snapshot.total_base_reward_weight = settlement.total_base_reward_weight
        snapshot.total_tx_reward_weight = settlement.total_tx_reward_weight

        self.state.burn(settlement.epoch_fee)
        if settlement.treasury_fee:
            self.state.mint(settlement.treasury_fee)
            logger.debug(
                f"Minted treasury fee amount={settlement.treasury_fee} to {self.state.treasury_address}"
            )

        result.epoch_fee = settlement.epoch_fee
        result.treasury_fee = settlement.treasury_fee
        result.total_raw_reward = settlement.total_raw_reward

    def _seal_average_uptime(
        self,
        duration: int,
        validator_ids: List[int],
        uptimes: Sequence[int],
        result: EpochSealResult,
    ) -> None:
        """Push uptime ratios into each validator's window and deactivate low averages."""
        window_size = self.params.average_uptime_epoch_window
        min_average = self.params.min_average_uptime

        for i, validator_id in enumerate(validator_ids):
            ratio = uptimes[i] * DECIMAL_UNIT // duration
            if ratio > DECIMAL_UNIT:
                ratio = DECIMAL_UNIT

            window = self.state.uptime_window(validator_id, window_size)
            window.append(ratio)
            average = sum(window) // len(window)

            if min_average and average < min_average:
                if self.registry.set_deactivated(validator_id, OFFLINE_BIT):
                    self.registry.sync(validator_id)
                    result.low_uptime_validators.append(validator_id)
                    logger.warning(
                        f"Validator #{validator_id} average uptime {average} "
                        f"below {min_average} in epoch {result.epoch}"
                    )

    def _seal_min_gas_price(self, duration: int, epoch_gas: int, result: EpochSealResult) -> None:
        self.state.min_gas_price = next_min_gas_price(
            self.state.min_gas_price,
            duration,
            epoch_gas,
            self.params.target_gas_power_per_second,
            self.params.gas_price_balancing_counterweight,
        )
        result.min_gas_price = self.state.min_gas_price

    def average_uptime(self, validator_id: int) -> int:
        """Average uptime ratio over the validator's window, 0 if never sealed."""
        window = self.state.uptime_windows.get(validator_id)
        if not window:
            return 0
        return sum(window) // len(window)

    def seal_epoch_validators(self, next_validator_ids: Sequence[int]) -> None:
        """
        Install the validator set of the open epoch.

        Raises:
            ValidatorNotExists: If an id is unknown
        """
        snapshot = self.state.snapshot(self.state.current_epoch)

        received = {}
        for validator_id in next_validator_ids:
            received[validator_id] = self.registry.get(validator_id).received_stake

        snapshot.validator_ids = list(next_validator_ids)
        snapshot.received_stake = received
        snapshot.total_stake = sum(received.values())

        self._emit(NodeSignal(SignalKind.MIN_GAS_PRICE, value=self.state.min_gas_price))
        logger.debug(
            f"Epoch {self.state.current_epoch} validator set: {len(received)} validators, "
            f"total stake amount={snapshot.total_stake}"
        )
