"""
Stake Ledger Facade

`StakingLedger` is the single public entry point of the ledger. It checks
caller roles, runs every state-changing call atomically against the
`LedgerState` and delivers node signals to listeners once a call commits.
"""

import copy
from contextlib import contextmanager
from dataclasses import replace
from typing import Iterator, List, Optional, Sequence, Tuple, Union

from ..constants import LEDGER_VERSION
from ..logger import get_logger
from .auth import check_driver, check_new_owner, check_owner
from .clock import LedgerClock, SystemClock
from .config import LedgerConfig
from .delegation import DelegationLedger
from .driver import EpochDriver, NodeDriver, NodeSignal, deliver
from .epoch_processing import EpochSealer, EpochSealResult
from .errors import InsufficientSelfStake
from .genesis import GenesisImporter, load_genesis_file
from .params import EconomicParameters, ParameterStore
from .registry import ValidatorRegistry
from .rewards import RewardEngine
from .types import (
    EpochSnapshot,
    LedgerState,
    LockedDelegation,
    Penalty,
    Rewards,
    StateCheckpoint,
    Validator,
)
from .withdrawals import WithdrawalManager

logger = get_logger(__name__)


class StakingLedger:
    """
    Validator staking and epoch reward ledger.

    Every state-changing method takes the calling address as its first
    argument. Driver entry points require the configured driver address,
    owner entry points the ledger owner.

    Example:
        ledger = StakingLedger(driver="node", owner="admin", clock=ManualClock(1000))
        node = NodeDriver("node").attach(ledger)
        validator_id = ledger.create_validator("alice", b"\\xc0\\x01", amount)
        node.seal_epoch()
    """

    def __init__(
        self,
        driver: str,
        params: Union[ParameterStore, EconomicParameters, None] = None,
        owner: Optional[str] = None,
        clock: Optional[LedgerClock] = None,
        sealed_epoch: int = 0,
        total_supply: int = 0,
        treasury: Optional[str] = None,
    ):
        """
        Initialize the ledger.

        Args:
            driver: Address allowed to seal epochs and import genesis
            params: Parameter store, or parameters for a store owned by `owner`
            owner: Ledger owner
            clock: Time source (wall clock if omitted)
            sealed_epoch: Epoch the ledger starts after
            total_supply: Initial total supply
            treasury: Receiver of the treasury fee share
        """
        if not isinstance(params, ParameterStore):
            params = ParameterStore(params, owner=owner)

        self.driver = driver
        self.params = params
        self.clock = clock or SystemClock()

        self.state = LedgerState(
            current_sealed_epoch=sealed_epoch,
            total_supply=total_supply,
            owner=owner,
            treasury_address=treasury,
        )
        self.state.snapshot(sealed_epoch).end_time = self.clock.now()

        self._listeners: List[EpochDriver] = []
        self._outbox: List[NodeSignal] = []

        self.registry = ValidatorRegistry(self.state, self.params, self.clock, self._emit)
        self.rewards = RewardEngine(self.state, self.params, self.clock)
        self.delegations = DelegationLedger(
            self.state, self.params, self.clock, self.registry, self.rewards
        )
        self.withdrawals = WithdrawalManager(self.state, self.params, self.clock, self.registry)
        self.sealer = EpochSealer(
            self.state, self.params, self.clock, self.registry, self.rewards, self._emit
        )
        self.genesis = GenesisImporter(self.state, self.registry, self.delegations)

        logger.info(
            f"Stake ledger v{LEDGER_VERSION} started after epoch {sealed_epoch} "
            f"(driver={driver}, owner={owner})"
        )

    @classmethod
    def from_config(cls, config: LedgerConfig, clock: Optional[LedgerClock] = None) -> 'StakingLedger':
        """Build a ledger from a validated configuration."""
        config.validate()
        return cls(
            driver=config.driver,
            params=config.economics.parameters,
            owner=config.owner or None,
            clock=clock,
            sealed_epoch=config.sealed_epoch,
            total_supply=config.total_supply_units,
            treasury=config.treasury or None,
        )

    @property
    def version(self) -> str:
        return LEDGER_VERSION

    # =========================================================================
    # ATOMICITY AND SIGNALS
    # =========================================================================

    def add_listener(self, listener: EpochDriver) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: EpochDriver) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _emit(self, signal: NodeSignal) -> None:
        self._outbox.append(signal)

    def _restore(self, checkpoint: StateCheckpoint) -> None:
        # Restore in place, components hold references to self.state
        self.state.restore(checkpoint)
        self._outbox = []

    @contextmanager
    def _atomic(self, operation: str) -> Iterator[None]:
        """Run a call against the state; restore the state if it raises."""
        checkpoint = self.state.checkpoint()
        self._outbox = []
        try:
            yield
        except Exception as e:
            self._restore(checkpoint)
            logger.debug(f"{operation} failed, state restored: {type(e).__name__}: {e}")
            raise

        signals, self._outbox = self._outbox, []
        for signal in signals:
            for listener in self._listeners:
                deliver(listener, signal)

    # =========================================================================
    # VALIDATORS
    # =========================================================================

    def create_validator(self, caller: str, pubkey: bytes, amount: int) -> int:
        """
        Register the caller as a validator with `amount` of self-stake.

        Returns:
            The new validator id
        """
        with self._atomic('create_validator'):
            min_self_stake = self.params.min_self_stake
            if amount < min_self_stake:
                raise InsufficientSelfStake(min_self_stake, amount)
            self.registry.check_pubkey(pubkey)

            validator = self.registry.create(caller, pubkey)
            self.delegations.delegate(caller, validator.validator_id, amount)
            return validator.validator_id

    def deactivate_validator(self, caller: str, validator_id: int, status: int) -> None:
        with self._atomic('deactivate_validator'):
            check_driver(self.driver, caller)
            self.registry.deactivate(validator_id, status)

    def update_slashing_refund_ratio(self, caller: str, validator_id: int, refund_ratio: int) -> None:
        with self._atomic('update_slashing_refund_ratio'):
            check_owner(self.state.owner, caller)
            self.registry.update_slashing_refund_ratio(validator_id, refund_ratio)

    def get_validator(self, validator_id: int) -> Validator:
        return replace(self.registry.get(validator_id))

    def get_validator_id(self, auth: str) -> int:
        return self.registry.get_validator_id(auth)

    def get_validator_pubkey(self, validator_id: int) -> bytes:
        return self.registry.get(validator_id).pubkey

    def get_self_stake(self, validator_id: int) -> int:
        return self.registry.self_stake(validator_id)

    def is_slashed(self, validator_id: int) -> bool:
        return self.registry.is_slashed(validator_id)

    def slashing_refund_ratio(self, validator_id: int) -> int:
        return self.registry.get(validator_id).slashing_refund_ratio

    @property
    def last_validator_id(self) -> int:
        return self.state.last_validator_id

    # =========================================================================
    # DELEGATIONS
    # =========================================================================

    def delegate(self, caller: str, validator_id: int, amount: int) -> None:
        with self._atomic('delegate'):
            self.delegations.delegate(caller, validator_id, amount)

    def undelegate(self, caller: str, validator_id: int, request_id: int, amount: int) -> None:
        with self._atomic('undelegate'):
            self.delegations.undelegate(caller, validator_id, request_id, amount)

    def withdraw(self, caller: str, validator_id: int, request_id: int) -> int:
        """
        Complete a withdrawal request.

        Returns:
            Amount paid out after any slashing penalty
        """
        with self._atomic('withdraw'):
            return self.withdrawals.withdraw(caller, validator_id, request_id).paid

    def lock_stake(self, caller: str, validator_id: int, duration: int, amount: int) -> None:
        with self._atomic('lock_stake'):
            self.delegations.lock_stake(caller, validator_id, duration, amount)

    def relock_stake(self, caller: str, validator_id: int, duration: int, amount: int) -> None:
        with self._atomic('relock_stake'):
            self.delegations.relock_stake(caller, validator_id, duration, amount)

    def unlock_stake(self, caller: str, validator_id: int, amount: int) -> int:
        """
        Unlock stake early.

        Returns:
            The early-unlock penalty removed from the stake
        """
        with self._atomic('unlock_stake'):
            return self.delegations.unlock_stake(caller, validator_id, amount)

    def estimate_unlock_penalty(self, delegator: str, validator_id: int, amount: int) -> int:
        """Penalty `unlock_stake` would charge now; the state is left unchanged."""
        return self.delegations.estimate_unlock_penalty(delegator, validator_id, amount)

    def claim_rewards(self, caller: str, validator_id: int) -> int:
        with self._atomic('claim_rewards'):
            return self.delegations.claim_rewards(caller, validator_id).total

    def restake_rewards(self, caller: str, validator_id: int) -> int:
        with self._atomic('restake_rewards'):
            return self.delegations.restake_rewards(caller, validator_id).total

    def stash_rewards(self, delegator: str, validator_id: int) -> int:
        """Checkpoint the rewards of any delegation. Returns the amount stashed."""
        with self._atomic('stash_rewards'):
            self.registry.get(validator_id)
            return self.delegations.stash_rewards(delegator, validator_id).total

    def get_stake(self, delegator: str, validator_id: int) -> int:
        return self.delegations.get_stake(delegator, validator_id)

    def get_lockup_info(self, delegator: str, validator_id: int) -> LockedDelegation:
        return self.delegations.get_lockup_info(delegator, validator_id)

    def get_locked_stake(self, delegator: str, validator_id: int) -> int:
        return self.delegations.get_locked_stake(delegator, validator_id)

    def get_unlocked_stake(self, delegator: str, validator_id: int) -> int:
        return self.delegations.get_unlocked_stake(delegator, validator_id)

    def is_locked_up(self, delegator: str, validator_id: int) -> bool:
        return self.delegations.is_locked_up(delegator, validator_id)

    def get_stashed_penalties(self, delegator: str, validator_id: int) -> List[Penalty]:
        return self.delegations.get_stashed_penalties(delegator, validator_id)

    def pending_rewards(self, delegator: str, validator_id: int) -> int:
        return self.rewards.pending_rewards(delegator, validator_id).total

    def pending_rewards_split(self, delegator: str, validator_id: int) -> Rewards:
        return self.rewards.pending_rewards(delegator, validator_id)

    def rewards_stash(self, delegator: str, validator_id: int) -> int:
        return self.state.peek_delegation(delegator, validator_id).rewards_stash.total

    def stashed_rewards_until_epoch(self, delegator: str, validator_id: int) -> int:
        return self.state.peek_delegation(delegator, validator_id).stashed_rewards_until_epoch

    def highest_lockup_epoch(self, delegator: str, validator_id: int) -> int:
        return self.rewards.highest_lockup_epoch(self.state.peek_delegation(delegator, validator_id).lockup)

    # =========================================================================
    # EPOCHS
    # =========================================================================

    def seal_epoch(
        self,
        caller: str,
        offline_times: Sequence[int],
        offline_blocks: Sequence[int],
        uptimes: Sequence[int],
        originated_txs_fee: Sequence[int],
        epoch_gas: int = 0,
    ) -> EpochSealResult:
        with self._atomic('seal_epoch'):
            check_driver(self.driver, caller)
            return self.sealer.seal_epoch(
                offline_times, offline_blocks, uptimes, originated_txs_fee, epoch_gas
            )

    def seal_epoch_validators(self, caller: str, next_validator_ids: Sequence[int]) -> None:
        with self._atomic('seal_epoch_validators'):
            check_driver(self.driver, caller)
            self.sealer.seal_epoch_validators(next_validator_ids)

    def pending_epoch_duration(self) -> int:
        return self.sealer.pending_epoch_duration()

    @property
    def current_epoch(self) -> int:
        return self.state.current_epoch

    @property
    def current_sealed_epoch(self) -> int:
        return self.state.current_sealed_epoch

    @property
    def min_gas_price(self) -> int:
        return self.state.min_gas_price

    def average_uptime(self, validator_id: int) -> int:
        return self.sealer.average_uptime(validator_id)

    def _snapshot(self, epoch: int) -> EpochSnapshot:
        return self.state.epoch_snapshots.get(epoch) or EpochSnapshot()

    def get_epoch_snapshot(self, epoch: int) -> EpochSnapshot:
        return copy.deepcopy(self._snapshot(epoch))

    def get_epoch_validator_ids(self, epoch: int) -> List[int]:
        return list(self._snapshot(epoch).validator_ids)

    def get_epoch_received_stake(self, epoch: int, validator_id: int) -> int:
        return self._snapshot(epoch).received_stake.get(validator_id, 0)

    def get_epoch_accumulated_reward_per_token(self, epoch: int, validator_id: int) -> int:
        return self._snapshot(epoch).accumulated_reward_per_token.get(validator_id, 0)

    def get_epoch_accumulated_uptime(self, epoch: int, validator_id: int) -> int:
        return self._snapshot(epoch).accumulated_uptime.get(validator_id, 0)

    def get_epoch_accumulated_originated_txs_fee(self, epoch: int, validator_id: int) -> int:
        return self._snapshot(epoch).accumulated_originated_txs_fee.get(validator_id, 0)

    def get_epoch_offline_time(self, epoch: int, validator_id: int) -> int:
        return self._snapshot(epoch).offline_time.get(validator_id, 0)

    def get_epoch_offline_blocks(self, epoch: int, validator_id: int) -> int:
        return self._snapshot(epoch).offline_blocks.get(validator_id, 0)

    def get_epoch_end_block(self, epoch: int) -> int:
        return self._snapshot(epoch).end_block

    # =========================================================================
    # GENESIS
    # =========================================================================

    def set_genesis_validator(self, caller: str, auth: str, validator_id: int, pubkey: bytes, **kwargs) -> None:
        with self._atomic('set_genesis_validator'):
            check_driver(self.driver, caller)
            self.genesis.set_genesis_validator(auth, validator_id, pubkey, **kwargs)

    def set_genesis_delegation(self, caller: str, delegator: str, validator_id: int, stake: int, **kwargs) -> None:
        with self._atomic('set_genesis_delegation'):
            check_driver(self.driver, caller)
            self.genesis.set_genesis_delegation(delegator, validator_id, stake, **kwargs)

    # =========================================================================
    # OWNERSHIP AND TREASURY
    # =========================================================================

    @property
    def owner(self) -> Optional[str]:
        return self.state.owner

    def is_owner(self, address: str) -> bool:
        return self.state.owner is not None and address == self.state.owner

    def transfer_ownership(self, caller: str, new_owner: str) -> None:
        """Transfer the ledger, and the parameter store if it has the same owner."""
        with self._atomic('transfer_ownership'):
            check_owner(self.state.owner, caller)
            check_new_owner(new_owner)
            if self.params.owner == self.state.owner:
                self.params.transfer_ownership(caller, new_owner)
            self.state.owner = new_owner
            logger.info(f"Ledger ownership transferred to {new_owner}")

    def renounce_ownership(self, caller: str) -> None:
        with self._atomic('renounce_ownership'):
            check_owner(self.state.owner, caller)
            if self.params.owner == self.state.owner:
                self.params.renounce_ownership(caller)
            self.state.owner = None
            logger.warning("Ledger ownership renounced")

    def update_treasury_address(self, caller: str, treasury: Optional[str]) -> None:
        with self._atomic('update_treasury_address'):
            check_owner(self.state.owner, caller)
            self.state.treasury_address = treasury or None
            logger.info(f"Treasury address set to {treasury}")

    @property
    def treasury_address(self) -> Optional[str]:
        return self.state.treasury_address

    # =========================================================================
    # TOTALS
    # =========================================================================

    @property
    def total_stake(self) -> int:
        return self.state.total_stake

    @property
    def total_active_stake(self) -> int:
        return self.state.total_active_stake

    @property
    def total_slashed_stake(self) -> int:
        return self.state.total_slashed_stake

    @property
    def total_supply(self) -> int:
        return self.state.total_supply


def build_ledger(
    config: LedgerConfig, clock: Optional[LedgerClock] = None
) -> Tuple[StakingLedger, NodeDriver]:
    """
    Build a ledger with its node driver and import the configured genesis.

    Returns:
        (ledger, driver)
    """
    ledger = StakingLedger.from_config(config, clock=clock)
    node = NodeDriver(config.driver).attach(ledger)
    if config.genesis_path:
        load_genesis_file(node, config.genesis_path)
    return ledger, node
