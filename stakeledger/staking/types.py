"""
Stake Ledger Types

Core data types for validators, delegations, withdrawals and epoch snapshots,
plus the `LedgerState` struct that owns all of them.
"""

import copy
from collections import deque
from dataclasses import dataclass, field
from enum import IntFlag
from typing import Deque, Dict, List, Optional, Tuple

from ..constants import (
    OK_STATUS,
    WITHDRAWN_BIT,
    OFFLINE_BIT,
    DOUBLESIGN_BIT,
    CHEATER_MASK,
    INITIAL_MIN_GAS_PRICE,
)


class ValidatorStatus(IntFlag):
    """
    Validator status bits.

    A validator is active only when no bit is set. Larger values are more
    severe, so a deactivation must always raise the numeric status.
    """
    OK         = OK_STATUS
    WITHDRAWN  = WITHDRAWN_BIT    # All self-stake undelegated
    OFFLINE    = OFFLINE_BIT      # Missed too many blocks or uptime too low
    DOUBLESIGN = DOUBLESIGN_BIT   # Cheater, stake subject to slashing


@dataclass
class Validator:
    """
    Represents a validator registered in the ledger.

    Attributes:
        validator_id: Sequential id, immutable once assigned
        auth: Authority address operating the validator
        pubkey: Consensus public key
        status: Status bitmask (0 = active)
        created_epoch: Epoch of registration
        created_time: Time of registration
        deactivated_epoch: Epoch of first deactivation (0 while active)
        deactivated_time: Time of first deactivation (0 while active)
        received_stake: Sum of all stake delegated to it, self-stake included
        slashing_refund_ratio: Share of stake refunded after slashing (fixed-point)
    """
    validator_id: int
    auth: str
    pubkey: bytes
    status: int = OK_STATUS
    created_epoch: int = 0
    created_time: int = 0
    deactivated_epoch: int = 0
    deactivated_time: int = 0
    received_stake: int = 0
    slashing_refund_ratio: int = 0

    @property
    def is_active(self) -> bool:
        return self.status == OK_STATUS

    @property
    def is_slashed(self) -> bool:
        return bool(self.status & CHEATER_MASK)

    @property
    def pubkey_hex(self) -> str:
        return self.pubkey.hex()

    def to_dict(self) -> dict:
        return {
            'validator_id': self.validator_id,
            'auth': self.auth,
            'pubkey': self.pubkey.hex(),
            'status': self.status,
            'created_epoch': self.created_epoch,
            'created_time': self.created_time,
            'deactivated_epoch': self.deactivated_epoch,
            'deactivated_time': self.deactivated_time,
            'received_stake': str(self.received_stake),
            'slashing_refund_ratio': str(self.slashing_refund_ratio),
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'Validator':
        return cls(
            validator_id=data['validator_id'],
            auth=data['auth'],
            pubkey=bytes.fromhex(data['pubkey']),
            status=data.get('status', OK_STATUS),
            created_epoch=data.get('created_epoch', 0),
            created_time=data.get('created_time', 0),
            deactivated_epoch=data.get('deactivated_epoch', 0),
            deactivated_time=data.get('deactivated_time', 0),
            received_stake=int(data.get('received_stake', 0)),
            slashing_refund_ratio=int(data.get('slashing_refund_ratio', 0)),
        )


@dataclass
class Rewards:
    """Reward amounts split by how they were earned."""
    lockup_extra_reward: int = 0
    lockup_base_reward: int = 0
    unlocked_reward: int = 0

    @property
    def total(self) -> int:
        return self.lockup_extra_reward + self.lockup_base_reward + self.unlocked_reward

    @property
    def lockup_reward(self) -> int:
        return self.lockup_extra_reward + self.lockup_base_reward

    def __add__(self, other: 'Rewards') -> 'Rewards':
        return Rewards(
            lockup_extra_reward=self.lockup_extra_reward + other.lockup_extra_reward,
            lockup_base_reward=self.lockup_base_reward + other.lockup_base_reward,
            unlocked_reward=self.unlocked_reward + other.unlocked_reward,
        )

    def to_dict(self) -> dict:
        return {
            'lockup_extra_reward': str(self.lockup_extra_reward),
            'lockup_base_reward': str(self.lockup_base_reward),
            'unlocked_reward': str(self.unlocked_reward),
        }


@dataclass
class LockedDelegation:
    """
    Lockup window of a delegation.

    `from_epoch` is the start epoch of the current lock episode; it moves
    forward on every lock and relock.
    """
    locked_stake: int = 0
    from_epoch: int = 0
    end_time: int = 0
    duration: int = 0

    def to_dict(self) -> dict:
        return {
            'locked_stake': str(self.locked_stake),
            'from_epoch': self.from_epoch,
            'end_time': self.end_time,
            'duration': self.duration,
        }


@dataclass
class Penalty:
    """Early-unlock penalty left behind by a relocked episode, chargeable until `end`."""
    amount: int
    end: int


@dataclass
class Delegation:
    """
    Stake of one account behind one validator.

    Attributes:
        stake: Total stake, locked part included
        lockup: Current lockup window
        rewards_stash: Rewards computed but not yet claimed
        stashed_lockup_rewards: Lockup rewards earned by the current episode
        stashed_rewards_until_epoch: Epoch up to which rewards are stashed
        stashed_penalties: Penalties of superseded episodes, one per ongoing relock
    """
    stake: int = 0
    lockup: LockedDelegation = field(default_factory=LockedDelegation)
    rewards_stash: Rewards = field(default_factory=Rewards)
    stashed_lockup_rewards: Rewards = field(default_factory=Rewards)
    stashed_rewards_until_epoch: int = 0
    stashed_penalties: List[Penalty] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            'stake': str(self.stake),
            'lockup': self.lockup.to_dict(),
            'rewards_stash': self.rewards_stash.to_dict(),
            'stashed_lockup_rewards': self.stashed_lockup_rewards.to_dict(),
            'stashed_rewards_until_epoch': self.stashed_rewards_until_epoch,
            'stashed_penalties': [
                {'amount': str(p.amount), 'end': p.end} for p in self.stashed_penalties
            ],
        }


@dataclass
class WithdrawalRequest:
    """Undelegated stake waiting for its withdrawal delay."""
    amount: int
    epoch: int
    time: int

    def to_dict(self) -> dict:
        return {
            'amount': str(self.amount),
            'epoch': self.epoch,
            'time': self.time,
        }


@dataclass
class EpochSnapshot:
    """
    Aggregate record of one epoch.

    The snapshot of the open epoch is filled with the validator set by
    `seal_epoch_validators` and finalized by `seal_epoch`. Sealed snapshots
    are never modified.
    """
    end_time: int = 0
    end_block: int = 0
    epoch_fee: int = 0
    total_base_reward_weight: int = 0
    total_tx_reward_weight: int = 0
    base_reward_per_second: int = 0
    total_stake: int = 0
    total_supply: int = 0
    validator_ids: List[int] = field(default_factory=list)

    # Per-validator records
    received_stake: Dict[int, int] = field(default_factory=dict)
    accumulated_reward_per_token: Dict[int, int] = field(default_factory=dict)
    accumulated_uptime: Dict[int, int] = field(default_factory=dict)
    accumulated_originated_txs_fee: Dict[int, int] = field(default_factory=dict)
    offline_time: Dict[int, int] = field(default_factory=dict)
    offline_blocks: Dict[int, int] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            'end_time': self.end_time,
            'end_block': self.end_block,
            'epoch_fee': str(self.epoch_fee),
            'total_base_reward_weight': str(self.total_base_reward_weight),
            'total_tx_reward_weight': str(self.total_tx_reward_weight),
            'base_reward_per_second': str(self.base_reward_per_second),
            'total_stake': str(self.total_stake),
            'total_supply': str(self.total_supply),
            'validator_ids': list(self.validator_ids),
        }


@dataclass
class StateCheckpoint:
    """
    Rollback point of a `LedgerState`.

    Holds a deep copy of everything except the epoch snapshots, plus copies
    of the snapshots of epochs that were not sealed yet. Sealed snapshots
    are never modified, so they are not copied.
    """
    state: 'LedgerState'
    sealed_epoch: int
    open_snapshots: Dict[int, EpochSnapshot]


DelegationKey = Tuple[str, int]
WithdrawalKey = Tuple[str, int, int]


@dataclass
class LedgerState:
    """
    Complete mutable state of the ledger.

    Held by `StakingLedger` and shared by reference with every component.
    Components mutate it only from inside an atomic ledger call.
    """
    current_sealed_epoch: int = 0
    last_validator_id: int = 0
    total_stake: int = 0
    total_active_stake: int = 0
    total_slashed_stake: int = 0
    total_supply: int = 0
    min_gas_price: int = INITIAL_MIN_GAS_PRICE
    owner: Optional[str] = None
    treasury_address: Optional[str] = None
    genesis_open: bool = True

    validators: Dict[int, Validator] = field(default_factory=dict)
    validator_ids_by_auth: Dict[str, int] = field(default_factory=dict)
    validator_ids_by_pubkey: Dict[bytes, int] = field(default_factory=dict)
    delegations: Dict[DelegationKey, Delegation] = field(default_factory=dict)
    withdrawal_requests: Dict[WithdrawalKey, WithdrawalRequest] = field(default_factory=dict)
    epoch_snapshots: Dict[int, EpochSnapshot] = field(default_factory=dict)
    uptime_windows: Dict[int, Deque[int]] = field(default_factory=dict)

    @property
    def current_epoch(self) -> int:
        return self.current_sealed_epoch + 1

    def snapshot(self, epoch: int) -> EpochSnapshot:
        """Get the snapshot of an epoch, creating an empty record for a new epoch."""
        snapshot = self.epoch_snapshots.get(epoch)
        if snapshot is None:
            snapshot = EpochSnapshot()
            self.epoch_snapshots[epoch] = snapshot
        return snapshot

    def delegation(self, delegator: str, validator_id: int) -> Delegation:
        """Get the delegation record, creating it on first use."""
        key = (delegator, validator_id)
        record = self.delegations.get(key)
        if record is None:
            record = Delegation()
            self.delegations[key] = record
        return record

    def peek_delegation(self, delegator: str, validator_id: int) -> Delegation:
        """Read-only view of a delegation; unknown pairs read as empty."""
        return self.delegations.get((delegator, validator_id)) or Delegation()

    def mint(self, amount: int) -> None:
        self.total_supply += amount

    def burn(self, amount: int) -> None:
        """Remove `amount` from the total supply, flooring at zero."""
        self.total_supply = max(0, self.total_supply - amount)

    def uptime_window(self, validator_id: int, size: int) -> Deque[int]:
        """Ring buffer of recent uptime ratios, resized when the window changes."""
        window = self.uptime_windows.get(validator_id)
        if window is None or window.maxlen != size:
            window = deque(window or (), maxlen=size)
            self.uptime_windows[validator_id] = window
        return window

    def checkpoint(self) -> StateCheckpoint:
        shell = copy.copy(self)
        shell.epoch_snapshots = {}
        open_snapshots = {}
        # Snapshots are inserted in epoch order
        for epoch in reversed(self.epoch_snapshots):
            if epoch <= self.current_sealed_epoch:
                break
            open_snapshots[epoch] = copy.deepcopy(self.epoch_snapshots[epoch])
        return StateCheckpoint(copy.deepcopy(shell), self.current_sealed_epoch, open_snapshots)

    def restore(self, checkpoint: StateCheckpoint) -> None:
        """Roll back in place to `checkpoint`; references to this object stay valid."""
        snapshots = self.epoch_snapshots
        while snapshots and next(reversed(snapshots)) > checkpoint.sealed_epoch:
            snapshots.popitem()
        snapshots.update(sorted(checkpoint.open_snapshots.items()))

        self.__dict__.update(checkpoint.state.__dict__)
        self.epoch_snapshots = snapshots
