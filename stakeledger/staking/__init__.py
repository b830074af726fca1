"""
Stake Ledger Staking Module

Implements validator staking with epoch-based rewards.

Components:
- StakingLedger: Public entry point, role checks and atomic calls
- ParameterStore: Owner-administered economic parameters
- ValidatorRegistry: Validator identity, status and weight signals
- DelegationLedger: Stake, lockups, reward checkpoints and penalties
- RewardEngine: Reward accrual, lockup scaling and epoch settlement
- EpochSealer: Epoch transitions, uptime and gas price control loops
- WithdrawalManager: Delayed withdrawals and slashing haircuts
- GenesisImporter: Bootstrap import of validators and delegations
- NodeDriver: Reference driver tracking validator sets and sealing epochs

Usage:
    from stakeledger.staking import LedgerConfig, build_ledger

    config = LedgerConfig.from_file("config.toml").apply_env()
    ledger, node = build_ledger(config)
    node.seal_epoch()
"""

from .ledger import StakingLedger, build_ledger
from .params import EconomicParameters, ParameterStore, PARAMETER_BOUNDS
from .config import (
    EconomicsConfig,
    LedgerConfig,
    parse_token_amount,
    format_token_amount,
)
from .clock import LedgerClock, SystemClock, ManualClock
from .driver import (
    EpochDriver,
    NodeDriver,
    NodeSignal,
    SignalKind,
    ValidatorMetrics,
)
from .types import (
    ValidatorStatus,
    Validator,
    Rewards,
    LockedDelegation,
    Penalty,
    Delegation,
    WithdrawalRequest,
    EpochSnapshot,
    LedgerState,
    StateCheckpoint,
)
from .registry import ValidatorRegistry
from .delegation import DelegationLedger
from .rewards import RewardEngine, EpochSettlement, ValidatorSettlement
from .epoch_processing import EpochSealer, EpochSealResult, next_min_gas_price
from .withdrawals import WithdrawalManager, Withdrawal, slashing_penalty
from .genesis import (
    GenesisImporter,
    GenesisValidator,
    GenesisDelegation,
    load_genesis,
    load_genesis_file,
)
from .errors import (
    StakingError,
    AuthorizationError,
    InvalidParameterError,
    NotFoundError,
    StateError,
)


__all__ = [
    # Ledger
    'StakingLedger',
    'build_ledger',

    # Parameters and configuration
    'EconomicParameters',
    'ParameterStore',
    'PARAMETER_BOUNDS',
    'EconomicsConfig',
    'LedgerConfig',
    'parse_token_amount',
    'format_token_amount',

    # Clock
    'LedgerClock',
    'SystemClock',
    'ManualClock',

    # Driver
    'EpochDriver',
    'NodeDriver',
    'NodeSignal',
    'SignalKind',
    'ValidatorMetrics',

    # Types
    'ValidatorStatus',
    'Validator',
    'Rewards',
    'LockedDelegation',
    'Penalty',
    'Delegation',
    'WithdrawalRequest',
    'EpochSnapshot',
    'LedgerState',
    'StateCheckpoint',

    # Components
    'ValidatorRegistry',
    'DelegationLedger',
    'RewardEngine',
    'EpochSettlement',
    'ValidatorSettlement',
    'EpochSealer',
    'EpochSealResult',
    'next_min_gas_price',
    'WithdrawalManager',
    'Withdrawal',
    'slashing_penalty',
    'GenesisImporter',
    'GenesisValidator',
    'GenesisDelegation',
    'load_genesis',
    'load_genesis_file',

    # Errors
    'StakingError',
    'AuthorizationError',
    'InvalidParameterError',
    'NotFoundError',
    'StateError',
]
