"""
Stake Ledger Epoch Driver

The node-side counterpart of the ledger. The ledger reports validator weight,
pubkey and minimum gas price changes as `NodeSignal`s; listeners implementing
`EpochDriver` receive them after each successful call. `NodeDriver` is the
reference listener: it keeps the next validator set and seals epochs.
"""

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from ..logger import get_logger

if TYPE_CHECKING:
    from .ledger import StakingLedger
    from .epoch_processing import EpochSealResult

logger = get_logger(__name__)


class SignalKind(Enum):
    """Kinds of notifications sent to the driver."""
    VALIDATOR_WEIGHT = "validator_weight"
    VALIDATOR_PUBKEY = "validator_pubkey"
    MIN_GAS_PRICE = "min_gas_price"


@dataclass(frozen=True)
class NodeSignal:
    """One notification for the driver."""
    kind: SignalKind
    validator_id: int = 0
    value: Any = None


class EpochDriver:
    """Interface of a ledger listener."""

    def update_validator_weight(self, validator_id: int, weight: int) -> None:
        raise NotImplementedError

    def update_validator_pubkey(self, validator_id: int, pubkey: bytes) -> None:
        raise NotImplementedError

    def update_min_gas_price(self, min_gas_price: int) -> None:
        raise NotImplementedError


def deliver(listener: EpochDriver, signal: NodeSignal) -> None:
    """Dispatch a signal to the matching listener method."""
    if signal.kind is SignalKind.VALIDATOR_WEIGHT:
        listener.update_validator_weight(signal.validator_id, signal.value)
    elif signal.kind is SignalKind.VALIDATOR_PUBKEY:
        listener.update_validator_pubkey(signal.validator_id, signal.value)
    elif signal.kind is SignalKind.MIN_GAS_PRICE:
        listener.update_min_gas_price(signal.value)


@dataclass
class ValidatorMetrics:
    """
    Per-validator metrics reported for one epoch.

    Attributes:
        offline_time: Seconds the validator has been offline
        offline_blocks: Blocks the validator has missed
        uptime: Seconds online during the epoch, defaults to the epoch duration
        originated_txs_fee: Accumulated fee of transactions it originated
    """
    offline_time: int = 0
    offline_blocks: int = 0
    uptime: Optional[int] = None
    originated_txs_fee: int = 0


class NodeDriver(EpochDriver):
    """
    Reference driver that mirrors what a consensus node would keep.

    Weights reported during an epoch go to `next_validator_weights`. Sealing
    uses the current set for metrics, then installs the next set as the
    validator set of the new epoch.
    """

    def __init__(self, address: str):
        self.address = address
        self.ledger: Optional['StakingLedger'] = None
        self.validator_weights: Dict[int, int] = {}
        self.next_validator_weights: Dict[int, int] = {}
        self.validator_pubkeys: Dict[int, bytes] = {}
        self.min_gas_price: int = 0

    def attach(self, ledger: 'StakingLedger') -> 'NodeDriver':
        """Start listening to a ledger."""
        self.ledger = ledger
        ledger.add_listener(self)
        return self

    def _require_ledger(self) -> 'StakingLedger':
        if self.ledger is None:
            raise RuntimeError("Driver is not attached to a ledger")
        return self.ledger

    # =========================================================================
    # LISTENER
    # =========================================================================

    def update_validator_weight(self, validator_id: int, weight: int) -> None:
        if weight == 0:
            self.next_validator_weights.pop(validator_id, None)
        else:
            self.next_validator_weights[validator_id] = weight

    def update_validator_pubkey(self, validator_id: int, pubkey: bytes) -> None:
        self.validator_pubkeys[validator_id] = pubkey

    def update_min_gas_price(self, min_gas_price: int) -> None:
        self.min_gas_price = min_gas_price

    # =========================================================================
    # EPOCH SEALING
    # =========================================================================

    @property
    def validator_ids(self) -> List[int]:
        return sorted(self.validator_weights)

    def seal_epoch(
        self,
        metrics: Optional[Dict[int, ValidatorMetrics]] = None,
        epoch_gas: int = 0,
    ) -> 'EpochSealResult':
        """
        Seal the open epoch and rotate to the next validator set.

        Args:
            metrics: Metrics per validator of the current set; missing entries
                report full uptime and no fees
            epoch_gas: Gas consumed during the epoch

        Returns:
            Result of the epoch seal
        """
        ledger = self._require_ledger()
        metrics = metrics or {}
        ids = ledger.get_epoch_validator_ids(ledger.current_epoch)
        duration = ledger.pending_epoch_duration()

        offline_times, offline_blocks, uptimes, fees = [], [], [], []
        for validator_id in ids:
            m = metrics.get(validator_id) or ValidatorMetrics()
            offline_times.append(m.offline_time)
            offline_blocks.append(m.offline_blocks)
            uptimes.append(duration if m.uptime is None else m.uptime)
            fees.append(m.originated_txs_fee)

        result = ledger.seal_epoch(
            self.address, offline_times, offline_blocks, uptimes, fees, epoch_gas
        )

        next_ids = sorted(self.next_validator_weights)
        ledger.seal_epoch_validators(self.address, next_ids)
        self.validator_weights = dict(self.next_validator_weights)

        logger.debug(f"Driver rotated to {len(next_ids)} validators after epoch {result.epoch}")
        return result

    # =========================================================================
    # DRIVER-ONLY PROXIES
    # =========================================================================

    def deactivate_validator(self, validator_id: int, status: int) -> None:
        self._require_ledger().deactivate_validator(self.address, validator_id, status)

    def set_genesis_validator(self, auth: str, validator_id: int, pubkey: bytes, **kwargs) -> None:
        self._require_ledger().set_genesis_validator(self.address, auth, validator_id, pubkey, **kwargs)

    def set_genesis_delegation(self, delegator: str, validator_id: int, stake: int, **kwargs) -> None:
        self._require_ledger().set_genesis_delegation(self.address, delegator, validator_id, stake, **kwargs)
