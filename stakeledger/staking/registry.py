"""
Stake Ledger Validator Registry

Validator identity, status transitions and weight signalling.
"""

from typing import Callable, Optional

from ..constants import OK_STATUS, DECIMAL_UNIT
from ..logger import get_logger
from .clock import LedgerClock
from .driver import NodeSignal, SignalKind
from .errors import (
    EmptyPubkey,
    PubkeyUsedByOtherValidator,
    ValidatorDelegationLimitExceeded,
    ValidatorExists,
    ValidatorNotExists,
    ValidatorNotSlashed,
    ValueTooLarge,
    WrongValidatorStatus,
)
from .params import ParameterStore
from .types import LedgerState, Validator

logger = get_logger(__name__)


class ValidatorRegistry:
    """
    Keeps validator records and the aggregate stake counters tied to status.

    Every change of a validator's weight is reported through `emit` so the
    driver can build the next active validator set.
    """

    def __init__(
        self,
        state: LedgerState,
        params: ParameterStore,
        clock: LedgerClock,
        emit: Callable[[NodeSignal], None],
    ):
        self.state = state
        self.params = params
        self.clock = clock
        self._emit = emit

    # =========================================================================
    # QUERIES
    # =========================================================================

    def exists(self, validator_id: int) -> bool:
        return validator_id in self.state.validators

    def get(self, validator_id: int) -> Validator:
        """
        Get a validator record.

        Raises:
            ValidatorNotExists: If the id is unknown
        """
        validator = self.state.validators.get(validator_id)
        if validator is None:
            raise ValidatorNotExists(validator_id)
        return validator

    def get_validator_id(self, auth: str) -> int:
        """Id of the validator operated by `auth`, 0 if none."""
        return self.state.validator_ids_by_auth.get(auth, 0)

    def self_stake(self, validator_id: int) -> int:
        validator = self.get(validator_id)
        return self.state.peek_delegation(validator.auth, validator_id).stake

    def is_slashed(self, validator_id: int) -> bool:
        return self.get(validator_id).is_slashed

    def delegation_limit(self, validator_id: int) -> int:
        """Maximum received stake allowed by the validator's self-stake."""
        return self.self_stake(validator_id) * self.params.max_delegated_ratio // DECIMAL_UNIT

    def check_delegation_limit(self, validator_id: int) -> None:
        """
        Raises:
            ValidatorDelegationLimitExceeded: If received stake is above the limit
        """
        received = self.get(validator_id).received_stake
        limit = self.delegation_limit(validator_id)
        if received > limit:
            raise ValidatorDelegationLimitExceeded(validator_id, received, limit)

    # =========================================================================
    # REGISTRATION
    # =========================================================================

    def check_pubkey(self, pubkey: bytes) -> None:
        """
        Raises:
            EmptyPubkey: If the pubkey is empty
            PubkeyUsedByOtherValidator: If the pubkey is registered
        """
        if not pubkey:
            raise EmptyPubkey()
        owner_id = self.state.validator_ids_by_pubkey.get(bytes(pubkey))
        if owner_id is not None:
            raise PubkeyUsedByOtherValidator(owner_id)

    def create(
        self,
        auth: str,
        pubkey: bytes,
        validator_id: Optional[int] = None,
        status: int = OK_STATUS,
        created_epoch: Optional[int] = None,
        created_time: Optional[int] = None,
        deactivated_epoch: int = 0,
        deactivated_time: int = 0,
    ) -> Validator:
        """
        Register a validator record without stake.

        Args:
            auth: Authority address
            pubkey: Consensus public key
            validator_id: Explicit id (genesis import), next sequential id if omitted
            status: Initial status bits
            created_epoch: Defaults to the current epoch
            created_time: Defaults to now
            deactivated_epoch: Deactivation epoch for imported inactive validators
            deactivated_time: Deactivation time for imported inactive validators

        Returns:
            The new validator record

        Raises:
            ValidatorExists: If `auth` or the id is already registered
        """
        existing = self.get_validator_id(auth)
        if existing:
            raise ValidatorExists(auth, existing)

        if validator_id is None:
            validator_id = self.state.last_validator_id + 1
        elif validator_id in self.state.validators:
            raise ValidatorExists(self.state.validators[validator_id].auth, validator_id)

        validator = Validator(
            validator_id=validator_id,
            auth=auth,
            pubkey=bytes(pubkey),
            status=status,
            created_epoch=self.state.current_epoch if created_epoch is None else created_epoch,
            created_time=self.clock.now() if created_time is None else created_time,
            deactivated_epoch=deactivated_epoch,
            deactivated_time=deactivated_time,
        )

        self.state.validators[validator_id] = validator
        self.state.validator_ids_by_auth[auth] = validator_id
        self.state.validator_ids_by_pubkey[validator.pubkey] = validator_id
        self.state.last_validator_id = max(self.state.last_validator_id, validator_id)

        logger.info(
            f"Created validator #{validator_id} for {auth} "
            f"(epoch {validator.created_epoch}, status={status})"
        )
        return validator

    # =========================================================================
    # STATUS
    # =========================================================================

    def set_deactivated(self, validator_id: int, status: int) -> bool:
        """
        Raise the validator's status if `status` is more severe.

        Returns:
            True if the status changed
        """
        validator = self.get(validator_id)

        if validator.status == OK_STATUS and status != OK_STATUS:
            self.state.total_active_stake -= validator.received_stake

        if status <= validator.status:
            return False

        validator.status |= status
        if validator.deactivated_epoch == 0:
            validator.deactivated_epoch = self.state.current_epoch
            validator.deactivated_time = self.clock.now()
            logger.warning(
                f"Deactivated validator #{validator_id} at epoch {validator.deactivated_epoch}"
            )
        logger.info(f"Validator #{validator_id} status changed to {validator.status}")
        return True

    def deactivate(self, validator_id: int, status: int) -> None:
        """
        Driver-initiated deactivation.

        Raises:
            ValidatorNotExists: If the id is unknown
            WrongValidatorStatus: If `status` is zero or not more severe than the current one
        """
        validator = self.get(validator_id)
        if status == OK_STATUS or status <= validator.status:
            raise WrongValidatorStatus(validator_id, validator.status, status)

        self.set_deactivated(validator_id, status)
        self.sync(validator_id)

    def sync(self, validator_id: int, sync_pubkey: bool = False) -> None:
        """Report the validator's current weight to the driver."""
        validator = self.get(validator_id)
        weight = validator.received_stake if validator.is_active else 0

        self._emit(NodeSignal(SignalKind.VALIDATOR_WEIGHT, validator_id, weight))
        if sync_pubkey and weight != 0:
            self._emit(NodeSignal(SignalKind.VALIDATOR_PUBKEY, validator_id, validator.pubkey))

    # =========================================================================
    # SLASHING
    # =========================================================================

    def update_slashing_refund_ratio(self, validator_id: int, refund_ratio: int) -> None:
        """
        Set the share of stake refunded to delegators of a slashed validator.

        Raises:
            ValidatorNotSlashed: If the validator is not a cheater
            ValueTooLarge: If the ratio exceeds 1.0
        """
        validator = self.get(validator_id)
        if not validator.is_slashed:
            raise ValidatorNotSlashed(validator_id)
        if refund_ratio > DECIMAL_UNIT:
            raise ValueTooLarge('refund_ratio', refund_ratio, DECIMAL_UNIT)

        validator.slashing_refund_ratio = refund_ratio
        logger.info(f"Slashing refund ratio of validator #{validator_id} set to {refund_ratio}")
