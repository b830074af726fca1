"""
Stake Ledger Errors

Named failure conditions raised by ledger operations. Every failure aborts
the whole call; the ledger state is left exactly as it was before the call.
"""

from typing import Optional

from ..exceptions import StakeLedgerException


class StakingError(StakeLedgerException):
    """Base exception for ledger operations."""
    pass


# =============================================================================
# AUTHORIZATION
# =============================================================================

class AuthorizationError(StakingError):
    """Raised when the caller does not hold the required role."""
    pass


class NotDriverAuth(AuthorizationError):
    """Raised when a driver-only entry point is called by someone else."""
    def __init__(self, caller: str):
        self.caller = caller
        super().__init__(f"Caller {caller!r} is not the epoch driver")


class NotOwner(AuthorizationError):
    """Raised when an owner-only entry point is called by someone else."""
    def __init__(self, caller: str):
        self.caller = caller
        super().__init__(f"Caller {caller!r} is not the owner")


# =============================================================================
# INVALID PARAMETERS
# =============================================================================

class InvalidParameterError(StakingError):
    """Raised when an argument is out of its accepted domain."""
    pass


class ZeroAmount(InvalidParameterError):
    """Raised when an amount must be positive."""
    def __init__(self):
        super().__init__("Amount must be greater than zero")


class IncorrectDuration(InvalidParameterError):
    """Raised when a lockup duration is outside the configured bounds."""
    def __init__(self, duration: int, minimum: int, maximum: int):
        self.duration = duration
        self.minimum = minimum
        self.maximum = maximum
        super().__init__(
            f"Lockup duration {duration}s outside [{minimum}s, {maximum}s]"
        )


class LockupDurationDecreased(InvalidParameterError):
    """Raised when a relock asks for a shorter duration than the current lock."""
    def __init__(self, duration: int, previous: int):
        self.duration = duration
        self.previous = previous
        super().__init__(
            f"Lockup duration cannot decrease ({duration}s < {previous}s)"
        )


class ValueTooSmall(InvalidParameterError):
    """Raised when a parameter update is below its allowed range."""
    def __init__(self, name: str, value: int, minimum: int):
        self.name = name
        self.value = value
        self.minimum = minimum
        super().__init__(f"{name}={value} is below the minimum {minimum}")


class ValueTooLarge(InvalidParameterError):
    """Raised when a parameter update is above its allowed range."""
    def __init__(self, name: str, value: int, maximum: int):
        self.name = name
        self.value = value
        self.maximum = maximum
        super().__init__(f"{name}={value} is above the maximum {maximum}")


class EmptyPubkey(InvalidParameterError):
    """Raised when a validator is registered without a public key."""
    def __init__(self):
        super().__init__("Validator pubkey must not be empty")


class MalformedMetrics(InvalidParameterError):
    """Raised when seal metrics do not line up with the epoch's validator set."""
    def __init__(self, expected: int, lengths: tuple):
        self.expected = expected
        self.lengths = lengths
        super().__init__(
            f"Epoch metrics must have {expected} entries each, got {lengths}"
        )


class InvalidOwner(InvalidParameterError):
    """Raised when ownership would be transferred to an empty address."""
    def __init__(self, owner: Optional[str]):
        self.owner = owner
        super().__init__(f"Invalid owner address: {owner!r}")


class LockedStakeGreaterThanTotalStake(InvalidParameterError):
    """Raised when imported locked stake exceeds the delegation's stake."""
    def __init__(self, locked: int, stake: int):
        self.locked = locked
        self.stake = stake
        super().__init__(f"Locked stake {locked} exceeds total stake {stake}")


# =============================================================================
# EXISTENCE
# =============================================================================

class NotFoundError(StakingError):
    """Raised when a referenced record does not exist."""
    pass


class ValidatorNotExists(NotFoundError):
    """Raised when a validator id is unknown."""
    def __init__(self, validator_id: int):
        self.validator_id = validator_id
        super().__init__(f"Validator #{validator_id} does not exist")


class RequestNotExists(NotFoundError):
    """Raised when a withdrawal request is unknown."""
    def __init__(self, delegator: str, validator_id: int, request_id: int):
        self.delegator = delegator
        self.validator_id = validator_id
        self.request_id = request_id
        super().__init__(
            f"Withdrawal request {request_id} of {delegator!r} "
            f"to validator #{validator_id} does not exist"
        )


# =============================================================================
# STATE
# =============================================================================

class StateError(StakingError):
    """Raised when the ledger state does not allow the operation."""
    pass


class InsufficientSelfStake(StateError):
    """Raised when a validator's self-stake would fall below the minimum."""
    def __init__(self, required: int, actual: int):
        self.required = required
        self.actual = actual
        super().__init__(
            f"Insufficient self-stake: {actual} (required: {required})"
        )


class ValidatorExists(StateError):
    """Raised when an account already operates a validator."""
    def __init__(self, auth: str, validator_id: int):
        self.auth = auth
        self.validator_id = validator_id
        super().__init__(f"{auth!r} already operates validator #{validator_id}")


class PubkeyUsedByOtherValidator(StateError):
    """Raised when a pubkey is already registered."""
    def __init__(self, validator_id: int):
        self.validator_id = validator_id
        super().__init__(f"Pubkey already used by validator #{validator_id}")


class ValidatorNotActive(StateError):
    """Raised when an operation needs an active validator."""
    def __init__(self, validator_id: int, status: int):
        self.validator_id = validator_id
        self.status = status
        super().__init__(f"Validator #{validator_id} is not active (status={status})")


class WrongValidatorStatus(StateError):
    """Raised when a deactivation would not make the validator more inactive."""
    def __init__(self, validator_id: int, current: int, requested: int):
        self.validator_id = validator_id
        self.current = current
        self.requested = requested
        super().__init__(
            f"Cannot move validator #{validator_id} from status {current} to {requested}"
        )


class ValidatorDelegationLimitExceeded(StateError):
    """Raised when received stake would exceed self-stake times the max ratio."""
    def __init__(self, validator_id: int, received: int, limit: int):
        self.validator_id = validator_id
        self.received = received
        self.limit = limit
        super().__init__(
            f"Validator #{validator_id} delegations limit exceeded: {received} > {limit}"
        )


class ValidatorNotSlashed(StateError):
    """Raised when a refund ratio is set for a validator that was not slashed."""
    def __init__(self, validator_id: int):
        self.validator_id = validator_id
        super().__init__(f"Validator #{validator_id} is not slashed")


class NotEnoughUnlockedStake(StateError):
    """Raised when an amount exceeds the unlocked part of a delegation."""
    def __init__(self, requested: int, available: int):
        self.requested = requested
        self.available = available
        super().__init__(
            f"Not enough unlocked stake: requested {requested}, available {available}"
        )


class NotEnoughLockedStake(StateError):
    """Raised when an unlock exceeds the locked part of a delegation."""
    def __init__(self, requested: int, available: int):
        self.requested = requested
        self.available = available
        super().__init__(
            f"Not enough locked stake: requested {requested}, available {available}"
        )


class AlreadyLockedUp(StateError):
    """Raised when a lock is requested while another one is active."""
    def __init__(self, delegator: str, validator_id: int):
        self.delegator = delegator
        self.validator_id = validator_id
        super().__init__(f"{delegator!r} is already locked up on validator #{validator_id}")


class NotLockedUp(StateError):
    """Raised when an unlock is requested without an active lock."""
    def __init__(self, delegator: str, validator_id: int):
        self.delegator = delegator
        self.validator_id = validator_id
        super().__init__(f"{delegator!r} is not locked up on validator #{validator_id}")


class ValidatorLockupTooShort(StateError):
    """Raised when a delegator's lock would outlast the validator's own lock."""
    def __init__(self, validator_id: int, validator_end: int, requested_end: int):
        self.validator_id = validator_id
        self.validator_end = validator_end
        self.requested_end = requested_end
        super().__init__(
            f"Validator #{validator_id} lockup ends too early "
            f"({validator_end} < {requested_end})"
        )


class TooFrequentReLocks(StateError):
    """Raised when relocks pile up faster than their penalties expire."""
    def __init__(self, ongoing: int):
        self.ongoing = ongoing
        super().__init__(f"Too frequent relocks ({ongoing} ongoing)")


class TooManyReLocks(StateError):
    """Raised when the number of ongoing relock penalties hits its hard cap."""
    def __init__(self, ongoing: int):
        self.ongoing = ongoing
        super().__init__(f"Too many ongoing relocks ({ongoing})")


class ZeroRewards(StateError):
    """Raised when a claim finds nothing to pay."""
    def __init__(self, delegator: str, validator_id: int):
        self.delegator = delegator
        self.validator_id = validator_id
        super().__init__(f"No rewards for {delegator!r} on validator #{validator_id}")


class RequestExists(StateError):
    """Raised when a withdrawal request id is reused."""
    def __init__(self, request_id: int):
        self.request_id = request_id
        super().__init__(f"Withdrawal request {request_id} already exists")


class NotEnoughTimePassed(StateError):
    """Raised when a withdrawal's time delay has not elapsed."""
    def __init__(self, ready_at: int, now: int):
        self.ready_at = ready_at
        self.now = now
        super().__init__(f"Withdrawal not ready until {ready_at} (now {now})")


class NotEnoughEpochsPassed(StateError):
    """Raised when a withdrawal's epoch delay has not elapsed."""
    def __init__(self, ready_epoch: int, current_epoch: int):
        self.ready_epoch = ready_epoch
        self.current_epoch = current_epoch
        super().__init__(
            f"Withdrawal not ready until epoch {ready_epoch} (current {current_epoch})"
        )


class StakeIsFullySlashed(StateError):
    """Raised when a slashed withdrawal would pay nothing."""
    def __init__(self, validator_id: int, amount: int):
        self.validator_id = validator_id
        self.amount = amount
        super().__init__(f"Stake of {amount} on validator #{validator_id} is fully slashed")


class GenesisClosed(StateError):
    """Raised when genesis import is attempted after the first sealed epoch."""
    def __init__(self):
        super().__init__("Genesis import is closed once epochs are being sealed")
