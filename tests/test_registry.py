"""
Stake Ledger Validator Registry Test Suite

Tests for validator registration, status transitions, slashing refunds and
the weight signals sent to the driver.
"""

import pytest

from stakeledger.constants import (
    DECIMAL_UNIT,
    DOUBLESIGN_BIT,
    OFFLINE_BIT,
    OK_STATUS,
    WITHDRAWN_BIT,
)
from stakeledger.staking import ManualClock, NodeDriver, StakingLedger, ValidatorStatus
from stakeledger.staking.errors import (
    EmptyPubkey,
    InsufficientSelfStake,
    NotDriverAuth,
    NotOwner,
    PubkeyUsedByOtherValidator,
    ValidatorDelegationLimitExceeded,
    ValidatorExists,
    ValidatorNotActive,
    ValidatorNotExists,
    ValidatorNotSlashed,
    ValueTooLarge,
    WrongValidatorStatus,
)

UNIT = DECIMAL_UNIT
MIN_SELF_STAKE = 317_500_000_000_000_000


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def clock():
    return ManualClock(1_700_000_000)


@pytest.fixture
def ledger(clock):
    return StakingLedger(driver='node', owner='owner', clock=clock)


@pytest.fixture
def node(ledger):
    return NodeDriver('node').attach(ledger)


# =============================================================================
# REGISTRATION TESTS
# =============================================================================

class TestCreateValidator:
    """Test validator registration."""

    def test_create_validator(self, ledger, node, clock):
        """A new validator gets the next id and its self-stake."""
        validator_id = ledger.create_validator('alice', b'\xc0\x01', UNIT)

        assert validator_id == 1
        assert ledger.last_validator_id == 1
        assert ledger.get_validator_id('alice') == 1

        validator = ledger.get_validator(1)
        assert validator.auth == 'alice'
        assert validator.status == OK_STATUS
        assert validator.received_stake == UNIT
        assert validator.created_epoch == ledger.current_epoch
        assert validator.created_time == clock.now()
        assert ledger.get_self_stake(1) == UNIT
        assert ledger.get_validator_pubkey(1) == b'\xc0\x01'
        assert ledger.total_stake == UNIT
        assert ledger.total_active_stake == UNIT

    def test_ids_are_sequential(self, ledger, node):
        """Validator ids increase by one."""
        assert ledger.create_validator('alice', b'\xc0\x01', UNIT) == 1
        assert ledger.create_validator('bob', b'\xc0\x02', UNIT) == 2
        assert ledger.create_validator('carol', b'\xc0\x03', UNIT) == 3

    def test_unknown_validator(self, ledger):
        """Unknown ids are reported."""
        assert ledger.get_validator_id('nobody') == 0
        with pytest.raises(ValidatorNotExists):
            ledger.get_validator(1)

    def test_minimum_self_stake(self, ledger, node):
        """The self-stake must reach the minimum."""
        with pytest.raises(InsufficientSelfStake):
            ledger.create_validator('alice', b'\xc0\x01', MIN_SELF_STAKE - 1)

        assert ledger.create_validator('alice', b'\xc0\x01', MIN_SELF_STAKE) == 1

    def test_one_validator_per_account(self, ledger, node):
        """An account can operate only one validator."""
        ledger.create_validator('alice', b'\xc0\x01', UNIT)
        with pytest.raises(ValidatorExists):
            ledger.create_validator('alice', b'\xc0\x02', UNIT)

    def test_empty_pubkey(self, ledger, node):
        """A pubkey is required."""
        with pytest.raises(EmptyPubkey):
            ledger.create_validator('alice', b'', UNIT)

    def test_pubkey_is_unique(self, ledger, node):
        """A pubkey cannot be registered twice."""
        ledger.create_validator('alice', b'\xc0\x01', UNIT)
        with pytest.raises(PubkeyUsedByOtherValidator):
            ledger.create_validator('bob', b'\xc0\x01', UNIT)

    def test_failed_creation_keeps_id(self, ledger, node):
        """A rejected registration does not consume an id."""
        with pytest.raises(InsufficientSelfStake):
            ledger.create_validator('alice', b'\xc0\x01', 1)
        assert ledger.create_validator('alice', b'\xc0\x01', UNIT) == 1

    def test_signals_weight_and_pubkey(self, ledger, node):
        """The driver learns the weight and the pubkey of a new validator."""
        ledger.create_validator('alice', b'\xc0\x01', UNIT)

        assert node.next_validator_weights == {1: UNIT}
        assert node.validator_pubkeys == {1: b'\xc0\x01'}

    def test_delegation_limit(self, ledger, node):
        """Received stake is capped at 16 times the self-stake."""
        ledger.create_validator('alice', b'\xc0\x01', UNIT)
        ledger.delegate('bob', 1, 15 * UNIT)

        with pytest.raises(ValidatorDelegationLimitExceeded):
            ledger.delegate('carol', 1, 1)


# =============================================================================
# STATUS TESTS
# =============================================================================

class TestDeactivation:
    """Test driver-initiated status changes."""

    @pytest.fixture
    def validator_id(self, ledger, node):
        validator_id = ledger.create_validator('alice', b'\xc0\x01', UNIT)
        ledger.delegate('bob', validator_id, UNIT)
        return validator_id

    def test_deactivate(self, ledger, node, validator_id, clock):
        """Deactivation records the time and removes the active stake."""
        node.deactivate_validator(validator_id, OFFLINE_BIT)

        validator = ledger.get_validator(validator_id)
        assert validator.status == ValidatorStatus.OFFLINE
        assert validator.deactivated_epoch == ledger.current_epoch
        assert validator.deactivated_time == clock.now()
        assert ledger.total_active_stake == 0
        assert ledger.total_stake == 2 * UNIT
        assert validator_id not in node.next_validator_weights

    def test_only_driver_deactivates(self, ledger, validator_id):
        """Deactivation is driver-only."""
        with pytest.raises(NotDriverAuth):
            ledger.deactivate_validator('alice', validator_id, OFFLINE_BIT)

    def test_zero_status_rejected(self, ledger, node, validator_id):
        """Deactivating to the active status is rejected."""
        with pytest.raises(WrongValidatorStatus):
            node.deactivate_validator(validator_id, OK_STATUS)

    def test_status_only_escalates(self, ledger, node, validator_id, clock):
        """A status can only become more severe; the first deactivation time is kept."""
        node.deactivate_validator(validator_id, OFFLINE_BIT)
        deactivated_time = clock.now()
        clock.advance(100)

        with pytest.raises(WrongValidatorStatus):
            node.deactivate_validator(validator_id, WITHDRAWN_BIT)

        node.deactivate_validator(validator_id, DOUBLESIGN_BIT)
        validator = ledger.get_validator(validator_id)
        assert validator.status == OFFLINE_BIT | DOUBLESIGN_BIT
        assert validator.deactivated_time == deactivated_time
        assert ledger.is_slashed(validator_id)

    def test_unknown_validator(self, ledger, node):
        """Unknown validators cannot be deactivated."""
        with pytest.raises(ValidatorNotExists):
            node.deactivate_validator(9, OFFLINE_BIT)

    def test_no_delegation_to_inactive(self, ledger, node, validator_id):
        """Stake cannot be added to an inactive validator."""
        node.deactivate_validator(validator_id, OFFLINE_BIT)
        with pytest.raises(ValidatorNotActive):
            ledger.delegate('carol', validator_id, UNIT)

    def test_withdrawing_all_self_stake(self, ledger, node, validator_id):
        """A validator without self-stake is deactivated as withdrawn."""
        ledger.undelegate('bob', validator_id, 1, UNIT)
        ledger.undelegate('alice', validator_id, 1, UNIT)

        validator = ledger.get_validator(validator_id)
        assert validator.status == WITHDRAWN_BIT
        assert ledger.total_active_stake == 0
        assert validator_id not in node.next_validator_weights


# =============================================================================
# SLASHING TESTS
# =============================================================================

class TestSlashingRefund:
    """Test the owner-set refund ratio of slashed validators."""

    @pytest.fixture
    def validator_id(self, ledger, node):
        return ledger.create_validator('alice', b'\xc0\x01', UNIT)

    def test_refund_ratio_of_slashed_validator(self, ledger, node, validator_id):
        """The owner sets the refund ratio of a cheater."""
        node.deactivate_validator(validator_id, DOUBLESIGN_BIT)
        ledger.update_slashing_refund_ratio('owner', validator_id, UNIT // 2)
        assert ledger.slashing_refund_ratio(validator_id) == UNIT // 2

    def test_refund_ratio_requires_slashing(self, ledger, node, validator_id):
        """Only slashed validators have a refund ratio."""
        with pytest.raises(ValidatorNotSlashed):
            ledger.update_slashing_refund_ratio('owner', validator_id, UNIT // 2)

    def test_refund_ratio_is_owner_only(self, ledger, node, validator_id):
        """Only the owner sets refund ratios."""
        node.deactivate_validator(validator_id, DOUBLESIGN_BIT)
        with pytest.raises(NotOwner):
            ledger.update_slashing_refund_ratio('alice', validator_id, UNIT // 2)

    def test_refund_ratio_bounded(self, ledger, node, validator_id):
        """A refund ratio above 1.0 is rejected."""
        node.deactivate_validator(validator_id, DOUBLESIGN_BIT)
        with pytest.raises(ValueTooLarge):
            ledger.update_slashing_refund_ratio('owner', validator_id, UNIT + 1)
