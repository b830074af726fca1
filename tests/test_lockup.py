"""
Stake Ledger Lockup Test Suite

Tests for locking, relocking and early unlocking of stake, including the
penalties of superseded lock episodes and relock throttling.
"""

import copy

import pytest

from stakeledger.constants import DECIMAL_UNIT, DAY, OFFLINE_BIT
from stakeledger.staking import (
    EconomicParameters,
    ManualClock,
    NodeDriver,
    StakingLedger,
)
from stakeledger.staking.errors import (
    AlreadyLockedUp,
    IncorrectDuration,
    LockupDurationDecreased,
    NotEnoughLockedStake,
    NotEnoughUnlockedStake,
    NotLockedUp,
    TooFrequentReLocks,
    ValidatorLockupTooShort,
    ValidatorNotActive,
    ZeroAmount,
)

UNIT = DECIMAL_UNIT
START_TIME = 1_700_000_000


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def clock():
    return ManualClock(START_TIME)


@pytest.fixture
def ledger(clock):
    return StakingLedger(
        driver='node',
        params=EconomicParameters(base_reward_per_second=1),
        owner='owner',
        clock=clock,
        total_supply=1000 * UNIT,
    )


@pytest.fixture
def node(ledger):
    """
    One validator with 10 tokens, half locked for a year, and a delegator
    with 10 tokens. Total stake 20, so one day pays 3672 per token unit.
    """
    node = NodeDriver('node').attach(ledger)
    ledger.create_validator('validator', b'\xc0\x01', 10 * UNIT)
    ledger.delegate('delegator', 1, 10 * UNIT)
    ledger.lock_stake('validator', 1, 365 * DAY, 5 * UNIT)
    node.seal_epoch()
    return node


def seal_days(node, clock, days):
    clock.advance(days * DAY)
    return node.seal_epoch()


# =============================================================================
# LOCK TESTS
# =============================================================================

class TestLockStake:
    """Test lock validation and lock state."""

    def test_lock_stake(self, ledger, node, clock):
        """A lock records amount, duration and end time."""
        ledger.lock_stake('delegator', 1, 14 * DAY, 5 * UNIT)

        lockup = ledger.get_lockup_info('delegator', 1)
        assert lockup.locked_stake == 5 * UNIT
        assert lockup.duration == 14 * DAY
        assert lockup.end_time == clock.now() + 14 * DAY
        assert lockup.from_epoch == ledger.current_epoch
        assert ledger.is_locked_up('delegator', 1)
        assert ledger.get_unlocked_stake('delegator', 1) == 5 * UNIT

    def test_lock_zero_amount(self, ledger, node):
        """Locking nothing fails."""
        with pytest.raises(ZeroAmount):
            ledger.lock_stake('delegator', 1, 14 * DAY, 0)

    @pytest.mark.parametrize('duration', [14 * DAY - 1, 365 * DAY + 1])
    def test_lock_duration_bounds(self, ledger, node, duration):
        """Durations outside the configured bounds are rejected."""
        with pytest.raises(IncorrectDuration):
            ledger.lock_stake('delegator', 1, duration, UNIT)

    def test_lock_more_than_unlocked(self, ledger, node):
        """Only unlocked stake can be locked."""
        with pytest.raises(NotEnoughUnlockedStake):
            ledger.lock_stake('delegator', 1, 14 * DAY, 10 * UNIT + 1)

    def test_lock_twice(self, ledger, node):
        """An active lock must be extended with relock."""
        ledger.lock_stake('delegator', 1, 14 * DAY, UNIT)
        with pytest.raises(AlreadyLockedUp):
            ledger.lock_stake('delegator', 1, 14 * DAY, UNIT)

    def test_delegator_lock_bounded_by_validator(self, ledger, node, clock):
        """A delegator lock may end at most 30 days after the validator's."""
        validator_end = ledger.get_lockup_info('validator', 1).end_time
        clock.advance(330 * DAY)
        ledger.lock_stake('delegator', 1, 65 * DAY, UNIT)
        assert ledger.get_lockup_info('delegator', 1).end_time == validator_end + 30 * DAY

    def test_delegator_lock_outlasting_validator(self, ledger, node, clock):
        """A lock ending later than the validator's grace period fails."""
        clock.advance(330 * DAY)
        with pytest.raises(ValidatorLockupTooShort):
            ledger.lock_stake('delegator', 1, 65 * DAY + 1, UNIT)

    def test_lock_on_inactive_validator(self, ledger, node):
        """Stake of a deactivated validator cannot be locked."""
        node.deactivate_validator(1, OFFLINE_BIT)
        with pytest.raises(ValidatorNotActive):
            ledger.lock_stake('delegator', 1, 14 * DAY, UNIT)

    def test_locked_stake_cannot_be_undelegated(self, ledger, node):
        """Undelegation is limited to the unlocked part."""
        ledger.lock_stake('delegator', 1, 14 * DAY, 5 * UNIT)
        with pytest.raises(NotEnoughUnlockedStake):
            ledger.undelegate('delegator', 1, 1, 5 * UNIT + 1)

    def test_lock_expires(self, ledger, node, clock):
        """An expired lock no longer holds stake."""
        ledger.lock_stake('delegator', 1, 14 * DAY, 5 * UNIT)
        clock.advance(14 * DAY + 1)

        assert not ledger.is_locked_up('delegator', 1)
        assert ledger.get_locked_stake('delegator', 1) == 0
        assert ledger.get_unlocked_stake('delegator', 1) == 10 * UNIT
        ledger.undelegate('delegator', 1, 1, 10 * UNIT)

    def test_lock_after_expiry(self, ledger, node, clock):
        """A fresh lock can start once the previous one has ended."""
        ledger.lock_stake('delegator', 1, 14 * DAY, 5 * UNIT)
        seal_days(node, clock, 15)
        ledger.lock_stake('delegator', 1, 14 * DAY, UNIT)
        assert ledger.get_locked_stake('delegator', 1) == UNIT


# =============================================================================
# UNLOCK TESTS
# =============================================================================

class TestUnlockStake:
    """Test early unlocking and its penalty."""

    def test_unlock_without_lock(self, ledger, node):
        """Unlocking needs an active lock."""
        with pytest.raises(NotLockedUp):
            ledger.unlock_stake('delegator', 1, UNIT)

    def test_unlock_zero(self, ledger, node):
        """Unlocking nothing fails."""
        ledger.lock_stake('delegator', 1, 14 * DAY, UNIT)
        with pytest.raises(ZeroAmount):
            ledger.unlock_stake('delegator', 1, 0)

    def test_unlock_more_than_locked(self, ledger, node):
        """Only locked stake can be unlocked."""
        ledger.lock_stake('delegator', 1, 14 * DAY, UNIT)
        with pytest.raises(NotEnoughLockedStake):
            ledger.unlock_stake('delegator', 1, UNIT + 1)

    def test_unlock_without_rewards_is_free(self, ledger, node):
        """A lock that earned nothing is unlocked without penalty."""
        ledger.lock_stake('delegator', 1, 14 * DAY, UNIT)

        assert ledger.unlock_stake('delegator', 1, UNIT) == 0
        assert ledger.get_stake('delegator', 1) == 10 * UNIT
        assert ledger.get_locked_stake('delegator', 1) == 0

    def test_unlock_penalty(self, ledger, node, clock):
        """The penalty is the extra reward plus half the base reward, burnt from stake."""
        ledger.lock_stake('delegator', 1, 14 * DAY, 5 * UNIT)
        seal_days(node, clock, 7)
        supply = ledger.total_supply
        total_stake = ledger.total_stake

        assert ledger.estimate_unlock_penalty('delegator', 1, 5 * UNIT) == 22728
        assert ledger.unlock_stake('delegator', 1, 5 * UNIT) == 22728

        assert ledger.get_stake('delegator', 1) == 10 * UNIT - 22728
        assert ledger.get_locked_stake('delegator', 1) == 0
        assert ledger.total_stake == total_stake - 22728
        assert ledger.total_supply == supply - 22728

    def test_unlock_keeps_rewards(self, ledger, node, clock):
        """The penalty is taken from stake, rewards stay claimable."""
        seal_days(node, clock, 1)
        ledger.lock_stake('delegator', 1, 14 * DAY, 5 * UNIT)
        seal_days(node, clock, 7)
        pending = ledger.pending_rewards('delegator', 1)

        ledger.unlock_stake('delegator', 1, 5 * UNIT)
        assert pending == 11016 + 80562
        assert ledger.pending_rewards('delegator', 1) == pending

    def test_estimate_leaves_state_unchanged(self, ledger, node, clock):
        """Estimating the penalty does not modify the ledger."""
        ledger.lock_stake('delegator', 1, 14 * DAY, 5 * UNIT)
        seal_days(node, clock, 7)
        before = copy.deepcopy(ledger.state)

        ledger.estimate_unlock_penalty('delegator', 1, 2 * UNIT)
        assert ledger.state == before


# =============================================================================
# RELOCK TESTS
# =============================================================================

class TestRelock:
    """Test relocking and the penalties of superseded episodes."""

    @pytest.fixture
    def relocked(self, ledger, node, clock):
        """Lock 5 for 14 days, relock with 5 more after 7 days, seal 2 days."""
        seal_days(node, clock, 1)
        ledger.lock_stake('delegator', 1, 14 * DAY, 5 * UNIT)
        seal_days(node, clock, 7)
        ledger.relock_stake('delegator', 1, 14 * DAY, 5 * UNIT)
        seal_days(node, clock, 2)
        return ledger

    def test_relock_requires_lock(self, ledger, node):
        """Relocking needs an active lock."""
        with pytest.raises(NotLockedUp):
            ledger.relock_stake('delegator', 1, 14 * DAY, UNIT)

    def test_relock_cannot_shorten(self, ledger, node, clock):
        """A relock must not ask for a shorter duration."""
        ledger.lock_stake('delegator', 1, 20 * DAY, UNIT)
        with pytest.raises(LockupDurationDecreased):
            ledger.relock_stake('delegator', 1, 14 * DAY, UNIT)

    def test_relock_extends_lock(self, ledger, node, clock):
        """A relock moves the end time and adds stake."""
        ledger.lock_stake('delegator', 1, 14 * DAY, 5 * UNIT)
        clock.advance(DAY)
        ledger.relock_stake('delegator', 1, 14 * DAY, 2 * UNIT)

        lockup = ledger.get_lockup_info('delegator', 1)
        assert lockup.locked_stake == 7 * UNIT
        assert lockup.end_time == clock.now() + 14 * DAY

    def test_relock_stashes_episode_penalty(self, relocked):
        """The relocked episode's penalty is kept until its original end."""
        penalties = relocked.get_stashed_penalties('delegator', 1)
        assert len(penalties) == 1
        assert penalties[0].amount == 22728
        assert penalties[0].end == START_TIME + DAY + 14 * DAY

    def test_rewards_across_relock(self, relocked):
        """Rewards before the lock, the first episode and the relocked episode add up."""
        assert relocked.pending_rewards('delegator', 1) == 115581

    def test_full_unlock_after_relock(self, relocked):
        """Unlocking everything charges both episodes."""
        assert relocked.estimate_unlock_penalty('delegator', 1, 10 * UNIT) == 22728 + 12987
        assert relocked.unlock_stake('delegator', 1, 10 * UNIT) == 35715
        assert relocked.get_stashed_penalties('delegator', 1) == []

    def test_partial_unlock_after_relock(self, relocked):
        """A partial unlock charges the same share of every episode."""
        assert relocked.estimate_unlock_penalty('delegator', 1, 2 * UNIT) == 2597 + 4545

    def test_superseded_penalty_expires(self, relocked, clock):
        """Superseded penalties stop applying after the original lock end."""
        clock.advance(5 * DAY - 1)
        assert relocked.estimate_unlock_penalty('delegator', 1, 2 * UNIT) == 7142

        clock.advance(2)
        assert relocked.estimate_unlock_penalty('delegator', 1, 2 * UNIT) == 2597

    def test_unlock_after_original_end(self, ledger, node, clock):
        """Once the first episode has ended only the current one is charged."""
        seal_days(node, clock, 1)
        ledger.lock_stake('delegator', 1, 14 * DAY, 5 * UNIT)
        seal_days(node, clock, 7)
        ledger.relock_stake('delegator', 1, 14 * DAY, 5 * UNIT)
        seal_days(node, clock, 12)

        assert ledger.pending_rewards('delegator', 1) == 235600
        assert ledger.unlock_stake('delegator', 1, 10 * UNIT) == 77926


# =============================================================================
# RELOCK THROTTLING TESTS
# =============================================================================

class TestRelockLimits:
    """Test throttling of frequent small relocks."""

    @pytest.fixture
    def relocking(self, ledger, node, clock):
        """Delegator locked 5 for 20 days and relocked three times a day apart."""
        seal_days(node, clock, 1)
        ledger.lock_stake('delegator', 1, 20 * DAY, 5 * UNIT)
        seal_days(node, clock, 1)
        for _ in range(3):
            ledger.relock_stake('delegator', 1, 20 * DAY, 0)
            seal_days(node, clock, 1)
        return ledger

    def test_relock_penalty_per_day(self, relocking):
        """Each relock stashes the penalty of one day of locked rewards."""
        penalties = relocking.get_stashed_penalties('delegator', 1)
        assert len(penalties) == 3
        assert penalties[0].amount == 3458

    def test_fourth_relock_is_throttled(self, relocking):
        """A fourth small relock within the window fails."""
        with pytest.raises(TooFrequentReLocks):
            relocking.relock_stake('delegator', 1, 20 * DAY, 0)

    def test_significant_extension_is_allowed(self, relocking, node, clock):
        """A relock extending the end by 14 days or more is not throttled."""
        clock.advance(14 * DAY)
        relocking.relock_stake('delegator', 1, 20 * DAY, 0)
        assert len(relocking.get_stashed_penalties('delegator', 1)) == 4

        seal_days(node, clock, 1)
        with pytest.raises(TooFrequentReLocks):
            relocking.relock_stake('delegator', 1, 20 * DAY, 0)

    def test_significant_amount_is_allowed(self, relocking):
        """Adding more than 1% of the locked stake is not throttled."""
        relocking.relock_stake('delegator', 1, 20 * DAY, UNIT)
        assert relocking.get_locked_stake('delegator', 1) == 6 * UNIT

    def test_throttle_resets_when_penalties_expire(self, relocking, node, clock):
        """Expired penalties no longer count as ongoing relocks."""
        clock.advance(17 * DAY + 1)
        relocking.relock_stake('delegator', 1, 20 * DAY, 0)
        assert len(relocking.get_stashed_penalties('delegator', 1)) == 2
