"""
Stake Ledger Parameter Store

Adjustable economic constants read by every ledger component. Values are
set at construction (deployment or test parameterization) and afterwards
changed only by the store owner through range-checked setters.
"""

from dataclasses import dataclass, fields, replace
from typing import Any, Dict, Optional, Tuple

from ..constants import DECIMAL_UNIT, DAY
from ..logger import get_logger
from .auth import check_new_owner, check_owner
from .errors import ValueTooLarge, ValueTooSmall

logger = get_logger(__name__)


@dataclass
class EconomicParameters:
    """
    Economic constants of the ledger.

    Amounts are in smallest units, ratios are fixed-point with
    `DECIMAL_UNIT` as 1.0, durations are in seconds.
    """

    # Minimum self-stake to register a validator (0.3175 tokens)
    min_self_stake: int = 317_500_000_000_000_000

    # Received stake may be at most self-stake x this ratio (16.0)
    max_delegated_ratio: int = 16 * DECIMAL_UNIT

    # Validator's cut of its raw epoch reward (15%)
    validator_commission: int = 15 * DECIMAL_UNIT // 100

    # Shares of transaction fees taken off the top (20% burnt, 10% treasury)
    burnt_fee_share: int = 20 * DECIMAL_UNIT // 100
    treasury_fee_share: int = 10 * DECIMAL_UNIT // 100

    # Reward multiplier of unlocked stake (30%)
    unlocked_reward_ratio: int = 30 * DECIMAL_UNIT // 100

    # Lockup bounds
    min_lockup_duration: int = 14 * DAY
    max_lockup_duration: int = 365 * DAY

    # Withdrawal delay, both must elapse
    withdrawal_period_epochs: int = 3
    withdrawal_period_time: int = 7 * DAY

    # Time-based reward rate (tokens per second, fixed-point)
    base_reward_per_second: int = 6_183_414_351_851_851_852

    # Offline penalty triggers, both must be exceeded
    offline_penalty_threshold_blocks_num: int = 1000
    offline_penalty_threshold_time: int = 5 * DAY

    # Gas price control loop
    target_gas_power_per_second: int = 2000
    gas_price_balancing_counterweight: int = 3600

    # Uptime averaging loop; a zero minimum disables uptime deactivation
    average_uptime_epoch_window: int = 100
    min_average_uptime: int = 0

    def validate(self) -> bool:
        """
        Check that the parameters are internally consistent.

        Returns:
            True if valid

        Raises:
            ValueError: If a value is negative or the set is inconsistent
        """
        for f in fields(self):
            if getattr(self, f.name) < 0:
                raise ValueError(f"{f.name} must not be negative")

        if self.max_lockup_duration <= 0:
            raise ValueError("max_lockup_duration must be positive")

        if self.min_lockup_duration > self.max_lockup_duration:
            raise ValueError("min_lockup_duration must not exceed max_lockup_duration")

        if self.burnt_fee_share + self.treasury_fee_share > DECIMAL_UNIT:
            raise ValueError("burnt_fee_share + treasury_fee_share must not exceed 1.0")

        if self.validator_commission > DECIMAL_UNIT:
            raise ValueError("validator_commission must not exceed 1.0")

        if self.unlocked_reward_ratio > DECIMAL_UNIT:
            raise ValueError("unlocked_reward_ratio must not exceed 1.0")

        if self.average_uptime_epoch_window < 1:
            raise ValueError("average_uptime_epoch_window must be at least 1")

        return True

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EconomicParameters':
        """Create from dictionary, ignoring unknown keys."""
        names = {f.name for f in fields(cls)}
        return cls(**{k: int(v) for k, v in data.items() if k in names})


# Admin-settable ranges (inclusive)
PARAMETER_BOUNDS: Dict[str, Tuple[int, int]] = {
    'min_self_stake':                       (100_000 * DECIMAL_UNIT, 10_000_000 * DECIMAL_UNIT),
    'max_delegated_ratio':                  (DECIMAL_UNIT, 31 * DECIMAL_UNIT),
    'validator_commission':                 (0, DECIMAL_UNIT // 2),
    'burnt_fee_share':                      (0, DECIMAL_UNIT),
    'treasury_fee_share':                   (0, DECIMAL_UNIT),
    'unlocked_reward_ratio':                (5 * DECIMAL_UNIT // 100, DECIMAL_UNIT // 2),
    'min_lockup_duration':                  (DAY, 30 * DAY),
    'max_lockup_duration':                  (30 * DAY, 1460 * DAY),
    'withdrawal_period_epochs':             (2, 100),
    'withdrawal_period_time':               (DAY, 30 * DAY),
    'base_reward_per_second':               (0, 32 * DECIMAL_UNIT),
    'offline_penalty_threshold_blocks_num': (100, 1_000_000),
    'offline_penalty_threshold_time':       (DAY, 10 * DAY),
    'target_gas_power_per_second':          (1000, 500_000_000),
    'gas_price_balancing_counterweight':    (100, 10 * DAY),
    'average_uptime_epoch_window':          (10, 87_600),
    'min_average_uptime':                   (0, 9 * DECIMAL_UNIT // 10),
}


class ParameterStore:
    """
    Owner-administered store of `EconomicParameters`.

    Parameters are readable as attributes (`store.min_self_stake`). Every
    setter checks the owner and the admin range of the parameter.
    """

    def __init__(self, parameters: EconomicParameters = None, owner: Optional[str] = None):
        """
        Initialize parameter store.

        Args:
            parameters: Initial values (reference parameterization if omitted)
            owner: Address allowed to change parameters
        """
        self._values = parameters or EconomicParameters()
        self.owner = owner

    def __getattr__(self, name: str) -> Any:
        values = self.__dict__.get('_values')
        if values is not None and name in PARAMETER_BOUNDS:
            return getattr(values, name)
        raise AttributeError(f"'ParameterStore' object has no attribute {name!r}")

    @property
    def values(self) -> EconomicParameters:
        """Copy of the current parameters."""
        return replace(self._values)

    # =========================================================================
    # OWNERSHIP
    # =========================================================================

    def is_owner(self, address: str) -> bool:
        return self.owner is not None and address == self.owner

    def transfer_ownership(self, caller: str, new_owner: str) -> None:
        check_owner(self.owner, caller)
        self.owner = check_new_owner(new_owner)
        logger.info(f"Parameter store ownership transferred to {new_owner}")

    def renounce_ownership(self, caller: str) -> None:
        check_owner(self.owner, caller)
        self.owner = None
        logger.warning("Parameter store ownership renounced, parameters are now frozen")

    # =========================================================================
    # SETTERS
    # =========================================================================

    def _update(self, caller: str, name: str, value: int, cap: Optional[int] = None) -> None:
        """
        Set one parameter after owner and range checks.

        Raises:
            NotOwner: If caller is not the owner
            ValueTooSmall: If value is below the admin range
            ValueTooLarge: If value is above the admin range
        """
        check_owner(self.owner, caller)
        minimum, maximum = PARAMETER_BOUNDS[name]
        if cap is not None:
            maximum = min(maximum, cap)
        if value < minimum:
            raise ValueTooSmall(name, value, minimum)
        if value > maximum:
            raise ValueTooLarge(name, value, maximum)

        previous = getattr(self._values, name)
        setattr(self._values, name, value)
        logger.info(f"Parameter {name} updated: {previous} -> {value}")

    def update_min_self_stake(self, caller: str, value: int) -> None:
        self._update(caller, 'min_self_stake', value)

    def update_max_delegated_ratio(self, caller: str, value: int) -> None:
        self._update(caller, 'max_delegated_ratio', value)

    def update_validator_commission(self, caller: str, value: int) -> None:
        self._update(caller, 'validator_commission', value)

    def update_burnt_fee_share(self, caller: str, value: int) -> None:
        self._update(caller, 'burnt_fee_share', value, cap=DECIMAL_UNIT - self._values.treasury_fee_share)

    def update_treasury_fee_share(self, caller: str, value: int) -> None:
        self._update(caller, 'treasury_fee_share', value, cap=DECIMAL_UNIT - self._values.burnt_fee_share)

    def update_unlocked_reward_ratio(self, caller: str, value: int) -> None:
        self._update(caller, 'unlocked_reward_ratio', value)

    def update_min_lockup_duration(self, caller: str, value: int) -> None:
        self._update(caller, 'min_lockup_duration', value)

    def update_max_lockup_duration(self, caller: str, value: int) -> None:
        self._update(caller, 'max_lockup_duration', value)

    def update_withdrawal_period_epochs(self, caller: str, value: int) -> None:
        self._update(caller, 'withdrawal_period_epochs', value)

    def update_withdrawal_period_time(self, caller: str, value: int) -> None:
        self._update(caller, 'withdrawal_period_time', value)

    def update_base_reward_per_second(self, caller: str, value: int) -> None:
        self._update(caller, 'base_reward_per_second', value)

    def update_offline_penalty_threshold_blocks_num(self, caller: str, value: int) -> None:
        self._update(caller, 'offline_penalty_threshold_blocks_num', value)

    def update_offline_penalty_threshold_time(self, caller: str, value: int) -> None:
        self._update(caller, 'offline_penalty_threshold_time', value)

    def update_target_gas_power_per_second(self, caller: str, value: int) -> None:
        self._update(caller, 'target_gas_power_per_second', value)

    def update_gas_price_balancing_counterweight(self, caller: str, value: int) -> None:
        self._update(caller, 'gas_price_balancing_counterweight', value)

    def update_average_uptime_epoch_window(self, caller: str, value: int) -> None:
        self._update(caller, 'average_uptime_epoch_window', value)

    def update_min_average_uptime(self, caller: str, value: int) -> None:
        self._update(caller, 'min_average_uptime', value)
