"""
Stake Ledger Genesis Import

Bootstraps a ledger with validators and delegations carried over from a
previous network state:
- Validators with their original ids, status and timestamps
- Delegations with stake, lockups, accrued penalties and unpaid rewards

Import is driver-only and closes when the first epoch is sealed.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Tuple

try:
    import tomli
except ImportError:
    import tomllib as tomli

from ..constants import OK_STATUS
from ..exceptions import GenesisFormatError
from ..logger import get_logger
from .config import parse_token_amount
from .delegation import DelegationLedger
from .errors import GenesisClosed, LockedStakeGreaterThanTotalStake
from .registry import ValidatorRegistry
from .types import LedgerState, LockedDelegation, Rewards

if TYPE_CHECKING:
    from .driver import NodeDriver

logger = get_logger(__name__)


@dataclass
class GenesisValidator:
    """A validator in the genesis document."""
    auth: str
    validator_id: int
    pubkey: bytes
    status: int = OK_STATUS
    created_epoch: int = 0
    created_time: int = 0
    deactivated_epoch: int = 0
    deactivated_time: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'GenesisValidator':
        pubkey = data['pubkey']
        if pubkey.startswith('0x'):
            pubkey = pubkey[2:]
        return cls(
            auth=data['auth'],
            validator_id=int(data['id']),
            pubkey=bytes.fromhex(pubkey),
            status=int(data.get('status', OK_STATUS)),
            created_epoch=int(data.get('created_epoch', 0)),
            created_time=int(data.get('created_time', 0)),
            deactivated_epoch=int(data.get('deactivated_epoch', 0)),
            deactivated_time=int(data.get('deactivated_time', 0)),
        )


@dataclass
class GenesisDelegation:
    """A delegation in the genesis document. Token amounts are in units."""
    delegator: str
    validator_id: int
    stake: int
    locked_stake: int = 0
    lockup_from_epoch: int = 0
    lockup_end_time: int = 0
    lockup_duration: int = 0
    early_unlock_penalty: int = 0
    rewards: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'GenesisDelegation':
        return cls(
            delegator=data['delegator'],
            validator_id=int(data['validator_id']),
            stake=parse_token_amount(data['stake']),
            locked_stake=parse_token_amount(data.get('locked_stake', 0)),
            lockup_from_epoch=int(data.get('lockup_from_epoch', 0)),
            lockup_end_time=int(data.get('lockup_end_time', 0)),
            lockup_duration=int(data.get('lockup_duration', 0)),
            early_unlock_penalty=parse_token_amount(data.get('early_unlock_penalty', 0)),
            rewards=parse_token_amount(data.get('rewards', 0)),
        )


class GenesisImporter:
    """Applies genesis records to the ledger state."""

    def __init__(
        self,
        state: LedgerState,
        registry: ValidatorRegistry,
        delegations: DelegationLedger,
    ):
        self.state = state
        self.registry = registry
        self.delegations = delegations

    def _require_open(self) -> None:
        if not self.state.genesis_open:
            raise GenesisClosed()

    def set_genesis_validator(
        self,
        auth: str,
        validator_id: int,
        pubkey: bytes,
        status: int = OK_STATUS,
        created_epoch: int = 0,
        created_time: int = 0,
        deactivated_epoch: int = 0,
        deactivated_time: int = 0,
    ) -> None:
        """
        Register a validator with an explicit id and history.

        Raises:
            GenesisClosed: If an epoch has been sealed
        """
        self._require_open()
        self.registry.check_pubkey(pubkey)
        self.registry.create(
            auth,
            pubkey,
            validator_id=validator_id,
            status=status,
            created_epoch=created_epoch,
            created_time=created_time,
            deactivated_epoch=deactivated_epoch,
            deactivated_time=deactivated_time,
        )

    def set_genesis_delegation(
        self,
        delegator: str,
        validator_id: int,
        stake: int,
        locked_stake: int = 0,
        lockup_from_epoch: int = 0,
        lockup_end_time: int = 0,
        lockup_duration: int = 0,
        early_unlock_penalty: int = 0,
        rewards: int = 0,
    ) -> None:
        """
        Restore a delegation.

        The stake is minted. Unpaid rewards are stashed as unlocked rewards
        and the accrued early-unlock penalty becomes the lockup extra reward
        of the restored lock.

        Raises:
            GenesisClosed: If an epoch has been sealed
            LockedStakeGreaterThanTotalStake: If locked_stake exceeds stake
        """
        self._require_open()
        if locked_stake > stake:
            raise LockedStakeGreaterThanTotalStake(locked_stake, stake)

        self.delegations.raw_delegate(delegator, validator_id, stake)

        record = self.state.delegation(delegator, validator_id)
        record.rewards_stash = Rewards(unlocked_reward=rewards)
        self.state.mint(stake)

        if locked_stake != 0:
            record.lockup = LockedDelegation(
                locked_stake=locked_stake,
                from_epoch=lockup_from_epoch,
                end_time=lockup_end_time,
                duration=lockup_duration,
            )
            record.stashed_lockup_rewards = Rewards(lockup_extra_reward=early_unlock_penalty)

        logger.debug(
            f"Genesis delegation of {delegator} to validator #{validator_id}: "
            f"stake={stake}, locked={locked_stake}"
        )


# =============================================================================
# DOCUMENT LOADING
# =============================================================================

def parse_genesis(data: Dict[str, Any]) -> Tuple[List[GenesisValidator], List[GenesisDelegation]]:
    """
    Parse a genesis document.

    Raises:
        GenesisFormatError: If a record is missing a field or has a bad value
    """
    validators, delegations = [], []

    for index, entry in enumerate(data.get('validators', [])):
        try:
            validators.append(GenesisValidator.from_dict(entry))
        except (KeyError, TypeError, ValueError) as e:
            raise GenesisFormatError(f"Invalid validator entry #{index}: {e}") from e

    for index, entry in enumerate(data.get('delegations', [])):
        try:
            delegations.append(GenesisDelegation.from_dict(entry))
        except (KeyError, TypeError, ValueError) as e:
            raise GenesisFormatError(f"Invalid delegation entry #{index}: {e}") from e

    return validators, delegations


def load_genesis(driver: 'NodeDriver', data: Dict[str, Any]) -> Tuple[int, int]:
    """
    Import a genesis document through the driver.

    The whole document is parsed before anything is applied.

    Args:
        driver: Driver attached to the target ledger
        data: Document with `validators` and `delegations` lists

    Returns:
        (validators imported, delegations imported)
    """
    validators, delegations = parse_genesis(data)

    for v in validators:
        driver.set_genesis_validator(
            v.auth,
            v.validator_id,
            v.pubkey,
            status=v.status,
            created_epoch=v.created_epoch,
            created_time=v.created_time,
            deactivated_epoch=v.deactivated_epoch,
            deactivated_time=v.deactivated_time,
        )

    for d in delegations:
        driver.set_genesis_delegation(
            d.delegator,
            d.validator_id,
            d.stake,
            locked_stake=d.locked_stake,
            lockup_from_epoch=d.lockup_from_epoch,
            lockup_end_time=d.lockup_end_time,
            lockup_duration=d.lockup_duration,
            early_unlock_penalty=d.early_unlock_penalty,
            rewards=d.rewards,
        )

    logger.info(f"Imported genesis: {len(validators)} validators, {len(delegations)} delegations")
    return len(validators), len(delegations)


def load_genesis_file(driver: 'NodeDriver', genesis_path: str) -> Tuple[int, int]:
    """
    Import a TOML genesis file with `[[validators]]` and `[[delegations]]` tables.

    Raises:
        GenesisFormatError: If the file is missing or not valid TOML
    """
    path = Path(genesis_path)
    if not path.exists():
        raise GenesisFormatError(f"Genesis file not found: {genesis_path}")

    try:
        with open(path, 'rb') as f:
            data = tomli.load(f)
    except tomli.TOMLDecodeError as e:
        raise GenesisFormatError(f"Invalid genesis file {genesis_path}: {e}") from e

    return load_genesis(driver, data)
