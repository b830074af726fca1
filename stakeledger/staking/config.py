"""
Stake Ledger Configuration

Configuration classes for building a ledger. Loaded from the `[ledger]`
section of a TOML file; token amounts and ratios are written as decimal
strings ("0.3175", "0.15") and converted to integer units.
"""

import os
from dataclasses import dataclass, field, fields
from decimal import Decimal, InvalidOperation, localcontext
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

try:
    import tomli
except ImportError:
    import tomllib as tomli

from ..constants import DECIMAL_UNIT
from ..exceptions import ConfigurationError
from .params import EconomicParameters

# Wide enough for any 256-bit amount
_AMOUNT_PRECISION = 80


def parse_token_amount(value: Any) -> int:
    """
    Convert a decimal token amount (or ratio) into integer units.

    Raises:
        ValueError: If the value is not a number or is finer than one unit
    """
    with localcontext() as ctx:
        ctx.prec = _AMOUNT_PRECISION
        try:
            amount = Decimal(str(value)).scaleb(18)
        except InvalidOperation as e:
            raise ValueError(f"Invalid token amount: {value!r}") from e
        if amount != amount.to_integral_value():
            raise ValueError(f"Token amount {value!r} has more than 18 decimals")
        return int(amount)


def format_token_amount(units: int) -> str:
    """Inverse of `parse_token_amount`."""
    with localcontext() as ctx:
        ctx.prec = _AMOUNT_PRECISION
        text = format(Decimal(units).scaleb(-18), 'f')
    if '.' in text:
        text = text.rstrip('0').rstrip('.')
    return text


# Parameters written as decimal amounts; all others are plain integers
DECIMAL_FIELDS = frozenset({
    'min_self_stake',
    'max_delegated_ratio',
    'validator_commission',
    'burnt_fee_share',
    'treasury_fee_share',
    'unlocked_reward_ratio',
    'base_reward_per_second',
    'min_average_uptime',
})


@dataclass
class EconomicsConfig:
    """
    Economic parameters configuration.

    Loaded from the [ledger.economics] section. Missing keys keep the
    reference values of `EconomicParameters`.
    """

    parameters: EconomicParameters = field(default_factory=EconomicParameters)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EconomicsConfig':
        """Create from dictionary."""
        names = {f.name for f in fields(EconomicParameters)}
        unknown = set(data) - names
        if unknown:
            raise ConfigurationError(f"Unknown economic parameters: {', '.join(sorted(unknown))}")

        values = {}
        for name, raw in data.items():
            try:
                values[name] = parse_token_amount(raw) if name in DECIMAL_FIELDS else int(raw)
            except (TypeError, ValueError) as e:
                raise ConfigurationError(f"Invalid value for {name}: {e}") from e
        return cls(parameters=EconomicParameters(**values))

    def validate(self) -> bool:
        return self.parameters.validate()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        result = {}
        for name, value in self.parameters.to_dict().items():
            result[name] = format_token_amount(value) if name in DECIMAL_FIELDS else value
        return result


@dataclass
class LedgerConfig:
    """
    Main ledger configuration.

    Loaded from config.toml [ledger] section.
    """

    # Parameter store and ledger owner
    owner: str = ""

    # Address of the epoch driver (REQUIRED)
    driver: str = ""

    # Receiver of the treasury fee share, none if empty
    treasury: str = ""

    # Epoch the ledger starts after
    sealed_epoch: int = 0

    # Initial total supply in tokens
    total_supply: str = "0"

    # Optional TOML genesis document imported by the driver
    genesis_path: str = ""

    economics: EconomicsConfig = field(default_factory=EconomicsConfig)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'LedgerConfig':
        """Create from dictionary."""
        data = dict(data)
        economics = EconomicsConfig.from_dict(data.pop('economics', {}))

        return cls(
            owner=data.get('owner', ''),
            driver=data.get('driver', ''),
            treasury=data.get('treasury', ''),
            sealed_epoch=int(data.get('sealed_epoch', 0)),
            total_supply=str(data.get('total_supply', '0')),
            genesis_path=data.get('genesis_path', ''),
            economics=economics,
        )

    @classmethod
    def from_file(cls, config_path: str) -> 'LedgerConfig':
        """
        Load configuration from TOML file.

        Args:
            config_path: Path to config.toml

        Returns:
            LedgerConfig instance
        """
        path = Path(config_path)

        if not path.exists():
            # Return default config if file doesn't exist
            return cls()

        with open(path, 'rb') as f:
            config_data = tomli.load(f)

        return cls.from_dict(config_data.get('ledger', {}))

    def apply_env(self, environ: Optional[Mapping[str, str]] = None) -> 'LedgerConfig':
        """Override addresses from STAKELEDGER_OWNER, STAKELEDGER_DRIVER and STAKELEDGER_TREASURY."""
        environ = os.environ if environ is None else environ
        self.owner = environ.get('STAKELEDGER_OWNER', self.owner)
        self.driver = environ.get('STAKELEDGER_DRIVER', self.driver)
        self.treasury = environ.get('STAKELEDGER_TREASURY', self.treasury)
        return self

    @property
    def total_supply_units(self) -> int:
        return parse_token_amount(self.total_supply)

    def validate(self) -> bool:
        """
        Validate configuration.

        Returns:
            True if valid

        Raises:
            ValueError: If configuration is invalid
        """
        if not self.driver:
            raise ValueError("driver address is required")

        if self.sealed_epoch < 0:
            raise ValueError("sealed_epoch must not be negative")

        if self.total_supply_units < 0:
            raise ValueError("total_supply must not be negative")

        if self.genesis_path and not Path(self.genesis_path).exists():
            raise ValueError(f"Genesis file not found: {self.genesis_path}")

        return self.economics.validate()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            'owner': self.owner,
            'driver': self.driver,
            'treasury': self.treasury,
            'sealed_epoch': self.sealed_epoch,
            'total_supply': self.total_supply,
            'genesis_path': self.genesis_path,
            'economics': self.economics.to_dict(),
        }
