"""
Stake Ledger Configuration Test Suite

Tests for token amount parsing, TOML loading, environment overrides and
building a ledger from configuration.
"""

import pytest

from stakeledger.constants import DECIMAL_UNIT
from stakeledger.exceptions import ConfigurationError
from stakeledger.staking import (
    EconomicParameters,
    EconomicsConfig,
    LedgerConfig,
    ManualClock,
    StakingLedger,
    build_ledger,
    format_token_amount,
    parse_token_amount,
)

UNIT = DECIMAL_UNIT


CONFIG_TOML = """
[ledger]
owner = "admin"
driver = "node"
treasury = "treasury"
sealed_epoch = 7
total_supply = "1000.5"

[ledger.economics]
min_self_stake = "2"
validator_commission = "0.2"
withdrawal_period_epochs = 5
"""


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.toml"
    path.write_text(CONFIG_TOML)
    return path


@pytest.fixture
def clock():
    return ManualClock(1_700_000_000)


# =============================================================================
# AMOUNT TESTS
# =============================================================================

class TestTokenAmounts:
    """Test conversion between decimal amounts and units."""

    @pytest.mark.parametrize('text, units', [
        ('0.3175', 317_500_000_000_000_000),
        ('16', 16 * UNIT),
        ('0', 0),
        ('6.183414351851851852', 6_183_414_351_851_851_852),
        (3, 3 * UNIT),
    ])
    def test_parse(self, text, units):
        """Decimal strings and integers convert exactly."""
        assert parse_token_amount(text) == units

    def test_too_many_decimals(self):
        """Amounts below one unit are rejected."""
        with pytest.raises(ValueError):
            parse_token_amount('0.0000000000000000001')

    def test_not_a_number(self):
        """Non-numeric text is rejected."""
        with pytest.raises(ValueError):
            parse_token_amount('lots')

    def test_format(self):
        """Formatting drops trailing zeros."""
        assert format_token_amount(317_500_000_000_000_000) == '0.3175'
        assert format_token_amount(16 * UNIT) == '16'
        assert format_token_amount(0) == '0'
        assert format_token_amount(1) == '0.000000000000000001'


# =============================================================================
# ECONOMICS TESTS
# =============================================================================

class TestEconomicsConfig:
    """Test the [ledger.economics] section."""

    def test_defaults(self):
        """An empty section keeps the reference parameters."""
        assert EconomicsConfig.from_dict({}).parameters == EconomicParameters()

    def test_overrides(self):
        """Decimal and integer keys are converted."""
        config = EconomicsConfig.from_dict({
            'validator_commission': '0.2',
            'min_lockup_duration': '86400',
        })
        assert config.parameters.validator_commission == UNIT // 5
        assert config.parameters.min_lockup_duration == 86400
        assert config.parameters.max_delegated_ratio == 16 * UNIT

    def test_unknown_key(self):
        """Unknown parameter names are rejected."""
        with pytest.raises(ConfigurationError):
            EconomicsConfig.from_dict({'validator_comission': '0.2'})

    def test_bad_value(self):
        """Unparsable values are configuration errors."""
        with pytest.raises(ConfigurationError):
            EconomicsConfig.from_dict({'burnt_fee_share': 'half'})

    def test_to_dict(self):
        """Serialization writes ratios back as decimals."""
        data = EconomicsConfig().to_dict()
        assert data['min_self_stake'] == '0.3175'
        assert data['validator_commission'] == '0.15'
        assert data['base_reward_per_second'] == '6.183414351851851852'
        assert data['withdrawal_period_epochs'] == 3

    def test_inconsistent_parameters(self):
        """Fee shares above 1.0 fail validation."""
        config = EconomicsConfig.from_dict({'burnt_fee_share': '0.95'})
        with pytest.raises(ValueError):
            config.validate()


# =============================================================================
# LEDGER CONFIG TESTS
# =============================================================================

class TestLedgerConfig:
    """Test loading and validating the [ledger] section."""

    def test_missing_file_gives_defaults(self, tmp_path):
        """A missing file yields the default configuration."""
        config = LedgerConfig.from_file(str(tmp_path / "missing.toml"))
        assert config.driver == ''
        assert config.economics.parameters == EconomicParameters()

    def test_from_file(self, config_file):
        """All keys of the section are read."""
        config = LedgerConfig.from_file(str(config_file))

        assert config.owner == 'admin'
        assert config.driver == 'node'
        assert config.treasury == 'treasury'
        assert config.sealed_epoch == 7
        assert config.total_supply_units == 1000 * UNIT + UNIT // 2
        assert config.economics.parameters.min_self_stake == 2 * UNIT
        assert config.economics.parameters.withdrawal_period_epochs == 5

    def test_env_overrides(self, config_file):
        """Environment variables override addresses."""
        config = LedgerConfig.from_file(str(config_file)).apply_env({
            'STAKELEDGER_DRIVER': 'other-node',
            'STAKELEDGER_TREASURY': '',
        })
        assert config.driver == 'other-node'
        assert config.treasury == ''
        assert config.owner == 'admin'

    def test_env_from_process(self, monkeypatch):
        """Without a mapping the process environment is used."""
        monkeypatch.setenv('STAKELEDGER_OWNER', 'env-admin')
        assert LedgerConfig().apply_env().owner == 'env-admin'

    def test_driver_required(self):
        """A configuration without a driver is invalid."""
        with pytest.raises(ValueError):
            LedgerConfig().validate()

    def test_negative_epoch(self):
        """The start epoch cannot be negative."""
        with pytest.raises(ValueError):
            LedgerConfig(driver='node', sealed_epoch=-1).validate()

    def test_missing_genesis(self, tmp_path):
        """A configured genesis file must exist."""
        config = LedgerConfig(driver='node', genesis_path=str(tmp_path / "genesis.toml"))
        with pytest.raises(ValueError):
            config.validate()

    def test_round_trip_dict(self, config_file):
        """The dictionary form loads back to the same configuration."""
        config = LedgerConfig.from_file(str(config_file))
        assert LedgerConfig.from_dict(config.to_dict()) == config


# =============================================================================
# BUILD TESTS
# =============================================================================

class TestBuildLedger:
    """Test building a ledger from configuration."""

    def test_from_config(self, config_file, clock):
        """Configuration values reach the ledger."""
        ledger = StakingLedger.from_config(LedgerConfig.from_file(str(config_file)), clock=clock)

        assert ledger.owner == 'admin'
        assert ledger.params.owner == 'admin'
        assert ledger.driver == 'node'
        assert ledger.treasury_address == 'treasury'
        assert ledger.current_sealed_epoch == 7
        assert ledger.total_supply == 1000 * UNIT + UNIT // 2
        assert ledger.params.min_self_stake == 2 * UNIT

    def test_empty_treasury(self, clock):
        """An empty treasury address means no treasury."""
        ledger = StakingLedger.from_config(LedgerConfig(driver='node'), clock=clock)
        assert ledger.treasury_address is None
        assert ledger.owner is None

    def test_build_with_genesis(self, tmp_path, clock):
        """The driver imports the configured genesis document."""
        genesis = tmp_path / "genesis.toml"
        genesis.write_text(
            '[[validators]]\nauth = "alice"\nid = 1\npubkey = "c001"\n\n'
            '[[delegations]]\ndelegator = "alice"\nvalidator_id = 1\nstake = "3"\n'
        )
        config = LedgerConfig(driver='node', genesis_path=str(genesis))

        ledger, node = build_ledger(config, clock=clock)

        assert node.ledger is ledger
        assert ledger.get_self_stake(1) == 3 * UNIT
        assert node.next_validator_weights == {1: 3 * UNIT}

        node.seal_epoch()
        assert node.validator_ids == [1]
