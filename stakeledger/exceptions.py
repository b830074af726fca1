"""
Stake Ledger Exceptions

Package-level exception classes. Ledger-specific failures live in
`stakeledger.staking.errors` and derive from `StakeLedgerException`.
"""


class StakeLedgerException(Exception):
    """Base exception for the stake ledger."""
    pass


class ConfigurationError(StakeLedgerException):
    """Configuration error."""
    pass


class GenesisFormatError(ConfigurationError):
    """Genesis import document is malformed."""
    pass
