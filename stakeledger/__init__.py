"""
Stake Ledger Package

Validator staking and epoch-reward ledger. Import from submodules:

    from stakeledger.staking import StakingLedger, NodeDriver
    from stakeledger.staking.errors import ZeroAmount
    from stakeledger.exceptions import StakeLedgerException
"""

# Lazy imports to avoid configuring logging on package import
def __getattr__(name):
    """Lazy module loading."""
    if name == 'StakingLedger':
        from .staking import StakingLedger
        return StakingLedger
    elif name == 'NodeDriver':
        from .staking import NodeDriver
        return NodeDriver
    elif name == 'StakeLedgerException':
        from .exceptions import StakeLedgerException
        return StakeLedgerException
    raise AttributeError(f"module 'stakeledger' has no attribute {name!r}")

__all__ = ['StakingLedger', 'NodeDriver', 'StakeLedgerException']
