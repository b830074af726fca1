"""
Role checks applied at the boundary of state-changing entry points.
"""

from typing import Optional

from .errors import InvalidOwner, NotDriverAuth, NotOwner


def check_owner(owner: Optional[str], caller: str) -> None:
    """
    Ensure the caller is the current owner.

    Raises:
        NotOwner: If there is no owner or the caller is someone else
    """
    if owner is None or caller != owner:
        raise NotOwner(caller)


def check_driver(driver: str, caller: str) -> None:
    """
    Ensure the caller is the epoch driver.

    Raises:
        NotDriverAuth: If the caller is not the configured driver
    """
    if caller != driver:
        raise NotDriverAuth(caller)


def check_new_owner(new_owner: Optional[str]) -> str:
    """Validate an ownership transfer target."""
    if not new_owner or not new_owner.strip():
        raise InvalidOwner(new_owner)
    return new_owner
