"""
Time sources for the ledger.

The ledger never schedules work; it only compares stored deadlines with the
time and block height reported by its clock at the start of each call.
"""

import time


class LedgerClock:
    """Interface of a ledger time source."""

    def now(self) -> int:
        """Current time in whole seconds."""
        raise NotImplementedError

    def block_number(self) -> int:
        """Current block height."""
        raise NotImplementedError


class SystemClock(LedgerClock):
    """Wall-clock time; block height is supplied by the host."""

    def __init__(self, block_number: int = 0):
        self._block_number = block_number

    def now(self) -> int:
        return int(time.time())

    def block_number(self) -> int:
        return self._block_number

    def set_block_number(self, block_number: int) -> None:
        self._block_number = block_number


class ManualClock(LedgerClock):
    """
    Explicitly advanced clock for simulations and tests.

    Args:
        start: Initial time in seconds
        block_number: Initial block height
    """

    def __init__(self, start: int = 0, block_number: int = 0):
        self._time = start
        self._block_number = block_number

    def now(self) -> int:
        return self._time

    def block_number(self) -> int:
        return self._block_number

    def advance(self, seconds: int, blocks: int = 1) -> int:
        """Move time forward and mine `blocks` blocks. Returns the new time."""
        if seconds < 0:
            raise ValueError("Cannot move the clock backwards")
        self._time += seconds
        self._block_number += blocks
        return self._time
