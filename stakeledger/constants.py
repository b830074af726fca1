"""
Stake Ledger Constants

Protocol constants of the ledger and the environment settings read from
`.env` at import time. Environment settings are exposed as module attributes
that remember their default (`LOG_LEVEL.default()`).
"""
import ast
from dotenv import dotenv_values

# =============================================================================
# ENVIRONMENT CONFIGURATION
# =============================================================================
_config = dotenv_values(".env")

LOGGER_DEFAULTS = {
    'LOG_LEVEL':                       'INFO',
    'LOG_FORMAT':                      '%(asctime)s - %(levelname)s - %(name)s - %(message)s',
    'LOG_DATE_FORMAT':                 '%Y-%m-%dT%H:%M:%S',
    'LOG_CONSOLE_HIGHLIGHTING':        'True',
    'LOG_FILE_OUTPUT':                 'False',
}

LOG_MAX_FILE_SIZE = 10 * 1024 * 1024 # 10MB
LOG_BACKUP_COUNT = 5


# WARNING: THE VALUES BELOW DEFINE THE LEDGER'S ARITHMETIC. CHANGING THEM ALTERS
# REWARD SETTLEMENT AND PENALTIES FOR EVERY DELEGATION, SO ONLY DO IT WHEN
# BOOTSTRAPPING A NEW NETWORK OR FOR TESTING PURPOSES.

# ==================================================================================
# CORE PROTOCOL CONSTANTS
# ==================================================================================
LEDGER_VERSION = '305'
DECIMAL_UNIT = 10 ** 18  # Smallest units per token, also the fixed-point ratio scale

DAY = 24 * 60 * 60


# ==================================================================================
# VALIDATOR STATUS BITS
# ==================================================================================
OK_STATUS = 0
WITHDRAWN_BIT = 1
OFFLINE_BIT = 1 << 3
DOUBLESIGN_BIT = 1 << 7
CHEATER_MASK = DOUBLESIGN_BIT


# ==================================================================================
# GAS PRICE CONTROL LOOP
# ==================================================================================
INITIAL_MIN_GAS_PRICE = 100 * 10 ** 9           # 100 gwei
MIN_GAS_PRICE_FLOOR = 10 ** 9                   # 1 gwei
MIN_GAS_PRICE_CEILING = 1_000_000 * 10 ** 9     # 1M gwei
GAS_PRICE_MAX_INCREASE = DECIMAL_UNIT * 105 // 100
GAS_PRICE_MAX_DECREASE = DECIMAL_UNIT * 95 // 100


# ==================================================================================
# LOCKUP AND RELOCK LIMITS
# ==================================================================================
VALIDATOR_LOCKUP_GRACE = 30 * DAY     # Delegator lock may end up to 30 days after the validator's
MAX_ONGOING_RELOCKS = 30
FREE_RELOCKS = 3
RELOCK_EXTENSION_THRESHOLD = 14 * DAY
RELOCK_DUST_DIVISOR = 100             # Adding more than 1% of locked stake bypasses throttling


# ==================================================================================
# ENVIRONMENT SETTING WRAPPERS
# ==================================================================================
class ConfigString(str):
    """A string setting that remembers its default."""
    def __new__(cls, value, default):
        obj = str.__new__(cls, value)
        obj._default = default
        return obj

    def default(self):
        return self._default


class ConfigBool(int):
    """A boolean setting that remembers its default."""
    def __new__(cls, value, default):
        obj = int.__new__(cls, bool(value))
        obj._default = default
        return obj

    def default(self):
        return self._default

    def __repr__(self):
        return repr(bool(self))

    __str__ = __repr__

    def __eq__(self, other):
        return bool(self) == other

    __hash__ = int.__hash__


def parse_bool(value):
    """Return True/False for "true"/"false" in any case, else the value unchanged."""
    if isinstance(value, str) and value.strip().casefold() in ("true", "false"):
        return ast.literal_eval(value.strip().title())
    return value


def _load_setting(key, default_raw):
    raw = _config.get(key)
    value = parse_bool(default_raw if raw is None else raw)
    default = parse_bool(default_raw)
    if isinstance(value, bool):
        return ConfigBool(value, default)
    return ConfigString(value, default)


LOG_LEVEL = _load_setting('LOG_LEVEL', LOGGER_DEFAULTS['LOG_LEVEL'])
LOG_FORMAT = _load_setting('LOG_FORMAT', LOGGER_DEFAULTS['LOG_FORMAT'])
LOG_DATE_FORMAT = _load_setting('LOG_DATE_FORMAT', LOGGER_DEFAULTS['LOG_DATE_FORMAT'])
LOG_CONSOLE_HIGHLIGHTING = _load_setting('LOG_CONSOLE_HIGHLIGHTING', LOGGER_DEFAULTS['LOG_CONSOLE_HIGHLIGHTING'])
LOG_FILE_OUTPUT = _load_setting('LOG_FILE_OUTPUT', LOGGER_DEFAULTS['LOG_FILE_OUTPUT'])
