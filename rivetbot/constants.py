# =============================================================================
# rivetbot -- Protocol Constants
# =============================================================================
#
# Gateway and REST values follow the remote service's published v10 API.
# =============================================================================

API_VERSION = 10
API_BASE = f"https://discord.com/api/v{API_VERSION}"
DEFAULT_GATEWAY_URL = "wss://gateway.discord.gg"
USER_AGENT = "DiscordBot (https://github.com/rivetbot/rivetbot, 0.4.0)"

# -- Timing (seconds) --------------------------------------------------------

CONNECTION_TIMEOUT = 10.0
HANDSHAKE_TIMEOUT = 30.0
REQUEST_TIMEOUT = 30.0
SHUTDOWN_TIMEOUT = 5.0

# INVALID_SESSION: wait a random 1-5s before identifying again
INVALID_SESSION_MIN_DELAY = 1.0
INVALID_SESSION_MAX_DELAY = 5.0

# -- Reconnection -------------------------------------------------------------

RECONNECT_BASE_DELAY = 1.0
RECONNECT_MAX_DELAY = 30.0
RECONNECT_MAX_ATTEMPTS = 10
RECONNECT_FACTOR = 1.5
RECONNECT_ABSOLUTE_CAP = 300.0  # 5 minutes
RECONNECT_JITTER = 0.2  # +/-10%

# -- Rate limits ---------------------------------------------------------------

RATE_LIMIT_MAX_RETRIES = 3
# Wait used when a bucket is empty and the server gave no reset time
RATE_LIMIT_FALLBACK_DELAY = 1.0
GATEWAY_BUCKET = "gateway"
GATEWAY_SEND_LIMIT = 120
GATEWAY_SEND_WINDOW = 60.0

HEADER_LIMIT = "x-ratelimit-limit"
HEADER_REMAINING = "x-ratelimit-remaining"
HEADER_RESET_AFTER = "x-ratelimit-reset-after"
HEADER_BUCKET = "x-ratelimit-bucket"
HEADER_GLOBAL = "x-ratelimit-global"
HEADER_RETRY_AFTER = "retry-after"

# -- Dispatch ------------------------------------------------------------------

DISPATCH_QUEUE_SIZE = 256

# -- Messages ------------------------------------------------------------------

MAX_MESSAGE_SIZE = 8 * 1_048_576  # 8 MB; GUILD_CREATE can be large
MAX_REPLY_LENGTH = 2000

# -- Compression ---------------------------------------------------------------

ZLIB_MAGIC = 0x78
ZLIB_METHODS = (0x01, 0x5E, 0x9C, 0xDA)
ZLIB_SUFFIX = b"\x00\x00\xff\xff"

# -- Command parsing -----------------------------------------------------------

DEFAULT_PREFIX = "!"
QUOTE_DELIMITERS = ("'", '"', "`")

# -- Intents -------------------------------------------------------------------

INTENT_GUILDS = 1 << 0
INTENT_GUILD_MEMBERS = 1 << 1
INTENT_GUILD_VOICE_STATES = 1 << 7
INTENT_GUILD_PRESENCES = 1 << 8
INTENT_GUILD_MESSAGES = 1 << 9
INTENT_GUILD_MESSAGE_REACTIONS = 1 << 10
INTENT_DIRECT_MESSAGES = 1 << 12
INTENT_DIRECT_MESSAGE_REACTIONS = 1 << 13
INTENT_MESSAGE_CONTENT = 1 << 15

DEFAULT_INTENTS = (
    INTENT_GUILDS
    | INTENT_GUILD_MEMBERS
    | INTENT_GUILD_MESSAGES
    | INTENT_GUILD_MESSAGE_REACTIONS
    | INTENT_GUILD_PRESENCES
    | INTENT_GUILD_VOICE_STATES
    | INTENT_DIRECT_MESSAGES
    | INTENT_DIRECT_MESSAGE_REACTIONS
    | INTENT_MESSAGE_CONTENT
)

# Guild permission bit checked for admin-level commands
PERMISSION_ADMINISTRATOR = 1 << 3

# -- WebSocket close codes -----------------------------------------------------

WS_CLOSE_NORMAL = 1000
WS_CLOSE_GOING_AWAY = 1001
WS_CLOSE_RESUMABLE = 4000  # any non-1000 code keeps the session resumable

GATEWAY_CLOSE_UNKNOWN_ERROR = 4000
GATEWAY_CLOSE_AUTH_FAILED = 4004
GATEWAY_CLOSE_INVALID_SEQ = 4007
GATEWAY_CLOSE_RATE_LIMITED = 4008
GATEWAY_CLOSE_SESSION_TIMEOUT = 4009
GATEWAY_CLOSE_INVALID_SHARD = 4010
GATEWAY_CLOSE_SHARDING_REQUIRED = 4011
GATEWAY_CLOSE_INVALID_API_VERSION = 4012
GATEWAY_CLOSE_INVALID_INTENTS = 4013
GATEWAY_CLOSE_DISALLOWED_INTENTS = 4014

# Close codes after which reconnecting is pointless
FATAL_CLOSE_CODES = frozenset(
    {
        GATEWAY_CLOSE_AUTH_FAILED,
        GATEWAY_CLOSE_INVALID_SHARD,
        GATEWAY_CLOSE_SHARDING_REQUIRED,
        GATEWAY_CLOSE_INVALID_API_VERSION,
        GATEWAY_CLOSE_INVALID_INTENTS,
        GATEWAY_CLOSE_DISALLOWED_INTENTS,
    }
)

# Close codes that invalidate the session (reconnect with a fresh identify)
SESSION_RESET_CLOSE_CODES = frozenset(
    {
        GATEWAY_CLOSE_INVALID_SEQ,
        GATEWAY_CLOSE_SESSION_TIMEOUT,
    }
)
