"""Channel names and configuration defaults shared with the Tripero server.

The default key prefix must match the server's own default, otherwise
published positions land in a namespace nobody listens on.
"""

# Inbound to Tripero (we publish)
POSITION_NEW = "position:new"
IGNITION_CHANGED = "ignition:changed"

INPUT_CHANNELS = (POSITION_NEW, IGNITION_CHANGED)

# Outbound from Tripero (we subscribe)
TRACKER_STATE_CHANGED = "tracker:state:changed"
TRIP_STARTED = "trip:started"
TRIP_COMPLETED = "trip:completed"
STOP_STARTED = "stop:started"
STOP_COMPLETED = "stop:completed"
POSITION_REJECTED = "position:rejected"

OUTPUT_CHANNELS = (
    TRACKER_STATE_CHANGED,
    TRIP_STARTED,
    TRIP_COMPLETED,
    STOP_STARTED,
    STOP_COMPLETED,
    POSITION_REJECTED,
)

ALL_DEVICES = "all"

DEFAULT_REDIS_HOST = "localhost"
DEFAULT_REDIS_PORT = 6379
DEFAULT_REDIS_DB = 0
DEFAULT_KEY_PREFIX = "tripero:"
DEFAULT_HTTP_TIMEOUT_MS = 10000
DEFAULT_LOG_LEVEL = "info"
DEFAULT_ENABLE_RETRY = False
DEFAULT_ENABLE_OFFLINE_QUEUE = False
DEFAULT_THROW_ON_ERROR = False
DEFAULT_MAX_RETRIES_PER_REQUEST = 1
DEFAULT_ODOMETER_REASON = "sdk_set"

# Messages buffered while disconnected when the offline queue is enabled.
OFFLINE_QUEUE_LIMIT = 1000
