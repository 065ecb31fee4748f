# Wire protocol constants (JSON field names, message kinds, delivery states)

# Envelope keys
K_SENDER = "sender"
K_CONTENT = "content"
K_TIMESTAMP = "timestamp"
K_TYPE = "type"
K_AUDIO_DATA = "audioData"
K_AUDIO_DURATION = "audioDuration"
K_SEND_TO = "sendTo"
K_MESSAGE_ID = "messageId"
K_STATUS = "status"

# Message kinds (the "type" field)
KIND_TEXT = "text"
KIND_VOICE = "voice"
KIND_TYPING = "typing"
KIND_STATUS = "status"

KINDS = (KIND_TEXT, KIND_VOICE, KIND_TYPING, KIND_STATUS)

# Delivery states carried by status envelopes
STATUS_SENT = "sent"
STATUS_DELIVERED = "delivered"
STATUS_READ = "read"

STATUSES = (STATUS_SENT, STATUS_DELIVERED, STATUS_READ)

# Typing signal payloads
TYPING_START = "start"
TYPING_STOP = "stop"

# Well-known senders
SERVER_SENDER = "server"
UNKNOWN_SENDER = "unknown"

DEFAULT_ROOM = "general"

# Identifier limits for path segments (client ids, room ids)
CLIENT_ID_MAX_CHARS = 64
ROOM_ID_MAX_CHARS = 64

# Frames longer than this are truncated in log output.
LOG_PREVIEW_CHARS = 200

# Client timing defaults (milliseconds)
INITIAL_BACKOFF_MS = 1000
MAX_BACKOFF_MS = 30_000
MAX_RECONNECT_ATTEMPTS = 10
RECONNECT_SETTLE_MS = 2000
TYPING_DEBOUNCE_MS = 2000
TYPING_EXPIRE_MS = 4000
ONLINE_USERS_POLL_MS = 5000
