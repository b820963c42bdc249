# Relay wire protocol constants (plain UTF-8 text grammar)

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 8050
DEFAULT_BACKLOG = 16

# Directive prefixes
P_TO = "TO:"
P_ROSTER = "CLIENTES:"

# Separator between target token and content in a TO: directive.
TARGET_DELIM = "|"

# Target token addressing every connected peer.
TARGET_ALL = "ALL"

# Separator between identifiers in a roster push.
ROSTER_DELIM = ","

# Relayed text carries its author: "From <sender>: <content>".
FORWARD_PREFIX = "From "
FORWARD_DELIM = ": "

# Framing modes
FRAMING_RAW = "raw"
FRAMING_LINE = "line"
FRAMING_LENGTH = "length"
FRAMING_MODES = (FRAMING_RAW, FRAMING_LINE, FRAMING_LENGTH)

# Receive buffer used by the reference peers; in raw mode every read of at
# most this many bytes is delivered as one message.
RAW_RECV_BUFFER = 100

# Read size for the framed modes.
FRAMED_RECV_BUFFER = 4096

# Length-prefixed frames: 4-byte big-endian unsigned size.
LENGTH_PREFIX_BYTES = 4
MAX_FRAME_BYTES = 1024 * 1024

TEXT_ENCODING = "utf-8"
