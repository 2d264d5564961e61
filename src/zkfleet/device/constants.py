"""ZK protocol command ids and wire constants."""

USHRT_MAX = 65535

# Session control
CMD_CONNECT = 1000
CMD_EXIT = 1001
CMD_ENABLEDEVICE = 1002
CMD_DISABLEDEVICE = 1003
CMD_REFRESHDATA = 1013
CMD_AUTH = 1102

# Data commands
CMD_DB_RRQ = 7
CMD_USER_WRQ = 8
CMD_USERTEMP_RRQ = 9
CMD_ATTLOG_RRQ = 13
CMD_CLEAR_ATTLOG = 15
CMD_DELETE_USER = 18
CMD_UNLOCK = 31
CMD_GET_FREE_SIZES = 50
CMD_GET_TIME = 201
CMD_SET_TIME = 202
CMD_REG_EVENT = 500

# Buffered transfer
CMD_PREPARE_DATA = 1500
CMD_DATA = 1501
CMD_FREE_DATA = 1502
CMD_PREPARE_BUFFER = 1503
CMD_READ_BUFFER = 1504

# Replies
CMD_ACK_OK = 2000
CMD_ACK_ERROR = 2001
CMD_ACK_DATA = 2002
CMD_ACK_RETRY = 2003
CMD_ACK_REPEAT = 2004
CMD_ACK_UNAUTH = 2005
CMD_ACK_UNKNOWN = 0xFFFF

# Function codes for CMD_PREPARE_BUFFER
FCT_ATTLOG = 1
FCT_USER = 5

# TCP framing
TCP_MAGIC_1 = 0x5050
TCP_MAGIC_2 = 0x7D82
HEADER_SIZE = 8
TCP_TOP_SIZE = 8

# Chunk sizes
TCP_MAX_CHUNK = 0xFFC0
UDP_MAX_CHUNK = 16 * 1024

# Timeouts (seconds)
DEFAULT_REQUEST_TIMEOUT = 10.0
DEFAULT_CHUNK_TIMEOUT = 10.0
DEFAULT_GRACE_PERIOD = 0.1

# Local UDP inbound port pool
UDP_PORT_RANGE = (5200, 5500)
UDP_BIND_ATTEMPTS = 10

DEFAULT_DEVICE_PORT = 4370
AUTH_TICKS = 50

# Device-local user slots
MIN_UID = 1
MAX_UID = 3000

# Privilege codes seen on the wire
USER_DEFAULT = 0
USER_ENROLLER = 2
USER_MANAGER = 6
USER_ADMIN = 14
KNOWN_ROLES = frozenset({USER_DEFAULT, USER_ENROLLER, USER_MANAGER, USER_ADMIN})
