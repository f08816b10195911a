# Wire protocol constants (line prefixes and fixed replies)

ENCODING = "utf-8"

DEFAULT_PORT = 10100

# Client -> server
P_NICKNAME = "NICKNAME:"
P_MSG = "MSG:"
P_PRIVATE = "PRIVATE:"
C_DISCONNECT = "DISCONNECT"

# Server -> client
P_USERLIST = "USERLIST:"

# Separators
SEP_FIELD = ":"
SEP_USERLIST = ","

# Presence suffixes
S_JOINED = " has joined"
S_LEFT = " has left"

# Private delivery results (sent to the originator only)
R_PRIVATE_SENT = "Message sent to {recipient}"
R_PRIVATE_NOT_FOUND = "User {recipient} not found."

# Slow client policies
POLICY_DISCONNECT = "disconnect"
POLICY_DROP = "drop"
SLOW_CLIENT_POLICIES = (POLICY_DISCONNECT, POLICY_DROP)
