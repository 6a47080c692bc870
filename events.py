# Inbound (client -> server)
CREATE_ROOM = "create-room"
JOIN_ROOM = "join-room"
SEND_MESSAGE = "send-message"
DISCONNECTING = "disconnecting" # implicit, raised when the socket closes

# Outbound (server -> client)
ROOM_CREATED = "room-created" # requester only, no payload
ROOM_NOT_FOUND = "room-not-found" # requester only, no payload
ROOM_HISTORY = "room-history" # joining connection only, list of messages
RECEIVE_MESSAGE = "receive-message" # room subscribers, single message
ERROR = "error" # requester only, {"detail": str}

# **Frame format**
# - Every WebSocket text frame is `{"event": <name>, "data": <payload>}`
# - `data` is omitted / null for events without a payload
