"""
Settings and limits for the Basic Chat server
"""

import os

# Storage
DATABASE_PATH = os.getenv("BASIC_CHAT_DATABASE", "database.sqlite")
USERS_TABLE = "users"
MESSAGES_TABLE = "messages"

# Server settings
HOST = os.getenv("BASIC_CHAT_HOST", "0.0.0.0")
PORT = int(os.getenv("BASIC_CHAT_PORT", "8000"))

# Presence settings
RECONCILE_INTERVAL_SECONDS = int(os.getenv("BASIC_CHAT_RECONCILE_INTERVAL", "60"))
CONNECTION_ID_BYTES = 15

# WebSocket settings
MAX_FRAME_SIZE_BYTES = 10240
WS_PING_INTERVAL = 20
WS_PING_TIMEOUT = 10

# SQL identifiers (table and column names)
IDENTIFIER_PATTERN = r'^[A-Za-z_][A-Za-z0-9_]*$'

# Logging levels
LOG_LEVEL = os.getenv("BASIC_CHAT_LOG_LEVEL", "INFO")

# Error messages
ERROR_MESSAGES = {
    "username_taken": "Sorry, that username is already taken, try another one.",
    "username_empty": "The username cannot be empty.",
    "already_named": "This connection already has a username",
    "not_named": "Choose a username before sending messages",
    "empty_message": "Message cannot be empty",
    "invalid_json": "Invalid JSON format",
    "invalid_payload": "Invalid message format",
    "frame_too_large": "Message is too large",
    "storage_failed": "Your message did not go through, please try again",
    "claim_failed": "Your username could not be saved, please try again",
    "invalid_property": "Invalid property",
}

# CORS settings
CORS_ORIGINS = ["*"]
CORS_ALLOW_CREDENTIALS = False

# Outgoing events queued per connection before it is dropped as stalled
OUTBOX_MAX_EVENTS = 256

# Messages shown on the HTML error page
ERROR_PAGE_MESSAGES = {
    404: "Sorry, that page does not exist",
    405: "Sorry, that method is not allowed here",
    500: "Something went wrong on our side, please try again later",
}
