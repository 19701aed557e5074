"""
Logging configuration for the Basic Chat server
"""

import logging
import sys
from typing import Optional
from .constants import LOG_LEVEL


def get_logger(name: str = "basic_chat") -> logging.Logger:
    """
    Get a logger instance with the server's formatting

    Args:
        name: Logger name

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(logging.DEBUG)

        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )
        handler.setFormatter(formatter)

        logger.addHandler(handler)
        logger.setLevel(LOG_LEVEL)

        # Prevent propagation to root logger
        logger.propagate = False

    return logger


def log_security_event(event_type: str, details: dict, logger: Optional[logging.Logger] = None):
    """
    Log security-related events with structured data

    Args:
        event_type: Type of security event
        details: Event details
        logger: Logger instance (optional)
    """
    if logger is None:
        logger = get_logger()

    logger.warning(f"SECURITY_EVENT: {event_type} | {details}")


def log_connection_event(connection_id: str, action: str, username: str = ""):
    """
    Log connection-related events for monitoring

    Args:
        connection_id: Connection identifier
        action: Action (connect/named/disconnect)
        username: Bound username, if any
    """
    logger = get_logger()
    logger.info(f"CONNECTION_EVENT: {action} | conn={connection_id} | user={username or '-'}")


def log_message_event(message_id, connection_id: str, action: str, details: str = ""):
    """
    Log message-related events for debugging

    Args:
        message_id: Stored message id (None before the message is stored)
        connection_id: Sender connection identifier
        action: Action (stored/broadcast/rejected)
        details: Additional details
    """
    logger = get_logger()
    logger.info(f"MESSAGE_EVENT: {action} | id={message_id} | conn={connection_id} | {details}")


def log_database_event(operation: str, table: str, details: str = ""):
    """
    Log a single statement sent to the store

    Args:
        operation: Statement kind (select/insert/update/delete)
        table: Target table
        details: Additional details
    """
    logger = get_logger()
    logger.debug(f"DATABASE_EVENT: {operation} | table={table} | {details}")


def log_websocket_event(event_type: str, connection_id: str, details: str = ""):
    """
    Log WebSocket protocol events

    Args:
        event_type: Type of WebSocket event
        connection_id: Connection identifier
        details: Additional details
    """
    logger = get_logger()
    logger.debug(f"WEBSOCKET_EVENT: {event_type} | conn={connection_id} | {details}")


def log_system_event(event_type: str, details: str, level: str = "info"):
    """
    Log system-level events

    Args:
        event_type: Type of system event
        details: Event details
        level: Log level (info/warning/error)
    """
    logger = get_logger()
    log_message = f"SYSTEM_EVENT: {event_type} | {details}"

    if level == "warning":
        logger.warning(log_message)
    elif level == "error":
        logger.error(log_message)
    else:
        logger.info(log_message)
