"""chatrelay: a WebSocket chat relay with rooms, directed messages and delivery acks."""

__version__ = "0.1.0"
