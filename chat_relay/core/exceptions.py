"""Custom exceptions for the relay."""


class RelayError(Exception):
    """Base exception for relay errors."""
    pass


class PersistenceError(RelayError):
    """Exception raised when the message or client store cannot be read or written."""
    pass


class DuplicateSessionError(RelayError):
    """Exception raised when a client identifier already has a live session."""

    def __init__(self, client_id: str):
        super().__init__(f"Client {client_id} already has a live session")
        self.client_id = client_id


class ConfigurationError(RelayError):
    """Exception raised for invalid settings."""
    pass
