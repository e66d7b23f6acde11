class RankLoggerError(Exception):
    """Base class for errors raised by the rank logger."""


class TransportError(RankLoggerError):
    """Network failure, timeout or non-2xx response from an external API."""


class RobloxAPIError(TransportError):
    def __init__(self, status, message):
        super().__init__(f"Roblox API error {status}: {message}")
        self.status = status
        self.message = message


class NotFoundError(RankLoggerError):
    """A requested role, user or group has no match."""


class ConfigurationError(RankLoggerError):
    """A required credential or setting is missing or malformed."""
