"""Custom exception hierarchy for the Scaleway service discovery daemon."""


class ScalewayDiscoveryError(Exception):
    """Base exception for all daemon errors."""


class ConfigError(ScalewayDiscoveryError):
    """Invalid or missing configuration."""


class ScalewayAPIError(ScalewayDiscoveryError):
    """Error communicating with the Scaleway Instance API."""

    def __init__(self, message: str, status_code: int | None = None, response_body: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body


class OutputError(ScalewayDiscoveryError):
    """The file_sd target file could not be written."""
