"""Core exceptions shared by configuration, cache tiers and providers.

Only configuration and programmer errors are raised past a component
boundary. Storage, transport and validation failures are caught inside
the component that hit them, logged, and turned into a cache miss or a
``notFound`` resolution.
"""


class MavinError(Exception):
    """Base class for all Mavin errors."""


class ConfigurationError(MavinError):
    """Raised when configuration loading or parsing fails."""

    def __init__(self, message: str, config_path: str | None = None) -> None:
        """Initialize the configuration error.

        Args:
            message: Error description
            config_path: Path to the config file that caused the error

        """
        super().__init__(message)
        self.config_path = config_path


class ProviderError(MavinError):
    """Transport failure while talking to an external metadata provider."""

    def __init__(self, provider: str, message: str, status: int | None = None) -> None:
        """Initialize the provider error.

        Args:
            provider: Provider name (e.g. "spotify")
            message: Error description
            status: HTTP status code when the failure came from a response

        """
        super().__init__(f"[{provider}] {message}")
        self.provider = provider
        self.status = status
