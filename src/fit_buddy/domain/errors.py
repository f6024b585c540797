"""Error taxonomy shared by services and adapters.

Every error carries a short message that is safe to show to the user. None
of them is fatal to the application: callers recover to a usable state.
"""


class FitBuddyError(Exception):
    """Base class for application errors."""

    default_message = "Something went wrong."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ConfigurationError(FitBuddyError):
    """A required setting such as an API key is missing."""

    default_message = "API key not configured."


class PersistenceError(FitBuddyError):
    """Ledger storage is unavailable or could not be written."""

    default_message = "Could not save your data."


class AnalysisError(FitBuddyError):
    """The meal image analysis call failed."""

    default_message = "Failed to analyze image. Please try again."


class AdviceError(FitBuddyError):
    """The advisory chat call failed."""

    default_message = "Failed to get advice from AI. Please try again."


class MediaAccessError(FitBuddyError):
    """The microphone or speaker could not be opened."""

    default_message = "Could not start session. Check permissions?"


class TransportError(FitBuddyError):
    """The realtime voice connection failed or dropped."""

    default_message = "Sorry, a connection error occurred."
