class LaunchError(Exception):
    """Base exception for the Launch AI build backend."""

    pass


class AgentExecutionError(LaunchError):
    """Raised when a content-generating agent fails during a phase."""

    def __init__(self, phase: str, message: str):
        self.phase = phase
        super().__init__(message)


class PackagingError(LaunchError):
    """Raised when the download archive cannot be assembled."""

    pass


class InsufficientCreditsError(LaunchError):
    """Raised when a user has no build credits left."""

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__("No credits remaining")
