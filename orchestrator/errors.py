"""Error taxonomy for the planner.

Every error carries a message that is safe to show to the end user verbatim.
"""


class PlannerError(Exception):
    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class CredentialsExhaustedError(PlannerError):
    """Every configured API key has hit its quota."""

    def __init__(self, message: str = "All API keys have exceeded their daily quota. Please add a new key or try again tomorrow.") -> None:
        super().__init__(message)


class ModelOverloadedError(PlannerError):
    """Upstream stayed unavailable after the whole retry budget."""

    def __init__(self, message: str = "The AI model is currently overloaded. Please try again in a few minutes.") -> None:
        super().__init__(message)


class MalformedResponseError(PlannerError):
    def __init__(self, message: str = "The AI returned an unexpected format. Please try again.") -> None:
        super().__init__(message)


class InvalidCredentialError(PlannerError):
    def __init__(self, message: str = "An invalid API key was provided. Please check your configuration.") -> None:
        super().__init__(message)


class GenerationError(PlannerError):
    pass


class EnrichmentError(PlannerError):
    def __init__(self, message: str = "Sorry, we couldn't load the map data for this day. Please try again later.") -> None:
        super().__init__(message)


class ExportError(PlannerError):
    pass
