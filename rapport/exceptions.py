class RapportError(Exception):
    """Base class for domain errors."""


class NotFoundError(RapportError):
    """A referenced user or conversation does not exist."""


class InvalidRequestError(RapportError):
    """The request violates an invariant (participants, ownership, analysis kind)."""


class InsufficientDataError(RapportError):
    """Too few indexed messages for a meaningful analysis."""

    def __init__(self, required: int, available: int):
        self.required = required
        self.available = available
        super().__init__(f"Need at least {required} messages, found {available}")
