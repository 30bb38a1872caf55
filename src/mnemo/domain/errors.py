"""
Typed failures raised by the scheduling core and its collaborators.

Each error carries the status code the HTTP layer answers with.
"""


class MnemoError(Exception):
    status_code = 500
    public_message = "Unable to process your request. Please try again."

    def __init__(self, message: str | None = None):
        super().__init__(message or self.public_message)
        self.message = message or self.public_message


class InvalidQuality(MnemoError):
    status_code = 400
    public_message = "Invalid quality rating. Must be 0, 3, 4, or 5."

    def __init__(self, quality: object = None, message: str | None = None):
        super().__init__(message)
        self.quality = quality


class ValidationFailed(MnemoError):
    status_code = 400
    public_message = "Invalid input."


class CardNotFound(MnemoError):
    """Raised whether the card never existed or belongs to another learner."""

    status_code = 404
    public_message = "Card not found"


class ScopeNotFound(MnemoError):
    status_code = 404
    public_message = "Deck not found"


class StaleCardState(MnemoError):
    """Another review of the same card was committed first."""

    status_code = 409
    public_message = "This card was reviewed concurrently. Reload and try again."


class PersistenceFailure(MnemoError):
    status_code = 500
    public_message = "Unable to process your answer. Please try again."
