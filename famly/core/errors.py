"""fam.ly — Error taxonomy.

Validation and permission errors block a mutation and are reported to the
caller. External-service errors are downgraded to a conversational message
at the chat boundary. Interchange errors are caught per block on import.
"""


class FamlyError(Exception):
    """Base class for every error raised by fam.ly."""


class ValidationError(FamlyError):
    """A required field is missing or a value is outside its allowed set."""


class NotFoundError(FamlyError):
    """A command references a record that does not exist."""


class PermissionDeniedError(FamlyError):
    """The acting member is not allowed to perform the operation."""


class MalformedInterchangeError(FamlyError):
    """A calendar-interchange block could not be parsed."""


class SessionBusyError(FamlyError):
    """Input arrived while a completion request was still in flight."""


class ExternalServiceError(FamlyError):
    """A collaborator outside the core (LLM, storage, speech) failed."""


class CompletionError(ExternalServiceError):
    """The language-model provider call failed."""


class PersistenceError(ExternalServiceError):
    """The storage layer rejected or failed an operation."""


class TranscriptionError(ExternalServiceError):
    """Speech-to-text failed."""
