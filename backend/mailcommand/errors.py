"""
Error taxonomy for the inbound command pipeline.

  MailCommandError          root of everything raised on purpose
    CollaboratorError       an external service failed (send, fetch, storage, trigger)
      ProviderError         email vendor API rejected the request or was unreachable
      FetchError            page fetch returned non-2xx or failed at the transport
      StorageError          artifact store create/query failed
      WorkflowError         external workflow trigger failed
    WebhookParseError       a vendor payload could not be decoded into its schema
    HandlerInputError       a recognised command is missing or has malformed input
    CommandRoutingError     a handler was asked to run a command it does not own

Handlers turn HandlerInputError and CollaboratorError into a failed
ExecutionResult. CommandRoutingError is a programming error and is never
converted: it aborts the request.
"""


class MailCommandError(Exception):
    """Base class for all pipeline errors."""


class CollaboratorError(MailCommandError):
    """
    An external collaborator failed.

    ``user_message`` is safe to show to the sender; ``str(exc)`` may carry
    vendor detail and is only logged.
    """

    def __init__(self, message: str, user_message: str | None = None):
        super().__init__(message)
        self.user_message = user_message or message


class ProviderError(CollaboratorError):
    """Raised when an email provider cannot send a message."""


class FetchError(CollaboratorError):
    """Raised when a page cannot be fetched."""


class StorageError(CollaboratorError):
    """Raised when the artifact store fails."""


class WorkflowError(CollaboratorError):
    """Raised when the external workflow trigger fails."""


class WebhookParseError(MailCommandError):
    """Raised when a webhook payload does not match the vendor's schema."""


class HandlerInputError(MailCommandError):
    """Raised when a command's fields are missing or malformed."""


class CommandRoutingError(MailCommandError):
    """Raised when a handler is dispatched a command it is not registered for."""
