"""Error taxonomy for consultations, video rooms and payments.

Every error carries a user-facing ``message`` and optional ``details`` that
are logged but never shown to the participant.
"""
from typing import Any, Optional


class ConsultationError(Exception):
    """Base class for every error raised by the consultation core."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class InvalidInput(ConsultationError):
    """Malformed host name, room name, email, display name or minutes."""


class InvalidSchedule(ConsultationError):
    """End of the consultation window is not after its start."""


class DuplicateRoom(ConsultationError):
    """Another consultation already uses the same normalized room name."""


class NotFound(ConsultationError):
    """Room (or a client entry within it) does not exist."""


class ClientNotInvited(ConsultationError):
    """Email is not on the consultation's roster."""


class StorageFailure(ConsultationError):
    """The store could not complete a read or write."""


class CredentialIssuanceFailure(ConsultationError):
    """The video provider refused or failed to issue a join credential."""


class RoomCompletionFailure(ConsultationError):
    """The video provider failed to mark a room completed. Non-fatal."""


class PaymentError(ConsultationError):
    """Outbound call to the payment gateway failed."""


class PaymentWebhookProcessingFailure(ConsultationError):
    """A recognized gateway event could not be applied."""
