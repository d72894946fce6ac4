"""Error taxonomy raised by the line engine and its collaborators."""

from __future__ import annotations


class QueueError(RuntimeError):
    """Base error for line operations."""


class ValidationError(QueueError):
    """Raised for malformed or unrecognised caller input."""


class InvalidServiceError(ValidationError):
    """Raised when a service type is not one of the known line categories."""


class InvalidTimeSlotError(ValidationError):
    """Raised when a booking names an unknown or empty time slot."""


class TicketNotFoundError(QueueError):
    """Raised when an operation targets a non-existent ticket."""


class ConflictError(QueueError):
    """Raised when the requested change clashes with the ticket's state."""


class AlreadyCompletedError(ConflictError):
    """Raised when completing a ticket that has already left the line."""


class ConcurrentWriteError(ConflictError):
    """Raised by a store when the line changed underneath a transaction."""


class EmptyQueueError(QueueError):
    """Raised when there is no pending ticket to advance."""


class AccessError(QueueError):
    """Base error for identity and role failures."""


class IdentityRequiredError(AccessError):
    """Raised when an operation is invoked without a verified identity."""


class ForbiddenError(AccessError):
    """Raised when the caller's role does not allow the operation."""


class TransientQueueError(QueueError):
    """Raised when a mutation kept conflicting after every retry."""
