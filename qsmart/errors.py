"""Typed errors raised by the queue ledger.

Every error carries the HTTP status the API layer answers with, so the
exception handler in ``qsmart.main`` stays a mechanical pass-through.
"""


class LedgerError(Exception):
    status_code = 400
    default_message = "Request could not be processed"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class NotFound(LedgerError):
    status_code = 404
    default_message = "Not found"


class QueueNotFound(NotFound):
    default_message = "Queue not found"


class TicketNotFound(NotFound):
    default_message = "Ticket not found"


class PreconditionFailed(LedgerError):
    status_code = 400


class QueueInactive(PreconditionFailed):
    default_message = "Queue is not active"


class DuplicateActiveTicket(PreconditionFailed):
    status_code = 409
    default_message = "You already have an active ticket in this queue"


class QueueFull(PreconditionFailed):
    default_message = "Queue is currently full. Please try again later."


class InvalidTransition(PreconditionFailed):
    default_message = "Invalid status transition"


class NoWaitingTickets(PreconditionFailed):
    status_code = 404
    default_message = "No waiting tickets in queue"


class ChildNotLinked(PreconditionFailed):
    status_code = 403
    default_message = "Unauthorized access to this child"


class Unauthorized(LedgerError):
    status_code = 403
    default_message = "Access denied"


class StorageError(LedgerError):
    status_code = 503
    default_message = "Storage is unavailable"
