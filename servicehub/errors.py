"""
This module contains the error taxonomy of the reservation lifecycle.
"""


class ReservationError(Exception):
    """
    Base class for failures the caller must learn about.
    The HTTP layer answers with `status_code`.
    """
    status_code = 400


class NotFound(ReservationError):
    """A referenced service, user, reservation or notification does not exist."""
    status_code = 404


class Conflict(ReservationError):
    """Another reservation already occupies the requested window."""
    status_code = 400


class InvalidState(ReservationError):
    """The reservation is not in a state that allows the transition."""
    status_code = 400


class Forbidden(ReservationError):
    """The acting user may not act on this reservation."""
    status_code = 403


class SideEffectFailure(Exception):
    """
    A notification or email could not be delivered.
    Never propagated past the lifecycle: logged and swallowed.
    """
    pass


class UnknownTemplate(SideEffectFailure):
    """No email template has this name. Retrying cannot help."""
    pass
