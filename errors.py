class ClinicError(Exception):
    """Base class for errors raised by the clinic workflow services."""

    status_code = 500

    def __init__(self, message):
        super().__init__(message)
        self.message = message


class ValidationError(ClinicError):
    """A required field is missing or malformed. Nothing was written."""

    status_code = 400


class NotFound(ClinicError):
    status_code = 404


class InvalidTransition(ClinicError):
    """The record is not in a state that allows the requested change."""

    status_code = 409


class BackendError(ClinicError):
    """A database operation failed and the current sequence was rolled back."""

    status_code = 500
