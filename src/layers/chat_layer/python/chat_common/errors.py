# src/layers/chat_layer/python/chat_common/errors.py


class RequestError(Exception):
    """
    Base class for failures that are reported back to the caller.
    Anything else escaping a handler is treated as an internal error.
    """
    status_code = 500

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationError(RequestError):
    status_code = 400


class AuthenticationError(RequestError):
    status_code = 401


class NotFoundError(RequestError):
    status_code = 404


class ConflictError(RequestError):
    # Duplicate names are reported as bad requests, not 409.
    status_code = 400
