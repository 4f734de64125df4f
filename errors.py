class LendingError(Exception):
    """Business-rule failure surfaced to the caller as {"detail": message}."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidInput(LendingError):
    status_code = 400


class Unauthorized(LendingError):
    status_code = 401


class Forbidden(LendingError):
    status_code = 403


class NotFound(LendingError):
    status_code = 404


class Conflict(LendingError):
    status_code = 409


class Unavailable(Conflict):
    pass


class CapacityExceeded(Conflict):
    pass


class IllegalTransition(Conflict):
    pass
