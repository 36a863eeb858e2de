# utils/errors.py
# Exceptions raised by the action layer and shown to users as error banners.


class ActionError(Exception):
    """An operation failed for a reason the user can read and act on."""
    status_code = 400

    def __init__(self, message):
        super().__init__(message)
        self.message = message


class NotFoundError(ActionError):
    status_code = 404


class UnauthorizedError(ActionError):
    status_code = 401


class ForbiddenError(ActionError):
    status_code = 403
