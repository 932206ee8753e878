from starlette import status


class MessagingError(Exception):
    """Base class for errors raised by the messaging services.

    ``detail`` is what the client sees, so keep it short and free of message
    content or other participants' data.
    """

    status_code = status.HTTP_400_BAD_REQUEST
    error = "messaging_error"

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class ValidationError(MessagingError):
    status_code = status.HTTP_400_BAD_REQUEST
    error = "validation_error"


class NotFoundError(MessagingError):
    status_code = status.HTTP_404_NOT_FOUND
    error = "not_found"


class PermissionDeniedError(MessagingError):
    status_code = status.HTTP_403_FORBIDDEN
    error = "permission_denied"

    def __init__(self, detail: str = "You do not have access to this conversation"):
        super().__init__(detail)


class StorageError(MessagingError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    error = "storage_error"

    def __init__(self, detail: str = "Database error occurred"):
        super().__init__(detail)
