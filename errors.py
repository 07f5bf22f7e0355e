"""Error taxonomy shared by the service modules.

Each error carries the HTTP status it maps to; ``main`` installs the handlers
that render them as ``{"message": ...}``.
"""


class StoreError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(StoreError):
    status_code = 400


class CapacityError(ValidationError):
    """Requested quantity is more than the product has in stock."""


class AuthenticationError(StoreError):
    status_code = 401


class AuthorizationError(StoreError):
    status_code = 403


class NotFoundError(StoreError):
    status_code = 404
