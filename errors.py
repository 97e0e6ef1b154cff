"""Error taxonomy shared by the services and the HTTP layer.

Services raise these internally; the ``operation`` decorator in ``services``
hands them back to callers inside ``results.Err``.
"""


class ServiceError(Exception):
    pass


class CredentialError(ServiceError):
    pass


class MissingCredential(CredentialError):
    pass


class InvalidCredential(CredentialError):
    pass


class MisconfiguredSigningSecret(ServiceError):
    """Raised when no token signing secret is configured on the server."""


class NotFoundError(ServiceError):
    pass


class IdentityNotFound(NotFoundError):
    pass


class UserNotFound(NotFoundError):
    pass


class CategoryNotFound(NotFoundError):
    pass


class ExpenseNotFound(NotFoundError):
    pass


class NoExpensesInRange(NotFoundError):
    pass


class AlreadyExists(ServiceError):
    pass


class PermissionDenied(ServiceError):
    pass


class StoreFailure(ServiceError):
    """Unexpected persistence error. The original exception is on ``__cause__``."""
