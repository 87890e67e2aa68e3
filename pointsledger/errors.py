from enum import Enum


class ErrorCode(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    INVALID_ARGUMENT = "invalid-argument"
    NOT_FOUND = "not-found"
    ALREADY_EXISTS = "already-exists"
    PERMISSION_DENIED = "permission-denied"
    FAILED_PRECONDITION = "failed-precondition"
    INTERNAL = "internal"

    @property
    def status(self) -> str:
        """Canonical status name used in the callable error envelope."""
        return self.value.replace("-", "_").upper()


class LedgerServiceError(Exception):
    code = ErrorCode.INTERNAL
    http_status = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class UnauthenticatedError(LedgerServiceError):
    code = ErrorCode.UNAUTHENTICATED
    http_status = 401


class InvalidArgumentError(LedgerServiceError):
    code = ErrorCode.INVALID_ARGUMENT
    http_status = 400


class NotFoundError(LedgerServiceError):
    code = ErrorCode.NOT_FOUND
    http_status = 404


class AlreadyExistsError(LedgerServiceError):
    code = ErrorCode.ALREADY_EXISTS
    http_status = 409


class PermissionDeniedError(LedgerServiceError):
    code = ErrorCode.PERMISSION_DENIED
    http_status = 403


class FailedPreconditionError(LedgerServiceError):
    code = ErrorCode.FAILED_PRECONDITION
    http_status = 400


class InternalError(LedgerServiceError):
    code = ErrorCode.INTERNAL
    http_status = 500


class StorageError(Exception):
    pass


class MalformedDocumentError(StorageError):
    def __init__(self, collection: str, doc_id: str, reason: str):
        super().__init__(f"Malformed document {collection}/{doc_id}: {reason}")
        self.collection = collection
        self.doc_id = doc_id


class TransactionAbortedError(StorageError):
    pass
