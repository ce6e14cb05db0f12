"""
Registry error taxonomy.

Every error is a synchronous rejection of the attempted operation; the
registry commits no state when one is raised.
"""


class RegistryError(Exception):
    """Base class for rejected registry operations."""

    code = "RegistryError"
    message = "Registry operation rejected"
    status_code = 400

    def __init__(self, message: str = None):
        super().__init__(message or self.message)

    def to_dict(self) -> dict:
        return {"error": self.code, "message": str(self)}


class AlreadyRegistered(RegistryError):
    code = "AlreadyRegistered"
    message = "Already registered"
    status_code = 409


class AuthorNotRegistered(RegistryError):
    code = "AuthorNotRegistered"
    message = "Author not registered"
    status_code = 403


class TitleRequired(RegistryError):
    code = "TitleRequired"
    message = "Title required"
    status_code = 422


class CategoryRequired(RegistryError):
    code = "CategoryRequired"
    message = "Category required"
    status_code = 422


class InvalidWorkId(RegistryError):
    code = "InvalidWorkId"
    message = "Invalid work ID"
    status_code = 404


class InvalidDisputeIndex(RegistryError):
    code = "InvalidDisputeIndex"
    message = "Invalid dispute index"
    status_code = 404


class NotAuthorized(RegistryError):
    code = "NotAuthorized"
    message = "Not authorized"
    status_code = 403


class CannotDisputeOwnWork(RegistryError):
    code = "CannotDisputeOwnWork"
    message = "Cannot dispute own work"
    status_code = 409


class AlreadyResolved(RegistryError):
    code = "AlreadyResolved"
    message = "Already resolved"
    status_code = 409


class AlreadyPending(RegistryError):
    code = "AlreadyPending"
    message = "Resolution already pending"
    status_code = 409


class UnknownDecryptionRequest(RegistryError):
    code = "UnknownDecryptionRequest"
    message = "Unknown decryption request"
    status_code = 404


class InvalidAddress(RegistryError):
    code = "InvalidAddress"
    message = "Invalid address"
    status_code = 422
