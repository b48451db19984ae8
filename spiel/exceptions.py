"""Domain errors raised by the Spiel services.

Each error carries the HTTP status code the REST layer answers with. The
GraphQL layer reports all of them as ``BAD_USER_INPUT``.
"""


class SpielError(Exception):
    """Base class for all domain errors."""
    status_code = 500
    error = 'Internal Server Error'

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {
            'error': self.error,
            'message': self.message,
            'statusCode': self.status_code,
        }


class NotFoundException(SpielError):
    status_code = 404
    error = 'Not Found'


class BarcodeExistsException(SpielError):
    """A Spiel with the same barcode is already stored."""
    status_code = 422
    error = 'Unprocessable Entity'

    def __init__(self, barcode: str) -> None:
        super().__init__(f"The barcode {barcode} already exists.")
        self.barcode = barcode


class VersionInvalidException(SpielError):
    """The version token does not look like ``"<n>"``."""
    status_code = 412
    error = 'Precondition Failed'

    def __init__(self, version) -> None:
        super().__init__(f"The version {version} is invalid.")
        self.version = version


class VersionOutdatedException(SpielError):
    status_code = 412
    error = 'Precondition Failed'

    def __init__(self, version) -> None:
        super().__init__(f"The version {version} is outdated.")
        self.version = version
