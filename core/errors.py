class ConversionServiceError(Exception):
    # HTTP status code the API responds with when this error escapes a request.
    status_code: int = 500

    def __init__(self, message: str):
        super().__init__(message)

        self.message = message


class NotFound(ConversionServiceError):
    status_code = 404


class InvalidState(ConversionServiceError):
    status_code = 409


class InvalidReference(ConversionServiceError):
    status_code = 400


class DuplicateIndex(ConversionServiceError):
    status_code = 400


class AlreadyFailed(ConversionServiceError):
    status_code = 409

    def __init__(self, message: str, stored_error: str):
        super().__init__(message)

        self.stored_error = stored_error


class MaterializationFailure(ConversionServiceError):
    status_code = 500


class EmptyConversion(MaterializationFailure):
    status_code = 422


class UnsupportedImage(ConversionServiceError):
    status_code = 400
