from datetime import datetime, timezone


class TransportDataError(Exception):
    """Base error for the collector. `details` carries structured context (url, stopId, ...)."""

    code = "TRANSPORT_DATA_ERROR"

    def __init__(self, message, details=None):
        super().__init__(message)
        self.message = message
        self.details = dict(details or {})
        self.timestamp = datetime.now(timezone.utc).isoformat()

    def to_dict(self):
        return {
            'name': type(self).__name__,
            'message': self.message,
            'code': self.code,
            'details': self.details,
            'timestamp': self.timestamp,
        }


class NetworkError(TransportDataError):
    code = "NETWORK_ERROR"

    def __init__(self, message, url=None, status_code=None, details=None):
        details = dict(details or {})
        if url is not None:
            details['url'] = url
        if status_code is not None:
            details['statusCode'] = status_code
        super().__init__(message, details)
        self.url = url
        self.status_code = status_code


class ValidationError(TransportDataError):
    code = "VALIDATION_ERROR"


class FileSystemError(TransportDataError):
    code = "FILESYSTEM_ERROR"


class ConfigurationError(TransportDataError):
    code = "CONFIGURATION_ERROR"


class ProcessingError(TransportDataError):
    code = "PROCESSING_ERROR"
