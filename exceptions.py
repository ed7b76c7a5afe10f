class ToolError(Exception):
    """Base exception for all per-request tool errors."""

    status_code: int = 500
    error_code: str = "internal_error"

    def __init__(self, message: str, **kwargs):
        self.message = message
        self.details = kwargs
        super().__init__(message)


class NoFileProvidedError(ToolError):
    """Request lacked an image part."""

    status_code = 400
    error_code = "no_file_provided"


class UnknownToolError(ToolError):
    """Tool id is not in the registry."""

    status_code = 400
    error_code = "unknown_tool"


class InvalidParameterError(ToolError):
    """Required geometry field missing or non-numeric."""

    status_code = 400
    error_code = "invalid_parameter"


class BadRequestError(ToolError):
    """Malformed request that is not tied to a single parameter."""

    status_code = 400
    error_code = "bad_request"


class FileTooLargeError(ToolError):
    """Upload exceeds maximum allowed size."""

    status_code = 413
    error_code = "file_too_large"


class UnsupportedFormatError(ToolError):
    """Upload is not a recognized image format."""

    status_code = 415
    error_code = "unsupported_format"


class CodecFailureError(ToolError):
    """Native decode/encode step failed."""

    status_code = 500
    error_code = "codec_failure"


class CollaboratorError(ToolError):
    """External collaborator (OCR engine, document writer) failed."""

    status_code = 502
    error_code = "collaborator_failed"


class ToolTimeoutError(ToolError):
    """External tool exceeded timeout."""

    status_code = 504
    error_code = "tool_timeout"
