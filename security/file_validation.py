from config import settings
from exceptions import BadRequestError, FileTooLargeError, NoFileProvidedError
from utils.format_detect import ImageFormat, detect_format


def validate_upload_count(count: int) -> None:
    """Reject requests with no image parts or more than max_files_per_request."""
    if count == 0:
        raise NoFileProvidedError("No image file provided")
    if count > settings.max_files_per_request:
        raise BadRequestError(
            f"Too many files: {count} (limit {settings.max_files_per_request})",
            file_count=count,
            limit=settings.max_files_per_request,
        )


def validate_file(data: bytes, filename: str | None = None) -> ImageFormat:
    """Check one upload's size and magic bytes. Runs before any decode.

    Args:
        data: Raw file bytes.
        filename: Client filename, only used in error details.

    Returns:
        Detected ImageFormat.

    Raises:
        NoFileProvidedError: If the part is empty.
        FileTooLargeError: If file exceeds max_file_size_mb.
        UnsupportedFormatError: If magic bytes don't match any known format.
    """
    if not data:
        raise NoFileProvidedError("Uploaded file is empty", filename=filename)

    if len(data) > settings.max_file_size_bytes:
        raise FileTooLargeError(
            f"File size {len(data)} bytes exceeds limit of {settings.max_file_size_mb} MB",
            file_size=len(data),
            limit=settings.max_file_size_bytes,
        )

    return detect_format(data)
