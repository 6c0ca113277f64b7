"""Cheap upload checks run before any statement is parsed."""

import codecs

from finance_intake.core.models import FileValidation
from finance_intake.core.settings import get_settings

CSV_EXTENSIONS = (".csv",)
OFX_EXTENSIONS = (".ofx", ".qfx")
OFX_SIGNATURES = (b"OFXHEADER", b"<OFX")
SIGNATURE_WINDOW = 4096
MEGABYTE = 1024 * 1024


def _check_size(size: int, max_bytes: int | None) -> FileValidation | None:
    limit = max_bytes if max_bytes is not None else get_settings().max_upload_bytes
    if size > limit:
        return FileValidation(valid=False, error=f"File size must be less than {limit // MEGABYTE}MB")
    if size == 0:
        return FileValidation(valid=False, error="File is empty")
    return None


def _signature_window(head: bytes) -> bytes:
    window = head[:SIGNATURE_WINDOW]
    if window.startswith((codecs.BOM_UTF16_LE, codecs.BOM_UTF16_BE)):
        window = window.decode("utf-16", errors="ignore").encode("ascii", errors="ignore")
    return window.upper()


def validate_csv_file(filename: str | None, size: int, max_bytes: int | None = None) -> FileValidation:
    """Check a CSV upload's extension and size."""
    if not filename or not filename.lower().endswith(CSV_EXTENSIONS):
        return FileValidation(valid=False, error="File must be a CSV file")
    return _check_size(size, max_bytes) or FileValidation(valid=True)


def validate_ofx_file(
    filename: str | None,
    size: int,
    head: bytes | None = None,
    max_bytes: int | None = None,
) -> FileValidation:
    """Check an OFX/QFX upload's extension, size and, when given the leading bytes, its signature."""
    if not filename or not filename.lower().endswith(OFX_EXTENSIONS):
        return FileValidation(valid=False, error="File must be an OFX or QFX file")
    failure = _check_size(size, max_bytes)
    if failure:
        return failure
    if head is not None:
        window = _signature_window(head)
        if not any(signature in window for signature in OFX_SIGNATURES):
            return FileValidation(valid=False, error="File does not look like an OFX statement (no OFX header)")
    return FileValidation(valid=True)
