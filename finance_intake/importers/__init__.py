"""Statement importers: turn uploaded CSV and OFX/QFX statements into parsed transactions."""

from .csv_parser import parse_csv  # noqa: F401
from .fields import decode_statement  # noqa: F401
from .ofx_parser import parse_ofx  # noqa: F401
from .validation import validate_csv_file, validate_ofx_file  # noqa: F401
