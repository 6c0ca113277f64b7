"""Finance Intake: bank statement import, merchant normalization and background job tracking."""

__version__ = "1.0.0"
