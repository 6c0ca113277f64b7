"""Domain exceptions shared by the importer, normalizer and job queue."""


class FinanceIntakeError(Exception):
    """Base class for errors raised by Finance Intake components."""


class StatementImportError(FinanceIntakeError):
    """The statement as a whole could not be parsed (empty, undecodable, no envelope)."""


class MerchantBatchError(FinanceIntakeError, ValueError):
    """A merchant batch was rejected before normalization started."""


class UnknownJobTypeError(FinanceIntakeError, ValueError):
    """A job was submitted with a type that has no entry in the registry."""


class JobCancelledError(FinanceIntakeError):
    """The job left the RUNNING state while its handler was still working."""


class KnowledgeBaseError(FinanceIntakeError):
    """The merchant knowledge base could not be read or written."""
