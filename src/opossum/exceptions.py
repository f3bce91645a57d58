"""
Custom exception classes for opossum.

Whole-batch problems (no sequences, no TFs, zero search region length) are
raised to the caller. Problems confined to one TF or TF cluster are raised as
:class:`MotifError` and recorded by the pipeline as a failed id.
"""


class OpossumError(Exception):
    """Base exception for all opossum errors."""

    pass


# ============================================================================
# Input errors
# ============================================================================


class InputValidationError(OpossumError, ValueError):
    """Raised when analysis input fails validation checks."""

    pass


class EmptyInputError(InputValidationError):
    """Raised when a required collection is empty."""

    def __init__(self, data_name: str = "data"):
        super().__init__(f"Empty {data_name} provided where non-empty data is required")
        self.data_name = data_name


class ThresholdError(InputValidationError):
    """Raised when a score threshold cannot be interpreted."""

    def __init__(self, value, reason: str = ""):
        detail = f": {reason}" if reason else ""
        super().__init__(f"Invalid threshold {value!r}{detail}")
        self.value = value


class FileFormatError(OpossumError, ValueError):
    """Raised when an input file has an unexpected or invalid format."""

    pass


# ============================================================================
# Model and computation errors
# ============================================================================


class MotifError(OpossumError, ValueError):
    """Raised when a motif matrix cannot be used for scanning."""

    def __init__(self, motif_id: str, reason: str):
        super().__init__(f"Motif {motif_id}: {reason}")
        self.motif_id = motif_id


class PreconditionError(OpossumError, ArithmeticError):
    """Raised when a statistic is requested with degenerate totals."""

    pass


class ResultSetError(OpossumError):
    """Raised when result sets or count tables disagree on their id sets."""

    def __init__(self, context: str, missing: list = None):
        missing_str = f" Mismatched ids: {missing}" if missing else ""
        super().__init__(f"Inconsistent id sets in {context}.{missing_str}")
        self.missing = missing or []
