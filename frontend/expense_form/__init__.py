"""
Expense reimbursement form pipeline.

This package holds everything the Streamlit page needs besides widgets:
  - the form state store and its invariants
  - validation, totals and the attachment key scheme shared with the relay
  - rendering of the reimbursement document
  - submission to the mail relay with bounded retries
"""

from .errors import DocumentCompositionError, ExpenseFormError, SubmissionInProgressError
from .state import AttachmentCategory, FileRef, FormState, FormStore, new_form_state
from .submission import SubmissionController, SubmissionOutcome
from .validator import ValidationError, validate

__all__ = [
    "AttachmentCategory",
    "DocumentCompositionError",
    "ExpenseFormError",
    "FileRef",
    "FormState",
    "FormStore",
    "SubmissionController",
    "SubmissionInProgressError",
    "SubmissionOutcome",
    "ValidationError",
    "new_form_state",
    "validate",
]
