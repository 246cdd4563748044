"""
Flattens attachment groups and expense receipts into transmission keys.

Keys follow :mod:`expense_common.keys`. Indices are 0-based positions in the
current state, so aggregating the same state twice yields the same mapping.
"""

from __future__ import annotations

from typing import Dict

from expense_common.keys import SIGNATURE_KEY, category_key, expense_key

from .state import AttachmentCategory, FileRef, FormState, UploadedSignature


def aggregate_attachments(state: FormState) -> Dict[str, FileRef]:
    files: Dict[str, FileRef] = {}

    for category in AttachmentCategory:
        for group_index, group in enumerate(state.groups(category)):
            for file_index, file in enumerate(group.files):
                files[category_key(category, group_index, file_index)] = file

    for expense_index, line in enumerate(state.expenses):
        for file_index, file in enumerate(line.attachments):
            files[expense_key(expense_index, file_index)] = file

    # drawn signatures are embedded in the document instead
    if isinstance(state.signature, UploadedSignature):
        files[SIGNATURE_KEY] = state.signature.file

    return files
