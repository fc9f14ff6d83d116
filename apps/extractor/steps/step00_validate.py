"""
Step 0 — Input validation.
Accept text only; normalize line endings and strip NUL bytes.
Empty or non-text input yields no text and a warning, never an exception.
"""
from __future__ import annotations

from typing import Any, Optional

from packages.shared.models import Warning


def validate_document(document_text: Any) -> tuple[Optional[str], list[Warning]]:
    """
    Return (normalized_text, warnings). normalized_text is None when there is
    nothing to extract from.
    """
    warnings: list[Warning] = []

    if isinstance(document_text, bytes):
        try:
            document_text = document_text.decode("utf-8")
        except UnicodeDecodeError:
            warnings.append(Warning(
                code="NON_TEXT_INPUT",
                message="Document bytes are not valid UTF-8 text",
            ))
            return None, warnings

    if not isinstance(document_text, str):
        warnings.append(Warning(
            code="NON_TEXT_INPUT",
            message=f"Document has unsupported type '{type(document_text).__name__}'",
        ))
        return None, warnings

    text = document_text.replace("\r\n", "\n").replace("\r", "\n").replace("\x00", "")
    if not text.strip():
        warnings.append(Warning(
            code="EMPTY_DOCUMENT",
            message="Document contains no text",
        ))
        return None, warnings

    return text, warnings
