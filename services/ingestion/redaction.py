"""Redaction of sensitive values before text leaves the system boundary.

Applied unconditionally to extracted text ahead of any AI call. Placeholders
contain no digits or '@', so running the redactor twice changes nothing.
"""

import re

SSN_PLACEHOLDER = "[REDACTED-SSN]"
EMAIL_PLACEHOLDER = "[REDACTED-EMAIL]"
PHONE_PLACEHOLDER = "[REDACTED-PHONE]"

_SSN_PATTERN = re.compile(r"\b\d{3}-\d{2}-\d{4}\b")
_EMAIL_PATTERN = re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")
_PHONE_PATTERN = re.compile(r"\b\d{3}[-.]?\d{3}[-.]?\d{4}\b")


def redact(text: str) -> str:
    """Replace SSNs, email addresses and phone numbers with placeholders.

    Args:
        text: Extracted document text

    Returns:
        Text with sensitive values replaced; unmatched input is returned untouched
    """
    redacted = _SSN_PATTERN.sub(SSN_PLACEHOLDER, text)
    redacted = _EMAIL_PATTERN.sub(EMAIL_PLACEHOLDER, redacted)
    return _PHONE_PATTERN.sub(PHONE_PLACEHOLDER, redacted)
