#!/usr/bin/env python3
"""
cborld_error.py - Structured error type for CBOR-LD processing

Every failure raised by the decoder carries a stable code so callers can
branch on the kind of failure without parsing messages.

Codes:
    ERR_NOT_CBORLD                    missing/unknown envelope tag
    ERR_UNDEFINED_COMPRESSED_CONTEXT  context code with no known URL
    ERR_UNKNOWN_CBORLD_TERM           term ID not in the term codec map
    ERR_UNKNOWN_CBORLD_ENCODING       value cannot be realized
    ERR_UNSUPPORTED_CBORLD_SHAPE      array nested directly in an array
    ERR_INVALID_APP_CONTEXT_CODE      application context code <= 32767
    ERR_INVALID_CODEC                 unknown codec name in a term map
"""


class CborldError(ValueError):
    """CBOR-LD processing error with a stable code."""

    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"
