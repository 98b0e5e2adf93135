"""
errors.py — decauth Error Taxonomy

Typed exceptions with stable codes. Only ``ConfigurationError`` is expected
to reach callers of the lifecycle API; the others are raised by the
capability client and transport layers and recovered inside the core.
"""

from typing import Optional

__all__ = [
    "DecAuthError",
    "ConfigurationError",
    "DecryptError",
    "RecordDecodeError",
    "LedgerError",
]


class DecAuthError(Exception):
    """Base class for all decauth errors."""
    def __init__(
        self,
        code: str,
        message: str,
        context: Optional[str] = None,
    ):
        self.code = code
        self.message = message
        self.context = context

        full_msg = f"[{code}] {message}"
        if context:
            full_msg += f" Context: {context}"

        super().__init__(full_msg)


# Setup Errors (E0xx)
class ConfigurationError(DecAuthError):
    def __init__(self, context: Optional[str] = None):
        super().__init__("DECAUTH_E001", "Required directory configuration is missing or invalid.", context)


# Record Errors (E1xx)
class DecryptError(DecAuthError):
    def __init__(self, context: Optional[str] = None):
        super().__init__("DECAUTH_E101", "Ciphertext could not be decrypted with the available key.", context)

class RecordDecodeError(DecAuthError):
    def __init__(self, context: Optional[str] = None):
        super().__init__("DECAUTH_E102", "A decrypted ledger message is not a valid account record.", context)


# Ledger Errors (E2xx)
class LedgerError(DecAuthError):
    def __init__(self, context: Optional[str] = None):
        super().__init__("DECAUTH_E201", "The ledger rejected or failed to serve the request.", context)
