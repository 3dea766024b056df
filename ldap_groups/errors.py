"""
Error kinds for directory operations.

Every failure coming out of the LDAP protocol layer is mapped exactly once,
here, into one of the exception classes below. Callers (the retry executor,
the CLI) classify on the exception class and never on message text.
"""

from typing import Any, Dict, Optional, Sequence

from ldap3.core.exceptions import (
    LDAPException,
    LDAPInvalidDnError,
    LDAPCommunicationError,
    LDAPResponseTimeoutError,
    LDAPSocketOpenError,
)
from ldap3.utils.dn import parse_dn
from ldap3.core.results import (
    RESULT_SUCCESS,
    RESULT_TIME_LIMIT_EXCEEDED,
    RESULT_ADMIN_LIMIT_EXCEEDED,
    RESULT_NO_SUCH_OBJECT,
    RESULT_INVALID_DN_SYNTAX,
    RESULT_BUSY,
    RESULT_UNAVAILABLE,
    RESULT_NAMING_VIOLATION,
    RESULT_ENTRY_ALREADY_EXISTS,
)


class DirectoryError(Exception):
    """Base exception for all directory operation failures."""

    def __init__(self, message: str, result_code: Optional[int] = None,
                 description: Optional[str] = None):
        self.message = message
        self.result_code = result_code
        self.description = description
        super().__init__(message)


class NotFoundError(DirectoryError):
    """Raised when a group, user or rename/delete target does not exist."""
    pass


class PartialNotFoundError(NotFoundError):
    """Raised when bulk name resolution could not find one or more names."""

    def __init__(self, missing: Sequence[str]):
        self.missing = list(missing)
        super().__init__(f"Users not found: {', '.join(self.missing)}")


class AlreadyExistsError(DirectoryError):
    """Raised when a create or rename target already exists."""
    pass


class TransientDirectoryError(DirectoryError):
    """Connection, timeout or service-unavailable failure. Safe to retry."""
    pass


class FatalDirectoryError(DirectoryError):
    """Any other directory failure. Never retried."""
    pass


class InvalidDNError(FatalDirectoryError):
    """Raised when a distinguished name is empty or malformed."""
    pass


class AmbiguousNameError(FatalDirectoryError):
    """Raised when a common name matches more than one directory entry."""

    def __init__(self, name: str, matches: Sequence[str]):
        self.name = name
        self.matches = list(matches)
        super().__init__(f"CN '{name}' is ambiguous: {len(self.matches)} entries match")


class OperationFailed(DirectoryError):
    """Raised when an operation still fails after all retry attempts."""

    def __init__(self, attempts: int, last_exception: Exception):
        self.attempts = attempts
        self.last_exception = last_exception
        super().__init__(f"Operation failed after {attempts} attempts: {last_exception}")


class RetryInterrupted(DirectoryError):
    """Raised when the wait between retry attempts is cancelled."""
    pass


TRANSIENT_RESULT_CODES = frozenset([
    RESULT_TIME_LIMIT_EXCEEDED,
    RESULT_ADMIN_LIMIT_EXCEEDED,
    RESULT_BUSY,
    RESULT_UNAVAILABLE,
])

INVALID_DN_RESULT_CODES = frozenset([
    RESULT_INVALID_DN_SYNTAX,
    RESULT_NAMING_VIOLATION,
])


def error_for_result(result: Dict[str, Any], operation: str) -> Optional[DirectoryError]:
    """
    Map an ldap3 result dictionary to a directory error.

    Args:
        result: The ``connection.result`` dictionary of the last operation
        operation: Short description used in the error message

    Returns:
        The matching DirectoryError, or None when the result is a success
    """
    result = result or {}
    code = result.get('result', RESULT_SUCCESS)
    if code == RESULT_SUCCESS:
        return None

    description = result.get('description', '')
    detail = result.get('message') or description
    message = f"{operation} failed: {description} ({code})"
    if detail and detail != description:
        message += f" - {detail}"

    if code == RESULT_NO_SUCH_OBJECT:
        error_class = NotFoundError
    elif code == RESULT_ENTRY_ALREADY_EXISTS:
        error_class = AlreadyExistsError
    elif code in INVALID_DN_RESULT_CODES:
        error_class = InvalidDNError
    elif code in TRANSIENT_RESULT_CODES:
        error_class = TransientDirectoryError
    else:
        error_class = FatalDirectoryError

    return error_class(message, result_code=code, description=description)


def raise_for_result(result: Dict[str, Any], operation: str) -> None:
    """Raise the mapped directory error if ``result`` is not a success."""
    error = error_for_result(result, operation)
    if error is not None:
        raise error


def translate_exception(exc: LDAPException, operation: str) -> DirectoryError:
    """
    Map an exception raised by ldap3 to a directory error.

    Socket level failures and response timeouts are transient, every other
    ldap3 exception is fatal.
    """
    message = f"{operation} failed: {exc}"
    if isinstance(exc, (LDAPCommunicationError, LDAPSocketOpenError, LDAPResponseTimeoutError)):
        return TransientDirectoryError(message)
    return FatalDirectoryError(message)



def ensure_valid_dn(dn: str) -> str:
    """
    Check that ``dn`` is a non-empty, well-formed distinguished name.

    Returns:
        The DN unchanged

    Raises:
        InvalidDNError: If the DN is empty or cannot be parsed
    """
    if not dn or not dn.strip():
        raise InvalidDNError("Distinguished name must not be empty")
    try:
        parse_dn(dn)
    except LDAPInvalidDnError as e:
        raise InvalidDNError(f"Malformed distinguished name '{dn}': {e}")
    return dn
