"""Domain Ports - Abstract Contracts and Error Taxonomy.

This module defines the Port interface the record store adapters must
implement, the Result type used to report storage outcomes, and the exception
hierarchy shared by the codec, the cipher and the resolution protocol.

Security Impact:
    - Wrong-PIN outcomes are always distinguishable from damaged tags
    - Codec and cipher failures are never coerced into default values
    - Error messages never carry PINs, plaintext records or envelopes

Architecture:
    - Pure abstract interfaces with zero infrastructure dependencies
    - Storage adapters (in-memory, DuckDB) implement RecordStorePort
    - The domain core only needs get/put of an opaque blob by tag ID
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Generic, Optional, TypeVar, Union

from opentag.domain.enums import CipherMethod
from opentag.domain.medical_profile import StoredTag

T = TypeVar('T')


# ============================================================================
# Result Type for Success/Failure Communication
# ============================================================================

@dataclass(frozen=True)
class Result(Generic[T]):
    """Result type for communicating success or failure without exceptions.

    Storage adapters return Result objects so callers can report failures
    (for example in the CLI) without unwinding through exception handlers.

    Attributes:
        success: True if the operation succeeded, False otherwise
        value: The successful result value (only present if success=True)
        error: Error information (only present if success=False)
        error_type: Type of error (StorageError, TagNotFoundError, etc.)
        error_details: Additional error context (tag_id, operation, etc.)

    Example:
        ```python
        result = store.put("a1b2c3", stored_tag)
        if result.is_failure():
            console.print(result.error)
        ```
    """

    success: bool
    value: Optional[T] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    error_details: Optional[dict] = None

    @classmethod
    def success_result(cls, value: T) -> 'Result[T]':
        """Create a successful result.

        Parameters:
            value: The successful result value

        Returns:
            Result: Success result with the value
        """
        return cls(success=True, value=value)

    @classmethod
    def failure_result(
        cls,
        error: Union[str, Exception],
        error_type: Optional[str] = None,
        error_details: Optional[dict] = None
    ) -> 'Result[T]':
        """Create a failure result.

        Parameters:
            error: Error message or exception
            error_type: Type of error (e.g., "StorageError")
            error_details: Additional context (tag_id, operation, etc.)

        Returns:
            Result: Failure result with error information
        """
        error_message = str(error) if isinstance(error, Exception) else error
        error_type_name = error_type or (type(error).__name__ if isinstance(error, Exception) else "UnknownError")

        return cls(
            success=False,
            value=None,
            error=error_message,
            error_type=error_type_name,
            error_details=error_details or {}
        )

    def is_success(self) -> bool:
        """Check if result is successful."""
        return self.success

    def is_failure(self) -> bool:
        """Check if result is a failure."""
        return not self.success


# ============================================================================
# Custom Exception Hierarchy
# ============================================================================

class OpenTagError(Exception):
    """Base exception for all OpenTag errors.

    Attributes:
        retryable: Whether re-prompting the user for a PIN can succeed
    """

    retryable: bool = False


class MalformedRecordError(OpenTagError):
    """Raised when a record string or envelope cannot be decoded.

    Covers a record that does not split into four parts, a numeric or
    binary part with characters outside the base62 alphabet, a decoded
    fixed-width value that overflows its width, and undecodable transport
    encodings. Fatal: only a newly issued tag helps.

    Attributes:
        component: Record component that failed (numeric, binary, contact, ...)
        details: Additional error details
    """

    def __init__(self, message: str, component: Optional[str] = None, details: Optional[dict] = None):
        super().__init__(message)
        self.component = component
        self.details = details or {}


class AuthFailureError(OpenTagError):
    """Raised when the supplied PIN does not open the envelope.

    Raised directly by AES-GCM tag verification, or inferred for the legacy
    XOR cipher from the plausibility check and from decoding failures.
    Retryable with unlimited attempts.

    Attributes:
        method: Cipher method of the envelope that failed to open
    """

    retryable = True

    def __init__(self, message: str = "Incorrect PIN", method: Optional[CipherMethod] = None):
        super().__init__(message)
        self.method = method


class PlatformUnavailableError(OpenTagError):
    """Raised when the cryptographic primitives are not available."""


class InvalidPinError(OpenTagError, ValueError):
    """Raised when a PIN is not exactly four ASCII digits."""

    retryable = True


class ProfileValidationError(OpenTagError, ValueError):
    """Raised by the producer when a profile cannot be packed into a record.

    Attributes:
        field: Profile field that violates the record format
    """

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class TagNotFoundError(OpenTagError):
    """Raised when the record store has no tag for the given ID.

    Attributes:
        tag_id: The tag identifier that was looked up
    """

    def __init__(self, message: str, tag_id: Optional[str] = None):
        super().__init__(message)
        self.tag_id = tag_id


class StorageError(OpenTagError):
    """Raised when the record store fails.

    Attributes:
        operation: The storage operation that failed (get, put, connect, ...)
        details: Additional error details
    """

    def __init__(self, message: str, operation: Optional[str] = None, details: Optional[dict] = None):
        super().__init__(message)
        self.operation = operation
        self.details = details or {}


class VerificationInProgressError(OpenTagError):
    """Raised when a PIN is submitted while another verification is in flight."""


# ============================================================================
# Record Store Port
# ============================================================================

class RecordStorePort(ABC):
    """Abstract contract for the external record store.

    The store keeps one StoredTag per tag ID. The name and blood group are
    stored unencrypted for fast display; everything else lives in the opaque
    blob, which the domain core never interprets here.

    Example Usage:
        ```python
        store = InMemoryRecordStore()
        store.initialize_schema()
        store.put("a1b2c3", stored_tag)
        tag = store.get("a1b2c3")
        ```
    """

    @abstractmethod
    def initialize_schema(self) -> Result[None]:
        """Prepare the backing storage (tables, indexes)."""
        pass

    @abstractmethod
    def get(self, tag_id: str) -> Optional[StoredTag]:
        """Fetch the stored tag for ``tag_id``.

        Parameters:
            tag_id: Tag identifier printed on the QR code

        Returns:
            Optional[StoredTag]: The stored tag, or None if the ID is unknown

        Raises:
            StorageError: If the backing storage cannot be read
        """
        pass

    @abstractmethod
    def put(self, tag_id: str, tag: StoredTag) -> Result[str]:
        """Create or replace the stored tag for ``tag_id``.

        Returns:
            Result[str]: Success with the tag ID, or failure information
        """
        pass

    @abstractmethod
    def delete(self, tag_id: str) -> Result[bool]:
        """Remove a stored tag.

        Returns:
            Result[bool]: Success with True if a tag was removed
        """
        pass

    def close(self) -> None:
        """Release any held resources (no-op by default)."""
        return None
