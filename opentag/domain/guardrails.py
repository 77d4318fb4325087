"""Domain Guardrails - Wrong-PIN Plausibility Check and Verification Guard.

The legacy XOR cipher has no authentication tag: opening an envelope with the
wrong PIN "succeeds" and yields plausible-looking garbage. The plausibility
check stands in for cryptographic verification on decoded records.

Only one PIN verification may be in flight per resolver. A single boolean
guard enforces this; there is no queue and no cancellation.

Security Impact:
    - Garbage produced by a wrong PIN is rejected as an authentication failure
    - The check is probabilistic for the legacy cipher, not a guarantee

Architecture:
    - Pure domain logic with no infrastructure dependencies
    - Designed for a single cooperative event loop, not for threads
"""

import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from opentag.domain.enums import CipherMethod
from opentag.domain.ports import AuthFailureError, VerificationInProgressError

logger = logging.getLogger(__name__)

# Years 1000-2999
PLAUSIBLE_DOB_LEADING_DIGITS = frozenset("12")


def check_dob_plausibility(dob_digits: str, method: Optional[CipherMethod] = None) -> None:
    """Reject a decoded DOB field that no issued tag can contain.

    Parameters:
        dob_digits: The 8-digit DOB field of a decoded record
        method: Cipher method of the opened envelope, for error reporting

    Raises:
        AuthFailureError: If the first digit is not '1' or '2'
    """
    if not dob_digits or dob_digits[0] not in PLAUSIBLE_DOB_LEADING_DIGITS:
        logger.debug("Decoded date of birth failed the plausibility check")
        raise AuthFailureError(method=method)


class VerificationGuard:
    """Single in-flight verification guard.

    Example Usage:
        ```python
        guard = VerificationGuard()
        with guard.hold():
            ...  # verify the PIN
        ```

    Note:
        A result that settles after its dialog was closed is still written by
        the caller; if several verification surfaces are ever needed, replace
        the boolean with a per-attempt correlation id.
    """

    def __init__(self):
        self._active = False

    @property
    def is_active(self) -> bool:
        return self._active

    @contextmanager
    def hold(self) -> Iterator[None]:
        """Hold the guard for the duration of one verification.

        Raises:
            VerificationInProgressError: If a verification is already in flight
        """
        if self._active:
            raise VerificationInProgressError("A PIN verification is already in progress")
        self._active = True
        try:
            yield
        finally:
            self._active = False
