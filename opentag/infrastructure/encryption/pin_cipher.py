"""PIN-derived cipher for tag envelopes.

This service seals record strings (serverless tags) and JSON profile blobs
(online tags) under a 4-digit PIN, and opens them again at scan time.

Security Impact:
    - Two generations coexist; the method marker selects one:
        * XOR (legacy): PIN bytes repeated over the plaintext, no IV, no tag.
          A wrong PIN yields garbage instead of an error.
        * AES-GCM (current): authenticated; a wrong PIN fails tag verification.
    - The AES key is the PIN repeated to 16 bytes, NOT a KDF output. This
      derivation must not change or previously issued envelopes stop opening.
    - A 4-digit PIN is brute-forceable offline; this layer does not try to
      strengthen that.

Architecture:
    - Infrastructure layer component built on the `cryptography` package
    - Methods are dispatched through a table keyed by CipherMethod
    - Used by issuance (main) and the resolution protocol
"""

import base64
import binascii
import logging
import os
import re
from typing import Callable, Optional

from cryptography.exceptions import InvalidTag, UnsupportedAlgorithm
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from opentag.domain.enums import CipherMethod
from opentag.domain.ports import (
    AuthFailureError,
    InvalidPinError,
    MalformedRecordError,
    PlatformUnavailableError,
)

logger = logging.getLogger(__name__)

PIN_PATTERN = re.compile(r"^\d{4}$", re.ASCII)
IV_LENGTH = 12
TAG_LENGTH = 16
AES_KEY_LENGTH = 16


# --------------------------------------------------------------------------- #
# PIN handling
# --------------------------------------------------------------------------- #

def validate_pin(pin: str) -> str:
    """Return ``pin`` if it is exactly four ASCII digits.

    Raises:
        InvalidPinError: Otherwise
    """
    if not isinstance(pin, str) or not PIN_PATTERN.fullmatch(pin):
        raise InvalidPinError("PIN must be exactly 4 digits")
    return pin


def derive_aes_key(pin: str) -> bytes:
    """Right-pad the PIN with repetitions of itself to 16 bytes."""
    pin_bytes = validate_pin(pin).encode("ascii")
    repeats = -(-AES_KEY_LENGTH // len(pin_bytes))
    return (pin_bytes * repeats)[:AES_KEY_LENGTH]


# --------------------------------------------------------------------------- #
# Legacy XOR
# --------------------------------------------------------------------------- #

def xor_transform(data: bytes, pin: str) -> bytes:
    """XOR ``data`` with the PIN's bytes repeated cyclically. Symmetric."""
    key = validate_pin(pin).encode("ascii")
    key_length = len(key)
    return bytes(byte ^ key[i % key_length] for i, byte in enumerate(data))


# --------------------------------------------------------------------------- #
# AES-GCM
# --------------------------------------------------------------------------- #

def _aes_gcm(pin: str) -> AESGCM:
    key = derive_aes_key(pin)
    try:
        return AESGCM(key)
    except UnsupportedAlgorithm as e:
        logger.error(f"AES-GCM is not supported by the cryptography backend: {str(e)}")
        raise PlatformUnavailableError("AES-GCM is not available on this platform") from e


def aes_gcm_seal(plaintext: bytes, pin: str, iv: Optional[bytes] = None) -> bytes:
    """Encrypt with AES-GCM; output is ``IV || ciphertext || tag``.

    Parameters:
        plaintext: Bytes to seal
        pin: 4-digit PIN
        iv: Optional 12-byte IV; a fresh random IV is generated when omitted
    """
    if iv is None:
        iv = os.urandom(IV_LENGTH)
    if len(iv) != IV_LENGTH:
        raise ValueError(f"IV must be {IV_LENGTH} bytes")
    return iv + _aes_gcm(pin).encrypt(iv, plaintext, None)


def aes_gcm_open(envelope: bytes, pin: str) -> bytes:
    """Decrypt an ``IV || ciphertext || tag`` envelope.

    Raises:
        AuthFailureError: If tag verification fails (wrong PIN or tampering)
        MalformedRecordError: If the envelope is too short to hold IV and tag
    """
    if len(envelope) < IV_LENGTH + TAG_LENGTH:
        raise MalformedRecordError(
            f"AES-GCM envelope must be at least {IV_LENGTH + TAG_LENGTH} bytes",
            component="envelope",
        )
    iv, ciphertext = envelope[:IV_LENGTH], envelope[IV_LENGTH:]
    try:
        return _aes_gcm(pin).decrypt(iv, ciphertext, None)
    except InvalidTag as e:
        raise AuthFailureError(method=CipherMethod.AES_GCM) from e


# --------------------------------------------------------------------------- #
# Dispatch
# --------------------------------------------------------------------------- #

_SEALERS: dict[CipherMethod, Callable[[bytes, str], bytes]] = {
    CipherMethod.XOR: xor_transform,
    CipherMethod.AES_GCM: aes_gcm_seal,
}

_OPENERS: dict[CipherMethod, Callable[[bytes, str], bytes]] = {
    CipherMethod.XOR: xor_transform,
    CipherMethod.AES_GCM: aes_gcm_open,
}


def seal_bytes(plaintext: bytes, pin: str, method: CipherMethod) -> bytes:
    return _SEALERS[method](plaintext, pin)


def open_bytes(envelope: bytes, pin: str, method: CipherMethod) -> bytes:
    """Open an envelope sealed with ``method``.

    Under XOR this never fails on a wrong PIN; callers must validate the
    plaintext themselves.
    """
    return _OPENERS[method](envelope, pin)


# --------------------------------------------------------------------------- #
# Transport encodings
# --------------------------------------------------------------------------- #

def to_standard_b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def from_standard_b64(text: str) -> bytes:
    """Decode standard base64.

    Raises:
        MalformedRecordError: If the text is not valid base64
    """
    try:
        return base64.b64decode(text.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError) as e:
        raise MalformedRecordError("Envelope is not valid base64", component="envelope") from e


def to_url_safe_b64(data: bytes) -> str:
    """URL-safe base64 (``+`` → ``-``, ``/`` → ``_``) with padding stripped."""
    return to_standard_b64(data).replace("+", "-").replace("/", "_").rstrip("=")


def from_url_safe_b64(text: str) -> bytes:
    """Reverse :func:`to_url_safe_b64`: re-pad to a multiple of 4, substitute back."""
    padded = text + "=" * (-len(text) % 4)
    return from_standard_b64(padded.replace("-", "+").replace("_", "/"))


class PinCipher:
    """PIN cipher bound to one cipher generation.

    Example Usage:
        ```python
        cipher = PinCipher(CipherMethod.AES_GCM)
        envelope = cipher.seal_text(record, "1234", url_safe=True)
        record = cipher.open_text(envelope, "1234", url_safe=True)
        ```
    """

    def __init__(self, method: CipherMethod = CipherMethod.AES_GCM):
        """Initialize the cipher.

        Parameters:
            method: Cipher generation used for both sealing and opening
        """
        self.method = CipherMethod(method)

    def seal(self, plaintext: bytes, pin: str) -> bytes:
        return seal_bytes(plaintext, pin, self.method)

    def open(self, envelope: bytes, pin: str) -> bytes:
        return open_bytes(envelope, pin, self.method)

    def seal_text(self, text: str, pin: str, url_safe: bool = False) -> str:
        """Seal UTF-8 text and return the transport form of the envelope."""
        envelope = self.seal(text.encode("utf-8"), pin)
        return to_url_safe_b64(envelope) if url_safe else to_standard_b64(envelope)

    def open_text(self, envelope: str, pin: str, url_safe: bool = False) -> str:
        """Open a transport-encoded envelope and return the UTF-8 text.

        Raises:
            AuthFailureError: On a wrong PIN (AES-GCM), or when XOR output is
                not UTF-8
            MalformedRecordError: If the envelope encoding is invalid, or
                authenticated plaintext is not UTF-8
        """
        raw = from_url_safe_b64(envelope) if url_safe else from_standard_b64(envelope)
        plaintext = self.open(raw, pin)
        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as e:
            if not self.method.is_authenticated:
                raise AuthFailureError(method=self.method) from e
            raise MalformedRecordError("Envelope plaintext is not UTF-8", component="envelope") from e
