"""Tag Resolution Protocol.

Drives a scanned tag from its identifier (online) or payload (serverless) to
a decrypted medical profile.

    AWAITING_TAG_ID -> FETCHING_OR_PARSING -> AWAITING_PIN -> VERIFYING
                                                   ^              |
                                                   +-- wrong PIN -+-> RESOLVED
                                                                  +-> FAILED

Security Impact:
    - A wrong PIN is retryable without limit; damaged or missing tags are fatal
    - Under the legacy XOR cipher any decoding failure after decryption is
      treated as a wrong PIN, since garbage is all a wrong PIN produces
    - Failed attempts are logged with delivery mode and cipher method only

Architecture:
    - Cooperative asyncio: submit_pin is a coroutine, one verification at a time
    - Online tags are fetched through RecordStorePort; serverless tags need no
      network access at all
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Awaitable, Callable, Optional

from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError

from opentag.domain.enums import BmiCategory, CipherMethod, DeliveryMode
from opentag.domain.guardrails import VerificationGuard, check_dob_plausibility
from opentag.domain.medical_profile import MedicalProfile, StoredTag, TagPreview
from opentag.domain.ports import (
    AuthFailureError,
    InvalidPinError,
    MalformedRecordError,
    OpenTagError,
    RecordStorePort,
    StorageError,
    TagNotFoundError,
)
from opentag.domain.services import vitals
from opentag.domain.services.record_codec import decode_record
from opentag.infrastructure.encryption.pin_cipher import (
    from_standard_b64,
    from_url_safe_b64,
    open_bytes,
    validate_pin,
)
from opentag.infrastructure.settings import settings

logger = logging.getLogger(__name__)

INCORRECT_PIN_MESSAGE = "Incorrect PIN"
DAMAGED_TAG_MESSAGE = "OpenTag might be damaged"

DATA_PARAM = "data"
METHOD_PARAM = "method"


class ResolutionState(str, Enum):
    AWAITING_TAG_ID = "awaiting_tag_id"
    FETCHING_OR_PARSING = "fetching_or_parsing"
    AWAITING_PIN = "awaiting_pin"
    VERIFYING = "verifying"
    RESOLVED = "resolved"
    FAILED = "failed"


class ResolvedProfile(BaseModel):
    """A decrypted profile together with the values derived for display."""

    model_config = ConfigDict(frozen=True)

    profile: MedicalProfile
    mode: DeliveryMode
    cipher_method: Optional[CipherMethod] = None
    age_years: int
    age_display: str
    bmi: Optional[float] = None
    bmi_category: Optional[BmiCategory] = None

    @classmethod
    def from_profile(
        cls,
        profile: MedicalProfile,
        mode: DeliveryMode,
        cipher_method: Optional[CipherMethod] = None,
        today: Optional[date] = None,
    ) -> "ResolvedProfile":
        bmi = vitals.calculate_bmi(profile.height_cm, profile.weight_kg)
        return cls(
            profile=profile,
            mode=mode,
            cipher_method=cipher_method,
            age_years=vitals.calculate_age(profile.date_of_birth, today),
            age_display=vitals.format_age(profile.date_of_birth, today),
            bmi=bmi,
            bmi_category=vitals.classify_bmi(bmi) if bmi is not None else None,
        )


@dataclass(frozen=True)
class ServerlessPayload:
    """A parsed serverless payload: raw envelope bytes and its cipher method."""
    envelope: bytes
    method: CipherMethod


def _query_params(query: str) -> dict[str, str]:
    # Split by hand: parse_qs would turn '+' into a space
    params = {}
    for pair in query.split("&"):
        key, _, value = pair.partition("=")
        params.setdefault(key, value)
    return params


def parse_serverless_payload(payload: str) -> ServerlessPayload:
    """Parse a serverless payload.

    Accepts a full tag URL, its query string (``data=<envelope>[&method=...]``)
    or a bare URL-safe base64 envelope. A missing method marker means XOR.

    Raises:
        MalformedRecordError: If the payload is empty, names an unknown method
            or carries an envelope that is not valid base64
    """
    text = (payload or "").strip()
    if "?" in text:
        text = text.split("?", 1)[1]
    text = text.split("#", 1)[0]

    marker = None
    if f"{DATA_PARAM}=" in text:
        params = _query_params(text)
        data = params.get(DATA_PARAM, "")
        marker = params.get(METHOD_PARAM)
    else:
        data = text

    if not data:
        raise MalformedRecordError(DAMAGED_TAG_MESSAGE, component="payload")

    try:
        method = CipherMethod.from_marker(marker)
    except ValueError as e:
        raise MalformedRecordError(f"Unknown cipher method '{marker}'", component="payload") from e

    return ServerlessPayload(envelope=from_url_safe_b64(data), method=method)


def _decode_serverless_plaintext(plaintext: bytes, method: CipherMethod) -> MedicalProfile:
    try:
        record = plaintext.decode("utf-8")
    except UnicodeDecodeError as e:
        raise MalformedRecordError("Record is not UTF-8", component="record") from e

    decoded = decode_record(record)
    check_dob_plausibility(decoded.fields.date_of_birth, method)
    return decoded.to_profile()


def _decode_online_plaintext(plaintext: bytes, stored: StoredTag) -> MedicalProfile:
    """Parse a JSON profile; the store's name and blood group take precedence."""
    try:
        data = json.loads(plaintext.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise MalformedRecordError("Profile blob is not valid JSON", component="blob") from e

    if not isinstance(data, dict):
        raise MalformedRecordError("Profile blob must be a JSON object", component="blob")

    data.update(full_name=stored.full_name, blood_group=stored.blood_group)
    try:
        return MedicalProfile.model_validate(data)
    except PydanticValidationError as e:
        raise MalformedRecordError(
            f"Profile blob is not a valid profile ({e.error_count()} errors)",
            component="blob",
        ) from e


class TagResolver:
    """State machine resolving one scanned tag.

    Parameters:
        store: Record store used for online tags
        verification_delay: Seconds to wait before each verification; defaults
            to the configured delay

    Example Usage:
        ```python
        resolver = TagResolver(store=store)
        resolver.load_online("a1b2c3")
        while resolver.state is ResolutionState.AWAITING_PIN:
            await resolver.submit_pin(ask_for_pin())
        profile = resolver.result.profile
        ```
    """

    def __init__(
        self,
        store: Optional[RecordStorePort] = None,
        verification_delay: Optional[float] = None,
    ):
        self.store = store
        self.verification_delay = (
            settings.verification_delay if verification_delay is None else verification_delay
        )
        self.state = ResolutionState.AWAITING_TAG_ID
        self.mode: Optional[DeliveryMode] = None
        self.cipher_method: Optional[CipherMethod] = None
        self.preview: Optional[TagPreview] = None
        self.result: Optional[ResolvedProfile] = None
        self.error: Optional[str] = None
        self.failure: Optional[OpenTagError] = None

        self._guard = VerificationGuard()
        self._stored: Optional[StoredTag] = None
        self._envelope: Optional[bytes] = None

    @property
    def is_verifying(self) -> bool:
        return self._guard.is_active

    def _begin(self, mode: DeliveryMode) -> None:
        if self.state is not ResolutionState.AWAITING_TAG_ID:
            raise RuntimeError(f"Cannot load a tag in state '{self.state.value}'")
        self.mode = mode
        self.state = ResolutionState.FETCHING_OR_PARSING

    def _fail(self, error: OpenTagError) -> None:
        self.state = ResolutionState.FAILED
        self.failure = error
        self.error = str(error)
        logger.error(f"Tag resolution failed: {type(error).__name__}: {error}")

    def _resolve(self, profile: MedicalProfile) -> None:
        self.result = ResolvedProfile.from_profile(profile, self.mode, self.cipher_method)
        self.state = ResolutionState.RESOLVED
        self.error = None
        logger.info(f"Resolved {self.mode.value} tag")

    def load_online(self, tag_id: str) -> ResolutionState:
        """Fetch an online tag and move to AWAITING_PIN (or RESOLVED if unencrypted).

        Raises:
            TagNotFoundError: If the store has no tag for ``tag_id``
            StorageError: If no store is configured or the store fails
            MalformedRecordError: If the stored blob cannot be decoded
        """
        self._begin(DeliveryMode.ONLINE)
        try:
            if self.store is None:
                raise StorageError("No record store configured for online tags", operation="get")
            stored = self.store.get(tag_id)
            if stored is None:
                raise TagNotFoundError(f"No tag found for ID '{tag_id}'", tag_id=tag_id)

            self._stored = stored
            if not stored.is_encrypted:
                self._resolve(_decode_online_plaintext(stored.blob.encode("utf-8"), stored))
                return self.state

            self.cipher_method = stored.cipher_method
            self._envelope = from_standard_b64(stored.blob)
        except OpenTagError as e:
            self._fail(e)
            raise

        self.preview = TagPreview(full_name=stored.full_name, blood_group=stored.blood_group)
        self.state = ResolutionState.AWAITING_PIN
        return self.state

    def load_serverless(self, payload: str) -> ResolutionState:
        """Parse a serverless payload and move to AWAITING_PIN.

        Raises:
            MalformedRecordError: If the payload is empty or undecodable
        """
        self._begin(DeliveryMode.SERVERLESS)
        try:
            parsed = parse_serverless_payload(payload)
        except OpenTagError as e:
            self._fail(e)
            raise

        self.cipher_method = parsed.method
        self._envelope = parsed.envelope
        self.state = ResolutionState.AWAITING_PIN
        return self.state

    def _open_profile(self, pin: str) -> MedicalProfile:
        method = self.cipher_method
        plaintext = open_bytes(self._envelope, pin, method)
        try:
            if self.mode is DeliveryMode.SERVERLESS:
                return _decode_serverless_plaintext(plaintext, method)
            return _decode_online_plaintext(plaintext, self._stored)
        except MalformedRecordError as e:
            if method.is_authenticated:
                raise
            raise AuthFailureError(INCORRECT_PIN_MESSAGE, method=method) from e

    async def submit_pin(self, pin: str) -> ResolutionState:
        """Verify ``pin`` against the loaded tag.

        A wrong or badly formed PIN returns the resolver to AWAITING_PIN with
        ``error`` set; it is not raised.

        Returns:
            ResolutionState: RESOLVED or AWAITING_PIN

        Raises:
            VerificationInProgressError: If another verification is in flight
            MalformedRecordError: If an authenticated envelope holds an
                undecodable record (state becomes FAILED)
            PlatformUnavailableError: If AES-GCM is unavailable (state becomes FAILED)
        """
        with self._guard.hold():
            if self.state is not ResolutionState.AWAITING_PIN:
                raise RuntimeError(f"Cannot submit a PIN in state '{self.state.value}'")

            self.state = ResolutionState.VERIFYING
            self.error = None
            try:
                validate_pin(pin)
                await asyncio.sleep(self.verification_delay)
                profile = self._open_profile(pin)
            except (AuthFailureError, InvalidPinError) as e:
                self.state = ResolutionState.AWAITING_PIN
                self.error = str(e)
                logger.warning(
                    f"PIN verification failed (mode={self.mode.value}, method={self.cipher_method.value})",
                    extra={"mode": self.mode.value, "cipher_method": self.cipher_method.value},
                )
                return self.state
            except OpenTagError as e:
                self._fail(e)
                raise
            else:
                self._resolve(profile)
                return self.state
            finally:
                # Cancelled mid-verification: the tag is still loaded, allow another attempt
                if self.state is ResolutionState.VERIFYING:
                    self.state = ResolutionState.AWAITING_PIN


PinProvider = Callable[[Optional[TagPreview]], Awaitable[str]]


async def resolve(
    tag: str,
    pin_provider: PinProvider,
    store: Optional[RecordStorePort] = None,
    mode: Optional[DeliveryMode] = None,
    on_failure: Optional[Callable[[str], None]] = None,
    verification_delay: Optional[float] = None,
) -> ResolvedProfile:
    """Resolve a tag end to end, asking for PINs until one opens it.

    Parameters:
        tag: Tag ID (online) or payload/URL (serverless)
        pin_provider: Coroutine function returning the next PIN attempt; it
            receives the preview of an online tag, or None
        store: Record store for online tags
        mode: Delivery mode; inferred as online when a store is given
        on_failure: Called with the error message after each rejected PIN
        verification_delay: Overrides the configured verification delay

    Returns:
        ResolvedProfile: The decrypted profile

    Raises:
        OpenTagError: Any fatal (non-retryable) resolution error
    """
    if mode is None:
        mode = DeliveryMode.ONLINE if store is not None else DeliveryMode.SERVERLESS

    resolver = TagResolver(store=store, verification_delay=verification_delay)
    if mode is DeliveryMode.ONLINE:
        state = resolver.load_online(tag)
    else:
        state = resolver.load_serverless(tag)

    while state is ResolutionState.AWAITING_PIN:
        pin = await pin_provider(resolver.preview)
        state = await resolver.submit_pin(pin)
        if state is ResolutionState.AWAITING_PIN and on_failure is not None:
            on_failure(resolver.error)

    return resolver.result
