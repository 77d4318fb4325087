"""Tests for the tag resolution protocol.

Coroutines are driven with asyncio.run so the suite needs no async plugin.
"""

import asyncio
from datetime import date

import pytest
from cryptography.exceptions import UnsupportedAlgorithm

from opentag.adapters.storage import InMemoryRecordStore
from opentag.domain.enums import Allergy, BloodGroup, BmiCategory, CipherMethod, DeliveryMode, MedicalCondition
from opentag.domain.medical_profile import MedicalProfile, StoredTag
from opentag.domain.ports import (
    MalformedRecordError,
    PlatformUnavailableError,
    TagNotFoundError,
    VerificationInProgressError,
)
from opentag.domain.services import field_packer
from opentag.domain.services.field_packer import NumericFields
from opentag.domain.services.record_assembler import assemble
from opentag.domain.services.record_codec import encode_profile
from opentag.infrastructure.encryption import pin_cipher
from opentag.infrastructure.encryption.pin_cipher import PinCipher, to_standard_b64
from opentag.main import build_serverless_payload, issue_online_tag, issue_serverless_tag
from opentag.resolution import (
    DAMAGED_TAG_MESSAGE,
    INCORRECT_PIN_MESSAGE,
    ResolutionState,
    ResolvedProfile,
    TagResolver,
    parse_serverless_payload,
    resolve,
)

PIN = "1234"


@pytest.fixture
def profile():
    return MedicalProfile(
        full_name="Jane Doe",
        date_of_birth=date(1990, 5, 15),
        height_cm=175,
        weight_kg=70,
        blood_group=BloodGroup.O_POSITIVE,
        organ_donor=True,
        allergies={Allergy.PEANUTS},
        medical_conditions={MedicalCondition.DIABETES},
        emergency_contact="5551234567",
    )


@pytest.fixture
def store():
    return InMemoryRecordStore()


def serverless_resolver(payload: str, delay: float = 0) -> TagResolver:
    resolver = TagResolver(verification_delay=delay)
    resolver.load_serverless(payload)
    return resolver


def sealed_payload(profile: MedicalProfile, method: CipherMethod) -> str:
    """A serverless payload sealed with ``method``, including legacy XOR."""
    envelope = PinCipher(method).seal_text(encode_profile(profile), PIN, url_safe=True)
    return build_serverless_payload(envelope, method)


def implausible_payload(method: CipherMethod) -> str:
    """A well-formed record whose DOB starts with 0, sealed under PIN."""
    numeric_part = field_packer.encode_numeric_part(NumericFields("09990515", 175, 70, 4, 0))
    record = assemble(numeric_part, "0", "Jane Doe", field_packer.encode_contact("5551234567"))
    envelope = PinCipher(method).seal_text(record, PIN, url_safe=True)
    return f"data={envelope}&method={method.value}"


class TestParseServerlessPayload:
    """Test suite for serverless payload parsing."""

    def test_query_string_with_marker(self):
        parsed = parse_serverless_payload("data=QUJD&method=AES-GCM")
        assert parsed.envelope == b"ABC"
        assert parsed.method is CipherMethod.AES_GCM

    def test_full_url_without_marker_is_xor(self):
        parsed = parse_serverless_payload("https://opentag.github.io/serverless?data=QUJD")
        assert parsed.envelope == b"ABC"
        assert parsed.method is CipherMethod.XOR

    def test_bare_envelope(self):
        assert parse_serverless_payload("QUJD").envelope == b"ABC"

    @pytest.mark.parametrize("payload", ["", "   ", "data=", "https://opentag.github.io/serverless?data=&method=AES-GCM"])
    def test_empty_payload_is_damaged(self, payload):
        """Test that an empty payload reports a damaged tag."""
        with pytest.raises(MalformedRecordError) as exc_info:
            parse_serverless_payload(payload)
        assert str(exc_info.value) == DAMAGED_TAG_MESSAGE

    def test_unknown_method_marker(self):
        with pytest.raises(MalformedRecordError):
            parse_serverless_payload("data=QUJD&method=ROT13")


class TestServerlessResolution:
    """Test suite for resolving serverless tags."""

    @pytest.mark.parametrize("method", list(CipherMethod))
    def test_correct_pin_resolves(self, profile, method):
        resolver = serverless_resolver(sealed_payload(profile, method))
        assert resolver.state is ResolutionState.AWAITING_PIN
        assert resolver.preview is None

        state = asyncio.run(resolver.submit_pin(PIN))

        assert state is ResolutionState.RESOLVED
        assert resolver.result.profile == profile
        assert resolver.result.mode is DeliveryMode.SERVERLESS
        assert resolver.result.cipher_method is method
        assert resolver.error is None

    def test_wrong_pin_returns_to_awaiting_pin(self, profile):
        """Test that a wrong PIN is retryable and a later correct PIN succeeds."""
        issued = issue_serverless_tag(profile, PIN)
        resolver = serverless_resolver(issued.payload)

        assert asyncio.run(resolver.submit_pin("0000")) is ResolutionState.AWAITING_PIN
        assert resolver.error == INCORRECT_PIN_MESSAGE
        assert resolver.result is None

        assert asyncio.run(resolver.submit_pin(PIN)) is ResolutionState.RESOLVED

    def test_malformed_pin_is_retryable(self, profile):
        issued = issue_serverless_tag(profile, PIN)
        resolver = serverless_resolver(issued.payload)
        assert asyncio.run(resolver.submit_pin("12")) is ResolutionState.AWAITING_PIN
        assert resolver.error == "PIN must be exactly 4 digits"

    def test_xor_rejects_most_wrong_pins(self, profile):
        """Test that at least 80% of wrong PINs are rejected for XOR tags."""
        payload = sealed_payload(profile, CipherMethod.XOR)
        wrong_pins = [f"{candidate:04d}" for candidate in range(10000) if f"{candidate:04d}" != PIN]

        async def count_rejections() -> int:
            rejected = 0
            for candidate in wrong_pins:
                resolver = serverless_resolver(payload)
                if await resolver.submit_pin(candidate) is ResolutionState.AWAITING_PIN:
                    rejected += 1
            return rejected

        rejected = asyncio.run(count_rejections())
        assert rejected / len(wrong_pins) >= 0.8

    @pytest.mark.parametrize("method", list(CipherMethod))
    def test_implausible_dob_reads_as_wrong_pin(self, method):
        """Test that a decoded DOB starting with 0 is rejected even with the right PIN."""
        resolver = serverless_resolver(implausible_payload(method))
        assert asyncio.run(resolver.submit_pin(PIN)) is ResolutionState.AWAITING_PIN
        assert resolver.error == INCORRECT_PIN_MESSAGE

    def test_authenticated_garbage_is_fatal(self):
        """Test that an AES-GCM envelope holding a non-record fails the resolution."""
        envelope = PinCipher(CipherMethod.AES_GCM).seal_text("not a record", PIN, url_safe=True)
        resolver = serverless_resolver(f"data={envelope}&method=AES-GCM")

        with pytest.raises(MalformedRecordError):
            asyncio.run(resolver.submit_pin(PIN))
        assert resolver.state is ResolutionState.FAILED
        assert isinstance(resolver.failure, MalformedRecordError)

    def test_missing_aes_gcm_support_is_fatal(self, profile, monkeypatch):
        """Test that a backend without AES-GCM fails the resolution instead of asking again."""
        resolver = serverless_resolver(issue_serverless_tag(profile, PIN).payload)

        def unsupported(key):
            raise UnsupportedAlgorithm("AES-GCM is not supported by this backend")

        monkeypatch.setattr(pin_cipher, "AESGCM", unsupported)
        with pytest.raises(PlatformUnavailableError):
            asyncio.run(resolver.submit_pin(PIN))
        assert resolver.state is ResolutionState.FAILED
        assert isinstance(resolver.failure, PlatformUnavailableError)

    def test_damaged_payload_fails_before_pin(self):
        resolver = TagResolver(verification_delay=0)
        with pytest.raises(MalformedRecordError):
            resolver.load_serverless("")
        assert resolver.state is ResolutionState.FAILED
        assert resolver.error == DAMAGED_TAG_MESSAGE

    def test_cannot_load_twice(self, profile):
        issued = issue_serverless_tag(profile, PIN)
        resolver = serverless_resolver(issued.payload)
        with pytest.raises(RuntimeError):
            resolver.load_serverless(issued.payload)


class TestOnlineResolution:
    """Test suite for resolving online tags."""

    def test_preview_then_resolve(self, store, profile):
        issue_online_tag(store, profile, PIN, tag_id="a1b2c3")
        resolver = TagResolver(store=store, verification_delay=0)

        assert resolver.load_online("a1b2c3") is ResolutionState.AWAITING_PIN
        assert resolver.preview.full_name == "Jane Doe"
        assert resolver.preview.blood_group is BloodGroup.O_POSITIVE

        assert asyncio.run(resolver.submit_pin("9999")) is ResolutionState.AWAITING_PIN
        assert resolver.error == INCORRECT_PIN_MESSAGE
        assert asyncio.run(resolver.submit_pin(PIN)) is ResolutionState.RESOLVED
        assert resolver.result.profile == profile
        assert resolver.result.mode is DeliveryMode.ONLINE

    def test_store_name_and_blood_group_are_authoritative(self, store, profile):
        """Test that the store's clear fields override the decrypted ones."""
        issue_online_tag(store, profile, PIN, tag_id="a1b2c3")
        original = store.get("a1b2c3")
        store.put("a1b2c3", original.model_copy(update={"full_name": "Jane Q. Doe", "blood_group": BloodGroup.A_NEGATIVE}))

        resolver = TagResolver(store=store, verification_delay=0)
        resolver.load_online("a1b2c3")
        asyncio.run(resolver.submit_pin(PIN))

        assert resolver.result.profile.full_name == "Jane Q. Doe"
        assert resolver.result.profile.blood_group is BloodGroup.A_NEGATIVE
        assert resolver.result.profile.allergies == profile.allergies

    def test_legacy_xor_blob_without_marker(self, store, profile):
        """Test that a document with no method marker is opened with XOR."""
        blob = to_standard_b64(PinCipher(CipherMethod.XOR).seal(profile.model_dump_json().encode("utf-8"), PIN))
        store.put("legacy", StoredTag(full_name=profile.full_name, blood_group=profile.blood_group, blob=blob))

        resolver = TagResolver(store=store, verification_delay=0)
        resolver.load_online("legacy")
        assert resolver.cipher_method is CipherMethod.XOR
        assert asyncio.run(resolver.submit_pin("9234")) is ResolutionState.AWAITING_PIN
        assert asyncio.run(resolver.submit_pin(PIN)) is ResolutionState.RESOLVED
        assert resolver.result.profile == profile

    def test_unencrypted_tag_resolves_without_pin(self, store, profile):
        issue_online_tag(store, profile, tag_id="open", encrypt=False)
        resolver = TagResolver(store=store, verification_delay=0)

        assert resolver.load_online("open") is ResolutionState.RESOLVED
        assert resolver.result.profile == profile
        assert resolver.result.cipher_method is None

    def test_missing_tag_is_fatal(self, store):
        resolver = TagResolver(store=store, verification_delay=0)
        with pytest.raises(TagNotFoundError) as exc_info:
            resolver.load_online("missing")
        assert exc_info.value.tag_id == "missing"
        assert resolver.state is ResolutionState.FAILED
        assert not exc_info.value.retryable

    def test_corrupt_blob_is_fatal(self, store):
        store.put("broken", StoredTag(full_name="Jane Doe", blood_group="O+", blob="%%%"))
        resolver = TagResolver(store=store, verification_delay=0)
        with pytest.raises(MalformedRecordError):
            resolver.load_online("broken")
        assert resolver.state is ResolutionState.FAILED


class TestVerificationGuard:
    """Test suite for concurrent PIN submissions."""

    def test_second_submit_rejected_while_verifying(self, profile):
        issued = issue_serverless_tag(profile, PIN)

        async def scenario():
            resolver = serverless_resolver(issued.payload, delay=0.05)
            first = asyncio.create_task(resolver.submit_pin(PIN))
            await asyncio.sleep(0)
            assert resolver.is_verifying
            assert resolver.state is ResolutionState.VERIFYING
            with pytest.raises(VerificationInProgressError):
                await resolver.submit_pin(PIN)
            return await first, resolver

        state, resolver = asyncio.run(scenario())
        assert state is ResolutionState.RESOLVED
        assert not resolver.is_verifying

    def test_cancelled_verification_allows_another_attempt(self, profile):
        """Test that cancelling a verification returns the resolver to AWAITING_PIN."""
        issued = issue_serverless_tag(profile, PIN)

        async def scenario():
            resolver = serverless_resolver(issued.payload, delay=10)
            pending = asyncio.create_task(resolver.submit_pin(PIN))
            await asyncio.sleep(0)
            assert resolver.state is ResolutionState.VERIFYING

            pending.cancel()
            with pytest.raises(asyncio.CancelledError):
                await pending
            assert resolver.state is ResolutionState.AWAITING_PIN
            assert not resolver.is_verifying

            resolver.verification_delay = 0
            return await resolver.submit_pin(PIN), resolver

        state, resolver = asyncio.run(scenario())
        assert state is ResolutionState.RESOLVED
        assert resolver.result.profile == profile


class TestResolve:
    """Test suite for the resolve() driver."""

    def test_retries_until_correct_pin(self, profile):
        issued = issue_serverless_tag(profile, PIN)
        attempts = iter(["0000", "12", PIN])
        failures = []

        async def pin_provider(preview):
            assert preview is None
            return next(attempts)

        resolved = asyncio.run(resolve(issued.url, pin_provider, on_failure=failures.append, verification_delay=0))

        assert resolved.profile == profile
        assert failures == [INCORRECT_PIN_MESSAGE, "PIN must be exactly 4 digits"]

    def test_online_mode_inferred_from_store(self, store, profile):
        issue_online_tag(store, profile, PIN, tag_id="a1b2c3")
        previews = []

        async def pin_provider(preview):
            previews.append(preview)
            return PIN

        resolved = asyncio.run(resolve("a1b2c3", pin_provider, store=store, verification_delay=0))

        assert resolved.mode is DeliveryMode.ONLINE
        assert previews[0].full_name == "Jane Doe"

    def test_fatal_error_propagates(self, store):
        async def pin_provider(preview):
            return PIN

        with pytest.raises(TagNotFoundError):
            asyncio.run(resolve("missing", pin_provider, store=store, verification_delay=0))


class TestResolvedProfile:
    def test_derived_values(self, profile):
        resolved = ResolvedProfile.from_profile(profile, DeliveryMode.SERVERLESS, today=date(2024, 5, 14))
        assert resolved.age_years == 33
        assert resolved.age_display == "33 years"
        assert resolved.bmi == 22.9
        assert resolved.bmi_category is BmiCategory.NORMAL

    def test_zero_height_has_no_bmi(self, profile):
        resolved = ResolvedProfile.from_profile(profile.model_copy(update={"height_cm": 0}), DeliveryMode.ONLINE)
        assert resolved.bmi is None
        assert resolved.bmi_category is None
