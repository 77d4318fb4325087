"""Tag issuance and wiring.

Builds the configured record store and issues tags in both delivery modes:

    serverless: profile -> compact record -> seal -> URL-safe base64 -> URL
    online:     profile -> JSON -> seal -> standard base64 -> record store

Security Impact:
    - New tags are always sealed with the current generation (AES-GCM);
      legacy XOR envelopes are only ever opened, never issued
    - Only the full name and blood group are written to the store in clear
    - PINs and envelopes are never logged

Architecture:
    - Composes domain services, the PIN cipher and a RecordStorePort adapter
    - Storage adapter is selected via configuration manager
"""

import logging
import uuid
from typing import Optional

from opentag.adapters.storage import DuckDBRecordStore, InMemoryRecordStore
from opentag.domain.enums import CipherMethod, DeliveryMode
from opentag.domain.medical_profile import IssuedTag, MedicalProfile, StoredTag
from opentag.domain.ports import RecordStorePort, StorageError
from opentag.domain.services.record_codec import encode_profile
from opentag.infrastructure.config_manager import StoreConfig
from opentag.infrastructure.encryption.pin_cipher import PinCipher, validate_pin
from opentag.infrastructure.settings import settings
from opentag.resolution import DATA_PARAM, METHOD_PARAM

logger = logging.getLogger(__name__)

TAG_ID_LENGTH = 12

# Cipher generation for every newly issued or re-issued tag
ISSUE_METHOD = CipherMethod.AES_GCM


def create_record_store(store_config: Optional[StoreConfig] = None) -> RecordStorePort:
    """Create record store adapter based on configuration.

    Parameters:
        store_config: Store configuration; loaded from the environment if omitted

    Returns:
        RecordStorePort: Configured store with its schema initialized

    Raises:
        StorageError: If the store cannot be initialized
    """
    store_config = store_config or settings.store_config

    if store_config.store_type == "duckdb":
        logger.info(f"Initializing DuckDB record store with path: {store_config.db_path or ':memory:'}")
        store = DuckDBRecordStore(store_config=store_config)
    else:
        logger.info("Initializing in-memory record store")
        store = InMemoryRecordStore()

    result = store.initialize_schema()
    if result.is_failure():
        raise StorageError(result.error, operation="initialize_schema")
    return store


def build_serverless_payload(envelope: str, method: CipherMethod) -> str:
    """Query payload for a serverless tag; legacy XOR tags carry no marker."""
    payload = f"{DATA_PARAM}={envelope}"
    if method is not CipherMethod.XOR:
        payload += f"&{METHOD_PARAM}={method.value}"
    return payload


def issue_serverless_tag(
    profile: MedicalProfile,
    pin: str,
    base_url: Optional[str] = None,
) -> IssuedTag:
    """Issue a serverless tag carrying the whole profile in its URL.

    Raises:
        InvalidPinError: If the PIN is not four digits
        ProfileValidationError: If the profile cannot be packed into a record
    """
    validate_pin(pin)
    method = ISSUE_METHOD
    record = encode_profile(profile)
    envelope = PinCipher(method).seal_text(record, pin, url_safe=True)
    payload = build_serverless_payload(envelope, method)
    url = f"{base_url or settings.serverless_base_url}?{payload}"
    logger.info(f"Issued serverless tag ({method.value}, {len(url)} characters)")
    return IssuedTag(mode=DeliveryMode.SERVERLESS, payload=payload, url=url, cipher_method=method)


def issue_online_tag(
    store: RecordStorePort,
    profile: MedicalProfile,
    pin: Optional[str] = None,
    tag_id: Optional[str] = None,
    encrypt: bool = True,
    base_url: Optional[str] = None,
) -> IssuedTag:
    """Issue an online tag and write its document to the record store.

    Parameters:
        store: Record store receiving the document
        profile: Profile to carry
        pin: 4-digit PIN; required when ``encrypt`` is True
        tag_id: Tag identifier; a random hex identifier by default
        encrypt: Store the profile sealed (default) or as plaintext JSON
        base_url: Base of the tag URL; the configured default if omitted

    Raises:
        InvalidPinError: If encrypting and the PIN is not four digits
        StorageError: If the store rejects the document
    """
    tag_id = tag_id or uuid.uuid4().hex[:TAG_ID_LENGTH]
    profile_json = profile.model_dump_json()

    if encrypt:
        validate_pin(pin)
        method = ISSUE_METHOD
        blob = PinCipher(method).seal_text(profile_json, pin)
    else:
        method = None
        blob = profile_json

    stored = StoredTag(
        full_name=profile.full_name,
        blood_group=profile.blood_group,
        blob=blob,
        is_encrypted=encrypt,
        encryption_method=method,
    )
    result = store.put(tag_id, stored)
    if result.is_failure():
        raise StorageError(result.error, operation="put", details={"tag_id": tag_id})

    url = f"{base_url or settings.online_base_url}?id={tag_id}"
    logger.info(f"Issued online tag {tag_id} ({method.value if method else 'unencrypted'})")
    return IssuedTag(mode=DeliveryMode.ONLINE, payload=tag_id, url=url, cipher_method=method)
