import base64
import binascii
import json
import os
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from flask import current_app
from sqlalchemy.orm.attributes import set_committed_value

ENVELOPE_VERSION = 1
NONCE_SIZE = 12
KEY_WRAP_AAD = b"zenarog:user-key:v1"

# Free-text fields that may hold health details.
MEDICATION_SEALED_FIELDS = ["notes"]
CHAT_SEALED_FIELDS = ["content"]


class EncryptionConfigError(RuntimeError):
    pass


def parse_master_key(raw: str | bytes | None) -> bytes | None:
    """Accept a 32-byte key as raw bytes, hex, or (urlsafe) base64 text."""
    if raw is None:
        return None
    if isinstance(raw, bytes):
        return raw if len(raw) == 32 else None

    text = raw.strip()
    if not text:
        return None

    padded = text + ("=" * (-len(text) % 4))
    decoders = [bytes.fromhex, base64.urlsafe_b64decode, base64.b64decode]
    for decoder in decoders:
        source = text if decoder is bytes.fromhex else padded
        try:
            candidate = decoder(source)
        except (ValueError, binascii.Error):
            continue
        if len(candidate) == 32:
            return candidate
    return None


def validate_encryption_configuration(raw_key: str | bytes | None, required: bool) -> None:
    if required and parse_master_key(raw_key) is None:
        raise EncryptionConfigError(
            "ENCRYPTION_MASTER_KEY must be set to a 32-byte key (base64/urlsafe-base64/hex)."
        )


def _master_key() -> bytes | None:
    key = parse_master_key(current_app.config.get("ENCRYPTION_MASTER_KEY"))
    if key is None and current_app.config.get("ENCRYPTION_REQUIRED"):
        raise EncryptionConfigError("ENCRYPTION_MASTER_KEY is required but not configured.")
    return key


def _seal(key: bytes, plaintext: bytes, aad: bytes) -> bytes:
    nonce = os.urandom(NONCE_SIZE)
    return bytes([ENVELOPE_VERSION]) + nonce + AESGCM(key).encrypt(nonce, plaintext, aad)


def _open(key: bytes, envelope: bytes, aad: bytes) -> bytes:
    if not envelope or len(envelope) <= 1 + NONCE_SIZE:
        raise EncryptionConfigError("Encrypted envelope is truncated.")
    if envelope[0] != ENVELOPE_VERSION:
        raise EncryptionConfigError("Unsupported envelope version.")
    nonce = envelope[1 : 1 + NONCE_SIZE]
    return AESGCM(key).decrypt(nonce, envelope[1 + NONCE_SIZE :], aad)


def user_data_key(user, *, create: bool) -> bytes | None:
    master = _master_key()
    if master is None:
        return None

    if user.encrypted_dek:
        return _open(master, user.encrypted_dek, KEY_WRAP_AAD)
    if not create:
        return None

    data_key = AESGCM.generate_key(bit_length=256)
    user.encrypted_dek = _seal(master, data_key, KEY_WRAP_AAD)
    return data_key


def _scope_aad(scope: str, user_id: int) -> bytes:
    return f"zenarog:{scope}:user:{user_id}".encode("utf-8")


def seal_fields(user, record, fields: list[str], *, scope: str) -> None:
    """Move non-empty ``fields`` of ``record`` into its ``encrypted_payload``.

    Without a master key this is a no-op and the columns keep plaintext.
    """
    payload = {
        field: getattr(record, field)
        for field in fields
        if getattr(record, field, None) not in (None, "", [], {})
    }
    if not payload:
        record.encrypted_payload = None
        return

    data_key = user_data_key(user, create=True)
    if data_key is None:
        record.encrypted_payload = None
        return

    raw = json.dumps(payload, separators=(",", ":"), ensure_ascii=True).encode("utf-8")
    record.encrypted_payload = _seal(data_key, raw, _scope_aad(scope, user.id))
    for field in payload:
        setattr(record, field, None)


def open_fields(user, record, fields: list[str], *, scope: str) -> None:
    """Restore sealed fields onto ``record`` without marking it dirty."""
    envelope = getattr(record, "encrypted_payload", None)
    if not envelope:
        return

    data_key = user_data_key(user, create=False)
    if data_key is None:
        return

    try:
        decoded: Any = json.loads(_open(data_key, envelope, _scope_aad(scope, user.id)).decode("utf-8"))
    except (InvalidTag, EncryptionConfigError, ValueError):
        current_app.logger.warning("Failed to open %s payload for user_id=%s", scope, user.id)
        return
    if not isinstance(decoded, dict):
        return

    for field in fields:
        if field in decoded:
            set_committed_value(record, field, decoded[field])
