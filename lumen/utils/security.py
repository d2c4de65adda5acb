"""Security utilities: backup key and migration token generation, secret hashing."""

import hashlib
import re
import secrets

from lumen.services.device_hash import effective_salt

# No 0/O, 1/I: keys are read off one screen and typed into another
KEY_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
KEY_GROUP_LENGTH = 4
KEY_GROUPS = 6
KEY_PREVIEW_LENGTH = KEY_GROUP_LENGTH * 2

TOKEN_BYTES = 12
TOKEN_LENGTH = 20
TOKEN_PREVIEW_LENGTH = 6

_NON_ALNUM = re.compile(r"[^A-Za-z0-9]")


def encode_base32(data: bytes) -> str:
    """Encode bytes 5 bits at a time over KEY_ALPHABET (no padding)."""
    bits = 0
    value = 0
    output = []
    for byte in data:
        value = (value << 8) | byte
        bits += 8
        while bits >= 5:
            output.append(KEY_ALPHABET[(value >> (bits - 5)) & 0b11111])
            bits -= 5
        value &= (1 << bits) - 1
    if bits > 0:
        output.append(KEY_ALPHABET[(value << (5 - bits)) & 0b11111])
    return "".join(output)


# --- Journey backup keys ---

def generate_journey_key() -> str:
    """Generate a key like ``ABCD-EFGH-JKLM-NPQR-STUV-WXYZ``."""
    raw = encode_base32(secrets.token_bytes(20))[: KEY_GROUP_LENGTH * KEY_GROUPS]
    return "-".join(
        raw[i: i + KEY_GROUP_LENGTH] for i in range(0, len(raw), KEY_GROUP_LENGTH)
    )


def normalize_journey_key(key: str) -> str:
    """Canonical grouped form of a user-typed key; empty if nothing usable remains."""
    compact = _NON_ALNUM.sub("", key or "").upper()
    return "-".join(
        compact[i: i + KEY_GROUP_LENGTH] for i in range(0, len(compact), KEY_GROUP_LENGTH)
    )


def hash_journey_key(key: str) -> str:
    """Salted fingerprint of a backup key (the only form that is persisted)."""
    canonical = normalize_journey_key(key)
    return hashlib.sha256(f"{effective_salt()}:{canonical}".encode()).hexdigest()


def journey_key_preview(key: str) -> str:
    return normalize_journey_key(key)[: KEY_PREVIEW_LENGTH + 1]


# --- Migration tokens ---

def generate_migration_token() -> str:
    return encode_base32(secrets.token_bytes(TOKEN_BYTES))[:TOKEN_LENGTH]


def normalize_migration_token(token: str) -> str:
    return (token or "").strip().upper()


def is_well_formed_migration_token(token: str) -> bool:
    return bool(token) and all(ch in KEY_ALPHABET for ch in token)


def hash_token(token: str) -> str:
    """Hash a token for storage (fingerprint, not a password hash)."""
    return hashlib.sha256(normalize_migration_token(token).encode()).hexdigest()
