"""
Self-describing AES-256-GCM envelope for content-addressable storage.

Stored object layout:

    [4-byte big-endian header length][JSON header][raw ciphertext]

The header is ``{"algorithm": "aes-256-gcm", "iv": <hex>, "authTag": <hex>}``.
Keys are generated per upload, handed back to the caller as hex and never
kept here.
"""
import json
import logging
import os
import re
import struct
from dataclasses import dataclass
from typing import Optional, Tuple

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from errors import DecryptionFailed

log = logging.getLogger(__name__)

ALGORITHM = "aes-256-gcm"
KEY_LENGTH = 32   # 256 bits
IV_LENGTH = 16    # 128 bits
TAG_LENGTH = 16   # 128 bits
_LENGTH_PREFIX = struct.Struct(">I")
# a real header is ~110 bytes; anything far larger is not ours
MAX_HEADER_BYTES = 1024
# canonical lower-case hex only; fromhex alone would also take upper case and spaces
_HEX = re.compile(r"^[0-9a-f]*\Z")


@dataclass(frozen=True)
class EncryptionEnvelope:
    algorithm: str
    iv: bytes
    auth_tag: bytes
    ciphertext: bytes

    def header(self) -> dict:
        return {"algorithm": self.algorithm, "iv": self.iv.hex(), "authTag": self.auth_tag.hex()}


# ----- symmetric (AES-GCM) -----
def random_key32() -> bytes:
    return os.urandom(KEY_LENGTH)


def aesgcm_encrypt(key: bytes, plaintext: bytes, aad: Optional[bytes] = None):
    aes = AESGCM(key)
    iv = os.urandom(IV_LENGTH)
    sealed = aes.encrypt(iv, plaintext, aad)
    # cryptography appends the tag to the ciphertext
    return iv, sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]


def aesgcm_decrypt(key: bytes, iv: bytes, ciphertext: bytes, tag: bytes, aad: Optional[bytes] = None) -> bytes:
    aes = AESGCM(key)
    return aes.decrypt(iv, ciphertext + tag, aad)


# ----- envelope -----
def seal(plaintext: bytes, key_hex: Optional[str] = None) -> Tuple[EncryptionEnvelope, str]:
    """
    Encrypt ``plaintext`` under a fresh IV.

    A new random 256-bit key is generated when ``key_hex`` is not given.
    Returns the envelope and the key as hex; the caller owns the key from
    here on.
    """
    key = _parse_key(key_hex) if key_hex is not None else random_key32()
    iv, ciphertext, tag = aesgcm_encrypt(key, plaintext)
    return EncryptionEnvelope(ALGORITHM, iv, tag, ciphertext), key.hex()


def open_envelope(envelope: EncryptionEnvelope, key_hex: str) -> bytes:
    """Decrypt and authenticate. Every failure raises the same DecryptionFailed."""
    if envelope.algorithm != ALGORITHM:
        raise DecryptionFailed()
    if len(envelope.iv) != IV_LENGTH or len(envelope.auth_tag) != TAG_LENGTH:
        raise DecryptionFailed()
    try:
        key = _parse_key(key_hex)
    except ValueError:
        raise DecryptionFailed()
    try:
        return aesgcm_decrypt(key, envelope.iv, envelope.ciphertext, envelope.auth_tag)
    except InvalidTag:
        raise DecryptionFailed()


def frame(envelope: EncryptionEnvelope) -> bytes:
    header = json.dumps(envelope.header(), separators=(",", ":")).encode("utf-8")
    return _LENGTH_PREFIX.pack(len(header)) + header + envelope.ciphertext


def unframe(blob: bytes) -> EncryptionEnvelope:
    """Inverse of ``frame``. Truncated or garbled objects raise DecryptionFailed."""
    if len(blob) < _LENGTH_PREFIX.size:
        log.debug("stored object shorter than its length prefix (%d bytes)", len(blob))
        raise DecryptionFailed()
    (header_len,) = _LENGTH_PREFIX.unpack_from(blob, 0)
    start = _LENGTH_PREFIX.size
    if header_len == 0 or header_len > MAX_HEADER_BYTES or start + header_len > len(blob):
        log.debug("header length %d does not fit a %d byte object", header_len, len(blob))
        raise DecryptionFailed()
    try:
        header = json.loads(blob[start:start + header_len].decode("utf-8"))
        algorithm = header["algorithm"]
        iv = _strict_hex(header["iv"])
        tag = _strict_hex(header["authTag"])
    except (UnicodeDecodeError, ValueError, KeyError, TypeError, RecursionError):
        log.debug("unreadable envelope header")
        raise DecryptionFailed()
    if len(iv) != IV_LENGTH or len(tag) != TAG_LENGTH:
        raise DecryptionFailed()
    return EncryptionEnvelope(algorithm, iv, tag, blob[start + header_len:])


def _strict_hex(value) -> bytes:
    if not isinstance(value, str) or not _HEX.match(value):
        raise ValueError("not canonical hex")
    return bytes.fromhex(value)


def _parse_key(key_hex: str) -> bytes:
    if not isinstance(key_hex, str):
        raise ValueError("key must be a hex string")
    raw = key_hex[2:] if key_hex.startswith("0x") else key_hex
    key = bytes.fromhex(raw)
    if len(key) != KEY_LENGTH:
        raise ValueError(f"key must be {KEY_LENGTH} bytes")
    return key
