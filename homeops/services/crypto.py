"""Signed and encrypted callback envelope used by the WeCom self-built app.

Layout of the decrypted buffer::

    random(16) | msg_len(4, big-endian) | msg | receiver_id

padded with PKCS#7 to a 32-byte block and encrypted with AES-256-CBC,
key = base64(EncodingAESKey + "="), iv = key[:16].
"""

import base64
import binascii
import hashlib
import hmac
import os
import struct
from typing import Optional

from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

PAD_BLOCK_SIZE = 32
RANDOM_PREFIX_SIZE = 16
_LENGTH_PREFIX_SIZE = 4


class DecryptionError(ValueError):
    """Ciphertext could not be turned into a message addressed to us."""


def compute_signature(token: str, timestamp: str, nonce: str, encrypted: str) -> str:
    parts = sorted([token, timestamp, nonce, encrypted])
    return hashlib.sha1("".join(parts).encode("utf-8")).hexdigest()


def _pkcs7_pad(data: bytes) -> bytes:
    pad = PAD_BLOCK_SIZE - (len(data) % PAD_BLOCK_SIZE)
    return data + bytes([pad]) * pad


def _pkcs7_unpad(data: bytes) -> bytes:
    if not data:
        raise DecryptionError("empty plaintext")
    pad = data[-1]
    if pad < 1 or pad > PAD_BLOCK_SIZE or pad > len(data):
        raise DecryptionError("invalid padding")
    if data[-pad:] != bytes([pad]) * pad:
        raise DecryptionError("invalid padding")
    return data[:-pad]


class WeComCrypto:
    def __init__(self, token: str, encoding_aes_key: str, receiver_id: str):
        try:
            key = base64.b64decode(encoding_aes_key + "=", validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValueError(f"invalid encoding AES key: {e}") from e
        if len(key) != 32:
            raise ValueError(f"invalid encoding AES key: decoded length {len(key)}, want 32")

        self.token = token
        self.receiver_id = receiver_id
        self._key = key
        self._iv = key[:16]

    def _cipher(self) -> Cipher:
        return Cipher(algorithms.AES(self._key), modes.CBC(self._iv))

    def verify_signature(self, signature: str, timestamp: str, nonce: str, encrypted: str) -> bool:
        if not signature or encrypted is None:
            return False
        expected = compute_signature(self.token, timestamp or "", nonce or "", encrypted)
        return hmac.compare_digest(expected.encode("utf-8"), signature.encode("utf-8"))

    def decrypt(self, encrypted: str) -> bytes:
        try:
            raw = base64.b64decode(encrypted, validate=True)
        except (binascii.Error, ValueError) as e:
            raise DecryptionError(f"base64 decode failed: {e}") from e
        if not raw or len(raw) % 16:
            raise DecryptionError("ciphertext is not a whole number of blocks")

        decryptor = self._cipher().decryptor()
        plain = _pkcs7_unpad(decryptor.update(raw) + decryptor.finalize())

        header = RANDOM_PREFIX_SIZE + _LENGTH_PREFIX_SIZE
        if len(plain) < header:
            raise DecryptionError("plaintext too short")
        (msg_len,) = struct.unpack(">I", plain[RANDOM_PREFIX_SIZE:header])
        if header + msg_len > len(plain):
            raise DecryptionError("length prefix exceeds plaintext")

        msg = plain[header : header + msg_len]
        receiver_id = plain[header + msg_len :].decode("utf-8", errors="replace")
        if self.receiver_id and receiver_id != self.receiver_id:
            raise DecryptionError("receiver id mismatch")
        return msg

    def encrypt(self, plain: bytes, random_prefix: Optional[bytes] = None) -> str:
        if random_prefix is None:
            random_prefix = os.urandom(RANDOM_PREFIX_SIZE)
        if len(random_prefix) != RANDOM_PREFIX_SIZE:
            raise ValueError(f"random prefix must be {RANDOM_PREFIX_SIZE} bytes")

        body = random_prefix + struct.pack(">I", len(plain)) + plain + self.receiver_id.encode("utf-8")
        encryptor = self._cipher().encryptor()
        encrypted = encryptor.update(_pkcs7_pad(body)) + encryptor.finalize()
        return base64.b64encode(encrypted).decode("ascii")
