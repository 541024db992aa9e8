from dataclasses import dataclass

from homeops.schemas.wecom import EncryptedEnvelope, IncomingMessage
from homeops.services.crypto import DecryptionError, WeComCrypto
from homeops.services.result import Result

ERROR_BAD_XML = "bad_xml"
ERROR_MISSING_ENCRYPT = "missing_encrypt"
ERROR_INVALID_SIGNATURE = "invalid_signature"
ERROR_DECRYPT_FAILED = "decrypt_failed"

ERROR_STATUS = {
    ERROR_BAD_XML: 400,
    ERROR_MISSING_ENCRYPT: 400,
    ERROR_INVALID_SIGNATURE: 403,
    ERROR_DECRYPT_FAILED: 403,
}


@dataclass(frozen=True)
class OpenedEnvelope:
    message: IncomingMessage
    plain: bytes


def verify_echo(crypto: WeComCrypto, signature: str, timestamp: str, nonce: str, echostr: str) -> Result[bytes]:
    """Answer the GET ownership challenge: verify, then decrypt the echo string."""
    if not crypto.verify_signature(signature, timestamp, nonce, echostr):
        return Result.failure("invalid signature", ERROR_INVALID_SIGNATURE)
    try:
        return Result.success(crypto.decrypt(echostr))
    except DecryptionError as e:
        return Result.failure(str(e), ERROR_DECRYPT_FAILED)


def open_envelope(crypto: WeComCrypto, signature: str, timestamp: str, nonce: str, body: bytes) -> Result[OpenedEnvelope]:
    """Parse, authenticate and decrypt a POSTed callback body."""
    try:
        envelope = EncryptedEnvelope.from_xml(body)
    except ValueError as e:
        return Result.failure(str(e), ERROR_BAD_XML)
    if not envelope.encrypt.strip():
        return Result.failure("missing Encrypt", ERROR_MISSING_ENCRYPT)

    if not crypto.verify_signature(signature, timestamp, nonce, envelope.encrypt):
        return Result.failure("invalid signature", ERROR_INVALID_SIGNATURE)

    try:
        plain = crypto.decrypt(envelope.encrypt)
    except DecryptionError as e:
        return Result.failure(str(e), ERROR_DECRYPT_FAILED)

    try:
        message = IncomingMessage.from_xml(plain)
    except ValueError as e:
        return Result.failure(str(e), ERROR_BAD_XML)
    return Result.success(OpenedEnvelope(message=message, plain=plain))
