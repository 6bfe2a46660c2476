"""
Envelope codec for ``.medsecure`` files.

An envelope is a UTF-8 string::

    MEDSECURE_2024_ENCRYPTED_FILE::<ciphertext>

where the ciphertext is the passphrase-AES encryption (see :mod:`crypto`) of a
JSON payload ``{"metadata": {...}, "fileData": "<base64 bytes>"}``. The magic
string appears twice: as the clear-text prefix and as ``metadata.signature``
inside the payload. Both must match for a file to be accepted.

:func:`encode` and :func:`decode` are pure; auditing and access checks live in
:mod:`gate`.
"""

import base64
import binascii
import json
import logging
import re
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Optional, Tuple

from config import MAGIC, SEPARATOR, ENCRYPTION_KEY
from crypto import passphrase_encrypt, passphrase_decrypt
from errors import NotThisPlatform, DecryptionFailed, MalformedPayload, SignatureMismatch

logger = logging.getLogger("medsecure.envelope")

PREFIX = MAGIC + SEPARATOR
BAD_FILE_DATA = "File data inside the envelope is not valid base64."

_LONE_SURROGATE = re.compile(r"[\ud800-\udfff]")


@dataclass(frozen=True)
class FileMetadata:
    originalName: str
    mimeType: str
    size: int
    encryptedAt: str
    signature: str

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class DecodedFile:
    metadata: FileMetadata
    file_data: str  # base64, exactly as stored in the payload

    @property
    def original_name(self) -> str:
        return self.metadata.originalName

    @property
    def mime_type(self) -> str:
        return self.metadata.mimeType

    @property
    def size(self) -> int:
        return self.metadata.size

    def content(self) -> bytes:
        try:
            return base64.b64decode(self.file_data, validate=True)
        except (binascii.Error, ValueError) as e:
            raise MalformedPayload(BAD_FILE_DATA) from e


def iso_timestamp(moment: Optional[datetime] = None) -> str:
    """UTC timestamp in the ``Date.toISOString()`` layout, e.g. 2024-05-01T10:00:00.000Z."""
    moment = (moment or datetime.now(timezone.utc)).astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


def serialize_payload(metadata: dict, file_data: str) -> str:
    # compact separators: byte-for-byte what JSON.stringify emits
    text = json.dumps({"metadata": metadata, "fileData": file_data}, separators=(",", ":"), ensure_ascii=False)
    # lone surrogates have no UTF-8 form; escape them the way JSON.stringify does
    return _LONE_SURROGATE.sub(lambda m: "\\u%04x" % ord(m.group()), text)


def seal_payload(payload_text: str, key: str = ENCRYPTION_KEY) -> str:
    return PREFIX + passphrase_encrypt(key, payload_text.encode("utf-8"))


def encode_with_metadata(file_bytes: bytes, file_name: str, mime_type: str = "", *,
                         now: Optional[datetime] = None, key: str = ENCRYPTION_KEY) -> Tuple[str, FileMetadata]:
    metadata = FileMetadata(
        originalName=file_name or "",
        mimeType=mime_type or "",
        size=len(file_bytes),
        encryptedAt=iso_timestamp(now),
        signature=MAGIC,
    )
    file_data = base64.b64encode(file_bytes).decode("ascii")
    return seal_payload(serialize_payload(metadata.to_dict(), file_data), key), metadata


def encode(file_bytes: bytes, file_name: str, mime_type: str = "", *,
           now: Optional[datetime] = None, key: str = ENCRYPTION_KEY) -> str:
    envelope, _ = encode_with_metadata(file_bytes, file_name, mime_type, now=now, key=key)
    return envelope


def _parse_payload(text: str) -> Tuple[dict, str]:
    """Structural check of the decrypted payload. The signature is compared separately."""
    try:
        payload = json.loads(text)
    except (ValueError, RecursionError) as e:
        raise MalformedPayload() from e
    if not isinstance(payload, dict):
        raise MalformedPayload()
    meta = payload.get("metadata")
    file_data = payload.get("fileData")
    if not isinstance(meta, dict) or not isinstance(file_data, str):
        raise MalformedPayload()

    name = meta.get("originalName")
    mime = meta.get("mimeType", "")
    size = meta.get("size")
    encrypted_at = meta.get("encryptedAt", "")
    if not isinstance(name, str) or not isinstance(mime, str) or not isinstance(encrypted_at, str):
        raise MalformedPayload()
    # bool is an int subclass; reject it explicitly
    if not isinstance(size, int) or isinstance(size, bool) or size < 0:
        raise MalformedPayload()
    try:
        base64.b64decode(file_data, validate=True)
    except (binascii.Error, ValueError) as e:
        raise MalformedPayload(BAD_FILE_DATA) from e
    return meta, file_data


def decode(envelope: str, *, key: str = ENCRYPTION_KEY) -> DecodedFile:
    if not isinstance(envelope, str) or not envelope.startswith(PREFIX):
        raise NotThisPlatform()

    try:
        raw = passphrase_decrypt(key, envelope[len(PREFIX):])
        text = raw.decode("utf-8")
    except ValueError as e:  # UnicodeDecodeError is a ValueError
        logger.warning("envelope rejected: %s", e)
        raise DecryptionFailed() from e
    if not text:
        raise DecryptionFailed()

    meta, file_data = _parse_payload(text)
    # anything but the exact marker, including a missing or non-string one
    if meta.get("signature") != MAGIC:
        logger.warning("envelope rejected: inner signature mismatch")
        raise SignatureMismatch()
    metadata = FileMetadata(
        originalName=meta["originalName"],
        mimeType=meta.get("mimeType", ""),
        size=meta["size"],
        encryptedAt=meta.get("encryptedAt", ""),
        signature=MAGIC,
    )
    return DecodedFile(metadata=metadata, file_data=file_data)
