# archivist/services/retention/codec.py
"""
Archive blob encoding.

encode: JSON {metadata, records} -> gzip (optional) -> Fernet (optional),
then SHA-256 over the final bytes. decode reverses it after checking the
checksum.
"""

import json
import secrets
import time
from dataclasses import dataclass

from cryptography.fernet import Fernet, InvalidToken

from archivist.constants import ArchiveDefaults
from archivist.services.retention.errors import IntegrityError
from archivist.storage.base import compress_content, compute_content_hash, decompress_content

BASE36_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"


def to_base36(number: int) -> str:
    if number == 0:
        return "0"
    digits = []
    while number:
        number, rem = divmod(number, 36)
        digits.append(BASE36_ALPHABET[rem])
    return "".join(reversed(digits))


def generate_archive_id() -> str:
    """ARC-<base36 epoch ms>-<base36 random>, uppercased."""
    timestamp = to_base36(int(time.time() * 1000))
    random_part = "".join(secrets.choice(BASE36_ALPHABET) for _ in range(ArchiveDefaults.ID_RANDOM_CHARS))
    return f"{ArchiveDefaults.ID_PREFIX}-{timestamp}-{random_part}".upper()


@dataclass
class EncodedArchive:
    """Final blob bytes plus the file info recorded on the Archive."""

    content: bytes
    original_size: int
    compressed_size: int
    compression_ratio: float  # percent saved
    checksum: str


def encode_archive(
    metadata: dict,
    records: list[dict],
    compress: bool = True,
    compression_level: int = ArchiveDefaults.COMPRESSION_LEVEL,
    data_key: bytes | None = None,
) -> EncodedArchive:
    payload = json.dumps({"metadata": metadata, "records": records}, default=str).encode("utf-8")
    original_size = len(payload)

    content = compress_content(payload, level=compression_level) if compress else payload
    compressed_size = len(content)
    compression_ratio = (
        round((original_size - compressed_size) / original_size * 100, 2) if original_size else 0.0
    )

    if data_key is not None:
        content = Fernet(data_key).encrypt(content)

    return EncodedArchive(
        content=content,
        original_size=original_size,
        compressed_size=compressed_size,
        compression_ratio=compression_ratio,
        checksum=compute_content_hash(content),
    )


def decode_archive(
    content: bytes,
    expected_checksum: str | None = None,
    compressed: bool = True,
    data_key: bytes | None = None,
) -> dict:
    """
    Decode blob bytes into {"metadata": ..., "records": [...]}.

    Raises:
        IntegrityError: checksum mismatch, bad ciphertext or unparseable payload
    """
    if expected_checksum is not None:
        actual = compute_content_hash(content)
        if actual != expected_checksum:
            raise IntegrityError(f"Archive checksum mismatch: expected {expected_checksum}, got {actual}")

    try:
        if data_key is not None:
            content = Fernet(data_key).decrypt(content)
        if compressed:
            content = decompress_content(content)
        document = json.loads(content.decode("utf-8"))
    except InvalidToken:
        raise IntegrityError("Archive could not be decrypted with its data key")
    except (OSError, EOFError, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise IntegrityError(f"Archive payload is unreadable: {e}")

    if not isinstance(document, dict) or not isinstance(document.get("records"), list):
        raise IntegrityError("Archive payload is missing its records list")
    return document
