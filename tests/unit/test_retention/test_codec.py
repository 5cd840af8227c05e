# tests/unit/test_retention/test_codec.py
"""Unit tests for archive blob encoding."""

import gzip
import json
import re

import pytest
from cryptography.fernet import Fernet

RECORDS = [{"id": str(n), "payload": {"message": "login ok " * 20}} for n in range(50)]
METADATA = {"archiveId": "ARC-TEST", "recordCount": 50}


class TestArchiveId:
    def test_format(self):
        """ARC-<base36 timestamp>-<8 base36 chars>, uppercase."""
        from archivist.services.retention.codec import generate_archive_id

        archive_id = generate_archive_id()

        assert re.fullmatch(r"ARC-[0-9A-Z]+-[0-9A-Z]{8}", archive_id)

    def test_ids_are_distinct(self):
        from archivist.services.retention.codec import generate_archive_id

        assert len({generate_archive_id() for _ in range(200)}) == 200

    def test_base36(self):
        from archivist.services.retention.codec import to_base36

        assert to_base36(0) == "0"
        assert to_base36(35) == "z"
        assert to_base36(36) == "10"


class TestEncodeArchive:
    """Tests for encode_archive()."""

    def test_compressed_blob_is_gzip_of_document(self):
        from archivist.services.retention.codec import encode_archive

        encoded = encode_archive(METADATA, RECORDS, compress=True)

        document = json.loads(gzip.decompress(encoded.content))
        assert document == {"metadata": METADATA, "records": RECORDS}

    def test_sizes_and_ratio(self):
        """Ratio is percent saved, rounded to two decimals."""
        from archivist.services.retention.codec import encode_archive

        encoded = encode_archive(METADATA, RECORDS, compress=True)

        assert encoded.compressed_size < encoded.original_size
        expected = round((encoded.original_size - encoded.compressed_size) / encoded.original_size * 100, 2)
        assert encoded.compression_ratio == expected

    def test_uncompressed_has_zero_ratio(self):
        from archivist.services.retention.codec import encode_archive

        encoded = encode_archive(METADATA, RECORDS, compress=False)

        assert encoded.compression_ratio == 0
        assert encoded.compressed_size == encoded.original_size
        assert json.loads(encoded.content)["records"] == RECORDS

    def test_checksum_covers_final_bytes(self):
        """Checksum is SHA-256 of the stored (compressed, encrypted) bytes."""
        import hashlib

        from archivist.services.retention.codec import encode_archive

        encoded = encode_archive(METADATA, RECORDS, data_key=Fernet.generate_key())

        assert encoded.checksum == hashlib.sha256(encoded.content).hexdigest()

    def test_encrypted_blob_is_not_gzip(self):
        from archivist.services.retention.codec import encode_archive

        encoded = encode_archive(METADATA, RECORDS, data_key=Fernet.generate_key())

        with pytest.raises(OSError):
            gzip.decompress(encoded.content)


class TestDecodeArchive:
    """Tests for decode_archive()."""

    def test_roundtrip_with_encryption(self):
        from archivist.services.retention.codec import decode_archive, encode_archive

        key = Fernet.generate_key()
        encoded = encode_archive(METADATA, RECORDS, data_key=key)

        document = decode_archive(encoded.content, encoded.checksum, compressed=True, data_key=key)

        assert document["records"] == RECORDS

    def test_checksum_mismatch(self):
        from archivist.services.retention.codec import decode_archive, encode_archive
        from archivist.services.retention.errors import IntegrityError

        encoded = encode_archive(METADATA, RECORDS)
        tampered = encoded.content[:-1] + bytes([encoded.content[-1] ^ 0xFF])

        with pytest.raises(IntegrityError, match="checksum mismatch"):
            decode_archive(tampered, encoded.checksum)

    def test_wrong_key(self):
        from archivist.services.retention.codec import decode_archive, encode_archive
        from archivist.services.retention.errors import IntegrityError

        encoded = encode_archive(METADATA, RECORDS, data_key=Fernet.generate_key())

        with pytest.raises(IntegrityError, match="could not be decrypted"):
            decode_archive(encoded.content, encoded.checksum, data_key=Fernet.generate_key())

    def test_compression_flag_mismatch_is_unreadable(self):
        from archivist.services.retention.codec import decode_archive, encode_archive
        from archivist.services.retention.errors import IntegrityError

        encoded = encode_archive(METADATA, RECORDS, compress=False)

        with pytest.raises(IntegrityError, match="unreadable"):
            decode_archive(encoded.content, compressed=True)

    def test_missing_records_list(self):
        from archivist.services.retention.codec import decode_archive
        from archivist.services.retention.errors import IntegrityError

        content = json.dumps({"metadata": {}, "records": "nope"}).encode()

        with pytest.raises(IntegrityError, match="records list"):
            decode_archive(content, compressed=False)
