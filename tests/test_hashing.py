import zlib

from cinder.hashing import content_hash


def test_content_hash_is_unsigned_crc32():
    data = b"COMMAND = None\n"

    assert content_hash(data) == zlib.crc32(data) & 0xFFFFFFFF
    assert content_hash(b"") == 0


def test_hash_is_stable_across_calls():
    data = bytes(range(256)) * 100

    assert content_hash(data) == content_hash(bytes(data))


def test_single_byte_change_alters_hash():
    assert content_hash(b"description='a'") != content_hash(b"description='b'")
