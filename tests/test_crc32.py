import pytest

from tcpwechat.crc32 import calculate, verify


def test_standard_check_value():
    assert calculate(b"123456789") == 0xCBF43926


def test_empty_input_is_zero():
    assert calculate(b"") == 0


@pytest.mark.parametrize(
    "data",
    [b"alice", b"\x00" * 32, bytes(range(256)), "你好".encode("utf-8")],
)
def test_result_is_unsigned_32_bit(data):
    value = calculate(data)
    assert 0 <= value <= 0xFFFFFFFF


def test_accepts_bytes_like_inputs():
    raw = b"hello world"
    assert calculate(bytearray(raw)) == calculate(raw)
    assert calculate(memoryview(raw)) == calculate(raw)


def test_verify_matches_calculated_checksum():
    data = b"success"
    assert verify(data, calculate(data)) is True


def test_verify_rejects_wrong_checksum():
    data = b"success"
    assert verify(data, calculate(data) ^ 1) is False


def test_single_bit_flip_changes_checksum():
    data = bytearray(b"chat message payload")
    original = calculate(data)
    for position in (0, 5, len(data) - 1):
        flipped = bytearray(data)
        flipped[position] ^= 0x01
        assert calculate(flipped) != original
        assert not verify(flipped, original)