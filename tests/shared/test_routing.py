import pytest

from gateway_shared.routing import fnv1a_32, is_valid_id, select_index, validate_id


def test_fnv1a_32_known_vectors():
    assert fnv1a_32(b"") == 0x811C9DC5
    assert fnv1a_32(b"a") == 0xE40C292C
    assert fnv1a_32(b"foobar") == 0xBF9CF968


def test_select_index_is_deterministic_and_in_range():
    for identifier in ["obj123", "b1", "x" * 32, "Q4", ""]:
        for count in (1, 2, 3, 7, 16):
            first = select_index(identifier, count)
            assert first == select_index(identifier, count)
            assert 0 <= first < count


def test_select_index_single_instance_is_always_zero():
    assert {select_index(f"id{i}", 1) for i in range(50)} == {0}


def test_select_index_uses_unsigned_hash_modulo():
    assert select_index("a", 3) == 0xE40C292C % 3
    assert select_index("foobar", 5) == 0xBF9CF968 % 5


def test_select_index_rejects_empty_fleet():
    with pytest.raises(ValueError):
        select_index("obj", 0)


@pytest.mark.parametrize("identifier", ["", "a", "obj123", "ABCxyz019", "a" * 32])
def test_is_valid_id_accepts_short_alphanumerics(identifier):
    assert is_valid_id(identifier)


@pytest.mark.parametrize(
    "identifier",
    ["a" * 33, "bad!id", "with space", "dash-id", "under_score", "dot.id", "café", "１２"],
)
def test_is_valid_id_rejects_long_or_non_ascii_alphanumeric(identifier):
    assert not is_valid_id(identifier)


def test_validate_id_reports_reason():
    with pytest.raises(ValueError, match="must not exceed 32 characters"):
        validate_id("a" * 40)
    with pytest.raises(ValueError, match="only alphanumeric"):
        validate_id("bad!id")
