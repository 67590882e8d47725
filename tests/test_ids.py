import pytest

from ids import merge_relation_ids, normalize_id, validate_ids

_UUID = "12345678-90ab-cdef-1234-567890abcdef"
_HEX = "1234567890abcdef1234567890abcdef"
_OTHER = "aaaaaaaa-bbbb-cccc-dddd-eeeeeeeeeeee"


@pytest.mark.parametrize(
    "raw",
    [_UUID, _HEX, _UUID.upper(), _HEX.upper(), f"  {_UUID}  "],
)
def test_normalize_id_canonical_forms(raw) -> None:
    assert normalize_id(raw) == _UUID


def test_normalize_id_is_idempotent() -> None:
    once = normalize_id(_HEX)
    assert normalize_id(once) == once


@pytest.mark.parametrize(
    "raw",
    ["1111-invalid", "", "12345678-90ab-cdef-1234", _HEX + "0", "g" * 32, None, 42],
)
def test_normalize_id_rejects_other_shapes(raw) -> None:
    assert normalize_id(raw) is None


def test_validate_ids_filters_unknown_and_malformed() -> None:
    result = validate_ids([_HEX.upper(), "1111-invalid", _OTHER], known_ids=[_UUID])

    assert result.valid == [_UUID]
    assert result.invalid == ["1111-invalid", _OTHER]


def test_validate_ids_drops_repeats_of_accepted_ids() -> None:
    result = validate_ids([_UUID, _HEX, "bad", "bad"], known_ids=[_HEX])

    assert result.valid == [_UUID]
    assert result.invalid == ["bad", "bad"]


def test_validate_ids_with_empty_known_set() -> None:
    result = validate_ids([_UUID], known_ids=[])
    assert result.valid == []
    assert result.invalid == [_UUID]


def test_merge_relation_ids_keeps_existing_first() -> None:
    merged = merge_relation_ids([_OTHER.replace("-", ""), "junk"], [_HEX, _OTHER])
    assert merged == [_OTHER, _UUID]
