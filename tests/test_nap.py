import pytest

from napaudit.extraction import nap


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("0400 111 111", "+61400111111"),
        ("+61 400 111 111", "+61400111111"),
        ("(02) 9999 0000", "+61299990000"),
        ("400111111", "+61400111111"),
        ("1300 123 456", "1300123456"),
        ("", None),
        ("n/a", None),
    ],
)
def test_normalize_phone(raw, expected):
    assert nap.normalize_phone(raw) == expected


def test_full_match_scores_one_hundred(reference):
    observed = nap.Nap(name="Shadow Plumbing", address="100 Pipe Rd, Sydney NSW 2000", phone="0400 111 111")

    result = nap.score_match(reference, observed)

    assert result.score == 100
    assert result.mismatch == {}
    assert result.flags == {"phone": True, "address": True, "name": True}


def test_name_partial_overlap_is_recorded(reference):
    observed = nap.Nap(name="Shadow Electrical Co", address="100 Pipe Rd, Sydney NSW 2000", phone="+61400111111")

    result = nap.score_match(reference, observed)

    assert result.score == 90
    assert result.mismatch["name"]["overlap"] == pytest.approx(0.5)
    assert result.flags["name"] is False
    assert nap.classify_field(result.mismatch_with_flags(), "name") == nap.PARTIAL


def test_phone_mismatch_keeps_both_normalized_values(reference):
    result = nap.score_match(reference, nap.Nap(phone="02 9999 0000"))

    assert result.score == 0
    assert result.mismatch["phone"] == {"golden": "+61400111111", "observed": "+61299990000"}
    assert nap.classify_field(result.mismatch_with_flags(), "phone") == nap.MISMATCH


def test_no_overlap_is_not_recorded_as_mismatch(reference):
    result = nap.score_match(reference, nap.Nap(name="Completely Different", address="Elsewhere"))

    assert "name" not in result.mismatch
    assert "address" not in result.mismatch
    assert nap.classify_field(result.mismatch_with_flags(), "address") == nap.MISSING


@pytest.mark.parametrize(
    "mismatch, field_name, expected",
    [
        ({"error": "timeout", "flags": {"phone": True}}, "phone", nap.MISSING),
        ({"flags": {"address": True}}, "address", nap.EXACT),
        ({"phone": {"golden": "+61400111111", "observed": None}, "flags": {}}, "phone", nap.MISSING),
        ({"address": {"overlap": 0, "golden": "a", "observed": "b"}, "flags": {}}, "address", nap.MISMATCH),
        (None, "name", nap.MISSING),
    ],
)
def test_classify_field(mismatch, field_name, expected):
    assert nap.classify_field(mismatch, field_name) == expected
