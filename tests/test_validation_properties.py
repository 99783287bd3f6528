"""Property-based tests for identifier validation and text normalization."""

from __future__ import annotations

import string

from hypothesis import given, settings
from hypothesis import strategies as st

from harmony_engine.validation import (
    gtin_check_digit,
    gtin_variants,
    is_valid_gtin,
    is_valid_isrc,
    normalize_gtin,
    normalize_isrc,
    normalize_string,
)

# GTIN bodies: every digit except the check digit
gtin_bodies = st.sampled_from([7, 11, 12, 13]).flatmap(
    lambda n: st.text(alphabet="0123456789", min_size=n, max_size=n)
)

latin_text = st.text(
    alphabet=st.characters(min_codepoint=0x20, max_codepoint=0x17F),
    max_size=100,
)


@st.composite
def valid_gtins(draw) -> str:
    body = draw(gtin_bodies)
    return body + str(gtin_check_digit(body))


@st.composite
def valid_isrcs(draw) -> str:
    country = draw(st.text(alphabet="ABCDEFGHIJKLMNOPQRSTUVWXYZ", min_size=2, max_size=2))
    registrant = draw(st.text(alphabet="ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789", min_size=3, max_size=3))
    year = draw(st.text(alphabet="0123456789", min_size=2, max_size=2))
    designation = draw(st.text(alphabet="0123456789", min_size=5, max_size=5))
    return f"{country}{registrant}{year}{designation}"


# GTIN properties


@given(valid_gtins())
@settings(max_examples=200)
def test_computed_check_digit_validates(code: str):
    """Property: a body plus its computed check digit is a valid GTIN."""
    assert is_valid_gtin(code)


@given(valid_gtins(), st.integers(min_value=1, max_value=9))
@settings(max_examples=200)
def test_wrong_check_digit_rejected(code: str, offset: int):
    """Property: any other check digit is rejected."""
    wrong = code[:-1] + str((int(code[-1]) + offset) % 10)
    assert not is_valid_gtin(wrong)


@given(valid_gtins(), st.integers(min_value=1, max_value=9), st.data())
@settings(max_examples=200)
def test_changed_body_digit_rejected(code: str, offset: int, data):
    """Property: changing any single body digit invalidates the GTIN (weights 3 and 1 are coprime with 10)."""
    index = data.draw(st.integers(min_value=0, max_value=len(code) - 2))
    digit = str((int(code[index]) + offset) % 10)
    changed = code[:index] + digit + code[index + 1 :]
    assert not is_valid_gtin(changed)


@given(valid_gtins())
@settings(max_examples=200)
def test_normalized_gtin_is_valid_gtin14(code: str):
    """Property: zero-padding keeps the check digit valid."""
    normalized = normalize_gtin(code)
    assert len(normalized) == 14
    assert is_valid_gtin(normalized)
    assert normalize_gtin(normalized) == normalized


@given(valid_gtins())
@settings(max_examples=200)
def test_gtin_variants_normalize_back(code: str):
    """Property: every printed variant is valid and pads back to the same GTIN-14."""
    gtin = normalize_gtin(code)
    variants = gtin_variants(gtin)
    assert variants[0] == gtin
    assert code in variants
    for variant in variants:
        assert is_valid_gtin(variant)
        assert normalize_gtin(variant) == gtin


@given(valid_gtins())
@settings(max_examples=50)
def test_gtin_separators_ignored(code: str):
    spaced = "-".join(code[i : i + 4] for i in range(0, len(code), 4))
    assert is_valid_gtin(spaced)
    assert normalize_gtin(spaced) == normalize_gtin(code)


@given(st.text(alphabet="0123456789", min_size=1, max_size=20))
@settings(max_examples=200)
def test_only_gtin_lengths_accepted(digits: str):
    if len(digits) not in (8, 12, 13, 14):
        assert not is_valid_gtin(digits)


# ISRC properties


@given(valid_isrcs())
@settings(max_examples=100)
def test_isrc_case_and_separators_ignored(isrc: str):
    formatted = f"{isrc[:2]}-{isrc[2:5]}-{isrc[5:7]}-{isrc[7:]}".lower()
    assert is_valid_isrc(formatted)
    assert normalize_isrc(formatted) == isrc


@given(valid_isrcs(), st.integers(min_value=0, max_value=11))
@settings(max_examples=100)
def test_truncated_isrc_rejected(isrc: str, cut: int):
    assert not is_valid_isrc(isrc[:cut])


# Normalization properties


@given(latin_text)
@settings(max_examples=200)
def test_normalize_string_idempotent(text: str):
    """Property: normalizing twice equals normalizing once."""
    first = normalize_string(text)
    assert normalize_string(first) == first


@given(st.text(alphabet=string.ascii_letters + string.digits + " -.", max_size=60))
@settings(max_examples=200)
def test_normalize_string_case_insensitive(text: str):
    assert normalize_string(text.upper()) == normalize_string(text.lower())


@given(latin_text)
@settings(max_examples=100)
def test_normalize_string_has_no_edge_whitespace(text: str):
    result = normalize_string(text)
    assert result == result.strip()
    assert "  " not in result
