"""
Identifier validation and text normalization.

GTIN (UPC/EAN barcode) and ISRC checks used before any provider is queried,
plus the string normalizer behind every ``*_normalized`` field and the
case/diacritic-insensitive list merges.
"""

from __future__ import annotations

import re
import unicodedata

GTIN_LENGTHS = frozenset({8, 12, 13, 14})
GTIN_CANONICAL_LENGTH = 14

_SEPARATORS = re.compile(r"[\s-]")
_ISRC_PATTERN = re.compile(r"[A-Z]{2}[A-Z0-9]{3}\d{7}")


def _strip_separators(code: str) -> str:
    return _SEPARATORS.sub("", code)


def gtin_check_digit(body: str) -> int:
    """
    Compute the GTIN check digit for the digits preceding it.

    Weights alternate 3,1,3,... starting from the rightmost digit of ``body``.

    Args:
        body: GTIN digits without the trailing check digit

    Returns:
        Check digit (0-9)
    """
    total = sum(int(d) * (3 if i % 2 == 0 else 1) for i, d in enumerate(reversed(body)))
    return (10 - total % 10) % 10


def is_valid_gtin(code: str) -> bool:
    """
    Validate a GTIN-8/12/13/14 barcode including its check digit.

    Spaces and dashes are ignored. Anything non-numeric or of another
    length is invalid.
    """
    cleaned = _strip_separators(code)
    if len(cleaned) not in GTIN_LENGTHS or not (cleaned.isascii() and cleaned.isdigit()):
        return False
    return gtin_check_digit(cleaned[:-1]) == int(cleaned[-1])


def normalize_gtin(code: str) -> str:
    """Strip separators and left-pad with zeros to 14 digits."""
    return _strip_separators(code).rjust(GTIN_CANONICAL_LENGTH, "0")


def canonical_gtin(code: str | None) -> str | None:
    """Normalized GTIN-14 for a valid barcode; other non-empty values pass through unchanged."""
    if not code:
        return None
    return normalize_gtin(code) if is_valid_gtin(code) else code


def gtin_variants(gtin: str) -> list[str]:
    """
    Printed forms of a zero-padded GTIN-14.

    Catalogs store barcodes as printed (UPC-A, EAN-13, ...), so a padded code
    is searched under every shorter form whose dropped prefix is all zeros.
    The padded form comes first.
    """
    variants = [gtin]
    for length in (13, 12, 8):
        if len(gtin) > length and set(gtin[:-length]) == {"0"}:
            variants.append(gtin[-length:])
    return variants


def is_valid_isrc(code: str) -> bool:
    """
    Validate an ISRC (CC-XXX-YY-NNNNN).

    Two letters (country), three alphanumerics (registrant), two digits
    (year), five digits (designation). Case-insensitive, separators ignored.
    """
    return _ISRC_PATTERN.fullmatch(normalize_isrc(code)) is not None


def normalize_isrc(code: str) -> str:
    """Strip separators and uppercase."""
    return _strip_separators(code).upper()


def normalize_string(text: str) -> str:
    """
    Normalize free text into a comparison key.

    Lowercases, decomposes and drops combining marks, removes everything
    that is not a letter, digit or whitespace, then collapses whitespace.
    Non-Latin letters are kept so distinct non-Latin strings do not collapse
    into the same empty key.
    """
    s = unicodedata.normalize("NFD", text.lower())
    s = "".join(c for c in s if unicodedata.category(c) != "Mn")
    s = "".join(c for c in s if c.isalnum() or c.isspace())
    return " ".join(s.split())


## Tests


def test_gtin_check_digit_upc():
    assert gtin_check_digit("60244579092") == 0
    assert gtin_check_digit("400638133393") == 1


def test_is_valid_gtin_lengths():
    assert is_valid_gtin("96385074")  # GTIN-8
    assert is_valid_gtin("602445790920")  # UPC-A
    assert is_valid_gtin("4006381333931")  # EAN-13
    assert is_valid_gtin("00602445790920")  # GTIN-14
    assert not is_valid_gtin("4006381333932")
    assert not is_valid_gtin("123456789")
    assert not is_valid_gtin("60244579092a")
    assert not is_valid_gtin("")


def test_normalize_gtin():
    assert normalize_gtin("602-445-790920") == "00602445790920"
    assert normalize_gtin("4006381 333931") == "04006381333931"


def test_gtin_variants():
    assert gtin_variants("00602445790920") == ["00602445790920", "0602445790920", "602445790920"]
    assert gtin_variants("04006381333931") == ["04006381333931", "4006381333931"]
    assert gtin_variants("00000096385074") == [
        "00000096385074",
        "0000096385074",
        "000096385074",
        "96385074",
    ]


def test_canonical_gtin():
    assert canonical_gtin("602445790920") == "00602445790920"
    assert canonical_gtin("not-a-barcode") == "not-a-barcode"
    assert canonical_gtin("") is None
    assert canonical_gtin(None) is None


def test_isrc():
    assert is_valid_isrc("US-RC1-76-07839")
    assert is_valid_isrc("usrc17607839")
    assert not is_valid_isrc("USRC1760783")
    assert not is_valid_isrc("12RC17607839")
    assert normalize_isrc("us-rc1-76-07839") == "USRC17607839"


def test_normalize_string():
    assert normalize_string("Björk, Café!") == "bjork cafe"
    assert normalize_string("  Sigur   Rós ") == "sigur ros"
    assert normalize_string("AC/DC") == "acdc"
