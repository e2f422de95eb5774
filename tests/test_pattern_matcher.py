import json

from src.pattern_matcher import scan_content


def test_scan_is_case_insensitive():
    matches, found = scan_content(b"This is SECRET", {"flag": ["secret"]})

    assert matches == {"flag": ["secret"]}
    assert found is True


def test_scan_without_groups_or_matches():
    assert scan_content(b"anything at all", {}) == ({}, False)
    assert scan_content(b"nothing here", {"flag": ["secret"]}) == ({}, False)


def test_scan_keeps_declared_order_and_skips_unmatched_groups():
    groups = {
        "money": ["IBAN", "swift", "account"],
        "flag": ["nope"],
        "people": ["Alice", "bob"],
    }
    content = b"Bob sent the account and iban details to alice"

    matches, found = scan_content(content, groups)

    assert found is True
    assert list(matches) == ["money", "people"]
    assert matches["money"] == ["IBAN", "account"]
    assert matches["people"] == ["Alice", "bob"]


def test_scan_is_literal_substring_not_regex_or_word():
    groups = {"regex": ["a.c"], "word": ["cat"]}

    matches, _ = scan_content(b"abc concatenate", groups)

    assert matches == {"word": ["cat"]}


def test_scan_tolerates_invalid_utf8():
    content = b"\xff\xfe binary \x00 prefix Confidential \x80"

    matches, found = scan_content(content, {"flag": ["confidential"]})

    assert matches == {"flag": ["confidential"]}
    assert found is True


def test_scan_is_deterministic():
    groups = {"b": ["two", "one"], "a": ["three"]}
    content = b"one two three"

    first = json.dumps(scan_content(content, groups))
    second = json.dumps(scan_content(content, groups))

    assert first == second
