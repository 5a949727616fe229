"""Unit tests for pickup code generation and comparison."""

import pytest

from amana_kernel.utils.otp import codes_match, generate_numeric_code


@pytest.mark.parametrize("length", [4, 6])
def test_code_has_requested_length_and_no_leading_zero(length):
    for _ in range(200):
        code = generate_numeric_code(length)
        assert len(code) == length
        assert code.isdigit()
        assert code[0] != "0"


def test_zero_length_rejected():
    with pytest.raises(ValueError):
        generate_numeric_code(0)


class TestCodesMatch:

    def test_exact_match(self):
        assert codes_match("482913", "482913")

    def test_surrounding_whitespace_ignored(self):
        assert codes_match("4829", " 4829\n")

    def test_mismatch(self):
        assert not codes_match("4829", "4828")

    def test_no_stored_code_never_matches(self):
        assert not codes_match(None, "")
        assert not codes_match("", "")

    def test_missing_supplied_code(self):
        assert not codes_match("4829", None)
