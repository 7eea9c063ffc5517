"""Tests for display formatting."""

import pytest

from report_formatting import (
    PLACEHOLDER,
    fmt_dollar_clean,
    fmt_metric,
    fmt_pct_clean,
    money0,
    pct0,
    signed_money0,
    signed_pct0,
)


class TestFormatting:

    @pytest.mark.parametrize("value, expected", [
        (0.1234, "12.34%"),
        (None, PLACEHOLDER),
        (float("nan"), PLACEHOLDER),
        ("abc", PLACEHOLDER),
    ])
    def test_pct(self, value, expected):
        assert fmt_pct_clean(value) == expected

    def test_dollar(self):
        assert fmt_dollar_clean(1234.5) == "$1,234.50"
        assert fmt_dollar_clean(-12) == "-$12.00"
        assert fmt_dollar_clean(None) == PLACEHOLDER

    def test_whole_number_variants(self):
        assert pct0(0.125) == "13%"
        assert signed_pct0(0.05) == "+5%"
        assert signed_pct0(-0.05) == "-5%"
        assert money0(-1500.4) == "-$1,500"
        assert signed_money0(0) == "$0"

    def test_metric_none_is_not_zero(self):
        assert fmt_metric(None, empty="needs more history") == "needs more history"
        assert fmt_metric(0.0) == "0.00%"
        assert fmt_metric(1.234, kind="ratio") == "1.23"
