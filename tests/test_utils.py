"""
tests/test_utils.py

Cell parsing helpers, header normalization, header-row detection and
the error types.
"""

from __future__ import annotations

import pandas as pd
import pytest

from courier_stats.errors import EmptySheetError, PartialMergeFailure, StoreUnavailableError
from courier_stats.header_detect import detect_header_row
from courier_stats.utils import as_count, is_blank, norm_header, try_parse_date


class TestAsCount:
    @pytest.mark.parametrize("raw, expected", [
        (12, 12),
        (3.9, 3),
        ("12 pcs", 12),
        ("  7", 7),
        ("-3", 0),
        (-4, 0),
        ("abc", 0),
        (None, 0),
        (float("nan"), 0),
        (True, 0),
    ])
    def test_values(self, raw, expected) -> None:
        assert as_count(raw) == expected


class TestNormHeader:
    @pytest.mark.parametrize("raw", ["daName", "DA Name", "da_name", "DA-NAME", "  da   name "])
    def test_variants(self, raw) -> None:
        assert norm_header(raw) == "da name"

    def test_blank(self) -> None:
        assert norm_header(None) == ""


class TestTryParseDate:
    @pytest.mark.parametrize("raw", ["2024-03-05", "2024/03/05", "05.03.2024", pd.Timestamp("2024-03-05 10:30")])
    def test_formats(self, raw) -> None:
        assert try_parse_date(raw) == "2024-03-05"

    @pytest.mark.parametrize("raw", [None, "", "someday"])
    def test_invalid(self, raw) -> None:
        assert try_parse_date(raw) is None


def test_is_blank() -> None:
    assert is_blank(None) and is_blank(" ") and is_blank(float("nan")) and is_blank("nan")
    assert not is_blank(0)


class TestDetectHeaderRow:
    def test_skips_banner_rows(self) -> None:
        df = pd.DataFrame([
            ["Station performance", None, None],
            [None, None, None],
            ["DA Name", "Status", "Tracking ID"],
            ["ali", "DELIVERED", "T1"],
        ])
        assert detect_header_row(df) == 2

    def test_falls_back_to_first_non_empty_row(self) -> None:
        df = pd.DataFrame([[None, None], ["foo", "bar"], ["1", "2"]])
        assert detect_header_row(df) == 1


class TestErrors:
    def test_hierarchy(self) -> None:
        assert issubclass(EmptySheetError, ValueError)
        assert issubclass(PartialMergeFailure, StoreUnavailableError)
        assert issubclass(StoreUnavailableError, RuntimeError)

    def test_partial_failure_report(self) -> None:
        err = PartialMergeFailure(
            "stopped",
            stage="rewriting_history",
            rewritten_dates=["2024-01-02", "2024-01-01"],
            unaffected_dates=["2024-01-03"],
            cause=RuntimeError("reset"),
        )
        d = err.to_dict()
        assert d["rewritten_dates"] == ["2024-01-01", "2024-01-02"]
        assert d["unaffected_dates"] == ["2024-01-03"]
        assert d["stage"] == "rewriting_history"
        assert err.operation == "rewriting_history"
        assert "reset" in d["cause"]
