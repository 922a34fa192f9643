"""
tests/test_narrative.py

Prompt construction and the failure-tolerant narrative call.
"""

from __future__ import annotations

import logging

import pytest

from courier_stats.aggregate import process_sheet
from courier_stats.narrative import build_performance_prompt, generate_narrative


@pytest.fixture()
def result(shipment_records):
    return process_sheet(shipment_records)


class TestPrompt:
    def test_contains_station_numbers(self, result) -> None:
        prompt = build_performance_prompt(result)
        assert "Station Total Volume: 4" in prompt
        assert "Station Success Rate: 25.0%" in prompt
        assert "Failed/RTO: 2" in prompt
        assert "in Arabic" in prompt

    def test_top_and_low_performers(self, result) -> None:
        prompt = build_performance_prompt(result, language="English")
        assert "Top Performers: ALI AHMED (50.0%), OMAR (0.0%)" in prompt
        # nobody has more than five shipments
        assert "Low Performers (Need Attention): -" in prompt
        assert "in English" in prompt


class TestGenerateNarrative:
    def test_callable_generator(self, result) -> None:
        seen = []

        def gen(prompt: str) -> str:
            seen.append(prompt)
            return "  Good day overall.  "

        assert generate_narrative(result, gen) == "Good day overall."
        assert len(seen) == 1

    def test_object_with_generate(self, result) -> None:
        class Client:
            def generate(self, prompt: str) -> str:
                return "ok"

        assert generate_narrative(result, Client()) == "ok"

    def test_failure_returns_none(self, result, caplog) -> None:
        def boom(prompt: str) -> str:
            raise ConnectionError("quota exceeded")

        with caplog.at_level(logging.WARNING, logger="courier_stats.narrative"):
            assert generate_narrative(result, boom) is None
        assert "quota exceeded" in caplog.text

    def test_empty_text_is_none(self, result) -> None:
        assert generate_narrative(result, lambda p: "   ") is None
