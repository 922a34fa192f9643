"""
tests/test_aggregate.py

Folding sheet rows into per-agent summaries and grand totals for every
layout, shard merging and ordering.
"""

from __future__ import annotations

import pytest

from courier_stats.aggregate import (
    DeliverySummary,
    PickupResult,
    is_total_marker,
    merge_delivery_shards,
    merge_pickup_shards,
    process_sheet,
    sort_by_rate,
)
from courier_stats.errors import EmptySheetError
from courier_stats.schema import PER_SHIPMENT_ROWS, SUMMARY_ROWS


# ---------------------------------------------------------------------------
# Delivery, per-shipment rows
# ---------------------------------------------------------------------------


class TestDeliveryShipments:
    def test_single_delivered_row(self) -> None:
        result = process_sheet([{"daName": "ali ahmed", "status": "DELIVERED"}])
        assert result.layout == PER_SHIPMENT_ROWS
        (s,) = result.summaries
        assert s.name == "ALI AHMED"
        assert (s.delivered, s.total, s.success_rate) == (1, 1, 100.0)
        assert s.badges == set()

    def test_counts_and_hub_filter(self, shipment_records) -> None:
        result = process_sheet(shipment_records)
        by_name = result.by_name()
        ali, omar = by_name["ALI AHMED"], by_name["OMAR"]
        assert (ali.delivered, ali.ofd, ali.total) == (1, 1, 2)
        assert ali.success_rate == 50.0
        # DXB1 row skipped, unknown status not counted
        assert (omar.delivered, omar.rto, omar.failed, omar.total) == (0, 1, 1, 2)

    def test_trackings(self, shipment_records) -> None:
        ali = process_sheet(shipment_records).by_name()["ALI AHMED"]
        assert ali.pending_trackings == ["T2"]
        assert ali.all_trackings == [{"id": "T1", "status": "delivered"}, {"id": "T2", "status": "ofd"}]

    def test_unknown_status_reported(self, shipment_records) -> None:
        issues = process_sheet(shipment_records).issues
        assert [i["code"] for i in issues] == ["unclassified_status"]
        assert issues[0]["statuses"] == {"LOST_IN_SPACE": 1}

    def test_empty_hub_token_disables_filter(self, shipment_records) -> None:
        omar = process_sheet(shipment_records, hub_token="").by_name()["OMAR"]
        assert omar.delivered == 1

    def test_aliases_applied(self, shipment_records) -> None:
        result = process_sheet(shipment_records, aliases={"OMAR": "OMAR FAROUK"})
        assert set(result.by_name()) == {"ALI AHMED", "OMAR FAROUK"}

    def test_missing_tracking_still_counts(self) -> None:
        result = process_sheet([{"Driver": "x", "Status": "RTO"}])
        s = result.summaries[0]
        assert s.rto == 1
        assert s.pending_trackings == [] and s.all_trackings == []

    def test_sorted_by_rate(self, shipment_records) -> None:
        names = [s.name for s in process_sheet(shipment_records).summaries]
        assert names == ["ALI AHMED", "OMAR"]

    def test_unrecognized_layout_skips_rows(self) -> None:
        result = process_sheet([{"Tracking": "T1", "Status": "DELIVERED"}])
        assert result.summaries == []
        assert result.grand_total.total == 0
        assert result.issues[0]["code"] == "unrecognized_layout"
        assert result.issues[0]["missing"] == ["agent"]

    def test_empty_sheet_raises(self) -> None:
        with pytest.raises(EmptySheetError):
            process_sheet([{"a": None}])


# ---------------------------------------------------------------------------
# Delivery, summary rows
# ---------------------------------------------------------------------------


class TestDeliverySummaryRows:
    def test_rows_added_directly(self, summary_records) -> None:
        result = process_sheet(summary_records)
        assert result.layout == SUMMARY_ROWS
        by_name = result.by_name()
        assert set(by_name) == {"ALI AHMED", "OMAR"}
        ali = by_name["ALI AHMED"]
        assert (ali.delivered, ali.failed, ali.ofd, ali.rto, ali.total) == (40, 2, 1, 0, 43)
        assert ali.badges == {"guardian"}

    def test_bad_numbers_are_zero(self, summary_records) -> None:
        omar = process_sheet(summary_records).by_name()["OMAR"]
        assert (omar.delivered, omar.failed, omar.ofd, omar.rto) == (12, 0, 0, 3)
        assert omar.success_rate == pytest.approx(80.0)

    def test_grand_total_is_sum_of_agents(self, summary_records) -> None:
        result = process_sheet(summary_records)
        gt = result.grand_total
        assert (gt.delivered, gt.failed, gt.ofd, gt.rto, gt.total) == (52, 2, 1, 3, 58)
        assert gt.total == sum(s.total for s in result.summaries)
        assert gt.success_rate == pytest.approx(52 / 58 * 100)

    def test_hub_total_row_not_counted(self) -> None:
        rows = [{"DA Name": "Ali", "Delivered": 10}, {"DA Name": "DQN3 Total", "Delivered": 10}]
        result = process_sheet(rows)
        assert [s.name for s in result.summaries] == ["ALI"]
        assert result.grand_total.total == 10

    def test_same_agent_on_several_rows(self) -> None:
        rows = [{"DA Name": "a", "Delivered": 3}, {"DA Name": " A ", "Delivered": 4}]
        (s,) = process_sheet(rows).summaries
        assert s.delivered == 7


@pytest.mark.parametrize("name, expected", [
    ("Total", True),
    ("sub total", True),
    ("SUBTOTAL", True),
    ("Grand Total DQN3", True),
    ("DQN3 Total", True),
    ("Station Total", True),
    ("Ali Total", True),
    ("Totally Ali", False),
    ("Totti", False),
])
def test_total_markers(name, expected) -> None:
    assert is_total_marker(name) is expected


# ---------------------------------------------------------------------------
# Pickup
# ---------------------------------------------------------------------------


class TestPickup:
    def test_pickup_failed_goes_to_cancel_reasons(self) -> None:
        result = process_sheet([{"agent": "Sara", "state": "PICKUP FAILED", "reason": ""}], domain="pickup")
        assert isinstance(result, PickupResult)
        (s,) = result.summaries
        assert s.name == "SARA"
        assert (s.cancelled, s.total, s.rate_denominator, s.success_rate) == (1, 1, 0, 0.0)
        assert result.reasons_breakdown == {}
        assert result.cancel_reason_breakdown == {"No cancel reason": 1}

    def test_detected_from_headers(self, pickup_records) -> None:
        result = process_sheet(pickup_records)
        assert isinstance(result, PickupResult)
        sara, nour = result.by_name()["SARA"], result.by_name()["NOUR"]
        assert (sara.picked, sara.cancelled, sara.rvp, sara.total) == (1, 1, 1, 3)
        assert sara.success_rate == 50.0
        assert (nour.web, nour.failed, nour.ofd, nour.cancelled, nour.total) == (1, 1, 1, 1, 4)
        assert nour.success_rate == 0.0

    def test_breakdowns(self, pickup_records) -> None:
        result = process_sheet(pickup_records)
        assert result.reasons_breakdown == {"OTP mismatch": 1, "Phone switched off": 1, "No answer": 1}
        assert result.cancel_reason_breakdown == {"No cancel reason": 1, "Customer refused": 1}

    def test_grand_total_excludes_cancelled_from_rate(self, pickup_records) -> None:
        gt = process_sheet(pickup_records).grand_total
        assert gt.total == 7
        assert gt.cancelled == 2
        assert gt.success_rate == pytest.approx(20.0)

    def test_trackings_with_category(self, pickup_records) -> None:
        sara = process_sheet(pickup_records).by_name()["SARA"]
        assert [t["status"] for t in sara.trackings] == ["cancelled", "picked", "rvp"]


# ---------------------------------------------------------------------------
# Shards and ordering
# ---------------------------------------------------------------------------


class TestShards:
    def test_delivery_shards_match_single_pass(self, shipment_records) -> None:
        whole = process_sheet(shipment_records).by_name()
        a = process_sheet(shipment_records[:2]).by_name()
        b = process_sheet(shipment_records[2:]).by_name()
        for parts in ([a, b], [b, a]):
            merged = merge_delivery_shards(parts)
            for name, s in whole.items():
                assert merged[name].total == s.total
                assert merged[name].delivered == s.delivered
                assert merged[name].success_rate == s.success_rate

    def test_shard_merge_leaves_inputs_untouched(self, shipment_records) -> None:
        a = process_sheet(shipment_records[:2]).by_name()
        merge_delivery_shards([a, a])
        assert a["ALI AHMED"].total == 2

    def test_pickup_shards(self, pickup_records) -> None:
        a = process_sheet(pickup_records[:3]).by_name()
        b = process_sheet(pickup_records[3:]).by_name()
        merged = merge_pickup_shards([a, b])
        assert merged["SARA"].total == 3
        assert merged["NOUR"].total == 4


def test_sort_by_rate_is_stable() -> None:
    a = DeliverySummary(name="A", delivered=1, failed=1).finalize()
    b = DeliverySummary(name="B", delivered=2, failed=2).finalize()
    c = DeliverySummary(name="C", delivered=1).finalize()
    assert [s.name for s in sort_by_rate([a, b, c])] == ["C", "A", "B"]
