from __future__ import annotations
import pandas as pd
from io import BytesIO
from typing import Any, Dict, List
from .aggregate import PickupResult
from .badges import ordered_badges

DELIVERY_COLUMNS = ["Agent", "Delivered", "Failed", "OFD", "RTO", "Total", "Success %", "Badges"]
PICKUP_COLUMNS = ["Agent", "Picked", "OFD", "Failed", "Cancelled", "RVP", "Web", "Total", "Success %"]


def summaries_to_frame(result) -> pd.DataFrame:
    # сводки агентов в порядке рейтинга
    rows: List[Dict[str, Any]] = []
    if isinstance(result, PickupResult):
        for s in result.summaries:
            rows.append({
                "Agent": s.name, "Picked": s.picked, "OFD": s.ofd, "Failed": s.failed,
                "Cancelled": s.cancelled, "RVP": s.rvp, "Web": s.web,
                "Total": s.total, "Success %": round(s.success_rate, 2),
            })
        return pd.DataFrame(rows, columns=PICKUP_COLUMNS)

    for s in result.summaries:
        rows.append({
            "Agent": s.name, "Delivered": s.delivered, "Failed": s.failed, "OFD": s.ofd, "RTO": s.rto,
            "Total": s.total, "Success %": round(s.success_rate, 2),
            "Badges": ", ".join(ordered_badges(s.badges)),
        })
    return pd.DataFrame(rows, columns=DELIVERY_COLUMNS)


def totals_to_frame(result) -> pd.DataFrame:
    d = result.grand_total.to_dict()
    d["success_rate"] = round(d["success_rate"], 2)
    return pd.DataFrame([{"Metric": k, "Value": v} for k, v in d.items()], columns=["Metric", "Value"])


def breakdown_to_frame(breakdown: Dict[str, int]) -> pd.DataFrame:
    df = pd.DataFrame(
        [{"Reason": k, "Count": v} for k, v in (breakdown or {}).items()],
        columns=["Reason", "Count"],
    )
    return df.sort_values("Count", ascending=False, kind="stable").reset_index(drop=True)


def issues_to_frame(issues: List[Dict[str, Any]]) -> pd.DataFrame:
    return pd.DataFrame(
        [{"Level": i.get("level", ""), "Code": i.get("code", ""), "Message": i.get("message", "")} for i in issues or []],
        columns=["Level", "Code", "Message"],
    )


def export_to_excel_bytes(result) -> bytes:
    """
    Отчёт в xlsx:
      delivery - Agents / Station Total / Trackings (по агентам, сворачиваемые группы) / Issues
      pickup   - Agents / Station Total / Reasons / Cancel Reasons / Issues
    """
    bio = BytesIO()
    agents_df = summaries_to_frame(result)
    totals_df = totals_to_frame(result)
    issues_df = issues_to_frame(result.issues)
    is_pickup = isinstance(result, PickupResult)

    with pd.ExcelWriter(bio, engine="xlsxwriter") as writer:
        agents_df.to_excel(writer, index=False, sheet_name="Agents")
        totals_df.to_excel(writer, index=False, sheet_name="Station Total")

        extra = []
        if is_pickup:
            reasons_df = breakdown_to_frame(result.reasons_breakdown)
            cancel_df = breakdown_to_frame(result.cancel_reason_breakdown)
            reasons_df.to_excel(writer, index=False, sheet_name="Reasons")
            cancel_df.to_excel(writer, index=False, sheet_name="Cancel Reasons")
            extra = [("Reasons", reasons_df), ("Cancel Reasons", cancel_df)]

        if not issues_df.empty:
            issues_df.to_excel(writer, index=False, sheet_name="Issues")

        wb = writer.book

        fmt_header = wb.add_format({"bold": True, "bg_color": "#F2F2F2", "border": 1, "valign": "vcenter"})
        fmt_text = wb.add_format({"border": 1, "valign": "top"})
        fmt_title = wb.add_format({"bold": True, "bg_color": "#E8F0FE", "border": 1, "valign": "vcenter"})
        fmt_pending = wb.add_format({"border": 1, "valign": "top", "bg_color": "#FEF7E0"})
        fmt_lvl_warn = wb.add_format({"border": 1, "valign": "top", "bg_color": "#FEF7E0"})
        fmt_lvl_info = wb.add_format({"border": 1, "valign": "top", "bg_color": "#E8F0FE"})

        def format_df_sheet(sheet_name: str, df: pd.DataFrame, default_width: int = 14, max_width: int = 40):
            ws = writer.sheets.get(sheet_name)
            if ws is None:
                return
            ws.freeze_panes(1, 0)
            ws.autofilter(0, 0, max(1, len(df)), max(0, len(df.columns) - 1))
            for col, name in enumerate(df.columns):
                ws.write(0, col, name, fmt_header)
                w = max(10, min(max_width, int(len(str(name)) * 1.2) + 6))
                ws.set_column(col, col, max(default_width, w))

        format_df_sheet("Agents", agents_df)
        ws_agents = writer.sheets["Agents"]
        ws_agents.set_column(0, 0, 28)
        if not is_pickup:
            ws_agents.set_column(len(DELIVERY_COLUMNS) - 1, len(DELIVERY_COLUMNS) - 1, 36)

        format_df_sheet("Station Total", totals_df, default_width=18)
        for name, df in extra:
            format_df_sheet(name, df, default_width=18, max_width=60)
            writer.sheets[name].set_column(0, 0, 48)

        if not is_pickup:
            # треки по агентам: строка-заголовок агента + свёрнутые строки треков
            ws3 = wb.add_worksheet("Trackings")
            writer.sheets["Trackings"] = ws3
            cols = ["Agent", "Tracking", "Status"]
            for c, n in enumerate(cols):
                ws3.write(0, c, n, fmt_header)
            ws3.freeze_panes(1, 0)
            ws3.set_column(0, 0, 28)
            ws3.set_column(1, 1, 26)
            ws3.set_column(2, 2, 14)

            r = 1
            for s in result.summaries:
                if not s.all_trackings:
                    continue
                title = f"{s.name} | {s.delivered}/{s.total} | {s.success_rate:.1f}% | pending: {len(s.pending_trackings)}"
                ws3.merge_range(r, 0, r, len(cols) - 1, title, fmt_title)
                ws3.set_row(r, None, None, {"level": 0, "collapsed": True})
                r += 1
                for t in s.all_trackings:
                    fmt = fmt_text if t.get("status") == "delivered" else fmt_pending
                    ws3.write(r, 0, "", fmt_text)
                    ws3.write(r, 1, t.get("id", ""), fmt)
                    ws3.write(r, 2, t.get("status", ""), fmt)
                    ws3.set_row(r, None, None, {"level": 1, "hidden": True})
                    r += 1
            ws3.autofilter(0, 0, max(1, r - 1), len(cols) - 1)

        if not issues_df.empty:
            format_df_sheet("Issues", issues_df, default_width=12, max_width=80)
            wsi = writer.sheets["Issues"]
            wsi.set_column(2, 2, 80)
            last_row = len(issues_df)
            wsi.conditional_format(1, 0, last_row, 0, {
                "type": "text",
                "criteria": "containing",
                "value": "warn",
                "format": fmt_lvl_warn
            })
            wsi.conditional_format(1, 0, last_row, 0, {
                "type": "text",
                "criteria": "containing",
                "value": "info",
                "format": fmt_lvl_info
            })

    return bio.getvalue()
