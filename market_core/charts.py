from __future__ import annotations

from typing import Any, Dict, List, Optional

import altair as alt
import pandas as pd

from market_core.aggregate import ChartSpec

alt.data_transformers.disable_max_rows()


def to_vega_spec(chart: alt.TopLevelMixin) -> Dict[str, Any]:
    """Convert an Altair chart into a Vega-Lite spec dict (JSON-serializable)."""
    return chart.to_dict()


def _axis_type(field: str) -> str:
    return "O" if field == "year" else "N"


def _truncate_expr(max_len: int) -> str:
    return f"length(datum.label) > {max_len} ? substring(datum.label, 0, {max(0, max_len - 3)}) + '...' : datum.label"


def bar_chart(
    rows: List[Dict[str, Any]],
    x: str,
    y: str = "value",
    title: str = "",
    label_max: Optional[int] = None,
) -> alt.Chart:
    df = pd.DataFrame(rows)
    sort = None if x == "year" else "-y"
    # Truncated labels can collide; keep the full text as the band key.
    if label_max is not None and "full_label" in df.columns:
        x_enc = alt.X(
            "full_label:N",
            title=x.replace("_", " ").title(),
            sort=sort,
            axis=alt.Axis(labelAngle=-30, labelExpr=_truncate_expr(label_max)),
        )
        tooltip = [alt.Tooltip("full_label:N", title=x), alt.Tooltip(f"{y}:Q", format=",.2f")]
    else:
        x_enc = alt.X(f"{x}:{_axis_type(x)}", sort=sort, axis=alt.Axis(labelAngle=-30))
        tooltip = [x, alt.Tooltip(f"{y}:Q", format=",.2f")]
    return (
        alt.Chart(df, title=title)
        .mark_bar()
        .encode(
            x=x_enc,
            y=alt.Y(f"{y}:Q", axis=alt.Axis(format="~s", gridDash=[4, 4], domain=False, ticks=False)),
            tooltip=tooltip,
        )
        .properties(height=260)
    )


def line_chart(rows: List[Dict[str, Any]], x: str, ys: List[str], title: str = "") -> alt.Chart:
    df = pd.DataFrame(rows)
    x_axis = alt.Axis(format="d", grid=False) if x == "year" else alt.Axis(grid=False)
    y_axis = alt.Axis(format="~s", gridDash=[4, 4], domain=False, ticks=False)
    if len(ys) == 1:
        return (
            alt.Chart(df, title=title)
            .mark_line(point={"filled": True, "size": 60})
            .encode(
                x=alt.X(f"{x}:O", axis=x_axis),
                y=alt.Y(f"{ys[0]}:Q", axis=y_axis),
                tooltip=[x, alt.Tooltip(f"{ys[0]}:Q", format=",.2f")],
            )
            .properties(height=260)
        )

    hover = alt.selection_point(fields=["series"], on="mouseover")
    return (
        alt.Chart(df, title=title)
        .transform_fold(ys, as_=["series", "value"])
        .mark_line(point={"filled": True, "size": 60})
        .encode(
            x=alt.X(f"{x}:O", axis=x_axis),
            y=alt.Y("value:Q", axis=y_axis),
            color=alt.Color("series:N", title="Series"),
            opacity=alt.condition(hover, alt.value(1), alt.value(0.2)),
            tooltip=[x, "series:N", alt.Tooltip("value:Q", format=",.2f")],
        )
        .add_params(hover)
        .properties(height=260)
    )


def pie_chart(rows: List[Dict[str, Any]], category: str, title: str = "") -> alt.Chart:
    df = pd.DataFrame(rows)
    return (
        alt.Chart(df, title=title)
        .mark_arc(innerRadius=40)
        .encode(
            theta=alt.Theta("value:Q"),
            color=alt.Color(f"{category}:N", sort=alt.SortField("value", order="descending")),
            tooltip=[category, alt.Tooltip("value:Q", format=",.2f"), alt.Tooltip("percent:Q", format=".1f")],
        )
    )


def scatter_chart(rows: List[Dict[str, Any]], x: str, y: str, color: Optional[str] = None, title: str = "") -> alt.Chart:
    df = pd.DataFrame(rows)
    encoding: Dict[str, Any] = {
        "x": alt.X(f"{x}:Q", axis=alt.Axis(format="~s")),
        "y": alt.Y(f"{y}:Q"),
        "tooltip": [c for c in (color, x, y) if c],
    }
    if color:
        encoding["color"] = alt.Color(f"{color}:N")
    return alt.Chart(df, title=title).mark_circle(size=60).encode(**encoding)


def stacked_chart(pivot: Dict[str, Any], period: str = "year", title: str = "") -> alt.Chart:
    """Stacked bars from a pivot payload ({"rows", "segments"})."""
    df = pd.DataFrame(pivot.get("rows", []))
    segments = [str(s) for s in pivot.get("segments", [])]
    if not df.empty:
        df.columns = [str(c) for c in df.columns]
    return (
        alt.Chart(df, title=title)
        .transform_fold(segments, as_=["segment", "value"])
        .mark_bar()
        .encode(
            x=alt.X(f"{period}:O", title=period.replace("_", " ").title()),
            y=alt.Y("value:Q", stack="zero", axis=alt.Axis(format="~s")),
            color=alt.Color("segment:N", title="Segment"),
            tooltip=[period, "segment:N", alt.Tooltip("value:Q", format=",.2f")],
        )
        .properties(height=260)
    )


def grouped_chart(rows: List[Dict[str, Any]], outer: str, inner: str, title: str = "") -> alt.Chart:
    df = pd.DataFrame(rows)
    return (
        alt.Chart(df, title=title)
        .mark_bar()
        .encode(
            x=alt.X(f"{outer}:N"),
            xOffset=alt.XOffset(f"{inner}:N"),
            y=alt.Y("value:Q", axis=alt.Axis(format="~s")),
            color=alt.Color(f"{inner}:N"),
            tooltip=[outer, inner, alt.Tooltip("value:Q", format=",.2f")],
        )
        .properties(height=260)
    )


def region_share_chart(rows: List[Dict[str, Any]], title: str = "") -> alt.Chart:
    df = pd.DataFrame(rows)
    return (
        alt.Chart(df, title=title)
        .mark_bar()
        .encode(
            x=alt.X("year_region:N", title="Year - Region"),
            y=alt.Y("value:Q", stack="zero"),
            color=alt.Color("country:N"),
            tooltip=["year", "region", "country", alt.Tooltip("value:Q", format=",.1f")],
        )
        .properties(height=260)
    )


def chart_for(chart: ChartSpec, data: Any) -> Optional[Dict[str, Any]]:
    """Vega-Lite spec for an already-shaped series; None when there is nothing to draw."""
    if not data or (isinstance(data, dict) and not data.get("rows")):
        return None
    title = chart.title or chart.name.replace("_", " ").title()
    if chart.kind == "bar":
        return to_vega_spec(bar_chart(data, chart.group_by, chart.value_name, title, label_max=chart.label_max))
    if chart.kind == "line":
        ys = [name for name, _ in chart.measures] or [chart.value_name]
        return to_vega_spec(line_chart(data, chart.group_by, ys, title))
    if chart.kind == "pie":
        return to_vega_spec(pie_chart(data, chart.group_by, title))
    if chart.kind == "scatter":
        names = [name for name, _ in chart.fields]
        color = names[2] if len(names) > 2 else None
        return to_vega_spec(scatter_chart(data, names[0], names[1], color, title))
    if chart.kind == "stacked":
        return to_vega_spec(stacked_chart(data, chart.group_by or "year", title))
    if chart.kind == "grouped":
        return to_vega_spec(grouped_chart(data, chart.group_by, chart.segment_by or "", title))
    if chart.kind == "region_share":
        return to_vega_spec(region_share_chart(data, title))
    raise ValueError(f"Unknown chart kind: {chart.kind!r}")
