"""
Write a session report to disk: report.json, report.html and a fatigue curve plot.
"""
from __future__ import annotations

import html
import json
import logging
import os
from typing import Any, Optional

logger = logging.getLogger(__name__)

GROUP_TITLES = {
    "corePositionalMetrics": "Positional control",
    "guardMetrics": "Guard",
    "transitionMetrics": "Transitions",
    "submissionMetrics": "Submissions",
    "scrambleMetrics": "Scrambles",
    "effortEnduranceMetrics": "Effort & endurance",
    "consistencyTrends": "Consistency & trends",
    "summary": "Summary",
}


def _fmt(val: Any) -> str:
    if val is None:
        return "--"
    if isinstance(val, bool):
        return "yes" if val else "no"
    if isinstance(val, float):
        return f"{val:.2f}"
    if isinstance(val, (list, tuple)):
        return ", ".join(_fmt(v) for v in val) if val else "--"
    return html.escape(str(val))


def _rows(prefix: str, node: Any) -> list[tuple[str, str]]:
    if isinstance(node, dict):
        if not node:
            return [(prefix, "--")]
        out: list[tuple[str, str]] = []
        for key, val in node.items():
            out.extend(_rows(f"{prefix}.{key}" if prefix else key, val))
        return out
    return [(prefix, _fmt(node))]


def report_html(report: dict[str, Any], source: str, record: Optional[dict[str, Any]] = None) -> str:
    lines = [
        "<!DOCTYPE html>",
        "<html><head><meta charset='utf-8'><title>Session Report</title></head><body>",
        "<h1>Session Report</h1>",
        f"<p><b>Source:</b> {html.escape(source)}</p>",
    ]
    if record:
        flags = record.get("qualityFlags") or {}
        lines.append(
            f"<p><b>Duration:</b> {_fmt(record.get('durationSec'))} s | "
            f"<b>Frames:</b> {record.get('frameCount', 0)} | "
            f"<b>Detection rate:</b> {_fmt(record.get('detectionRate'))} | "
            f"<b>Reps:</b> {record.get('totalReps', 0)}</p>"
        )
        notes = []
        if flags.get("short"):
            notes.append("Session is short; scores may not be representative.")
        if flags.get("lowQuality"):
            notes.append("Pose was detected on few frames; check camera placement.")
        if notes:
            lines.append("<p><b>Note:</b> " + " ".join(notes) + "</p>")
        if record.get("errors"):
            lines.append("<p><b>Partial report:</b> " + html.escape("; ".join(record["errors"])) + "</p>")

    lines.append("<p class='muted'>-- means not measured in this session (not a zero score).</p>")
    for group, title in GROUP_TITLES.items():
        lines.append(f"<h2>{title}</h2>")
        lines.append("<table border='1'><tr><th>Metric</th><th>Value</th></tr>")
        for label, val in _rows("", report.get(group)):
            lines.append(f"<tr><td>{html.escape(label)}</td><td>{val}</td></tr>")
        lines.append("</table>")
    if (report.get("effortEnduranceMetrics") or {}).get("fatigueCurve"):
        lines.append("<h2>Fatigue curve</h2><img src='fatigue_curve.png' alt='Fatigue curve' />")
    lines.append("</body></html>")
    return "\n".join(lines)


def plot_fatigue_curve(curve: list[float], path: str) -> bool:
    """Posture issues/min per segment. Returns False (and logs) if plotting fails."""
    try:
        import matplotlib
        matplotlib.use("Agg")
        import matplotlib.pyplot as plt

        plt.figure(figsize=(6, 4))
        plt.plot(range(1, len(curve) + 1), curve, "o-")
        plt.xlabel("Segment (30 s)")
        plt.ylabel("Posture issues / min")
        plt.title("Fatigue curve")
        plt.savefig(path, dpi=100)
        plt.close()
        return True
    except Exception as e:
        logger.warning("fatigue plot not written: %s", e)
        return False


def write_report(
    report: dict[str, Any],
    output_dir: str,
    source: str,
    record: Optional[dict[str, Any]] = None,
) -> str:
    """Write report.json (plus the record when given), report.html and the plot. Returns the html path."""
    os.makedirs(output_dir, exist_ok=True)
    json_path = os.path.join(output_dir, "report.json")
    with open(json_path, "w") as f:
        json.dump({"source": source, "report": report, "record": record}, f, indent=2)

    curve = (report.get("effortEnduranceMetrics") or {}).get("fatigueCurve")
    if curve:
        plot_fatigue_curve(curve, os.path.join(output_dir, "fatigue_curve.png"))

    html_path = os.path.join(output_dir, "report.html")
    with open(html_path, "w") as f:
        f.write(report_html(report, source, record))
    logger.info("report written: %s", html_path)
    return html_path
