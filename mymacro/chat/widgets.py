# -*- coding: utf-8 -*-
"""Chat — widget blocks trailing assistant messages.

An assistant reply may end with a JSON object such as

    Here is your day {"widget": "PROGRESS_BAR", "label": "Water", "current": 3, "target": 8, "unit": "cups"}

`extract` splits the prose from that block; `render` turns a block into a
view model for the client; `export_text` builds the share text for a view.
All three are pure and never raise on model output.
"""

from __future__ import annotations

import csv
import io
import json
import logging
from typing import Any, Callable, Dict, Optional, Tuple

from pydantic import ValidationError

from .models import DataTableView, MacroPieView, ParsedMessage, ProgressBarView, WidgetKind, WidgetView

logger = logging.getLogger(__name__)

WIDGET_KINDS = frozenset(k.value for k in WidgetKind)
EXPORT_FOOTER = "Exported from MyMacro AI"

_FENCE = "```"


def _reject_constant(name: str) -> Any:
    raise ValueError(f"{name} is not valid JSON")


_decoder = json.JSONDecoder(parse_constant=_reject_constant)


def _is_widget_tag(tag: Any) -> bool:
    return isinstance(tag, str) and tag in WIDGET_KINDS


def _strip_closing_fence(text: str) -> str:
    body = text.rstrip()
    if body.endswith(_FENCE):
        body = body[: -len(_FENCE)].rstrip()
    return body


def _strip_opening_fence(prose: str) -> str:
    stripped = prose.rstrip()
    lowered = stripped.lower()
    for opener in ("```json", _FENCE):
        if lowered.endswith(opener):
            return stripped[: -len(opener)]
    return prose


def _trailing_object(content: str) -> Optional[Tuple[int, Any]]:
    """Locate the top-level JSON object that ends the message.

    Tries each `{` from the left and keeps the first one whose JSON value
    runs exactly to the end of the message, so nested objects and braces
    inside string literals are handled by the JSON scanner itself.
    """
    body = _strip_closing_fence(content)
    if not body.endswith("}"):
        return None
    start = body.find("{")
    while start != -1:
        try:
            value, end = _decoder.raw_decode(body, start)
        except (ValueError, RecursionError):
            value, end = None, -1
        if end == len(body):
            return start, value
        start = body.find("{", start + 1)
    return None


def extract(content: str) -> ParsedMessage:
    """Split `content` into prose and a trailing widget block.

    Anything that is not a well-formed object with a known `widget` tag
    leaves the message untouched.
    """
    found = _trailing_object(content or "")
    if found is None:
        return ParsedMessage(text=content, widget_data=None)

    start, value = found
    if not isinstance(value, dict) or not _is_widget_tag(value.get("widget")):
        return ParsedMessage(text=content, widget_data=None)

    text = _strip_opening_fence(content[:start]).strip()
    return ParsedMessage(text=text, widget_data=value)


def _render_macro_pie(block: Dict[str, Any]) -> Optional[WidgetView]:
    data = block.get("data")
    if not data:
        return None
    p, c, f = float(data["p"]), float(data["c"]), float(data["f"])
    protein_kcal, carbs_kcal, fat_kcal = p * 4, c * 4, f * 9
    total = protein_kcal + carbs_kcal + fat_kcal

    def pct(part: float) -> float:
        return round(part / total * 100, 1) if total > 0 else 0.0

    return MacroPieView(
        protein_g=p,
        carbs_g=c,
        fat_g=f,
        total_kcal=round(total, 1),
        protein_pct=pct(protein_kcal),
        carbs_pct=pct(carbs_kcal),
        fat_pct=pct(fat_kcal),
    )


def _render_progress_bar(block: Dict[str, Any]) -> Optional[WidgetView]:
    label = block.get("label")
    current = block.get("current")
    target = block.get("target")
    if not label or current is None or target is None:
        return None
    current, target = float(current), float(target)
    if target > 0:
        percentage = min(max(current / target * 100, 0.0), 100.0)
    else:
        percentage = 100.0 if current > 0 else 0.0
    return ProgressBarView(
        label=str(label),
        current=current,
        target=target,
        unit=str(block.get("unit") or ""),
        percentage=round(percentage, 1),
        is_complete=percentage >= 100,
    )


def _render_data_table(block: Dict[str, Any]) -> Optional[WidgetView]:
    title = block.get("title")
    headers = block.get("headers")
    rows = block.get("rows")
    if not title or not headers or not rows:
        return None
    return DataTableView(
        title=str(title),
        headers=[str(h) for h in headers],
        rows=[[str(cell) for cell in row] for row in rows],
    )


_RENDERERS: Dict[str, Callable[[Dict[str, Any]], Optional[WidgetView]]] = {
    WidgetKind.MACRO_PIE.value: _render_macro_pie,
    WidgetKind.PROGRESS_BAR.value: _render_progress_bar,
    WidgetKind.DATA_TABLE.value: _render_data_table,
}


def render(widget_data: Optional[Dict[str, Any]]) -> Optional[WidgetView]:
    """Map a widget block to its view, or None when required fields are missing."""
    if not isinstance(widget_data, dict):
        return None
    tag = widget_data.get("widget")
    renderer = _RENDERERS.get(tag) if _is_widget_tag(tag) else None
    if renderer is None:
        return None
    try:
        return renderer(widget_data)
    except (KeyError, TypeError, ValueError, ValidationError) as exc:
        logger.debug("Widget %s not renderable: %s", widget_data.get("widget"), exc)
        return None


def _num(value: float) -> str:
    return f"{value:g}"


def export_text(view: WidgetView) -> str:
    """Plain-text share payload for a rendered widget."""
    if isinstance(view, MacroPieView):
        body = (
            "Macro Breakdown\n\n"
            f"Protein: {_num(view.protein_g)}g ({round(view.protein_pct)}%)\n"
            f"Carbs: {_num(view.carbs_g)}g ({round(view.carbs_pct)}%)\n"
            f"Fat: {_num(view.fat_g)}g ({round(view.fat_pct)}%)\n\n"
            f"Total: {_num(view.total_kcal)} kcal"
        )
    elif isinstance(view, ProgressBarView):
        body = (
            f"{view.label}\n\n"
            f"Progress: {_num(view.current)}{view.unit} / {_num(view.target)}{view.unit} "
            f"({round(view.percentage)}%)"
        )
    elif isinstance(view, DataTableView):
        buf = io.StringIO()
        writer = csv.writer(buf, lineterminator="\n")
        writer.writerow(view.headers)
        writer.writerows(view.rows)
        body = f"{view.title}\n\n{buf.getvalue().rstrip()}"
    else:
        return "Data from MyMacro AI"
    return f"{body}\n\n{EXPORT_FOOTER}"
