# -*- coding: utf-8 -*-
"""Chat — API endpoints (widget parsing)."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from ..auth.security import get_current_user
from .models import WidgetParseRequest, WidgetParseResponse
from .widgets import export_text, extract, render

router = APIRouter(prefix="/api/chat", tags=["Chat"])


@router.post("/widgets/parse", response_model=WidgetParseResponse, summary="Split a reply into prose and widget")
def parse_widget(request: WidgetParseRequest, user: dict = Depends(get_current_user)):  # noqa: ARG001
    parsed = extract(request.content)
    view = render(parsed.widget_data)
    return WidgetParseResponse(
        text=parsed.text,
        widget=parsed.widget_data,
        view=view,
        export_text=export_text(view) if view is not None else None,
    )
