# -*- coding: utf-8 -*-
"""Chat — widget models."""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field


class WidgetKind(str, Enum):
    MACRO_PIE = "MACRO_PIE"
    PROGRESS_BAR = "PROGRESS_BAR"
    DATA_TABLE = "DATA_TABLE"


class ParsedMessage(BaseModel):
    text: str
    widget_data: Optional[Dict[str, Any]] = None


class MacroPieView(BaseModel):
    widget: Literal["MACRO_PIE"] = "MACRO_PIE"
    protein_g: float = Field(..., ge=0)
    carbs_g: float = Field(..., ge=0)
    fat_g: float = Field(..., ge=0)
    total_kcal: float = Field(0.0, ge=0)
    protein_pct: float = Field(0.0, ge=0, le=100)
    carbs_pct: float = Field(0.0, ge=0, le=100)
    fat_pct: float = Field(0.0, ge=0, le=100)


class ProgressBarView(BaseModel):
    widget: Literal["PROGRESS_BAR"] = "PROGRESS_BAR"
    label: str
    current: float
    target: float
    unit: str = ""
    percentage: float = Field(0.0, ge=0, le=100)
    is_complete: bool = False


class DataTableView(BaseModel):
    widget: Literal["DATA_TABLE"] = "DATA_TABLE"
    title: str
    headers: List[str]
    rows: List[List[str]]


WidgetView = Union[MacroPieView, ProgressBarView, DataTableView]


class WidgetParseRequest(BaseModel):
    content: str = Field(..., max_length=20_000)


class WidgetParseResponse(BaseModel):
    text: str
    widget: Optional[Dict[str, Any]] = None
    view: Optional[WidgetView] = None
    export_text: Optional[str] = None
