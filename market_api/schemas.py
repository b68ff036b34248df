from __future__ import annotations

from typing import Dict, List, Literal, Union

from pydantic import BaseModel, Field


class PageFiltersModel(BaseModel):
    """Filter state posted by the dashboard; an empty list leaves a dimension unconstrained."""

    selections: Dict[str, List[Union[int, str]]] = Field(default_factory=dict)
    evaluation: Literal["By Value", "By Volume"] = "By Value"


class PageInfo(BaseModel):
    name: str
    dataset: str


class MetaPagesResponse(BaseModel):
    pages: List[PageInfo]
