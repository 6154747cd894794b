"""
Catalog file format for the local engine.

A catalog is a JSON document describing projects, their jobs and, for each
job, its stages, links and parameters, together with how a run of the job
behaves (how long it takes, whether it warns or fails).
"""

import json
from typing import Literal

from pydantic import BaseModel, Field, field_validator

from .constants import ParamType


def _unique_names(kind: str, items: list) -> list:
    seen = set()
    for item in items:
        if item.name in seen:
            raise ValueError(f"duplicate {kind} name '{item.name}'")
        seen.add(item.name)
    return items


class CatalogLink(BaseModel):
    name: str
    rows: int = Field(default=0, ge=0)


class CatalogStage(BaseModel):
    name: str
    type: str = "CTransformerStage"
    links: list[CatalogLink] = Field(default_factory=list)

    @field_validator("links")
    @classmethod
    def unique_links(cls, value):
        return _unique_names("link", value)


class CatalogParam(BaseModel):
    name: str
    type: ParamType = ParamType.STRING
    help_text: str = ""
    prompt: str = ""
    prompt_at_run: bool = False
    default: str | int | float | None = None
    design_default: str | int | float | None = None
    list_values: list[str] = Field(default_factory=list)
    design_list_values: list[str] | None = None

    @field_validator("type", mode="before")
    @classmethod
    def parse_type_name(cls, value):
        """Accept type names such as "Integer" as well as numeric codes."""
        if isinstance(value, str) and value.isdigit():
            return int(value)
        if isinstance(value, str):
            try:
                return ParamType[value.upper()]
            except KeyError:
                raise ValueError(f"unknown parameter type '{value}'") from None
        return value


class CatalogJob(BaseModel):
    name: str
    compiled: bool = True
    duration: float = Field(default=0, ge=0)
    outcome: Literal["ok", "warn", "fail"] = "ok"
    warnings: int = Field(default=0, ge=0)
    controller: str | None = None
    user_status: str | None = None
    stages: list[CatalogStage] = Field(default_factory=list)
    params: list[CatalogParam] = Field(default_factory=list)

    @field_validator("stages")
    @classmethod
    def unique_stages(cls, value):
        return _unique_names("stage", value)

    @field_validator("params")
    @classmethod
    def unique_params(cls, value):
        return _unique_names("parameter", value)


class CatalogProject(BaseModel):
    name: str
    host: str | None = None
    jobs: list[CatalogJob] = Field(default_factory=list)


class Catalog(BaseModel):
    projects: list[CatalogProject] = Field(default_factory=list)


def load_catalog(path: str) -> Catalog:
    """Read and validate a catalog file."""
    with open(path) as f:
        data = json.load(f)
    return Catalog.model_validate(data)
