"""Pydantic schemas for the installation and update wizards."""

from __future__ import annotations

from pydantic import BaseModel


class StepResponse(BaseModel):
    drop: bool = False
    type: str
    result: str
    table: str | None = None
    percent: int


class ProgressResponse(BaseModel):
    current_step: int
    total_steps: int
    recorded_version: str | None = None
    mode: str
    installed_version: str | None = None
    app_version: str
