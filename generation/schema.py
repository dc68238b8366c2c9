from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class StoryboardBeat(BaseModel):
    t: str
    shot: str
    on_screen: str = Field(default="", alias="onScreen")
    spoken: str = ""
    broll: Optional[List[str]] = None

    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class ScriptPlan(BaseModel):
    angle: str
    duration: int
    hook_idea: str = Field(alias="hookIdea")
    beats: List[str] = Field(default_factory=list)
    compliance_notes: List[str] = Field(default_factory=list, alias="complianceNotes")

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    @model_validator(mode="after")
    def _validate_duration(self) -> "ScriptPlan":
        if self.duration <= 0:
            raise ValueError("plan duration must be > 0")
        return self


class ScriptOutput(BaseModel):
    angle: str
    duration: int
    hook: str
    storyboard: List[StoryboardBeat]
    cta_variants: List[str] = Field(default_factory=list, alias="ctaVariants")
    filming_checklist: List[str] = Field(default_factory=list, alias="filmingChecklist")
    warnings: List[str] = Field(default_factory=list)

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    @model_validator(mode="after")
    def _validate_script(self) -> "ScriptOutput":
        if self.duration <= 0:
            raise ValueError("script duration must be > 0")
        if not self.storyboard:
            raise ValueError("script storyboard must not be empty")
        return self

    def storyboard_payload(self) -> list[dict]:
        return [beat.model_dump(by_alias=True, exclude_none=True) for beat in self.storyboard]
