from __future__ import annotations

from typing import List

from pydantic import BaseModel, ConfigDict, Field, model_validator


FILE_PATH_TOKEN = "{file_path}"
CONTENT_TOKEN = "{content}"


class Rule(BaseModel):
    """A named, prioritized review directive.

    `prompt` is a template: `{file_path}` is replaced by the changed path and
    `{content}`, when present, by the file content (or its diff).
    """

    name: str
    description: str = ""
    file_patterns: List[str] = Field(default_factory=list)
    exclude_patterns: List[str] = Field(default_factory=list)
    priority: int = 100  # higher runs first
    enabled: bool = True
    prompt: str = ""

    model_config = ConfigDict(extra="forbid", frozen=True)

    @model_validator(mode="after")
    def _enabled_rule_needs_prompt(self) -> "Rule":
        if not self.name.strip():
            raise ValueError("rule name must not be empty")
        if self.enabled and not self.prompt.strip():
            raise ValueError(f"enabled rule {self.name!r} has an empty prompt template")
        return self
