from __future__ import annotations

from pydantic import BaseModel, Field


class PatternSummary(BaseModel):
    id: str
    name: str
    category: str
    description: str
    complexity: str | None = None
    tags: list[str] = Field(default_factory=list)


class CodeExample(BaseModel):
    language: str = Field(..., min_length=1)
    code: str = Field(..., min_length=1)
    explanation: str = ""


class Pattern(BaseModel):
    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    category: str
    description: str = ""
    benefits: list[str] = Field(default_factory=list)
    drawbacks: list[str] = Field(default_factory=list)
    use_cases: list[str] = Field(default_factory=list)
    complexity: str | None = None
    tags: list[str] = Field(default_factory=list)
    examples: list[CodeExample] = Field(default_factory=list)

    def summary(self) -> PatternSummary:
        return PatternSummary(
            id=self.id,
            name=self.name,
            category=self.category,
            description=self.description,
            complexity=self.complexity,
            tags=list(self.tags),
        )

    def examples_for(self, language: str | None = None, limit: int = 3) -> list[CodeExample]:
        """Code examples in ``language`` (case-insensitive), or in every
        language when none is given, ordered by language."""
        examples = self.examples
        if language:
            wanted = language.strip().casefold()
            examples = [e for e in examples if e.language.casefold() == wanted]
        return sorted(examples, key=lambda e: e.language.casefold())[:limit]

    def embedding_text(self) -> str:
        """Text the pattern's stored embedding is built from."""
        parts: list[str] = [self.name]
        if self.category:
            parts.append(self.category)
        if self.description:
            parts.append(self.description)
        if self.tags:
            parts.append(" ".join(self.tags))
        return " ".join(parts).strip()
