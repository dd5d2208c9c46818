from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ItemDTO(BaseModel):
    model_config = ConfigDict(frozen=True)
    id: int
    name: str
    created_at: str = ""

    @property
    def details(self) -> "ItemDetails":
        return ItemDetails(
            id=self.id,
            name=self.name,
            created_at=self.created_at,
            length=len(self.name),
            words=len(self.name.split(" ")),
        )


class ItemDetails(ItemDTO):
    length: int = 0
    words: int = 0


class MutationResult(BaseModel):
    success: bool = True
    message: str = ""
    changes: int = 0
    id: Optional[int] = None


class AnalysisResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)
    file_name: str = Field(default="unknown", alias="fileName")
    functions: List[str] = Field(default_factory=list)
    classes: List[str] = Field(default_factory=list)
    variables: List[str] = Field(default_factory=list)
    dependencies: List[str] = Field(default_factory=list)
    complexity: int = 1
    lines: int = 0

    def to_json(self) -> dict:
        return self.model_dump(by_alias=True)


class FormatResult(BaseModel):
    formatted: str
    changed: bool
