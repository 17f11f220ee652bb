"""Pydantic schemas for clue, puzzle and attempt records plus request bodies."""

from __future__ import annotations

from typing import Any, Dict, List

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictStr, field_validator

__all__ = [
    "AttemptRecord",
    "ClueRecord",
    "PuzzleRecord",
    "SavePuzzleBody",
    "AttemptBody",
    "ClueUpdateBody",
    "PuzzleUpdateBody",
    "make_clue_id",
]


def make_clue_id(direction: str, number: Any) -> str:
    """Clue identifiers are ``"<direction>-<number>"``, e.g. ``"across-17"``."""

    return f"{direction}-{number}"


class AttemptRecord(BaseModel):
    """One answer attempt. Records are append-only and never edited."""

    model_config = ConfigDict(frozen=True)

    timestamp: int = Field(ge=0, description="Epoch milliseconds when the attempt was submitted.")
    correct: StrictBool


class ClueRecord(BaseModel):
    """A single clue as captured from the puzzle grid.

    Unknown keys sent by the scraper are preserved so a saved puzzle reads
    back exactly as it was posted.
    """

    model_config = ConfigDict(extra="allow")

    number: int
    direction: str
    text: str = ""
    pattern: str = ""
    answer: str = ""
    ignored: bool = False

    @field_validator("pattern", "answer", "text", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return "" if value is None else value

    @property
    def clue_id(self) -> str:
        return make_clue_id(self.direction, self.number)

    @property
    def is_completed(self) -> bool:
        return bool(self.answer) and len(self.answer) == len(self.pattern)

    @property
    def is_eligible(self) -> bool:
        return self.is_completed and not self.ignored

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump()


class PuzzleRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    puzzle_date: str = Field(alias="puzzleDate")
    clues: List[ClueRecord] = Field(default_factory=list)
    marked_complete: bool = Field(default=False, alias="markedComplete")
    saved_at: str | None = Field(default=None, alias="savedAt")
    updated_at: str | None = Field(default=None, alias="updatedAt")

    def find_clue(self, clue_id: str) -> int:
        """Return the index of ``clue_id`` in :attr:`clues` or ``-1``."""

        for idx, clue in enumerate(self.clues):
            if clue.clue_id == clue_id:
                return idx
        return -1

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class SavePuzzleBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    puzzle_date: StrictStr = Field(alias="puzzleDate", min_length=1)
    clues: List[ClueRecord]


class AttemptBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    clue_id: StrictStr = Field(alias="clueId", min_length=1)
    puzzle_date: StrictStr = Field(alias="puzzleDate", min_length=1)
    correct: StrictBool


class ClueUpdateBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    puzzle_date: StrictStr = Field(alias="puzzleDate", min_length=1)
    updates: Dict[str, Any]


class PuzzleUpdateBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    marked_complete: StrictBool = Field(alias="markedComplete")
