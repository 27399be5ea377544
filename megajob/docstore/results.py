"""Result objects returned by collection write operations."""

from enum import Enum

from pydantic import BaseModel, ConfigDict


class ReturnDocument(str, Enum):
    """Which snapshot ``find_one_and_update`` returns."""

    BEFORE = "before"
    AFTER = "after"


class InsertOneResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    inserted_id: str


class UpdateResult(BaseModel):
    """Outcome of ``update_one``; always 0/0 or 1/1."""

    model_config = ConfigDict(frozen=True)

    matched_count: int
    modified_count: int


class DeleteResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    deleted_count: int
