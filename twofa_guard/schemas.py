"""Pydantic schemas for stored records and response payloads."""
from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, StrictInt


class ClientRecord(BaseModel):
    """Failure counter persisted per client identity."""

    failed_attempts: StrictInt = Field(alias="failedAttempts", ge=0)

    model_config = ConfigDict(populate_by_name=True)

    def to_store(self) -> dict[str, int]:
        return self.model_dump(by_alias=True)


class ErrorBody(BaseModel):
    error: str
