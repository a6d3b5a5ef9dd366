from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class VerifyRequest(BaseModel):
    challenge_id: str = Field("", alias="challengeId")
    # Raw list; the verifier owns index validation.
    selected_indices: list[Any] = Field(default_factory=list, alias="selectedIndices")

    model_config = ConfigDict(populate_by_name=True)


class VerifyResponse(BaseModel):
    success: bool
