"""
DTO captcha: Challenge (server-side, holds the answer), ChallengePublic (what the client sees),
VerifyResult.
"""
from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, model_validator

from app.captcha.catalog import label_for
from app.core.errors import FailureKind


# ----- Server-side challenge (never serialized to the client) -----


class Challenge(BaseModel):
    """One-time puzzle: pick every tile whose category equals target_category."""

    id: str
    target_category: str
    options: tuple[str, ...]
    expected_indices: frozenset[int]
    expires_at: datetime
    consumed: bool = False

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def _check_answer_set(self) -> "Challenge":
        matching = frozenset(i for i, tag in enumerate(self.options) if tag == self.target_category)
        if not self.expected_indices:
            raise ValueError("expected_indices must not be empty")
        if self.expected_indices != matching:
            raise ValueError("expected_indices must be exactly the tiles tagged with target_category")
        if len(self.expected_indices) >= len(self.options):
            raise ValueError("at least one option must not match the target")
        return self

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def public(self) -> "ChallengePublic":
        return ChallengePublic(
            challenge_id=self.id,
            target_category=self.target_category,
            target_label=label_for(self.target_category),
            grid=list(self.options),
        )


# ----- Wire payload for issueChallenge -----


class ChallengePublic(BaseModel):
    """What the client receives. expected_indices is deliberately absent."""

    challenge_id: str = Field(..., alias="challengeId")
    target_category: str = Field(..., alias="targetCategory")
    target_label: str = Field(..., alias="targetLabel")
    grid: list[str] = Field(..., description="Category tags; the client maps them to icons")

    model_config = ConfigDict(frozen=True, populate_by_name=True)


# ----- Grading outcome -----


class VerifyResult(BaseModel):
    success: bool
    failure: FailureKind | None = None

    model_config = ConfigDict(frozen=True)

    @classmethod
    def ok(cls) -> "VerifyResult":
        return cls(success=True)

    @classmethod
    def fail(cls, failure: FailureKind) -> "VerifyResult":
        return cls(success=False, failure=failure)
