from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from ..orchestration.approval import ApprovalDecision, ApprovalOutcome


class ApprovalStatusModel(BaseModel):
    approved: bool | None = None
    comment: str = ""


class ApprovalCallbackRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    run_id: str = Field(alias="runID", min_length=1)
    status: ApprovalStatusModel

    def to_domain(self) -> ApprovalDecision:
        return ApprovalDecision(
            run_id=self.run_id,
            approved=self.status.approved,
            comment=self.status.comment,
        )


class ApprovalCallbackResponse(BaseModel):
    status: Literal["ok"] = "ok"
    outcome: Literal["applied", "already_resolved"]

    @classmethod
    def from_outcome(cls, outcome: ApprovalOutcome) -> "ApprovalCallbackResponse":
        return cls(outcome=outcome.value)
