"""Human approval suspension and its resolution.

The gate parks a remote-qualified tool call in ``AwaitingApproval`` when its
capability server declares a contact channel. Nothing polls for the answer:
an inbound decision is applied by :class:`ApprovalCallbackHandler`, which
writes the terminal status directly and leaves later reconciles as no-ops.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_fixed

from ..core import metrics
from ..core.config import ApprovalSettings
from ..core.logging import get_logger
from ..tools.exceptions import (
    AmbiguousRunIDError,
    ApprovalStateError,
    BindingNotFoundError,
    ConflictError,
    MalformedDecisionError,
    ToolCallNotFoundError,
)
from ..tools.registry import QualifiedToolName
from . import projection
from .enums import ToolCallPhase
from .projection import StatusCommitter
from .state import MCPServer, ToolCall
from .store import ResourceStore
from .transitions import is_terminal

logger = get_logger(name=__name__)


@dataclass(slots=True)
class ApprovalDecision:
    run_id: str
    approved: bool | None
    comment: str = ""


class ApprovalOutcome(str, Enum):
    APPLIED = "applied"
    ALREADY_RESOLVED = "already_resolved"


class ApprovalGate:
    def __init__(self, store: ResourceStore, committer: StatusCommitter) -> None:
        self._store = store
        self._committer = committer

    async def evaluate(self, toolcall: ToolCall, qualified: QualifiedToolName) -> ToolCall | None:
        """Suspend ``toolcall`` if its capability server requires approval.

        Returns the committed object when suspended, ``None`` when execution may
        proceed. A remote name without a registered server raises
        :class:`BindingNotFoundError`.
        """
        if not qualified.is_remote:
            return None
        binding = await self._store.get(MCPServer, toolcall.metadata.namespace, qualified.server)
        if binding is None:
            raise BindingNotFoundError(
                f"capability server '{qualified.server}' is not registered in '{toolcall.metadata.namespace}'"
            )
        channel = binding.spec.approval_contact_channel
        if not channel:
            return None
        logger.info("toolcall_awaiting_approval", server=qualified.server, channel=channel)
        return await self._committer.commit(projection.await_approval(toolcall, channel))


class ApprovalCallbackHandler:
    def __init__(
        self,
        store: ResourceStore,
        committer: StatusCommitter,
        settings: ApprovalSettings,
    ) -> None:
        self._store = store
        self._committer = committer
        self._settings = settings

    async def handle(self, decision: ApprovalDecision) -> ApprovalOutcome:
        if decision.approved is None:
            metrics.record_approval_decision(approved=None, outcome="malformed")
            raise MalformedDecisionError("decision must set 'approved' to true or false")

        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type(ConflictError),
                stop=stop_after_attempt(self._settings.conflict_retry_attempts),
                wait=wait_fixed(self._settings.conflict_retry_wait_seconds),
                reraise=True,
            ):
                with attempt:
                    outcome = await self._apply(decision)
        except AmbiguousRunIDError:
            metrics.record_approval_decision(approved=decision.approved, outcome="ambiguous")
            raise
        except ToolCallNotFoundError:
            metrics.record_approval_decision(approved=decision.approved, outcome="not_found")
            raise
        except ApprovalStateError:
            metrics.record_approval_decision(approved=decision.approved, outcome="invalid_state")
            raise
        except ConflictError:
            metrics.record_approval_decision(approved=decision.approved, outcome="conflict")
            logger.warning("approval_commit_conflict_exhausted", run_id=decision.run_id)
            raise

        metrics.record_approval_decision(approved=decision.approved, outcome=outcome.value)
        return outcome

    async def _apply(self, decision: ApprovalDecision) -> ApprovalOutcome:
        toolcall = await self._resolve(decision.run_id)
        phase = toolcall.status.phase
        if is_terminal(phase):
            logger.info("approval_already_resolved", run_id=decision.run_id, phase=phase.value)
            return ApprovalOutcome.ALREADY_RESOLVED
        if phase is not ToolCallPhase.AWAITING_APPROVAL:
            raise ApprovalStateError(
                f"tool call '{decision.run_id}' is not awaiting approval (phase '{phase.value or 'Unset'}')"
            )
        if decision.approved:
            change = projection.approve(toolcall, comment=decision.comment)
        else:
            change = projection.reject(toolcall, comment=decision.comment)
        await self._committer.commit(change)
        logger.info("approval_applied", run_id=decision.run_id, approved=decision.approved)
        return ApprovalOutcome.APPLIED

    async def _resolve(self, run_id: str) -> ToolCall:
        """Find the tool call named ``run_id`` in any namespace; the name must be unique."""
        matches = [toolcall for toolcall in await self._store.list(ToolCall) if toolcall.metadata.name == run_id]
        if not matches:
            raise ToolCallNotFoundError(f"no tool call with run id '{run_id}'")
        if len(matches) > 1:
            namespaces = ", ".join(toolcall.metadata.namespace for toolcall in matches)
            raise AmbiguousRunIDError(f"run id '{run_id}' matches tool calls in namespaces: {namespaces}")
        return matches[0]


__all__ = ["ApprovalCallbackHandler", "ApprovalDecision", "ApprovalGate", "ApprovalOutcome"]
