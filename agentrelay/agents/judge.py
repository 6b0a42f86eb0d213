"""Completeness judge — the accept / clarify validation gate.

An extractor produces a best-effort object; the judge checks it against a
contract. ``accept`` forwards the object unchanged to the next stage.
``clarify`` hands a field-level description of what is missing or invalid
to the caller-facing worker. Neither outcome is an error.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Literal

from pydantic import BaseModel

from agentrelay.agents.worker import WorkerResult
from agentrelay.contracts import FieldIssue, check, coerce_mapping

if TYPE_CHECKING:
    from agentrelay.agents.context import InvocationContext
    from agentrelay.agents.worker import WorkerHandler
    from agentrelay.contracts import OutputContract

logger = logging.getLogger(__name__)


class Clarification(BaseModel):
    """What the requester must supply before the object can be accepted."""

    contract: str
    message: str
    issues: list[FieldIssue]

    @property
    def field_names(self) -> list[str]:
        return [issue.field for issue in self.issues]


class JudgeVerdict(BaseModel):
    outcome: Literal["accept", "clarify"]
    candidate: dict[str, Any]
    clarification: Clarification | None = None


def _clarification(contract: OutputContract, issues: list[FieldIssue]) -> Clarification:
    missing = [i.field for i in issues if i.problem in ("missing", "unparseable")]
    invalid = [i for i in issues if i.problem not in ("missing", "unparseable")]
    parts = []
    if missing:
        parts.append(f"Missing information: {', '.join(missing)}.")
    for issue in invalid:
        parts.append(f"{issue.message}.")
    return Clarification(contract=contract.name, message=" ".join(parts), issues=issues)


def judge(contract: OutputContract, candidate: Any) -> JudgeVerdict:
    """Decide between accept and clarify. Never mutates ``candidate``."""
    data = coerce_mapping(candidate)
    if data is None:
        data = {}
    issues = check(contract, data)
    if not issues:
        return JudgeVerdict(outcome="accept", candidate=data)
    return JudgeVerdict(outcome="clarify", candidate=data, clarification=_clarification(contract, issues))


def completeness_judge(contract: OutputContract, accept: str | None, clarify: str | None) -> WorkerHandler:
    """Native worker handler wrapping ``judge``.

    accept / clarify name the handoff targets for each outcome; None means
    the outcome ends the run with the object (or the clarification).
    """

    async def judge_handler(payload: Any, context: InvocationContext) -> WorkerResult:
        verdict = judge(contract, payload)
        if verdict.outcome == "accept":
            logger.info(f"Judge '{context.active_worker}' accepted '{contract.name}' (run={context.run_id})")
            return WorkerResult(structured=verdict.candidate, handoff=accept, payload=verdict.candidate)

        clarification = verdict.clarification
        logger.info(
            f"Judge '{context.active_worker}' asked to clarify {clarification.field_names} (run={context.run_id})"
        )
        return WorkerResult(
            text=clarification.message,
            structured=clarification.model_dump(),
            handoff=clarify,
            payload=clarification.model_dump(),
        )

    return judge_handler
