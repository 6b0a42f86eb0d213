"""Engine exceptions.

Everything that ends a run as a failure derives from ``EngineError``.
Rejection and clarification are outcomes, not errors, and never appear
here. ``RunRejected`` / ``RunFailed`` form the caller-facing error
channel of a ``RunHandle``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from agentrelay.contracts import FieldIssue


class EngineError(Exception):
    """Base exception for failures that terminate a run."""

    kind = "failure"


class ContractViolation(EngineError):
    """A structured object does not satisfy its declared contract."""

    kind = "contract_violation"

    def __init__(self, contract: str, issues: list[FieldIssue]):
        self.contract = contract
        self.issues = issues
        details = "; ".join(issue.message for issue in issues)
        super().__init__(f"Output does not satisfy contract '{contract}': {details}")


class UpstreamFailure(EngineError):
    """The model invocation or a tool call failed."""

    kind = "upstream_failure"

    def __init__(self, message: str, cause: BaseException | None = None):
        self.cause = cause
        super().__init__(message)


class InvocationTimeout(UpstreamFailure):
    """The invocation boundary gave up waiting for a result."""

    kind = "timeout"


class GraphMisconfiguration(EngineError):
    """The worker graph cannot carry out what a worker asked for."""

    kind = "misconfiguration"


class RunError(Exception):
    """Raised by ``RunHandle.completed()`` when a run did not succeed."""

    def __init__(self, message: str, session_token: str | None = None):
        self.message = message
        self.session_token = session_token
        super().__init__(message)


class RunRejected(RunError):
    """The guardrail judged the request out of domain."""


class RunFailed(RunError):
    def __init__(
        self,
        message: str,
        kind: str,
        cause: str | None = None,
        session_token: str | None = None,
    ):
        self.kind = kind
        self.cause = cause
        super().__init__(message, session_token=session_token)
