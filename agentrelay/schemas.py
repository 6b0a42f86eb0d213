"""Request/response models — the contract between engine and clients."""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class RunRequest(BaseModel):
    """Incoming request body.

    entry overrides the graph's default entry worker; session_token is the
    continuation token returned by a previous run, for multi-turn use.
    """

    prompt: str = Field(..., min_length=1)
    entry: str | None = None
    session_token: str | None = None


class StreamFrame(BaseModel):
    """A single SSE event in the response stream.

    Frames:
        {"text": ...}                                   — one output fragment
        {"type": "end", "continuationToken", "result"}  — run succeeded
        {"type": "rejected", "message", ...}            — guardrail said no
        {"type": "error", "message"}                    — run failed

    Exactly one of end / rejected / error closes every stream.
    """

    model_config = ConfigDict(populate_by_name=True)

    type: Literal["end", "rejected", "error"] | None = None
    text: str | None = None
    message: str | None = None
    continuation_token: str | None = Field(default=None, alias="continuationToken")
    result: Any = None

    def wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)
