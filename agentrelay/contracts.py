"""Structured-output contracts and the validator that enforces them.

A contract is declarative: required fields, field kinds, optional
enumerations and an explicit list of cross-field rules. Workers never
re-implement these checks; they go through ``check`` / ``validate``.
"""

from __future__ import annotations

import json
import logging
import re
from datetime import date
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, create_model, model_validator

from agentrelay.errors import ContractViolation

logger = logging.getLogger(__name__)

FieldKind = Literal["string", "number", "boolean", "date", "object", "array"]


class ContractField(BaseModel):
    """A typed field in a structured-output contract."""

    name: str
    type: FieldKind
    required: bool = True
    enum: list[Any] | None = None
    description: str | None = None


class CrossFieldRule(BaseModel):
    """A predicate relating two fields.

    not_before — ``field`` (a date) must not be earlier than ``other``
    not_equal  — ``field`` must differ from ``other``

    Rules are only evaluated when both values are present and well typed;
    absence is reported by the field checks.
    """

    rule: Literal["not_before", "not_equal"]
    field: str
    other: str


class FieldIssue(BaseModel):
    """One field-level problem found by the validator."""

    field: str
    problem: Literal["missing", "wrong_type", "not_allowed", "invalid_date", "order", "equal", "unparseable"]
    message: str


class OutputContract(BaseModel):
    name: str
    description: str | None = None
    fields: list[ContractField] = []
    rules: list[CrossFieldRule] = []

    @model_validator(mode="after")
    def validate_rule_fields(self) -> OutputContract:
        names = {f.name for f in self.fields}
        for rule in self.rules:
            for ref in (rule.field, rule.other):
                if ref not in names:
                    raise ValueError(
                        f"Contract '{self.name}' rule '{rule.rule}' references unknown field '{ref}'. "
                        f"Available: {sorted(names)}"
                    )
        return self

    def field(self, name: str) -> ContractField | None:
        for f in self.fields:
            if f.name == name:
                return f
        return None

    @property
    def required_fields(self) -> list[str]:
        return [f.name for f in self.fields if f.required]

    def as_model(self, model_name: str | None = None) -> type[BaseModel]:
        """Build a pydantic model mirroring this contract (used for tool schemas)."""
        definitions: dict[str, Any] = {}
        for f in self.fields:
            annotation = _PYTHON_TYPES[f.type]
            if f.required:
                definitions[f.name] = (annotation, Field(..., description=f.description))
            else:
                definitions[f.name] = (Optional[annotation], Field(None, description=f.description))
        return create_model(
            model_name or self.name,
            __doc__=self.description or f"Structured output '{self.name}'.",
            **definitions,
        )


_PYTHON_TYPES: dict[str, Any] = {
    "string": str,
    "number": float,
    "boolean": bool,
    "date": str,
    "object": dict,
    "array": list,
}

_TYPE_CHECKS: dict[str, Any] = {
    "string": str,
    "number": (int, float),
    "boolean": bool,
    "date": (str, date),
    "object": dict,
    "array": (list, tuple),
}


GUARDRAIL_CONTRACT = OutputContract(
    name="guardrail_verdict",
    description="Whether the request belongs to this assistant's domain.",
    fields=[
        ContractField(name="inDomain", type="boolean"),
        ContractField(name="explanation", type="string", required=False),
    ],
)


def coerce_mapping(candidate: Any) -> dict[str, Any] | None:
    """Return ``candidate`` as a plain dict, or None if it cannot be one.

    Accepts dicts, pydantic models and JSON object strings (optionally
    wrapped in a markdown code fence).
    """
    if isinstance(candidate, BaseModel):
        return candidate.model_dump()
    if isinstance(candidate, dict):
        return dict(candidate)
    if isinstance(candidate, str):
        text = candidate.strip()
        if text.startswith("```"):
            text = text.strip("`")
            if text.startswith("json"):
                text = text[4:]
        try:
            parsed = json.loads(text)
        except (json.JSONDecodeError, TypeError):
            return None
        return parsed if isinstance(parsed, dict) else None
    return None


_ISO_DATE = re.compile(r"\d{4}-\d{2}-\d{2}")


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _as_date(value: Any) -> date | None:
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not _ISO_DATE.fullmatch(value):
        return None
    try:
        return date.fromisoformat(value)
    except (TypeError, ValueError):
        return None


def check(contract: OutputContract, candidate: Any) -> list[FieldIssue]:
    """Return every issue with ``candidate``; an empty list means valid."""
    data = coerce_mapping(candidate)
    if data is None:
        return [
            FieldIssue(
                field=name,
                problem="unparseable",
                message=f"'{name}' could not be read: output is not a JSON object",
            )
            for name in contract.required_fields or ["*"]
        ]

    issues: list[FieldIssue] = []
    for f in contract.fields:
        value = data.get(f.name)
        if _blank(value):
            if f.required:
                issues.append(
                    FieldIssue(
                        field=f.name,
                        problem="missing",
                        message=f"Missing required field '{f.name}' (expected type: {f.type})",
                    )
                )
            continue

        # bool is a subclass of int in Python, so check bool explicitly for "number"
        if f.type == "number" and isinstance(value, bool):
            issues.append(
                FieldIssue(field=f.name, problem="wrong_type", message=f"Field '{f.name}' must be a number, got boolean")
            )
            continue

        if not isinstance(value, _TYPE_CHECKS[f.type]):
            issues.append(
                FieldIssue(
                    field=f.name,
                    problem="wrong_type",
                    message=f"Field '{f.name}' must be of type {f.type}, got {type(value).__name__}",
                )
            )
            continue

        if f.type == "date" and _as_date(value) is None:
            issues.append(
                FieldIssue(
                    field=f.name,
                    problem="invalid_date",
                    message=f"Field '{f.name}' must be a date in YYYY-MM-DD format, got {value!r}",
                )
            )
            continue

        if f.enum is not None and value not in f.enum:
            issues.append(
                FieldIssue(
                    field=f.name,
                    problem="not_allowed",
                    message=f"Field '{f.name}' must be one of {f.enum}, got {value!r}",
                )
            )

    flagged = {issue.field for issue in issues}
    for rule in contract.rules:
        if rule.field in flagged or rule.other in flagged:
            continue
        left, right = data.get(rule.field), data.get(rule.other)
        if _blank(left) or _blank(right):
            continue
        if rule.rule == "not_before":
            later, earlier = _as_date(left), _as_date(right)
            if later is not None and earlier is not None and later < earlier:
                issues.append(
                    FieldIssue(
                        field=rule.field,
                        problem="order",
                        message=f"Field '{rule.field}' ({left}) must not be earlier than '{rule.other}' ({right})",
                    )
                )
        elif rule.rule == "not_equal":
            if str(left).strip().lower() == str(right).strip().lower():
                issues.append(
                    FieldIssue(
                        field=rule.field,
                        problem="equal",
                        message=f"Field '{rule.field}' must differ from '{rule.other}' (both are {left!r})",
                    )
                )
    return issues


def validate(contract: OutputContract, candidate: Any) -> dict[str, Any]:
    """Return a copy of ``candidate`` as a dict, or raise ``ContractViolation``."""
    issues = check(contract, candidate)
    if issues:
        logger.debug(f"Contract '{contract.name}' rejected candidate: {[i.field for i in issues]}")
        raise ContractViolation(contract.name, issues)
    return coerce_mapping(candidate)
