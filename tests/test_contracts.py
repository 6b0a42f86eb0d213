"""Tests for structured-output contracts and the validator."""

import pytest
from pydantic import ValidationError

from agentrelay.contracts import (
    GUARDRAIL_CONTRACT,
    ContractField,
    CrossFieldRule,
    OutputContract,
    check,
    coerce_mapping,
    validate,
)
from agentrelay.errors import ContractViolation


def _problems(issues):
    return {(issue.field, issue.problem) for issue in issues}


class TestFieldChecks:
    def test_complete_candidate_has_no_issues(self, flight_query_contract, xmas_query):
        assert check(flight_query_contract, xmas_query) == []

    def test_missing_required_fields_are_each_named(self, flight_query_contract):
        issues = check(flight_query_contract, {"origin": "Winnipeg"})
        assert _problems(issues) == {("destination", "missing"), ("departureDate", "missing")}

    def test_none_counts_as_absent(self, flight_query_contract, xmas_query):
        xmas_query["destination"] = None
        assert _problems(check(flight_query_contract, xmas_query)) == {("destination", "missing")}

    @pytest.mark.parametrize("blank", ["", "   "])
    def test_blank_string_counts_as_absent(self, flight_query_contract, xmas_query, blank):
        xmas_query["origin"] = blank
        assert _problems(check(flight_query_contract, xmas_query)) == {("origin", "missing")}

    def test_optional_field_may_be_absent(self, flight_query_contract, xmas_query):
        del xmas_query["returnDate"]
        assert check(flight_query_contract, xmas_query) == []

    def test_blank_optional_field_is_absent(self, flight_query_contract, xmas_query):
        xmas_query["returnDate"] = ""
        assert check(flight_query_contract, xmas_query) == []

    def test_wrong_type(self, flight_query_contract, xmas_query):
        xmas_query["origin"] = 42
        assert _problems(check(flight_query_contract, xmas_query)) == {("origin", "wrong_type")}

    def test_boolean_is_not_a_number(self):
        contract = OutputContract(name="price", fields=[ContractField(name="amount", type="number")])
        assert _problems(check(contract, {"amount": True})) == {("amount", "wrong_type")}
        assert check(contract, {"amount": 12}) == []
        assert check(contract, {"amount": 12.5}) == []

    def test_enum(self):
        contract = OutputContract(
            name="cabin",
            fields=[ContractField(name="cabin", type="string", enum=["economy", "business"])],
        )
        assert check(contract, {"cabin": "business"}) == []
        assert _problems(check(contract, {"cabin": "steerage"})) == {("cabin", "not_allowed")}

    def test_invalid_date(self, flight_query_contract, xmas_query):
        xmas_query["departureDate"] = "next tuesday"
        assert _problems(check(flight_query_contract, xmas_query)) == {("departureDate", "invalid_date")}

    @pytest.mark.parametrize("spelling", ["20251225", "2025-W52-4", "2025-12-25T00:00", "2025-12-25 "])
    def test_only_dashed_calendar_dates_are_dates(self, flight_query_contract, xmas_query, spelling):
        xmas_query["departureDate"] = spelling
        xmas_query["returnDate"] = None
        assert _problems(check(flight_query_contract, xmas_query)) == {("departureDate", "invalid_date")}

    def test_unparseable_candidate_names_required_fields(self, flight_query_contract):
        issues = check(flight_query_contract, "no flights here")
        assert {i.problem for i in issues} == {"unparseable"}
        assert [i.field for i in issues] == ["origin", "destination", "departureDate"]


class TestCrossFieldRules:
    def test_return_before_departure_is_an_order_issue(self, flight_query_contract):
        issues = check(
            flight_query_contract,
            {"origin": "Winnipeg", "destination": "Toronto", "departureDate": "2026-07-10", "returnDate": "2026-07-01"},
        )
        assert _problems(issues) == {("returnDate", "order")}

    def test_same_day_return_is_allowed(self, flight_query_contract):
        issues = check(
            flight_query_contract,
            {"origin": "Winnipeg", "destination": "Toronto", "departureDate": "2026-07-10", "returnDate": "2026-07-10"},
        )
        assert issues == []

    def test_destination_must_differ_from_origin(self, flight_query_contract):
        issues = check(
            flight_query_contract,
            {"origin": "Winnipeg", "destination": " winnipeg ", "departureDate": "2026-07-10"},
        )
        assert _problems(issues) == {("destination", "equal")}

    def test_rule_skipped_when_operand_absent(self, flight_query_contract):
        issues = check(flight_query_contract, {"origin": "Winnipeg", "destination": "Toronto", "returnDate": "2026-01-01"})
        assert _problems(issues) == {("departureDate", "missing")}

    def test_rule_skipped_when_operand_already_flagged(self, flight_query_contract):
        issues = check(
            flight_query_contract,
            {"origin": "Winnipeg", "destination": "Toronto", "departureDate": "soon", "returnDate": "2026-01-01"},
        )
        assert _problems(issues) == {("departureDate", "invalid_date")}

    def test_rule_must_reference_declared_fields(self):
        with pytest.raises(ValidationError, match="unknown field"):
            OutputContract(
                name="broken",
                fields=[ContractField(name="a", type="date")],
                rules=[CrossFieldRule(rule="not_before", field="a", other="b")],
            )


class TestValidate:
    def test_returns_a_copy(self, flight_query_contract, xmas_query):
        result = validate(flight_query_contract, xmas_query)
        assert result == xmas_query
        assert result is not xmas_query

    def test_is_idempotent(self, flight_query_contract, xmas_query):
        once = validate(flight_query_contract, xmas_query)
        assert validate(flight_query_contract, once) == once

    def test_raises_with_every_issue(self, flight_query_contract):
        with pytest.raises(ContractViolation) as exc_info:
            validate(flight_query_contract, {"origin": "Winnipeg"})
        error = exc_info.value
        assert error.kind == "contract_violation"
        assert error.contract == "flight_query"
        assert {i.field for i in error.issues} == {"destination", "departureDate"}

    def test_guardrail_verdict(self):
        assert validate(GUARDRAIL_CONTRACT, {"inDomain": False}) == {"inDomain": False}
        with pytest.raises(ContractViolation):
            validate(GUARDRAIL_CONTRACT, {"explanation": "about weather"})


class TestCoerceMapping:
    def test_json_string(self):
        assert coerce_mapping('{"inDomain": true}') == {"inDomain": True}

    def test_fenced_json(self):
        assert coerce_mapping('```json\n{"inDomain": false}\n```') == {"inDomain": False}

    def test_non_object_json(self):
        assert coerce_mapping("[1, 2]") is None
        assert coerce_mapping("not json") is None
        assert coerce_mapping(7) is None


def test_as_model_mirrors_required_and_optional_fields(flight_query_contract):
    model = flight_query_contract.as_model("submit_flight_query")
    schema = model.model_json_schema()
    assert model.__name__ == "submit_flight_query"
    assert set(schema["required"]) == {"origin", "destination", "departureDate"}
    assert "returnDate" in schema["properties"]
