"""Tests for analysis.py - model answer validation and repair."""

import json

import pytest

from mediguard.analysis import (
    UNKNOWN_CPT_CODE,
    LineItem,
    coerce_amount,
    coerce_cpt_code,
    coerce_estimate,
    coerce_status,
    compute_potential_savings,
    count_issues,
    normalize_line_item,
    parse_analysis,
)
from mediguard.errors import MalformedAnalysisError


class TestCoercers:
    def test_cpt_code_missing_uses_sentinel(self):
        assert coerce_cpt_code(None) == UNKNOWN_CPT_CODE
        assert coerce_cpt_code("") == UNKNOWN_CPT_CODE
        assert coerce_cpt_code("   ") == UNKNOWN_CPT_CODE

    def test_cpt_code_numeric_becomes_text(self):
        assert coerce_cpt_code(99213) == "99213"
        assert coerce_cpt_code(99213.0) == "99213"

    def test_cpt_code_kept(self):
        assert coerce_cpt_code(" 74177 ") == "74177"

    def test_amount_defaults_to_zero(self):
        assert coerce_amount(None) == 0.0
        assert coerce_amount("$860") == 0.0
        assert coerce_amount(True) == 0.0
        assert coerce_amount(float("nan")) == 0.0

    def test_amount_too_large_for_float(self):
        assert coerce_amount(10**400) == 0.0
        assert coerce_estimate(10**400) is None
        assert coerce_cpt_code(10**400) == UNKNOWN_CPT_CODE

    def test_amount_kept(self):
        assert coerce_amount(860) == 860.0
        assert coerce_amount(12.5) == 12.5

    def test_status_invalid_is_correct(self):
        assert coerce_status("overcharged") == "correct"
        assert coerce_status(None) == "correct"
        assert coerce_status(1) == "correct"

    def test_status_valid_values(self):
        assert coerce_status("incorrect") == "incorrect"
        assert coerce_status("correct") == "correct"

    def test_status_match_is_exact(self):
        assert coerce_status(" Incorrect ") == "correct"
        assert coerce_status("INCORRECT") == "correct"

    def test_estimate_null_when_not_a_number(self):
        assert coerce_estimate(None) is None
        assert coerce_estimate("$1,500-$1,800") is None
        assert coerce_estimate(False) is None
        assert coerce_estimate(430) == 430.0


class TestNormalizeLineItem:
    def test_empty_item_gets_all_defaults(self):
        item = normalize_line_item({})
        assert item == LineItem(
            cpt_code="UNKNOWN",
            description="",
            amount=0.0,
            status="correct",
            why="",
            estimated_reasonable_amount=None,
        )

    def test_non_object_item_is_repaired_not_dropped(self):
        item = normalize_line_item("CT scan $860")
        assert item.cpt_code == "UNKNOWN"
        assert item.amount == 0.0

    def test_partial_item_keeps_good_fields(self):
        item = normalize_line_item({"description": "ECG", "amount": 450, "status": "maybe"})
        assert item.description == "ECG"
        assert item.amount == 450.0
        assert item.status == "correct"
        assert item.cpt_code == "UNKNOWN"


class TestDerivedTotals:
    def test_count_issues(self):
        items = [
            LineItem(status="incorrect"),
            LineItem(status="correct"),
            LineItem(status="incorrect"),
        ]
        assert count_issues(items) == 2

    def test_savings_only_from_incorrect_items_with_estimate(self):
        items = [
            LineItem(amount=860, status="incorrect", estimated_reasonable_amount=430),
            LineItem(amount=500, status="correct", estimated_reasonable_amount=100),
            LineItem(amount=650, status="incorrect", estimated_reasonable_amount=None),
        ]
        assert compute_potential_savings(items) == 430

    def test_savings_never_negative(self):
        items = [LineItem(amount=100, status="incorrect", estimated_reasonable_amount=250)]
        assert compute_potential_savings(items) == 0

    def test_savings_are_the_exact_sum(self):
        items = [
            LineItem(amount=100.005, status="incorrect", estimated_reasonable_amount=0),
            LineItem(amount=0.3, status="incorrect", estimated_reasonable_amount=0.1),
        ]
        assert compute_potential_savings(items) == (100.005 - 0) + (0.3 - 0.1)

    def test_empty_items(self):
        assert count_issues([]) == 0
        assert compute_potential_savings([]) == 0


class TestParseAnalysis:
    def test_recomputes_totals_ignoring_model(self, model_answer):
        analysis = parse_analysis(json.dumps(model_answer))
        assert analysis.issues_found == 1
        assert analysis.potential_savings == 430

    def test_passes_through_text_fields(self, model_answer):
        model_answer["questionAnswer"] = "Yes, ask for an itemized bill."
        analysis = parse_analysis(json.dumps(model_answer))
        assert analysis.summary == model_answer["summary"]
        assert analysis.dispute_letter == model_answer["disputeLetter"]
        assert analysis.question_answer == "Yes, ask for an itemized bill."
        assert analysis.insurance_plan == "Aetna PPO"
        assert analysis.total_billed == 1720

    def test_well_formed_items_are_unchanged(self, model_answer):
        analysis = parse_analysis(json.dumps(model_answer))
        dumped = analysis.to_dict()
        assert dumped["items"] == model_answer["items"]

    def test_optional_fields_default(self, model_answer):
        for key in ("insurancePlan", "disputeLetter", "questionAnswer"):
            model_answer.pop(key)
        analysis = parse_analysis(json.dumps(model_answer))
        assert analysis.insurance_plan is None
        assert analysis.dispute_letter == ""
        assert analysis.question_answer is None

    def test_wire_format_is_camel_case(self, model_answer):
        dumped = parse_analysis(json.dumps(model_answer)).to_dict()
        assert set(dumped) == {
            "summary",
            "insurancePlan",
            "totalBilled",
            "potentialSavings",
            "issuesFound",
            "items",
            "disputeLetter",
            "questionAnswer",
        }
        assert "estimatedReasonableAmount" in dumped["items"][0]

    def test_accepts_fenced_json(self, model_answer):
        answer = "```json\n" + json.dumps(model_answer) + "\n```"
        assert parse_analysis(answer).issues_found == 1

    def test_accepts_bare_fence(self, model_answer):
        answer = "```\n" + json.dumps(model_answer) + "\n```"
        assert parse_analysis(answer).issues_found == 1

    def test_prose_around_json_is_malformed(self, model_answer):
        answer = "Here is the analysis:\n" + json.dumps(model_answer) + "\nLet me know!"
        with pytest.raises(MalformedAnalysisError):
            parse_analysis(answer)

    def test_uppercase_status_is_not_an_issue(self, model_answer):
        model_answer["items"][1]["status"] = "INCORRECT"
        analysis = parse_analysis(json.dumps(model_answer))
        assert analysis.items[1].status == "correct"
        assert analysis.issues_found == 0
        assert analysis.potential_savings == 0

    def test_sub_cent_savings_are_kept(self, model_answer):
        model_answer["items"][1].update(amount=100.005, estimatedReasonableAmount=0)
        assert parse_analysis(json.dumps(model_answer)).potential_savings == 100.005

    def test_oversized_amount_is_repaired(self, model_answer):
        answer = json.dumps(model_answer).replace("\"amount\": 860", "\"amount\": " + "9" * 401, 1)
        analysis = parse_analysis(answer)
        assert analysis.items[0].amount == 0.0
        assert analysis.issues_found == 1

    @pytest.mark.parametrize("missing", ["summary", "items", "totalBilled"])
    def test_missing_required_field_is_malformed(self, model_answer, missing):
        model_answer.pop(missing)
        with pytest.raises(MalformedAnalysisError):
            parse_analysis(json.dumps(model_answer))

    def test_non_numeric_total_is_malformed(self, model_answer):
        model_answer["totalBilled"] = "$1,720"
        with pytest.raises(MalformedAnalysisError):
            parse_analysis(json.dumps(model_answer))

    def test_items_not_a_list_is_malformed(self, model_answer):
        model_answer["items"] = {"cptCode": "74177"}
        with pytest.raises(MalformedAnalysisError):
            parse_analysis(json.dumps(model_answer))

    def test_not_json_is_malformed(self):
        with pytest.raises(MalformedAnalysisError):
            parse_analysis("I could not read this bill, sorry.")

    def test_json_array_is_malformed(self):
        with pytest.raises(MalformedAnalysisError):
            parse_analysis("[1, 2, 3]")

    def test_bad_items_are_repaired(self, model_answer):
        model_answer["items"].append({"status": "INVALID", "amount": "lots"})
        analysis = parse_analysis(json.dumps(model_answer))
        assert len(analysis.items) == 3
        assert analysis.items[2].cpt_code == "UNKNOWN"
        assert analysis.items[2].status == "correct"
        assert analysis.issues_found == 1
