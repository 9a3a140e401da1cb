"""Tests for govjourney.cli_ui rendering helpers."""

from io import StringIO

from govjourney.artefacts import ArtefactParser, PolicyRuleset
from govjourney.cli_ui import (
    artefact_panel,
    artefact_summary,
    console,
    error,
    journey_graph,
    policy_result,
    policy_result_json,
    settings_panel,
)
from govjourney.config import JourneySettings
from govjourney.policy import PolicyEvaluator


def _capture_output(fn, *args, **kwargs):
    """Capture Rich console output by temporarily redirecting."""
    buf = StringIO()
    original_file = console.file
    console.file = buf
    try:
        fn(*args, **kwargs)
    finally:
        console.file = original_file
    return buf.getvalue()


def _ruleset_with_operator(operator: str) -> PolicyRuleset:
    return PolicyRuleset.model_validate(
        {
            "id": "test",
            "rules": [
                {
                    "id": "age-check",
                    "condition": {"field": "age", "operator": operator, "value": 18},
                    "reason_if_failed": "Too young",
                }
            ],
        }
    )


class TestMessages:
    def test_error_with_hint(self):
        output = _capture_output(error, "Broken", hint="Try --kind")
        assert "✗" in output
        assert "Broken" in output
        assert "Try --kind" in output


class TestArtefactPanel:
    def test_state_model_summary(self, uc_artefacts):
        summary = artefact_summary("state-model", uc_artefacts.state_model)

        assert summary["Initial state"] == "not-started"
        assert summary["States"] == str(len(uc_artefacts.state_model.states))

    def test_consent_counts_required_grants(self, uc_artefacts):
        summary = artefact_summary("consent", uc_artefacts.consent)

        required = sum(1 for g in uc_artefacts.consent.grants if g.required)
        assert summary["Required"] == str(required)

    def test_policy_with_unknown_operator_warns(self):
        output = _capture_output(artefact_panel, "policy", _ruleset_with_operator("=>"))

        assert "Valid policy" in output
        assert "Rule age-check uses unknown operator '=>'" in output

    def test_policy_with_known_operators_is_quiet(self, uc_artefacts):
        output = _capture_output(artefact_panel, "policy", uc_artefacts.policy)

        assert "unknown operator" not in output


class TestPolicyResult:
    def test_failed_rule_reason_and_verdict(self):
        result = PolicyEvaluator().evaluate(_ruleset_with_operator(">="), {"age": 17})

        output = _capture_output(policy_result, result)

        assert "age-check" in output
        assert "Too young" in output
        assert "Not eligible" in output

    def test_empty_ruleset(self):
        result = PolicyEvaluator().evaluate(PolicyRuleset(), {})

        output = _capture_output(policy_result, result)

        assert "Ruleset has no rules" in output
        assert "Eligible" in output

    def test_json_form(self):
        result = PolicyEvaluator().evaluate(_ruleset_with_operator(">="), {"age": 30})

        output = _capture_output(policy_result_json, result)

        assert "Evaluation" in output
        assert '"eligible": true' in output


class TestJourneyGraph:
    def test_falls_back_to_name_without_id(self):
        model = ArtefactParser.parse_dict(
            {"states": [{"id": "start", "type": "initial"}]}, kind="state-model"
        )

        output = _capture_output(journey_graph, model, name="state-model")

        assert "state-model" in output
        assert "Transitions" not in output

    def test_undeclared_instruction_state(self, uc_artefacts):
        instructions = uc_artefacts.state_instructions.model_copy(
            update={"instructions": {"nowhere": "text"}}
        )

        output = _capture_output(journey_graph, uc_artefacts.state_model, instructions)

        assert "Instructions given for undeclared state: nowhere" in output


class TestSettingsPanel:
    def test_shows_orchestrator_settings(self, tmp_path):
        path = tmp_path / "govjourney.yaml"
        path.write_text("orchestrator:\n  next_fields_limit: 2\n")

        output = _capture_output(settings_panel, JourneySettings(_config_path=str(path)))

        assert "Next fields shown:" in output
        assert "2" in output
        assert "Configuration loaded" in output
