"""Tests for onboarding answers and the onboarding pack."""

from __future__ import annotations

from datetime import datetime, timezone

from rho.bootstrap.merge_policy import MergeAction, managed_id_for
from rho.bootstrap.onboarding import (
    ONBOARDING_PACK_ID,
    is_valid_timezone,
    onboarding_pack,
    validate_onboarding_answers,
)
from rho.brain.brain import Brain

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)

ANSWERS = {
    "name": "Mikey",
    "timezone": "America/Chicago",
    "style": "concise",
    "externalActionPolicy": "always-ask",
}


class TestValidate:
    def test_valid_minimal(self):
        assert validate_onboarding_answers(ANSWERS) == []

    def test_missing_required(self):
        errors = validate_onboarding_answers({})
        assert errors == [
            "name is required",
            "timezone is required",
            "style is required",
            "externalActionPolicy is required",
        ]

    def test_bad_values(self):
        errors = validate_onboarding_answers(
            {
                "name": "x" * 81,
                "timezone": "Mars/Olympus",
                "style": "chatty",
                "externalActionPolicy": "never",
                "codingTaskFirst": "yes",
                "quietHours": "10pm-7am",
                "proactiveCadence": "hourly",
            }
        )
        assert errors == [
            "name must be <= 80 characters",
            "invalid timezone: Mars/Olympus",
            "style must be one of: concise, balanced, detailed",
            "externalActionPolicy must be one of: always-ask, ask-risky-only",
            "codingTaskFirst must be boolean when provided",
            "quietHours must match HH:mm-HH:mm when provided",
            "proactiveCadence must be one of: off, light, standard",
        ]

    def test_not_an_object(self):
        assert validate_onboarding_answers(["Mikey"]) == ["answers must be an object"]

    def test_timezones(self):
        assert is_valid_timezone("UTC")
        assert is_valid_timezone("Europe/Berlin")
        assert not is_valid_timezone("Nowhere/Special")
        assert not is_valid_timezone("")


class TestPack:
    def test_minimal_keys(self):
        pack = onboarding_pack(ANSWERS)
        assert pack.id == ONBOARDING_PACK_ID
        assert pack.version == "onboarding-v1"
        assert pack.semantic_keys() == [
            "user.name",
            "user.timezone",
            "preference.communication.style",
            "preference.risk.externalActions",
            "context.workflow.approvalGate",
            "context.proactiveCadence",
            "behavior.do.be-direct",
            "behavior.do.external-actions",
        ]

    def test_optional_answers_add_keys(self):
        pack = onboarding_pack(
            {
                **ANSWERS,
                "codingTaskFirst": True,
                "quietHours": "22:00-07:00",
                "proactiveCadence": "standard",
            }
        )
        keys = pack.semantic_keys()
        assert "preference.coding.taskFirst" in keys
        assert "context.quietHours" in keys
        assert keys[-2:] == ["reminder.cadence.morning", "reminder.cadence.afternoon"]
        gate = next(i for i in pack.items if i.semantic_key == "context.workflow.approvalGate")
        assert gate.fields["content"] == "workflow: propose -> approve -> implement"

    def test_policy_maps_to_behavior(self):
        pack = onboarding_pack({**ANSWERS, "externalActionPolicy": "ask-risky-only"})
        item = next(i for i in pack.items if i.semantic_key == "behavior.do.external-actions")
        assert item.fields["text"] == "Ask before risky external actions."


class TestApplyOnboarding:
    def test_changed_answer_updates_only_that_key(self, tmp_path):
        brain = Brain(tmp_path / "brain.jsonl")
        first = brain.plan(onboarding_pack(ANSWERS))
        assert set(a.action for a in first.actions) == {MergeAction.ADD}
        brain.apply(first, NOW)

        second = brain.plan(onboarding_pack({**ANSWERS, "style": "detailed"}, "onboarding-v2"))
        changed = {a.semantic_key for a in second.actions if a.action is not MergeAction.NOOP}
        assert changed == {"preference.communication.style"}
        assert second.action_for("preference.communication.style").action is MergeAction.UPDATE

        brain.apply(second, NOW)
        style_id = managed_id_for(ONBOARDING_PACK_ID, "preference.communication.style")
        assert brain.materialize().get(style_id).value == "detailed"
        assert "Mikey" in brain.build_prompt(now=NOW)

    def test_dropped_cadence_deprecates_reminder(self, tmp_path):
        brain = Brain(tmp_path / "brain.jsonl")
        brain.apply(brain.plan(onboarding_pack({**ANSWERS, "proactiveCadence": "light"})), NOW)
        assert len(brain.materialize().reminders) == 1

        quiet = brain.plan(onboarding_pack({**ANSWERS, "proactiveCadence": "off"}, "onboarding-v2"))
        assert quiet.action_for("reminder.cadence.daily-review").action is MergeAction.DEPRECATE
        brain.apply(quiet, NOW)
        assert brain.materialize().reminders == []

    def test_onboarding_after_assistant_pack_keeps_one_entry_per_slot(self, tmp_path):
        brain = Brain(tmp_path / "brain.jsonl")
        brain.apply(brain.plan("personal-assistant", "pa-v2"), NOW)

        merge_plan = brain.plan(onboarding_pack(ANSWERS))
        for key in (
            "preference.communication.style",
            "context.workflow.approvalGate",
            "context.proactiveCadence",
        ):
            skipped = merge_plan.action_for(key)
            assert skipped.action is MergeAction.SKIP_CONFLICT
            assert "managed by pack personal-assistant" in skipped.reason
        assert merge_plan.action_for("user.name").action is MergeAction.ADD

        brain.apply(merge_plan, NOW)
        materialized = brain.materialize()
        styles = [p for p in materialized.preferences if p.key == "communication.style"]
        assert len(styles) == 1
        assert styles[0].managed.pack == "personal-assistant"
        gates = [c for c in materialized.contexts if c.path == "bootstrap/workflow.approvalGate"]
        assert len(gates) == 1
        assert materialized.get(
            managed_id_for(ONBOARDING_PACK_ID, "user.name")
        ).value == "Mikey"
