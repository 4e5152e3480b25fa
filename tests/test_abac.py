"""
Tests for the ABAC Decision Engine

Tests for policy combination, default deny, malformed policy handling and
the policy tester.
"""

from datetime import datetime, timezone
from unittest.mock import patch

import pytest

from saas_abac.models.policies import Policy
from saas_abac.security.abac import ABACEngine, evaluate


class TestDecisionCombination:
    """Tests for combining matching policies into a decision."""

    def test_default_deny(self, engine, make_context):
        """Test an empty policy list denies."""
        result = engine.evaluate([], make_context())

        assert result.allowed is False
        assert result.matched_policies == []
        assert result.reasons == ["No matching policy for action 'read' on 'Customer'"]

    def test_single_allow(self, engine, make_policy, make_context):
        policy = make_policy(name="Read customers")

        result = engine.evaluate([policy], make_context())

        assert result.allowed is True
        assert result.matched_policies == [policy]
        assert result.denied_policies == []
        assert result.reasons == [
            "Policy 'Read customers' (priority 100) allows action 'read' on 'Customer'"
        ]

    def test_deny_wins_at_equal_priority(self, engine, make_policy, make_context):
        allow = make_policy(name="Allow", priority=50)
        deny = make_policy(name="Deny", effect="deny", priority=50)

        result = engine.evaluate([allow, deny], make_context())

        assert result.allowed is False
        assert result.denied_policies == [deny]
        assert result.reasons == [
            "Policy 'Deny' (priority 50) denies action 'read' on 'Customer'"
        ]

    def test_higher_priority_allow_beats_deny(self, engine, make_policy, make_context):
        allow = make_policy(name="Allow", priority=80)
        deny = make_policy(name="Deny", effect="deny", priority=20)

        result = engine.evaluate([deny, allow], make_context())

        assert result.allowed is True
        assert result.matched_policies == [allow, deny]
        assert result.denied_policies == []

    def test_higher_priority_deny_beats_allow(self, engine, make_policy, make_context):
        allow = make_policy(name="Allow", priority=20)
        deny = make_policy(name="Deny", effect="deny", priority=80)

        result = engine.evaluate([allow, deny], make_context())

        assert result.allowed is False
        assert result.denied_policies == [deny]

    def test_ties_keep_input_order(self, engine, make_policy, make_context):
        first = make_policy(name="First", priority=10)
        second = make_policy(name="Second", priority=10)
        top = make_policy(name="Top", priority=90)

        result = engine.evaluate([first, second, top], make_context())

        assert [p.name for p in result.matched_policies] == ["Top", "First", "Second"]
        assert len(result.reasons) == 1

    def test_all_top_tier_allows_reported(self, engine, make_policy, make_context):
        policies = [make_policy(name="A"), make_policy(name="B")]

        result = engine.evaluate(policies, make_context())

        assert len(result.reasons) == 2

    def test_determinism(self, engine, make_policy, make_context):
        policies = [
            make_policy(name="Allow", priority=40),
            make_policy(name="Deny", effect="deny", priority=40),
            make_policy(name="Low", priority=10),
        ]
        context = make_context()

        first = engine.evaluate(policies, context)
        for _ in range(5):
            again = engine.evaluate(policies, context)
            assert again.allowed == first.allowed
            assert again.matched_policies == first.matched_policies
            assert again.denied_policies == first.denied_policies

    def test_policies_not_mutated(self, engine, make_policy, make_context):
        policies = [make_policy(name="B", priority=1), make_policy(name="A", priority=99)]
        before = list(policies)

        engine.evaluate(policies, make_context())

        assert policies == before

    def test_module_level_evaluate(self, make_policy, make_context):
        assert evaluate([make_policy()], make_context()).allowed is True
        assert evaluate([], make_context()).allowed is False

    def test_evaluation_time_recorded(self, engine, make_policy, make_context):
        result = engine.evaluate([make_policy()], make_context())

        assert result.evaluation_time_ms >= 0


class TestScenarios:
    """End-to-end targeting scenarios."""

    def test_wildcard_action(self, engine, make_policy, make_context):
        policy = make_policy(actions=["*"])

        for action in ("read", "update", "delete", "approve"):
            assert engine.evaluate([policy], make_context(action=action)).allowed is True

    def test_action_not_listed(self, engine, make_policy, make_context):
        result = engine.evaluate([make_policy(actions=["read"])], make_context(action="delete"))

        assert result.allowed is False

    def test_organization_scoping(self, engine, make_policy, make_context):
        """Test a policy of another organization is never a candidate."""
        policy = make_policy(organization_id="org-A", actions=["*"])

        result = engine.evaluate([policy], make_context(organization_id="org-B"))

        assert result.allowed is False
        assert result.matched_policies == []

    def test_placeholder_resolution(self, engine, make_policy, make_context):
        policy = make_policy(
            resources={
                "attributes": {
                    "organizationId": {
                        "operator": "equals",
                        "value": "${subject.organizationId}",
                    },
                },
            },
        )
        same = make_context(
            subject_attributes={"organizationId": "org-1"},
            resource_attributes={"organizationId": "org-1"},
        )
        other = make_context(
            subject_attributes={"organizationId": "org-1"},
            resource_attributes={"organizationId": "org-2"},
        )

        assert engine.evaluate([policy], same).allowed is True
        assert engine.evaluate([policy], other).allowed is False

    def test_multi_role_subject(self, engine, make_policy, make_context):
        policy = make_policy(subjects={"roles": ["editor"]})

        assert engine.evaluate([policy], make_context(roles=["viewer", "editor"])).allowed is True
        assert engine.evaluate([policy], make_context(roles=["viewer"])).allowed is False

    @pytest.mark.parametrize("hour,minute,expected", [
        (23, 30, True),
        (2, 0, True),
        (12, 0, False),
    ])
    def test_overnight_time_window(self, engine, make_policy, make_context, hour, minute, expected):
        policy = make_policy(conditions={"timeWindow": {"start": "22:00", "end": "06:00"}})
        context = make_context(
            timestamp=datetime(2024, 3, 13, hour, minute, tzinfo=timezone.utc)
        )

        assert engine.evaluate([policy], context).allowed is expected

    def test_deny_with_unmet_condition_not_candidate(self, engine, make_policy, make_context):
        """Test a deny whose conditions fail is not a candidate."""
        allow = make_policy(name="Allow", priority=10)
        deny = make_policy(
            name="Deny from US",
            effect="deny",
            priority=90,
            conditions={"locations": ["US-*"]},
        )

        assert engine.evaluate([allow, deny], make_context(location="US-CA")).allowed is False
        assert engine.evaluate([allow, deny], make_context(location="DE-BE")).allowed is True

    def test_inactive_policy_ignored(self, engine, make_policy, make_context):
        policy = make_policy(is_active=False)

        assert engine.evaluate([policy], make_context()).allowed is False


class TestMalformedPolicies:
    """Tests for skipping policies that cannot be evaluated."""

    def test_malformed_policy_skipped(self, engine, make_policy, make_context):
        broken = make_policy(name="No actions", actions=[])
        valid = make_policy(name="Valid")

        result = engine.evaluate([broken, valid], make_context())

        assert result.allowed is True
        assert result.matched_policies == [valid]
        assert len(result.warnings) == 1
        assert "No actions" in result.warnings[0]

    def test_policy_without_resources_skipped(self, engine, make_policy, make_context):
        result = engine.evaluate([make_policy(resources={})], make_context())

        assert result.allowed is False
        assert len(result.warnings) == 1

    def test_invalid_condition_fails_policy(self, engine, make_policy, make_context):
        policy = make_policy(
            resources={
                "attributes": {"status": {"operator": "regex", "value": "act.*"}},
            },
        )

        result = engine.evaluate([policy], make_context(resource_attributes={"status": "active"}))

        assert result.allowed is False
        assert result.warnings == []

    def test_incomplete_record_skipped(self, engine, make_policy, make_context):
        """Test a record missing required fields does not abort evaluation."""
        incomplete = Policy.model_construct(effect="allow", actions=["read"])
        valid = make_policy(name="Valid")

        result = engine.evaluate([incomplete, valid], make_context())

        assert result.allowed is True
        assert result.matched_policies == [valid]
        assert len(result.warnings) == 1
        assert "evaluation error" in result.warnings[0]

    def test_unexpected_error_skips_policy(self, make_policy, make_context):
        engine = ABACEngine()
        failing = make_policy(name="Failing")
        valid = make_policy(name="Valid", priority=5)

        original = engine.matcher.is_candidate

        def _is_candidate(policy, context):
            if policy.name == "Failing":
                raise RuntimeError("boom")
            return original(policy, context)

        with patch.object(engine.matcher, "is_candidate", side_effect=_is_candidate):
            result = engine.evaluate([failing, valid], make_context())

        assert result.allowed is True
        assert result.matched_policies == [valid]
        assert "evaluation error" in result.warnings[0]

    def test_slow_evaluation_logged(self, make_policy, make_context):
        engine = ABACEngine(slow_evaluation_ms=-1)

        with patch("saas_abac.security.abac.logger") as logger:
            engine.evaluate([make_policy()], make_context())

        events = [call.args[0] for call in logger.warning.call_args_list]
        assert "policy_evaluation_slow" in events


class TestPolicyTester:
    """Tests for explain()."""

    def test_applicable_policy(self, engine, make_policy, make_context):
        trace = engine.explain(make_policy(), make_context())

        assert trace.applicable is True
        assert trace.failures == []

    def test_every_stage_reported(self, engine, make_context):
        policy = Policy.model_validate({
            "name": "Restricted",
            "effect": "allow",
            "actions": ["update"],
            "isActive": False,
            "organizationId": "org-A",
            "subjects": {"roles": ["admin"]},
            "resources": {"types": ["Order"]},
            "conditions": {"ipAddresses": ["10.0.0.0/8"]},
        })

        trace = engine.explain(policy, make_context(ip_address="192.168.0.1"))

        assert trace.applicable is False
        assert trace.well_formed is True
        assert trace.active is False
        assert trace.organization is False
        assert trace.subject is False
        assert trace.resource is False
        assert trace.action is False
        assert trace.conditions is False
        assert len(trace.failures) == 6

    def test_malformed_policy_trace(self, engine, make_policy, make_context):
        trace = engine.explain(make_policy(resources={}), make_context())

        assert trace.well_formed is False
        assert trace.resource is False
