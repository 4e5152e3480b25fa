"""
Policy Matcher

Narrows a policy list down to the policies whose subject, resource,
action and organization targeting apply to a context.
"""

from typing import Any, Optional

from saas_abac.models.context import PolicyEvaluationContext
from saas_abac.models.policies import WILDCARD, Policy, PolicyEffect

from .conditions import MISSING, ConditionEvaluator, lookup_attribute, resolve_placeholders


class PolicyMatcher:
    """
    Target matching for ABAC policies.

    Subject channels (users, groups, roles, attributes) are disjunctive,
    and so are resource channels (types, ids, attributes).
    """

    def __init__(
        self,
        condition_evaluator: Optional[ConditionEvaluator] = None,
        empty_types_match_any: bool = True
    ):
        """
        Initialize the matcher.

        Args:
            condition_evaluator: Evaluator used for resource attribute predicates
            empty_types_match_any: Whether a policy with resource attribute
                conditions but no resource types applies to every type
        """
        self.conditions = condition_evaluator or ConditionEvaluator()
        self.empty_types_match_any = empty_types_match_any

    def validate(self, policy: Policy) -> Optional[str]:
        """
        Check that a policy can be evaluated at all.

        Returns:
            A description of the problem, or None for a well-formed policy
        """
        if not policy.id or not policy.name:
            return f"Policy {policy.id or '<no id>'} skipped: missing id or name"
        if not isinstance(policy.effect, PolicyEffect):
            return f"Policy '{policy.name}' skipped: invalid effect {policy.effect!r}"
        if not policy.actions or not all(isinstance(a, str) and a for a in policy.actions):
            return f"Policy '{policy.name}' skipped: no actions"
        if policy.resources.is_empty:
            return f"Policy '{policy.name}' skipped: no resource constraint"
        return None

    def matches_organization(self, policy: Policy, context: PolicyEvaluationContext) -> bool:
        return policy.organization_id is None or policy.organization_id == context.organization_id

    def matches_action(self, policy: Policy, action: str) -> bool:
        return WILDCARD in policy.actions or action in policy.actions

    def matches_subject(self, policy: Policy, context: PolicyEvaluationContext) -> bool:
        """Check if any subject channel of the policy matches (empty = any subject)."""
        subjects = policy.subjects
        subject = context.subject

        if subjects.is_empty:
            return True

        if subject.id in subjects.users:
            return True
        if any(group in subjects.groups for group in subject.groups):
            return True
        if any(role in subjects.roles for role in subject.roles):
            return True
        if subjects.attributes:
            return self.matches_subject_attributes(subjects.attributes, context)

        return False

    def matches_subject_attributes(
        self,
        expected: dict[str, Any],
        context: PolicyEvaluationContext
    ) -> bool:
        """
        Plain equality of every listed subject attribute.

        A list value accepts any of its members.
        """
        for key, value in expected.items():
            actual = lookup_attribute(context.subject.attributes, key)
            if actual is MISSING:
                return False

            value = resolve_placeholders(value, context)
            if value is MISSING:
                return False

            if isinstance(value, list) and not isinstance(actual, list):
                if actual not in value:
                    return False
            elif actual != value:
                return False
        return True

    def resource_failures(self, policy: Policy, context: PolicyEvaluationContext) -> list[str]:
        """
        Explain why the resource constraint does not match.

        Types, ids and attributes are alternatives: any one channel that
        holds matches the resource. Attribute predicates on a policy with
        no types only apply when empty_types_match_any is set.

        Returns an empty list when it matches.
        """
        resources = policy.resources
        resource = context.resource

        if resources.is_empty:
            return ["policy has no resource constraint"]

        failures = []

        if resources.types:
            if resource.type in resources.types or WILDCARD in resources.types:
                return []
            failures.append(f"resource type '{resource.type}' not in {resources.types}")

        if resources.ids:
            if resource.id is not None and resource.id in resources.ids:
                return []
            failures.append(f"resource id {resource.id!r} not in {resources.ids}")

        if resources.attributes:
            if not resources.types and not self.empty_types_match_any:
                failures.append("policy names no resource types")
            else:
                attribute_failures = self.conditions.evaluate_attribute_conditions(
                    resources.attributes, resource.attributes, context
                )
                if not attribute_failures:
                    return []
                failures.extend(attribute_failures)

        return failures

    def matches_resource(self, policy: Policy, context: PolicyEvaluationContext) -> bool:
        return not self.resource_failures(policy, context)

    def is_candidate(self, policy: Policy, context: PolicyEvaluationContext) -> bool:
        """
        Check every targeting rule of a policy against a context.

        Conditions (time window, IP, custom) are not part of targeting.
        """
        return (
            policy.is_active
            and self.matches_organization(policy, context)
            and self.matches_action(policy, context.action)
            and self.matches_subject(policy, context)
            and self.matches_resource(policy, context)
        )
