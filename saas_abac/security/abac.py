"""
Attribute-Based Access Control (ABAC) Engine

Combines matching policies into an allow/deny decision.

Combination rule: candidates are ranked by priority (higher first); only
the highest tier decides, and inside that tier an explicit deny beats any
allow. No candidate at all means deny.
"""

import time
from typing import Iterable, Optional

import structlog

from saas_abac.models.context import (
    PolicyEvaluationContext,
    PolicyEvaluationResult,
    PolicyMatchTrace,
)
from saas_abac.models.policies import Policy, PolicyEffect

from .conditions import ConditionEvaluator
from .matcher import PolicyMatcher


logger = structlog.get_logger(__name__)


class ABACEngine:
    """
    Attribute-Based Access Control Engine.

    Evaluates access based on attributes of:
    - Subject: id, roles, groups, custom attributes
    - Resource: type, id, custom attributes
    - Action: the operation being performed
    - Environment: time, IP address, location, custom attributes

    The engine holds configuration only. Policies are passed in on every
    call, so one engine can serve concurrent evaluations.
    """

    def __init__(
        self,
        matcher: Optional[PolicyMatcher] = None,
        condition_evaluator: Optional[ConditionEvaluator] = None,
        slow_evaluation_ms: float = 100.0
    ):
        """
        Initialize the ABAC engine.

        Args:
            matcher: Target matcher (built from condition_evaluator if omitted)
            condition_evaluator: Evaluator for environment/custom conditions
            slow_evaluation_ms: Evaluations slower than this are logged as warnings
        """
        self.conditions = condition_evaluator or ConditionEvaluator()
        self.matcher = matcher or PolicyMatcher(self.conditions)
        self.slow_evaluation_ms = slow_evaluation_ms

    def _is_applicable(self, policy: Policy, context: PolicyEvaluationContext) -> bool:
        if not self.matcher.is_candidate(policy, context):
            return False
        return self.conditions.conditions_satisfied(policy.conditions, context)

    def evaluate(
        self,
        policies: Iterable[Policy],
        context: PolicyEvaluationContext
    ) -> PolicyEvaluationResult:
        """
        Decide whether the context's action is allowed.

        Args:
            policies: Policy snapshot for this call (not modified)
            context: Subject, resource, action and environment

        Returns:
            The decision with matched/denied policies and reasons. Never raises.
        """
        start = time.perf_counter()
        action = context.action
        resource_type = context.resource.type

        candidates: list[Policy] = []
        warnings: list[str] = []

        for policy in policies:
            policy_id = getattr(policy, "id", None) or "<no id>"
            try:
                problem = self.matcher.validate(policy)
                if problem:
                    logger.warning("policy_skipped", policy_id=policy_id, reason=problem)
                    warnings.append(problem)
                    continue

                if self._is_applicable(policy, context):
                    candidates.append(policy)
            except Exception as e:
                label = getattr(policy, "name", None) or policy_id
                message = f"Policy '{label}' skipped: evaluation error ({e})"
                logger.warning(
                    "policy_evaluation_error",
                    policy_id=policy_id,
                    error=str(e),
                    exc_info=True,
                )
                warnings.append(message)

        if not candidates:
            result = PolicyEvaluationResult(
                allowed=False,
                reasons=[f"No matching policy for action '{action}' on '{resource_type}'"],
                warnings=warnings,
            )
            return self._finish(result, context, start)

        # sorted() is stable, so ties keep input order
        ranked = sorted(candidates, key=lambda p: p.priority, reverse=True)
        top_priority = ranked[0].priority
        top_tier = [p for p in ranked if p.priority == top_priority]
        denials = [p for p in top_tier if p.effect == PolicyEffect.DENY]

        if denials:
            result = PolicyEvaluationResult(
                allowed=False,
                matched_policies=ranked,
                denied_policies=denials,
                reasons=[
                    f"Policy '{p.name}' (priority {p.priority}) denies action "
                    f"'{action}' on '{resource_type}'"
                    for p in denials
                ],
                warnings=warnings,
            )
        else:
            result = PolicyEvaluationResult(
                allowed=True,
                matched_policies=ranked,
                reasons=[
                    f"Policy '{p.name}' (priority {p.priority}) allows action "
                    f"'{action}' on '{resource_type}'"
                    for p in top_tier
                ],
                warnings=warnings,
            )

        return self._finish(result, context, start)

    def _finish(
        self,
        result: PolicyEvaluationResult,
        context: PolicyEvaluationContext,
        start: float
    ) -> PolicyEvaluationResult:
        result.evaluation_time_ms = (time.perf_counter() - start) * 1000

        logger.debug(
            "policy_evaluated",
            subject_id=context.subject.id,
            resource=f"{context.resource.type}:{context.resource.id or '*'}",
            action=context.action,
            organization_id=context.organization_id,
            **result.to_log_dict(),
        )
        if result.evaluation_time_ms > self.slow_evaluation_ms:
            logger.warning(
                "policy_evaluation_slow",
                evaluation_time_ms=round(result.evaluation_time_ms, 3),
                threshold_ms=self.slow_evaluation_ms,
            )
        return result

    def explain(self, policy: Policy, context: PolicyEvaluationContext) -> PolicyMatchTrace:
        """
        Run every matching stage of one policy against a context.

        Used by the policy tester to show why a policy does or does not apply.
        """
        trace = PolicyMatchTrace(policy_id=policy.id, policy_name=policy.name)

        problem = self.matcher.validate(policy)
        if problem:
            trace.well_formed = False
            trace.failures.append(problem)

        if not policy.is_active:
            trace.active = False
            trace.failures.append("policy is inactive")

        if not self.matcher.matches_organization(policy, context):
            trace.organization = False
            trace.failures.append(
                f"policy belongs to organization {policy.organization_id!r}, "
                f"context is {context.organization_id!r}"
            )

        if not self.matcher.matches_subject(policy, context):
            trace.subject = False
            trace.failures.append(f"subject '{context.subject.id}' does not match")

        resource_failures = self.matcher.resource_failures(policy, context)
        if resource_failures:
            trace.resource = False
            trace.failures.extend(resource_failures)

        if policy.actions and not self.matcher.matches_action(policy, context.action):
            trace.action = False
            trace.failures.append(f"action '{context.action}' not in {policy.actions}")

        condition_failures = self.conditions.check_conditions(policy.conditions, context)
        if condition_failures:
            trace.conditions = False
            trace.failures.extend(condition_failures)

        return trace


_default_engine = ABACEngine()


def evaluate(
    policies: Iterable[Policy],
    context: PolicyEvaluationContext
) -> PolicyEvaluationResult:
    """Evaluate with a default-configured engine."""
    return _default_engine.evaluate(policies, context)
