"""
Hierarchical Evaluation

Falls back to policies of ancestor organizations when the requesting
organization has no policy that decides the request.
"""

from typing import Iterable, Optional, Sequence

import structlog

from saas_abac.models.context import PolicyEvaluationContext, PolicyEvaluationResult
from saas_abac.models.policies import Policy

from .abac import ABACEngine


logger = structlog.get_logger(__name__)


def _for_ancestor(context: PolicyEvaluationContext, ancestor_id: str) -> PolicyEvaluationContext:
    environment = context.environment.model_copy(
        update={
            "attributes": {
                **context.environment.attributes,
                "isInheritedPolicy": True,
                "originalOrganizationId": context.organization_id,
            }
        }
    )
    return context.model_copy(
        update={"organization_id": ancestor_id, "environment": environment}
    )


def evaluate_with_hierarchy(
    policies: Iterable[Policy],
    context: PolicyEvaluationContext,
    ancestor_ids: Sequence[str],
    engine: Optional[ABACEngine] = None
) -> PolicyEvaluationResult:
    """
    Evaluate a request against the organization and then its ancestors.

    An explicit deny or an allow at any level is final. Ancestors are
    visited nearest first and must be resolved by the caller.

    Args:
        policies: Policy snapshot covering the organization and its ancestors
        context: Request context for the requesting organization
        ancestor_ids: Ancestor organization ids, nearest first
        engine: Engine to evaluate with (a default engine if omitted)

    Returns:
        The first deciding result, or a default deny
    """
    engine = engine or ABACEngine()
    policies = list(policies)

    result = engine.evaluate(policies, context)
    if result.allowed or result.denied_policies:
        return result

    warnings = list(result.warnings)
    elapsed = result.evaluation_time_ms

    for ancestor_id in ancestor_ids:
        if ancestor_id == context.organization_id:
            continue

        inherited = engine.evaluate(policies, _for_ancestor(context, ancestor_id))
        elapsed += inherited.evaluation_time_ms

        if inherited.denied_policies:
            verdict = "Denied"
        elif inherited.allowed:
            verdict = "Allowed"
        else:
            continue

        logger.debug(
            "policy_inherited",
            organization_id=context.organization_id,
            ancestor_id=ancestor_id,
            allowed=inherited.allowed,
        )
        return inherited.model_copy(
            update={
                "reasons": [
                    *inherited.reasons,
                    f"{verdict} by inherited policy from organization: {ancestor_id}",
                ],
                "evaluation_time_ms": elapsed,
            }
        )

    return PolicyEvaluationResult(
        allowed=False,
        reasons=["No matching policy in organization hierarchy"],
        warnings=warnings,
        evaluation_time_ms=elapsed,
    )
