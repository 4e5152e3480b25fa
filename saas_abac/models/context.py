"""
Evaluation Context Models

Defines the request context passed to the evaluator and the decision it returns.
"""

from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import ConfigDict, Field
from pydantic.alias_generators import to_camel

from .policies import CamelModel, Policy


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FrozenCamelModel(CamelModel):
    """Immutable for the duration of one evaluation."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


class SubjectContext(FrozenCamelModel):
    """The user (or service) requesting access."""

    id: str
    roles: list[str] = Field(default_factory=list)
    groups: list[str] = Field(default_factory=list)
    attributes: dict[str, Any] = Field(default_factory=dict)


class ResourceContext(FrozenCamelModel):
    """The resource being accessed."""

    type: str
    id: Optional[str] = None
    attributes: dict[str, Any] = Field(default_factory=dict)


class EnvironmentContext(FrozenCamelModel):
    """Request environment: time, origin and free-form attributes."""

    timestamp: datetime = Field(default_factory=_utcnow)
    ip_address: Optional[str] = None
    location: Optional[str] = None
    attributes: dict[str, Any] = Field(default_factory=dict)


class PolicyEvaluationContext(FrozenCamelModel):
    """
    Everything the evaluator may look at.

    Built by the caller from the authenticated subject, the target resource
    and the incoming action. Attributes that need a remote lookup must be
    resolved before evaluation.
    """

    subject: SubjectContext
    resource: ResourceContext
    action: str
    environment: EnvironmentContext = Field(default_factory=EnvironmentContext)
    organization_id: Optional[str] = None

    def describe(self) -> str:
        target = self.resource.type
        if self.resource.id:
            target = f"{target}:{self.resource.id}"
        return f"{self.subject.id} -> {self.action} {target}"


class PolicyEvaluationResult(CamelModel):
    """Decision returned for one evaluation."""

    allowed: bool
    matched_policies: list[Policy] = Field(default_factory=list)
    denied_policies: list[Policy] = Field(default_factory=list)
    reasons: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(
        default_factory=list,
        description="Malformed policies skipped during evaluation"
    )
    evaluation_time_ms: float = 0.0
    from_cache: bool = False

    @property
    def decisive_policies(self) -> list[Policy]:
        """Policies of the top priority tier that produced the decision."""
        if not self.matched_policies:
            return []
        if self.denied_policies:
            return list(self.denied_policies)
        top = self.matched_policies[0].priority
        return [p for p in self.matched_policies if p.priority == top]

    def to_log_dict(self) -> dict[str, Any]:
        """Convert to dictionary for structured logging."""
        return {
            "allowed": self.allowed,
            "matched": [p.id for p in self.matched_policies],
            "denied": [p.id for p in self.denied_policies],
            "reasons": self.reasons,
            "evaluation_time_ms": round(self.evaluation_time_ms, 3),
            "from_cache": self.from_cache,
        }


class PolicyMatchTrace(CamelModel):
    """
    Stage-by-stage account of how one policy relates to a context.

    Produced by the policy tester; every stage is computed even after
    an earlier one fails.
    """

    policy_id: str
    policy_name: str
    well_formed: bool = True
    active: bool = True
    organization: bool = True
    subject: bool = True
    resource: bool = True
    action: bool = True
    conditions: bool = True
    failures: list[str] = Field(default_factory=list)

    @property
    def applicable(self) -> bool:
        return all((
            self.well_formed,
            self.active,
            self.organization,
            self.subject,
            self.resource,
            self.action,
            self.conditions,
        ))
