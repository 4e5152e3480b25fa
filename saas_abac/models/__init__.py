"""
Access Control Models Package

Pydantic models for policies, evaluation contexts and field permissions.
"""

from .context import (
    EnvironmentContext,
    PolicyEvaluationContext,
    PolicyEvaluationResult,
    PolicyMatchTrace,
    ResourceContext,
    SubjectContext,
)
from .fields import (
    RESOURCE_FIELDS,
    FieldPermission,
    FieldPermissionResult,
    get_all_fields_for_resource,
    get_field_categories,
    is_field_sensitive,
)
from .policies import (
    DEFAULT_POLICY_PRIORITY,
    AttributeCondition,
    ConditionOperator,
    ConditionType,
    Policy,
    PolicyConditions,
    PolicyEffect,
    PolicyResources,
    PolicyScope,
    PolicySubjects,
    TimeWindow,
)

__all__ = [
    # Policies
    "DEFAULT_POLICY_PRIORITY",
    "AttributeCondition",
    "ConditionOperator",
    "ConditionType",
    "Policy",
    "PolicyConditions",
    "PolicyEffect",
    "PolicyResources",
    "PolicyScope",
    "PolicySubjects",
    "TimeWindow",
    # Context
    "EnvironmentContext",
    "PolicyEvaluationContext",
    "PolicyEvaluationResult",
    "PolicyMatchTrace",
    "ResourceContext",
    "SubjectContext",
    # Fields
    "RESOURCE_FIELDS",
    "FieldPermission",
    "FieldPermissionResult",
    "get_all_fields_for_resource",
    "get_field_categories",
    "is_field_sensitive",
]
