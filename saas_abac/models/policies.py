"""
Policy Models

Defines attribute-based access control policies for the admin platform.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from .fields import FieldPermission


DEFAULT_POLICY_PRIORITY = 100

WILDCARD = "*"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CamelModel(BaseModel):
    """Base model accepting both snake_case and camelCase field names."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


class PolicyEffect(str, Enum):
    """Effect of a policy rule."""
    ALLOW = "allow"
    DENY = "deny"


class PolicyScope(str, Enum):
    """Where a policy was defined."""
    SYSTEM = "system"
    ORGANIZATION = "organization"


class ConditionType(str, Enum):
    """Value types a condition can be declared against."""
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    ARRAY = "array"


class ConditionOperator(str, Enum):
    """Operators for attribute conditions."""
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    IN = "in"
    NOT_IN = "not_in"
    GREATER_THAN = "greater_than"
    GREATER_THAN_OR_EQUALS = "greater_than_or_equals"
    LESS_THAN = "less_than"
    LESS_THAN_OR_EQUALS = "less_than_or_equals"
    BETWEEN = "between"


# Operators permitted for each declared condition type
OPERATORS_BY_TYPE: dict[ConditionType, frozenset[ConditionOperator]] = {
    ConditionType.STRING: frozenset({
        ConditionOperator.EQUALS,
        ConditionOperator.NOT_EQUALS,
        ConditionOperator.CONTAINS,
        ConditionOperator.NOT_CONTAINS,
        ConditionOperator.STARTS_WITH,
        ConditionOperator.ENDS_WITH,
        ConditionOperator.IN,
        ConditionOperator.NOT_IN,
    }),
    ConditionType.NUMBER: frozenset({
        ConditionOperator.EQUALS,
        ConditionOperator.NOT_EQUALS,
        ConditionOperator.GREATER_THAN,
        ConditionOperator.GREATER_THAN_OR_EQUALS,
        ConditionOperator.LESS_THAN,
        ConditionOperator.LESS_THAN_OR_EQUALS,
        ConditionOperator.BETWEEN,
    }),
    ConditionType.BOOLEAN: frozenset({
        ConditionOperator.EQUALS,
    }),
    ConditionType.ARRAY: frozenset({
        ConditionOperator.CONTAINS,
        ConditionOperator.NOT_CONTAINS,
        ConditionOperator.IN,
        ConditionOperator.NOT_IN,
    }),
}


def infer_condition_type(value: Any) -> str:
    """Infer the declared type for a shorthand condition value."""
    if isinstance(value, bool):
        return ConditionType.BOOLEAN.value
    if isinstance(value, (int, float)):
        return ConditionType.NUMBER.value
    return ConditionType.STRING.value


class AttributeCondition(BaseModel):
    """
    A single attribute predicate.

    Operator and type are stored as plain strings; unknown values are
    rejected at evaluation time, where they make the condition false.
    """

    attribute: str = Field(
        ...,
        description="Attribute path (e.g. 'organizationId', 'subject.department')"
    )
    operator: str = Field(
        default=ConditionOperator.EQUALS.value,
        description="Comparison operator"
    )
    value: Any = Field(
        default=None,
        description="Value to compare against; may contain ${subject.x} placeholders"
    )
    type: str = Field(
        default=ConditionType.STRING.value,
        description="Declared type of the attribute value"
    )

    @field_validator("operator", "type", mode="before")
    @classmethod
    def _enum_to_value(cls, v: Any) -> Any:
        if isinstance(v, Enum):
            return v.value
        return v

    @classmethod
    def from_shorthand(cls, attribute: str, definition: Any) -> "AttributeCondition":
        """
        Build a condition from the map form used in policy documents.

        A scalar means equality, a list means membership and a dict
        spells out operator/value/type.
        """
        if isinstance(definition, AttributeCondition):
            return definition
        if isinstance(definition, dict):
            data = dict(definition)
            data.setdefault("attribute", attribute)
            if "type" not in data:
                data["type"] = infer_condition_type(data.get("value"))
            return cls.model_validate(data)
        if isinstance(definition, (list, tuple, set)):
            return cls(
                attribute=attribute,
                operator=ConditionOperator.IN,
                value=list(definition),
                type=ConditionType.STRING,
            )
        return cls(
            attribute=attribute,
            operator=ConditionOperator.EQUALS,
            value=definition,
            type=infer_condition_type(definition),
        )


def _coerce_condition_map(v: Any) -> Any:
    if v is None:
        return {}
    if isinstance(v, list):
        conditions = {}
        for item in v:
            if isinstance(item, AttributeCondition):
                conditions[item.attribute] = item
            elif isinstance(item, dict) and item.get("attribute"):
                conditions[item["attribute"]] = AttributeCondition.from_shorthand(
                    item["attribute"], item
                )
            else:
                raise ValueError("Condition list entries need an 'attribute'")
        return conditions
    if isinstance(v, dict):
        return {
            key: AttributeCondition.from_shorthand(key, definition)
            for key, definition in v.items()
        }
    return v


class TimeWindow(CamelModel):
    """Time-of-day and day-of-week restriction."""

    start: Optional[str] = Field(default=None, description="Start time, HH:MM")
    end: Optional[str] = Field(default=None, description="End time, HH:MM")
    timezone: str = Field(default="UTC", description="IANA timezone name")
    days_of_week: list[int] = Field(
        default_factory=list,
        description="Allowed days, 0 = Sunday"
    )


class PolicySubjects(CamelModel):
    """Who a policy applies to; any populated channel may match."""

    users: list[str] = Field(default_factory=list)
    groups: list[str] = Field(default_factory=list)
    roles: list[str] = Field(default_factory=list)
    attributes: dict[str, Any] = Field(
        default_factory=dict,
        description="Subject attributes that must all be equal"
    )

    @field_validator("users", "groups", "roles", mode="before")
    @classmethod
    def _none_to_list(cls, v: Any) -> Any:
        return [] if v is None else v

    @field_validator("attributes", mode="before")
    @classmethod
    def _none_to_dict(cls, v: Any) -> Any:
        return {} if v is None else v

    @property
    def is_empty(self) -> bool:
        return not (self.users or self.groups or self.roles or self.attributes)


class PolicyResources(CamelModel):
    """Which resources a policy applies to."""

    types: list[str] = Field(default_factory=list)
    ids: list[str] = Field(default_factory=list)
    attributes: dict[str, AttributeCondition] = Field(
        default_factory=dict,
        description="Resource attribute conditions"
    )

    @field_validator("types", "ids", mode="before")
    @classmethod
    def _none_to_list(cls, v: Any) -> Any:
        return [] if v is None else v

    @field_validator("attributes", mode="before")
    @classmethod
    def _coerce_attributes(cls, v: Any) -> Any:
        return _coerce_condition_map(v)

    @property
    def is_empty(self) -> bool:
        return not (self.types or self.ids or self.attributes)


class PolicyConditions(CamelModel):
    """Environmental and custom conditions; all present groups must hold."""

    time_window: Optional[TimeWindow] = None
    ip_addresses: list[str] = Field(default_factory=list)
    locations: list[str] = Field(default_factory=list)
    custom_conditions: dict[str, AttributeCondition] = Field(default_factory=dict)

    @field_validator("ip_addresses", "locations", mode="before")
    @classmethod
    def _none_to_list(cls, v: Any) -> Any:
        return [] if v is None else v

    @field_validator("custom_conditions", mode="before")
    @classmethod
    def _coerce_custom(cls, v: Any) -> Any:
        return _coerce_condition_map(v)


class Policy(CamelModel):
    """
    An access control policy.

    Combines subject, resource and action targeting with optional
    environmental conditions. Policies are immutable inputs to the
    evaluator; edits produce a new version.
    """

    id: str = Field(default_factory=lambda: str(uuid4()), description="Policy ID")
    name: str = Field(..., description="Policy name")
    description: Optional[str] = Field(default=None, description="Policy description")
    scope: PolicyScope = Field(default=PolicyScope.ORGANIZATION)

    effect: PolicyEffect = Field(..., description="Allow or deny effect")
    priority: int = Field(
        default=DEFAULT_POLICY_PRIORITY,
        description="Policy priority (higher wins under conflict)"
    )

    subjects: PolicySubjects = Field(default_factory=PolicySubjects)
    resources: PolicyResources = Field(default_factory=PolicyResources)
    actions: list[str] = Field(default_factory=list, description="Actions, '*' for all")
    conditions: Optional[PolicyConditions] = None

    organization_id: Optional[str] = Field(
        default=None,
        description="Owning organization (None = system-wide)"
    )
    policy_set_id: Optional[str] = None
    is_active: bool = Field(default=True, description="Whether policy is active")
    version: int = Field(default=1, description="Bumped on every edit")

    metadata: dict[str, Any] = Field(default_factory=dict)
    tags: list[str] = Field(default_factory=list)

    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    created_by: Optional[str] = Field(default=None)

    @field_validator("subjects", "resources", mode="before")
    @classmethod
    def _none_to_empty(cls, v: Any) -> Any:
        return {} if v is None else v

    @field_validator("actions", mode="before")
    @classmethod
    def _normalize_actions(cls, v: Any) -> Any:
        if v is None:
            return []
        if isinstance(v, str):
            v = [v]
        return [a.strip() if isinstance(a, str) else a for a in v]

    @property
    def field_permissions(self) -> dict[str, FieldPermission]:
        """Field permissions attached by the policy builder, per resource type."""
        raw = self.metadata.get("fieldPermissions") or self.metadata.get("field_permissions")
        if not isinstance(raw, dict):
            return {}

        permissions: dict[str, FieldPermission] = {}
        for resource_type, entry in raw.items():
            try:
                permissions[resource_type] = FieldPermission.model_validate(entry)
            except ValidationError:
                continue
        return permissions

    def bump_version(self, **changes: Any) -> "Policy":
        """Return an edited copy with the next version number."""
        return self.model_copy(
            update={**changes, "version": self.version + 1, "updated_at": _utcnow()}
        )

    def describe(self) -> str:
        return f"'{self.name}' (priority {self.priority})"
