"""
Field Permission Models

Field-level visibility rules and the catalog of known resource fields.
"""

from typing import Any, Iterable, Optional

from pydantic import BaseModel, Field, field_validator


FIELD_WILDCARD = "*"


class FieldPermission(BaseModel):
    """
    Readable, writable and denied field names for one resource type.

    '*' in readable/writable means every field except the denied ones.
    Denied always wins.
    """

    readable: list[str] = Field(default_factory=list)
    writable: list[str] = Field(default_factory=list)
    denied: list[str] = Field(default_factory=list)

    @field_validator("readable", "writable", "denied", mode="before")
    @classmethod
    def _none_to_list(cls, v: Any) -> Any:
        return [] if v is None else v

    @property
    def is_empty(self) -> bool:
        return not (self.readable or self.writable or self.denied)


class FieldPermissionResult(BaseModel):
    """
    Effective field visibility for one resource type.

    When all_readable/all_writable is set, any field not in denied is
    permitted, including fields absent from the catalog.
    """

    resource_type: str
    readable: set[str] = Field(default_factory=set)
    writable: set[str] = Field(default_factory=set)
    denied: set[str] = Field(default_factory=set)
    all_readable: bool = False
    all_writable: bool = False
    configured: bool = Field(
        default=True,
        description="False when no field permissions exist for the type"
    )

    def can_read(self, field: str) -> bool:
        if field in self.denied:
            return False
        return self.all_readable or field in self.readable

    def can_write(self, field: str) -> bool:
        if field in self.denied:
            return False
        return self.all_writable or field in self.writable

    def filter_readable(self, data: dict[str, Any]) -> dict[str, Any]:
        """Strip fields the caller may not see from a resource payload."""
        return {key: value for key, value in data.items() if self.can_read(key)}

    def filter_writable(self, data: dict[str, Any]) -> dict[str, Any]:
        """Strip fields the caller may not modify from an incoming payload."""
        return {key: value for key, value in data.items() if self.can_write(key)}

    def check_fields(self, fields: Iterable[str]) -> dict[str, bool]:
        return {field: self.can_read(field) for field in fields}


# Field categories per resource type
RESOURCE_FIELDS: dict[str, dict[str, list[str]]] = {
    "User": {
        "basic": ["id", "email", "firstName", "lastName", "status", "createdAt", "updatedAt"],
        "sensitive": ["password", "mfaSecret", "securityQuestions", "lastLoginAt", "loginAttempts"],
        "metadata": ["preferences", "settings", "tags", "customAttributes"],
    },
    "Customer": {
        "basic": ["id", "name", "email", "phone", "status", "createdAt", "updatedAt"],
        "sensitive": ["ssn", "dateOfBirth", "creditScore", "income", "medicalHistory"],
        "business": ["company", "position", "industry", "employeeCount"],
        "address": ["street", "city", "state", "zipCode", "country"],
    },
    "Product": {
        "basic": ["id", "name", "description", "sku", "category", "status", "createdAt", "updatedAt"],
        "pricing": ["price", "currency", "taxRate", "discountPercentage"],
        "sensitive": ["costPrice", "profitMargin", "supplierNotes", "internalNotes"],
        "inventory": ["quantity", "reorderLevel", "warehouse", "location"],
    },
    "Order": {
        "basic": ["id", "orderNumber", "status", "customerId", "createdAt", "updatedAt"],
        "financial": ["subtotal", "tax", "shipping", "total", "currency"],
        "items": ["items", "itemCount", "totalQuantity"],
        "fulfillment": ["shippingAddress", "billingAddress", "trackingNumber", "carrier"],
    },
    "Transaction": {
        "basic": ["id", "type", "status", "amount", "currency", "createdAt"],
        "sensitive": ["cardNumber", "cvv", "bankAccount", "routingNumber"],
        "metadata": ["orderId", "customerId", "description", "reference"],
        "audit": ["ipAddress", "userAgent", "location", "device"],
    },
    "InsurancePolicy": {
        "basic": ["id", "policyNumber", "type", "status", "startDate", "endDate"],
        "coverage": ["coverageAmount", "deductible", "premium", "paymentFrequency"],
        "sensitive": ["profitMargin", "commissionStructure", "internalNotes", "riskScore"],
        "holder": ["holderId", "holderName", "beneficiaries", "dependents"],
    },
    "Organization": {
        "basic": ["id", "name", "type", "status", "code", "createdAt", "updatedAt"],
        "hierarchy": ["parentId", "childIds", "level", "path"],
        "contact": ["email", "phone", "website", "address"],
        "metadata": ["settings", "preferences", "customAttributes", "tags"],
    },
    "Policy": {
        "basic": ["id", "name", "description", "effect", "priority", "status", "createdAt", "updatedAt"],
        "conditions": ["conditions", "resourceRules", "fieldPermissions"],
        "metadata": ["tags", "version", "createdBy", "modifiedBy"],
    },
    "Role": {
        "basic": ["id", "name", "description", "status", "createdAt", "updatedAt"],
        "permissions": ["permissions", "policies", "resources"],
        "metadata": ["tags", "priority", "system"],
    },
}

_CATALOG_INDEX = {name.lower(): name for name in RESOURCE_FIELDS}


def normalize_resource_type(resource_type: str) -> Optional[str]:
    """
    Map a resource type onto its catalog name.

    Lookup is case-insensitive and accepts plural forms ("customers").
    """
    if resource_type in RESOURCE_FIELDS:
        return resource_type

    key = resource_type.lower()
    if key in _CATALOG_INDEX:
        return _CATALOG_INDEX[key]
    if key.endswith("ies") and key[:-3] + "y" in _CATALOG_INDEX:
        return _CATALOG_INDEX[key[:-3] + "y"]
    if key.endswith("s") and key[:-1] in _CATALOG_INDEX:
        return _CATALOG_INDEX[key[:-1]]
    return None


def get_field_categories(resource_type: str) -> dict[str, list[str]]:
    """Get the field categories of a resource type (empty if unknown)."""
    name = normalize_resource_type(resource_type)
    if name is None:
        return {}
    return {category: list(fields) for category, fields in RESOURCE_FIELDS[name].items()}


def get_all_fields_for_resource(resource_type: str) -> list[str]:
    """Get every known field of a resource type, in catalog order."""
    fields: list[str] = []
    for category_fields in get_field_categories(resource_type).values():
        for field in category_fields:
            if field not in fields:
                fields.append(field)
    return fields


def is_field_sensitive(resource_type: str, field: str) -> bool:
    """Check if a field is in the resource type's sensitive category."""
    return field in get_field_categories(resource_type).get("sensitive", [])
