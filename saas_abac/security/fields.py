"""
Field Permission Resolver

Computes which fields of a resource may be read or written once access
to the resource itself has been allowed.
"""

from typing import Iterable, Mapping, Optional

import structlog

from saas_abac.models.fields import (
    FIELD_WILDCARD,
    FieldPermission,
    FieldPermissionResult,
    get_all_fields_for_resource,
    normalize_resource_type,
)
from saas_abac.models.policies import Policy, PolicyEffect


logger = structlog.get_logger(__name__)


def _lookup(permissions: Mapping[str, FieldPermission], resource_type: str) -> Optional[FieldPermission]:
    """Find a resource type's entry, tolerating case and plural differences."""
    if resource_type in permissions:
        return permissions[resource_type]

    canonical = normalize_resource_type(resource_type) or resource_type
    for key, permission in permissions.items():
        if key.lower() == resource_type.lower():
            return permission
        if (normalize_resource_type(key) or key) == canonical:
            return permission
    return None


class FieldPermissionResolver:
    """
    Merges field permissions contributed by policies.

    Readable and writable lists are unioned across allow policies; denied
    lists are unioned across every contributing policy and always win.
    When no allow entry lists readable (or writable) fields, that side is
    unrestricted beyond the denied fields. Once one does, the lists form an
    allow-list and only an explicit '*' opens it up.
    """

    def __init__(self, default_open: bool = True):
        """
        Initialize the resolver.

        Args:
            default_open: Visibility of resource types that have no field
                permissions at all (True = every field, False = none)
        """
        self.default_open = default_open

    def resolve(
        self,
        resource_type: str,
        permissions: Optional[Mapping[str, FieldPermission]] = None,
        policies: Iterable[Policy] = (),
        known_fields: Optional[Iterable[str]] = None
    ) -> FieldPermissionResult:
        """
        Compute effective field visibility for a resource type.

        Args:
            resource_type: Type of the resource being exposed or written
            permissions: Field permissions configured outside any policy,
                keyed by resource type
            policies: Policies that matched the request; allow policies
                contribute all three lists, deny policies only their denied list
            known_fields: All fields of the type, used to expand '*'
                (defaults to the resource field catalog)

        Returns:
            The effective readable/writable/denied sets
        """
        contributions: list[tuple[FieldPermission, bool]] = []

        base = _lookup(permissions or {}, resource_type)
        if base is not None:
            contributions.append((base, True))

        for policy in policies:
            entry = _lookup(policy.field_permissions, resource_type)
            if entry is not None:
                contributions.append((entry, policy.effect == PolicyEffect.ALLOW))

        fields = set(known_fields) if known_fields is not None else set(
            get_all_fields_for_resource(resource_type)
        )

        if not contributions:
            logger.debug(
                "field_permissions_unconfigured",
                resource_type=resource_type,
                default_open=self.default_open,
            )
            return FieldPermissionResult(
                resource_type=resource_type,
                readable=set(fields) if self.default_open else set(),
                writable=set(fields) if self.default_open else set(),
                all_readable=self.default_open,
                all_writable=self.default_open,
                configured=False,
            )

        readable: set[str] = set()
        writable: set[str] = set()
        denied: set[str] = set()
        # Once any allow contribution lists fields, only an explicit '*' widens that side
        readable_listed = False
        writable_listed = False

        for entry, grants in contributions:
            denied.update(entry.denied)
            if not grants:
                continue

            if entry.readable:
                readable_listed = True
                readable.update(entry.readable)

            if entry.writable:
                writable_listed = True
                writable.update(entry.writable)

        all_readable = FIELD_WILDCARD in readable or not readable_listed
        all_writable = FIELD_WILDCARD in writable or not writable_listed

        return FieldPermissionResult(
            resource_type=resource_type,
            readable=self._expand(readable, all_readable, fields, denied),
            writable=self._expand(writable, all_writable, fields, denied),
            denied=denied,
            all_readable=all_readable,
            all_writable=all_writable,
        )

    @staticmethod
    def _expand(
        listed: set[str],
        everything: bool,
        fields: set[str],
        denied: set[str]
    ) -> set[str]:
        names = set(listed) | fields if everything else set(listed)
        names.discard(FIELD_WILDCARD)
        return names - denied


def resolve_field_permissions(
    resource_type: str,
    permissions: Optional[Mapping[str, FieldPermission]],
    matched_allow_policies: Iterable[Policy],
    known_fields: Optional[Iterable[str]] = None,
    default_open: bool = True
) -> FieldPermissionResult:
    """Resolve field permissions without keeping a resolver around."""
    resolver = FieldPermissionResolver(default_open=default_open)
    return resolver.resolve(resource_type, permissions, matched_allow_policies, known_fields)
