"""
Tests for Field Permission Resolution

Tests for merging readable/writable/denied field lists across policies.
"""

import pytest

from saas_abac.models.fields import FieldPermission, get_all_fields_for_resource
from saas_abac.security.fields import FieldPermissionResolver, resolve_field_permissions


def with_fields(make_policy, name, effect="allow", **permissions_by_type):
    """A policy carrying field permissions in its metadata."""
    return make_policy(
        name=name,
        effect=effect,
        metadata={"fieldPermissions": permissions_by_type},
    )


@pytest.fixture
def resolver():
    """Create field permission resolver instance."""
    return FieldPermissionResolver()


class TestFieldPermissionResolver:
    """Tests for FieldPermissionResolver."""

    def test_denied_overrides_wildcard(self, resolver):
        permissions = {"Customer": FieldPermission(readable=["*"], denied=["ssn"])}

        result = resolver.resolve("Customer", permissions)

        assert "ssn" not in result.readable
        assert "name" in result.readable
        assert "*" not in result.readable
        assert result.all_readable is True
        assert result.can_read("ssn") is False

    def test_unconfigured_type_open(self, resolver):
        result = resolver.resolve("Customer")

        assert result.configured is False
        assert result.all_readable is True
        assert result.readable == set(get_all_fields_for_resource("Customer"))

    def test_unconfigured_type_closed(self):
        result = FieldPermissionResolver(default_open=False).resolve("Customer")

        assert result.configured is False
        assert result.readable == set()
        assert result.can_read("name") is False

    def test_allow_lists_are_unioned(self, resolver, make_policy):
        policies = [
            with_fields(make_policy, "Names", Customer={"readable": ["name"], "writable": ["name"]}),
            with_fields(make_policy, "Emails", Customer={"readable": ["email"], "writable": ["email"]}),
        ]

        result = resolver.resolve("Customer", policies=policies)

        assert result.readable == {"name", "email"}
        assert result.writable == {"name", "email"}
        assert result.all_readable is False
        assert result.can_read("ssn") is False

    def test_denied_unioned_across_policies(self, resolver, make_policy):
        policies = [
            with_fields(make_policy, "Everything", Customer={"readable": ["*"]}),
            with_fields(make_policy, "No SSN", Customer={"denied": ["ssn"]}),
            with_fields(make_policy, "No income", effect="deny", Customer={"denied": ["income"]}),
        ]

        result = resolver.resolve("Customer", policies=policies)

        assert result.denied == {"ssn", "income"}
        assert not {"ssn", "income"} & result.readable
        assert "creditScore" in result.readable

    def test_deny_policy_grants_nothing(self, resolver, make_policy):
        policies = [
            with_fields(make_policy, "Names", Customer={"readable": ["name"]}),
            with_fields(make_policy, "Deny", effect="deny", Customer={"readable": ["ssn"]}),
        ]

        result = resolver.resolve("Customer", policies=policies)

        assert result.readable == {"name"}

    def test_empty_list_means_unrestricted(self, resolver, make_policy):
        policy = with_fields(make_policy, "Write names", Customer={"writable": ["name"]})

        result = resolver.resolve("Customer", policies=[policy])

        assert result.all_readable is True
        assert result.all_writable is False
        assert result.writable == {"name"}

    def test_denied_only_entry_keeps_allow_list(self, resolver, make_policy):
        policies = [
            with_fields(make_policy, "Names", Customer={"readable": ["name"]}),
            with_fields(make_policy, "No SSN", Customer={"denied": ["ssn"]}),
        ]

        result = resolver.resolve("Customer", policies=policies)

        assert result.all_readable is False
        assert result.readable == {"name"}
        assert result.can_read("email") is False

    def test_configured_permissions_and_policies_combine(self, resolver, make_policy):
        permissions = {"Customer": FieldPermission(readable=["id"], denied=["ssn"])}
        policy = with_fields(make_policy, "Names", Customer={"readable": ["name", "ssn"]})

        result = resolver.resolve("Customer", permissions, [policy])

        assert result.readable == {"id", "name"}
        assert result.denied == {"ssn"}

    def test_resource_type_lookup_is_tolerant(self, resolver):
        permissions = {"customers": FieldPermission(readable=["name"])}

        result = resolver.resolve("Customer", permissions)

        assert result.readable == {"name"}

    def test_other_types_ignored(self, resolver, make_policy):
        policy = with_fields(make_policy, "Orders", Order={"readable": ["total"]})

        result = resolver.resolve("Customer", policies=[policy])

        assert result.configured is False

    def test_known_fields_override_catalog(self, resolver):
        permissions = {"Widget": FieldPermission(readable=["*"], denied=["secret"])}

        result = resolver.resolve("Widget", permissions, known_fields=["id", "label", "secret"])

        assert result.readable == {"id", "label"}

    def test_unknown_type_wildcard(self, resolver):
        """Test '*' on a type missing from the catalog still allows unlisted fields."""
        permissions = {"Widget": FieldPermission(readable=["*"], denied=["secret"])}

        result = resolver.resolve("Widget", permissions)

        assert result.readable == set()
        assert result.can_read("label") is True
        assert result.can_read("secret") is False

    def test_module_level_function(self):
        permissions = {"Customer": FieldPermission(readable=["*"], denied=["ssn"])}

        result = resolve_field_permissions("Customer", permissions, [])

        assert "ssn" not in result.readable
        assert "ssn" not in result.writable
