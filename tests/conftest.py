"""
Test Configuration and Fixtures

Shared fixtures for access control tests.
"""

import os
from datetime import datetime, timezone

import pytest

# Set test environment
os.environ["ENVIRONMENT"] = "test"
os.environ["LOG_LEVEL"] = "DEBUG"


@pytest.fixture
def make_policy():
    """Factory for policies that target 'read' on Customer unless overridden."""
    from saas_abac.models.policies import Policy

    def _make_policy(**overrides):
        data = {
            "name": "Test Policy",
            "effect": "allow",
            "actions": ["read"],
            "resources": {"types": ["Customer"]},
        }
        data.update(overrides)
        return Policy.model_validate(data)

    return _make_policy


@pytest.fixture
def make_context():
    """Factory for evaluation contexts."""
    from saas_abac.models.context import (
        EnvironmentContext,
        PolicyEvaluationContext,
        ResourceContext,
        SubjectContext,
    )

    def _make_context(
        action="read",
        resource_type="Customer",
        resource_id=None,
        subject_id="user-1",
        roles=None,
        groups=None,
        subject_attributes=None,
        resource_attributes=None,
        organization_id="org-1",
        timestamp=None,
        ip_address=None,
        location=None,
        env_attributes=None,
    ):
        return PolicyEvaluationContext(
            subject=SubjectContext(
                id=subject_id,
                roles=roles or [],
                groups=groups or [],
                attributes=subject_attributes or {},
            ),
            resource=ResourceContext(
                type=resource_type,
                id=resource_id,
                attributes=resource_attributes or {},
            ),
            action=action,
            environment=EnvironmentContext(
                timestamp=timestamp or datetime(2024, 3, 13, 12, 0, tzinfo=timezone.utc),
                ip_address=ip_address,
                location=location,
                attributes=env_attributes or {},
            ),
            organization_id=organization_id,
        )

    return _make_context


@pytest.fixture
def engine():
    """Create ABAC engine instance."""
    from saas_abac.security.abac import ABACEngine

    return ABACEngine()


@pytest.fixture
def test_settings():
    """Settings isolated from the environment and the cached instance."""
    from config.settings import Settings

    return Settings(
        _env_file=None,
        environment="test",
        policy_store_path=None,
        audit_log_path=None,
    )
