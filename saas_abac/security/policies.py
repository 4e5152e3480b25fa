"""
Policy Engine

Policy storage plus a facade combining evaluation, caching, field
permissions and auditing.
"""

import json
import threading
from pathlib import Path
from typing import Mapping, Optional, Sequence

import structlog
from pydantic import ValidationError

from config import Settings, get_settings
from saas_abac.models.context import PolicyEvaluationContext, PolicyEvaluationResult
from saas_abac.models.fields import FieldPermission, FieldPermissionResult
from saas_abac.models.policies import WILDCARD, Policy, PolicyEffect

from .abac import ABACEngine
from .audit import AuditLogger
from .cache import CachedEvaluator, EvaluationCache
from .conditions import ConditionEvaluator
from .exceptions import PolicyNotFoundError, PolicyVersionConflictError
from .fields import FieldPermissionResolver
from .hierarchy import evaluate_with_hierarchy
from .matcher import PolicyMatcher


logger = structlog.get_logger(__name__)


class PolicyStore:
    """
    Storage for access policies.

    Provides CRUD operations with optional file-based persistence. Every
    change bumps the store version, which identifies the policy snapshot
    an evaluation ran against.
    """

    def __init__(self, storage_path: Optional[Path | str] = None):
        """
        Initialize the policy store.

        Args:
            storage_path: Optional path for file-based persistence
        """
        self._policies: dict[str, Policy] = {}
        self._storage_path = Path(storage_path) if storage_path else None
        self._version = 0
        self._lock = threading.RLock()

        if self._storage_path and self._storage_path.exists():
            self._load_from_file()

    @property
    def version(self) -> int:
        return self._version

    def _load_from_file(self) -> None:
        """Load policies from storage file."""
        try:
            with open(self._storage_path) as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("policy_store_load_failed", path=str(self._storage_path), error=str(e))
            return

        for policy_data in data.get("policies", []):
            try:
                policy = Policy.model_validate(policy_data)
            except ValidationError as e:
                logger.warning(
                    "policy_store_record_invalid",
                    path=str(self._storage_path),
                    policy_id=policy_data.get("id") if isinstance(policy_data, dict) else None,
                    error=str(e),
                )
                continue
            self._policies[policy.id] = policy

        self._version = int(data.get("version", 0)) or len(self._policies)

    def _save_to_file(self) -> None:
        """Save policies to storage file."""
        if not self._storage_path:
            return

        self._storage_path.parent.mkdir(parents=True, exist_ok=True)

        data = {
            "version": self._version,
            "policies": [
                p.model_dump(mode="json", by_alias=True) for p in self._policies.values()
            ],
        }

        with open(self._storage_path, "w") as f:
            json.dump(data, f, indent=2, default=str)

    def _changed(self) -> None:
        self._version += 1
        self._save_to_file()

    def add(self, policy: Policy) -> Policy:
        """Add a policy to the store."""
        with self._lock:
            self._policies[policy.id] = policy
            self._changed()
        return policy

    def get(self, policy_id: str) -> Optional[Policy]:
        """Get a policy by ID."""
        return self._policies.get(str(policy_id))

    def update(self, policy: Policy, expected_version: Optional[int] = None) -> Policy:
        """
        Replace a stored policy with an edited copy.

        Args:
            policy: The edited policy
            expected_version: Version the edit was based on; a mismatch
                means someone else edited the policy in between

        Returns:
            The stored policy with its version bumped

        Raises:
            PolicyNotFoundError: If the policy is not stored
            PolicyVersionConflictError: If expected_version is stale
        """
        with self._lock:
            current = self._policies.get(policy.id)
            if current is None:
                raise PolicyNotFoundError(policy.id)
            if expected_version is not None and current.version != expected_version:
                raise PolicyVersionConflictError(policy.id, expected_version, current.version)

            updated = policy.model_copy(update={"version": current.version}).bump_version()
            self._policies[policy.id] = updated
            self._changed()
        return updated

    def delete(self, policy_id: str) -> bool:
        """Delete a policy by ID."""
        with self._lock:
            if str(policy_id) not in self._policies:
                return False
            del self._policies[str(policy_id)]
            self._changed()
        return True

    def list_all(self) -> list[Policy]:
        """List all policies."""
        return list(self._policies.values())

    def snapshot(self) -> tuple[list[Policy], int]:
        """Current policies together with the store version."""
        with self._lock:
            return list(self._policies.values()), self._version

    def find_by_name(self, name: str) -> list[Policy]:
        """Find policies by name (partial match)."""
        return [p for p in self._policies.values() if name.lower() in p.name.lower()]

    def find_by_tag(self, tag: str) -> list[Policy]:
        """Find policies by tag."""
        return [p for p in self._policies.values() if tag in p.tags]

    def get_active_policies(self) -> list[Policy]:
        """Get all active policies."""
        return [p for p in self._policies.values() if p.is_active]

    def find_applicable(
        self,
        organization_id: Optional[str],
        resource_type: Optional[str] = None
    ) -> list[Policy]:
        """
        Pre-filter active policies for an organization and resource type.

        System-wide policies are always included; policies without resource
        types are included for every type.
        """
        applicable = []
        for policy in self.get_active_policies():
            if policy.organization_id is not None and policy.organization_id != organization_id:
                continue
            types = policy.resources.types
            if resource_type and types and resource_type not in types and WILDCARD not in types:
                continue
            applicable.append(policy)
        return applicable


class PolicyEngine:
    """
    Access control facade.

    Evaluates requests against the policy store, caches decisions per
    policy-store version, resolves field permissions after an allow and
    records audit entries.
    """

    def __init__(
        self,
        policy_store: Optional[PolicyStore] = None,
        settings: Optional[Settings] = None,
        audit_logger: Optional[AuditLogger] = None
    ):
        """
        Initialize the policy engine.

        Args:
            policy_store: Policy store (built from settings if omitted)
            settings: Settings (the cached application settings if omitted)
            audit_logger: Optional audit logger for decisions and policy changes
        """
        self.settings = settings or get_settings()
        if policy_store is None:
            policy_store = PolicyStore(self.settings.policy_store_path)
        self.policy_store = policy_store
        self.audit = audit_logger

        conditions = ConditionEvaluator()
        self.abac = ABACEngine(
            matcher=PolicyMatcher(
                conditions,
                empty_types_match_any=self.settings.empty_resource_types_match_any,
            ),
            condition_evaluator=conditions,
            slow_evaluation_ms=self.settings.slow_evaluation_threshold_ms,
        )
        self.field_resolver = FieldPermissionResolver(
            default_open=self.settings.fields_open_by_default
        )

        self.cache: Optional[CachedEvaluator] = None
        if self.settings.policy_cache_enabled:
            self.cache = CachedEvaluator(
                self.abac,
                EvaluationCache(
                    ttl_seconds=self.settings.policy_evaluation_cache_ttl,
                    max_entries=self.settings.policy_cache_max_entries,
                ),
            )

    def evaluate_access(
        self,
        context: PolicyEvaluationContext,
        request_id: Optional[str] = None
    ) -> PolicyEvaluationResult:
        """
        Evaluate a request against the stored policies.

        Args:
            context: Subject, resource, action and environment
            request_id: Optional correlation id for the audit trail

        Returns:
            The access decision
        """
        policies, version = self.policy_store.snapshot()

        if self.cache:
            result = self.cache.evaluate(policies, context, version)
        else:
            result = self.abac.evaluate(policies, context)

        if self.audit:
            self.audit.log_evaluation(context, result, request_id=request_id)

        return result

    def can(self, context: PolicyEvaluationContext) -> bool:
        """Simple boolean check for access."""
        return self.evaluate_access(context).allowed

    def evaluate_with_fields(
        self,
        context: PolicyEvaluationContext,
        permissions: Optional[Mapping[str, FieldPermission]] = None
    ) -> tuple[PolicyEvaluationResult, Optional[FieldPermissionResult]]:
        """
        Evaluate a request and, when allowed, the visible fields.

        Field permissions come from the deciding allow policies plus the
        denied fields of every matched deny policy.

        Returns:
            The decision and the field permissions (None when denied)
        """
        result = self.evaluate_access(context)
        if not result.allowed:
            return result, None

        contributing = result.decisive_policies + [
            p for p in result.matched_policies if p.effect == PolicyEffect.DENY
        ]
        fields = self.field_resolver.resolve(context.resource.type, permissions, contributing)
        return result, fields

    def evaluate_with_hierarchy(
        self,
        context: PolicyEvaluationContext,
        ancestor_ids: Sequence[str]
    ) -> PolicyEvaluationResult:
        """Evaluate with fallback to ancestor organizations' policies."""
        policies, _ = self.policy_store.snapshot()
        result = evaluate_with_hierarchy(policies, context, ancestor_ids, engine=self.abac)

        if self.audit:
            self.audit.log_evaluation(context, result)

        return result

    def add_policy(self, policy: Policy, user_id: Optional[str] = None) -> Policy:
        """Store a new policy, applying the configured default priority."""
        if "priority" not in policy.model_fields_set:
            policy = policy.model_copy(update={"priority": self.settings.default_policy_priority})

        stored = self.policy_store.add(policy)
        self._policies_changed(stored, "created", user_id)
        return stored

    def update_policy(
        self,
        policy: Policy,
        expected_version: Optional[int] = None,
        user_id: Optional[str] = None
    ) -> Policy:
        """Store an edited policy (see PolicyStore.update)."""
        stored = self.policy_store.update(policy, expected_version=expected_version)
        self._policies_changed(stored, "updated", user_id, version=stored.version)
        return stored

    def remove_policy(self, policy_id: str, user_id: Optional[str] = None) -> bool:
        """Remove a policy."""
        policy = self.policy_store.get(policy_id)
        if policy is None:
            return False

        success = self.policy_store.delete(policy_id)
        if success:
            self._policies_changed(policy, "deleted", user_id)
        return success

    def _policies_changed(
        self,
        policy: Policy,
        change: str,
        user_id: Optional[str],
        **details
    ) -> None:
        if self.cache:
            if policy.organization_id:
                self.cache.invalidate_organization(policy.organization_id)
            else:
                self.cache.clear()

        if self.audit:
            self.audit.log_policy_change(
                user_id=user_id,
                action=change,
                policy_id=policy.id,
                policy_name=policy.name,
                organization_id=policy.organization_id,
                **details,
            )

    def clear_cache(self) -> None:
        if self.cache:
            self.cache.clear()
