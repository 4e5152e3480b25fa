"""
Access Control Security Package

Policy matching, condition evaluation, decision making, field-level
permissions, caching and audit logging.
"""

from .abac import ABACEngine, evaluate
from .audit import AuditAction, AuditEntry, AuditLog, AuditLogger, create_audit_logger
from .cache import CachedEvaluator, EvaluationCache
from .conditions import ConditionEvaluator
from .exceptions import PolicyNotFoundError, PolicyStoreError, PolicyVersionConflictError
from .fields import FieldPermissionResolver, resolve_field_permissions
from .hierarchy import evaluate_with_hierarchy
from .matcher import PolicyMatcher
from .policies import PolicyEngine, PolicyStore

__all__ = [
    "ABACEngine",
    "evaluate",
    "ConditionEvaluator",
    "PolicyMatcher",
    "FieldPermissionResolver",
    "resolve_field_permissions",
    "evaluate_with_hierarchy",
    "CachedEvaluator",
    "EvaluationCache",
    "PolicyEngine",
    "PolicyStore",
    "PolicyStoreError",
    "PolicyNotFoundError",
    "PolicyVersionConflictError",
    "AuditAction",
    "AuditLogger",
    "AuditLog",
    "AuditEntry",
    "create_audit_logger",
]
