"""
Evaluation Cache

Caches evaluation results per context and policy-set version.
"""

import hashlib
import json
import threading
import time
from collections import OrderedDict
from typing import Any, Iterable, Optional

import structlog

from saas_abac.models.context import PolicyEvaluationContext, PolicyEvaluationResult
from saas_abac.models.policies import Policy

from .abac import ABACEngine


logger = structlog.get_logger(__name__)


def uses_second_bounds(policies: Iterable[Policy]) -> bool:
    """Check whether any time window bound is given to the second (HH:MM:SS)."""
    for policy in policies:
        conditions = getattr(policy, "conditions", None)
        window = conditions.time_window if conditions else None
        if window is None:
            continue
        if any(bound and bound.count(":") == 2 for bound in (window.start, window.end)):
            return True
    return False


def make_cache_key(
    context: PolicyEvaluationContext,
    policy_set_version: Any,
    per_second: bool = False
) -> str:
    """
    Build a stable key for a context and policy-set version.

    The timestamp is truncated to the minute, the resolution of HH:MM time
    windows, or to the second when per_second is set. Custom conditions on
    env.timestamp finer than that are not distinguished.
    """
    payload = context.model_dump(mode="json", by_alias=True)
    if per_second:
        timestamp = context.environment.timestamp.replace(microsecond=0)
    else:
        timestamp = context.environment.timestamp.replace(second=0, microsecond=0)
    payload["environment"]["timestamp"] = timestamp.isoformat()
    payload["policySetVersion"] = policy_set_version

    digest = hashlib.sha256(
        json.dumps(payload, sort_keys=True, default=str).encode("utf-8")
    ).hexdigest()
    return f"policy_eval:{context.organization_id or '-'}:{digest}"


class EvaluationCache:
    """
    Thread-safe TTL cache for evaluation results.

    Expired entries are dropped on read. When full, expired entries are
    purged first, then the oldest entries are evicted.
    """

    def __init__(self, ttl_seconds: int = 300, max_entries: int = 10_000):
        """
        Initialize the cache.

        Args:
            ttl_seconds: Lifetime of a cached result
            max_entries: Maximum number of cached results
        """
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._store: OrderedDict[str, tuple[float, PolicyEvaluationResult]] = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, key: str) -> Optional[PolicyEvaluationResult]:
        with self._lock:
            item = self._store.get(key)
            if item is None:
                self.misses += 1
                return None
            expires_at, result = item
            if time.monotonic() >= expires_at:
                self._store.pop(key, None)
                self.misses += 1
                return None
            self.hits += 1
            return result

    def set(self, key: str, result: PolicyEvaluationResult) -> None:
        with self._lock:
            if key not in self._store and len(self._store) >= self.max_entries:
                self._purge_expired()
                while len(self._store) >= self.max_entries:
                    self._store.popitem(last=False)
            self._store[key] = (time.monotonic() + self.ttl_seconds, result)
            self._store.move_to_end(key)

    def _purge_expired(self) -> None:
        now = time.monotonic()
        for key in [k for k, (expires_at, _) in self._store.items() if now >= expires_at]:
            del self._store[key]

    def invalidate_prefix(self, prefix: str) -> int:
        with self._lock:
            keys = [k for k in self._store if k.startswith(prefix)]
            for key in keys:
                del self._store[key]
            return len(keys)

    def clear(self) -> None:
        with self._lock:
            self._store.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)


class CachedEvaluator:
    """
    Engine wrapper that reuses results for repeated contexts.

    Callers pass the version of the policy set they evaluate against, so a
    policy change never serves a stale decision.
    """

    def __init__(
        self,
        engine: Optional[ABACEngine] = None,
        cache: Optional[EvaluationCache] = None
    ):
        self.engine = engine if engine is not None else ABACEngine()
        self.cache = cache if cache is not None else EvaluationCache()

    def evaluate(
        self,
        policies: Iterable[Policy],
        context: PolicyEvaluationContext,
        policy_set_version: Any
    ) -> PolicyEvaluationResult:
        start = time.perf_counter()
        policies = list(policies)
        key = make_cache_key(context, policy_set_version, per_second=uses_second_bounds(policies))

        cached = self.cache.get(key)
        if cached is not None:
            logger.debug("policy_evaluation_cache_hit", cache_key=key)
            return cached.model_copy(
                deep=True,
                update={
                    "from_cache": True,
                    "evaluation_time_ms": (time.perf_counter() - start) * 1000,
                }
            )

        result = self.engine.evaluate(policies, context)
        self.cache.set(key, result.model_copy(deep=True))
        return result

    def batch_evaluate(
        self,
        policies: Iterable[Policy],
        contexts: Iterable[PolicyEvaluationContext],
        policy_set_version: Any
    ) -> list[PolicyEvaluationResult]:
        """Evaluate several contexts against the same policy snapshot."""
        policies = list(policies)
        return [self.evaluate(policies, context, policy_set_version) for context in contexts]

    def invalidate_organization(self, organization_id: str) -> int:
        removed = self.cache.invalidate_prefix(f"policy_eval:{organization_id}:")
        logger.info(
            "policy_cache_invalidated",
            organization_id=organization_id,
            removed=removed,
        )
        return removed

    def clear(self) -> None:
        self.cache.clear()

    def stats(self) -> dict[str, int]:
        return {
            "hits": self.cache.hits,
            "misses": self.cache.misses,
            "size": len(self.cache),
        }
