"""
Entity access evaluation engine.
"""

import asyncio
import time
from typing import Callable, Dict, Iterable, Optional

from shared.logging import get_logger
from shared.metrics import MetricsCollector
from shared.tracing import add_span_attributes, trace_operation
from ..cache.access_cache import AccessCache
from ..linkage.resolvers import LinkageContext, LinkageResolverSet
from ..lookups.ports import EntityDirectory, PermissionChecker
from ..policies.models import (
    AllOf, AnyOf, CacheKey, Condition, EntityAccessPolicy, EntityAccessResult,
    Principal, Rule,
)
from ..policies.registry import PolicyRegistry

REASON_UNKNOWN_POLICY = "Unknown policy"
REASON_ADMIN_BYPASS = "Admin bypass"
REASON_MATCHED = "Matched access rule"
REASON_NO_MATCH = "No matching access rules"

DEFAULT_BATCH_CONCURRENCY = 100


class EntityAccessEngine:
    """Evaluates entity access policies for a principal.

    Order of operations for one decision: cache, policy lookup, admin
    bypass, rule walk, cache store. Collaborator exceptions are never turned
    into denials; they propagate to the caller.
    """

    def __init__(
        self,
        registry: PolicyRegistry,
        resolvers: LinkageResolverSet,
        cache: AccessCache,
        permissions: PermissionChecker,
        directory: EntityDirectory,
        admin_permission: str = "admin",
        metrics: Optional[MetricsCollector] = None,
        clock: Optional[Callable[[], float]] = None,
        batch_concurrency: int = DEFAULT_BATCH_CONCURRENCY,
    ):
        self.registry = registry
        self.resolvers = resolvers
        self.cache = cache
        self.permissions = permissions
        self.directory = directory
        self.admin_permission = admin_permission
        self.metrics = metrics
        self.clock = clock or cache.clock
        self.batch_concurrency = max(1, batch_concurrency)
        self.logger = get_logger("entity_access.engine")

    async def evaluate(
        self,
        principal: Principal,
        policy_id: str,
        entity_id: str,
        skip_cache: bool = False,
    ) -> EntityAccessResult:
        """Decide whether ``principal`` passes ``policy_id`` for ``entity_id``."""
        key = CacheKey(principal.id, policy_id, entity_id)

        if not skip_cache:
            cached = self.cache.get(key)
            if cached is not None:
                self.logger.debug(
                    "Entity access cache hit",
                    user_id=principal.id,
                    policy_id=policy_id,
                    entity_id=entity_id,
                    granted=cached.granted
                )
                self._record(policy_id, cached, "cache")
                return cached

        policy = self.registry.get(policy_id)
        if policy is None:
            self.logger.warning("Unknown entity access policy", user_id=principal.id, policy_id=policy_id)
            result = EntityAccessResult(granted=False, reason=REASON_UNKNOWN_POLICY, evaluated_at=self.clock())
            # Caller-supplied ids stay out of metric labels.
            self._record("unknown", result, "unknown_policy")
            return result

        with trace_operation("entity_access.evaluate", policy_id=policy_id, entity_type=policy.entity_type.value):
            start_time = time.time()
            try:
                if await self.permissions.has_permission(principal.id, self.admin_permission):
                    result = EntityAccessResult(granted=True, reason=REASON_ADMIN_BYPASS, evaluated_at=self.clock())
                elif await self._evaluate_rules(policy, principal, entity_id):
                    result = EntityAccessResult(granted=True, reason=REASON_MATCHED, evaluated_at=self.clock())
                else:
                    result = EntityAccessResult(granted=False, reason=REASON_NO_MATCH, evaluated_at=self.clock())
            finally:
                if self.metrics:
                    self.metrics.observe_histogram(
                        "entity_access_evaluation_duration_seconds",
                        time.time() - start_time,
                        policy_id=policy_id
                    )
            add_span_attributes(granted=result.granted)

        self.cache.set(key, result)
        self._record(policy_id, result, "evaluated")

        self.logger.info(
            "Entity access granted" if result.granted else "Entity access denied",
            user_id=principal.id,
            policy_id=policy_id,
            entity_id=entity_id,
            reason=result.reason
        )
        return result

    async def evaluate_batch(
        self,
        principal: Principal,
        policy_id: str,
        entity_ids: Iterable[str],
        skip_cache: bool = False,
    ) -> Dict[str, EntityAccessResult]:
        """Evaluate one policy over many entities concurrently.

        Each id runs the full single-entity algorithm on its own; duplicate
        ids collapse to one entry. The first collaborator failure propagates
        and the evaluations still in flight are cancelled before it does.
        """
        unique_ids = list(dict.fromkeys(entity_ids))
        if not unique_ids:
            return {}

        semaphore = asyncio.Semaphore(self.batch_concurrency)

        async def _evaluate_one(entity_id: str) -> EntityAccessResult:
            async with semaphore:
                return await self.evaluate(principal, policy_id, entity_id, skip_cache=skip_cache)

        tasks = [asyncio.ensure_future(_evaluate_one(entity_id)) for entity_id in unique_ids]
        try:
            results = await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            self._update_cache_gauge()
            raise

        return dict(zip(unique_ids, results))

    async def _evaluate_rules(self, policy: EntityAccessPolicy, principal: Principal, entity_id: str) -> bool:
        # Top level rules are OR'd.
        for rule in policy.rules:
            if await self._evaluate_rule(rule, policy, principal, entity_id):
                return True
        return False

    async def _evaluate_rule(self, rule: Rule, policy: EntityAccessPolicy, principal: Principal, entity_id: str) -> bool:
        if isinstance(rule, AnyOf):
            for item in rule.conditions:
                if await self._evaluate_condition(item, policy, principal, entity_id):
                    return True
            return False

        if isinstance(rule, AllOf):
            for item in rule.conditions:
                if not await self._evaluate_condition(item, policy, principal, entity_id):
                    return False
            return True

        return await self._evaluate_condition(rule, policy, principal, entity_id)

    async def _evaluate_condition(
        self,
        condition: Condition,
        policy: EntityAccessPolicy,
        principal: Principal,
        entity_id: str,
    ) -> bool:
        if condition.permission:
            if not await self.permissions.has_permission(principal.id, condition.permission):
                return False
            if condition.linkage is None:
                return True

        if condition.linkage is not None:
            ctx = LinkageContext(
                principal_id=principal.id,
                principal_email=principal.email,
                entity_type=policy.entity_type,
                entity_id=entity_id,
            )
            return await self.resolvers.resolve(condition.linkage, ctx, self.directory)

        return False

    def invalidate(
        self,
        principal_id: Optional[str] = None,
        policy_id: Optional[str] = None,
        entity_id: Optional[str] = None,
    ) -> int:
        """Drop cached decisions after a relationship change."""
        count = self.cache.invalidate(principal_id=principal_id, policy_id=policy_id, entity_id=entity_id)
        if count > 0:
            self.logger.info(
                "Invalidated entity access cache entries",
                count=count,
                principal_id=principal_id,
                policy_id=policy_id,
                entity_id=entity_id
            )
        self._update_cache_gauge()
        return count

    def clear_cache(self) -> int:
        count = self.cache.clear()
        self.logger.info("Cleared entity access cache", count=count)
        self._update_cache_gauge()
        return count

    def cache_stats(self) -> Dict[str, float]:
        return self.cache.stats()

    def _record(self, policy_id: str, result: EntityAccessResult, source: str):
        if not self.metrics:
            return
        self.metrics.increment_counter(
            "entity_access_decisions_total",
            policy_id=policy_id,
            decision="granted" if result.granted else "denied",
            source=source
        )
        self._update_cache_gauge()

    def _update_cache_gauge(self):
        if self.metrics:
            self.metrics.set_gauge("entity_access_cache_entries", len(self.cache))
