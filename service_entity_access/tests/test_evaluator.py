"""
Unit tests for the entity access evaluation engine.
"""

import asyncio

import pytest
from unittest.mock import AsyncMock, patch

from shared.metrics import MetricsCollector
from service_entity_access.app.cache.access_cache import AccessCache
from service_entity_access.app.engine.evaluator import (
    REASON_ADMIN_BYPASS, REASON_MATCHED, REASON_NO_MATCH, REASON_UNKNOWN_POLICY,
    EntityAccessEngine,
)
from service_entity_access.app.linkage.resolvers import LinkageResolverSet, default_resolvers
from service_entity_access.app.lookups.memory import InMemoryEntityDirectory, InMemoryPermissionChecker
from service_entity_access.app.policies.catalog import build_registry
from service_entity_access.app.policies.models import (
    CacheKey, EntityAccessPolicy, EntityType, LinkagePredicate, Principal,
    all_of, any_of, condition,
)
from service_entity_access.app.policies.registry import PolicyRegistry


class FakeClock:
    def __init__(self, now: float = 5_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def _policy(*rules, policy_id="worker.custom", entity_type=EntityType.WORKER):
    return EntityAccessPolicy(
        id=policy_id,
        name="Custom",
        description="Custom test policy",
        entity_type=entity_type,
        rules=tuple(rules),
    )


def _registry(*policies):
    registry = PolicyRegistry()
    for policy in policies:
        registry.register(policy)
    return registry


PAT = Principal(id="user-pat", email="pat@example.com")
ANN = Principal(id="user-ann", email="ann@provider.org")
STAFF = Principal(id="user-staff", email="staff@example.com")
ROOT = Principal(id="user-admin", email="admin@example.com")
NOBODY = Principal(id="user-nobody", email="nobody@example.com")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def directory():
    directory = InMemoryEntityDirectory()
    directory.add_contact("c-pat", "Pat@Example.com")
    directory.add_contact("c-ann", "ann@provider.org")
    directory.add_worker("w-1", "c-pat")
    directory.add_worker("w-2")
    directory.add_provider_contact("p-1", "c-ann")
    directory.add_benefit("w-1", "p-1")
    return directory


@pytest.fixture
def permissions():
    return InMemoryPermissionChecker({
        "user-pat": {"worker"},
        "user-ann": {"provider"},
        "user-staff": {"staff"},
        "user-admin": {"admin"},
    })


@pytest.fixture
def metrics():
    return MetricsCollector("entity_access")


def _engine(registry, permissions, directory, clock, resolvers=None, metrics=None, **kwargs):
    return EntityAccessEngine(
        registry=registry,
        resolvers=resolvers if resolvers is not None else default_resolvers(),
        cache=AccessCache(max_size=100, ttl_seconds=300, clock=clock),
        permissions=permissions,
        directory=directory,
        metrics=metrics,
        **kwargs
    )


class TestEntityAccessEngine:
    """Test cases for single-entity evaluation."""

    @pytest.fixture
    def engine(self, permissions, directory, clock, metrics):
        return _engine(build_registry(), permissions, directory, clock, metrics=metrics)

    @pytest.mark.asyncio
    async def test_worker_view_owner(self, engine, clock):
        """Test a worker may view their own record."""
        result = await engine.evaluate(PAT, "worker.view", "w-1")

        assert result.granted is True
        assert result.reason == REASON_MATCHED
        assert result.evaluated_at == clock.now

    @pytest.mark.asyncio
    async def test_bare_linkage_rule_grants_owner(self, permissions, directory, clock):
        """Test a bare linkage rule grants an owner who lacks the permission rule."""
        policy = _policy(
            condition(permission="workers.viewAll"),
            condition(linkage=LinkagePredicate.OWNS_WORKER),
            policy_id="worker.view",
        )
        engine = _engine(_registry(policy), permissions, directory, clock)

        owner = await engine.evaluate(PAT, "worker.view", "w-1")
        stranger = await engine.evaluate(NOBODY, "worker.view", "w-1")

        assert owner.granted is True
        assert owner.reason == REASON_MATCHED
        assert stranger.granted is False

    @pytest.mark.asyncio
    async def test_worker_view_other_worker(self, engine):
        """Test a worker may not view somebody else's record."""
        result = await engine.evaluate(PAT, "worker.view", "w-2")

        assert result.granted is False
        assert result.reason == REASON_NO_MATCH

    @pytest.mark.asyncio
    async def test_worker_view_benefit_provider(self, engine):
        result = await engine.evaluate(ANN, "worker.view", "w-1")

        assert result.granted is True
        assert result.reason == REASON_MATCHED

    @pytest.mark.asyncio
    async def test_staff_permission(self, engine):
        result = await engine.evaluate(STAFF, "employer.edit", "e-1")

        assert result.granted is True
        assert result.reason == REASON_MATCHED

    @pytest.mark.asyncio
    async def test_principal_without_permissions(self, engine):
        result = await engine.evaluate(NOBODY, "worker.view", "w-1")

        assert result.granted is False
        assert result.reason == REASON_NO_MATCH

    @pytest.mark.asyncio
    async def test_unknown_policy(self, engine):
        result = await engine.evaluate(STAFF, "invoice.view", "i-1")

        assert result.granted is False
        assert result.reason == REASON_UNKNOWN_POLICY

    @pytest.mark.asyncio
    async def test_unknown_policy_is_not_cached(self, permissions, directory, clock):
        """Test a policy registered after an unknown-policy denial is evaluated."""
        registry = PolicyRegistry()
        engine = _engine(registry, permissions, directory, clock)

        first = await engine.evaluate(STAFF, "employer.edit", "e-1")
        assert first.reason == REASON_UNKNOWN_POLICY
        assert len(engine.cache) == 0

        registry.register(_policy(condition(permission="staff"), policy_id="employer.edit"))
        second = await engine.evaluate(STAFF, "employer.edit", "e-1")

        assert second.granted is True
        assert second.reason == REASON_MATCHED

    @pytest.mark.asyncio
    async def test_admin_bypass_skips_rules(self, permissions, directory, clock):
        """Test admins are granted without consulting any linkage."""
        resolver = AsyncMock(return_value=False)
        resolvers = LinkageResolverSet({LinkagePredicate.OWNS_WORKER: resolver})
        registry = _registry(_policy(condition(linkage=LinkagePredicate.OWNS_WORKER)))
        engine = _engine(registry, permissions, directory, clock, resolvers=resolvers)

        result = await engine.evaluate(ROOT, "worker.custom", "w-1")

        assert result.granted is True
        assert result.reason == REASON_ADMIN_BYPASS
        resolver.assert_not_called()
        assert engine.cache.get(CacheKey(ROOT.id, "worker.custom", "w-1")) is result

    @pytest.mark.asyncio
    async def test_admin_bypass_does_not_cover_unknown_policies(self, engine):
        result = await engine.evaluate(ROOT, "invoice.view", "i-1")

        assert result.granted is False
        assert result.reason == REASON_UNKNOWN_POLICY

    @pytest.mark.asyncio
    async def test_configurable_admin_permission(self, permissions, directory, clock):
        permissions.grant("user-ops", "superuser")
        engine = _engine(build_registry(), permissions, directory, clock, admin_permission="superuser")

        ops = await engine.evaluate(Principal(id="user-ops"), "worker.view", "w-1")
        admin = await engine.evaluate(ROOT, "worker.view", "w-1")

        assert ops.reason == REASON_ADMIN_BYPASS
        assert admin.granted is False

    @pytest.mark.asyncio
    async def test_result_is_cached(self, engine, permissions):
        """Test a second call within the TTL returns the cached decision."""
        first = await engine.evaluate(PAT, "worker.view", "w-1")
        permissions.revoke("user-pat", "worker")

        second = await engine.evaluate(PAT, "worker.view", "w-1")

        assert second is first
        assert second.granted is True

    @pytest.mark.asyncio
    async def test_cache_expires(self, engine, permissions, clock):
        await engine.evaluate(PAT, "worker.view", "w-1")
        permissions.revoke("user-pat", "worker")
        clock.now += 301

        result = await engine.evaluate(PAT, "worker.view", "w-1")

        assert result.granted is False

    @pytest.mark.asyncio
    async def test_skip_cache_reevaluates_and_refreshes(self, engine, permissions):
        """Test skip_cache bypasses the read but still stores the new result."""
        await engine.evaluate(PAT, "worker.view", "w-1")
        permissions.revoke("user-pat", "worker")

        fresh = await engine.evaluate(PAT, "worker.view", "w-1", skip_cache=True)
        cached = await engine.evaluate(PAT, "worker.view", "w-1")

        assert fresh.granted is False
        assert cached is fresh

    @pytest.mark.asyncio
    async def test_invalidate_after_relationship_change(self, engine, directory):
        denied = await engine.evaluate(ANN, "worker.view", "w-2")
        assert denied.granted is False

        directory.add_benefit("w-2", "p-1")
        assert engine.invalidate(principal_id=ANN.id) == 1

        granted = await engine.evaluate(ANN, "worker.view", "w-2")
        assert granted.granted is True

    @pytest.mark.asyncio
    async def test_clear_cache(self, engine):
        await engine.evaluate(PAT, "worker.view", "w-1")
        await engine.evaluate(ANN, "worker.view", "w-1")

        assert engine.clear_cache() == 2
        assert engine.cache_stats()["size"] == 0

    @pytest.mark.asyncio
    async def test_permission_failure_propagates(self, directory, clock):
        """Test a failing permission check raises and caches nothing."""
        permissions = AsyncMock()
        permissions.has_permission.side_effect = ConnectionError("database unavailable")
        engine = _engine(build_registry(), permissions, directory, clock)

        with pytest.raises(ConnectionError):
            await engine.evaluate(PAT, "worker.view", "w-1")

        assert len(engine.cache) == 0

    @pytest.mark.asyncio
    async def test_resolver_failure_propagates(self, permissions, directory, clock):
        resolver = AsyncMock(side_effect=RuntimeError("lookup failed"))
        resolvers = LinkageResolverSet({LinkagePredicate.OWNS_WORKER: resolver})
        registry = _registry(_policy(condition(linkage=LinkagePredicate.OWNS_WORKER)))
        engine = _engine(registry, permissions, directory, clock, resolvers=resolvers)

        with pytest.raises(RuntimeError):
            await engine.evaluate(PAT, "worker.custom", "w-1")

        assert len(engine.cache) == 0

    @pytest.mark.asyncio
    async def test_missing_resolver_denies(self, permissions, directory, clock):
        """Test a linkage without a resolver is logged and counts as False."""
        registry = _registry(_policy(condition(linkage=LinkagePredicate.OWNS_WORKER)))
        engine = _engine(registry, permissions, directory, clock, resolvers=LinkageResolverSet({}))

        with patch("service_entity_access.app.linkage.resolvers.logger") as mock_logger:
            result = await engine.evaluate(PAT, "worker.custom", "w-1")

        assert len(engine.resolvers) == 0
        assert result.granted is False
        assert result.reason == REASON_NO_MATCH
        mock_logger.warning.assert_called_once()
        assert mock_logger.warning.call_args.kwargs["linkage"] == "ownsWorker"

    @pytest.mark.asyncio
    async def test_metrics_recorded(self, engine, metrics):
        await engine.evaluate(PAT, "worker.view", "w-1")
        await engine.evaluate(PAT, "worker.view", "w-1")
        await engine.evaluate(PAT, "invoice.view", "i-1")

        def decisions(**labels):
            return metrics.registry.get_sample_value("entity_access_decisions_total", labels)

        assert decisions(policy_id="worker.view", decision="granted", source="evaluated") == 1.0
        assert decisions(policy_id="worker.view", decision="granted", source="cache") == 1.0
        assert decisions(policy_id="unknown", decision="denied", source="unknown_policy") == 1.0
        assert metrics.registry.get_sample_value("entity_access_cache_entries") == 1.0
        assert metrics.registry.get_sample_value(
            "entity_access_evaluation_duration_seconds_count", {"policy_id": "worker.view"}
        ) == 1.0


class TestRuleEvaluation:
    """Test cases for rule combinators and short-circuiting."""

    @pytest.fixture
    def owns(self):
        return AsyncMock(return_value=True)

    @pytest.fixture
    def benefit(self):
        return AsyncMock(return_value=True)

    @pytest.fixture
    def resolvers(self, owns, benefit):
        return LinkageResolverSet({
            LinkagePredicate.OWNS_WORKER: owns,
            LinkagePredicate.WORKER_BENEFIT_PROVIDER: benefit,
        })

    async def _evaluate(self, policy, resolvers, permissions, directory, clock, principal=PAT):
        engine = _engine(_registry(policy), permissions, directory, clock, resolvers=resolvers)
        return await engine.evaluate(principal, policy.id, "w-1")

    @pytest.mark.asyncio
    async def test_permission_checked_before_linkage(self, resolvers, owns, permissions, directory, clock):
        """Test a failed permission leaves the linkage unevaluated."""
        policy = _policy(condition(permission="provider", linkage=LinkagePredicate.OWNS_WORKER))

        result = await self._evaluate(policy, resolvers, permissions, directory, clock)

        assert result.granted is False
        owns.assert_not_called()

    @pytest.mark.asyncio
    async def test_permission_and_linkage(self, resolvers, owns, permissions, directory, clock):
        policy = _policy(condition(permission="worker", linkage=LinkagePredicate.OWNS_WORKER))

        result = await self._evaluate(policy, resolvers, permissions, directory, clock)

        assert result.granted is True
        owns.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_all_of_stops_at_first_false(self, resolvers, owns, benefit, permissions, directory, clock):
        owns.return_value = False
        policy = _policy(all_of(
            condition(linkage=LinkagePredicate.OWNS_WORKER),
            condition(linkage=LinkagePredicate.WORKER_BENEFIT_PROVIDER),
        ))

        result = await self._evaluate(policy, resolvers, permissions, directory, clock)

        assert result.granted is False
        owns.assert_awaited_once()
        benefit.assert_not_called()

    @pytest.mark.asyncio
    async def test_all_of_requires_every_condition(self, resolvers, owns, benefit, permissions, directory, clock):
        benefit.return_value = False
        policy = _policy(all_of(
            condition(linkage=LinkagePredicate.OWNS_WORKER),
            condition(linkage=LinkagePredicate.WORKER_BENEFIT_PROVIDER),
        ))

        result = await self._evaluate(policy, resolvers, permissions, directory, clock)

        assert result.granted is False
        owns.assert_awaited_once()
        benefit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_any_of_stops_at_first_true(self, resolvers, owns, benefit, permissions, directory, clock):
        policy = _policy(any_of(
            condition(linkage=LinkagePredicate.OWNS_WORKER),
            condition(linkage=LinkagePredicate.WORKER_BENEFIT_PROVIDER),
        ))

        result = await self._evaluate(policy, resolvers, permissions, directory, clock)

        assert result.granted is True
        benefit.assert_not_called()

    @pytest.mark.asyncio
    async def test_top_level_rules_stop_at_first_match(self, resolvers, owns, benefit, permissions, directory, clock):
        policy = _policy(
            condition(permission="worker"),
            condition(linkage=LinkagePredicate.WORKER_BENEFIT_PROVIDER),
        )

        result = await self._evaluate(policy, resolvers, permissions, directory, clock)

        assert result.granted is True
        benefit.assert_not_called()

    @pytest.mark.asyncio
    async def test_later_rule_can_grant(self, resolvers, owns, benefit, permissions, directory, clock):
        owns.return_value = False
        policy = _policy(
            condition(linkage=LinkagePredicate.OWNS_WORKER),
            condition(linkage=LinkagePredicate.WORKER_BENEFIT_PROVIDER),
        )

        result = await self._evaluate(policy, resolvers, permissions, directory, clock)

        assert result.granted is True
        assert result.reason == REASON_MATCHED

    @pytest.mark.asyncio
    async def test_policy_without_rules_denies(self, resolvers, permissions, directory, clock):
        result = await self._evaluate(_policy(), resolvers, permissions, directory, clock)

        assert result.granted is False
        assert result.reason == REASON_NO_MATCH

    @pytest.mark.asyncio
    async def test_linkage_receives_policy_entity_type(self, resolvers, owns, permissions, directory, clock):
        policy = _policy(condition(linkage=LinkagePredicate.OWNS_WORKER))

        await self._evaluate(policy, resolvers, permissions, directory, clock)

        ctx, passed_directory = owns.await_args.args
        assert ctx.entity_type == EntityType.WORKER
        assert ctx.entity_id == "w-1"
        assert ctx.principal_email == PAT.email
        assert passed_directory is directory


class TestBatchEvaluation:
    """Test cases for evaluate_batch."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("entity_ids", [[], ["w-1"], ["w-1", "w-2", "w-3", "w-404", "w-5"]])
    async def test_batch_matches_sequential(self, entity_ids, permissions, directory, clock):
        """Test a batch returns what one-by-one evaluation would."""
        batch_engine = _engine(build_registry(), permissions, directory, clock)
        single_engine = _engine(build_registry(), permissions, directory, clock)

        batch = await batch_engine.evaluate_batch(ANN, "worker.view", entity_ids)

        assert list(batch) == entity_ids
        for entity_id in entity_ids:
            single = await single_engine.evaluate(ANN, "worker.view", entity_id)
            assert (batch[entity_id].granted, batch[entity_id].reason) == (single.granted, single.reason)

    @pytest.mark.asyncio
    async def test_empty_batch(self, permissions, directory, clock):
        engine = _engine(build_registry(), permissions, directory, clock)

        assert await engine.evaluate_batch(PAT, "worker.view", []) == {}

    @pytest.mark.asyncio
    async def test_duplicate_ids_collapse(self, permissions, directory, clock):
        resolver = AsyncMock(return_value=True)
        resolvers = LinkageResolverSet({LinkagePredicate.OWNS_WORKER: resolver})
        registry = _registry(_policy(condition(linkage=LinkagePredicate.OWNS_WORKER)))
        engine = _engine(registry, permissions, directory, clock, resolvers=resolvers)

        results = await engine.evaluate_batch(PAT, "worker.custom", ["w-1", "w-1", "w-2"])

        assert list(results) == ["w-1", "w-2"]
        assert resolver.await_count == 2

    @pytest.mark.asyncio
    async def test_unknown_policy_in_batch(self, permissions, directory, clock):
        engine = _engine(build_registry(), permissions, directory, clock)

        results = await engine.evaluate_batch(STAFF, "invoice.view", ["i-1", "i-2"])

        assert all(result.reason == REASON_UNKNOWN_POLICY for result in results.values())

    @pytest.mark.asyncio
    async def test_batch_uses_cache(self, permissions, directory, clock):
        engine = _engine(build_registry(), permissions, directory, clock)
        first = await engine.evaluate(PAT, "worker.view", "w-1")

        results = await engine.evaluate_batch(PAT, "worker.view", ["w-1", "w-2"])

        assert results["w-1"] is first
        assert len(engine.cache) == 2

    @pytest.mark.asyncio
    async def test_batch_failure_propagates(self, permissions, directory, clock):
        async def flaky(ctx, directory):
            if ctx.entity_id == "w-2":
                raise ConnectionError("database unavailable")
            return True

        resolvers = LinkageResolverSet({LinkagePredicate.OWNS_WORKER: flaky})
        registry = _registry(_policy(condition(linkage=LinkagePredicate.OWNS_WORKER)))
        engine = _engine(registry, permissions, directory, clock, resolvers=resolvers)

        with pytest.raises(ConnectionError):
            await engine.evaluate_batch(PAT, "worker.custom", ["w-1", "w-2", "w-3"])

    @pytest.mark.asyncio
    async def test_failed_batch_cancels_pending_evaluations(self, permissions, directory, clock):
        """Test evaluations still running when one fails never reach the cache."""
        finished = []

        async def slow_or_failing(ctx, directory):
            if ctx.entity_id == "w-fail":
                raise ConnectionError("database unavailable")
            await asyncio.sleep(0.05)
            finished.append(ctx.entity_id)
            return True

        resolvers = LinkageResolverSet({LinkagePredicate.OWNS_WORKER: slow_or_failing})
        registry = _registry(_policy(condition(linkage=LinkagePredicate.OWNS_WORKER)))
        engine = _engine(registry, permissions, directory, clock, resolvers=resolvers)

        with pytest.raises(ConnectionError):
            await engine.evaluate_batch(PAT, "worker.custom", ["w-ok", "w-fail", "w-late"])

        assert len(engine.cache) == 0
        await asyncio.sleep(0.1)

        assert finished == []
        assert len(engine.cache) == 0

    @pytest.mark.asyncio
    async def test_batch_concurrency_is_bounded(self, permissions, directory, clock):
        """Test no more than batch_concurrency evaluations run at once."""
        in_flight = 0
        peak = 0

        async def slow(ctx, directory):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return True

        resolvers = LinkageResolverSet({LinkagePredicate.OWNS_WORKER: slow})
        registry = _registry(_policy(condition(linkage=LinkagePredicate.OWNS_WORKER)))
        engine = _engine(registry, permissions, directory, clock, resolvers=resolvers, batch_concurrency=2)

        results = await engine.evaluate_batch(PAT, "worker.custom", [f"w-{i}" for i in range(6)])

        assert len(results) == 6
        assert all(result.granted for result in results.values())
        assert peak == 2
