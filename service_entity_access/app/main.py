"""
Entity Access service for 254Carbon Access Layer.
"""

from typing import Callable, Dict, Optional

from fastapi import Depends, Query

from shared.base_service import BaseService
from shared.config import ServiceConfig, get_config
from shared.errors import ValidationError

from .auth import AdminGuard, PrincipalResolver
from .cache.access_cache import AccessCache
from .engine.evaluator import EntityAccessEngine
from .linkage.resolvers import LinkageResolverSet, default_resolvers
from .lookups.memory import InMemoryEntityDirectory, InMemoryPermissionChecker
from .lookups.ports import EntityDirectory, PermissionChecker
from .lookups.postgres import PostgresEntityDirectory, PostgresPermissionChecker
from .policies.catalog import build_registry
from .policies.models import Principal
from .policies.registry import PolicyRegistry
from .schemas import (
    AccessCheckResponse, BatchCheckRequest, BatchCheckResponse,
    CacheClearResponse, CacheInvalidateRequest, CacheInvalidateResponse,
    CacheStatsResponse, PolicyListResponse, PolicySummary,
)

SERVICE_NAME = "entity_access"
SERVICE_PORT = 8013


class EntityAccessService(BaseService):
    """Entity access service implementation.

    Acts as the composition root: every collaborator can be injected, and
    whatever is not injected is built from configuration.
    """

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        *,
        registry: Optional[PolicyRegistry] = None,
        resolvers: Optional[LinkageResolverSet] = None,
        directory: Optional[EntityDirectory] = None,
        permissions: Optional[PermissionChecker] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        if config is None:
            config = get_config(SERVICE_NAME, SERVICE_PORT)
        super().__init__(SERVICE_NAME, SERVICE_PORT, config=config)

        self._build_components(registry, resolvers, directory, permissions, clock)
        self._setup_entity_access_routes()

    def _build_components(self, registry, resolvers, directory, permissions, clock):
        """Wire the engine from injected collaborators and configuration."""

        if directory is None:
            directory, permissions = self._build_lookups(permissions)
        elif permissions is None:
            permissions = InMemoryPermissionChecker()

        self.directory = directory
        self.permissions = permissions
        self.registry = registry if registry is not None else build_registry(self.config.entity_policies_file)

        cache_kwargs = {"clock": clock} if clock is not None else {}
        self.cache = AccessCache(
            max_size=self.config.entity_cache_max_size,
            ttl_seconds=self.config.entity_cache_ttl_seconds,
            **cache_kwargs
        )

        self.engine = EntityAccessEngine(
            registry=self.registry,
            resolvers=resolvers if resolvers is not None else default_resolvers(),
            cache=self.cache,
            permissions=self.permissions,
            directory=self.directory,
            admin_permission=self.config.entity_admin_permission,
            metrics=self.metrics,
            batch_concurrency=self.config.entity_batch_concurrency,
        )

        self.principal_resolver = PrincipalResolver()
        self.admin_guard = AdminGuard(
            self.principal_resolver,
            self.permissions,
            self.config.entity_admin_permission
        )

    def _build_lookups(self, permissions: Optional[PermissionChecker]):
        if self.config.entity_lookup_backend == "postgres":
            directory = PostgresEntityDirectory(self.config.postgres_dsn)
            if permissions is None:
                permissions = PostgresPermissionChecker(directory)
            return directory, permissions

        self.logger.warning("Using in-memory entity directory; no relationship data is loaded")
        if permissions is None:
            permissions = InMemoryPermissionChecker()
        return InMemoryEntityDirectory(), permissions

    def _setup_entity_access_routes(self):
        """Set up entity access routes."""
        current_principal = Depends(self.principal_resolver)
        admin_principal = Depends(self.admin_guard.dependency)

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": SERVICE_NAME,
                "message": "254Carbon Access Layer - Entity Access Service",
                "version": "1.0.0",
                "capabilities": ["policy_evaluation", "batch_evaluation", "decision_cache"],
                "policies": len(self.registry)
            }

        @self.app.get("/api/access/check", response_model=AccessCheckResponse)
        async def check_access(
            policy: str = Query(..., min_length=1, description="Policy ID, e.g. worker.view"),
            entity_id: str = Query(..., alias="entityId", min_length=1, description="Entity ID"),
            principal: Principal = current_principal,
        ):
            """Check access to a single entity."""
            result = await self.engine.evaluate(principal, policy, entity_id)
            return AccessCheckResponse(granted=result.granted, reason=result.reason)

        @self.app.post("/api/access/check-batch", response_model=BatchCheckResponse)
        async def check_access_batch(
            request: BatchCheckRequest,
            principal: Principal = current_principal,
        ):
            """Check access to several entities at once."""
            limit = self.config.entity_batch_max_size
            if len(request.entity_ids) > limit:
                raise ValidationError(
                    f"At most {limit} entity ids per batch",
                    details={"limit": limit, "received": len(request.entity_ids)}
                )

            results = await self.engine.evaluate_batch(principal, request.policy, request.entity_ids)
            return BatchCheckResponse(results={
                entity_id: AccessCheckResponse(granted=result.granted, reason=result.reason)
                for entity_id, result in results.items()
            })

        @self.app.get("/api/access/policies", response_model=PolicyListResponse)
        async def list_policies(principal: Principal = admin_principal):
            """List registered policies without their rules."""
            return PolicyListResponse(policies=[
                PolicySummary(**summary) for summary in self.registry.summaries()
            ])

        @self.app.get("/api/access/cache/stats", response_model=CacheStatsResponse)
        async def cache_stats(principal: Principal = admin_principal):
            """Decision cache statistics."""
            return CacheStatsResponse(**self.engine.cache_stats())

        @self.app.post("/api/access/cache/invalidate", response_model=CacheInvalidateResponse)
        async def invalidate_cache(
            request: Optional[CacheInvalidateRequest] = None,
            principal: Principal = admin_principal,
        ):
            """Invalidate cached decisions matching a pattern."""
            if request is None:
                request = CacheInvalidateRequest()
            count = self.engine.invalidate(
                principal_id=request.user_id,
                policy_id=request.policy_id,
                entity_id=request.entity_id
            )
            return CacheInvalidateResponse(invalidated=count)

        @self.app.post("/api/access/cache/clear", response_model=CacheClearResponse)
        async def clear_cache(principal: Principal = admin_principal):
            """Drop every cached decision."""
            self.engine.clear_cache()
            return CacheClearResponse(cleared=True)

    async def _check_dependencies(self) -> Dict[str, str]:
        """Check entity access service dependencies."""
        try:
            healthy = await self.directory.health_check()
        except Exception:
            healthy = False
        return {"entity_directory": "ok" if healthy else "error"}

    async def start(self):
        """Start entity access service components."""
        await self.directory.start()
        self.logger.info(
            "Entity access service started",
            policies=len(self.registry),
            backend=self.config.entity_lookup_backend
        )

    async def stop(self):
        """Stop entity access service components."""
        await self.directory.stop()
        self.logger.info("Entity access service stopped")


def create_app():
    """Create entity access service application."""
    service = EntityAccessService()
    return service.app


if __name__ == "__main__":
    service = EntityAccessService()
    service.run()
