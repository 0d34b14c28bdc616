"""
Request and response models for the Entity Access API.

Wire names are camelCase to match the UI client; Python attributes stay
snake_case through aliases.
"""

from typing import Annotated, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

EntityId = Annotated[str, Field(min_length=1)]


class _ApiModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class AccessCheckResponse(_ApiModel):
    """Decision for one entity."""
    granted: bool = Field(..., description="Whether access is granted")
    reason: Optional[str] = Field(None, description="Coarse diagnostic reason")


class BatchCheckRequest(_ApiModel):
    """Request model for batch access checks."""
    policy: str = Field(..., min_length=1, description="Policy ID")
    entity_ids: List[EntityId] = Field(..., alias="entityIds", description="Entity IDs to check")


class BatchCheckResponse(_ApiModel):
    """Decisions keyed by entity id."""
    results: Dict[str, AccessCheckResponse]


class PolicySummary(_ApiModel):
    """Policy listing entry. Rule bodies are never serialized."""
    id: str
    name: str
    description: str
    entity_type: str = Field(..., alias="entityType")


class PolicyListResponse(_ApiModel):
    policies: List[PolicySummary]


class CacheStatsResponse(_ApiModel):
    size: int
    max_size: int = Field(..., alias="maxSize")
    ttl_ms: int = Field(..., alias="ttlMs")


class CacheInvalidateRequest(_ApiModel):
    """Invalidation pattern.

    Omitted fields are wildcards next to the given ones. With no field
    given nothing is removed; dropping every entry takes the clear endpoint.
    """
    user_id: Optional[str] = Field(None, alias="userId", min_length=1)
    policy_id: Optional[str] = Field(None, alias="policyId", min_length=1)
    entity_id: Optional[str] = Field(None, alias="entityId", min_length=1)


class CacheInvalidateResponse(_ApiModel):
    invalidated: int


class CacheClearResponse(_ApiModel):
    cleared: bool = True
