"""
Default entity access policy catalog.

``worker.view`` grants access if the principal:
- has 'staff', OR
- has 'worker' AND owns the worker record (contact email match), OR
- has 'provider' AND provides a benefit the worker receives.

``employer.view`` grants access if the principal:
- has 'staff', OR
- has 'worker' AND has employment history at the employer, OR
- has 'employer' AND is an employer contact of the employer.

``provider.view`` is local to this service; the other policies mirror the
administrative app. It grants access if the principal:
- has 'staff', OR
- has 'provider' AND is a contact of the trust provider.

Extra policies can be loaded from a JSON file holding a list of policy
definitions in the dict rule form (see ``models.rule_from_dict``).
"""

import json
from pathlib import Path
from typing import List, Union

from shared.logging import get_logger
from ..errors import PolicyDefinitionError
from .models import (
    EntityAccessPolicy, EntityType, LinkagePredicate,
    condition, policies_from_list, rule_to_dict,
)
from .registry import PolicyRegistry

logger = get_logger("entity_access.catalog")


WORKER_VIEW = EntityAccessPolicy(
    id="worker.view",
    name="View Worker",
    description="Access to view a worker detail page",
    entity_type=EntityType.WORKER,
    rules=(
        condition(permission="staff"),
        condition(permission="worker", linkage=LinkagePredicate.OWNS_WORKER),
        condition(permission="provider", linkage=LinkagePredicate.WORKER_BENEFIT_PROVIDER),
    ),
)

WORKER_BANS_VIEW = EntityAccessPolicy(
    id="worker.bans.view",
    name="View Worker Bans",
    description="Access to view a worker's ban records",
    entity_type=EntityType.WORKER,
    rules=WORKER_VIEW.rules,
)

WORKER_BANS_EDIT = EntityAccessPolicy(
    id="worker.bans.edit",
    name="Edit Worker Bans",
    description="Access to create, update, or delete a worker's ban records",
    entity_type=EntityType.WORKER,
    rules=(condition(permission="staff"),),
)

EMPLOYER_VIEW = EntityAccessPolicy(
    id="employer.view",
    name="View Employer",
    description="Access to view an employer detail page",
    entity_type=EntityType.EMPLOYER,
    rules=(
        condition(permission="staff"),
        condition(permission="worker", linkage=LinkagePredicate.WORKER_EMPLOYMENT_HISTORY),
        condition(permission="employer", linkage=LinkagePredicate.EMPLOYER_ASSOCIATION),
    ),
)

EMPLOYER_EDIT = EntityAccessPolicy(
    id="employer.edit",
    name="Edit Employer",
    description="Access to edit an employer record",
    entity_type=EntityType.EMPLOYER,
    rules=(condition(permission="staff"),),
)

PROVIDER_VIEW = EntityAccessPolicy(
    id="provider.view",
    name="View Trust Provider",
    description="Access to view a trust benefit provider detail page",
    entity_type=EntityType.PROVIDER,
    rules=(
        condition(permission="staff"),
        condition(permission="provider", linkage=LinkagePredicate.PROVIDER_ASSOCIATION),
    ),
)

DEFAULT_POLICIES = (
    WORKER_VIEW,
    WORKER_BANS_VIEW,
    WORKER_BANS_EDIT,
    EMPLOYER_VIEW,
    EMPLOYER_EDIT,
    PROVIDER_VIEW,
)


def register_default_policies(registry: PolicyRegistry) -> PolicyRegistry:
    """Register the built-in catalog."""
    for policy in DEFAULT_POLICIES:
        registry.register(policy)
    return registry


def load_policies_file(path: Union[str, Path]) -> List[EntityAccessPolicy]:
    """Read policy definitions from a JSON file."""
    policy_path = Path(path)
    try:
        with policy_path.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
    except OSError as exc:
        raise PolicyDefinitionError(
            f"Cannot read policy file: {exc}",
            details={"path": str(policy_path)}
        )
    except json.JSONDecodeError as exc:
        raise PolicyDefinitionError(
            f"Policy file is not valid JSON: {exc}",
            details={"path": str(policy_path)}
        )

    policies = policies_from_list(data)
    logger.info("Loaded policy file", path=str(policy_path), policies=len(policies))
    for policy in policies:
        logger.debug(
            "Loaded policy",
            policy_id=policy.id,
            entity_type=policy.entity_type.value,
            rules=[rule_to_dict(rule) for rule in policy.rules]
        )
    return policies


def build_registry(policies_file: Union[str, Path, None] = None) -> PolicyRegistry:
    """Registry with the default catalog plus any policies from ``policies_file``."""
    registry = register_default_policies(PolicyRegistry())
    if policies_file:
        for policy in load_policies_file(policies_file):
            registry.register(policy)
    return registry
