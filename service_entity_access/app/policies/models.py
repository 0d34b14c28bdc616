"""
Entity access policy data models.

Policies are immutable once built. Rules come in three shapes:

- ``Condition``: a permission, a linkage, or both (implicit AND);
- ``AnyOf``: OR over conditions;
- ``AllOf``: AND over conditions.

A policy's top level ``rules`` tuple is an implicit OR.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, NamedTuple, Optional, Tuple, Union

from ..errors import PolicyDefinitionError


class LinkagePredicate(str, Enum):
    """Relationships a principal can have with an entity instance."""
    OWNS_WORKER = "ownsWorker"
    WORKER_BENEFIT_PROVIDER = "workerBenefitProvider"
    WORKER_EMPLOYMENT_HISTORY = "workerEmploymentHistory"
    EMPLOYER_ASSOCIATION = "employerAssociation"
    PROVIDER_ASSOCIATION = "providerAssociation"


class EntityType(str, Enum):
    """Entity types policies can be scoped to."""
    WORKER = "worker"
    EMPLOYER = "employer"
    PROVIDER = "provider"
    CONTACT = "contact"
    POLICY = "policy"


@dataclass(frozen=True)
class Condition:
    """Smallest evaluable unit of a rule."""
    permission: Optional[str] = None
    linkage: Optional[LinkagePredicate] = None

    def __post_init__(self):
        if not self.permission and self.linkage is None:
            raise PolicyDefinitionError("A condition needs a permission, a linkage, or both")


@dataclass(frozen=True)
class AnyOf:
    """OR over conditions."""
    conditions: Tuple[Condition, ...]


@dataclass(frozen=True)
class AllOf:
    """AND over conditions."""
    conditions: Tuple[Condition, ...]


Rule = Union[Condition, AnyOf, AllOf]


@dataclass(frozen=True)
class EntityAccessPolicy:
    """Named set of rules guarding instances of one entity type."""
    id: str
    name: str
    description: str
    entity_type: EntityType
    rules: Tuple[Rule, ...] = field(default_factory=tuple)

    def summary(self) -> Dict[str, str]:
        """Public view of the policy; rule bodies stay server side."""
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "entity_type": self.entity_type.value,
        }


@dataclass(frozen=True)
class EntityAccessResult:
    """Outcome of one policy evaluation."""
    granted: bool
    evaluated_at: float
    reason: Optional[str] = None


@dataclass(frozen=True)
class Principal:
    """Authenticated caller."""
    id: str
    email: Optional[str] = None


class CacheKey(NamedTuple):
    """Cache key for one (principal, policy, entity) decision."""
    principal_id: str
    policy_id: str
    entity_id: str

    def format(self) -> str:
        """Colon-joined display form, for logs only."""
        return f"{self.principal_id}:{self.policy_id}:{self.entity_id}"

    @classmethod
    def parse(cls, value: str) -> Optional["CacheKey"]:
        """Read a colon-joined key; None unless it has exactly three parts."""
        parts = value.split(":")
        if len(parts) != 3:
            return None
        return cls(*parts)


def condition(permission: Optional[str] = None, linkage: Optional[LinkagePredicate] = None) -> Condition:
    return Condition(permission=permission, linkage=linkage)


def any_of(*conditions: Condition) -> AnyOf:
    return AnyOf(tuple(conditions))


def all_of(*conditions: Condition) -> AllOf:
    return AllOf(tuple(conditions))


def _condition_from_dict(data: Any) -> Condition:
    if not isinstance(data, dict):
        raise PolicyDefinitionError("Condition must be an object", details={"value": repr(data)})

    unknown = set(data) - {"permission", "linkage"}
    if unknown:
        raise PolicyDefinitionError(
            "Unknown condition fields",
            details={"fields": sorted(unknown)}
        )

    permission = data.get("permission")
    if permission is not None and (not isinstance(permission, str) or not permission):
        raise PolicyDefinitionError("Condition permission must be a non-empty string")

    linkage = data.get("linkage")
    if linkage is not None:
        try:
            linkage = LinkagePredicate(linkage)
        except ValueError:
            raise PolicyDefinitionError(
                f"Unknown linkage predicate '{linkage}'",
                details={"linkage": linkage}
            )

    return Condition(permission=permission, linkage=linkage)


def _conditions_from_list(data: Any, group: str) -> Tuple[Condition, ...]:
    if not isinstance(data, list) or not data:
        raise PolicyDefinitionError(f"'{group}' must be a non-empty list of conditions")
    return tuple(_condition_from_dict(item) for item in data)


def rule_from_dict(data: Any) -> Rule:
    """Parse ``{"permission", "linkage"}``, ``{"any": [...]}`` or ``{"all": [...]}``."""
    if not isinstance(data, dict):
        raise PolicyDefinitionError("Rule must be an object", details={"value": repr(data)})

    if "any" in data and "all" in data:
        raise PolicyDefinitionError("Rule cannot combine 'any' and 'all'")

    for group, factory in (("any", AnyOf), ("all", AllOf)):
        if group in data:
            if len(data) != 1:
                raise PolicyDefinitionError(f"'{group}' rule cannot carry other fields")
            return factory(_conditions_from_list(data[group], group))

    return _condition_from_dict(data)


def rule_to_dict(rule: Rule) -> Dict[str, Any]:
    """Inverse of ``rule_from_dict``; feeds policy file debug logs, never the wire."""
    if isinstance(rule, AnyOf):
        return {"any": [rule_to_dict(c) for c in rule.conditions]}
    if isinstance(rule, AllOf):
        return {"all": [rule_to_dict(c) for c in rule.conditions]}

    data: Dict[str, Any] = {}
    if rule.permission:
        data["permission"] = rule.permission
    if rule.linkage is not None:
        data["linkage"] = rule.linkage.value
    return data


def policy_from_dict(data: Any) -> EntityAccessPolicy:
    """Build a policy from its JSON definition."""
    if not isinstance(data, dict):
        raise PolicyDefinitionError("Policy definition must be an object")

    missing = [key for key in ("id", "name", "entityType", "rules") if key not in data]
    if missing:
        raise PolicyDefinitionError("Policy definition is incomplete", details={"missing": missing})

    policy_id = data["id"]
    if not isinstance(policy_id, str) or not policy_id:
        raise PolicyDefinitionError("Policy id must be a non-empty string")

    try:
        entity_type = EntityType(data["entityType"])
    except ValueError:
        raise PolicyDefinitionError(
            f"Unknown entity type '{data['entityType']}'",
            details={"policy_id": policy_id}
        )

    rules: Iterable[Any] = data["rules"]
    if not isinstance(rules, list):
        raise PolicyDefinitionError("Policy rules must be a list", details={"policy_id": policy_id})

    return EntityAccessPolicy(
        id=policy_id,
        name=str(data["name"]),
        description=str(data.get("description", "")),
        entity_type=entity_type,
        rules=tuple(rule_from_dict(rule) for rule in rules),
    )


def policies_from_list(data: Any) -> List[EntityAccessPolicy]:
    if not isinstance(data, list):
        raise PolicyDefinitionError("Policy file must contain a list of policies")
    return [policy_from_dict(item) for item in data]
