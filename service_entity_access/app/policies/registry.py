"""
Entity access policy registry.
"""

from typing import Dict, List, Optional

from shared.logging import get_logger
from ..errors import PolicyRegistrationError
from .models import EntityAccessPolicy


class PolicyRegistry:
    """In-memory catalog of entity access policies, keyed by id."""

    def __init__(self):
        self.logger = get_logger("entity_access.policy_registry")
        self._policies: Dict[str, EntityAccessPolicy] = {}

    def register(self, policy: EntityAccessPolicy) -> EntityAccessPolicy:
        """Register a policy. Re-registering an id is refused, never merged."""
        if policy.id in self._policies:
            self.logger.error("Duplicate policy registration", policy_id=policy.id)
            raise PolicyRegistrationError(policy.id)

        self._policies[policy.id] = policy
        self.logger.debug(
            "Policy registered",
            policy_id=policy.id,
            entity_type=policy.entity_type.value,
            rules=len(policy.rules)
        )
        return policy

    def get(self, policy_id: str) -> Optional[EntityAccessPolicy]:
        """Get a policy by id."""
        return self._policies.get(policy_id)

    def has(self, policy_id: str) -> bool:
        return policy_id in self._policies

    def get_all(self) -> List[EntityAccessPolicy]:
        """All policies in registration order."""
        return list(self._policies.values())

    def summaries(self) -> List[Dict[str, str]]:
        """Administrative listing without rule bodies."""
        return [policy.summary() for policy in self._policies.values()]

    def __len__(self) -> int:
        return len(self._policies)
