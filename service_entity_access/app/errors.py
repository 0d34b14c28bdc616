"""
Entity access service errors.

Unknown policies and unknown linkage predicates are not errors here: they
are ordinary denials. These exceptions cover catalog mistakes, which must
stop the service at startup rather than quietly change who gets access.
"""

from typing import Any, Dict, Optional

from shared.errors import AccessLayerException


class PolicyRegistrationError(AccessLayerException):
    """A policy id was registered twice."""

    status_code = 500

    def __init__(self, policy_id: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            "POLICY_REGISTRATION_ERROR",
            f"Entity access policy '{policy_id}' is already registered",
            {"policy_id": policy_id, **(details or {})}
        )


class PolicyDefinitionError(AccessLayerException):
    """A policy or rule definition is malformed."""

    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("POLICY_DEFINITION_ERROR", message, details)
