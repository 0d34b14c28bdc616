"""
Lookup port interfaces.

The entity access engine never talks to a database directly. It asks two
collaborators:

- ``PermissionChecker``: does a user hold a permission string?
- ``EntityDirectory``: identifier-keyed lookups over contacts, workers,
  employers and trust providers.

Absence is reported as ``None`` or an empty list. Exceptions are reserved
for infrastructure failures and must reach the caller unchanged.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional


@dataclass(frozen=True)
class ContactRecord:
    id: str
    email: Optional[str] = None


@dataclass(frozen=True)
class WorkerRecord:
    id: str
    contact_id: Optional[str] = None


@dataclass(frozen=True)
class EmployerContactRecord:
    employer_id: str
    contact_id: str


@dataclass(frozen=True)
class ProviderContactRecord:
    provider_id: str
    contact_id: str


@dataclass(frozen=True)
class WorkerBenefitRecord:
    """An active trust benefit a worker receives through a provider."""
    worker_id: str
    provider_id: str
    benefit_id: Optional[str] = None


@dataclass(frozen=True)
class EmploymentRecord:
    worker_id: str
    employer_id: str


class PermissionChecker(ABC):
    """Answers permission-string checks for a user."""

    @abstractmethod
    async def has_permission(self, user_id: str, permission: str) -> bool:
        ...


class EntityDirectory(ABC):
    """Identifier-scoped entity and relationship lookups."""

    @abstractmethod
    async def get_contact(self, contact_id: str) -> Optional[ContactRecord]:
        ...

    @abstractmethod
    async def get_contact_by_email(self, email: str) -> Optional[ContactRecord]:
        """Case-insensitive email lookup."""
        ...

    @abstractmethod
    async def get_worker(self, worker_id: str) -> Optional[WorkerRecord]:
        ...

    @abstractmethod
    async def get_worker_by_contact_id(self, contact_id: str) -> Optional[WorkerRecord]:
        ...

    @abstractmethod
    async def list_employer_contacts_by_employer(self, employer_id: str) -> List[EmployerContactRecord]:
        ...

    @abstractmethod
    async def list_provider_contacts_by_contact(self, contact_id: str) -> List[ProviderContactRecord]:
        ...

    @abstractmethod
    async def list_active_benefits_by_worker(self, worker_id: str) -> List[WorkerBenefitRecord]:
        ...

    @abstractmethod
    async def list_employments_by_worker(self, worker_id: str) -> List[EmploymentRecord]:
        ...

    async def start(self):
        """Acquire resources. No-op by default."""

    async def stop(self):
        """Release resources. No-op by default."""

    async def health_check(self) -> bool:
        return True
