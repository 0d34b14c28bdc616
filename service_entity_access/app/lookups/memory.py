"""
In-memory lookup adapters.

Used for local runs and tests. Every lookup is a dictionary access keyed by
identifier, mirroring the indexed queries of the PostgreSQL adapter.
"""

from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Set

from .ports import (
    ContactRecord, WorkerRecord, EmployerContactRecord, ProviderContactRecord,
    WorkerBenefitRecord, EmploymentRecord, EntityDirectory, PermissionChecker,
)


class InMemoryPermissionChecker(PermissionChecker):
    """Permission grants held in a dict of sets."""

    def __init__(self, grants: Optional[Dict[str, Iterable[str]]] = None):
        self._grants: Dict[str, Set[str]] = defaultdict(set)
        for user_id, permissions in (grants or {}).items():
            self._grants[user_id].update(permissions)

    def grant(self, user_id: str, *permissions: str) -> None:
        self._grants[user_id].update(permissions)

    def revoke(self, user_id: str, *permissions: str) -> None:
        self._grants[user_id].difference_update(permissions)

    async def has_permission(self, user_id: str, permission: str) -> bool:
        return permission in self._grants.get(user_id, ())


class InMemoryEntityDirectory(EntityDirectory):
    """Entity directory backed by plain dictionaries."""

    def __init__(self):
        self._contacts: Dict[str, ContactRecord] = {}
        self._contacts_by_email: Dict[str, str] = {}
        self._workers: Dict[str, WorkerRecord] = {}
        self._workers_by_contact: Dict[str, str] = {}
        self._employer_contacts: Dict[str, List[EmployerContactRecord]] = defaultdict(list)
        self._provider_contacts: Dict[str, List[ProviderContactRecord]] = defaultdict(list)
        self._benefits: Dict[str, List[WorkerBenefitRecord]] = defaultdict(list)
        self._employments: Dict[str, List[EmploymentRecord]] = defaultdict(list)

    def add_contact(self, contact_id: str, email: Optional[str] = None) -> ContactRecord:
        record = ContactRecord(id=contact_id, email=email)
        self._contacts[contact_id] = record
        if email:
            self._contacts_by_email[email.lower()] = contact_id
        return record

    def add_worker(self, worker_id: str, contact_id: Optional[str] = None) -> WorkerRecord:
        record = WorkerRecord(id=worker_id, contact_id=contact_id)
        self._workers[worker_id] = record
        if contact_id:
            self._workers_by_contact[contact_id] = worker_id
        return record

    def add_employer_contact(self, employer_id: str, contact_id: str) -> EmployerContactRecord:
        record = EmployerContactRecord(employer_id=employer_id, contact_id=contact_id)
        self._employer_contacts[employer_id].append(record)
        return record

    def add_provider_contact(self, provider_id: str, contact_id: str) -> ProviderContactRecord:
        record = ProviderContactRecord(provider_id=provider_id, contact_id=contact_id)
        self._provider_contacts[contact_id].append(record)
        return record

    def add_benefit(self, worker_id: str, provider_id: str, benefit_id: Optional[str] = None) -> WorkerBenefitRecord:
        record = WorkerBenefitRecord(worker_id=worker_id, provider_id=provider_id, benefit_id=benefit_id)
        self._benefits[worker_id].append(record)
        return record

    def add_employment(self, worker_id: str, employer_id: str) -> EmploymentRecord:
        record = EmploymentRecord(worker_id=worker_id, employer_id=employer_id)
        self._employments[worker_id].append(record)
        return record

    async def get_contact(self, contact_id: str) -> Optional[ContactRecord]:
        return self._contacts.get(contact_id)

    async def get_contact_by_email(self, email: str) -> Optional[ContactRecord]:
        contact_id = self._contacts_by_email.get(email.lower())
        return self._contacts.get(contact_id) if contact_id else None

    async def get_worker(self, worker_id: str) -> Optional[WorkerRecord]:
        return self._workers.get(worker_id)

    async def get_worker_by_contact_id(self, contact_id: str) -> Optional[WorkerRecord]:
        worker_id = self._workers_by_contact.get(contact_id)
        return self._workers.get(worker_id) if worker_id else None

    async def list_employer_contacts_by_employer(self, employer_id: str) -> List[EmployerContactRecord]:
        return list(self._employer_contacts.get(employer_id, ()))

    async def list_provider_contacts_by_contact(self, contact_id: str) -> List[ProviderContactRecord]:
        return list(self._provider_contacts.get(contact_id, ()))

    async def list_active_benefits_by_worker(self, worker_id: str) -> List[WorkerBenefitRecord]:
        return list(self._benefits.get(worker_id, ()))

    async def list_employments_by_worker(self, worker_id: str) -> List[EmploymentRecord]:
        return list(self._employments.get(worker_id, ()))
