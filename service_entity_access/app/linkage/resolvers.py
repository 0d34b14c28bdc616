"""
Linkage resolvers.

A resolver answers "does the principal have this relationship to this
entity instance?". Each one understands a single entity type and returns
False for any other, for a principal without an email, and whenever a
related record is missing. Lookups are identifier-scoped and bounded;
resolvers keep no state and write nothing.
"""

from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Iterator, Mapping, Optional

from shared.logging import get_logger
from ..lookups.ports import EntityDirectory
from ..policies.models import EntityType, LinkagePredicate

logger = get_logger("entity_access.linkage")


@dataclass(frozen=True)
class LinkageContext:
    principal_id: str
    principal_email: Optional[str]
    entity_type: EntityType
    entity_id: str


LinkageResolver = Callable[[LinkageContext, EntityDirectory], Awaitable[bool]]


def _same_email(left: Optional[str], right: Optional[str]) -> bool:
    if not left or not right:
        return False
    return left.strip().lower() == right.strip().lower()


async def owns_worker(ctx: LinkageContext, directory: EntityDirectory) -> bool:
    """Principal's email matches the worker's contact email."""
    if ctx.entity_type != EntityType.WORKER or not ctx.principal_email:
        return False

    worker = await directory.get_worker(ctx.entity_id)
    if not worker or not worker.contact_id:
        return False

    contact = await directory.get_contact(worker.contact_id)
    if not contact:
        return False

    return _same_email(ctx.principal_email, contact.email)


async def worker_benefit_provider(ctx: LinkageContext, directory: EntityDirectory) -> bool:
    """Principal is a provider contact for a benefit the worker receives."""
    if ctx.entity_type != EntityType.WORKER or not ctx.principal_email:
        return False

    contact = await directory.get_contact_by_email(ctx.principal_email)
    if not contact:
        return False

    provider_contacts = await directory.list_provider_contacts_by_contact(contact.id)
    if not provider_contacts:
        return False

    benefits = await directory.list_active_benefits_by_worker(ctx.entity_id)
    if not benefits:
        return False

    provider_ids = {pc.provider_id for pc in provider_contacts}
    return any(benefit.provider_id in provider_ids for benefit in benefits)


async def worker_employment_history(ctx: LinkageContext, directory: EntityDirectory) -> bool:
    """Principal, as a worker, has been employed by this employer."""
    if ctx.entity_type != EntityType.EMPLOYER or not ctx.principal_email:
        return False

    contact = await directory.get_contact_by_email(ctx.principal_email)
    if not contact:
        return False

    worker = await directory.get_worker_by_contact_id(contact.id)
    if not worker:
        return False

    employments = await directory.list_employments_by_worker(worker.id)
    return any(employment.employer_id == ctx.entity_id for employment in employments)


async def employer_association(ctx: LinkageContext, directory: EntityDirectory) -> bool:
    """Principal is an employer contact of this employer."""
    if ctx.entity_type != EntityType.EMPLOYER or not ctx.principal_email:
        return False

    contact = await directory.get_contact_by_email(ctx.principal_email)
    if not contact:
        return False

    employer_contacts = await directory.list_employer_contacts_by_employer(ctx.entity_id)
    return any(ec.contact_id == contact.id for ec in employer_contacts)


async def provider_association(ctx: LinkageContext, directory: EntityDirectory) -> bool:
    """Principal is a contact of this trust provider."""
    if ctx.entity_type != EntityType.PROVIDER or not ctx.principal_email:
        return False

    contact = await directory.get_contact_by_email(ctx.principal_email)
    if not contact:
        return False

    provider_contacts = await directory.list_provider_contacts_by_contact(contact.id)
    return any(pc.provider_id == ctx.entity_id for pc in provider_contacts)


DEFAULT_RESOLVERS: Dict[LinkagePredicate, LinkageResolver] = {
    LinkagePredicate.OWNS_WORKER: owns_worker,
    LinkagePredicate.WORKER_BENEFIT_PROVIDER: worker_benefit_provider,
    LinkagePredicate.WORKER_EMPLOYMENT_HISTORY: worker_employment_history,
    LinkagePredicate.EMPLOYER_ASSOCIATION: employer_association,
    LinkagePredicate.PROVIDER_ASSOCIATION: provider_association,
}


class LinkageResolverSet:
    """Resolvers keyed by predicate."""

    def __init__(self, resolvers: Optional[Mapping[LinkagePredicate, LinkageResolver]] = None):
        self._resolvers: Dict[LinkagePredicate, LinkageResolver] = dict(
            DEFAULT_RESOLVERS if resolvers is None else resolvers
        )

    def get(self, predicate: LinkagePredicate) -> Optional[LinkageResolver]:
        return self._resolvers.get(predicate)

    def register(self, predicate: LinkagePredicate, resolver: LinkageResolver) -> None:
        if predicate in self._resolvers:
            raise ValueError(f"Linkage resolver '{predicate.value}' is already registered")
        self._resolvers[predicate] = resolver

    async def resolve(self, predicate: LinkagePredicate, ctx: LinkageContext, directory: EntityDirectory) -> bool:
        """Run a resolver; a predicate with no resolver is a warning and False."""
        resolver = self.get(predicate)
        if resolver is None:
            logger.warning(
                "Unknown linkage predicate",
                linkage=getattr(predicate, "value", str(predicate)),
                entity_type=ctx.entity_type.value
            )
            return False
        return bool(await resolver(ctx, directory))

    def __contains__(self, predicate: object) -> bool:
        return predicate in self._resolvers

    def __iter__(self) -> Iterator[LinkagePredicate]:
        return iter(self._resolvers)

    def __len__(self) -> int:
        return len(self._resolvers)


def default_resolvers() -> LinkageResolverSet:
    return LinkageResolverSet()
