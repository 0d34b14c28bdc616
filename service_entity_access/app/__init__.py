"""
Entity Access service application package.

Decides whether an authenticated principal may act on one specific entity
instance (a worker, an employer, a provider) by evaluating registered
policies: permission checks, relationship ("linkage") predicates and
any/all compositions, memoized in a bounded TTL cache.

Modules of interest:
- policies: Policy models, registry and the default catalog.
- linkage: Relationship predicates resolved against the entity directory.
- cache: LRU + TTL decision cache.
- engine: Single and batch evaluation.
- lookups: Permission and entity directory collaborators (memory, postgres).
- main: FastAPI service wiring.
"""
