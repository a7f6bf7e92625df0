"""
Multi-Tenant Service: Tenant Validation and Scoping Helpers

WHY: Centralize tenant scoping for reuse across services and routes.
Every read and write is filtered by owner_id; a row owned by another tenant
is reported exactly like a missing row so its existence is not revealed.

USAGE:
    from vitrine.services.tenant_service import get_owned, get_current_owner_id

    product = get_owned(Product, product_id, get_current_owner_id())
"""

from flask import g

from ..extensions import db
from ..models import Tenant
from .concurrency import lock_for_update


class TenantAccessError(Exception):
    """Raised when a tenant context is missing or a storefront is unknown."""


def get_current_owner_id() -> int:
    """
    Get current tenant's owner_id from Flask g context.

    Raises TenantAccessError if owner_id not set. This should never happen
    after @require_auth, but is a safety check.
    """
    if not hasattr(g, 'owner_id') or g.owner_id is None:
        raise TenantAccessError("Tenant context not established")
    return g.owner_id


def get_owned(model, entity_id, owner_id: int, *, lock: bool = False):
    """
    Fetch one tenant-owned row or None.

    The owner_id filter is part of the query, never a post-check, so a
    foreign row is indistinguishable from a missing one.
    """
    if entity_id is None:
        return None
    query = db.session.query(model).filter_by(id=entity_id, owner_id=owner_id)
    if lock:
        query = lock_for_update(query)
    return query.first()


def scoped_query(model, owner_id: int):
    """Base query for a tenant-owned model."""
    return db.session.query(model).filter_by(owner_id=owner_id)


def get_storefront_tenant(slug: str) -> Tenant:
    """Resolve the public storefront address. Inactive tenants are hidden."""
    tenant = db.session.query(Tenant).filter_by(slug=slug, is_active=True).first()
    if tenant is None:
        raise TenantAccessError("Storefront not found")
    return tenant
