# app/repositories/tenant_repo.py
from sqlmodel import Session, select

from app.models.tenant import Tenant, TenantDomain

RESOLVABLE_DOMAIN_STATUSES = ("verified", "active")


class TenantRepository:
    """
    Read-only lookups used to resolve a storefront to its tenant.
    """

    def get_id_by_slug(self, session: Session, slug: str) -> str | None:
        stmt = select(Tenant.id).where(Tenant.slug == slug)
        return session.exec(stmt).first()

    def get_id_by_domain(self, session: Session, domain: str) -> str | None:
        stmt = select(TenantDomain.tenant_id).where(
            TenantDomain.domain == domain,
            TenantDomain.status.in_(RESOLVABLE_DOMAIN_STATUSES),
        )
        return session.exec(stmt).first()
