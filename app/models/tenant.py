# app/models/tenant.py
from sqlmodel import SQLModel, Field


class Tenant(SQLModel, table=True):
    """
    Merchant account. Only the columns needed to resolve a storefront
    host or slug to a tenant id are mirrored here.
    """

    __tablename__ = "tenants"

    id: str = Field(primary_key=True)
    slug: str = Field(unique=True, index=True)


class TenantDomain(SQLModel, table=True):
    """
    Custom storefront domain attached to a tenant.

    Only domains with status 'verified' or 'active' resolve.
    """

    __tablename__ = "tenant_domains"

    domain: str = Field(primary_key=True)
    tenant_id: str = Field(foreign_key="tenants.id", index=True)

    # pending | verified | active | failed
    status: str = Field(default="pending", index=True)
