# app/services/tenant_resolver.py
import logging
import re
from urllib.parse import urlsplit

from sqlmodel import Session

from app.repositories.tenant_repo import TenantRepository

logger = logging.getLogger(__name__)


def normalize_host(hostname: str) -> str:
    """
    "WWW.Loja.com.br:443" -> "loja.com.br"
    """
    host = hostname.strip().lower()
    host = re.sub(r"^www\.", "", host)
    return host.split(":", 1)[0]


def host_from_url(url: str | None) -> str | None:
    if not url:
        return None
    try:
        return urlsplit(url).hostname
    except ValueError:
        logger.info("Ignoring malformed URL header: %s", url)
        return None


class TenantResolver:
    """
    Resolve the tenant a storefront request belongs to.

    Order of reliability:
      1. explicit tenant_id
      2. store_host from the body
      3. Origin header
      4. Referer header
      5. tenant_slug from the body
    """

    def __init__(self, repo: TenantRepository, platform_domain: str):
        self.repo = repo
        self._platform_pattern = re.compile(
            r"^([a-z0-9-]+)\." + re.escape(platform_domain.lower()) + r"$"
        )

    def resolve(
        self,
        session: Session,
        *,
        tenant_id: str | None = None,
        store_host: str | None = None,
        origin: str | None = None,
        referer: str | None = None,
        tenant_slug: str | None = None,
    ) -> str | None:
        if tenant_id:
            return tenant_id

        candidates = (
            ("store_host", store_host),
            ("origin", host_from_url(origin)),
            ("referer", host_from_url(referer)),
        )
        for source, host in candidates:
            if not host:
                continue
            resolved = self.resolve_host(session, host)
            if resolved:
                logger.info("Tenant %s resolved from %s", resolved, source)
                return resolved

        if tenant_slug:
            resolved = self.repo.get_id_by_slug(session, tenant_slug.lower())
            if resolved:
                logger.info("Tenant %s resolved from slug param", resolved)
                return resolved

        return None

    def resolve_host(self, session: Session, hostname: str) -> str | None:
        """
        Platform subdomain -> custom domain -> first host label as slug.
        """
        host = normalize_host(hostname)
        if not host:
            return None

        match = self._platform_pattern.match(host)
        if match:
            return self.repo.get_id_by_slug(session, match.group(1))

        tenant_id = self.repo.get_id_by_domain(session, host)
        if tenant_id:
            return tenant_id

        return self.repo.get_id_by_slug(session, host.split(".", 1)[0])
