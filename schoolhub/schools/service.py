"""
service.py — School (tenant) service: cache-aside reads, merge-patch writes.

═══════════════════════════════════════════════════════════════════════════
READ PATH — get_by_domain
═══════════════════════════════════════════════════════════════════════════

    cache.get(domain) ── hit ──────────────────────────▶ cached copy
          │ miss (or cache unavailable)
          ▼
    repo.get_by_domain(domain) ── NotFoundError ───────▶ raised
          │
          ▼
    cache.set(domain, school, ttl) ── CacheError ──────▶ school + cache_error
          │
          ▼
    school

Entries are keyed by domain alias, so each alias of a school is cached and
expires independently. A failed cache write never undoes the read: the
school is returned in DomainLookup together with the CacheError.

═══════════════════════════════════════════════════════════════════════════
WRITE PATH — update_settings / connect_fondy
═══════════════════════════════════════════════════════════════════════════

The patch is flattened to a sparse {dotted path: value} mapping holding only
the explicitly supplied fields; the repository applies exactly those.
After a successful write every alias the school had before or has after the
write is evicted from the cache, so the next read goes to the repository.

Eviction does not close every window. A get_by_domain miss that read the
record before the write but calls cache.set after the eviction puts the
pre-write school back. Nothing evicts that entry; it is served until it
expires, so staleness after a write is bounded by cache.ttl and no longer.
"""

from __future__ import annotations

import logging
import math
import uuid
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Callable, Dict, Iterable, Optional

from schoolhub.core.cache import Cache
from schoolhub.core.errors import CacheError, GatewayVerificationError
from schoolhub.payment import (
    GeneratePaymentLinkInput,
    PaymentGateway,
    PaymentGatewayError,
)
from schoolhub.schools.models import (
    ConnectFondyInput,
    FondyCredentials,
    School,
    UpdateSchoolSettingsInput,
)
from schoolhub.schools.repository import DOMAINS_PATH, SchoolsRepository

logger = logging.getLogger(__name__)

GatewayFactory = Callable[[str, str], PaymentGateway]

VERIFICATION_AMOUNT = 1000
VERIFICATION_CURRENCY = "USD"
VERIFICATION_DESCRIPTION = "SCHOOLHUB - TESTING FONDY CREDENTIALS"

# Patch field → path in the stored record
_FIELD_PATHS: Dict[str, str] = {
    "name":                  "name",
    "color":                 "settings.color",
    "domains":               DOMAINS_PATH,
    "email":                 "settings.email",
    "show_payment_images":   "settings.show_payment_images",
    "google_analytics_code": "settings.google_analytics_code",
    "logo_url":              "settings.logo_url",
}

# Patch group → path prefix in the stored record
_GROUP_PATHS: Dict[str, str] = {
    "contact_info": "settings.contact_info",
    "pages":        "settings.pages",
}


@dataclass(frozen=True)
class DomainLookup:
    school: School
    cached: bool
    cache_error: Optional[CacheError] = None


@dataclass(frozen=True)
class WriteResult:
    applied: Dict[str, Any] = field(default_factory=dict)
    cache_error: Optional[CacheError] = None


def build_settings_update(patch: UpdateSchoolSettingsInput) -> Dict[str, Any]:
    """
    Flatten a settings patch into the sparse update sent to the repository.

    An absent group contributes nothing; a present group contributes only
    the fields set inside it.

    >>> p = UpdateSchoolSettingsInput(contact_info={"phone": "999"})
    >>> build_settings_update(p)
    {'settings.contact_info.phone': '999'}
    """
    update: Dict[str, Any] = {}
    for name, value in patch.changes().items():
        if name in _GROUP_PATHS:
            prefix = _GROUP_PATHS[name]
            for sub_name, sub_value in value.changes().items():
                update[f"{prefix}.{sub_name}"] = sub_value
        else:
            update[_FIELD_PATHS[name]] = value
    return update


def ttl_seconds(ttl: timedelta) -> int:
    return max(math.ceil(ttl.total_seconds()), 0)


class SchoolsService:

    def __init__(
        self,
        repo: SchoolsRepository,
        cache: Cache[School],
        ttl: timedelta,
        gateway_factory: GatewayFactory,
    ):
        self._repo = repo
        self._cache = cache
        self._ttl = ttl_seconds(ttl)
        self._gateway_factory = gateway_factory

    async def create(self, name: str) -> str:
        return await self._repo.create(name)

    async def get_by_id(self, school_id: str) -> School:
        return await self._repo.get_by_id(school_id)

    async def get_by_domain(self, domain: str) -> DomainLookup:
        try:
            school, found = await self._cache.get(domain)
        except CacheError as e:
            logger.warning(
                "Cache GET failed for %s, reading from repository: %s",
                domain, e.message, extra={"domain": domain},
            )
            school, found = None, False

        if found and school is not None:
            logger.debug("Cache HIT: %s", domain, extra={"domain": domain, "cache": "hit"})
            return DomainLookup(school=school, cached=True)

        logger.debug("Cache MISS: %s", domain, extra={"domain": domain, "cache": "miss"})
        school = await self._repo.get_by_domain(domain)

        try:
            await self._cache.set(domain, school, self._ttl)
        except CacheError as e:
            logger.warning(
                "Cache population failed for %s: %s",
                domain, e.message, extra={"domain": domain},
            )
            return DomainLookup(school=school, cached=False, cache_error=e)

        return DomainLookup(school=school, cached=False)

    async def update_settings(
        self, school_id: str, patch: UpdateSchoolSettingsInput
    ) -> WriteResult:
        update = build_settings_update(patch)
        before = await self._repo.get_by_id(school_id)
        if not update:
            return WriteResult()

        await self._repo.update_settings(school_id, update)
        logger.info(
            "Settings updated [school=%s, fields=%s]",
            school_id, sorted(update), extra={"school_id": school_id},
        )

        aliases = list(before.settings.domains)
        aliases.extend(update.get(DOMAINS_PATH, []))
        return WriteResult(applied=update, cache_error=await self._invalidate(aliases))

    async def connect_fondy(self, inp: ConnectFondyInput) -> WriteResult:
        client = self._gateway_factory(inp.merchant_id, inp.merchant_password)
        try:
            await client.generate_payment_link(GeneratePaymentLinkInput(
                order_id=uuid.uuid4().hex,
                amount=VERIFICATION_AMOUNT,
                currency=VERIFICATION_CURRENCY,
                order_desc=VERIFICATION_DESCRIPTION,
            ))
        except PaymentGatewayError as e:
            logger.warning(
                "Fondy credentials rejected for school %s: %s",
                inp.school_id, e, extra={"school_id": inp.school_id},
            )
            raise GatewayVerificationError("fondy", str(e), school_id=inp.school_id) from e

        credentials = FondyCredentials(
            connected=True,
            merchant_id=inp.merchant_id,
            merchant_password=inp.merchant_password,
        )
        await self._repo.set_fondy_credentials(inp.school_id, credentials)
        logger.info("Fondy connected [school=%s]", inp.school_id,
                    extra={"school_id": inp.school_id})

        school = await self._repo.get_by_id(inp.school_id)
        return WriteResult(cache_error=await self._invalidate(school.settings.domains))

    async def _invalidate(self, aliases: Iterable[str]) -> Optional[CacheError]:
        first_error: Optional[CacheError] = None
        for alias in dict.fromkeys(aliases):
            try:
                await self._cache.delete(alias)
            except CacheError as e:
                logger.error(
                    "Cache invalidation failed for %s: %s",
                    alias, e.message, extra={"domain": alias},
                )
                first_error = first_error or e
        return first_error
