"""
Cache des fiches entreprise, par identifiant (SIRET ou SIREN).

Le vérificateur ne connaît que l'interface CompanyCache (get / put). Aucune
exclusion mutuelle : deux analyses simultanées pour la même entreprise
peuvent interroger le registre deux fois, la dernière écriture gagne.
"""

import datetime
import logging
import threading
from dataclasses import dataclass, field
from typing import Protocol

from django.db import DatabaseError
from django.utils import timezone

from verifdevis.quote_analysis.models import CacheStatus, CompanyCacheEntry

logger = logging.getLogger(__name__)


@dataclass
class CachedCompany:
    status: str  # CacheStatus
    payload: dict = field(default_factory=dict)
    provider: str = "pappers"
    error_code: str = ""
    error_message: str = ""
    fetched_at: datetime.datetime | None = None
    expires_at: datetime.datetime | None = None


class CompanyCache(Protocol):
    def get(self, key: str) -> CachedCompany | None: ...

    def put(self, key: str, value: CachedCompany, ttl: int) -> None: ...


class InMemoryCompanyCache:
    """Implémentation en mémoire (tests, commande de gestion)."""

    def __init__(self):
        self._entries: dict[str, CachedCompany] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> CachedCompany | None:
        with self._lock:
            entry = self._entries.get(key)
        if entry is None or entry.expires_at <= timezone.now():
            return None
        return entry

    def put(self, key: str, value: CachedCompany, ttl: int) -> None:
        now = timezone.now()
        value.fetched_at = value.fetched_at or now
        value.expires_at = now + datetime.timedelta(seconds=ttl)
        with self._lock:
            self._entries[key] = value


class DatabaseCompanyCache:
    """Implémentation adossée à la table CompanyCacheEntry."""

    def get(self, key: str) -> CachedCompany | None:
        try:
            entry = CompanyCacheEntry.objects.filter(siret=key, expires_at__gt=timezone.now()).first()
        except DatabaseError:
            logger.exception("Company cache read failed for %s", key)
            return None
        if entry is None:
            return None
        return CachedCompany(
            status=entry.status,
            payload=entry.payload,
            provider=entry.provider,
            error_code=entry.error_code,
            error_message=entry.error_message,
            fetched_at=entry.fetched_at,
            expires_at=entry.expires_at,
        )

    def put(self, key: str, value: CachedCompany, ttl: int) -> None:
        now = timezone.now()
        try:
            CompanyCacheEntry.objects.update_or_create(
                siret=key,
                defaults={
                    "siren": key[:9],
                    "provider": value.provider,
                    "payload": value.payload,
                    "status": value.status,
                    "error_code": value.error_code,
                    "error_message": value.error_message,
                    "fetched_at": value.fetched_at or now,
                    "expires_at": now + datetime.timedelta(seconds=ttl),
                },
            )
        except DatabaseError:
            # Cache en écriture seule : une analyse ne doit pas échouer pour ça
            logger.exception("Company cache write failed for %s", key)


def ttl_for_status(status: str, config) -> int:
    return {
        CacheStatus.OK: config.cache_ttl_ok,
        CacheStatus.NOT_FOUND: config.cache_ttl_not_found,
    }.get(status, config.cache_ttl_error)
