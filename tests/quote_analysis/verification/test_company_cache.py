import datetime

import pytest
from freezegun import freeze_time

from verifdevis.quote_analysis.config import AnalysisConfig
from verifdevis.quote_analysis.models import CacheStatus, CompanyCacheEntry
from verifdevis.quote_analysis.verification.cache import (
    CachedCompany,
    DatabaseCompanyCache,
    InMemoryCompanyCache,
    ttl_for_status,
)

from tests.utils import VALID_SIRET


def test_ttl_for_status():
    config = AnalysisConfig(cache_ttl_ok=100, cache_ttl_not_found=10, cache_ttl_error=1)

    assert ttl_for_status(CacheStatus.OK, config) == 100
    assert ttl_for_status(CacheStatus.NOT_FOUND, config) == 10
    assert ttl_for_status(CacheStatus.ERROR, config) == 1


def test_in_memory_cache_expiration():
    cache = InMemoryCompanyCache()

    with freeze_time("2024-06-01 10:00:00") as frozen:
        cache.put(VALID_SIRET, CachedCompany(status=CacheStatus.OK, payload={"name": "X"}), ttl=60)
        assert cache.get(VALID_SIRET).payload == {"name": "X"}

        frozen.tick(datetime.timedelta(seconds=61))
        assert cache.get(VALID_SIRET) is None

    assert cache.get("00000000000000") is None


@pytest.mark.django_db
def test_database_cache_roundtrip():
    cache = DatabaseCompanyCache()

    with freeze_time("2024-06-01 10:00:00"):
        cache.put(VALID_SIRET, CachedCompany(status=CacheStatus.NOT_FOUND), ttl=3600)
        cached = cache.get(VALID_SIRET)

    assert cached.status == CacheStatus.NOT_FOUND
    entry = CompanyCacheEntry.objects.get(siret=VALID_SIRET)
    assert entry.siren == VALID_SIRET[:9]
    assert entry.expires_at == datetime.datetime(2024, 6, 1, 11, 0, tzinfo=datetime.timezone.utc)


@pytest.mark.django_db
def test_database_cache_overwrites_and_expires():
    cache = DatabaseCompanyCache()

    with freeze_time("2024-06-01 10:00:00") as frozen:
        cache.put(VALID_SIRET, CachedCompany(status=CacheStatus.ERROR, error_code="timeout"), ttl=60)
        cache.put(VALID_SIRET, CachedCompany(status=CacheStatus.OK, payload={"name": "X"}), ttl=60)
        assert CompanyCacheEntry.objects.count() == 1
        assert cache.get(VALID_SIRET).status == CacheStatus.OK

        frozen.tick(datetime.timedelta(seconds=120))
        assert cache.get(VALID_SIRET) is None
