import asyncio
import dataclasses
import json
from datetime import datetime, timedelta, timezone

from services.agency_service import Agency
from services.provider_aggregator_service import ProviderAggregatorService
from services.provider_clients import AcquaintClient, PropertyDriveClient
from services.raw_record_cache_service import RawRecordCacheService


def _clients(make_client, **overrides):
    clients = {
        "propertydrive": make_client("propertydrive", {"HBR100": {"ListReff": "HBR100", "AddedDate": "2024-01-01"}}),
        "myhome": make_client("myhome", {"100": {"CreatedOnDate": "2024-02-01T00:00:00Z", "ModifiedOnDate": "2024-03-01"}}),
        "acquaint_crm": make_client("acquaint_crm", {"100": {"id": "100", "price": "300000"}}),
        "daft": make_client("daft", {"100": {"startDate": 1704103200, "price": 300000}}),
    }
    clients.update(overrides)
    return clients


def _aggregator(supabase, clients, config):
    return ProviderAggregatorService(RawRecordCacheService(supabase, config), clients, config)


def test_fetches_every_provider_and_caches(sync_config, agency, fake_supabase, make_client):
    clients = _clients(make_client)
    result = asyncio.run(_aggregator(fake_supabase, clients, sync_config).aggregate_property(agency, "HBR100"))

    assert result.fetched_count == 4
    assert result.cached_count == 0
    assert result.errors == {}

    daft = result.sources["daft"]
    assert daft.external_id == "100"
    assert daft.data["price"] == 300000
    assert daft.from_cache is False
    assert daft.api_created_at == "2024-01-01T10:00:00+00:00"

    myhome = result.sources["myhome"]
    assert myhome.api_created_at == "2024-02-01T00:00:00+00:00"
    assert myhome.api_modified_at == "2024-03-01T00:00:00+00:00"

    assert clients["propertydrive"].calls == [("uk-harbour", "HBR100")]
    assert clients["acquaint_crm"].calls == [("HBR", "100")]

    cached_rows = fake_supabase.tables["daft_properties"]
    assert len(cached_rows) == 1
    assert cached_rows[0]["external_id"] == "100"
    assert cached_rows[0]["agency_id"] == 1
    assert cached_rows[0]["last_fetched"]
    assert all(on_conflict == "agency_id,external_id" for _, on_conflict, _ in fake_supabase.upserts)


def test_fresh_cache_is_reused(sync_config, agency, fake_supabase, make_client):
    clients = _clients(make_client)
    aggregator = _aggregator(fake_supabase, clients, sync_config)

    asyncio.run(aggregator.aggregate_property(agency, "HBR100"))
    second = asyncio.run(aggregator.aggregate_property(agency, "HBR100"))

    assert second.cached_count == 4
    assert second.fetched_count == 0
    assert all(record.from_cache for record in second.sources.values())
    assert second.sources["daft"].data == {"startDate": 1704103200, "price": 300000}
    for client in clients.values():
        assert len(client.calls) == 1


def test_force_refresh_bypasses_cache(sync_config, agency, fake_supabase, make_client):
    clients = _clients(make_client)
    aggregator = _aggregator(fake_supabase, clients, sync_config)

    asyncio.run(aggregator.aggregate_property(agency, "HBR100"))
    result = asyncio.run(aggregator.aggregate_property(agency, "HBR100", force_refresh=True))

    assert result.fetched_count == 4
    for client in clients.values():
        assert len(client.calls) == 2
        assert client.refreshes == [False, True]
    # full replace, still one row per property
    assert len(fake_supabase.tables["daft_properties"]) == 1


class FeedResponse:
    ok = True
    status_code = 200

    def __init__(self, text):
        self.text = text

    def json(self):
        return json.loads(self.text)


class FeedSession:
    """Serves whatever body is currently set"""

    def __init__(self, body):
        self.headers = {}
        self.body = body
        self.requests = []

    def get(self, url, **kwargs):
        self.requests.append(url)
        return FeedResponse(self.body)


def test_force_refresh_downloads_fresh_agency_feeds(sync_config, agency, fake_supabase, make_client):
    feed_session = FeedSession(json.dumps([{"ListReff": "HBR100", "Price": "100"}]))
    xml_session = FeedSession("<data><property><id>100</id><price>100</price></property></data>")
    clients = _clients(
        make_client,
        propertydrive=PropertyDriveClient(sync_config, session=feed_session),
        acquaint_crm=AcquaintClient(sync_config, session=xml_session),
    )
    aggregator = _aggregator(fake_supabase, clients, sync_config)

    result = asyncio.run(aggregator.aggregate_property(agency, "HBR100"))
    assert result.sources["propertydrive"].data["Price"] == "100"
    assert result.sources["acquaint_crm"].data["price"] == "100"

    feed_session.body = json.dumps([{"ListReff": "HBR100", "Price": "200"}])
    xml_session.body = "<data><property><id>100</id><price>200</price></property></data>"
    result = asyncio.run(aggregator.aggregate_property(agency, "HBR100", force_refresh=True))

    assert result.sources["propertydrive"].data["Price"] == "200"
    assert result.sources["acquaint_crm"].data["price"] == "200"
    assert len(feed_session.requests) == 2
    assert len(xml_session.requests) == 2
    cached = {row["external_id"]: row["raw_data"] for row in fake_supabase.tables["acquaint_properties"]}
    assert cached["100"]["price"] == "200"


def test_stale_cache_is_refetched(sync_config, agency, fake_supabase, make_client):
    now = datetime.now(timezone.utc)
    fake_supabase.tables["daft_properties"] = [{
        "agency_id": 1, "external_id": "100", "raw_data": {"price": 1},
        "last_fetched": (now - timedelta(hours=30)).isoformat(),
    }]
    fake_supabase.tables["myhome_properties"] = [{
        "agency_id": 1, "external_id": "100", "raw_data": {"PriceAsString": "2"},
        "last_fetched": (now - timedelta(hours=1)).isoformat(),
    }]
    clients = _clients(make_client)
    result = asyncio.run(_aggregator(fake_supabase, clients, sync_config).aggregate_property(agency, "HBR100"))

    assert result.sources["daft"].from_cache is False
    assert result.sources["daft"].data["price"] == 300000
    assert result.sources["myhome"].from_cache is True
    assert result.sources["myhome"].data == {"PriceAsString": "2"}
    assert clients["myhome"].calls == []


def test_unavailable_provider_does_not_fail_aggregation(sync_config, agency, fake_supabase, make_client):
    clients = _clients(make_client, myhome=make_client("myhome", {}))
    result = asyncio.run(_aggregator(fake_supabase, clients, sync_config).aggregate_property(agency, "HBR100"))

    assert result.errors == {"myhome": "Property not found"}
    assert result.sources["myhome"].not_found is True
    assert result.sources["myhome"].available is False
    assert result.sources["daft"].available is True
    assert not fake_supabase.tables.get("myhome_properties")


def test_slow_provider_times_out(sync_config, agency, fake_supabase, make_client):
    config = dataclasses.replace(sync_config, fetch_timeout_seconds=0.1)
    slow = make_client("daft", {"100": {"price": 1}}, delay=0.5)
    clients = _clients(make_client, daft=slow)
    result = asyncio.run(_aggregator(fake_supabase, clients, config).aggregate_property(agency, "HBR100"))

    assert result.sources["daft"].error == "Timed out after 0.1s"
    assert result.sources["myhome"].available is True
    assert result.fetched_count == 3


def test_unexpected_client_error_marks_provider_unavailable(sync_config, agency, fake_supabase, make_client):
    clients = _clients(make_client, acquaint_crm=make_client("acquaint_crm", {"100": ValueError("boom")}))
    result = asyncio.run(_aggregator(fake_supabase, clients, sync_config).aggregate_property(agency, "HBR100"))

    assert result.sources["acquaint_crm"].error == "boom"
    assert result.fetched_count == 3


def test_cache_write_failure_still_serves_record(sync_config, agency, fake_supabase, make_client):
    fake_supabase.failing_tables.add("daft_properties")
    clients = _clients(make_client)
    result = asyncio.run(_aggregator(fake_supabase, clients, sync_config).aggregate_property(agency, "HBR100"))

    assert result.sources["daft"].available is True
    assert result.sources["daft"].data["price"] == 300000
    assert result.errors == {}


def test_missing_credential_skips_provider(sync_config, fake_supabase, make_client):
    agency = Agency(id=7, name="No Keys", unique_key="uk-7")
    clients = _clients(make_client)
    result = asyncio.run(_aggregator(fake_supabase, clients, sync_config).aggregate_property(agency, "HBR100"))

    assert result.sources["daft"].error == "No Daft credential"
    assert result.sources["myhome"].error == "No MyHome credential"
    assert result.sources["acquaint_crm"].error == "No Acquaint credential"
    assert clients["daft"].calls == []
    assert result.sources["propertydrive"].available is True


def test_given_property_record_is_used_for_internal_provider(sync_config, agency, fake_supabase, make_client):
    clients = _clients(make_client)
    record = {"ListReff": "HBR100", "Price": "300000", "AddedDate": "2024-04-01"}
    result = asyncio.run(
        _aggregator(fake_supabase, clients, sync_config).aggregate_property(agency, "HBR100", property_record=record)
    )

    assert result.sources["propertydrive"].data is record
    assert result.sources["propertydrive"].api_created_at == "2024-04-01T00:00:00+00:00"
    assert clients["propertydrive"].calls == []
