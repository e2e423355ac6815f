import asyncio

import pytest
from sqlalchemy import func, select

from app.models.property import Property
from app.models.scraper_job import JobStatus, ScraperJob, ScraperRun
from app.services.collectors import CollectorError
from app.services.ingestion import UnknownSourceError
from app.services.normalizer import ManualRecord, ScrapedListingRecord
from app.services.scoring import calculate_upside_score

from conftest import DENVER, FakeCollector, FakeGeocoder, manual_records


def _properties(database):
    with database.session() as db:
        return list(db.scalars(select(Property).order_by(Property.external_id)))


def _runs(database, job_id):
    with database.session() as db:
        return list(db.scalars(select(ScraperRun).where(ScraperRun.job_id == job_id)))


def test_create_job_is_pending(make_orchestrator):
    orchestrator = make_orchestrator([FakeCollector("loopnet")])
    job = orchestrator.create_job("all", location="Denver, CO", radius_miles=10)

    assert job.job_id.startswith("scrape-")
    assert len(job.job_id) == len("scrape-") + 12
    assert job.status == JobStatus.PENDING.value
    assert orchestrator.get_job(job.job_id).radius_miles == 10


def test_create_job_rejects_unknown_source(make_orchestrator):
    orchestrator = make_orchestrator([])
    with pytest.raises(UnknownSourceError):
        orchestrator.create_job("zillow", location="Denver")


def test_denver_scenario_with_overlapping_collectors(make_orchestrator, database):
    loopnet = FakeCollector("loopnet", manual_records(range(0, 15), source="LoopNet"))
    crexi = FakeCollector("crexi", manual_records(range(10, 25), source="CREXi"))
    orchestrator = make_orchestrator([loopnet, crexi])

    job = asyncio.run(orchestrator.ingest("all", location="denver"))

    assert job.status == JobStatus.COMPLETED.value
    assert job.properties_found == 30
    assert job.properties_added <= 30
    assert job.properties_added == 25
    assert job.completed_at is not None

    stored = _properties(database)
    assert len(stored) == 25
    for prop in stored:
        expected = calculate_upside_score(prop.vacancy_rate, prop.cap_rate, prop.price_per_sqft)
        assert prop.upside_score == expected

    # Overlapping ids resolve to the last collector's record
    overlap = next(p for p in stored if p.external_id == "listing-12")
    assert overlap.source == "CREXi"


def test_location_is_geocoded_for_coordinate_collectors(make_orchestrator, geocoder):
    places = FakeCollector("places", requires_coordinates=True)
    orchestrator = make_orchestrator([places])

    job = asyncio.run(orchestrator.ingest("places", location="Denver, CO", radius_miles=5))

    assert job.status == JobStatus.COMPLETED.value
    context = places.contexts[0]
    assert (context.latitude, context.longitude) == DENVER
    assert context.radius_miles == 5
    assert (job.latitude, job.longitude) == DENVER


def test_coordinates_are_reverse_geocoded_for_text_collectors(make_orchestrator):
    scraper = FakeCollector("crexi", requires_location=True)
    orchestrator = make_orchestrator([scraper])

    job = asyncio.run(orchestrator.ingest("crexi", latitude=DENVER[0], longitude=DENVER[1]))

    assert job.status == JobStatus.COMPLETED.value
    assert scraper.contexts[0].location == "Denver"


def test_geocoding_failure_skips_coordinate_collectors(make_orchestrator):
    scraper = FakeCollector("loopnet", manual_records(range(3)), requires_location=True)
    places = FakeCollector("places", requires_coordinates=True)
    orchestrator = make_orchestrator([scraper, places], geocoder_override=FakeGeocoder(fail=True))

    job = asyncio.run(orchestrator.ingest("all", location="Denver, CO"))

    assert job.status == JobStatus.COMPLETED.value
    assert job.properties_added == 3
    assert places.contexts == []
    assert job.results["skipped"] == {"places": "no coordinates"}


def test_unresolvable_location_still_completes(make_orchestrator):
    places = FakeCollector("places", requires_coordinates=True)
    orchestrator = make_orchestrator([places])

    job = asyncio.run(orchestrator.ingest("places", location="Atlantis"))

    assert job.status == JobStatus.COMPLETED.value
    assert job.properties_found == 0


def test_one_failing_collector_does_not_stop_the_others(make_orchestrator, database):
    good = FakeCollector("loopnet", manual_records(range(4)))
    bad = FakeCollector("crexi", error=CollectorError("markup changed"))
    orchestrator = make_orchestrator([good, bad])

    job = asyncio.run(orchestrator.ingest("all", location="Denver, CO"))

    assert job.status == JobStatus.COMPLETED.value
    assert job.properties_added == 4
    assert job.results["collectors"]["crexi"]["error"] == "CollectorError: markup changed"
    assert job.error_message is None

    runs = {r.source: r for r in _runs(database, job.job_id)}
    assert runs["loopnet"].status == "completed"
    assert runs["loopnet"].properties_added == 4
    assert runs["crexi"].status == "failed"
    assert "markup changed" in runs["crexi"].error_message


def test_single_failing_collector_reaches_terminal_state(make_orchestrator, database):
    orchestrator = make_orchestrator([FakeCollector("crexi", error=RuntimeError("boom"))])

    job = asyncio.run(orchestrator.ingest("crexi", location="Denver, CO"))

    assert job.status == JobStatus.FAILED.value
    assert "crexi: RuntimeError: boom" in job.error_message
    assert job.completed_at is not None
    assert len(_runs(database, job.job_id)) == 1


def test_all_collectors_failing_aggregates_errors(make_orchestrator):
    orchestrator = make_orchestrator([
        FakeCollector("loopnet", error=CollectorError("blocked")),
        FakeCollector("crexi", error=CollectorError("login failed")),
    ])

    job = asyncio.run(orchestrator.ingest("all", location="Denver, CO"))

    assert job.status == JobStatus.FAILED.value
    assert "loopnet: CollectorError: blocked" in job.error_message
    assert "crexi: CollectorError: login failed" in job.error_message


def test_empty_collectors_complete_with_zero(make_orchestrator):
    orchestrator = make_orchestrator([FakeCollector("loopnet"), FakeCollector("crexi")])
    job = asyncio.run(orchestrator.ingest("all", location="Denver, CO"))

    assert job.status == JobStatus.COMPLETED.value
    assert job.properties_found == 0
    assert job.properties_added == 0


def test_slow_collector_times_out(make_orchestrator, database):
    slow = FakeCollector("crexi", manual_records(range(2)), delay=5)
    fast = FakeCollector("loopnet", manual_records(range(10, 12)))
    orchestrator = make_orchestrator([slow, fast], timeout=0.2)

    job = asyncio.run(orchestrator.ingest("all", location="Denver, CO"))

    assert job.status == JobStatus.COMPLETED.value
    assert job.properties_added == 2
    assert "timed out" in job.results["collectors"]["crexi"]["error"]
    runs = {r.source: r for r in _runs(database, job.job_id)}
    assert runs["crexi"].status == "failed"


def test_reingestion_is_idempotent(make_orchestrator, database):
    orchestrator = make_orchestrator([FakeCollector("loopnet", manual_records(range(5)))])

    asyncio.run(orchestrator.ingest("loopnet", location="Denver, CO"))
    created = {p.external_id: p.created_at for p in _properties(database)}
    job = asyncio.run(orchestrator.ingest("loopnet", location="Denver, CO"))

    assert job.properties_added == 5
    stored = _properties(database)
    assert len(stored) == 5
    assert {p.external_id: p.created_at for p in stored} == created


def test_dropped_records_count_as_found_not_added(make_orchestrator):
    records = manual_records(range(2)) + [ManualRecord(external_id="x-1", price=500_000)]
    orchestrator = make_orchestrator([FakeCollector("loopnet", records)])

    job = asyncio.run(orchestrator.ingest("loopnet", location="Denver, CO"))

    assert job.properties_found == 3
    assert job.properties_added == 2


def test_scraped_listings_without_coordinates_are_geocoded(make_orchestrator, database):
    geocoder = FakeGeocoder(places={
        "denver, co": DENVER,
        "4500 w colfax ave, denver, co 80204": (39.7402, -105.0461),
    })
    record = ScrapedListingRecord(
        source="LoopNet",
        name="Colfax Plaza",
        address="4500 W Colfax Ave, Denver, CO 80204",
        price_text="$2.4M",
        listing_url="https://www.loopnet.com/Listing/4500-W-Colfax-Ave-Denver-CO/31234567/",
        search_location="Denver, CO",
    )
    orchestrator = make_orchestrator([FakeCollector("loopnet", [record])], geocoder_override=geocoder)

    asyncio.run(orchestrator.ingest("loopnet", location="Denver, CO"))

    [stored] = _properties(database)
    assert stored.external_id == "loopnet-31234567"
    assert (stored.latitude, stored.longitude) == (39.7402, -105.0461)


def test_run_job_only_runs_pending_jobs(make_orchestrator):
    collector = FakeCollector("loopnet", manual_records(range(1)))
    orchestrator = make_orchestrator([collector])

    job = asyncio.run(orchestrator.ingest("loopnet", location="Denver, CO"))
    again = asyncio.run(orchestrator.run_job(job.job_id))

    assert again.status == JobStatus.COMPLETED.value
    assert len(collector.contexts) == 1


def test_storage_failure_fails_the_job(make_orchestrator, monkeypatch):
    from sqlalchemy.exc import OperationalError

    import app.services.ingestion as ingestion_module

    def broken_upsert(*args, **kwargs):
        raise OperationalError("INSERT", {}, Exception("database is locked"))

    monkeypatch.setattr(ingestion_module, "upsert_property", broken_upsert)
    orchestrator = make_orchestrator([FakeCollector("loopnet", manual_records(range(2)))])

    job = asyncio.run(orchestrator.ingest("loopnet", location="Denver, CO"))

    assert job.status == JobStatus.FAILED.value
    assert "OperationalError" in job.error_message


def test_rejected_record_is_skipped(make_orchestrator, monkeypatch):
    from sqlalchemy.exc import IntegrityError

    import app.services.ingestion as ingestion_module

    real_upsert = ingestion_module.upsert_property

    def picky_upsert(session, prop, **kwargs):
        if prop.external_id == "listing-1":
            raise IntegrityError("INSERT", {}, Exception("constraint failed"))
        return real_upsert(session, prop, **kwargs)

    monkeypatch.setattr(ingestion_module, "upsert_property", picky_upsert)
    orchestrator = make_orchestrator([FakeCollector("loopnet", manual_records(range(3)))])

    job = asyncio.run(orchestrator.ingest("loopnet", location="Denver, CO"))

    assert job.status == JobStatus.COMPLETED.value
    assert job.properties_found == 3
    assert job.properties_added == 2


def test_fail_stale_jobs(make_orchestrator, database):
    orchestrator = make_orchestrator([])
    job = orchestrator.create_job("all", location="Denver, CO")
    with database.session() as db:
        db.execute(
            ScraperJob.__table__.update().where(ScraperJob.job_id == job.job_id).values(status="running")
        )
        db.add(ScraperRun(job_id=job.job_id, source="crexi", status="running"))
        db.commit()

    assert orchestrator.fail_stale_jobs() == 1

    stale = orchestrator.get_job(job.job_id)
    assert stale.status == JobStatus.FAILED.value
    assert stale.error_message.startswith("interrupted")
    assert _runs(database, job.job_id)[0].status == "failed"


def test_recent_runs_newest_first(make_orchestrator):
    orchestrator = make_orchestrator([FakeCollector("loopnet"), FakeCollector("crexi")])
    for _ in range(6):
        asyncio.run(orchestrator.ingest("all", location="Denver, CO"))

    runs = orchestrator.recent_runs()
    assert len(runs) == 10
    ids = [r.id for r in runs]
    assert ids == sorted(ids, reverse=True)


def test_property_count_after_failed_job_is_unchanged(make_orchestrator, database):
    orchestrator = make_orchestrator([FakeCollector("crexi", error=CollectorError("down"))])
    asyncio.run(orchestrator.ingest("crexi", location="Denver, CO"))

    with database.session() as db:
        assert db.scalar(select(func.count()).select_from(Property)) == 0
