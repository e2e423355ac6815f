from app.services.collectors import CollectorError

from conftest import FakeCollector, manual_records


def test_sync_scrape_returns_summary(make_client):
    client = make_client([
        FakeCollector("loopnet", manual_records(range(0, 15), source="LoopNet")),
        FakeCollector("crexi", manual_records(range(10, 25), source="CREXi")),
    ])

    r = client.post("/api/v1/scrape", json={"source": "all", "location": "denver"})

    assert r.status_code == 200
    body = r.json()
    assert body["jobId"].startswith("scrape-")
    assert body["status"] == "completed"
    assert body["found"] == 30
    assert body["added"] == 25
    assert body["source"] == "all"
    assert body["location"] == "denver"

    r = client.get("/api/v1/properties", params={"limit": 500})
    assert r.json()["count"] == 25


def test_async_scrape_returns_job_id_then_completes(make_client):
    client = make_client([FakeCollector("loopnet", manual_records(range(3)))])

    r = client.post("/api/v1/scrape", json={"source": "loopnet", "location": "Denver, CO", "async": True})

    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "pending"
    assert body["found"] is None

    # TestClient runs background tasks before returning the response
    r = client.get(f"/api/v1/scrape/jobs/{body['jobId']}")
    assert r.status_code == 200
    job = r.json()
    assert job["status"] == "completed"
    assert job["propertiesFound"] == 3
    assert job["propertiesAdded"] == 3
    assert job["results"]["collectors"]["loopnet"]["added"] == 3


def test_failed_job_still_returns_job_id(make_client):
    client = make_client([FakeCollector("crexi", error=CollectorError("blocked"))])

    r = client.post("/api/v1/scrape", json={"source": "crexi", "location": "Denver, CO"})

    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "failed"
    assert body["jobId"]
    assert "blocked" in body["error"]


def test_scrape_with_coordinates(make_client):
    places = FakeCollector("places", manual_records(range(2)), requires_coordinates=True)
    client = make_client([places])

    r = client.post("/api/v1/scrape", json={"source": "places", "lat": 39.7392, "lng": -104.9903, "radius": 5})

    assert r.json()["status"] == "completed"
    assert places.contexts[0].radius_miles == 5


def test_unknown_source_is_400(client):
    r = client.post("/api/v1/scrape", json={"source": "zillow", "location": "Denver, CO"})
    assert r.status_code == 400
    assert r.json()["error"] == "Unknown source"


def test_scrape_requires_location(client):
    r = client.post("/api/v1/scrape", json={"source": "all"})
    assert r.status_code == 400

    r = client.post("/api/v1/scrape", json={"source": "all", "lat": 39.7})
    assert r.status_code == 400


def test_unknown_job_is_404(client):
    r = client.get("/api/v1/scrape/jobs/scrape-000000000000")
    assert r.status_code == 404
    assert r.json()["error"] == "Job not found"


def test_recent_runs(make_client):
    client = make_client([FakeCollector("loopnet", manual_records(range(2))), FakeCollector("crexi")])
    client.post("/api/v1/scrape", json={"source": "all", "location": "Denver, CO"})

    r = client.get("/api/v1/scrape")

    assert r.status_code == 200
    runs = r.json()["runs"]
    assert {run["source"] for run in runs} == {"loopnet", "crexi"}
    assert all(run["status"] == "completed" for run in runs)
