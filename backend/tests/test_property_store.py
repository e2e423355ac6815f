from datetime import datetime, timedelta, timezone

from sqlalchemy import func, select

from app.models.property import Property
from app.services.normalizer import STREET_VIEW_URL, CanonicalProperty, ManualRecord, RecordNormalizer
from app.services.property_store import get_property, upsert_property

T0 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def canonical(**overrides):
    fields = dict(
        name="Westgate Shopping Center",
        source="LoopNet",
        external_id="loopnet-1001",
        address="4500 W Colfax Ave",
        city="Denver",
        state="CO",
        zip="80204",
        latitude=39.7402,
        longitude=-105.0461,
        price=8_750_000,
        sqft=68_000,
        vacancy_rate=18,
        cap_rate=8.2,
        upside_score=80,
        property_type="strip-center",
        image_url="https://images.example.com/westgate.jpg",
        images=["https://images.example.com/westgate.jpg"],
    )
    fields.update(overrides)
    return CanonicalProperty(**fields)


def _count(session):
    return session.scalar(select(func.count()).select_from(Property))


def _naive(dt):
    return dt.replace(tzinfo=None) if dt.tzinfo else dt


def test_insert_new_property(session):
    stored = upsert_property(session, canonical(), now=T0)
    session.commit()

    assert stored.id is not None
    assert stored.external_id == "loopnet-1001"
    assert stored.upside_score == 80
    assert stored.price_per_sqft == 8_750_000 / 68_000
    assert _count(session) == 1


def test_upsert_is_idempotent(session):
    first = upsert_property(session, canonical(), now=T0)
    session.commit()
    created_at = first.created_at

    later = T0 + timedelta(days=3)
    second = upsert_property(session, canonical(), now=later)
    session.commit()

    assert _count(session) == 1
    assert second.id == first.id
    assert second.created_at == created_at
    assert _naive(second.scraped_at) == _naive(later)
    assert _naive(second.created_at) == _naive(T0)


def test_volatile_fields_are_overwritten(session):
    upsert_property(session, canonical(), now=T0)
    session.commit()

    stored = upsert_property(
        session,
        canonical(name="Westgate Center", price=7_900_000, vacancy_rate=25, cap_rate=8.9, upside_score=88),
        now=T0 + timedelta(hours=1),
    )
    session.commit()

    assert stored.name == "Westgate Center"
    assert stored.price == 7_900_000
    assert stored.vacancy_rate == 25
    assert stored.cap_rate == 8.9
    assert stored.upside_score == 88


def test_existing_media_kept_when_new_is_null(session):
    upsert_property(session, canonical(), now=T0)
    session.commit()

    stored = upsert_property(session, canonical(image_url=None, images=[]), now=T0 + timedelta(hours=1))
    session.commit()

    assert stored.image_url == "https://images.example.com/westgate.jpg"
    assert stored.images == ["https://images.example.com/westgate.jpg"]


def test_new_media_replaces_stale_media(session):
    upsert_property(session, canonical(), now=T0)
    session.commit()

    stored = upsert_property(
        session,
        canonical(image_url="https://images.example.com/new.jpg", images=["https://images.example.com/new.jpg"]),
        now=T0 + timedelta(hours=1),
    )
    session.commit()

    assert stored.image_url == "https://images.example.com/new.jpg"


def test_street_view_fallback_does_not_replace_listing_photo(session):
    normalizer = RecordNormalizer(google_api_key="KEY")
    listing = dict(
        external_id="loopnet-2002",
        name="Colfax Corner",
        city="Denver",
        latitude=39.7402,
        longitude=-105.0461,
        source="LoopNet",
    )
    first = normalizer.normalize(ManualRecord(image_url="https://img.example.com/real.jpg", **listing))
    upsert_property(session, first, now=T0)
    session.commit()

    rescraped = normalizer.normalize(ManualRecord(**listing))
    assert rescraped.fallback_image_url.startswith(STREET_VIEW_URL)

    stored = upsert_property(session, rescraped, now=T0 + timedelta(hours=1))
    session.commit()

    assert stored.image_url == "https://img.example.com/real.jpg"


def test_street_view_fallback_fills_missing_image(session):
    stored = upsert_property(
        session,
        canonical(image_url=None, images=[], fallback_image_url=f"{STREET_VIEW_URL}?location=1,2"),
        now=T0,
    )
    session.commit()
    assert stored.image_url == f"{STREET_VIEW_URL}?location=1,2"

    stored = upsert_property(
        session,
        canonical(image_url=None, images=[], fallback_image_url=None),
        now=T0 + timedelta(hours=1),
    )
    session.commit()
    assert stored.image_url == f"{STREET_VIEW_URL}?location=1,2"

    stored = upsert_property(session, canonical(), now=T0 + timedelta(hours=2))
    session.commit()
    assert stored.image_url == "https://images.example.com/westgate.jpg"


def test_known_location_is_preserved(session):
    upsert_property(session, canonical(), now=T0)
    session.commit()

    stored = upsert_property(
        session,
        canonical(address="", city="", latitude=None, longitude=None),
        now=T0 + timedelta(hours=1),
    )
    session.commit()

    assert stored.address == "4500 W Colfax Ave"
    assert stored.city == "Denver"
    assert stored.latitude == 39.7402
    assert stored.longitude == -105.0461


def test_missing_location_is_filled_in(session):
    upsert_property(session, canonical(city="", latitude=None, longitude=None), now=T0)
    session.commit()

    stored = upsert_property(session, canonical(), now=T0 + timedelta(hours=1))
    session.commit()

    assert stored.city == "Denver"
    assert stored.latitude == 39.7402


def test_insert_only_mode_leaves_existing_rows(session):
    upsert_property(session, canonical(), now=T0)
    session.commit()

    result = upsert_property(session, canonical(price=1), now=T0 + timedelta(hours=1), update_existing=False)
    session.commit()

    assert result is None
    assert session.scalar(select(Property.price)) == 8_750_000


def test_properties_without_external_id_are_always_inserted(session):
    upsert_property(session, canonical(external_id=None), now=T0)
    upsert_property(session, canonical(external_id=None), now=T0)
    session.commit()

    assert _count(session) == 2


def test_get_property(session):
    stored = upsert_property(session, canonical(), now=T0)
    session.commit()

    assert get_property(session, stored.id).name == "Westgate Shopping Center"
    assert get_property(session, 9999) is None
