"""Unit tests for the shared record projection."""

from concierge.tools.projection import RecordProjection


def test_project_flattens_and_excludes() -> None:
    projection = RecordProjection(exclude=("images", "prices.logo"))
    record = {
        "name": "Memmo Alfama",
        "images": [{"thumbnail": "x"}],
        "gps": {"latitude": 38.71, "longitude": -9.13},
        "amenities": ["Pool", "Wi-Fi"],
        "prices": [{"source": "Booking.com", "logo": "l.png"}, {"source": "Expedia", "logo": "m.png"}],
        "deal": None,
    }

    assert projection.project(record) == {
        "name": "Memmo Alfama",
        "gps.latitude": 38.71,
        "gps.longitude": -9.13,
        "amenities": "Pool, Wi-Fi",
        "prices.0.source": "Booking.com",
        "prices.1.source": "Expedia",
    }


def test_computed_fields_use_original_record() -> None:
    projection = RecordProjection(
        exclude=("rate_per_night",),
        computed={
            "nightly": lambda r: r["rate_per_night"]["extracted_lowest"],
            "missing": lambda r: None,
        },
    )
    flat = projection.project({"name": "A", "rate_per_night": {"extracted_lowest": 180}})

    assert flat == {"name": "A", "nightly": 180}


def test_max_depth_keeps_deep_values() -> None:
    projection = RecordProjection(max_depth=1)
    assert projection.project({"a": {"b": {"c": 1}}}) == {"a": {"b": {"c": 1}}}


def test_render_numbers_options() -> None:
    projection = RecordProjection()
    rendered = projection.render([{"name": "A"}, {"name": "B", "price": 10}], title="Idea")

    assert rendered == "- ## Idea 1 of 2\n\tname: A\n\n- ## Idea 2 of 2\n\tname: B\n\tprice: 10"
