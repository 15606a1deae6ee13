import json
from datetime import date

from healthsync.config import get_settings
from healthsync.providers.oura import build_oura_provider
from healthsync.providers.withings import build_withings_provider
from healthsync.services.datapoints import DataPointStore, list_data_points
from healthsync.services.profiles import get_user_timezone
from healthsync.services.variables import ensure_variables


def _row(row_id, day, variable_id, value, user_id="user-1"):
    return {
        "id": row_id,
        "user_id": user_id,
        "date": day,
        "variable_id": variable_id,
        "value": value,
        "created_at": f"{day}T00:00:00+00:00",
    }


def test_ensure_variables_is_idempotent_by_label(conn):
    provider = build_oura_provider(get_settings())

    first = ensure_variables(conn, provider=provider, user_id="user-1")
    second = ensure_variables(conn, provider=provider, user_id="user-2")

    assert first == second
    assert len(first) == len(provider.variables)
    total = conn.execute("SELECT COUNT(*) AS total FROM variables").fetchone()["total"]
    assert total == len(provider.variables)


def test_variable_metadata_follows_units(conn):
    ensure_variables(conn, provider=build_oura_provider(get_settings()), user_id="user-1")
    ensure_variables(conn, provider=build_withings_provider(get_settings()), user_id="user-1")

    rows = {
        row["slug"]: row
        for row in conn.execute(
            "SELECT slug, unit_group, convertible_units, default_display_unit, source_type, description FROM variables"
        ).fetchall()
    }
    assert rows["sleep_latency"]["default_display_unit"] == "minutes"
    assert rows["total_sleep_duration"]["default_display_unit"] == "hours"
    assert json.loads(rows["total_sleep_duration"]["convertible_units"]) == [
        "seconds",
        "minutes",
        "hours",
    ]
    assert rows["temperature_deviation"]["unit_group"] == "temperature"
    assert rows["steps"]["unit_group"] == "count"
    assert rows["weight"]["unit_group"] == "mass"
    assert json.loads(rows["weight"]["convertible_units"]) == ["kg", "lb", "g"]
    assert rows["weight"]["source_type"] == "withings"
    assert rows["hr_lowest"]["description"] == "Lowest Heart Rate measured by Oura Ring"


def test_upsert_overwrites_on_user_date_variable_conflict(conn):
    ids = ensure_variables(conn, provider=build_oura_provider(get_settings()), user_id="user-1")
    store = DataPointStore(conn, "oura")

    assert store.upsert([_row("a", "2024-01-01", ids["steps"], 1000)]) == 1
    assert store.upsert([_row("b", "2024-01-01", ids["steps"], 1500)]) == 1

    rows = conn.execute("SELECT id, value FROM data_points").fetchall()
    assert [(row["id"], row["value"]) for row in rows] == [("a", 1500.0)]


def test_upsert_writes_in_batches(conn):
    ids = ensure_variables(conn, provider=build_oura_provider(get_settings()), user_id="user-1")
    store = DataPointStore(conn, "oura")
    rows = [
        _row(f"id-{index}", date.fromordinal(date(2024, 1, 1).toordinal() + index).isoformat(), ids["steps"], index)
        for index in range(250)
    ]

    assert store.upsert(rows, batch_size=100) == 250
    assert store.count("user-1") == 250


def test_existing_dates_and_delete_are_scoped_to_user_and_provider(conn):
    oura_ids = ensure_variables(conn, provider=build_oura_provider(get_settings()), user_id="user-1")
    withings_ids = ensure_variables(
        conn, provider=build_withings_provider(get_settings()), user_id="user-1"
    )
    oura = DataPointStore(conn, "oura")
    withings = DataPointStore(conn, "withings")
    oura.upsert(
        [
            _row("o1", "2024-01-01", oura_ids["steps"], 10),
            _row("o2", "2024-01-01", oura_ids["sleep_score"], 80),
            _row("o3", "2024-01-03", oura_ids["steps"], 20),
            _row("o4", "2024-01-02", oura_ids["steps"], 30, user_id="user-2"),
        ]
    )
    withings.upsert([_row("w1", "2024-01-05", withings_ids["weight"], 80.2)])

    assert oura.existing_dates("user-1") == {date(2024, 1, 1), date(2024, 1, 3)}
    assert withings.existing_dates("user-1") == {date(2024, 1, 5)}

    assert oura.delete_all("user-1") == 3
    assert oura.existing_dates("user-1") == set()
    assert oura.existing_dates("user-2") == {date(2024, 1, 2)}
    assert withings.count("user-1") == 1


def test_list_data_points_joins_variables(conn):
    ids = ensure_variables(conn, provider=build_oura_provider(get_settings()), user_id="user-1")
    DataPointStore(conn, "oura").upsert(
        [
            _row("a", "2024-01-01", ids["steps"], 1000),
            _row("b", "2024-02-01", ids["steps"], 2000),
        ]
    )

    rows = list_data_points(
        conn,
        user_id="user-1",
        provider="oura",
        start=date(2024, 1, 1),
        end=date(2024, 1, 31),
    )
    assert rows == [
        {
            "date": "2024-01-01",
            "provider": "oura",
            "slug": "steps",
            "label": "Steps",
            "unit": "steps",
            "value": 1000.0,
            "created_at": "2024-01-01T00:00:00+00:00",
        }
    ]


def test_user_timezone_falls_back_to_default(conn):
    conn.execute("INSERT INTO profiles (id, timezone) VALUES ('user-1', 'America/New_York')")
    conn.execute("INSERT INTO profiles (id, timezone) VALUES ('user-2', 'Not/AZone')")
    conn.commit()

    assert get_user_timezone(conn, "user-1").key == "America/New_York"
    assert get_user_timezone(conn, "user-2").key == "Europe/Stockholm"
    assert get_user_timezone(conn, "user-3").key == "Europe/Stockholm"
