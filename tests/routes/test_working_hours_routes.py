BASE = "/api/v1/instructors"

WEEK = {
    "days": [
        {"day_of_week": 0, "start_time": "09:00:00", "end_time": "12:00:00"},
        {"day_of_week": 3, "start_time": "14:00:00", "end_time": "16:00:00"},
    ]
}


def test_instructor_sets_own_hours(client, auth_headers):
    res = client.put(
        f"{BASE}/ins-1/working-hours", json=WEEK, headers=auth_headers("ins-1", role="instructor")
    )

    assert res.status_code == 200
    assert [d["day_of_week"] for d in res.json()["days"]] == [0, 3]

    public = client.get(f"{BASE}/ins-1/working-hours")
    assert public.status_code == 200
    assert public.json()["days"][0] == {"day_of_week": 0, "start_time": "09:00:00", "end_time": "12:00:00"}


def test_other_instructor_is_forbidden(client, auth_headers):
    res = client.put(
        f"{BASE}/ins-1/working-hours", json=WEEK, headers=auth_headers("ins-2", role="instructor")
    )

    assert res.status_code == 403


def test_editor_may_set_anyones_hours(client, auth_headers):
    res = client.put(f"{BASE}/ins-1/working-hours", json=WEEK, headers=auth_headers())

    assert res.status_code == 200


def test_anonymous_cannot_set_hours(client):
    assert client.put(f"{BASE}/ins-1/working-hours", json=WEEK).status_code == 401


def test_bad_window_is_validation_error(client, auth_headers):
    body = {"days": [{"day_of_week": 0, "start_time": "12:00:00", "end_time": "09:00:00"}]}

    res = client.put(f"{BASE}/ins-1/working-hours", json=body, headers=auth_headers())

    assert res.status_code == 400
    assert res.json()["kind"] == "validation_error"


def test_availability_is_refreshed_after_hours_change(client, auth_headers):
    headers = auth_headers()
    client.put(f"{BASE}/ins-1/working-hours", json=WEEK, headers=headers)

    # 2025-06-16 is a Monday
    first = client.get(f"{BASE}/ins-1/availability", params={"date": "2025-06-16"})
    assert first.status_code == 200
    assert first.json()["slots"] == ["09:00:00", "10:00:00", "11:00:00"]

    new_week = {"days": [{"day_of_week": 0, "start_time": "15:00:00", "end_time": "16:00:00"}]}
    client.put(f"{BASE}/ins-1/working-hours", json=new_week, headers=headers)

    second = client.get(f"{BASE}/ins-1/availability", params={"date": "2025-06-16"})
    assert second.json()["slots"] == ["15:00:00"]


def test_availability_requires_date(client):
    assert client.get(f"{BASE}/ins-1/availability").status_code == 400
