from datetime import date, time

from pydantic import ValidationError
import pytest
from sqlalchemy.exc import OperationalError

from driveschool.core.exceptions import StorageUnavailableException, ValidationException
from driveschool.schemas.working_hours import WorkingHoursDay, WorkingHoursUpdate
from driveschool.services.working_hours_service import WorkingHoursService, compute_slots

# 2025-06-16 is a Monday
MONDAY = date(2025, 6, 16)
TUESDAY = date(2025, 6, 17)


def _week(*days):
    return WorkingHoursUpdate(
        days=[
            WorkingHoursDay(day_of_week=dow, start_time=start, end_time=end)
            for dow, start, end in days
        ]
    )


@pytest.fixture
def service(session_factory, cache):
    return WorkingHoursService(session_factory, cache, slot_minutes=60)


def test_compute_slots_only_counts_whole_slots():
    day = WorkingHoursDay(day_of_week=0, start_time=time(9, 0), end_time=time(11, 30))

    assert compute_slots(day, 60) == [time(9, 0), time(10, 0)]
    assert compute_slots(day, 30) == [time(9, 0), time(9, 30), time(10, 0), time(10, 30), time(11, 0)]
    with pytest.raises(ValueError):
        compute_slots(day, 0)


def test_schema_rejects_bad_windows_and_duplicate_days():
    with pytest.raises(ValidationError):
        WorkingHoursDay(day_of_week=0, start_time=time(12, 0), end_time=time(9, 0))
    with pytest.raises(ValidationError):
        WorkingHoursDay(day_of_week=7, start_time=time(9, 0), end_time=time(10, 0))
    with pytest.raises(ValidationError):
        _week((0, time(9, 0), time(10, 0)), (0, time(11, 0), time(12, 0)))


@pytest.mark.asyncio
async def test_unknown_instructor_has_empty_schedule(service):
    assert await service.get_working_hours("ins-1") == []
    assert await service.get_availability("ins-1", MONDAY) == []


@pytest.mark.asyncio
async def test_set_then_get_working_hours(service):
    saved = await service.set_working_hours(
        "ins-1", _week((2, time(13, 0), time(15, 0)), (0, time(9, 0), time(12, 0)))
    )

    assert [d.day_of_week for d in saved] == [0, 2]
    hours = await service.get_working_hours("ins-1")
    assert [(d.day_of_week, d.start_time, d.end_time) for d in hours] == [
        (0, time(9, 0), time(12, 0)),
        (2, time(13, 0), time(15, 0)),
    ]


@pytest.mark.asyncio
async def test_availability_follows_weekday(service):
    await service.set_working_hours("ins-1", _week((0, time(9, 0), time(12, 0))))

    assert await service.get_availability("ins-1", MONDAY) == [time(9, 0), time(10, 0), time(11, 0)]
    assert await service.get_availability("ins-1", TUESDAY) == []


@pytest.mark.asyncio
async def test_saving_hours_invalidates_cached_availability(service, cache):
    await service.set_working_hours("ins-1", _week((0, time(9, 0), time(11, 0))))
    await service.set_working_hours("ins-2", _week((0, time(9, 0), time(10, 0))))
    assert await service.get_availability("ins-1", MONDAY) == [time(9, 0), time(10, 0)]
    assert await service.get_availability("ins-2", MONDAY) == [time(9, 0)]

    await service.set_working_hours("ins-1", _week((0, time(14, 0), time(15, 0))))

    assert await service.get_availability("ins-1", MONDAY) == [time(14, 0)]
    assert await cache.get(cache.keys.availability("ins-2", MONDAY)) == ["09:00:00"]


@pytest.mark.asyncio
async def test_replacing_week_removes_missing_days(service):
    await service.set_working_hours("ins-1", _week((0, time(9, 0), time(10, 0)), (1, time(9, 0), time(10, 0))))
    await service.set_working_hours("ins-1", _week((1, time(9, 0), time(10, 0))))

    assert [d.day_of_week for d in await service.get_working_hours("ins-1")] == [1]


@pytest.mark.asyncio
async def test_invalid_instructor_id(service):
    with pytest.raises(ValidationException):
        await service.get_working_hours("ins:*")


@pytest.mark.asyncio
async def test_backend_outage_is_storage_unavailable(cache):
    def broken_factory():
        raise OperationalError("connect", {}, Exception("db down"))

    service = WorkingHoursService(broken_factory, cache)

    with pytest.raises(StorageUnavailableException):
        await service.get_working_hours("ins-1")
