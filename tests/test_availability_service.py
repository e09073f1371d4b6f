from datetime import date, datetime, time, timezone
from unittest.mock import Mock, patch

from sqlalchemy.exc import OperationalError

from salonbot.services.availability_service import (
    AvailabilityService,
    build_time_grid,
    format_date_for_display,
    format_time_for_display,
    parse_clock,
)

DAY = date(2030, 3, 5)


class TestTimeGrid:
    def test_default_grid(self):
        grid = build_time_grid(time(8, 0), time(18, 0), 30)
        assert len(grid) == 20
        assert grid[0] == time(8, 0)
        assert grid[-1] == time(17, 30)

    def test_close_time_is_exclusive(self):
        assert build_time_grid(time(9, 0), time(10, 0), 30) == [time(9, 0), time(9, 30)]

    def test_parse_clock(self):
        assert parse_clock("08:00") == time(8, 0)
        assert parse_clock("17:30:00") == time(17, 30)


class TestDisplayFormatting:
    def test_date_in_portuguese(self):
        assert format_date_for_display(date(2026, 3, 5)) == "05 de março de 2026"
        assert format_date_for_display(date(2025, 12, 31)) == "31 de dezembro de 2025"

    def test_time_hh_mm(self):
        assert format_time_for_display(time(9, 5)) == "09:05"


class TestComputeAvailableSlots:
    def test_all_free_for_active_professionals(self, db, salon):
        slots = AvailabilityService(db).compute_available_slots(salon.business.id, DAY)
        assert len(slots) == 40
        assert {s.professional_name for s in slots} == {"Ana", "Bruno"}

    def test_order_professional_then_time(self, db, salon):
        slots = AvailabilityService(db).compute_available_slots(salon.business.id, DAY)
        names = [s.professional_name for s in slots]
        assert names == ["Ana"] * 20 + ["Bruno"] * 20
        ana_times = [s.time for s in slots[:20]]
        assert ana_times == sorted(ana_times)

    def test_scheduled_and_confirmed_block(self, db, salon, make_appointment):
        make_appointment(day=DAY, at=time(9, 0), professional=salon.ana)
        make_appointment(day=DAY, at=time(11, 30), professional=salon.ana, status="confirmed")

        slots = AvailabilityService(db).compute_available_slots(salon.business.id, DAY, salon.ana.id)
        times = [s.time for s in slots]
        assert time(9, 0) not in times
        assert time(11, 30) not in times
        assert len(times) == 18

    def test_cancelled_and_completed_do_not_block(self, db, salon, make_appointment):
        make_appointment(day=DAY, at=time(10, 0), professional=salon.ana, status="cancelled")
        make_appointment(day=DAY, at=time(10, 30), professional=salon.ana, status="completed")

        slots = AvailabilityService(db).compute_available_slots(salon.business.id, DAY, salon.ana.id)
        times = [s.time for s in slots]
        assert time(10, 0) in times
        assert time(10, 30) in times

    def test_booking_other_day_does_not_block(self, db, salon, make_appointment):
        make_appointment(day=date(2030, 3, 6), at=time(9, 0), professional=salon.ana)
        slots = AvailabilityService(db).compute_available_slots(salon.business.id, DAY, salon.ana.id)
        assert time(9, 0) in [s.time for s in slots]

    def test_booking_blocks_only_its_professional(self, db, salon, make_appointment):
        make_appointment(day=DAY, at=time(9, 0), professional=salon.ana)
        slots = AvailabilityService(db).compute_available_slots(salon.business.id, DAY, salon.bruno.id)
        assert time(9, 0) in [s.time for s in slots]

    def test_inactive_professional_has_no_slots(self, db, salon):
        assert AvailabilityService(db).compute_available_slots(salon.business.id, DAY, salon.carla.id) == []

    def test_business_config_overrides_grid(self, db, salon):
        salon.business.config = {"open_time": "09:00", "close_time": "12:00", "slot_minutes": 60}
        db.commit()
        slots = AvailabilityService(db).compute_available_slots(salon.business.id, DAY, salon.ana.id)
        assert [s.time for s in slots] == [time(9, 0), time(10, 0), time(11, 0)]

    def test_default_day_is_the_salon_date(self, db, salon):
        # 01:30 UTC on the 17th is still the evening of the 16th in São Paulo
        late_evening = datetime(2026, 10, 17, 1, 30, tzinfo=timezone.utc)
        with patch("salonbot.services.availability_service.utcnow", return_value=late_evening):
            slots = AvailabilityService(db, timezone_name="America/Sao_Paulo").compute_available_slots(salon.business.id)
        assert slots[0].date == date(2026, 10, 16)

    def test_business_today_follows_timezone(self, db):
        instant = datetime(2026, 10, 16, 23, 0, tzinfo=timezone.utc)
        with patch("salonbot.services.availability_service.utcnow", return_value=instant):
            assert AvailabilityService(db, timezone_name="America/Sao_Paulo").business_today() == date(2026, 10, 16)
            assert AvailabilityService(db, timezone_name="Asia/Tokyo").business_today() == date(2026, 10, 17)

    def test_db_error_yields_empty_list(self, db_session):
        db_session.get.side_effect = OperationalError("SELECT", {}, Exception("down"))
        assert AvailabilityService(db_session).compute_available_slots(Mock(), DAY) == []


class TestCheckConflict:
    def test_free_slot(self, db, salon):
        assert AvailabilityService(db).check_conflict(salon.ana.id, DAY, time(9, 0)) is True

    def test_taken_slot(self, db, salon, make_appointment):
        make_appointment(day=DAY, at=time(9, 0), professional=salon.ana)
        assert AvailabilityService(db).check_conflict(salon.ana.id, DAY, time(9, 0)) is False

    def test_exact_match_only(self, db, salon, make_appointment):
        make_appointment(day=DAY, at=time(9, 0), professional=salon.ana)
        assert AvailabilityService(db).check_conflict(salon.ana.id, DAY, time(9, 15)) is True

    def test_cancelled_does_not_conflict(self, db, salon, make_appointment):
        make_appointment(day=DAY, at=time(9, 0), professional=salon.ana, status="cancelled")
        assert AvailabilityService(db).check_conflict(salon.ana.id, DAY, time(9, 0)) is True

    def test_db_error_reports_taken(self, db_session):
        db_session.query.side_effect = OperationalError("SELECT", {}, Exception("down"))
        assert AvailabilityService(db_session).check_conflict(Mock(), DAY, time(9, 0)) is False
