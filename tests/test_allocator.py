from datetime import datetime, timezone

from allocator.allocator import assign, assignment_counts, check_forced, select_least_loaded
from availability.roster import YouthRoster, roster_from_config
from state.models import YouthVolunteer
from tests.fixtures import make_booking, single_volunteer_roster, two_volunteer_roster

EMPTY_YOUTH = YouthRoster([])


def _full_day_roster(*ids):
    return roster_from_config({
        vid: {"name": vid.upper(), "methods": ["phone", "video"], "availability": {"2026-02-09": {"start": 6, "end": 18}}}
        for vid in ids
    })


def test_least_loaded_wins():
    roster = _full_day_roster("x", "y")
    bookings = [
        make_booking("2026-02-09-06:00", "x"),
        make_booking("2026-02-09-06:30", "x"),
        make_booking("2026-02-09-07:00", "x"),
        make_booking("2026-02-09-06:00", "y"),
        make_booking("2026-02-09-06:30", "y"),
    ]
    ok, chosen, reason = assign("2026-02-09-12:00", "phone", bookings, roster, EMPTY_YOUTH)
    assert ok and reason == "ok"
    assert chosen.volunteer_id == "y"
    assert chosen.assignment_count == 2


def test_tie_goes_to_first_declared():
    roster = _full_day_roster("second", "first")
    ok, chosen, _ = assign("2026-02-09-12:00", "video", [], roster, EMPTY_YOUTH)
    assert ok and chosen.volunteer_id == "second"


def test_committed_volunteer_is_excluded_even_with_lower_count():
    roster = two_volunteer_roster()
    bookings = [
        make_booking("2026-02-09-06:00", "c"),
        make_booking("2026-02-09-10:00", "b"),
    ]
    ok, chosen, _ = assign("2026-02-09-10:00", "phone", bookings, roster, EMPTY_YOUTH)
    assert ok and chosen.volunteer_id == "c"


def test_phone_and_video_counts_pool_but_chat_does_not():
    bookings = [
        make_booking("2026-02-09-06:00", "x", "phone"),
        make_booking("2026-02-09-06:30", "x", "video"),
        make_booking("2026-02-09-07:00", "x", "chat"),
    ]
    assert assignment_counts(bookings, "phone") == {"x": 2}
    assert assignment_counts(bookings, "chat") == {"x": 1}


def test_no_volunteer_reasons_are_method_specific():
    ok, chosen, reason = assign("2026-02-03-09:00", "phone", [], single_volunteer_roster(), EMPTY_YOUTH)
    assert (ok, chosen, reason) == (False, None, "no_volunteer_available")
    ok, chosen, reason = assign("2026-02-02-09:00", "chat", [], single_volunteer_roster(), EMPTY_YOUTH)
    assert (ok, chosen, reason) == (False, None, "no_youth_volunteer_available")


def test_chat_assignment_uses_youth_roster():
    youth = YouthRoster([
        YouthVolunteer(id="kai", name="Kai", availability=["2026-02-02-09:00"], created_at=datetime(2026, 1, 1, tzinfo=timezone.utc)),
        YouthVolunteer(id="lee", name="Lee", availability=["2026-02-02-09:00"], created_at=datetime(2026, 1, 2, tzinfo=timezone.utc)),
    ])
    bookings = [make_booking("2026-02-03-09:00", "kai", "chat")]
    ok, chosen, _ = assign("2026-02-02-09:00", "chat", bookings, single_volunteer_roster(), youth)
    assert ok and chosen.volunteer_id == "lee"


def test_method_support_is_required():
    roster = two_volunteer_roster()
    ok, chosen, _ = assign("2026-02-09-10:00", "video", [make_booking("2026-02-09-10:00", "b", "video")], roster, EMPTY_YOUTH)
    # c only takes phone
    assert not ok and chosen is None


def test_unsupported_method_and_invalid_slot():
    assert assign("2026-02-02-09:00", "fax", [], single_volunteer_roster(), EMPTY_YOUTH)[2] == "unsupported_method"
    assert assign("not-a-slot", "phone", [], single_volunteer_roster(), EMPTY_YOUTH)[2] == "invalid_slot"


def test_select_least_loaded_empty():
    assert select_least_loaded([], {}) is None


def test_forced_assignment_checks():
    roster = two_volunteer_roster()
    bookings = [make_booking("2026-02-09-10:00", "b")]
    assert check_forced("2026-02-09-10:00", "b", "phone", bookings, roster, EMPTY_YOUTH)[2] == "volunteer_already_booked"
    assert check_forced("2026-02-09-10:00", "nobody", "phone", bookings, roster, EMPTY_YOUTH)[2] == "unknown_volunteer"
    assert check_forced("2026-02-09-10:00", "c", "video", bookings, roster, EMPTY_YOUTH)[2] == "unsupported_method"
    # outside the volunteer's window is allowed for an explicit override
    ok, chosen, _ = check_forced("2026-02-10-10:00", "c", "phone", bookings, roster, EMPTY_YOUTH)
    assert ok and chosen.volunteer_id == "c"


def test_commitments_only_exclude_within_the_same_roster():
    roster = two_volunteer_roster()
    youth = YouthRoster([YouthVolunteer(id="b", name="Bea", availability=["2026-02-09-10:00"])])
    phone_b = [make_booking("2026-02-09-10:00", "b")]
    ok, chosen, _ = assign("2026-02-09-10:00", "chat", phone_b, roster, youth)
    assert ok and chosen.volunteer_name == "Bea"
    assert check_forced("2026-02-09-10:00", "b", "chat", phone_b, roster, youth)[0]

    chat_b = [make_booking("2026-02-09-10:00", "b", "chat")]
    ok, chosen, _ = assign("2026-02-09-10:00", "phone", chat_b, roster, youth)
    assert ok and chosen.volunteer_id == "b"
    # phone and video are one roster, so a video booking still commits b
    video_b = [make_booking("2026-02-09-10:00", "b", "video")]
    assert assign("2026-02-09-10:00", "phone", video_b, roster, youth)[1].volunteer_id == "c"
