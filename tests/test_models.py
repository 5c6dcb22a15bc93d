from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from musikmatch.models import Application, ApplyIn, ContactSnapshot, Gig, GigIn

START = datetime(2026, 6, 1, 19, 0, tzinfo=timezone.utc)


def test_gig_duration_from_end_time():
    gig = GigIn(title="Jazz night", start_time=START, end_time=datetime(2026, 6, 1, 22, 15, tzinfo=timezone.utc))
    assert gig.duration_minutes == 195


@pytest.mark.parametrize(
    "kw",
    [
        {"title": "  ab "},
        {"end_time": START},
        {"duration_minutes": 10},
        {"budget_min": 500, "budget_max": 100},
        {"budget_min": -1},
    ],
)
def test_gig_in_rejects(kw):
    data = {"title": "Jazz night", "start_time": START}
    data.update(kw)
    with pytest.raises(ValidationError):
        GigIn(**data)


def test_gig_ends_at():
    gig = Gig(id=1, venue_id="v", title="x", start_time=START, duration_minutes=90)
    assert gig.ends_at == datetime(2026, 6, 1, 20, 30, tzinfo=timezone.utc)


def test_contact_snapshot_blank_is_null():
    snap = ContactSnapshot(email="  ", phone=" +46 ")
    assert (snap.email, snap.phone) == (None, "+46")
    assert ContactSnapshot().empty


@pytest.mark.parametrize("status,visible", [("pending", False), ("rejected", False), ("accepted", True)])
def test_owner_sees_contact_only_when_accepted(status, visible):
    app = Application(id=1, status=status, contact_email="a@x.com", contact_phone="1")
    shown = app.for_owner()
    assert (shown.contact_email is not None) is visible
    assert app.contact_email == "a@x.com"


def test_application_rejects_unknown_status():
    with pytest.raises(ValidationError):
        Application(id=1, status="archived")


def test_apply_form_validates_email_and_blanks_contact():
    form = ApplyIn(message="Hi", email=" ", phone="  ")
    assert (form.email, form.phone) == (None, None)

    with pytest.raises(ValidationError):
        ApplyIn(email="lucas-at-trio")
