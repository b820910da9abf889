from datetime import timedelta

from conftest import START, make_spec

from preview_operator import lifecycle
from preview_operator.models import ObjectMeta, Phase, PreviewEnvironment

DOMAIN = "dev.homecareapp.xyz"


def _record(**spec_overrides):
    return PreviewEnvironment(metadata=ObjectMeta(name="homecare-pr42"), spec=make_spec(**spec_overrides))


def test_initialize_assigns_identity_and_default_ttl():
    record = _record()
    lifecycle.initialize(record, START, DOMAIN, 24)

    status = record.status
    assert status.phase == Phase.CREATING
    assert status.namespace == "previewalice-pr42"
    assert status.environment_url == "https://alice42abcdef1.dev.homecareapp.xyz"
    assert status.created_at == START
    assert status.expires_at == START + timedelta(hours=24)
    assert status.initialized
    ready = lifecycle.get_condition(status, lifecycle.CONDITION_READY)
    assert (ready.status, ready.reason) == ("False", "Creating")


def test_initialize_honours_ttl():
    record = _record(ttl=168)
    lifecycle.initialize(record, START, DOMAIN, 24)
    assert record.status.expires_at == START + timedelta(hours=168)


def test_zero_ttl_falls_back_to_default():
    assert lifecycle.ttl_hours(make_spec(ttl=0), 24) == 24
    assert lifecycle.ttl_hours(make_spec(ttl=None), 24) == 24
    assert lifecycle.ttl_hours(make_spec(ttl=500), 24) == 500


def test_initialize_keeps_fields_already_set():
    record = _record()
    record.status.namespace = "previewalice-pr42"
    record.status.created_at = START - timedelta(hours=1)
    lifecycle.initialize(record, START, DOMAIN, 24)
    assert record.status.created_at == START - timedelta(hours=1)
    assert record.status.expires_at == START + timedelta(hours=23)


def test_mark_ready_only_from_creating_or_failed():
    record = _record()
    lifecycle.initialize(record, START, DOMAIN, 24)
    assert lifecycle.mark_ready(record, START) is True
    assert record.status.phase == Phase.READY
    assert record.status.message == lifecycle.MESSAGE_READY
    assert lifecycle.mark_ready(record, START) is False

    lifecycle.mark_failed(record, RuntimeError("boom"), START)
    assert record.status.phase == Phase.FAILED
    assert record.status.message == "Failed to create resources: boom"
    assert lifecycle.mark_ready(record, START) is True


def test_condition_transition_time_moves_only_on_flip():
    record = _record()
    lifecycle.initialize(record, START, DOMAIN, 24)
    later = START + timedelta(minutes=5)
    lifecycle.mark_failed(record, RuntimeError("boom"), later)
    ready = lifecycle.get_condition(record.status, lifecycle.CONDITION_READY)
    assert ready.last_transition_time == START
    assert ready.reason == "ReconcileFailed"

    lifecycle.mark_ready(record, later)
    assert ready.last_transition_time == later


def test_mark_expiring_sets_expired_condition():
    record = _record()
    lifecycle.initialize(record, START, DOMAIN, 24)
    lifecycle.mark_expiring(record, START + timedelta(hours=25))
    assert record.status.phase == Phase.EXPIRING
    assert record.status.message == lifecycle.MESSAGE_EXPIRED
    expired = lifecycle.get_condition(record.status, lifecycle.CONDITION_EXPIRED)
    assert expired.status == "True"


def test_is_expired_boundary():
    record = _record()
    lifecycle.initialize(record, START, DOMAIN, 1)
    status = record.status
    assert not lifecycle.is_expired(status, START + timedelta(minutes=59))
    assert lifecycle.is_expired(status, START + timedelta(hours=1))
    assert not lifecycle.is_expired(_record().status, START)


def test_next_requeue_is_cut_short_by_expiry():
    record = _record()
    lifecycle.initialize(record, START, DOMAIN, 24)
    hour = timedelta(hours=1)
    assert lifecycle.next_requeue(record.status, START, hour) == hour
    near_end = START + timedelta(hours=23, minutes=30)
    assert lifecycle.next_requeue(record.status, near_end, hour) == timedelta(minutes=30)
    assert lifecycle.next_requeue(record.status, START + timedelta(hours=30), hour) == timedelta(seconds=1)
