from datetime import timedelta

import pytest

import timer_engine
from conftest import T0, make_assessment
from error_utils import TimeExpiredError
from models import AssessmentConfig, Submission, TimerStatus


def _submission(**kwargs):
    return Submission(assessment_id="asmt-1", user_id="u-1", started_at=T0, created_at=T0, **kwargs)


def _at(seconds):
    return T0 + timedelta(seconds=seconds)


@pytest.fixture
def section_assessment():
    return AssessmentConfig.model_validate(make_assessment())


@pytest.fixture
def global_assessment():
    return AssessmentConfig.model_validate(make_assessment(time_mode="global", duration_minutes=10))


def test_enter_section_accumulates_previous_section():
    sub = _submission()
    assert timer_engine.enter_section(sub, "sec-mcq", _at(0))
    assert timer_engine.enter_section(sub, "sec-code", _at(40))
    assert sub.usage_snapshot() == {"sec-mcq": 40}
    assert sub.current_section_id == "sec-code"
    assert sub.section_started_at == _at(40)

    # Returning to a section adds to its earlier usage instead of resetting it
    timer_engine.enter_section(sub, "sec-mcq", _at(100))
    timer_engine.enter_section(sub, "sec-code", _at(110))
    assert sub.usage_snapshot() == {"sec-mcq": 50, "sec-code": 60}


def test_enter_same_section_is_noop():
    sub = _submission()
    timer_engine.enter_section(sub, "sec-mcq", _at(0))
    assert timer_engine.enter_section(sub, "sec-mcq", _at(30)) is False
    assert sub.section_started_at == _at(0)
    assert timer_engine.section_elapsed(sub, "sec-mcq", _at(45)) == 45


def test_usage_snapshot_is_a_copy():
    sub = _submission()
    timer_engine.enter_section(sub, "sec-mcq", _at(0))
    timer_engine.enter_section(sub, "sec-code", _at(10))
    snap = sub.usage_snapshot()
    snap["sec-mcq"] = 9999
    assert sub.usage_for("sec-mcq") == 10


@pytest.mark.parametrize("switches", [
    [("sec-mcq", 0), ("sec-code", 5), ("sec-mcq", 17), ("sec-code", 18)],
    [("sec-code", 3), ("sec-code", 4), ("sec-mcq", 50), ("sec-mcq", 51), ("sec-code", 90)],
    [("sec-mcq", 1), ("sec-code", 1), ("sec-mcq", 1)],
])
def test_usage_never_exceeds_wall_clock(switches):
    sub = _submission()
    for section_id, t in switches:
        timer_engine.enter_section(sub, section_id, _at(t))
    now = _at(switches[-1][1] + 7)
    total = sum(sub.usage_snapshot().values()) + timer_engine.live_elapsed(sub, now)
    assert total <= timer_engine.global_elapsed(sub, now)


def test_section_snapshot_statuses(section_assessment):
    sub = _submission()
    timer_engine.enter_section(sub, "sec-mcq", _at(0))
    timer_engine.enter_section(sub, "sec-code", _at(20))
    snap = timer_engine.snapshot(sub, section_assessment, _at(50))

    mcq, code = snap.sections
    assert (mcq.status, mcq.time_used, mcq.time_left) == (TimerStatus.PAUSED, 20, 40)
    assert (code.status, code.time_used, code.time_left) == (TimerStatus.RUNNING, 30, 1770)
    assert snap.status == TimerStatus.RUNNING
    assert snap.time_left == 1770
    assert snap.section_id == "sec-code"
    assert snap.expires_at == _at(50 + 1770)


def test_section_usage_is_clamped_and_expired(section_assessment):
    sub = _submission()
    timer_engine.enter_section(sub, "sec-mcq", _at(0))
    snap = timer_engine.snapshot(sub, section_assessment, _at(500))
    mcq = snap.sections[0]
    assert mcq.time_used == 60
    assert mcq.time_left == 0
    assert mcq.status == TimerStatus.EXPIRED
    assert snap.sections[1].status == TimerStatus.IDLE


def test_unlimited_section_reports_sentinel():
    assessment = AssessmentConfig.model_validate(make_assessment(sections=[
        {"id": "open", "title": "Open", "order": 1, "time_limit_minutes": 0},
    ]))
    sub = _submission()
    timer_engine.enter_section(sub, "open", _at(0))
    timer = timer_engine.snapshot(sub, assessment, _at(4000)).sections[0]
    assert timer.time_left == -1
    assert timer.time_used == 4000
    assert timer.status == TimerStatus.RUNNING


def test_idle_preview_shows_first_section_budget(section_assessment):
    sub = _submission()
    snap = timer_engine.snapshot(sub, section_assessment, _at(15))
    assert snap.status == TimerStatus.IDLE
    assert snap.time_left == 60
    assert snap.total_time == 60
    assert snap.time_used == 0
    assert snap.expires_at is None


def test_global_snapshot_caps_at_duration(global_assessment):
    sub = _submission()
    snap = timer_engine.snapshot(sub, global_assessment, _at(120))
    assert snap.status == TimerStatus.RUNNING
    assert snap.time_left == 480
    assert snap.global_timer.time_used == 120

    late = timer_engine.snapshot(sub, global_assessment, _at(900))
    assert late.global_timer.time_used == 600
    assert late.status == TimerStatus.EXPIRED
    assert late.time_left == 0


def test_section_mode_time_guard(section_assessment):
    sub = _submission()
    timer_engine.enter_section(sub, "sec-mcq", _at(0))
    section = section_assessment.find_section("sec-mcq")

    timer_engine.check_time_guard(sub, section_assessment, section, _at(65), grace_seconds=10)
    timer_engine.check_time_guard(sub, section_assessment, section, _at(70), grace_seconds=10)
    with pytest.raises(TimeExpiredError) as exc:
        timer_engine.check_time_guard(sub, section_assessment, section, _at(75), grace_seconds=10)
    assert "time has expired" in exc.value.message
    assert exc.value.status_code == 403
    assert exc.value.error_code == "time_expired"


def test_section_guard_uses_frozen_usage_of_other_section(section_assessment):
    sub = _submission()
    timer_engine.enter_section(sub, "sec-mcq", _at(0))
    timer_engine.enter_section(sub, "sec-code", _at(30))
    mcq = section_assessment.find_section("sec-mcq")
    # sec-mcq is paused at 30s, so wall clock does not count against it
    timer_engine.check_time_guard(sub, section_assessment, mcq, _at(3000), grace_seconds=10)


def test_global_mode_time_guard(global_assessment):
    sub = _submission()
    timer_engine.check_time_guard(sub, global_assessment, None, _at(9 * 60 + 59), grace_seconds=10)
    with pytest.raises(TimeExpiredError):
        timer_engine.check_time_guard(sub, global_assessment, None, _at(10 * 60 + 15), grace_seconds=10)


def test_freeze_running_section(section_assessment):
    sub = _submission()
    timer_engine.enter_section(sub, "sec-code", _at(0))
    timer_engine.freeze_running_section(sub, _at(90))
    assert sub.usage_for("sec-code") == 90
    assert sub.section_started_at is None
    assert timer_engine.section_elapsed(sub, "sec-code", _at(500)) == 90


def test_attempt_over_requires_every_section_budget(section_assessment):
    sub = _submission()
    timer_engine.enter_section(sub, "sec-mcq", _at(0))
    assert not timer_engine.is_attempt_over(sub, section_assessment, _at(200), grace_seconds=30)
    timer_engine.enter_section(sub, "sec-code", _at(200))
    assert timer_engine.is_attempt_over(sub, section_assessment, _at(200 + 1800 + 31), grace_seconds=30)


def test_attempt_over_in_global_mode(global_assessment):
    sub = _submission()
    assert not timer_engine.is_attempt_over(sub, global_assessment, _at(620), grace_seconds=30)
    assert timer_engine.is_attempt_over(sub, global_assessment, _at(631), grace_seconds=30)
