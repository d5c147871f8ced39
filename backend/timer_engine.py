"""
Timer arithmetic for submissions.

Two timing models, selected by the assessment's time mode:

- global: one clock from ``started_at`` that never pauses, capped at the duration.
- section: each section has its own budget. Only ``current_section_id`` runs
  (while ``section_started_at`` is set); every other section's time is frozen
  in ``section_usage``.

All functions take ``now`` explicitly and, apart from ``enter_section`` and
``freeze_running_section``, never mutate the submission.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from datetime_utils import elapsed_seconds
from error_utils import TimeExpiredError
from models import (
    AssessmentConfig,
    GlobalTimer,
    SectionConfig,
    SectionTimer,
    Submission,
    TimeMode,
    TimerSnapshot,
    TimerStatus,
)

logger = logging.getLogger(__name__)

UNLIMITED = -1


def _effective_now(submission: Submission, now: datetime) -> datetime:
    # Clocks stop at submission time.
    if submission.submitted_at is not None and submission.submitted_at < now:
        return submission.submitted_at
    return now


def live_elapsed(submission: Submission, now: datetime) -> int:
    """Seconds the currently running section has been open since it was last entered."""
    if not submission.is_section_running:
        return 0
    return elapsed_seconds(submission.section_started_at, now)


def section_elapsed(submission: Submission, section_id: str, now: datetime) -> int:
    """Frozen usage plus live time when ``section_id`` is the running section. Not clamped."""
    used = submission.usage_for(section_id)
    if submission.current_section_id == section_id:
        used += live_elapsed(submission, now)
    return used


def global_elapsed(submission: Submission, now: datetime) -> int:
    return elapsed_seconds(submission.started_at, now)


def enter_section(submission: Submission, section_id: str, now: datetime) -> bool:
    """Make ``section_id`` the running section. Returns False when it already was."""
    if submission.current_section_id == section_id and submission.section_started_at is not None:
        return False

    if submission.is_section_running:
        previous = submission.current_section_id
        total = submission.add_usage(previous, live_elapsed(submission, now))
        logger.info(f"Paused section {previous} on submission {submission.id}; total used {total}s")

    submission.current_section_id = section_id
    submission.section_started_at = now
    logger.info(f"Started section {section_id} on submission {submission.id}")
    return True


def freeze_running_section(submission: Submission, now: datetime) -> None:
    """Fold the running section's live time into ``section_usage`` and stop the clock."""
    if submission.is_section_running:
        submission.add_usage(submission.current_section_id, live_elapsed(submission, now))
    submission.section_started_at = None


def _status(used: int, limit: int, running: bool) -> TimerStatus:
    if limit > 0 and used >= limit:
        return TimerStatus.EXPIRED
    if running:
        return TimerStatus.RUNNING
    if used > 0:
        return TimerStatus.PAUSED
    return TimerStatus.IDLE


def section_timer(submission: Submission, section: SectionConfig, now: datetime) -> SectionTimer:
    now = _effective_now(submission, now)
    limit = section.limit_seconds
    used = section_elapsed(submission, section.id, now)
    if limit > 0:
        used = min(used, limit)
    running = submission.current_section_id == section.id and submission.is_section_running
    return SectionTimer(
        section_id=section.id,
        section_title=section.title,
        limit_minutes=section.time_limit_minutes or 0,
        time_left=limit - used if limit > 0 else UNLIMITED,
        time_used=used,
        total_time=limit,
        status=_status(used, limit, running and not submission.is_completed),
    )


def global_timer(submission: Submission, assessment: AssessmentConfig, now: datetime) -> GlobalTimer:
    now = _effective_now(submission, now)
    limit = assessment.limit_seconds
    used = global_elapsed(submission, now)
    if limit > 0:
        used = min(used, limit)
    if limit > 0 and used >= limit:
        status = TimerStatus.EXPIRED
    elif submission.is_completed:
        status = TimerStatus.PAUSED
    else:
        status = TimerStatus.RUNNING
    return GlobalTimer(
        time_left=limit - used if limit > 0 else UNLIMITED,
        time_used=used,
        total_time=limit,
        status=status,
    )


def snapshot(submission: Submission, assessment: AssessmentConfig, now: datetime) -> TimerSnapshot:
    """Compute every clock of a submission at ``now``."""
    sections = [section_timer(submission, s, now) for s in assessment.sections]
    overall = global_timer(submission, assessment, now)

    started_at = submission.started_at
    expires_at: Optional[datetime] = None

    if assessment.time_mode == TimeMode.SECTION:
        current = next((t for t in sections if t.section_id == submission.current_section_id), None)
        if current is not None:
            primary_status, time_left = current.status, current.time_left
            time_used, total_time = current.time_used, current.total_time
            if submission.section_started_at is not None:
                started_at = submission.section_started_at
            if current.status == TimerStatus.RUNNING and time_left > 0:
                expires_at = now + timedelta(seconds=time_left)
        elif sections:
            # Nothing entered yet: preview the first section's full budget.
            first = sections[0]
            primary_status = TimerStatus.IDLE
            time_left = first.total_time if first.total_time > 0 else UNLIMITED
            time_used, total_time = 0, first.total_time
        else:
            primary_status, time_left, time_used, total_time = TimerStatus.IDLE, 0, 0, 0
    else:
        primary_status, time_left = overall.status, overall.time_left
        time_used, total_time = overall.time_used, overall.total_time
        if overall.status == TimerStatus.RUNNING and time_left > 0:
            expires_at = now + timedelta(seconds=time_left)

    return TimerSnapshot(
        mode=assessment.time_mode,
        status=primary_status,
        time_left=time_left,
        time_used=time_used,
        total_time=total_time,
        started_at=started_at,
        expires_at=expires_at,
        section_id=submission.current_section_id,
        global_timer=overall,
        sections=sections,
    )


def check_time_guard(submission: Submission, assessment: AssessmentConfig, section: Optional[SectionConfig],
                     now: datetime, grace_seconds: int) -> None:
    """Raise TimeExpiredError if a write for ``section`` arrives past its limit plus grace.

    Section mode checks the target section's own clock; global mode checks the
    assessment clock. Unlimited clocks are never checked.
    """
    if assessment.time_mode == TimeMode.SECTION:
        if section is None or section.limit_seconds <= 0:
            return
        used = section_elapsed(submission, section.id, now)
        if used > section.limit_seconds + grace_seconds:
            logger.warning(
                f"Save rejected for submission {submission.id}: section {section.id} used {used}s, "
                f"limit {section.limit_seconds}s"
            )
            raise TimeExpiredError("Section time has expired. Answer cannot be saved.")
        return

    limit = assessment.limit_seconds
    if limit <= 0:
        return
    used = global_elapsed(submission, now)
    if used > limit + grace_seconds:
        logger.warning(f"Save rejected for submission {submission.id}: used {used}s, limit {limit}s")
        raise TimeExpiredError("Assessment time has expired. Answer cannot be saved.")


def is_attempt_over(submission: Submission, assessment: AssessmentConfig, now: datetime, grace_seconds: int) -> bool:
    """True once no clock of the attempt can accept further work.

    A configured duration caps the attempt in either mode. In section mode with
    every section limited, the attempt is over when all section budgets are spent.
    """
    limit = assessment.limit_seconds
    if limit > 0 and global_elapsed(submission, now) > limit + grace_seconds:
        return True
    if assessment.time_mode != TimeMode.SECTION or not assessment.sections:
        return False
    if any(s.limit_seconds <= 0 for s in assessment.sections):
        return False
    return all(
        section_elapsed(submission, s.id, now) > s.limit_seconds + grace_seconds
        for s in assessment.sections
    )
