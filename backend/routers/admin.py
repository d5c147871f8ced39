from fastapi import APIRouter, Depends
import logging

from constants import AUTO_SUBMIT_ENABLED, AUTO_SUBMIT_GRACE_PERIOD
from dependencies import get_submission_service
from error_utils import AssessmentError, raise_http, safe_raise_http
from models import PlagiarismWebhookPayload, VerdictUpdateRequest
from submission_service import SubmissionService

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/submissions/{submission_id}")
async def get_submission(
    submission_id: str,
    service: SubmissionService = Depends(get_submission_service)
):
    """Submission with all of its answers, for organizer review."""
    try:
        submission, answers = await service.get_submission_detail(submission_id)
        return {
            "submission": submission.to_response(),
            "answers": [a.to_response() for a in answers],
        }
    except AssessmentError as e:
        raise_http(e)
    except Exception as e:
        safe_raise_http("Failed to load submission", e, error_code="submission_load_failed")


@router.patch("/submissions/{submission_id}/verdict")
async def update_verdict(
    submission_id: str,
    request: VerdictUpdateRequest,
    service: SubmissionService = Depends(get_submission_service)
):
    """Override the verdict without touching the computed score."""
    try:
        submission = await service.override_verdict(submission_id, request)
        return {
            "submissionId": submission.id,
            "totalScore": submission.total_score,
            "verdict": submission.analytics.verdict.model_dump(mode="json", by_alias=True),
        }
    except AssessmentError as e:
        raise_http(e)
    except Exception as e:
        safe_raise_http("Failed to update verdict", e, error_code="verdict_update_failed")


@router.post("/plagiarism/webhook")
async def plagiarism_webhook(
    payload: PlagiarismWebhookPayload,
    service: SubmissionService = Depends(get_submission_service)
):
    """Callback from the plagiarism service with the result for one coding answer."""
    try:
        answer = await service.record_plagiarism_result(payload)
        return {"success": True, "answerId": answer.id}
    except AssessmentError as e:
        raise_http(e)
    except Exception as e:
        safe_raise_http("Failed to record plagiarism result", e, error_code="plagiarism_webhook_failed")


@router.post("/submissions/auto-submit")
async def run_auto_submit(service: SubmissionService = Depends(get_submission_service)):
    """Close every in-progress attempt whose time has run out."""
    try:
        stats = await service.auto_submit_expired(AUTO_SUBMIT_ENABLED, AUTO_SUBMIT_GRACE_PERIOD)
        return {"autoSubmitEnabled": AUTO_SUBMIT_ENABLED, **stats}
    except Exception as e:
        safe_raise_http("Auto-submit sweep failed", e, error_code="auto_submit_failed")
