"""
Plagiarism check hand-off.

Submit appends one job per coding answer to an in-process outbox queue; a
background worker started in the application lifespan POSTs each job to the
plagiarism service with its own retry policy. Results come back through the
admin webhook and are recorded by ``record_plagiarism_result``.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

import httpx

from constants import (
    PLAGIARISM_DEFAULT_THRESHOLD,
    PLAGIARISM_MAX_RETRIES,
    PLAGIARISM_QUEUE_SIZE,
    PLAGIARISM_SERVICE_URL,
    PLAGIARISM_TIMEOUT,
)
from models import (
    Answer,
    AssessmentConfig,
    CodingResult,
    PlagiarismResult,
    PlagiarismSummary,
    PlagiarismWebhookPayload,
    Submission,
)

logger = logging.getLogger(__name__)

# Severity order used when folding per-problem verdicts into the submission summary
VERDICT_SEVERITY = {"Clean": 0, "AI Generated": 1, "Suspicious": 2, "Plagiarized": 3}


def build_plagiarism_jobs(submission: Submission, assessment: AssessmentConfig,
                          answers: List[Answer]) -> List[Dict[str, Any]]:
    """Payloads for every coding answer with code, or none when checks are disabled."""
    config = assessment.plagiarism
    if config is None or not config.enabled:
        return []
    jobs = []
    for answer in answers:
        if not answer.problem_id or not answer.code:
            continue
        jobs.append({
            "submission_id": submission.id,
            "user_id": submission.user_id,
            "assessment_id": submission.assessment_id,
            "problem_id": answer.problem_id,
            "code": answer.code,
            "language": answer.language or "unknown",
            "strictness": config.strictness or "Medium",
            "similarity_threshold": config.similarity_threshold or PLAGIARISM_DEFAULT_THRESHOLD,
            "ai_sensitivity": config.ai_sensitivity or "Medium",
        })
    return jobs


def apply_plagiarism_result(answer: Answer, submission: Submission, payload: PlagiarismWebhookPayload) -> None:
    """Attach a webhook result to the coding answer and fold it into the submission summary."""
    result = PlagiarismResult(
        similarity=payload.max_similarity,
        ai_score=payload.ai_score,
        verdict=payload.verdict,
        matches=payload.matches,
        report_url=payload.report_path,
    )
    if answer.coding_result is None:
        answer.coding_result = CodingResult(code=answer.code, language=answer.language)
    answer.coding_result.plagiarism = result

    if submission.analytics is None:
        return
    summary = submission.analytics.plagiarism or PlagiarismSummary()
    summary.max_similarity = max(summary.max_similarity, payload.max_similarity)
    summary.max_ai_score = max(summary.max_ai_score, payload.ai_score)
    if payload.verdict != "Clean":
        summary.flagged_count += 1
        if VERDICT_SEVERITY.get(payload.verdict, 0) > VERDICT_SEVERITY.get(summary.verdict, 0):
            summary.verdict = payload.verdict
    submission.analytics.plagiarism = summary


class PlagiarismDispatcher:
    """Outbox queue plus the worker that drains it."""

    def __init__(self, base_url: str = PLAGIARISM_SERVICE_URL, timeout: float = PLAGIARISM_TIMEOUT,
                 max_retries: int = PLAGIARISM_MAX_RETRIES, queue_size: int = PLAGIARISM_QUEUE_SIZE,
                 retry_delay: float = 1.0, client: Optional[httpx.AsyncClient] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self._client = client
        self._owns_client = client is None
        self._worker: Optional[asyncio.Task] = None
        self.delivered = 0
        self.failed = 0

    def enqueue(self, jobs: List[Dict[str, Any]]) -> int:
        """Append jobs without waiting; jobs that do not fit are dropped and logged."""
        accepted = 0
        for job in jobs:
            try:
                self.queue.put_nowait(job)
                accepted += 1
            except asyncio.QueueFull:
                logger.error(
                    f"Plagiarism outbox full; dropped check for submission {job.get('submission_id')} "
                    f"problem {job.get('problem_id')}"
                )
        return accepted

    async def start(self) -> None:
        if self._worker is not None:
            return
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        self._worker = asyncio.create_task(self._run(), name="plagiarism-outbox")
        logger.info(f"Plagiarism worker started for {self.base_url}")

    async def stop(self) -> None:
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
        logger.info(f"Plagiarism worker stopped ({self.queue.qsize()} checks still queued)")

    async def drain(self) -> None:
        """Wait until every queued job has been processed."""
        await self.queue.join()

    async def _run(self) -> None:
        while True:
            job = await self.queue.get()
            try:
                await self.deliver(job)
            except Exception as e:
                logger.exception(f"Unexpected error delivering plagiarism check: {e}")
            finally:
                self.queue.task_done()

    async def deliver(self, job: Dict[str, Any]) -> bool:
        """POST one job, retrying with exponential backoff. Returns False once retries are exhausted."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        url = f"{self.base_url}/detect-final"
        retry_count = 0
        while True:
            try:
                response = await self._client.post(url, json=job, timeout=self.timeout)
                response.raise_for_status()
                self.delivered += 1
                logger.info(
                    f"Plagiarism check accepted for submission {job['submission_id']} "
                    f"problem {job['problem_id']} ({response.status_code})"
                )
                return True
            except httpx.HTTPError as e:
                retry_count += 1
                logger.warning(f"Plagiarism check attempt {retry_count} failed: {e}")
                if retry_count > self.max_retries:
                    self.failed += 1
                    logger.error(
                        f"Plagiarism check for submission {job['submission_id']} problem {job['problem_id']} "
                        f"failed after {retry_count} attempts"
                    )
                    return False
                await asyncio.sleep(self.retry_delay * (2 ** (retry_count - 1)))
