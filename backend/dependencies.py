from fastapi import HTTPException, Request

from submission_service import SubmissionService


async def get_submission_service(request: Request) -> SubmissionService:
    """Dependency to provide the submission service wired in the app lifespan"""
    service = getattr(request.app.state, "submission_service", None)
    if service is None:
        raise HTTPException(
            status_code=503,
            detail={
                "error": "database_unavailable",
                "message": "Database not available. Check connection configuration."
            }
        )
    return service
