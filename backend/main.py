from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from azure.cosmos import CosmosClient
from azure.cosmos.cosmos_client import ConnectionPolicy
from azure.identity import DefaultAzureCredential
import os
import logging
import time
from contextlib import asynccontextmanager

from constants import CONTAINER
from database import cosmos_metrics, get_cosmosdb_service
from datetime_utils import now_ist_iso
from locks import SubmissionLocks
from logging_config import configure_logging
from plagiarism import PlagiarismDispatcher
from routers import candidate, admin
from submission_service import SubmissionService
from submission_store import SubmissionStore

configure_logging()
logger = logging.getLogger(__name__)


def create_optimized_cosmos_client() -> CosmosClient:
    """Create a Cosmos DB client from a connection string, an account key, or managed identity"""
    connection_string = os.getenv("COSMOS_DB_CONNECTION_STRING")
    consistency_level = os.getenv("COSMOS_DB_CONSISTENCY_LEVEL", "Session")

    connection_policy = ConnectionPolicy()
    connection_policy.request_timeout = 30

    preferred_locations = os.getenv("COSMOS_DB_PREFERRED_LOCATIONS", "").split(",")
    if preferred_locations and preferred_locations[0]:
        connection_policy.preferred_locations = [loc.strip() for loc in preferred_locations]

    connection_policy.retry_options.max_retry_attempt_count = 3
    connection_policy.retry_options.fixed_retry_interval_in_milliseconds = 1000
    connection_policy.retry_options.max_wait_time_in_seconds = 10

    if connection_string:
        logger.info("Connecting to Cosmos DB with connection string")
        return CosmosClient.from_connection_string(
            connection_string, connection_policy=connection_policy, consistency_level=consistency_level
        )

    endpoint = os.environ["COSMOS_DB_ENDPOINT"]
    key = os.getenv("COSMOS_DB_KEY")
    credential = key if key else DefaultAzureCredential()
    logger.info(f"Connecting to Cosmos DB at {endpoint} ({'key' if key else 'managed identity'})")
    return CosmosClient(
        url=endpoint,
        credential=credential,
        connection_policy=connection_policy,
        consistency_level=consistency_level
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    database_name = os.getenv("DATABASE_NAME", "assessment_platform")
    app.state.db_service = None
    app.state.submission_service = None
    app.state.plagiarism_dispatcher = None

    if os.getenv("COSMOS_DB_CONNECTION_STRING") or os.getenv("COSMOS_DB_ENDPOINT"):
        try:
            cosmos_client = create_optimized_cosmos_client()
            database_client = cosmos_client.get_database_client(database_name)
            db_service = await get_cosmosdb_service(database_client)

            dispatcher = PlagiarismDispatcher()
            await dispatcher.start()

            app.state.db_service = db_service
            app.state.plagiarism_dispatcher = dispatcher
            app.state.submission_service = SubmissionService(
                SubmissionStore(db_service),
                locks=SubmissionLocks(),
                dispatcher=dispatcher,
            )
            logger.info(f"Connected to Cosmos DB: {database_name}")
        except Exception as e:
            logger.exception(f"Cosmos DB connection failed, running without database: {e}")
    else:
        logger.warning("COSMOS_DB_ENDPOINT not provided, running without database")

    yield

    # Shutdown
    if app.state.plagiarism_dispatcher is not None:
        await app.state.plagiarism_dispatcher.stop()


app = FastAPI(
    title="Assessment Submission Engine",
    description="Timing, answer capture and scoring for online assessments",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    max_age=600,
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Report malformed request bodies with the same 400 detail shape as engine validation errors"""
    problems = "; ".join(
        f"{'.'.join(str(part) for part in err.get('loc', ()))}: {err.get('msg')}" for err in exc.errors()
    )
    logger.info(f"Rejected {request.method} {request.url.path}: {problems}")
    return JSONResponse(
        status_code=400,
        content={"detail": {"error": "validation_error", "message": f"Invalid request: {problems}"}},
    )


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log every request with its status and duration"""
    start_time = time.time()
    response = await call_next(request)
    process_time = time.time() - start_time
    logger.info(f"{request.method} {request.url.path} -> {response.status_code} in {process_time:.4f}s")
    return response


@app.get("/")
async def root():
    return {"message": "Assessment Submission Engine API", "version": "1.0.0"}


@app.get("/health")
async def health_check(request: Request):
    connected = getattr(request.app.state, "submission_service", None) is not None
    return {"status": "healthy", "database": "connected" if connected else "disconnected"}


@app.get("/metrics")
async def get_metrics(request: Request):
    """Get Cosmos DB performance metrics"""
    db_service = getattr(request.app.state, "db_service", None)
    if db_service is None:
        raise HTTPException(status_code=503, detail={"error": "database_unavailable", "message": "Database not available"})

    dispatcher = getattr(request.app.state, "plagiarism_dispatcher", None)
    return {
        "service_metrics": db_service.get_metrics(),
        "containers": [await db_service.get_container_statistics(name) for name in CONTAINER.values()],
        "plagiarism_outbox": {
            "queued": dispatcher.queue.qsize(),
            "delivered": dispatcher.delivered,
            "failed": dispatcher.failed,
        } if dispatcher else None,
        "timestamp": now_ist_iso()
    }


@app.post("/metrics/reset")
async def reset_metrics():
    """Reset performance metrics (for testing/monitoring)"""
    cosmos_metrics.reset()
    return {"message": "Metrics reset successfully"}


# Include routers
app.include_router(candidate.router, prefix="/api/candidate", tags=["candidate"])
app.include_router(admin.router, prefix="/api/admin", tags=["admin"])


def main():
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))


if __name__ == "__main__":
    main()
