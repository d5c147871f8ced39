"""Centralized constants for Cosmos DB containers and engine settings."""
from typing import Dict
import os
from dotenv import load_dotenv

load_dotenv()

# ===== Timing Enforcement Settings =====

# GRACE_SECONDS: Seconds a write may arrive after the section/global limit and still be accepted
GRACE_SECONDS = int(os.getenv("GRACE_SECONDS", "10"))

# AUTO_START_FIRST_SECTION: Start the first section's clock when a section-timed attempt is created
AUTO_START_FIRST_SECTION = os.getenv("AUTO_START_FIRST_SECTION", "true").lower() == "true"

# TRUST_CLIENT_MARKS: Accept marks_obtained supplied by the client (externally judged answers)
TRUST_CLIENT_MARKS = os.getenv("TRUST_CLIENT_MARKS", "true").lower() == "true"

# ===== Auto-Submission Settings =====

# AUTO_SUBMIT_ENABLED: Submit expired attempts from the sweep instead of only marking them expired
AUTO_SUBMIT_ENABLED = os.getenv("AUTO_SUBMIT_ENABLED", "true").lower() == "true"

# AUTO_SUBMIT_GRACE_PERIOD: Seconds past the limit before the sweep picks up an attempt
AUTO_SUBMIT_GRACE_PERIOD = int(os.getenv("AUTO_SUBMIT_GRACE_PERIOD", "30"))

# ===== Scoring Defaults =====

DEFAULT_QUESTION_MARKS = float(os.getenv("DEFAULT_QUESTION_MARKS", "1"))
DEFAULT_PROBLEM_MARKS = float(os.getenv("DEFAULT_PROBLEM_MARKS", "100"))
# Allocation used when a coding result arrives for a problem with no configured marks
DEFAULT_CODING_RESULT_MARKS = float(os.getenv("DEFAULT_CODING_RESULT_MARKS", "10"))

# ===== Plagiarism Service Settings =====

PLAGIARISM_SERVICE_URL = os.getenv("PLAGIARISM_SERVICE_URL", "http://localhost:8002")
PLAGIARISM_TIMEOUT = int(os.getenv("PLAGIARISM_TIMEOUT", "30"))
PLAGIARISM_MAX_RETRIES = int(os.getenv("PLAGIARISM_MAX_RETRIES", "3"))
PLAGIARISM_QUEUE_SIZE = int(os.getenv("PLAGIARISM_QUEUE_SIZE", "1000"))
PLAGIARISM_DEFAULT_THRESHOLD = int(os.getenv("PLAGIARISM_DEFAULT_THRESHOLD", "75"))

# ===== Container Definitions =====

# Container definitions with intended partition key fields (logical keys, not paths)
COLLECTIONS: Dict[str, Dict[str, str]] = {
    "ASSESSMENTS": {"name": "assessments", "pk_field": "id"},
    "SUBMISSIONS": {"name": "submissions", "pk_field": "assessment_id"},
    "ANSWERS": {"name": "answers", "pk_field": "submission_id"},
}

# Convenience single-source names
CONTAINER = {k: v["name"] for k, v in COLLECTIONS.items()}
