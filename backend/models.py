from datetime import datetime
from enum import Enum
from typing import List, Optional, Any, Dict, Union, Annotated, Literal
from pydantic import BaseModel, Field, ConfigDict, field_validator, model_validator
import json
import uuid


# ===========================
# COSMOS DB SPECIFIC MODELS
# ===========================

class CosmosDocument(BaseModel):
    """Base class for all Cosmos DB documents"""
    model_config = ConfigDict(
        populate_by_name=True,
        arbitrary_types_allowed=True,
        extra="ignore"
    )

    # Azure Cosmos DB standard fields
    id: str = Field(default_factory=lambda: str(uuid.uuid4()), description="Document ID")
    etag: Optional[str] = Field(None, alias="_etag", description="Cosmos DB ETag for optimistic concurrency")

    def to_document(self) -> Dict[str, Any]:
        """Serialize for storage (snake_case keys, ISO timestamps, no system fields)."""
        return self.model_dump(mode="json", by_alias=False, exclude={"etag"})

    def to_response(self) -> Dict[str, Any]:
        """Serialize for API responses (camelCase keys)."""
        return self.model_dump(mode="json", by_alias=True, exclude={"etag"})


# ===========================
# ENUMS AND BASE TYPES
# ===========================

class TimeMode(str, Enum):
    GLOBAL = "global"
    SECTION = "section"


class SubmissionStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    SUBMITTED = "submitted"
    EVALUATED = "evaluated"
    EXPIRED = "expired"


COMPLETED_STATUSES = {SubmissionStatus.SUBMITTED, SubmissionStatus.EVALUATED}


class AnswerStatus(str, Enum):
    UNATTEMPTED = "unattempted"
    ATTEMPTED = "attempted"
    MARKED_FOR_REVIEW = "marked_for_review"
    EVALUATED = "evaluated"


class QuestionType(str, Enum):
    SINGLE_CHOICE = "single_choice"
    MULTIPLE_CHOICE = "multiple_choice"
    FILL_BLANK = "fill_blank"
    CODING = "coding"


class TimerStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    EXPIRED = "expired"


class VerdictStatus(str, Enum):
    PENDING = "pending"
    PASSED = "passed"
    FAILED = "failed"
    DISQUALIFIED = "disqualified"


# ===========================
# ANSWER KEYS
# ===========================

def normalize_choice_list(value: Any) -> List[str]:
    """Normalize a stored or submitted choice selection into trimmed strings.

    Accepts a list, a JSON array string ('["1","3"]'), a comma-delimited
    string ("1,3") or a single scalar. Empty entries are dropped.
    """
    if value is None:
        return []
    if isinstance(value, (list, tuple, set)):
        return [str(v).strip() for v in value if str(v).strip()]
    text = str(value).strip()
    if text.startswith("[") and text.endswith("]"):
        try:
            parsed = json.loads(text)
        except ValueError:
            parsed = None
        if isinstance(parsed, list):
            return [str(v).strip() for v in parsed if str(v).strip()]
        text = text[1:-1]
    return [part.strip() for part in text.split(",") if part.strip()]


class SingleChoiceKey(BaseModel):
    type: Literal["single_choice"] = "single_choice"
    correct: str

    @field_validator("correct", mode="before")
    @classmethod
    def _stringify(cls, v):
        return "" if v is None else str(v).strip()


class MultipleChoiceKey(BaseModel):
    type: Literal["multiple_choice"] = "multiple_choice"
    correct: List[str]

    @field_validator("correct", mode="before")
    @classmethod
    def _normalize(cls, v):
        return normalize_choice_list(v)


class FillBlankKey(BaseModel):
    type: Literal["fill_blank"] = "fill_blank"
    expected: str

    @field_validator("expected", mode="before")
    @classmethod
    def _stringify(cls, v):
        return "" if v is None else str(v)


class CodingKey(BaseModel):
    type: Literal["coding"] = "coding"


AnswerKey = Annotated[
    Union[SingleChoiceKey, MultipleChoiceKey, FillBlankKey, CodingKey],
    Field(discriminator="type")
]


# ===========================
# ASSESSMENTS CONTAINER MODELS
# ===========================

class QuestionConfig(BaseModel):
    """A question inside a section. The raw ``correctAnswer`` is resolved into ``key`` on load."""
    model_config = ConfigDict(populate_by_name=True)

    id: str
    type: QuestionType = QuestionType.SINGLE_CHOICE
    marks: Optional[float] = Field(None, ge=0)
    key: AnswerKey

    @model_validator(mode="before")
    @classmethod
    def _resolve_key(cls, data: Any) -> Any:
        if not isinstance(data, dict) or "key" in data:
            return data
        data = dict(data)
        qtype = data.get("type") or QuestionType.SINGLE_CHOICE.value
        qtype = qtype.value if isinstance(qtype, QuestionType) else str(qtype)
        raw = data.pop("correct_answer", data.pop("correctAnswer", None))
        if qtype == QuestionType.MULTIPLE_CHOICE.value:
            data["key"] = {"type": qtype, "correct": raw}
        elif qtype == QuestionType.FILL_BLANK.value:
            data["key"] = {"type": qtype, "expected": raw}
        elif qtype == QuestionType.CODING.value:
            data["key"] = {"type": qtype}
        else:
            data["key"] = {"type": QuestionType.SINGLE_CHOICE.value, "correct": raw}
        return data


class ProblemConfig(BaseModel):
    """Link between a section and a coding problem, with the marks allocated to it."""
    model_config = ConfigDict(populate_by_name=True)

    problem_id: str = Field(..., alias="problemId")
    title: Optional[str] = None
    marks: Optional[float] = Field(None, ge=0)


class SectionConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    title: str = ""
    type: str = "mcq"
    order: int = 0
    time_limit_minutes: Optional[float] = Field(None, alias="timeLimitMinutes", ge=0)
    negative_marking: float = Field(0.0, alias="negativeMarking", ge=0, le=1)
    marks_per_question: Optional[float] = Field(None, alias="marksPerQuestion", ge=0)
    question_count: Optional[int] = Field(None, alias="questionCount", ge=0)
    questions: List[QuestionConfig] = Field(default_factory=list)
    problems: List[ProblemConfig] = Field(default_factory=list)

    @property
    def limit_seconds(self) -> int:
        """Section budget in seconds; 0 means unlimited."""
        return int((self.time_limit_minutes or 0) * 60)

    def find_question(self, question_id: str) -> Optional[QuestionConfig]:
        return next((q for q in self.questions if q.id == question_id), None)

    def find_problem(self, problem_id: str) -> Optional[ProblemConfig]:
        return next((p for p in self.problems if p.problem_id == problem_id), None)


class PlagiarismConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    enabled: bool = False
    strictness: str = "Medium"
    similarity_threshold: Optional[int] = Field(None, alias="similarityThreshold")
    ai_sensitivity: str = Field("Medium", alias="aiSensitivity")


class AssessmentConfig(CosmosDocument):
    """Read-only timing and marking configuration of an assessment"""
    title: str = ""
    time_mode: TimeMode = Field(TimeMode.GLOBAL, alias="timeMode")
    duration_minutes: Optional[float] = Field(None, alias="durationMinutes", ge=0)
    sections: List[SectionConfig] = Field(default_factory=list)
    plagiarism: Optional[PlagiarismConfig] = None

    @field_validator("sections")
    @classmethod
    def _order_sections(cls, v: List[SectionConfig]) -> List[SectionConfig]:
        return sorted(v, key=lambda s: s.order)

    @property
    def limit_seconds(self) -> int:
        return int((self.duration_minutes or 0) * 60)

    def find_section(self, section_id: str) -> Optional[SectionConfig]:
        return next((s for s in self.sections if s.id == section_id), None)

    def section_for_problem(self, problem_id: str) -> Optional[SectionConfig]:
        return next((s for s in self.sections if s.find_problem(problem_id)), None)


# ===========================
# ANSWERS CONTAINER MODELS
# ===========================

class PlagiarismResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    similarity: float = 0.0
    ai_score: float = Field(0.0, alias="aiScore")
    verdict: str = "Clean"
    matches: List[Dict[str, Any]] = Field(default_factory=list)
    report_url: Optional[str] = Field(None, alias="reportUrl")


class CodingResult(BaseModel):
    """Judge output cached on a coding answer. ``score`` is a 0-100 percentage."""
    model_config = ConfigDict(populate_by_name=True)

    code: Optional[str] = None
    language: Optional[str] = None
    passed_tests: int = Field(0, alias="passedTests", ge=0)
    total_tests: int = Field(0, alias="totalTests", ge=0)
    status: str = "evaluated"
    score: float = 0.0
    max_score: float = Field(100.0, alias="maxScore")
    sample_results: List[Dict[str, Any]] = Field(default_factory=list, alias="sampleResults")
    hidden_summary: Optional[Dict[str, Any]] = Field(None, alias="hiddenSummary")
    plagiarism: Optional[PlagiarismResult] = None


def answer_document_id(submission_id: str, question_id: Optional[str] = None,
                       problem_id: Optional[str] = None) -> str:
    """Deterministic answer id so each (submission, question|problem) pair maps to one document."""
    if question_id:
        return f"{submission_id}:q:{question_id}"
    return f"{submission_id}:p:{problem_id}"


class Answer(CosmosDocument):
    submission_id: str = Field(..., alias="submissionId")
    section_id: Optional[str] = Field(None, alias="sectionId")
    question_id: Optional[str] = Field(None, alias="questionId")
    problem_id: Optional[str] = Field(None, alias="problemId")
    status: AnswerStatus = AnswerStatus.UNATTEMPTED
    selected_answer: Optional[Union[str, List[str]]] = Field(None, alias="selectedAnswer")
    code: Optional[str] = None
    language: Optional[str] = None
    marks_obtained: Optional[float] = Field(None, alias="marksObtained")
    max_marks: float = Field(1.0, alias="maxMarks")
    is_correct: Optional[bool] = Field(None, alias="isCorrect")
    coding_result: Optional[CodingResult] = Field(None, alias="codingResult")
    time_spent: int = Field(0, alias="timeSpent")
    client_scored: bool = Field(False, alias="clientScored")
    replay_tokens: List[str] = Field(default_factory=list, alias="replayTokens")
    created_at: Optional[datetime] = Field(None, alias="createdAt")
    updated_at: Optional[datetime] = Field(None, alias="updatedAt")

    @model_validator(mode="after")
    def _one_target(self):
        if bool(self.question_id) == bool(self.problem_id):
            raise ValueError("exactly one of question_id or problem_id must be set")
        return self

    @property
    def has_response(self) -> bool:
        if self.code:
            return True
        if isinstance(self.selected_answer, list):
            return len(self.selected_answer) > 0
        return bool(self.selected_answer)

    @property
    def is_unattempted(self) -> bool:
        return self.status == AnswerStatus.UNATTEMPTED or not self.has_response


# ===========================
# SUBMISSIONS CONTAINER MODELS
# ===========================

class SectionScore(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    section_id: str = Field(..., alias="sectionId")
    section_title: str = Field("", alias="sectionTitle")
    section_type: str = Field("", alias="sectionType")
    total_marks: float = Field(0.0, alias="totalMarks")
    obtained_marks: float = Field(0.0, alias="obtainedMarks")
    correct_answers: int = Field(0, alias="correctAnswers")
    wrong_answers: int = Field(0, alias="wrongAnswers")
    unattempted: int = 0
    total_questions: int = Field(0, alias="totalQuestions")
    percentage: float = 0.0
    negative_marks: float = Field(0.0, alias="negativeMarks")
    time_taken: int = Field(0, alias="timeTaken")


class CodingStats(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    total: int = 0
    attempted: int = 0
    fully_solved: int = Field(0, alias="fullySolved")
    partially_solved: int = Field(0, alias="partiallySolved")
    total_score: float = Field(0.0, alias="totalScore")
    max_score: float = Field(0.0, alias="maxScore")


class PlagiarismSummary(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    max_similarity: float = Field(0.0, alias="maxSimilarity")
    max_ai_score: float = Field(0.0, alias="maxAiScore")
    verdict: str = "Clean"
    flagged_count: int = Field(0, alias="flaggedCount")


class Verdict(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: VerdictStatus = VerdictStatus.PENDING
    final_score: float = Field(0.0, alias="finalScore")
    adjusted_score: float = Field(0.0, alias="adjustedScore")
    violation_penalty: float = Field(0.0, alias="violationPenalty")
    notes: Optional[str] = None
    evaluated_by: Optional[str] = Field(None, alias="evaluatedBy")
    evaluated_at: Optional[datetime] = Field(None, alias="evaluatedAt")


class Analytics(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    total_questions: int = Field(0, alias="totalQuestions")
    attempted_questions: int = Field(0, alias="attemptedQuestions")
    correct_answers: int = Field(0, alias="correctAnswers")
    wrong_answers: int = Field(0, alias="wrongAnswers")
    unattempted: int = 0
    total_marks: float = Field(0.0, alias="totalMarks")
    obtained_marks: float = Field(0.0, alias="obtainedMarks")
    negative_marks: float = Field(0.0, alias="negativeMarks")
    percentage: float = 0.0
    time_taken: int = Field(0, alias="timeTaken")
    coding_problems: Optional[CodingStats] = Field(None, alias="codingProblems")
    plagiarism: Optional[PlagiarismSummary] = None
    verdict: Verdict = Field(default_factory=Verdict)


class Submission(CosmosDocument):
    """One candidate's attempt at one assessment"""
    assessment_id: str = Field(..., alias="assessmentId")
    user_id: str = Field(..., alias="userId")
    status: SubmissionStatus = SubmissionStatus.IN_PROGRESS
    started_at: datetime = Field(..., alias="startedAt")
    created_at: datetime = Field(..., alias="createdAt")
    current_section_id: Optional[str] = Field(None, alias="currentSectionId")
    section_started_at: Optional[datetime] = Field(None, alias="sectionStartedAt")
    section_usage: Dict[str, int] = Field(default_factory=dict, alias="sectionUsage")
    total_score: float = Field(0.0, alias="totalScore")
    max_score: float = Field(0.0, alias="maxScore")
    percentage: float = 0.0
    section_scores: List[SectionScore] = Field(default_factory=list, alias="sectionScores")
    analytics: Optional[Analytics] = None
    submitted_at: Optional[datetime] = Field(None, alias="submittedAt")
    is_auto_submitted: bool = Field(False, alias="isAutoSubmitted")

    @property
    def is_completed(self) -> bool:
        return self.status in COMPLETED_STATUSES

    @property
    def is_section_running(self) -> bool:
        return self.current_section_id is not None and self.section_started_at is not None

    def usage_snapshot(self) -> Dict[str, int]:
        """Copy of the frozen per-section usage."""
        return dict(self.section_usage)

    def usage_for(self, section_id: str) -> int:
        return self.section_usage.get(section_id, 0)

    def add_usage(self, section_id: str, seconds: int) -> int:
        total = self.section_usage.get(section_id, 0) + max(0, int(seconds))
        self.section_usage[section_id] = total
        return total


# ===========================
# REQUEST / RESPONSE MODELS
# ===========================

class StartSubmissionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., alias="userId", min_length=1)


class SaveAnswerRequest(BaseModel):
    """Partial answer payload; unset fields leave the stored answer untouched."""
    model_config = ConfigDict(populate_by_name=True)

    section_id: str = Field(..., alias="sectionId", min_length=1)
    question_id: Optional[str] = Field(None, alias="questionId")
    problem_id: Optional[str] = Field(None, alias="problemId")
    selected_answer: Optional[Union[str, List[str]]] = Field(None, alias="selectedAnswer")
    code: Optional[str] = None
    language: Optional[str] = None
    time_spent: Optional[int] = Field(None, alias="timeSpent", ge=0)
    marked_for_review: Optional[bool] = Field(None, alias="markedForReview")
    marks_obtained: Optional[float] = Field(None, alias="marksObtained")
    max_marks: Optional[float] = Field(None, alias="maxMarks", ge=0)


class CodingResultRequest(BaseModel):
    """Judge output for an explicitly submitted coding answer."""
    model_config = ConfigDict(populate_by_name=True)

    section_id: Optional[str] = Field(None, alias="sectionId")
    code: str
    language: str
    passed_tests: int = Field(0, alias="passedTests", ge=0)
    total_tests: int = Field(0, alias="totalTests", ge=0)
    status: str = "evaluated"
    score: float = Field(..., ge=0, le=100, description="Percentage of test cases passed")
    sample_results: List[Dict[str, Any]] = Field(default_factory=list, alias="sampleResults")
    hidden_summary: Optional[Dict[str, Any]] = Field(None, alias="hiddenSummary")


class SubmitRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    is_auto_submit: bool = Field(False, alias="isAutoSubmit")
    answers: List[Dict[str, Any]] = Field(default_factory=list, description="Client-buffered answers replayed before evaluation")


class VerdictUpdateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: Optional[VerdictStatus] = None
    adjusted_score: Optional[float] = Field(None, alias="adjustedScore")
    violation_penalty: Optional[float] = Field(None, alias="violationPenalty", ge=0)
    notes: Optional[str] = None
    evaluated_by: Optional[str] = Field(None, alias="evaluatedBy")


class PlagiarismWebhookPayload(BaseModel):
    submission_id: str
    problem_id: str
    user_id: Optional[str] = None
    assessment_id: Optional[str] = None
    max_similarity: float = 0.0
    ai_score: float = 0.0
    verdict: str = "Clean"
    matches: List[Dict[str, Any]] = Field(default_factory=list)
    report_path: Optional[str] = None


class SectionTimer(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    section_id: str = Field(..., alias="sectionId")
    section_title: str = Field("", alias="sectionTitle")
    limit_minutes: float = Field(0, alias="limitMinutes")
    time_left: int = Field(..., alias="timeLeft")
    time_used: int = Field(..., alias="timeUsed")
    total_time: int = Field(..., alias="totalTime")
    status: TimerStatus


class GlobalTimer(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    time_left: int = Field(..., alias="timeLeft")
    time_used: int = Field(..., alias="timeUsed")
    total_time: int = Field(..., alias="totalTime")
    status: TimerStatus


class TimerSnapshot(BaseModel):
    """Point-in-time view of every clock of a submission. ``timeLeft == -1`` means unlimited."""
    model_config = ConfigDict(populate_by_name=True)

    mode: TimeMode
    status: TimerStatus
    time_left: int = Field(..., alias="timeLeft")
    time_used: int = Field(..., alias="timeUsed")
    total_time: int = Field(..., alias="totalTime")
    started_at: Optional[datetime] = Field(None, alias="startedAt")
    expires_at: Optional[datetime] = Field(None, alias="expiresAt")
    section_id: Optional[str] = Field(None, alias="sectionId")
    global_timer: GlobalTimer = Field(..., alias="global")
    sections: List[SectionTimer] = Field(default_factory=list)
