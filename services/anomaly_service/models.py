# models.py - Anomalies, workflow definitions and execution state
# This file defines the data models shared by ingestion, the workflow engine and the API.

from pydantic import BaseModel, Field, computed_field, field_validator
from typing import Dict, List, Optional, Any
from datetime import datetime
from enum import Enum
import uuid

class AnomalyType(str, Enum):
    WEATHER = "weather"
    SEISMIC = "seismic"
    TRAFFIC = "traffic"
    ENVIRONMENTAL = "environmental"
    SECURITY = "security"
    HEALTH = "health"
    INFRASTRUCTURE = "infrastructure"
    OTHER = "other"

class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

class AnomalyStatus(str, Enum):
    DETECTED = "detected"
    ANALYZING = "analyzing"
    VERIFIED = "verified"
    PENDING_REVIEW = "pending_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    RESOLVED = "resolved"

class WorkflowStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    PAUSED = "paused"

class DefinitionStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    DRAFT = "draft"

class WorkflowType(str, Enum):
    DEFAULT = "default"
    EMERGENCY = "emergency"
    VERIFICATION = "verification"
    ESCALATION = "escalation"
    CUSTOM = "custom"

class StepType(str, Enum):
    INTAKE = "intake"
    AI_ANALYSIS = "ai_analysis"
    VERIFICATION = "verification"
    DECISION = "decision"
    HUMAN_REVIEW = "human_review"
    APPROVAL = "approval"
    RESPONSE = "response"
    NOTIFICATION = "notification"
    CUSTOM = "custom"

class Decision(str, Enum):
    AUTO_APPROVED = "auto_approved"
    REQUIRES_REVIEW = "requires_review"

HIGH_SEVERITIES = (Severity.HIGH, Severity.CRITICAL)
TERMINAL_EXECUTION_STATUSES = (WorkflowStatus.COMPLETED, WorkflowStatus.FAILED, WorkflowStatus.CANCELLED)


def clamp_confidence(value: Any) -> float:
    """Coerce a confidence score into [0, 1]; unparseable values become 0."""
    try:
        value = float(value)
    except (TypeError, ValueError):
        return 0.0
    if value != value:  # NaN
        return 0.0
    return min(1.0, max(0.0, value))


# =========================
# ANOMALIES
# =========================

class Anomaly(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    title: str
    description: str = ""
    type: AnomalyType = AnomalyType.OTHER
    severity: Severity = Severity.MEDIUM
    status: AnomalyStatus = AnomalyStatus.DETECTED
    confidence: float = 0.0
    latitude: float
    longitude: float
    location: str = ""

    # Provenance
    source_id: Optional[str] = None
    source_type: str = "manual"
    raw_data: Dict[str, Any] = Field(default_factory=dict)
    ai_analysis: Optional[Dict[str, Any]] = None
    verification_data: Optional[Dict[str, Any]] = None
    impact_assessment: Optional[Dict[str, Any]] = None
    media_urls: List[str] = Field(default_factory=list)

    # Review metadata
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None

    tags: List[str] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @field_validator('confidence', mode='before')
    @classmethod
    def validate_confidence(cls, v):
        return clamp_confidence(v)

    @field_validator('type', mode='before')
    @classmethod
    def validate_type(cls, v):
        # Unknown feed categories collapse into "other"
        if isinstance(v, str) and v not in AnomalyType._value2member_map_:
            return AnomalyType.OTHER
        return v

class CandidateAnomaly(BaseModel):
    """Normalized output of a source adapter, before dedup and analysis."""
    title: str
    description: str = ""
    type: AnomalyType = AnomalyType.OTHER
    severity: Severity = Severity.MEDIUM
    latitude: float = 0.0
    longitude: float = 0.0
    location: str = "Unknown location"
    raw_data: Dict[str, Any] = Field(default_factory=dict)
    media_urls: List[str] = Field(default_factory=list)
    source_id: Optional[str] = None
    source_type: str = "external"

    @field_validator('type', mode='before')
    @classmethod
    def validate_type(cls, v):
        if isinstance(v, str) and v not in AnomalyType._value2member_map_:
            return AnomalyType.OTHER
        return v

class AIAnalysisResult(BaseModel):
    summary: str = ""
    severity: Severity = Severity.MEDIUM
    confidence: float = 0.5
    categories: List[str] = Field(default_factory=list)
    entities: List[str] = Field(default_factory=list)
    sentiment: str = "neutral"
    risk_factors: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    related_anomalies: List[str] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator('confidence', mode='before')
    @classmethod
    def validate_confidence(cls, v):
        return clamp_confidence(v)

    @field_validator('severity', mode='before')
    @classmethod
    def validate_severity(cls, v):
        if isinstance(v, str) and v.lower() in Severity._value2member_map_:
            return v.lower()
        if isinstance(v, Severity):
            return v
        return Severity.MEDIUM

    @property
    def is_fallback(self) -> bool:
        return bool(self.metadata.get("mock"))

class VerificationResult(BaseModel):
    verified: bool = False
    confidence: float = 0.0
    matching_sources: int = 0
    discrepancies: List[str] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator('confidence', mode='before')
    @classmethod
    def validate_confidence(cls, v):
        return clamp_confidence(v)

class DecisionResult(BaseModel):
    decision: Decision
    reason: str
    requires_human_review: bool
    confidence: float
    verified: bool
    threshold: float
    autonomous_mode: bool


# =========================
# WORKFLOWS
# =========================

class WorkflowStep(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str
    type: str  # StepType value; unknown types run as no-ops
    config: Dict[str, Any] = Field(default_factory=dict)
    next_steps: List[str] = Field(default_factory=list)  # Informational only
    timeout: Optional[float] = Field(default=None, gt=0)  # seconds

class WorkflowTrigger(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    type: str  # anomaly_detected, severity_threshold, schedule, manual, api
    conditions: Dict[str, Any] = Field(default_factory=dict)

class WorkflowDefinition(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str
    description: str = ""
    type: WorkflowType = WorkflowType.DEFAULT
    status: DefinitionStatus = DefinitionStatus.DRAFT
    version: int = Field(default=1, ge=1)
    steps: List[WorkflowStep] = Field(default_factory=list)
    triggers: List[WorkflowTrigger] = Field(default_factory=list)
    config: Dict[str, Any] = Field(default_factory=dict)
    created_by: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

class StepResult(BaseModel):
    step_id: str
    step_name: str
    result: Dict[str, Any] = Field(default_factory=dict)

class WorkflowExecution(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    workflow_id: str
    anomaly_id: Optional[str] = None
    status: WorkflowStatus = WorkflowStatus.PENDING
    current_step: Optional[str] = None
    step_results: List[StepResult] = Field(default_factory=list)
    input: Dict[str, Any] = Field(default_factory=dict)
    output: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration: Optional[int] = None  # milliseconds
    triggered_by: str = "system"
    created_at: datetime = Field(default_factory=datetime.utcnow)


# =========================
# INGESTION
# =========================

class IngestionReport(BaseModel):
    started_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None
    skipped: bool = False
    candidates_seen: int = 0
    anomalies_created: int = 0
    duplicates_skipped: int = 0
    candidates_failed: int = 0
    workflows_triggered: List[str] = Field(default_factory=list)
    source_errors: Dict[str, str] = Field(default_factory=dict)

    @computed_field
    @property
    def processed(self) -> int:
        """Candidates handled without error (created or deduplicated)."""
        return self.anomalies_created + self.duplicates_skipped


# =========================
# API REQUESTS
# =========================

class AnomalyCreateRequest(BaseModel):
    title: str
    description: str = ""
    type: AnomalyType = AnomalyType.OTHER
    severity: Severity = Severity.MEDIUM
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    location: str = ""
    raw_data: Dict[str, Any] = Field(default_factory=dict)
    media_urls: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)

class AnomalyReviewRequest(BaseModel):
    reviewer_id: Optional[str] = None
    reason: Optional[str] = None

class AnomalyUpdateRequest(BaseModel):
    """Manual edit; may set status directly, outside any workflow."""
    title: Optional[str] = None
    description: Optional[str] = None
    type: Optional[AnomalyType] = None
    severity: Optional[Severity] = None
    status: Optional[AnomalyStatus] = None
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)
    location: Optional[str] = None
    tags: Optional[List[str]] = None
    impact_assessment: Optional[Dict[str, Any]] = None
    metadata: Optional[Dict[str, Any]] = None

class WorkflowCreateRequest(BaseModel):
    name: str
    description: str = ""
    type: WorkflowType = WorkflowType.DEFAULT
    status: DefinitionStatus = DefinitionStatus.DRAFT
    steps: List[WorkflowStep]
    triggers: List[WorkflowTrigger] = Field(default_factory=list)
    config: Dict[str, Any] = Field(default_factory=dict)

class WorkflowUpdateRequest(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    status: Optional[DefinitionStatus] = None
    steps: Optional[List[WorkflowStep]] = None
    triggers: Optional[List[WorkflowTrigger]] = None
    config: Optional[Dict[str, Any]] = None

class WorkflowFromTemplateRequest(BaseModel):
    template_type: WorkflowType
    name: Optional[str] = None
    status: DefinitionStatus = DefinitionStatus.DRAFT

class WorkflowExecutionRequest(BaseModel):
    input_data: Dict[str, Any] = Field(default_factory=dict)

class AutonomousModeRequest(BaseModel):
    enabled: bool
    auto_approve_threshold: Optional[float] = Field(default=None, ge=0.0, le=1.0)
