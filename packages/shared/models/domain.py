from datetime import date
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, model_validator

from .common import SourceSpan, TemporalAnchor
from .enums import (
    ChangeRate,
    CourseMarkerKind,
    EntityType,
    EventCategory,
    Gender,
    MedicationStatus,
    MilestoneKind,
    ReferenceClass,
    RelationshipType,
    ResolutionStatus,
    ResponseClass,
    Severity,
    Trend,
)


class Warning(BaseModel):
    code: str
    message: str
    entity_id: Optional[str] = None


class ExtractionConfig(BaseModel):
    """Tunable constants for one extraction run."""
    dedup_threshold: float = Field(default=0.75, ge=0.0, le=1.0)
    lexical_weight: float = Field(default=0.4, ge=0.0, le=1.0)
    edit_weight: float = Field(default=0.2, ge=0.0, le=1.0)
    semantic_weight: float = Field(default=0.4, ge=0.0, le=1.0)
    negation_window_tokens: int = Field(default=6, ge=1)
    context_window_chars: int = Field(default=100, ge=10)
    track_negative_findings: bool = False
    confidence_floor: float = Field(default=0.3, ge=0.0, le=1.0)
    trigger_window_days: int = Field(default=2, ge=0)
    complication_window_days: int = Field(default=14, ge=0)
    response_window_days: int = Field(default=21, ge=0)
    reference_link_threshold: float = Field(default=0.6, ge=0.0, le=1.0)
    max_workers: int = Field(default=5, ge=1)

    @model_validator(mode="after")
    def _weights_sum_to_one(self) -> "ExtractionConfig":
        total = self.lexical_weight + self.edit_weight + self.semantic_weight
        if abs(total - 1.0) > 1e-6:
            raise ValueError(f"similarity weights must sum to 1.0, got {total:.3f}")
        return self


# ── Input ─────────────────────────────────────────────────────────────────


class ClinicalDocument(BaseModel):
    """Immutable input note."""
    model_config = {"frozen": True}

    text: str
    prior_context: Optional["StructuredFacts"] = None
    reference_date: Optional[date] = None


class Candidate(BaseModel):
    """Raw pattern match, consumed inside one extractor call."""
    text: str
    start: int = Field(ge=0)
    end: int = Field(ge=0)
    entity_type: EntityType
    canonical: Optional[str] = None
    context: str = ""
    context_start: int = Field(default=0, ge=0)

    @property
    def context_offset(self) -> int:
        """Start of the mention inside ``context``."""
        return self.start - self.context_start


class Qualifiers(BaseModel):
    negated: bool = False
    historical: bool = False
    hypothetical: bool = False
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    trigger: Optional[str] = None


class ReferenceClassification(BaseModel):
    classification: ReferenceClass = ReferenceClass.NEW_EVENT
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    trigger: Optional[str] = None

    @property
    def is_reference(self) -> bool:
        return self.classification == ReferenceClass.REFERENCE


# ── Entity attributes (one record per entity kind) ───────────────────────


class ProcedureAttributes(BaseModel):
    kind: Literal["procedure"] = "procedure"
    operator: Optional[str] = None
    approach: Optional[str] = None
    laterality: Optional[str] = None


class ComplicationAttributes(BaseModel):
    kind: Literal["complication"] = "complication"
    severity: Severity = Severity.MODERATE
    severity_explicit: bool = False
    resolution_status: ResolutionStatus = ResolutionStatus.UNKNOWN
    category: Optional[str] = None
    management: Optional[str] = None


class MedicationAttributes(BaseModel):
    kind: Literal["medication"] = "medication"
    dose: Optional[str] = None  # "1g", "60mg"
    dose_value: Optional[float] = None
    dose_unit: Optional[str] = None
    route: Optional[str] = None
    frequency: Optional[str] = None
    duration: Optional[str] = None
    status: MedicationStatus = MedicationStatus.ACTIVE
    indication: Optional[str] = None
    # Antithrombotics only
    drug_class: Optional[str] = None  # "antiplatelet" or "anticoagulant"
    mechanism: Optional[str] = None  # "P2Y12 inhibitor"
    reversal_agent: Optional[str] = None
    reversed: bool = False


class DemographicAttributes(BaseModel):
    kind: Literal["demographic"] = "demographic"
    age: Optional[int] = Field(default=None, ge=0, le=120)
    gender: Optional[Gender] = None


class FunctionalScoreAttributes(BaseModel):
    kind: Literal["functional_score"] = "functional_score"
    scale: str
    value: float
    raw: str = ""


EntityAttributes = Annotated[
    Union[
        ProcedureAttributes,
        ComplicationAttributes,
        MedicationAttributes,
        DemographicAttributes,
        FunctionalScoreAttributes,
    ],
    Field(discriminator="kind"),
]


class ExtractedEntity(BaseModel):
    entity_id: str
    entity_type: EntityType
    name: str
    surface: str = ""
    attributes: EntityAttributes
    anchor: Optional[TemporalAnchor] = None
    qualifiers: Qualifiers = Field(default_factory=Qualifiers)
    classification: ReferenceClass = ReferenceClass.NEW_EVENT
    classification_confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    span: SourceSpan
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    flags: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_shape(self) -> "ExtractedEntity":
        if self.attributes.kind != self.entity_type.value:
            raise ValueError(
                f"attributes of kind '{self.attributes.kind}' do not match entity type '{self.entity_type.value}'"
            )
        if self.entity_type == EntityType.DEMOGRAPHIC:
            self.anchor = None
        elif self.anchor is None:
            self.anchor = TemporalAnchor.unresolved()
        return self

    @property
    def is_new_event(self) -> bool:
        return (
            self.classification == ReferenceClass.NEW_EVENT
            and not self.qualifiers.historical
            and not self.qualifiers.negated
        )


# ── Document context ─────────────────────────────────────────────────────


class AnchorPoint(BaseModel):
    """A resolved time expression found at a document position."""
    position: int = Field(ge=0)
    end: int = Field(ge=0)
    anchor: TemporalAnchor


class DocumentAnchors(BaseModel):
    admission_date: Optional[date] = None
    discharge_date: Optional[date] = None
    ictus_date: Optional[date] = None
    surgery_dates: list[date] = Field(default_factory=list)
    surgery_positions: list[int] = Field(default_factory=list)
    reference_year: Optional[int] = None
    points: list[AnchorPoint] = Field(default_factory=list)


class CourseMarker(BaseModel):
    """Hospital-course signal that is not an entity (admission, discharge, status change)."""
    marker_id: str
    kind: CourseMarkerKind
    anchor: TemporalAnchor = Field(default_factory=TemporalAnchor.unresolved)
    span: SourceSpan
    detail: Optional[str] = None
    confidence: float = Field(default=0.7, ge=0.0, le=1.0)


class StructuredFacts(BaseModel):
    """Facts carried over from earlier documents of the same patient."""
    entities: list[ExtractedEntity] = Field(default_factory=list)
    admission_date: Optional[date] = None
    discharge_date: Optional[date] = None
    ictus_date: Optional[date] = None
    surgery_dates: list[date] = Field(default_factory=list)


class ExtractionOptions(BaseModel):
    prior_context: Optional[StructuredFacts] = None
    reference_date: Optional[date] = None


# ── Deduplication / timeline ─────────────────────────────────────────────


class DeduplicationCluster(BaseModel):
    cluster_id: str
    entity_type: EntityType
    members: list[ExtractedEntity] = Field(min_length=1)
    canonical: ExtractedEntity
    max_similarity: float = Field(default=1.0, ge=0.0, le=1.0)

    @property
    def has_new_event(self) -> bool:
        return any(m.is_new_event for m in self.members)


class Event(BaseModel):
    event_id: str
    category: EventCategory
    label: str
    entity: Optional[ExtractedEntity] = None
    marker: Optional[CourseMarker] = None
    anchor: TemporalAnchor = Field(default_factory=TemporalAnchor.unresolved)
    timestamp: Optional[date] = None
    relative_day: Optional[int] = None
    ordinal: int = Field(default=0, ge=0)
    classification: ReferenceClass = ReferenceClass.NEW_EVENT
    document_position: int = Field(default=0, ge=0)
    references: list[ExtractedEntity] = Field(default_factory=list)

    @property
    def entity_type(self) -> Optional[EntityType]:
        return self.entity.entity_type if self.entity else None


class Milestone(BaseModel):
    kind: MilestoneKind
    event_id: str
    label: str
    ordinal: int = Field(ge=0)


class Relationship(BaseModel):
    source_event_id: str
    target_event_id: str
    relationship_type: RelationshipType
    confidence: float = Field(ge=0.0, le=1.0)
    days_apart: Optional[int] = None
    rationale: str = ""


class ReferenceLink(BaseModel):
    reference: ExtractedEntity
    linked_prior_entity_id: Optional[str] = None


class Timeline(BaseModel):
    events: list[Event] = Field(default_factory=list)
    milestones: list[Milestone] = Field(default_factory=list)
    relationships: list[Relationship] = Field(default_factory=list)
    prior_references: list[ReferenceLink] = Field(default_factory=list)
    unlinked_references: list[ReferenceLink] = Field(default_factory=list)
    date_range_start: Optional[date] = None
    date_range_end: Optional[date] = None
    heuristic_notice: str = (
        "Relationships are heuristic pattern matches over event order and timing, "
        "not verified causal inference."
    )

    def get_event(self, event_id: str) -> Optional[Event]:
        for event in self.events:
            if event.event_id == event_id:
                return event
        return None


# ── Analyses ─────────────────────────────────────────────────────────────


class TreatmentResponse(BaseModel):
    treatment: Event
    outcome: Event
    target: Optional[Event] = None
    classification: ResponseClass
    effectiveness: float = Field(ge=-1.0, le=1.0)
    days_to_response: Optional[int] = None
    confidence: float = Field(ge=0.0, le=1.0)
    rationale: str = ""


class TrajectoryPoint(BaseModel):
    event_id: str
    value: float
    normalized: float
    anchor: TemporalAnchor
    ordinal: int = Field(ge=0)


class FunctionalTrajectory(BaseModel):
    scale: str
    points: list[TrajectoryPoint] = Field(min_length=2)
    trend: Trend
    magnitude_of_change: float
    normalized_change: float
    rate_of_change: Optional[float] = None
    rate_unit: Optional[str] = None  # "per_day" or "per_observation"
    change_rate: ChangeRate = ChangeRate.UNKNOWN
    fluctuating: bool = False


# ── Output ───────────────────────────────────────────────────────────────


class ExtractionMetadata(BaseModel):
    overall_confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    pathology_signals: list[str] = Field(default_factory=list)
    warnings: list[Warning] = Field(default_factory=list)
    entity_counts: dict[str, int] = Field(default_factory=dict)
    processing_seconds: float = 0.0


class ExtractionResult(BaseModel):
    """Top-level output object matching the JSON schema."""
    schema_version: str = "0.1.0"
    entities: list[ExtractedEntity] = Field(default_factory=list)
    timeline: Timeline = Field(default_factory=Timeline)
    treatment_responses: list[TreatmentResponse] = Field(default_factory=list)
    trajectories: list[FunctionalTrajectory] = Field(default_factory=list)
    metadata: ExtractionMetadata = Field(default_factory=ExtractionMetadata)


ClinicalDocument.model_rebuild()
