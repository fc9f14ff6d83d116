from .enums import (
    AnchorKind,
    AnchorSource,
    ChangeRate,
    CourseMarkerKind,
    EntityType,
    EventCategory,
    Gender,
    MedicationStatus,
    MilestoneKind,
    ReferenceClass,
    ReferenceEvent,
    RelationshipType,
    ResolutionStatus,
    ResponseClass,
    Severity,
    Trend,
)
from .common import SourceSpan, TemporalAnchor
from .domain import (
    AnchorPoint,
    Candidate,
    ClinicalDocument,
    ComplicationAttributes,
    CourseMarker,
    DeduplicationCluster,
    DemographicAttributes,
    DocumentAnchors,
    Event,
    ExtractedEntity,
    ExtractionConfig,
    ExtractionMetadata,
    ExtractionOptions,
    ExtractionResult,
    FunctionalScoreAttributes,
    FunctionalTrajectory,
    MedicationAttributes,
    Milestone,
    ProcedureAttributes,
    Qualifiers,
    ReferenceClassification,
    ReferenceLink,
    Relationship,
    StructuredFacts,
    Timeline,
    TrajectoryPoint,
    TreatmentResponse,
    Warning,
)
