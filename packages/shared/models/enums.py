from enum import Enum


class EntityType(str, Enum):
    PROCEDURE = "procedure"
    COMPLICATION = "complication"
    MEDICATION = "medication"
    DEMOGRAPHIC = "demographic"
    FUNCTIONAL_SCORE = "functional_score"


class ReferenceClass(str, Enum):
    NEW_EVENT = "new_event"
    REFERENCE = "reference"


class AnchorKind(str, Enum):
    ABSOLUTE = "absolute"
    RELATIVE = "relative"  # POD / hospital-day offset, reference date may be unknown
    UNRESOLVED = "unresolved"


class AnchorSource(str, Enum):
    EXPLICIT_DATE = "explicit_date"
    INFERRED_FROM_POD = "inferred_from_pod"
    INHERITED = "inherited"
    ENCOUNTER = "encounter"  # "on admission", "at discharge"
    NONE = "none"


class ReferenceEvent(str, Enum):
    ADMISSION = "admission"
    SURGERY = "surgery"
    DISCHARGE = "discharge"


class Severity(str, Enum):
    LOW = "low"
    MODERATE = "moderate"
    HIGH = "high"


class ResolutionStatus(str, Enum):
    ONGOING = "ongoing"
    IMPROVING = "improving"
    RESOLVED = "resolved"
    UNKNOWN = "unknown"


class MedicationStatus(str, Enum):
    STARTED = "started"
    CONTINUED = "continued"
    DISCONTINUED = "discontinued"
    CHANGED = "changed"
    ACTIVE = "active"


class Gender(str, Enum):
    MALE = "male"
    FEMALE = "female"


class CourseMarkerKind(str, Enum):
    ADMISSION = "admission"
    DISCHARGE = "discharge"
    IMPROVED = "improved"
    WORSENED = "worsened"
    UNCHANGED = "unchanged"
    RESOLVED = "resolved"


class EventCategory(str, Enum):
    DIAGNOSTIC = "diagnostic"
    THERAPEUTIC = "therapeutic"
    COMPLICATION = "complication"
    OUTCOME = "outcome"
    ENCOUNTER = "encounter"


class MilestoneKind(str, Enum):
    ADMISSION = "admission"
    FIRST_PROCEDURE = "first_procedure"
    COMPLICATION_ONSET = "complication_onset"
    DISCHARGE = "discharge"


class RelationshipType(str, Enum):
    TRIGGERS = "triggers"
    LEADS_TO = "leads_to"
    RESPONDS_TO = "responds_to"
    PREVENTS = "prevents"


class ResponseClass(str, Enum):
    IMPROVED = "improved"
    WORSENED = "worsened"
    UNCHANGED = "unchanged"


class Trend(str, Enum):
    IMPROVING = "improving"
    DECLINING = "declining"
    STABLE = "stable"


class ChangeRate(str, Enum):
    RAPID = "rapid"
    GRADUAL = "gradual"
    SLOW = "slow"
    UNKNOWN = "unknown"
