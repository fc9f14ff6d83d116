"""
Unit tests for document anchors and course markers (Step 2).
"""
from datetime import date

from packages.shared.models import AnchorSource, CourseMarkerKind, StructuredFacts
from apps.extractor.steps.step02_anchors import build_document_anchors, detect_course_markers


class TestDocumentAnchors:
    def test_labeled_dates(self):
        text = "Admission Date: 03/10/2024\nDischarge Date: 03/20/2024\nDOB: 01/01/1960"
        anchors = build_document_anchors(text)
        assert anchors.admission_date == date(2024, 3, 10)
        assert anchors.discharge_date == date(2024, 3, 20)
        assert anchors.reference_year == 2024
        assert date(1960, 1, 1) not in [p.anchor.value for p in anchors.points]

    def test_procedure_on_date_is_surgery(self):
        anchors = build_document_anchors("Patient underwent craniotomy on 03/12/2024.")
        assert anchors.surgery_dates == [date(2024, 3, 12)]

    def test_diagnostic_procedure_date_is_not_surgery(self):
        anchors = build_document_anchors("Angiography on 03/12/2024.")
        assert anchors.surgery_dates == []

    def test_prior_context_supplies_surgery(self):
        prior = StructuredFacts(surgery_dates=[date(2025, 1, 16)])
        anchors = build_document_anchors("POD#2 seizure.", prior_context=prior)
        assert anchors.surgery_dates == [date(2025, 1, 16)]
        pod_point = anchors.points[0]
        assert pod_point.anchor.value == date(2025, 1, 18)
        assert pod_point.anchor.source == AnchorSource.INFERRED_FROM_POD

    def test_reference_date_sets_year(self):
        anchors = build_document_anchors("Seen on 4/2.", reference_date=date(2023, 6, 1))
        assert anchors.reference_year == 2023
        assert anchors.points[0].anchor.value == date(2023, 4, 2)

    def test_empty_text(self):
        anchors = build_document_anchors("")
        assert anchors.points == []
        assert anchors.surgery_dates == []


class TestCourseMarkers:
    def test_admission_and_discharge(self):
        text = "Admitted on 03/10/2024. Neurologically stable. Discharged to rehab on 03/20/2024."
        anchors = build_document_anchors(text)
        markers, warnings = detect_course_markers(text, anchors)
        kinds = [m.kind for m in markers]
        assert kinds == [CourseMarkerKind.ADMISSION, CourseMarkerKind.UNCHANGED, CourseMarkerKind.DISCHARGE]
        discharge = markers[-1]
        assert discharge.detail == "rehab"
        assert discharge.anchor.value == date(2024, 3, 20)
        assert warnings == []

    def test_single_admission_marker(self):
        text = "Patient was admitted for SAH. Admitted to the ICU."
        markers, _ = detect_course_markers(text, build_document_anchors(text))
        assert [m.kind for m in markers] == [CourseMarkerKind.ADMISSION]

    def test_negated_improvement_reads_as_unchanged(self):
        text = "Mental status not improved."
        markers, _ = detect_course_markers(text, build_document_anchors(text))
        assert [m.kind for m in markers] == [CourseMarkerKind.UNCHANGED]

    def test_hypothetical_marker_skipped(self):
        text = "Monitor for worsening."
        markers, _ = detect_course_markers(text, build_document_anchors(text))
        assert markers == []

    def test_negated_or_planned_discharge_skipped(self):
        for text in (
            "POD#3 developed vasospasm. Patient will not be discharged until vasospasm resolves.",
            "Plan to be discharged to rehab once bed available.",
            "Anticipate patient will be discharged home tomorrow.",
            "Discharge date: pending placement.",
            "Expected to be admitted to the neuro ICU.",
        ):
            markers, _ = detect_course_markers(text, build_document_anchors(text))
            assert [m for m in markers if m.kind in (CourseMarkerKind.ADMISSION, CourseMarkerKind.DISCHARGE)] == [], text

    def test_discharge_after_comma_still_counts(self):
        text = "No complications, discharged home on 03/20/2024."
        markers, warnings = detect_course_markers(text, build_document_anchors(text))
        assert [(m.kind, m.detail) for m in markers] == [(CourseMarkerKind.DISCHARGE, "home")]
        assert warnings == []

    def test_discharge_without_destination_warns(self):
        text = "Discharged on 03/20/2024."
        markers, warnings = detect_course_markers(text, build_document_anchors(text))
        assert [m.kind for m in markers] == [CourseMarkerKind.DISCHARGE]
        assert markers[0].detail is None
        assert [w.code for w in warnings] == ["DISCHARGE_DESTINATION_UNKNOWN"]

    def test_empty(self):
        markers, warnings = detect_course_markers("", build_document_anchors(""))
        assert markers == []
        assert warnings == []
