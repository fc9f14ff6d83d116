"""
Unit tests for the five entity extractors (Step 3).
"""
from datetime import date

from packages.shared.models import (
    AnchorKind,
    ExtractionConfig,
    Gender,
    MedicationStatus,
    ReferenceClass,
    ResolutionStatus,
    Severity,
)
from apps.extractor.lib.vocabulary import build_vocabulary
from apps.extractor.steps.entities import (
    extract_complications,
    extract_demographics,
    extract_functional_scores,
    extract_medications,
    extract_procedures,
)


def _only(entities):
    assert len(entities) == 1, [e.name for e in entities]
    return entities[0]


class TestProcedures:
    def test_new_procedure_with_date(self):
        proc = _only(extract_procedures("Patient underwent craniotomy on 10/12/2024."))
        assert proc.name == "craniotomy"
        assert proc.classification == ReferenceClass.NEW_EVENT
        assert proc.anchor.kind == AnchorKind.ABSOLUTE
        assert proc.anchor.value == date(2024, 10, 12)

    def test_operator_laterality_approach(self):
        proc = _only(extract_procedures("Underwent left pterional craniotomy by Dr. Smith on 03/12/2024."))
        assert proc.attributes.laterality == "left"
        assert proc.attributes.approach == "pterional"
        assert proc.attributes.operator == "Dr. Smith"
        assert proc.anchor.value == date(2024, 3, 12)

    def test_status_post_is_reference(self):
        proc = _only(extract_procedures("Patient s/p coiling."))
        assert proc.name == "coiling"
        assert proc.classification == ReferenceClass.REFERENCE
        assert "UNRESOLVED_DATE" in proc.flags

    def test_negated_procedure_dropped(self):
        assert extract_procedures("No craniotomy was performed.") == []

    def test_diagnostic_flag(self):
        proc = _only(extract_procedures("Cerebral angiography performed today."))
        assert proc.name == "angiography"
        assert "DIAGNOSTIC" in proc.flags

    def test_empty(self):
        assert extract_procedures("") == []


class TestComplications:
    def test_explicit_severity(self):
        comp = _only(extract_complications("Severe vasospasm noted on POD#5."))
        assert comp.attributes.severity == Severity.HIGH
        assert comp.attributes.severity_explicit is True
        assert comp.anchor.relative_day == 5

    def test_low_severity(self):
        comp = _only(extract_complications("Mild hyponatremia."))
        assert comp.attributes.severity == Severity.LOW

    def test_default_severity(self):
        comp = _only(extract_complications("Developed hydrocephalus."))
        assert comp.attributes.severity == Severity.MODERATE
        assert comp.attributes.severity_explicit is False
        assert "SEVERITY_DEFAULTED" in comp.flags

    def test_negated_complication_dropped(self):
        assert extract_complications("No evidence of vasospasm.") == []

    def test_negated_tracked_when_configured(self):
        config = ExtractionConfig(track_negative_findings=True)
        comp = _only(extract_complications("No evidence of vasospasm.", config=config))
        assert comp.qualifiers.negated is True
        assert "NEGATED" in comp.flags

    def test_hypothetical_dropped(self):
        assert extract_complications("Risk of vasospasm discussed.") == []

    def test_resolution_and_management(self):
        comp = _only(extract_complications("Vasospasm treated with nimodipine."))
        assert comp.attributes.management == "nimodipine"

        comp = _only(extract_complications("Seizure on POD#2. Resolved with levetiracetam."))
        assert comp.attributes.resolution_status == ResolutionStatus.RESOLVED

    def test_management_after_requiring(self):
        comp = _only(extract_complications("Vasospasm requiring nicardipine drip, improved."))
        assert comp.attributes.management == "nicardipine drip"

        comp = _only(extract_complications("Hydrocephalus required EVD placement."))
        assert comp.attributes.management == "EVD placement"

    def test_signal_vocabulary_extension(self):
        text = "Postoperative CSF leak noted."
        assert extract_complications(text) == []
        comp = _only(extract_complications(text, vocabulary=build_vocabulary(["spine"])))
        assert comp.name == "CSF leak"


class TestMedications:
    def test_full_medication_line(self):
        med = _only(extract_medications("Vancomycin 1g IV q12h x 4 weeks"))
        attrs = med.attributes
        assert med.name == "Vancomycin"
        assert attrs.dose == "1g"
        assert attrs.dose_value == 1.0
        assert attrs.dose_unit == "g"
        assert attrs.route == "IV"
        assert attrs.frequency == "q12h"
        assert attrs.duration == "4 weeks"
        assert attrs.status == MedicationStatus.ACTIVE

    def test_indication(self):
        med = _only(extract_medications("Nimodipine 60mg PO q4h for vasospasm."))
        assert med.attributes.indication == "vasospasm"
        assert med.attributes.route == "PO"
        assert med.attributes.frequency == "q4h"

    def test_brand_name_maps_to_generic(self):
        med = _only(extract_medications("Keppra 500 mg BID"))
        assert med.name == "Levetiracetam"
        assert med.attributes.dose == "500mg"
        assert med.attributes.frequency == "BID"

    def test_prophylaxis_is_kept(self):
        med = _only(extract_medications("Seizure prophylaxis with Keppra."))
        assert med.qualifiers.hypothetical is True
        assert "HYPOTHETICAL" in med.flags

    def test_status_before_and_after(self):
        assert _only(extract_medications("Continue aspirin.")).attributes.status == MedicationStatus.CONTINUED
        assert _only(extract_medications("Heparin was discontinued.")).attributes.status == MedicationStatus.DISCONTINUED

    def test_name_only_is_less_confident(self):
        with_dose = _only(extract_medications("Nimodipine 60mg."))
        name_only = _only(extract_medications("Nimodipine."))
        assert name_only.confidence < with_dose.confidence

    def test_unlisted_drug_with_dose(self):
        med = _only(extract_medications("Ziprasidone 20mg daily"))
        assert med.name == "Ziprasidone"
        assert "UNLISTED_MEDICATION" in med.flags

    def test_negated_medication_dropped(self):
        assert extract_medications("No heparin given.") == []

    def test_p2y12_inhibitors(self):
        meds = extract_medications("Home meds: Brilinta 90mg BID and Effient.")
        assert [m.name for m in meds] == ["Ticagrelor", "Prasugrel"]
        for med in meds:
            assert med.attributes.drug_class == "antiplatelet"
            assert med.attributes.mechanism == "P2Y12 inhibitor"
            assert med.attributes.reversal_agent == "platelet transfusion"
            assert med.attributes.reversed is False

    def test_anticoagulant_reversal(self):
        med = _only(extract_medications("On Eliquis 5mg BID, reversed with Andexxa."))
        assert med.name == "Apixaban"
        assert med.attributes.drug_class == "anticoagulant"
        assert med.attributes.mechanism == "factor Xa inhibitor"
        assert med.attributes.reversed is True

    def test_reversal_in_next_sentence(self):
        med = _only(extract_medications("Warfarin 5mg daily at home. INR 3.1, given Kcentra."))
        assert med.attributes.mechanism == "vitamin K antagonist"
        assert med.attributes.reversed is True

    def test_other_medications_have_no_drug_class(self):
        med = _only(extract_medications("Nimodipine 60mg PO q4h. Platelet transfusion given."))
        assert med.attributes.drug_class is None
        assert med.attributes.reversal_agent is None
        assert med.attributes.reversed is False


class TestDemographics:
    def test_shorthand(self):
        demo = _only(extract_demographics("John Doe, 55M"))
        assert demo.attributes.age == 55
        assert demo.attributes.gender == Gender.MALE
        assert demo.anchor is None

    def test_prose(self):
        demo = _only(extract_demographics("A 67-year-old female presented with headache."))
        assert demo.attributes.age == 67
        assert demo.attributes.gender == Gender.FEMALE

    def test_yo_shorthand(self):
        demo = _only(extract_demographics("72 yo F with SAH"))
        assert (demo.attributes.age, demo.attributes.gender) == (72, Gender.FEMALE)

    def test_labeled_fields(self):
        demo = _only(extract_demographics("Age: 45\nSex: M"))
        assert demo.attributes.age == 45
        assert demo.attributes.gender == Gender.MALE

    def test_conflict_flagged(self):
        demo = _only(extract_demographics("55M seen today. Later note says 56M. 55M again."))
        assert demo.attributes.age == 55
        assert "CONFLICTING_DEMOGRAPHICS" in demo.flags

    def test_temperature_is_not_demographics(self):
        assert extract_demographics("Temp 101.5 F overnight") == []

    def test_fever_readings_are_not_demographics(self):
        for note in (
            "POD#2 febrile to 102 F overnight, cultures sent.",
            "POD#2 febrile to 102F overnight.",
            "Vitals: Tmax: 101 F, HR 110.",
            "T 101 F, cultures sent.",
        ):
            assert extract_demographics(note) == [], note

    def test_fever_does_not_conflict_with_real_demographics(self):
        demo = _only(extract_demographics("55M s/p clipping. Tmax: 102 F overnight."))
        assert (demo.attributes.age, demo.attributes.gender) == (55, Gender.MALE)
        assert "CONFLICTING_DEMOGRAPHICS" not in demo.flags

    def test_spaced_shorthand_after_name(self):
        demo = _only(extract_demographics("Jane Roe, 48 F\nPOD#1 doing well."))
        assert (demo.attributes.age, demo.attributes.gender) == (48, Gender.FEMALE)
        assert demo.span.text == "48 F"

    def test_none_found(self):
        assert extract_demographics("No demographics here.") == []


class TestFunctionalScores:
    def test_multiple_scales(self):
        scores = extract_functional_scores("GCS 14 on arrival, mRS 2 at discharge.")
        assert [(s.name, s.attributes.value) for s in scores] == [("GCS", 14.0), ("mRS", 2.0)]

    def test_out_of_range_discarded(self):
        assert extract_functional_scores("GCS 17") == []

    def test_letter_grade(self):
        score = _only(extract_functional_scores("ASIA C on exam"))
        assert score.attributes.value == 2.0
        assert score.attributes.raw == "C"

    def test_phrasing_variants(self):
        assert _only(extract_functional_scores("KPS of 70")).attributes.value == 70.0
        assert _only(extract_functional_scores("NIHSS score of 8")).attributes.value == 8.0
        assert _only(extract_functional_scores("ECOG 1")).attributes.value == 1.0
