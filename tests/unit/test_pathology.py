"""
Unit tests for pathology signal resolution (Step 1).
"""
from apps.extractor.steps.step01_pathology import detect_pathology_signals, resolve_pathology_signals


def _failing_classifier(text):
    raise RuntimeError("model offline")


class TestDetector:
    def test_vascular(self):
        assert detect_pathology_signals("Aneurysmal SAH, Hunt and Hess 3") == ["vascular"]

    def test_multiple_signals_in_fixed_order(self):
        signals = detect_pathology_signals("EVD placed for hydrocephalus after SAH")
        assert signals == ["vascular", "hydrocephalus"]

    def test_none(self):
        assert detect_pathology_signals("Routine follow-up visit.") == []
        assert detect_pathology_signals("") == []


class TestResolve:
    def test_no_classifier_uses_detector(self):
        signals, warnings = resolve_pathology_signals("L4-5 laminectomy for spinal stenosis")
        assert signals == ["spine"]
        assert warnings == []

    def test_classifier_tags_are_cleaned(self):
        signals, warnings = resolve_pathology_signals("any text", lambda text: ["Spine", "unknown", "tumor"])
        assert signals == ["tumor", "spine"]
        assert warnings == []

    def test_raising_classifier_falls_back(self):
        signals, warnings = resolve_pathology_signals("Aneurysmal SAH", _failing_classifier)
        assert signals == ["vascular"]
        assert [w.code for w in warnings] == ["PATHOLOGY_CLASSIFIER_FAILED"]
        assert "model offline" in warnings[0].message

    def test_malformed_classifier_output_falls_back(self):
        for bad in (42, "vascular", [1, 2]):
            signals, warnings = resolve_pathology_signals("Aneurysmal SAH", lambda text, bad=bad: bad)
            assert signals == ["vascular"]
            assert [w.code for w in warnings] == ["PATHOLOGY_CLASSIFIER_FAILED"]
