"""
Unit tests for negation / historical / hypothetical qualifier detection.
"""
from apps.extractor.lib.negation import detect_qualifiers


def _qualify(text: str, mention: str, **kwargs):
    start = text.index(mention)
    return detect_qualifiers(text, start, start + len(mention), **kwargs)


class TestNegation:
    def test_no_evidence_of(self):
        q = _qualify("No evidence of vasospasm.", "vasospasm")
        assert q.negated is True
        assert q.trigger == "no evidence of"
        assert q.confidence == 0.9

    def test_denies(self):
        q = _qualify("Patient denies headache.", "headache")
        assert q.negated is True
        assert q.confidence == 0.95

    def test_affirmed_mention(self):
        q = _qualify("Patient developed vasospasm on POD#5.", "vasospasm")
        assert q.negated is False
        assert q.historical is False
        assert q.hypothetical is False
        assert q.confidence == 0.5

    def test_post_mention_trigger(self):
        q = _qualify("Vasospasm was ruled out.", "Vasospasm")
        assert q.negated is True
        assert q.trigger == "was ruled out"

    def test_scope_breaker_stops_negation(self):
        q = _qualify("No fever but developed seizure.", "seizure")
        assert q.negated is False

    def test_sentence_boundary_stops_negation(self):
        q = _qualify("No fever. Seizure overnight.", "Seizure")
        assert q.negated is False

    def test_trigger_outside_token_window(self):
        text = "No headache, nausea, vomiting, dizziness, photophobia, neck stiffness, or seizure"
        assert _qualify(text, "seizure").negated is False
        assert _qualify(text, "seizure", window_tokens=20).negated is True


class TestPseudoNegation:
    def test_no_change_is_not_negation(self):
        q = _qualify("CT shows no change in hydrocephalus.", "hydrocephalus")
        assert q.negated is False

    def test_pseudo_negation_covering_mention(self):
        q = _qualify("No change in ventricle size.", "change")
        assert q.negated is False
        assert q.trigger == "no change"


class TestHistoricalAndHypothetical:
    def test_history_of(self):
        q = _qualify("Prior history of seizure.", "seizure")
        assert q.historical is True
        assert q.negated is False

    def test_history_section_header(self):
        q = detect_qualifiers("seizure disorder", 0, 7, section_header="Past Medical History:")
        assert q.historical is True

    def test_monitor_for_is_hypothetical(self):
        q = _qualify("Monitor for vasospasm.", "vasospasm")
        assert q.hypothetical is True
        assert q.negated is False

    def test_prophylaxis_after_mention(self):
        q = _qualify("Keppra prophylaxis continued.", "Keppra")
        assert q.hypothetical is True


class TestDegenerateInput:
    def test_empty_text(self):
        q = detect_qualifiers("", 0, 0)
        assert q.negated is False
        assert q.confidence == 0.0

    def test_bad_offsets(self):
        q = detect_qualifiers("abc", 5, 2)
        assert q.negated is False
        assert q.confidence == 0.0
