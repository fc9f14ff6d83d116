"""
Unit tests for concurrent entity extraction (Step 3).
"""
import pytest

from packages.shared.errors import InvariantViolation
from packages.shared.models import EntityType
from apps.extractor.lib.vocabulary import DEFAULT_VOCABULARY
from apps.extractor.steps.step02_anchors import build_document_anchors
from apps.extractor.steps.step03_entities import EXTRACTORS, run_extractors

_TEXT = "55M s/p coiling. POD#3 vasospasm, nimodipine 60mg started. GCS 14."


def _broken(text, anchors, vocabulary, config):
    raise ValueError("regex table corrupted")


def _violating(text, anchors, vocabulary, config):
    raise InvariantViolation("bad entity")


def _run(extractors=None):
    anchors = build_document_anchors(_TEXT)
    return run_extractors(_TEXT, anchors, DEFAULT_VOCABULARY, extractors=extractors)


class TestRunExtractors:
    def test_all_types_in_fixed_order(self):
        entities, warnings = _run()
        order = [entity_type for entity_type, _ in EXTRACTORS]
        positions = [order.index(e.entity_type) for e in entities]
        assert positions == sorted(positions)
        assert {e.entity_type for e in entities} == set(order)
        assert not any(w.code == "EXTRACTOR_FAILED" for w in warnings)

    def test_failing_extractor_becomes_warning(self):
        extractors = [
            (entity_type, _broken if entity_type == EntityType.MEDICATION else fn)
            for entity_type, fn in EXTRACTORS
        ]
        entities, warnings = _run(extractors)
        assert EntityType.MEDICATION not in {e.entity_type for e in entities}
        assert EntityType.COMPLICATION in {e.entity_type for e in entities}
        failed = [w for w in warnings if w.code == "EXTRACTOR_FAILED"]
        assert len(failed) == 1
        assert "regex table corrupted" in failed[0].message

    def test_invariant_violation_propagates(self):
        with pytest.raises(InvariantViolation):
            _run([(EntityType.PROCEDURE, _violating)])

    def test_repeatable(self):
        first, _ = _run()
        second, _ = _run()
        assert [e.model_dump() for e in first] == [e.model_dump() for e in second]
