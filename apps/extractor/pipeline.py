"""
Pipeline orchestrator — runs the extraction steps for one note, or a batch.

  0 validate -> 1 pathology signals -> 2 anchors + course markers
  -> 3 entities (five extractors in parallel) -> 4 dedup -> 5 timeline
  -> 6 responses + 7 trajectories (in parallel) -> 8 confidence

Cancellation is cooperative: the flag is checked between steps and between
documents. A cancelled document yields nothing, never a partial result.
"""
from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Iterable, Optional, Union

from packages.shared.errors import ExtractionCancelled
from packages.shared.models import (
    ClinicalDocument,
    ExtractionConfig,
    ExtractionMetadata,
    ExtractionOptions,
    ExtractionResult,
    Warning,
)
from apps.extractor.lib.vocabulary import build_vocabulary
from apps.extractor.steps.step00_validate import validate_document
from apps.extractor.steps.step01_pathology import PathologyClassifier, resolve_pathology_signals
from apps.extractor.steps.step02_anchors import build_document_anchors, detect_course_markers
from apps.extractor.steps.step03_entities import run_extractors
from apps.extractor.steps.step04_dedup import deduplicate
from apps.extractor.steps.step05_timeline import build_timeline
from apps.extractor.steps.step06_responses import track_responses
from apps.extractor.steps.step07_trajectories import analyze_trajectories
from apps.extractor.steps.step08_confidence import score_extraction

logger = logging.getLogger(__name__)


def _check_cancelled(cancel_event: Optional[threading.Event], stage: str) -> None:
    if cancel_event is not None and cancel_event.is_set():
        logger.info(f"Extraction cancelled before {stage}")
        raise ExtractionCancelled(f"cancelled before {stage}")


def _empty_result(warnings: list[Warning], elapsed: float) -> ExtractionResult:
    return ExtractionResult(
        metadata=ExtractionMetadata(
            overall_confidence=0.0,
            warnings=warnings,
            processing_seconds=round(elapsed, 4),
        ),
    )


def extract(
    document_text: Any,
    options: Optional[ExtractionOptions] = None,
    *,
    config: Optional[ExtractionConfig] = None,
    pathology_classifier: Optional[PathologyClassifier] = None,
    cancel_event: Optional[threading.Event] = None,
) -> ExtractionResult:
    """
    Extract entities, timeline, treatment responses and trajectories from one
    clinical note. Messy or empty input never raises; it returns a
    structurally complete result with warnings and low confidence.

    Raises ExtractionCancelled when *cancel_event* is set mid-run, and
    InvariantViolation on internal defects.
    """
    start_time = time.monotonic()
    options = options or ExtractionOptions()
    config = config or ExtractionConfig()
    all_warnings: list[Warning] = []

    # ── Step 0: Validate ──────────────────────────────────────────────
    _check_cancelled(cancel_event, "validation")
    text, step_warnings = validate_document(document_text)
    all_warnings.extend(step_warnings)
    if text is None:
        logger.warning(f"No extractable text: {[w.code for w in step_warnings]}")
        return _empty_result(all_warnings, time.monotonic() - start_time)

    # ── Step 1: Pathology signals ─────────────────────────────────────
    _check_cancelled(cancel_event, "pathology signals")
    signals, step_warnings = resolve_pathology_signals(text, pathology_classifier)
    all_warnings.extend(step_warnings)
    vocabulary = build_vocabulary(signals)
    logger.info(f"Pathology signals: {signals or 'none'}")

    # ── Step 2: Anchors + course markers ──────────────────────────────
    _check_cancelled(cancel_event, "anchor detection")
    anchors = build_document_anchors(
        text,
        prior_context=options.prior_context,
        reference_date=options.reference_date,
        vocabulary=vocabulary,
    )
    markers, step_warnings = detect_course_markers(text, anchors, config)
    all_warnings.extend(step_warnings)

    # ── Step 3: Entities ──────────────────────────────────────────────
    _check_cancelled(cancel_event, "entity extraction")
    entities, step_warnings = run_extractors(text, anchors, vocabulary, config)
    all_warnings.extend(step_warnings)

    # ── Step 4: Dedup ─────────────────────────────────────────────────
    _check_cancelled(cancel_event, "deduplication")
    clusters = deduplicate(entities, config)

    # ── Step 5: Timeline ──────────────────────────────────────────────
    _check_cancelled(cancel_event, "timeline construction")
    timeline = build_timeline(clusters, markers, prior_context=options.prior_context, config=config)

    # ── Step 6-7: Responses + trajectories ────────────────────────────
    _check_cancelled(cancel_event, "timeline analysis")
    with ThreadPoolExecutor(max_workers=2) as executor:
        responses_future = executor.submit(track_responses, timeline, config)
        trajectories_future = executor.submit(analyze_trajectories, timeline)
        responses = responses_future.result()
        trajectories = trajectories_future.result()

    # ── Step 8: Confidence ────────────────────────────────────────────
    _check_cancelled(cancel_event, "confidence scoring")
    canonical = sorted((c.canonical for c in clusters), key=lambda e: (e.span.start, e.entity_id))
    counts: dict[str, int] = {}
    for entity in canonical:
        counts[entity.entity_type.value] = counts.get(entity.entity_type.value, 0) + 1

    elapsed = time.monotonic() - start_time
    result = ExtractionResult(
        entities=canonical,
        timeline=timeline,
        treatment_responses=responses,
        trajectories=trajectories,
        metadata=ExtractionMetadata(
            overall_confidence=score_extraction(canonical, all_warnings),
            pathology_signals=signals,
            warnings=all_warnings,
            entity_counts=counts,
            processing_seconds=round(elapsed, 4),
        ),
    )
    logger.info(
        f"Extraction complete in {elapsed:.3f}s: {len(canonical)} entities, "
        f"{len(timeline.events)} events, {len(responses)} responses, {len(trajectories)} trajectories"
    )
    return result


def extract_batch(
    documents: Iterable[Union[str, ClinicalDocument]],
    options: Optional[ExtractionOptions] = None,
    *,
    config: Optional[ExtractionConfig] = None,
    pathology_classifier: Optional[PathologyClassifier] = None,
    cancel_event: Optional[threading.Event] = None,
) -> list[ExtractionResult]:
    """
    Extract each document in turn. On cancellation, returns the results of
    the documents already completed; the in-flight document is discarded.
    """
    results: list[ExtractionResult] = []
    for index, document in enumerate(documents):
        if cancel_event is not None and cancel_event.is_set():
            logger.info(f"Batch cancelled after {len(results)} document(s)")
            break

        if isinstance(document, ClinicalDocument):
            text = document.text
            doc_options = ExtractionOptions(
                prior_context=document.prior_context,
                reference_date=document.reference_date,
            )
        else:
            text = document
            doc_options = options

        try:
            results.append(extract(
                text,
                doc_options,
                config=config,
                pathology_classifier=pathology_classifier,
                cancel_event=cancel_event,
            ))
        except ExtractionCancelled:
            logger.info(f"Batch cancelled during document {index}; {len(results)} completed")
            break

    return results
