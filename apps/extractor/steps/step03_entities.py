"""
Step 3 — Entity extraction.
Run the five extractors concurrently over the same immutable text. Each
extractor writes to its own list; results are joined in a fixed type order
so output does not depend on thread scheduling.
"""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Optional

from packages.shared.errors import InvariantViolation
from packages.shared.models import (
    DocumentAnchors,
    EntityType,
    ExtractedEntity,
    ExtractionConfig,
    Warning,
)
from apps.extractor.lib.vocabulary import Vocabulary
from apps.extractor.steps.entities import (
    extract_complications,
    extract_demographics,
    extract_functional_scores,
    extract_medications,
    extract_procedures,
)

logger = logging.getLogger(__name__)

Extractor = Callable[..., list[ExtractedEntity]]

EXTRACTORS: list[tuple[EntityType, Extractor]] = [
    (EntityType.PROCEDURE, extract_procedures),
    (EntityType.COMPLICATION, extract_complications),
    (EntityType.MEDICATION, extract_medications),
    (EntityType.DEMOGRAPHIC, extract_demographics),
    (EntityType.FUNCTIONAL_SCORE, extract_functional_scores),
]


def run_extractors(
    text: str,
    anchors: DocumentAnchors,
    vocabulary: Vocabulary,
    config: Optional[ExtractionConfig] = None,
    extractors: Optional[list[tuple[EntityType, Extractor]]] = None,
) -> tuple[list[ExtractedEntity], list[Warning]]:
    """
    Returns (entities, warnings). A failing extractor contributes a warning
    and no entities; invariant violations propagate.
    """
    config = config or ExtractionConfig()
    extractors = extractors if extractors is not None else EXTRACTORS
    warnings: list[Warning] = []
    results: dict[EntityType, list[ExtractedEntity]] = {}

    with ThreadPoolExecutor(max_workers=max(1, config.max_workers)) as executor:
        future_map = {
            executor.submit(fn, text, anchors, vocabulary, config): entity_type
            for entity_type, fn in extractors
        }
        for future in as_completed(future_map):
            entity_type = future_map[future]
            try:
                results[entity_type] = future.result()
            except InvariantViolation:
                logger.error(f"Invariant violated in {entity_type.value} extractor")
                raise
            except Exception as exc:
                logger.error(f"{entity_type.value} extractor failed: {exc}")
                results[entity_type] = []
                warnings.append(Warning(
                    code="EXTRACTOR_FAILED",
                    message=f"{entity_type.value} extraction failed: {exc}",
                ))

    entities: list[ExtractedEntity] = []
    for entity_type, _ in extractors:
        entities.extend(results.get(entity_type, []))

    for entity in entities:
        if "LOW_CONFIDENCE_CLASSIFICATION" in entity.flags:
            warnings.append(Warning(
                code="LOW_CONFIDENCE_CLASSIFICATION",
                message=f"{entity.entity_type.value} '{entity.name}' classified with low confidence",
                entity_id=entity.entity_id,
            ))

    logger.info(f"Extracted {len(entities)} entities")
    return entities, warnings
