from .procedures import extract_procedures
from .complications import extract_complications
from .medications import extract_medications
from .demographics import extract_demographics
from .functional_scores import extract_functional_scores

__all__ = [
    "extract_procedures",
    "extract_complications",
    "extract_medications",
    "extract_demographics",
    "extract_functional_scores",
]
