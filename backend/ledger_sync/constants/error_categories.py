from enum import Enum
from typing import Dict


class ErrorCategory(str, Enum):
    TRANSIENT = "transient"
    VALIDATION = "validation"
    DEPENDENCY_MISSING = "dependency_missing"
    MALFORMED = "malformed"
    UNEXPECTED = "unexpected"
    FATAL = "fatal"


def explain_error(category: ErrorCategory, context: Dict) -> str:
    templates = {
        ErrorCategory.TRANSIENT: "Ledger unavailable for {entity_type} {label} after {attempts} attempts: {detail}.",
        ErrorCategory.VALIDATION: "Ledger rejected {entity_type} {label}: {detail}.",
        ErrorCategory.DEPENDENCY_MISSING: "{entity_type} {label} skipped: {detail} - please {hint}.",
        ErrorCategory.MALFORMED: "Malformed {entity_type} {label}: {detail}.",
        ErrorCategory.UNEXPECTED: "Unexpected error for {entity_type} {label}: {detail}.",
        ErrorCategory.FATAL: "Sync aborted: {detail}.",
    }
    defaults = {"entity_type": "record", "label": "", "detail": "", "hint": "retry later", "attempts": "?"}
    return templates[category].format(**{**defaults, **context})
