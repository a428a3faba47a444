"""
Data types shared by the resolver components.

LibraryDevice and Alias are read-only records; MatchResult is the only thing
the matching engine ever returns. "No confident match" is a normal outcome
expressed through the MatchResult flags, never through an exception.
"""

from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

CONFIDENCE_HIGH = "high"
CONFIDENCE_MEDIUM = "medium"
CONFIDENCE_LOW = "low"

# Which path produced a result (diagnostics / manifest method breakdown)
METHOD_ALIAS = "alias"
METHOD_EXACT = "exact"
METHOD_MODEL = "model"
METHOD_STORAGE_CLOSEST = "storage_closest"
METHOD_FUZZY_TOKEN = "fuzzy_token"
METHOD_FREE_TEXT_EXACT = "free_text_exact"
METHOD_FREE_TEXT_TOKEN = "free_text_token"
METHOD_NONE = "none"


@dataclass(frozen=True)
class LibraryDevice:
    id: str
    make: str
    model: str
    storage: str
    active: bool = True
    category: str = ""

    @property
    def display_name(self) -> str:
        return f"{self.make} {self.model} {self.storage}"

    @property
    def model_name(self) -> str:
        return f"{self.make} {self.model}"


@dataclass(frozen=True)
class Alias:
    alias: str
    device_id: str
    created_by: str
    created_at: datetime


@dataclass
class MatchResult:
    device_id: Optional[str] = None
    device_name: Optional[str] = None
    storage: Optional[str] = None
    match_confidence: str = CONFIDENCE_LOW
    storage_options: Optional[List[str]] = None
    needs_storage_selection: bool = False
    needs_manual_selection: bool = False
    method: str = METHOD_NONE
    suggestions: Optional[List[Dict[str, Any]]] = None

    @property
    def is_resolved(self) -> bool:
        return self.device_id is not None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
