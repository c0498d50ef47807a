"""
Ledger data model: verdicts, records and peer descriptors.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

ADDRESS_RE = re.compile(r"^[0-9a-f]{40}$")


class Verdict(str, Enum):
    GOOD = "true"
    BAD = "false"

    @classmethod
    def parse(cls, value: str) -> "Verdict":
        """Accept good/bad as well as the stored true/false spelling."""
        normalized = value.strip().lower()
        if normalized in ("good", "true"):
            return cls.GOOD
        if normalized in ("bad", "false"):
            return cls.BAD
        raise ValueError(f"verdict must be one of good, bad, true, false: {value!r}")


class SaveOutcome(str, Enum):
    CREATED = "created"
    ALREADY_EXISTS = "already_exists"


@dataclass(frozen=True)
class VerdictRecord:
    address: str
    reviewer: str
    verdict: Verdict
    recorded_at: float
    origin: Optional[str] = None

    def to_wire(self) -> Dict[str, Any]:
        """Shape used by the peer API; origin is local bookkeeping and is not sent."""
        return {
            "address": self.address,
            "reviewer": self.reviewer,
            "verdict": self.verdict.value,
            "recorded_at": self.recorded_at,
        }


@dataclass
class RemoteDescriptor:
    id: int
    name: str
    endpoint_uri: str
    auth_material: Dict[str, Any] = field(default_factory=dict)
    latest_seen: float = 0.0
    last_sent: float = 0.0


def validate_reviewer(reviewer: str) -> None:
    """Reviewer names end up in record file names, so path characters are refused."""
    if not reviewer or not reviewer.strip():
        raise ValueError("reviewer cannot be empty")
    if "/" in reviewer or "\\" in reviewer or reviewer in (".", ".."):
        raise ValueError(f"reviewer contains path characters: {reviewer!r}")


def validate_key(address: str, reviewer: str) -> None:
    """Reject malformed (address, reviewer) keys before they reach storage."""
    if not address or not ADDRESS_RE.match(address):
        raise ValueError(f"address must be 40 lowercase hex characters: {address!r}")
    validate_reviewer(reviewer)
