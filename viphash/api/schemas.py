"""
Request and response models for the peer ledger API.
"""

from typing import Any, Dict, List

from pydantic import BaseModel, field_validator

from ..core.schema import ADDRESS_RE, Verdict, validate_reviewer


class RecordPayload(BaseModel):
    address: str
    reviewer: str
    verdict: Verdict
    recorded_at: float

    @field_validator('address')
    @classmethod
    def address_must_be_sha1(cls, v):
        if not ADDRESS_RE.match(v):
            raise ValueError('address must be 40 lowercase hex characters')
        return v

    @field_validator('reviewer')
    @classmethod
    def reviewer_must_be_storable(cls, v):
        validate_reviewer(v)
        return v


class RecordBatchResponse(BaseModel):
    received: int
    created: int
    duplicates: int


class AuthCheckResponse(BaseModel):
    authenticated: bool


class IndexResponse(BaseModel):
    name: str
    version: str
    authentication: Dict[str, Any]
    routes: List[str]


class HealthResponse(BaseModel):
    status: str
    version: str
    db_health: bool
    record_count: int
