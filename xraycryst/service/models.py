from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from ..records import AnalysisRecord
from ..util import b64e


class SubmitRequest(BaseModel):
    """Either an image to seal (image_name, description) or a pre-sealed payload_b64."""
    image_name: Optional[str] = Field(default=None, max_length=256)
    description: str = Field(default="", max_length=2000)
    payload_b64: Optional[str] = None


class AnalysisOut(BaseModel):
    id: str
    owner: str
    status: str
    created_at: int
    payload_b64: str
    artifacts_b64: List[str] = Field(default_factory=list)

    @classmethod
    def from_record(cls, record: AnalysisRecord) -> "AnalysisOut":
        return cls(
            id=record.id,
            owner=record.owner,
            status=record.status.value,
            created_at=record.created_at,
            payload_b64=b64e(record.payload),
            artifacts_b64=[b64e(a) for a in record.artifacts],
        )


class AnalysisList(BaseModel):
    analyses: List[AnalysisOut]
    count: int


class StatsOut(BaseModel):
    processing: int
    completed: int
    failed: int
    total: int


class HealthOut(BaseModel):
    status: str
    ledger_available: bool
    version: str
    detail: Optional[Dict[str, str]] = None
