from pydantic import BaseModel
from typing import Any, Dict, List


class EnqueueRequest(BaseModel):
    channel_ids: List[str]
    priority: int = 0


class EnqueueResponse(BaseModel):
    queued: int
    skipped: int


class ProcessRequest(BaseModel):
    max_jobs: int = 5


class ProcessResponse(BaseModel):
    processed: int
    stats: Dict[str, int]


class StatusRequest(BaseModel):
    channel_ids: List[str]


class StatusResponse(BaseModel):
    channels: Dict[str, Dict[str, Any]]


class PoolStatusResponse(BaseModel):
    total: int
    in_use: int
    idle: int
    max_sessions: int
