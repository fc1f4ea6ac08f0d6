from typing import List, Optional

from pydantic import BaseModel


class InterestCount(BaseModel):
    tag: str
    matches: int

class ClusterStats(BaseModel):
    instance_id: str
    online_count: int
    matches_total: int
    top_interests: List[InterestCount] = []

class StatsResponse(BaseModel):
    online_count: int
    waiting_count: int
    paired_count: int
    matches_total: int
    cluster: Optional[ClusterStats] = None

class HealthResponse(BaseModel):
    status: str
    online_count: int
