from fastapi import APIRouter, HTTPException, Request
import redis
from starlette.concurrency import run_in_threadpool

from logging_config import get_logger
from schemas.stats import ClusterStats, HealthResponse, InterestCount, StatsResponse

logger = get_logger(__name__)

stats_router = APIRouter(tags=["stats"])


def read_cluster_stats(stats_backend) -> ClusterStats:
    return ClusterStats(
        instance_id=stats_backend.instance_id,
        online_count=stats_backend.cluster_online_count(),
        matches_total=stats_backend.matches_total(),
        top_interests=[InterestCount(**item) for item in stats_backend.top_interests()],
    )


@stats_router.get("/health", response_model=HealthResponse)
async def health(request: Request):
    chat_server = request.app.state.chat_server
    return HealthResponse(status="ok", online_count=chat_server.registry.size())


@stats_router.get("/stats", response_model=StatsResponse)
async def get_stats(request: Request):
    """Local pairing stats for this instance, plus cluster-wide totals when Redis stats are enabled."""
    chat_server = request.app.state.chat_server
    stats_backend = request.app.state.stats_backend
    logger.debug("Fetching chat stats")

    response = StatsResponse(**chat_server.stats())
    if stats_backend is None:
        return response

    try:
        # Blocking Redis reads stay off the event loop that runs the chat core
        response.cluster = await run_in_threadpool(read_cluster_stats, stats_backend)
    except redis.RedisError as e:
        logger.error(f"Error reading cluster stats from Redis: {e}", exc_info=True)
        raise HTTPException(status_code=503, detail="Cluster stats unavailable") from e
    return response
