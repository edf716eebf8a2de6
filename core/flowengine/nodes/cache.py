"""
cache - memoizes an upstream value per node id.

Config:
    ttl: seconds an entry stays fresh (default from EngineConfig, 300);
        ``ttl <= 0`` disables caching entirely (always miss, never write)
    invalidate: millisecond timestamp or ISO-8601 string; entries stored
        before it are treated as misses

On a hit the upstream ``data`` input is not pulled, so the work behind it
is skipped. ``None`` is a valid cached value.
"""

from datetime import datetime
from typing import Any

from flowengine.graph.cache import is_fresh
from flowengine.graph.node import NodeMetadata, NodeOutput

METADATA = NodeMetadata(description="Caches data from upstream nodes to avoid re-executing expensive operations.")


def parse_watermark(value: Any) -> float | None:
    """Milliseconds since the epoch, from a number or an ISO-8601 string."""
    if value is None or value == "" or isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            pass
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp() * 1000
        except ValueError:
            return None
    return None


async def cache_node(flow_api, context, data, inputs, config) -> NodeOutput:
    ttl = config.get("ttl", flow_api.run.config.default_cache_ttl)
    try:
        ttl_ms = float(ttl) * 1000
    except (TypeError, ValueError):
        return NodeOutput.failure(f"cache: invalid ttl {ttl!r}", context=context)

    invalidate = parse_watermark(config.get("invalidate"))
    if config.get("invalidate") not in (None, "") and invalidate is None:
        flow_api.log.warning(f"Ignoring unparseable invalidate watermark {config.get('invalidate')!r}")

    now = flow_api.now()
    entry = flow_api.get_node_cache()
    if is_fresh(entry, now, ttl_ms, invalidate):
        flow_api.log.info(f"💾 Cache hit (age {entry.age_ms(now) / 1000:.1f}s, ttl {ttl}s)")
        flow_api.conversation.add_badge("cache", "Using cached data", status="hit")
        return NodeOutput.success(context=context, data=entry.data, metadata={"cached": True})

    fresh = data
    if fresh is None and inputs.has("data"):
        fresh = await inputs.pull("data")

    if ttl_ms > 0:
        flow_api.set_node_cache(fresh)
        flow_api.log.info(f"🔄 Cache miss; stored fresh value (ttl {ttl}s)")
    else:
        flow_api.log.debug("Cache disabled (ttl <= 0)")
    return NodeOutput.success(context=context, data=fresh, metadata={"cached": False})
