"""
retryWithBackoff - re-runs the node wired into its ``data`` input until it
succeeds.

The wrapped node is pulled; when the pull fails (or a failure is pushed in
as a NodeError) it is pulled again after ``baseDelay * factor ** (n-1)``
seconds, capped at ``maxDelay``, up to ``maxAttempts`` attempts in total.
Each retry publishes ``node_retry``. The attempt counter lives in the run
and is reset on success.

Config defaults come from EngineConfig (retry_max_attempts, retry_base_delay,
retry_max_delay); ``factor`` defaults to 2.
"""

from flowengine.graph.errors import NodeError, NodeExecutionError
from flowengine.graph.node import NodeMetadata, NodeOutput

METADATA = NodeMetadata(
    handles_errors=True,
    description="Retries its upstream operation with exponential backoff.",
)


def backoff_delay(attempt: int, base_delay: float, factor: float, max_delay: float) -> float:
    return min(base_delay * factor ** (attempt - 1), max_delay)


async def retry_with_backoff_node(flow_api, context, data, inputs, config) -> NodeOutput:
    defaults = flow_api.run.config
    try:
        max_attempts = int(config.get("maxAttempts", defaults.retry_max_attempts))
        base_delay = float(config.get("baseDelay", defaults.retry_base_delay))
        max_delay = float(config.get("maxDelay", defaults.retry_max_delay))
        factor = float(config.get("factor", 2.0))
    except (TypeError, ValueError) as e:
        return NodeOutput.failure(f"retryWithBackoff: invalid configuration ({e})")
    if max_attempts < 1:
        return NodeOutput.failure("retryWithBackoff: maxAttempts must be at least 1")

    attempts = flow_api.run.retry_attempts
    key = flow_api.node_id

    if data is not None and not isinstance(data, NodeError):
        attempts[key] = 0
        return NodeOutput.success(context=context, data=data)

    if not inputs.has("data"):
        return NodeOutput.failure("retryWithBackoff requires exactly one operation wired to its data input")

    last_error = data.message if isinstance(data, NodeError) else None
    if last_error is not None:
        attempts[key] = attempts.get(key, 0) + 1

    while True:
        if last_error is not None:
            attempt = attempts[key]
            if attempt >= max_attempts:
                attempts[key] = 0
                flow_api.log.error(f"Giving up after {attempt} attempt(s): {last_error}")
                return NodeOutput.failure(
                    f"Operation failed after {attempt} attempt(s): {last_error}",
                    metadata={"attempts": attempt},
                )
            delay = backoff_delay(attempt, base_delay, factor, max_delay)
            flow_api.log.warning(f"🔄 Retry {attempt}/{max_attempts - 1} in {delay:.1f}s: {last_error}")
            await flow_api.run.event_bus.emit_node_retry(
                flow_api.request_id, flow_api.node_id, attempt, max_attempts, delay
            )
            await flow_api.sleep(delay)

        try:
            value = await inputs.pull("data")
        except NodeExecutionError as e:
            last_error = e.message
            attempts[key] = attempts.get(key, 0) + 1
            continue

        succeeded_after = attempts.get(key, 0) + 1
        attempts[key] = 0
        return NodeOutput.success(context=context, data=value, metadata={"attempts": succeeded_after})
