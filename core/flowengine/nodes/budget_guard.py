"""
budgetGuard - stops a run from spending past a USD budget.

Config:
    budgetUSD: spend limit for the run
    blockOnExceed: pause for approval instead of just flagging
    inputCostPer1M / outputCostPer1M: pricing (falls back to EngineConfig.pricing)
"""

from flowengine.graph.node import NodeMetadata, NodeOutput

METADATA = NodeMetadata(description="Checks accumulated token cost against a budget.")


async def budget_guard_node(flow_api, context, data, inputs, config) -> NodeOutput:
    try:
        budget = float(config.get("budgetUSD") or 0)
    except (TypeError, ValueError):
        return NodeOutput.failure(f"budgetGuard: invalid budgetUSD {config.get('budgetUSD')!r}")

    pricing = dict(flow_api.run.config.pricing or {})
    for key in ("inputCostPer1M", "outputCostPer1M"):
        if config.get(key) is not None:
            pricing[key] = float(config[key])

    spent = flow_api.run.usage.cost_usd(pricing)
    metadata = {"spent_usd": round(spent, 6), "budget_usd": budget}
    exceeded = budget > 0 and spent > budget

    if not exceeded:
        return NodeOutput.success(context=context, data=data, metadata=metadata)

    flow_api.log.warning(f"Budget exceeded: ${spent:.4f} > ${budget:.4f}")
    metadata["budget_exceeded"] = True
    if not config.get("blockOnExceed"):
        flow_api.conversation.add_badge("budget", "Budget exceeded", spent_usd=metadata["spent_usd"])
        return NodeOutput.success(context=context, data=data, metadata=metadata)

    if flow_api.resume_value is None:
        return NodeOutput.waiting(reason="budget_exceeded", metadata=metadata)
    if not flow_api.resume_value:
        return NodeOutput.failure("Budget exceeded and continuation was rejected", metadata=metadata)
    flow_api.log.info("Continuing past budget after approval")
    return NodeOutput.success(context=context, data=data, metadata=metadata)
