"""Token usage accounting for one flow run."""

from dataclasses import dataclass, field


@dataclass
class UsageTotals:
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass
class UsageTracker:
    """Accumulates usage per provider/model; budget guards read the cost."""

    total: UsageTotals = field(default_factory=UsageTotals)
    by_model: dict[str, UsageTotals] = field(default_factory=dict)

    def report(self, provider: str, model: str, input_tokens: int, output_tokens: int) -> None:
        key = f"{provider}/{model}" if provider else model
        bucket = self.by_model.setdefault(key, UsageTotals())
        for totals in (self.total, bucket):
            totals.input_tokens += max(input_tokens, 0)
            totals.output_tokens += max(output_tokens, 0)

    def cost_usd(self, pricing: dict[str, float]) -> float:
        """Cost under ``{"inputCostPer1M": x, "outputCostPer1M": y}`` pricing."""
        input_rate = float(pricing.get("inputCostPer1M", 0.0) or 0.0)
        output_rate = float(pricing.get("outputCostPer1M", 0.0) or 0.0)
        return (
            self.total.input_tokens * input_rate + self.total.output_tokens * output_rate
        ) / 1_000_000
