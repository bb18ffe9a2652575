from pydantic import BaseModel, ConfigDict, Field


class PlanMetrics(BaseModel):
    model_config = ConfigDict(extra="forbid")

    counters: dict[str, int] = Field(
        default_factory=dict,
        description="Named counters for plan and step outcomes.",
    )

    def inc(self, key: str, n: int = 1) -> None:
        self.counters[key] = int(self.counters.get(key, 0)) + n

    def get(self, key: str) -> int:
        return int(self.counters.get(key, 0))

    def merge(self, other: "PlanMetrics") -> "PlanMetrics":
        merged = PlanMetrics(counters=dict(self.counters))
        for k, v in other.counters.items():
            merged.inc(k, v)
        return merged

    def render_markdown(self) -> str:
        if not self.counters:
            return "No metrics yet."
        lines = ["### Plan metrics"]
        for k in sorted(self.counters.keys()):
            lines.append(f"- **{k}**: {self.counters[k]}")
        return "\n".join(lines)
