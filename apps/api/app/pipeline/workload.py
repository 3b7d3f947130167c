from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from decimal import ROUND_HALF_UP, Decimal
from typing import Literal

from app.core.config import Settings, get_settings
from app.pipeline.constants import UNASSIGNED


UtilizationLevel = Literal["under", "balanced", "over"]

OVERLOAD_RECOMMENDATION = "redistribute deals to reduce workload"
CAPACITY_RECOMMENDATION = "has capacity for additional deals"
OVERLOAD_SUGGESTION = "Consider distributing some deals to other reps"


@dataclass(frozen=True, slots=True)
class DealSnapshot:
    """A deal as the workload engine sees it, with its sales rep already resolved."""

    id: int
    deal_id: str
    value: Decimal
    stage: str
    territory: str | None
    sales_rep_id: int | None
    sales_rep_name: str | None


@dataclass(frozen=True, slots=True)
class TargetRep:
    id: int
    name: str


def round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def format_currency(value: Decimal | float | int) -> str:
    return f"${round_half_up(Decimal(str(value))):,}"


@dataclass
class WorkloadAggregate:
    sales_rep: str
    deal_count: int = 0
    total_value: Decimal = Decimal(0)
    territories: set[str] = field(default_factory=set)
    deals_by_stage: dict[str, int] = field(default_factory=dict)
    utilization_level: UtilizationLevel = "balanced"
    recommendations: list[str] = field(default_factory=list)

    @property
    def avg_deal_value(self) -> int:
        if self.deal_count <= 0:
            return 0
        return round_half_up(self.total_value / self.deal_count)

    @property
    def territory_count(self) -> int:
        return len(self.territories)

    def add(self, deal: DealSnapshot) -> None:
        self.deal_count += 1
        self.total_value += Decimal(deal.value)
        if deal.territory:
            self.territories.add(deal.territory)
        self.deals_by_stage[deal.stage] = self.deals_by_stage.get(deal.stage, 0) + 1


@dataclass(frozen=True, slots=True)
class UtilizationThresholds:
    deal_count_low: int = 2
    deal_count_high: int = 8
    total_value_low: Decimal = Decimal(50000)
    total_value_high: Decimal = Decimal(200000)
    avg_deal_low: Decimal = Decimal(20000)
    avg_deal_high: Decimal = Decimal(50000)
    overload_score: int = 2
    underload_score: int = -1

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> UtilizationThresholds:
        resolved = settings or get_settings()
        return cls(
            deal_count_low=resolved.workload_deal_count_low,
            deal_count_high=resolved.workload_deal_count_high,
            total_value_low=Decimal(str(resolved.workload_total_value_low)),
            total_value_high=Decimal(str(resolved.workload_total_value_high)),
            avg_deal_low=Decimal(str(resolved.workload_avg_deal_low)),
            avg_deal_high=Decimal(str(resolved.workload_avg_deal_high)),
            overload_score=resolved.workload_overload_score,
            underload_score=resolved.workload_underload_score,
        )


@dataclass(frozen=True, slots=True)
class ShiftThresholds:
    deal_count: int = 3
    total_value: Decimal = Decimal(100000)

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> ShiftThresholds:
        resolved = settings or get_settings()
        return cls(
            deal_count=resolved.shift_deal_count_threshold,
            total_value=Decimal(str(resolved.shift_value_threshold)),
        )


@dataclass(frozen=True, slots=True)
class UtilizationScore:
    deal_count_score: int
    value_score: int
    avg_deal_score: int

    @property
    def total(self) -> int:
        return self.deal_count_score + self.value_score + self.avg_deal_score


@dataclass(frozen=True, slots=True)
class Classification:
    level: UtilizationLevel
    score: UtilizationScore
    recommendations: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class Conflict:
    type: str
    rep: str
    severity: str
    message: str
    suggestion: str


@dataclass(frozen=True, slots=True)
class WorkloadWarning:
    type: str
    rep: str
    severity: str
    message: str
    details: str


@dataclass(frozen=True, slots=True)
class ImpactChange:
    deal_id: str
    field: str
    from_rep: str | None
    to_rep: str


@dataclass(frozen=True, slots=True)
class ImpactSummary:
    deal_count: int
    total_value: Decimal
    territories_affected: list[str]
    reps_affected: list[str]
    changes: list[ImpactChange]


def _band(value: Decimal | int, low: Decimal | int, high: Decimal | int) -> int:
    if value <= low:
        return -1
    if value >= high:
        return 1
    return 0


def score_workload(aggregate: WorkloadAggregate, thresholds: UtilizationThresholds | None = None) -> UtilizationScore:
    limits = thresholds or UtilizationThresholds()
    return UtilizationScore(
        deal_count_score=_band(aggregate.deal_count, limits.deal_count_low, limits.deal_count_high),
        value_score=_band(aggregate.total_value, limits.total_value_low, limits.total_value_high),
        avg_deal_score=_band(aggregate.avg_deal_value, limits.avg_deal_low, limits.avg_deal_high),
    )


def classify(aggregate: WorkloadAggregate, thresholds: UtilizationThresholds | None = None) -> Classification:
    limits = thresholds or UtilizationThresholds()
    score = score_workload(aggregate, limits)
    if score.total >= limits.overload_score:
        return Classification(level="over", score=score, recommendations=(OVERLOAD_RECOMMENDATION,))
    if score.total <= limits.underload_score:
        return Classification(level="under", score=score, recommendations=(CAPACITY_RECOMMENDATION,))
    return Classification(level="balanced", score=score)


def aggregate_workload(
    deals: Iterable[DealSnapshot],
    *,
    known_reps: Iterable[str] = (),
    thresholds: UtilizationThresholds | None = None,
) -> dict[str, WorkloadAggregate]:
    """Fold deals into one aggregate per sales rep name.

    Deals without a resolved rep are ignored. Names in ``known_reps`` get an
    entry even when they own no deals.
    """
    workload: dict[str, WorkloadAggregate] = {name: WorkloadAggregate(sales_rep=name) for name in known_reps}
    for deal in deals:
        if not deal.sales_rep_name:
            continue
        bucket = workload.get(deal.sales_rep_name)
        if bucket is None:
            bucket = WorkloadAggregate(sales_rep=deal.sales_rep_name)
            workload[deal.sales_rep_name] = bucket
        bucket.add(deal)

    for bucket in workload.values():
        classification = classify(bucket, thresholds)
        bucket.utilization_level = classification.level
        bucket.recommendations = list(classification.recommendations)
    return workload


def detect_conflicts(
    projected: Mapping[str, WorkloadAggregate],
    thresholds: UtilizationThresholds | None = None,
) -> list[Conflict]:
    limits = thresholds or UtilizationThresholds()
    conflicts: list[Conflict] = []
    for rep, data in projected.items():
        if score_workload(data, limits).total < limits.overload_score:
            continue
        conflicts.append(
            Conflict(
                type="overload",
                rep=rep,
                severity="high",
                message=f"{rep} would be overloaded: {data.deal_count} deals, {format_currency(data.total_value)} pipeline",
                suggestion=OVERLOAD_SUGGESTION,
            )
        )
    return conflicts


def _direction(change: Decimal | int) -> str:
    return "increases" if change > 0 else "decreases"


def detect_warnings(
    current: Mapping[str, WorkloadAggregate],
    projected: Mapping[str, WorkloadAggregate],
    thresholds: ShiftThresholds | None = None,
) -> list[WorkloadWarning]:
    limits = thresholds or ShiftThresholds()
    warnings: list[WorkloadWarning] = []
    for rep in dict.fromkeys([*current.keys(), *projected.keys()]):
        before = current.get(rep) or WorkloadAggregate(sales_rep=rep)
        after = projected.get(rep) or WorkloadAggregate(sales_rep=rep)

        count_change = after.deal_count - before.deal_count
        value_change = after.total_value - before.total_value

        if abs(count_change) >= limits.deal_count:
            warnings.append(
                WorkloadWarning(
                    type="workload_shift",
                    rep=rep,
                    severity="medium",
                    message=f"{rep} workload {_direction(count_change)} by {abs(count_change)} deals",
                    details=f"From {before.deal_count} to {after.deal_count} deals",
                )
            )

        if abs(value_change) >= limits.total_value:
            warnings.append(
                WorkloadWarning(
                    type="value_shift",
                    rep=rep,
                    severity="medium",
                    message=f"{rep} pipeline {_direction(value_change)} by {format_currency(abs(value_change))}",
                    details=f"From {format_currency(before.total_value)} to {format_currency(after.total_value)}",
                )
            )
    return warnings


def simulate_reassignment(
    deals: Iterable[DealSnapshot],
    deal_ids: Iterable[int],
    target: TargetRep,
) -> list[DealSnapshot]:
    selected = set(deal_ids)
    return [
        replace(deal, sales_rep_id=target.id, sales_rep_name=target.name) if deal.id in selected else deal
        for deal in deals
    ]


def affected_reps(selected: Iterable[DealSnapshot], target_name: str) -> list[str]:
    reps: dict[str, None] = {}
    for deal in selected:
        if deal.sales_rep_name:
            reps[deal.sales_rep_name] = None
        reps[target_name] = None
    return list(reps)


def summarize_impact(selected: list[DealSnapshot], target_name: str) -> ImpactSummary:
    territories: dict[str, None] = {}
    changes: list[ImpactChange] = []
    for deal in selected:
        territories[deal.territory or UNASSIGNED] = None
        if deal.sales_rep_name != target_name:
            changes.append(
                ImpactChange(
                    deal_id=deal.deal_id,
                    field="sales_rep",
                    from_rep=deal.sales_rep_name,
                    to_rep=target_name,
                )
            )
    return ImpactSummary(
        deal_count=len(selected),
        total_value=sum((Decimal(deal.value) for deal in selected), Decimal(0)),
        territories_affected=list(territories),
        reps_affected=affected_reps(selected, target_name),
        changes=changes,
    )
