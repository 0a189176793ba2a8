from prometheus_client import Counter, CollectorRegistry, Gauge, generate_latest


registry = CollectorRegistry()


steps_finalized_total = Counter(
    'pdp_steps_finalized_total',
    'Total WORK steps finalized',
    ['protocol', 'outcome'],
    registry=registry
)

insights_generated_total = Counter(
    'pdp_insights_generated_total',
    'Total coaching insights generated',
    ['type', 'kind'],
    registry=registry
)

timer_cues_total = Counter(
    'pdp_timer_cues_total',
    'Total timer cues emitted',
    ['cue'],
    registry=registry
)

persistence_failures_total = Counter(
    'pdp_persistence_failures_total',
    'Total failed writes to external collaborators',
    ['operation'],
    registry=registry
)

active_runs = Gauge(
    'pdp_active_runs',
    'Session runs currently held in memory',
    registry=registry
)


def track_step_finalized(protocol: str, outcome: str) -> None:
    steps_finalized_total.labels(protocol=protocol, outcome=outcome).inc()


def track_insight(insight_type: str, kind: str) -> None:
    insights_generated_total.labels(type=insight_type, kind=kind).inc()


def track_cue(cue: str) -> None:
    timer_cues_total.labels(cue=cue).inc()


def track_persistence_failure(operation: str) -> None:
    persistence_failures_total.labels(operation=operation).inc()


def get_metrics() -> bytes:
    return generate_latest(registry)
