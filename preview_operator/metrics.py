"""Prometheus metrics for the reconcile loop."""
from prometheus_client import Counter, Histogram

RECONCILE_TOTAL = Counter(
    "preview_operator_reconcile_total",
    "Reconcile passes by outcome",
    ["outcome"],
)
CHILD_ACTIONS = Counter(
    "preview_operator_child_actions_total",
    "Create/update calls issued against child resources",
    ["kind", "action"],
)
PHASE_TRANSITIONS = Counter(
    "preview_operator_phase_transitions_total",
    "Phase transitions written to status",
    ["phase"],
)
RECONCILE_DURATION = Histogram(
    "preview_operator_reconcile_duration_seconds",
    "Wall time of a reconcile pass",
)
