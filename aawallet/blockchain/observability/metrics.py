# MIT License
# Copyright (c) 2025 Hashborn

"""
Prometheus Metrics Exporter

Metrics:
- Transactions by status, gas used per transaction
- User operations handled by the coordinator, by outcome
- Account signature validation results and prefund settlements
- Access-control denials by guard
"""

from prometheus_client import Counter, Gauge, Histogram, CollectorRegistry

# Create registry for metrics
metrics_registry = CollectorRegistry()

# ═══════════════════════════════════════════════════════════════════
# HOST METRICS
# ═══════════════════════════════════════════════════════════════════

transactions_total = Counter(
    'aawallet_transactions_total',
    'Top-level transactions processed',
    ['status'],
    registry=metrics_registry
)

transaction_gas_used = Histogram(
    'aawallet_transaction_gas_used',
    'Gas used per top-level transaction',
    buckets=[21_000, 50_000, 100_000, 250_000, 500_000, 1_000_000, 5_000_000],
    registry=metrics_registry
)

accounts_total = Gauge(
    'aawallet_accounts_total',
    'Number of accounts known to the state',
    registry=metrics_registry
)

contracts_total = Gauge(
    'aawallet_contracts_total',
    'Number of accounts with deployed code',
    registry=metrics_registry
)

# ═══════════════════════════════════════════════════════════════════
# ACCOUNT ABSTRACTION METRICS
# ═══════════════════════════════════════════════════════════════════

user_ops_total = Counter(
    'aawallet_user_ops_total',
    'User operations executed by the coordinator',
    ['outcome'],
    registry=metrics_registry
)

signature_validations_total = Counter(
    'aawallet_signature_validations_total',
    'validateUserOp signature checks, including those in reverted calls',
    ['status'],
    registry=metrics_registry
)

prefund_settlements_total = Counter(
    'aawallet_prefund_settlements_total',
    'Prefund transfers attempted by accounts, including those in reverted calls',
    registry=metrics_registry
)

access_denied_total = Counter(
    'aawallet_access_denied_total',
    'Calls rejected by an account access guard, including those in reverted calls',
    ['guard'],
    registry=metrics_registry
)


def update_metrics(state):
    """Refresh gauges from the world state. Called on scrape."""
    accounts = state.all_accounts()
    accounts_total.set(len(accounts))
    contracts_total.set(sum(1 for acc in accounts.values() if acc.has_code))
