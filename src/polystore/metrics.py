"""Prometheus metrics definitions for polystore.

All polystore metrics use the ``polystore_`` prefix for namespace isolation.
They are created lazily by :func:`init_metrics`; until then the module-level
references stay ``None`` and the engines skip instrumentation, so importing
polystore never touches the global prometheus_client registry.
"""

from __future__ import annotations

from prometheus_client import Counter

# Flag indicating whether metrics have been initialised via init_metrics().
_initialized: bool = False

# ---------------------------------------------------------------------------
# Listing  (labels: capability = "hierarchy" | "local")
# ---------------------------------------------------------------------------
list_calls_total: Counter | None = None
entries_listed_total: Counter | None = None

# ---------------------------------------------------------------------------
# Polling  (labels: outcome = "messages" | "empty" | "error")
# ---------------------------------------------------------------------------
polls_total: Counter | None = None

# ---------------------------------------------------------------------------
# Externalization
# ---------------------------------------------------------------------------
messages_externalized_total: Counter | None = None
bytes_externalized_total: Counter | None = None


def init_metrics() -> None:
    """Create and register all Prometheus metrics.

    Safe to call more than once; only the first call registers collectors.
    """
    global _initialized
    global list_calls_total, entries_listed_total, polls_total
    global messages_externalized_total, bytes_externalized_total

    if _initialized:
        return

    list_calls_total = Counter(
        "polystore_list_calls_total",
        "Total one-level listing calls issued by the listing engine",
        ["capability"],
    )

    entries_listed_total = Counter(
        "polystore_entries_listed_total",
        "Total entries returned by the listing engine",
    )

    polls_total = Counter(
        "polystore_polls_total",
        "Total receive polls issued by message pumps by outcome",
        ["outcome"],
    )

    messages_externalized_total = Counter(
        "polystore_messages_externalized_total",
        "Total messages whose payload was offloaded to object storage",
    )

    bytes_externalized_total = Counter(
        "polystore_bytes_externalized_total",
        "Total payload bytes offloaded to object storage",
    )

    _initialized = True
