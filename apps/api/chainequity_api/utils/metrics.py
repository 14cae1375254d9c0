"""Prometheus metrics."""

from prometheus_client import Counter, Gauge, Histogram

# Ingestion metrics
events_ingested = Counter(
    "chainequity_events_ingested_total",
    "Events recorded in the event store",
    ["event_type", "result"],
)

ranges_committed = Counter(
    "chainequity_ranges_committed_total",
    "Block ranges committed to the ledger",
)

ranges_failed = Counter(
    "chainequity_ranges_failed_total",
    "Block ranges rolled back",
    ["error"],
)

ingestion_duration = Histogram(
    "chainequity_ingestion_duration_seconds",
    "Time to fetch, classify and commit one block range",
)

watermark_block = Gauge(
    "chainequity_watermark_block",
    "Highest block fully ingested",
)

# Reorg metrics
reorgs_detected = Counter(
    "chainequity_reorgs_detected_total",
    "Chain reorganizations detected before ingesting a range",
)

reorg_depth = Histogram(
    "chainequity_reorg_depth_blocks",
    "Blocks rolled back per reorganization",
    buckets=(1, 2, 4, 8, 16, 32, 64, 128),
)

# Watcher metrics
watcher_chain_head = Gauge(
    "chainequity_watcher_chain_head",
    "Latest confirmed chain head seen by the watcher",
)

watcher_transient_failures = Counter(
    "chainequity_watcher_transient_failures_total",
    "Transient watcher failures (retried with backoff)",
)
