"""Prometheus metrics for the feed engine."""

from prometheus_client import Counter, Histogram

CACHE_HITS = Counter('feed_cache_hits_total', 'Cache reads served', ['tier'])
CACHE_MISSES = Counter('feed_cache_misses_total', 'Cache reads that found nothing')
CACHE_EVICTIONS = Counter('feed_cache_evictions_total', 'Entries removed by eviction', ['tier'])
DURABLE_FAILURES = Counter('feed_cache_durable_failures_total', 'Durable tier failures')

LAZY_LOADS = Counter('feed_lazy_loads_total', 'Items materialized by the lazy loader', ['content_type'])
LAZY_LOAD_FAILURES = Counter('feed_lazy_load_failures_total', 'Failed materializations', ['content_type'])
LAZY_UNLOADS = Counter('feed_lazy_unloads_total', 'Items released back to placeholders', ['content_type'])
DROPPED_BATCHES = Counter('feed_lazy_dropped_batches_total', 'Load batches dropped while another was in flight')

RANKING_TIME = Histogram('feed_ranking_seconds', 'Time spent scoring and distributing candidates')
FEED_REQUESTS = Counter('feed_requests_total', 'Personalized feed requests', ['source'])
