"""
Prometheus metrics exposed on /metrics.
"""
from prometheus_client import Counter, Gauge

MIRROR_SYNC_TOTAL = Counter(
    "mirrors_sync_total",
    "Number of successful mirror syncs",
    ["mirror", "source_type", "destination_type"],
)

MIRROR_NS_CURRENT_COUNT = Gauge(
    "mirrors_ns_current_count",
    "Number of namespaces to which a secret has been successfully mirrored",
    ["mirror", "source_type"],
)

VAULT_LEASE_RENEW_OK = Counter(
    "mirrors_vault_lease_renew_ok_total",
    "Number of successful lease renewals",
    ["mirror", "vault"],
)

VAULT_LEASE_RENEW_ERROR = Counter(
    "mirrors_vault_lease_renew_error_total",
    "Number of errored lease renewals",
    ["mirror", "vault", "http_code"],
)


def record_sync(mirror: str, source_type: str, destination_type: str):
    MIRROR_SYNC_TOTAL.labels(mirror=mirror, source_type=source_type,
                             destination_type=destination_type).inc()


def set_namespace_count(mirror: str, source_type: str, count: int):
    MIRROR_NS_CURRENT_COUNT.labels(mirror=mirror, source_type=source_type).set(count)


def clear_namespace_count(mirror: str, source_type: str):
    try:
        MIRROR_NS_CURRENT_COUNT.remove(mirror, source_type)
    except KeyError:
        pass  # never synced


def record_lease_renew_ok(mirror: str, vault: str):
    VAULT_LEASE_RENEW_OK.labels(mirror=mirror, vault=vault).inc()


def record_lease_renew_error(mirror: str, vault: str, http_code: str):
    VAULT_LEASE_RENEW_ERROR.labels(mirror=mirror, vault=vault, http_code=http_code).inc()
