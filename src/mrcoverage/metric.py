import re

from prometheus_client import Counter

request_counter = Counter(
    "mrcoverage_num_req", "Total number of requests", labelnames=["path"]
)
webhook_counter = Counter(
    "mrcoverage_num_webhook", "Total number of webhooks", labelnames=["event"]
)
webhook_skipped_counter = Counter(
    "mrcoverage_num_webhook_skipped",
    "Total number of skipped webhooks",
    labelnames=["event", "reason"],
)

error_counter = Counter(
    "mrcoverage_error_counter", "Total number of errors", labelnames=["context"]
)

api_call_count = Counter(
    "mrcoverage_num_api_calls",
    "Total number of GitLab API calls",
    labelnames=["endpoint"],
)

note_post_counter = Counter(
    "mrcoverage_note_post",
    "Number of merge request note posts",
    labelnames=["action", "result"],
)

coverage_stored_counter = Counter(
    "mrcoverage_coverage_stored",
    "Number of commit coverage values persisted",
)

_NUMERIC_SEGMENT = re.compile(r"^\d+$")


def _normalize_api_endpoint(path: str) -> str:
    """Collapse a GitLab API path into a low-cardinality label.

    ``/projects/12/merge_requests/3/notes/99`` becomes
    ``merge_requests/notes``: the project part and all ids are dropped.
    """
    parts = [p for p in path.split("?")[0].strip("/").split("/") if p]
    if parts and parts[0] == "api":
        parts = parts[2:]
    if len(parts) >= 2 and parts[0] == "projects":
        parts = parts[2:]
    named = [p for p in parts if not _NUMERIC_SEGMENT.match(p)]
    if not named:
        return "other"
    return "/".join(named)


def record_api_call(endpoint: str) -> None:
    api_call_count.labels(endpoint=_normalize_api_endpoint(endpoint)).inc()
