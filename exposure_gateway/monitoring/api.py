from prometheus_client.metrics import Counter

from exposure_gateway.monitoring.core import NAMESPACE, Subsystem

# NOTE: Outcomes are tracked with a dedicated label rather than the HTTP status, since different
#  rejections render with the same status on purpose.

VERIFICATIONS = Counter(
    namespace=NAMESPACE,
    subsystem=Subsystem.API.value,
    name="verifications",
    labelnames=("outcome",),
    documentation="Number of verification code redemption attempts, by outcome.",
)

UPLOAD_REQUESTS = Counter(
    namespace=NAMESPACE,
    subsystem=Subsystem.API.value,
    name="upload_requests",
    labelnames=("chaff", "platform", "http_status"),
    documentation="Number of exposure key upload requests the server responded to.",
)

KEYS_INSERTED = Counter(
    namespace=NAMESPACE,
    subsystem=Subsystem.API.value,
    name="keys_inserted",
    documentation="Total number of exposure keys stored.",
)

ATTESTATION_FAILURES = Counter(
    namespace=NAMESPACE,
    subsystem=Subsystem.API.value,
    name="attestation_failures",
    labelnames=("method", "reason"),
    documentation="Number of rejected device attestations, by method and reason.",
)

EXPORT_FILES_REQUESTS = Counter(
    namespace=NAMESPACE,
    subsystem=Subsystem.API.value,
    name="export_files_requests",
    labelnames=("stale",),
    documentation="Number of export file list requests, and whether the cursor was stale.",
)
