from prometheus_client import Counter

from exposure_gateway.monitoring.core import NAMESPACE, Subsystem

VERIFICATIONS_DELETED = Counter(
    namespace=NAMESPACE,
    subsystem=Subsystem.CELERY.value,
    name="verifications_deleted",
    documentation="Total number of deleted expired VerificationRecords.",
)

VERIFICATION_CONTROLS_DELETED = Counter(
    namespace=NAMESPACE,
    subsystem=Subsystem.CELERY.value,
    name="verification_controls_deleted",
    documentation="Total number of deleted stale VerificationControls.",
)
