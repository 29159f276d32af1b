from enum import Enum
from typing import Optional

from exposure_gateway.models.enums import AttestationMethod

NAMESPACE = "exposure_gateway"

UNKNOWN_LABEL = "unknown"


class Subsystem(Enum):
    """
    Enumeration of the subsystems the metrics belong to.
    """

    API = "api"
    CELERY = "celery"


def attestation_method_label(method: Optional[str]) -> str:
    """
    Map the attestation method declared by a Mobile Client onto a bounded set of label values.

    :param method: the raw method, as sent by the client.
    :return: the method value if supported, "unknown" otherwise.
    """
    try:
        return AttestationMethod(method).value
    except ValueError:
        return UNKNOWN_LABEL
