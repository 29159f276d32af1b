#    Copyright (C) 2020 Presidenza del Consiglio dei Ministri.
#    Please refer to the AUTHORS file for more information.
#    This program is free software: you can redistribute it and/or modify
#    it under the terms of the GNU Affero General Public License as
#    published by the Free Software Foundation, either version 3 of the
#    License, or (at your option) any later version.
#    This program is distributed in the hope that it will be useful,
#    but WITHOUT ANY WARRANTY; without even the implied warranty of
#    MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE. See the
#    GNU Affero General Public License for more details.
#    You should have received a copy of the GNU Affero General Public License
#    along with this program. If not, see <https://www.gnu.org/licenses/>.

import base64
import binascii
import hmac
import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from hashlib import sha256
from typing import List, Optional, Sequence

from exposure_gateway.core.exceptions import ForbiddenException, SchemaValidationException
from exposure_gateway.helpers.rolling_start_number import (
    TEN_MINUTES,
    datetime_to_rolling_start_number,
    rolling_start_number_to_datetime,
)
from exposure_gateway.models.enums import TestType
from exposure_gateway.models.exposure_key import ExposureKey

_LOGGER = logging.getLogger(__name__)

KEY_DATA_LENGTH = 16
_ROLLING_PERIOD_MIN = 1
_ROLLING_PERIOD_MAX = 144
_TRANSMISSION_RISK_LEVEL_MIN = 0
_TRANSMISSION_RISK_LEVEL_MAX = 8


@dataclass(frozen=True)
class KeyBinding:
    """
    The HMAC binding between a batch of keys and a signed verification certificate.
    """

    hmac_key: bytes
    digest: str


def tekmac(keys: Sequence[ExposureKey], hmac_key: bytes) -> str:
    """
    Compute the HMAC binding the given keys to a verification certificate.
    The keys are serialized as "key.rollingStartNumber.rollingPeriod.transmissionRiskLevel",
    sorted by key data and joined by commas.

    :param keys: the keys to bind.
    :param hmac_key: the secret chosen by the client.
    :return: the base64 encoded HMAC-SHA256 digest.
    """
    serialized = ",".join(
        f"{key.key_data}.{key.rolling_start_number}.{key.rolling_period}."
        f"{key.transmission_risk_level}"
        for key in sorted(keys, key=lambda k: k.key_data)
    )
    digest = hmac.new(hmac_key, serialized.encode("utf-8"), sha256).digest()
    return base64.b64encode(digest).decode("utf-8")


def days_since_onset(start_time: datetime, onset_date: Optional[date]) -> int:
    """
    Compute the signed number of whole days between the onset date and the key start.

    :param start_time: the start of the key.
    :param onset_date: the onset date, if known.
    :return: the number of days, rounded down, or 0 if there is no onset date.
    """
    if onset_date is None:
        return 0
    onset = datetime.combine(onset_date, datetime.min.time())
    return (start_time - onset) // timedelta(days=1)


class ExposureKeyStore:
    """
    Validate, filter and persist the keys uploaded by a diagnosed user.
    """

    def __init__(self, max_keys: int) -> None:
        """
        :param max_keys: the maximum number of keys accepted in a single upload.
        """
        self._max_keys = max_keys

    def ingest(  # pylint: disable=too-many-arguments
        self,
        keys: List[ExposureKey],
        onset_date: Optional[date],
        test_type: TestType,
        regions: List[str],
        binding: Optional[KeyBinding] = None,
        now: Optional[datetime] = None,
    ) -> int:
        """
        Validate and store the given keys.

        :param keys: the uploaded keys.
        :param onset_date: the onset date of the diagnosis, if known.
        :param test_type: the diagnosis type.
        :param regions: the regions the keys are published to.
        :param binding: the HMAC binding to check the keys against, if any.
        :param now: the current time, defaults to utcnow.
        :return: the number of keys actually inserted. Filtered and already stored keys are
          not counted.
        :raises: ForbiddenException if the keys do not match the binding.
        :raises: SchemaValidationException if the batch is too large or a key is invalid.
        """
        now = now or datetime.utcnow()

        if binding is not None and not hmac.compare_digest(
            tekmac(keys, binding.hmac_key), binding.digest
        ):
            _LOGGER.warning("Keys do not match the certificate HMAC.", extra=dict(n_keys=len(keys)))
            raise ForbiddenException()

        if (n_keys := len(keys)) > self._max_keys:
            _LOGGER.warning(
                "Too many keys uploaded.", extra=dict(n_keys=n_keys, max_keys=self._max_keys)
            )
            raise SchemaValidationException()

        retained = [key for key in keys if self._validate(key, onset_date, now)]

        for key in retained:
            key.regions = regions
            key.test_type = test_type
            key.days_since_onset = days_since_onset(key.start_time, onset_date)
            key.created_at = now

        n_inserted = ExposureKey.insert_ignoring_duplicates(retained)
        _LOGGER.info(
            "Stored uploaded keys.",
            extra=dict(n_keys=n_keys, n_retained=len(retained), n_inserted=n_inserted),
        )
        return n_inserted

    @staticmethod
    def _validate(key: ExposureKey, onset_date: Optional[date], now: datetime) -> bool:
        """
        Validate a single key, and assess whether it is recent enough to be kept.

        :param key: the key to validate.
        :param onset_date: the onset date of the diagnosis, if known.
        :param now: the current time.
        :return: True if the key is to be kept, False if it predates the onset.
        :raises: SchemaValidationException if the key is invalid.
        """
        try:
            decoded = base64.b64decode(key.key_data, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise SchemaValidationException() from exc
        if len(decoded) != KEY_DATA_LENGTH:
            _LOGGER.warning("Invalid key length.", extra=dict(length=len(decoded)))
            raise SchemaValidationException()

        if not _ROLLING_PERIOD_MIN <= key.rolling_period <= _ROLLING_PERIOD_MAX:
            raise SchemaValidationException()
        if not (
            _TRANSMISSION_RISK_LEVEL_MIN
            <= key.transmission_risk_level
            <= _TRANSMISSION_RISK_LEVEL_MAX
        ):
            raise SchemaValidationException()

        if key.rolling_start_number > datetime_to_rolling_start_number(now):
            _LOGGER.warning(
                "Future keys are not accepted.",
                extra=dict(rolling_start_number=key.rolling_start_number),
            )
            raise SchemaValidationException()

        if onset_date is None:
            return True
        start_time = rolling_start_number_to_datetime(key.rolling_start_number)
        end_time = start_time + key.rolling_period * TEN_MINUTES
        return end_time > datetime.combine(onset_date, datetime.min.time())
