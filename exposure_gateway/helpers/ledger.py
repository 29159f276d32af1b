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

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from hashlib import sha512
from typing import Optional, Tuple

from exposure_gateway.core.exceptions import (
    ForbiddenException,
    GoneException,
    SchemaValidationException,
    TooManyRequestsException,
)
from exposure_gateway.helpers.rate_limit import RateLimiter
from exposure_gateway.helpers.upload_token import UploadTokenManager
from exposure_gateway.models.enums import TestType
from exposure_gateway.models.registration import Registration, VerificationControl
from exposure_gateway.models.verification import VerificationRecord
from exposure_gateway.monitoring.api import VERIFICATIONS

_LOGGER = logging.getLogger(__name__)

_SHA512_HEX_LENGTH = 128
_VERIFICATION_HASH_REGEX = re.compile(rf"^[a-f0-9]{{{2 * _SHA512_HEX_LENGTH}}}$")


@dataclass(frozen=True)
class ExchangeResult:
    onset_date: Optional[date]
    test_type: TestType
    token: str


def split_verification_hash(verification_hash: str) -> Tuple[str, str]:
    """
    Split the hash sent by the Mobile Client into its control and code hashes.

    :param verification_hash: the 256 hex characters hash; the first half is the control hash,
      the second half is the hash of the full code.
    :return: the control hash and the code hash.
    :raises: SchemaValidationException if the hash is malformed.
    """
    if not _VERIFICATION_HASH_REGEX.match(verification_hash):
        raise SchemaValidationException()
    return verification_hash[:_SHA512_HEX_LENGTH], verification_hash[_SHA512_HEX_LENGTH:]


def hash_verification_code(code: str) -> Tuple[str, str]:
    """
    Derive the control and code hashes from a plain verification code.
    The control is the first half of the code, so that codes sharing it can be rate limited
    together.

    :param code: the verification code.
    :return: the control hash and the code hash.
    """
    control = code[: len(code) // 2]
    return (
        sha512(control.encode("utf-8")).hexdigest(),
        sha512(code.encode("utf-8")).hexdigest(),
    )


class VerificationLedger:
    """
    Redeem the verification codes issued by the lab portal in exchange for upload tokens.
    """

    def __init__(
        self,
        code_lifetime: timedelta,
        verify_rate_limit: timedelta,
        control_rate_limit: Optional[timedelta],
        upload_tokens: UploadTokenManager,
    ) -> None:
        """
        :param code_lifetime: how long a code can be redeemed after its creation.
        :param verify_rate_limit: the minimum interval between two attempts of a registration.
        :param control_rate_limit: the minimum interval between two attempts on codes sharing
          the same control, None to disable the check.
        :param upload_tokens: the manager issuing the upload tokens.
        """
        self._code_lifetime = code_lifetime
        self._registration_limiter = RateLimiter(
            Registration, "last_verification_attempt", verify_rate_limit
        )
        self._control_limiter = (
            RateLimiter(
                VerificationControl,
                "last_verification_attempt",
                control_rate_limit,
                create_missing=True,
            )
            if control_rate_limit is not None
            else None
        )
        self._upload_tokens = upload_tokens

    def exchange(
        self,
        registration_id: str,
        control_hash: str,
        code_hash: str,
        now: Optional[datetime] = None,
    ) -> ExchangeResult:
        """
        Redeem a verification code, at most once, and issue an upload token for it.

        :param registration_id: the registration redeeming the code.
        :param control_hash: the hash of the control part of the code.
        :param code_hash: the hash of the full code.
        :param now: the current time, defaults to utcnow.
        :return: the diagnosis data and the id of the new upload token.
        :raises: TooManyRequestsException if the registration or the control is rate limited.
        :raises: ForbiddenException if no code matches.
        :raises: GoneException if the code is past its lifetime.
        """
        now = now or datetime.utcnow()

        if not self._registration_limiter.touch_if_elapsed(registration_id, now=now):
            VERIFICATIONS.labels("rate_limited").inc()
            raise TooManyRequestsException()

        if self._control_limiter is not None and not self._control_limiter.touch_if_elapsed(
            control_hash, now=now
        ):
            VERIFICATIONS.labels("rate_limited").inc()
            raise TooManyRequestsException()

        record = VerificationRecord.redeem(control=control_hash, code=code_hash)
        if record is None:
            _LOGGER.info(
                "No verification code matches.", extra=dict(registration_id=registration_id)
            )
            VERIFICATIONS.labels("invalid").inc()
            raise ForbiddenException()

        if now - record.created_at > self._code_lifetime:
            _LOGGER.info(
                "Verification code expired.",
                extra=dict(registration_id=registration_id, created_at=record.created_at),
            )
            VERIFICATIONS.labels("expired").inc()
            raise GoneException()

        # The record is gone by now: if the token cannot be created, the code is burned.
        try:
            token = self._upload_tokens.create(
                registration_id=registration_id,
                onset_date=record.onset_date,
                test_type=record.test_type,
                now=now,
            )
        except Exception:
            _LOGGER.exception(
                "Could not create the upload token for a redeemed code.",
                extra=dict(registration_id=registration_id, send_count=record.send_count),
            )
            raise

        VERIFICATIONS.labels("valid").inc()
        _LOGGER.info(
            "Verification code redeemed.",
            extra=dict(registration_id=registration_id, send_count=record.send_count),
        )
        return ExchangeResult(onset_date=record.onset_date, test_type=record.test_type, token=token)
