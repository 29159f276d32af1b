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
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional

from jose import JOSEError, jwt

from exposure_gateway.core.exceptions import ForbiddenException
from exposure_gateway.helpers.rolling_start_number import (
    date_to_onset_interval,
    onset_interval_to_date,
)
from exposure_gateway.models.enums import TestType

_LOGGER = logging.getLogger(__name__)

_ALGORITHM = "ES256"


@dataclass(frozen=True)
class Certificate:
    test_type: TestType
    onset_date: Optional[date]
    tekmac: str


class TokenSigner:
    """
    Sign and verify the ES256 tokens handed to the Mobile Clients: the verification token
    wrapping an upload token, and the certificate binding a batch of keys to a diagnosis.
    """

    def __init__(  # pylint: disable=too-many-arguments
        self,
        private_key: str,
        public_key: str,
        key_id: str,
        issuer: str,
        verification_token_lifetime: timedelta,
        certificate_audience: str,
        certificate_lifetime: timedelta,
    ) -> None:
        self._private_key = private_key
        self._public_key = public_key
        self._key_id = key_id
        self._issuer = issuer
        self._verification_token_lifetime = verification_token_lifetime
        self._certificate_audience = certificate_audience
        self._certificate_lifetime = certificate_lifetime

    def _sign(self, claims: dict, audience: str, lifetime: timedelta, now: datetime) -> str:
        claims = dict(claims, iss=self._issuer, aud=audience, iat=now, exp=now + lifetime)
        return jwt.encode(
            claims, self._private_key, algorithm=_ALGORITHM, headers=dict(kid=self._key_id)
        )

    def _read(self, token: str, audience: str) -> dict:
        try:
            return jwt.decode(
                token,
                self._public_key,
                algorithms=[_ALGORITHM],
                audience=audience,
                issuer=self._issuer,
            )
        except JOSEError as exc:
            _LOGGER.warning("Signed token rejected.", extra=dict(error=str(exc)))
            raise ForbiddenException() from exc

    def sign_verification_token(
        self,
        token_id: str,
        test_type: TestType,
        onset_date: date,
        now: Optional[datetime] = None,
    ) -> str:
        """
        Wrap the given upload token into a verification token.

        :param token_id: the id of the upload token, carried as jti.
        :param test_type: the diagnosis type.
        :param onset_date: the onset date of the diagnosis.
        :param now: the issue time, defaults to utcnow.
        :return: the signed verification token.
        """
        return self._sign(
            dict(jti=token_id, sub=f"{test_type.value}.{onset_date.isoformat()}"),
            audience=self._issuer,
            lifetime=self._verification_token_lifetime,
            now=now or datetime.utcnow(),
        )

    def read_verification_token(self, token: str) -> str:
        """
        Verify the given verification token and extract the upload token it wraps.

        :param token: the verification token.
        :return: the id of the upload token.
        :raises: ForbiddenException if the token is not valid, or expired.
        """
        token_id = self._read(token, audience=self._issuer).get("jti")
        if not token_id:
            raise ForbiddenException()
        return token_id

    def sign_certificate(
        self,
        test_type: TestType,
        onset_date: date,
        tekmac: str,
        now: Optional[datetime] = None,
    ) -> str:
        """
        Issue a certificate for a diagnosis, bound to the HMAC of the keys to be uploaded.

        :param test_type: the diagnosis type.
        :param onset_date: the onset date of the diagnosis.
        :param tekmac: the HMAC of the keys, computed by the Mobile Client.
        :param now: the issue time, defaults to utcnow.
        :return: the signed certificate.
        """
        return self._sign(
            dict(
                reportType=test_type.value,
                symptomOnsetInterval=date_to_onset_interval(onset_date),
                trisk=[],
                tekmac=tekmac,
            ),
            audience=self._certificate_audience,
            lifetime=self._certificate_lifetime,
            now=now or datetime.utcnow(),
        )

    def read_certificate(self, certificate: str) -> Certificate:
        """
        Verify the given certificate and extract its claims.

        :param certificate: the signed certificate.
        :return: the diagnosis data and the HMAC the certificate is bound to.
        :raises: ForbiddenException if the certificate is not valid, or expired.
        """
        claims = self._read(certificate, audience=self._certificate_audience)
        try:
            test_type = TestType(claims.get("reportType", TestType.CONFIRMED.value))
        except ValueError as exc:
            raise ForbiddenException() from exc
        if not isinstance(tekmac := claims.get("tekmac"), str):
            raise ForbiddenException()
        onset_interval = claims.get("symptomOnsetInterval")
        return Certificate(
            test_type=test_type,
            onset_date=(
                onset_interval_to_date(onset_interval) if isinstance(onset_interval, int) else None
            ),
            tekmac=tekmac,
        )
