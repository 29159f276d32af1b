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

from datetime import date, datetime, timedelta

import pytest
from jose import jwt

from exposure_gateway.core.exceptions import ForbiddenException
from exposure_gateway.helpers.rolling_start_number import date_to_onset_interval
from exposure_gateway.helpers.signed_token import Certificate, TokenSigner
from exposure_gateway.models.enums import TestType
from tests.fixtures.core import JWT_ISSUER

ONSET_DATE = date(2020, 9, 28)
TOKEN_ID = "6c3a6f5e-5f1e-4b8e-8a55-3d7b9c1d2e4f"
TEKMAC = "wTD4kpHzQS7d3jJpXCfTbsoqTpgfR5kg2e7hLXB2Fv8="


def test_verification_token(signer: TokenSigner, signing_keys: dict) -> None:
    token = signer.sign_verification_token(TOKEN_ID, TestType.CONFIRMED, ONSET_DATE)

    assert jwt.get_unverified_header(token)["kid"] == "1"
    claims = jwt.decode(
        token,
        signing_keys["public_key"],
        algorithms=["ES256"],
        audience=JWT_ISSUER,
        issuer=JWT_ISSUER,
    )
    assert claims["jti"] == TOKEN_ID
    assert claims["sub"] == "confirmed.2020-09-28"
    assert signer.read_verification_token(token) == TOKEN_ID


def test_verification_token_expired(signer: TokenSigner) -> None:
    token = signer.sign_verification_token(
        TOKEN_ID, TestType.CONFIRMED, ONSET_DATE, now=datetime.utcnow() - timedelta(days=2)
    )

    with pytest.raises(ForbiddenException):
        signer.read_verification_token(token)


def test_verification_token_is_not_a_certificate(signer: TokenSigner) -> None:
    token = signer.sign_verification_token(TOKEN_ID, TestType.CONFIRMED, ONSET_DATE)

    with pytest.raises(ForbiddenException):
        signer.read_certificate(token)


def test_read_tampered_token(signer: TokenSigner) -> None:
    token = signer.sign_verification_token(TOKEN_ID, TestType.CONFIRMED, ONSET_DATE)
    header, payload, signature = token.split(".")

    with pytest.raises(ForbiddenException):
        signer.read_verification_token(f"{header}.{payload}.{signature[::-1]}")
    with pytest.raises(ForbiddenException):
        signer.read_verification_token("garbage")


def test_certificate(signer: TokenSigner, signing_keys: dict) -> None:
    certificate = signer.sign_certificate(TestType.LIKELY, ONSET_DATE, TEKMAC)

    claims = jwt.decode(
        certificate,
        signing_keys["public_key"],
        algorithms=["ES256"],
        audience="test-audience",
        issuer=JWT_ISSUER,
    )
    assert claims["reportType"] == "likely"
    assert claims["symptomOnsetInterval"] == date_to_onset_interval(ONSET_DATE)
    assert claims["trisk"] == []
    assert claims["tekmac"] == TEKMAC
    assert signer.read_certificate(certificate) == Certificate(
        test_type=TestType.LIKELY, onset_date=ONSET_DATE, tekmac=TEKMAC
    )


def test_certificate_expired(signer: TokenSigner) -> None:
    certificate = signer.sign_certificate(
        TestType.CONFIRMED, ONSET_DATE, TEKMAC, now=datetime.utcnow() - timedelta(minutes=16)
    )

    with pytest.raises(ForbiddenException):
        signer.read_certificate(certificate)
