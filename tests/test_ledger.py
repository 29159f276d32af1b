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
from hashlib import sha512
from typing import Tuple
from unittest.mock import patch

import pytest

from exposure_gateway.core.exceptions import (
    ForbiddenException,
    GoneException,
    SchemaValidationException,
    TooManyRequestsException,
)
from exposure_gateway.helpers.ledger import (
    VerificationLedger,
    hash_verification_code,
    split_verification_hash,
)
from exposure_gateway.helpers.upload_token import UploadTokenManager
from exposure_gateway.models.enums import TestType
from exposure_gateway.models.registration import Registration
from exposure_gateway.models.upload_token import UploadToken
from exposure_gateway.models.verification import VerificationRecord
from tests.fixtures.core import REGISTRATION_ID

NOW = datetime(2020, 10, 1, 12)
ONSET_DATE = date(2020, 9, 28)
CODE = "12345678"


def create_code(code: str = CODE, created_at: datetime = NOW) -> Tuple[str, str]:
    control_hash, code_hash = hash_verification_code(code)
    VerificationRecord(
        control=control_hash,
        code=code_hash,
        created_at=created_at,
        onset_date=ONSET_DATE,
        test_type=TestType.LIKELY,
        send_count=1,
    ).save()
    return control_hash, code_hash


def test_hash_verification_code() -> None:
    control_hash, code_hash = hash_verification_code(CODE)
    assert control_hash == sha512(b"1234").hexdigest()
    assert code_hash == sha512(CODE.encode("utf-8")).hexdigest()


def test_split_verification_hash() -> None:
    control_hash, code_hash = hash_verification_code(CODE)
    assert split_verification_hash(control_hash + code_hash) == (control_hash, code_hash)


@pytest.mark.parametrize(
    "verification_hash", ["", "a" * 255, "a" * 257, "A" * 256, "g" * 256, "a" * 128],
)
def test_split_verification_hash_malformed(verification_hash: str) -> None:
    with pytest.raises(SchemaValidationException):
        split_verification_hash(verification_hash)


def test_exchange(ledger: VerificationLedger, registration: Registration) -> None:
    control_hash, code_hash = create_code()

    result = ledger.exchange(REGISTRATION_ID, control_hash, code_hash, now=NOW)

    assert result.onset_date == ONSET_DATE
    assert result.test_type == TestType.LIKELY
    token = UploadToken.objects.get(id=result.token)
    assert token.registration_id == REGISTRATION_ID
    assert token.onset_date == ONSET_DATE
    assert token.test_type == TestType.LIKELY
    assert token.exposures_uploaded is None
    assert VerificationRecord.objects.count() == 0


def test_exchange_at_most_once(ledger: VerificationLedger, registration: Registration) -> None:
    control_hash, code_hash = create_code()

    ledger.exchange(REGISTRATION_ID, control_hash, code_hash, now=NOW)
    with pytest.raises(ForbiddenException):
        ledger.exchange(REGISTRATION_ID, control_hash, code_hash, now=NOW + timedelta(seconds=2))

    assert UploadToken.objects.count() == 1


def test_exchange_unknown_code(ledger: VerificationLedger, registration: Registration) -> None:
    create_code()
    control_hash, code_hash = hash_verification_code("12349999")

    with pytest.raises(ForbiddenException):
        ledger.exchange(REGISTRATION_ID, control_hash, code_hash, now=NOW)

    assert VerificationRecord.objects.count() == 1


def test_exchange_rate_limited(ledger: VerificationLedger, registration: Registration) -> None:
    create_code()
    other_control, other_code = create_code("87654321")
    wrong_control, wrong_code = hash_verification_code("00000000")

    with pytest.raises(ForbiddenException):
        ledger.exchange(REGISTRATION_ID, wrong_control, wrong_code, now=NOW)
    with pytest.raises(TooManyRequestsException):
        ledger.exchange(
            REGISTRATION_ID, other_control, other_code, now=NOW + timedelta(milliseconds=500)
        )

    # The rate limited attempt did not burn the code.
    assert VerificationRecord.objects.count() == 2
    ledger.exchange(REGISTRATION_ID, other_control, other_code, now=NOW + timedelta(seconds=1))


def test_exchange_unknown_registration(ledger: VerificationLedger) -> None:
    control_hash, code_hash = create_code()

    with pytest.raises(TooManyRequestsException):
        ledger.exchange("unknown", control_hash, code_hash, now=NOW)

    assert VerificationRecord.objects.count() == 1


def test_exchange_expired(ledger: VerificationLedger, registration: Registration) -> None:
    control_hash, code_hash = create_code(created_at=NOW)

    with pytest.raises(GoneException):
        ledger.exchange(REGISTRATION_ID, control_hash, code_hash, now=NOW + timedelta(minutes=11))

    # The code is burned anyway.
    assert VerificationRecord.objects.count() == 0
    assert UploadToken.objects.count() == 0


def test_exchange_within_lifetime(ledger: VerificationLedger, registration: Registration) -> None:
    control_hash, code_hash = create_code(created_at=NOW)

    result = ledger.exchange(
        REGISTRATION_ID, control_hash, code_hash, now=NOW + timedelta(minutes=10)
    )

    assert UploadToken.objects.get(id=result.token)


def test_exchange_control_rate_limit(
    upload_tokens: UploadTokenManager, registration: Registration
) -> None:
    ledger = VerificationLedger(
        code_lifetime=timedelta(minutes=10),
        verify_rate_limit=timedelta(0),
        control_rate_limit=timedelta(seconds=1),
        upload_tokens=upload_tokens,
    )
    Registration(id="another-registration").save(force_insert=True)
    # Same first half of the code, hence same control.
    control_hash, code_hash = create_code("12340000")
    _, other_code_hash = create_code("12341111")

    ledger.exchange(REGISTRATION_ID, control_hash, code_hash, now=NOW)
    with pytest.raises(TooManyRequestsException):
        ledger.exchange(
            "another-registration",
            control_hash,
            other_code_hash,
            now=NOW + timedelta(milliseconds=500),
        )
    ledger.exchange(
        "another-registration", control_hash, other_code_hash, now=NOW + timedelta(seconds=1)
    )


def test_exchange_token_creation_failure(
    ledger: VerificationLedger, registration: Registration
) -> None:
    control_hash, code_hash = create_code()

    with patch.object(
        UploadTokenManager, "create", side_effect=RuntimeError("database unavailable")
    ):
        with pytest.raises(RuntimeError):
            ledger.exchange(REGISTRATION_ID, control_hash, code_hash, now=NOW)

    assert VerificationRecord.objects.count() == 0
