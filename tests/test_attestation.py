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

import json
from datetime import datetime, timedelta

import pytest
import requests
import responses
from prometheus_client import REGISTRY

from exposure_gateway.core.exceptions import (
    AttestationFailedException,
    UpstreamUnavailableException,
)
from exposure_gateway.helpers.attestation import (
    AndroidVerifier,
    AttestationService,
    IosVerifier,
    RecaptchaVerifier,
    TestVerifier,
    fingerprint,
)
from exposure_gateway.models.enums import AttestationError, AttestationMethod
from exposure_gateway.models.registration import Registration
from exposure_gateway.monitoring.core import UNKNOWN_LABEL, attestation_method_label
from tests.fixtures.attestation import (
    DEVICE_CHECK_URL,
    RECAPTCHA_URL,
    SafetyNetChain,
    generate_ec_key_pair,
    generate_safetynet_chain,
)
from tests.fixtures.core import JWT_SECRET, access_token

NONCE = "3f1bd0a5c1d04e2f9bd8a6a1c07e5a3d"
PACKAGE_NAME = "com.example.exposures"


@pytest.fixture(scope="module")
def safetynet_chain() -> SafetyNetChain:
    return generate_safetynet_chain()


@pytest.fixture
def android_verifier(safetynet_chain: SafetyNetChain) -> AndroidVerifier:
    return AndroidVerifier(root_ca=safetynet_chain.root_ca, package_name=PACKAGE_NAME)


@pytest.fixture
def ios_verifier() -> IosVerifier:
    private_key, _ = generate_ec_key_pair()
    return IosVerifier(
        key_id="ABCDEF1234",
        private_key=private_key,
        team_id="TEAM123456",
        production=False,
        time_difference_threshold=timedelta(minutes=10),
        timeout=1.0,
    )


@pytest.fixture
def recaptcha_verifier() -> RecaptchaVerifier:
    return RecaptchaVerifier(secret="recaptcha-secret", url=RECAPTCHA_URL, timeout=1.0)


def test_fingerprint() -> None:
    assert len(fingerprint("payload")) == 16
    assert fingerprint("payload") == fingerprint("payload")
    assert fingerprint("payload") != fingerprint("other payload")
    assert fingerprint(None) == fingerprint("")


def test_test_verifier(registration: Registration) -> None:
    verifier = TestVerifier(secret=JWT_SECRET, production=False)

    outcome = verifier.verify(access_token(), NONCE)

    assert outcome.ok
    assert outcome.claims["id"] == registration.id


@pytest.mark.parametrize(
    "payload, error",
    [
        ("not a jwt", AttestationError.INVALID_PAYLOAD),
        (access_token(registration_id="unknown"), AttestationError.REJECTED),
    ],
)
def test_test_verifier_rejects(
    registration: Registration, payload: str, error: AttestationError
) -> None:
    outcome = TestVerifier(secret=JWT_SECRET, production=False).verify(payload, NONCE)

    assert not outcome.ok
    assert outcome.error == error


def test_test_verifier_disabled_in_production(registration: Registration) -> None:
    outcome = TestVerifier(secret=JWT_SECRET, production=True).verify(access_token(), NONCE)

    assert outcome.error == AttestationError.UNSUPPORTED_METHOD


def test_android_verifier(
    android_verifier: AndroidVerifier, safetynet_chain: SafetyNetChain
) -> None:
    payload = safetynet_chain.sign(nonce=NONCE, apkPackageName=PACKAGE_NAME)

    outcome = android_verifier.verify(payload, NONCE)

    assert outcome.ok
    assert outcome.claims["apkPackageName"] == PACKAGE_NAME


@pytest.mark.parametrize(
    "claims, error",
    [
        (dict(nonce="another-nonce", apkPackageName=PACKAGE_NAME), AttestationError.NONCE_MISMATCH),
        (dict(nonce=NONCE, apkPackageName="com.example.other"), AttestationError.POLICY_MISMATCH),
    ],
)
def test_android_verifier_rejects_claims(
    android_verifier: AndroidVerifier,
    safetynet_chain: SafetyNetChain,
    claims: dict,
    error: AttestationError,
) -> None:
    outcome = android_verifier.verify(safetynet_chain.sign(**claims), NONCE)

    assert outcome.error == error


def test_android_verifier_rejects_foreign_chain(android_verifier: AndroidVerifier) -> None:
    payload = generate_safetynet_chain().sign(nonce=NONCE, apkPackageName=PACKAGE_NAME)

    assert android_verifier.verify(payload, NONCE).error == AttestationError.INVALID_PAYLOAD


def test_android_verifier_rejects_wrong_common_name() -> None:
    chain = generate_safetynet_chain(common_name="attest.example.com")
    verifier = AndroidVerifier(root_ca=chain.root_ca)

    outcome = verifier.verify(chain.sign(nonce=NONCE), NONCE)

    assert outcome.error == AttestationError.INVALID_PAYLOAD


def test_android_verifier_rejects_garbage(android_verifier: AndroidVerifier) -> None:
    assert android_verifier.verify("garbage", NONCE).error == AttestationError.INVALID_PAYLOAD


def test_ios_verifier(ios_verifier: IosVerifier) -> None:
    with responses.RequestsMock() as mock_requests:
        mock_requests.add(responses.POST, DEVICE_CHECK_URL, status=200)

        outcome = ios_verifier.verify("device\ntoken", NONCE)

        assert outcome.ok
        body = json.loads(mock_requests.calls[0].request.body)
        assert body["device_token"] == "devicetoken"
        assert mock_requests.calls[0].request.headers["Authorization"].startswith("Bearer ")


def test_ios_verifier_forgives_bad_request_within_threshold(ios_verifier: IosVerifier) -> None:
    with responses.RequestsMock() as mock_requests:
        mock_requests.add(responses.POST, DEVICE_CHECK_URL, status=400)

        outcome = ios_verifier.verify("token", NONCE, datetime.utcnow() - timedelta(minutes=2))

    assert outcome.ok


def test_ios_verifier_rejects_bad_request_with_clock_skew(ios_verifier: IosVerifier) -> None:
    with responses.RequestsMock() as mock_requests:
        mock_requests.add(responses.POST, DEVICE_CHECK_URL, status=400)

        outcome = ios_verifier.verify("token", NONCE, datetime.utcnow() - timedelta(minutes=30))

    assert outcome.error == AttestationError.INVALID_TIMESTAMP


@pytest.mark.parametrize(
    "status, error",
    [(401, AttestationError.REJECTED), (503, AttestationError.UPSTREAM_UNAVAILABLE)],
)
def test_ios_verifier_failures(
    ios_verifier: IosVerifier, status: int, error: AttestationError
) -> None:
    with responses.RequestsMock() as mock_requests:
        mock_requests.add(responses.POST, DEVICE_CHECK_URL, status=status)

        assert ios_verifier.verify("token", NONCE).error == error


def test_ios_verifier_unreachable(ios_verifier: IosVerifier) -> None:
    with responses.RequestsMock() as mock_requests:
        mock_requests.add(
            responses.POST, DEVICE_CHECK_URL, body=requests.exceptions.ConnectionError()
        )

        outcome = ios_verifier.verify("token", NONCE)

    assert outcome.error == AttestationError.UPSTREAM_UNAVAILABLE


def test_recaptcha_verifier(recaptcha_verifier: RecaptchaVerifier) -> None:
    with responses.RequestsMock() as mock_requests:
        mock_requests.add(responses.POST, RECAPTCHA_URL, json=dict(success=True), status=200)

        outcome = recaptcha_verifier.verify("captcha-response", NONCE)

        assert outcome.ok
        assert "response=captcha-response" in mock_requests.calls[0].request.body


@pytest.mark.parametrize(
    "status, body, error",
    [
        (200, dict(success=False), AttestationError.REJECTED),
        (200, dict(), AttestationError.REJECTED),
        (500, dict(), AttestationError.UPSTREAM_UNAVAILABLE),
    ],
)
def test_recaptcha_verifier_failures(
    recaptcha_verifier: RecaptchaVerifier, status: int, body: dict, error: AttestationError
) -> None:
    with responses.RequestsMock() as mock_requests:
        mock_requests.add(responses.POST, RECAPTCHA_URL, json=body, status=status)

        assert recaptcha_verifier.verify("captcha-response", NONCE).error == error


async def test_service_dispatches_to_verifier(registration: Registration) -> None:
    service = AttestationService(
        {AttestationMethod.TEST: TestVerifier(secret=JWT_SECRET, production=False)}
    )

    claims = await service.verify("test", access_token(), NONCE)

    assert claims["id"] == registration.id


@pytest.mark.parametrize(
    "method, payload",
    [("android", "payload"), ("unknown", "payload"), (None, "payload"), ("test", None)],
)
async def test_service_unsupported_method(
    registration: Registration, method: str, payload: str
) -> None:
    service = AttestationService(
        {AttestationMethod.TEST: TestVerifier(secret=JWT_SECRET, production=False)}
    )

    with pytest.raises(AttestationFailedException):
        await service.verify(method, payload, NONCE)


async def test_service_failures_have_bounded_method_labels(registration: Registration) -> None:
    service = AttestationService(
        {AttestationMethod.TEST: TestVerifier(secret=JWT_SECRET, production=False)}
    )

    for i in range(5):
        with pytest.raises(AttestationFailedException):
            await service.verify(f"method-{i}", "payload", NONCE)

    assert (
        REGISTRY.get_sample_value(
            "exposure_gateway_api_attestation_failures_total",
            dict(method=UNKNOWN_LABEL, reason=AttestationError.UNSUPPORTED_METHOD.value),
        )
        >= 5
    )
    assert REGISTRY.get_sample_value(
        "exposure_gateway_api_attestation_failures_total",
        dict(method="method-0", reason=AttestationError.UNSUPPORTED_METHOD.value),
    ) is None


def test_attestation_method_label() -> None:
    assert attestation_method_label("android") == AttestationMethod.ANDROID.value
    assert attestation_method_label("windows") == UNKNOWN_LABEL
    assert attestation_method_label(None) == UNKNOWN_LABEL


async def test_service_upstream_unavailable(recaptcha_verifier: RecaptchaVerifier) -> None:
    service = AttestationService({AttestationMethod.RECAPTCHA: recaptcha_verifier})

    with responses.RequestsMock() as mock_requests:
        mock_requests.add(responses.POST, RECAPTCHA_URL, status=502)

        with pytest.raises(UpstreamUnavailableException):
            await service.verify("recaptcha", "captcha-response", NONCE)


async def test_service_android_policy_mismatch(
    android_verifier: AndroidVerifier, safetynet_chain: SafetyNetChain
) -> None:
    service = AttestationService({AttestationMethod.ANDROID: android_verifier})
    payload = safetynet_chain.sign(nonce=NONCE, apkPackageName="com.example.other")

    with pytest.raises(AttestationFailedException):
        await service.verify("android", payload, NONCE)
