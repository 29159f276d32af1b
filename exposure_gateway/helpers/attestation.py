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

"""
Device attestation.

Each supported method has one verifier, registered in a closed mapping keyed by
AttestationMethod. Verifiers return an AttestationOutcome; the AttestationService turns failed
outcomes into the uniform client-visible errors.
"""

from __future__ import annotations

import asyncio
import base64
import json
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from functools import partial
from hashlib import sha256
from typing import Any, Dict, List, Mapping, Optional
from uuid import uuid4

import requests
from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.x509.oid import NameOID
from jose import JOSEError, jws, jwt

from exposure_gateway.core.exceptions import (
    AttestationFailedException,
    UpstreamUnavailableException,
)
from exposure_gateway.models.enums import AttestationError, AttestationMethod
from exposure_gateway.models.registration import Registration
from exposure_gateway.monitoring.api import ATTESTATION_FAILURES
from exposure_gateway.monitoring.core import attestation_method_label

_LOGGER = logging.getLogger(__name__)

SAFETYNET_COMMON_NAME = "attest.android.com"
DEVICE_CHECK_HOST = "api.devicecheck.apple.com"
DEVICE_CHECK_DEVELOPMENT_HOST = "api.development.devicecheck.apple.com"


@dataclass(frozen=True)
class AttestationOutcome:
    ok: bool
    error: Optional[AttestationError] = None
    claims: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def success(cls, claims: Optional[Dict[str, Any]] = None) -> AttestationOutcome:
        return cls(ok=True, claims=claims or {})

    @classmethod
    def failure(cls, error: AttestationError) -> AttestationOutcome:
        return cls(ok=False, error=error)


def fingerprint(payload: Optional[str]) -> str:
    """
    Return a short, non-reversible fingerprint of the given payload, safe to be logged.

    :param payload: the payload to fingerprint.
    :return: the first 16 hex characters of the payload sha256.
    """
    return sha256((payload or "").encode("utf-8")).hexdigest()[:16]


class AttestationVerifier(ABC):
    """
    Base class of the attestation verifiers.
    """

    method: AttestationMethod

    @abstractmethod
    def verify(
        self, payload: str, nonce: str, timestamp: Optional[datetime] = None
    ) -> AttestationOutcome:
        """
        Verify the given attestation payload.

        :param payload: the attestation payload sent by the Mobile Client.
        :param nonce: the nonce the attestation is expected to be bound to.
        :param timestamp: the client clock at the time of the request, if sent.
        :return: the outcome of the verification.
        """


class TestVerifier(AttestationVerifier):
    """
    Accept a token signed with the service secret, referencing an existing registration.
    Only available outside of production.
    """

    __test__ = False
    method = AttestationMethod.TEST

    def __init__(self, secret: str, production: bool) -> None:
        self._secret = secret
        self._production = production

    def verify(
        self, payload: str, nonce: str, timestamp: Optional[datetime] = None
    ) -> AttestationOutcome:
        if self._production:
            return AttestationOutcome.failure(AttestationError.UNSUPPORTED_METHOD)
        try:
            claims = jwt.decode(payload, self._secret, algorithms=["HS256"])
        except JOSEError:
            return AttestationOutcome.failure(AttestationError.INVALID_PAYLOAD)
        if not Registration.exists(str(claims.get("id"))):
            return AttestationOutcome.failure(AttestationError.REJECTED)
        return AttestationOutcome.success(claims)


class AndroidVerifier(AttestationVerifier):
    """
    Verify a SafetyNet attestation statement.
    The statement is a JWS whose certificate chain must lead to the configured root CA.
    """

    method = AttestationMethod.ANDROID

    def __init__(
        self,
        root_ca: str,
        package_name: str = "",
        package_digest: str = "",
        certificate_digests: Optional[List[str]] = None,
    ) -> None:
        """
        :param root_ca: the PEM encoded root certificate of the attestation chain.
        :param package_name: the expected apkPackageName, skipped if empty.
        :param package_digest: the expected apkDigestSha256, skipped if empty.
        :param certificate_digests: the expected apkCertificateDigestSha256, skipped if empty.
        """
        self._root_ca = x509.load_pem_x509_certificate(root_ca.encode("utf-8")) if root_ca else None
        self._package_name = package_name
        self._package_digest = package_digest
        self._certificate_digests = [digest for digest in certificate_digests or [] if digest]

    def verify(
        self, payload: str, nonce: str, timestamp: Optional[datetime] = None
    ) -> AttestationOutcome:
        if self._root_ca is None:
            _LOGGER.error("SafetyNet root CA is not configured.")
            return AttestationOutcome.failure(AttestationError.UNSUPPORTED_METHOD)
        try:
            chain = [
                x509.load_der_x509_certificate(base64.b64decode(cert))
                for cert in jws.get_unverified_header(payload)["x5c"]
            ]
            self._verify_chain(chain)
            leaf_key = chain[0].public_key().public_bytes(
                serialization.Encoding.PEM, serialization.PublicFormat.SubjectPublicKeyInfo
            )
            claims = json.loads(jws.verify(payload, leaf_key, algorithms=["RS256", "ES256"]))
        except (JOSEError, InvalidSignature, KeyError, IndexError, TypeError, ValueError):
            return AttestationOutcome.failure(AttestationError.INVALID_PAYLOAD)

        if chain[0].subject.get_attributes_for_oid(NameOID.COMMON_NAME)[0].value != (
            SAFETYNET_COMMON_NAME
        ):
            return AttestationOutcome.failure(AttestationError.INVALID_PAYLOAD)
        if claims.get("nonce") != nonce:
            return AttestationOutcome.failure(AttestationError.NONCE_MISMATCH)
        if self._package_name and claims.get("apkPackageName") != self._package_name:
            return AttestationOutcome.failure(AttestationError.POLICY_MISMATCH)
        if self._package_digest and claims.get("apkDigestSha256") != self._package_digest:
            return AttestationOutcome.failure(AttestationError.POLICY_MISMATCH)
        if (
            self._certificate_digests
            and claims.get("apkCertificateDigestSha256") != self._certificate_digests
        ):
            return AttestationOutcome.failure(AttestationError.POLICY_MISMATCH)
        return AttestationOutcome.success(claims)

    def _verify_chain(self, chain: List[x509.Certificate]) -> None:
        """
        Verify that each certificate is issued by the next one, and the last one by the root.

        :param chain: the certificate chain, leaf first.
        :raises: InvalidSignature, TypeError or ValueError if the chain is not valid.
        """
        if not chain:
            raise ValueError("Empty certificate chain.")
        for certificate, issuer in zip(chain, chain[1:]):
            certificate.verify_directly_issued_by(issuer)
        if chain[-1] != self._root_ca:
            chain[-1].verify_directly_issued_by(self._root_ca)


class IosVerifier(AttestationVerifier):
    """
    Verify a DeviceCheck token with Apple's validation service.
    """

    method = AttestationMethod.IOS

    def __init__(  # pylint: disable=too-many-arguments
        self,
        key_id: str,
        private_key: str,
        team_id: str,
        production: bool,
        time_difference_threshold: timedelta,
        timeout: float,
    ) -> None:
        self._key_id = key_id
        self._private_key = private_key
        self._team_id = team_id
        self._host = DEVICE_CHECK_HOST if production else DEVICE_CHECK_DEVELOPMENT_HOST
        self._time_difference_threshold = time_difference_threshold
        self._timeout = timeout

    def verify(
        self, payload: str, nonce: str, timestamp: Optional[datetime] = None
    ) -> AttestationOutcome:
        token = jwt.encode(
            dict(iss=self._team_id, iat=int(time.time())),
            self._private_key,
            algorithm="ES256",
            headers=dict(kid=self._key_id),
        )
        server_time = datetime.utcnow()
        body = dict(
            device_token=payload.replace("\r", "").replace("\n", ""),
            transaction_id=str(uuid4()),
            timestamp=int(time.time() * 1000),
        )

        try:
            response = requests.post(
                f"https://{self._host}/v1/validate_device_token",
                json=body,
                headers={"Authorization": f"Bearer {token}"},
                timeout=self._timeout,
            )
        except requests.exceptions.RequestException as exc:
            _LOGGER.error("DeviceCheck service unreachable.", extra=dict(error=str(exc)))
            return AttestationOutcome.failure(AttestationError.UPSTREAM_UNAVAILABLE)

        if response.status_code == 400 and response.reason == "Bad Request":
            # Clock drift between the device and the service is forgiven within the threshold.
            skew = abs(server_time - (timestamp or server_time))
            if skew > self._time_difference_threshold:
                return AttestationOutcome.failure(AttestationError.INVALID_TIMESTAMP)
            _LOGGER.warning(
                "DeviceCheck rejected the token, forgiven within the clock skew threshold.",
                extra=dict(skew_seconds=skew.total_seconds()),
            )
            return AttestationOutcome.success()

        if response.status_code >= 500:
            _LOGGER.error(
                "DeviceCheck service unavailable.", extra=dict(status_code=response.status_code)
            )
            return AttestationOutcome.failure(AttestationError.UPSTREAM_UNAVAILABLE)
        if response.status_code != 200:
            return AttestationOutcome.failure(AttestationError.REJECTED)
        return AttestationOutcome.success()


class RecaptchaVerifier(AttestationVerifier):
    """
    Verify a reCAPTCHA response with the challenge verification service.
    """

    method = AttestationMethod.RECAPTCHA

    def __init__(self, secret: str, url: str, timeout: float) -> None:
        self._secret = secret
        self._url = url
        self._timeout = timeout

    def verify(
        self, payload: str, nonce: str, timestamp: Optional[datetime] = None
    ) -> AttestationOutcome:
        try:
            response = requests.post(
                self._url, data=dict(secret=self._secret, response=payload), timeout=self._timeout
            )
            response.raise_for_status()
            json_response = response.json()
        except requests.exceptions.RequestException as exc:
            _LOGGER.error("reCAPTCHA service unavailable.", extra=dict(error=str(exc)))
            return AttestationOutcome.failure(AttestationError.UPSTREAM_UNAVAILABLE)
        except ValueError:
            return AttestationOutcome.failure(AttestationError.REJECTED)

        if json_response.get("success") is not True:
            return AttestationOutcome.failure(AttestationError.REJECTED)
        return AttestationOutcome.success(json_response)


class AttestationService:
    """
    Dispatch the attestation payloads to the verifier of their method.
    """

    def __init__(self, verifiers: Mapping[AttestationMethod, AttestationVerifier]) -> None:
        self._verifiers = dict(verifiers)

    async def verify(
        self,
        method: Optional[str],
        payload: Optional[str],
        nonce: str,
        timestamp: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Verify the given attestation, off the event loop.

        :param method: the attestation method declared by the Mobile Client.
        :param payload: the attestation payload.
        :param nonce: the nonce the attestation is expected to be bound to.
        :param timestamp: the client clock at the time of the request, if sent.
        :return: the claims of the attestation, if any.
        :raises: UpstreamUnavailableException if the verification service is unreachable.
        :raises: AttestationFailedException on any other failure.
        """
        outcome = await self._check(method, payload, nonce, timestamp)
        if outcome.ok:
            return outcome.claims

        _LOGGER.warning(
            "Attestation rejected.",
            extra=dict(
                method=method,
                reason=outcome.error.value if outcome.error else None,
                payload_fingerprint=fingerprint(payload),
            ),
        )
        ATTESTATION_FAILURES.labels(
            attestation_method_label(method), outcome.error.value if outcome.error else ""
        ).inc()
        if outcome.error == AttestationError.UPSTREAM_UNAVAILABLE:
            raise UpstreamUnavailableException()
        raise AttestationFailedException()

    async def _check(
        self,
        method: Optional[str],
        payload: Optional[str],
        nonce: str,
        timestamp: Optional[datetime],
    ) -> AttestationOutcome:
        try:
            verifier = self._verifiers.get(AttestationMethod(method))
        except ValueError:
            verifier = None
        if verifier is None or not payload:
            return AttestationOutcome.failure(AttestationError.UNSUPPORTED_METHOD)

        return await asyncio.get_running_loop().run_in_executor(
            None, partial(verifier.verify, payload, nonce, timestamp)
        )
