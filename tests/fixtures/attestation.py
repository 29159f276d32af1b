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
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Optional, Tuple

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.x509.oid import NameOID
from jose import jws

DEVICE_CHECK_URL = "https://api.development.devicecheck.apple.com/v1/validate_device_token"
RECAPTCHA_URL = "https://recaptcha.test/siteverify"


def _private_pem(key: Any) -> str:
    return key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    ).decode("utf-8")


def generate_ec_key_pair() -> Tuple[str, str]:
    """
    Generate a P-256 key pair, as used for ES256 signatures.

    :return: the PEM encoded private and public keys.
    """
    key = ec.generate_private_key(ec.SECP256R1())
    public_pem = key.public_key().public_bytes(
        serialization.Encoding.PEM, serialization.PublicFormat.SubjectPublicKeyInfo
    )
    return _private_pem(key), public_pem.decode("utf-8")


def _certificate(
    common_name: str,
    public_key: Any,
    issuer_name: Optional[x509.Name],
    issuer_key: Any,
) -> x509.Certificate:
    subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    now = datetime.utcnow()
    return (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer_name or subject)
        .public_key(public_key)
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=30))
        .sign(issuer_key, hashes.SHA256())
    )


@dataclass(frozen=True)
class SafetyNetChain:
    root_ca: str
    leaf_key: str
    x5c: Tuple[str, ...]

    def sign(self, **claims: Any) -> str:
        return jws.sign(claims, self.leaf_key, headers=dict(x5c=list(self.x5c)), algorithm="RS256")


def generate_safetynet_chain(common_name: str = "attest.android.com") -> SafetyNetChain:
    """
    Generate a root CA, an intermediate and a leaf certificate, mimicking the SafetyNet ones.

    :param common_name: the common name of the leaf certificate.
    :return: the chain, with the PEM encoded root and the leaf private key.
    """
    root_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    intermediate_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    leaf_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)

    root = _certificate("Test Root CA", root_key.public_key(), None, root_key)
    intermediate = _certificate(
        "Test Intermediate CA", intermediate_key.public_key(), root.subject, root_key
    )
    leaf = _certificate(common_name, leaf_key.public_key(), intermediate.subject, intermediate_key)

    return SafetyNetChain(
        root_ca=root.public_bytes(serialization.Encoding.PEM).decode("utf-8"),
        leaf_key=_private_pem(leaf_key),
        x5c=tuple(
            base64.b64encode(cert.public_bytes(serialization.Encoding.DER)).decode("utf-8")
            for cert in (leaf, intermediate)
        ),
    )
