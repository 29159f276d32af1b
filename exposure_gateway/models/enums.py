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

from enum import Enum


class Environment(Enum):
    """
    Enumeration of the environments the service can run in.
    """

    DEVELOPMENT = "development"
    TESTING = "testing"
    STAGING = "staging"
    PRODUCTION = "production"


class TestType(Enum):
    """
    Enumeration of the diagnosis types a verification code can be issued for.
    """

    __test__ = False

    CONFIRMED = "confirmed"
    LIKELY = "likely"
    NEGATIVE = "negative"


class UploadSurface(Enum):
    """
    Enumeration of the upload surfaces an upload token can authorize.
    Each surface is consumed independently, and only once.
    """

    EXPOSURES = "exposures_uploaded"
    VENUES = "venues_uploaded"


class AttestationMethod(Enum):
    """
    Enumeration of the supported device attestation methods.
    """

    TEST = "test"
    ANDROID = "android"
    IOS = "ios"
    RECAPTCHA = "recaptcha"


class AttestationError(Enum):
    """
    Enumeration of the reasons an attestation may fail.
    """

    UNSUPPORTED_METHOD = "unsupported_method"
    INVALID_PAYLOAD = "invalid_payload"
    NONCE_MISMATCH = "nonce_mismatch"
    POLICY_MISMATCH = "policy_mismatch"
    INVALID_TIMESTAMP = "invalid_timestamp"
    REJECTED = "rejected"
    UPSTREAM_UNAVAILABLE = "upstream_unavailable"


class Location(Enum):
    """
    Enumeration of the request locations the API arguments are read from.
    """

    JSON = "json"
    QUERY = "query"
