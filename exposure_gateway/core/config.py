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
from typing import Optional

from decouple import config

from exposure_gateway.helpers.config import optional_int, validate_crontab
from exposure_gateway.models.enums import Environment

_LOGGER = logging.getLogger(__name__)

ENV: Environment = config("ENV", cast=Environment, default=Environment.DEVELOPMENT.value)

API_HOST: str = config("API_HOST", default="0.0.0.0")
API_PORT: int = config("API_PORT", cast=int, default=5000)

MONGO_URL: str = config("MONGO_URL", default="mongodb://localhost:27017/exposure-gateway-dev")

CELERY_BROKER_REDIS_URL: str = config("CELERY_BROKER_REDIS_URL", default="redis://localhost:6379/0")
CELERY_ALWAYS_EAGER: bool = config(
    "CELERY_ALWAYS_EAGER", cast=bool, default=ENV == Environment.TESTING
)

# Secret used to sign the access tokens issued at registration time.
JWT_SECRET: str = config("JWT_SECRET", default="")
JWT_ISSUER: str = config("JWT_ISSUER", default="exposure-gateway")

CODE_LIFETIME_MINS: int = config("CODE_LIFETIME_MINS", cast=int, default=10)
UPLOAD_TOKEN_LIFETIME_MINS: int = config("UPLOAD_TOKEN_LIFETIME_MINS", cast=int, default=1440)
VERIFY_RATE_LIMIT_SECS: int = config("VERIFY_RATE_LIMIT_SECS", cast=int, default=1)
# Unset disables the rate limit applied to codes sharing the same control prefix.
CONTROL_RATE_LIMIT_SECS: Optional[int] = config(
    "CONTROL_RATE_LIMIT_SECS", cast=optional_int, default=""
)

# 14 days of TEKs plus the current day one, with some slack for failed uploads.
UPLOAD_MAX_KEYS: int = config("UPLOAD_MAX_KEYS", cast=int, default=30)
DEFAULT_REGION: str = config("DEFAULT_REGION", default="IE")

EXPORT_RETENTION_DAYS: int = config("EXPORT_RETENTION_DAYS", cast=int, default=14)
EXPORT_FILES_LIMIT: int = config("EXPORT_FILES_LIMIT", cast=int, default=6)

VERIFY_PRIVATE_KEY: str = config("VERIFY_PRIVATE_KEY", default="")
VERIFY_PUBLIC_KEY: str = config("VERIFY_PUBLIC_KEY", default="")
VERIFY_KEY_ID: str = config("VERIFY_KEY_ID", default="1")
VERIFICATION_TOKEN_LIFETIME_MINS: int = config(
    "VERIFICATION_TOKEN_LIFETIME_MINS", cast=int, default=1440
)
CERTIFICATE_AUDIENCE: str = config(
    "CERTIFICATE_AUDIENCE", default="exposure-gateway-certificates"
)
CERTIFICATE_LIFETIME_MINS: int = config("CERTIFICATE_LIFETIME_MINS", cast=int, default=15)

# When set, code exchanges and certificates are delegated to an external verification service.
VERIFY_PROXY_URL: str = config("VERIFY_PROXY_URL", default="")
VERIFY_PROXY_API_KEY: str = config("VERIFY_PROXY_API_KEY", default="")
VERIFY_PROXY_TIMEOUT_SECS: float = config("VERIFY_PROXY_TIMEOUT_SECS", cast=float, default=5.0)

DEVICE_CHECK_KEY_ID: str = config("DEVICE_CHECK_KEY_ID", default="")
DEVICE_CHECK_KEY: str = config("DEVICE_CHECK_KEY", default="")
DEVICE_CHECK_TEAM_ID: str = config("DEVICE_CHECK_TEAM_ID", default="")
DEVICE_CHECK_PACKAGE_NAME: str = config("DEVICE_CHECK_PACKAGE_NAME", default="")
DEVICE_CHECK_PACKAGE_DIGEST: str = config("DEVICE_CHECK_PACKAGE_DIGEST", default="")
DEVICE_CHECK_CERTIFICATE_DIGEST: str = config("DEVICE_CHECK_CERTIFICATE_DIGEST", default="")
DEVICE_CHECK_TIME_DIFF_THRESHOLD_MINS: int = config(
    "DEVICE_CHECK_TIME_DIFF_THRESHOLD_MINS", cast=int, default=10
)
SAFETYNET_ROOT_CA: str = config("SAFETYNET_ROOT_CA", default="")

RECAPTCHA_SECRET: str = config("RECAPTCHA_SECRET", default="")
RECAPTCHA_URL: str = config(
    "RECAPTCHA_URL", default="https://www.google.com/recaptcha/api/siteverify"
)

ATTESTATION_REQUEST_TIMEOUT_SECS: float = config(
    "ATTESTATION_REQUEST_TIMEOUT_SECS", cast=float, default=5.0
)

DELETE_OLD_DATA_CRONTAB: str = config(
    "DELETE_OLD_DATA_CRONTAB", cast=validate_crontab("DELETE_OLD_DATA_CRONTAB"), default="0 0 * * *"
)

MAX_PADDING_SIZE: int = config("MAX_PADDING_SIZE", cast=int, default=150_000)
