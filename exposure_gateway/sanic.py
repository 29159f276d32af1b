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

from datetime import timedelta
from typing import Any, Iterable

from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sanic import Blueprint, Sanic
from sanic.request import Request
from sanic.response import HTTPResponse, raw
from sanic_ext import Extend

from exposure_gateway.apis import exposures
from exposure_gateway.core import config
from exposure_gateway.core.exceptions import ApiException
from exposure_gateway.core.managers import Managers, managers
from exposure_gateway.helpers.attestation import (
    AndroidVerifier,
    AttestationService,
    IosVerifier,
    RecaptchaVerifier,
    TestVerifier,
)
from exposure_gateway.helpers.export_cursor import ExportCursor
from exposure_gateway.helpers.exposure_keys import ExposureKeyStore
from exposure_gateway.helpers.ledger import VerificationLedger
from exposure_gateway.helpers.sanic import handle_api_exception
from exposure_gateway.helpers.signed_token import TokenSigner
from exposure_gateway.helpers.upload_token import UploadTokenManager
from exposure_gateway.helpers.verify_proxy import VerifyProxy
from exposure_gateway.models.enums import AttestationMethod, Environment


def build_attestation_service() -> AttestationService:
    """
    Build the attestation service, with one verifier per supported method.

    :return: the attestation service.
    """
    production = config.ENV == Environment.PRODUCTION
    timeout = config.ATTESTATION_REQUEST_TIMEOUT_SECS
    return AttestationService(
        {
            AttestationMethod.TEST: TestVerifier(secret=config.JWT_SECRET, production=production),
            AttestationMethod.ANDROID: AndroidVerifier(
                root_ca=config.SAFETYNET_ROOT_CA,
                package_name=config.DEVICE_CHECK_PACKAGE_NAME,
                package_digest=config.DEVICE_CHECK_PACKAGE_DIGEST,
                certificate_digests=[config.DEVICE_CHECK_CERTIFICATE_DIGEST],
            ),
            AttestationMethod.IOS: IosVerifier(
                key_id=config.DEVICE_CHECK_KEY_ID,
                private_key=config.DEVICE_CHECK_KEY,
                team_id=config.DEVICE_CHECK_TEAM_ID,
                production=production,
                time_difference_threshold=timedelta(
                    minutes=config.DEVICE_CHECK_TIME_DIFF_THRESHOLD_MINS
                ),
                timeout=timeout,
            ),
            AttestationMethod.RECAPTCHA: RecaptchaVerifier(
                secret=config.RECAPTCHA_SECRET, url=config.RECAPTCHA_URL, timeout=timeout
            ),
        }
    )


def setup_context(app: Sanic) -> None:
    """
    Build the service components from the configuration, and store them in the app context.

    :param app: the Sanic app.
    """
    upload_tokens = UploadTokenManager(
        token_lifetime=timedelta(minutes=config.UPLOAD_TOKEN_LIFETIME_MINS)
    )
    app.ctx.jwt_secret = config.JWT_SECRET
    app.ctx.default_region = config.DEFAULT_REGION
    app.ctx.export_files_limit = config.EXPORT_FILES_LIMIT
    app.ctx.app_package_name = config.DEVICE_CHECK_PACKAGE_NAME
    app.ctx.upload_tokens = upload_tokens
    app.ctx.ledger = VerificationLedger(
        code_lifetime=timedelta(minutes=config.CODE_LIFETIME_MINS),
        verify_rate_limit=timedelta(seconds=config.VERIFY_RATE_LIMIT_SECS),
        control_rate_limit=(
            timedelta(seconds=config.CONTROL_RATE_LIMIT_SECS)
            if config.CONTROL_RATE_LIMIT_SECS is not None
            else None
        ),
        upload_tokens=upload_tokens,
    )
    app.ctx.key_store = ExposureKeyStore(max_keys=config.UPLOAD_MAX_KEYS)
    app.ctx.export_cursor = ExportCursor(
        retention=timedelta(days=config.EXPORT_RETENTION_DAYS)
    )
    app.ctx.signer = TokenSigner(
        private_key=config.VERIFY_PRIVATE_KEY,
        public_key=config.VERIFY_PUBLIC_KEY,
        key_id=config.VERIFY_KEY_ID,
        issuer=config.JWT_ISSUER,
        verification_token_lifetime=timedelta(minutes=config.VERIFICATION_TOKEN_LIFETIME_MINS),
        certificate_audience=config.CERTIFICATE_AUDIENCE,
        certificate_lifetime=timedelta(minutes=config.CERTIFICATE_LIFETIME_MINS),
    )
    app.ctx.attestation = build_attestation_service()
    app.ctx.verify_proxy = (
        VerifyProxy(
            url=config.VERIFY_PROXY_URL,
            api_key=config.VERIFY_PROXY_API_KEY,
            timeout=config.VERIFY_PROXY_TIMEOUT_SECS,
        )
        if config.VERIFY_PROXY_URL
        else None
    )


async def metrics(request: Request) -> HTTPResponse:
    """
    Expose the Prometheus metrics.

    :param request: the HTTP request object.
    :return: the metrics, in the Prometheus text format.
    """
    return raw(generate_latest(), content_type=CONTENT_TYPE_LATEST)


def create_app(
    api_title: str, api_description: str, blueprints: Iterable[Blueprint], managers: Managers
) -> Sanic:
    """
    Create the Sanic app, register its blueprints and listeners.

    :param api_title: the title of the OpenAPI documentation.
    :param api_description: the description of the OpenAPI documentation.
    :param blueprints: the blueprints to register.
    :param managers: the managers to initialize and tear down with the server.
    :return: the Sanic app.
    """
    app = Sanic("exposure_gateway")
    Extend(app)
    app.ext.openapi.describe(api_title, version="1.0.0", description=api_description)

    app.blueprint(tuple(blueprints))
    app.add_route(metrics, "/metrics", methods=["GET"])
    app.exception(ApiException)(handle_api_exception)
    setup_context(app)

    @app.listener("before_server_start")
    async def initialize_managers(*args: Any, **kwargs: Any) -> None:
        await managers.initialize()

    @app.listener("after_server_stop")
    async def teardown_managers(*args: Any, **kwargs: Any) -> None:
        await managers.teardown()

    @app.on_response
    async def prevent_caching(request: Request, response: HTTPResponse) -> None:
        response.headers.setdefault("Cache-Control", "no-store")

    return app


sanic_app = create_app(
    api_title="Exposure Gateway",
    api_description="The Exposure Gateway lets the Mobile Client of a user with a positive "
    "diagnosis redeem the verification code given by the lab, in exchange for a single-use "
    "upload capability, and then upload its Temporary Exposure Keys. "
    "Uploads require a device attestation. "
    "Other Mobile Clients use the Exposure Gateway to learn which export file to fetch next.",
    blueprints=(exposures.bp,),
    managers=managers,
)

if __name__ == "__main__":  # pragma: no cover
    sanic_app.run(host=config.API_HOST, port=config.API_PORT)
