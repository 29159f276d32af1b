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
import binascii
import logging
from datetime import date, datetime
from http import HTTPStatus
from typing import List, Optional

from marshmallow import fields
from marshmallow.validate import Length, Range
from sanic import Blueprint
from sanic.request import Request
from sanic.response import HTTPResponse, json
from sanic_ext import openapi

from exposure_gateway.core import config
from exposure_gateway.core.exceptions import ForbiddenException, SchemaValidationException
from exposure_gateway.helpers.auth import authenticate
from exposure_gateway.helpers.exposure_keys import KeyBinding
from exposure_gateway.helpers.ledger import hash_verification_code, split_verification_hash
from exposure_gateway.helpers.sanic import (
    CHAFF_HEADER,
    generate_padding,
    handle_chaff_requests,
    handle_store_errors,
    validate,
)
from exposure_gateway.helpers.verify_proxy import CERTIFICATE_PATH, VERIFY_PATH
from exposure_gateway.models.enums import Location, TestType, UploadSurface
from exposure_gateway.models.exposure_key import ExposureKey
from exposure_gateway.models.schemas import ExposureKeySchema, region_field
from exposure_gateway.models.swagger import (
    CertificateRequest,
    CertificateResponse,
    ErrorResponse,
    ExportFileResponse,
    Publish,
    PublishResponse,
    UploadTokenResponse,
    VerificationTokenResponse,
    VerifyCode,
    VerifyHash,
)
from exposure_gateway.monitoring.api import EXPORT_FILES_REQUESTS, KEYS_INSERTED
from exposure_gateway.monitoring.helpers import monitor_upload

_LOGGER = logging.getLogger(__name__)

bp = Blueprint("exposures")

_HMAC_KEY_LENGTH = 44

_UPLOAD_FIELDS = dict(
    temporary_exposure_keys=fields.Nested(
        ExposureKeySchema, many=True, load_default=None, data_key="temporaryExposureKeys"
    ),
    exposures=fields.Nested(ExposureKeySchema, many=True, load_default=None),
    regions=fields.List(region_field(), load_default=None),
    platform=fields.String(load_default=None),
    device_verification_payload=fields.String(
        required=True, data_key="deviceVerificationPayload"
    ),
    timestamp=fields.Integer(load_default=None, validate=Range(min=0)),
    token=fields.UUID(load_default=None),
    verification_payload=fields.String(load_default=None, data_key="verificationPayload"),
    hmackey=fields.String(load_default=None),
    app_package_name=fields.String(load_default=None, data_key="appPackageName"),
    padding=fields.String(load_default="", validate=Length(max=config.MAX_PADDING_SIZE)),
)


def _publish_chaff_response() -> HTTPResponse:
    return json(dict(insertedExposures=0, error="", padding=generate_padding()))


def _upload_chaff_response() -> HTTPResponse:
    return HTTPResponse(status=HTTPStatus.NO_CONTENT.value)


@bp.route("/exposures/verify", version=1, methods=["POST"])
@openapi.summary("Redeem a verification code (caller: Mobile Client).")
@openapi.description(
    "The Mobile Client sends the hashes of the verification code given to the user with a "
    "positive diagnosis, and receives an upload token in exchange. "
    "A code can be redeemed only once, within its lifetime."
)
@openapi.body({"application/json": VerifyHash}, required=True)
@openapi.response(HTTPStatus.OK.value, {"application/json": UploadTokenResponse})
@openapi.response(HTTPStatus.FORBIDDEN.value, {"application/json": ErrorResponse})
@openapi.response(HTTPStatus.GONE.value, {"application/json": ErrorResponse})
@openapi.response(HTTPStatus.TOO_MANY_REQUESTS.value, {"application/json": ErrorResponse})
@validate(location=Location.JSON, verification_hash=fields.String(required=True, data_key="hash"))
@authenticate
@handle_store_errors("verify_hash")
async def verify_hash(
    request: Request, verification_hash: str, registration_id: str
) -> HTTPResponse:
    """
    Exchange the hash of a verification code for an upload token.

    :param request: the HTTP request object.
    :param verification_hash: the control hash followed by the code hash.
    :param registration_id: the registration redeeming the code.
    :return: 200 and the upload token, 403 if no code matches, 410 if the code is expired,
      429 if rate limited.
    """
    control_hash, code_hash = split_verification_hash(verification_hash)
    result = request.app.ctx.ledger.exchange(registration_id, control_hash, code_hash)
    return json(dict(token=result.token))


@bp.route("/verify", version=1, methods=["POST"])
@openapi.summary("Redeem a verification code for a verification token (caller: Mobile Client).")
@openapi.description(
    "Same as /v1/exposures/verify, taking the plain code and returning a signed verification "
    "token wrapping the upload token, together with the diagnosis data."
)
@openapi.body({"application/json": VerifyCode}, required=True)
@openapi.response(HTTPStatus.OK.value, {"application/json": VerificationTokenResponse})
@openapi.response(HTTPStatus.FORBIDDEN.value, {"application/json": ErrorResponse})
@openapi.response(HTTPStatus.GONE.value, {"application/json": ErrorResponse})
@openapi.response(HTTPStatus.TOO_MANY_REQUESTS.value, {"application/json": ErrorResponse})
@validate(location=Location.JSON, code=fields.String(required=True, validate=Length(min=1)))
@authenticate
@handle_store_errors("verify_code")
async def verify_code(request: Request, code: str, registration_id: str) -> HTTPResponse:
    """
    Exchange a plain verification code for a signed verification token.

    :param request: the HTTP request object.
    :param code: the verification code.
    :param registration_id: the registration redeeming the code.
    :return: 200 and the verification token, 403 if no code matches or the diagnosis has no
      onset date, 410 if the code is expired, 429 if rate limited. When a verification service
      is configured, its response is relayed instead.
    """
    if (proxy := request.app.ctx.verify_proxy) is not None:
        status, body = await proxy.forward(VERIFY_PATH, dict(code=code))
        return json(body, status=status)

    control_hash, code_hash = hash_verification_code(code)
    result = request.app.ctx.ledger.exchange(registration_id, control_hash, code_hash)

    if result.onset_date is None:
        _LOGGER.warning(
            "Redeemed code has no onset date.", extra=dict(registration_id=registration_id)
        )
        raise ForbiddenException()

    return json(
        dict(
            error="",
            symptomDate=result.onset_date.isoformat(),
            testtype=result.test_type.value,
            token=request.app.ctx.signer.sign_verification_token(
                result.token, result.test_type, result.onset_date
            ),
        )
    )


@bp.route("/certificate", version=1, methods=["POST"])
@openapi.summary("Certify a batch of keys (caller: Mobile Client).")
@openapi.description(
    "The Mobile Client sends its verification token and the HMAC of the keys it is about to "
    "upload, and receives a short-lived certificate binding the keys to the diagnosis. "
    "The upload token wrapped by the verification token is consumed."
)
@openapi.body({"application/json": CertificateRequest}, required=True)
@openapi.response(HTTPStatus.OK.value, {"application/json": CertificateResponse})
@openapi.response(HTTPStatus.FORBIDDEN.value, {"application/json": ErrorResponse})
@openapi.response(HTTPStatus.GONE.value, {"application/json": ErrorResponse})
@validate(
    location=Location.JSON,
    token=fields.String(required=True),
    ekeyhmac=fields.String(required=True, validate=Length(equal=_HMAC_KEY_LENGTH)),
)
@authenticate
@handle_store_errors("certificate")
async def certificate(
    request: Request, token: str, ekeyhmac: str, registration_id: str
) -> HTTPResponse:
    """
    Issue a certificate for the keys bound to the given HMAC.

    :param request: the HTTP request object.
    :param token: the verification token.
    :param ekeyhmac: the HMAC of the keys to be uploaded.
    :param registration_id: the registration requesting the certificate.
    :return: 200 and the certificate, 403 if the token is not valid, already used, or the
      diagnosis has no onset date, 410 if the upload token is expired. When a verification
      service is configured, its response is relayed instead.
    """
    if (proxy := request.app.ctx.verify_proxy) is not None:
        status, body = await proxy.forward(CERTIFICATE_PATH, dict(ekeyhmac=ekeyhmac, token=token))
        if not body.get("error"):
            _LOGGER.info("Upload certified.", extra=dict(registration_id=registration_id))
        return json(body, status=status)

    token_id = request.app.ctx.signer.read_verification_token(token)
    consumed = request.app.ctx.upload_tokens.consume(
        token_id, registration_id, UploadSurface.EXPOSURES
    )
    if consumed.onset_date is None:
        raise ForbiddenException()

    _LOGGER.info("Upload certified.", extra=dict(registration_id=registration_id))
    return json(
        dict(
            certificate=request.app.ctx.signer.sign_certificate(
                consumed.test_type, consumed.onset_date, ekeyhmac
            ),
            error="",
        )
    )


async def _upload(  # pylint: disable=too-many-arguments,too-many-locals
    request: Request,
    registration_id: str,
    temporary_exposure_keys: Optional[List[ExposureKey]],
    exposures: Optional[List[ExposureKey]],
    regions: Optional[List[str]],
    platform: Optional[str],
    device_verification_payload: str,
    timestamp: Optional[int],
    token: Optional[str],
    verification_payload: Optional[str],
    hmackey: Optional[str],
    app_package_name: Optional[str],
) -> int:
    """
    Authorize the upload, either with an upload token or a certificate, and store the keys.

    :return: the number of keys inserted.
    """
    ctx = request.app.ctx
    keys = exposures if exposures is not None else temporary_exposure_keys
    if keys is None:
        raise SchemaValidationException()
    client_time = datetime.utcfromtimestamp(timestamp / 1000) if timestamp is not None else None

    binding: Optional[KeyBinding] = None
    onset_date: Optional[date]
    if token is not None:
        token_id = str(token)
        await ctx.attestation.verify(
            platform, device_verification_payload, token_id.replace("-", ""), client_time
        )
        consumed = ctx.upload_tokens.consume(token_id, registration_id, UploadSurface.EXPOSURES)
        onset_date, test_type = consumed.onset_date, consumed.test_type
    else:
        if not verification_payload or not hmackey:
            raise SchemaValidationException()
        cert = ctx.signer.read_certificate(verification_payload)
        await ctx.attestation.verify(
            platform, device_verification_payload, cert.tekmac, client_time
        )
        if ctx.app_package_name and app_package_name != ctx.app_package_name:
            _LOGGER.warning("Invalid package name.", extra=dict(registration_id=registration_id))
            raise ForbiddenException()
        try:
            hmac_key = base64.b64decode(hmackey, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise SchemaValidationException() from exc
        binding = KeyBinding(hmac_key=hmac_key, digest=cert.tekmac)
        onset_date, test_type = cert.onset_date, cert.test_type

    n_inserted = ctx.key_store.ingest(
        keys,
        onset_date=onset_date,
        test_type=test_type or TestType.CONFIRMED,
        regions=regions or [ctx.default_region],
        binding=binding,
    )
    KEYS_INSERTED.inc(n_inserted)
    _LOGGER.info(
        "Upload completed.",
        extra=dict(registration_id=registration_id, platform=platform, n_inserted=n_inserted),
    )
    return n_inserted


@bp.route("/publish", version=1, methods=["POST"])
@openapi.summary("Publish keys (caller: Mobile Client).")
@openapi.description(
    "The Mobile Client of a diagnosed user uploads its keys, authorized either by an upload "
    "token or by a certificate and the HMAC key the certificate is bound to. "
    "The device attestation is bound to the upload token, or to the certificate HMAC. "
    f"Using the {CHAFF_HEADER} header, the Mobile Client can indicate to the server that the "
    "call it is making is a dummy one. "
    "The server will ignore the content of such calls."
)
@openapi.body({"application/json": Publish}, required=True)
@openapi.parameter(CHAFF_HEADER, str, "header")
@openapi.response(HTTPStatus.OK.value, {"application/json": PublishResponse})
@openapi.response(HTTPStatus.FORBIDDEN.value, {"application/json": ErrorResponse})
@openapi.response(HTTPStatus.GONE.value, {"application/json": ErrorResponse})
@openapi.response(HTTPStatus.SERVICE_UNAVAILABLE.value, {"application/json": ErrorResponse})
@validate(location=Location.JSON, **_UPLOAD_FIELDS)
@authenticate
@monitor_upload
@handle_chaff_requests(_publish_chaff_response)
@handle_store_errors("publish")
async def publish(request: Request, padding: str, **kwargs: object) -> HTTPResponse:
    """
    Allow Mobile Clients to publish their keys.

    :param request: the HTTP request object.
    :param padding: the dummy data sent to protect against analysis of the traffic size.
    :return: 200 and the number of inserted keys, 400 on invalid keys, 403 if the upload is
      not authorized, 410 if the upload token is expired, 503 if the attestation service is
      unreachable.
    """
    n_inserted = await _upload(request, **kwargs)  # type: ignore
    return json(dict(insertedExposures=n_inserted, error="", padding=generate_padding()))


@bp.route("/exposures", version=1, methods=["POST"])
@openapi.summary("Upload keys (caller: Mobile Client).")
@openapi.description("Same as /v1/publish, with an empty response.")
@openapi.body({"application/json": Publish}, required=True)
@openapi.parameter(CHAFF_HEADER, str, "header")
@openapi.response(HTTPStatus.NO_CONTENT.value, None, "Upload completed successfully.")
@openapi.response(HTTPStatus.FORBIDDEN.value, {"application/json": ErrorResponse})
@openapi.response(HTTPStatus.GONE.value, {"application/json": ErrorResponse})
@validate(location=Location.JSON, **_UPLOAD_FIELDS)
@authenticate
@monitor_upload
@handle_chaff_requests(_upload_chaff_response)
@handle_store_errors("upload")
async def upload(request: Request, padding: str, **kwargs: object) -> HTTPResponse:
    """
    Allow Mobile Clients to upload their keys.

    :param request: the HTTP request object.
    :param padding: the dummy data sent to protect against analysis of the traffic size.
    :return: 204 on successful upload, same errors as /v1/publish.
    """
    await _upload(request, **kwargs)  # type: ignore
    return HTTPResponse(status=HTTPStatus.NO_CONTENT.value)


@bp.route("/exposures", version=1, methods=["GET"])
@openapi.summary("List the export files to fetch (caller: Mobile Client).")
@openapi.description(
    "The Mobile Client sends the index of the last export file it has, and receives the files "
    "it needs to catch up, in order. "
    "Files are generated so that a single file is usually enough."
)
@openapi.parameter("since", int, "query")
@openapi.parameter("region", str, "query")
@openapi.parameter("limit", int, "query")
@openapi.response(HTTPStatus.OK.value, {"application/json": openapi.Array(ExportFileResponse)})
@validate(
    location=Location.QUERY,
    since=fields.Integer(load_default=0, validate=Range(min=0)),
    region=region_field(load_default=None),
    limit=fields.Integer(load_default=0, validate=Range(min=0)),
)
@authenticate
@handle_store_errors("list_export_files")
async def list_export_files(
    request: Request, since: int, region: Optional[str], limit: int, registration_id: str
) -> HTTPResponse:
    """
    List the export files the Mobile Client should fetch.

    :param request: the HTTP request object.
    :param since: the index of the last file the Mobile Client has, 0 if none.
    :param region: the region of the files, defaults to the configured one.
    :param limit: the maximum number of files, never lower than the configured one.
    :param registration_id: the registration of the Mobile Client.
    :return: 200 and the list of files.
    """
    ctx = request.app.ctx
    region = region or ctx.default_region
    files = ctx.export_cursor.list_files(region, since, max(limit, ctx.export_files_limit))

    stale = ctx.export_cursor.is_stale(region, since)
    if stale:
        _LOGGER.info("Old file requested.", extra=dict(region=region, since=since))
    EXPORT_FILES_REQUESTS.labels(stale).inc()

    return json([dict(id=export_file.id, path=export_file.path) for export_file in files])
