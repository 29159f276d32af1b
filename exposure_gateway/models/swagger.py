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

from sanic_ext import openapi


class ErrorResponse:
    """
    Documentation class for the error responses.
    """

    error_code = openapi.Integer(description="The error code.", required=True)
    message = openapi.String(description="The error message.", required=True)


class UploadedExposureKey:
    """
    Documentation class for the uploaded keys.
    """

    keyData = openapi.String(description="The base64 encoded key data.", required=True)
    rollingStartNumber = openapi.Integer(required=True)
    rollingPeriod = openapi.Integer(description="Defaults to 144.")
    transmissionRiskLevel = openapi.Integer(required=True)


class VerifyHash:
    """
    Documentation class for the /v1/exposures/verify request's body.
    """

    hash = openapi.String(
        description="The sha512 of the first half of the code, followed by the sha512 of the "
        "full code.",
        required=True,
    )


class UploadTokenResponse:
    token = openapi.String(description="The upload token.", required=True)


class VerifyCode:
    """
    Documentation class for the /v1/verify request's body.
    """

    code = openapi.String(description="The verification code.", required=True)


class VerificationTokenResponse:
    error = openapi.String(required=True)
    symptomDate = openapi.Date(description="The onset date of the diagnosis.")
    testtype = openapi.String(required=True)
    token = openapi.String(description="The signed verification token.", required=True)


class CertificateRequest:
    """
    Documentation class for the /v1/certificate request's body.
    """

    token = openapi.String(description="The verification token.", required=True)
    ekeyhmac = openapi.String(description="The HMAC of the keys to be uploaded.", required=True)


class CertificateResponse:
    certificate = openapi.String(required=True)
    error = openapi.String(required=True)


class Publish:
    """
    Documentation class for the /v1/publish request's body.
    Either the token, or the verificationPayload and hmackey pair, must be given.
    """

    temporaryExposureKeys = openapi.Array(UploadedExposureKey, required=True)
    regions = openapi.Array(str, description="The regions the keys are published to.")
    platform = openapi.String(description="The attestation method.", required=True)
    deviceVerificationPayload = openapi.String(
        description="The attestation payload.", required=True
    )
    timestamp = openapi.Integer(description="The client clock, in milliseconds.")
    token = openapi.String(description="The upload token.")
    verificationPayload = openapi.String(description="The certificate.")
    hmackey = openapi.String(description="The base64 encoded HMAC key.")
    appPackageName = openapi.String()
    padding = openapi.String(
        description="The dummy data sent to protect against analysis of the traffic size."
    )


class PublishResponse:
    insertedExposures = openapi.Integer(required=True)
    error = openapi.String(required=True)
    padding = openapi.String(required=True)


class ExportFileResponse:
    id = openapi.Integer(description="The index of the export file.", required=True)
    path = openapi.String(description="The path of the export file.", required=True)
