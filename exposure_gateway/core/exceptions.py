#  Copyright (C) 2020 Presidenza del Consiglio dei Ministri.
#  Please refer to the AUTHORS file for more information.
#  This program is free software: you can redistribute it and/or modify
#  it under the terms of the GNU Affero General Public License as
#  published by the Free Software Foundation, either version 3 of the
#  License, or (at your option) any later version.
#  This program is distributed in the hope that it will be useful,
#  but WITHOUT ANY WARRANTY; without even the implied warranty of
#  MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE. See the
#  GNU Affero General Public License for more details.
#  You should have received a copy of the GNU Affero General Public License
#  along with this program. If not, see <https://www.gnu.org/licenses/>.

from http import HTTPStatus


class ExposureGatewayException(Exception):
    """
    Base exception of the service.
    """


class ApiException(ExposureGatewayException):
    """
    Raised when an API request cannot be fulfilled.
    Rendered to the client with the given status code, error code and message.
    """

    status_code: HTTPStatus = HTTPStatus.INTERNAL_SERVER_ERROR
    error_message: str = "An error occurred."
    error_code: int = 1000


class SchemaValidationException(ApiException):
    """
    Raised when the request is malformed.
    """

    status_code = HTTPStatus.BAD_REQUEST
    error_message = "Request not compliant with the defined schema."
    error_code = 1100


class UnauthorizedException(ApiException):
    """
    Raised when the request is not authenticated.
    """

    status_code = HTTPStatus.UNAUTHORIZED
    error_message = "Unauthorized."
    error_code = 1101


class ForbiddenException(ApiException):
    """
    Raised when the request is authenticated, but the given proof is not accepted.
    The message is the same regardless of the underlying cause.
    """

    status_code = HTTPStatus.FORBIDDEN
    error_message = "Forbidden."
    error_code = 1102


class AttestationFailedException(ForbiddenException):
    """
    Raised when the device attestation is rejected.
    Renders exactly as ForbiddenException, so that clients cannot tell the checks apart.
    """


class GoneException(ApiException):
    """
    Raised when a verification code or upload token is past its lifetime.
    """

    status_code = HTTPStatus.GONE
    error_message = "The resource is expired."
    error_code = 1103


class TooManyRequestsException(ApiException):
    """
    Raised when a rate limit is hit.
    """

    status_code = HTTPStatus.TOO_MANY_REQUESTS
    error_message = "Too many requests."
    error_code = 1104


class UpstreamUnavailableException(ApiException):
    """
    Raised when an external service or the database cannot be reached.
    Clients may retry with backoff.
    """

    status_code = HTTPStatus.SERVICE_UNAVAILABLE
    error_message = "Service temporarily unavailable."
    error_code = 1105
