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
import logging
import secrets
from functools import wraps
from typing import Any, Callable, Coroutine, Dict

from marshmallow import EXCLUDE, Schema, ValidationError
from marshmallow.fields import Field
from pymongo.errors import PyMongoError
from sanic.exceptions import BadRequest
from sanic.request import Request
from sanic.response import HTTPResponse, json

from exposure_gateway.core.exceptions import (
    ApiException,
    SchemaValidationException,
    UpstreamUnavailableException,
)
from exposure_gateway.models.enums import Location

_LOGGER = logging.getLogger(__name__)

CHAFF_HEADER = "X-Chaff"
_PADDING_MIN_BYTES = 1024


def validate(*, location: Location, **fields: Field) -> Callable:
    """
    Decorator to validate the request arguments found in the given location against the given
    marshmallow fields. The deserialized values are passed to the decorated function as keyword
    arguments. Unknown arguments are ignored.

    :param location: where to read the arguments from.
    :param fields: the marshmallow fields, by argument name.
    :return: the decorator.
    """
    schema = Schema.from_dict(fields)(unknown=EXCLUDE)

    def _decorator(f: Callable[..., Coroutine[Any, Any, HTTPResponse]]) -> Callable:
        @wraps(f)
        async def _wrapper(request: Request, *args: Any, **kwargs: Any) -> HTTPResponse:
            try:
                if location == Location.QUERY:
                    data: Any = {key: request.args.get(key) for key in request.args}
                else:
                    data = request.json if request.body else {}
                parsed = schema.load(data)
            except BadRequest as exc:
                raise SchemaValidationException() from exc
            except ValidationError as exc:
                _LOGGER.info(
                    "Request not compliant with the schema.",
                    extra=dict(location=location.value, error=exc.messages),
                )
                raise SchemaValidationException() from exc
            return await f(request, *args, **parsed, **kwargs)

        return _wrapper

    return _decorator


def generate_padding() -> str:
    """
    Generate a random padding, so that the response size does not leak whether the request
    was a chaff one.

    :return: the base64 encoded padding, between 1 and 2 KiB of random data.
    """
    n_bytes = _PADDING_MIN_BYTES + secrets.randbelow(_PADDING_MIN_BYTES)
    return base64.b64encode(secrets.token_bytes(n_bytes)).decode("utf-8")


def is_chaff(request: Request) -> bool:
    return CHAFF_HEADER in request.headers


def handle_chaff_requests(
    response_factory: Callable[[], HTTPResponse]
) -> Callable[[Callable[..., Coroutine[Any, Any, HTTPResponse]]], Callable]:
    """
    Decorator to answer chaff requests with a dummy success, without side effects.

    :param response_factory: the function building the dummy response.
    :return: the decorator.
    """

    def _decorator(f: Callable[..., Coroutine[Any, Any, HTTPResponse]]) -> Callable:
        @wraps(f)
        async def _wrapper(request: Request, *args: Any, **kwargs: Any) -> HTTPResponse:
            if is_chaff(request):
                return response_factory()
            return await f(request, *args, **kwargs)

        return _wrapper

    return _decorator


def handle_store_errors(operation: str) -> Callable:
    """
    Decorator to turn unexpected database errors into a retryable 503.

    :param operation: the name of the operation, for logging purposes.
    :return: the decorator.
    """

    def _decorator(f: Callable[..., Coroutine[Any, Any, HTTPResponse]]) -> Callable:
        @wraps(f)
        async def _wrapper(request: Request, *args: Any, **kwargs: Any) -> HTTPResponse:
            try:
                return await f(request, *args, **kwargs)
            except PyMongoError as exc:
                _LOGGER.error(
                    "Database operation failed.",
                    extra=dict(
                        operation=operation,
                        registration_id=kwargs.get("registration_id"),
                        error=str(exc),
                    ),
                )
                raise UpstreamUnavailableException() from exc

        return _wrapper

    return _decorator


def error_body(exception: ApiException) -> Dict[str, Any]:
    return {"error_code": exception.error_code, "message": exception.error_message}


async def handle_api_exception(request: Request, exception: ApiException) -> HTTPResponse:
    """
    Render the given exception as a JSON response.

    :param request: the HTTP request object.
    :param exception: the exception raised while serving the request.
    :return: the JSON response with the status code of the exception.
    """
    return json(error_body(exception), status=exception.status_code.value)
