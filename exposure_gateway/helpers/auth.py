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
from functools import wraps
from typing import Any, Callable, Coroutine, Optional

from jose import JOSEError, jwt
from sanic.request import Request
from sanic.response import HTTPResponse

from exposure_gateway.core.exceptions import UnauthorizedException

_LOGGER = logging.getLogger(__name__)


def read_access_token(token: Optional[str], secret: str) -> str:
    """
    Verify the access token issued at registration time, and return the registration id.

    :param token: the bearer token of the request, if any.
    :param secret: the secret the token is signed with.
    :return: the registration id.
    :raises: UnauthorizedException if the token is missing, invalid, or a refresh token.
    """
    if not token:
        raise UnauthorizedException()
    try:
        claims = jwt.decode(token, secret, algorithms=["HS256"])
    except JOSEError as exc:
        _LOGGER.info("Error verifying the access token.", extra=dict(error=str(exc)))
        raise UnauthorizedException() from exc

    if claims.get("refresh") or not claims.get("id"):
        _LOGGER.info("Access token rejected.", extra=dict(refresh=bool(claims.get("refresh"))))
        raise UnauthorizedException()
    return str(claims["id"])


def authenticate(f: Callable[..., Coroutine[Any, Any, HTTPResponse]]) -> Callable:
    """
    Decorator to ensure the request carries a valid access token.
    The registration id is passed to the decorated function as registration_id.

    :param f: the decorated function.
    :return: the decorator.
    """

    @wraps(f)
    async def _wrapper(request: Request, *args: Any, **kwargs: Any) -> HTTPResponse:
        registration_id = read_access_token(request.token, request.app.ctx.jwt_secret)
        return await f(request, *args, registration_id=registration_id, **kwargs)

    return _wrapper
