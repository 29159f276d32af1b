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

from functools import wraps
from typing import Any, Callable, Coroutine

from sanic.request import Request
from sanic.response import HTTPResponse

from exposure_gateway.core.exceptions import ApiException
from exposure_gateway.helpers.sanic import is_chaff
from exposure_gateway.monitoring.api import UPLOAD_REQUESTS
from exposure_gateway.monitoring.core import attestation_method_label


def monitor_upload(f: Callable[..., Coroutine[Any, Any, HTTPResponse]]) -> Callable:
    """
    Decorator to monitor the metrics relative to the upload requests.
    :param f: the upload function to decorate.
    :return: the decorated function.
    """

    @wraps(f)
    async def _wrapper(request: Request, *args: Any, **kwargs: Any) -> HTTPResponse:
        chaff = is_chaff(request)
        platform = attestation_method_label(kwargs.get("platform"))
        try:
            response = await f(request, *args, **kwargs)
            UPLOAD_REQUESTS.labels(chaff, platform, response.status).inc()
        except ApiException as error:
            UPLOAD_REQUESTS.labels(chaff, platform, error.status_code.value).inc()
            raise
        return response

    return _wrapper
