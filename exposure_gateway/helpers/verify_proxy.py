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

import asyncio
import logging
from functools import partial
from typing import Any, Dict, Tuple

import requests

from exposure_gateway.core.exceptions import UpstreamUnavailableException

_LOGGER = logging.getLogger(__name__)

VERIFY_PATH = "/api/verify"
CERTIFICATE_PATH = "/api/certificate"


class VerifyProxy:
    """
    Forward the verification code exchanges to an external verification service, instead of
    redeeming the codes locally.
    The upstream status code and body are relayed to the Mobile Client as they are.
    """

    def __init__(self, url: str, api_key: str, timeout: float) -> None:
        """
        :param url: the base url of the verification service.
        :param api_key: the key sent in the X-API-Key header.
        :param timeout: the timeout of each request, in seconds.
        """
        self._url = url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout

    async def forward(self, path: str, body: Dict[str, Any]) -> Tuple[int, Dict[str, Any]]:
        """
        Forward the given body to the verification service, off the event loop.

        :param path: the path of the verification service endpoint.
        :param body: the JSON body to forward.
        :return: the status code and the JSON body of the upstream response.
        :raises: UpstreamUnavailableException if the service is unreachable or does not
          answer with JSON.
        """
        return await asyncio.get_running_loop().run_in_executor(
            None, partial(self._post, path, body)
        )

    def _post(self, path: str, body: Dict[str, Any]) -> Tuple[int, Dict[str, Any]]:
        try:
            response = requests.post(
                f"{self._url}{path}",
                json=body,
                headers={"X-API-Key": self._api_key},
                timeout=self._timeout,
            )
            json_response = response.json()
        except (requests.exceptions.RequestException, ValueError) as exc:
            _LOGGER.error(
                "Verification service unavailable.", extra=dict(path=path, error=str(exc))
            )
            raise UpstreamUnavailableException() from exc

        _LOGGER.info(
            "Verification request forwarded.",
            extra=dict(path=path, status_code=response.status_code),
        )
        return response.status_code, json_response
