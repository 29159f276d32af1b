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
from typing import Any, Optional

from mongoengine import connect, disconnect
from pymongo import MongoClient

from exposure_gateway.core import config
from exposure_gateway.core.exceptions import ExposureGatewayException

_LOGGER = logging.getLogger(__name__)


class Managers:
    """
    Collection of managers, lazily initialized.
    """

    _mongo: Optional[MongoClient] = None

    @property
    def mongo(self) -> MongoClient:
        """
        Return the Mongo manager.

        :return: the Mongo manager.
        :raise: ExposureGatewayException if the manager is not initialized.
        """
        if self._mongo is None:
            raise ExposureGatewayException("Cannot use the Mongo manager before initialising it.")
        return self._mongo

    async def initialize(self, **connect_kwargs: Any) -> None:
        """
        Initialize managers on demand.
        Initializing twice is a no-op, so that test fixtures can connect first.

        :param connect_kwargs: extra keyword arguments forwarded to mongoengine's connect.
        """
        if self._mongo is not None:
            return
        self._mongo = connect(host=config.MONGO_URL, **connect_kwargs)
        _LOGGER.info("Mongo manager initialized.")

    async def teardown(self) -> None:
        """
        Perform teardown actions (e.g., close open connections).
        """
        if self._mongo is not None:
            disconnect()
            self._mongo = None
            _LOGGER.info("Mongo manager torn down.")


managers = Managers()
