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
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional

from exposure_gateway.core.exceptions import ForbiddenException, GoneException
from exposure_gateway.models.enums import TestType, UploadSurface
from exposure_gateway.models.upload_token import UploadToken

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConsumedToken:
    onset_date: Optional[date]
    test_type: TestType
    created_at: datetime


class UploadTokenManager:
    """
    Issue and consume the single-use upload tokens.
    """

    def __init__(self, token_lifetime: timedelta) -> None:
        """
        :param token_lifetime: how long a token can be used after its creation.
        """
        self._token_lifetime = token_lifetime

    @staticmethod
    def create(
        registration_id: str,
        onset_date: Optional[date],
        test_type: TestType,
        now: Optional[datetime] = None,
    ) -> str:
        """
        Create a new upload token bound to the given registration and diagnosis.

        :param registration_id: the registration the token is issued to.
        :param onset_date: the onset date of the diagnosis, if known.
        :param test_type: the diagnosis type.
        :param now: the creation time, defaults to utcnow.
        :return: the id of the token.
        """
        token = UploadToken(
            registration_id=registration_id,
            onset_date=onset_date,
            test_type=test_type,
            created_at=now or datetime.utcnow(),
        )
        token.save(force_insert=True)
        _LOGGER.info("Created upload token.", extra=dict(registration_id=registration_id))
        return token.id

    def consume(
        self,
        token_id: str,
        registration_id: str,
        surface: UploadSurface,
        now: Optional[datetime] = None,
    ) -> ConsumedToken:
        """
        Mark the token as consumed for the given surface.
        The marker is committed before the lifetime check: an expired token is burned anyway.

        :param token_id: the id of the token.
        :param registration_id: the registration the token must belong to.
        :param surface: the upload surface to consume.
        :param now: the current time, defaults to utcnow.
        :return: the diagnosis data bound to the token.
        :raises: ForbiddenException if the token is unknown, foreign or already consumed.
        :raises: GoneException if the token is past its lifetime.
        """
        now = now or datetime.utcnow()
        token = UploadToken.mark_consumed(
            token_id=token_id, registration_id=registration_id, surface=surface, now=now
        )
        if token is None:
            _LOGGER.warning(
                "Upload token rejected.",
                extra=dict(registration_id=registration_id, surface=surface.name),
            )
            raise ForbiddenException()

        if now - token.created_at > self._token_lifetime:
            _LOGGER.warning(
                "Upload token expired.",
                extra=dict(
                    registration_id=registration_id,
                    surface=surface.name,
                    created_at=token.created_at,
                ),
            )
            raise GoneException()

        return ConsumedToken(
            onset_date=token.onset_date, test_type=token.test_type, created_at=token.created_at
        )
