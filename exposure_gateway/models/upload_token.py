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

from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import uuid4

from mongoengine import DateField, DateTimeField, Document, EnumField, StringField

from exposure_gateway.models.enums import TestType, UploadSurface


def _new_token_id() -> str:
    return str(uuid4())


class UploadToken(Document):
    """
    Model of a single-use upload capability.
    Each upload surface has its own consumed marker, set at most once.
    """

    id = StringField(primary_key=True, default=_new_token_id)
    registration_id = StringField(required=True)
    onset_date = DateField(required=False)
    test_type = EnumField(TestType, default=TestType.CONFIRMED)
    created_at = DateTimeField(default=datetime.utcnow)
    exposures_uploaded = DateTimeField(required=False)
    venues_uploaded = DateTimeField(required=False)

    meta = {"collection": "upload_tokens", "indexes": ["registration_id", "created_at"]}

    @classmethod
    def mark_consumed(
        cls, token_id: str, registration_id: str, surface: UploadSurface, now: datetime
    ) -> Optional[UploadToken]:
        """
        Atomically set the consumed marker of the given surface, if not set already.

        :param token_id: the id of the token.
        :param registration_id: the registration the token must belong to.
        :param surface: the upload surface to mark as consumed.
        :param now: the consumption timestamp.
        :return: the token as it was before the update, or None if no token matched.
        """
        return cls.objects(
            id=token_id, registration_id=registration_id, **{surface.value: None}
        ).modify(**{f"set__{surface.value}": now})
