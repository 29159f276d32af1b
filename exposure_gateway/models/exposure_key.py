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

import logging
from datetime import datetime
from typing import List

from mongoengine import DateTimeField, Document, EnumField, IntField, ListField, StringField
from pymongo.errors import BulkWriteError

from exposure_gateway.helpers.rolling_start_number import rolling_start_number_to_datetime
from exposure_gateway.models.enums import TestType

_LOGGER = logging.getLogger(__name__)

_DUPLICATE_KEY_ERROR_CODE = 11000


class ExposureKey(Document):
    """
    Model of a published Temporary Exposure Key.
    Keys are unique by key_data and never mutated.
    """

    key_data = StringField(required=True, unique=True)
    rolling_start_number = IntField(required=True)
    rolling_period = IntField(min_value=1, max_value=144, default=144)
    transmission_risk_level = IntField(min_value=0, max_value=8, default=0)
    regions = ListField(StringField(), default=list)
    test_type = EnumField(TestType, default=TestType.CONFIRMED)
    days_since_onset = IntField(default=0)
    created_at = DateTimeField(default=datetime.utcnow)

    meta = {"collection": "exposures", "indexes": ["created_at"]}

    @property
    def start_time(self) -> datetime:
        return rolling_start_number_to_datetime(self.rolling_start_number)

    @classmethod
    def insert_ignoring_duplicates(cls, keys: List[ExposureKey]) -> int:
        """
        Insert the given keys in a single unordered bulk write.
        Keys whose key_data is already stored are skipped.

        :param keys: the keys to insert.
        :return: the number of keys actually inserted.
        :raises: BulkWriteError if any write fails for a reason other than a duplicate key.
        """
        if not keys:
            return 0
        collection = cls._get_collection()
        try:
            result = collection.insert_many([key.to_mongo() for key in keys], ordered=False)
        except BulkWriteError as exc:
            errors = exc.details.get("writeErrors", [])
            if any(error.get("code") != _DUPLICATE_KEY_ERROR_CODE for error in errors):
                raise
            _LOGGER.info("Skipped already stored keys.", extra=dict(n_duplicates=len(errors)))
            return exc.details.get("nInserted", 0)
        return len(result.inserted_ids)
