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

from mongoengine import DateField, DateTimeField, Document, EnumField, IntField, StringField

from exposure_gateway.models.enums import TestType


class VerificationRecord(Document):
    """
    Model of a verification code issued by the lab portal.
    Only the hashes of the code are stored: the control hash (first half of the code) and the
    hash of the full code.
    """

    control = StringField(required=True)
    code = StringField(required=True)
    created_at = DateTimeField(default=datetime.utcnow)
    last_updated_at = DateTimeField(default=datetime.utcnow)
    onset_date = DateField(required=False)
    test_type = EnumField(TestType, default=TestType.CONFIRMED)
    send_count = IntField(default=0)

    meta = {
        "collection": "verifications",
        "indexes": [{"fields": ["control", "code"], "unique": True}, "created_at"],
    }

    @classmethod
    def redeem(cls, control: str, code: str) -> Optional[VerificationRecord]:
        """
        Atomically delete and return the record matching the given hashes.

        :param control: the control hash.
        :param code: the full code hash.
        :return: the deleted record, or None if there was no such record.
        """
        return cls.objects(control=control, code=code).modify(remove=True)

    @classmethod
    def delete_older_than(cls, datetime_: datetime) -> int:
        """
        Delete all the records created before the given datetime.

        :param datetime_: the datetime to check against.
        :return: the number of deleted documents.
        """
        return cls.objects.filter(created_at__lt=datetime_).delete()
