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

from mongoengine import DateTimeField, Document, IntField, Q, StringField


class Registration(Document):
    """
    Model of an installed app instance.
    Rows are created by the registration service; this service only advances the rate-limit
    timestamps, which never move backwards.
    """

    id = StringField(primary_key=True)
    created_at = DateTimeField(default=datetime.utcnow)
    last_verification_attempt = DateTimeField(required=False)
    last_callback = DateTimeField(required=False)
    callback_request_count = IntField(default=0)
    last_check_in = DateTimeField(required=False)
    last_notice = DateTimeField(required=False)

    meta = {"collection": "registrations"}

    @classmethod
    def exists(cls, registration_id: str) -> bool:
        """
        Assess whether the given registration is known.

        :param registration_id: the registration id to look for.
        :return: True if the registration exists, False otherwise.
        """
        return cls.objects(id=registration_id).count() > 0


class VerificationControl(Document):
    """
    Rate-limit subject for the control prefix of verification codes.
    Documents are created on demand the first time a control hash is seen.
    """

    id = StringField(primary_key=True)
    created_at = DateTimeField(default=datetime.utcnow)
    last_verification_attempt = DateTimeField(required=False)

    meta = {"collection": "verification_controls"}

    @classmethod
    def delete_older_than(cls, datetime_: datetime) -> int:
        """
        Delete all the controls whose last verification attempt is older than the given
        datetime. Controls that never went through an attempt are deleted based on their
        creation time.

        :param datetime_: the datetime to check against.
        :return: the number of deleted documents.
        """
        return cls.objects(
            Q(last_verification_attempt__lt=datetime_)
            | Q(last_verification_attempt=None, created_at__lt=datetime_)
        ).delete()
