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

from mongoengine import DateTimeField, Document, IntField, StringField


class ExportFile(Document):
    """
    Model of an export file, generated by the batch job and read-only to this service.
    Indexes are strictly increasing per region, and the exposure id ranges of the files of a
    region never overlap.
    """

    index = IntField(required=True, unique_with="region")
    region = StringField(required=True)
    path = StringField(required=True)
    since_exposure_id = IntField(default=0)
    last_exposure_id = IntField(default=0)
    exposure_count = IntField(default=0)
    first_exposure_created_at = DateTimeField(required=True)
    created_at = DateTimeField(default=datetime.utcnow)

    meta = {
        "collection": "exposure_export_files",
        "indexes": [("region", "since_exposure_id"), "first_exposure_created_at"],
    }

    @classmethod
    def get(cls, region: str, index: int) -> Optional[ExportFile]:
        """
        Fetch the file with the given index for the given region.

        :param region: the region of the file.
        :param index: the index of the file.
        :return: the file, or None if it does not exist.
        """
        return cls.objects(region=region, index=index).first()

    @classmethod
    def next_live(
        cls, region: str, since_exposure_id: int, live_since: datetime
    ) -> Optional[ExportFile]:
        """
        Fetch the live file covering the exposures right after the given exposure id.
        Among the candidates, the file starting the earliest wins, and the densest file breaks
        ties.

        :param region: the region of the file.
        :param since_exposure_id: the last exposure id the caller already has.
        :param live_since: files whose first exposure is older than this are expired.
        :return: the next file, or None if the caller is up to date.
        """
        return (
            cls.objects(
                region=region,
                first_exposure_created_at__gte=live_since,
                since_exposure_id__gte=since_exposure_id,
            )
            .order_by("since_exposure_id", "-exposure_count")
            .first()
        )

    @classmethod
    def earliest_live_index(cls, region: str, live_since: datetime) -> Optional[int]:
        """
        Fetch the smallest index among the live files of the given region.

        :param region: the region of the files.
        :param live_since: files whose first exposure is older than this are expired.
        :return: the smallest live index, or None if there are no live files.
        """
        earliest = (
            cls.objects(region=region, first_exposure_created_at__gte=live_since)
            .order_by("index")
            .only("index")
            .first()
        )
        return earliest.index if earliest else None
