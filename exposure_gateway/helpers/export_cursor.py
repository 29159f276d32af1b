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

"""
Incremental pull protocol over the export files.

Export files are generated so that a client only ever needs a single additional file to catch
up: the file starting right after the last exposure of the file the client already has.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional

from exposure_gateway.models.export_file import ExportFile

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExportFileRef:
    id: int
    path: str


class ExportCursor:
    def __init__(self, retention: timedelta) -> None:
        """
        :param retention: how long after its first exposure a file is served.
        """
        self._retention = retention

    def _live_since(self, now: Optional[datetime]) -> datetime:
        return (now or datetime.utcnow()) - self._retention

    def next_file(
        self, region: str, since_file_id: int, now: Optional[datetime] = None
    ) -> Optional[ExportFileRef]:
        """
        Select the next file a client holding the given file should fetch.

        :param region: the region of the files.
        :param since_file_id: the id of the last file the client has, 0 if none.
        :param now: the current time, defaults to utcnow.
        :return: the next file, or None if the client is up to date.
        """
        current = ExportFile.get(region=region, index=since_file_id) if since_file_id else None
        export_file = ExportFile.next_live(
            region=region,
            since_exposure_id=current.last_exposure_id if current else 0,
            live_since=self._live_since(now),
        )
        if export_file is None:
            return None
        return ExportFileRef(id=export_file.index, path=export_file.path)

    def is_stale(self, region: str, since_file_id: int, now: Optional[datetime] = None) -> bool:
        """
        Assess whether the client cursor predates the oldest live file, meaning the client has
        missed files that are past the retention window.

        :param region: the region of the files.
        :param since_file_id: the id of the last file the client has, 0 if none.
        :param now: the current time, defaults to utcnow.
        :return: True if the cursor is stale, False otherwise.
        """
        if since_file_id <= 0:
            return False
        earliest = ExportFile.earliest_live_index(region=region, live_since=self._live_since(now))
        return earliest is not None and since_file_id < earliest

    def list_files(
        self, region: str, since_file_id: int, limit: int, now: Optional[datetime] = None
    ) -> List[ExportFileRef]:
        """
        Follow the cursor from the given file, collecting up to limit files.

        :param region: the region of the files.
        :param since_file_id: the id of the last file the client has, 0 if none.
        :param limit: the maximum number of files to return.
        :param now: the current time, defaults to utcnow.
        :return: the files to fetch, in order.
        """
        now = now or datetime.utcnow()
        files: List[ExportFileRef] = []
        seen = {since_file_id}
        cursor = since_file_id
        while len(files) < limit:
            export_file = self.next_file(region, cursor, now=now)
            # Files with an empty exposure range may point back to an already listed file.
            if export_file is None or export_file.id in seen:
                break
            files.append(export_file)
            seen.add(export_file.id)
            cursor = export_file.id

        _LOGGER.info(
            "Listed export files.",
            extra=dict(region=region, since=since_file_id, n_files=len(files)),
        )
        return files
