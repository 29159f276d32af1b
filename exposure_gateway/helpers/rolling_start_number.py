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

from datetime import date, datetime, timedelta, timezone

TEN_MINUTES = timedelta(minutes=10)

# Rolling start numbers are unsigned 32-bit integers on the wire.
MAX_ROLLING_START_NUMBER = 2 ** 32 - 1


def rolling_start_number_to_datetime(rolling_start_number: int) -> datetime:
    """
    Given a rolling start number, return the (naive, UTC) datetime it starts at.

    :param rolling_start_number: the 10-minute interval index since the UNIX epoch.
    :return: the start datetime of the interval.
    """
    return datetime.utcfromtimestamp(rolling_start_number * TEN_MINUTES.total_seconds())


def datetime_to_rolling_start_number(_datetime: datetime) -> int:
    """
    Given a (naive, UTC) datetime, return the corresponding rolling start number.

    :param _datetime: the datetime whose rolling start is to be calculated.
    :return: the rolling start corresponding to the given datetime.
    """
    return int(_datetime.replace(tzinfo=timezone.utc).timestamp() / TEN_MINUTES.total_seconds())


def date_to_onset_interval(_date: date) -> int:
    """
    Given an onset date, return the rolling start number of its midnight.

    :param _date: the onset date.
    :return: the rolling start number of the onset date at midnight UTC.
    """
    return datetime_to_rolling_start_number(datetime.combine(_date, datetime.min.time()))


def onset_interval_to_date(onset_interval: int) -> date:
    """
    Given the rolling start number of an onset, return the onset date.

    :param onset_interval: the rolling start number of the onset.
    :return: the onset date.
    """
    return rolling_start_number_to_datetime(onset_interval).date()
