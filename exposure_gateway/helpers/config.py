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

from typing import Callable, Optional

from celery.schedules import crontab
from croniter import croniter
from decouple import UndefinedValueError


def validate_crontab(name: str) -> Callable[[str], str]:
    """
    Build a decouple cast ensuring the configured value is a valid crontab string.

    :param name: the name of the configuration variable, used in the error message.
    :return: the cast function.
    """

    def _cast(value: str) -> str:
        if not croniter.is_valid(value):
            raise UndefinedValueError(f"{name} is not a valid crontab string: {value!r}.")
        return value

    return _cast


def optional_int(value: str) -> Optional[int]:
    """
    Cast an environment value to int, treating the empty string as unset.

    :param value: the raw environment value.
    :return: the integer, or None if the value is empty.
    """
    if value is None or str(value).strip() == "":
        return None
    return int(value)


def string_to_crontab(value: str) -> crontab:
    """
    Convert a (validated) five-field crontab string into a celery crontab schedule.

    :param value: the crontab string (e.g., "0 0 * * *").
    :return: the corresponding celery crontab.
    """
    minute, hour, day_of_month, month_of_year, day_of_week = value.split()
    return crontab(
        minute=minute,
        hour=hour,
        day_of_month=day_of_month,
        month_of_year=month_of_year,
        day_of_week=day_of_week,
    )
