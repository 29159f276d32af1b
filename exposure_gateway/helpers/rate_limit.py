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
Rate limiting primitives.

Every check is a single conditional update against the subject document, so that concurrent
callers for the same subject cannot both observe the window as open. A denied call has no side
effect.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional, Type

from mongoengine import Document, Q

_LOGGER = logging.getLogger(__name__)


class RateLimiter:
    """
    Allow one action per subject every min_interval.
    With min_interval set to None, the action is allowed once, ever.
    """

    def __init__(
        self,
        document: Type[Document],
        field: str,
        min_interval: Optional[timedelta],
        create_missing: bool = False,
    ) -> None:
        """
        :param document: the document class holding the subjects.
        :param field: the datetime field storing the last allowed action.
        :param min_interval: the minimum interval between two allowed actions, if any.
        :param create_missing: whether to create the subject document if it does not exist.
          The document class must then define a created_at field.
        """
        self._document = document
        self._field = field
        self._min_interval = min_interval
        self._create_missing = create_missing

    def touch_if_elapsed(self, subject_key: str, now: Optional[datetime] = None) -> bool:
        """
        Set the last action of the subject to now, if enough time has passed since the previous
        one.

        :param subject_key: the primary key of the subject.
        :param now: the current time, defaults to utcnow.
        :return: True if the action is allowed, False otherwise.
        """
        now = now or datetime.utcnow()
        if self._create_missing:
            self._document.objects(pk=subject_key).update_one(
                upsert=True, set_on_insert__created_at=now
            )

        window_open = Q(**{self._field: None})
        if self._min_interval is not None:
            window_open |= Q(**{f"{self._field}__lte": now - self._min_interval})

        updated = self._document.objects(window_open, pk=subject_key).update_one(
            **{f"set__{self._field}": now}
        )
        if not updated:
            _LOGGER.info(
                "Rate limit hit.",
                extra=dict(collection=self._document._meta["collection"], field=self._field),
            )
        return bool(updated)


class BudgetRateLimiter:
    """
    Allow up to max_count actions per subject within a window of min_interval.
    The window starts at the first action after the previous window has elapsed.
    """

    def __init__(
        self,
        document: Type[Document],
        field: str,
        counter_field: str,
        min_interval: timedelta,
        max_count: int,
    ) -> None:
        self._document = document
        self._field = field
        self._counter_field = counter_field
        self._min_interval = min_interval
        self._max_count = max_count

    def touch_if_within_budget(self, subject_key: str, now: Optional[datetime] = None) -> bool:
        """
        Record an action for the subject, if its budget for the current window allows it.

        :param subject_key: the primary key of the subject.
        :param now: the current time, defaults to utcnow.
        :return: True if the action is allowed, False otherwise.
        """
        now = now or datetime.utcnow()
        window_elapsed = Q(**{self._field: None}) | Q(
            **{f"{self._field}__lte": now - self._min_interval}
        )

        # A new window starts: reset the counter.
        if self._document.objects(window_elapsed, pk=subject_key).update_one(
            **{f"set__{self._field}": now, f"set__{self._counter_field}": 1}
        ):
            return True

        # Same window: spend the budget, if any is left.
        within_budget = Q(**{f"{self._field}__gt": now - self._min_interval}) & Q(
            **{f"{self._counter_field}__lt": self._max_count}
        )
        if self._document.objects(within_budget, pk=subject_key).update_one(
            **{f"inc__{self._counter_field}": 1}
        ):
            return True

        _LOGGER.info(
            "Rate limit budget exhausted.",
            extra=dict(
                collection=self._document._meta["collection"],
                field=self._field,
                max_count=self._max_count,
            ),
        )
        return False
