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

import asyncio
from typing import Any, NamedTuple, Tuple

from celery import Celery, Task
from celery.schedules import crontab
from celery.signals import worker_process_init, worker_process_shutdown

from exposure_gateway.core import config
from exposure_gateway.core.managers import managers
from exposure_gateway.helpers.config import string_to_crontab


class Schedule(NamedTuple):
    task: Task
    when: crontab


# pylint: disable=cyclic-import,import-outside-toplevel
def _get_schedules() -> Tuple[Schedule, ...]:
    """
    Get static scheduling of tasks.
    # NOTE: Tasks need to be imported locally, so as to avoid cyclic dependencies.

    :return: the tuple of tasks schedules.
    """
    from exposure_gateway.tasks.delete_old_data import delete_old_data

    return (
        Schedule(task=delete_old_data, when=string_to_crontab(config.DELETE_OLD_DATA_CRONTAB)),
    )


@worker_process_init.connect
def worker_process_init_listener(**kwargs: Any) -> None:
    """
    Callback on worker initialization.
    """
    asyncio.run(managers.initialize())


@worker_process_shutdown.connect
def worker_process_shutdown_listener(**kwargs: Any) -> None:
    """
    Callback on worker shutdown.
    """
    asyncio.run(managers.teardown())


celery_app = Celery(
    "exposure_gateway",
    broker=config.CELERY_BROKER_REDIS_URL,
    include=("exposure_gateway.tasks.delete_old_data",),
)
celery_app.conf.update(
    task_always_eager=config.CELERY_ALWAYS_EAGER, timezone="UTC", enable_utc=True
)


@celery_app.on_after_finalize.connect
def setup_periodic_tasks(sender: Celery, **kwargs: Any) -> None:
    """
    Register the periodic tasks, once all the tasks are known.

    :param sender: the Celery app.
    """
    for schedule in _get_schedules():
        sender.add_periodic_task(schedule.when, schedule.task.s(), name=schedule.task.name)
