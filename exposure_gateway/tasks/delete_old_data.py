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

import logging
from datetime import datetime, timedelta

from exposure_gateway.celery import celery_app
from exposure_gateway.core import config
from exposure_gateway.models.registration import VerificationControl
from exposure_gateway.models.verification import VerificationRecord
from exposure_gateway.monitoring.celery import VERIFICATION_CONTROLS_DELETED, VERIFICATIONS_DELETED

_LOGGER = logging.getLogger(__name__)


@celery_app.task
def delete_old_data() -> None:
    """
    Periodically (default: every day, at midnight) delete the data that can no longer be used.

    Deleted data comprises (i) VerificationRecords past the code lifetime and (ii)
    VerificationControls whose last attempt no longer counts against the control rate limit.
    UploadTokens and ExportFiles are never deleted here.
    """
    now = datetime.utcnow()

    codes_created_before = now - timedelta(minutes=config.CODE_LIFETIME_MINS)
    verifications_deleted = VerificationRecord.delete_older_than(codes_created_before)
    _LOGGER.info(
        "VerificationRecord documents deletion completed.",
        extra=dict(n_deleted=verifications_deleted, created_before=codes_created_before),
    )

    controls_attempted_before = now - timedelta(seconds=config.CONTROL_RATE_LIMIT_SECS or 0)
    controls_deleted = VerificationControl.delete_older_than(controls_attempted_before)
    _LOGGER.info(
        "VerificationControl documents deletion completed.",
        extra=dict(n_deleted=controls_deleted, attempted_before=controls_attempted_before),
    )

    VERIFICATIONS_DELETED.inc(verifications_deleted)
    VERIFICATION_CONTROLS_DELETED.inc(controls_deleted)
