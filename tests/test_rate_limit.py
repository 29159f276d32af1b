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

from datetime import datetime, timedelta

from exposure_gateway.helpers.rate_limit import BudgetRateLimiter, RateLimiter
from exposure_gateway.models.registration import Registration, VerificationControl
from tests.fixtures.core import REGISTRATION_ID

NOW = datetime(2020, 10, 1, 12)


def test_rate_limiter_allows_once_per_interval(registration: Registration) -> None:
    limiter = RateLimiter(Registration, "last_verification_attempt", timedelta(seconds=1))

    assert limiter.touch_if_elapsed(REGISTRATION_ID, now=NOW)
    assert not limiter.touch_if_elapsed(REGISTRATION_ID, now=NOW + timedelta(milliseconds=500))
    assert limiter.touch_if_elapsed(REGISTRATION_ID, now=NOW + timedelta(seconds=1))


def test_rate_limiter_denied_call_has_no_side_effect(registration: Registration) -> None:
    limiter = RateLimiter(Registration, "last_verification_attempt", timedelta(minutes=1))

    assert limiter.touch_if_elapsed(REGISTRATION_ID, now=NOW)
    assert not limiter.touch_if_elapsed(REGISTRATION_ID, now=NOW + timedelta(seconds=30))

    assert Registration.objects.get(id=REGISTRATION_ID).last_verification_attempt == NOW
    assert limiter.touch_if_elapsed(REGISTRATION_ID, now=NOW + timedelta(minutes=1))


def test_rate_limiter_without_interval_allows_once_ever(registration: Registration) -> None:
    limiter = RateLimiter(Registration, "last_callback", None)

    assert limiter.touch_if_elapsed(REGISTRATION_ID, now=NOW)
    assert not limiter.touch_if_elapsed(REGISTRATION_ID, now=NOW + timedelta(days=365))


def test_rate_limiter_unknown_subject() -> None:
    limiter = RateLimiter(Registration, "last_verification_attempt", timedelta(seconds=1))

    assert not limiter.touch_if_elapsed("unknown", now=NOW)
    assert Registration.objects.count() == 0


def test_rate_limiter_creates_missing_subject() -> None:
    limiter = RateLimiter(
        VerificationControl, "last_verification_attempt", timedelta(seconds=1), create_missing=True
    )

    assert limiter.touch_if_elapsed("control", now=NOW)
    assert not limiter.touch_if_elapsed("control", now=NOW)
    assert limiter.touch_if_elapsed("another-control", now=NOW)

    assert VerificationControl.objects.count() == 2
    control = VerificationControl.objects.get(id="control")
    assert control.created_at == NOW
    assert control.last_verification_attempt == NOW


def test_rate_limiter_after_stale_subjects_deletion() -> None:
    limiter = RateLimiter(
        VerificationControl, "last_verification_attempt", timedelta(minutes=1), create_missing=True
    )
    assert limiter.touch_if_elapsed("stale-control", now=NOW - timedelta(minutes=5))
    assert limiter.touch_if_elapsed("recent-control", now=NOW)

    assert VerificationControl.delete_older_than(NOW - timedelta(minutes=1)) == 1

    assert [control.id for control in VerificationControl.objects] == ["recent-control"]
    assert limiter.touch_if_elapsed("stale-control", now=NOW)
    assert not limiter.touch_if_elapsed("recent-control", now=NOW + timedelta(seconds=30))


def test_budget_rate_limiter(registration: Registration) -> None:
    limiter = BudgetRateLimiter(
        Registration,
        "last_callback",
        "callback_request_count",
        min_interval=timedelta(seconds=60),
        max_count=2,
    )

    assert limiter.touch_if_within_budget(REGISTRATION_ID, now=NOW)
    assert limiter.touch_if_within_budget(REGISTRATION_ID, now=NOW + timedelta(seconds=10))
    assert not limiter.touch_if_within_budget(REGISTRATION_ID, now=NOW + timedelta(seconds=20))

    registration.reload()
    assert registration.callback_request_count == 2
    assert registration.last_callback == NOW


def test_budget_rate_limiter_resets_after_window(registration: Registration) -> None:
    limiter = BudgetRateLimiter(
        Registration,
        "last_callback",
        "callback_request_count",
        min_interval=timedelta(seconds=60),
        max_count=2,
    )

    assert limiter.touch_if_within_budget(REGISTRATION_ID, now=NOW)
    assert limiter.touch_if_within_budget(REGISTRATION_ID, now=NOW + timedelta(seconds=1))
    assert not limiter.touch_if_within_budget(REGISTRATION_ID, now=NOW + timedelta(seconds=2))
    assert limiter.touch_if_within_budget(REGISTRATION_ID, now=NOW + timedelta(seconds=61))

    registration.reload()
    assert registration.callback_request_count == 1
    assert registration.last_callback == NOW + timedelta(seconds=61)
