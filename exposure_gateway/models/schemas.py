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

from typing import Any, Dict

from marshmallow import EXCLUDE, Schema, fields, post_load, pre_load
from marshmallow.validate import Range, Regexp

from exposure_gateway.helpers.rolling_start_number import MAX_ROLLING_START_NUMBER
from exposure_gateway.models.exposure_key import ExposureKey

REGION_REGEX = r"^[A-Z]{2}$"

# Older Mobile Clients send the keys with shorter names.
_ALIASES = {"key": "keyData", "transmissionRisk": "transmissionRiskLevel"}


class ExposureKeySchema(Schema):
    """
    Schema of the keys uploaded by the Mobile Clients.
    """

    class Meta:
        unknown = EXCLUDE

    key_data = fields.String(required=True, data_key="keyData")
    rolling_start_number = fields.Integer(
        required=True,
        strict=True,
        data_key="rollingStartNumber",
        validate=Range(min=0, max=MAX_ROLLING_START_NUMBER),
    )
    rolling_period = fields.Integer(
        load_default=144, strict=True, data_key="rollingPeriod", validate=Range(min=1, max=144)
    )
    transmission_risk_level = fields.Integer(
        required=True, strict=True, data_key="transmissionRiskLevel", validate=Range(min=0, max=8)
    )

    @pre_load
    def resolve_aliases(  # pylint: disable=no-self-use
        self, data: Any, **kwargs: Any
    ) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        for alias, name in _ALIASES.items():
            if alias in data and name not in data:
                data[name] = data.pop(alias)
        return data

    @post_load
    def create_key(  # pylint: disable=no-self-use
        self, data: Dict[str, Any], **kwargs: Any
    ) -> ExposureKey:
        return ExposureKey(**data)


def region_field(**kwargs: Any) -> fields.String:
    return fields.String(validate=Regexp(REGION_REGEX), **kwargs)
