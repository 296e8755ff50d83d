"""
Business settings stored in the site_settings table
"""

import re

from .errors import ValidationError
from .models import db, SiteSetting

DEFAULTS = {
    'cart_settings': {'cart_lifetime_days': 7},
    'cancellation_settings': {'enabled': True, 'timeWindowMinutes': 30},
    'time_window_settings': {'enabled': False, 'fromTime': '08:00', 'toTime': '17:00'},
}

_HHMM = re.compile(r'^([01]\d|2[0-3]):[0-5]\d$')


def get_setting(key):
    """Stored value merged over the default, so new default keys show up"""
    value = dict(DEFAULTS.get(key, {}))
    row = db.session.get(SiteSetting, key)
    if row is not None and isinstance(row.value, dict):
        value.update(row.value)
    return value


def set_setting(key, value):
    if key not in DEFAULTS:
        raise ValidationError(f'Unknown setting: {key}')
    if not isinstance(value, dict):
        raise ValidationError('Setting value must be an object')

    merged = get_setting(key)
    merged.update({k: v for k, v in value.items() if k in DEFAULTS[key]})
    _validate(key, merged)

    row = db.session.get(SiteSetting, key)
    if row is None:
        row = SiteSetting(key=key, value=merged)
        db.session.add(row)
    else:
        row.value = merged
    db.session.commit()
    return merged


def _validate(key, value):
    if key == 'cart_settings':
        days = value.get('cart_lifetime_days')
        if not isinstance(days, int) or isinstance(days, bool) or not 1 <= days <= 90:
            raise ValidationError('cart_lifetime_days must be an integer between 1 and 90')
    elif key == 'cancellation_settings':
        if not isinstance(value.get('enabled'), bool):
            raise ValidationError('enabled must be a boolean')
        minutes = value.get('timeWindowMinutes')
        if not isinstance(minutes, int) or isinstance(minutes, bool) or minutes < 0:
            raise ValidationError('timeWindowMinutes must be a non-negative integer')
    elif key == 'time_window_settings':
        if not isinstance(value.get('enabled'), bool):
            raise ValidationError('enabled must be a boolean')
        for field in ('fromTime', 'toTime'):
            if not isinstance(value.get(field), str) or not _HHMM.match(value[field]):
                raise ValidationError(f'{field} must be in HH:MM format')
        if value['fromTime'] >= value['toTime']:
            raise ValidationError('fromTime must be before toTime')
