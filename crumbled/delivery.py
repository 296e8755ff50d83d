"""
Delivery rules: working days, delivery date calculation and the
next-day ordering time window
"""

import json
from datetime import datetime, timedelta

from flask import Blueprint, current_app, jsonify, request

from .errors import NotFoundError, ValidationError, as_int
from .models import City, Zone
from .settings import get_setting

delivery_bp = Blueprint('delivery', __name__, url_prefix='/api')

WEEKDAYS = ['Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday', 'Saturday', 'Sunday']

_DAY_LOOKUP = {}
for _day in WEEKDAYS:
    _DAY_LOOKUP[_day.lower()] = _day
    _DAY_LOOKUP[_day[:3].lower()] = _day


# ==================== Helper Functions ====================

def parse_available_days(value):
    """Normalize a list, JSON list, comma separated string or single day name"""
    if value is None:
        return []
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return []
        if text.startswith('['):
            try:
                value = json.loads(text)
            except ValueError:
                value = text.strip('[]').split(',')
        else:
            value = text.split(',')

    days = []
    for entry in value:
        name = _DAY_LOOKUP.get(str(entry).strip().strip('"\'').lower())
        if name and name not in days:
            days.append(name)
    return sorted(days, key=WEEKDAYS.index)


def validate_days(value, field='available_days'):
    """Like parse_available_days but rejects unknown day names"""
    if isinstance(value, str):
        value = value.split(',')
    if not isinstance(value, (list, tuple)):
        raise ValidationError(f'{field} must be a list of day names')
    unknown = [d for d in value if str(d).strip().lower() not in _DAY_LOOKUP]
    if unknown:
        raise ValidationError(f'Unknown day names: {", ".join(map(str, unknown))}')
    return parse_available_days(value)


def zone_working_days(zone):
    slot = zone.time_slot
    if slot is None or not slot.is_active:
        return []
    return parse_available_days(slot.available_days)


def is_working_day(day, working_days):
    return not working_days or WEEKDAYS[day.weekday()] in working_days


def calculate_delivery_date(order_date, delivery_days, working_days=None):
    """Count delivery_days working days forward from order_date.

    With zero delivery days the order ships the same day when that is a
    working day, otherwise on the next working day.
    """
    working_days = working_days or []
    current = order_date
    if delivery_days <= 0:
        while not is_working_day(current, working_days):
            current += timedelta(days=1)
        return current

    counted = 0
    while counted < delivery_days:
        current += timedelta(days=1)
        if is_working_day(current, working_days):
            counted += 1
    return current


def format_delivery_date(day, today):
    return {
        'date': day.isoformat(),
        'day_name': day.strftime('%A'),
        'formatted_date': day.strftime('%A, %B %d, %Y'),
        'is_today': day == today,
        'is_tomorrow': day == today + timedelta(days=1),
    }


def store_now():
    """Current wall-clock time at the store"""
    return datetime.utcnow() + timedelta(hours=current_app.config['STORE_UTC_OFFSET_HOURS'])


def check_time_window(now=None):
    """Whether next-day delivery can still be ordered right now"""
    settings = get_setting('time_window_settings')
    if not settings['enabled']:
        return {
            'enabled': False,
            'next_day_delivery_available': True,
            'reason': 'Time window enforcement is disabled',
        }

    now = now or store_now()
    current_time = now.strftime('%H:%M')
    from_time, to_time = settings['fromTime'], settings['toTime']
    within = from_time <= current_time <= to_time

    next_available = None
    if not within:
        if current_time > to_time:
            day, when = now.date() + timedelta(days=1), 'tomorrow'
        else:
            day, when = now.date(), 'today'
        next_available = {
            'date': day.isoformat(),
            'time': from_time,
            'message': f'Next-day delivery will be available {when} at {from_time}',
        }

    return {
        'enabled': True,
        'next_day_delivery_available': within,
        'current_time': current_time,
        'time_window': {'from': from_time, 'to': to_time},
        'next_available_time': next_available,
        'reason': 'Current time is within allowed window' if within
                  else 'Current time is outside allowed window',
    }


def available_delivery_dates(zone, start=None, days_ahead=14, now=None):
    """Distinct delivery dates reachable by ordering on each of the next days_ahead days"""
    now = now or store_now()
    today = now.date()
    start = start or today
    working_days = zone_working_days(zone)

    dates = set()
    for offset in range(days_ahead):
        dates.add(calculate_delivery_date(start + timedelta(days=offset), zone.delivery_days, working_days))

    if not check_time_window(now)['next_day_delivery_available']:
        dates.discard(today + timedelta(days=1))

    return [format_delivery_date(d, today) for d in sorted(dates) if d >= today]


def parse_date(value, field):
    try:
        return datetime.strptime(value, '%Y-%m-%d').date()
    except (TypeError, ValueError):
        raise ValidationError(f'{field} must be a date in YYYY-MM-DD format')


def get_active_zone(zone_id):
    zone = Zone.query.filter_by(id=zone_id, is_active=True).first()
    if zone is None:
        raise NotFoundError('Zone not found')
    return zone


def active_locations():
    cities = City.query.filter_by(is_active=True).order_by(City.name).all()
    return [{
        'id': city.id,
        'name': city.name,
        'zones': [{
            'id': zone.id,
            'name': zone.name,
            'delivery_fee': zone.delivery_fee,
            'delivery_days': zone.delivery_days,
        } for zone in city.zones if zone.is_active],
    } for city in cities if any(z.is_active for z in city.zones)]


# ==================== Routes - Delivery ====================

@delivery_bp.route('/locations', methods=['GET'])
def locations():
    """Active cities with their active zones"""
    return jsonify({'cities': active_locations()}), 200


@delivery_bp.route('/zones/delivery-rules', methods=['GET'])
def delivery_rules():
    """Delivery date for an order placed on a given day"""
    zone = get_active_zone(as_int(request.args.get('zone_id'), 'zone_id'))
    order_date = request.args.get('order_date')
    today = store_now().date()
    order_day = parse_date(order_date, 'order_date') if order_date else today

    working_days = zone_working_days(zone)
    delivery_day = calculate_delivery_date(order_day, zone.delivery_days, working_days)

    return jsonify({
        'zone': zone.to_dict(),
        'delivery_days': zone.delivery_days,
        'working_days': working_days or list(WEEKDAYS),
        'order_date': order_day.isoformat(),
        'delivery_date': format_delivery_date(delivery_day, today),
    }), 200


@delivery_bp.route('/zones/available-delivery-dates', methods=['GET'])
def delivery_dates():
    """Selectable delivery dates for a zone"""
    zone = get_active_zone(as_int(request.args.get('zone_id'), 'zone_id'))
    days_ahead = min(max(as_int(request.args.get('days_ahead', 14), 'days_ahead'), 1), 60)
    start = request.args.get('start_date')
    start_day = parse_date(start, 'start_date') if start else None

    return jsonify({
        'zone_id': zone.id,
        'zone_name': zone.name,
        'delivery_days': zone.delivery_days,
        'dates': available_delivery_dates(zone, start_day, days_ahead),
    }), 200


@delivery_bp.route('/check-time-window', methods=['GET'])
def time_window():
    """Whether next-day delivery is open for ordering"""
    return jsonify(check_time_window()), 200
