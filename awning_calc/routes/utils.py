import json
from datetime import date, datetime
from functools import wraps

from flask import current_app, jsonify, session
from flask_babel import gettext as _

from ..admin_config import load_admin_config, settings_from_config, include_projection_for
from ..models import db, User, ActivityLog, MaterialLine, FabricLine, LaborLine, RecapLine
from ..permissions import has_permission
from ..pricing import (
    CostInputs, MaterialInput, FabricInput, LaborInput, RecapInput, SiteCosts,
    compute_totals, find_negative_inputs, to_number
)


def error_response(message, status=400):
    return jsonify({'status': 'error', 'message': message}), status


# ----------------------------
# Identity & Permissions
# ----------------------------
def current_user():
    """Signed-in, active user for this request, or None."""
    user_id = session.get('user_id')
    if not user_id:
        return None
    user = db.session.get(User, user_id)
    if not user or not user.is_active:
        return None
    return user


def user_display_name(user):
    if user is None:
        return 'Unknown'
    return user.name or user.email or 'Unknown'


def permission_required(permission):
    """401 without a signed-in user, 403 when the user's role lacks `permission`."""
    def decorator(view):
        @wraps(view)
        def wrapped(*args, **kwargs):
            user = current_user()
            if user is None:
                return error_response(_("Unauthorized"), 401)
            if not has_permission(user.role, permission):
                current_app.logger.info("User %s (%s) denied %s", user.id, user.role, permission)
                return error_response(_("Forbidden: Insufficient permissions"), 403)
            return view(*args, **kwargs)
        return wrapped
    return decorator


def log_activity(cost_sheet, action, description=None, changes=None, user=None):
    """
    Add an activity entry to the current session; it commits or rolls back
    with the caller's change. Changes that cannot be serialized are dropped
    from the entry with a warning.
    """
    serialized = None
    if changes is not None:
        try:
            serialized = json.dumps(changes, default=str)
        except (TypeError, ValueError) as e:
            current_app.logger.warning("Dropped changes of activity '%s' for cost sheet %s: %s",
                                       action, getattr(cost_sheet, 'id', None), e)
    db.session.add(ActivityLog(
        cost_sheet_id=cost_sheet.id,
        user_id=user.id if user is not None else None,
        action=action,
        description=description,
        changes=serialized
    ))


# ----------------------------
# Payload Helpers
# ----------------------------
def parse_date(value):
    if value in (None, ''):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    for fmt in ('%Y-%m-%d', '%m/%d/%Y', '%d/%m/%Y'):
        try:
            return datetime.strptime(text[:10], fmt).date()
        except ValueError:
            continue
    try:
        return datetime.fromisoformat(text.replace('Z', '+00:00')).date()
    except ValueError:
        return None


def optional_float(value):
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return to_number(value)


def _flag(value, default=True):
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() in ('1', 'true', 'yes', 'on')
    return bool(value)


def apply_header(sheet, data, partial=False):
    """Copy scalar fields from a request body onto a cost sheet row."""
    for name in sheet.HEADER_FIELDS:
        if name in data:
            value = data.get(name)
            setattr(sheet, name, value.strip() if isinstance(value, str) else value)
        elif not partial and name != 'category':
            setattr(sheet, name, None)
    if not sheet.category:
        sheet.category = 'Other'

    for name in sheet.INPUT_FIELDS:
        if name in data:
            setattr(sheet, name, optional_float(data.get(name)))
        elif not partial:
            setattr(sheet, name, None)

    # A sheet's own to_dict() carries both keys; the entered value wins
    for key, column in sheet.FOOTAGE_FIELDS:
        source = column if column in data else key
        if source in data:
            setattr(sheet, column, optional_float(data.get(source)))
        elif not partial:
            setattr(sheet, column, None)

    for name in ('inquiry_date', 'due_date'):
        if name in data:
            setattr(sheet, name, parse_date(data.get(name)))

    if data.get('outcome'):
        sheet.set_outcome(data['outcome'])


def build_material(item):
    return MaterialLine(
        description=(item.get('description') or '').strip(),
        length=optional_float(item.get('length')),
        qty=to_number(item.get('qty')),
        unit_price=to_number(item.get('unit_price')),
        sales_tax=optional_float(item.get('sales_tax')),
        freight=optional_float(item.get('freight'))
    )


def build_fabric(item):
    return FabricLine(
        name=(item.get('name') or '').strip(),
        yards=to_number(item.get('yards')),
        price_per_yard=to_number(item.get('price_per_yard')),
        sales_tax=optional_float(item.get('sales_tax')),
        freight=optional_float(item.get('freight'))
    )


def build_labor(item):
    people = optional_float(item.get('people'))
    return LaborLine(
        type=(item.get('type') or '').strip(),
        description=item.get('description'),
        hours=to_number(item.get('hours')),
        people=1 if people is None else people,
        rate=optional_float(item.get('rate')),
        is_fabrication=_flag(item.get('is_fabrication'))
    )


def build_recap(item):
    return RecapLine(
        name=(item.get('name') or '').strip(),
        width=optional_float(item.get('width')),
        length=optional_float(item.get('length')),
        fabric_yard=optional_float(item.get('fabric_yard')),
        linear_ft=optional_float(item.get('linear_ft')),
        sq_ft=optional_float(item.get('sq_ft'))
    )


LINE_COLLECTIONS = (
    ('materials', build_material),
    ('fabric_lines', build_fabric),
    ('labor_lines', build_labor),
    ('recap_lines', build_recap),
)


def replace_lines(sheet, data, only_present=False):
    """
    Replace the sheet's line collections wholesale from the request body.
    With only_present, collections missing from the body are left alone.
    """
    for key, builder in LINE_COLLECTIONS:
        if only_present and key not in data:
            continue
        items = data.get(key) or []
        setattr(sheet, key, [builder(item) for item in items if isinstance(item, dict)])


# ----------------------------
# Recalculation
# ----------------------------
def cost_inputs_for(sheet, config):
    """Build engine inputs from a cost sheet row (or an unsaved one)."""
    return CostInputs(
        settings=settings_from_config(config),
        materials=[MaterialInput(m.description, m.qty, m.unit_price, m.sales_tax, m.freight, m.length)
                   for m in sheet.materials],
        fabric_lines=[FabricInput(f.name, f.yards, f.price_per_yard, f.sales_tax, f.freight)
                      for f in sheet.fabric_lines],
        labor_lines=[LaborInput(l.type, l.hours, l.people, l.rate,
                                True if l.is_fabrication is None else l.is_fabrication, l.description)
                     for l in sheet.labor_lines],
        recap_lines=[RecapInput(r.name, r.width, r.length, r.fabric_yard, r.linear_ft, r.sq_ft)
                     for r in sheet.recap_lines],
        site=SiteCosts(
            permit_cost=sheet.permit_cost,
            engineering_cost=sheet.engineering_cost,
            equipment_cost=sheet.equipment_cost,
            drive_time_trips=sheet.drive_time_trips,
            drive_time_hours=sheet.drive_time_hours,
            drive_time_people=sheet.drive_time_people,
            drive_time_rate=sheet.drive_time_rate,
            roundtrip_miles=sheet.roundtrip_miles,
            roundtrip_trips=sheet.roundtrip_trips,
            mileage_rate=sheet.mileage_rate,
            hotel_nights=sheet.hotel_nights,
            hotel_people=sheet.hotel_people,
            hotel_rate=sheet.hotel_rate,
            food_cost=sheet.food_cost,
        ),
        sales_tax=sheet.sales_tax,
        markup=sheet.markup,
        labor_rate=sheet.labor_rate,
        misc_qty=sheet.misc_qty,
        misc_price=sheet.misc_price,
        discount_increase=sheet.discount_increase,
        width=sheet.width,
        projection=sheet.projection,
        canopy_sq_ft=sheet.canopy_sq_ft_entered,
        awning_lin_ft=sheet.awning_lin_ft_entered,
        include_projection_in_linear_footage=include_projection_for(config, sheet.category),
    )


def recalculate_cost_sheet(sheet, config=None):
    """
    Recompute every derived total of `sheet` in place.
    Returns (totals, warnings), warnings listing negative inputs.
    """
    if config is None:
        config = load_admin_config()
    inputs = cost_inputs_for(sheet, config)
    totals = compute_totals(inputs)
    sheet.apply_totals(totals)
    return totals, find_negative_inputs(inputs)
