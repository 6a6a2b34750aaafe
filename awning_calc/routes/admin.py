import json
import io
from datetime import datetime
from flask import Blueprint, request, send_file, jsonify, current_app
from flask_babel import gettext as _

from ..admin_config import (
    AdminConfigError, load_admin_config, save_admin_config, reset_admin_config, validate_config
)
from ..models import db, User, CostSheet, ActivityLog, AdminSetting, TrashState, STATUS_FINAL, STATUS_DRAFT
from ..permissions import VIEW_ADMIN, EDIT_SETTINGS, DANGER_ZONE, is_valid_role, PENDING
from .utils import (
    current_user, permission_required, error_response, apply_header, replace_lines,
    recalculate_cost_sheet, parse_date
)

admin_blueprint = Blueprint('admin', __name__)

BACKUP_VERSION = '1.0'


def read_json_upload(file):
    """Decode an uploaded JSON document, tolerating a UTF-8 BOM."""
    file_contents = file.read()
    if file_contents.startswith(b'\xef\xbb\xbf'):
        json_str = file_contents[3:].decode('utf-8')
    else:
        try:
            json_str = file_contents.decode('utf-8')
        except UnicodeDecodeError:
            json_str = file_contents.decode('utf-8', errors='ignore')
    return json.loads(json_str)


def json_download(data, filename):
    mem = io.BytesIO()
    mem.write(json.dumps(data, indent=4, ensure_ascii=False, default=str).encode('utf-8'))
    mem.seek(0)
    return send_file(mem, as_attachment=True, download_name=filename, mimetype='application/json')


# ----------------------------
# Admin Configuration
# ----------------------------
@admin_blueprint.route('/api/admin/config', methods=['GET'])
@permission_required(VIEW_ADMIN)
def get_config():
    return jsonify(load_admin_config())


@admin_blueprint.route('/api/admin/config', methods=['PUT'])
@permission_required(EDIT_SETTINGS)
def update_config():
    config = request.get_json(silent=True)
    try:
        merged = save_admin_config(config)
        db.session.commit()
        current_app.logger.info("Admin configuration updated by user %s", current_user().id)
        return jsonify(merged)
    except AdminConfigError as e:
        db.session.rollback()
        return error_response(str(e), 400)


@admin_blueprint.route('/api/admin/config/reset', methods=['POST'])
@permission_required(EDIT_SETTINGS)
def reset_config():
    config = reset_admin_config()
    db.session.commit()
    current_app.logger.info("Admin configuration reset to defaults by user %s", current_user().id)
    return jsonify(config)


@admin_blueprint.route('/api/admin/config/export', methods=['GET'])
@permission_required(VIEW_ADMIN)
def export_config():
    filename = f"awning-calculator-config-{datetime.now().strftime('%Y-%m-%d')}.json"
    return json_download(load_admin_config(), filename)


@admin_blueprint.route('/api/admin/config/import', methods=['POST'])
@permission_required(EDIT_SETTINGS)
def import_config():
    try:
        if 'file' in request.files:
            config = read_json_upload(request.files['file'])
        else:
            config = request.get_json(silent=True)
        validate_config(config)
    except (ValueError, AdminConfigError) as e:
        return error_response(_("Invalid config file: %(error)s", error=str(e)), 400)

    merged = save_admin_config(config)
    db.session.commit()
    return jsonify(merged)


# ----------------------------
# Backup & Restore
# ----------------------------
@admin_blueprint.route('/api/admin/backup', methods=['GET'])
@permission_required(VIEW_ADMIN)
def backup_db():
    """Download every user, cost sheet (with its lines), activity entry and setting as JSON."""
    users = User.query.order_by(User.id).all()
    sheets = CostSheet.query.order_by(CostSheet.id).all()
    logs = ActivityLog.query.order_by(ActivityLog.id).all()
    settings = AdminSetting.query.order_by(AdminSetting.id).all()

    data = {
        'version': BACKUP_VERSION,
        'timestamp': datetime.now().isoformat(),
        'database_type': 'postgresql' if 'postgresql' in str(db.engine.url) else 'sqlite',
        'users': [u.to_dict() for u in users],
        'cost_sheets': [s.to_dict() for s in sheets],
        'activity_logs': [l.to_dict() for l in logs],
        'admin_settings': [s.to_dict() for s in settings],
        'statistics': {
            'users': len(users),
            'cost_sheets': len(sheets),
            'activity_logs': len(logs),
            'admin_settings': len(settings)
        }
    }

    current_app.logger.info("Backup created with %s cost sheet(s)", len(sheets))
    filename = f"awning_calc_backup_{datetime.now().strftime('%Y%m%d_%H%M%S')}.json"
    return json_download(data, filename)


def _restore_user(item):
    role = item.get('role')
    return User(
        email=item['email'].strip().lower(),
        name=item.get('name'),
        role=role if is_valid_role(role) else PENDING,
        is_active=item.get('is_active', True)
    )


def _restore_cost_sheet(item, config, user_ids):
    sheet = CostSheet(id=item.get('id'), user_id=user_ids.get(item.get('user_id')))
    apply_header(sheet, item)
    replace_lines(sheet, item)
    sheet.status = STATUS_DRAFT if item.get('status') == STATUS_DRAFT else STATUS_FINAL
    if item.get('trash_state') == TrashState.TRASHED.value:
        sheet.trash_state = TrashState.TRASHED
        sheet.deleted_at = _parse_timestamp(item.get('deleted_at')) or datetime.utcnow()
        sheet.deleted_by = user_ids.get(item.get('deleted_by'))
    created_at = _parse_timestamp(item.get('created_at'))
    if created_at:
        sheet.created_at = created_at
    recalculate_cost_sheet(sheet, config)
    return sheet


def _restore_activity_log(item, user_ids):
    changes = item.get('changes')
    return ActivityLog(
        id=item.get('id'),
        cost_sheet_id=item['cost_sheet_id'],
        user_id=user_ids.get(item.get('user_id')),
        action=item['action'],
        description=item.get('description'),
        changes=json.dumps(changes) if changes is not None else None,
        created_at=_parse_timestamp(item.get('created_at')) or datetime.utcnow()
    )


def _parse_timestamp(value):
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value))
    except ValueError:
        parsed = parse_date(value)
        return datetime.combine(parsed, datetime.min.time()) if parsed else None


@admin_blueprint.route('/api/admin/restore', methods=['POST'])
@permission_required(DANGER_ZONE)
def restore_db():
    file = request.files.get('file')
    if not file:
        return error_response(_("No file uploaded"), 400)

    try:
        data = read_json_upload(file)
    except ValueError as e:
        return error_response(_("Invalid backup file: %(error)s", error=str(e)), 400)

    version = data.get('version', BACKUP_VERSION)
    if version != BACKUP_VERSION:
        return error_response(_("Unsupported backup version: %(version)s", version=version), 400)

    clear_existing = request.form.get('clear_existing') in ('on', 'true', '1')
    actor = current_user()

    try:
        if clear_existing:
            # Reverse dependency order; the restoring user is kept so the session stays valid
            for sheet in CostSheet.query.all():
                db.session.delete(sheet)
            AdminSetting.query.delete()
            User.query.filter(User.id != actor.id).delete()
            db.session.flush()

        counts = {'users': 0, 'admin_settings': 0, 'cost_sheets': 0, 'activity_logs': 0}

        # Backup user id -> local user id; accounts are matched by e-mail
        user_ids = {}
        for item in data.get('users', []):
            email = item['email'].strip().lower()
            user = User.query.filter_by(email=email).first()
            if user is None:
                user = _restore_user(item)
                db.session.add(user)
                db.session.flush()
                counts['users'] += 1
            if item.get('id') is not None:
                user_ids[item['id']] = user.id

        for item in data.get('admin_settings', []):
            if AdminSetting.query.filter_by(key=item.get('key')).first():
                continue
            db.session.add(AdminSetting(key=item['key'], value=json.dumps(item.get('value'))))
            counts['admin_settings'] += 1
        db.session.flush()

        config = load_admin_config()
        for item in data.get('cost_sheets', []):
            if item.get('id') and db.session.get(CostSheet, item['id']):
                continue
            db.session.add(_restore_cost_sheet(item, config, user_ids))
            counts['cost_sheets'] += 1
        db.session.flush()

        for item in data.get('activity_logs', []):
            if item.get('id') and db.session.get(ActivityLog, item['id']):
                continue
            if not db.session.get(CostSheet, item.get('cost_sheet_id')):
                continue
            db.session.add(_restore_activity_log(item, user_ids))
            counts['activity_logs'] += 1

        db.session.commit()
        current_app.logger.info("Restored backup v%s: %s", version, counts)
        return jsonify({'status': 'success', 'version': version, 'counts': counts})

    except (KeyError, ValueError) as e:
        db.session.rollback()
        return error_response(_("Invalid backup file: %(error)s", error=str(e)), 400)
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Restore failed: {e}")
        return error_response(_("Restore failed: %(error)s", error=str(e)), 500)
