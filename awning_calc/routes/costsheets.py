from flask import Blueprint, request, jsonify, current_app
from flask_babel import gettext as _
from sqlalchemy import or_

from ..admin_config import load_admin_config
from ..analytics import build_category_stats, price_guardrail
from ..models import db, CostSheet, TrashState, InvalidTransitionError, STATUS_DRAFT, STATUS_FINAL
from ..permissions import (
    VIEW_COSTSHEETS, CREATE_COSTSHEETS, EDIT_COSTSHEETS, DELETE_COSTSHEETS,
    PERMANENT_DELETE, EMPTY_TRASH, DANGER_ZONE, has_permission
)
from .utils import (
    current_user, user_display_name, permission_required, log_activity, error_response,
    apply_header, replace_lines, recalculate_cost_sheet
)

costsheets_blueprint = Blueprint('costsheets', __name__)


def filtered_cost_sheets(args=None):
    """Cost sheet query honoring the list filters of the request."""
    args = args if args is not None else request.args
    query = CostSheet.query

    if args.get('trash', '').lower() == 'true':
        query = query.filter(CostSheet.trash_state == TrashState.TRASHED)
    else:
        query = query.filter(CostSheet.trash_state == TrashState.ACTIVE)

    if args.get('drafts_only', '').lower() == 'true':
        query = query.filter(CostSheet.status == STATUS_DRAFT)
    elif args.get('include_drafts', '').lower() != 'true':
        query = query.filter(CostSheet.status == STATUS_FINAL)

    if args.get('category'):
        query = query.filter(CostSheet.category == args['category'])
    if args.get('outcome'):
        query = query.filter(CostSheet.outcome == args['outcome'])
    search = (args.get('search') or '').strip()
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(
            CostSheet.customer.ilike(pattern),
            CostSheet.project.ilike(pattern),
            CostSheet.job_site.ilike(pattern)
        ))
    return query.order_by(CostSheet.created_at.desc(), CostSheet.id.desc())


# ----------------------------
# Listing & Detail
# ----------------------------
@costsheets_blueprint.route('/api/costsheets', methods=['GET'])
@permission_required(VIEW_COSTSHEETS)
def list_cost_sheets():
    include_lines = request.args.get('include_lines', 'true').lower() == 'true'
    sheets = filtered_cost_sheets().all()
    return jsonify([s.to_dict(include_lines=include_lines) for s in sheets])


@costsheets_blueprint.route('/api/costsheets/<int:sheet_id>', methods=['GET'])
@permission_required(VIEW_COSTSHEETS)
def get_cost_sheet(sheet_id):
    sheet = CostSheet.query.get_or_404(sheet_id)
    data = sheet.to_dict()
    data['activity_logs'] = [log.to_dict() for log in sheet.activity_logs]
    return jsonify(data)


# ----------------------------
# Create & Update
# ----------------------------
@costsheets_blueprint.route('/api/costsheets', methods=['POST'])
@permission_required(CREATE_COSTSHEETS)
def create_cost_sheet():
    data = request.get_json(silent=True) or {}
    user = current_user()
    try:
        sheet = CostSheet(user_id=user.id, status=STATUS_FINAL)
        apply_header(sheet, data)
        sheet.estimator = sheet.estimator or user_display_name(user)
        replace_lines(sheet, data)
        totals, warnings = recalculate_cost_sheet(sheet)

        db.session.add(sheet)
        db.session.flush()
        log_activity(sheet, 'created', f"Created by {user_display_name(user)}",
                     {'customer': sheet.customer, 'project': sheet.project, 'category': sheet.category},
                     user=user)
        db.session.commit()

        result = sheet.to_dict()
        result['warnings'] = warnings
        return jsonify(result), 201
    except ValueError as e:
        db.session.rollback()
        return error_response(str(e), 400)
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Error creating cost sheet: {e}")
        return error_response(_("Failed to create cost sheet"), 500)


@costsheets_blueprint.route('/api/costsheets/<int:sheet_id>', methods=['PUT'])
@permission_required(EDIT_COSTSHEETS)
def update_cost_sheet(sheet_id):
    sheet = CostSheet.query.get_or_404(sheet_id)
    data = request.get_json(silent=True) or {}
    user = current_user()
    previous = {
        'customer': sheet.customer,
        'project': sheet.project,
        'category': sheet.category,
        'grand_total': sheet.grand_total
    }
    try:
        apply_header(sheet, data)
        replace_lines(sheet, data)
        totals, warnings = recalculate_cost_sheet(sheet)
        log_activity(sheet, 'updated', f"Updated by {user_display_name(user)}", {
            'previous': previous,
            'updated': {
                'customer': sheet.customer,
                'project': sheet.project,
                'category': sheet.category,
                'grand_total': sheet.grand_total
            }
        }, user=user)
        db.session.commit()

        result = sheet.to_dict()
        result['warnings'] = warnings
        return jsonify(result)
    except ValueError as e:
        db.session.rollback()
        return error_response(str(e), 400)
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Error updating cost sheet {sheet_id}: {e}")
        return error_response(_("Failed to update cost sheet"), 500)


@costsheets_blueprint.route('/api/costsheets/autosave', methods=['POST'])
@permission_required(CREATE_COSTSHEETS)
def autosave_cost_sheet():
    """
    Save work in progress. Without an id a new DRAFT is created; with an id
    the user's own non-trashed sheet is updated and only the line
    collections present in the body are replaced.
    """
    data = request.get_json(silent=True) or {}
    user = current_user()
    try:
        sheet_id = data.get('id')
        if sheet_id:
            sheet = CostSheet.query.filter_by(
                id=sheet_id, user_id=user.id, trash_state=TrashState.ACTIVE
            ).first()
            if not sheet:
                return error_response(_("Cost sheet not found"), 404)
            apply_header(sheet, data, partial=True)
            replace_lines(sheet, data, only_present=True)
            created = False
        else:
            sheet = CostSheet(user_id=user.id, status=STATUS_DRAFT)
            apply_header(sheet, data)
            replace_lines(sheet, data)
            db.session.add(sheet)
            created = True

        sheet.estimator = sheet.estimator or user_display_name(user)
        recalculate_cost_sheet(sheet)
        db.session.flush()
        if created:
            log_activity(sheet, 'created', f"Draft started by {user_display_name(user)}", user=user)
        db.session.commit()
        return jsonify(sheet.to_dict()), 201 if created else 200
    except ValueError as e:
        db.session.rollback()
        return error_response(str(e), 400)
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Error autosaving cost sheet: {e}")
        return error_response(_("Failed to save draft"), 500)


@costsheets_blueprint.route('/api/costsheets/calculate', methods=['POST'])
@permission_required(VIEW_COSTSHEETS)
def calculate_cost_sheet():
    """Preview totals for an unsaved sheet together with its price guardrail."""
    data = request.get_json(silent=True) or {}
    try:
        config = load_admin_config()
        sheet = CostSheet()
        apply_header(sheet, data)
        replace_lines(sheet, data)
        totals, warnings = recalculate_cost_sheet(sheet, config)

        history = CostSheet.query.filter(
            CostSheet.trash_state == TrashState.ACTIVE,
            CostSheet.status == STATUS_FINAL,
            CostSheet.category == sheet.category
        ).all()
        stats = build_category_stats(history).get(sheet.category)

        return jsonify({
            'totals': totals.to_dict(),
            'warnings': warnings,
            'guardrail': {
                'sq_ft': price_guardrail(totals.price_per_sq_ft_pre_delivery,
                                         stats.won_avg_price_per_sq_ft if stats else None),
                'lin_ft': price_guardrail(totals.price_per_lin_ft_pre_delivery,
                                          stats.won_avg_price_per_lin_ft if stats else None),
            }
        })
    except ValueError as e:
        return error_response(str(e), 400)
    finally:
        db.session.rollback()


# ----------------------------
# Lifecycle
# ----------------------------
@costsheets_blueprint.route('/api/costsheets/<int:sheet_id>/finalize', methods=['POST'])
@permission_required(EDIT_COSTSHEETS)
def finalize_cost_sheet(sheet_id):
    sheet = CostSheet.query.get_or_404(sheet_id)
    user = current_user()
    try:
        sheet.finalize()
        recalculate_cost_sheet(sheet)
        log_activity(sheet, 'finalized', f"Finalized by {user_display_name(user)}", user=user)
        db.session.commit()
        return jsonify(sheet.to_dict())
    except InvalidTransitionError as e:
        db.session.rollback()
        return error_response(str(e), 409)


@costsheets_blueprint.route('/api/costsheets/<int:sheet_id>/outcome', methods=['PATCH'])
@permission_required(EDIT_COSTSHEETS)
def set_cost_sheet_outcome(sheet_id):
    sheet = CostSheet.query.get_or_404(sheet_id)
    data = request.get_json(silent=True) or {}
    user = current_user()
    previous = sheet.outcome
    try:
        sheet.set_outcome(data.get('outcome'))
    except ValueError as e:
        return error_response(str(e), 400)
    log_activity(sheet, 'outcome_changed', f"Outcome set to {sheet.outcome} by {user_display_name(user)}",
                 {'previous': previous, 'updated': sheet.outcome}, user=user)
    db.session.commit()
    return jsonify(sheet.to_dict(include_lines=False))


@costsheets_blueprint.route('/api/costsheets/<int:sheet_id>', methods=['DELETE'])
@permission_required(DELETE_COSTSHEETS)
def delete_cost_sheet(sheet_id):
    """Move a sheet to the trash, or remove it for good with ?permanent=true."""
    sheet = CostSheet.query.get_or_404(sheet_id)
    user = current_user()

    if request.args.get('permanent', '').lower() == 'true':
        if not has_permission(user.role, PERMANENT_DELETE):
            return error_response(_("Forbidden: Super Admin access required"), 403)
        try:
            db.session.delete(sheet)
            db.session.commit()
            current_app.logger.info("Cost sheet %s permanently deleted by user %s", sheet_id, user.id)
            return jsonify({'status': 'success', 'permanent': True})
        except Exception as e:
            db.session.rollback()
            current_app.logger.error(f"Error deleting cost sheet {sheet_id}: {e}")
            return error_response(_("Failed to delete cost sheet"), 500)

    try:
        sheet.move_to_trash(user)
    except InvalidTransitionError as e:
        return error_response(str(e), 409)
    log_activity(sheet, 'deleted', f"Moved to trash by {user_display_name(user)}", user=user)
    db.session.commit()
    return jsonify({'status': 'success', 'deleted_at': sheet.deleted_at.isoformat()})


@costsheets_blueprint.route('/api/costsheets/<int:sheet_id>/restore', methods=['POST'])
@permission_required(DELETE_COSTSHEETS)
def restore_cost_sheet(sheet_id):
    sheet = CostSheet.query.get_or_404(sheet_id)
    user = current_user()
    try:
        sheet.restore()
    except InvalidTransitionError as e:
        return error_response(str(e), 409)
    recalculate_cost_sheet(sheet)
    log_activity(sheet, 'restored', f"Restored from trash by {user_display_name(user)}", user=user)
    db.session.commit()
    return jsonify({'status': 'success', 'restored': True, 'cost_sheet': sheet.to_dict(include_lines=False)})


# ----------------------------
# Trash
# ----------------------------
@costsheets_blueprint.route('/api/costsheets/trash', methods=['GET'])
@permission_required(VIEW_COSTSHEETS)
def list_trash():
    sheets = CostSheet.query.filter_by(trash_state=TrashState.TRASHED)\
        .order_by(CostSheet.deleted_at.desc()).all()
    return jsonify([s.to_dict(include_lines=False) for s in sheets])


@costsheets_blueprint.route('/api/costsheets/trash', methods=['DELETE'])
@permission_required(EMPTY_TRASH)
def empty_trash():
    try:
        sheets = CostSheet.query.filter_by(trash_state=TrashState.TRASHED).all()
        for sheet in sheets:
            db.session.delete(sheet)
        db.session.commit()
        count = len(sheets)
        current_app.logger.info("Trash emptied: %s cost sheet(s) permanently deleted", count)
        return jsonify({
            'status': 'success',
            'deleted_count': count,
            'message': _("%(count)s cost sheet(s) permanently deleted", count=count)
        })
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Error emptying trash: {e}")
        return error_response(_("Failed to empty trash"), 500)


@costsheets_blueprint.route('/api/costsheets/all', methods=['DELETE'])
@permission_required(DANGER_ZONE)
def delete_all_cost_sheets():
    try:
        sheets = CostSheet.query.all()
        for sheet in sheets:
            db.session.delete(sheet)
        db.session.commit()
        count = len(sheets)
        current_app.logger.warning("All cost sheet data deleted: %s cost sheet(s)", count)
        return jsonify({
            'status': 'success',
            'deleted_count': count,
            'message': _("%(count)s cost sheet(s) permanently deleted", count=count)
        })
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Error deleting all cost sheets: {e}")
        return error_response(_("Failed to delete all cost sheet data"), 500)
