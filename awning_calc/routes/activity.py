from flask import Blueprint, request, jsonify
from flask_babel import gettext as _

from ..models import ActivityLog
from ..permissions import VIEW_COSTSHEETS
from .utils import permission_required, error_response

activity_blueprint = Blueprint('activity', __name__)


@activity_blueprint.route('/api/activity-logs', methods=['GET'])
@permission_required(VIEW_COSTSHEETS)
def activity_logs():
    cost_sheet_id = request.args.get('cost_sheet_id', type=int)
    if not cost_sheet_id:
        return error_response(_("cost_sheet_id is required"), 400)

    logs = ActivityLog.query.filter_by(cost_sheet_id=cost_sheet_id)\
        .order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc()).all()
    return jsonify([log.to_dict() for log in logs])
