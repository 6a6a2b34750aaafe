from flask import Blueprint, request, jsonify, current_app
from flask_babel import gettext as _

from ..analytics import build_pricing_report, build_category_stats, quick_estimate
from ..models import CostSheet, TrashState, STATUS_FINAL
from ..permissions import VIEW_COSTSHEETS
from .utils import permission_required, error_response

analytics_blueprint = Blueprint('analytics', __name__)


def benchmark_sheets(category=None):
    """Active, finalized sheets: the population historical pricing is averaged over."""
    query = CostSheet.query.filter(
        CostSheet.trash_state == TrashState.ACTIVE,
        CostSheet.status == STATUS_FINAL
    )
    if category:
        query = query.filter(CostSheet.category == category)
    return query.all()


@analytics_blueprint.route('/api/analytics', methods=['GET'])
@permission_required(VIEW_COSTSHEETS)
def pricing_analytics():
    category = request.args.get('category') or None
    try:
        return jsonify(build_pricing_report(benchmark_sheets(category), category))
    except Exception as e:
        current_app.logger.error(f"Error building analytics: {e}")
        return error_response(_("Failed to fetch analytics"), 500)


@analytics_blueprint.route('/api/analytics/quick-estimate', methods=['GET'])
@permission_required(VIEW_COSTSHEETS)
def quick_estimate_route():
    category = request.args.get('category')
    if not category:
        return error_response(_("category is required"), 400)
    mode = request.args.get('mode', 'sqft')
    if mode not in ('sqft', 'linft'):
        return error_response(_("mode must be 'sqft' or 'linft'"), 400)

    stats = build_category_stats(benchmark_sheets(category)).get(category)
    result = quick_estimate(stats, request.args.get('footage'), mode)
    result['category'] = category
    result['sample_size'] = stats.count if stats else 0
    return jsonify(result)
