from flask import Blueprint, jsonify
from sqlalchemy import func

from ..models import db, CostSheet, TrashState, STATUS_DRAFT, STATUS_FINAL
from ..permissions import VIEW_COSTSHEETS
from .utils import permission_required

main_blueprint = Blueprint('main', __name__)


# Homepage - Dashboard
@main_blueprint.route('/')
@permission_required(VIEW_COSTSHEETS)
def index():
    active = CostSheet.trash_state == TrashState.ACTIVE

    outcome_counts = dict(
        db.session.query(CostSheet.outcome, func.count(CostSheet.id))
        .filter(active, CostSheet.status == STATUS_FINAL)
        .group_by(CostSheet.outcome).all()
    )
    category_counts = dict(
        db.session.query(CostSheet.category, func.count(CostSheet.id))
        .filter(active, CostSheet.status == STATUS_FINAL)
        .group_by(CostSheet.category).all()
    )
    quoted_total = db.session.query(func.coalesce(func.sum(CostSheet.total_price_to_client), 0))\
        .filter(active, CostSheet.status == STATUS_FINAL).scalar()
    won_total = db.session.query(func.coalesce(func.sum(CostSheet.total_price_to_client), 0))\
        .filter(active, CostSheet.status == STATUS_FINAL, CostSheet.outcome == 'Won').scalar()

    recent = CostSheet.query.filter(active).order_by(CostSheet.updated_at.desc(), CostSheet.id.desc()).limit(10).all()

    return jsonify({
        'final_count': sum(outcome_counts.values()),
        'draft_count': CostSheet.query.filter(active, CostSheet.status == STATUS_DRAFT).count(),
        'trash_count': CostSheet.query.filter(CostSheet.trash_state == TrashState.TRASHED).count(),
        'by_outcome': {outcome: outcome_counts.get(outcome, 0) for outcome in ('Won', 'Lost', 'Unknown')},
        'by_category': category_counts,
        'quoted_total': quoted_total,
        'won_total': won_total,
        'recent': [s.to_dict(include_lines=False) for s in recent]
    })
