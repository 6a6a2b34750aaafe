"""
Recompute stored totals of every cost sheet, e.g. after changing category
settings in the admin configuration.
"""
import sys
import os

# Add parent directory to path to allow importing awning_calc
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from awning_calc import create_app
from awning_calc.admin_config import load_admin_config
from awning_calc.models import db, CostSheet
from awning_calc.routes.utils import recalculate_cost_sheet

app = create_app()

with app.app_context():
    config = load_admin_config()
    sheets = CostSheet.query.order_by(CostSheet.id).all()
    print(f"{'ID':<6} | {'Category':<28} | {'Before':>12} | {'After':>12}")
    print("-" * 68)
    for sheet in sheets:
        before = sheet.total_price_to_client or 0
        recalculate_cost_sheet(sheet, config)
        after = sheet.total_price_to_client
        marker = '' if abs(before - after) < 0.01 else '  *'
        print(f"{sheet.id:<6} | {sheet.category[:28]:<28} | {before:>12,.2f} | {after:>12,.2f}{marker}")
    db.session.commit()
    print(f"\nRecalculated {len(sheets)} cost sheet(s).")
