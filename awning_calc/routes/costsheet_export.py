import io
from datetime import datetime

import pandas as pd
from flask import Blueprint, send_file

from ..models import CostSheet
from ..permissions import VIEW_COSTSHEETS
from .costsheets import filtered_cost_sheets
from .utils import permission_required

costsheet_export_blueprint = Blueprint('costsheet_export', __name__)

XLSX_MIMETYPE = 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet'

SUMMARY_COLUMNS = [
    ('id', 'ID'),
    ('inquiry_date', 'Inquiry Date'),
    ('due_date', 'Due Date'),
    ('category', 'Category'),
    ('customer', 'Customer'),
    ('project', 'Project'),
    ('job_site', 'Job Site'),
    ('sales_rep', 'Sales Rep'),
    ('estimator', 'Estimator'),
    ('status', 'Status'),
    ('outcome', 'Outcome'),
    ('width', 'Width'),
    ('projection', 'Projection'),
    ('canopy_sq_ft', 'Canopy Sq Ft'),
    ('awning_lin_ft', 'Awning Lin Ft'),
    ('total_materials', 'Total Materials'),
    ('total_fabric', 'Total Fabric'),
    ('total_fabrication_labor', 'Fabrication Labor'),
    ('total_installation_labor', 'Installation Labor'),
    ('total_labor', 'Total Labor'),
    ('subtotal_before_markup', 'Subtotal Before Markup'),
    ('markup', 'Markup'),
    ('total_with_markup', 'Total With Markup'),
    ('total_other_requirements', 'Other Requirements'),
    ('grand_total', 'Grand Total'),
    ('discount_increase', 'Discount/Increase'),
    ('total_price_to_client', 'Total Price to Client'),
    ('price_per_sq_ft_pre_delivery', 'Price/Sq Ft (Pre-Delivery)'),
    ('price_per_lin_ft_pre_delivery', 'Price/Lin Ft (Pre-Delivery)'),
    ('price_per_sq_ft', 'Price/Sq Ft'),
    ('price_per_lin_ft', 'Price/Lin Ft'),
]

LINE_SHEETS = [
    ('Materials', 'materials', ['description', 'length', 'qty', 'unit_price', 'sales_tax', 'freight', 'total']),
    ('Fabric', 'fabric_lines', ['name', 'yards', 'price_per_yard', 'sales_tax', 'freight', 'total']),
    ('Labor', 'labor_lines', ['type', 'description', 'hours', 'people', 'rate', 'is_fabrication', 'total']),
    ('Recap', 'recap_lines', ['name', 'width', 'length', 'fabric_yard', 'linear_ft', 'sq_ft']),
]


def summary_frame(sheets):
    rows = []
    for sheet in sheets:
        data = sheet.to_dict(include_lines=False)
        rows.append({label: data.get(key) for key, label in SUMMARY_COLUMNS})
    return pd.DataFrame(rows, columns=[label for _, label in SUMMARY_COLUMNS])


def cost_sheet_workbook(sheet):
    """Workbook bytes for one cost sheet: a summary plus one worksheet per line collection."""
    data = sheet.to_dict()
    buffer = io.BytesIO()
    with pd.ExcelWriter(buffer, engine='openpyxl') as writer:
        summary = pd.DataFrame(
            [(label, data.get(key)) for key, label in SUMMARY_COLUMNS],
            columns=['Field', 'Value']
        )
        summary.to_excel(writer, sheet_name='Summary', index=False)
        for sheet_name, key, columns in LINE_SHEETS:
            pd.DataFrame(data[key], columns=columns).to_excel(writer, sheet_name=sheet_name, index=False)
    buffer.seek(0)
    return buffer


def cost_sheets_workbook(sheets):
    buffer = io.BytesIO()
    with pd.ExcelWriter(buffer, engine='openpyxl') as writer:
        summary_frame(sheets).to_excel(writer, sheet_name='Cost Sheets', index=False)
    buffer.seek(0)
    return buffer


@costsheet_export_blueprint.route('/api/costsheets/export', methods=['GET'])
@permission_required(VIEW_COSTSHEETS)
def export_cost_sheets():
    sheets = filtered_cost_sheets().all()
    filename = f"cost_sheets_{datetime.now().strftime('%Y%m%d_%H%M%S')}.xlsx"
    return send_file(
        cost_sheets_workbook(sheets),
        as_attachment=True,
        download_name=filename,
        mimetype=XLSX_MIMETYPE
    )


@costsheet_export_blueprint.route('/api/costsheets/<int:sheet_id>/export', methods=['GET'])
@permission_required(VIEW_COSTSHEETS)
def export_cost_sheet(sheet_id):
    sheet = CostSheet.query.get_or_404(sheet_id)
    filename = f"cost_sheet_{sheet.id}_{datetime.now().strftime('%Y%m%d')}.xlsx"
    return send_file(
        cost_sheet_workbook(sheet),
        as_attachment=True,
        download_name=filename,
        mimetype=XLSX_MIMETYPE
    )
