import os
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, date, timedelta

import pandas as pd
from flask import Blueprint, request, jsonify, current_app
from flask_babel import gettext as _

from ..models import db, CostSheet, STATUS_FINAL
from ..permissions import CREATE_COSTSHEETS
from ..pricing import to_number
from .utils import (
    current_user, user_display_name, permission_required, log_activity, error_response,
    apply_header, replace_lines, recalculate_cost_sheet
)

costsheet_import_blueprint = Blueprint('costsheet_import', __name__)

ALLOWED_EXTENSIONS = ('.xlsx', '.xls')

# Keyword (lowercase substring) -> category, first match wins
CATEGORY_KEYWORDS = [
    ('metal awning', 'Steel Awning'),
    ('steel awning', 'Steel Awning'),
    ('aluminum awning', 'Aluminum Canopy'),
    ('fabric awning', 'Patio Awning'),
    ('cantilevered', 'Cantilevered Canopy'),
    ('hip roof', 'Hip Roof Canopy'),
    ('trellis', 'Steel Trellis'),
    ('fabric panel', 'Fabric Panel'),
    ('curtain', 'Curtains'),
    ('patio', 'Patio Awning'),
    ('umbrella', 'Umbrellas'),
    ('sail', 'Sail Shades'),
    ('retractable', 'Motorized Retractable'),
    ('bahama', 'Bahama Style'),
    ('carport', 'Carport'),
    ('recover', 'Recover'),
    ('slidewire', 'Slidewire Manual'),
    ('screen', 'Motorized Screen'),
    ('4k', '4K Trellis'),
    ('green screen', 'Green Screen'),
    ('standing seam', 'Standing Seam Awning'),
    ('louvered', 'Aluminum Louvered Awning'),
    ('wall canopy', '4K Wall Canopy'),
    ('cabana', 'Cabanas'),
]

# Keyword -> (labor type, is_fabrication)
LABOR_KEYWORDS = [
    ('survey', ('Survey', True)),
    ('shop drawings', ('Shop Drawings', True)),
    ('sewing', ('Sewing', True)),
    ('graphics', ('Graphics', True)),
    ('assembly', ('Assembly', True)),
    ('welding', ('Welding', True)),
    ('paint', ('Paint Labor', True)),
    ('installation 1', ('Installation 1', False)),
    ('installation 2', ('Installation 2', False)),
]

# Stated workbook totals checked against the recomputed ones
STATED_TOTAL_LABELS = {
    'total_materials': 'Total Materials and Supplies',
    'subtotal_before_markup': 'Total Materials, Fabric & Labor Before Markup',
    'total_with_markup': 'Total Labor and Fabric Including Markup',
    'grand_total': 'GRAND TOTAL',
    'total_price_to_client': 'Total Price to Client',
}

TOTAL_TOLERANCE = 0.01


@dataclass
class ImportResult:
    file_name: str
    success: bool = True
    data: dict = None
    stated_totals: dict = field(default_factory=dict)
    errors: list = field(default_factory=list)
    warnings: list = field(default_factory=list)

    def to_dict(self):
        return {
            'file_name': self.file_name,
            'success': self.success,
            'errors': self.errors,
            'warnings': self.warnings,
        }


# ----------------------------
# Excel Parsing Utilities
# ----------------------------

def _col(letter):
    return ord(letter.upper()) - ord('A')


def cell(df, row, col):
    """Value at zero-based (row, col), or None when empty or out of range."""
    if isinstance(col, str):
        col = _col(col)
    if row < 0 or row >= df.shape[0] or col < 0 or col >= df.shape[1]:
        return None
    value = df.iat[row, col]
    if value is None:
        return None
    if not isinstance(value, (list, dict)) and pd.isna(value):
        return None
    if isinstance(value, str) and not value.strip():
        return None
    return value


def first_value(df, row, *cols):
    for col in cols:
        value = cell(df, row, col)
        if value is not None:
            return value
    return None


def text(value):
    return '' if value is None else str(value).strip()


def find_label(df, label, start_row=0, end_row=100):
    """Zero-based (row, col) of the first cell containing `label`, case-insensitive."""
    needle = label.lower()
    for row in range(max(start_row, 0), min(end_row, df.shape[0])):
        for col in range(df.shape[1]):
            value = cell(df, row, col)
            if value is not None and needle in str(value).lower():
                return row, col
    return None


def map_category(raw):
    lowered = text(raw).lower()
    if not lowered:
        return 'Other'
    for keyword, category in CATEGORY_KEYWORDS:
        if keyword in lowered:
            return category
    return 'Other'


def parse_excel_date(value):
    """Workbook date cell (datetime, Excel serial number or text) as a date, or None."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, (int, float)):
        return (datetime(1899, 12, 30) + timedelta(days=float(value))).date()
    raw = text(value)
    for fmt in ('%Y-%m-%d', '%m/%d/%Y', '%m/%d/%y'):
        try:
            return datetime.strptime(raw, fmt).date()
        except ValueError:
            continue
    return None


def _optional(value):
    number = to_number(value)
    return number if number else None


def _parse_materials(df, start, end):
    materials = []
    for row in range(start, end + 1):
        description = text(cell(df, row, 'A'))
        if not description or 'total' in description.lower():
            continue
        qty = to_number(cell(df, row, 'B'))
        price = to_number(cell(df, row, 'C'))
        tax = to_number(cell(df, row, 'D'))
        total = to_number(first_value(df, row, 'G', 'H'))
        if qty <= 0 and price <= 0 and total <= 0:
            continue
        qty = qty or 1
        if not price and total:
            # Only a line total was entered
            price = total / (qty * (1 + (tax or 0)))
        materials.append({
            'description': description,
            'qty': qty,
            'unit_price': price,
            'sales_tax': tax or None,
        })
    return materials


def _parse_fabric(df, start, end):
    fabric_lines = []
    for row in range(start, end + 1):
        name = text(cell(df, row, 'A'))
        lowered = name.lower()
        if not name or 'total' in lowered or 'graphics' in lowered or 'fabric' not in lowered:
            continue
        yards = to_number(cell(df, row, 'B'))
        price = to_number(cell(df, row, 'C'))
        if yards <= 0 and price <= 0:
            continue
        fabric_lines.append({
            'name': name,
            'yards': yards,
            'price_per_yard': price,
            'sales_tax': to_number(cell(df, row, 'D')) or None,
        })
    return fabric_lines


def _parse_labor(df, start, end):
    labor_lines = []
    for row in range(start, end + 1):
        label = text(cell(df, row, 'A')).lower()
        if not label or 'total' in label:
            continue
        match = next((info for keyword, info in LABOR_KEYWORDS if keyword in label), None)
        if match is None:
            continue
        hours = to_number(cell(df, row, 'B'))
        people = to_number(cell(df, row, 'C')) or 1
        rate = to_number(first_value(df, row, 'E', 'F'))
        total = to_number(first_value(df, row, 'G', 'H'))
        if hours <= 0 and total <= 0:
            continue
        if not hours and rate:
            hours = total / (people * rate)
        labor_type, is_fabrication = match
        labor_lines.append({
            'type': labor_type,
            'hours': hours,
            'people': round(people),
            'rate': rate or None,
            'is_fabrication': is_fabrication,
        })
    return labor_lines


def _parse_recap(df, start):
    recap_lines = []
    for row in range(start, start + 10):
        name = text(cell(df, row, 'A'))
        lowered = name.lower()
        if lowered == 'total':
            break
        if not name or ('awning' not in lowered and 'canopy' not in lowered):
            continue
        width = to_number(cell(df, row, 'B'))
        length = to_number(cell(df, row, 'C'))
        sq_ft = to_number(first_value(df, row, 'G', 'H'))
        if width <= 0 and length <= 0 and sq_ft <= 0:
            continue
        recap_lines.append({
            'name': name,
            'width': width or None,
            'length': length or None,
            'fabric_yard': _optional(cell(df, row, 'D')),
            'linear_ft': _optional(first_value(df, row, 'E', 'F')),
            'sq_ft': sq_ft or None,
        })
    return recap_lines


def _parse_other_requirements(df, start, data):
    end = start + 20

    found = find_label(df, 'Permit', start, end)
    if found:
        data['permit_cost'] = _optional(first_value(df, found[0], 'G', 'H'))

    found = find_label(df, 'Engineering', start, end)
    if found:
        data['engineering_cost'] = _optional(first_value(df, found[0], 'G', 'H'))

    found = find_label(df, 'Equipment:', start, end)
    if found:
        data['equipment_cost'] = _optional(first_value(df, found[0], 'G', 'H'))

    found = find_label(df, 'Drive Time:', start, end)
    if found:
        row = found[0]
        data['drive_time_trips'] = round(to_number(cell(df, row, 'B')))
        data['drive_time_hours'] = to_number(cell(df, row, 'C'))
        data['drive_time_people'] = round(to_number(cell(df, row, 'D')))
        data['drive_time_rate'] = _optional(cell(df, row, 'E'))

    found = find_label(df, 'Roundtrip Distance:', start, end)
    if found:
        row = found[0]
        data['roundtrip_miles'] = to_number(cell(df, row, 'B'))
        data['roundtrip_trips'] = round(to_number(cell(df, row, 'C')))
        data['mileage_rate'] = _optional(cell(df, row, 'D'))

    found = find_label(df, 'Hotel:', start, end)
    if found:
        row = found[0]
        data['hotel_nights'] = round(to_number(cell(df, row, 'B')))
        data['hotel_people'] = round(to_number(cell(df, row, 'C')))
        data['hotel_rate'] = _optional(cell(df, row, 'D'))

    found = find_label(df, 'Food:', start, end)
    if found:
        data['food_cost'] = _optional(first_value(df, found[0], 'G', 'H'))


def parse_cost_sheet_dataframe(df, file_name):
    """
    Read a cost sheet out of the first worksheet of a legacy estimating
    workbook, loaded header-less (pd.read_excel(..., header=None)).

    Header cells sit at fixed positions; sections are located by their
    labels. Anything that cannot be found is left empty and reported as a
    warning. The returned data dict has the same shape as the JSON body of
    POST /api/costsheets.
    """
    result = ImportResult(file_name=file_name)

    if df is None or df.empty:
        result.success = False
        result.errors.append('No worksheet found in the Excel file')
        return result

    raw_category = first_value(df, 3, 'B', 'C')
    data = {
        'inquiry_date': parse_excel_date(first_value(df, 0, 'B', 'C')),
        'due_date': parse_excel_date(first_value(df, 0, 'E', 'F', 'G')),
        'customer': text(first_value(df, 1, 'B', 'C')),
        'sales_rep': text(first_value(df, 1, 'E', 'F', 'G')),
        'project': text(first_value(df, 2, 'B', 'C')),
        'category': map_category(raw_category),
        'job_site': text(first_value(df, 4, 'B', 'C')),
        'width': _optional(cell(df, 5, 'B')),
        'projection': _optional(cell(df, 5, 'D')),
        'canopy_sq_ft': _optional(first_value(df, 5, 'G', 'H')),
        'height': _optional(cell(df, 6, 'B')),
        'valance': _optional(cell(df, 6, 'D')),
        'awning_lin_ft': _optional(first_value(df, 6, 'G', 'H')),
        'materials': [],
        'fabric_lines': [],
        'labor_lines': [],
        'recap_lines': [],
    }
    for name in ('inquiry_date', 'due_date'):
        if data[name] is not None:
            data[name] = data[name].isoformat()

    materials_at = find_label(df, 'Materials:(Metal', 0, 20)
    fabric_from = materials_at[0] + 1 if materials_at else 0
    fabric_at = find_label(df, 'Fabric', fabric_from, 40)
    labor_at = find_label(df, 'Labor Hours', 0, 50)
    other_at = find_label(df, 'Other Requirements', 0, 80)
    recap_at = find_label(df, 'Recap of Canopies', 0, 100)

    if materials_at:
        start = materials_at[0] + 1
        end = fabric_at[0] - 1 if fabric_at else start + 15
        data['materials'] = _parse_materials(df, start, end)
    else:
        result.warnings.append('Materials section not found')

    if fabric_at:
        start = fabric_at[0] + 1
        end = labor_at[0] - 1 if labor_at else start + 5
        data['fabric_lines'] = _parse_fabric(df, start, end)

    if labor_at:
        start = labor_at[0] + 1
        end = other_at[0] - 1 if other_at else start + 15
        data['labor_lines'] = _parse_labor(df, start, end)
    else:
        result.warnings.append('Labor section not found')

    if other_at:
        _parse_other_requirements(df, other_at[0], data)

    with_markup_at = find_label(df, STATED_TOTAL_LABELS['total_with_markup'])
    if with_markup_at:
        markup = to_number(first_value(df, with_markup_at[0], 'D', 'E'))
        if markup:
            data['markup'] = markup

    discount_at = find_label(df, 'Discount/Increase')
    if discount_at:
        notes = text(first_value(df, discount_at[0], 'B', 'C'))
        if notes:
            data['notes'] = notes
        amount = first_value(df, discount_at[0], 'H', 'G')
        if amount is not None:
            data['discount_increase'] = to_number(amount)

    if recap_at:
        data['recap_lines'] = _parse_recap(df, recap_at[0] + 2)

    for key, label in STATED_TOTAL_LABELS.items():
        found = find_label(df, label)
        if found:
            value = first_value(df, found[0], 'H', 'G')
            if value is not None:
                result.stated_totals[key] = to_number(value)

    if not data['customer'] and not data['project']:
        result.warnings.append('No customer or project name found')
    if data['category'] == 'Other':
        result.warnings.append('Could not determine product category')
    if not result.stated_totals.get('total_price_to_client'):
        result.warnings.append('Total price to client is $0 - verify import data')

    result.data = data
    return result


def check_stated_totals(result, totals):
    """Warn for every workbook total that disagrees with the recomputed one."""
    for key, stated in result.stated_totals.items():
        computed = getattr(totals, key)
        if stated and abs(stated - computed) > TOTAL_TOLERANCE:
            label = STATED_TOTAL_LABELS[key]
            result.warnings.append(
                f"{label}: workbook shows {stated:,.2f} but line items add up to {computed:,.2f}"
            )
    return result


def parse_cost_sheet_file(path, file_name):
    try:
        df = pd.read_excel(path, sheet_name=0, header=None)
    except Exception as e:
        return ImportResult(file_name=file_name, success=False,
                            errors=[f"Failed to parse Excel file: {e}"])
    return parse_cost_sheet_dataframe(df, file_name)


# ----------------------------
# Import Route
# ----------------------------
@costsheet_import_blueprint.route('/api/costsheets/import', methods=['POST'])
@permission_required(CREATE_COSTSHEETS)
def import_cost_sheets():
    files = request.files.getlist('files')
    if not files:
        return error_response(_("No files uploaded"), 400)

    user = current_user()
    results = []
    imported = 0

    for file in files:
        file_name = file.filename or ''
        extension = os.path.splitext(file_name)[1].lower()
        if extension not in ALLOWED_EXTENSIONS:
            results.append(ImportResult(
                file_name=file_name, success=False,
                errors=[_("Invalid file type. Only .xlsx and .xls files are supported.")]
            ).to_dict())
            continue

        temp_file = tempfile.NamedTemporaryFile(delete=False, suffix=extension)
        try:
            file.save(temp_file.name)
            temp_file.close()
            result = parse_cost_sheet_file(temp_file.name, file_name)
            if not result.success:
                results.append(result.to_dict())
                continue

            sheet = CostSheet(user_id=user.id, status=STATUS_FINAL)
            apply_header(sheet, result.data)
            sheet.estimator = sheet.estimator or user_display_name(user)
            replace_lines(sheet, result.data)
            totals, warnings = recalculate_cost_sheet(sheet)
            check_stated_totals(result, totals)
            result.warnings.extend(warnings)

            db.session.add(sheet)
            db.session.flush()
            log_activity(sheet, 'imported', f"Imported from {file_name} by {user_display_name(user)}",
                         {'file_name': file_name, 'warnings': result.warnings}, user=user)
            db.session.commit()
            imported += 1

            entry = result.to_dict()
            entry['cost_sheet_id'] = sheet.id
            results.append(entry)
        except Exception as e:
            db.session.rollback()
            current_app.logger.error(f"Error importing cost sheet {file_name}: {e}")
            results.append(ImportResult(file_name=file_name, success=False,
                                        errors=[str(e)]).to_dict())
        finally:
            if os.path.exists(temp_file.name):
                os.remove(temp_file.name)

    return jsonify({'status': 'success', 'imported': imported, 'results': results})
