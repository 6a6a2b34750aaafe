import io

import pandas as pd
import pytest

from awning_calc.models import db, CostSheet, ActivityLog
from awning_calc.pricing import CostInputs, MaterialInput, compute_totals
from awning_calc.routes.costsheet_import import (
    ImportResult,
    cell,
    check_stated_totals,
    find_label,
    map_category,
    parse_cost_sheet_dataframe,
    parse_excel_date,
)


@pytest.fixture
def legacy_frame(legacy_rows):
    return pd.DataFrame(legacy_rows)


def workbook_bytes(frame):
    buffer = io.BytesIO()
    frame.to_excel(buffer, header=False, index=False, engine='openpyxl')
    buffer.seek(0)
    return buffer


def test_cell_helpers(legacy_frame):
    assert cell(legacy_frame, 1, 'B') == 'Acme Corp'
    assert cell(legacy_frame, 1, 1) == 'Acme Corp'
    assert cell(legacy_frame, 2, 'C') is None
    assert cell(legacy_frame, 500, 'A') is None
    assert find_label(legacy_frame, 'labor hours') == (15, 0)
    assert find_label(legacy_frame, 'Nowhere') is None


@pytest.mark.parametrize('raw, expected', [
    ('Metal Awning - front', 'Steel Awning'),
    ('Sail shade structure', 'Sail Shades'),
    ('CABANA x2', 'Cabanas'),
    ('', 'Other'),
    (None, 'Other'),
    ('Something new', 'Other'),
])
def test_map_category(raw, expected):
    assert map_category(raw) == expected


def test_parse_excel_date():
    assert parse_excel_date(45352).isoformat() == '2024-03-01'
    assert parse_excel_date('03/15/2024').isoformat() == '2024-03-15'
    assert parse_excel_date(pd.Timestamp('2024-01-02')).isoformat() == '2024-01-02'
    assert parse_excel_date('soon') is None


def test_parse_legacy_worksheet(legacy_frame):
    result = parse_cost_sheet_dataframe(legacy_frame, 'acme.xlsx')
    data = result.data

    assert result.success
    assert result.warnings == []
    assert data['customer'] == 'Acme Corp'
    assert data['sales_rep'] == 'Dana'
    assert data['category'] == 'Steel Awning'
    assert data['inquiry_date'] == '2024-03-01'
    assert data['due_date'] == '2024-03-15'
    assert data['width'] == 10
    assert data['canopy_sq_ft'] == 50
    assert data['awning_lin_ft'] == 20

    assert [m['description'] for m in data['materials']] == ['Steel Tubing', 'Hardware Kit']
    assert data['fabric_lines'][0]['yards'] == 10
    assert [(l['type'], l['is_fabrication']) for l in data['labor_lines']] == [
        ('Welding', True), ('Installation 1', False)
    ]
    assert data['labor_lines'][1]['people'] == 2

    assert data['permit_cost'] == 60
    assert data['drive_time_trips'] == 1
    assert data['drive_time_rate'] == 75
    assert data['food_cost'] == 40
    assert data['markup'] == 0.8
    assert data['discount_increase'] == -54
    assert data['notes'] == 'Loyalty discount'
    assert data['recap_lines'][0]['name'] == 'Front Awning'
    assert result.stated_totals['total_price_to_client'] == 1300


def test_parse_reports_missing_sections():
    frame = pd.DataFrame([['Inquiry Date', None], ['Customer', None]])
    result = parse_cost_sheet_dataframe(frame, 'empty.xlsx')
    assert 'Materials section not found' in result.warnings
    assert 'Labor section not found' in result.warnings
    assert 'No customer or project name found' in result.warnings
    assert 'Could not determine product category' in result.warnings


def test_parse_empty_frame():
    result = parse_cost_sheet_dataframe(pd.DataFrame(), 'blank.xlsx')
    assert result.success is False
    assert result.errors


def test_check_stated_totals_flags_mismatch():
    result = ImportResult(file_name='x.xlsx', stated_totals={'total_materials': 120})
    totals = compute_totals(CostInputs(materials=[MaterialInput(qty=1, unit_price=100, sales_tax=0)]))
    check_stated_totals(result, totals)
    assert len(result.warnings) == 1
    assert 'Total Materials and Supplies' in result.warnings[0]


def test_import_route(client, as_role, legacy_frame):
    as_role('estimator')
    response = client.post('/api/costsheets/import', data={
        'files': [
            (workbook_bytes(legacy_frame), 'acme.xlsx'),
            (io.BytesIO(b'not a workbook'), 'notes.txt'),
        ]
    }, content_type='multipart/form-data')

    assert response.status_code == 200
    body = response.get_json()
    assert body['imported'] == 1
    good, bad = body['results']
    assert good['success'] is True
    assert good['warnings'] == []
    assert bad['success'] is False
    assert 'Invalid file type' in bad['errors'][0]

    sheet = db.session.get(CostSheet, good['cost_sheet_id'])
    assert sheet.status == 'FINAL'
    assert sheet.subtotal_before_markup == pytest.approx(530)
    assert sheet.total_with_markup == pytest.approx(954)
    assert sheet.grand_total == pytest.approx(1354)
    assert sheet.total_price_to_client == pytest.approx(1300)
    assert sheet.price_per_sq_ft_pre_delivery == pytest.approx(19.08)
    assert ActivityLog.query.filter_by(cost_sheet_id=sheet.id, action='imported').count() == 1


def test_import_requires_files(client, as_role):
    as_role('estimator')
    assert client.post('/api/costsheets/import', data={}).status_code == 400


def test_export_single_sheet(client, as_role, sheet_payload):
    as_role('estimator')
    sheet = client.post('/api/costsheets', json=sheet_payload()).get_json()

    response = client.get(f"/api/costsheets/{sheet['id']}/export")
    assert response.status_code == 200
    assert response.headers['Content-Disposition'].startswith('attachment')

    sheets = pd.read_excel(io.BytesIO(response.data), sheet_name=None)
    assert set(sheets) == {'Summary', 'Materials', 'Fabric', 'Labor', 'Recap'}
    assert list(sheets['Materials']['description']) == ['Steel Tubing']
    assert len(sheets['Labor']) == 2
    summary = dict(zip(sheets['Summary']['Field'], sheets['Summary']['Value']))
    assert summary['Customer'] == 'Acme Corp'
    assert float(summary['Total Price to Client']) == pytest.approx(550)


def test_export_list_honors_filters(client, as_role, sheet_payload):
    as_role('estimator')
    client.post('/api/costsheets', json=sheet_payload(customer='Acme Corp'))
    client.post('/api/costsheets', json=sheet_payload(customer='Other Co'))

    response = client.get('/api/costsheets/export?search=acme')
    frame = pd.read_excel(io.BytesIO(response.data), sheet_name='Cost Sheets')
    assert list(frame['Customer']) == ['Acme Corp']
    assert 'Total Price to Client' in frame.columns
