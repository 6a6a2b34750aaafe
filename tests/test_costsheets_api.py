import pytest

from awning_calc.models import db, CostSheet, ActivityLog, TrashState, STATUS_DRAFT, STATUS_FINAL
from awning_calc.routes.utils import log_activity


def create_sheet(client, payload):
    response = client.post('/api/costsheets', json=payload)
    assert response.status_code == 201, response.get_json()
    return response.get_json()


def test_requires_sign_in(client):
    response = client.get('/api/costsheets')
    assert response.status_code == 401
    assert response.get_json()['status'] == 'error'


def test_viewer_cannot_create(client, as_role, sheet_payload):
    as_role('viewer')
    response = client.post('/api/costsheets', json=sheet_payload())
    assert response.status_code == 403
    assert client.get('/api/costsheets').status_code == 200


def test_pending_user_has_no_access(client, as_role):
    as_role('pending')
    assert client.get('/api/costsheets').status_code == 403


def test_create_computes_totals(client, as_role, sheet_payload):
    user = as_role('estimator')
    data = create_sheet(client, sheet_payload())

    assert data['status'] == STATUS_FINAL
    assert data['trash_state'] == 'active'
    assert data['user_id'] == user.id
    assert data['estimator'] == user.name
    assert data['total_materials'] == pytest.approx(110)
    assert data['total_fabric'] == pytest.approx(50)
    assert data['total_fabrication_labor'] == pytest.approx(100)
    assert data['total_installation_labor'] == pytest.approx(100)
    assert data['subtotal_before_markup'] == pytest.approx(360)
    assert data['total_with_markup'] == pytest.approx(540)
    assert data['grand_total'] == pytest.approx(600)
    assert data['total_price_to_client'] == pytest.approx(550)
    assert data['canopy_sq_ft'] == 50
    assert data['awning_lin_ft'] == 20
    assert data['price_per_sq_ft_pre_delivery'] == pytest.approx(10.8)
    assert data['price_per_sq_ft'] == pytest.approx(11)
    assert data['materials'][0]['total'] == pytest.approx(110)
    assert data['warnings'] == []


def test_create_uses_admin_defaults(client, as_role, sheet_payload):
    as_role('estimator')
    payload = sheet_payload(markup=None, sales_tax='')
    data = create_sheet(client, payload)
    assert data['markup'] == 0.8
    assert data['sales_tax'] == 0.0975


def test_create_reports_negative_inputs(client, as_role, sheet_payload):
    as_role('estimator')
    payload = sheet_payload(materials=[{'description': 'Credit', 'qty': 1, 'unit_price': -20}])
    data = create_sheet(client, payload)
    assert 'Credit: unit_price is negative (-20)' in data['warnings']
    assert data['total_materials'] == pytest.approx(-22)


def test_create_rejects_bad_outcome(client, as_role, sheet_payload):
    as_role('estimator')
    response = client.post('/api/costsheets', json=sheet_payload(outcome='Maybe'))
    assert response.status_code == 400
    assert CostSheet.query.count() == 0


def test_get_includes_activity(client, as_role, sheet_payload):
    as_role('estimator')
    sheet = create_sheet(client, sheet_payload())
    data = client.get(f"/api/costsheets/{sheet['id']}").get_json()
    assert data['customer'] == 'Acme Corp'
    assert [log['action'] for log in data['activity_logs']] == ['created']


def test_get_missing_sheet(client, as_role):
    as_role('viewer')
    response = client.get('/api/costsheets/999')
    assert response.status_code == 404
    assert response.get_json()['status'] == 'error'


def test_update_replaces_lines(client, as_role, sheet_payload):
    as_role('estimator')
    sheet = create_sheet(client, sheet_payload())

    payload = sheet_payload(materials=[], customer='Beta LLC')
    response = client.put(f"/api/costsheets/{sheet['id']}", json=payload)
    assert response.status_code == 200
    data = response.get_json()
    assert data['customer'] == 'Beta LLC'
    assert data['materials'] == []
    assert data['total_materials'] == 0
    assert data['subtotal_before_markup'] == pytest.approx(250)

    logs = ActivityLog.query.filter_by(cost_sheet_id=sheet['id'], action='updated').all()
    assert len(logs) == 1
    changes = logs[0].to_dict()['changes']
    assert changes['previous']['customer'] == 'Acme Corp'
    assert changes['updated']['customer'] == 'Beta LLC'


def test_list_filters(client, as_role, sheet_payload):
    as_role('estimator')
    create_sheet(client, sheet_payload(customer='Acme Corp'))
    create_sheet(client, sheet_payload(customer='Zenith Hotels', category='Sail Shades'))
    client.post('/api/costsheets/autosave', json=sheet_payload(customer='Draft Co'))

    names = [s['customer'] for s in client.get('/api/costsheets').get_json()]
    assert sorted(names) == ['Acme Corp', 'Zenith Hotels']

    drafts = client.get('/api/costsheets?drafts_only=true').get_json()
    assert [s['customer'] for s in drafts] == ['Draft Co']

    everything = client.get('/api/costsheets?include_drafts=true&include_lines=false').get_json()
    assert len(everything) == 3
    assert 'materials' not in everything[0]

    found = client.get('/api/costsheets?search=zenith').get_json()
    assert [s['customer'] for s in found] == ['Zenith Hotels']

    by_category = client.get('/api/costsheets', query_string={'category': 'Sail Shades'}).get_json()
    assert len(by_category) == 1


def test_autosave_creates_then_updates_draft(client, as_role, sheet_payload):
    as_role('sales_rep')
    response = client.post('/api/costsheets/autosave', json=sheet_payload())
    assert response.status_code == 201
    draft = response.get_json()
    assert draft['status'] == STATUS_DRAFT

    response = client.post('/api/costsheets/autosave', json={'id': draft['id'], 'customer': 'Renamed'})
    assert response.status_code == 200
    data = response.get_json()
    assert data['customer'] == 'Renamed'
    assert data['project'] == 'Storefront'
    assert len(data['materials']) == 1
    assert data['grand_total'] == pytest.approx(draft['grand_total'])


def test_autosave_rederives_footage_from_new_dimensions(client, as_role, sheet_payload):
    as_role('estimator')
    draft = client.post('/api/costsheets/autosave', json=sheet_payload()).get_json()
    data = client.post('/api/costsheets/autosave', json={'id': draft['id'], 'width': 20}).get_json()
    assert data['canopy_sq_ft'] == 100
    assert data['awning_lin_ft'] == 30


def test_autosave_clearing_recaps_falls_back_to_dimensions(client, as_role, sheet_payload):
    as_role('estimator')
    recaps = [{'name': 'Front', 'width': 10, 'length': 5}, {'name': 'Side', 'width': 20, 'length': 5}]
    draft = client.post('/api/costsheets/autosave', json=sheet_payload(recap_lines=recaps)).get_json()
    assert draft['canopy_sq_ft'] == 150

    data = client.post('/api/costsheets/autosave', json={'id': draft['id'], 'recap_lines': []}).get_json()
    assert data['recap_lines'] == []
    assert data['canopy_sq_ft'] == 50
    assert data['awning_lin_ft'] == 20
    assert data['price_per_sq_ft'] == pytest.approx(550 / 50)


def test_entered_footage_survives_dimension_changes(client, as_role, sheet_payload):
    as_role('estimator')
    draft = client.post('/api/costsheets/autosave', json=sheet_payload(canopy_sq_ft=80)).get_json()
    assert draft['canopy_sq_ft'] == 80
    assert draft['canopy_sq_ft_entered'] == 80
    assert draft['awning_lin_ft_entered'] is None

    data = client.post('/api/costsheets/autosave', json={'id': draft['id'], 'width': 20}).get_json()
    assert data['canopy_sq_ft'] == 80
    assert data['awning_lin_ft'] == 30

    # The entered key wins over the derived one in a fetched sheet sent back
    fetched = client.get(f"/api/costsheets/{draft['id']}").get_json()
    fetched.update(canopy_sq_ft_entered=None, width=30)
    updated = client.put(f"/api/costsheets/{draft['id']}", json=fetched).get_json()
    assert updated['canopy_sq_ft'] == 150
    assert updated['awning_lin_ft'] == 40


def test_autosave_only_touches_own_sheets(client, make_user, login, sheet_payload):
    login(make_user('estimator'))
    draft = client.post('/api/costsheets/autosave', json=sheet_payload()).get_json()

    login(make_user('estimator'))
    response = client.post('/api/costsheets/autosave', json={'id': draft['id'], 'customer': 'Hijack'})
    assert response.status_code == 404


def test_finalize_draft(client, as_role, sheet_payload):
    as_role('estimator')
    draft = client.post('/api/costsheets/autosave', json=sheet_payload()).get_json()
    response = client.post(f"/api/costsheets/{draft['id']}/finalize")
    assert response.status_code == 200
    assert response.get_json()['status'] == STATUS_FINAL


def test_set_outcome(client, as_role, sheet_payload):
    as_role('estimator')
    sheet = create_sheet(client, sheet_payload())

    response = client.patch(f"/api/costsheets/{sheet['id']}/outcome", json={'outcome': 'Maybe'})
    assert response.status_code == 400

    response = client.patch(f"/api/costsheets/{sheet['id']}/outcome", json={'outcome': 'Won'})
    assert response.status_code == 200
    assert response.get_json()['outcome'] == 'Won'
    assert ActivityLog.query.filter_by(action='outcome_changed').count() == 1


def test_trash_lifecycle(client, as_role, sheet_payload):
    as_role('estimator')
    sheet = create_sheet(client, sheet_payload())
    url = f"/api/costsheets/{sheet['id']}"

    assert client.delete(url).status_code == 200
    assert client.get('/api/costsheets').get_json() == []
    trash = client.get('/api/costsheets/trash').get_json()
    assert [s['id'] for s in trash] == [sheet['id']]

    # already trashed
    assert client.delete(url).status_code == 409
    assert client.post(f"{url}/finalize").status_code == 409

    response = client.post(f"{url}/restore")
    assert response.status_code == 200
    assert response.get_json()['cost_sheet']['trash_state'] == 'active'
    assert client.post(f"{url}/restore").status_code == 409

    row = db.session.get(CostSheet, sheet['id'])
    assert row.trash_state == TrashState.ACTIVE
    assert row.deleted_at is None


def test_permanent_delete_requires_super_admin(client, make_user, login, sheet_payload):
    login(make_user('admin'))
    sheet = create_sheet(client, sheet_payload())
    url = f"/api/costsheets/{sheet['id']}?permanent=true"

    assert client.delete(url).status_code == 403

    login(make_user('super_admin'))
    response = client.delete(url)
    assert response.status_code == 200
    assert response.get_json()['permanent'] is True
    assert db.session.get(CostSheet, sheet['id']) is None
    assert ActivityLog.query.count() == 0


def test_empty_trash(client, make_user, login, sheet_payload):
    login(make_user('admin'))
    keep = create_sheet(client, sheet_payload())
    drop = create_sheet(client, sheet_payload())
    client.delete(f"/api/costsheets/{drop['id']}")

    assert client.delete('/api/costsheets/trash').status_code == 403

    login(make_user('super_admin'))
    response = client.delete('/api/costsheets/trash')
    assert response.status_code == 200
    assert response.get_json()['deleted_count'] == 1
    assert [s.id for s in CostSheet.query.all()] == [keep['id']]


def test_delete_all_requires_danger_zone(client, make_user, login, sheet_payload):
    login(make_user('admin'))
    create_sheet(client, sheet_payload())
    assert client.delete('/api/costsheets/all').status_code == 403

    login(make_user('super_admin'))
    response = client.delete('/api/costsheets/all')
    assert response.get_json()['deleted_count'] == 1
    assert CostSheet.query.count() == 0


def test_calculate_preview_does_not_persist(client, as_role, sheet_payload):
    as_role('viewer')
    response = client.post('/api/costsheets/calculate', json=sheet_payload())
    assert response.status_code == 200
    data = response.get_json()
    assert data['totals']['total_price_to_client'] == pytest.approx(550)
    assert data['guardrail']['sq_ft']['status'] == 'NO_DATA'
    assert CostSheet.query.count() == 0


def test_calculate_guardrail_against_history(client, make_user, login, sheet_payload):
    login(make_user('estimator'))
    create_sheet(client, sheet_payload())

    login(make_user('viewer'))
    data = client.post('/api/costsheets/calculate', json=sheet_payload(markup=1.0)).get_json()
    guardrail = data['guardrail']['sq_ft']
    # 720 / 50 against the stored 10.8
    assert guardrail['status'] == 'HIGH'
    assert guardrail['average'] == pytest.approx(10.8)
    assert guardrail['difference_pct'] == pytest.approx(33.3)


def test_activity_log_listing(client, as_role, sheet_payload):
    as_role('estimator')
    sheet = create_sheet(client, sheet_payload())
    client.patch(f"/api/costsheets/{sheet['id']}/outcome", json={'outcome': 'Lost'})

    assert client.get('/api/activity-logs').status_code == 400
    logs = client.get(f"/api/activity-logs?cost_sheet_id={sheet['id']}").get_json()
    assert [log['action'] for log in logs] == ['outcome_changed', 'created']
    assert logs[0]['changes'] == {'previous': 'Unknown', 'updated': 'Lost'}


def test_activity_entry_follows_caller_transaction(client, as_role, sheet_payload):
    user = as_role('estimator')
    sheet = db.session.get(CostSheet, client.post('/api/costsheets', json=sheet_payload()).get_json()['id'])

    log_activity(sheet, 'updated', changes={('width', 'old'): 10}, user=user)
    db.session.flush()
    entry = ActivityLog.query.filter_by(action='updated').one()
    assert entry.changes is None
    assert entry.user_id == user.id

    db.session.rollback()
    assert ActivityLog.query.filter_by(action='updated').count() == 0
