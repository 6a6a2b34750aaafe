import io
import json

import pytest

from awning_calc.models import db, User, CostSheet, ActivityLog, AdminSetting


def download_backup(client):
    response = client.get('/api/admin/backup')
    assert response.status_code == 200
    return json.loads(response.data)


def upload(client, backup, **form):
    data = {'file': (io.BytesIO(json.dumps(backup).encode('utf-8')), 'backup.json')}
    data.update(form)
    return client.post('/api/admin/restore', data=data)


def test_backup_contents(client, make_user, login, sheet_payload):
    login(make_user('estimator'))
    client.post('/api/costsheets', json=sheet_payload())

    login(make_user('admin'))
    client.put('/api/admin/config', json={'categories': ['Steel Awning']})
    backup = download_backup(client)

    assert backup['version'] == '1.0'
    assert backup['database_type'] == 'sqlite'
    assert backup['statistics'] == {'users': 2, 'cost_sheets': 1, 'activity_logs': 1, 'admin_settings': 1}
    assert backup['cost_sheets'][0]['materials'][0]['description'] == 'Steel Tubing'
    assert backup['admin_settings'][0]['value']['categories'] == ['Steel Awning']


def test_restore_requires_danger_zone(client, as_role):
    as_role('admin')
    assert upload(client, {'version': '1.0'}).status_code == 403


def test_restore_after_data_loss(client, make_user, login, sheet_payload):
    login(make_user('super_admin'))
    original = client.post('/api/costsheets', json=sheet_payload(outcome='Won')).get_json()
    client.delete(f"/api/costsheets/{original['id']}")
    backup = download_backup(client)

    client.delete('/api/costsheets/all')
    assert CostSheet.query.count() == 0

    response = upload(client, backup)
    assert response.status_code == 200
    counts = response.get_json()['counts']
    assert counts == {'users': 0, 'admin_settings': 0, 'cost_sheets': 1, 'activity_logs': 2}

    db.session.expire_all()
    restored = db.session.get(CostSheet, original['id'])
    assert restored.outcome == 'Won'
    assert restored.is_trashed
    assert restored.total_price_to_client == pytest.approx(original['total_price_to_client'])
    assert [m.description for m in restored.materials] == ['Steel Tubing']


def test_restore_skips_existing_rows(client, as_role, sheet_payload):
    as_role('super_admin')
    client.post('/api/costsheets', json=sheet_payload())
    backup = download_backup(client)

    counts = upload(client, backup).get_json()['counts']
    assert counts == {'users': 0, 'admin_settings': 0, 'cost_sheets': 0, 'activity_logs': 0}
    assert CostSheet.query.count() == 1


def test_restore_with_clear_existing(client, make_user, login, sheet_payload):
    other = make_user('viewer')
    boss = login(make_user('super_admin'))
    client.post('/api/costsheets', json=sheet_payload())

    backup = {
        'version': '1.0',
        'users': [{'id': 50, 'email': 'restored@example.com', 'name': 'Restored', 'role': 'estimator'}],
        'admin_settings': [],
        'cost_sheets': [dict(sheet_payload(customer='From Backup'), id=7, user_id=50)],
        'activity_logs': [
            {'id': 3, 'cost_sheet_id': 7, 'user_id': 50, 'action': 'created', 'changes': {'customer': 'From Backup'}},
            {'id': 4, 'cost_sheet_id': 999, 'action': 'created'},
        ],
    }
    response = upload(client, backup, clear_existing='true')
    assert response.status_code == 200
    assert response.get_json()['counts'] == {'users': 1, 'admin_settings': 0, 'cost_sheets': 1, 'activity_logs': 1}

    db.session.expire_all()
    assert db.session.get(User, other.id) is None
    assert db.session.get(User, boss.id) is not None
    assert [s.customer for s in CostSheet.query.all()] == ['From Backup']
    sheet = db.session.get(CostSheet, 7)
    assert sheet.total_price_to_client == pytest.approx(550)
    assert ActivityLog.query.one().to_dict()['changes'] == {'customer': 'From Backup'}
    assert AdminSetting.query.count() == 0


def test_restore_matches_users_by_email(client, make_user, login, sheet_payload):
    boss = login(make_user('super_admin', email='boss@example.com'))
    backup = {
        'version': '1.0',
        'users': [
            {'id': boss.id, 'email': 'alice@example.com', 'name': 'Alice', 'role': 'estimator'},
            {'id': boss.id + 1, 'email': 'BOSS@example.com', 'name': 'Boss', 'role': 'super_admin'},
        ],
        'cost_sheets': [
            dict(sheet_payload(customer='Alice Co'), id=10, user_id=boss.id),
            dict(sheet_payload(customer='Boss Co'), id=11, user_id=boss.id + 1,
                 trash_state='trashed', deleted_by=boss.id),
        ],
        'activity_logs': [
            {'id': 20, 'cost_sheet_id': 10, 'user_id': boss.id, 'action': 'created'},
            {'id': 21, 'cost_sheet_id': 11, 'user_id': 77, 'action': 'created'},
        ],
    }
    response = upload(client, backup)
    assert response.status_code == 200
    assert response.get_json()['counts'] == {'users': 1, 'admin_settings': 0, 'cost_sheets': 2, 'activity_logs': 2}

    db.session.expire_all()
    alice = User.query.filter_by(email='alice@example.com').one()
    assert alice.id != boss.id
    assert alice.role == 'estimator'

    alice_sheet = db.session.get(CostSheet, 10)
    boss_sheet = db.session.get(CostSheet, 11)
    assert alice_sheet.user.email == 'alice@example.com'
    assert boss_sheet.user_id == boss.id
    assert boss_sheet.deleted_by == alice.id
    assert db.session.get(ActivityLog, 20).user_id == alice.id
    assert db.session.get(ActivityLog, 21).user_id is None


def test_restore_rejects_bad_files(client, as_role):
    as_role('super_admin')
    assert client.post('/api/admin/restore', data={}).status_code == 400
    bad = client.post('/api/admin/restore', data={'file': (io.BytesIO(b'not json'), 'backup.json')})
    assert bad.status_code == 400
    assert upload(client, {'version': '9.9'}).status_code == 400
