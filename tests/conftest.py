import pytest

from awning_calc import create_app
from awning_calc.models import db, User


@pytest.fixture
def app():
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite://',
        'SECRET_KEY': 'test-secret',
        'SUPER_ADMIN_EMAIL': 'boss@example.com',
        'GOOGLE_MAPS_API_KEY': 'maps-key',
        'HUBSPOT_ACCESS_TOKEN': None,
    })
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_user(app):
    counter = {'n': 0}

    def _make(role='estimator', email=None, name=None, is_active=True):
        counter['n'] += 1
        user = User(
            email=email or f"{role}{counter['n']}@example.com",
            name=name or f"{role.title()} {counter['n']}",
            role=role,
            is_active=is_active
        )
        db.session.add(user)
        db.session.commit()
        return user
    return _make


@pytest.fixture
def login(client):
    def _login(user):
        with client.session_transaction() as sess:
            sess['user_id'] = user.id
        return user
    return _login


@pytest.fixture
def as_role(make_user, login):
    """Sign the test client in as a fresh user with the given role."""
    def _as(role):
        return login(make_user(role))
    return _as


@pytest.fixture
def sheet_payload():
    def _payload(**overrides):
        data = {
            'inquiry_date': '2024-03-01',
            'due_date': '2024-03-15',
            'category': 'Steel Awning',
            'customer': 'Acme Corp',
            'project': 'Storefront',
            'job_site': '1 Main St, Springfield',
            'width': 10,
            'projection': 5,
            'sales_tax': 0.1,
            'markup': 0.5,
            'permit_cost': 60,
            'discount_increase': -50,
            'materials': [
                {'description': 'Steel Tubing', 'qty': 2, 'unit_price': 50},
            ],
            'fabric_lines': [
                {'name': 'Sunbrella', 'yards': 10, 'price_per_yard': 5, 'sales_tax': 0},
            ],
            'labor_lines': [
                {'type': 'Welding', 'hours': 2, 'people': 1, 'rate': 50},
                {'type': 'Installation 1', 'hours': 1, 'people': 2, 'rate': 50, 'is_fabrication': False},
            ],
        }
        data.update(overrides)
        return data
    return _payload


@pytest.fixture
def legacy_rows():
    """Rows of a legacy estimating worksheet, columns A..H."""
    def row(*values):
        values = list(values) + [None] * (8 - len(values))
        return values[:8]

    return [
        row('Inquiry Date', '2024-03-01', None, 'DUE', '2024-03-15'),
        row('Customer', 'Acme Corp', None, 'Sales Rep', 'Dana'),
        row('Project', 'Storefront'),
        row('Category', 'Metal Awning - front'),
        row('Job Site', '1 Main St'),
        row('Width', 10, 'Projection', 5, None, 'Canopy Sq Ft', 50),
        row('Height', 8, 'Valance', 1, None, 'Awning Lin Ft', 20),
        row('Notes'),
        row('Materials:(Metal, Hardware)', 'Qty', 'Price', 'Tax'),
        row('Steel Tubing', 2, 50, 0.1, None, None, 110),
        row('Hardware Kit', 1, 150, 0.1, None, None, 165),
        row('Total Materials and Supplies', None, None, None, None, None, None, 275),
        row('Fabric', 'Yards', 'Price/Yd', 'Tax'),
        row('Sunbrella Fabric', 10, 5, 0.1, None, None, 55),
        row('Total Fabric', None, None, None, None, None, None, 55),
        row('Labor Hours', 'Hours', 'People', None, 'Rate'),
        row('Welding', 2, 1, None, 50, None, 100),
        row('Installation 1', 1, 2, None, 50, None, 100),
        row('Total Labor', None, None, None, None, None, None, 200),
        row('Other Requirements'),
        row('Permit', None, None, None, None, None, 60),
        row('Drive Time:', 1, 2, 2, 75, None, 300),
        row('Food:', None, None, None, None, None, 40),
        row('Total Materials, Fabric & Labor Before Markup', None, None, None, None, None, None, 530),
        row('Total Labor and Fabric Including Markup', None, None, 0.8, None, None, None, 954),
        row('GRAND TOTAL', None, None, None, None, None, None, 1354),
        row('Discount/Increase', 'Loyalty discount', None, None, None, None, None, -54),
        row('Total Price to Client', None, None, None, None, None, None, 1300),
        row('Recap of Canopies'),
        row('Unit', 'Width', 'Length', 'Fabric Yd', 'Lin Ft', None, 'Sq Ft'),
        row('Front Awning', 10, 5, 3, 20, None, 50),
        row('Total', None, None, None, None, None, 50),
    ]
