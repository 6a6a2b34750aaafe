import enum
import json
from datetime import datetime
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()

STATUS_DRAFT = 'DRAFT'
STATUS_FINAL = 'FINAL'

OUTCOMES = ('Won', 'Lost', 'Unknown')


# Custom exceptions
class InvalidTransitionError(Exception):
    """Raised when a cost sheet is moved to a lifecycle state it cannot reach"""
    pass


class TrashState(enum.Enum):
    ACTIVE = 'active'
    TRASHED = 'trashed'


def _iso(value):
    return value.isoformat() if value else None


class User(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), unique=True, nullable=False)
    name = db.Column(db.String(255), nullable=True)
    role = db.Column(db.String(20), nullable=False, default='pending')
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    def to_dict(self):
        return {
            'id': self.id,
            'email': self.email,
            'name': self.name,
            'role': self.role,
            'is_active': self.is_active,
            'created_at': _iso(self.created_at)
        }


class CostSheet(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True)
    status = db.Column(db.String(10), nullable=False, default=STATUS_FINAL)
    trash_state = db.Column(db.Enum(TrashState), nullable=False, default=TrashState.ACTIVE)
    deleted_at = db.Column(db.DateTime, nullable=True)
    deleted_by = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Header
    inquiry_date = db.Column(db.Date, nullable=True)
    due_date = db.Column(db.Date, nullable=True)
    estimator = db.Column(db.String(255), nullable=True)
    category = db.Column(db.String(100), nullable=False, default='Other', index=True)
    customer = db.Column(db.String(255), nullable=True)
    sales_rep = db.Column(db.String(255), nullable=True)
    project = db.Column(db.String(255), nullable=True)
    job_site = db.Column(db.String(500), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    # Dimensions
    width = db.Column(db.Float, nullable=True)
    projection = db.Column(db.Float, nullable=True)
    height = db.Column(db.Float, nullable=True)
    valance = db.Column(db.Float, nullable=True)
    canopy_sq_ft = db.Column(db.Float, nullable=True)
    awning_lin_ft = db.Column(db.Float, nullable=True)
    # Footage typed by the user; the two columns above hold the derived footage
    canopy_sq_ft_entered = db.Column(db.Float, nullable=True)
    awning_lin_ft_entered = db.Column(db.Float, nullable=True)

    misc_qty = db.Column(db.Float, nullable=True)
    misc_price = db.Column(db.Float, nullable=True)

    # Rates
    sales_tax = db.Column(db.Float, nullable=False, default=0.0975)
    markup = db.Column(db.Float, nullable=False, default=0.8)
    labor_rate = db.Column(db.Float, nullable=False, default=95.0)
    drive_time_rate = db.Column(db.Float, nullable=False, default=75.0)
    mileage_rate = db.Column(db.Float, nullable=False, default=0.75)
    hotel_rate = db.Column(db.Float, nullable=True)

    # Other requirements
    permit_cost = db.Column(db.Float, nullable=True)
    engineering_cost = db.Column(db.Float, nullable=True)
    equipment_cost = db.Column(db.Float, nullable=True)
    drive_time_trips = db.Column(db.Float, nullable=True)
    drive_time_hours = db.Column(db.Float, nullable=True)
    drive_time_people = db.Column(db.Float, nullable=True)
    roundtrip_miles = db.Column(db.Float, nullable=True)
    roundtrip_trips = db.Column(db.Float, nullable=True)
    hotel_nights = db.Column(db.Float, nullable=True)
    hotel_people = db.Column(db.Float, nullable=True)
    food_cost = db.Column(db.Float, nullable=True)

    # Computed totals
    total_materials = db.Column(db.Float, nullable=False, default=0)
    total_fabric = db.Column(db.Float, nullable=False, default=0)
    total_fabrication_labor = db.Column(db.Float, nullable=False, default=0)
    total_installation_labor = db.Column(db.Float, nullable=False, default=0)
    total_labor = db.Column(db.Float, nullable=False, default=0)
    subtotal_before_markup = db.Column(db.Float, nullable=False, default=0)
    total_with_markup = db.Column(db.Float, nullable=False, default=0)
    drive_time_total = db.Column(db.Float, nullable=False, default=0)
    mileage_total = db.Column(db.Float, nullable=False, default=0)
    hotel_total = db.Column(db.Float, nullable=False, default=0)
    total_other_requirements = db.Column(db.Float, nullable=False, default=0)
    grand_total = db.Column(db.Float, nullable=False, default=0)
    discount_increase = db.Column(db.Float, nullable=False, default=0)
    total_price_to_client = db.Column(db.Float, nullable=False, default=0)
    price_per_sq_ft = db.Column(db.Float, nullable=True)
    price_per_lin_ft = db.Column(db.Float, nullable=True)
    price_per_sq_ft_pre_delivery = db.Column(db.Float, nullable=True)
    price_per_lin_ft_pre_delivery = db.Column(db.Float, nullable=True)

    outcome = db.Column(db.String(10), nullable=False, default='Unknown')

    # Relationships
    user = db.relationship('User', foreign_keys=[user_id], backref='cost_sheets')
    materials = db.relationship('MaterialLine', backref='cost_sheet', cascade="all, delete-orphan",
                                order_by='MaterialLine.id')
    fabric_lines = db.relationship('FabricLine', backref='cost_sheet', cascade="all, delete-orphan",
                                   order_by='FabricLine.id')
    labor_lines = db.relationship('LaborLine', backref='cost_sheet', cascade="all, delete-orphan",
                                  order_by='LaborLine.id')
    recap_lines = db.relationship('RecapLine', backref='cost_sheet', cascade="all, delete-orphan",
                                  order_by='RecapLine.id')
    activity_logs = db.relationship('ActivityLog', backref='cost_sheet', cascade="all, delete-orphan",
                                    order_by='ActivityLog.created_at.desc()')

    HEADER_FIELDS = ('estimator', 'category', 'customer', 'sales_rep', 'project', 'job_site', 'notes')
    INPUT_FIELDS = (
        'width', 'projection', 'height', 'valance',
        'misc_qty', 'misc_price',
        'sales_tax', 'markup', 'labor_rate', 'drive_time_rate', 'mileage_rate', 'hotel_rate',
        'permit_cost', 'engineering_cost', 'equipment_cost',
        'drive_time_trips', 'drive_time_hours', 'drive_time_people',
        'roundtrip_miles', 'roundtrip_trips', 'hotel_nights', 'hotel_people', 'food_cost',
        'discount_increase',
    )
    # Request key -> column holding the footage the user typed
    FOOTAGE_FIELDS = (('canopy_sq_ft', 'canopy_sq_ft_entered'), ('awning_lin_ft', 'awning_lin_ft_entered'))
    TOTAL_FIELDS = (
        'canopy_sq_ft', 'awning_lin_ft',
        'total_materials', 'total_fabric', 'total_fabrication_labor', 'total_installation_labor',
        'total_labor', 'subtotal_before_markup', 'total_with_markup',
        'drive_time_total', 'mileage_total', 'hotel_total', 'total_other_requirements',
        'grand_total', 'discount_increase', 'total_price_to_client',
        'price_per_sq_ft', 'price_per_lin_ft', 'price_per_sq_ft_pre_delivery', 'price_per_lin_ft_pre_delivery',
    )

    @property
    def is_trashed(self):
        return self.trash_state == TrashState.TRASHED

    def move_to_trash(self, user=None):
        if self.trash_state not in (None, TrashState.ACTIVE):
            raise InvalidTransitionError(f"Cost sheet {self.id} is already in the trash")
        self.trash_state = TrashState.TRASHED
        self.deleted_at = datetime.utcnow()
        self.deleted_by = user.id if user is not None else None

    def restore(self):
        if self.trash_state != TrashState.TRASHED:
            raise InvalidTransitionError(f"Cost sheet {self.id} is not in the trash")
        self.trash_state = TrashState.ACTIVE
        self.deleted_at = None
        self.deleted_by = None

    def finalize(self):
        if self.is_trashed:
            raise InvalidTransitionError(f"Cost sheet {self.id} is in the trash")
        self.status = STATUS_FINAL

    def set_outcome(self, outcome):
        if outcome not in OUTCOMES:
            raise ValueError(f"Invalid outcome '{outcome}'. Must be one of: {', '.join(OUTCOMES)}")
        self.outcome = outcome

    def apply_totals(self, totals):
        """Copy computed totals, derived footage and the effective rates onto the row."""
        for name in self.TOTAL_FIELDS:
            setattr(self, name, getattr(totals, name))
        self.sales_tax = totals.sales_tax
        self.markup = totals.markup
        self.labor_rate = totals.labor_rate
        self.drive_time_rate = totals.drive_time_rate
        self.mileage_rate = totals.mileage_rate
        self.hotel_rate = totals.hotel_rate
        for line, total in zip(self.materials, totals.material_line_totals):
            line.total = total
        for line, total in zip(self.fabric_lines, totals.fabric_line_totals):
            line.total = total
        for line, total in zip(self.labor_lines, totals.labor_line_totals):
            line.total = total

    def to_dict(self, include_lines=True):
        data = {
            'id': self.id,
            'user_id': self.user_id,
            'user': self.user.to_dict() if self.user else None,
            'status': self.status,
            'trash_state': self.trash_state.value if self.trash_state else TrashState.ACTIVE.value,
            'deleted_at': _iso(self.deleted_at),
            'deleted_by': self.deleted_by,
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
            'inquiry_date': _iso(self.inquiry_date),
            'due_date': _iso(self.due_date),
            'outcome': self.outcome,
        }
        for name in self.HEADER_FIELDS + self.INPUT_FIELDS + self.TOTAL_FIELDS:
            data[name] = getattr(self, name)
        for _key, column in self.FOOTAGE_FIELDS:
            data[column] = getattr(self, column)
        if include_lines:
            data['materials'] = [m.to_dict() for m in self.materials]
            data['fabric_lines'] = [f.to_dict() for f in self.fabric_lines]
            data['labor_lines'] = [l.to_dict() for l in self.labor_lines]
            data['recap_lines'] = [r.to_dict() for r in self.recap_lines]
        return data


class MaterialLine(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    cost_sheet_id = db.Column(db.Integer, db.ForeignKey('cost_sheet.id'), nullable=False, index=True)
    description = db.Column(db.String(255), nullable=False, default='')
    length = db.Column(db.Float, nullable=True)
    qty = db.Column(db.Float, nullable=False, default=0)
    unit_price = db.Column(db.Float, nullable=False, default=0)
    sales_tax = db.Column(db.Float, nullable=True)
    freight = db.Column(db.Float, nullable=True)
    total = db.Column(db.Float, nullable=False, default=0)

    def to_dict(self):
        return {
            'id': self.id,
            'description': self.description,
            'length': self.length,
            'qty': self.qty,
            'unit_price': self.unit_price,
            'sales_tax': self.sales_tax,
            'freight': self.freight,
            'total': self.total
        }


class FabricLine(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    cost_sheet_id = db.Column(db.Integer, db.ForeignKey('cost_sheet.id'), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False, default='')
    yards = db.Column(db.Float, nullable=False, default=0)
    price_per_yard = db.Column(db.Float, nullable=False, default=0)
    sales_tax = db.Column(db.Float, nullable=True)
    freight = db.Column(db.Float, nullable=True)
    total = db.Column(db.Float, nullable=False, default=0)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'yards': self.yards,
            'price_per_yard': self.price_per_yard,
            'sales_tax': self.sales_tax,
            'freight': self.freight,
            'total': self.total
        }


class LaborLine(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    cost_sheet_id = db.Column(db.Integer, db.ForeignKey('cost_sheet.id'), nullable=False, index=True)
    type = db.Column(db.String(100), nullable=False, default='')
    description = db.Column(db.String(255), nullable=True)
    hours = db.Column(db.Float, nullable=False, default=0)
    people = db.Column(db.Float, nullable=False, default=1)
    rate = db.Column(db.Float, nullable=True)
    total = db.Column(db.Float, nullable=False, default=0)
    is_fabrication = db.Column(db.Boolean, nullable=False, default=True)

    def to_dict(self):
        return {
            'id': self.id,
            'type': self.type,
            'description': self.description,
            'hours': self.hours,
            'people': self.people,
            'rate': self.rate,
            'total': self.total,
            'is_fabrication': self.is_fabrication
        }


class RecapLine(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    cost_sheet_id = db.Column(db.Integer, db.ForeignKey('cost_sheet.id'), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False, default='')
    width = db.Column(db.Float, nullable=True)
    length = db.Column(db.Float, nullable=True)
    fabric_yard = db.Column(db.Float, nullable=True)
    linear_ft = db.Column(db.Float, nullable=True)
    sq_ft = db.Column(db.Float, nullable=True)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'width': self.width,
            'length': self.length,
            'fabric_yard': self.fabric_yard,
            'linear_ft': self.linear_ft,
            'sq_ft': self.sq_ft
        }


class ActivityLog(db.Model):
    """Per cost sheet history of who changed what"""
    id = db.Column(db.Integer, primary_key=True)
    cost_sheet_id = db.Column(db.Integer, db.ForeignKey('cost_sheet.id'), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True)
    action = db.Column(db.String(30), nullable=False)  # created, updated, deleted, restored, imported, ...
    description = db.Column(db.String(500), nullable=True)
    changes = db.Column(db.Text, nullable=True)  # JSON string
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    user = db.relationship('User', backref='activity_logs')

    def to_dict(self):
        return {
            'id': self.id,
            'cost_sheet_id': self.cost_sheet_id,
            'user_id': self.user_id,
            'user': {'name': self.user.name, 'email': self.user.email} if self.user else None,
            'action': self.action,
            'description': self.description,
            'changes': json.loads(self.changes) if self.changes else None,
            'created_at': _iso(self.created_at)
        }


class AdminSetting(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(100), unique=True, nullable=False)
    value = db.Column(db.Text, nullable=False)  # JSON string
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def to_dict(self):
        return {
            'id': self.id,
            'key': self.key,
            'value': json.loads(self.value) if self.value else None,
            'updated_at': _iso(self.updated_at)
        }
