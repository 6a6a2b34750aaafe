"""
Cost sheet pricing: line-item calculators and the aggregation engine.

Everything in this module is pure. Inputs come in as plain dataclasses and
an explicit PricingSettings object; nothing is read from the database, the
Flask app or the admin configuration store.
"""
import math
from dataclasses import dataclass, field
from typing import List, Optional


def to_number(value):
    """Coerce a form/spreadsheet value to float. Missing or non-numeric input is 0."""
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        return 0.0 if math.isnan(value) else float(value)
    cleaned = str(value).replace('$', '').replace(',', '').strip()
    if not cleaned:
        return 0.0
    try:
        number = float(cleaned)
    except ValueError:
        return 0.0
    return 0.0 if math.isnan(number) else number


def _optional_number(value):
    """Like to_number, but keeps 'not supplied' distinguishable from 0."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return to_number(value)


# ----------------------------
# Line-Item Calculators
# ----------------------------
def material_line_total(qty, unit_price, tax_rate, freight=None):
    subtotal = to_number(qty) * to_number(unit_price)
    return subtotal + subtotal * to_number(tax_rate) + to_number(freight)


def fabric_line_total(yards, price_per_yard, tax_rate, freight=None):
    subtotal = to_number(yards) * to_number(price_per_yard)
    return subtotal + subtotal * to_number(tax_rate) + to_number(freight)


def labor_line_total(hours, people, rate):
    # Labor is never taxed
    return to_number(hours) * to_number(people) * to_number(rate)


def drive_time_total(trips, hours, people, rate):
    return to_number(trips) * to_number(hours) * to_number(people) * to_number(rate)


def mileage_total(miles, trips, rate_per_mile):
    return to_number(miles) * to_number(trips) * to_number(rate_per_mile)


def hotel_total(nights, people, rate_per_night):
    return to_number(nights) * to_number(people) * to_number(rate_per_night)


def other_requirements_total(permit_cost=None, engineering_cost=None, equipment_cost=None,
                             drive_time=None, mileage=None, hotel=None, food_cost=None):
    """Sum of the site-specific costs. Each missing component counts as 0."""
    return (
        to_number(permit_cost) +
        to_number(engineering_cost) +
        to_number(equipment_cost) +
        to_number(drive_time) +
        to_number(mileage) +
        to_number(hotel) +
        to_number(food_cost)
    )


def price_per_sq_ft(total, sq_ft):
    """Unit price over square footage, or None when there is no footage."""
    footage = to_number(sq_ft)
    if footage == 0:
        return None
    return to_number(total) / footage


def price_per_lin_ft(total, lin_ft):
    """Unit price over linear footage, or None when there is no footage."""
    footage = to_number(lin_ft)
    if footage == 0:
        return None
    return to_number(total) / footage


def recap_sq_ft(width, length, sq_ft=None):
    explicit = _optional_number(sq_ft)
    if explicit is not None:
        return explicit
    return to_number(width) * to_number(length)


def recap_lin_ft(width, length, linear_ft=None, include_projection=True):
    """Linear footage of one unit: the front run plus both returns when projection counts."""
    explicit = _optional_number(linear_ft)
    if explicit is not None:
        return explicit
    if include_projection:
        return to_number(width) + to_number(length) * 2
    return to_number(width)


# ----------------------------
# Cost Model
# ----------------------------
@dataclass(frozen=True)
class PricingSettings:
    """Default rates applied when a sheet or line does not carry its own."""
    sales_tax: float = 0.0975
    markup: float = 0.8
    labor_rate: float = 95.0
    drive_time_rate: float = 75.0
    mileage_rate: float = 0.75
    hotel_rate: float = 150.0

    @classmethod
    def from_config(cls, config):
        defaults = (config or {}).get('defaults') or {}
        base = cls()
        values = {}
        for name in ('sales_tax', 'markup', 'labor_rate', 'drive_time_rate', 'mileage_rate', 'hotel_rate'):
            raw = defaults.get(name)
            values[name] = getattr(base, name) if raw is None else to_number(raw)
        return cls(**values)


@dataclass
class MaterialInput:
    description: str = ''
    qty: float = 0
    unit_price: float = 0
    sales_tax: Optional[float] = None
    freight: Optional[float] = None
    length: Optional[float] = None


@dataclass
class FabricInput:
    name: str = ''
    yards: float = 0
    price_per_yard: float = 0
    sales_tax: Optional[float] = None
    freight: Optional[float] = None


@dataclass
class LaborInput:
    type: str = ''
    hours: float = 0
    people: float = 1
    rate: Optional[float] = None
    is_fabrication: bool = True
    description: Optional[str] = None


@dataclass
class RecapInput:
    name: str = ''
    width: Optional[float] = None
    length: Optional[float] = None
    fabric_yard: Optional[float] = None
    linear_ft: Optional[float] = None
    sq_ft: Optional[float] = None


@dataclass
class SiteCosts:
    permit_cost: Optional[float] = None
    engineering_cost: Optional[float] = None
    equipment_cost: Optional[float] = None
    drive_time_trips: Optional[float] = None
    drive_time_hours: Optional[float] = None
    drive_time_people: Optional[float] = None
    drive_time_rate: Optional[float] = None
    roundtrip_miles: Optional[float] = None
    roundtrip_trips: Optional[float] = None
    mileage_rate: Optional[float] = None
    hotel_nights: Optional[float] = None
    hotel_people: Optional[float] = None
    hotel_rate: Optional[float] = None
    food_cost: Optional[float] = None


@dataclass
class CostInputs:
    settings: PricingSettings = field(default_factory=PricingSettings)
    materials: List[MaterialInput] = field(default_factory=list)
    fabric_lines: List[FabricInput] = field(default_factory=list)
    labor_lines: List[LaborInput] = field(default_factory=list)
    recap_lines: List[RecapInput] = field(default_factory=list)
    site: SiteCosts = field(default_factory=SiteCosts)
    sales_tax: Optional[float] = None
    markup: Optional[float] = None
    labor_rate: Optional[float] = None
    misc_qty: Optional[float] = None
    misc_price: Optional[float] = None
    discount_increase: Optional[float] = None
    width: Optional[float] = None
    projection: Optional[float] = None
    canopy_sq_ft: Optional[float] = None
    awning_lin_ft: Optional[float] = None
    include_projection_in_linear_footage: bool = True


@dataclass(frozen=True)
class CostTotals:
    sales_tax: float
    markup: float
    labor_rate: float
    drive_time_rate: float
    mileage_rate: float
    hotel_rate: float
    material_line_totals: tuple
    fabric_line_totals: tuple
    labor_line_totals: tuple
    canopy_sq_ft: float
    awning_lin_ft: float
    total_materials: float
    total_fabric: float
    total_fabrication_labor: float
    total_installation_labor: float
    total_labor: float
    subtotal_before_markup: float
    total_with_markup: float
    drive_time_total: float
    mileage_total: float
    hotel_total: float
    total_other_requirements: float
    grand_total: float
    discount_increase: float
    total_price_to_client: float
    price_per_sq_ft_pre_delivery: Optional[float]
    price_per_lin_ft_pre_delivery: Optional[float]
    price_per_sq_ft: Optional[float]
    price_per_lin_ft: Optional[float]

    def to_dict(self):
        data = {}
        for name in self.__dataclass_fields__:
            value = getattr(self, name)
            data[name] = list(value) if isinstance(value, tuple) else value
        return data


# ----------------------------
# Aggregation & Pricing Engine
# ----------------------------
def _rate(*candidates):
    """First supplied rate wins; the last candidate is always the settings default."""
    for candidate in candidates:
        value = _optional_number(candidate)
        if value is not None:
            return value
    return 0.0


def sheet_footage(inputs):
    """(square feet, linear feet) for a sheet, preferring its recap lines."""
    include_projection = inputs.include_projection_in_linear_footage
    if inputs.recap_lines:
        sq_ft = sum(recap_sq_ft(r.width, r.length, r.sq_ft) for r in inputs.recap_lines)
        lin_ft = sum(recap_lin_ft(r.width, r.length, r.linear_ft, include_projection)
                     for r in inputs.recap_lines)
        return sq_ft, lin_ft

    sq_ft = recap_sq_ft(inputs.width, inputs.projection, inputs.canopy_sq_ft)
    lin_ft = recap_lin_ft(inputs.width, inputs.projection, inputs.awning_lin_ft, include_projection)
    return sq_ft, lin_ft


def compute_totals(inputs):
    """
    Derive every total and unit price of a cost sheet from its line items.

    Markup multiplies the whole materials + fabric + labor subtotal; it is
    never applied per line. Site-specific costs are added after markup and
    are left out of the pre-delivery unit prices.
    """
    settings = inputs.settings
    sales_tax = _rate(inputs.sales_tax, settings.sales_tax)
    markup = _rate(inputs.markup, settings.markup)
    labor_rate = _rate(inputs.labor_rate, settings.labor_rate)

    material_totals = tuple(
        material_line_total(m.qty, m.unit_price, _rate(m.sales_tax, sales_tax), m.freight)
        for m in inputs.materials
    )
    misc_total = to_number(inputs.misc_qty) * to_number(inputs.misc_price) * (1 + sales_tax)
    total_materials = sum(material_totals) + misc_total

    fabric_totals = tuple(
        fabric_line_total(f.yards, f.price_per_yard, _rate(f.sales_tax, sales_tax), f.freight)
        for f in inputs.fabric_lines
    )
    total_fabric = sum(fabric_totals)

    labor_totals = tuple(
        labor_line_total(l.hours, l.people, _rate(l.rate, labor_rate))
        for l in inputs.labor_lines
    )
    total_fabrication_labor = sum(
        total for line, total in zip(inputs.labor_lines, labor_totals) if line.is_fabrication
    )
    total_installation_labor = sum(
        total for line, total in zip(inputs.labor_lines, labor_totals) if not line.is_fabrication
    )
    total_labor = total_fabrication_labor + total_installation_labor

    subtotal_before_markup = total_materials + total_fabric + total_labor
    total_with_markup = subtotal_before_markup * (1 + markup)

    site = inputs.site
    drive_time_rate = _rate(site.drive_time_rate, settings.drive_time_rate)
    mileage_rate = _rate(site.mileage_rate, settings.mileage_rate)
    hotel_rate = _rate(site.hotel_rate, settings.hotel_rate)
    drive_total = drive_time_total(site.drive_time_trips, site.drive_time_hours,
                                   site.drive_time_people, drive_time_rate)
    miles_total = mileage_total(site.roundtrip_miles, site.roundtrip_trips, mileage_rate)
    hotels_total = hotel_total(site.hotel_nights, site.hotel_people, hotel_rate)
    total_other = other_requirements_total(
        permit_cost=site.permit_cost,
        engineering_cost=site.engineering_cost,
        equipment_cost=site.equipment_cost,
        drive_time=drive_total,
        mileage=miles_total,
        hotel=hotels_total,
        food_cost=site.food_cost,
    )

    grand_total = total_with_markup + total_other
    discount_increase = to_number(inputs.discount_increase)
    total_price_to_client = grand_total + discount_increase

    sq_ft, lin_ft = sheet_footage(inputs)

    return CostTotals(
        sales_tax=sales_tax,
        markup=markup,
        labor_rate=labor_rate,
        drive_time_rate=drive_time_rate,
        mileage_rate=mileage_rate,
        hotel_rate=hotel_rate,
        material_line_totals=material_totals,
        fabric_line_totals=fabric_totals,
        labor_line_totals=labor_totals,
        canopy_sq_ft=sq_ft,
        awning_lin_ft=lin_ft,
        total_materials=total_materials,
        total_fabric=total_fabric,
        total_fabrication_labor=total_fabrication_labor,
        total_installation_labor=total_installation_labor,
        total_labor=total_labor,
        subtotal_before_markup=subtotal_before_markup,
        total_with_markup=total_with_markup,
        drive_time_total=drive_total,
        mileage_total=miles_total,
        hotel_total=hotels_total,
        total_other_requirements=total_other,
        grand_total=grand_total,
        discount_increase=discount_increase,
        total_price_to_client=total_price_to_client,
        price_per_sq_ft_pre_delivery=price_per_sq_ft(total_with_markup, sq_ft),
        price_per_lin_ft_pre_delivery=price_per_lin_ft(total_with_markup, lin_ft),
        price_per_sq_ft=price_per_sq_ft(total_price_to_client, sq_ft),
        price_per_lin_ft=price_per_lin_ft(total_price_to_client, lin_ft),
    )


# ----------------------------
# Input Checks
# ----------------------------
_SITE_FIELDS = tuple(SiteCosts.__dataclass_fields__)


def find_negative_inputs(inputs):
    """
    List every negative numeric input as a readable warning.

    Negative values are not rejected or clamped by the engine (they may be
    credits); callers decide what to do with the warnings.
    """
    warnings = []

    def check(label, value):
        if value is not None and to_number(value) < 0:
            warnings.append(f"{label} is negative ({to_number(value):g})")

    for index, m in enumerate(inputs.materials, start=1):
        name = m.description or f"Material {index}"
        for attr in ('qty', 'unit_price', 'sales_tax', 'freight'):
            check(f"{name}: {attr}", getattr(m, attr))
    for index, f in enumerate(inputs.fabric_lines, start=1):
        name = f.name or f"Fabric {index}"
        for attr in ('yards', 'price_per_yard', 'sales_tax', 'freight'):
            check(f"{name}: {attr}", getattr(f, attr))
    for index, l in enumerate(inputs.labor_lines, start=1):
        name = l.type or f"Labor {index}"
        for attr in ('hours', 'people', 'rate'):
            check(f"{name}: {attr}", getattr(l, attr))
    for attr in _SITE_FIELDS:
        check(attr, getattr(inputs.site, attr))
    for attr in ('sales_tax', 'markup', 'labor_rate', 'misc_qty', 'misc_price'):
        check(attr, getattr(inputs, attr))
    return warnings
