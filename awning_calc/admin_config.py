"""
Admin configuration store.

The configuration is one JSON document kept in the AdminSetting table. It is
always merged over DEFAULT_CONFIG on load so that newly added keys exist for
older stored documents. The pricing engine never reads it directly; callers
turn it into a PricingSettings with settings_from_config().
"""
import copy
import json
from datetime import datetime

from .models import db, AdminSetting
from .pricing import PricingSettings

ADMIN_CONFIG_KEY = 'admin_config'


class AdminConfigError(Exception):
    """Raised when an admin configuration document is malformed"""
    pass


DEFAULT_CATEGORIES = [
    'Steel Awning',
    'Cantilevered Canopy',
    'Hip Roof Canopy',
    'Aluminum Canopy',
    'Steel Trellis',
    'Aluminum Trellis',
    'Fabric Panel',
    'Curtains',
    'Patio Awning',
    'Umbrellas',
    'Sail Shades',
    'Motorized Retractable',
    'Manual Retractable',
    'Bahama Style',
    'Carport',
    'Recover',
    'Slidewire Manual',
    'Slidewire Motorized',
    'Motorized Screen',
    '4K Trellis',
    'Green Screen',
    'Standing Seam Awning',
    'Aluminum Louvered Awning',
    '4K Wall Canopy',
    'Cabanas',
    'Other',
]

DEFAULT_CATEGORY_SETTINGS = {'include_projection_in_linear_footage': True}

DEFAULT_CONFIG = {
    'categories': DEFAULT_CATEGORIES,
    'category_settings': {name: dict(DEFAULT_CATEGORY_SETTINGS) for name in DEFAULT_CATEGORIES},
    'labor_types': [
        'Survey',
        'Shop Drawings',
        'Sewing',
        'Graphics',
        'Assembly',
        'Welding',
        'Paint Labor',
        'Installation 1',
        'Installation 2',
    ],
    'labor_rates': [
        {'name': 'Aggressive', 'rate': 85},
        {'name': 'Regular', 'rate': 95},
        {'name': 'Prevailing Wage', 'rate': 160},
    ],
    'defaults': {
        'sales_tax': 0.0975,
        'markup': 0.8,
        'labor_rate': 95,
        'drive_time_rate': 75,
        'mileage_rate': 0.75,
        'hotel_rate': 150,
    },
    'material_presets': [
        {'description': 'Steel Tubing', 'unit_price': 50},
        {'description': 'Aluminum Extrusion', 'unit_price': 75},
        {'description': 'Hardware Kit', 'unit_price': 150},
        {'description': 'Mounting Brackets', 'unit_price': 25},
        {'description': 'Paint/Powder Coat', 'unit_price': 200},
        {'description': 'Fasteners', 'unit_price': 35},
        {'description': 'Sealant/Caulk', 'unit_price': 15},
        {'description': 'Wiring/Electrical', 'unit_price': 100},
    ],
    'sales_reps': [],
    'fabric_presets': [
        {'name': 'Sunbrella Standard', 'price_per_yard': 25},
        {'name': 'Sunbrella Premium', 'price_per_yard': 35},
        {'name': 'Ferrari Soltis', 'price_per_yard': 45},
        {'name': 'Stamoid', 'price_per_yard': 40},
        {'name': 'Vinyl', 'price_per_yard': 15},
    ],
    'home_base_address': '',
}


def default_config():
    return copy.deepcopy(DEFAULT_CONFIG)


def merge_with_defaults(stored):
    """
    Overlay a stored document on the defaults.

    Top-level keys are replaced wholesale; 'defaults' and 'category_settings'
    are merged key by key. Every category ends up with a settings entry.
    """
    config = default_config()
    if not stored:
        return config

    for key, value in stored.items():
        if key in ('defaults', 'category_settings'):
            continue
        config[key] = copy.deepcopy(value)

    config['defaults'].update(stored.get('defaults') or {})

    category_settings = config['category_settings']
    for name, settings in (stored.get('category_settings') or {}).items():
        merged = dict(DEFAULT_CATEGORY_SETTINGS)
        merged.update(settings or {})
        category_settings[name] = merged

    for name in config.get('categories') or []:
        if name not in category_settings:
            category_settings[name] = dict(DEFAULT_CATEGORY_SETTINGS)

    return config


def validate_config(config):
    if not isinstance(config, dict):
        raise AdminConfigError("Invalid config: expected a JSON object")
    if not isinstance(config.get('categories'), list):
        raise AdminConfigError("Invalid config: missing categories")
    defaults = config.get('defaults')
    if defaults is not None and not isinstance(defaults, dict):
        raise AdminConfigError("Invalid config: defaults must be an object")
    return config


def load_admin_config():
    setting = AdminSetting.query.filter_by(key=ADMIN_CONFIG_KEY).first()
    if not setting:
        return default_config()
    return merge_with_defaults(json.loads(setting.value))


def save_admin_config(config):
    """Validate and persist a configuration document. The caller commits."""
    validate_config(config)
    setting = AdminSetting.query.filter_by(key=ADMIN_CONFIG_KEY).first()
    if not setting:
        setting = AdminSetting(key=ADMIN_CONFIG_KEY, value='{}')
        db.session.add(setting)
    setting.value = json.dumps(config)
    setting.updated_at = datetime.utcnow()
    return merge_with_defaults(config)


def reset_admin_config():
    return save_admin_config(default_config())


def settings_from_config(config):
    return PricingSettings.from_config(config)


def include_projection_for(config, category):
    """Whether a category counts projection (both sides) in its linear footage."""
    settings = (config.get('category_settings') or {}).get(category) or {}
    return bool(settings.get('include_projection_in_linear_footage', True))
