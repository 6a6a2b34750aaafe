"""
Role based permissions.

Role hierarchy (highest to lowest):
    super_admin  full system control, manages every user including admins
    admin        settings and users, but never the super_admin role
    estimator    full access to cost sheets
    sales_rep    creates and edits quotes
    viewer       read-only
    pending      no access until approved
"""
import os

SUPER_ADMIN = 'super_admin'
ADMIN = 'admin'
ESTIMATOR = 'estimator'
SALES_REP = 'sales_rep'
VIEWER = 'viewer'
PENDING = 'pending'

ROLE_HIERARCHY = {
    SUPER_ADMIN: 100,
    ADMIN: 80,
    ESTIMATOR: 60,
    SALES_REP: 40,
    VIEWER: 20,
    PENDING: 0,
}

VALID_ROLES = (SUPER_ADMIN, ADMIN, ESTIMATOR, SALES_REP, VIEWER, PENDING)

VIEW_COSTSHEETS = 'view_costsheets'
CREATE_COSTSHEETS = 'create_costsheets'
EDIT_COSTSHEETS = 'edit_costsheets'
DELETE_COSTSHEETS = 'delete_costsheets'
VIEW_ADMIN = 'view_admin'
EDIT_SETTINGS = 'edit_settings'
MANAGE_USERS = 'manage_users'
CHANGE_USER_ROLES = 'change_user_roles'
DELETE_USERS = 'delete_users'
DANGER_ZONE = 'danger_zone'
EMPTY_TRASH = 'empty_trash'
PERMANENT_DELETE = 'permanent_delete'

ROLE_PERMISSIONS = {
    SUPER_ADMIN: frozenset({
        VIEW_COSTSHEETS, CREATE_COSTSHEETS, EDIT_COSTSHEETS, DELETE_COSTSHEETS,
        VIEW_ADMIN, EDIT_SETTINGS, MANAGE_USERS, CHANGE_USER_ROLES,
        DELETE_USERS, DANGER_ZONE, EMPTY_TRASH, PERMANENT_DELETE,
    }),
    # Admins cannot delete users, reach the danger zone or empty the trash
    ADMIN: frozenset({
        VIEW_COSTSHEETS, CREATE_COSTSHEETS, EDIT_COSTSHEETS, DELETE_COSTSHEETS,
        VIEW_ADMIN, EDIT_SETTINGS, MANAGE_USERS,
    }),
    ESTIMATOR: frozenset({VIEW_COSTSHEETS, CREATE_COSTSHEETS, EDIT_COSTSHEETS, DELETE_COSTSHEETS}),
    SALES_REP: frozenset({VIEW_COSTSHEETS, CREATE_COSTSHEETS, EDIT_COSTSHEETS}),
    VIEWER: frozenset({VIEW_COSTSHEETS}),
    PENDING: frozenset(),
}


def is_valid_role(role):
    return role in ROLE_HIERARCHY


def get_permissions(role):
    return ROLE_PERMISSIONS.get(role, frozenset())


def has_permission(role, permission):
    return permission in get_permissions(role)


def has_any_permission(role, permissions):
    return any(has_permission(role, p) for p in permissions)


def has_all_permissions(role, permissions):
    return all(has_permission(role, p) for p in permissions)


def is_super_admin(role):
    return role == SUPER_ADMIN


def is_admin(role):
    """Admin or higher."""
    if not is_valid_role(role):
        return False
    return ROLE_HIERARCHY[role] >= ROLE_HIERARCHY[ADMIN]


def can_change_role(actor_role, target_current_role, target_new_role):
    """
    Only a super_admin may move a user to or from super_admin.
    Admins may change any other role.
    """
    if not is_valid_role(actor_role):
        return False
    if SUPER_ADMIN in (target_current_role, target_new_role):
        return actor_role == SUPER_ADMIN
    return is_admin(actor_role)


def can_delete_user(role):
    return has_permission(role, DELETE_USERS)


def can_access_danger_zone(role):
    return has_permission(role, DANGER_ZONE)


def has_higher_privilege(role, other_role):
    if not is_valid_role(role) or not is_valid_role(other_role):
        return False
    return ROLE_HIERARCHY[role] > ROLE_HIERARCHY[other_role]


def get_assignable_roles(actor_role):
    if actor_role == SUPER_ADMIN:
        return list(VALID_ROLES)
    if actor_role == ADMIN:
        return [r for r in VALID_ROLES if r != SUPER_ADMIN]
    return []


def is_super_admin_email(email, super_admin_email=None):
    """True when `email` is the configured super admin. Without one configured, nobody is."""
    expected = super_admin_email or os.getenv('SUPER_ADMIN_EMAIL')
    if not email or not expected or not expected.strip():
        return False
    return email.strip().lower() == expected.strip().lower()
