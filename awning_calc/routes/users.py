from flask import Blueprint, request, jsonify, session, current_app
from flask_babel import gettext as _

from ..models import db, User, CostSheet, ActivityLog
from ..permissions import (
    MANAGE_USERS, DELETE_USERS, SUPER_ADMIN, PENDING,
    is_valid_role, can_change_role, get_permissions, get_assignable_roles,
    has_permission, is_super_admin_email
)
from .utils import current_user, permission_required, error_response

users_blueprint = Blueprint('users', __name__)


def _user_payload(user):
    data = user.to_dict()
    data['permissions'] = sorted(get_permissions(user.role))
    data['assignable_roles'] = get_assignable_roles(user.role)
    return data


# ----------------------------
# Session
# ----------------------------
@users_blueprint.route('/login', methods=['POST'])
def login():
    """
    Sign in by e-mail. Unknown addresses are registered as pending users
    until an admin approves them; the configured super admin address is
    registered as super_admin.
    """
    data = request.get_json(silent=True) or request.form
    email = (data.get('email') or '').strip().lower()
    if not email:
        return error_response(_("Email is required"), 400)

    user = User.query.filter_by(email=email).first()
    if user is None:
        super_admin_email = current_app.config.get('SUPER_ADMIN_EMAIL')
        role = SUPER_ADMIN if is_super_admin_email(email, super_admin_email) else PENDING
        user = User(email=email, name=(data.get('name') or '').strip() or None, role=role)
        db.session.add(user)
        db.session.commit()
        current_app.logger.info("Registered new user %s as %s", email, role)

    if not user.is_active:
        return error_response(_("This account has been deactivated"), 403)

    session['user_id'] = user.id
    return jsonify(_user_payload(user))


@users_blueprint.route('/logout', methods=['POST'])
def logout():
    session.pop('user_id', None)
    return jsonify({'status': 'success'})


@users_blueprint.route('/api/me', methods=['GET'])
def me():
    user = current_user()
    if user is None:
        return error_response(_("Unauthorized"), 401)
    return jsonify(_user_payload(user))


# ----------------------------
# User Management
# ----------------------------
@users_blueprint.route('/api/users', methods=['GET'])
def list_users():
    user = current_user()
    if user is None:
        return error_response(_("Unauthorized"), 401)

    if request.args.get('all', '').lower() == 'true':
        if not has_permission(user.role, MANAGE_USERS):
            return error_response(_("Forbidden: Insufficient permissions"), 403)
        users = User.query.order_by(User.name, User.email).all()
        return jsonify([u.to_dict() for u in users])

    users = User.query.filter_by(is_active=True).order_by(User.name, User.email).all()
    return jsonify([{'id': u.id, 'name': u.name, 'email': u.email} for u in users])


@users_blueprint.route('/api/users/<int:user_id>', methods=['PATCH'])
@permission_required(MANAGE_USERS)
def update_user(user_id):
    actor = current_user()
    target = User.query.get_or_404(user_id)
    data = request.get_json(silent=True) or {}
    role = data.get('role')
    is_active = data.get('is_active')

    if role is not None:
        if not is_valid_role(role):
            return error_response(_("Invalid role: %(role)s", role=role), 400)
        if not can_change_role(actor.role, target.role, role):
            return error_response(_("You are not allowed to assign this role"), 403)

    if is_active is False and target.id == actor.id:
        return error_response(_("You cannot deactivate your own account"), 400)
    if is_active is not None and target.role == SUPER_ADMIN and actor.role != SUPER_ADMIN:
        return error_response(_("You are not allowed to change this user"), 403)

    try:
        if role is not None:
            target.role = role
        if is_active is not None:
            target.is_active = bool(is_active)
        if 'name' in data:
            target.name = data.get('name')
        db.session.commit()
        current_app.logger.info("User %s updated by %s: %s", target.id, actor.id, data)
        return jsonify(target.to_dict())
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Error updating user {user_id}: {e}")
        return error_response(_("Failed to update user"), 500)


@users_blueprint.route('/api/users/<int:user_id>', methods=['DELETE'])
@permission_required(DELETE_USERS)
def delete_user(user_id):
    actor = current_user()
    target = User.query.get_or_404(user_id)
    if target.id == actor.id:
        return error_response(_("You cannot delete your own account"), 400)

    try:
        # Cost sheets and their history outlive the account
        CostSheet.query.filter_by(user_id=target.id).update({'user_id': None})
        CostSheet.query.filter_by(deleted_by=target.id).update({'deleted_by': None})
        ActivityLog.query.filter_by(user_id=target.id).update({'user_id': None})
        db.session.delete(target)
        db.session.commit()
        current_app.logger.info("User %s deleted by %s", user_id, actor.id)
        return jsonify({'status': 'success'})
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Error deleting user {user_id}: {e}")
        return error_response(_("Failed to delete user"), 500)
