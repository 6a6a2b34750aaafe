"""
Promote the configured super admin account.

Usage: SUPER_ADMIN_EMAIL=someone@example.com python scripts/set_super_admin.py [email]
"""
import sys
import os

# Add parent directory to path to allow importing awning_calc
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from awning_calc import create_app
from awning_calc.models import db, User
from awning_calc.permissions import SUPER_ADMIN

app = create_app()


def set_super_admin(email):
    print("Setting super admin role...")
    print(f"Target email: {email}")

    with app.app_context():
        user = User.query.filter_by(email=email.lower()).first()
        if not user:
            print(f"User with email {email} not found in database.")
            print("The user will be set as super_admin when they first sign in.")
            return False

        user.role = SUPER_ADMIN
        user.is_active = True
        db.session.commit()

        print("\nSuper admin set successfully!")
        print(f"  User: {user.name or 'No name'}")
        print(f"  Email: {user.email}")
        print(f"  Role: {user.role}")
        print(f"  Active: {user.is_active}")
        return True


if __name__ == "__main__":
    target = sys.argv[1] if len(sys.argv) > 1 else os.getenv('SUPER_ADMIN_EMAIL')
    if not target:
        print(__doc__)
        sys.exit(1)
    set_super_admin(target)
