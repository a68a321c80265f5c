"""
Create the admin account, or promote an existing user to admin.

Run from project root: python -m scripts.create_admin --email admin@example.com --name "Festival Admin"
The password is read from ADMIN_PASSWORD or prompted for when a new account is created.
"""
import argparse
import getpass
import logging
import os
import sys
import uuid

from festchat.auth import hash_password
from festchat.core.database import SessionLocal
from festchat.crud import user_crud
from festchat.model.user import User, ROLE_ADMIN
from festchat.utils.timeutil import utcnow

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def run(email: str, name: str) -> None:
    email = email.strip().lower()
    db = SessionLocal()
    try:
        user = user_crud.get_by_email(db, email)
        if user:
            user.role = ROLE_ADMIN
            user.is_active = True
            db.commit()
            logger.info("Promoted %s to admin", email)
            return

        password = os.environ.get("ADMIN_PASSWORD") or getpass.getpass("Admin password: ")
        if len(password) < 6:
            logger.error("Password must be at least 6 characters.")
            sys.exit(1)
        db.add(User(
            id=uuid.uuid4(),
            email=email,
            name=name,
            password_hash=hash_password(password),
            role=ROLE_ADMIN,
            is_active=True,
            last_active=utcnow(),
        ))
        db.commit()
        logger.info("Created admin %s", email)
    finally:
        db.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--email", required=True)
    parser.add_argument("--name", default="Festival Admin")
    args = parser.parse_args()
    run(args.email, args.name)
