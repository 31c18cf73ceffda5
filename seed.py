"""
Seed an empty database with an admin account, a demo customer and the
default settings. Safe to run repeatedly.

    python seed.py
"""
import logging

import config
import database
import settings_store
from database import create_document, get_document
from logging_config import setup_logging
from schemas import User
from security import hash_password

logger = logging.getLogger(__name__)

DEMO_CUSTOMER = {
    "name": "Demo User",
    "email": "user@demo.com",
    "phone": "0987654321",
    "password": "user12345",
    "address": "456 User Avenue, User City",
}


def ensure_user(name, email, phone, password, address="", is_admin=False):
    """Create the account unless the email is taken; returns True when created."""
    email = email.lower()
    if get_document("user", {"email": email}):
        logger.info("User %s already exists", email)
        return False
    create_document("user", User(
        name=name,
        email=email,
        phone=phone,
        password_hash=hash_password(password),
        address=address,
        is_admin=is_admin,
    ))
    logger.info("Created %s %s", "admin" if is_admin else "user", email)
    return True


def seed():
    database.ensure_indexes()
    created = {
        "admin": ensure_user("Admin User", config.ADMIN_EMAIL, "1234567890", config.ADMIN_PASSWORD,
                             "123 Admin Street, Admin City", is_admin=True),
        "customer": ensure_user(**DEMO_CUSTOMER),
        "settings": settings_store.initialize_defaults(),
    }
    return created


if __name__ == "__main__":
    setup_logging()
    print(seed())
