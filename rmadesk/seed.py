#!/usr/bin/env python3
"""Insert demo data: python -m rmadesk.seed"""

import os
from pathlib import Path

from werkzeug.security import generate_password_hash

from rmadesk.reference.repo import BrandRepo, ContactRepo, CustomFieldRepo, ServiceCentreRepo, SettingsRepo
from rmadesk.store import DocumentStore


def seed_users(store):
    """Insert demo staff users with hashed passwords"""
    users = store.collection("users")
    demo = [
        ("Admin", "admin@example.com", "Admin", "admin123"),
        ("Front Desk", "desk@example.com", "Staff", "desk123"),
    ]
    existing = {doc.get("email") for doc in users.list()}
    for name, email, role, password in demo:
        if email in existing:
            continue
        users.create({
            "name": name,
            "email": email,
            "role": role,
            "passwordHash": generate_password_hash(password, method="pbkdf2:sha256"),
            "isActive": True,
        })
        print(f"Inserted user: {email}")
    print("NOTE: Default admin account - email: admin@example.com, password: admin123")


def seed_reference(store):
    """Brands, service centres, a contact and a custom field"""
    brands = BrandRepo(store)
    known = {b.name for b in brands.list()}
    for name in ("Acme", "Zeta", "Globex"):
        if name not in known:
            brands.create({"name": name})
            print(f"Inserted brand: {name}")

    centres = ServiceCentreRepo(store)
    if not centres.list():
        centres.create({"name": "Central Repairs", "address": "1 Workshop Lane",
                        "contactPerson": "Sam Tech", "phone": "+1 555 0100"})
        centres.create({"name": "North Service Hub", "address": "22 Harbour Road", "phone": "+1 555 0111"})
        print("Inserted service centres")

    contacts = ContactRepo(store)
    if not contacts.list():
        contacts.create({"company": "Example Retail Ltd", "name": "Jordan Lee",
                         "email": "jordan@example.com", "phone": "+1 555 0123"})
        print("Inserted contact: Example Retail Ltd")

    fields = CustomFieldRepo(store)
    if not fields.list():
        fields.create({"name": "warrantyStatus", "type": "select",
                       "options": ["In warranty", "Out of warranty"], "defaultValue": "In warranty"})
        print("Inserted custom field: warrantyStatus")


def seed_settings(store):
    SettingsRepo(store).save({})
    print("Saved default settings")


def main():
    root = Path(__file__).resolve().parents[1]
    db_path = os.environ.get('APP_DB_PATH', str(root / 'rmadesk.sqlite'))
    print(f"Seeding database at {db_path}")
    store = DocumentStore.open(db_path)
    try:
        seed_users(store)
        seed_reference(store)
        seed_settings(store)
    finally:
        store.close()
    print("Seeding complete")


if __name__ == "__main__":
    main()
