# seed.py — `flask create-admin` and `flask seed-products`
import click
from flask.cli import with_appcontext
from werkzeug.security import generate_password_hash

from common import _now, jlog
from db import db

users_col = db["users"]
profiles_col = db["user_profiles"]
user_roles_col = db["user_roles"]
products_col = db["products"]

SAMPLE_PRODUCTS = [
    # MPT
    {"name": "1GB Data Pack", "description": "High-speed internet for 30 days", "price": 3000,
     "operator": "MPT", "category": "Data", "validity_days": 30},
    {"name": "5GB Data Pack", "description": "Extended data bundle for heavy users", "price": 12000,
     "operator": "MPT", "category": "Data", "validity_days": 30},
    {"name": "100 Minutes Pack", "description": "Talk time for local calls", "price": 2500,
     "operator": "MPT", "category": "Minutes"},
    {"name": "Combo Package", "description": "2GB data + 50 minutes + 100 SMS", "price": 8000,
     "operator": "MPT", "category": "Packages"},
    # OOREDOO
    {"name": "2GB SuperNet", "description": "Fast 4G data for streaming", "price": 5500,
     "operator": "OOREDOO", "category": "Data"},
    {"name": "10GB Ultimate", "description": "Ultimate data experience", "price": 20000,
     "operator": "OOREDOO", "category": "Data"},
    {"name": "200 Minutes Plus", "description": "Extended talk time package", "price": 4500,
     "operator": "OOREDOO", "category": "Minutes"},
    {"name": "09-123-456-789", "description": "Premium beautiful number", "price": 150000,
     "operator": "OOREDOO", "category": "Beautiful Numbers", "stock_quantity": 1},
    # ATOM
    {"name": "3GB Speed Pack", "description": "High-speed data package", "price": 7000,
     "operator": "ATOM", "category": "Data"},
    {"name": "1000 Reward Points", "description": "Redeem for exclusive rewards", "price": 5000,
     "operator": "ATOM", "category": "Points"},
    {"name": "09-888-888-888", "description": "Lucky number with repeating eights", "price": 500000,
     "operator": "ATOM", "category": "Beautiful Numbers", "stock_quantity": 1},
    # MYTEL
    {"name": "1.5GB Smart Pack", "description": "Smart data for everyday use", "price": 3500,
     "operator": "MYTEL", "category": "Data"},
    {"name": "150 Minutes Value", "description": "Value talk time bundle", "price": 3000,
     "operator": "MYTEL", "category": "Minutes"},
    {"name": "500 Bonus Points", "description": "Bonus loyalty points", "price": 2500,
     "operator": "MYTEL", "category": "Points"},
]


def ensure_admin(email: str, password: str, full_name: str) -> str:
    """Create (or promote) an admin account. Returns the user id."""
    email = email.strip().lower()
    now = _now()
    user = users_col.find_one({"email": email})
    if user:
        uid = user["_id"]
    else:
        uid = users_col.insert_one({
            "email": email,
            "password": generate_password_hash(password),
            "created_at": now,
            "updated_at": now,
        }).inserted_id

    profiles_col.update_one(
        {"user_id": uid},
        {"$setOnInsert": {
            "user_id": uid,
            "email": email,
            "full_name": full_name,
            "credits_balance": 0,
            "telegram_chat_id": None,
            "is_banned": False,
            "ban_reason": None,
            "ban_until": None,
            "created_at": now,
            "updated_at": now,
        }},
        upsert=True,
    )
    user_roles_col.update_one(
        {"user_id": uid, "role": "admin"},
        {"$setOnInsert": {"user_id": uid, "role": "admin", "granted_by": None, "created_at": now}},
        upsert=True,
    )
    jlog("admin_ensured", user_id=str(uid), email=email, created=not bool(user))
    return str(uid)


def seed_products() -> int:
    """Insert the sample catalog, skipping names that already exist per operator."""
    inserted = 0
    now = _now()
    for p in SAMPLE_PRODUCTS:
        if products_col.find_one({"name": p["name"], "operator": p["operator"]}, {"_id": 1}):
            continue
        products_col.insert_one({
            "description": None,
            "currency": "MMK",
            "image_url": None,
            "is_active": True,
            "stock_quantity": 100,
            "validity_days": None,
            "admin_notes": None,
            **p,
            "created_at": now,
            "updated_at": now,
        })
        inserted += 1
    jlog("products_seeded", inserted=inserted)
    return inserted


@click.command("create-admin")
@click.option("--email", required=True)
@click.option("--password", required=True)
@click.option("--name", "full_name", default="Administrator", show_default=True)
@with_appcontext
def create_admin_command(email, password, full_name):
    uid = ensure_admin(email, password, full_name)
    click.echo(f"Admin ready: {email} ({uid})")


@click.command("seed-products")
@with_appcontext
def seed_products_command():
    click.echo(f"Inserted {seed_products()} products")


def register_commands(app):
    app.cli.add_command(create_admin_command)
    app.cli.add_command(seed_products_command)
