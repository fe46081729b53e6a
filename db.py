# db.py
import os

from pymongo import ASCENDING, DESCENDING, MongoClient

MONGO_URI = os.getenv("MONGO_URI", "mongodb://localhost:27017")
MONGO_DB_NAME = os.getenv("MONGO_DB_NAME", "operators_hub")

client = MongoClient(MONGO_URI, serverSelectionTimeoutMS=8000, tz_aware=False)
db = client[MONGO_DB_NAME]


def ensure_indexes():
    """Create the unique/lookup indexes the ledger and settlement code rely on."""
    db["users"].create_index([("email", ASCENDING)], unique=True)
    db["user_profiles"].create_index([("user_id", ASCENDING)], unique=True)
    db["user_roles"].create_index([("user_id", ASCENDING), ("role", ASCENDING)], unique=True)
    db["orders"].create_index([("status", ASCENDING), ("created_at", DESCENDING)])
    db["orders"].create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
    db["payment_requests"].create_index([("status", ASCENDING), ("created_at", DESCENDING)])
    db["credit_transactions"].create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
    db["admin_audit_logs"].create_index([("created_at", DESCENDING)])
    db["approval_workflows"].create_index(
        [("target_type", ASCENDING), ("target_id", ASCENDING)], unique=True
    )
    db["site_settings"].create_index([("setting_key", ASCENDING)], unique=True)
