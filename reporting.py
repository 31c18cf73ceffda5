"""
Read-only aggregations behind the admin dashboard, analytics, audit and exports.

Nothing here is cached; every call recomputes from the collections.
"""
import os
import platform
import sys
import time
from datetime import datetime, timedelta
from typing import Dict, List

from pymongo.errors import PyMongoError

import database
import settings_store
from database import aggregate, count_documents, get_document, get_document_by_id, get_documents, utcnow
from errors import DatabaseUnavailable
from security import public_user

BACKUP_COLLECTIONS = ("user", "product", "order", "message", "setting")

_started_at = time.time()


def _revenue(match: dict) -> float:
    rows = aggregate("order", [
        {"$match": match},
        {"$group": {"_id": None, "total": {"$sum": "$total_price"}}},
    ])
    return round(rows[0]["total"], 2) if rows else 0


def _start_of_today() -> datetime:
    now = utcnow()
    return datetime(now.year, now.month, now.day)


def _sales_by_product() -> List[dict]:
    return aggregate("order", [
        {"$unwind": "$items"},
        {"$group": {
            "_id": "$items.product_id",
            "name": {"$first": "$items.name"},
            "total_sold": {"$sum": "$items.quantity"},
            "revenue": {"$sum": {"$multiply": ["$items.price", "$items.quantity"]}},
        }},
    ])


def dashboard_stats() -> dict:
    recent = get_documents("order", sort=[("created_at", -1)], limit=5)
    return {
        "stats": {
            "total_orders": count_documents("order"),
            "pending_orders": count_documents("order", {"status": "pending"}),
            "completed_orders": count_documents("order", {"status": "delivered"}),
            "pending_revenue": _revenue({"payment_status": "pending"}),
            "completed_revenue": _revenue({"payment_status": "completed"}),
            "total_products": count_documents("product"),
            "total_users": count_documents("user", {"is_admin": False}),
            "total_admins": count_documents("user", {"is_admin": True}),
            "unread_messages": count_documents("message", {"is_read": False}),
        },
        "recent_orders": recent,
    }


def sales_analytics() -> dict:
    six_months_ago = utcnow() - timedelta(days=183)
    monthly = aggregate("order", [
        {"$match": {"created_at": {"$gte": six_months_ago}, "payment_status": "completed"}},
        {"$group": {
            "_id": {"year": {"$year": "$created_at"}, "month": {"$month": "$created_at"}},
            "total_sales": {"$sum": "$total_price"},
            "order_count": {"$sum": 1},
        }},
        {"$sort": {"_id.year": 1, "_id.month": 1}},
    ])

    # order lines do not carry a category; look it up on the live product
    by_category: Dict[str, dict] = {}
    for row in _sales_by_product():
        product = get_document_by_id("product", row["_id"])
        if not product:
            continue
        bucket = by_category.setdefault(product["category"], {"_id": product["category"], "total_sales": 0, "item_count": 0})
        bucket["total_sales"] = round(bucket["total_sales"] + row["revenue"], 2)
        bucket["item_count"] += row["total_sold"]

    return {
        "monthly_sales": monthly,
        "category_sales": sorted(by_category.values(), key=lambda b: b["total_sales"], reverse=True),
    }


def system_stats() -> dict:
    today = _start_of_today()
    week_ago = today - timedelta(days=7)
    month_ago = today - timedelta(days=30)

    def window(since):
        return {
            "orders": count_documents("order", {"created_at": {"$gte": since}}),
            "revenue": _revenue({"created_at": {"$gte": since}, "payment_status": "completed"}),
        }

    monthly = window(month_ago)
    monthly["new_users"] = count_documents("user", {"created_at": {"$gte": month_ago}})
    top = sorted(_sales_by_product(), key=lambda r: r["total_sold"], reverse=True)[:10]
    return {
        "today": window(today),
        "weekly": window(week_ago),
        "monthly": monthly,
        "top_products": [
            {"product_id": r["_id"], "name": r["name"], "total_sold": r["total_sold"], "revenue": round(r["revenue"], 2)}
            for r in top
        ],
    }


def activity_summary(days: int = 7) -> dict:
    since = utcnow() - timedelta(days=days)
    match = {"$match": {"created_at": {"$gte": since}}}

    def count_by(field):
        return aggregate("activitylog", [
            match,
            {"$group": {"_id": field, "count": {"$sum": 1}}},
            {"$sort": {"count": -1}},
        ])

    daily = aggregate("activitylog", [
        match,
        {"$group": {
            "_id": {"year": {"$year": "$created_at"}, "month": {"$month": "$created_at"}, "day": {"$dayOfMonth": "$created_at"}},
            "count": {"$sum": 1},
        }},
        {"$sort": {"_id.year": 1, "_id.month": 1, "_id.day": 1}},
    ])

    active_users = []
    for row in count_by("$user_id")[:10]:
        user = get_document_by_id("user", row["_id"])
        if user:
            active_users.append({"user_id": row["_id"], "name": user["name"], "email": user["email"], "count": row["count"]})

    return {
        "action_summary": count_by("$action"),
        "resource_summary": count_by("$resource"),
        "daily_activity": daily,
        "active_users": active_users,
    }


def security_audit() -> dict:
    now = utcnow()
    day_ago = now - timedelta(days=1)
    week_ago = now - timedelta(days=7)
    last_backup = get_document("activitylog", {"action": "backup"}, sort=[("created_at", -1)])
    return {
        "users": {
            "total": count_documents("user"),
            "admins": count_documents("user", {"is_admin": True}),
            "inactive": count_documents("user", {"is_active": False}),
            "recent_logins": count_documents("activitylog", {"action": "login", "created_at": {"$gte": day_ago}}),
        },
        "security": {
            "failed_logins": count_documents("activitylog", {"action": "failed_login", "created_at": {"$gte": day_ago}}),
            "password_resets": count_documents("activitylog", {"action": "reset_password", "created_at": {"$gte": week_ago}}),
        },
        "system": {
            "maintenance_mode": settings_store.get_value("maintenance_mode", False),
            "last_backup": last_backup,
            "recent_errors": count_documents("activitylog", {"action": "error", "created_at": {"$gte": day_ago}}),
        },
    }


def system_info() -> dict:
    try:
        collections = sorted(database.collection("user").database.list_collection_names())
        connected = True
    except (PyMongoError, DatabaseUnavailable):
        collections = []
        connected = False
    load = os.getloadavg() if hasattr(os, "getloadavg") else None
    return {
        "server": {
            "platform": sys.platform,
            "architecture": platform.machine(),
            "hostname": platform.node(),
            "cpu_count": os.cpu_count(),
            "load_average": list(load) if load else None,
        },
        "runtime": {
            "python": platform.python_version(),
            "implementation": platform.python_implementation(),
            "pid": os.getpid(),
            "uptime": round(time.time() - _started_at, 1),
        },
        "database": {
            "connected": connected,
            "collections": collections,
        },
    }


def database_stats() -> dict:
    mongo = database.collection("user").database
    collections = {}
    for name in sorted(mongo.list_collection_names()):
        coll = mongo[name]
        collections[name] = {
            "count": coll.count_documents({}),
            "indexes": len(coll.index_information()),
        }
    return {"database": mongo.name, "collections": collections}


def backup() -> dict:
    data = {}
    for name in BACKUP_COLLECTIONS:
        docs = get_documents(name)
        data[name] = [public_user(d) for d in docs] if name == "user" else docs
    return {"timestamp": utcnow().isoformat(), "data": data}


def export_users() -> dict:
    users = [public_user(u) for u in get_documents("user", sort=[("created_at", -1)])]
    return {"export_date": utcnow().isoformat(), "total_users": len(users), "users": users}


def export_orders() -> dict:
    orders = get_documents("order", sort=[("created_at", -1)])
    return {"export_date": utcnow().isoformat(), "total_orders": len(orders), "orders": orders}
