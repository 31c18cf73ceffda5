"""
Back office endpoints: users, reporting, system tools, settings and the activity log.

Every mutation here appends an activity entry; reads never do.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, List, Literal, Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

import reporting
import settings_store
from activity import log_activity
from database import (
    count_documents, create_document, delete_document, delete_documents, get_document, get_document_by_id,
    get_documents, get_page, update_document, utcnow,
)
from errors import ConflictError, NotFoundError, ValidationError
from schemas import PHONE_PATTERN, SettingType, User
from security import hash_password, public_user, require_admin

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])
settings_router = APIRouter(prefix="/settings", tags=["settings"])
activity_router = APIRouter(prefix="/activity-logs", tags=["activity-logs"])

EMAIL_TEMPLATE_CATEGORY = "email_templates"
LOG_RETENTION_DAYS = 90


def _attachment(payload: dict, prefix: str) -> JSONResponse:
    filename = f"{prefix}_export_{utcnow().date().isoformat()}.json"
    return JSONResponse(
        content=jsonable_encoder(payload),
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


def _get_user_or_404(user_id: str) -> dict:
    user = get_document_by_id("user", user_id)
    if not user:
        raise NotFoundError("User not found")
    return user


# ===================== Dashboard & reporting =====================
@router.get("/dashboard")
def dashboard(admin: dict = Depends(require_admin)):
    return reporting.dashboard_stats()


@router.get("/analytics")
def analytics(admin: dict = Depends(require_admin)):
    return reporting.sales_analytics()


@router.get("/system-stats")
def system_stats(admin: dict = Depends(require_admin)):
    return reporting.system_stats()


@router.get("/security/audit")
def security_audit(admin: dict = Depends(require_admin)):
    return reporting.security_audit()


# ===================== Users =====================
class AdminCreateRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=50)
    email: EmailStr
    phone: str = Field(..., pattern=PHONE_PATTERN)
    password: str = Field(..., min_length=8)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v):
        if len(v) > 50:
            raise ValueError("Email must be at most 50 characters")
        return v.lower()


class UserUpdateRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(None, min_length=1, max_length=50)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(None, pattern=PHONE_PATTERN)
    is_active: Optional[bool] = None
    is_admin: Optional[bool] = None

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v):
        if v is not None and len(v) > 50:
            raise ValueError("Email must be at most 50 characters")
        return v.lower() if v else v


class PasswordResetRequest(BaseModel):
    new_password: str = Field(..., min_length=8)


class BulkUserAction(BaseModel):
    action: Literal["activate", "deactivate", "delete"]
    user_ids: List[str]


class RoleUpdate(BaseModel):
    is_admin: bool


@router.get("/users")
def list_users(page: int = Query(1, ge=1), limit: int = Query(20, ge=1, le=100), admin: dict = Depends(require_admin)):
    result = get_page("user", {"is_admin": False}, page=page, limit=limit, sort=[("created_at", -1)])
    return {
        "users": [public_user(u) for u in result["items"]],
        "total_pages": result["total_pages"],
        "current_page": result["current_page"],
        "total": result["total"],
    }


@router.post("/users/admin", status_code=201)
def create_admin(payload: AdminCreateRequest, request: Request, admin: dict = Depends(require_admin)):
    if get_document("user", {"email": payload.email}):
        raise ConflictError("User already exists")
    user = User(
        name=payload.name,
        email=payload.email,
        phone=payload.phone,
        password_hash=hash_password(payload.password),
        is_admin=True,
        is_active=True,
    )
    user_id = create_document("user", user)
    log_activity(admin["_id"], "create", "admin_user", user_id,
                 {"created_admin": {"name": user.name, "email": user.email, "phone": user.phone}}, request)
    return {"message": "Admin user created successfully", "user": public_user(get_document_by_id("user", user_id))}


@router.put("/users/{user_id}")
def update_user(user_id: str, payload: UserUpdateRequest, request: Request, admin: dict = Depends(require_admin)):
    user = _get_user_or_404(user_id)
    changes = payload.model_dump(exclude_none=True)
    if "email" in changes and changes["email"] != user["email"]:
        if get_document("user", {"email": changes["email"]}):
            raise ConflictError("Email already registered")
    if changes:
        update_document("user", user_id, changes)
    updated = get_document_by_id("user", user_id)
    log_activity(admin["_id"], "update", "user", user_id,
                 {"old_data": public_user(user), "new_data": public_user(updated)}, request)
    return {"message": "User updated successfully", "user": public_user(updated)}


@router.delete("/users/{user_id}")
def delete_user(user_id: str, request: Request, admin: dict = Depends(require_admin)):
    user = _get_user_or_404(user_id)
    if user.get("is_admin"):
        raise ValidationError("Cannot delete admin user")
    delete_document("user", user_id)
    delete_documents("cart", {"user_id": user_id})
    log_activity(admin["_id"], "delete", "user", user_id, {"deleted_user": public_user(user)}, request)
    return {"message": "User deleted successfully"}


@router.post("/users/{user_id}/reset-password")
def reset_password(user_id: str, payload: PasswordResetRequest, request: Request, admin: dict = Depends(require_admin)):
    user = _get_user_or_404(user_id)
    update_document("user", user_id, {"password_hash": hash_password(payload.new_password)})
    log_activity(admin["_id"], "reset_password", "user", user_id, {"target_user": user["email"]}, request)
    return {"message": "Password reset successfully"}


@router.post("/users/bulk-action")
def bulk_user_action(payload: BulkUserAction, request: Request, admin: dict = Depends(require_admin)):
    result = {"success": 0, "failed": 0, "errors": []}
    for user_id in payload.user_ids:
        user = get_document_by_id("user", user_id)
        if not user:
            result["failed"] += 1
            result["errors"].append(f"User {user_id} not found")
            continue
        if user.get("is_admin") and payload.action in ("delete", "deactivate"):
            result["failed"] += 1
            result["errors"].append(f"Cannot {payload.action} admin user {user['email']}")
            continue
        if payload.action == "delete":
            delete_document("user", user_id)
            delete_documents("cart", {"user_id": user_id})
        else:
            update_document("user", user_id, {"is_active": payload.action == "activate"})
        result["success"] += 1

    log_activity(admin["_id"], "bulk_action", "users", None,
                 {"action": payload.action, "user_ids": payload.user_ids, "result": result}, request)
    return {
        "message": f"Bulk action completed: {result['success']} successful, {result['failed']} failed",
        "result": result,
    }


@router.put("/users/{user_id}/role")
def update_role(user_id: str, payload: RoleUpdate, request: Request, admin: dict = Depends(require_admin)):
    user = _get_user_or_404(user_id)
    update_document("user", user_id, {"is_admin": payload.is_admin})
    log_activity(admin["_id"], "role_change", "user", user_id, {
        "target_user": user["email"],
        "old_role": "admin" if user.get("is_admin") else "user",
        "new_role": "admin" if payload.is_admin else "user",
    }, request)
    role = "admin" if payload.is_admin else "user"
    return {"message": f"User role updated to {role}", "user": public_user(get_document_by_id("user", user_id))}


# ===================== System =====================
class MaintenanceRequest(BaseModel):
    enabled: bool


@router.get("/system/info")
def system_info(admin: dict = Depends(require_admin)):
    return reporting.system_info()


@router.get("/system/database-stats")
def database_stats(admin: dict = Depends(require_admin)):
    return reporting.database_stats()


@router.post("/system/clear-cache")
def clear_cache(request: Request, admin: dict = Depends(require_admin)):
    cutoff = utcnow() - timedelta(days=LOG_RETENTION_DAYS)
    deleted = delete_documents("activitylog", {"created_at": {"$lt": cutoff}})
    log_activity(admin["_id"], "clear_cache", "system", None, {"deleted_logs": deleted}, request)
    return {"message": "Cache cleared successfully", "deleted_logs": deleted}


@router.post("/system/backup")
def backup(request: Request, admin: dict = Depends(require_admin)):
    data = reporting.backup()
    record_count = sum(len(docs) for docs in data["data"].values())
    log_activity(admin["_id"], "backup", "system", None,
                 {"collections": list(reporting.BACKUP_COLLECTIONS), "record_count": record_count}, request)
    logger.info("Backup of %d records taken by %s", record_count, admin["_id"])
    return data


@router.post("/system/maintenance")
def set_maintenance(payload: MaintenanceRequest, request: Request, admin: dict = Depends(require_admin)):
    settings_store.set_value("maintenance_mode", payload.enabled, "boolean", "System maintenance mode", "general")
    action = "enable_maintenance" if payload.enabled else "disable_maintenance"
    log_activity(admin["_id"], action, "system", None, {"maintenance_mode": payload.enabled}, request)
    return {
        "message": f"Maintenance mode {'enabled' if payload.enabled else 'disabled'}",
        "maintenance_mode": payload.enabled,
    }


# ===================== Email templates =====================
class EmailTemplateRequest(BaseModel):
    subject: str = Field(..., min_length=1)
    body: str = Field(..., min_length=1)


@router.get("/email-templates")
def list_email_templates(admin: dict = Depends(require_admin)):
    return get_documents("setting", {"category": EMAIL_TEMPLATE_CATEGORY}, sort=[("key", 1)])


@router.put("/email-templates/{template_name}")
def update_email_template(template_name: str, payload: EmailTemplateRequest, request: Request, admin: dict = Depends(require_admin)):
    template = settings_store.set_value(
        f"email_template_{template_name}",
        {"subject": payload.subject, "body": payload.body},
        "object",
        f"Email template for {template_name}",
        EMAIL_TEMPLATE_CATEGORY,
    )
    log_activity(admin["_id"], "update", "email_template", template["_id"],
                 {"template_name": template_name, "subject": payload.subject}, request)
    return template


# ===================== Exports =====================
@router.get("/export/users")
def export_users(request: Request, admin: dict = Depends(require_admin)):
    payload = reporting.export_users()
    log_activity(admin["_id"], "export", "users", None, {"exported_count": payload["total_users"]}, request)
    return _attachment(payload, "users")


@router.get("/export/orders")
def export_orders(request: Request, admin: dict = Depends(require_admin)):
    payload = reporting.export_orders()
    log_activity(admin["_id"], "export", "orders", None, {"exported_count": payload["total_orders"]}, request)
    return _attachment(payload, "orders")


# ===================== Settings =====================
class SettingWrite(BaseModel):
    value: Any = None
    type: SettingType = "string"
    description: Optional[str] = None
    category: Optional[str] = None


class BulkSettingWrite(SettingWrite):
    key: str = Field(..., min_length=1)


class BulkSettingsRequest(BaseModel):
    settings: List[BulkSettingWrite]


class SettingsImportRequest(BaseModel):
    settings: List[BulkSettingWrite]
    overwrite: bool = False


@settings_router.get("")
def list_settings(admin: dict = Depends(require_admin)):
    return settings_store.list_grouped()


@settings_router.put("")
def bulk_update_settings(payload: BulkSettingsRequest, request: Request, admin: dict = Depends(require_admin)):
    # coerce everything first so a bad entry leaves the store untouched
    for item in payload.settings:
        settings_store.coerce_value(item.type, item.value)
    results = [
        settings_store.set_value(item.key, item.value, item.type, item.description, item.category)
        for item in payload.settings
    ]
    log_activity(admin["_id"], "bulk_update", "settings", None,
                 {"updated_count": len(results), "keys": [item.key for item in payload.settings]}, request)
    return {"message": f"Updated {len(results)} settings", "settings": results}


@settings_router.post("/initialize")
def initialize_settings(request: Request, admin: dict = Depends(require_admin)):
    created = settings_store.initialize_defaults()
    log_activity(admin["_id"], "initialize", "settings", None, {"created_count": created}, request)
    return {"message": f"Initialized {created} default settings", "created": created}


@settings_router.get("/export/backup")
def export_settings(request: Request, admin: dict = Depends(require_admin)):
    fields = {"_id": 0, "key": 1, "value": 1, "type": 1, "description": 1, "category": 1}
    settings = get_documents("setting", sort=[("category", 1), ("key", 1)], projection=fields)
    log_activity(admin["_id"], "export", "settings", None, {"export_count": len(settings)}, request)
    return {"export_date": utcnow().isoformat(), "settings": settings}


@settings_router.post("/import/restore")
def import_settings(payload: SettingsImportRequest, request: Request, admin: dict = Depends(require_admin)):
    imported = skipped = 0
    for item in payload.settings:
        if not payload.overwrite and count_documents("setting", {"key": item.key}):
            skipped += 1
            continue
        settings_store.set_value(item.key, item.value, item.type, item.description, item.category)
        imported += 1
    log_activity(admin["_id"], "import", "settings", None,
                 {"imported": imported, "skipped": skipped, "overwrite": payload.overwrite}, request)
    return {"message": f"Imported {imported} settings, skipped {skipped}", "imported": imported, "skipped": skipped}


@settings_router.get("/{key}")
def get_setting(key: str, admin: dict = Depends(require_admin)):
    setting = settings_store.get_setting(key)
    if not setting:
        raise NotFoundError("Setting not found")
    return setting


@settings_router.put("/{key}")
def put_setting(key: str, payload: SettingWrite, request: Request, admin: dict = Depends(require_admin)):
    previous = settings_store.get_setting(key)
    setting = settings_store.set_value(key, payload.value, payload.type, payload.description, payload.category)
    log_activity(admin["_id"], "update", "settings", setting["_id"], {
        "key": key,
        "old_value": previous["value"] if previous else None,
        "new_value": setting["value"],
    }, request)
    return setting


@settings_router.delete("/{key}")
def delete_setting(key: str, request: Request, admin: dict = Depends(require_admin)):
    setting = settings_store.get_setting(key)
    if not setting:
        raise NotFoundError("Setting not found")
    delete_document("setting", setting["_id"])
    log_activity(admin["_id"], "delete", "settings", setting["_id"], {"key": key, "value": setting["value"]}, request)
    return {"message": "Setting deleted successfully"}


# ===================== Activity log =====================
@activity_router.get("")
def list_activity(
    user_id: Optional[str] = None,
    resource: Optional[str] = None,
    action: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    admin: dict = Depends(require_admin),
):
    filter_q = {}
    if user_id:
        filter_q["user_id"] = user_id
    if resource:
        filter_q["resource"] = resource
    if action:
        filter_q["action"] = action
    if start_date or end_date:
        filter_q["created_at"] = {}
        if start_date:
            filter_q["created_at"]["$gte"] = _naive_utc(start_date)
        if end_date:
            filter_q["created_at"]["$lte"] = _naive_utc(end_date)
    result = get_page("activitylog", filter_q, page=page, limit=limit, sort=[("created_at", -1)])
    for entry in result["items"]:
        user = get_document_by_id("user", entry["user_id"])
        entry["user"] = {"name": user["name"], "email": user["email"]} if user else None
    return {
        "logs": result["items"],
        "total_pages": result["total_pages"],
        "current_page": result["current_page"],
        "total": result["total"],
    }


@activity_router.get("/summary")
def activity_summary(days: int = Query(7, ge=1, le=365), admin: dict = Depends(require_admin)):
    return reporting.activity_summary(days)


@activity_router.delete("/cleanup")
def cleanup_activity(request: Request, days: int = Query(LOG_RETENTION_DAYS, ge=1), admin: dict = Depends(require_admin)):
    cutoff = utcnow() - timedelta(days=days)
    deleted = delete_documents("activitylog", {"created_at": {"$lt": cutoff}})
    log_activity(admin["_id"], "cleanup", "activity_logs", None, {"deleted_count": deleted, "days": days}, request)
    return {"message": f"Cleaned up {deleted} old activity logs", "deleted_count": deleted}


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return (value - value.utcoffset()).replace(tzinfo=None)
