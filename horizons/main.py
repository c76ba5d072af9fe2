from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from decimal import ROUND_DOWN, Decimal
from typing import Any, Optional
from uuid import uuid4

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from horizons import __version__
from horizons.config import settings
from horizons.db import SessionLocal
from horizons.grouping import (
    describe_groups,
    group_bags,
    harvest_summary,
    label_rows,
    sort_rooms_by_number,
)
from horizons.logging import get_logger
from horizons.models import (
    BAG_STATUSES,
    DEAL_STATUSES,
    TRANSACTION_TYPES,
    AuditLog,
    Bag,
    BagSizeCategory,
    BagStatusLog,
    CashTransaction,
    Customer,
    Deal,
    DealNotification,
    Employee,
    HarvestRoom,
    Profile,
    ReserveRequest,
    ReserveRequestItem,
    Role,
    RoleRequest,
    Safe,
    Sale,
    SaleItem,
    SaleNotification,
    SaleReturn,
    Strain,
    Tenant,
)
from horizons.scanning import ScanDebouncer
from horizons.webhook import WebhookPayloadError, parse_item_event, reconcile_item_event, verify_signature
from horizons.zoho import (
    ZohoAPIError,
    ZohoAuthError,
    ZohoClient,
    ZohoError,
    ZohoNetworkError,
)

app = FastAPI(title="Green Horizons", version=__version__)
log = get_logger("api")

CENT = Decimal("0.01")
ADMIN_ROLES = ("admin", "super_admin")
SAFE_CREDITS = ("sale", "deposit")
SAFE_DEBITS = ("withdrawal", "refund")
SELLABLE_STATUSES = ("in_inventory", "reserved")
DISPATCH_MODES = ("reserved", "out_for_delivery")

scan_debouncer = ScanDebouncer(settings.scan_debounce_seconds)


def _meta(request_id: Optional[str] = None, warnings: Optional[list[str]] = None) -> dict:
    return {
        "request_id": request_id or f"req_{uuid4().hex}",
        "warnings": warnings or [],
    }


def get_db() -> Session:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_zoho_client() -> ZohoClient:
    client = ZohoClient.from_settings(settings)
    try:
        yield client
    finally:
        client.close()


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _money(value: Any) -> Optional[float]:
    return float(value) if value is not None else None


def _decimal(value: Any) -> Decimal:
    return Decimal(str(value or 0)).quantize(CENT)


def _day_bounds(day: date) -> tuple[datetime, datetime]:
    start = datetime.combine(day, time.min, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


def _paginate_by_id(query, model, limit: int, cursor: Optional[int]) -> tuple[list[Any], Optional[int]]:
    if cursor is not None:
        query = query.filter(model.id > cursor)
    rows = query.order_by(model.id).limit(limit + 1).all()
    next_cursor = None
    if len(rows) > limit:
        next_cursor = rows[limit - 1].id
        rows = rows[:limit]
    return rows, next_cursor


def _list_meta(limit: int, cursor: Optional[int], next_cursor: Optional[int]) -> dict:
    meta = _meta()
    if next_cursor is not None:
        meta["page"] = {"limit": limit, "cursor": str(next_cursor)}
    elif cursor is not None:
        meta["page"] = {"limit": limit, "cursor": str(cursor)}
    else:
        meta["page"] = {"limit": limit, "cursor": None}
    return meta


@app.exception_handler(ZohoError)
async def handle_zoho_error(request: Request, exc: ZohoError) -> JSONResponse:
    body = None
    if isinstance(exc, ZohoAPIError):
        status_code, detail, body = exc.status_code, str(exc), exc.body
    elif isinstance(exc, ZohoNetworkError):
        status_code, detail = 502, "zoho unreachable"
    elif isinstance(exc, ZohoAuthError):
        status_code, detail = 500, "authentication failed"
    else:
        status_code, detail = 500, str(exc)
    log.error("Zoho call from %s failed: %s", request.url.path, exc)
    return JSONResponse(status_code=status_code, content={"detail": detail, "zoho": body})


def _require_tenant(db: Session, tenant_id: int) -> Tenant:
    tenant = db.get(Tenant, tenant_id)
    if not tenant:
        raise HTTPException(status_code=400, detail="invalid tenant_id")
    return tenant


def _require_employee(db: Session, employee_id: Optional[int], tenant_id: int) -> Optional[Employee]:
    if employee_id is None:
        return None
    employee = db.get(Employee, employee_id)
    if not employee or employee.tenant_id != tenant_id:
        raise HTTPException(status_code=400, detail="invalid employee_id")
    return employee


def _full_name(profile: Optional[Profile]) -> str:
    if profile is None:
        return ""
    name = " ".join(part for part in (profile.first_name, profile.last_name) if part)
    return name or (profile.email or "")


def _set_bag_status(db: Session, bag: Bag, new_status: str, changed_by: Optional[int]) -> None:
    old_status = bag.current_status
    now = _now()
    bag.current_status = new_status
    bag.updated_at = now
    db.add(
        BagStatusLog(
            bag_id=bag.id,
            old_status=old_status,
            new_status=new_status,
            changed_by=changed_by,
            changed_at=now,
        )
    )


def _audit(
    db: Session,
    tenant_id: Optional[int],
    employee_id: Optional[int],
    action: str,
    details: Optional[dict] = None,
) -> None:
    db.add(
        AuditLog(
            tenant_id=tenant_id,
            employee_id=employee_id,
            action=action,
            details=details,
            created_at=_now(),
        )
    )


def _apply_to_safe(db: Session, tenant_id: int, transaction_type: str, amount: Decimal) -> Safe:
    safe = db.query(Safe).filter(Safe.tenant_id == tenant_id).first()
    if safe is None:
        safe = Safe(tenant_id=tenant_id, current_balance=Decimal("0.00"))
        db.add(safe)
    balance = _decimal(safe.current_balance)
    if transaction_type in SAFE_CREDITS:
        balance += amount
    elif transaction_type in SAFE_DEBITS:
        balance -= amount
    safe.current_balance = balance
    safe.last_updated = _now()
    return safe


def _catalog_names(db: Session) -> tuple[dict, dict, dict]:
    rooms = {room.id: room.name for room in db.query(HarvestRoom).all()}
    strains = {strain.id: strain.name for strain in db.query(Strain).all()}
    sizes = {size.id: size.name for size in db.query(BagSizeCategory).all()}
    return rooms, strains, sizes


def _load_bags(db: Session, tenant_id: int, bag_ids: list[int]) -> list[Bag]:
    unique_ids = list(dict.fromkeys(bag_ids))
    bags = db.query(Bag).filter(Bag.id.in_(unique_ids), Bag.tenant_id == tenant_id).all()
    if len(bags) != len(unique_ids):
        raise HTTPException(status_code=400, detail="invalid bag_ids")
    by_id = {bag.id: bag for bag in bags}
    return [by_id[bag_id] for bag_id in unique_ids]


# ---------- tenants ----------
class TenantCreate(BaseModel):
    model_config = {"json_schema_extra": {"example": {'name': 'Green Horizons', 'contact_email': 'ops@greenhorizons.test', 'is_active': True}}}
    name: str
    contact_email: Optional[str] = None
    is_active: bool = True


def _tenant_dict(tenant: Tenant) -> dict:
    return {
        "tenant_id": tenant.id,
        "name": tenant.name,
        "contact_email": tenant.contact_email,
        "is_active": tenant.is_active,
        "created_at": _iso(tenant.created_at),
    }


@app.post("/api/v1/tenants", tags=["Tenants"])
def create_tenant(payload: TenantCreate, db: Session = Depends(get_db)) -> dict:
    tenant = Tenant(
        name=payload.name,
        contact_email=payload.contact_email,
        is_active=payload.is_active,
        created_at=_now(),
    )
    db.add(tenant)
    db.commit()
    db.refresh(tenant)
    return {"data": _tenant_dict(tenant), "meta": _meta()}


@app.get("/api/v1/tenants/{tenant_id}", tags=["Tenants"])
def get_tenant(tenant_id: int, db: Session = Depends(get_db)) -> dict:
    tenant = db.get(Tenant, tenant_id)
    if not tenant:
        raise HTTPException(status_code=404, detail="tenant not found")
    return {"data": _tenant_dict(tenant), "meta": _meta()}


@app.get("/api/v1/tenants", tags=["Tenants"])
def list_tenants(
    is_active: Optional[bool] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=500),
    cursor: Optional[int] = Query(default=None),
    db: Session = Depends(get_db),
) -> dict:
    query = db.query(Tenant)
    if is_active is not None:
        query = query.filter(Tenant.is_active == is_active)
    tenants, next_cursor = _paginate_by_id(query, Tenant, limit, cursor)
    return {"data": [_tenant_dict(t) for t in tenants], "meta": _list_meta(limit, cursor, next_cursor)}


# ---------- profiles ----------
class ProfileCreate(BaseModel):
    model_config = {"json_schema_extra": {"example": {'email': 'jane@greenhorizons.test', 'first_name': 'Jane', 'last_name': 'Doe'}}}
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None


def _profile_dict(profile: Profile) -> dict:
    return {
        "profile_id": profile.id,
        "email": profile.email,
        "first_name": profile.first_name,
        "last_name": profile.last_name,
        "created_at": _iso(profile.created_at),
    }


@app.post("/api/v1/profiles", tags=["Profiles"])
def create_profile(payload: ProfileCreate, db: Session = Depends(get_db)) -> dict:
    if db.query(Profile).filter(Profile.email == payload.email).first():
        raise HTTPException(status_code=409, detail="profile email already exists")
    profile = Profile(
        email=payload.email,
        first_name=payload.first_name,
        last_name=payload.last_name,
        created_at=_now(),
    )
    db.add(profile)
    db.commit()
    db.refresh(profile)
    return {"data": _profile_dict(profile), "meta": _meta()}


@app.get("/api/v1/profiles/{profile_id}", tags=["Profiles"])
def get_profile(profile_id: int, db: Session = Depends(get_db)) -> dict:
    profile = db.get(Profile, profile_id)
    if not profile:
        raise HTTPException(status_code=404, detail="profile not found")
    return {"data": _profile_dict(profile), "meta": _meta()}


@app.get("/api/v1/profiles", tags=["Profiles"])
def list_profiles(
    limit: int = Query(default=50, ge=1, le=500),
    cursor: Optional[int] = Query(default=None),
    db: Session = Depends(get_db),
) -> dict:
    profiles, next_cursor = _paginate_by_id(db.query(Profile), Profile, limit, cursor)
    return {"data": [_profile_dict(p) for p in profiles], "meta": _list_meta(limit, cursor, next_cursor)}


# ---------- roles ----------
class RoleCreate(BaseModel):
    model_config = {"json_schema_extra": {"example": {'tenant_id': 1, 'name': 'seller', 'description': 'Front counter sales'}}}
    tenant_id: int
    name: str
    description: Optional[str] = None


def _role_dict(role: Role) -> dict:
    return {
        "role_id": role.id,
        "tenant_id": role.tenant_id,
        "name": role.name,
        "description": role.description,
    }


@app.post("/api/v1/roles", tags=["Roles"])
def create_role(payload: RoleCreate, db: Session = Depends(get_db)) -> dict:
    _require_tenant(db, payload.tenant_id)
    exists = db.query(Role).filter(Role.tenant_id == payload.tenant_id, Role.name == payload.name).first()
    if exists:
        raise HTTPException(status_code=409, detail="role already exists")
    role = Role(tenant_id=payload.tenant_id, name=payload.name, description=payload.description)
    db.add(role)
    db.commit()
    db.refresh(role)
    return {"data": _role_dict(role), "meta": _meta()}


@app.get("/api/v1/roles", tags=["Roles"])
def list_roles(
    tenant_id: int = Query(...),
    requestable: bool = Query(default=False),
    db: Session = Depends(get_db),
) -> dict:
    query = db.query(Role).filter(Role.tenant_id == tenant_id)
    if requestable:
        query = query.filter(Role.name != "super_admin")
    roles = query.order_by(Role.name).all()
    return {"data": [_role_dict(r) for r in roles], "meta": _meta()}


# ---------- employees ----------
class EmployeeCreate(BaseModel):
    model_config = {"json_schema_extra": {"example": {'tenant_id': 1, 'profile_id': 3, 'role_id': 2, 'phone': '555-0100'}}}
    tenant_id: int
    profile_id: int
    role_id: Optional[int] = None
    phone: Optional[str] = None


class EmployeeRoleUpdate(BaseModel):
    role_id: int


def _employee_dict(employee: Employee) -> dict:
    return {
        "employee_id": employee.id,
        "tenant_id": employee.tenant_id,
        "profile_id": employee.profile_id,
        "name": _full_name(employee.profile),
        "email": employee.profile.email if employee.profile else None,
        "role_id": employee.role_id,
        "role_name": employee.role.name if employee.role else None,
        "phone": employee.phone,
        "created_at": _iso(employee.created_at),
        "updated_at": _iso(employee.updated_at),
    }


def _require_role(db: Session, role_id: Optional[int], tenant_id: int) -> Optional[Role]:
    if role_id is None:
        return None
    role = db.get(Role, role_id)
    if not role or role.tenant_id != tenant_id:
        raise HTTPException(status_code=400, detail="invalid role_id")
    return role


@app.post("/api/v1/employees", tags=["Employees"])
def create_employee(payload: EmployeeCreate, db: Session = Depends(get_db)) -> dict:
    _require_tenant(db, payload.tenant_id)
    if not db.get(Profile, payload.profile_id):
        raise HTTPException(status_code=400, detail="invalid profile_id")
    _require_role(db, payload.role_id, payload.tenant_id)
    if db.query(Employee).filter(Employee.profile_id == payload.profile_id).first():
        raise HTTPException(status_code=409, detail="profile already has an employee record")
    employee = Employee(
        tenant_id=payload.tenant_id,
        profile_id=payload.profile_id,
        role_id=payload.role_id,
        phone=payload.phone,
        created_at=_now(),
    )
    db.add(employee)
    db.commit()
    db.refresh(employee)
    return {"data": _employee_dict(employee), "meta": _meta()}


@app.get("/api/v1/employees/{employee_id}", tags=["Employees"])
def get_employee(employee_id: int, db: Session = Depends(get_db)) -> dict:
    employee = db.get(Employee, employee_id)
    if not employee:
        raise HTTPException(status_code=404, detail="employee not found")
    return {"data": _employee_dict(employee), "meta": _meta()}


@app.get("/api/v1/employees", tags=["Employees"])
def list_employees(
    tenant_id: Optional[int] = Query(default=None),
    role_id: Optional[int] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=500),
    cursor: Optional[int] = Query(default=None),
    db: Session = Depends(get_db),
) -> dict:
    query = db.query(Employee)
    if tenant_id is not None:
        query = query.filter(Employee.tenant_id == tenant_id)
    if role_id is not None:
        query = query.filter(Employee.role_id == role_id)
    employees, next_cursor = _paginate_by_id(query, Employee, limit, cursor)
    return {"data": [_employee_dict(e) for e in employees], "meta": _list_meta(limit, cursor, next_cursor)}


@app.patch("/api/v1/employees/{employee_id}/role", tags=["Employees"])
def update_employee_role(employee_id: int, payload: EmployeeRoleUpdate, db: Session = Depends(get_db)) -> dict:
    employee = db.get(Employee, employee_id)
    if not employee:
        raise HTTPException(status_code=404, detail="employee not found")
    role = _require_role(db, payload.role_id, employee.tenant_id)
    old_role_id = employee.role_id
    employee.role_id = role.id
    employee.updated_at = _now()
    _audit(db, employee.tenant_id, None, "employee.role_changed", {"employee_id": employee.id, "from": old_role_id, "to": role.id})
    db.commit()
    db.refresh(employee)
    return {"data": _employee_dict(employee), "meta": _meta()}


# ---------- role requests ----------
class RoleRequestCreate(BaseModel):
    model_config = {"json_schema_extra": {"example": {'profile_id': 3, 'desired_role_id': 2}}}
    profile_id: int
    desired_role_id: int


class RoleRequestDecision(BaseModel):
    model_config = {"json_schema_extra": {"example": {'decided_by_employee_id': 1, 'approve': True}}}
    decided_by_employee_id: int
    approve: bool


def _role_request_dict(request: RoleRequest) -> dict:
    return {
        "role_request_id": request.id,
        "profile_id": request.profile_id,
        "desired_role_id": request.desired_role_id,
        "status": request.status,
        "decided_by_employee_id": request.decided_by_employee_id,
        "created_at": _iso(request.created_at),
        "updated_at": _iso(request.updated_at),
    }


@app.post("/api/v1/role-requests", tags=["Role Requests"])
def create_role_request(payload: RoleRequestCreate, db: Session = Depends(get_db)) -> dict:
    if not db.get(Profile, payload.profile_id):
        raise HTTPException(status_code=400, detail="invalid profile_id")
    role = db.get(Role, payload.desired_role_id)
    if not role:
        raise HTTPException(status_code=400, detail="invalid desired_role_id")
    if role.name == "super_admin":
        raise HTTPException(status_code=400, detail="role cannot be requested")
    pending = db.query(RoleRequest).filter(
        RoleRequest.profile_id == payload.profile_id,
        RoleRequest.status == "pending",
    ).first()
    if pending:
        raise HTTPException(status_code=409, detail="profile already has a pending role request")
    request = RoleRequest(
        profile_id=payload.profile_id,
        desired_role_id=role.id,
        status="pending",
        created_at=_now(),
    )
    db.add(request)
    db.commit()
    db.refresh(request)
    return {"data": _role_request_dict(request), "meta": _meta()}


@app.get("/api/v1/role-requests", tags=["Role Requests"])
def list_role_requests(
    status: Optional[str] = Query(default=None),
    profile_id: Optional[int] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=500),
    cursor: Optional[int] = Query(default=None),
    db: Session = Depends(get_db),
) -> dict:
    query = db.query(RoleRequest)
    if status is not None:
        query = query.filter(RoleRequest.status == status)
    if profile_id is not None:
        query = query.filter(RoleRequest.profile_id == profile_id)
    requests, next_cursor = _paginate_by_id(query, RoleRequest, limit, cursor)
    return {"data": [_role_request_dict(r) for r in requests], "meta": _list_meta(limit, cursor, next_cursor)}


@app.post("/api/v1/role-requests/{request_id}/decision", tags=["Role Requests"])
def decide_role_request(request_id: int, payload: RoleRequestDecision, db: Session = Depends(get_db)) -> dict:
    decider = db.get(Employee, payload.decided_by_employee_id)
    if not decider or not decider.role or decider.role.name not in ADMIN_ROLES:
        raise HTTPException(status_code=403, detail="only admins can decide role requests")
    request = db.get(RoleRequest, request_id)
    if not request:
        raise HTTPException(status_code=404, detail="role request not found")
    if request.status != "pending":
        raise HTTPException(status_code=409, detail="role request already processed")

    role = db.get(Role, request.desired_role_id)
    if role.tenant_id != decider.tenant_id:
        raise HTTPException(status_code=400, detail="role belongs to another tenant")

    if payload.approve:
        employee = db.query(Employee).filter(Employee.profile_id == request.profile_id).first()
        if not employee:
            raise HTTPException(status_code=400, detail="profile has no employee record")
        if employee.tenant_id != role.tenant_id:
            raise HTTPException(status_code=400, detail="employee belongs to another tenant")
        employee.role_id = role.id
        employee.updated_at = _now()
    request.status = "approved" if payload.approve else "denied"
    request.decided_by_employee_id = decider.id
    request.updated_at = _now()
    _audit(
        db,
        decider.tenant_id,
        decider.id,
        "role_request.decided",
        {"role_request_id": request.id, "status": request.status, "role_id": role.id},
    )
    db.commit()
    db.refresh(request)
    log.info("Role request %s %s by employee %s", request.id, request.status, decider.id)
    return {"data": _role_request_dict(request), "meta": _meta()}


# ---------- catalog ----------
class HarvestRoomCreate(BaseModel):
    model_config = {"json_schema_extra": {"example": {'name': 'H12', 'location': 'North barn', 'capacity': 400}}}
    name: str
    location: Optional[str] = None
    capacity: Optional[int] = Field(default=None, ge=0)


class StrainCreate(BaseModel):
    model_config = {"json_schema_extra": {"example": {'name': 'Blue Dream', 'description': 'Sativa dominant', 'colors': '#3a6ea5', 'harvest_room_ids': [1]}}}
    name: str
    description: Optional[str] = None
    colors: Optional[str] = None
    is_active: bool = True
    harvest_room_ids: list[int] = Field(default_factory=list)


class BagSizeCategoryCreate(BaseModel):
    model_config = {"json_schema_extra": {"example": {'name': 'BIGS', 'price': 450.0}}}
    name: str
    price: Optional[Decimal] = Field(default=None, ge=0)


def _room_dict(room: HarvestRoom) -> dict:
    return {
        "harvest_room_id": room.id,
        "name": room.name,
        "location": room.location,
        "capacity": room.capacity,
        "created_at": _iso(room.created_at),
    }


def _strain_dict(strain: Strain) -> dict:
    return {
        "strain_id": strain.id,
        "name": strain.name,
        "description": strain.description,
        "colors": strain.colors,
        "is_active": strain.is_active,
        "harvest_room_ids": sorted(room.id for room in strain.harvest_rooms),
        "created_at": _iso(strain.created_at),
    }


def _size_dict(size: BagSizeCategory) -> dict:
    return {
        "size_category_id": size.id,
        "name": size.name,
        "price": _money(size.price),
        "created_at": _iso(size.created_at),
    }


@app.post("/api/v1/harvest-rooms", tags=["Catalog"])
def create_harvest_room(payload: HarvestRoomCreate, db: Session = Depends(get_db)) -> dict:
    if db.query(HarvestRoom).filter(HarvestRoom.name == payload.name).first():
        raise HTTPException(status_code=409, detail="harvest room already exists")
    room = HarvestRoom(
        name=payload.name,
        location=payload.location,
        capacity=payload.capacity,
        created_at=_now(),
    )
    db.add(room)
    db.commit()
    db.refresh(room)
    return {"data": _room_dict(room), "meta": _meta()}


@app.get("/api/v1/harvest-rooms", tags=["Catalog"])
def list_harvest_rooms(
    order: str = Query(default="number_desc"),
    db: Session = Depends(get_db),
) -> dict:
    if order not in ("number_desc", "number_asc", "id"):
        raise HTTPException(status_code=400, detail="invalid order")
    rooms = db.query(HarvestRoom).order_by(HarvestRoom.id).all()
    if order != "id":
        rooms = sort_rooms_by_number(rooms, descending=order == "number_desc")
    return {"data": [_room_dict(r) for r in rooms], "meta": _meta()}


@app.post("/api/v1/strains", tags=["Catalog"])
def create_strain(payload: StrainCreate, db: Session = Depends(get_db)) -> dict:
    rooms = []
    if payload.harvest_room_ids:
        rooms = db.query(HarvestRoom).filter(HarvestRoom.id.in_(payload.harvest_room_ids)).all()
        if len(rooms) != len(set(payload.harvest_room_ids)):
            raise HTTPException(status_code=400, detail="invalid harvest_room_ids")
    strain = Strain(
        name=payload.name,
        description=payload.description,
        colors=payload.colors,
        is_active=payload.is_active,
        created_at=_now(),
    )
    strain.harvest_rooms = rooms
    db.add(strain)
    db.commit()
    db.refresh(strain)
    return {"data": _strain_dict(strain), "meta": _meta()}


@app.get("/api/v1/strains", tags=["Catalog"])
def list_strains(
    harvest_room_id: Optional[int] = Query(default=None),
    is_active: Optional[bool] = Query(default=None),
    db: Session = Depends(get_db),
) -> dict:
    query = db.query(Strain)
    if harvest_room_id is not None:
        query = query.filter(Strain.harvest_rooms.any(HarvestRoom.id == harvest_room_id))
    if is_active is not None:
        query = query.filter(Strain.is_active == is_active)
    strains = query.order_by(Strain.name).all()
    return {"data": [_strain_dict(s) for s in strains], "meta": _meta()}


@app.post("/api/v1/bag-size-categories", tags=["Catalog"])
def create_bag_size_category(payload: BagSizeCategoryCreate, db: Session = Depends(get_db)) -> dict:
    if db.query(BagSizeCategory).filter(BagSizeCategory.name == payload.name).first():
        raise HTTPException(status_code=409, detail="bag size category already exists")
    size = BagSizeCategory(name=payload.name, price=payload.price, created_at=_now())
    db.add(size)
    db.commit()
    db.refresh(size)
    return {"data": _size_dict(size), "meta": _meta()}


@app.get("/api/v1/bag-size-categories", tags=["Catalog"])
def list_bag_size_categories(db: Session = Depends(get_db)) -> dict:
    sizes = db.query(BagSizeCategory).order_by(BagSizeCategory.id).all()
    return {"data": [_size_dict(s) for s in sizes], "meta": _meta()}


# ---------- bags ----------
class BagBatchCreate(BaseModel):
    model_config = {"json_schema_extra": {"example": {'tenant_id': 1, 'employee_id': 1, 'harvest_room_id': 1, 'strain_id': 1, 'size_category_id': 1, 'weight': 5.0, 'count': 10, 'sync_to_zoho': False}}}
    tenant_id: int
    employee_id: Optional[int] = None
    harvest_room_id: int
    strain_id: int
    size_category_id: int
    weight: float = Field(gt=0)
    count: int = Field(default=1, ge=1, le=500)
    sync_to_zoho: bool = False


class BagBulkUpdate(BaseModel):
    model_config = {"json_schema_extra": {"example": {'tenant_id': 1, 'bag_ids': [1, 2], 'weight': 4.5, 'sync_to_zoho': False}}}
    tenant_id: int
    bag_ids: list[int] = Field(min_length=1)
    harvest_room_id: Optional[int] = None
    strain_id: Optional[int] = None
    size_category_id: Optional[int] = None
    weight: Optional[float] = Field(default=None, ge=0)
    employee_id: Optional[int] = None
    sync_to_zoho: bool = False


class BagStatusChange(BaseModel):
    model_config = {"json_schema_extra": {"example": {'status': 'missing', 'changed_by': 1}}}
    status: str
    changed_by: Optional[int] = None


class BagCheckIn(BaseModel):
    model_config = {"json_schema_extra": {"example": {'tenant_id': 1, 'qr_code': '9f1c2e...', 'employee_id': 1}}}
    tenant_id: int
    qr_code: str
    employee_id: Optional[int] = None


class BagDispatch(BaseModel):
    model_config = {"json_schema_extra": {"example": {'tenant_id': 1, 'bag_ids': [1, 2], 'mode': 'out_for_delivery', 'delivery_person': 'Sam', 'delivery_recipient': 'Acme Dispensary'}}}
    tenant_id: int
    bag_ids: list[int] = Field(min_length=1)
    mode: str
    reserved_for: Optional[str] = None
    delivery_person: Optional[str] = None
    delivery_recipient: Optional[str] = None
    employee_id: Optional[int] = None


class ScanInput(BaseModel):
    model_config = {"json_schema_extra": {"example": {'tenant_id': 1, 'station': 'counter-1', 'qr_code': '9f1c2e...'}}}
    tenant_id: int
    station: str = "default"
    qr_code: str


def _bag_dict(bag: Bag) -> dict:
    return {
        "bag_id": bag.id,
        "tenant_id": bag.tenant_id,
        "qr_code": bag.qr_code,
        "group_id": bag.group_id,
        "harvest_room_id": bag.harvest_room_id,
        "strain_id": bag.strain_id,
        "size_category_id": bag.size_category_id,
        "employee_id": bag.employee_id,
        "weight": float(bag.weight),
        "current_status": bag.current_status,
        "reserved_for": bag.reserved_for,
        "delivery_person": bag.delivery_person,
        "delivery_recipient": bag.delivery_recipient,
        "created_at": _iso(bag.created_at),
        "updated_at": _iso(bag.updated_at),
    }


def _check_catalog(
    db: Session,
    harvest_room_id: Optional[int],
    strain_id: Optional[int],
    size_category_id: Optional[int],
) -> None:
    if harvest_room_id is not None and not db.get(HarvestRoom, harvest_room_id):
        raise HTTPException(status_code=400, detail="invalid harvest_room_id")
    if strain_id is not None and not db.get(Strain, strain_id):
        raise HTTPException(status_code=400, detail="invalid strain_id")
    if size_category_id is not None and not db.get(BagSizeCategory, size_category_id):
        raise HTTPException(status_code=400, detail="invalid size_category_id")


def _zoho_bag_item(zoho: ZohoClient, bag: Bag, names: tuple[dict, dict, dict], prices: dict) -> dict:
    rooms, strains, sizes = names
    return {
        "name": strains.get(bag.strain_id) or bag.qr_code,
        "sku": bag.qr_code,
        "rate": _money(prices.get(bag.size_category_id)) or 0,
        "purchase_rate": 0,
        "unit": "qty",
        "track_inventory": True,
        "custom_fields": zoho.item_custom_fields(
            rooms.get(bag.harvest_room_id) or "",
            sizes.get(bag.size_category_id) or "",
        ),
    }


@app.post("/api/v1/bags", tags=["Bags"])
def create_bags(
    payload: BagBatchCreate,
    db: Session = Depends(get_db),
    zoho: ZohoClient = Depends(get_zoho_client),
) -> dict:
    _require_tenant(db, payload.tenant_id)
    _require_employee(db, payload.employee_id, payload.tenant_id)
    _check_catalog(db, payload.harvest_room_id, payload.strain_id, payload.size_category_id)

    now = _now()
    group_id = uuid4().hex
    bags = []
    for _ in range(payload.count):
        bag = Bag(
            tenant_id=payload.tenant_id,
            qr_code=uuid4().hex,
            group_id=group_id,
            harvest_room_id=payload.harvest_room_id,
            strain_id=payload.strain_id,
            size_category_id=payload.size_category_id,
            employee_id=payload.employee_id,
            weight=payload.weight,
            current_status="in_inventory",
            created_at=now,
        )
        db.add(bag)
        bags.append(bag)
    db.flush()
    for bag in bags:
        db.add(
            BagStatusLog(
                bag_id=bag.id,
                old_status=None,
                new_status="in_inventory",
                changed_by=payload.employee_id,
                changed_at=now,
            )
        )

    warnings = []
    if payload.sync_to_zoho:
        names = _catalog_names(db)
        prices = {size.id: size.price for size in db.query(BagSizeCategory).all()}
        zoho.create_item_group(
            {
                "group_name": "Bags",
                "unit": "qty",
                "items": [_zoho_bag_item(zoho, bag, names, prices) for bag in bags],
            }
        )
    else:
        warnings.append("zoho_sync_skipped")

    _audit(
        db,
        payload.tenant_id,
        payload.employee_id,
        "bags.created",
        {"group_id": group_id, "count": len(bags), "synced": payload.sync_to_zoho},
    )
    db.commit()
    log.info("Created %d bag(s) in group %s for tenant %s", len(bags), group_id, payload.tenant_id)
    return {
        "data": {"group_id": group_id, "bags": [_bag_dict(b) for b in bags]},
        "meta": _meta(warnings=warnings),
    }


@app.get("/api/v1/bags", tags=["Bags"])
def list_bags(
    tenant_id: Optional[int] = Query(default=None),
    status: Optional[str] = Query(default=None),
    harvest_room_id: Optional[int] = Query(default=None),
    strain_id: Optional[int] = Query(default=None),
    size_category_id: Optional[int] = Query(default=None),
    group_id: Optional[str] = Query(default=None),
    created_today: bool = Query(default=False),
    limit: int = Query(default=50, ge=1, le=500),
    cursor: Optional[int] = Query(default=None),
    db: Session = Depends(get_db),
) -> dict:
    query = db.query(Bag)
    if tenant_id is not None:
        query = query.filter(Bag.tenant_id == tenant_id)
    if status is not None:
        query = query.filter(Bag.current_status == status)
    if harvest_room_id is not None:
        query = query.filter(Bag.harvest_room_id == harvest_room_id)
    if strain_id is not None:
        query = query.filter(Bag.strain_id == strain_id)
    if size_category_id is not None:
        query = query.filter(Bag.size_category_id == size_category_id)
    if group_id is not None:
        query = query.filter(Bag.group_id == group_id)
    if created_today:
        start, end = _day_bounds(_now().date())
        query = query.filter(Bag.created_at >= start, Bag.created_at < end)
    bags, next_cursor = _paginate_by_id(query, Bag, limit, cursor)
    return {"data": [_bag_dict(b) for b in bags], "meta": _list_meta(limit, cursor, next_cursor)}


@app.get("/api/v1/bags/grouped", tags=["Bags"])
def list_grouped_bags(
    tenant_id: int = Query(...),
    status: Optional[str] = Query(default="in_inventory"),
    db: Session = Depends(get_db),
) -> dict:
    query = db.query(Bag).filter(Bag.tenant_id == tenant_id)
    if status:
        query = query.filter(Bag.current_status == status)
    bags = query.order_by(Bag.id).all()
    rooms, strains, sizes = _catalog_names(db)
    return {"data": describe_groups(group_bags(bags), rooms, strains, sizes), "meta": _meta()}


@app.get("/api/v1/bags/labels", tags=["Bags"])
def list_bag_labels(
    tenant_id: int = Query(...),
    group_id: Optional[str] = Query(default=None),
    bag_ids: Optional[list[int]] = Query(default=None),
    db: Session = Depends(get_db),
) -> dict:
    if group_id is None and not bag_ids:
        raise HTTPException(status_code=400, detail="group_id or bag_ids required")
    query = db.query(Bag).filter(Bag.tenant_id == tenant_id)
    if group_id is not None:
        query = query.filter(Bag.group_id == group_id)
    if bag_ids:
        query = query.filter(Bag.id.in_(bag_ids))
    bags = query.order_by(Bag.id).all()
    rooms, strains, sizes = _catalog_names(db)
    return {"data": label_rows(bags, rooms, strains, sizes), "meta": _meta()}


@app.get("/api/v1/bags/by-qr/{qr_code}", tags=["Bags"])
def get_bag_by_qr(qr_code: str, db: Session = Depends(get_db)) -> dict:
    bag = db.query(Bag).filter(Bag.qr_code == qr_code).first()
    if not bag:
        raise HTTPException(status_code=404, detail="bag not found")
    return {"data": _bag_dict(bag), "meta": _meta()}


@app.patch("/api/v1/bags/bulk", tags=["Bags"])
def bulk_update_bags(
    payload: BagBulkUpdate,
    db: Session = Depends(get_db),
    zoho: ZohoClient = Depends(get_zoho_client),
) -> dict:
    bags = _load_bags(db, payload.tenant_id, payload.bag_ids)
    _check_catalog(db, payload.harvest_room_id, payload.strain_id, payload.size_category_id)
    _require_employee(db, payload.employee_id, payload.tenant_id)

    changes = payload.model_dump(
        include={"harvest_room_id", "strain_id", "size_category_id", "weight", "employee_id"},
        exclude_none=True,
    )
    now = _now()
    for bag in bags:
        for field, value in changes.items():
            setattr(bag, field, value)
        bag.updated_at = now

    if payload.sync_to_zoho:
        rooms, strains, sizes = _catalog_names(db)
        prices = {size.id: size.price for size in db.query(BagSizeCategory).all()}
        for bag in bags:
            zoho.update_item(
                bag.qr_code,
                name=strains.get(bag.strain_id) or bag.qr_code,
                harvest=rooms.get(bag.harvest_room_id) or "",
                size=sizes.get(bag.size_category_id) or "",
                rate=_money(prices.get(bag.size_category_id)) or 0,
            )

    _audit(
        db,
        payload.tenant_id,
        payload.employee_id,
        "bags.updated",
        {"bag_ids": [b.id for b in bags], "changes": changes, "synced": payload.sync_to_zoho},
    )
    db.commit()
    return {"data": [_bag_dict(b) for b in bags], "meta": _meta()}


@app.post("/api/v1/bags/check-in", tags=["Bags"])
def check_in_bag(payload: BagCheckIn, db: Session = Depends(get_db)) -> dict:
    bag = db.query(Bag).filter(Bag.qr_code == payload.qr_code, Bag.tenant_id == payload.tenant_id).first()
    if not bag:
        raise HTTPException(status_code=404, detail="bag not found")
    if bag.current_status == "in_inventory":
        return {"data": _bag_dict(bag), "meta": _meta(warnings=["already_in_inventory"])}
    _require_employee(db, payload.employee_id, payload.tenant_id)
    _set_bag_status(db, bag, "in_inventory", payload.employee_id)
    bag.reserved_for = None
    bag.delivery_person = None
    bag.delivery_recipient = None
    db.commit()
    db.refresh(bag)
    return {"data": _bag_dict(bag), "meta": _meta()}


@app.post("/api/v1/bags/dispatch", tags=["Bags"])
def dispatch_bags(payload: BagDispatch, db: Session = Depends(get_db)) -> dict:
    if payload.mode not in DISPATCH_MODES:
        raise HTTPException(status_code=400, detail="invalid mode")
    if payload.mode == "reserved" and not payload.reserved_for:
        raise HTTPException(status_code=400, detail="reserved_for required")
    if payload.mode == "out_for_delivery" and not (payload.delivery_person and payload.delivery_recipient):
        raise HTTPException(status_code=400, detail="delivery_person and delivery_recipient required")
    _require_employee(db, payload.employee_id, payload.tenant_id)
    bags = _load_bags(db, payload.tenant_id, payload.bag_ids)
    unavailable = [bag.id for bag in bags if bag.current_status != "in_inventory"]
    if unavailable:
        raise HTTPException(status_code=409, detail=f"bags not in inventory: {unavailable}")

    for bag in bags:
        _set_bag_status(db, bag, payload.mode, payload.employee_id)
        if payload.mode == "reserved":
            bag.reserved_for = payload.reserved_for
        else:
            bag.delivery_person = payload.delivery_person
            bag.delivery_recipient = payload.delivery_recipient
    db.commit()
    return {"data": [_bag_dict(b) for b in bags], "meta": _meta()}


@app.get("/api/v1/bags/{bag_id}", tags=["Bags"])
def get_bag(bag_id: int, db: Session = Depends(get_db)) -> dict:
    bag = db.get(Bag, bag_id)
    if not bag:
        raise HTTPException(status_code=404, detail="bag not found")
    return {"data": _bag_dict(bag), "meta": _meta()}


@app.post("/api/v1/bags/{bag_id}/status", tags=["Bags"])
def change_bag_status(bag_id: int, payload: BagStatusChange, db: Session = Depends(get_db)) -> dict:
    if payload.status not in BAG_STATUSES:
        raise HTTPException(status_code=400, detail="invalid status")
    bag = db.get(Bag, bag_id)
    if not bag:
        raise HTTPException(status_code=404, detail="bag not found")
    _require_employee(db, payload.changed_by, bag.tenant_id)
    if bag.current_status != payload.status:
        _set_bag_status(db, bag, payload.status, payload.changed_by)
        db.commit()
        db.refresh(bag)
    return {"data": _bag_dict(bag), "meta": _meta()}


@app.post("/api/v1/scans", tags=["Bags"])
def scan_bag(payload: ScanInput, db: Session = Depends(get_db)) -> dict:
    if not scan_debouncer.accept(f"{payload.tenant_id}:{payload.station}", payload.qr_code):
        return {
            "data": {"accepted": False, "qr_code": payload.qr_code, "bag": None},
            "meta": _meta(warnings=["duplicate_scan"]),
        }
    bag = db.query(Bag).filter(Bag.qr_code == payload.qr_code, Bag.tenant_id == payload.tenant_id).first()
    if not bag:
        raise HTTPException(status_code=404, detail="bag not found")
    return {
        "data": {"accepted": True, "qr_code": payload.qr_code, "bag": _bag_dict(bag)},
        "meta": _meta(),
    }


@app.get("/api/v1/bag-status-logs", tags=["Bags"])
def list_bag_status_logs(
    tenant_id: int = Query(...),
    bag_id: Optional[int] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=500),
    db: Session = Depends(get_db),
) -> dict:
    query = (
        db.query(BagStatusLog, Bag.qr_code)
        .join(Bag, Bag.id == BagStatusLog.bag_id)
        .filter(Bag.tenant_id == tenant_id)
    )
    if bag_id is not None:
        query = query.filter(BagStatusLog.bag_id == bag_id)
    rows = query.order_by(BagStatusLog.changed_at.desc(), BagStatusLog.id.desc()).limit(limit).all()
    data = [
        {
            "log_id": entry.id,
            "bag_id": entry.bag_id,
            "qr_code": qr_code,
            "old_status": entry.old_status,
            "new_status": entry.new_status,
            "changed_by": entry.changed_by,
            "changed_at": _iso(entry.changed_at),
        }
        for entry, qr_code in rows
    ]
    return {"data": data, "meta": _meta()}


# ---------- customers ----------
class CustomerCreate(BaseModel):
    model_config = {"json_schema_extra": {"example": {'tenant_id': 1, 'first_name': 'Ada', 'last_name': 'Grower', 'business_name': 'Ada Farms', 'email': 'ada@farm.test', 'phone': '555-0110'}}}
    tenant_id: int
    first_name: str
    last_name: str
    business_name: Optional[str] = None
    license_number: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    drivers_license_url: Optional[str] = None


def _customer_dict(customer: Customer) -> dict:
    return {
        "customer_id": customer.id,
        "tenant_id": customer.tenant_id,
        "first_name": customer.first_name,
        "last_name": customer.last_name,
        "business_name": customer.business_name,
        "license_number": customer.license_number,
        "email": customer.email,
        "phone": customer.phone,
        "address": customer.address,
        "drivers_license_url": customer.drivers_license_url,
        "zoho_customer_id": customer.zoho_customer_id,
        "created_at": _iso(customer.created_at),
    }


@app.post("/api/v1/customers", tags=["Customers"])
def create_customer(payload: CustomerCreate, db: Session = Depends(get_db)) -> dict:
    _require_tenant(db, payload.tenant_id)
    customer = Customer(**payload.model_dump(), created_at=_now())
    db.add(customer)
    db.commit()
    db.refresh(customer)
    return {"data": _customer_dict(customer), "meta": _meta()}


@app.get("/api/v1/customers/{customer_id}", tags=["Customers"])
def get_customer(customer_id: int, db: Session = Depends(get_db)) -> dict:
    customer = db.get(Customer, customer_id)
    if not customer:
        raise HTTPException(status_code=404, detail="customer not found")
    return {"data": _customer_dict(customer), "meta": _meta()}


@app.get("/api/v1/customers", tags=["Customers"])
def list_customers(
    tenant_id: Optional[int] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=500),
    cursor: Optional[int] = Query(default=None),
    db: Session = Depends(get_db),
) -> dict:
    query = db.query(Customer)
    if tenant_id is not None:
        query = query.filter(Customer.tenant_id == tenant_id)
    customers, next_cursor = _paginate_by_id(query, Customer, limit, cursor)
    return {"data": [_customer_dict(c) for c in customers], "meta": _list_meta(limit, cursor, next_cursor)}


@app.post("/api/v1/customers/{customer_id}/zoho-sync", tags=["Customers"])
def sync_customer_to_zoho(
    customer_id: int,
    db: Session = Depends(get_db),
    zoho: ZohoClient = Depends(get_zoho_client),
) -> dict:
    customer = db.get(Customer, customer_id)
    if not customer:
        raise HTTPException(status_code=404, detail="customer not found")
    if customer.zoho_customer_id:
        return {
            "data": {"customer_id": customer.id, "zoho_customer_id": customer.zoho_customer_id, "created": False},
            "meta": _meta(warnings=["already_synced"]),
        }
    customer.zoho_customer_id = zoho.create_customer(
        f"{customer.first_name} {customer.last_name}",
        company_name=customer.business_name,
        email=customer.email,
        phone=customer.phone,
    )
    _audit(db, customer.tenant_id, None, "customer.zoho_synced", {"customer_id": customer.id})
    db.commit()
    log.info("Customer %s synced to Zoho as %s", customer.id, customer.zoho_customer_id)
    return {
        "data": {"customer_id": customer.id, "zoho_customer_id": customer.zoho_customer_id, "created": True},
        "meta": _meta(),
    }


# ---------- sales ----------
class NewCustomerInput(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    drivers_license_url: Optional[str] = None
    business_name: Optional[str] = None
    license_number: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None


class SaleSubmit(BaseModel):
    model_config = {"json_schema_extra": {"example": {'tenant_id': 1, 'employee_id': 1, 'customer_mode': 'existing', 'customer_id': 4, 'bag_ids': [10, 11, 12], 'total_amount': 1350.0, 'signature_url': 'https://files.test/sig/abc.png'}}}
    tenant_id: int
    employee_id: Optional[int] = None
    customer_mode: str = "existing"
    customer_id: Optional[int] = None
    new_customer: Optional[NewCustomerInput] = None
    bag_ids: list[int] = Field(default_factory=list)
    total_amount: Optional[Decimal] = None
    signature_url: Optional[str] = None


def validate_sale(payload: SaleSubmit) -> list[str]:
    """Collect every problem with a sale submission instead of stopping at the first."""
    errors = []
    if payload.customer_mode == "existing":
        if payload.customer_id is None:
            errors.append("Please select a customer.")
    elif payload.customer_mode == "new":
        new = payload.new_customer or NewCustomerInput()
        if not (new.first_name and new.last_name and new.email and new.drivers_license_url):
            errors.append("Please fill out all required fields for the new customer.")
    else:
        errors.append("Customer mode must be 'existing' or 'new'.")
    if not payload.bag_ids:
        errors.append("Please scan at least one bag.")
    if payload.total_amount is None or _decimal(payload.total_amount) <= 0:
        errors.append("Total amount must be greater than zero.")
    if not payload.signature_url:
        errors.append("Signature is required.")
    return errors


def split_total(total: Decimal, count: int) -> list[Decimal]:
    """Split ``total`` into ``count`` cent amounts; the last one absorbs the remainder."""
    share = (total / count).quantize(CENT, rounding=ROUND_DOWN)
    return [share] * (count - 1) + [total - share * (count - 1)]


def _sale_dict(sale: Sale, item_count: Optional[int] = None) -> dict:
    data = {
        "sale_id": sale.id,
        "tenant_id": sale.tenant_id,
        "customer_id": sale.customer_id,
        "employee_id": sale.employee_id,
        "cash_transaction_id": sale.cash_transaction_id,
        "sale_date": _iso(sale.sale_date),
        "status": sale.status,
        "total_amount": _money(sale.total_amount),
        "signature_url": sale.signature_url,
        "zoho_salesorder_id": sale.zoho_salesorder_id,
    }
    if item_count is not None:
        data["item_count"] = item_count
    return data


def _sale_item_dict(item: SaleItem) -> dict:
    return {
        "sale_item_id": item.id,
        "sale_id": item.sale_id,
        "bag_id": item.bag_id,
        "qr_code": item.bag.qr_code if item.bag else None,
        "price": _money(item.price),
        "created_at": _iso(item.created_at),
    }


@app.post("/api/v1/sales", tags=["Sales"])
def submit_sale(payload: SaleSubmit, db: Session = Depends(get_db)) -> dict:
    errors = validate_sale(payload)
    if errors:
        raise HTTPException(status_code=422, detail=errors)

    _require_tenant(db, payload.tenant_id)
    _require_employee(db, payload.employee_id, payload.tenant_id)
    bags = _load_bags(db, payload.tenant_id, payload.bag_ids)
    unavailable = [bag.id for bag in bags if bag.current_status not in SELLABLE_STATUSES]
    if unavailable:
        raise HTTPException(status_code=409, detail=f"bags not available for sale: {unavailable}")

    now = _now()
    total = _decimal(payload.total_amount)

    if payload.customer_mode == "new":
        new = payload.new_customer
        customer = Customer(tenant_id=payload.tenant_id, created_at=now, **new.model_dump())
        db.add(customer)
        db.flush()
    else:
        customer = db.get(Customer, payload.customer_id)
        if not customer or customer.tenant_id != payload.tenant_id:
            raise HTTPException(status_code=400, detail="invalid customer_id")

    transaction = CashTransaction(
        tenant_id=payload.tenant_id,
        transaction_type="sale",
        amount=total,
        description="Sale transaction",
        transaction_date=now,
        created_by=payload.employee_id,
    )
    db.add(transaction)
    db.flush()

    sale = Sale(
        tenant_id=payload.tenant_id,
        customer_id=customer.id,
        employee_id=payload.employee_id,
        cash_transaction_id=transaction.id,
        sale_date=now,
        status="completed",
        total_amount=total,
        signature_url=payload.signature_url,
    )
    db.add(sale)
    db.flush()

    for bag, price in zip(bags, split_total(total, len(bags))):
        db.add(SaleItem(sale_id=sale.id, bag_id=bag.id, price=price, created_at=now))
        _set_bag_status(db, bag, "sold", payload.employee_id)
        bag.reserved_for = None

    db.add(
        SaleNotification(
            sale_id=sale.id,
            message=f"Sale #{sale.id} completed: {len(bags)} bag(s) for ${total:.2f}",
            is_read=False,
            notified_at=now,
        )
    )
    _apply_to_safe(db, payload.tenant_id, "sale", total)
    _audit(
        db,
        payload.tenant_id,
        payload.employee_id,
        "sale.submitted",
        {"sale_id": sale.id, "bag_ids": [b.id for b in bags], "total_amount": float(total)},
    )
    db.commit()
    db.refresh(sale)
    log.info("Sale %s submitted: %d bag(s), total %s", sale.id, len(bags), total)
    return {"data": _sale_dict(sale, item_count=len(bags)), "meta": _meta()}


def _get_sale(db: Session, sale_id: int) -> Sale:
    sale = db.get(Sale, sale_id)
    if not sale:
        raise HTTPException(status_code=404, detail="sale not found")
    return sale


def _sale_items(db: Session, sale_id: int) -> list[SaleItem]:
    return db.query(SaleItem).filter(SaleItem.sale_id == sale_id).order_by(SaleItem.id).all()


@app.get("/api/v1/sales/{sale_id}", tags=["Sales"])
def get_sale(sale_id: int, db: Session = Depends(get_db)) -> dict:
    sale = _get_sale(db, sale_id)
    return {"data": _sale_dict(sale, item_count=len(_sale_items(db, sale.id))), "meta": _meta()}


@app.get("/api/v1/sales", tags=["Sales"])
def list_sales(
    tenant_id: Optional[int] = Query(default=None),
    status: Optional[str] = Query(default=None),
    customer_id: Optional[int] = Query(default=None),
    date_from: Optional[date] = Query(default=None),
    date_to: Optional[date] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=500),
    cursor: Optional[int] = Query(default=None),
    db: Session = Depends(get_db),
) -> dict:
    query = db.query(Sale)
    if tenant_id is not None:
        query = query.filter(Sale.tenant_id == tenant_id)
    if status is not None:
        query = query.filter(Sale.status == status)
    if customer_id is not None:
        query = query.filter(Sale.customer_id == customer_id)
    if date_from is not None:
        query = query.filter(Sale.sale_date >= _day_bounds(date_from)[0])
    if date_to is not None:
        query = query.filter(Sale.sale_date < _day_bounds(date_to)[1])
    sales, next_cursor = _paginate_by_id(query, Sale, limit, cursor)
    return {"data": [_sale_dict(s) for s in sales], "meta": _list_meta(limit, cursor, next_cursor)}


@app.get("/api/v1/sales/{sale_id}/items", tags=["Sales"])
def list_sale_items(sale_id: int, db: Session = Depends(get_db)) -> dict:
    sale = _get_sale(db, sale_id)
    return {"data": [_sale_item_dict(i) for i in _sale_items(db, sale.id)], "meta": _meta()}


@app.get("/api/v1/sales/{sale_id}/invoice", tags=["Sales"])
def get_sale_invoice(sale_id: int, db: Session = Depends(get_db)) -> dict:
    sale = _get_sale(db, sale_id)
    items = _sale_items(db, sale.id)
    prices = {item.bag_id: _decimal(item.price) for item in items if item.bag_id is not None}
    bags = [item.bag for item in items if item.bag is not None]
    rooms, strains, sizes = _catalog_names(db)
    lines = describe_groups(group_bags(bags), rooms, strains, sizes)
    for line in lines:
        line["amount"] = float(sum(prices[bag_id] for bag_id in line["bag_ids"]))

    employee = db.get(Employee, sale.employee_id) if sale.employee_id else None
    customer = sale.customer
    return {
        "data": {
            "invoice_number": f"INV-{sale.id:06d}",
            "sale_id": sale.id,
            "sale_date": _iso(sale.sale_date),
            "status": sale.status,
            "customer": _customer_dict(customer) if customer else None,
            "employee_name": _full_name(employee.profile) if employee else None,
            "lines": lines,
            "bag_count": len(items),
            "total_weight": round(sum(line["total_weight"] for line in lines), 3),
            "total_amount": _money(sale.total_amount),
            "signature_url": sale.signature_url,
        },
        "meta": _meta(),
    }


@app.post("/api/v1/sales/{sale_id}/zoho-sync", tags=["Sales"])
def sync_sale_to_zoho(
    sale_id: int,
    db: Session = Depends(get_db),
    zoho: ZohoClient = Depends(get_zoho_client),
) -> dict:
    sale = _get_sale(db, sale_id)
    if sale.zoho_salesorder_id:
        return {
            "data": {"sale_id": sale.id, "zoho_salesorder_id": sale.zoho_salesorder_id, "created": False},
            "meta": _meta(warnings=["already_synced"]),
        }
    customer = sale.customer
    if not customer or not customer.zoho_customer_id:
        raise HTTPException(status_code=400, detail="customer not synced to Zoho")
    items = _sale_items(db, sale.id)
    if not items:
        raise HTTPException(status_code=400, detail="sale has no items")

    body = zoho.create_sales_order(
        {
            "customer_id": customer.zoho_customer_id,
            "date": sale.sale_date.date().isoformat(),
            "reference_number": f"SALE-{sale.id}",
            "line_items": [
                {
                    "name": item.bag.qr_code if item.bag else f"sale-item-{item.id}",
                    "rate": _money(item.price),
                    "quantity": 1,
                    "unit": "qty",
                }
                for item in items
            ],
            "discount": 0,
            "is_inclusive_tax": False,
        }
    )
    order = body.get("salesorder") if isinstance(body, dict) else None
    salesorder_id = order.get("salesorder_id") if isinstance(order, dict) else None
    if not salesorder_id:
        raise ZohoAPIError(502, body, "missing salesorder_id")
    sale.zoho_salesorder_id = str(salesorder_id)
    _audit(db, sale.tenant_id, sale.employee_id, "sale.zoho_synced", {"sale_id": sale.id})
    db.commit()
    return {
        "data": {"sale_id": sale.id, "zoho_salesorder_id": sale.zoho_salesorder_id, "created": True},
        "meta": _meta(),
    }


# ---------- sale notifications ----------
@app.get("/api/v1/sale-notifications", tags=["Sales"])
def list_sale_notifications(
    tenant_id: int = Query(...),
    unread_only: bool = Query(default=False),
    limit: int = Query(default=50, ge=1, le=500),
    cursor: Optional[int] = Query(default=None),
    db: Session = Depends(get_db),
) -> dict:
    query = (
        db.query(SaleNotification)
        .join(Sale, Sale.id == SaleNotification.sale_id)
        .filter(Sale.tenant_id == tenant_id)
    )
    if unread_only:
        query = query.filter(SaleNotification.is_read.is_(False))
    notifications, next_cursor = _paginate_by_id(query, SaleNotification, limit, cursor)
    data = [
        {
            "notification_id": n.id,
            "sale_id": n.sale_id,
            "message": n.message,
            "is_read": n.is_read,
            "notified_at": _iso(n.notified_at),
        }
        for n in notifications
    ]
    return {"data": data, "meta": _list_meta(limit, cursor, next_cursor)}


@app.post("/api/v1/sale-notifications/{notification_id}/read", tags=["Sales"])
def mark_sale_notification_read(notification_id: int, db: Session = Depends(get_db)) -> dict:
    notification = db.get(SaleNotification, notification_id)
    if not notification:
        raise HTTPException(status_code=404, detail="notification not found")
    notification.is_read = True
    db.commit()
    return {"data": {"notification_id": notification.id, "is_read": True}, "meta": _meta()}


# ---------- cash ----------
class CashTransactionCreate(BaseModel):
    model_config = {"json_schema_extra": {"example": {'tenant_id': 1, 'transaction_type': 'deposit', 'amount': 500.0, 'description': 'Opening float', 'created_by': 1}}}
    tenant_id: int
    transaction_type: str
    amount: Decimal = Field(gt=0)
    description: Optional[str] = None
    transaction_date: Optional[datetime] = None
    created_by: Optional[int] = None


def _transaction_dict(transaction: CashTransaction) -> dict:
    return {
        "cash_transaction_id": transaction.id,
        "tenant_id": transaction.tenant_id,
        "transaction_type": transaction.transaction_type,
        "amount": _money(transaction.amount),
        "description": transaction.description,
        "transaction_date": _iso(transaction.transaction_date),
        "created_by": transaction.created_by,
    }


def _safe_dict(tenant_id: int, safe: Optional[Safe]) -> dict:
    return {
        "tenant_id": tenant_id,
        "current_balance": _money(safe.current_balance) if safe else 0.0,
        "last_updated": _iso(safe.last_updated) if safe else None,
    }


@app.post("/api/v1/cash-transactions", tags=["Cash"])
def create_cash_transaction(payload: CashTransactionCreate, db: Session = Depends(get_db)) -> dict:
    if payload.transaction_type not in TRANSACTION_TYPES:
        raise HTTPException(status_code=400, detail="invalid transaction_type")
    _require_tenant(db, payload.tenant_id)
    _require_employee(db, payload.created_by, payload.tenant_id)
    amount = _decimal(payload.amount)
    transaction = CashTransaction(
        tenant_id=payload.tenant_id,
        transaction_type=payload.transaction_type,
        amount=amount,
        description=payload.description,
        transaction_date=payload.transaction_date or _now(),
        created_by=payload.created_by,
    )
    db.add(transaction)
    safe = _apply_to_safe(db, payload.tenant_id, payload.transaction_type, amount)
    _audit(
        db,
        payload.tenant_id,
        payload.created_by,
        "cash.recorded",
        {"transaction_type": payload.transaction_type, "amount": float(amount)},
    )
    db.commit()
    db.refresh(transaction)
    return {
        "data": {**_transaction_dict(transaction), "safe_balance": _money(safe.current_balance)},
        "meta": _meta(),
    }


@app.get("/api/v1/cash-transactions", tags=["Cash"])
def list_cash_transactions(
    tenant_id: int = Query(...),
    transaction_type: Optional[str] = Query(default=None),
    date_from: Optional[date] = Query(default=None),
    date_to: Optional[date] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=500),
    cursor: Optional[int] = Query(default=None),
    db: Session = Depends(get_db),
) -> dict:
    query = db.query(CashTransaction).filter(CashTransaction.tenant_id == tenant_id)
    if transaction_type is not None:
        query = query.filter(CashTransaction.transaction_type == transaction_type)
    if date_from is not None:
        query = query.filter(CashTransaction.transaction_date >= _day_bounds(date_from)[0])
    if date_to is not None:
        query = query.filter(CashTransaction.transaction_date < _day_bounds(date_to)[1])
    transactions, next_cursor = _paginate_by_id(query, CashTransaction, limit, cursor)
    return {
        "data": [_transaction_dict(t) for t in transactions],
        "meta": _list_meta(limit, cursor, next_cursor),
    }


@app.get("/api/v1/tenants/{tenant_id}/safe", tags=["Cash"])
def get_safe(tenant_id: int, db: Session = Depends(get_db)) -> dict:
    if not db.get(Tenant, tenant_id):
        raise HTTPException(status_code=404, detail="tenant not found")
    safe = db.query(Safe).filter(Safe.tenant_id == tenant_id).first()
    return {"data": _safe_dict(tenant_id, safe), "meta": _meta()}


# ---------- returns ----------
class SaleReturnCreate(BaseModel):
    model_config = {"json_schema_extra": {"example": {'sale_item_id': 7, 'reason': 'Damaged seal', 'employee_id': 1}}}
    sale_item_id: int
    reason: Optional[str] = None
    employee_id: Optional[int] = None


def _return_dict(sale_return: SaleReturn) -> dict:
    return {
        "sale_return_id": sale_return.id,
        "sale_item_id": sale_return.sale_item_id,
        "cash_transaction_id": sale_return.cash_transaction_id,
        "reason": sale_return.reason,
        "return_date": _iso(sale_return.return_date),
    }


@app.post("/api/v1/returns", tags=["Returns"])
def create_sale_return(payload: SaleReturnCreate, db: Session = Depends(get_db)) -> dict:
    item = db.get(SaleItem, payload.sale_item_id)
    if not item:
        raise HTTPException(status_code=404, detail="sale item not found")
    if db.query(SaleReturn).filter(SaleReturn.sale_item_id == item.id).first():
        raise HTTPException(status_code=409, detail="sale item already returned")
    sale = db.get(Sale, item.sale_id)
    _require_employee(db, payload.employee_id, sale.tenant_id)

    now = _now()
    amount = _decimal(item.price)
    refund = CashTransaction(
        tenant_id=sale.tenant_id,
        transaction_type="refund",
        amount=amount,
        description=f"Return of sale item {item.id}",
        transaction_date=now,
        created_by=payload.employee_id,
    )
    db.add(refund)
    db.flush()
    sale_return = SaleReturn(
        sale_item_id=item.id,
        cash_transaction_id=refund.id,
        reason=payload.reason,
        return_date=now,
    )
    db.add(sale_return)
    if item.bag is not None:
        _set_bag_status(db, item.bag, "returned", payload.employee_id)
    safe = _apply_to_safe(db, sale.tenant_id, "refund", amount)
    _audit(
        db,
        sale.tenant_id,
        payload.employee_id,
        "sale.item_returned",
        {"sale_id": sale.id, "sale_item_id": item.id, "amount": float(amount)},
    )
    db.commit()
    db.refresh(sale_return)
    log.info("Sale item %s returned, refund %s", item.id, amount)
    return {
        "data": {**_return_dict(sale_return), "safe_balance": _money(safe.current_balance)},
        "meta": _meta(),
    }


@app.get("/api/v1/returns", tags=["Returns"])
def list_sale_returns(
    tenant_id: int = Query(...),
    limit: int = Query(default=50, ge=1, le=500),
    cursor: Optional[int] = Query(default=None),
    db: Session = Depends(get_db),
) -> dict:
    query = (
        db.query(SaleReturn)
        .join(SaleItem, SaleItem.id == SaleReturn.sale_item_id)
        .join(Sale, Sale.id == SaleItem.sale_id)
        .filter(Sale.tenant_id == tenant_id)
    )
    returns, next_cursor = _paginate_by_id(query, SaleReturn, limit, cursor)
    return {"data": [_return_dict(r) for r in returns], "meta": _list_meta(limit, cursor, next_cursor)}


# ---------- deals ----------
class DealCreate(BaseModel):
    model_config = {"json_schema_extra": {"example": {'tenant_id': 1, 'employee_id': 2, 'customer_id': 4, 'bag_id': 10, 'agreed_price': 420.0, 'payment_due_date': '2026-11-01T17:00:00Z'}}}
    tenant_id: int
    employee_id: Optional[int] = None
    customer_id: int
    bag_id: Optional[int] = None
    agreed_price: Decimal = Field(gt=0)
    payment_due_date: Optional[datetime] = None


class DealStatusChange(BaseModel):
    model_config = {"json_schema_extra": {"example": {'status': 'finalized', 'employee_id': 2}}}
    status: str
    employee_id: Optional[int] = None


def _deal_dict(deal: Deal, detail: bool = False) -> dict:
    data = {
        "deal_id": deal.id,
        "tenant_id": deal.tenant_id,
        "employee_id": deal.employee_id,
        "customer_id": deal.customer_id,
        "bag_id": deal.bag_id,
        "agreed_price": _money(deal.agreed_price),
        "payment_due_date": _iso(deal.payment_due_date),
        "status": deal.status,
        "created_at": _iso(deal.created_at),
        "updated_at": _iso(deal.updated_at),
    }
    if detail:
        customer = deal.customer
        data["seller"] = _full_name(deal.employee.profile) if deal.employee else None
        data["customer"] = {
            "first_name": customer.first_name,
            "last_name": customer.last_name,
            "business_name": customer.business_name,
        }
        data["bag"] = (
            {"qr_code": deal.bag.qr_code, "current_status": deal.bag.current_status}
            if deal.bag is not None
            else None
        )
    return data


def _deal_notification_dict(notification: DealNotification) -> dict:
    return {
        "notification_id": notification.id,
        "deal_id": notification.deal_id,
        "message": notification.message,
        "is_read": notification.is_read,
        "notified_at": _iso(notification.notified_at),
    }


def _get_deal(db: Session, deal_id: int) -> Deal:
    deal = db.get(Deal, deal_id)
    if not deal:
        raise HTTPException(status_code=404, detail="deal not found")
    return deal


@app.post("/api/v1/deals", tags=["Deals"])
def create_deal(payload: DealCreate, db: Session = Depends(get_db)) -> dict:
    _require_tenant(db, payload.tenant_id)
    _require_employee(db, payload.employee_id, payload.tenant_id)
    customer = db.get(Customer, payload.customer_id)
    if not customer or customer.tenant_id != payload.tenant_id:
        raise HTTPException(status_code=400, detail="invalid customer_id")
    if payload.bag_id is not None:
        _load_bags(db, payload.tenant_id, [payload.bag_id])

    now = _now()
    deal = Deal(
        tenant_id=payload.tenant_id,
        employee_id=payload.employee_id,
        customer_id=customer.id,
        bag_id=payload.bag_id,
        agreed_price=_decimal(payload.agreed_price),
        payment_due_date=payload.payment_due_date,
        status="pending",
        created_at=now,
    )
    db.add(deal)
    db.flush()
    db.add(
        DealNotification(
            deal_id=deal.id,
            message=f"Deal #{deal.id} opened at ${deal.agreed_price:.2f}",
            is_read=False,
            notified_at=now,
        )
    )
    _audit(db, payload.tenant_id, payload.employee_id, "deal.created", {"deal_id": deal.id})
    db.commit()
    db.refresh(deal)
    return {"data": _deal_dict(deal), "meta": _meta()}


@app.get("/api/v1/deals", tags=["Deals"])
def list_deals(
    tenant_id: int = Query(...),
    status: Optional[str] = Query(default=None),
    customer_id: Optional[int] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=500),
    cursor: Optional[int] = Query(default=None),
    db: Session = Depends(get_db),
) -> dict:
    query = db.query(Deal).filter(Deal.tenant_id == tenant_id)
    if status is not None:
        query = query.filter(Deal.status == status)
    if customer_id is not None:
        query = query.filter(Deal.customer_id == customer_id)
    deals, next_cursor = _paginate_by_id(query, Deal, limit, cursor)
    return {"data": [_deal_dict(d) for d in deals], "meta": _list_meta(limit, cursor, next_cursor)}


@app.get("/api/v1/deals/{deal_id}", tags=["Deals"])
def get_deal(deal_id: int, db: Session = Depends(get_db)) -> dict:
    return {"data": _deal_dict(_get_deal(db, deal_id), detail=True), "meta": _meta()}


@app.patch("/api/v1/deals/{deal_id}/status", tags=["Deals"])
def update_deal_status(deal_id: int, payload: DealStatusChange, db: Session = Depends(get_db)) -> dict:
    if payload.status not in DEAL_STATUSES:
        raise HTTPException(status_code=400, detail="invalid status")
    deal = _get_deal(db, deal_id)
    _require_employee(db, payload.employee_id, deal.tenant_id)
    if deal.status != payload.status:
        now = _now()
        old_status = deal.status
        deal.status = payload.status
        deal.updated_at = now
        db.add(
            DealNotification(
                deal_id=deal.id,
                message=f"Deal #{deal.id} {payload.status}",
                is_read=False,
                notified_at=now,
            )
        )
        _audit(
            db,
            deal.tenant_id,
            payload.employee_id,
            "deal.status_changed",
            {"deal_id": deal.id, "old_status": old_status, "new_status": payload.status},
        )
        db.commit()
        db.refresh(deal)
        log.info("Deal %s %s -> %s", deal.id, old_status, deal.status)
    return {"data": _deal_dict(deal), "meta": _meta()}


@app.get("/api/v1/deals/{deal_id}/notifications", tags=["Deals"])
def list_deal_notifications(deal_id: int, db: Session = Depends(get_db)) -> dict:
    deal = _get_deal(db, deal_id)
    notifications = (
        db.query(DealNotification)
        .filter(DealNotification.deal_id == deal.id)
        .order_by(DealNotification.notified_at.desc(), DealNotification.id.desc())
        .all()
    )
    return {"data": [_deal_notification_dict(n) for n in notifications], "meta": _meta()}


@app.post("/api/v1/deal-notifications/{notification_id}/read", tags=["Deals"])
def mark_deal_notification_read(notification_id: int, db: Session = Depends(get_db)) -> dict:
    notification = db.get(DealNotification, notification_id)
    if not notification:
        raise HTTPException(status_code=404, detail="notification not found")
    notification.is_read = True
    db.commit()
    return {"data": _deal_notification_dict(notification), "meta": _meta()}


# ---------- reserve requests ----------
class ReserveRequestCreate(BaseModel):
    model_config = {"json_schema_extra": {"example": {'tenant_id': 1, 'employee_id': 2, 'bag_ids': [10, 11]}}}
    tenant_id: int
    employee_id: int
    bag_ids: list[int] = Field(min_length=1)


class ReserveRequestDecision(BaseModel):
    decided_by_employee_id: Optional[int] = None


def _reserve_request_dict(request: ReserveRequest) -> dict:
    return {
        "reserve_request_id": request.id,
        "tenant_id": request.tenant_id,
        "employee_id": request.employee_id,
        "status": request.status,
        "bag_ids": [item.bag_id for item in request.items],
        "created_at": _iso(request.created_at),
        "updated_at": _iso(request.updated_at),
    }


def _pending_bag_ids(db: Session, bag_ids: list[int], exclude_request_id: Optional[int] = None) -> set[int]:
    query = (
        db.query(ReserveRequestItem.bag_id)
        .join(ReserveRequest, ReserveRequest.id == ReserveRequestItem.reserve_request_id)
        .filter(ReserveRequest.status == "pending", ReserveRequestItem.bag_id.in_(bag_ids))
    )
    if exclude_request_id is not None:
        query = query.filter(ReserveRequest.id != exclude_request_id)
    return {bag_id for (bag_id,) in query.all()}


@app.post("/api/v1/reserve-requests", tags=["Reserve Requests"])
def create_reserve_request(payload: ReserveRequestCreate, db: Session = Depends(get_db)) -> dict:
    _require_tenant(db, payload.tenant_id)
    employee = _require_employee(db, payload.employee_id, payload.tenant_id)
    bags = _load_bags(db, payload.tenant_id, payload.bag_ids)
    unavailable = [bag.id for bag in bags if bag.current_status != "in_inventory"]
    if unavailable:
        raise HTTPException(status_code=409, detail=f"bags not in inventory: {unavailable}")
    already = _pending_bag_ids(db, [bag.id for bag in bags])
    if already:
        raise HTTPException(status_code=409, detail=f"bags already requested: {sorted(already)}")

    request = ReserveRequest(
        tenant_id=payload.tenant_id,
        employee_id=employee.id,
        status="pending",
        created_at=_now(),
    )
    request.items = [ReserveRequestItem(bag_id=bag.id) for bag in bags]
    db.add(request)
    db.flush()
    _audit(db, payload.tenant_id, employee.id, "reserve_request.created", {"reserve_request_id": request.id})
    db.commit()
    db.refresh(request)
    return {"data": _reserve_request_dict(request), "meta": _meta()}


@app.get("/api/v1/reserve-requests", tags=["Reserve Requests"])
def list_reserve_requests(
    tenant_id: int = Query(...),
    status: Optional[str] = Query(default=None),
    employee_id: Optional[int] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=500),
    cursor: Optional[int] = Query(default=None),
    db: Session = Depends(get_db),
) -> dict:
    query = db.query(ReserveRequest).filter(ReserveRequest.tenant_id == tenant_id)
    if status is not None:
        query = query.filter(ReserveRequest.status == status)
    if employee_id is not None:
        query = query.filter(ReserveRequest.employee_id == employee_id)
    requests, next_cursor = _paginate_by_id(query, ReserveRequest, limit, cursor)
    return {"data": [_reserve_request_dict(r) for r in requests], "meta": _list_meta(limit, cursor, next_cursor)}


def _get_pending_reserve_request(db: Session, request_id: int) -> ReserveRequest:
    request = db.get(ReserveRequest, request_id)
    if not request:
        raise HTTPException(status_code=404, detail="reserve request not found")
    if request.status != "pending":
        raise HTTPException(status_code=409, detail="reserve request already processed")
    return request


@app.get("/api/v1/reserve-requests/{request_id}", tags=["Reserve Requests"])
def get_reserve_request(request_id: int, db: Session = Depends(get_db)) -> dict:
    request = db.get(ReserveRequest, request_id)
    if not request:
        raise HTTPException(status_code=404, detail="reserve request not found")
    return {"data": _reserve_request_dict(request), "meta": _meta()}


@app.post("/api/v1/reserve-requests/{request_id}/accept", tags=["Reserve Requests"])
def accept_reserve_request(
    request_id: int,
    payload: ReserveRequestDecision,
    db: Session = Depends(get_db),
) -> dict:
    request = _get_pending_reserve_request(db, request_id)
    decider = _require_employee(db, payload.decided_by_employee_id, request.tenant_id)
    bags = [item.bag for item in request.items]
    unavailable = [bag.id for bag in bags if bag.current_status != "in_inventory"]
    if unavailable:
        raise HTTPException(status_code=409, detail=f"bags not in inventory: {unavailable}")

    requester = db.get(Employee, request.employee_id)
    reserved_for = _full_name(requester.profile) if requester else None
    changed_by = decider.id if decider else None
    for bag in bags:
        _set_bag_status(db, bag, "reserved", changed_by)
        bag.reserved_for = reserved_for
    request.status = "accepted"
    request.updated_at = _now()
    _audit(db, request.tenant_id, changed_by, "reserve_request.accepted", {"reserve_request_id": request.id})
    db.commit()
    db.refresh(request)
    return {"data": _reserve_request_dict(request), "meta": _meta()}


@app.post("/api/v1/reserve-requests/{request_id}/reject", tags=["Reserve Requests"])
def reject_reserve_request(
    request_id: int,
    payload: ReserveRequestDecision,
    db: Session = Depends(get_db),
) -> dict:
    request = _get_pending_reserve_request(db, request_id)
    decider = _require_employee(db, payload.decided_by_employee_id, request.tenant_id)
    request.status = "rejected"
    request.updated_at = _now()
    _audit(
        db,
        request.tenant_id,
        decider.id if decider else None,
        "reserve_request.rejected",
        {"reserve_request_id": request.id},
    )
    db.commit()
    db.refresh(request)
    return {"data": _reserve_request_dict(request), "meta": _meta()}


# ---------- reports ----------
@app.get("/api/v1/reports/daily-sales", tags=["Reports"])
def daily_sales_report(
    tenant_id: int = Query(...),
    day: Optional[date] = Query(default=None),
    db: Session = Depends(get_db),
) -> dict:
    day = day or _now().date()
    start, end = _day_bounds(day)
    sales = (
        db.query(Sale)
        .filter(
            Sale.tenant_id == tenant_id,
            Sale.status == "completed",
            Sale.sale_date >= start,
            Sale.sale_date < end,
        )
        .order_by(Sale.id)
        .all()
    )
    sale_ids = [sale.id for sale in sales]
    bags_sold = db.query(SaleItem).filter(SaleItem.sale_id.in_(sale_ids)).count() if sale_ids else 0
    total = sum((_decimal(sale.total_amount) for sale in sales), Decimal("0.00"))
    return {
        "data": {
            "date": day.isoformat(),
            "sale_count": len(sales),
            "bags_sold": bags_sold,
            "total_amount": float(total),
            "sale_ids": sale_ids,
        },
        "meta": _meta(),
    }


@app.get("/api/v1/reports/harvest-summary", tags=["Reports"])
def harvest_summary_report(
    harvest_room_id: int = Query(...),
    tenant_id: Optional[int] = Query(default=None),
    status: Optional[str] = Query(default=None),
    db: Session = Depends(get_db),
) -> dict:
    room = db.get(HarvestRoom, harvest_room_id)
    if not room:
        raise HTTPException(status_code=404, detail="harvest room not found")
    strains = (
        db.query(Strain)
        .filter(Strain.harvest_rooms.any(HarvestRoom.id == room.id))
        .order_by(Strain.id)
        .all()
    )
    query = db.query(Bag).filter(Bag.harvest_room_id == room.id)
    if tenant_id is not None:
        query = query.filter(Bag.tenant_id == tenant_id)
    if status is not None:
        query = query.filter(Bag.current_status == status)
    _, _, sizes = _catalog_names(db)
    return {
        "data": {
            "harvest_room_id": room.id,
            "harvest_room_name": room.name,
            "strains": harvest_summary(room.id, strains, query.all(), sizes),
        },
        "meta": _meta(),
    }


# ---------- audit ----------
@app.get("/api/v1/audit-logs", tags=["Audit"])
def list_audit_logs(
    tenant_id: int = Query(...),
    action: Optional[str] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=500),
    cursor: Optional[int] = Query(default=None),
    db: Session = Depends(get_db),
) -> dict:
    query = db.query(AuditLog).filter(AuditLog.tenant_id == tenant_id)
    if action is not None:
        query = query.filter(AuditLog.action == action)
    entries, next_cursor = _paginate_by_id(query, AuditLog, limit, cursor)
    data = [
        {
            "audit_log_id": entry.id,
            "employee_id": entry.employee_id,
            "action": entry.action,
            "details": entry.details,
            "created_at": _iso(entry.created_at),
        }
        for entry in entries
    ]
    return {"data": data, "meta": _list_meta(limit, cursor, next_cursor)}


# ---------- zoho ----------
class ZohoItemCreate(BaseModel):
    model_config = {
        "extra": "allow",
        "json_schema_extra": {"example": {'name': 'Blue Dream', 'sku': '9f1c2e', 'rate': 450.0, 'purchase_rate': 0}},
    }
    name: str
    sku: str
    rate: float
    purchase_rate: float


class ZohoItemUpdate(BaseModel):
    model_config = {"json_schema_extra": {"example": {'sku': '9f1c2e', 'name': 'Blue Dream', 'cf_harvest': 'H12', 'cf_size': 'BIGS', 'rate': 450.0}}}
    sku: str
    name: str
    cf_harvest: str
    cf_size: str
    rate: float = 0
    purchase_rate: float = 0


class ZohoGroupItem(BaseModel):
    name: str
    sku: str
    rate: float
    purchase_rate: float
    cf_harvest: Optional[str] = None
    cf_size: Optional[str] = None


class ZohoItemGroupCreate(BaseModel):
    group_name: str = "Bags"
    items: list[ZohoGroupItem] = Field(min_length=1)


class ZohoContactCreate(BaseModel):
    model_config = {"json_schema_extra": {"example": {'contact_name': 'Ada Grower', 'company_name': 'Ada Farms'}}}
    contact_name: str
    company_name: Optional[str] = None
    contact_type: str = "customer"
    payment_terms: Optional[int] = None
    currency_id: Optional[str] = None
    website: Optional[str] = None
    custom_fields: Optional[list[dict]] = None
    billing_address: Optional[dict] = None
    shipping_address: Optional[dict] = None
    contact_persons: Optional[list[dict]] = None


class ZohoLineItem(BaseModel):
    quantity: float
    rate: float
    item_id: Optional[str] = None
    sku: Optional[str] = None
    name: Optional[str] = None
    unit: Optional[str] = None


class ZohoSalesOrderCreate(BaseModel):
    model_config = {"json_schema_extra": {"example": {'customer_id': '460000000026049', 'date': '2026-01-15', 'line_items': [{'sku': '9f1c2e', 'quantity': 1, 'rate': 450.0}]}}}
    customer_id: str
    date: str
    line_items: list[ZohoLineItem] = Field(min_length=1)
    shipment_date: Optional[str] = None
    reference_number: Optional[str] = None
    location_id: Optional[str] = None
    ignore_auto_number_generation: bool = False


@app.get("/api/v1/zoho/authorize", tags=["Zoho"])
def zoho_authorize(state: str = Query(default="horizons"), zoho: ZohoClient = Depends(get_zoho_client)):
    if not zoho.client_id:
        raise HTTPException(status_code=500, detail="zoho client id not configured")
    return RedirectResponse(zoho.authorization_url(state), status_code=307)


@app.get("/api/v1/zoho/callback", tags=["Zoho"])
def zoho_callback(
    code: Optional[str] = Query(default=None),
    zoho: ZohoClient = Depends(get_zoho_client),
) -> dict:
    if not code:
        raise HTTPException(status_code=400, detail="missing code")
    tokens = zoho.exchange_code(code)
    log.info("Zoho authorization code exchanged")
    return {"data": tokens, "meta": _meta()}


@app.post("/api/v1/zoho/items", tags=["Zoho"])
def zoho_create_item(payload: ZohoItemCreate, zoho: ZohoClient = Depends(get_zoho_client)) -> dict:
    return {"data": zoho.create_item(payload.model_dump(exclude_none=True)), "meta": _meta()}


@app.put("/api/v1/zoho/items", tags=["Zoho"])
def zoho_update_item(payload: ZohoItemUpdate, zoho: ZohoClient = Depends(get_zoho_client)) -> dict:
    result = zoho.update_item(
        payload.sku,
        name=payload.name,
        harvest=payload.cf_harvest,
        size=payload.cf_size,
        rate=payload.rate,
        purchase_rate=payload.purchase_rate,
    )
    return {"data": {"status": "ok", "result": result}, "meta": _meta()}


@app.delete("/api/v1/zoho/items/{sku}", tags=["Zoho"])
def zoho_delete_item(sku: str, zoho: ZohoClient = Depends(get_zoho_client)) -> dict:
    return {"data": zoho.delete_item(sku), "meta": _meta()}


@app.post("/api/v1/zoho/item-groups", tags=["Zoho"])
def zoho_create_item_group(payload: ZohoItemGroupCreate, zoho: ZohoClient = Depends(get_zoho_client)) -> dict:
    body = {
        "group_name": payload.group_name,
        "unit": "qty",
        "items": [
            {
                "name": item.name,
                "sku": item.sku,
                "rate": item.rate,
                "purchase_rate": item.purchase_rate,
                "unit": "qty",
                "track_inventory": True,
                "custom_fields": zoho.item_custom_fields(item.cf_harvest or item.sku, item.cf_size or ""),
            }
            for item in payload.items
        ],
    }
    return {"data": zoho.create_item_group(body), "meta": _meta()}


@app.post("/api/v1/zoho/contacts", tags=["Zoho"])
def zoho_create_contact(payload: ZohoContactCreate, zoho: ZohoClient = Depends(get_zoho_client)) -> dict:
    body = payload.model_dump(exclude_none=True)
    body.setdefault("company_name", payload.contact_name)
    return {"data": zoho.create_contact(body), "meta": _meta()}


@app.post("/api/v1/zoho/salesorders", tags=["Zoho"])
def zoho_create_sales_order(payload: ZohoSalesOrderCreate, zoho: ZohoClient = Depends(get_zoho_client)) -> dict:
    body = payload.model_dump(exclude_none=True, exclude={"ignore_auto_number_generation"})
    result = zoho.create_sales_order(body, payload.ignore_auto_number_generation)
    return {"data": result, "meta": _meta()}


async def _raw_body(request: Request) -> bytes:
    return await request.body()


@app.post("/api/v1/zoho/webhook", tags=["Zoho"])
def zoho_webhook(
    raw_body: bytes = Depends(_raw_body),
    x_zoho_webhook_signature: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
) -> dict:
    secret = settings.zoho_webhook_secret
    if not secret:
        log.error("Webhook received but no secret is configured")
        raise HTTPException(status_code=500, detail="webhook secret not configured")
    if not verify_signature(secret, raw_body, x_zoho_webhook_signature):
        log.warning("Rejected webhook with bad signature")
        raise HTTPException(status_code=401, detail="invalid signature")
    try:
        event = parse_item_event(raw_body, settings.zoho_harvest_field_id, settings.zoho_size_field_id)
    except WebhookPayloadError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    try:
        result = reconcile_item_event(db, event, settings.zoho_tenant_id)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        log.exception("Database error handling webhook for sku %s", event.sku)
        raise HTTPException(status_code=500, detail="Database error") from None
    return {"data": {"status": result, "sku": event.sku or None}, "meta": _meta()}
