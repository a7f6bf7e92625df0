# Overview: Service-layer operations for customers; tenant-scoped records keyed by phone.

"""
Customers Service

MULTI-TENANT: every lookup goes through scoped_query/get_owned.

The phone is stored normalized (digits, keeping a leading +) so that
"+1 555 0100" typed at the storefront and "+1-555-0100" typed by the admin
are the same customer. Customers are deactivated, never deleted.
"""
from __future__ import annotations

from sqlalchemy import or_

from ..extensions import db
from ..models import Customer
from ..models.customers import CUSTOMER_ACTIVE, CUSTOMER_INACTIVE
from ..validation import ConflictError, ValidationError
from .tenant_service import get_owned, scoped_query


def normalize_phone(raw) -> str:
    """Digits only, keeping a leading +."""
    s = str(raw or "").strip()
    digits = "".join(ch for ch in s if ch.isdigit())
    if not digits:
        return ""
    return ("+" + digits) if s.startswith("+") else digits


def find_customer_by_phone(owner_id: int, phone) -> Customer | None:
    normalized = normalize_phone(phone)
    if not normalized:
        return None
    return scoped_query(Customer, owner_id).filter_by(phone=normalized).first()


def _ensure_phone_free(owner_id: int, phone: str, exclude_id: int | None = None) -> None:
    query = scoped_query(Customer, owner_id).filter(Customer.phone == phone)
    if exclude_id is not None:
        query = query.filter(Customer.id != exclude_id)
    if query.first():
        raise ConflictError("A customer with this phone already exists.")


def _normalized_phone_or_error(raw) -> str:
    phone = normalize_phone(raw)
    if not phone:
        raise ValidationError("phone must contain digits")
    return phone


def list_customers(owner_id: int, *, search: str | None = None, include_inactive: bool = False) -> list[Customer]:
    """Name/email substring or phone digits match, case-insensitive."""
    query = scoped_query(Customer, owner_id)
    if not include_inactive:
        query = query.filter(Customer.status == CUSTOMER_ACTIVE)
    term = (search or "").strip()
    if term:
        like = f"%{term}%"
        clauses = [Customer.name.ilike(like), Customer.email.ilike(like)]
        digits = normalize_phone(term)
        if digits:
            clauses.append(Customer.phone.contains(digits.lstrip("+")))
        query = query.filter(or_(*clauses))
    return query.order_by(Customer.name.asc(), Customer.id.asc()).all()


def get_customer(owner_id: int, customer_id: int) -> Customer | None:
    return get_owned(Customer, customer_id, owner_id)


def create_customer(owner_id: int, patch: dict) -> Customer:
    """
    patch is already validated (validate_payload + enforce_rules_customer).

    Raises:
        ValidationError: phone without digits
        ConflictError: phone already used in this tenant
    """
    phone = _normalized_phone_or_error(patch.get("phone"))
    _ensure_phone_free(owner_id, phone)

    customer = Customer(owner_id=owner_id, status=CUSTOMER_ACTIVE)
    for key, value in patch.items():
        setattr(customer, key, value)
    customer.phone = phone

    db.session.add(customer)
    db.session.commit()
    return customer


def update_customer(owner_id: int, customer_id: int, patch: dict) -> Customer | None:
    """Returns None if not found."""
    customer = get_owned(Customer, customer_id, owner_id)
    if customer is None:
        return None

    if "phone" in patch:
        patch = dict(patch, phone=_normalized_phone_or_error(patch["phone"]))
        _ensure_phone_free(owner_id, patch["phone"], exclude_id=customer.id)

    for key, value in patch.items():
        setattr(customer, key, value)
    db.session.commit()
    return customer


def deactivate_customer(owner_id: int, customer_id: int) -> Customer | None:
    """Idempotent. Returns None if not found."""
    customer = get_owned(Customer, customer_id, owner_id)
    if customer is None:
        return None
    customer.status = CUSTOMER_INACTIVE
    db.session.commit()
    return customer
