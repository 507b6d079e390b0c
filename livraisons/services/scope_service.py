"""Scope service: tenant boundaries, date-window filtering, stable listing.

Every aggregation or listing goes through a TenantFilter:
- an agency caller is pinned to its own agency
- a super admin may target all agencies (None) or one explicit agency
A request outside those rules raises ScopeError; nothing is silently widened.

Predicates are pure, idempotent and commute with each other, so the order in
which the tenant and date filters are applied never changes the result.
"""
import logging
import math
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Tuple

from livraisons.models.enums import UserRole
from livraisons.models.records import DateRange, DeliveryRecord, TenantFilter
from livraisons.utils.helpers import to_local_date

logger = logging.getLogger(__name__)

Predicate = Callable[[DeliveryRecord], bool]

# Champs de tri autorisés pour les listes de livraisons
SORTABLE_FIELDS = {
    'id': 'id',
    'phone': 'phone',
    'created_at': 'created_at',
    'updated_at': 'updated_at',
    'status': 'status',
    'amount_due': 'amount_due',
    'amount_paid': 'amount_collected',
}

DEFAULT_SORT_FIELD = 'created_at'


class ScopeError(PermissionError):
    """Request outside the caller's authorized tenant scope."""


def as_tenant_filter(tenant) -> TenantFilter:
    """Accept an agency id, a TenantFilter or None (all agencies)."""
    if tenant is None:
        return TenantFilter()
    if isinstance(tenant, TenantFilter):
        return tenant
    return TenantFilter(agency_id=int(tenant))


def scope_filter(tenant) -> Predicate:
    """Predicate keeping records inside the tenant scope.

    Records without an agency (or group) never match a scoped filter;
    an ungrouped scope keeps only them.
    """
    scope = as_tenant_filter(tenant)

    def predicate(record: DeliveryRecord) -> bool:
        if scope.agency_id is not None and record.agency_id != scope.agency_id:
            return False
        if scope.group_id is not None and record.group_id != scope.group_id:
            return False
        if scope.ungrouped and record.group_id is not None:
            return False
        return True

    return predicate


def date_filter(date_range: DateRange, tz=None) -> Predicate:
    """Predicate keeping records created on a local calendar day inside date_range."""
    def predicate(record: DeliveryRecord) -> bool:
        return date_range.contains(to_local_date(record.created_at, tz))

    return predicate


def apply_filters(records: Iterable, *predicates: Predicate) -> List[DeliveryRecord]:
    coerced = [DeliveryRecord.coerce(r) for r in records]
    return [r for r in coerced if all(p(r) for p in predicates)]


def select(records: Iterable, date_range: Optional[DateRange] = None, tenant=None, tz=None) -> List[DeliveryRecord]:
    """Records inside both the tenant scope and the date window (if any)."""
    predicates = [scope_filter(tenant)]
    if date_range is not None:
        predicates.append(date_filter(date_range, tz))
    return apply_filters(records, *predicates)


def resolve_scope(
    role: str,
    own_agency_id: Optional[int],
    requested_agency_id: Optional[int] = None,
    group_id: Optional[int] = None
) -> TenantFilter:
    """Compute the tenant filter a caller is allowed to use.

    Args:
        role: JWT role ('agency' or 'super_admin')
        own_agency_id: Agency of the caller (None for a platform super admin)
        requested_agency_id: Agency explicitly requested, None for "default"
        group_id: Optional WhatsApp group restriction

    Returns:
        TenantFilter

    Raises:
        ScopeError: Non-privileged caller without agency, or asking for another agency
    """
    if UserRole.is_privileged(role):
        return TenantFilter(agency_id=requested_agency_id, group_id=group_id)

    if own_agency_id is None:
        raise ScopeError("Aucune agence associée à ce compte")

    if requested_agency_id is not None and int(requested_agency_id) != int(own_agency_id):
        logger.warning(
            f"Tentative d'accès cross-tenant: agence {own_agency_id} -> agence {requested_agency_id}"
        )
        raise ScopeError("Accès refusé à cette agence")

    return TenantFilter(agency_id=int(own_agency_id), group_id=group_id)


def ensure_in_scope(record: DeliveryRecord, tenant) -> DeliveryRecord:
    """Raise ScopeError when a single record is outside the tenant scope."""
    if not scope_filter(tenant)(record):
        raise ScopeError("Livraison hors du périmètre autorisé")
    return record


@dataclass(frozen=True)
class Pagination:
    page: int
    limit: int
    total: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0

    def to_dict(self):
        return {
            'page': self.page,
            'limit': self.limit,
            'total': self.total,
            'totalPages': self.total_pages
        }


def normalize_sort(sort_by: Optional[str], sort_order: Optional[str]) -> Tuple[str, str]:
    """Whitelist the sort field; unknown fields fall back to created_at, order to DESC."""
    field_name = sort_by if sort_by in SORTABLE_FIELDS else DEFAULT_SORT_FIELD
    order = 'ASC' if (sort_order or '').upper() == 'ASC' else 'DESC'
    return field_name, order


def _sort_value(record: DeliveryRecord, attribute: str):
    value = getattr(record, attribute)
    if attribute in ('created_at', 'updated_at'):
        # Les timestamps absents sont rangés en premier (ASC)
        return (value is not None, value.isoformat() if value is not None else '')
    if value is None:
        return (False, '')
    return (True, value)


def sort_records(records: Iterable, sort_by: str = DEFAULT_SORT_FIELD, sort_order: str = 'DESC') -> List[DeliveryRecord]:
    """Stable sort with id as tiebreaker, so pages never overlap or skip."""
    field_name, order = normalize_sort(sort_by, sort_order)
    attribute = SORTABLE_FIELDS[field_name]
    reverse = order == 'DESC'
    coerced = [DeliveryRecord.coerce(r) for r in records]
    return sorted(coerced, key=lambda r: (_sort_value(r, attribute), r.id), reverse=reverse)


def paginate(items: List, page: int = 1, limit: int = 20, max_limit: int = 200):
    """Slice a sorted list into one page.

    Returns:
        tuple: (page_items, Pagination)
    """
    page = max(int(page or 1), 1)
    limit = min(max(int(limit or 1), 1), max_limit)
    offset = (page - 1) * limit
    return items[offset:offset + limit], Pagination(page=page, limit=limit, total=len(items))
