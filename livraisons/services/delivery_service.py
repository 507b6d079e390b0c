"""Delivery service: SQLAlchemy data source for the reporting core.

Implements the collaborator operations the stats engine consumes:
- list_deliveries (filtered, sorted, paginated)
- daily_stats (SQL aggregation for a single day)
- history (raw audit events of a delivery)
- tariff_for (standard tariff of a quartier)

Also owns delivery writes (creation and field updates), each one recorded
in delivery_history with the JSON details the timeline formatter reads.

Timestamps are stored as naive UTC; local calendar days are converted to
UTC bounds before querying.
"""
import json
import logging
from datetime import datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Dict, List, Optional

from flask import current_app
from sqlalchemy import case, func, or_

from livraisons import db
from livraisons.models import (
    Agency, Delivery, DeliveryHistory, DeliveryStatus, StatusCategory,
    Tariff, DateRange, DeliveryRecord, StatsSnapshot, TenantFilter, AuditEvent
)
from livraisons.services.history_service import FIELD_TABLE
from livraisons.services.scope_service import Pagination, as_tenant_filter, normalize_sort
from livraisons.utils.helpers import ZERO, get_timezone, to_amount, to_optional_amount

logger = logging.getLogger(__name__)

# Colonnes triables (clé publique -> colonne)
SORT_COLUMNS = {
    'id': Delivery.id,
    'phone': Delivery.phone,
    'created_at': Delivery.created_at,
    'updated_at': Delivery.updated_at,
    'status': Delivery.status,
    'amount_due': Delivery.amount_due,
    'amount_paid': Delivery.amount_paid,
}

TEXT_FIELDS = ('phone', 'customer_name', 'items', 'quartier', 'notes', 'carrier')
MONEY_FIELDS = ('amount_due', 'amount_paid', 'delivery_fee')
UPDATABLE_FIELDS = TEXT_FIELDS + MONEY_FIELDS + ('status',)


class DeliveryUpdateError(ValueError):
    """Invalid value in a delivery create/update payload."""


def _json_value(value):
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    return value


class DeliveryService:
    """Data access for deliveries, history and tariffs."""

    # ==================== TIMEZONE ====================

    @classmethod
    def timezone_for(cls, agency_id: Optional[int] = None):
        """Agency timezone, else the configured TIME_ZONE."""
        if agency_id is not None:
            agency = db.session.get(Agency, agency_id)
            if agency is not None and agency.timezone:
                return get_timezone(agency.timezone)
        return get_timezone(current_app.config.get('TIME_ZONE', 'UTC'))

    @staticmethod
    def utc_bounds(date_range: DateRange, tz=None):
        """Naive UTC [start, end) covering the local calendar days of date_range."""
        zone = get_timezone(tz)
        start = datetime.combine(date_range.start_date, time.min, tzinfo=zone)
        end = datetime.combine(date_range.end_date + timedelta(days=1), time.min, tzinfo=zone)
        return (
            start.astimezone(timezone.utc).replace(tzinfo=None),
            end.astimezone(timezone.utc).replace(tzinfo=None)
        )

    # ==================== LECTURE ====================

    @classmethod
    def scoped_query(
        cls,
        tenant=None,
        date_range: Optional[DateRange] = None,
        tz=None,
        status: Optional[str] = None,
        search: Optional[str] = None
    ):
        scope = as_tenant_filter(tenant)
        query = Delivery.query

        if scope.agency_id is not None:
            query = query.filter(Delivery.agency_id == scope.agency_id)
        if scope.group_id is not None:
            query = query.filter(Delivery.group_id == scope.group_id)
        if scope.ungrouped:
            query = query.filter(Delivery.group_id.is_(None))

        if date_range is not None:
            start, end = cls.utc_bounds(date_range, tz)
            query = query.filter(Delivery.created_at >= start, Delivery.created_at < end)

        if status:
            resolved = DeliveryStatus.normalize(status)
            query = query.filter(Delivery.status == (resolved.value if resolved else status))

        if search:
            pattern = f"%{search.strip()}%"
            query = query.filter(or_(
                Delivery.phone.ilike(pattern),
                Delivery.customer_name.ilike(pattern),
                Delivery.items.ilike(pattern),
                Delivery.quartier.ilike(pattern)
            ))

        return query

    @classmethod
    def fetch_records(cls, date_range: Optional[DateRange] = None, tenant=None, tz=None) -> List[DeliveryRecord]:
        """All records in scope, as immutable DeliveryRecord objects."""
        query = cls.scoped_query(tenant, date_range, tz).order_by(Delivery.id.asc())
        return [d.to_record() for d in query.all()]

    @classmethod
    def list_deliveries(
        cls,
        page: int = 1,
        limit: int = 20,
        start_date=None,
        end_date=None,
        status: Optional[str] = None,
        group_id: Optional[int] = None,
        agency_id: Optional[int] = None,
        sort_by: str = 'created_at',
        sort_order: str = 'DESC',
        tz=None,
        max_limit: int = 200,
        search: Optional[str] = None
    ) -> Dict:
        """Filtered, sorted and paginated delivery listing.

        Returns:
            dict: {'records': [DeliveryRecord], 'pagination': Pagination}
        """
        date_range = DateRange(start_date, end_date) if start_date and end_date else None
        tenant = TenantFilter(agency_id=agency_id, group_id=group_id)
        query = cls.scoped_query(tenant, date_range, tz, status=status, search=search)

        field_name, order = normalize_sort(sort_by, sort_order)
        column = SORT_COLUMNS[field_name]
        if order == 'ASC':
            query = query.order_by(column.asc(), Delivery.id.asc())
        else:
            query = query.order_by(column.desc(), Delivery.id.desc())

        page = max(int(page or 1), 1)
        limit = min(max(int(limit or 1), 1), max_limit)
        pagination = query.paginate(page=page, per_page=limit, error_out=False)

        return {
            'records': [d.to_record() for d in pagination.items],
            'pagination': Pagination(page=page, limit=limit, total=pagination.total)
        }

    @classmethod
    def daily_stats(cls, day, group_id: Optional[int] = None, agency_id: Optional[int] = None, tz=None) -> StatsSnapshot:
        """Single-day snapshot computed in SQL (not reconciled)."""
        date_range = DateRange.single_day(day)
        tenant = TenantFilter(agency_id=agency_id, group_id=group_id)
        start, end = cls.utc_bounds(date_range, tz)

        owed = case(
            (Delivery.amount_due > Delivery.amount_paid, Delivery.amount_due - Delivery.amount_paid),
            else_=0
        )
        query = db.session.query(
            Delivery.status,
            func.count(Delivery.id).label('count'),
            func.sum(Delivery.amount_paid).label('collected'),
            func.sum(owed).label('owed')
        ).filter(Delivery.created_at >= start, Delivery.created_at < end)

        if agency_id is not None:
            query = query.filter(Delivery.agency_id == agency_id)
        if group_id is not None:
            query = query.filter(Delivery.group_id == group_id)

        counts = {category: 0 for category in StatusCategory.ordered()}
        total = 0
        gross = ZERO
        remaining = ZERO
        for status, count, collected, owed_sum in query.group_by(Delivery.status).all():
            counts[DeliveryStatus.category_of(status).value] += count
            total += count
            gross += to_amount(collected)
            remaining += to_amount(owed_sum)

        return StatsSnapshot(
            date_range=date_range,
            tenant=tenant,
            total_count=total,
            counts_by_category=counts,
            gross_collected=gross,
            remaining_owed=remaining
        )

    @classmethod
    def history(cls, delivery_id: int) -> List[AuditEvent]:
        entries = DeliveryHistory.query.filter_by(delivery_id=delivery_id).order_by(
            DeliveryHistory.created_at.asc(), DeliveryHistory.id.asc()
        ).all()
        return [h.to_event() for h in entries]

    @classmethod
    def tariff_for(cls, quartier: Optional[str], agency_id: Optional[int]) -> Optional[Decimal]:
        """Standard tariff of a quartier for an agency, None if not configured."""
        if not quartier or agency_id is None:
            return None
        tariff = Tariff.query.filter(
            Tariff.agency_id == agency_id,
            func.lower(Tariff.quartier) == quartier.strip().lower()
        ).first()
        return to_amount(tariff.amount) if tariff else None

    @classmethod
    def tariff_lookup(cls):
        """tariff_for memoized for the duration of one report."""
        known = {}

        def lookup(quartier, agency_id=None):
            key = ((quartier or '').strip().lower(), agency_id)
            if key not in known:
                known[key] = cls.tariff_for(quartier, agency_id)
            return known[key]

        return lookup

    @classmethod
    def get_delivery(cls, delivery_id: int) -> Optional[Delivery]:
        return db.session.get(Delivery, delivery_id)

    # ==================== ÉCRITURE ====================

    @staticmethod
    def _clean(field_name: str, value):
        if field_name in MONEY_FIELDS:
            amount = to_optional_amount(value)
            if amount is None:
                if field_name == 'delivery_fee':
                    return None
                raise DeliveryUpdateError(f"Montant requis pour {field_name}")
            if amount < ZERO:
                raise DeliveryUpdateError(f"Montant négatif refusé pour {field_name}")
            return amount

        if field_name == 'status':
            resolved = DeliveryStatus.normalize(value)
            if resolved is None:
                raise DeliveryUpdateError(f"Statut invalide: {value!r}")
            return resolved.value

        if value is None:
            return None
        return str(value).strip()

    @staticmethod
    def _history_entry(delivery_id: int, action: str, details: dict, actor: Optional[str]) -> DeliveryHistory:
        return DeliveryHistory(
            delivery_id=delivery_id,
            action=action,
            details=json.dumps(details, ensure_ascii=False, default=str),
            actor=actor
        )

    @classmethod
    def create_delivery(cls, data: dict, agency_id: Optional[int], actor: Optional[str] = None, created_at=None) -> Delivery:
        """Create a delivery and its 'created' history entry."""
        values = {}
        for field_name in UPDATABLE_FIELDS:
            if field_name in data:
                values[field_name] = cls._clean(field_name, data[field_name])

        if not values.get('phone'):
            raise DeliveryUpdateError("Le numéro de téléphone est requis")

        delivery = Delivery(
            agency_id=agency_id,
            group_id=data.get('group_id'),
            **values
        )
        if created_at is not None:
            delivery.created_at = created_at
            delivery.updated_at = created_at
        db.session.add(delivery)
        db.session.flush()

        details = {k: _json_value(v) for k, v in values.items() if v is not None}
        entry = cls._history_entry(delivery.id, 'created', details, actor)
        if created_at is not None:
            entry.created_at = created_at
        db.session.add(entry)
        db.session.commit()

        logger.info(f"Livraison {delivery.id} créée (agence {agency_id})")
        return delivery

    @classmethod
    def update_delivery(cls, delivery: Delivery, data: dict, actor: Optional[str] = None) -> List[DeliveryHistory]:
        """Apply a partial update, one history entry per changed field.

        Details follow {field, old_value, new_value, updated_by}, field being
        the French display name of the column.

        Returns:
            list: History entries written (empty if nothing changed)

        Raises:
            DeliveryUpdateError: Invalid amount or status
        """
        changes = []
        for field_name in UPDATABLE_FIELDS:
            if field_name not in data:
                continue
            new_value = cls._clean(field_name, data[field_name])
            old_value = getattr(delivery, field_name)
            if field_name in MONEY_FIELDS and old_value is not None:
                old_value = to_amount(old_value)
            if old_value == new_value:
                continue
            changes.append((field_name, old_value, new_value))

        entries = []
        for field_name, old_value, new_value in changes:
            setattr(delivery, field_name, new_value)
            details = {
                'field': FIELD_TABLE[field_name]['labels']['fr'],
                'old_value': _json_value(old_value),
                'new_value': _json_value(new_value),
                'updated_by': actor
            }
            entry = cls._history_entry(delivery.id, f'updated_{field_name}', details, actor)
            db.session.add(entry)
            entries.append(entry)

        if entries:
            db.session.commit()
            logger.info(
                f"Livraison {delivery.id} mise à jour: {', '.join(c[0] for c in changes)}"
            )
        return entries
