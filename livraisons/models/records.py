"""
Enregistrements du domaine - structures immuables manipulées par le moteur
de statistiques, indépendamment du stockage (ORM, API, fichiers...)
"""

from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional

from livraisons.models.enums import StatusCategory
from livraisons.utils.helpers import (
    ZERO, to_amount, to_optional_amount, parse_datetime
)


# Noms de champs selon les producteurs (API backend, frontend, bot)
_RECORD_ALIASES = {
    'amount_due': ('amount_due', 'amountDue', 'montant_total'),
    'amount_collected': ('amount_collected', 'amountCollected', 'amount_paid', 'montant_encaisse'),
    'delivery_fee': ('delivery_fee', 'deliveryFee', 'frais_livraison'),
    'phone': ('phone', 'telephone'),
    'items': ('items', 'produits'),
    'status': ('status', 'statut'),
    'group_id': ('group_id', 'groupId'),
    'agency_id': ('agency_id', 'agencyId'),
    'created_at': ('created_at', 'createdAt', 'date_creation'),
    'updated_at': ('updated_at', 'updatedAt', 'date_mise_a_jour'),
    'customer_name': ('customer_name', 'customerName'),
    'notes': ('notes', 'instructions'),
}


def _pick(data: Mapping, name: str, default=None):
    for key in _RECORD_ALIASES.get(name, (name,)):
        if key in data and data[key] is not None:
            return data[key]
    return default


def _optional_int(value):
    if value is None or value == '':
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class InvalidRangeError(ValueError):
    """Intervalle de dates invalide (début après la fin)"""


@dataclass(frozen=True)
class DateRange:
    """Intervalle de jours calendaires, bornes incluses"""
    start_date: date
    end_date: date

    def __post_init__(self):
        if self.start_date > self.end_date:
            raise InvalidRangeError(
                f"Intervalle invalide: {self.start_date.isoformat()} > {self.end_date.isoformat()}"
            )

    @classmethod
    def single_day(cls, day: date) -> 'DateRange':
        return cls(day, day)

    @property
    def days(self) -> int:
        return (self.end_date - self.start_date).days + 1

    def contains(self, day: Optional[date]) -> bool:
        if day is None:
            return False
        return self.start_date <= day <= self.end_date

    def shift(self, days: int) -> 'DateRange':
        delta = timedelta(days=days)
        return DateRange(self.start_date + delta, self.end_date + delta)

    def to_dict(self):
        return {
            'startDate': self.start_date.isoformat(),
            'endDate': self.end_date.isoformat()
        }


@dataclass(frozen=True)
class TenantFilter:
    """
    Périmètre d'une requête: une agence, un groupe, ou tout (None)

    `ungrouped` restreint aux livraisons sans groupe (incompatible avec group_id).
    """
    agency_id: Optional[int] = None
    group_id: Optional[int] = None
    ungrouped: bool = False

    def __post_init__(self):
        if self.ungrouped and self.group_id is not None:
            raise ValueError("Périmètre incohérent: ungrouped avec un group_id")

    @property
    def is_global(self) -> bool:
        return self.agency_id is None and self.group_id is None and not self.ungrouped

    def to_dict(self):
        data = {'agency_id': self.agency_id, 'group_id': self.group_id}
        if self.ungrouped:
            data['ungrouped'] = True
        return data


@dataclass(frozen=True)
class DeliveryRecord:
    """
    Livraison telle que consommée par le moteur de statistiques

    Le restant dû n'est jamais stocké: voir `remaining`.
    """
    id: int
    phone: str = ''
    items: str = ''
    amount_due: Decimal = ZERO
    amount_collected: Decimal = ZERO
    status: str = 'pending'
    quartier: Optional[str] = None
    delivery_fee: Optional[Decimal] = None
    carrier: Optional[str] = None
    group_id: Optional[int] = None
    agency_id: Optional[int] = None
    customer_name: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def remaining(self) -> Decimal:
        return max(self.amount_due - self.amount_collected, ZERO)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> 'DeliveryRecord':
        """
        Construit un enregistrement depuis un dictionnaire hétérogène

        Accepte les noms de champs du backend (amount_paid), du frontend
        (montant_encaisse) et du domaine (amount_collected). Les montants
        invalides valent 0; les frais absents restent None.
        """
        status = _pick(data, 'status', 'pending')
        return cls(
            id=_optional_int(data.get('id')) or 0,
            phone=str(_pick(data, 'phone', '')),
            items=str(_pick(data, 'items', '')),
            amount_due=to_amount(_pick(data, 'amount_due')),
            amount_collected=to_amount(_pick(data, 'amount_collected')),
            status=str(status).strip().lower() if status is not None else 'pending',
            quartier=data.get('quartier') or None,
            delivery_fee=to_optional_amount(_pick(data, 'delivery_fee')),
            carrier=data.get('carrier') or None,
            group_id=_optional_int(_pick(data, 'group_id')),
            agency_id=_optional_int(_pick(data, 'agency_id')),
            customer_name=_pick(data, 'customer_name'),
            notes=_pick(data, 'notes'),
            created_at=parse_datetime(_pick(data, 'created_at')),
            updated_at=parse_datetime(_pick(data, 'updated_at')),
        )

    @classmethod
    def coerce(cls, value) -> 'DeliveryRecord':
        if isinstance(value, cls):
            return value
        if hasattr(value, 'to_record'):
            return value.to_record()
        return cls.from_mapping(value)

    def to_dict(self):
        return {
            'id': self.id,
            'phone': self.phone,
            'customer_name': self.customer_name,
            'items': self.items,
            'quartier': self.quartier,
            'amount_due': float(self.amount_due),
            'amount_paid': float(self.amount_collected),
            'remaining': float(self.remaining),
            'delivery_fee': float(self.delivery_fee) if self.delivery_fee is not None else None,
            'status': self.status,
            'carrier': self.carrier,
            'notes': self.notes,
            'group_id': self.group_id,
            'agency_id': self.agency_id,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None
        }


def _empty_counts():
    return {category: 0 for category in StatusCategory.ordered()}


@dataclass(frozen=True)
class StatsSnapshot:
    """
    Statistiques dérivées pour une période et un périmètre

    `total_tariffs_applied` et `net_payable_to_groups` restent None tant que
    le snapshot n'a pas été réconcilié (voir tariff_service.reconcile).
    """
    date_range: Optional[DateRange] = None
    tenant: TenantFilter = field(default_factory=TenantFilter)
    total_count: int = 0
    counts_by_category: Dict[str, int] = field(default_factory=_empty_counts)
    gross_collected: Decimal = ZERO
    remaining_owed: Decimal = ZERO
    total_tariffs_applied: Optional[Decimal] = None
    net_payable_to_groups: Optional[Decimal] = None

    @property
    def revenue(self) -> Decimal:
        return self.gross_collected + self.remaining_owed

    @property
    def is_reconciled(self) -> bool:
        return self.total_tariffs_applied is not None

    def with_tariffs(self, total_tariffs: Decimal) -> 'StatsSnapshot':
        return replace(
            self,
            total_tariffs_applied=total_tariffs,
            net_payable_to_groups=self.gross_collected - total_tariffs
        )

    def to_dict(self):
        return {
            'period': self.date_range.to_dict() if self.date_range else None,
            'scope': self.tenant.to_dict(),
            'total': self.total_count,
            'counts': dict(self.counts_by_category),
            'gross_collected': float(self.gross_collected),
            'remaining_owed': float(self.remaining_owed),
            'revenue': float(self.revenue),
            'total_tariffs_applied': (
                float(self.total_tariffs_applied) if self.total_tariffs_applied is not None else None
            ),
            'net_payable_to_groups': (
                float(self.net_payable_to_groups) if self.net_payable_to_groups is not None else None
            )
        }


@dataclass(frozen=True)
class AuditEvent:
    """Entrée brute de l'historique d'une livraison"""
    id: Optional[int]
    delivery_id: Optional[int]
    action: str = ''
    raw_details: Any = None
    actor: Optional[str] = None
    timestamp: Any = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> 'AuditEvent':
        return cls(
            id=_optional_int(data.get('id')),
            delivery_id=_optional_int(data.get('delivery_id', data.get('livraison_id'))),
            action=data.get('action') or '',
            raw_details=data.get('details', data.get('raw_details')),
            actor=data.get('actor'),
            timestamp=data.get('created_at', data.get('timestamp', data.get('date'))),
        )

    @classmethod
    def coerce(cls, value) -> 'AuditEvent':
        if isinstance(value, cls):
            return value
        if hasattr(value, 'to_event'):
            return value.to_event()
        return cls.from_mapping(value)


@dataclass(frozen=True)
class TimelineEntry:
    """Entrée d'historique normalisée, prête à l'affichage"""
    title: str
    description: str
    actor: str
    time: str
    id: Optional[int] = None
    delivery_id: Optional[int] = None
    action: str = ''
    timestamp: Optional[str] = None

    def to_dict(self):
        return {
            'id': self.id,
            'delivery_id': self.delivery_id,
            'action': self.action,
            'title': self.title,
            'description': self.description,
            'actor': self.actor,
            'time': self.time,
            'timestamp': self.timestamp
        }

