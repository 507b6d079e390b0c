"""
Modèles de l'application
Export centralisé des modèles SQLAlchemy et des enregistrements du domaine
"""

from livraisons.models.enums import (
    DeliveryStatus, StatusCategory, PeriodPreset, UserRole, STATUS_TABLE
)
from livraisons.models.records import (
    DateRange, TenantFilter, DeliveryRecord, StatsSnapshot,
    AuditEvent, TimelineEntry, InvalidRangeError
)
from livraisons.models.agency import Agency, Group, Tariff
from livraisons.models.delivery import Delivery, DeliveryHistory

__all__ = [
    # Enums
    'DeliveryStatus',
    'StatusCategory',
    'PeriodPreset',
    'UserRole',
    'STATUS_TABLE',
    # Enregistrements
    'DateRange',
    'TenantFilter',
    'DeliveryRecord',
    'StatsSnapshot',
    'AuditEvent',
    'TimelineEntry',
    'InvalidRangeError',
    # Models
    'Agency',
    'Group',
    'Tariff',
    'Delivery',
    'DeliveryHistory',
]
