"""Tariff service: applied delivery fees and net amount owed to groups.

Rules:
- A tariff is retained only on settled deliveries: status 'delivered' and
  nothing left to collect (remaining == 0)
- The applied tariff is the explicit delivery_fee when set, else the
  quartier's standard tariff (tariff_for lookup), else 0
- net_payable_to_groups = gross_collected - total_tariffs_applied, never
  clamped: a negative value means a misconfigured tariff and must surface
"""
import logging
from collections import OrderedDict
from decimal import Decimal
from typing import Callable, Dict, Iterable, Optional

from livraisons.models.enums import DeliveryStatus
from livraisons.models.records import DeliveryRecord, StatsSnapshot
from livraisons.services.scope_service import select
from livraisons.utils.helpers import ZERO, to_optional_amount

logger = logging.getLogger(__name__)

TariffLookup = Callable[[Optional[str], Optional[int]], Optional[Decimal]]


def static_tariffs(table: Dict[str, object]) -> TariffLookup:
    """Build a lookup from a {quartier: amount} mapping (any agency).

    Quartier names are matched case-insensitively.
    """
    normalized = {k.strip().lower(): to_optional_amount(v) for k, v in table.items()}

    def lookup(quartier, agency_id=None):
        if not quartier:
            return None
        return normalized.get(quartier.strip().lower())

    return lookup


def is_settled(record: DeliveryRecord) -> bool:
    return DeliveryStatus.normalize(record.status) is DeliveryStatus.DELIVERED and record.remaining == ZERO


def standard_tariff(record: DeliveryRecord, tariff_for: Optional[TariffLookup]) -> Optional[Decimal]:
    if tariff_for is None or not record.quartier:
        return None
    return to_optional_amount(tariff_for(record.quartier, record.agency_id))


def applied_tariff(record, tariff_for: Optional[TariffLookup] = None) -> Decimal:
    """Tariff retained by the agency on one delivery (0 when not settled)."""
    record = DeliveryRecord.coerce(record)
    if not is_settled(record):
        return ZERO
    if record.delivery_fee is not None:
        return record.delivery_fee
    tariff = standard_tariff(record, tariff_for)
    return tariff if tariff is not None else ZERO


def reconcile(records: Iterable, snapshot: StatsSnapshot, tariff_for: Optional[TariffLookup] = None, tz=None) -> StatsSnapshot:
    """Return a copy of snapshot extended with tariffs and net payable.

    The records are filtered with the snapshot's own period and tenant scope,
    so passing the unfiltered list is safe.
    """
    selected = select(records, date_range=snapshot.date_range, tenant=snapshot.tenant, tz=tz)
    total = sum((applied_tariff(r, tariff_for) for r in selected), ZERO)
    reconciled = snapshot.with_tariffs(total)

    if reconciled.net_payable_to_groups < ZERO:
        logger.warning(
            f"Net à reverser négatif ({reconciled.net_payable_to_groups}) "
            f"pour {snapshot.tenant.to_dict()}: vérifier les tarifs"
        )
    return reconciled


def tariff_breakdown(records: Iterable, date_range=None, tenant=None, tariff_for: Optional[TariffLookup] = None, tz=None) -> list:
    """Applied tariffs grouped by (quartier, fee).

    Each line separates standard from modified tariffs for the same quartier:
    {quartier, delivery_fee, count, total, is_standard}
    """
    lines = OrderedDict()
    selected = select(records, date_range=date_range, tenant=tenant, tz=tz)

    for record in sorted(selected, key=lambda r: ((r.quartier or '').lower(), r.id)):
        if not is_settled(record):
            continue
        fee = applied_tariff(record, tariff_for)
        quartier = (record.quartier or '').strip()
        # Quartiers comparés sans casse; le premier libellé rencontré est affiché
        key = (quartier.lower(), fee)
        if key not in lines:
            standard = standard_tariff(record, tariff_for)
            lines[key] = {
                'quartier': quartier or None,
                'delivery_fee': fee,
                'count': 0,
                'total': ZERO,
                'is_standard': standard is not None and standard == fee
            }
        lines[key]['count'] += 1
        lines[key]['total'] += fee

    return list(lines.values())
