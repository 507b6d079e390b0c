"""Stats service: reduce delivery records into period snapshots.

Handles:
- Filtering by date window (local calendar day) and tenant scope
- Counts per status category (unknown statuses counted under 'other')
- Gross collected and remaining owed sums

Pure functions: same inputs, same snapshot, no side effects. Shared by the
HTTP routes and by any caller holding an in-memory list of records.
"""
import logging
from collections import defaultdict
from decimal import Decimal
from typing import Dict, Iterable, Optional

from livraisons.models.enums import DeliveryStatus, StatusCategory
from livraisons.models.records import DateRange, DeliveryRecord, StatsSnapshot, TenantFilter
from livraisons.services.scope_service import as_tenant_filter, select
from livraisons.utils.helpers import ZERO

logger = logging.getLogger(__name__)


def remaining(record) -> Decimal:
    """max(amount_due - amount_collected, 0), whatever the status."""
    return DeliveryRecord.coerce(record).remaining


def summarize(records: Iterable[DeliveryRecord], date_range: Optional[DateRange] = None, tenant=None) -> StatsSnapshot:
    """Reduce already-filtered records into a snapshot."""
    counts = {category: 0 for category in StatusCategory.ordered()}
    gross = ZERO
    owed = ZERO
    total = 0
    unknown = set()

    for record in records:
        total += 1
        category = DeliveryStatus.category_of(record.status)
        if category is StatusCategory.OTHER:
            unknown.add(record.status)
        counts[category.value] += 1
        gross += record.amount_collected
        owed += record.remaining

    if unknown:
        logger.warning(f"Statuts inconnus comptés dans 'other': {sorted(unknown)}")

    return StatsSnapshot(
        date_range=date_range,
        tenant=as_tenant_filter(tenant),
        total_count=total,
        counts_by_category=counts,
        gross_collected=gross,
        remaining_owed=owed
    )


def aggregate(records: Iterable, date_range: DateRange, tenant_filter=None, tz=None) -> StatsSnapshot:
    """Aggregate records created inside date_range and tenant_filter.

    Args:
        records: DeliveryRecord objects, ORM rows with to_record(), or mappings
        date_range: Inclusive calendar window (created_at local day)
        tenant_filter: Agency id, TenantFilter, or None for all agencies
        tz: Agency timezone used to bucket aware timestamps into days

    Returns:
        StatsSnapshot (not yet reconciled)
    """
    selected = select(records, date_range=date_range, tenant=tenant_filter, tz=tz)
    return summarize(selected, date_range=date_range, tenant=tenant_filter)


def aggregate_by_group(records: Iterable, date_range: DateRange, tenant_filter=None, tz=None) -> Dict[Optional[int], StatsSnapshot]:
    """One snapshot per WhatsApp group id (None for records without group).

    Each snapshot carries a scope matching exactly its own records, so it can
    be reconciled against the full record list.
    """
    scope = as_tenant_filter(tenant_filter)
    grouped = defaultdict(list)
    for record in select(records, date_range=date_range, tenant=scope, tz=tz):
        grouped[record.group_id].append(record)

    snapshots = {}
    for group_id in sorted(grouped, key=lambda g: (g is not None, g or 0)):
        if group_id is None:
            group_scope = TenantFilter(agency_id=scope.agency_id, ungrouped=True)
        else:
            group_scope = TenantFilter(agency_id=scope.agency_id, group_id=group_id)
        snapshots[group_id] = summarize(grouped[group_id], date_range=date_range, tenant=group_scope)
    return snapshots
