"""Period service: named presets <-> concrete date ranges.

Handles:
- Preset resolution (today, thisWeek, lastMonth...) in the agency calendar
- Custom range validation (inverted ranges are rejected, never swapped)
- Reverse detection of the preset matching a range
- Previous period computation for comparisons

Weeks start on Sunday. Current periods (thisWeek, thisMonth, thisYear) end
on the reference day, capturing the unfinished period "to date".
"""
import calendar
import logging
from datetime import date, timedelta

from livraisons.models.enums import PeriodPreset
from livraisons.models.records import DateRange, InvalidRangeError
from livraisons.utils.helpers import local_today, parse_date

logger = logging.getLogger(__name__)


class PeriodError(ValueError):
    """Unknown preset or invalid custom range."""


def _week_start(day: date) -> date:
    # date.weekday(): Monday=0 ... Sunday=6
    return day - timedelta(days=(day.weekday() + 1) % 7)


def _month_end(year: int, month: int) -> date:
    return date(year, month, calendar.monthrange(year, month)[1])


def _preset_value(preset) -> str:
    if isinstance(preset, PeriodPreset):
        return preset.value
    if not isinstance(preset, str) or not PeriodPreset.is_valid(preset):
        raise PeriodError(f"Période inconnue: {preset!r}")
    return preset


def range_for_day(preset: str, today: date) -> DateRange:
    """Compute the range of a named preset relative to a local calendar day."""
    if preset == 'today':
        return DateRange(today, today)

    if preset == 'yesterday':
        yesterday = today - timedelta(days=1)
        return DateRange(yesterday, yesterday)

    if preset == 'thisWeek':
        return DateRange(_week_start(today), today)

    if preset == 'lastWeek':
        start = _week_start(today) - timedelta(days=7)
        return DateRange(start, start + timedelta(days=6))

    if preset == 'thisMonth':
        return DateRange(today.replace(day=1), today)

    if preset == 'lastMonth':
        if today.month == 1:
            year, month = today.year - 1, 12
        else:
            year, month = today.year, today.month - 1
        return DateRange(date(year, month, 1), _month_end(year, month))

    if preset == 'thisYear':
        return DateRange(date(today.year, 1, 1), today)

    if preset == 'lastYear':
        return DateRange(date(today.year - 1, 1, 1), date(today.year - 1, 12, 31))

    raise PeriodError(f"Période inconnue: {preset!r}")


def resolve(
    preset,
    reference=None,
    start_date=None,
    end_date=None,
    tz=None
) -> DateRange:
    """Resolve a preset (or explicit bounds) to an inclusive date range.

    Args:
        preset: PeriodPreset or its string value
        reference: Reference instant (datetime, date or ISO string); now if None
        start_date: Start bound, required for 'custom' (date or YYYY-MM-DD)
        end_date: End bound, required for 'custom'
        tz: Agency timezone name or tzinfo

    Returns:
        DateRange: Inclusive calendar range

    Raises:
        PeriodError: Unknown preset, missing/unparsable bounds, or start > end
    """
    value = _preset_value(preset)

    if value == PeriodPreset.CUSTOM.value:
        start, end = parse_date(start_date), parse_date(end_date)
        if start is None or end is None:
            raise PeriodError(
                "Période personnalisée: startDate et endDate sont requis (format YYYY-MM-DD)"
            )
        try:
            return DateRange(start, end)
        except InvalidRangeError as e:
            logger.info(f"Période personnalisée rejetée: {start_date} -> {end_date}")
            raise PeriodError(str(e)) from e

    today = local_today(reference, tz)
    if today is None:
        raise PeriodError(f"Date de référence invalide: {reference!r}")
    return range_for_day(value, today)


def detect_preset(date_range: DateRange, reference=None, tz=None) -> str:
    """Return the first preset (priority order) whose range equals date_range, else 'custom'."""
    today = local_today(reference, tz)
    if today is None or date_range is None:
        return PeriodPreset.CUSTOM.value

    for preset in PeriodPreset.get_order():
        if range_for_day(preset, today) == date_range:
            return preset
    return PeriodPreset.CUSTOM.value


def preset_label(preset, lang: str = 'fr') -> str:
    return PeriodPreset.get_label(_preset_value(preset), lang)


def previous_range(date_range: DateRange) -> DateRange:
    """Equally long window immediately preceding date_range."""
    return date_range.shift(-date_range.days)


def resolve_from_args(args, reference=None, tz=None, default: str = 'today') -> DateRange:
    """Resolve a range from request-like arguments.

    Accepts `preset` (or `period`), `start_date`/`startDate`, `end_date`/`endDate`.
    Explicit bounds without a preset are treated as a custom range.
    """
    start = args.get('start_date') or args.get('startDate')
    end = args.get('end_date') or args.get('endDate')
    preset = args.get('preset') or args.get('period')

    if not preset:
        preset = PeriodPreset.CUSTOM.value if (start or end) else default

    return resolve(preset, reference=reference, start_date=start, end_date=end, tz=tz)


def list_presets(reference=None, tz=None, lang: str = 'fr') -> list:
    """Presets with their label and current range (for period pickers)."""
    today = local_today(reference, tz)
    presets = []
    for preset in PeriodPreset.get_order():
        presets.append({
            'preset': preset,
            'label': PeriodPreset.get_label(preset, lang),
            **range_for_day(preset, today).to_dict()
        })
    return presets


def describe_range(date_range: DateRange, reference=None, tz=None, lang: str = 'fr') -> dict:
    preset = detect_preset(date_range, reference, tz)
    return {
        'preset': preset,
        'label': PeriodPreset.get_label(preset, lang),
        **date_range.to_dict()
    }

