"""History service: turn raw delivery history into a readable timeline.

History entries come from several producers (API updates, WhatsApp bot,
imports) and their `details` payload is loosely structured: absent, a plain
string, a JSON string or a dict, with field names that vary by producer.

Resolution goes through explicit alias tables (fields, old/new values);
adding a producer means adding aliases, never touching the formatting logic.
Formatting never raises: anything unexpected degrades to the raw string.
"""
import json
import logging
from decimal import Decimal, InvalidOperation
from typing import Iterable, List, Mapping, Optional

from livraisons.models.enums import DeliveryStatus
from livraisons.models.records import AuditEvent, TimelineEntry
from livraisons.utils.helpers import format_currency, get_timezone, parse_datetime

logger = logging.getLogger(__name__)

KIND_TEXT = 'text'
KIND_MONEY = 'money'
KIND_STATUS = 'status'
KIND_ITEMS = 'items'

# Champs canoniques: type sémantique, libellés et alias par producteur
FIELD_TABLE = {
    'phone': {
        'kind': KIND_TEXT,
        'labels': {'fr': 'Numéro de téléphone', 'en': 'phone'},
        'aliases': ('telephone', 'numero', 'numéro', 'Numéro de téléphone'),
    },
    'customer_name': {
        'kind': KIND_TEXT,
        'labels': {'fr': 'Nom du client', 'en': 'customer name'},
        'aliases': ('customerName', 'client', 'Nom du client'),
    },
    'items': {
        'kind': KIND_ITEMS,
        'labels': {'fr': 'Produits', 'en': 'items'},
        'aliases': ('produits', 'products'),
    },
    'amount_due': {
        'kind': KIND_MONEY,
        'labels': {'fr': 'Montant total', 'en': 'amount due'},
        'aliases': ('amountDue', 'montant_total', 'montant', 'Montant total'),
    },
    'amount_paid': {
        'kind': KIND_MONEY,
        'labels': {'fr': 'Montant encaissé', 'en': 'amount collected'},
        'aliases': ('amount_collected', 'amountCollected', 'amountPaid', 'montant_encaisse', 'Montant encaissé'),
    },
    'status': {
        'kind': KIND_STATUS,
        'labels': {'fr': 'Statut', 'en': 'status'},
        'aliases': ('statut',),
    },
    'quartier': {
        'kind': KIND_TEXT,
        'labels': {'fr': 'Quartier', 'en': 'neighborhood'},
        'aliases': ('neighborhood', 'neighbourhood'),
    },
    'notes': {
        'kind': KIND_TEXT,
        'labels': {'fr': 'Notes/Instructions', 'en': 'notes'},
        'aliases': ('instructions', 'Notes/Instructions'),
    },
    'carrier': {
        'kind': KIND_TEXT,
        'labels': {'fr': 'Transporteur', 'en': 'carrier'},
        'aliases': ('transporteur',),
    },
    'delivery_fee': {
        'kind': KIND_MONEY,
        'labels': {'fr': 'Frais de livraison', 'en': 'delivery fee'},
        'aliases': ('deliveryFee', 'frais_livraison', 'tarif', 'Frais de livraison'),
    },
}

# Clés possibles des valeurs avant/après, par ordre de priorité
OLD_VALUE_KEYS = ('old_value', 'oldValue', 'ancienne_valeur', 'from', 'old', 'previous', 'avant')
NEW_VALUE_KEYS = ('new_value', 'newValue', 'nouvelle_valeur', 'to', 'new', 'value', 'apres', 'après')
FIELD_KEYS = ('field', 'champ', 'field_name', 'fieldName')
ACTOR_KEYS = ('updated_by', 'actor', 'auteur', 'user')

# Champs résumés à la création, dans cet ordre
CREATED_FIELDS = (
    ('phone', ('phone', 'telephone')),
    ('quartier', ('quartier',)),
    ('items', ('items', 'produits')),
    ('amount_due', ('amount_due', 'amountDue', 'montant_total')),
)

TITLES = {
    'created': {'fr': 'Livraison créée', 'en': 'record created'},
    'changed': {'fr': '{field} modifié', 'en': '{field} changed'},
}

# Libellés des actions, utilisés quand le détail est inexploitable
ACTION_LABELS = {
    'created': {'fr': 'Livraison créée', 'en': 'record created'},
    'updated': {'fr': 'Livraison modifiée', 'en': 'record updated'},
    'deleted': {'fr': 'Livraison supprimée', 'en': 'record deleted'},
    'status_parsed': {'fr': 'Statut détecté (WhatsApp)', 'en': 'status detected (WhatsApp)'},
    **{
        f'updated_{name}': {
            'fr': TITLES['changed']['fr'].format(field=entry['labels']['fr']),
            'en': TITLES['changed']['en'].format(field=entry['labels']['en']),
        }
        for name, entry in FIELD_TABLE.items()
    },
}

TIME_FORMAT = '%d/%m/%Y %H:%M'


def _key(name: str) -> str:
    return name.strip().lower().replace('-', '_').replace(' ', '_')


def _build_field_lookup() -> dict:
    lookup = {}
    for name, entry in FIELD_TABLE.items():
        for alias in (name, *entry['aliases'], *entry['labels'].values()):
            lookup[_key(alias)] = name
    return lookup


_FIELD_LOOKUP = _build_field_lookup()


def resolve_field(raw_name) -> Optional[str]:
    """Canonical field name for any producer alias, None if unknown."""
    if not isinstance(raw_name, str) or not raw_name.strip():
        return None
    return _FIELD_LOOKUP.get(_key(raw_name))


def _field_kind(canonical: Optional[str], raw_name: str) -> str:
    if canonical is not None:
        return FIELD_TABLE[canonical]['kind']
    lowered = raw_name.lower()
    if any(token in lowered for token in ('amount', 'fee', 'montant', 'frais')):
        return KIND_MONEY
    if 'status' in lowered or 'statut' in lowered:
        return KIND_STATUS
    return KIND_TEXT


def _field_label(canonical: Optional[str], raw_name: str, lang: str) -> str:
    if canonical is None:
        return raw_name
    labels = FIELD_TABLE[canonical]['labels']
    return labels.get(lang, labels['fr'])


def _first_present(data: Mapping, keys) -> Optional[object]:
    for key in keys:
        if key in data and data[key] is not None and data[key] != '':
            return data[key]
    return None


def _is_number(value) -> bool:
    """Montant fini (NaN et Infinity restent affichés bruts)"""
    if isinstance(value, bool):
        return False
    try:
        return Decimal(str(value).strip().replace(' ', '')).is_finite()
    except (InvalidOperation, ValueError):
        return False


def flatten_items(value) -> str:
    """Multi-line item lists become one comma-joined line."""
    if isinstance(value, (list, tuple)):
        parts = [str(v).strip() for v in value]
    else:
        parts = [line.strip(' -•\t') for line in str(value).splitlines()]
    return ', '.join(p for p in parts if p)


def format_value(value, kind: str, lang: str = 'fr', currency: str = 'XAF') -> str:
    """Display a single value according to its semantic type."""
    if kind == KIND_MONEY and _is_number(value):
        return format_currency(value, currency)
    if kind == KIND_STATUS:
        return DeliveryStatus.get_label(value, lang)
    if kind == KIND_ITEMS:
        return flatten_items(value)
    return str(value)


def _raw_string(raw) -> str:
    if raw is None:
        return ''
    if isinstance(raw, str):
        return raw
    try:
        return json.dumps(raw, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        return str(raw)


def parse_details(raw) -> Optional[dict]:
    """Structured payload, or None when the details are not a JSON object."""
    if isinstance(raw, Mapping):
        return dict(raw)
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode('utf-8', errors='replace')
    if not isinstance(raw, str) or not raw.strip():
        return None
    try:
        parsed = json.loads(raw)
    except ValueError:
        return None
    return parsed if isinstance(parsed, dict) else None


def action_label(action: str, lang: str = 'fr') -> str:
    labels = ACTION_LABELS.get(action or '')
    if labels is None:
        return action or ''
    return labels.get(lang, labels['fr'])


def _format_time(timestamp, tz) -> tuple:
    moment = parse_datetime(timestamp)
    if moment is None:
        return ('' if timestamp is None else str(timestamp)), None
    if moment.tzinfo is not None and tz is not None:
        moment = moment.astimezone(get_timezone(tz))
    return moment.strftime(TIME_FORMAT), moment.isoformat()


def _describe_created(details: dict, lang: str, currency: str) -> str:
    parts = []
    for name, keys in CREATED_FIELDS:
        value = _first_present(details, keys)
        if value is None:
            continue
        text = format_value(value, FIELD_TABLE[name]['kind'], lang, currency)
        if text:
            parts.append(text)
    return ' · '.join(parts)


def _update_field_name(action: str, details: dict) -> Optional[str]:
    raw_field = _first_present(details, FIELD_KEYS)
    if isinstance(raw_field, str) and raw_field.strip():
        return raw_field.strip()
    if action.startswith('updated_') and len(action) > len('updated_'):
        return action[len('updated_'):]
    return None


def _describe_update(field_name: str, details: dict, raw: str, lang: str, currency: str) -> tuple:
    canonical = resolve_field(field_name)
    kind = _field_kind(canonical, field_name)
    label = _field_label(canonical, field_name, lang)
    title_template = TITLES['changed'].get(lang, TITLES['changed']['fr'])
    title = title_template.format(field=label)

    old = _first_present(details, OLD_VALUE_KEYS)
    new = _first_present(details, NEW_VALUE_KEYS)
    old_text = format_value(old, kind, lang, currency) if old is not None else None
    new_text = format_value(new, kind, lang, currency) if new is not None else None

    if old_text is not None and new_text is not None:
        description = f"{old_text} → {new_text}"
    elif new_text is not None:
        description = new_text
    elif old_text is not None:
        description = old_text
    else:
        description = raw
    return title, description


def _fallback(event: AuditEvent, raw: str, lang: str, tz) -> TimelineEntry:
    time, iso = _format_time(event.timestamp, tz)
    return TimelineEntry(
        title=action_label(event.action, lang),
        description=raw,
        actor='',
        time=time,
        id=event.id,
        delivery_id=event.delivery_id,
        action=event.action or '',
        timestamp=iso
    )


def format_event(event, lang: str = 'fr', tz=None, currency: str = 'XAF') -> TimelineEntry:
    """Convert one raw history event into a timeline entry.

    Args:
        event: AuditEvent, ORM row with to_event(), or mapping
        lang: 'fr' or 'en'
        tz: Agency timezone for displayed times
        currency: Currency code for monetary values

    Returns:
        TimelineEntry (never raises)
    """
    try:
        event = AuditEvent.coerce(event)
    except Exception as e:
        logger.debug(f"Entrée d'historique illisible: {e}")
        event = AuditEvent(id=None, delivery_id=None, action='', raw_details=_raw_string(event))

    action = event.action if isinstance(event.action, str) else str(event.action or '')
    event = AuditEvent(
        id=event.id,
        delivery_id=event.delivery_id,
        action=action,
        raw_details=event.raw_details,
        actor=event.actor,
        timestamp=event.timestamp
    )
    raw = _raw_string(event.raw_details)

    try:
        details = parse_details(event.raw_details)
        if details is None:
            return _fallback(event, raw, lang, tz)

        title = description = None
        if action == 'created':
            title = TITLES['created'].get(lang, TITLES['created']['fr'])
            description = _describe_created(details, lang, currency) or raw
        else:
            field_name = _update_field_name(action, details)
            if field_name is not None:
                title, description = _describe_update(field_name, details, raw, lang, currency)

        if title is None:
            title, description = action_label(action, lang), raw

        actor = event.actor or _first_present(details, ACTOR_KEYS) or ''
        time, iso = _format_time(event.timestamp, tz)
        return TimelineEntry(
            title=title,
            description=description,
            actor=str(actor),
            time=time,
            id=event.id,
            delivery_id=event.delivery_id,
            action=action,
            timestamp=iso
        )
    except Exception as e:
        logger.warning(f"Formatage de l'historique {event.id} impossible, affichage brut: {e}")
        return _fallback(event, raw, lang, tz)


def _sort_key(event: AuditEvent, tz):
    moment = parse_datetime(event.timestamp)
    if moment is None:
        return (0, 0.0, event.id or 0)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=get_timezone(tz))
    return (1, moment.timestamp(), event.id or 0)


def format_history(events: Iterable, lang: str = 'fr', tz=None, currency: str = 'XAF') -> List[TimelineEntry]:
    """Format every event, newest first. No event is ever dropped."""
    coerced = []
    for event in events:
        try:
            coerced.append(AuditEvent.coerce(event))
        except Exception:
            coerced.append(AuditEvent(id=None, delivery_id=None, raw_details=_raw_string(event)))

    ordered = sorted(coerced, key=lambda e: _sort_key(e, tz), reverse=True)
    return [format_event(e, lang=lang, tz=tz, currency=currency) for e in ordered]
