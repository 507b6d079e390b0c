"""
Fonctions utilitaires
Helpers réutilisables dans toute l'application (montants, dates, devises)
"""

import logging
from datetime import datetime, date, timezone
from decimal import Decimal, InvalidOperation
from zoneinfo import ZoneInfo

logger = logging.getLogger(__name__)

ZERO = Decimal('0')

# Devises affichées sans décimales
ZERO_DECIMAL_CURRENCIES = {'XAF', 'XOF'}

CURRENCY_SYMBOLS = {
    'XAF': 'FCFA',
    'XOF': 'FCFA',
}


def to_amount(value) -> Decimal:
    """
    Convertit un montant brut en Decimal

    Les valeurs non numériques, NaN, infinies ou absentes valent 0:
    un enregistrement invalide ne doit jamais corrompre une somme.

    Args:
        value: int, float, Decimal, str ou None

    Returns:
        Decimal: Montant fini
    """
    if value is None or isinstance(value, bool):
        return ZERO

    if isinstance(value, Decimal):
        amount = value
    else:
        try:
            amount = Decimal(str(value).strip().replace(' ', ''))
        except (InvalidOperation, ValueError):
            logger.debug(f"Montant invalide ignoré: {value!r}")
            return ZERO

    if not amount.is_finite():
        logger.debug(f"Montant non fini ignoré: {value!r}")
        return ZERO
    return amount


def to_optional_amount(value):
    """Comme to_amount, mais conserve l'absence de valeur (None ou chaîne vide)"""
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return to_amount(value)


def format_currency(amount, currency='XAF'):
    """
    Formate un montant avec sa devise

    Args:
        amount: Montant
        currency: Code devise

    Returns:
        str: Montant formaté (ex: "15 000 FCFA")
    """
    value = to_amount(amount)
    symbol = CURRENCY_SYMBOLS.get(currency, currency)

    if currency in ZERO_DECIMAL_CURRENCIES:
        # Pas de décimales pour le FCFA
        return f"{int(value.to_integral_value()):,} {symbol}".replace(',', ' ')
    return f"{value:,.2f} {symbol}".replace(',', ' ')


def get_timezone(name=None):
    """Retourne le fuseau de l'agence (UTC par défaut)"""
    if name is None or isinstance(name, timezone):
        return name or timezone.utc
    if not isinstance(name, str):
        return name
    if name.upper() == 'UTC':
        return timezone.utc
    return ZoneInfo(name)


def parse_date(value):
    """
    Parse une date au format YYYY-MM-DD

    Args:
        value: str, date ou datetime

    Returns:
        date: Date parsée ou None
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        return datetime.strptime(value.strip()[:10], '%Y-%m-%d').date()
    except ValueError:
        return None


def parse_datetime(value):
    """Parse un timestamp ISO 8601 (le suffixe 'Z' est accepté)"""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime.combine(value, datetime.min.time())
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    try:
        return datetime.fromisoformat(text.replace(' ', 'T', 1))
    except ValueError:
        return None


def to_local_date(value, tz=None):
    """
    Ramène un timestamp au jour calendaire de l'agence

    Les datetimes avec fuseau sont convertis dans le fuseau de l'agence;
    les datetimes naïfs sont considérés comme déjà exprimés en heure locale.

    Returns:
        date: Jour local ou None si le timestamp est illisible
    """
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    moment = parse_datetime(value)
    if moment is None:
        return None
    if moment.tzinfo is not None:
        moment = moment.astimezone(get_timezone(tz))
    return moment.date()


def local_today(reference=None, tz=None):
    """Jour calendaire local de l'instant de référence (maintenant par défaut)"""
    if reference is None:
        return datetime.now(get_timezone(tz)).date()
    return to_local_date(reference, tz)
