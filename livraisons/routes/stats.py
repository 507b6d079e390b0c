"""Stats routes: daily and period statistics for the caller's scope.

Handles:
- Single-day stats (SQL aggregation)
- Period stats with tariff reconciliation (net to reverse to groups)
- Period presets with labels and current ranges
"""
from flask import Blueprint, current_app, g, request

from livraisons.routes import api_response, get_lang, get_stats_cache
from livraisons.services.delivery_service import DeliveryService
from livraisons.services.period_service import PeriodError, describe_range, list_presets, resolve_from_args
from livraisons.services.stats_service import aggregate
from livraisons.services.tariff_service import reconcile
from livraisons.utils.cache import CacheKey
from livraisons.utils.decorators import agency_required, current_scope
from livraisons.utils.helpers import format_currency, local_today, parse_date

stats_bp = Blueprint('stats', __name__)


def format_amounts(snapshot):
    """Montants du snapshot formatés dans la devise de l'agence"""
    currency = current_app.config.get('CURRENCY', 'XAF')
    amounts = {
        'gross_collected': format_currency(snapshot.gross_collected, currency),
        'remaining_owed': format_currency(snapshot.remaining_owed, currency),
        'revenue': format_currency(snapshot.revenue, currency),
    }
    if snapshot.is_reconciled:
        amounts['total_tariffs_applied'] = format_currency(snapshot.total_tariffs_applied, currency)
        amounts['net_payable_to_groups'] = format_currency(snapshot.net_payable_to_groups, currency)
    return amounts


@stats_bp.route('/daily', methods=['GET'])
@agency_required
def get_daily_stats():
    """
    Statistiques d'une journée

    Query params:
        - date: Jour (YYYY-MM-DD), aujourd'hui par défaut
        - group_id: Filtrer par groupe
        - agency_id: Agence cible (super admin uniquement)
    """
    scope = current_scope(request.args.get('agency_id'), request.args.get('group_id'))
    tz = DeliveryService.timezone_for(scope.agency_id)

    raw_date = request.args.get('date')
    day = parse_date(raw_date) if raw_date else local_today(tz=tz)
    if day is None:
        raise PeriodError(f"Date invalide: {raw_date!r} (format YYYY-MM-DD)")

    def load():
        snapshot = DeliveryService.daily_stats(day, group_id=scope.group_id, agency_id=scope.agency_id, tz=tz)
        return {**snapshot.to_dict(), 'formatted': format_amounts(snapshot)}

    key = CacheKey('daily_stats', scope.agency_id, scope.group_id, day, day)
    data = get_stats_cache().fetch(('daily_stats', g.user_id), key, load)
    return api_response(True, data=data)


@stats_bp.route('', methods=['GET'])
@agency_required
def get_period_stats():
    """
    Statistiques d'une période, avec tarifs appliqués et net à reverser

    Query params:
        - preset: today, yesterday, thisWeek, lastWeek, thisMonth, lastMonth,
                  thisYear, lastYear, custom (défaut: today)
        - start_date, end_date: Bornes (YYYY-MM-DD) pour custom
        - group_id: Filtrer par groupe
        - agency_id: Agence cible (super admin uniquement)
        - lang: fr | en
    """
    scope = current_scope(request.args.get('agency_id'), request.args.get('group_id'))
    tz = DeliveryService.timezone_for(scope.agency_id)
    date_range = resolve_from_args(request.args, tz=tz)
    lang = get_lang()

    def load():
        records = DeliveryService.fetch_records(date_range, scope, tz)
        snapshot = aggregate(records, date_range, scope, tz)
        reconciled = reconcile(records, snapshot, DeliveryService.tariff_lookup(), tz)
        return {
            'period': describe_range(date_range, tz=tz, lang=lang),
            'stats': reconciled.to_dict(),
            'formatted': format_amounts(reconciled)
        }

    key = CacheKey(
        'period_stats', scope.agency_id, scope.group_id,
        date_range.start_date, date_range.end_date, extra=lang
    )
    data = get_stats_cache().fetch(('period_stats', g.user_id), key, load)
    return api_response(True, data=data)


@stats_bp.route('/presets', methods=['GET'])
@agency_required
def get_presets():
    """Périodes prédéfinies avec leur libellé et leur intervalle courant"""
    tz = DeliveryService.timezone_for(g.agency_id)
    return api_response(True, data={'presets': list_presets(tz=tz, lang=get_lang())})
