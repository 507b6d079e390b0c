"""Report routes: reconciliation reports of WhatsApp groups.

Handles:
- Per-group summary of an agency for a period
- Collected amounts, applied tariffs and net to reverse for a period
- Tariff breakdown per quartier (standard vs modified fee)
- Comparison with the previous period of the same length
"""
from flask import Blueprint, current_app, g, jsonify, request

from livraisons import db
from livraisons.models import DateRange, Group
from livraisons.routes import api_response, get_lang, get_stats_cache
from livraisons.routes.stats import format_amounts
from livraisons.services.delivery_service import DeliveryService
from livraisons.services.period_service import describe_range, previous_range, resolve_from_args
from livraisons.services.scope_service import ScopeError
from livraisons.services.stats_service import aggregate, aggregate_by_group
from livraisons.services.tariff_service import reconcile, tariff_breakdown
from livraisons.utils.cache import CacheKey
from livraisons.utils.decorators import agency_required, current_scope
from livraisons.utils.helpers import format_currency

reports_bp = Blueprint('reports', __name__)


def variation(current, previous):
    """Variation en % par rapport à la période précédente (None si base nulle)"""
    if not previous:
        return None
    return round(float((current - previous) / previous * 100), 1)


def serialize_breakdown(lines, currency):
    return [
        {
            'quartier': line['quartier'],
            'delivery_fee': float(line['delivery_fee']),
            'count': line['count'],
            'total': float(line['total']),
            'total_formatted': format_currency(line['total'], currency),
            'is_standard': line['is_standard']
        }
        for line in lines
    ]


@reports_bp.route('/groups', methods=['GET'])
@agency_required
def get_groups_summary():
    """
    Reversements de tous les groupes de l'agence sur une période

    Query params:
        - preset / start_date / end_date: Période (défaut: thisMonth)
        - agency_id: Agence cible (super admin uniquement)
    """
    scope = current_scope(request.args.get('agency_id'))
    tz = DeliveryService.timezone_for(scope.agency_id)
    date_range = resolve_from_args(request.args, tz=tz, default='thisMonth')
    lang = get_lang()

    def load():
        records = DeliveryService.fetch_records(date_range, scope, tz)
        lookup = DeliveryService.tariff_lookup()
        names = {
            group.id: group.name
            for group in Group.query.filter(Group.id.in_(sorted({r.group_id for r in records if r.group_id})))
        }

        groups = []
        for group_id, snapshot in aggregate_by_group(records, date_range, scope, tz).items():
            reconciled = reconcile(records, snapshot, lookup, tz)
            groups.append({
                'group_id': group_id,
                'name': names.get(group_id),
                'stats': reconciled.to_dict(),
                'formatted': format_amounts(reconciled)
            })
        return {
            'period': describe_range(date_range, tz=tz, lang=lang),
            'groups': groups
        }

    key = CacheKey(
        'group_report', scope.agency_id, None,
        date_range.start_date, date_range.end_date, extra=('summary', lang)
    )
    data = get_stats_cache().fetch(('groups_summary', g.user_id), key, load)
    return api_response(True, data=data)


@reports_bp.route('/groups/<int:group_id>', methods=['GET'])
@agency_required
def get_group_report(group_id):
    """
    Rapport de reversement d'un groupe

    Query params:
        - preset / start_date / end_date: Période (défaut: thisMonth)
        - agency_id: Agence cible (super admin uniquement)
        - lang: fr | en
    """
    group = db.session.get(Group, group_id)
    if group is None:
        return jsonify({'error': 'Groupe non trouvé', 'code': 'NOT_FOUND'}), 404

    scope = current_scope(request.args.get('agency_id'), group_id)
    if scope.agency_id is not None and scope.agency_id != group.agency_id:
        raise ScopeError("Groupe hors du périmètre autorisé")

    tz = DeliveryService.timezone_for(group.agency_id)
    date_range = resolve_from_args(request.args, tz=tz, default='thisMonth')
    previous = previous_range(date_range)
    lang = get_lang()
    currency = current_app.config.get('CURRENCY', 'XAF')

    def load():
        # Une seule requête couvrant les deux périodes
        records = DeliveryService.fetch_records(
            DateRange(previous.start_date, date_range.end_date), scope, tz
        )
        lookup = DeliveryService.tariff_lookup()
        current = reconcile(records, aggregate(records, date_range, scope, tz), lookup, tz)
        before = reconcile(records, aggregate(records, previous, scope, tz), lookup, tz)

        return {
            'group': group.to_dict(),
            'period': describe_range(date_range, tz=tz, lang=lang),
            'previous_period': previous.to_dict(),
            'stats': current.to_dict(),
            'previous_stats': before.to_dict(),
            'formatted': format_amounts(current),
            'comparison': {
                'total_count': variation(current.total_count, before.total_count),
                'gross_collected': variation(current.gross_collected, before.gross_collected),
                'net_payable_to_groups': variation(current.net_payable_to_groups, before.net_payable_to_groups),
            },
            'tariffs': serialize_breakdown(
                tariff_breakdown(records, date_range, scope, lookup, tz), currency
            )
        }

    key = CacheKey(
        'group_report', scope.agency_id, group_id,
        previous.start_date, date_range.end_date, extra=lang
    )
    data = get_stats_cache().fetch(('group_report', g.user_id), key, load)
    return api_response(True, data=data)
