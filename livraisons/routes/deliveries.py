"""
Routes Livraisons - Liste paginée, détail, création, historique formaté, mise à jour
"""

from flask import Blueprint, current_app, g, jsonify, request

from livraisons import db
from livraisons.models import Group
from livraisons.routes import api_response, get_lang, get_stats_cache
from livraisons.services.delivery_service import DeliveryService
from livraisons.services.history_service import format_history
from livraisons.services.period_service import resolve_from_args
from livraisons.services.scope_service import ScopeError, ensure_in_scope, normalize_sort
from livraisons.utils.cache import CacheKey
from livraisons.utils.decorators import agency_required, current_actor, current_scope

deliveries_bp = Blueprint('deliveries', __name__)


def _get_scoped_delivery(delivery_id):
    """Livraison dans le périmètre de l'appelant, None si introuvable"""
    delivery = DeliveryService.get_delivery(delivery_id)
    if delivery is None:
        return None
    ensure_in_scope(delivery.to_record(), current_scope())
    return delivery


@deliveries_bp.route('', methods=['GET'])
@agency_required
def list_deliveries():
    """
    Liste des livraisons avec filtres

    Query params:
        - page, limit: Pagination
        - preset / start_date / end_date: Période (aucune par défaut)
        - status: Filtrer par statut
        - group_id: Filtrer par groupe
        - q (ou search): Recherche (téléphone, client, produits, quartier)
        - agency_id: Agence cible (super admin uniquement)
        - sort_by: id, phone, created_at, updated_at, status, amount_due, amount_paid
        - sort_order: ASC | DESC
    """
    scope = current_scope(request.args.get('agency_id'), request.args.get('group_id'))
    tz = DeliveryService.timezone_for(scope.agency_id)

    date_range = None
    if any(request.args.get(k) for k in ('preset', 'period', 'start_date', 'startDate', 'end_date', 'endDate')):
        date_range = resolve_from_args(request.args, tz=tz)

    page = request.args.get('page', 1, type=int)
    limit = request.args.get('limit', current_app.config.get('ITEMS_PER_PAGE', 20), type=int)
    max_limit = current_app.config.get('MAX_PAGE_SIZE', 200)
    status = request.args.get('status')
    search = (request.args.get('q') or request.args.get('search') or '').strip()[:100] or None  # Limite recherche
    sort_by, sort_order = normalize_sort(request.args.get('sort_by'), request.args.get('sort_order'))

    def load():
        result = DeliveryService.list_deliveries(
            page=page,
            limit=limit,
            start_date=date_range.start_date if date_range else None,
            end_date=date_range.end_date if date_range else None,
            status=status,
            group_id=scope.group_id,
            agency_id=scope.agency_id,
            sort_by=sort_by,
            sort_order=sort_order,
            tz=tz,
            max_limit=max_limit,
            search=search
        )
        return {
            'deliveries': [r.to_dict() for r in result['records']],
            'pagination': result['pagination'].to_dict()
        }

    key = CacheKey(
        'deliveries', scope.agency_id, scope.group_id,
        date_range.start_date if date_range else None,
        date_range.end_date if date_range else None,
        page, limit, extra=(status, search, sort_by, sort_order)
    )
    data = get_stats_cache().fetch(('deliveries', g.user_id), key, load)
    return api_response(True, data=data)


@deliveries_bp.route('/<int:delivery_id>', methods=['GET'])
@agency_required
def get_delivery(delivery_id):
    """
    Détail d'une livraison

    Query params:
        - include_history: "true" pour joindre l'historique brut
    """
    delivery = _get_scoped_delivery(delivery_id)
    if delivery is None:
        return jsonify({'error': 'Livraison non trouvée', 'code': 'NOT_FOUND'}), 404

    include_history = request.args.get('include_history', 'false').lower() == 'true'
    return api_response(True, data={'delivery': delivery.to_dict(include_history=include_history)})


@deliveries_bp.route('', methods=['POST'])
@agency_required
def create_delivery():
    """
    Créer une livraison

    Body:
        - phone (requis), items, customer_name, quartier, notes, carrier
        - amount_due, amount_paid, delivery_fee, status
        - group_id: Groupe WhatsApp d'origine (même agence)
        - agency_id: Agence cible (requis pour un super admin)
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict) or not data:
        return jsonify({'error': 'Corps JSON requis', 'code': 'BAD_REQUEST'}), 400

    scope = current_scope(data.get('agency_id'))
    if scope.agency_id is None:
        return jsonify({'error': 'agency_id requis', 'code': 'BAD_REQUEST'}), 400

    group_id = data.get('group_id')
    if group_id not in (None, ''):
        try:
            group_id = int(group_id)
        except (TypeError, ValueError):
            return jsonify({'error': 'group_id invalide', 'code': 'BAD_REQUEST'}), 400
        group = db.session.get(Group, group_id)
        if group is None:
            return jsonify({'error': 'Groupe non trouvé', 'code': 'NOT_FOUND'}), 404
        if group.agency_id != scope.agency_id:
            raise ScopeError("Groupe hors du périmètre autorisé")
    else:
        group_id = None

    delivery = DeliveryService.create_delivery(
        {**data, 'group_id': group_id},
        agency_id=scope.agency_id,
        actor=current_actor()
    )
    record = delivery.to_record()
    get_stats_cache().invalidate('deliveries', record)

    return api_response(
        True,
        data={'delivery': record.to_dict()},
        message='Livraison créée',
        status_code=201
    )


@deliveries_bp.route('/<int:delivery_id>/history', methods=['GET'])
@agency_required
def get_delivery_history(delivery_id):
    """
    Historique formaté d'une livraison (plus récent en premier)

    Query params:
        - lang: fr | en
    """
    delivery = _get_scoped_delivery(delivery_id)
    if delivery is None:
        return jsonify({'error': 'Livraison non trouvée', 'code': 'NOT_FOUND'}), 404

    entries = format_history(
        DeliveryService.history(delivery_id),
        lang=get_lang(),
        tz=DeliveryService.timezone_for(delivery.agency_id),
        currency=current_app.config.get('CURRENCY', 'XAF')
    )
    return api_response(True, data={
        'delivery_id': delivery_id,
        'history': [e.to_dict() for e in entries]
    })


@deliveries_bp.route('/<int:delivery_id>', methods=['PUT'])
@agency_required
def update_delivery(delivery_id):
    """
    Mettre à jour une livraison

    Body (champs optionnels):
        - status, amount_due, amount_paid, delivery_fee
        - phone, customer_name, items, quartier, notes, carrier

    Chaque champ modifié est inscrit dans l'historique.
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict) or not data:
        return jsonify({'error': 'Corps JSON requis', 'code': 'BAD_REQUEST'}), 400

    delivery = _get_scoped_delivery(delivery_id)
    if delivery is None:
        return jsonify({'error': 'Livraison non trouvée', 'code': 'NOT_FOUND'}), 404

    before = delivery.to_record()
    entries = DeliveryService.update_delivery(delivery, data, actor=current_actor())
    after = delivery.to_record()

    if entries:
        cache = get_stats_cache()
        cache.invalidate('deliveries', before)
        cache.invalidate('deliveries', after)

    return api_response(
        True,
        data={
            'delivery': after.to_dict(),
            'changes': [e.action for e in entries]
        },
        message='Livraison mise à jour' if entries else 'Aucune modification'
    )
