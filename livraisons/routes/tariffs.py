"""
Routes Tarifs - Tarifs standard de livraison par quartier

Toute écriture invalide les statistiques réconciliées en cache.
"""

import logging
from decimal import Decimal, InvalidOperation

from flask import Blueprint, jsonify, request
from sqlalchemy import func

from livraisons import db
from livraisons.models import Tariff
from livraisons.routes import api_response, get_stats_cache
from livraisons.services.scope_service import ScopeError
from livraisons.utils.decorators import agency_required, current_scope
from livraisons.utils.helpers import ZERO

logger = logging.getLogger(__name__)

tariffs_bp = Blueprint('tariffs', __name__)


def _parse_amount(data):
    """Montant du tarif (amount ou tarif_amount), None si absent ou invalide"""
    raw = data.get('amount', data.get('tarif_amount'))
    if raw is None or isinstance(raw, bool):
        return None
    try:
        amount = Decimal(str(raw).strip())
    except (InvalidOperation, ValueError):
        return None
    if not amount.is_finite() or amount < ZERO:
        return None
    return amount


def _find_duplicate(agency_id, quartier, exclude_id=None):
    query = Tariff.query.filter(
        Tariff.agency_id == agency_id,
        func.lower(Tariff.quartier) == quartier.lower()
    )
    if exclude_id is not None:
        query = query.filter(Tariff.id != exclude_id)
    return query.first()


def _get_scoped_tariff(tariff_id):
    """Tarif dans le périmètre de l'appelant, None si introuvable"""
    tariff = db.session.get(Tariff, tariff_id)
    if tariff is None:
        return None
    scope = current_scope()
    if scope.agency_id is not None and tariff.agency_id != scope.agency_id:
        raise ScopeError("Tarif hors du périmètre autorisé")
    return tariff


@tariffs_bp.route('', methods=['GET'])
@agency_required
def get_tariffs():
    """
    Liste des tarifs par quartier

    Query params:
        - agency_id: Agence cible (super admin uniquement, toutes sinon)
    """
    scope = current_scope(request.args.get('agency_id'))
    query = Tariff.query
    if scope.agency_id is not None:
        query = query.filter(Tariff.agency_id == scope.agency_id)

    tariffs = query.order_by(Tariff.agency_id.asc(), Tariff.quartier.asc()).all()
    return api_response(True, data={'tariffs': [t.to_dict() for t in tariffs]})


@tariffs_bp.route('/<int:tariff_id>', methods=['GET'])
@agency_required
def get_tariff(tariff_id):
    """Détails d'un tarif"""
    tariff = _get_scoped_tariff(tariff_id)
    if tariff is None:
        return jsonify({'error': 'Tarif non trouvé', 'code': 'NOT_FOUND'}), 404
    return api_response(True, data={'tariff': tariff.to_dict()})


@tariffs_bp.route('', methods=['POST'])
@agency_required
def create_tariff():
    """
    Créer un tarif

    Body:
        - quartier (requis)
        - amount (requis, >= 0)
        - agency_id: Agence cible (requis pour un super admin)
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({'error': 'Corps JSON requis', 'code': 'BAD_REQUEST'}), 400

    scope = current_scope(data.get('agency_id'))
    if scope.agency_id is None:
        return jsonify({'error': 'agency_id requis', 'code': 'BAD_REQUEST'}), 400

    quartier = (data.get('quartier') or '').strip()
    if not quartier:
        return jsonify({'error': 'Quartier requis', 'code': 'BAD_REQUEST'}), 400

    amount = _parse_amount(data)
    if amount is None:
        return jsonify({'error': 'Le montant doit être un nombre positif', 'code': 'BAD_REQUEST'}), 400

    if _find_duplicate(scope.agency_id, quartier):
        return jsonify({'error': 'Un tarif existe déjà pour ce quartier', 'code': 'CONFLICT'}), 409

    tariff = Tariff(agency_id=scope.agency_id, quartier=quartier, amount=amount)
    db.session.add(tariff)
    db.session.commit()

    get_stats_cache().invalidate('tariffs')
    logger.info(f"Tarif {quartier} créé (agence {scope.agency_id}): {amount}")

    return api_response(True, data={'tariff': tariff.to_dict()}, message='Tarif créé', status_code=201)


@tariffs_bp.route('/<int:tariff_id>', methods=['PUT'])
@agency_required
def update_tariff(tariff_id):
    """
    Mettre à jour un tarif

    Body (champs optionnels):
        - quartier
        - amount
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict) or not data:
        return jsonify({'error': 'Corps JSON requis', 'code': 'BAD_REQUEST'}), 400

    tariff = _get_scoped_tariff(tariff_id)
    if tariff is None:
        return jsonify({'error': 'Tarif non trouvé', 'code': 'NOT_FOUND'}), 404

    quartier = tariff.quartier
    if 'quartier' in data:
        quartier = (data.get('quartier') or '').strip()
        if not quartier:
            return jsonify({'error': 'Quartier requis', 'code': 'BAD_REQUEST'}), 400
        if _find_duplicate(tariff.agency_id, quartier, exclude_id=tariff.id):
            return jsonify({'error': 'Un tarif existe déjà pour ce quartier', 'code': 'CONFLICT'}), 409

    amount = tariff.amount
    if 'amount' in data or 'tarif_amount' in data:
        amount = _parse_amount(data)
        if amount is None:
            return jsonify({'error': 'Le montant doit être un nombre positif', 'code': 'BAD_REQUEST'}), 400

    tariff.quartier = quartier
    tariff.amount = amount

    db.session.commit()
    get_stats_cache().invalidate('tariffs')

    return api_response(True, data={'tariff': tariff.to_dict()}, message='Tarif mis à jour')


@tariffs_bp.route('/<int:tariff_id>', methods=['DELETE'])
@agency_required
def delete_tariff(tariff_id):
    """Supprimer un tarif"""
    tariff = _get_scoped_tariff(tariff_id)
    if tariff is None:
        return jsonify({'error': 'Tarif non trouvé', 'code': 'NOT_FOUND'}), 404

    db.session.delete(tariff)
    db.session.commit()
    get_stats_cache().invalidate('tariffs')

    return api_response(True, message='Tarif supprimé')
