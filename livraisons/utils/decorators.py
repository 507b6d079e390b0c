from functools import wraps
from flask import request, jsonify, g
from flask_jwt_extended import get_jwt_identity, verify_jwt_in_request, get_jwt
from flask_jwt_extended.exceptions import JWTExtendedException
from jwt.exceptions import PyJWTError
from livraisons.models.enums import UserRole
from livraisons.services.scope_service import resolve_scope
import logging

logger = logging.getLogger(__name__)


def _optional_int(value):
    if value is None or value == '':
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def agency_required(fn):
    """
    Décorateur qui vérifie:
    1. JWT valide
    2. Rôle connu (agency ou super_admin)
    3. agency_id présent dans le JWT pour un compte agence

    Stocke agency_id et user_role dans g pour accès facile
    """
    @wraps(fn)
    def wrapper(*args, **kwargs):
        # Skip JWT verification for OPTIONS (CORS preflight)
        if request.method == 'OPTIONS':
            return fn(*args, **kwargs)

        try:
            verify_jwt_in_request()
        except (JWTExtendedException, PyJWTError) as e:
            logger.info(f"JWT refusé: {e}")
            return jsonify({'error': 'Token invalide', 'code': 'UNAUTHORIZED'}), 401

        # Extraire les claims du JWT (émis par le service d'authentification)
        jwt_claims = get_jwt()
        user_id = get_jwt_identity()

        role = jwt_claims.get('role', UserRole.AGENCY.value)
        if not UserRole.is_valid(role):
            logger.warning(f"Rôle inconnu '{role}' pour user {user_id}")
            return jsonify({'error': 'Rôle invalide', 'code': 'UNAUTHORIZED'}), 401

        # agency_id vient du JWT, pas d'un paramètre (sécurité!)
        agency_id = _optional_int(jwt_claims.get('agency_id'))
        if agency_id is None and not UserRole.is_privileged(role):
            logger.warning(f"JWT sans agency_id pour user {user_id}")
            return jsonify({'error': 'Token invalide - agence manquante', 'code': 'UNAUTHORIZED'}), 401

        # Stocker dans g pour accès facile dans les routes
        g.user_id = user_id
        g.user_role = role
        g.agency_id = agency_id

        return fn(*args, **kwargs)

    return wrapper


def current_scope(requested_agency_id=None, group_id=None):
    """
    Périmètre autorisé pour la requête courante

    Raises:
        ScopeError: Agence demandée hors du périmètre de l'appelant
    """
    return resolve_scope(
        g.user_role,
        g.agency_id,
        requested_agency_id=_optional_int(requested_agency_id),
        group_id=_optional_int(group_id)
    )


def current_actor() -> str:
    """Identité inscrite dans l'historique des livraisons"""
    claims = get_jwt()
    return claims.get('name') or str(get_jwt_identity() or '')
