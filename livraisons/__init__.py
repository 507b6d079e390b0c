"""
Application Flask - Livraisons Backend
API REST de suivi des livraisons, statistiques et reversements aux groupes
"""

from flask import Flask, request
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_jwt_extended import JWTManager
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from config import config
import logging
import os

db = SQLAlchemy()
jwt = JWTManager()
migrate = Migrate()

def get_rate_limit_key():
    """
    Retourne la clé pour le rate limiting.
    - 'preflight' pour les requêtes OPTIONS (CORS preflight) pour les exempter
    - IP de l'utilisateur sinon
    """
    if request.method == 'OPTIONS':
        return 'preflight'

    # Essayer d'obtenir l'IP réelle
    ip = get_remote_address()
    if not ip:
        ip = request.headers.get('X-Forwarded-For', request.headers.get('X-Real-IP', '127.0.0.1'))
        if ',' in ip:
            ip = ip.split(',')[0].strip()

    return ip or '127.0.0.1'

limiter = Limiter(
    key_func=get_rate_limit_key,
    default_limits=["2000 per day", "300 per hour"],
    storage_uri=os.environ.get('REDIS_URL', 'memory://')
)

# Configuration logging
logging.basicConfig(
    level=os.environ.get('LOG_LEVEL', 'INFO').upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def create_app(config_name='default'):
    """
    Factory function pour créer l'application Flask

    Args:
        config_name: Nom de la configuration (development, production, testing)

    Returns:
        Flask app configurée
    """
    app = Flask(__name__)
    app.config.from_object(config[config_name])

    # Vérifications de sécurité en production
    if config_name == 'production':
        config[config_name].init_app(app)

    # Initialisation des extensions
    db.init_app(app)
    migrate.init_app(app, db)
    jwt.init_app(app)
    limiter.init_app(app)

    # Cache des statistiques (invalidé à chaque écriture de livraison)
    from livraisons.utils.cache import StatsCache
    app.extensions['stats_cache'] = StatsCache(
        ttl_seconds=app.config.get('STATS_CACHE_SECONDS', 30),
        max_entries=app.config.get('STATS_CACHE_MAX_ENTRIES', 500),
        tz=app.config.get('TIME_ZONE', 'UTC')
    )

    # CORS - Utiliser les origines configurées (PAS de wildcard en prod!)
    cors_origins = app.config.get('CORS_ORIGINS', ['http://localhost:3000'])
    CORS(app, resources={
        r"/api/*": {
            "origins": cors_origins,
            "methods": ["GET", "POST", "PUT", "DELETE", "OPTIONS"],
            "allow_headers": app.config.get('CORS_ALLOW_HEADERS', ["Content-Type", "Authorization"]),
            "supports_credentials": app.config.get('CORS_SUPPORTS_CREDENTIALS', True)
        }
    })

    # Headers de sécurité
    @app.after_request
    def add_security_headers(response):
        # HSTS - Force HTTPS (seulement en production)
        if config_name == 'production':
            response.headers['Strict-Transport-Security'] = 'max-age=31536000; includeSubDomains'

        response.headers['X-Content-Type-Options'] = 'nosniff'
        response.headers['X-Frame-Options'] = 'DENY'
        response.headers['Referrer-Policy'] = 'strict-origin-when-cross-origin'

        return response

    # ==================== BLUEPRINTS ====================

    # Routes statistiques (jour, période, presets)
    from livraisons.routes.stats import stats_bp
    app.register_blueprint(stats_bp, url_prefix='/api/stats')

    # Routes livraisons (liste, détail, création, historique, mise à jour)
    from livraisons.routes.deliveries import deliveries_bp
    app.register_blueprint(deliveries_bp, url_prefix='/api/deliveries')

    # Routes rapports (reversement par groupe)
    from livraisons.routes.reports import reports_bp
    app.register_blueprint(reports_bp, url_prefix='/api/reports')

    # Routes tarifs (tarifs standard par quartier)
    from livraisons.routes.tariffs import tariffs_bp
    app.register_blueprint(tariffs_bp, url_prefix='/api/tariffs')

    # ==================== ERROR HANDLERS ====================

    from livraisons.services.period_service import PeriodError
    from livraisons.services.scope_service import ScopeError
    from livraisons.services.delivery_service import DeliveryUpdateError

    @app.errorhandler(PeriodError)
    def invalid_period(error):
        return {'error': str(error), 'code': 'INVALID_PERIOD'}, 400

    @app.errorhandler(ScopeError)
    def forbidden_scope(error):
        return {'error': str(error), 'code': 'FORBIDDEN_SCOPE'}, 403

    @app.errorhandler(DeliveryUpdateError)
    def invalid_update(error):
        return {'error': str(error), 'code': 'UNPROCESSABLE_ENTITY'}, 422

    @app.errorhandler(400)
    def bad_request(error):
        return {'error': 'Requête invalide', 'code': 'BAD_REQUEST'}, 400

    @app.errorhandler(401)
    def unauthorized(error):
        return {'error': 'Non autorisé', 'code': 'UNAUTHORIZED'}, 401

    @app.errorhandler(403)
    def forbidden(error):
        return {'error': 'Accès refusé', 'code': 'FORBIDDEN'}, 403

    @app.errorhandler(404)
    def not_found(error):
        return {'error': 'Ressource non trouvée', 'code': 'NOT_FOUND'}, 404

    @app.errorhandler(422)
    def unprocessable_entity(error):
        return {'error': 'Données non traitables', 'code': 'UNPROCESSABLE_ENTITY'}, 422

    @app.errorhandler(429)
    def rate_limit_exceeded(error):
        return {'error': 'Trop de requêtes. Réessayez plus tard.', 'code': 'RATE_LIMITED'}, 429

    @app.errorhandler(500)
    def internal_error(error):
        logger.error(f"Erreur interne: {str(error)}")
        return {'error': 'Erreur interne du serveur', 'code': 'INTERNAL_ERROR'}, 500

    # ==================== HEALTH CHECK ====================

    @app.route('/api/health')
    def health_check():
        """Endpoint de vérification de santé"""
        return {'status': 'healthy', 'version': '1.0.0'}

    # Créer les tables de la base de données (dev uniquement)
    if os.environ.get('AUTO_CREATE_DB', 'false').lower() == 'true':
        with app.app_context():
            db.create_all()

    logger.info(f"Application démarrée en mode {config_name}")

    return app
