"""
Routes de l'API - helpers partagés par les blueprints
"""
from flask import current_app, jsonify, request


def api_response(success, data=None, message=None, error=None, status_code=200):
    """Create standardized API response.

    Args:
        success: Whether the operation was successful
        data: Response data (for successful operations)
        message: Success message
        error: Error details (for failed operations)
        status_code: HTTP status code

    Returns:
        tuple: (response_json, status_code)
    """
    response = {'success': success}

    if success:
        if data is not None:
            response['data'] = data
        if message:
            response['message'] = message
    else:
        response['error'] = error or {'code': 'ERROR', 'message': 'An error occurred'}

    return jsonify(response), status_code


def get_lang():
    """Langue d'affichage: ?lang=, sinon fr"""
    lang = (request.args.get('lang') or 'fr').lower()
    return lang if lang in ('fr', 'en') else 'fr'


def get_stats_cache():
    return current_app.extensions['stats_cache']
