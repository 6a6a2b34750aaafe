from flask import Blueprint, request, jsonify, current_app
from flask_babel import gettext as _

from ..integrations import GoogleMapsClient, DistanceLookupError, HubSpotClient, HubSpotError
from ..permissions import VIEW_COSTSHEETS, EDIT_SETTINGS
from .utils import permission_required, error_response

integrations_blueprint = Blueprint('integrations', __name__)


def maps_client():
    return GoogleMapsClient(current_app.config.get('GOOGLE_MAPS_API_KEY'))


def hubspot_client(access_token):
    return HubSpotClient(access_token)


@integrations_blueprint.route('/api/distance', methods=['GET'])
@permission_required(VIEW_COSTSHEETS)
def distance():
    origin = (request.args.get('origin') or '').strip()
    destination = (request.args.get('destination') or '').strip()
    if not origin or not destination:
        return error_response(_("Both origin and destination addresses are required"), 400)

    try:
        return jsonify(maps_client().distance(origin, destination))
    except DistanceLookupError as e:
        return error_response(str(e), e.status_code)


@integrations_blueprint.route('/api/hubspot', methods=['GET'])
@permission_required(VIEW_COSTSHEETS)
def hubspot_search():
    token = request.headers.get('X-HubSpot-Token') or current_app.config.get('HUBSPOT_ACCESS_TOKEN')
    search_type = request.args.get('type', 'contacts')
    query = (request.args.get('q') or '').strip()
    limit = request.args.get('limit', 10, type=int)

    try:
        client = hubspot_client(token)
        if search_type == 'contacts':
            results = client.search_contacts(query, limit)
        elif search_type == 'deals':
            results = client.search_deals(query, limit)
        else:
            results = []
        return jsonify({'results': results})
    except HubSpotError as e:
        return error_response(str(e), e.status_code)


@integrations_blueprint.route('/api/hubspot/test', methods=['POST'])
@permission_required(EDIT_SETTINGS)
def hubspot_test():
    data = request.get_json(silent=True) or {}
    token = data.get('access_token')
    if not token:
        return error_response(_("Access token required"), 400)

    try:
        return jsonify(hubspot_client(token).test_connection())
    except HubSpotError as e:
        return jsonify({'success': False, 'message': str(e)}), e.status_code
