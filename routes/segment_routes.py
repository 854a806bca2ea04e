"""Segment API endpoints.

Tenant-scoped CRUD for segments plus membership queries and rule previews.
"""

from flask import Blueprint, current_app, g, jsonify, request

from routes.api_helpers import error_response, tenant_required
from services.exceptions import NotFoundError

segments_bp = Blueprint('segments', __name__, url_prefix='/api/segments')


def _segment_service():
    return current_app.services.get('segment')


@segments_bp.route('', methods=['GET'])
@tenant_required
def list_segments():
    result = _segment_service().find_all(g.tenant_id)
    return jsonify([segment.to_dict() for segment in result.data])


@segments_bp.route('', methods=['POST'])
@tenant_required
def create_segment():
    """Create a segment.

    Expected JSON payload:
    {
        "name": "Repeat buyers",
        "type": "dynamic|static",
        "rules": {"combinator": "and", "rules": [...]}
    }
    """
    data = request.get_json(silent=True)
    if not data:
        return jsonify({'error': 'No data provided'}), 400

    result = _segment_service().create(g.tenant_id, data)
    if result.is_failure:
        return error_response(result)
    return jsonify(result.data.to_dict()), 201


@segments_bp.route('/<int:segment_id>', methods=['GET'])
@tenant_required
def get_segment(segment_id):
    result = _segment_service().find_by_id(g.tenant_id, segment_id)
    if result.is_failure:
        return error_response(result)
    return jsonify(result.data.to_dict(include_members=True))


@segments_bp.route('/<int:segment_id>', methods=['PUT', 'PATCH'])
@tenant_required
def update_segment(segment_id):
    data = request.get_json(silent=True) or {}
    result = _segment_service().update(g.tenant_id, segment_id, data)
    if result.is_failure:
        return error_response(result)
    return jsonify(result.data.to_dict())


@segments_bp.route('/<int:segment_id>', methods=['DELETE'])
@tenant_required
def delete_segment(segment_id):
    result = _segment_service().delete(g.tenant_id, segment_id)
    if result.is_failure:
        return error_response(result)
    return '', 204


@segments_bp.route('/<int:segment_id>/recalculate', methods=['POST'])
@tenant_required
def recalculate_segment(segment_id):
    result = _segment_service().recalculate_for_tenant(g.tenant_id, segment_id)
    if result.is_failure:
        return error_response(result)
    return jsonify({'segmentId': segment_id, 'contactCount': result.data})


@segments_bp.route('/<int:segment_id>/contacts', methods=['GET'])
@tenant_required
def segment_contacts(segment_id):
    try:
        contacts = _segment_service().get_members(g.tenant_id, segment_id)
    except NotFoundError as e:
        return jsonify({'error': str(e), 'code': e.code}), 404
    return jsonify({
        'segmentId': segment_id,
        'total': len(contacts),
        'contacts': [contact.to_dict() for contact in contacts],
    })


@segments_bp.route('/<int:segment_id>/contacts/<int:contact_id>/match', methods=['GET'])
@tenant_required
def segment_contact_match(segment_id, contact_id):
    try:
        matches = _segment_service().contact_matches(g.tenant_id, contact_id, segment_id)
    except NotFoundError as e:
        return jsonify({'error': str(e), 'code': e.code}), 404
    return jsonify({'segmentId': segment_id, 'contactId': contact_id, 'matches': matches})


@segments_bp.route('/system', methods=['POST'])
@tenant_required
def create_system_segments():
    result = _segment_service().create_system_segments(g.tenant_id)
    if result.is_failure:
        return error_response(result)
    return jsonify({
        'created': len(result.data),
        'segments': [segment.to_dict() for segment in result.data],
    }), 201


@segments_bp.route('/preview', methods=['POST'])
@tenant_required
def preview_segment():
    """Evaluate an unsaved rule tree and return the count and a sample"""
    data = request.get_json(silent=True) or {}
    limit = request.args.get('limit', type=int)

    result = _segment_service().preview(g.tenant_id, data.get('rules'), limit=limit)
    if result.is_failure:
        return error_response(result)
    preview = result.data
    return jsonify({
        'count': preview['count'],
        'sample': [contact.to_dict() for contact in preview['sample']],
        'warnings': preview['warnings'],
    })
