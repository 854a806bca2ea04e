"""Campaign API endpoints.

Campaign CRUD, lifecycle actions, execution listing and the channel
callbacks that advance execution status.
"""

from flask import Blueprint, current_app, g, jsonify, request

from routes.api_helpers import error_response, tenant_required
from services.enums import ExecutionStatus

campaigns_bp = Blueprint('campaigns', __name__, url_prefix='/api/campaigns')

# Statuses a channel callback may report
CALLBACK_STATUSES = {
    ExecutionStatus.DELIVERED.value,
    ExecutionStatus.OPENED.value,
    ExecutionStatus.CLICKED.value,
    ExecutionStatus.REPLIED.value,
    ExecutionStatus.BOUNCED.value,
    ExecutionStatus.FAILED.value,
}


def _campaign_service():
    return current_app.services.get('campaign')


@campaigns_bp.route('', methods=['GET'])
@tenant_required
def list_campaigns():
    """List campaigns, newest first.

    Query parameters:
    - status: Filter by campaign status
    - type: Filter by campaign type
    """
    result = _campaign_service().find_all(
        g.tenant_id,
        status=request.args.get('status'),
        campaign_type=request.args.get('type'),
    )
    return jsonify([campaign.to_dict() for campaign in result.data])


@campaigns_bp.route('', methods=['POST'])
@tenant_required
def create_campaign():
    data = request.get_json(silent=True)
    if not data:
        return jsonify({'error': 'No data provided'}), 400

    result = _campaign_service().create(g.tenant_id, data)
    if result.is_failure:
        return error_response(result)
    return jsonify(result.data.to_dict()), 201


@campaigns_bp.route('/stats', methods=['GET'])
@tenant_required
def campaign_stats():
    result = _campaign_service().get_stats(g.tenant_id)
    return jsonify(result.data)


@campaigns_bp.route('/<int:campaign_id>', methods=['GET'])
@tenant_required
def get_campaign(campaign_id):
    result = _campaign_service().find_by_id(g.tenant_id, campaign_id)
    if result.is_failure:
        return error_response(result)
    return jsonify(result.data.to_dict())


@campaigns_bp.route('/<int:campaign_id>', methods=['PUT', 'PATCH'])
@tenant_required
def update_campaign(campaign_id):
    data = request.get_json(silent=True) or {}
    result = _campaign_service().update(g.tenant_id, campaign_id, data)
    if result.is_failure:
        return error_response(result)
    return jsonify(result.data.to_dict())


@campaigns_bp.route('/<int:campaign_id>', methods=['DELETE'])
@tenant_required
def delete_campaign(campaign_id):
    result = _campaign_service().delete(g.tenant_id, campaign_id)
    if result.is_failure:
        return error_response(result)
    return '', 204


@campaigns_bp.route('/<int:campaign_id>/schedule', methods=['POST'])
@tenant_required
def schedule_campaign(campaign_id):
    """Schedule a campaign.

    Expected JSON payload (omit scheduledAt to start right away):
    {
        "scheduledAt": "2026-11-01T09:00:00Z"
    }
    """
    data = request.get_json(silent=True) or {}
    result = _campaign_service().schedule(g.tenant_id, campaign_id, data.get('scheduledAt'))
    if result.is_failure:
        return error_response(result)
    return jsonify(result.data.to_dict())


@campaigns_bp.route('/<int:campaign_id>/pause', methods=['POST'])
@tenant_required
def pause_campaign(campaign_id):
    result = _campaign_service().pause(g.tenant_id, campaign_id)
    if result.is_failure:
        return error_response(result)
    return jsonify(result.data.to_dict())


@campaigns_bp.route('/<int:campaign_id>/resume', methods=['POST'])
@tenant_required
def resume_campaign(campaign_id):
    result = _campaign_service().resume(g.tenant_id, campaign_id)
    if result.is_failure:
        return error_response(result)
    return jsonify(result.data.to_dict())


@campaigns_bp.route('/<int:campaign_id>/cancel', methods=['POST'])
@tenant_required
def cancel_campaign(campaign_id):
    result = _campaign_service().cancel(g.tenant_id, campaign_id)
    if result.is_failure:
        return error_response(result)
    return jsonify(result.data.to_dict())


@campaigns_bp.route('/<int:campaign_id>/executions', methods=['GET'])
@tenant_required
def campaign_executions(campaign_id):
    """Page through a campaign's executions.

    Query parameters:
    - page: Page number (default: 1)
    - per_page: Items per page (default: CAMPAIGN_EXECUTION_PAGE_SIZE)
    - status: Filter by execution status
    """
    result = _campaign_service().get_executions(
        g.tenant_id,
        campaign_id,
        page=request.args.get('page', 1, type=int),
        per_page=request.args.get('per_page', type=int),
        status=request.args.get('status'),
    )
    if result.is_failure:
        return error_response(result)
    return jsonify({
        'executions': [execution.to_dict() for execution in result.data],
        'pagination': result.pagination(),
    })


@campaigns_bp.route('/executions/<int:execution_id>/status', methods=['POST'])
def execution_status_callback(execution_id):
    """Channel status callback.

    Expected JSON payload:
    {
        "status": "delivered|opened|clicked|replied|bounced|failed",
        "externalMessageId": "optional provider id",
        "errorMessage": "optional failure reason"
    }
    """
    data = request.get_json(silent=True) or {}
    status = data.get('status')
    if status not in CALLBACK_STATUSES:
        return jsonify({'error': f"Invalid status: {status}"}), 400

    result = _campaign_service().update_execution_status(
        execution_id,
        status,
        external_message_id=data.get('externalMessageId'),
        error_message=data.get('errorMessage'),
    )
    if result.is_failure:
        return error_response(result)
    return jsonify(result.data.to_dict())


@campaigns_bp.route('/executions/<int:execution_id>/conversion', methods=['POST'])
def execution_conversion(execution_id):
    """Attribute an order to a campaign execution.

    Expected JSON payload:
    {
        "value": 49.90,
        "orderId": "optional order reference"
    }
    """
    data = request.get_json(silent=True) or {}
    try:
        value = float(data.get('value') or 0)
    except (TypeError, ValueError):
        return jsonify({'error': f"Invalid value: {data.get('value')}"}), 400

    result = _campaign_service().record_conversion(execution_id, value, order_id=data.get('orderId'))
    if result.is_failure:
        return error_response(result)
    return jsonify(result.data.to_dict())
