"""Shared helpers for the JSON API blueprints."""

from functools import wraps

from flask import g, jsonify

from services.common.result import ErrorCode

# Result failure code -> HTTP status
ERROR_STATUS = {
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.INVALID_STATE: 409,
    ErrorCode.SYSTEM_SEGMENT: 409,
    ErrorCode.CONFLICT: 409,
    ErrorCode.VALIDATION_ERROR: 400,
}


def tenant_required(f):
    """Reject requests without an X-Tenant-ID header"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not getattr(g, 'tenant_id', None):
            return jsonify({'error': 'X-Tenant-ID header is required'}), 400
        return f(*args, **kwargs)
    return decorated_function


def error_response(result):
    """Turn a failed Result into a JSON error response"""
    status = ERROR_STATUS.get(result.code, 500)
    return jsonify({'error': result.error, 'code': result.code}), status
