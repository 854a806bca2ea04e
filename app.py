# app.py

from flask import Flask, g, jsonify, request
from flask_migrate import Migrate
from config import get_config
from extensions import db, mail
import os
import uuid
from werkzeug.middleware.proxy_fix import ProxyFix
from logging_config import setup_logging, get_logger

# Configure logging as early as possible
setup_logging(app_name="campaign-engine", log_level=os.environ.get('LOG_LEVEL', 'INFO'))
logger = get_logger(__name__)


# Configure Sentry for production error tracking
def init_sentry():
    """Initialize Sentry error tracking in production."""
    sentry_dsn = os.environ.get('SENTRY_DSN')
    if sentry_dsn and os.environ.get('FLASK_ENV') == 'production':
        import sentry_sdk
        from sentry_sdk.integrations.flask import FlaskIntegration
        from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
        from sentry_sdk.integrations.celery import CeleryIntegration

        sentry_sdk.init(
            dsn=sentry_dsn,
            integrations=[
                FlaskIntegration(transaction_style='endpoint'),
                SqlalchemyIntegration(),
                CeleryIntegration()
            ],
            traces_sample_rate=0.1,
            environment=os.environ.get('FLASK_ENV', 'development'),
            release=os.environ.get('GIT_SHA', 'unknown')
        )
        logger.info("Sentry error tracking initialized")


init_sentry()


def create_app(config_name=None, test_config=None):
    """Create and configure an instance of the Flask application."""
    app = Flask(__name__)

    config_class = get_config(config_name)
    app.config.from_object(config_class)
    config_class.init_app(app)

    if test_config:
        app.config.update(test_config)

    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_prefix=1)

    db.init_app(app)
    Migrate(app, db)
    mail.init_app(app)

    app.services = _build_registry(app)

    @app.before_request
    def before_request():
        g.request_id = request.headers.get('X-Request-ID') or str(uuid.uuid4())
        g.tenant_id = request.headers.get('X-Tenant-ID')
        logger.info("Request started",
                    request_id=g.request_id,
                    tenant_id=g.tenant_id,
                    method=request.method,
                    path=request.path)

    @app.after_request
    def after_request(response):
        logger.info("Request completed",
                    request_id=getattr(g, 'request_id', None),
                    status_code=response.status_code)
        return response

    @app.teardown_appcontext
    def clear_request_scope(exception=None):
        app.services.clear_scope('default')

    # Global error handlers
    @app.errorhandler(500)
    def internal_error(error):
        logger.error("Internal server error",
                     request_id=getattr(g, 'request_id', None),
                     error=str(error))
        return jsonify({'error': 'Internal server error'}), 500

    @app.errorhandler(404)
    def not_found_error(error):
        logger.warning("Resource not found",
                       request_id=getattr(g, 'request_id', None),
                       path=request.path)
        return jsonify({'error': 'Not found'}), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify({'error': 'Method not allowed'}), 405

    @app.route('/health')
    def health_check():
        """Health check endpoint for monitoring"""
        from sqlalchemy import text
        health_status = {
            'status': 'healthy',
            'service': 'campaign-engine'
        }

        try:
            db.session.execute(text('SELECT 1'))
            health_status['database'] = 'connected'
        except Exception as e:
            health_status['database'] = 'error'
            health_status['status'] = 'degraded'
            logger.error(f"Health check database error: {e}")

        return jsonify(health_status), 200 if health_status['status'] == 'healthy' else 503

    from routes.segment_routes import segments_bp
    from routes.campaign_routes import campaigns_bp

    app.register_blueprint(segments_bp)
    app.register_blueprint(campaigns_bp)

    return app


def _build_registry(app):
    """Register every service factory; instances are built on first lookup."""
    from services.service_registry_enhanced import create_enhanced_registry, ServiceLifecycle
    registry = create_enhanced_registry()

    # Use a factory for db_session to ensure fresh sessions in tests
    registry.register_factory(
        'db_session',
        lambda: _get_current_db_session(),
        lifecycle=ServiceLifecycle.SCOPED
    )

    # Repositories
    registry.register_factory(
        'contact_repository',
        lambda db_session: _create_contact_repository(db_session),
        dependencies=['db_session']
    )
    registry.register_factory(
        'segment_repository',
        lambda db_session: _create_segment_repository(db_session),
        dependencies=['db_session']
    )
    registry.register_factory(
        'campaign_repository',
        lambda db_session: _create_campaign_repository(db_session),
        dependencies=['db_session']
    )
    registry.register_factory(
        'campaign_execution_repository',
        lambda db_session: _create_campaign_execution_repository(db_session),
        dependencies=['db_session']
    )

    # Segments
    registry.register_singleton('rule_compiler', lambda: _create_rule_compiler())
    registry.register_factory(
        'segment',
        lambda segment_repository, contact_repository, rule_compiler: _create_segment_service(
            segment_repository, contact_repository, rule_compiler, app.config.get('SEGMENT_PREVIEW_LIMIT', 10)
        ),
        dependencies=['segment_repository', 'contact_repository', 'rule_compiler']
    )
    registry.register_factory(
        'campaign_targeting',
        lambda segment: _create_campaign_targeting_service(segment),
        dependencies=['segment']
    )

    # Throttling and dispatch
    registry.register_singleton('campaign_throttle', lambda: _create_campaign_throttle())
    registry.register_singleton('variant_selector', lambda: _create_variant_selector())
    registry.register_singleton('job_queue', lambda: _create_job_queue(app.config))
    registry.register_singleton('whatsapp', lambda: _create_whatsapp_client())
    registry.register_singleton('email', lambda: _create_email_service(app))
    registry.register_factory(
        'channel_delivery',
        lambda whatsapp, email: _create_channel_delivery_service(whatsapp, email),
        dependencies=['whatsapp', 'email']
    )

    # Campaigns
    registry.register_factory(
        'campaign',
        lambda campaign_repository, campaign_execution_repository, campaign_targeting, job_queue,
               campaign_throttle, variant_selector: _create_campaign_service(
            campaign_repository, campaign_execution_repository, campaign_targeting, job_queue,
            campaign_throttle, variant_selector, app.config.get('CAMPAIGN_EXECUTION_PAGE_SIZE', 20)
        ),
        dependencies=['campaign_repository', 'campaign_execution_repository', 'campaign_targeting',
                      'job_queue', 'campaign_throttle', 'variant_selector']
    )
    registry.register_factory(
        'campaign_delivery',
        lambda campaign_repository, campaign_execution_repository, contact_repository, campaign,
               channel_delivery: _create_campaign_delivery_service(
            campaign_repository, campaign_execution_repository, contact_repository, campaign, channel_delivery
        ),
        dependencies=['campaign_repository', 'campaign_execution_repository', 'contact_repository',
                      'campaign', 'channel_delivery']
    )

    # Validate all dependencies are registered
    errors = registry.validate_dependencies()
    if errors:
        for error in errors:
            logger.error(f"Service dependency error: {error}")
        if app.config.get('FLASK_ENV') == 'production':
            raise RuntimeError(f"Service dependency errors: {errors}")

    if app.debug:
        try:
            order = registry.get_initialization_order()
            logger.debug(f"Service initialization order: {order}")
        except RuntimeError as e:
            logger.error(f"Circular dependency detected: {e}")
            raise

    return registry


# Repository creation functions
def _create_contact_repository(db_session):
    """Create ContactRepository instance"""
    from repositories.contact_repository import ContactRepository
    return ContactRepository(session=db_session)


def _create_segment_repository(db_session):
    """Create SegmentRepository instance"""
    from repositories.segment_repository import SegmentRepository
    return SegmentRepository(session=db_session)


def _create_campaign_repository(db_session):
    """Create CampaignRepository instance"""
    from repositories.campaign_repository import CampaignRepository
    return CampaignRepository(session=db_session)


def _create_campaign_execution_repository(db_session):
    """Create CampaignExecutionRepository instance"""
    from repositories.campaign_execution_repository import CampaignExecutionRepository
    return CampaignExecutionRepository(session=db_session)


# Service factory functions
# These are only called when the service is first requested

def _create_rule_compiler():
    from services.predicate_compiler import RuleCompiler
    return RuleCompiler()


def _create_segment_service(segment_repository, contact_repository, rule_compiler, preview_limit):
    from services.segment_service import SegmentService
    return SegmentService(
        segment_repository=segment_repository,
        contact_repository=contact_repository,
        rule_compiler=rule_compiler,
        preview_limit=preview_limit
    )


def _create_campaign_targeting_service(segment_service):
    from services.campaign_targeting_service import CampaignTargetingService
    return CampaignTargetingService(segment_service=segment_service)


def _create_campaign_throttle():
    from services.campaign_throttle import CampaignThrottle
    return CampaignThrottle()


def _create_variant_selector():
    from services.campaign_throttle import VariantSelector
    return VariantSelector()


def _create_job_queue(config):
    """Celery-backed queue, or an in-memory one when JOB_QUEUE_BACKEND is 'memory'"""
    from services.job_queue import CeleryJobQueue, InMemoryJobQueue
    if config.get('JOB_QUEUE_BACKEND') == 'memory':
        logger.info("Using in-memory job queue")
        return InMemoryJobQueue()

    from celery_config import create_celery_app
    return CeleryJobQueue(create_celery_app('campaign-engine', config))


def _create_whatsapp_client():
    from services.whatsapp_api_client import WhatsAppAPIClient
    return WhatsAppAPIClient()


def _create_email_service(app):
    from services.email_service import EmailService
    return EmailService.from_app(app, mail)


def _create_channel_delivery_service(whatsapp, email):
    from services.channel_delivery_service import ChannelDeliveryService
    return ChannelDeliveryService(whatsapp_client=whatsapp, email_service=email)


def _create_campaign_service(campaign_repository, execution_repository, targeting_service, job_queue,
                             throttle, variant_selector, page_size):
    from services.campaign_service import CampaignService
    return CampaignService(
        campaign_repository=campaign_repository,
        execution_repository=execution_repository,
        targeting_service=targeting_service,
        job_queue=job_queue,
        throttle=throttle,
        variant_selector=variant_selector,
        page_size=page_size
    )


def _create_campaign_delivery_service(campaign_repository, execution_repository, contact_repository,
                                      campaign_service, channel_delivery):
    from services.campaign_delivery_service import CampaignDeliveryService
    return CampaignDeliveryService(
        campaign_repository=campaign_repository,
        execution_repository=execution_repository,
        contact_repository=contact_repository,
        campaign_service=campaign_service,
        channel_delivery=channel_delivery
    )


def _get_current_db_session():
    """Get the current database session.

    Always returns the live ``db.session`` proxy so test fixtures that
    replace the session are picked up.
    """
    return db.session


if __name__ == '__main__':
    app = create_app()
    app.run(debug=True)
