# tests/conftest.py
"""
Shared fixtures for the pytest test suite.

Every test that touches the database gets a fresh in-memory SQLite schema.
The service registry is rebuilt with the app, so cached services never leak
between tests.
"""
import os

# Must be set before app or celery_worker are imported anywhere
os.environ['FLASK_ENV'] = 'testing'

import pytest
from app import create_app
from extensions import db
from crm_database import Contact, Segment, Campaign, CampaignVariant, CampaignExecution

TENANT_ID = 'tenant-a'
OTHER_TENANT_ID = 'tenant-b'


def create_test_contact(**kwargs):
    """
    Helper function to create test contacts with default values.
    Used across multiple test files.
    """
    defaults = {
        'tenant_id': TENANT_ID,
        'name': 'Test User',
        'phone': '+15551234567',
        'email': None,
        'tags': [],
        'custom_fields': {},
        'ecommerce_data': {},
    }
    defaults.update(kwargs)
    return Contact(**defaults)


def create_test_campaign(**kwargs):
    """
    Helper function to create test campaigns with default values.
    Used across multiple test files.
    """
    defaults = {
        'tenant_id': TENANT_ID,
        'name': 'Test Campaign',
        'type': 'whatsapp_template',
        'primary_channel': 'whatsapp',
        'status': 'draft',
        'content': {'templateName': 'welcome', 'templateVariables': {'1': 'Ana'}},
        'targeting': {},
    }
    defaults.update(kwargs)
    return Campaign(**defaults)


@pytest.fixture
def app():
    """
    A Flask application with a fresh in-memory database.

    The app context stays pushed for the duration of the test.
    """
    app = create_app(config_name='testing', test_config={
        'SERVER_NAME': 'localhost.localdomain'
    })

    with app.app_context():
        db.create_all()

        yield app

        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    """Test client for the Flask application"""
    return app.test_client()


@pytest.fixture
def tenant_headers():
    return {'X-Tenant-ID': TENANT_ID}


@pytest.fixture
def db_session(app):
    """
    The database session used by the registry's repositories.

    Uncommitted changes are rolled back after the test.
    """
    session = db.session
    try:
        yield session
    finally:
        session.rollback()


@pytest.fixture
def job_queue(app):
    """The in-memory job queue the testing config wires into the registry"""
    queue = app.services.get('job_queue')
    queue.clear()
    return queue


@pytest.fixture
def contacts_with_orders(db_session):
    """Four contacts with 0, 1, 2 and 5 orders"""
    contacts = [
        create_test_contact(name=f'Buyer {orders}', email=f'buyer{orders}@example.com',
                            ecommerce_data={'totalOrders': orders, 'totalSpent': orders * 100})
        for orders in (0, 1, 2, 5)
    ]
    db_session.add_all(contacts)
    db_session.commit()
    return contacts


@pytest.fixture
def segment_factory(db_session):
    def _create(**kwargs):
        defaults = {
            'tenant_id': TENANT_ID,
            'name': 'Test Segment',
            'type': 'dynamic',
            'rules': {'combinator': 'and', 'rules': []},
            'contact_ids': [],
            'contact_count': 0,
        }
        defaults.update(kwargs)
        segment = Segment(**defaults)
        db_session.add(segment)
        db_session.commit()
        return segment
    return _create


@pytest.fixture
def campaign_factory(db_session):
    def _create(variants=None, **kwargs):
        campaign = create_test_campaign(**kwargs)
        db_session.add(campaign)
        db_session.flush()
        for variant in variants or []:
            db_session.add(CampaignVariant(campaign_id=campaign.id, **variant))
        db_session.commit()
        return campaign
    return _create


@pytest.fixture
def execution_factory(db_session):
    def _create(campaign, contact_id, **kwargs):
        defaults = {
            'campaign_id': campaign.id,
            'contact_id': contact_id,
            'channel': campaign.primary_channel,
            'status': 'pending',
        }
        defaults.update(kwargs)
        execution = CampaignExecution(**defaults)
        db_session.add(execution)
        db_session.commit()
        return execution
    return _create
