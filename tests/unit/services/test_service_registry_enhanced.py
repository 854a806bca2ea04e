"""
Tests for the service registry and the application's service wiring
"""

import pytest
from unittest.mock import Mock
import threading

from services.service_registry_enhanced import (
    ServiceRegistryEnhanced,
    ServiceLifecycle,
    create_enhanced_registry,
)


class TestServiceRegistryEnhanced:
    """Test suite for enhanced service registry"""

    @pytest.fixture
    def registry(self):
        return create_enhanced_registry()

    def test_factory_is_lazy_and_singleton_by_default(self, registry):
        factory = Mock(return_value="service_instance")
        registry.register_factory('lazy_service', factory)

        factory.assert_not_called()
        assert registry.get('lazy_service') == "service_instance"
        assert registry.get('lazy_service') == "service_instance"
        factory.assert_called_once()

    def test_transient_builds_every_time(self, registry):
        registry.register_transient('fresh', lambda: object())

        assert registry.get('fresh') is not registry.get('fresh')

    def test_scoped_instances_are_shared_within_a_scope(self, registry):
        registry.register_factory('session', lambda: object(), lifecycle=ServiceLifecycle.SCOPED)

        first = registry.get('session')
        assert registry.get('session') is first
        assert registry.get('session', scope_id='other') is not first

        registry.clear_scope('default')
        assert registry.get('session') is not first

    def test_dependencies_are_injected_by_name(self, registry):
        registry.register_singleton('db_session', lambda: 'session')
        registry.register_factory(
            'repository',
            lambda db_session: {'session': db_session},
            dependencies=['db_session']
        )

        assert registry.get('repository') == {'session': 'session'}

    def test_unknown_service(self, registry):
        with pytest.raises(ValueError, match="not registered"):
            registry.get('missing')

    def test_none_factory_is_rejected(self, registry):
        with pytest.raises(ValueError):
            registry.register_factory('broken', None)

    def test_circular_dependency_detected(self, registry):
        registry.register_factory('a', lambda b: b, dependencies=['b'])
        registry.register_factory('b', lambda a: a, dependencies=['a'])

        with pytest.raises(RuntimeError, match="Circular dependency"):
            registry.get('a')
        with pytest.raises(RuntimeError, match="Circular dependency"):
            registry.get_initialization_order()

    def test_validate_dependencies(self, registry):
        registry.register_factory('segment', lambda rule_compiler: None, dependencies=['rule_compiler'])

        assert registry.validate_dependencies() == [
            "Service 'segment' depends on unregistered service 'rule_compiler'"
        ]

    def test_initialization_order_puts_dependencies_first(self, registry):
        registry.register_factory('campaign', lambda repo: None, dependencies=['repo'])
        registry.register_factory('repo', lambda db_session: None, dependencies=['db_session'])
        registry.register_singleton('db_session', lambda: None)

        order = registry.get_initialization_order()

        assert order.index('db_session') < order.index('repo') < order.index('campaign')

    def test_singleton_is_built_once_across_threads(self, registry):
        calls = []
        registry.register_singleton('shared', lambda: calls.append(1) or object())
        results = []

        threads = [threading.Thread(target=lambda: results.append(registry.get('shared'))) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(calls) == 1
        assert all(result is results[0] for result in results)


class TestApplicationRegistry:
    """The app registers a complete and acyclic service graph"""

    def test_registry_is_valid(self, app):
        registry = app.services

        assert isinstance(registry, ServiceRegistryEnhanced)
        assert registry.validate_dependencies() == []
        assert 'campaign_delivery' in registry.get_initialization_order()

    @pytest.mark.parametrize('name', [
        'segment', 'campaign_targeting', 'campaign', 'campaign_delivery', 'channel_delivery', 'job_queue',
    ])
    def test_services_resolve(self, app, name):
        assert app.services.get(name) is not None

    def test_repositories_share_the_request_session(self, app):
        from extensions import db

        assert app.services.get('campaign_repository').session is db.session
        assert app.services.get('contact_repository').session is app.services.get('segment_repository').session

    def test_testing_config_uses_in_memory_queue(self, app):
        from services.job_queue import InMemoryJobQueue

        assert isinstance(app.services.get('job_queue'), InMemoryJobQueue)
