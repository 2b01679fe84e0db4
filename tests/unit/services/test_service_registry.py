"""
Tests for the service registry used by the application factory
"""

import pytest

from services.service_registry import ServiceLifecycle, ServiceRegistry, create_registry


@pytest.fixture
def registry():
    return create_registry()


class TestServiceRegistry:

    def test_register_instance(self, registry):
        service = object()
        registry.register('parser', service=service)

        assert registry.get('parser') is service
        assert 'parser' in registry.list_services()

    def test_register_requires_service_or_factory(self, registry):
        with pytest.raises(ValueError):
            registry.register('empty')

    def test_unknown_service(self, registry):
        with pytest.raises(ValueError, match="not registered"):
            registry.get('missing')

    def test_singleton_is_built_once_and_lazily(self, registry):
        calls = []
        registry.register_singleton('validator', lambda: calls.append(1) or object())

        assert calls == []
        first = registry.get('validator')
        assert registry.get('validator') is first
        assert calls == [1]

    def test_transient_is_built_every_time(self, registry):
        registry.register_transient('wizard', object)

        assert registry.get('wizard') is not registry.get('wizard')

    def test_dependencies_are_injected_by_name(self, registry):
        registry.register('db_session', service='session')
        registry.register_factory('lot_repository', lambda db_session: ('repo', db_session),
                                  dependencies=['db_session'])

        assert registry.get('lot_repository') == ('repo', 'session')

    def test_circular_dependency(self, registry):
        registry.register_factory('a', lambda b: b, dependencies=['b'])
        registry.register_factory('b', lambda a: a, dependencies=['a'])

        with pytest.raises(RuntimeError, match="Circular dependency detected: a -> b -> a"):
            registry.get('a')
        with pytest.raises(RuntimeError):
            registry.get_initialization_order()

    def test_failed_build_is_not_cached(self, registry):
        attempts = []

        def flaky():
            attempts.append(1)
            if len(attempts) == 1:
                raise ConnectionError('database not ready')
            return 'parser'

        registry.register_singleton('parser', flaky)

        with pytest.raises(ConnectionError):
            registry.get('parser')
        assert registry.get('parser') == 'parser'

    def test_validate_dependencies(self, registry):
        registry.register_factory('import_service', lambda persistence_adapter: None,
                                  dependencies=['persistence_adapter'])

        assert registry.validate_dependencies() == [
            "Service 'import_service' depends on unregistered service 'persistence_adapter'"
        ]

    def test_initialization_order(self, registry):
        registry.register_factory('service', lambda repository: None, dependencies=['repository'])
        registry.register_factory('repository', lambda db_session: None, dependencies=['db_session'])
        registry.register('db_session', service='session')

        order = registry.get_initialization_order()

        assert order.index('db_session') < order.index('repository') < order.index('service')
        assert registry.list_services() == ['db_session', 'repository', 'service']

    def test_lifecycle_defaults_to_singleton(self):
        registry = ServiceRegistry()
        registry.register_factory('x', object)

        assert registry._descriptors['x'].lifecycle == ServiceLifecycle.SINGLETON
