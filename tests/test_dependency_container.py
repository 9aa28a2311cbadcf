"""
Dependency Container Tests
"""

import pytest

from apidesk.core import (
    DependencyContainer, ServiceLifetime, ServiceNotRegisteredError,
    CircularDependencyError, ServiceCreationError
)


class Widget:
    def __init__(self, name: str = 'widget'):
        self.name = name


class TestRegistration:
    """Test registration and singleton resolution"""

    def test_get_returns_same_instance(self):
        """Singletons are built once and memoized"""
        container = DependencyContainer()
        calls = []

        def factory(c):
            calls.append(c)
            return Widget()

        container.register('widget', factory)

        first = container.get('widget')
        second = container.get('widget')

        assert first is second
        assert len(calls) == 1
        assert calls[0] is container

    def test_factories_are_lazy(self):
        """Nothing is built at registration time"""
        container = DependencyContainer()
        calls = []
        container.register('widget', lambda c: calls.append(1) or Widget())

        assert calls == []
        container.get('widget')
        assert calls == [1]

    def test_unregistered_name_raises(self):
        """Unknown names fail with an error naming the key"""
        container = DependencyContainer()
        container.register('known', lambda c: Widget())

        with pytest.raises(ServiceNotRegisteredError) as exc_info:
            container.get('missing')

        assert exc_info.value.name == 'missing'
        assert 'missing' in str(exc_info.value)
        assert 'known' in exc_info.value.available

    def test_factory_receives_container_for_dependencies(self):
        """Factories pull their own dependencies from the container"""
        container = DependencyContainer()
        container.register('name', lambda c: 'from-container')
        container.register('widget', lambda c: Widget(c.get('name')))

        assert container.get('widget').name == 'from-container'

    def test_transient_builds_new_instances(self):
        """Transient services are rebuilt on every get"""
        container = DependencyContainer()
        container.register('widget', lambda c: Widget(), lifetime=ServiceLifetime.TRANSIENT)

        assert container.get('widget') is not container.get('widget')

    def test_register_instance(self):
        """Pre-built instances are returned as is"""
        container = DependencyContainer()
        widget = Widget('prebuilt')
        container.register_instance('widget', widget)

        assert container.get('widget') is widget

    def test_reregistering_overwrites(self):
        """A second registration replaces the first"""
        container = DependencyContainer()
        container.register('widget', lambda c: Widget('first'))
        container.register('widget', lambda c: Widget('second'))

        assert container.get('widget').name == 'second'

    def test_non_callable_factory_rejected(self):
        container = DependencyContainer()
        with pytest.raises(TypeError):
            container.register('widget', 'not a factory')

    def test_create_ignores_singleton_cache(self):
        """create() always builds a fresh instance"""
        container = DependencyContainer()
        container.register('widget', lambda c: Widget())

        cached = container.get('widget')
        fresh = container.create('widget')

        assert fresh is not cached
        assert container.get('widget') is cached

    def test_get_optional(self):
        container = DependencyContainer()
        assert container.get_optional('widget') is None

        container.register('widget', lambda c: Widget())
        assert isinstance(container.get_optional('widget'), Widget)


class TestAliasesAndTags:
    """Test aliases, tags and removal"""

    def test_alias_resolves_to_same_instance(self):
        container = DependencyContainer()
        container.register('widget', lambda c: Widget())
        container.alias('gadget', 'widget')

        assert container.has('gadget')
        assert container.get('gadget') is container.get('widget')

    def test_alias_to_unknown_service_is_ignored(self):
        container = DependencyContainer()
        container.alias('gadget', 'missing')

        assert not container.has('gadget')

    def test_get_by_tag_orders_by_priority(self):
        container = DependencyContainer()
        container.register('low', lambda c: Widget('low'), tags=['plugin'], priority=1)
        container.register('high', lambda c: Widget('high'), tags=['plugin'], priority=10)
        container.register('other', lambda c: Widget('other'), tags=['misc'])

        names = [widget.name for widget in container.get_by_tag('plugin')]

        assert names == ['high', 'low']
        assert container.get_by_tag('unknown') == []
        assert set(container.get_tags()) == {'plugin', 'misc'}

    def test_remove_drops_tags_and_aliases(self):
        container = DependencyContainer()
        container.register('widget', lambda c: Widget(), tags=['plugin'])
        container.alias('gadget', 'widget')

        assert container.remove('widget') is True
        assert not container.has('widget')
        assert not container.has('gadget')
        assert container.get_by_tag('plugin') == []
        assert container.remove('widget') is False

    def test_reset_clears_everything(self):
        container = DependencyContainer()
        container.register('widget', lambda c: Widget(), tags=['plugin'])
        container.reset()

        assert container.get_service_names() == []
        assert container.get_tags() == []


class TestResolutionFailures:
    """Test cycle detection and factory failures"""

    def test_self_referencing_factory_raises_circular_error(self):
        """A factory resolving its own name fails instead of recursing forever"""
        container = DependencyContainer()
        container.register('a', lambda c: c.get('a'))

        with pytest.raises(CircularDependencyError) as exc_info:
            container.get('a')

        assert 'a -> a' in str(exc_info.value)

    def test_mutual_cycle_names_the_chain(self):
        container = DependencyContainer()
        container.register('a', lambda c: c.get('b'))
        container.register('b', lambda c: c.get('a'))

        with pytest.raises(CircularDependencyError) as exc_info:
            container.get('a')

        assert 'a -> b -> a' in str(exc_info.value)

    def test_container_usable_after_cycle(self):
        """The resolution chain is unwound after a failure"""
        container = DependencyContainer()
        container.register('a', lambda c: c.get('a'))
        container.register('widget', lambda c: Widget())

        with pytest.raises(CircularDependencyError):
            container.get('a')

        assert isinstance(container.get('widget'), Widget)

    def test_factory_error_is_wrapped(self):
        container = DependencyContainer()

        def broken(c):
            raise RuntimeError("boom")

        container.register('broken', broken)

        with pytest.raises(ServiceCreationError) as exc_info:
            container.get('broken')

        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert not container.get_registered_services()['broken'].resolved

    def test_missing_dependency_propagates_unwrapped(self):
        container = DependencyContainer()
        container.register('widget', lambda c: Widget(c.get('missing')))

        with pytest.raises(ServiceNotRegisteredError):
            container.get('widget')


class TestContainerIsolation:
    """Independent containers never share instances"""

    def test_two_containers_build_separate_graphs(self):
        first = DependencyContainer()
        second = DependencyContainer()
        for container in (first, second):
            container.register('widget', lambda c: Widget())

        assert first.get('widget') is not second.get('widget')
