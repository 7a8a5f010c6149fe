"""Tests for the provider registry."""

import pytest

from ctxinject.context.models import SourceType
from ctxinject.providers import (
    FileProvider,
    GitProvider,
    MemoryProvider,
    ProviderRegistry,
    UnsupportedSourceError,
    WebProvider,
)


def test_default_registry_covers_every_type() -> None:
    """Test the default registry has a provider per source type."""
    registry = ProviderRegistry.default()

    for source_type in SourceType:
        assert registry.get(source_type).source_type == source_type
    assert isinstance(registry.get(SourceType.FILE), FileProvider)
    assert isinstance(registry.get(SourceType.WEB), WebProvider)
    assert isinstance(registry.get(SourceType.GIT), GitProvider)


def test_get_unregistered_type() -> None:
    """Test a missing provider raises UnsupportedSourceError."""
    registry = ProviderRegistry([MemoryProvider()])

    with pytest.raises(UnsupportedSourceError, match="web"):
        registry.get(SourceType.WEB)


def test_register_replaces_provider() -> None:
    """Test registering a provider for a type replaces the previous one."""
    first = MemoryProvider()
    second = MemoryProvider()
    registry = ProviderRegistry([first])

    registry.register(second)

    assert registry.get(SourceType.MEMORY) is second
