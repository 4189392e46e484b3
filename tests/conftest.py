"""
pytest configuration and fixtures for CBOR-LD decoder tests.

Provides reusable fixtures for:
- Context documents and a static document loader
- Application context/term maps
- Hypothesis property-based testing configuration
"""

import os
import sys
from pathlib import Path

import pytest

# Add project paths
sys.path.insert(0, str(Path(__file__).parent.parent / "tools"))
sys.path.insert(0, str(Path(__file__).parent))

from cborld_context import StaticDocumentLoader  # noqa: E402

# Configure Hypothesis profiles
from hypothesis import settings, Verbosity, Phase  # noqa: E402

# Default profile: balanced speed and coverage
settings.register_profile(
    "default",
    max_examples=100,
    deadline=None,
)

# CI profile: more thorough testing
settings.register_profile(
    "ci",
    max_examples=500,
    deadline=None,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
)

# Dev profile: fast iteration
settings.register_profile(
    "dev",
    max_examples=10,
    deadline=None,
)

# Debug profile: verbose output
settings.register_profile(
    "debug",
    max_examples=10,
    verbosity=Verbosity.verbose,
    deadline=None,
)

settings.load_profile(os.environ.get("HYPOTHESIS_PROFILE", "default"))


EXAMPLE_CONTEXT_URL = "https://example.org/ctx"
APP_CONTEXT_URL = "https://example.org/app/v1"

EXAMPLE_CONTEXT = {
    "@context": {
        "@version": 1.1,
        "id": "@id",
        "type": "@type",
        "name": "https://schema.org/name",
        "knows": {"@id": "https://schema.org/knows", "@type": "@id"},
        "created": {
            "@id": "https://purl.org/dc/terms/created",
            "@type": "xsd:dateTime",
        },
        "signature": {
            "@id": "https://example.org/signature",
            "@type": "xsd:base64Binary",
        },
        "address": "https://schema.org/address",
        "city": "https://schema.org/addressLocality",
        "tags": "https://schema.org/keywords",
    }
}

APP_CONTEXT = {
    "@context": {
        "amount": "https://example.org/amount",
        "currency": "https://example.org/currency",
    }
}


@pytest.fixture
def document_loader():
    """
    Provide a static loader for the example and application contexts.

    Usage:
        def test_decode(document_loader):
            doc = asyncio.run(from_cborld(data, document_loader=document_loader))
    """
    return StaticDocumentLoader({
        EXAMPLE_CONTEXT_URL: EXAMPLE_CONTEXT,
        APP_CONTEXT_URL: APP_CONTEXT,
    })


@pytest.fixture
def app_context_map():
    return {APP_CONTEXT_URL: 0x8000}


@pytest.fixture
def app_term_map():
    return {"amount": "SimpleType", "issued": "XsdDateTime"}


# Markers for test categorization
def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
