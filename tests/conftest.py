"""
Pytest fixtures for test infrastructure.

This module is automatically loaded by pytest and provides shared fixtures.
For fakes and helper functions, see test_helpers.py.
"""

import pytest

from tests.test_helpers import FakeClock, InMemoryDocumentStore


# =============================================================================
# Shared fixtures
# =============================================================================
@pytest.fixture
def fake_clock():
    """Deterministic clock whose sleep() advances time instantly."""
    return FakeClock()


@pytest.fixture
def memory_store():
    """Empty in-memory document store."""
    return InMemoryDocumentStore()


@pytest.fixture
def sample_listing_data():
    """Sample convocatoria as the extraction stage emits it."""
    return {
        "titulo": "Beca de Investigación Doctoral 2025",
        "entidad": "Ministerio de Ciencia",
        "descripcion": "Financiación para estudios de doctorado en universidades nacionales.",
        "fechaCierre": "2025-03-31",
        "enlace": "https://minciencias.gov.co/convocatorias/beca-doctoral-2025",
        "monto": "COP 120.000.000",
        "requisitos": "Título de maestría",
        "estado": "abierta",
    }


@pytest.fixture
def completed_status():
    """Status document of a completed batch job."""
    return {
        "status": "completed",
        "completed": 2,
        "total": 2,
        "creditsUsed": 2,
        "data": [
            {"url": "https://a.example/convocatorias", "markdown": "# Convocatoria A", "metadata": {"title": "A"}},
            {"markdown": "# Convocatoria B", "metadata": {"sourceURL": "https://b.example/convocatorias"}},
        ],
    }
