"""
Shared fixtures for the transformer tests.

Run with: pytest tests/ -v
"""

from pathlib import Path

import pytest

from xform_transformer.config import set_config
from xform_transformer.dom import get_backend
from xform_transformer.transform import reload_sheets

FORMS_DIR = Path(__file__).parent / "forms"


@pytest.fixture(autouse=True)
def default_config(monkeypatch):
    """Every test starts from the default configuration and bundled stylesheets."""
    monkeypatch.delenv("XFORM_TRANSFORMER_CONFIG", raising=False)
    monkeypatch.delenv("XFORM_TRANSFORMER_BACKEND", raising=False)
    set_config(None)
    reload_sheets()
    yield
    set_config(None)
    reload_sheets()


@pytest.fixture(params=["native", "host"])
def dom(request):
    """Each document backend in turn."""
    return get_backend(request.param)


@pytest.fixture
def native():
    return get_backend("native")


@pytest.fixture
def forms_dir():
    return FORMS_DIR


def read_form(name: str) -> str:
    return (FORMS_DIR / name).read_text(encoding="utf-8")


@pytest.fixture
def basic_xform():
    return read_form("basic.xml")


@pytest.fixture
def repeat_xform():
    return read_form("repeat.xml")


@pytest.fixture
def itemsets_xform():
    return read_form("itemsets.xml")


@pytest.fixture
def minimal_xform():
    return read_form("minimal.xml")
