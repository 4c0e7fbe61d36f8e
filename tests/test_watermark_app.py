from __future__ import annotations

from pathlib import Path

import pytest
from streamlit.testing.v1 import AppTest

from helpers import corrupt, photo
from image_registry import ImageRegistry
from session_state import SessionState

APP_FILE = str(Path(__file__).resolve().parent.parent / "watermark_app.py")


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    monkeypatch.setenv("ALV_WATERMARK_LOGO", str(tmp_path / "absent.png"))
    monkeypatch.setenv("ALV_SETTLE_DELAY", "0")
    monkeypatch.setattr("app_config.LAST_STATE_FILE", tmp_path / "last_state.json")


def start_app(registry=None, logo=None) -> AppTest:
    at = AppTest.from_file(APP_FILE, default_timeout=30)
    if registry is not None:
        at.session_state["registry"] = registry
    if logo is not None:
        at.session_state["logo_bytes"] = logo
    return at.run()


def texts(elements):
    return " ".join(str(e.value) for e in elements)


def test_first_render_shows_empty_registry():
    at = start_app()
    assert not at.exception
    assert at.title[0].value == "ALV Immobilier - Watermark Tool"
    assert isinstance(at.session_state["registry"], ImageRegistry)
    assert at.session_state["registry"].is_empty
    assert isinstance(at.session_state["coordinator"].state, SessionState)


def test_remove_all_waits_for_confirmation(logo_bytes):
    registry = ImageRegistry()
    entries = registry.add_images([photo("a.jpg"), photo("b.jpg")])
    at = start_app(registry, logo_bytes)
    assert not at.exception

    at.button(key="remove_all").click().run()
    assert len(registry) == 2
    assert "Cochez la confirmation" in texts(at.warning)

    at.checkbox(key="confirm_remove_all").check()
    at.button(key="remove_all").click().run()
    assert not at.exception
    assert registry.is_empty
    assert all(e.source.released for e in entries)


def test_single_download_offers_named_jpeg(logo_bytes):
    registry = ImageRegistry()
    (entry,) = registry.add_images([photo("IMG_salon.jpg")])
    at = start_app(registry, logo_bytes)

    at.button(key=f"export_{entry.id}").click().run()
    assert not at.exception
    saved = at.session_state["downloads"][entry.id]
    assert saved.filename == "salon.jpg"
    assert saved.content_type == "image/jpeg"
    labels = [e.proto.label for e in at.get("download_button")]
    assert "⬇ salon.jpg" in labels


def test_rename_ok_and_cancel(logo_bytes):
    registry = ImageRegistry()
    (entry,) = registry.add_images([photo("IMG_salon.jpg")])
    at = start_app(registry, logo_bytes)

    at.button(key=f"rename_{entry.id}").click().run()
    at.text_input(key=f"rename_input_{entry.id}").input("  Salon vue mer ")
    at.button(key=f"rename_ok_{entry.id}").click().run()
    assert not at.exception
    assert registry.get(entry.id).display_name == "Salon vue mer"
    assert at.session_state["coordinator"].state.editing_id is None

    at.button(key=f"rename_{entry.id}").click().run()
    at.text_input(key=f"rename_input_{entry.id}").input("Cuisine")
    at.button(key=f"rename_cancel_{entry.id}").click().run()
    assert registry.get(entry.id).display_name == "Salon vue mer"
    assert at.session_state["coordinator"].state.editing_id is None


def test_failed_export_is_reported(logo_bytes):
    registry = ImageRegistry()
    (entry,) = registry.add_images([corrupt("IMG_cave.jpg")])
    at = start_app(registry, logo_bytes)

    at.button(key=f"export_{entry.id}").click().run()
    assert not at.exception
    assert entry.id not in at.session_state["downloads"]
    assert "Échec du filigrane" in texts(at.error)
    assert "cave" in texts(at.error)
