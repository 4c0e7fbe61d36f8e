from __future__ import annotations

import pytest

from helpers import corrupt, image_bytes, photo
from image_registry import (
    FALLBACK_DISPLAY_NAME,
    ImageRegistry,
    RawFile,
    ReleasedHandleError,
    UnknownImageError,
    is_image_file,
    sanitize_display_name,
)
from watermark_compositor import DecodeError


def test_sanitize_strips_noise_tokens_and_separators():
    assert sanitize_display_name("IMG_vite-001.jpg") == "001"
    assert sanitize_display_name("salon__vue-mer.PNG") == "salon vue mer"
    assert sanitize_display_name("React-Cuisine  ouverte.jpeg") == "Cuisine ouverte"


def test_sanitize_falls_back_when_nothing_is_left():
    assert sanitize_display_name("IMG_.jpg") == FALLBACK_DISPLAY_NAME
    assert sanitize_display_name("") == FALLBACK_DISPLAY_NAME


def test_sanitize_keeps_tokens_inside_words():
    assert sanitize_display_name("landscape_DSC0042.jpg") == "landscape 0042"
    assert sanitize_display_name("dimgray-IMG_12.jpg") == "dimgray 12"
    assert sanitize_display_name("vitesse-react.jpg") == "vitesse"


def test_sanitize_custom_tokens():
    assert sanitize_display_name("IMG_0042.jpg", noise_tokens=()) == "IMG 0042"
    assert sanitize_display_name("ALV-chambre.jpg", noise_tokens=("alv",)) == "chambre"


def test_add_images_keeps_upload_order(registry):
    added = registry.add_images([photo("a.jpg"), photo("b.jpg"), photo("c.jpg")])
    assert [e.display_name for e in added] == ["a", "b", "c"]
    assert [e.display_name for e in registry] == ["a", "b", "c"]
    assert len({e.id for e in added}) == 3
    assert registry.position(added[2].id) == 3


def test_add_images_skips_non_images(registry):
    files = [
        photo("a.jpg"),
        RawFile("notes.txt", b"hello", "text/plain"),
        RawFile("plan.pdf", b"%PDF-1.4", None),
        RawFile("b.png", image_bytes(fmt="PNG"), None),
    ]
    added = registry.add_images(files)
    assert [e.filename for e in added] == ["a.jpg", "b.png"]
    assert added[1].media_type == "image/png"
    assert len(registry) == 2


def test_add_images_accepts_empty_batch(registry):
    assert registry.add_images([]) == []
    assert registry.is_empty


def test_is_image_file_uses_name_when_type_missing(tmp_path):
    assert is_image_file(tmp_path / "x.jpeg")
    assert not is_image_file(tmp_path / "x.txt")


def test_rename_trims_and_ignores_blank(registry):
    (entry,) = registry.add_images([photo("IMG_001.jpg")])
    assert registry.rename(entry.id, "  Salon  ")
    assert registry.get(entry.id).display_name == "Salon"
    assert not registry.rename(entry.id, "   ")
    assert registry.get(entry.id).display_name == "Salon"


def test_rename_unknown_id(registry):
    with pytest.raises(UnknownImageError):
        registry.rename("missing", "x")


def test_remove_releases_handle(registry):
    a, b = registry.add_images([photo("a.jpg"), photo("b.jpg")])
    removed = registry.remove(a.id)
    assert removed is a
    assert a.source.released
    assert [e.id for e in registry] == [b.id]
    with pytest.raises(ReleasedHandleError):
        a.source.read()
    with pytest.raises(UnknownImageError):
        registry.remove(a.id)


def test_remove_all_requires_confirmation(registry):
    entries = registry.add_images([photo("a.jpg"), photo("b.jpg")])
    assert not registry.remove_all(lambda: False)
    assert len(registry) == 2
    assert registry.remove_all(lambda: True)
    assert registry.is_empty
    assert all(e.source.released for e in entries)


def test_bitmap_is_decoded_lazily_and_cached(registry):
    (entry,) = registry.add_images([photo("a.jpg", size=(30, 20))])
    bmp = entry.source.bitmap()
    assert bmp.size == (30, 20)
    assert bmp.mode == "RGBA"
    assert entry.source.bitmap() is bmp


def test_bitmap_of_corrupt_upload_raises_decode_error(registry):
    (entry,) = registry.add_images([corrupt()])
    with pytest.raises(DecodeError):
        entry.source.bitmap()


def test_release_is_idempotent(registry):
    (entry,) = registry.add_images([photo("a.jpg")])
    entry.source.bitmap()
    entry.source.release()
    entry.source.release()
    assert entry.source.size_bytes == 0


def test_context_manager_releases_everything():
    with ImageRegistry() as reg:
        entries = reg.add_images([photo("a.jpg"), photo("b.jpg")])
    assert reg.is_empty
    assert all(e.source.released for e in entries)


def test_iteration_is_over_a_copy(registry):
    registry.add_images([photo("a.jpg"), photo("b.jpg")])
    for entry in registry:
        registry.remove(entry.id)
    assert registry.is_empty
