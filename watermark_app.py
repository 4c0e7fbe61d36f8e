"""Streamlit ALV Watermark Application

Implements:
 - Batch photo upload (image/* only, anything else is ignored)
 - Click-to-rename, per-photo removal, remove-all with confirmation
 - Logo watermark: tiled, centered or bottom-right corner placement
 - Per-photo JPEG download and bulk download as images-alv.zip
 - Default preferences saved across sessions (mode, failure policy)
"""

from __future__ import annotations

import asyncio
from typing import Dict, Optional

import streamlit as st
from PIL import Image

from app_config import (
    AppSettings,
    apply_last_state,
    load_last_state,
    read_asset,
    save_last_state,
)
from app_logging import setup_logger
from export_coordinator import (
    ARCHIVE_NAME,
    ExportCoordinator,
    FailurePolicy,
    MemorySaver,
    SavedFile,
)
from image_registry import ImageEntry, ImageRegistry
from session_state import ALL_TARGET, SessionState
from watermark_compositor import (
    DecodeError,
    WatermarkConfig,
    WatermarkMode,
    load_image_bytes,
    render_watermark,
)

logger = setup_logger()

# ---------------------------- Configuration ---------------------------- #
PER_ROW = 3
PREVIEW_MAX_SIZE = (480, 480)
LOGO_UPLOAD_TYPES = ["png", "webp", "jpg", "jpeg"]


# ---------------------------- Session ---------------------------- #
def init_session_state():  # idempotent
    if "settings" not in st.session_state:
        settings = AppSettings.from_env()
        apply_last_state(settings, load_last_state())
        st.session_state.settings = settings
    settings: AppSettings = st.session_state.settings
    if "registry" not in st.session_state:
        st.session_state.registry = ImageRegistry(settings.noise_tokens)
    if "saver" not in st.session_state:
        st.session_state.saver = MemorySaver()
    if "coordinator" not in st.session_state:
        st.session_state.coordinator = ExportCoordinator(
            st.session_state.registry,
            current_watermark_config,
            st.session_state.saver,
            failure_policy=settings.failure_policy,
            exclusive=settings.exclusive_exports,
            settle_delay=settings.settle_delay,
            state=SessionState(mode=settings.mode),
        )
    if "logo_bytes" not in st.session_state:
        st.session_state.logo_bytes = read_asset(settings.logo_path)
    if "center_logo_bytes" not in st.session_state:
        st.session_state.center_logo_bytes = read_asset(settings.center_logo_path)
    if "uploader_key" not in st.session_state:
        st.session_state.uploader_key = 0
    # Prepared downloads: target ("all" or entry id) -> SavedFile
    if "downloads" not in st.session_state:
        st.session_state.downloads = {}
    if "_last_failures" not in st.session_state:
        st.session_state._last_failures = {}


def coordinator() -> ExportCoordinator:
    return st.session_state.coordinator


def registry() -> ImageRegistry:
    return st.session_state.registry


def current_watermark_config() -> WatermarkConfig:
    return WatermarkConfig(
        mode=st.session_state.coordinator.state.mode,
        logo=st.session_state.get("logo_bytes"),
        centered_logo=st.session_state.get("center_logo_bytes"),
    )


# ---------------------------- Image Utilities ---------------------------- #
def _get_preview(entry: ImageEntry, config: WatermarkConfig) -> Image.Image:
    """Small watermarked preview; grey placeholder when the photo cannot be decoded."""
    try:
        thumb = entry.source.bitmap().copy()
    except DecodeError:
        return Image.new("RGBA", PREVIEW_MAX_SIZE, (200, 200, 200, 255))
    thumb.thumbnail(PREVIEW_MAX_SIZE, Image.Resampling.LANCZOS)
    try:
        logo = load_image_bytes(config.asset_for())
    except DecodeError:
        return thumb
    return render_watermark(thumb, logo, config.mode, config.effective_opacity)


def _run_export(target: str) -> None:
    """Run one export synchronously and keep the produced file for download."""
    saver: MemorySaver = st.session_state.saver
    coord = coordinator()
    with st.spinner("Téléchargement... / Exporting..."):
        if target == ALL_TARGET:
            result = asyncio.run(coord.export_all())
        else:
            result = asyncio.run(coord.export_one(target))
    if result is None:
        return
    st.session_state._last_failures[target] = result.failed
    if result.ok and saver.last is not None:
        st.session_state.downloads[target] = saver.last
        # The saver is only a hand-off point between the coordinator and the UI
        saver.files.clear()
    else:
        st.session_state.downloads.pop(target, None)


# ---------------------------- Sidebar ---------------------------- #
def sidebar_import_panel():
    st.sidebar.header("1. Photos / Import")
    uploaded = st.sidebar.file_uploader(
        "Glissez-déposez vos photos ici / Drop photos here",
        accept_multiple_files=True,
        key=f"uploader_{st.session_state.uploader_key}",
    )
    if uploaded:
        added = registry().add_images(uploaded)
        ignored = len(uploaded) - len(added)
        # Fresh widget key so the same files are not added again on the next rerun
        st.session_state.uploader_key += 1
        if ignored:
            st.session_state._import_notice = f"{ignored} fichier(s) ignoré(s) (pas une image)"
        st.rerun()
    notice = st.session_state.pop("_import_notice", None)
    if notice:
        st.sidebar.info(notice)
    if registry().is_empty:
        st.sidebar.info("Aucune image / No images yet")
    else:
        st.sidebar.success(f"{len(registry())} image(s)")


def sidebar_watermark_panel():
    st.sidebar.header("2. Filigrane / Watermark")
    coord = coordinator()
    modes = list(WatermarkMode)
    mode = st.sidebar.radio(
        "Placement",
        modes,
        index=modes.index(coord.state.mode),
        format_func=lambda m: m.label,
    )
    if mode != coord.state.mode:
        coord.state = coord.state.with_mode(mode)

    with st.sidebar.expander("Logo"):
        logo = st.file_uploader("Logo (PNG recommandé)", type=LOGO_UPLOAD_TYPES, key="logo_upload")
        if logo is not None:
            st.session_state.logo_bytes = logo.getvalue()
        center_logo = st.file_uploader(
            "Logo du mode centré (optionnel)", type=LOGO_UPLOAD_TYPES, key="center_logo_upload"
        )
        if center_logo is not None:
            st.session_state.center_logo_bytes = center_logo.getvalue()
        try:
            preview = load_image_bytes(current_watermark_config().asset_for())
            st.image(preview, caption="Logo actuel / Current logo", use_container_width=True)
        except DecodeError as e:
            st.error(f"Logo indisponible: {e}")


def sidebar_export_settings():
    st.sidebar.header("3. Export")
    coord = coordinator()
    settings: AppSettings = st.session_state.settings
    policies = list(FailurePolicy)
    policy = st.sidebar.selectbox(
        "En cas d'échec / On failure",
        policies,
        index=policies.index(coord.failure_policy),
        format_func=lambda p: {
            FailurePolicy.SKIP: "Ignorer l'image / Skip the photo",
            FailurePolicy.ABORT: "Tout annuler / Abort the batch",
        }[p],
    )
    coord.failure_policy = policy
    if st.sidebar.button("Enregistrer par défaut / Save as default"):
        settings.mode = coord.state.mode
        settings.failure_policy = coord.failure_policy
        save_last_state({"mode": settings.mode.value, "failure_policy": settings.failure_policy.value})
        st.sidebar.success("Préférences enregistrées")


# ---------------------------- Main Layout ---------------------------- #
def _failure_message(target: str, names: Dict[str, str]) -> Optional[str]:
    failures = st.session_state._last_failures.get(target) or []
    if not failures:
        return None
    listed = ", ".join(names.get(entry_id, entry_id) for entry_id, _ in failures)
    return f"Échec du filigrane / Watermark failed: {listed}"


def header_actions():
    reg = registry()
    coord = coordinator()
    names = {e.id: e.display_name for e in reg}
    col_remove, col_all, col_dl = st.columns([2, 3, 3])

    with col_remove:
        confirm = st.checkbox("Je confirme / I confirm", key="confirm_remove_all")
        if st.button("Supprimer toutes les images", key="remove_all"):
            if reg.remove_all(lambda: confirm):
                coord.state = SessionState(mode=coord.state.mode)
                st.session_state.downloads.clear()
                st.session_state._last_failures.clear()
                st.rerun()
            else:
                st.warning("Cochez la confirmation / Tick the confirmation first")

    with col_all:
        busy = coord.is_running(ALL_TARGET)
        label = "Téléchargement..." if busy else f"Télécharger toutes les images ({len(reg)})"
        if st.button(label, key="export_all", disabled=busy, type="primary"):
            _run_export(ALL_TARGET)

    with col_dl:
        saved: Optional[SavedFile] = st.session_state.downloads.get(ALL_TARGET)
        if saved is not None:
            st.download_button(
                f"⬇ {ARCHIVE_NAME}",
                data=saved.data,
                file_name=ARCHIVE_NAME,
                mime=saved.content_type,
                key="download_all",
            )
    message = _failure_message(ALL_TARGET, names)
    if message:
        st.warning(message)


def image_card(entry: ImageEntry, index: int, config: WatermarkConfig):
    coord = coordinator()
    state = coord.state
    st.image(_get_preview(entry, config), use_container_width=True)

    if state.editing_id == entry.id:
        draft = st.text_input(
            "Nom / Name", value=state.draft_name, key=f"rename_input_{entry.id}"
        )
        coord.state = coord.state.edit_draft(draft)
        ok_col, cancel_col = st.columns(2)
        if ok_col.button("OK", key=f"rename_ok_{entry.id}"):
            if registry().rename(entry.id, draft):
                coord.state = coord.state.stop_editing()
                st.rerun()
            else:
                st.warning("Le nom ne peut pas être vide")
        if cancel_col.button("Annuler", key=f"rename_cancel_{entry.id}"):
            coord.state = coord.state.stop_editing()
            st.rerun()
    else:
        if st.button(f"✎ {entry.display_name}", key=f"rename_{entry.id}", help="Renommer"):
            coord.state = coord.state.start_editing(entry.id, entry.display_name)
            st.rerun()

    dl_col, rm_col = st.columns(2)
    busy = coord.is_running(entry.id)
    if dl_col.button(
        "•" if busy else "↓", key=f"export_{entry.id}", disabled=busy, help="Télécharger cette image"
    ):
        _run_export(entry.id)
    if rm_col.button("×", key=f"remove_{entry.id}", help="Supprimer cette image"):
        registry().remove(entry.id)
        coord.state = coord.state.forget(entry.id)
        st.session_state.downloads.pop(entry.id, None)
        st.session_state._last_failures.pop(entry.id, None)
        st.rerun()

    saved: Optional[SavedFile] = st.session_state.downloads.get(entry.id)
    if saved is not None:
        st.download_button(
            f"⬇ {saved.filename}",
            data=saved.data,
            file_name=saved.filename,
            mime=saved.content_type,
            key=f"download_{entry.id}",
        )
    message = _failure_message(entry.id, {entry.id: entry.display_name})
    if message:
        st.error(message)
    st.caption(f"#{index}")


def main_layout():
    st.title("ALV Immobilier - Watermark Tool")
    reg = registry()
    if reg.is_empty:
        st.info("Glissez-déposez vos photos dans le panneau latéral / Use the sidebar to add photos")
        return
    header_actions()
    st.divider()
    config = current_watermark_config()
    entries = reg.snapshot()
    for row_start in range(0, len(entries), PER_ROW):
        row = entries[row_start : row_start + PER_ROW]
        cols = st.columns(PER_ROW)
        for offset, (col, entry) in enumerate(zip(cols, row)):
            with col:
                image_card(entry, row_start + offset + 1, config)


def run_app():
    st.set_page_config(page_title="ALV Watermark", page_icon="🏠", layout="wide")
    init_session_state()
    sidebar_import_panel()
    sidebar_watermark_panel()
    sidebar_export_settings()
    main_layout()


if __name__ == "__main__":
    # Allow running via `streamlit run watermark_app.py`
    run_app()
