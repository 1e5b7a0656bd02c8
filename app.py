"""
Document Scanner - Main Streamlit Application

Scan documents with the webcam:
- Smart border detection with manual corner correction
- Perspective correction of the captured page
- Storage in DynamoDB + S3 (or in-session demo mode) with folders and tags
"""

import logging
from typing import Any, Dict, List

import streamlit as st

from config import ScannerConfig, load_config
from crop_editor import (
    CORNER_LABELS,
    apply_editor_value,
    corners_from_pixels,
    corners_to_pixels,
    editor_key,
    render_corner_editor,
)
from database import DocumentDatabase, LocalDocumentStore
from image_processing import (
    bytes_to_cv2,
    create_thumbnail,
    cv2_to_base64,
    cv2_to_pil,
    draw_quadrilateral,
    normalize_upload,
)
from scanner import (
    DegenerateQuadrilateral,
    DetectionCancelled,
    InvalidGeometry,
    InvalidSessionState,
    NoFrameAvailable,
    ScannerEngine,
    SessionState,
    StaticFrameSource,
)

logger = logging.getLogger(__name__)


st.set_page_config(
    page_title="Document Scanner",
    page_icon="📄",
    layout="wide",
    initial_sidebar_state="expanded"
)


def read_secrets() -> Dict[str, Any]:
    """Secrets as plain dicts, empty when no secrets file exists."""
    try:
        return {name: dict(section) for name, section in st.secrets.items()
                if hasattr(section, 'items')}
    except Exception:
        return {}


def init_session_state():
    """Initialize session state variables."""
    if 'config' not in st.session_state:
        st.session_state.config = load_config(read_secrets())
    if 'frame_source' not in st.session_state:
        st.session_state.frame_source = StaticFrameSource()
    if 'engine' not in st.session_state:
        config: ScannerConfig = st.session_state.config
        st.session_state.engine = ScannerEngine(
            source=st.session_state.frame_source,
            detector=config.build_detector(),
            transformer=config.build_transformer(),
        )
    if 'capture_session' not in st.session_state:
        st.session_state.capture_session = None
    if 'camera_key' not in st.session_state:
        st.session_state.camera_key = 0  # Bumped to clear the camera widget
    if 'last_photo_id' not in st.session_state:
        st.session_state.last_photo_id = None
    if 'store' not in st.session_state:
        st.session_state.store = None
    if 'use_local_storage' not in st.session_state:
        st.session_state.use_local_storage = True
    if 'owner_id' not in st.session_state:
        st.session_state.owner_id = 'demo-user'


def connect_storage():
    """Connect to DynamoDB + S3 or use local storage."""
    config: ScannerConfig = st.session_state.config

    if config.has_aws_credentials and st.session_state.store is None:
        try:
            store = DocumentDatabase(**config.storage_kwargs())
            store.create_table_if_not_exists()
            st.session_state.store = store
            st.session_state.use_local_storage = False
        except Exception as e:
            logger.exception("Auto-connect to AWS failed")
            st.sidebar.error(f"Auto-connect failed: {str(e)}")

    with st.sidebar.expander("⚙️ Storage Settings", expanded=st.session_state.store is None):
        if not st.session_state.use_local_storage and st.session_state.store is not None:
            st.success("Connected to AWS (DynamoDB + S3)")
            st.caption(f"Table: {st.session_state.store.table_name}")
            st.caption(f"Bucket: {st.session_state.store.bucket_name}")
            if st.button("Disconnect"):
                st.session_state.store = None
                st.session_state.use_local_storage = True
                st.rerun()
            return

        storage_type = st.radio(
            "Storage Type",
            ["Local (Demo Mode)", "AWS (DynamoDB + S3)"],
            index=0 if st.session_state.use_local_storage else 1
        )

        if storage_type == "AWS (DynamoDB + S3)":
            aws_region = st.text_input("AWS Region", value=config.region_name)
            aws_access_key = st.text_input("AWS Access Key ID", type="password")
            aws_secret_key = st.text_input("AWS Secret Access Key", type="password")
            table_name = st.text_input("DynamoDB Table", value=config.table_name)
            bucket_name = st.text_input("S3 Bucket (optional)", value=config.bucket_name or "")

            if st.button("Connect to AWS"):
                try:
                    store = DocumentDatabase(
                        table_name=table_name,
                        bucket_name=bucket_name or None,
                        region_name=aws_region,
                        aws_access_key_id=aws_access_key or None,
                        aws_secret_access_key=aws_secret_key or None
                    )
                    store.create_table_if_not_exists()
                    st.session_state.store = store
                    st.session_state.use_local_storage = False
                    st.success("Connected to AWS!")
                    st.rerun()
                except Exception as e:
                    logger.exception("Connecting to AWS failed")
                    st.error(f"Connection failed: {str(e)}")
        else:
            st.info("Using local demo mode (documents stored in session)")
            if not isinstance(st.session_state.store, LocalDocumentStore):
                st.session_state.store = LocalDocumentStore()
                st.session_state.use_local_storage = True


def reset_capture():
    """Retake: drop the session and clear the camera widget."""
    session = st.session_state.capture_session
    if session is not None:
        st.session_state.engine.retake(session)
    st.session_state.capture_session = None
    st.session_state.last_photo_id = None
    st.session_state.camera_key += 1


def capture_photo(photo, smart_detection: bool):
    """Feed a new camera photo to the engine and run detection."""
    engine: ScannerEngine = st.session_state.engine
    source: StaticFrameSource = st.session_state.frame_source

    source.update_from_bytes(normalize_upload(photo.getvalue()))
    try:
        session = engine.capture()
    except NoFrameAvailable as e:
        st.error(str(e))
        return

    st.session_state.capture_session = session
    st.session_state.last_photo_id = photo.file_id

    with st.spinner("Detecting borders..."):
        future = engine.detect_borders_async(session, enabled=smart_detection)
        try:
            quad = future.result()
        except DetectionCancelled:
            return

    if quad is None:
        engine.reset_corners(session, mode="full")
    elif session.detected:
        st.toast("Border detection complete. Adjust the corners if needed.")
    else:
        st.toast("No document edges found, using a default frame.")


def fine_tune_corners(session, width: int, height: int):
    """Numeric corner inputs, applied one corner at a time."""
    engine: ScannerEngine = st.session_state.engine
    current = corners_to_pixels(session.quadrilateral, width, height)
    # Keyed by the corners so the inputs follow drags in the editor
    key_prefix = f"corner_{session.session_id}_{hash(session.quadrilateral)}"

    with st.expander("Fine-tune corner coordinates"):
        cols = st.columns(4)
        for i, (label, col) in enumerate(zip(CORNER_LABELS, cols)):
            with col:
                st.caption(label)
                x = st.number_input(
                    "X", value=float(round(current[i][0])),
                    min_value=0.0, max_value=float(width - 1),
                    key=f"{key_prefix}_{i}_x"
                )
                y = st.number_input(
                    "Y", value=float(round(current[i][1])),
                    min_value=0.0, max_value=float(height - 1),
                    key=f"{key_prefix}_{i}_y"
                )
                if abs(x - current[i][0]) >= 1 or abs(y - current[i][1]) >= 1:
                    edited = [list(p) for p in current]
                    edited[i] = [x, y]
                    point = corners_from_pixels(edited, width, height)[i]
                    try:
                        engine.adjust_corner(session, i, point)
                    except InvalidGeometry:
                        st.warning(f"{label} there would make the outline cross itself")


def save_document(session, name: str, folder_id: str, tags: List[str]):
    """Rectify the still and hand it to the document store."""
    engine: ScannerEngine = st.session_state.engine
    config: ScannerConfig = st.session_state.config

    try:
        rectified = engine.commit(session)
    except DegenerateQuadrilateral as e:
        st.error(f"Cannot save this crop: {e}")
        return None

    data, content_type = rectified.encode(config.output_format)
    document_id = st.session_state.store.save_document(
        owner_id=st.session_state.owner_id,
        name=name,
        data=data,
        content_type=content_type,
        folder_id=folder_id or None,
        tags=tags,
    )
    return document_id, rectified


def review_section(session):
    """Review detected corners and save or retake."""
    engine: ScannerEngine = st.session_state.engine
    still = session.still
    width, height = still.width, still.height

    if session.detected:
        st.caption("✅ Document edges detected")
    else:
        st.caption("⚠️ Using a default frame - drag the corners onto the document")

    editor_value = render_corner_editor(
        image_base64=cv2_to_base64(still.data),
        quad=session.quadrilateral,
        image_width=width,
        image_height=height,
        key=editor_key(session.session_id, session.quadrilateral),
    )
    try:
        applied = apply_editor_value(engine, session, editor_value)
    except (InvalidGeometry, InvalidSessionState) as e:
        applied = None
        st.warning(str(e))
    if applied is not None:
        st.rerun()

    fine_tune_corners(session, width, height)

    with st.expander("Preview outline"):
        st.image(cv2_to_pil(draw_quadrilateral(still.data, session.quadrilateral)))

    col1, col2, col3 = st.columns(3)
    with col1:
        if st.button("🔄 Reset Corners", key="reset_corners"):
            engine.reset_corners(session, mode="default")
            st.rerun()
    with col2:
        if st.button("📐 Full Image", key="full_image"):
            engine.reset_corners(session, mode="full")
            st.rerun()
    with col3:
        if st.button("🎯 Detect Again", key="detect_again"):
            with st.spinner("Detecting borders..."):
                try:
                    engine.detect_borders(session, enabled=True)
                except DetectionCancelled:
                    pass
            st.rerun()

    st.divider()

    name = st.text_input("Document name", value="Scanned document")
    folder_id = st.text_input("Folder (optional)", value="")
    tags_input = st.text_input("Tags (comma separated)", value="")
    tags = [t.strip() for t in tags_input.split(',') if t.strip()]

    col1, col2 = st.columns(2)
    with col1:
        if st.button("↩️ Retake", key="retake"):
            reset_capture()
            st.rerun()
    with col2:
        if st.button("💾 Save Document", type="primary", key="save_document"):
            with st.spinner("Saving document..."):
                saved = save_document(session, name, folder_id, tags)
            if saved is not None:
                document_id, rectified = saved
                st.success(f"Saved {rectified.width}x{rectified.height} document `{document_id}`")
                st.image(cv2_to_pil(rectified.data), width=300)
                reset_capture()


def scanner_section():
    """Webcam capture with smart border detection."""
    st.subheader("📷 Scan Document")

    smart_detection = st.toggle("Smart Border Detection", value=True)
    session = st.session_state.capture_session

    if session is None or session.state is SessionState.LIVE:
        photo = st.camera_input(
            "Point the camera at the document",
            key=f"camera_{st.session_state.camera_key}"
        )
        if photo is not None and photo.file_id != st.session_state.last_photo_id:
            capture_photo(photo, smart_detection)
            st.rerun()
        return

    if session.state is SessionState.REVIEWING and session.quadrilateral is not None:
        review_section(session)
    elif session.state is SessionState.RECTIFIED:
        if st.button("📷 Scan Another"):
            reset_capture()
            st.rerun()
    else:
        st.info("Detecting borders...")


def documents_view():
    """List the owner's saved documents."""
    store = st.session_state.store
    if store is None:
        st.info("Connect a storage backend to see saved documents.")
        return

    owner_id = st.session_state.owner_id
    col1, col2 = st.columns(2)
    with col1:
        folder_filter = st.text_input("Folder", value="", key="filter_folder")
    with col2:
        tags = store.get_all_tags(owner_id)
        tag_filter = st.selectbox("Tag", ["All tags"] + tags, key="filter_tag")

    documents = store.list_documents(
        owner_id,
        folder_id=folder_filter or None,
        tag=None if tag_filter == "All tags" else tag_filter,
    )

    if not documents:
        st.info("No documents yet. Scan one in the Scan tab.")
        return

    cols = st.columns(4)
    for i, doc in enumerate(documents):
        with cols[i % 4]:
            # S3 rows are shown through signed URLs; only rows without one
            # (demo mode, local DynamoDB) carry their bytes
            url = store.get_file_url(doc['file_path'])
            full = None if url else store.get_document(doc['id'])
            if url:
                st.image(url, use_container_width=True)
            elif full and full.get('data'):
                image = create_thumbnail(cv2_to_pil(bytes_to_cv2(full["data"])))
                st.image(image, use_container_width=True)
            st.markdown(f"**{doc['name']}**")
            if doc.get('folder_id'):
                st.caption(f"📁 {doc['folder_id']}")
            if doc.get('tags'):
                st.caption(" ".join(f"#{t}" for t in doc['tags']))
            if full and full.get('data'):
                st.download_button(
                    "⬇️ Download",
                    data=full['data'],
                    file_name=full['file_path'].rsplit('/', 1)[-1],
                    mime=doc['content_type'],
                    key=f"download_{doc['id']}",
                )
            elif url:
                st.link_button("⬇️ Download", url)
            if st.button("🗑️ Delete", key=f"delete_{doc['id']}"):
                store.delete_document(doc['id'])
                st.rerun()


def main():
    """Main application entry point."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    init_session_state()

    st.sidebar.title("📄 Document Scanner")
    st.session_state.owner_id = st.sidebar.text_input(
        "Owner", value=st.session_state.owner_id
    )
    connect_storage()

    st.title("📄 Document Scanner")

    tab1, tab2 = st.tabs(["📷 Scan", "🗂️ Documents"])

    with tab1:
        scanner_section()

    with tab2:
        documents_view()


if __name__ == "__main__":
    main()
