"""Streamlit UI for grounded chat.

Run with: streamlit run ui/app.py
"""

# Add project root to sys.path for imports to work when run via streamlit
import sys
from pathlib import Path

_ROOT = Path(__file__).resolve().parents[1]
if str(_ROOT) not in sys.path:
    sys.path.insert(0, str(_ROOT))

import httpx  # noqa: E402
import streamlit as st  # noqa: E402

from backend.ragchat.orchestration.personas import PERSONAS  # noqa: E402
from ui.helpers import (  # noqa: E402
    StreamingReply,
    build_sections,
    get_thread_messages,
    list_threads,
    stream_chat,
)

# Configuration
BACKEND_URL = "http://localhost:8000"

# Page config
st.set_page_config(
    page_title="Practice Assistant",
    page_icon="🩺",
    layout="wide",
)

# Initialize session state
if "thread_id" not in st.session_state:
    st.session_state.thread_id = None
if "error" not in st.session_state:
    st.session_state.error = None

# =============================================================================
# SIDEBAR - THREADS & OPTIONS
# =============================================================================
with st.sidebar:
    st.subheader("Practice")
    tenant = st.selectbox(
        "Persona",
        options=list(PERSONAS),
        format_func=lambda key: PERSONAS[key].name,
    )
    rag_enabled = st.toggle("Use my documents", value=False)
    deep = st.toggle("Deep search", value=False, help="Let the assistant search documents itself")

    st.divider()
    st.subheader("Threads")

    if st.button("New chat", use_container_width=True):
        st.session_state.thread_id = None
        st.rerun()

    try:
        threads = list_threads(BACKEND_URL)
    except httpx.HTTPError as e:
        threads = []
        st.caption(f"Could not load threads: {e}")

    for thread in threads:
        label = thread["title"]
        if thread["is_active"]:
            label = f"▶ {label}"
        if st.button(label, key=f"thread-{thread['thread_id']}", use_container_width=True):
            st.session_state.thread_id = thread["thread_id"]
            st.rerun()

# =============================================================================
# MAIN - SECTIONS
# =============================================================================
st.title("🩺 Practice Assistant")

messages = []
if st.session_state.thread_id:
    try:
        messages = get_thread_messages(BACKEND_URL, st.session_state.thread_id)
    except httpx.HTTPError as e:
        st.session_state.error = str(e)


def render_sections(sections) -> None:  # type: ignore[no-untyped-def]
    for section in sections:
        with st.container(border=section.is_active):
            for message in section.messages:
                with st.chat_message(message.role):
                    st.markdown(message.content)
                    if message.citations:
                        st.caption("Sources: " + ", ".join(message.citations))


prompt = st.chat_input("Ask a question")

render_sections(build_sections(messages, pending_user=prompt))

if prompt:
    reply = StreamingReply()
    with st.chat_message("assistant"):
        placeholder = st.empty()
        try:
            for thread_id, event in stream_chat(
                BACKEND_URL,
                prompt,
                thread_id=st.session_state.thread_id,
                tenant=tenant,
                rag_enabled=rag_enabled,
                deep=deep,
            ):
                st.session_state.thread_id = thread_id or st.session_state.thread_id
                reply.apply(event)
                placeholder.markdown(reply.content + ("" if reply.done else "▌"))
        except httpx.HTTPStatusError as e:
            st.session_state.error = e.response.text
        except httpx.HTTPError as e:
            st.session_state.error = str(e)

    if reply.error:
        st.session_state.error = reply.error
    st.rerun()

if st.session_state.error:
    st.error(f"❌ {st.session_state.error}")
    st.session_state.error = None
