from __future__ import annotations

from pathlib import Path
from typing import Any, List, Literal, cast

import requests
import streamlit as st
from dotenv import load_dotenv

from ragwidgets.citations import render_as_markdown_links, render_as_sequential_links
from ragwidgets.config import Settings
from ragwidgets.context import SearchContext
from ragwidgets.history import SearchHistory
from ragwidgets.types import HistoryEntry
from ragwidgets.widgets import AnswerResults, QueryBox

# Load environment variables from .env if present.
load_dotenv()
settings = Settings()

QUERY_BOX_KEY = "question"
ANSWER_KEY = "answer"

st.set_page_config(
    page_title="Streaming RAG Answers",
    page_icon="🔎",
    layout="wide",
    initial_sidebar_state="expanded",
)

st.markdown(
    """
<style>
.hero-header { text-align: center; padding: 1.5rem 1rem 1rem; }
.hero-header p { color: #A1AEBB; font-size: 0.95rem; margin: 0; }
.streaming-cursor { color: #34D399; }
</style>
<div class="hero-header">
    <h1>🔎 Streaming RAG Answers</h1>
    <p>Ask a question and watch the grounded answer arrive with its citations</p>
</div>
""",
    unsafe_allow_html=True,
)


@st.cache_resource(show_spinner=False)
def get_history(path: str, max_results: int) -> SearchHistory:
    """Open the local history file once and reuse it across reruns."""
    return SearchHistory(Path(path), max_results)


def _stream_to_placeholder(_chunk: str) -> None:
    """Repaint the live answer while chunks arrive."""
    placeholder = st.session_state.get("stream_placeholder")
    answers = st.session_state.get("answers")
    if placeholder is None or answers is None:
        return
    placeholder.markdown(answers.summary + " ▌")


def get_widgets(fields: List[str], table: str) -> tuple[QueryBox, AnswerResults]:
    """Read or mount the search context for this browser session."""
    mounted = (st.session_state.get("mounted_fields"), st.session_state.get("mounted_table"))
    if "context" in st.session_state and mounted == (fields, table):
        return cast(QueryBox, st.session_state["query_box"]), cast(AnswerResults, st.session_state["answers"])

    previous = st.session_state.get("context")
    if isinstance(previous, SearchContext):
        previous.close()

    context = SearchContext(settings.base_url, headers=settings.request_headers(), table=table or None)
    query_box = QueryBox(context, QUERY_BOX_KEY, mode="submit", fields=fields, limit=settings.result_limit)
    answers = AnswerResults(
        context,
        ANSWER_KEY,
        QUERY_BOX_KEY,
        summarizer=settings.summarizer(),
        system_prompt=settings.system_prompt or None,
        fields=fields,
        http=requests.Session(),
        background=False,
        timeout=(settings.connect_timeout_seconds, settings.read_timeout_seconds),
        history=get_history(str(settings.history_path), settings.history_max_results),
        on_chunk=_stream_to_placeholder,
    )
    st.session_state["context"] = context
    st.session_state["query_box"] = query_box
    st.session_state["answers"] = answers
    st.session_state["mounted_fields"] = fields
    st.session_state["mounted_table"] = table
    return query_box, answers


def get_messages() -> List[dict[str, Any]]:
    """Read or initialize chat transcript from session state."""
    raw_messages = st.session_state.get("messages")
    if not isinstance(raw_messages, list):
        st.session_state["messages"] = []
    return cast(List[dict[str, Any]], st.session_state["messages"])


def render_history(entries: List[HistoryEntry]) -> None:
    for entry in entries:
        with st.expander(str(entry.get("query", "")), expanded=False):
            st.markdown(str(entry.get("summary", "")))


# ──────────────────── Sidebar ────────────────────
with st.sidebar:
    st.markdown("## ⚙️ Settings")
    st.markdown(f"**Endpoint** `{settings.base_url}`")
    table_value = st.text_input("Table", value=settings.table)
    fields_value = st.text_input("Fields (comma separated)", value=", ".join(settings.fields))
    sequential = st.toggle("Number citations sequentially", value=True)

    st.markdown("---")
    history = get_history(str(settings.history_path), settings.history_max_results)
    st.markdown("**🕘 Recent searches**")
    if history.results:
        render_history(history.results)
    else:
        st.caption("No saved searches yet.")
    if st.button("🗑️ Clear history", use_container_width=True):
        history.clear()
        st.session_state["messages"] = []
        st.success("History cleared.")

fields = [item.strip() for item in fields_value.split(",") if item.strip()]
query_box, answers = get_widgets(fields, table_value.strip())
renderer = render_as_sequential_links if sequential else render_as_markdown_links
messages = get_messages()

# ──────────────────── Chat Section ────────────────────
for message in messages:
    raw_role = message.get("role", "assistant")
    role: Literal["user", "assistant"] = "user" if raw_role == "user" else "assistant"
    with st.chat_message(role):
        st.markdown(message.get("content", ""))

question = st.chat_input("Ask a question...")
if question:
    messages.append({"role": "user", "content": question})
    with st.chat_message("user"):
        st.markdown(question)

    with st.chat_message("assistant"):
        placeholder = st.empty()
        st.session_state["stream_placeholder"] = placeholder
        with st.spinner("Streaming answer..."):
            query_box.submit(question)
        st.session_state["stream_placeholder"] = None

        if answers.error:
            content = f"❌ {answers.error}"
            placeholder.error(answers.error)
        else:
            content = answers.render(renderer)
            placeholder.markdown(content)
            cited = answers.cited_ids()
            if cited:
                with st.expander("📎 Cited documents", expanded=False):
                    for idx, doc_id in enumerate(cited, start=1):
                        st.markdown(f"[{idx}] `{doc_id}`")

    messages.append({"role": "assistant", "content": content})
    st.session_state["messages"] = messages
