from dotenv import load_dotenv
load_dotenv()

import logging

import streamlit as st

from backend import (
    document_path,
    get_document_preview_text,
    get_progress,
    has_api_key,
    run_format,
    run_infographic_job,
    set_api_key,
    store_document,
)
from docauto.errors import DocAutoError
from docauto.progress_store import JOB_SECTION, JOB_SMART
from docauto.style_formatter import PASS_ORDER

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")

# Custom CSS for cleaner UI
st.markdown("""
<style>
  .stApp { max-width: 720px; margin: 0 auto; padding: 2rem 1.5rem; }
  .main-header { font-size: 1.75rem; font-weight: 600; color: #1a365d; margin-bottom: 0.25rem; }
  .main-desc { color: #5c5c5c; font-size: 0.9375rem; margin-bottom: 1.5rem; }
  .stButton > button {
    background: #1a365d; color: white; border: none; border-radius: 6px;
    padding: 0.625rem 1.25rem; font-weight: 500; transition: background 0.15s;
  }
  .stButton > button:hover { background: #2c5282; color: white; }
  .stDownloadButton > button {
    background: #1a365d; color: white; border: none; border-radius: 6px;
    padding: 0.625rem 1.25rem; font-weight: 500;
  }
  .stExpander { border: 1px solid #e2dfd9; border-radius: 8px; margin-bottom: 0.5rem; }
</style>
""", unsafe_allow_html=True)

JOB_LABELS = {
    JOB_SECTION: "Per section (one decision per section)",
    JOB_SMART: "Smart (one plan for the whole document)",
}
RESUME_LABELS = {
    "continue": "Continue where it stopped",
    "jump": "Jump to a unit",
    "restart": "Start over",
    "cancel": "Cancel",
}


def _show_summary(summary) -> None:
    if summary.cancelled or summary.fallback_offered:
        st.warning(summary.message)
    elif summary.complete:
        st.success(summary.message)
    else:
        st.info(summary.message)
    if summary.reasoning:
        with st.expander("Plan reasoning"):
            st.write(summary.reasoning)


st.markdown('<p class="main-header">Document Infographics</p>', unsafe_allow_html=True)
st.markdown(
    '<p class="main-desc">Upload a Word document. The engine reads it section by section, decides where an '
    'infographic would help, generates and inserts it, and can apply a consistent visual style. Long documents '
    'are processed in batches; run again to continue.</p>',
    unsafe_allow_html=True,
)

if not has_api_key():
    with st.expander("API key", expanded=True):
        key_value = st.text_input("OpenAI API key", type="password")
        if st.button("Save key") and key_value:
            try:
                set_api_key(key_value)
                st.success("Key saved to .env")
            except ValueError as e:
                st.error(str(e))

uploaded = st.file_uploader("Document (.docx)", type=["docx"], label_visibility="collapsed")

if uploaded and st.session_state.get("uploaded_name") != uploaded.name:
    try:
        st.session_state["document_id"] = store_document(uploaded.name, uploaded.getvalue())
        st.session_state["uploaded_name"] = uploaded.name
    except ValueError as e:
        st.error(str(e))

document_id = st.session_state.get("document_id")

if document_id:
    st.caption(f"Document id: {document_id}")

    st.subheader("Infographics")
    job_kind = st.radio("Mode", list(JOB_LABELS), format_func=JOB_LABELS.get)
    record = get_progress(document_id, job_kind)
    resume = "continue"
    jump_to = None
    if record:
        st.info(record["message"])
        resume = st.radio("How do you want to proceed?", list(RESUME_LABELS), format_func=RESUME_LABELS.get)
        if resume == "jump":
            jump_to = int(st.number_input("Unit number", min_value=1, max_value=max(1, record["totalUnits"]), value=1))

    if st.button("Run infographics", type="primary"):
        with st.spinner("Analyzing and generating…"):
            try:
                summary = run_infographic_job(document_id, job_kind, resume=resume, jump_to=jump_to)
                _show_summary(summary)
            except (DocAutoError, ValueError) as e:
                st.error(str(e))

    st.subheader("Formatting")
    selected = st.multiselect("Passes", list(PASS_ORDER), default=list(PASS_ORDER))
    fresh = st.checkbox("Reformat everything (ignore elements that already look formatted)")
    if st.button("Apply formatting"):
        with st.spinner("Formatting…"):
            try:
                report = run_format(document_id, passes=selected or None, fresh=fresh)
                if report.complete:
                    st.success(report.message)
                else:
                    st.info(report.message)
            except ValueError as e:
                st.error(str(e))

    st.markdown("---")
    with st.expander("Preview"):
        st.text(get_document_preview_text(document_id))
    with open(document_path(document_id), "rb") as f:
        st.download_button(
            "Download document (.docx)",
            data=f.read(),
            file_name=f"{document_id}.docx",
            mime="application/vnd.openxmlformats-officedocument.wordprocessingml.document",
            key="download_docx",
            type="primary",
        )
