import logging
from pathlib import Path

import pandas as pd
import streamlit as st

from config import settings
from db_sandbox import QueryResult, SampleDatabases, SandboxError, compare_results
from progress_store import LocalStore, ProgressStore, ThemeStore
from question_bank import (
    COMPLETION_OPTIONS,
    DIFFICULTIES,
    KEYWORDS,
    CatalogError,
    Filters,
    filter_questions,
    find_question,
    load_questions,
    navigate,
    question_stats,
)

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

VIEW_SELECTION = "selection"
VIEW_PRACTICE = "practice"

DIFFICULTY_BADGES = {"easy": "🟢 Easy", "medium": "🟡 Medium", "hard": "🔴 Hard"}

# ==========================
# Theme CSS
# ==========================
THEME_COLORS = {
    "light": {
        "background": "#f8f9fa",
        "surface": "#ffffff",
        "text": "#1f2937",
        "muted": "#6b7280",
        "accent": "#2563eb",
        "border": "#d1d5db",
    },
    "dark": {
        "background": "#0f172a",
        "surface": "#1e293b",
        "text": "#e2e8f0",
        "muted": "#94a3b8",
        "accent": "#60a5fa",
        "border": "#334155",
    },
}


def theme_css(theme: str) -> str:
    colors = THEME_COLORS.get(theme, THEME_COLORS["light"])
    return f"""
    <style>
        .stApp, [data-testid="stSidebar"] {{
            background-color: {colors["background"]};
            color: {colors["text"]};
        }}

        h1, h2, h3, h4 {{
            color: {colors["accent"]};
            font-weight: 600;
        }}

        .block-container {{
            padding-top: 1rem;
            max-width: 100%;
        }}

        /* SQL editor */
        .stTextArea textarea {{
            font-family: 'Courier New', monospace;
            font-size: 13px;
            background-color: {colors["surface"]};
            color: {colors["text"]};
            border: 2px solid {colors["border"]};
            border-radius: 8px;
        }}

        [data-testid="stVerticalBlockBorderWrapper"] {{
            background-color: {colors["surface"]};
            border-radius: 8px;
        }}

        .stCaption, [data-testid="stCaptionContainer"] {{
            color: {colors["muted"]};
        }}

        .stProgress > div > div > div > div {{
            background-color: #22C55E !important;
        }}
    </style>
    """


# ==========================
# Services
# ==========================
@st.cache_resource
def get_local_store(path: str, quota_bytes: int) -> LocalStore:
    return LocalStore(Path(path), quota_bytes)


def _display_columns(columns):
    seen = {}
    names = []
    for column in columns:
        seen[column] = seen.get(column, 0) + 1
        names.append(column if seen[column] == 1 else f"{column} ({seen[column]})")
    return names


def display_frame(result: QueryResult, limit: int) -> pd.DataFrame:
    """Render a result as text cells, with NULL spelled out."""
    rows = [["NULL" if cell is None else str(cell) for cell in row] for row in result.rows[:limit]]
    return pd.DataFrame(rows, columns=_display_columns(result.columns))


st.set_page_config(
    page_title="SQL Practice",
    page_icon="⚡",
    layout="wide",
    initial_sidebar_state="expanded",
)

local_store = get_local_store(str(settings.storage_path), settings.storage_quota_bytes)
progress_store = ProgressStore(local_store)
theme_store = ThemeStore(local_store)

# Initialize session state
if "databases" not in st.session_state:
    st.session_state.databases = SampleDatabases(
        databases_dir=settings.databases_dir,
        timeout_ms=settings.query_timeout_ms,
        default_database=settings.default_database,
    )
if "filters" not in st.session_state:
    st.session_state.filters = Filters(database=settings.default_database)
if "view_mode" not in st.session_state:
    st.session_state.view_mode = VIEW_SELECTION
if "current_question_id" not in st.session_state:
    st.session_state.current_question_id = None
if "completed_questions" not in st.session_state:
    st.session_state.completed_questions = list(progress_store.get_progress().completed_questions)
if "theme" not in st.session_state:
    st.session_state.theme = theme_store.get_theme()
if "show_hint" not in st.session_state:
    st.session_state.show_hint = False
if "has_executed" not in st.session_state:
    st.session_state.has_executed = False
if "user_result" not in st.session_state:
    st.session_state.user_result = QueryResult()
if "expected_result" not in st.session_state:
    st.session_state.expected_result = QueryResult()
if "is_correct" not in st.session_state:
    st.session_state.is_correct = None
if "editor_notice" not in st.session_state:
    st.session_state.editor_notice = ""

databases = st.session_state.databases
filters = st.session_state.filters


# ==========================
# Callbacks
# ==========================
def _reset_execution():
    st.session_state.has_executed = False
    st.session_state.user_result = QueryResult()
    st.session_state.expected_result = QueryResult()
    st.session_state.is_correct = None
    st.session_state.show_hint = False
    st.session_state.editor_notice = ""


def _select_question(question):
    current_filters = st.session_state.filters
    if question.database != current_filters.database:
        current_filters.database = question.database
        st.session_state.filter_database = question.database
    st.session_state.current_question_id = question.id
    st.session_state.view_mode = VIEW_PRACTICE
    _reset_execution()
    progress_store.save_current_question(question.id)


def _back_to_selection():
    st.session_state.view_mode = VIEW_SELECTION
    st.session_state.current_question_id = None
    _reset_execution()


def _on_database_change():
    st.session_state.filters.database = st.session_state.filter_database
    _back_to_selection()


def _on_completion_change():
    st.session_state.filters.completion = st.session_state.filter_completion


def _on_keywords_change():
    st.session_state.filters.keywords = list(st.session_state.filter_keywords)


def _set_difficulty(difficulty):
    if difficulty == "all":
        st.session_state.filters.difficulty = "all"
    else:
        st.session_state.filters.toggle_difficulty(difficulty)


def _clear_filters():
    st.session_state.filters.clear()
    st.session_state.filter_completion = "all"
    st.session_state.filter_keywords = []


def _clear_keywords():
    st.session_state.filters.keywords = []
    st.session_state.filter_keywords = []


def _toggle_theme():
    st.session_state.theme = theme_store.toggle_theme()


def _toggle_hint():
    st.session_state.show_hint = not st.session_state.show_hint


def _clear_editor(editor_key):
    st.session_state[editor_key] = ""


def _execute_query(question, editor_key):
    query = (st.session_state.get(editor_key) or "").strip()
    if not query:
        st.session_state.editor_notice = "Enter a SQL query to run."
        return

    st.session_state.editor_notice = ""
    st.session_state.has_executed = True
    try:
        user_result = st.session_state.databases.execute_query_on_db(query, question.database)
        expected_result = st.session_state.databases.expected_result(question)
        correct = compare_results(user_result, expected_result)
    except Exception:
        logger.exception("Error executing query for question %s", question.id)
        user_result = QueryResult.failure("An error occurred while executing your query")
        expected_result = QueryResult()
        correct = False

    st.session_state.user_result = user_result
    st.session_state.expected_result = expected_result
    st.session_state.is_correct = correct

    progress_store.save_query(question.id, query)
    if correct and question.id not in st.session_state.completed_questions:
        progress_store.mark_question_complete(question.id)
        st.session_state.completed_questions.append(question.id)


# ==========================
# Rendering helpers
# ==========================
def render_progress(stats):
    total = stats["total"]
    completed = stats["completed"]
    percentage = min(100.0, max(0.0, (completed / total) * 100)) if total else 0.0
    col_text, col_pct = st.columns([4, 1])
    with col_text:
        st.markdown(f"**{completed}** of **{total}** completed")
    with col_pct:
        st.markdown(f"**{round(percentage)}%**")
    st.progress(percentage / 100)


def render_schema_viewer(sample_databases):
    st.markdown(f"### 📊 Schema: {sample_databases.current_database.capitalize()}")
    tables = sample_databases.get_table_names()
    if not tables:
        st.caption("No tables found")
        return
    for index, table in enumerate(tables):
        with st.expander(f"📋 {table}", expanded=index == 0):
            for column in sample_databases.get_table_schema(table):
                marker = "🔑 " if column["pk"] else ""
                st.markdown(f"{marker}**{column['name']}** `{column['type'] or 'TEXT'}`")


def render_result(result, title):
    st.markdown(f"#### {title}")
    if result.error:
        st.error(f"❌ {result.error}")
        return
    if not result.rows:
        st.info("No rows returned")
        return

    st.caption(f"{len(result.rows)} row(s)")
    st.dataframe(display_frame(result, settings.display_rows), hide_index=True)
    if len(result.rows) > settings.display_rows:
        st.caption(f"Showing first {settings.display_rows} rows of {len(result.rows)}")


def render_question_card(question, is_completed, is_active):
    with st.container(border=True):
        col_badge, col_status = st.columns([3, 1])
        with col_badge:
            st.markdown(f"{DIFFICULTY_BADGES.get(question.difficulty, question.difficulty)} · `#{question.id}`")
        with col_status:
            st.markdown("✅ **COMPLETE**" if is_completed else "⬜ INCOMPLETE")
        st.markdown(f"#### {question.title}")
        st.caption(question.description)
        if question.keywords:
            st.markdown(" ".join(f"`{kw}`" for kw in question.keywords[:3]))
        st.button(
            "Continue →" if is_active else "Practice →",
            key=f"select_{question.id}",
            on_click=_select_question,
            args=(question,),
        )


st.markdown(theme_css(st.session_state.theme), unsafe_allow_html=True)

# ==========================
# Load catalog & databases
# ==========================
try:
    questions = load_questions(settings.questions_path)
except (OSError, CatalogError) as exc:
    logger.exception("Failed to load question catalog")
    st.error(f"❌ Could not load the question catalog: {exc}")
    st.stop()

try:
    if not databases.is_ready() or databases.current_database != filters.database:
        with st.spinner("Loading SQL Practice... Initializing databases"):
            databases.switch_database(filters.database)
except SandboxError as exc:
    logger.exception("Failed to initialize database %s", filters.database)
    st.markdown("## ❌ Failed to Initialize")
    st.error(str(exc) or "Could not load the SQLite database.")
    if st.button("Retry", key="retry_init"):
        st.rerun()
    st.stop()

completed_questions = st.session_state.completed_questions

# ==========================
# Sidebar: header actions & filters
# ==========================
with st.sidebar:
    st.markdown("## ⚡ SQL Practice")
    st.button(
        "☀️ Light mode" if st.session_state.theme == "dark" else "🌙 Dark mode",
        key="theme_toggle",
        on_click=_toggle_theme,
    )

    st.subheader("Filters")

    if "filter_database" not in st.session_state:
        st.session_state.filter_database = filters.database
    if "filter_completion" not in st.session_state:
        st.session_state.filter_completion = filters.completion
    if "filter_keywords" not in st.session_state:
        st.session_state.filter_keywords = list(filters.keywords)

    database_names = {db["id"]: db["name"] for db in databases.available_databases()}
    st.radio(
        "Database",
        options=list(database_names),
        format_func=lambda db_id: database_names[db_id],
        key="filter_database",
        on_change=_on_database_change,
        horizontal=True,
    )

    st.markdown("**Difficulty**")
    difficulty_cols = st.columns(len(DIFFICULTIES) + 1)
    for col, difficulty in zip(difficulty_cols, ("all",) + DIFFICULTIES):
        with col:
            st.button(
                difficulty.upper() if difficulty == "all" else difficulty.capitalize(),
                key=f"difficulty_{difficulty}",
                type="primary" if filters.difficulty == difficulty else "secondary",
                on_click=_set_difficulty,
                args=(difficulty,),
            )

    st.radio(
        "Completion",
        options=list(COMPLETION_OPTIONS),
        format_func=str.capitalize,
        key="filter_completion",
        on_change=_on_completion_change,
        horizontal=True,
    )

    st.multiselect(
        "Keywords",
        options=list(KEYWORDS),
        format_func=str.upper,
        key="filter_keywords",
        on_change=_on_keywords_change,
    )
    if filters.keywords:
        st.button("Clear keywords", key="clear_keywords", on_click=_clear_keywords)

    stats = question_stats(questions, filters, completed_questions)
    stat_cols = st.columns(3)
    stat_cols[0].metric("Showing", stats["filtered"])
    stat_cols[1].metric("Completed", stats["completed"])
    stat_cols[2].metric("Total", stats["total"])

    st.divider()
    st.subheader("Progress backup")
    uploaded_file = st.file_uploader("Import progress", type=["json"], key="import_file")
    if uploaded_file is not None and st.button("Import", key="import_progress"):
        if progress_store.import_progress(uploaded_file.getvalue()):
            st.session_state.completed_questions = list(progress_store.get_progress().completed_questions)
            completed_questions = st.session_state.completed_questions
            stats = question_stats(questions, filters, completed_questions)
            st.success("✅ Progress imported.")
        else:
            st.error("❌ Invalid progress file.")

    with st.expander("⚠️ Reset progress"):
        confirm_reset = st.checkbox("I understand this cannot be undone", key="confirm_reset")
        if st.button("Reset all progress", key="reset_progress", disabled=not confirm_reset):
            if progress_store.reset_progress():
                st.session_state.completed_questions = []
                completed_questions = st.session_state.completed_questions
                stats = question_stats(questions, filters, completed_questions)
                _back_to_selection()
                st.success("Progress has been reset.")
            else:
                st.error("Failed to reset progress. Please try again.")

    st.download_button(
        label="⬇️ Export progress",
        data=progress_store.export_progress(),
        file_name="sql_practice_progress.json",
        mime="application/json",
        key="export_progress",
    )

filtered_questions = filter_questions(questions, filters, completed_questions)

# ==========================
# Question Selection View
# ==========================
if st.session_state.view_mode == VIEW_SELECTION:
    st.markdown("## Question Selection")
    st.caption("Choose a question to practice")
    render_progress(stats)

    last_question = find_question(questions, progress_store.get_progress().current_question)
    if last_question is not None:
        st.button(
            f"↩ Resume: {last_question.title}",
            key="resume_question",
            on_click=_select_question,
            args=(last_question,),
        )

    col_list, col_schema = st.columns([2, 1])
    with col_list:
        if not filtered_questions:
            st.info("No questions match your filters.")
            st.button("Clear Filters", key="clear_filters", on_click=_clear_filters)
        for question in filtered_questions:
            render_question_card(
                question,
                is_completed=question.id in completed_questions,
                is_active=question.id == st.session_state.current_question_id,
            )
    with col_schema:
        render_schema_viewer(databases)
    st.stop()

# ==========================
# Practice View
# ==========================
question = find_question(questions, st.session_state.current_question_id)
if question is None:
    _back_to_selection()
    st.rerun()

st.button("← Back to Questions", key="back_to_questions", on_click=_back_to_selection)
render_progress(stats)

filtered_ids = [q.id for q in filtered_questions]
current_index = filtered_ids.index(question.id) if question.id in filtered_ids else None
previous_question = navigate(filtered_questions, question.id, -1)
next_question = navigate(filtered_questions, question.id, 1)
is_completed = question.id in completed_questions

col_question, col_editor = st.columns([2, 3])

with col_question:
    meta = []
    if current_index is not None:
        meta.append(f"Question {current_index + 1} of {len(filtered_questions)}")
    meta.append(DIFFICULTY_BADGES.get(question.difficulty, question.difficulty))
    meta.append(question.category or "General")
    meta.append(f"📊 {question.database.capitalize()}")
    if is_completed:
        meta.append("✓ Completed")
    st.caption(" · ".join(meta))

    st.subheader(question.title)
    st.write(question.description)
    if question.keywords:
        st.markdown(" ".join(f"`{kw}`" for kw in question.keywords))

    st.button(
        "💡 Hide Hint" if st.session_state.show_hint else "💡 Show Hint",
        key="toggle_hint",
        on_click=_toggle_hint,
    )
    if st.session_state.show_hint:
        st.info(f"**Hint:** {question.hint or 'No hint available'}")

    col_prev, col_next = st.columns(2)
    with col_prev:
        st.button(
            "← Previous",
            key="previous_question",
            disabled=previous_question is None,
            on_click=_select_question,
            args=(previous_question,),
        )
    with col_next:
        st.button(
            "Next →",
            key="next_question",
            disabled=next_question is None,
            on_click=_select_question,
            args=(next_question,),
        )

    st.divider()
    render_schema_viewer(databases)

with col_editor:
    st.markdown("### SQL Editor")
    editor_key = f"sql_input_{question.id}"
    if editor_key not in st.session_state:
        st.session_state[editor_key] = progress_store.get_saved_query(question.id)
    st.text_area(
        "Write your SQL query here:",
        height=180,
        key=editor_key,
        placeholder="SELECT ...",
    )

    col_run, col_clear = st.columns([1, 1])
    with col_run:
        st.button(
            "▶ Run Query",
            type="primary",
            key=f"run_{question.id}",
            on_click=_execute_query,
            args=(question, editor_key),
        )
    with col_clear:
        st.button("Clear", key=f"clear_{question.id}", on_click=_clear_editor, args=(editor_key,))

    if st.session_state.editor_notice:
        st.warning(st.session_state.editor_notice)

    if not st.session_state.has_executed:
        st.info("📊 Run your query to see results here")
    else:
        if st.session_state.is_correct:
            st.success("✅ Correct! Your query produces the expected result.")
        elif st.session_state.is_correct is False:
            st.error("❌ Not quite right. Compare your result with the expected output.")

        col_user, col_expected = st.columns(2)
        with col_user:
            render_result(st.session_state.user_result, "Your Result")
        with col_expected:
            render_result(st.session_state.expected_result, "Expected Result")
