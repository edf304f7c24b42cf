import logging
from datetime import datetime

import streamlit as st

from mayau.chat import CollaborationFeed, sort_messages
from mayau.config import configure_logging, load_config
from mayau.errors import MayauError
from mayau.gate import GateState
from mayau.identity import ANONYMOUS, LocalIdentityProvider, StreamlitIdentityProvider
from mayau.live import LiveFeeds
from mayau.models import STATUS_FILTER_OPTIONS, WORKSPACE_NAMES, Priority, TaskStatus
from mayau.notifications import Notifier, guarded
from mayau.session import SessionStore
from mayau.store import open_store
from mayau.tasks import TaskRegistry, filter_tasks, status_counts
from mayau.workspaces import WorkspaceDirectory

logger = logging.getLogger("mayau.app")

# --- CONFIGURATION ---

STATUS_LABELS = {
    TaskStatus.PENDING.value: "Pending",
    TaskStatus.IN_PROGRESS.value: "In Progress",
    TaskStatus.COMPLETED.value: "Completed",
}
PRIORITY_OPTIONS = [p.value for p in Priority]
PRIORITY_COLORS = {'high': '#ef4444', 'medium': '#f59e0b', 'low': '#3b82f6'}

# How often live views redraw from the cached snapshots (no backend reads)
REFRESH_SECONDS = 2
APPROVALS_VIEW = 'Approvals'


def _read_secrets():
    """Streamlit secrets as a plain dict; empty when no secrets file exists."""
    try:
        return st.secrets.to_dict()
    except Exception as e:
        logger.info("No Streamlit secrets found, using environment only (%s)", e)
        return {}


@st.cache_resource
def get_config():
    config = load_config(_read_secrets())
    configure_logging(config)
    return config


@st.cache_resource
def get_store():
    """One store per server process, shared by every browser session."""
    return open_store(get_config())


def make_identity_provider():
    # OIDC login is only available when an [auth] table is configured
    if "auth" in _read_secrets():
        return StreamlitIdentityProvider(st)
    return LocalIdentityProvider()


# --- DATA SETUP (Using Session State for App Run) ---

def initialize_session_state():
    """Creates the per-browser session objects on the first run."""
    config, store = get_config(), get_store()
    if 'session' not in st.session_state:
        st.session_state.session = SessionStore(store, make_identity_provider(), config)
    if 'notifier' not in st.session_state:
        st.session_state.notifier = Notifier(lifetime=config.NOTIFICATION_SECONDS)
    if 'feeds' not in st.session_state:
        st.session_state.feeds = LiveFeeds()

    session = st.session_state.session
    st.session_state.workspaces = WorkspaceDirectory(store, session)
    st.session_state.tasks = TaskRegistry(store, session)
    st.session_state.chat = CollaborationFeed(store, session)

    for key, default in (('editing_task_id', None), ('open_task_id', None), ('confirm_delete_id', None)):
        if key not in st.session_state:
            st.session_state[key] = default


def notify_success(text):
    st.session_state.notifier.success(text)


@st.fragment(run_every=1)
def render_banners():
    """Shows active banners; each disappears once its lifetime runs out."""
    for banner in st.session_state.notifier.active():
        if banner.level == 'error':
            st.error(banner.text, icon="🛑")
        else:
            st.success(banner.text)


# --- AUTHENTICATION FUNCTIONS ---

def resume_provider_sign_in():
    """Completes an OIDC sign-in after the provider redirects back."""
    session = st.session_state.session
    provider = session.identity_provider
    if session.state != GateState.UNAUTHENTICATED or not isinstance(provider, StreamlitIdentityProvider):
        return
    if provider.current() is not None:
        with guarded(st.session_state.notifier, "sign in"):
            session.sign_in(get_config().AUTH_PROVIDER)


def logout():
    """Releases live subscriptions and signs out."""
    st.session_state.feeds.release_all()
    with guarded(st.session_state.notifier, "sign out"):
        st.session_state.session.sign_out()
    st.session_state.editing_task_id = None
    st.session_state.open_task_id = None


def login_page():
    st.title("Welcome to Mayau App")
    st.markdown("Sign in to see your team's projects.")

    session = st.session_state.session
    notifier = st.session_state.notifier
    config = get_config()

    if isinstance(session.identity_provider, StreamlitIdentityProvider):
        if st.button("Sign in with Google", type="primary"):
            with guarded(notifier, "sign in"):
                session.sign_in(config.AUTH_PROVIDER)
    else:
        st.caption("Google sign-in is not configured; you can continue as a guest.")
        if st.button("Continue as guest", type="primary"):
            with guarded(notifier, "sign in"):
                session.sign_in(ANONYMOUS)
            if session.state != GateState.UNAUTHENTICATED:
                st.rerun()

    with st.sidebar:
        with st.form("master_login_form"):
            st.subheader("Master Login")
            username = st.text_input("Username", key="master_username")
            password = st.text_input("Password", type="password", key="master_password")
            submitted = st.form_submit_button("Sign In", type="primary")

            if submitted:
                if username and password:
                    with guarded(notifier, "master sign in"):
                        session.sign_in_master(username, password)
                    if session.is_master:
                        st.rerun()
                else:
                    st.error("Please enter both username and password.")


# --- PENDING APPROVAL ---

@st.fragment(run_every=REFRESH_SECONDS)
def wait_for_approval():
    """Redraws from local state until the profile subscription reports approval."""
    if st.session_state.session.state == GateState.ACTIVE:
        st.rerun()
    st.info("⏳ Waiting for approval…")


def pending_page():
    session = st.session_state.session
    st.title("Account pending approval")
    st.markdown(
        f"Hi **{session.display_name}**, your account has been created. "
        "The master account needs to approve it before you can work on tasks. "
        "This page updates by itself as soon as you are approved."
    )
    wait_for_approval()
    profile_settings()
    st.sidebar.button("Logout", on_click=logout, type="secondary")


def profile_settings():
    session = st.session_state.session
    with st.expander("👤 My Profile"):
        with st.form("rename_form"):
            new_name = st.text_input("Display Name", value=session.display_name)
            if st.form_submit_button("Save"):
                with guarded(st.session_state.notifier, "rename"):
                    session.rename(new_name)
                    notify_success("Display name updated.")


# --- APPROVALS PAGE (Master Only) ---

def approvals_page():
    """Master interface for approving newly signed-in accounts."""
    session = st.session_state.session
    st.title("✅ Account Approvals (Master Only)")

    pending = st.session_state.feeds.ensure(('pending_profiles',), session.watch_pending, default=[])
    if not pending:
        st.info("No accounts are waiting for approval.")
        return

    for profile in sorted(pending, key=lambda p: p.display_name or p.email or p.id):
        cols = st.columns([0.6, 0.25, 0.15])
        with cols[0]:
            st.markdown(f"**{profile.display_name or 'Unnamed'}**")
            st.caption(profile.email or profile.id)
        with cols[1]:
            if profile.created_at:
                st.caption(f"Signed up {profile.created_at.strftime('%b %d, %H:%M')}")
        with cols[2]:
            if st.button("Approve", key=f"approve_{profile.id}", type="primary"):
                with guarded(st.session_state.notifier, "approve"):
                    session.approve(profile.id)
                    notify_success(f"Approved {profile.display_name or profile.id}.")
        st.markdown("---")


# --- UI COMPONENTS ---

def user_names():
    """Approved profiles by id, for pickers and captions."""
    return {pid: (p.display_name or p.email or pid) for pid, p in st.session_state.session.directory().items()}


def team_panel(workspace, names):
    """Team assignment: replaces the workspace member set."""
    with st.expander(f"👥 Team ({len(workspace.members)})"):
        options = sorted(set(names) | set(workspace.members))
        selected = st.multiselect(
            "Members",
            options=options,
            default=workspace.members,
            format_func=lambda uid: names.get(uid, uid),
            key=f"members_{workspace.id}",
        )
        if st.button("Save Team", key=f"save_team_{workspace.id}"):
            with guarded(st.session_state.notifier, "save team"):
                st.session_state.workspaces.set_members(workspace.id, selected)
                notify_success("Team updated.")
        st.caption("An empty team means every approved user can edit this workspace.")


def task_fields_form(form_key, names, task=None):
    """Shared fields for the add and edit forms. Returns the submitted values or None."""
    with st.form(form_key, clear_on_submit=task is None):
        title = st.text_input("Title", value=task.title if task else "")
        description = st.text_area("Description (Optional)", value=task.description if task else "")

        cols = st.columns(3)
        with cols[0]:
            has_deadline = st.checkbox("Has deadline", value=bool(task and task.deadline))
            deadline = st.date_input("Deadline", value=(task.deadline if task and task.deadline else datetime.now().date()))
        with cols[1]:
            status_values = list(STATUS_LABELS)
            status = st.selectbox(
                "Status",
                status_values,
                index=status_values.index(task.status) if task else 0,
                format_func=STATUS_LABELS.get,
            )
        with cols[2]:
            priority = st.selectbox(
                "Priority",
                PRIORITY_OPTIONS,
                index=PRIORITY_OPTIONS.index(task.priority) if task else PRIORITY_OPTIONS.index('medium'),
                format_func=str.capitalize,
            )

        progress = st.slider("Progress (%)", 0, 100, value=task.progress if task else 0)
        assignee_options = sorted(set(names) | set(task.assignees if task else []))
        assignees = st.multiselect(
            "Assignees",
            assignee_options,
            default=task.assignees if task else [],
            format_func=lambda uid: names.get(uid, uid),
        )

        submitted = st.form_submit_button("Save Task", type="primary")

    if not submitted:
        return None
    if not title.strip():
        st.error("Task title cannot be empty.")
        return None
    return {
        'title': title.strip(),
        'description': description,
        'deadline': deadline if has_deadline else None,
        'status': status,
        'priority': priority,
        'progress': progress,
        'assignees': assignees,
    }


def add_task_form(workspace, names):
    if st.session_state.editing_task_id is not None:
        return
    with st.expander("➕ Add New Task"):
        values = task_fields_form(f"new_task_form_{workspace.id}", names)
        if values:
            with guarded(st.session_state.notifier, "create task"):
                st.session_state.tasks.create(workspace.id, **values)
                notify_success(f"Task '{values['title']}' added!")


def edit_task_modal(tasks_by_id, names):
    """Form for editing the task selected by st.session_state.editing_task_id."""
    task = tasks_by_id.get(st.session_state.editing_task_id)
    if task is None:
        st.session_state.editing_task_id = None
        return

    st.subheader(f"Editing Task: {task.title}")
    values = task_fields_form(f"edit_task_form_{task.id}", names, task=task)
    if st.button("Cancel Editing", key=f"cancel_edit_{task.id}"):
        st.session_state.editing_task_id = None
        st.rerun()
    if values:
        with guarded(st.session_state.notifier, "update task"):
            st.session_state.tasks.update(task.id, **values)
            notify_success(f"Task '{values['title']}' updated!")
        st.session_state.editing_task_id = None
        st.rerun()


def delete_controls(task):
    """Two-step delete: the first click asks, the second confirms."""
    if st.session_state.confirm_delete_id != task.id:
        if st.button("Delete", key=f"delete_{task.id}", help="Delete this task forever"):
            st.session_state.confirm_delete_id = task.id
            st.rerun()
        return

    st.warning("Delete this task? Its chat history stays behind.")
    col_yes, col_no = st.columns(2)
    with col_yes:
        if st.button("Confirm", key=f"confirm_delete_{task.id}", type="primary"):
            with guarded(st.session_state.notifier, "delete task"):
                st.session_state.tasks.delete(task.id, confirmed=True)
                notify_success(f"Task '{task.title}' deleted.")
            st.session_state.confirm_delete_id = None
            st.rerun()
    with col_no:
        if st.button("Cancel", key=f"cancel_delete_{task.id}"):
            st.session_state.confirm_delete_id = None
            st.rerun()


def task_card(task, names):
    """Displays a single task card with actions."""
    priority_color = PRIORITY_COLORS.get(task.priority, '#cccccc')
    if task.status == TaskStatus.COMPLETED:
        card_style = "opacity: 0.6;"
        title_style = "text-decoration: line-through; color: #6b7280;"
    else:
        card_style = f"border-left: 4px solid {priority_color}; padding-left: 8px;"
        title_style = "color: #1f2937;"

    col1, col2, col3, col4 = st.columns([0.5, 0.2, 0.15, 0.15])

    with col1:
        st.markdown(
            f'<div style="{card_style}"><span style="{title_style} font-weight: bold; font-size: 16px;">{task.title}</span></div>',
            unsafe_allow_html=True,
        )
        assigned = ", ".join(names.get(uid, uid) for uid in task.assignees) or "Unassigned"
        st.caption(
            f"{STATUS_LABELS[task.status]} | Priority: **{task.priority.upper()}** | "
            f"Assigned to: **{assigned}** | {task.description or 'No description.'}"
        )
        st.progress(task.progress, text=f"{task.progress}%")

    with col2:
        if task.deadline:
            st.markdown(f"**Due {task.deadline.strftime('%b %d')}**")
        st.caption(f"💬 {len(task.comments)}  📎 {len(task.attachments)}")

    with col3:
        if st.button("Edit", key=f"edit_{task.id}"):
            st.session_state.editing_task_id = task.id
            st.rerun()
        if st.button("Open", key=f"open_{task.id}"):
            st.session_state.open_task_id = None if st.session_state.open_task_id == task.id else task.id
            st.rerun()

    with col4:
        delete_controls(task)

    if st.session_state.open_task_id == task.id:
        task_details(task, names)

    st.markdown("---")


# --- COLLABORATION FEED ---

def task_details(task, names):
    """Comments, attachments and live chat for the open task."""
    notifier = st.session_state.notifier
    tab_comments, tab_files, tab_chat = st.tabs(["Comments", "Attachments", "Chat"])

    with tab_comments:
        for comment in task.comments:
            st.markdown(f"**{comment.author_name or names.get(comment.author_id, comment.author_id)}** "
                        f"· {comment.timestamp.strftime('%b %d %H:%M')}")
            st.write(comment.text)
        with st.form(f"comment_form_{task.id}", clear_on_submit=True):
            text = st.text_area("Add a comment")
            if st.form_submit_button("Comment"):
                with guarded(notifier, "add comment"):
                    st.session_state.tasks.append_comment(task.id, text)

    with tab_files:
        for attachment in task.attachments:
            uploader = names.get(attachment.uploader_id, attachment.uploader_id)
            st.markdown(f"📎 [{attachment.name}]({attachment.url}) · {uploader}")
        with st.form(f"attachment_form_{task.id}", clear_on_submit=True):
            name = st.text_input("File name")
            url = st.text_input("Link")
            if st.form_submit_button("Attach"):
                with guarded(notifier, "add attachment"):
                    st.session_state.tasks.append_attachment(task.id, name, url)

    with tab_chat:
        chat = st.session_state.chat
        messages = st.session_state.feeds.ensure(
            ('chat', task.id), lambda cb: chat.watch(task.id, cb), default=[]
        )
        for message in sort_messages(messages):
            with st.chat_message("user" if message.author_id == st.session_state.session.user_id else "assistant"):
                st.markdown(f"**{message.author_name}**: {message.text}")
        with st.form(f"chat_form_{task.id}", clear_on_submit=True):
            text = st.text_input("Message")
            if st.form_submit_button("Send"):
                with guarded(notifier, "send message"):
                    chat.send(task.id, text)


# --- WORKSPACE VIEW ---

@st.fragment(run_every=REFRESH_SECONDS)
def task_list(workspace_id, status_filter, names):
    """Renders the workspace's tasks from the live subscription."""
    registry = st.session_state.tasks
    tasks = st.session_state.feeds.ensure(
        ('tasks', workspace_id), lambda cb: registry.watch_workspace(workspace_id, cb), default=[]
    )

    counts = status_counts(tasks)
    metric_cols = st.columns(len(counts))
    for col, (status, count) in zip(metric_cols, counts.items()):
        col.metric(STATUS_LABELS[status], count)

    tasks_by_id = {t.id: t for t in tasks}
    if st.session_state.editing_task_id:
        edit_task_modal(tasks_by_id, names)
        st.markdown("---")

    visible = filter_tasks(tasks, status_filter)
    if not visible:
        st.info("No tasks here yet.")
    for task in visible:
        task_card(task, names)


def workspace_view(name):
    """Displays one project workspace: team, filters, tasks."""
    st.title(name)
    workspace = None
    with guarded(st.session_state.notifier, "open workspace"):
        workspace = st.session_state.workspaces.resolve(name)
    if workspace is None:
        return

    directory = st.session_state.workspaces
    live = st.session_state.feeds.ensure(
        ('workspace', workspace.id), lambda cb: directory.watch(workspace.id, cb), default=workspace
    )
    workspace = live or workspace
    names = user_names()

    team_panel(workspace, names)
    add_task_form(workspace, names)

    status_filter = st.radio(
        "Show",
        STATUS_FILTER_OPTIONS,
        horizontal=True,
        format_func=lambda s: "All" if s == 'all' else STATUS_LABELS[s],
        key=f"status_filter_{workspace.id}",
    )
    task_list(workspace.id, status_filter, names)


# --- MAIN APPLICATION CONTENT ---

def main_app_content():
    """The core of the app, displayed only to approved sessions."""
    session = st.session_state.session

    with st.sidebar:
        st.header("Projects")
        view_options = list(WORKSPACE_NAMES)
        if session.is_master:
            view_options.append(APPROVALS_VIEW)
        view = st.radio("Select Workspace", view_options, key="view")

        st.markdown("---")
        role = "Master" if session.is_master else "Member"
        st.info(f"**Current User:** {session.display_name} ({role})")
        st.button("Logout", on_click=logout, type="secondary")

    if not session.is_master:
        profile_settings()

    if view == APPROVALS_VIEW:
        approvals_page()
    else:
        workspace_view(view)


# --- MAIN ENTRY POINT ---

def main():
    """Routes the session to the screen its approval state allows."""
    st.set_page_config(layout="wide", page_title="Mayau App")
    initialize_session_state()

    st.sidebar.title("Mayau App")
    render_banners()

    feeds = st.session_state.feeds
    feeds.begin_run()
    resume_provider_sign_in()

    state = st.session_state.session.state
    try:
        if state in (GateState.ACTIVE, GateState.MASTER):
            main_app_content()
        elif state == GateState.PENDING:
            pending_page()
        else:
            login_page()
    except MayauError as e:
        # A failure while rendering leaves the session usable
        logger.warning("Rendering failed: %s", e)
        st.session_state.notifier.error(e.user_message())
    feeds.end_run()


if __name__ == "__main__":
    main()
