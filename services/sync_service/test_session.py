"""Tests for session lifecycle and backend mode switching."""

import asyncio

import pytest
import pytest_asyncio

from shared.db_operations import ClientStateOperations
from shared.errors import BackendUnavailable, ConfigurationError, ValidationError
from services.sync_service.adapters.base import MODE_CLOUD, MODE_LOCAL
from services.sync_service.notifier import PollingChangeNotifier
from services.sync_service.session import NotesApplication


@pytest.fixture
def client_state():
    state = ClientStateOperations(database_url="sqlite:///:memory:")
    state.create_tables()
    return state


@pytest.fixture
def adapters(make_adapter):
    return {MODE_LOCAL: make_adapter(MODE_LOCAL), MODE_CLOUD: make_adapter(MODE_CLOUD)}


@pytest.fixture
def notifiers():
    return []


@pytest.fixture
def build_app(client_state, adapters, notifiers):
    def notifier_factory(mode, refresh):
        notifier = PollingChangeNotifier(refresh, interval=60)
        notifiers.append(notifier)
        return notifier

    def build(runtime="desktop", adapter_factory=None):
        return NotesApplication(
            client_state,
            runtime=runtime,
            adapter_factory=adapter_factory or adapters.__getitem__,
            notifier_factory=notifier_factory,
            delete_grace_seconds=0.02
        )

    return build


@pytest_asyncio.fixture
async def app(build_app):
    application = build_app()
    yield application
    await application.close()


class TestStart:
    """Tests for the first session."""

    @pytest.mark.asyncio
    async def test_auto_on_desktop_is_local(self, app, adapters):
        adapters[MODE_LOCAL].add("offline memo", id=1)

        session = await app.start()

        assert session.mode == MODE_LOCAL
        assert [m.content for m in app.orchestrator.memos] == ["offline memo"]
        assert session.notifier.running

    @pytest.mark.asyncio
    async def test_auto_in_browser_is_cloud(self, build_app):
        application = build_app(runtime="browser")

        session = await application.start()

        assert session.mode == MODE_CLOUD
        assert application.available_modes() == ["auto", "cloud"]
        await application.close()

    @pytest.mark.asyncio
    async def test_failed_initial_load_still_subscribes(self, app, adapters):
        adapters[MODE_LOCAL].fail["list_memos"] = BackendUnavailable("store not running")

        session = await app.start()

        assert session.notifier.running
        assert app.orchestrator.has_loaded_once is True
        assert app.notifications.recent()[-1].level == "alert"

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self, app):
        assert await app.start() is await app.start()

    @pytest.mark.asyncio
    async def test_no_session_yet(self, app):
        with pytest.raises(ConfigurationError):
            app.orchestrator
        with pytest.raises(ConfigurationError):
            app.active_session

    @pytest.mark.asyncio
    async def test_browser_without_credentials_waits_for_them(self, build_app, adapters, client_state):
        application = None

        def adapter_factory(mode):
            stored = None
            if application.encryption_service is not None:
                stored = client_state.get_cloud_credentials(application.encryption_service)
            if not stored:
                raise ConfigurationError("Cloud mode needs SUPABASE_URL and SUPABASE_ANON_KEY")
            return adapters[mode]

        application = build_app(runtime="browser", adapter_factory=adapter_factory)
        adapters[MODE_CLOUD].add("from the cloud", id=1)

        assert await application.start() is None
        assert application.session is None
        assert application.notifications.recent()[-1].level == "error"

        session = await application.store_cloud_credentials("https://abc.supabase.co", "anon-key")

        assert session is application.session
        assert session.mode == MODE_CLOUD
        assert [m.content for m in application.orchestrator.memos] == ["from the cloud"]
        await application.close()

    @pytest.mark.asyncio
    async def test_storing_credentials_keeps_running_session(self, app):
        session = await app.start()

        assert await app.store_cloud_credentials("https://abc.supabase.co", "anon-key") is session


class TestSwitchMode:
    """Tests for switching between local and cloud."""

    @pytest.mark.asyncio
    async def test_switch_resets_sync_counters(self, app, adapters):
        app.preferences.set_preferred("cloud")
        await app.start()
        cloud = adapters[MODE_CLOUD]
        gate = cloud.gates["create_memo"] = asyncio.Event()
        old = app.orchestrator
        in_flight = [asyncio.ensure_future(old.create_memo(f"memo {i}")) for i in range(2)]
        for _ in range(5):
            await asyncio.sleep(0)
        assert old.status.pending_operations == 2

        session = await app.switch_mode("local")

        assert session.mode == MODE_LOCAL
        assert app.orchestrator is not old
        assert app.orchestrator.status.pending_operations == 0
        assert app.preferences.get_stored() == "local"
        assert cloud.closed is True

        gate.set()
        await asyncio.gather(*in_flight)

    @pytest.mark.asyncio
    async def test_switch_replaces_notifier(self, app, notifiers):
        await app.start()

        await app.switch_mode("cloud")

        assert len(notifiers) == 2
        assert notifiers[0].running is False
        assert notifiers[1].running is True

    @pytest.mark.asyncio
    async def test_switch_drops_pending_deletes(self, app, adapters):
        adapters[MODE_LOCAL].add("keep me", id=1)
        await app.start()
        app.orchestrator.delete_memo(1)

        await app.switch_mode("cloud")
        await asyncio.sleep(0.06)

        assert adapters[MODE_LOCAL].count("delete_memo") == 0
        assert 1 in adapters[MODE_LOCAL].rows

    @pytest.mark.asyncio
    async def test_local_in_browser_leaves_session_intact(self, build_app):
        application = build_app(runtime="browser")
        session = await application.start()

        with pytest.raises(ConfigurationError):
            await application.switch_mode("local")

        assert application.session is session
        assert session.closed is False
        assert application.preferences.get_stored() is None
        await application.close()

    @pytest.mark.asyncio
    async def test_missing_credentials_leave_session_intact(self, build_app, adapters):
        def adapter_factory(mode):
            if mode == MODE_CLOUD:
                raise ConfigurationError("Cloud mode needs SUPABASE_URL and SUPABASE_ANON_KEY")
            return adapters[mode]

        application = build_app(adapter_factory=adapter_factory)
        session = await application.start()

        with pytest.raises(ConfigurationError):
            await application.switch_mode("cloud")

        assert application.session is session
        assert session.notifier.running
        await application.close()

    @pytest.mark.asyncio
    async def test_unknown_mode(self, app):
        session = await app.start()

        with pytest.raises(ValidationError):
            await app.switch_mode("floppy")

        assert app.session is session


class TestSessionLifecycle:
    """Tests for date selection and teardown."""

    @pytest.mark.asyncio
    async def test_select_date_resubscribes(self, app, notifiers):
        session = await app.start()
        first = session.notifier

        await session.select_date("2026-06-01")

        assert first.running is False
        assert session.notifier is not first
        assert session.notifier.running
        assert app.orchestrator.selected_date == "2026-06-01"

    @pytest.mark.asyncio
    async def test_select_date_failure_still_resubscribes(self, app, adapters):
        session = await app.start()
        adapters[MODE_LOCAL].fail["list_plans_by_date"] = BackendUnavailable("offline")

        with pytest.raises(BackendUnavailable):
            await session.select_date("2026-06-01")

        assert session.notifier.running

    @pytest.mark.asyncio
    async def test_close(self, build_app, adapters, notifiers):
        application = build_app()
        session = await application.start()

        await application.close()
        await session.close()

        assert session.closed is True
        assert adapters[MODE_LOCAL].closed is True
        assert notifiers[0].running is False
        assert application.session is None
