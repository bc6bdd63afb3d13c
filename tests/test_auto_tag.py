"""Unit tests for :mod:`notelink.session.auto_tag`."""

from __future__ import annotations

import pytest

from notelink.editor.buffer import BufferHandle, InMemoryEditBuffer
from notelink.models.session_models import AutoTagPhase
from notelink.services.errors import GatewayError
from notelink.session.auto_tag import AutoTagTimer
from notelink.session.events import (
    AutoTagArmed,
    AutoTagCancelled,
    AutoTagFired,
    Event,
    EventBus,
    TagGenerationFailed,
    TagsSuggested,
)
from notelink.session.store import SessionStore
from notelink.session.timers import BackgroundTasks
from notelink.session.typing_state import TypingTracker

from tests.helpers import ManualScheduler, StubTagGateway, make_buffer

LONG_TEXT = "Quarterly planning notes covering the roadmap, hiring and budget for next year."


class _Harness:
    def __init__(
        self,
        store: SessionStore,
        bus: EventBus,
        tasks: BackgroundTasks,
        scheduler: ManualScheduler,
        gateway: StubTagGateway,
        buffer: InMemoryEditBuffer,
        *,
        enabled: bool = True,
    ) -> None:
        self.store = store
        self.tasks = tasks
        self.scheduler = scheduler
        self.gateway = gateway
        self.buffer = buffer
        self.typing = TypingTracker(store, idle_ms=1000, scheduler=scheduler)
        self.timer = AutoTagTimer(
            store,
            gateway,
            BufferHandle(buffer),
            self.typing,
            event_bus=bus,
            tasks=tasks,
            workspace_id="ws-1",
            enabled=enabled,
            scheduler=scheduler,
        )
        self.events: list[Event] = []
        for event_type in (AutoTagArmed, AutoTagCancelled, AutoTagFired, TagsSuggested, TagGenerationFailed):
            bus.subscribe(event_type, self.events.append)

    def of_type(self, event_type: type[Event]) -> list[Event]:
        return [event for event in self.events if isinstance(event, event_type)]

    def edit_and_blur(self) -> bool:
        self.timer.note_content_edited()
        return self.timer.on_blur()


@pytest.fixture
def harness(
    store: SessionStore,
    bus: EventBus,
    tasks: BackgroundTasks,
    scheduler: ManualScheduler,
    tag_gateway: StubTagGateway,
) -> _Harness:
    return _Harness(store, bus, tasks, scheduler, tag_gateway, make_buffer(LONG_TEXT))


class TestArming:
    """Tests for when a cycle starts."""

    def test_blur_without_edit_does_not_arm(self, harness: _Harness) -> None:
        assert harness.timer.on_blur() is False
        assert harness.timer.phase is AutoTagPhase.DISARMED
        assert harness.scheduler.pending == 0

    def test_blur_after_edit_starts_countdown(self, harness: _Harness) -> None:
        assert harness.edit_and_blur() is True

        state = harness.store.auto_tag
        assert state.phase is AutoTagPhase.COUNTING_DOWN
        assert state.deadline == 15.0
        assert state.content_edited_since_arm is False
        assert harness.of_type(AutoTagArmed) == [AutoTagArmed(waiting_for_typing=False)]

    def test_second_blur_needs_a_new_edit(self, harness: _Harness) -> None:
        harness.edit_and_blur()
        harness.timer.on_focus()

        assert harness.timer.on_blur() is False

    def test_disabled_timer_never_arms(
        self,
        store: SessionStore,
        bus: EventBus,
        tasks: BackgroundTasks,
        scheduler: ManualScheduler,
        tag_gateway: StubTagGateway,
    ) -> None:
        harness = _Harness(store, bus, tasks, scheduler, tag_gateway, make_buffer(LONG_TEXT), enabled=False)
        assert harness.edit_and_blur() is False


class TestFiring:
    """Tests for the countdown and the tag request."""

    @pytest.mark.asyncio
    async def test_fires_after_quiet_countdown(self, harness: _Harness) -> None:
        harness.edit_and_blur()

        harness.scheduler.advance(14.9)
        assert harness.timer.phase is AutoTagPhase.COUNTING_DOWN
        harness.scheduler.advance(0.1)
        await harness.tasks.drain()

        assert harness.timer.phase is AutoTagPhase.FIRED
        assert harness.of_type(AutoTagFired) == [AutoTagFired(document_id="page-1")]
        call = harness.gateway.calls[0]
        assert call["title"] == "Weekly notes"
        assert call["workspace_id"] == "ws-1"
        assert call["content"] == harness.buffer.document().content()
        suggested = harness.of_type(TagsSuggested)
        assert [tag.name for tag in suggested[0].tags] == ["planning", "Roadmap"]

    @pytest.mark.asyncio
    async def test_existing_tags_are_filtered_case_insensitively(self, harness: _Harness) -> None:
        harness.gateway.existing = {"roadmap"}
        harness.edit_and_blur()

        harness.scheduler.advance(15.0)
        await harness.tasks.drain()

        suggested = harness.of_type(TagsSuggested)
        assert [tag.name for tag in suggested[0].tags] == ["planning"]
        assert suggested[0].reasoning == "Mentions quarterly goals"

    @pytest.mark.asyncio
    async def test_short_text_is_skipped(
        self,
        store: SessionStore,
        bus: EventBus,
        tasks: BackgroundTasks,
        scheduler: ManualScheduler,
        tag_gateway: StubTagGateway,
    ) -> None:
        harness = _Harness(store, bus, tasks, scheduler, tag_gateway, make_buffer("too short"))
        harness.edit_and_blur()

        scheduler.advance(15.0)
        await tasks.drain()

        assert harness.of_type(AutoTagFired) == [AutoTagFired(document_id="page-1", skipped=True)]
        assert tag_gateway.calls == []

    @pytest.mark.asyncio
    async def test_gateway_failure_is_reported_not_raised(self, harness: _Harness) -> None:
        harness.gateway.error = GatewayError(message="tags unavailable", status_code=500)
        harness.edit_and_blur()

        harness.scheduler.advance(15.0)
        await harness.tasks.drain()

        assert harness.of_type(TagGenerationFailed) == [
            TagGenerationFailed(document_id="page-1", error="tags unavailable")
        ]
        assert harness.of_type(TagsSuggested) == []
        assert harness.store.auto_tag.generating is False

    @pytest.mark.asyncio
    async def test_superseded_cycle_sends_nothing(self, harness: _Harness) -> None:
        harness.edit_and_blur()
        harness.scheduler.advance(15.0)
        # A new cycle starts before the first request goes out.
        harness.edit_and_blur()
        await harness.tasks.drain()

        assert harness.gateway.calls == []
        assert harness.of_type(TagsSuggested) == []
        assert harness.timer.phase is AutoTagPhase.COUNTING_DOWN
        assert harness.store.auto_tag.generating is False


class TestCancellation:
    """Tests for focus and keystroke cancellation."""

    @pytest.mark.asyncio
    async def test_keystroke_cancels_countdown(self, harness: _Harness) -> None:
        harness.edit_and_blur()
        harness.scheduler.advance(5.0)

        harness.timer.on_keydown()
        harness.scheduler.advance(30.0)
        await harness.tasks.drain()

        assert harness.timer.phase is AutoTagPhase.CANCELLED
        assert harness.of_type(AutoTagCancelled) == [AutoTagCancelled(reason="keystroke")]
        assert harness.of_type(AutoTagFired) == []
        assert harness.gateway.calls == []

    def test_focus_cancels_countdown(self, harness: _Harness) -> None:
        harness.edit_and_blur()

        harness.timer.on_focus()

        assert harness.store.auto_tag.deadline is None
        assert harness.of_type(AutoTagCancelled) == [AutoTagCancelled(reason="focus")]
        assert harness.scheduler.pending == 0

    def test_program_edit_does_not_cancel(self, harness: _Harness) -> None:
        harness.edit_and_blur()

        harness.timer.note_content_edited(from_keystroke=False)

        assert harness.timer.armed
        assert harness.store.auto_tag.content_edited_since_arm is True

    def test_user_edit_cancels(self, harness: _Harness) -> None:
        harness.edit_and_blur()

        harness.timer.note_content_edited()

        assert harness.timer.phase is AutoTagPhase.CANCELLED
        assert harness.store.auto_tag.content_edited_since_arm is True

    def test_cancel_when_disarmed_is_noop(self, harness: _Harness) -> None:
        assert harness.timer.cancel() is False
        assert harness.events == []


class TestTypingWait:
    """Tests for waiting on the shared typing signal."""

    @pytest.mark.asyncio
    async def test_waits_for_typing_to_stop(self, harness: _Harness) -> None:
        harness.typing.note_activity()
        harness.edit_and_blur()
        assert harness.timer.phase is AutoTagPhase.WAITING_TYPING_IDLE
        assert harness.of_type(AutoTagArmed) == [AutoTagArmed(waiting_for_typing=True)]

        harness.scheduler.advance(1.5)
        assert harness.timer.phase is AutoTagPhase.COUNTING_DOWN

        harness.scheduler.advance(15.0)
        await harness.tasks.drain()
        assert harness.timer.phase is AutoTagPhase.FIRED

    def test_focus_cancels_while_waiting(self, harness: _Harness) -> None:
        harness.typing.note_activity()
        harness.edit_and_blur()

        harness.timer.on_focus()
        harness.scheduler.advance(30.0)

        assert harness.timer.phase is AutoTagPhase.CANCELLED

    def test_wait_is_capped(self, harness: _Harness) -> None:
        """Continuous typing delays the countdown by at most the wait cap."""
        harness.typing.note_activity()
        harness.edit_and_blur()

        for _ in range(19):
            harness.typing.note_activity()
            harness.scheduler.advance(0.5)
        assert harness.timer.phase is AutoTagPhase.WAITING_TYPING_IDLE

        harness.typing.note_activity()
        harness.scheduler.advance(0.5)

        assert harness.typing.is_typing
        assert harness.timer.phase is AutoTagPhase.COUNTING_DOWN
        assert harness.store.auto_tag.deadline == 25.0
