"""Tests for the frame tree and frame lifecycle tracking."""

import asyncio

import pytest

from conftest import attach, context_created, flush
from pagewire.core.errors import ContextDestroyedError, FrameDetachedError, NavigationError
from pagewire.core.events import FrameTreeEvent
from pagewire.page.frame_tree import FrameTree
from pagewire.types import LifecycleState


def navigated(transport, frame_id, url, parent_id=None, loader_id="L1", session_id="S1"):
    frame = {"id": frame_id, "loaderId": loader_id, "url": url, "securityOrigin": url, "mimeType": "text/html"}
    if parent_id:
        frame["parentId"] = parent_id
    transport.event("Page.frameNavigated", {"frame": frame, "type": "Navigation"}, session_id=session_id)


def frame_attached(transport, frame_id, parent_id, session_id="S1"):
    transport.event("Page.frameAttached", {"frameId": frame_id, "parentFrameId": parent_id}, session_id=session_id)


def lifecycle(transport, frame_id, name, loader_id="L1", session_id="S1"):
    transport.event(
        "Page.lifecycleEvent",
        {"frameId": frame_id, "loaderId": loader_id, "name": name, "timestamp": 1.0},
        session_id=session_id,
    )


@pytest.fixture
def session(transport, connection):
    attach(transport, "S1", "T1")
    return connection.session("S1")


@pytest.fixture
def tree(connection, session):
    return FrameTree(connection, session)


def build_page(transport):
    """Main frame M with A under M and B, C under A."""
    navigated(transport, "M", "https://example.com/")
    for frame_id, parent_id in (("A", "M"), ("B", "A"), ("C", "A")):
        frame_attached(transport, frame_id, parent_id)
        navigated(transport, frame_id, f"https://{frame_id.lower()}.test/", parent_id=parent_id)


@pytest.mark.asyncio
async def test_frames_are_linked_by_id(transport, tree):
    """Test parents and children resolve through the tree."""
    build_page(transport)

    main = tree.main_frame
    assert main.id == "M"
    assert main.url == "https://example.com/"
    assert [f.id for f in main.child_frames] == ["A"]
    assert [f.id for f in tree.frame("A").child_frames] == ["B", "C"]
    assert tree.frame("B").parent_frame is tree.frame("A")
    assert len(tree.frames()) == 4


@pytest.mark.asyncio
async def test_detach_removes_subtree_with_one_notification_per_frame(transport, session, tree):
    """Test detaching a frame removes it and all descendants and their contexts."""
    build_page(transport)
    registry = tree.registry_for(session)
    for context_id, frame_id in ((1, "M"), (2, "A"), (3, "B"), (4, "C")):
        context_created(transport, context_id, frame_id, session_id="S1")
    contexts = {frame_id: registry.for_frame(frame_id) for frame_id in ("A", "B", "C")}

    detached = []
    tree.on(FrameTreeEvent.FRAME_DETACHED, lambda f: detached.append(f.id))

    transport.event("Page.frameDetached", {"frameId": "A", "reason": "remove"}, session_id="S1")

    assert [f.id for f in tree.frames()] == ["M"]
    assert tree.main_frame.child_frames == []
    assert all(not c.is_ready for c in contexts.values())
    assert [c.frame_id for c in registry.contexts()] == ["M"]

    await flush()
    assert sorted(detached) == ["A", "B", "C"]
    assert detached[-1] == "A"


@pytest.mark.asyncio
async def test_events_for_detached_frames_are_ignored(transport, session, tree):
    """Test late events for a removed frame cannot resurrect it."""
    build_page(transport)
    detached_frame = tree.frame("B")
    transport.event("Page.frameDetached", {"frameId": "B"}, session_id="S1")

    context_created(transport, 50, "B", session_id="S1")
    lifecycle(transport, "B", "load")
    navigated(transport, "B", "https://late.test/", parent_id="A")
    frame_attached(transport, "B2", "B")

    assert tree.frame("B") is None
    assert tree.frame("B2") is None
    assert tree.registry_for(session).get(50) is None
    assert detached_frame.detached
    assert detached_frame.lifecycle is LifecycleState.PENDING
    with pytest.raises(FrameDetachedError):
        detached_frame.execution_context()


@pytest.mark.asyncio
async def test_navigation_resets_frame_state(transport, session, tree):
    """Test a new document drops children, contexts and lifecycle progress."""
    build_page(transport)
    context_created(transport, 1, "M", session_id="S1")
    lifecycle(transport, "M", "init")
    lifecycle(transport, "M", "DOMContentLoaded")
    lifecycle(transport, "M", "load")
    main = tree.main_frame
    old_context = main.execution_context()
    assert main.lifecycle is LifecycleState.LOADED

    navigated(transport, "M", "https://example.com/next", loader_id="L2")

    assert tree.main_frame is main
    assert main.url == "https://example.com/next"
    assert main.loader_id == "L2"
    assert main.lifecycle is LifecycleState.PENDING
    assert main.child_frames == []
    assert not old_context.is_ready
    with pytest.raises(ContextDestroyedError):
        main.execution_context()


@pytest.mark.asyncio
async def test_main_frame_swap_keeps_frame_object(transport, tree):
    """Test a main-frame id change rekeys the existing frame."""
    navigated(transport, "M", "https://example.com/")
    main = tree.main_frame

    navigated(transport, "M2", "https://other.test/", loader_id="L9")

    assert tree.main_frame is main
    assert main.id == "M2"
    assert tree.frame("M") is None
    assert main.url == "https://other.test/"


@pytest.mark.asyncio
async def test_lifecycle_progression_and_wait(transport, tree):
    """Test lifecycle events advance the state and release waiters."""
    navigated(transport, "M", "https://example.com/")
    main = tree.main_frame

    waiter = asyncio.ensure_future(main.wait_for_lifecycle(LifecycleState.LOADED, timeout=1))
    await flush()

    lifecycle(transport, "M", "init")
    lifecycle(transport, "M", "DOMContentLoaded")
    assert main.lifecycle is LifecycleState.DOM_LOADED
    assert not waiter.done()

    lifecycle(transport, "M", "load")
    await waiter
    assert main.lifecycle is LifecycleState.LOADED
    assert main.lifecycle_events == ["DOMContentLoaded", "init", "load"]


@pytest.mark.asyncio
async def test_stopped_loading_completes_lifecycle(transport, tree):
    navigated(transport, "M", "https://example.com/")
    transport.event("Page.frameStartedLoading", {"frameId": "M"}, session_id="S1")
    assert tree.main_frame.loading

    transport.event("Page.frameStoppedLoading", {"frameId": "M"}, session_id="S1")

    assert not tree.main_frame.loading
    assert tree.main_frame.lifecycle is LifecycleState.LOADED


@pytest.mark.asyncio
async def test_detach_fails_lifecycle_waiters(transport, tree):
    """Test waiting on a frame that detaches fails with FrameDetachedError."""
    build_page(transport)
    waiter = asyncio.ensure_future(tree.frame("C").wait_for_lifecycle())
    await flush()

    transport.event("Page.frameDetached", {"frameId": "C"}, session_id="S1")

    with pytest.raises(FrameDetachedError):
        await waiter


@pytest.mark.asyncio
async def test_goto_waits_for_new_document(transport, tree):
    """Test navigation waits for the lifecycle of the committed loader."""
    navigated(transport, "M", "https://example.com/")
    main = tree.main_frame

    task = asyncio.ensure_future(main.goto("https://example.com/docs", wait_until=LifecycleState.LOADED, timeout=1))
    await flush()

    frame = transport.last("Page.navigate")
    assert frame["params"] == {"url": "https://example.com/docs", "frameId": "M"}
    assert frame["sessionId"] == "S1"
    transport.reply(frame, {"frameId": "M", "loaderId": "L2"})
    await flush()
    assert not task.done()

    lifecycle(transport, "M", "init", loader_id="L2")
    navigated(transport, "M", "https://example.com/docs", loader_id="L2")
    lifecycle(transport, "M", "load", loader_id="L2")

    assert await task == "L2"


@pytest.mark.asyncio
async def test_goto_error_text_raises(transport, tree):
    navigated(transport, "M", "https://example.com/")
    task = asyncio.ensure_future(tree.main_frame.goto("https://nowhere.invalid/"))
    await flush()

    transport.reply(transport.last("Page.navigate"), {"frameId": "M", "errorText": "net::ERR_NAME_NOT_RESOLVED"})

    with pytest.raises(NavigationError) as exc_info:
        await task
    assert "ERR_NAME_NOT_RESOLVED" in str(exc_info.value)


@pytest.mark.asyncio
async def test_same_document_navigation(transport, tree):
    navigated(transport, "M", "https://example.com/")
    seen = []
    tree.on(FrameTreeEvent.FRAME_NAVIGATED_WITHIN_DOCUMENT, lambda f: seen.append(f.url))

    transport.event("Page.navigatedWithinDocument", {"frameId": "M", "url": "https://example.com/#top"}, session_id="S1")
    await flush()

    assert tree.main_frame.url == "https://example.com/#top"
    assert seen == ["https://example.com/#top"]


@pytest.mark.asyncio
async def test_initialize_loads_existing_frames(transport, session, tree):
    """Test initialize enables domains and builds the current tree."""
    transport.auto_respond = True
    transport.responders["Page.getFrameTree"] = {
        "frameTree": {
            "frame": {"id": "M", "loaderId": "L1", "url": "https://example.com/"},
            "childFrames": [
                {"frame": {"id": "C1", "parentId": "M", "loaderId": "L1c", "url": "https://ads.test/"}},
            ],
        }
    }

    await tree.initialize()

    methods = transport.methods()
    for method in ("Page.enable", "Page.getFrameTree", "Page.setLifecycleEventsEnabled", "Runtime.enable"):
        assert method in methods
    assert tree.main_frame.id == "M"
    assert tree.frame("C1").parent_frame is tree.main_frame
    snapshot = {info.frame_id: info for info in tree.snapshot()}
    assert snapshot["M"].child_frame_ids == ["C1"]
    assert snapshot["C1"].url == "https://ads.test/"
    assert snapshot["C1"].session_id == "S1"


@pytest.mark.asyncio
async def test_frame_evaluate_uses_frame_context(transport, session, tree):
    navigated(transport, "M", "https://example.com/")
    context_created(transport, 5, "M", session_id="S1")

    task = asyncio.ensure_future(tree.main_frame.evaluate("() => location.href"))
    await flush()
    frame = transport.last("Runtime.callFunctionOn")
    assert frame["params"]["executionContextId"] == 5
    transport.reply(frame, {"result": {"type": "string", "value": "https://example.com/"}})

    assert await task == "https://example.com/"
