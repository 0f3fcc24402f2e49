"""
Demonstration of frame tracking and request interception with pagewire.

This example shows:
1. How to connect to a running Chrome started with --remote-debugging-port
2. How the frame tree and execution contexts follow a navigation
3. How paused requests are continued, fulfilled or aborted
"""

import asyncio

from dotenv import load_dotenv

from pagewire import FrameTreeEvent, FulfillResponse, LifecycleState, NetworkEvent, PageModel, connect

# Load environment variables (PAGEWIRE_BROWSER_URL, PAGEWIRE_VERBOSE, ...)
load_dotenv()


async def demonstrate_interception():
    """Block images, stub one API call and let everything else through."""
    print("=== Frame tracking and interception ===\n")

    connection = await connect(browser_url="http://127.0.0.1:9222")
    try:
        targets = await connection.send("Target.getTargets")
        page_target = next(t for t in targets["targetInfos"] if t["type"] == "page")

        print(f"1. Attaching to {page_target['url']}...")
        page = await PageModel.create(connection, page_target["targetId"])
        page.frame_tree.on(FrameTreeEvent.FRAME_NAVIGATED, lambda frame: print(f"   navigated: {frame.url}"))

        print("\n2. Enabling request interception...")
        await page.set_request_interception(True)

        async def on_request(request):
            if request.resource_type == "image":
                await request.abort("blockedbyclient")
            elif request.url.endswith("/api/status"):
                await request.fulfill(FulfillResponse(status=200, content_type="application/json", body='{"ok": true}'))
            else:
                await request.continue_()

        page.pipeline().on(NetworkEvent.REQUEST, on_request)
        page.pipeline().on(NetworkEvent.REQUEST_FAILED, lambda r: print(f"   failed: {r.url} ({r.failure_text})"))

        print("\n3. Navigating to example.com...")
        await page.main_frame.goto("https://example.com", wait_until=LifecycleState.LOADED)
        title = await page.main_frame.evaluate("() => document.title")
        print(f"   title: {title}")

        print("\n4. Frame snapshot:")
        for info in page.frame_tree.snapshot():
            print(f"   - {info.frame_id} {info.url} lifecycle={info.lifecycle.value}")
    finally:
        await connection.close()


if __name__ == "__main__":
    asyncio.run(demonstrate_interception())
