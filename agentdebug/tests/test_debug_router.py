import json
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from fastapi import HTTPException

from agentdebug.routers import debug as debug_router
from agentdebug.store import SessionStore
from agentdebug.tests.fixtures import (
    child_trajectory,
    live_entries,
    replay_export,
    root_trajectory,
    session_with_subagents,
)
from agentdebug.trajectories import TrajectoryContext


class DebugRouterTestBase(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.store = SessionStore()
        self.context = TrajectoryContext()
        patchers = [
            patch.object(debug_router, "session_store", self.store),
            patch.object(debug_router, "trajectory_context", self.context),
        ]
        for patcher in patchers:
            patcher.start()
            self.addCleanup(patcher.stop)


class SessionEndpointTests(DebugRouterTestBase):
    async def test_analysis_endpoints_need_a_session(self) -> None:
        with self.assertRaises(HTTPException) as ctx:
            await debug_router.get_session()
        self.assertEqual(ctx.exception.status_code, 404)

        with self.assertRaises(HTTPException) as ctx:
            await debug_router.get_metrics()
        self.assertEqual(ctx.exception.status_code, 404)

    async def test_load_inline_content(self) -> None:
        body = debug_router.LoadSessionRequest(
            content=json.dumps(replay_export()),
            filename="run.chatreplay.json",
            sourceId="rp",
        )
        payload = await debug_router.load_session(body)

        self.assertEqual(payload["status"], "ok")
        self.assertEqual(payload["sessionId"], "rp")
        self.assertEqual(payload["source"], "replay")
        self.assertEqual(payload["sourceFile"], "run.chatreplay.json")
        self.assertEqual(payload["skippedRecords"], 2)

        current = await debug_router.get_session()
        self.assertTrue(current["loaded"])
        self.assertEqual(current["session"]["sessionId"], "rp")

    async def test_load_from_path(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "run.chatreplay.json"
            path.write_text(json.dumps(replay_export()), encoding="utf-8")

            payload = await debug_router.load_session(debug_router.LoadSessionRequest(path=str(path)))

        self.assertEqual(payload["sessionId"], "replay")
        self.assertEqual(self.store.loaded.sourceFile, str(path))

    async def test_load_requires_content_or_path(self) -> None:
        with self.assertRaises(HTTPException) as ctx:
            await debug_router.load_session(debug_router.LoadSessionRequest())
        self.assertEqual(ctx.exception.status_code, 400)

        with self.assertRaises(HTTPException) as ctx:
            await debug_router.load_session(debug_router.LoadSessionRequest(path="/nonexistent/run.json"))
        self.assertEqual(ctx.exception.status_code, 404)

    async def test_unrecognized_content_is_unprocessable(self) -> None:
        body = debug_router.LoadSessionRequest(content='{"hello": "world"}')

        with self.assertRaises(HTTPException) as ctx:
            await debug_router.load_session(body)
        self.assertEqual(ctx.exception.status_code, 422)
        self.assertIn("hello", ctx.exception.detail["preview"])
        self.assertIsNone(self.store.current())

    async def test_live_entries_publish_and_loaded_wins(self) -> None:
        payload = await debug_router.publish_live_entries(
            debug_router.LiveEntriesRequest(entries=live_entries(), sourceId="live-1")
        )
        self.assertEqual(payload["sessionId"], "live-1")
        self.assertEqual(payload["turns"], 2)

        self.store.load(session_with_subagents())
        current = await debug_router.get_session()
        self.assertEqual(current["session"]["sessionId"], "test-session-id")

        cleared = await debug_router.clear_loaded_session()
        self.assertTrue(cleared["hasLive"])
        current = await debug_router.get_session()
        self.assertFalse(current["loaded"])
        self.assertEqual(current["session"]["sessionId"], "live-1")

    async def test_metrics_and_failures(self) -> None:
        await debug_router.publish_live_entries(debug_router.LiveEntriesRequest(entries=live_entries()))

        metrics = await debug_router.get_metrics()
        self.assertEqual(metrics["totalToolCalls"], 3)
        self.assertEqual(metrics["failedToolCalls"], 1)

        failures = await debug_router.get_failures(scope=None)
        self.assertIn("tc-edit", [item["toolCallId"] for item in failures["items"]])
        self.assertEqual(failures["count"], len(failures["items"]))

    async def test_diagrams(self) -> None:
        self.store.load(session_with_subagents())

        payload = await debug_router.get_diagram("sequence", detailed=False)
        self.assertTrue(payload["mermaid"].startswith("sequenceDiagram"))

        payload = await debug_router.get_diagram("gantt", detailed=False)
        self.assertTrue(payload["mermaid"].startswith("gantt"))

        with self.assertRaises(HTTPException) as ctx:
            await debug_router.get_diagram("pie", detailed=False)
        self.assertEqual(ctx.exception.status_code, 404)

    async def test_session_hierarchy_formats(self) -> None:
        await debug_router.publish_live_entries(
            debug_router.LiveEntriesRequest(entries=live_entries(), sourceId="live-1")
        )

        as_json = await debug_router.get_session_hierarchy(format="json", showModel=False, showMetrics=False)
        self.assertEqual([root["sessionId"] for root in as_json["roots"]], ["sub-1"])

        as_text = await debug_router.get_session_hierarchy(format="text", showModel=True, showMetrics=False)
        self.assertIn("Explorer", as_text["content"])

        with self.assertRaises(HTTPException) as ctx:
            await debug_router.get_session_hierarchy(format="svg", showModel=False, showMetrics=False)
        self.assertEqual(ctx.exception.status_code, 400)


class TrajectoryEndpointTests(DebugRouterTestBase):
    async def _load(self) -> None:
        body = debug_router.TrajectoriesRequest(trajectories={"a": root_trajectory(), "b": child_trajectory()})
        payload = await debug_router.load_trajectories(body)
        self.assertEqual(payload["count"], 2)

    async def test_list_add_remove(self) -> None:
        payload = await debug_router.add_trajectory(root_trajectory())
        self.assertEqual(payload["sessionId"], "root-1")

        listing = await debug_router.list_trajectories()
        self.assertEqual(listing, {"count": 1, "items": ["root-1"]})

        removed = await debug_router.remove_trajectory("root-1")
        self.assertEqual(removed["count"], 0)

        with self.assertRaises(HTTPException) as ctx:
            await debug_router.remove_trajectory("root-1")
        self.assertEqual(ctx.exception.status_code, 404)

    async def test_invalid_trajectory_is_unprocessable(self) -> None:
        with self.assertRaises(HTTPException) as ctx:
            await debug_router.add_trajectory({"steps": []})
        self.assertEqual(ctx.exception.status_code, 422)

    async def test_hierarchy_reports_gaps(self) -> None:
        await self._load()

        payload = await debug_router.get_trajectory_hierarchy(format="text", showModel=False, showMetrics=False)
        self.assertIn("Trajectory Hierarchy", payload["content"])
        self.assertIn("researcher", payload["content"])
        self.assertEqual([issue["kind"] for issue in payload["issues"]], ["reference_gap"])

    async def test_failures_and_tool_calls(self) -> None:
        await self._load()

        failures = await debug_router.get_trajectory_failures(sessionId=None)
        self.assertEqual(failures["count"], 2)
        self.assertEqual(failures["items"][1]["parentChain"], ["root-1", "child-1"])

        calls = await debug_router.get_trajectory_tool_calls(sessionId=None, toolName=None, failedOnly=True)
        self.assertEqual([item["toolCallId"] for item in calls["items"]], ["call-2"])

        calls = await debug_router.get_trajectory_tool_calls(sessionId="child-1", toolName=None, failedOnly=False)
        self.assertEqual(calls["count"], 2)


if __name__ == "__main__":
    unittest.main()
