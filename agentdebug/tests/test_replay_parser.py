import json
import unittest

from agentdebug.diagrams import DIAGRAM_KINDS, render_diagram
from agentdebug.errors import FormatError
from agentdebug.models import ItemStatus, SourceKind
from agentdebug.parsers.replay import normalize_replay
from agentdebug.tests.fixtures import replay_export


class ReplayParserTests(unittest.TestCase):
    def test_each_prompt_becomes_a_turn(self) -> None:
        session = normalize_replay(replay_export())

        self.assertEqual(session.source, SourceKind.REPLAY)
        self.assertEqual(session.sessionId, "replay")
        self.assertEqual([turn.id for turn in session.turns], ["p1", "p2"])
        first = session.turns[0]
        self.assertEqual(first.prompt, "Refactor the parser")
        self.assertEqual(first.response, "Refactored")
        self.assertEqual([tc.id for tc in first.toolCalls], ["t1", "t2"])
        self.assertEqual(first.durationMs, 5000)

    def test_internal_sub_agent_requests_stay_out_of_turns(self) -> None:
        session = normalize_replay(replay_export())

        self.assertEqual([req.id for req in session.requests], ["r1", "r2"])
        self.assertNotIn("i1", [req.id for turn in session.turns for req in turn.requests])

    def test_internal_requests_fold_into_preceding_spawn(self) -> None:
        session = normalize_replay(replay_export(), source_id="rp")

        self.assertEqual(len(session.subAgents), 1)
        sub = session.subAgents[0]
        self.assertEqual(sub.sessionId, "rp-subagent-0")
        self.assertEqual(sub.name, "Research")
        self.assertEqual(sub.parentToolCallId, "t1")
        self.assertEqual(sub.internalTurns, 1)
        self.assertEqual(sub.promptTokens, 30)
        self.assertEqual(sub.completionTokens, 5)
        self.assertEqual(sub.modelName, "gpt-4o-mini")
        self.assertEqual(sub.durationMs, 3000)
        self.assertEqual([req.name for req in sub.requests], ["subagent-internal"])
        spawn = session.turns[0].toolCalls[0]
        self.assertEqual(spawn.subAgentSessionId, "rp-subagent-0")

    def test_failures_are_reported_on_tools_and_requests(self) -> None:
        session = normalize_replay(replay_export())
        second = session.turns[1]

        self.assertEqual(second.status, ItemStatus.FAILURE)
        self.assertEqual(second.toolCalls[0].status, ItemStatus.FAILURE)
        self.assertEqual(second.toolCalls[0].error, "exit code 1")
        self.assertEqual(second.requests[0].status, ItemStatus.FAILURE)
        self.assertEqual(second.requests[0].error, "Rate limited by API")
        self.assertEqual(session.metrics.errorTypes, {"api_error": 1, "tool_error": 1})

    def test_invalid_records_are_skipped(self) -> None:
        session = normalize_replay(replay_export())

        self.assertEqual(session.skippedRecords, 2)
        self.assertEqual(len(session.turns), 2)

    def test_metrics(self) -> None:
        metrics = normalize_replay(replay_export()).metrics

        self.assertEqual(metrics.totalTurns, 2)
        self.assertEqual(metrics.totalToolCalls, 3)
        self.assertEqual(metrics.totalRequests, 2)
        self.assertEqual(metrics.failedToolCalls, 1)
        self.assertEqual(metrics.failedRequests, 1)
        self.assertEqual(metrics.totalPromptTokens, 200)
        self.assertEqual(metrics.totalSubAgents, 1)
        self.assertEqual(metrics.toolCallsByName, {"read_file": 1, "run_in_terminal": 1, "runSubagent": 1})

    def test_renormalizing_the_same_export_is_deterministic(self) -> None:
        raw = json.dumps(replay_export())
        first = normalize_replay(raw)
        second = normalize_replay(raw)

        self.assertIsNot(first, second)
        self.assertEqual(first.metrics, second.metrics)
        self.assertEqual(first.model_dump(), second.model_dump())
        for kind in DIAGRAM_KINDS:
            for detailed in (False, True):
                with self.subTest(kind=kind, detailed=detailed):
                    self.assertEqual(
                        render_diagram(first, kind, detailed).encode("utf-8"),
                        render_diagram(second, kind, detailed).encode("utf-8"),
                    )

    def test_internal_requests_without_spawn_infer_a_sub_agent(self) -> None:
        export = {
            "prompts": [
                {
                    "promptId": "p1",
                    "prompt": "Go",
                    "logs": [
                        {
                            "id": "i1",
                            "kind": "request",
                            "name": "tool/runSubagent",
                            "response": {"type": "failure", "reason": "crashed"},
                        },
                        {"id": "i2", "kind": "request", "name": "tool/runSubagent"},
                    ],
                }
            ]
        }
        session = normalize_replay(export)

        self.assertEqual(len(session.subAgents), 1)
        inferred = session.subAgents[0]
        self.assertEqual(inferred.sessionId, "replay-subagent-inferred")
        self.assertEqual(inferred.internalTurns, 2)
        self.assertTrue(inferred.hasFailures)
        self.assertEqual(session.turns[0].requests, [])

    def test_internal_request_in_later_prompt_uses_earlier_spawn(self) -> None:
        export = replay_export()
        export["prompts"][1]["logs"].append(
            {"id": "i9", "kind": "request", "name": "tool/runSubagent", "response": {"type": "success"}}
        )
        session = normalize_replay(export)

        self.assertEqual(session.subAgents[0].internalTurns, 2)

    def test_rejects_content_without_prompts(self) -> None:
        with self.assertRaises(FormatError) as ctx:
            normalize_replay(json.dumps({"requests": []}))
        self.assertEqual(ctx.exception.kind, "replay")

        with self.assertRaises(FormatError):
            normalize_replay("{broken")


if __name__ == "__main__":
    unittest.main()
