import unittest
from datetime import timedelta

from agentdebug.grouping import (
    group_runs,
    group_tool_calls,
    group_turns,
    is_parallel_group,
    is_spawn_call,
    is_subagent_turn,
    parallel_spawns,
    subagent_name_for_turn,
    tool_calls_overlap,
    turns_overlap,
)
from agentdebug.models import ItemStatus, ToolCall
from agentdebug.tests.fixtures import (
    BASE_TIME,
    make_turn,
    session_with_many_subagents,
    session_with_parallel_spawn_calls,
    session_with_parallel_subagents,
    session_with_subagents,
)


class SubAgentNameTests(unittest.TestCase):
    def test_name_is_first_word_before_subagent_suffix(self) -> None:
        self.assertEqual(subagent_name_for_turn("You are Oracle-subagent. Research"), "Oracle")
        self.assertEqual(subagent_name_for_turn("You are Code-Review-subagent. Review PR"), "Code")
        self.assertEqual(subagent_name_for_turn("you are  sisyphus-SUBAGENT now"), "sisyphus")
        self.assertIsNone(subagent_name_for_turn("Main agent: implement feature"))
        self.assertIsNone(subagent_name_for_turn(""))
        self.assertIsNone(subagent_name_for_turn(None))

    def test_turn_variant(self) -> None:
        self.assertTrue(is_subagent_turn(make_turn(0, "You are Oracle-subagent. Go")))
        self.assertFalse(is_subagent_turn(make_turn(0, "approve")))


class OverlapTests(unittest.TestCase):
    def test_overlapping_turns(self) -> None:
        a = make_turn(0, "A", timestamp=BASE_TIME, duration_ms=5000)
        b = make_turn(1, "B", timestamp=BASE_TIME + timedelta(seconds=3), duration_ms=5000)

        self.assertTrue(turns_overlap(a, b))
        self.assertTrue(turns_overlap(b, a))

    def test_separate_turns(self) -> None:
        a = make_turn(0, "A", timestamp=BASE_TIME, duration_ms=2000)
        b = make_turn(1, "B", timestamp=BASE_TIME + timedelta(seconds=10), duration_ms=2000)

        self.assertFalse(turns_overlap(a, b))

    def test_missing_timestamps_never_overlap(self) -> None:
        self.assertFalse(turns_overlap(make_turn(0, "A"), make_turn(1, "B")))
        self.assertFalse(turns_overlap(make_turn(0, "A", timestamp=BASE_TIME), make_turn(1, "B")))

    def test_touching_turns_overlap(self) -> None:
        a = make_turn(0, "A", timestamp=BASE_TIME, duration_ms=5000)
        b = make_turn(1, "B", timestamp=BASE_TIME + timedelta(seconds=5), duration_ms=5000)

        self.assertTrue(turns_overlap(a, b))

    def test_default_duration_applies_without_duration(self) -> None:
        a = make_turn(0, "A", timestamp=BASE_TIME)
        b = make_turn(1, "B", timestamp=BASE_TIME + timedelta(milliseconds=800))
        c = make_turn(2, "C", timestamp=BASE_TIME + timedelta(seconds=3))

        self.assertTrue(turns_overlap(a, b))
        self.assertFalse(turns_overlap(a, c))
        self.assertTrue(turns_overlap(a, c, default_duration_ms=5000))

    def test_tool_call_overlap(self) -> None:
        a = ToolCall(id="a", name="x", timestamp=BASE_TIME, durationMs=2000)
        b = ToolCall(id="b", name="y", timestamp=BASE_TIME + timedelta(seconds=1))

        self.assertTrue(tool_calls_overlap(a, b))

    def test_parallel_group_needs_one_overlapping_pair(self) -> None:
        turns = session_with_parallel_subagents().turns[1:14]

        self.assertTrue(is_parallel_group(turns))
        self.assertFalse(is_parallel_group(turns[:1]))


class RunGroupingTests(unittest.TestCase):
    def test_group_runs_is_consecutive_only(self) -> None:
        self.assertEqual(group_runs("aabca", lambda c: c), [["a", "a"], ["b"], ["c"], ["a"]])
        self.assertEqual(group_runs([], lambda c: c), [])

    def test_group_tool_calls(self) -> None:
        turn = make_turn(0, "t", ["read_file", "read_file", ("edit", {}, ItemStatus.FAILURE), "read_file"])
        runs = group_tool_calls(turn.toolCalls)

        self.assertEqual([(run.name, run.count) for run in runs], [("read_file", 2), ("edit", 1), ("read_file", 1)])
        self.assertTrue(runs[1].hasFailure)
        self.assertFalse(runs[0].hasFailure)


class TurnGroupingTests(unittest.TestCase):
    def test_short_sessions_keep_one_group_per_turn(self) -> None:
        groups = group_turns(session_with_subagents().turns)

        self.assertEqual(len(groups), 4)
        self.assertFalse(any(group.collapsed for group in groups))
        self.assertEqual([group.subAgentName for group in groups], ["Oracle", "Oracle", None, "Sisyphus"])

    def test_long_sessions_collapse_consecutive_subagent_turns(self) -> None:
        groups = group_turns(session_with_many_subagents().turns)

        first = groups[0]
        self.assertTrue(first.collapsed)
        self.assertEqual(first.subAgentName, "Oracle")
        self.assertEqual(first.count, 13)
        self.assertEqual(first.toolCount, 26)
        self.assertFalse(first.isParallel)
        self.assertEqual(len(groups), 6)
        self.assertEqual(sum(group.count for group in groups), 18)

    def test_main_turns_never_collapse(self) -> None:
        turns = [make_turn(i, "approve") for i in range(20)]

        groups = group_turns(turns)
        self.assertEqual(len(groups), 20)
        self.assertFalse(any(group.collapsed for group in groups))

    def test_threshold_is_configurable(self) -> None:
        turns = session_with_subagents().turns

        groups = group_turns(turns, threshold=2)
        self.assertEqual([group.count for group in groups], [2, 1, 1])
        self.assertTrue(groups[0].collapsed)

    def test_overlapping_group_is_parallel(self) -> None:
        groups = group_turns(session_with_parallel_subagents().turns)
        oracle = next(group for group in groups if group.subAgentName == "Oracle")

        self.assertTrue(oracle.collapsed)
        self.assertTrue(oracle.isParallel)
        self.assertEqual(oracle.startIndex, 1)

    def test_timed_sequential_group_is_not_parallel(self) -> None:
        turns = [
            make_turn(
                i,
                f"You are Oracle-subagent. Research task {i + 1}",
                ["read_file"],
                timestamp=BASE_TIME + timedelta(seconds=5 * i),
                duration_ms=1000,
            )
            for i in range(13)
        ]
        turns.extend(make_turn(13 + i, "approve") for i in range(5))
        groups = group_turns(turns)
        oracle = groups[0]

        self.assertTrue(oracle.collapsed)
        self.assertEqual(oracle.subAgentName, "Oracle")
        self.assertEqual(oracle.count, 13)
        self.assertFalse(oracle.isParallel)
        self.assertFalse(is_parallel_group(oracle.turns))


class SpawnTests(unittest.TestCase):
    def test_untimed_spawns_in_one_turn_are_parallel(self) -> None:
        turn = session_with_parallel_spawn_calls().turns[0]

        spawns = parallel_spawns(turn)
        self.assertEqual(len(spawns), 3)
        self.assertTrue(all(is_spawn_call(tc) for tc in spawns))

    def test_single_spawn_is_not_parallel(self) -> None:
        turn = make_turn(0, "t", ["read_file", "runSubagent"])

        self.assertEqual(parallel_spawns(turn), [])

    def test_timed_sequential_spawns_are_not_parallel(self) -> None:
        turn = make_turn(0, "t", ["runSubagent", "runSubagent"])
        first, second = turn.toolCalls
        first = first.model_copy(update={"timestamp": BASE_TIME, "durationMs": 1000})
        second = second.model_copy(update={"timestamp": BASE_TIME + timedelta(seconds=5), "durationMs": 1000})
        turn = turn.model_copy(update={"toolCalls": [first, second]})

        self.assertEqual(parallel_spawns(turn), [])

    def test_linked_tool_call_counts_as_spawn(self) -> None:
        self.assertTrue(is_spawn_call(ToolCall(id="a", name="task", subAgentSessionId="s1")))
        self.assertFalse(is_spawn_call(ToolCall(id="a", name="task")))


if __name__ == "__main__":
    unittest.main()
