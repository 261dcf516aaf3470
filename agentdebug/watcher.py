"""File watcher service using watchfiles.

Reloads the loaded session file when it changes on disk and keeps the
trajectory context in step with trajectory files in the watched directory.
"""
from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Optional

from watchfiles import awatch, Change

from agentdebug.errors import FormatError
from agentdebug.parsers.registry import load_session_file
from agentdebug.store import SessionStore, session_store
from agentdebug.trajectories import TrajectoryContext, trajectory_context

logger = logging.getLogger("agentdebug.watcher")

_TRAJECTORY_SUFFIXES = (".trajectory.json", ".atif.json")
_SESSION_SUFFIXES = (".json", ".jsonl")


def is_trajectory_file(path: Path) -> bool:
    return path.name.lower().endswith(_TRAJECTORY_SUFFIXES)


class SessionWatcher:
    """Background watcher that republishes sessions on change."""

    def __init__(
        self,
        store: Optional[SessionStore] = None,
        trajectories: Optional[TrajectoryContext] = None,
    ):
        self._task: Optional[asyncio.Task] = None
        self._running = False
        self._store = store or session_store
        self._trajectories = trajectories or trajectory_context
        # path -> session id of the trajectory read from it
        self._trajectory_files: dict[Path, str] = {}

    async def start(self, watch_dir: Path) -> None:
        """Start watching ``watch_dir`` in a background task."""
        if self._running:
            logger.warning("Session watcher already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._watch_loop(watch_dir))
        logger.info(f"Session watcher started for {watch_dir}")

    async def stop(self) -> None:
        """Stop the session watcher."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Session watcher stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    def load_trajectory_dir(self, watch_dir: Path) -> int:
        """Read every trajectory file under ``watch_dir`` into the context."""
        loaded = 0
        for path in sorted(watch_dir.rglob("*.json")):
            if is_trajectory_file(path) and self.reload_trajectory(path):
                loaded += 1
        return loaded

    async def _watch_loop(self, watch_dir: Path) -> None:
        if not watch_dir.exists():
            logger.warning(f"Watch directory {watch_dir} does not exist, watcher has nothing to monitor")
            self._running = False
            return

        await asyncio.to_thread(self.load_trajectory_dir, watch_dir)
        logger.info(f"Watching {watch_dir}")

        try:
            async for changes in awatch(watch_dir):
                if not self._running:
                    break

                classified = self._classify_changes(changes)
                if classified:
                    logger.info(f"Detected {len(classified)} file changes, reloading...")
                    try:
                        await asyncio.to_thread(self.apply_changes, classified)
                    except Exception as e:
                        logger.error(f"Error reloading changed files: {e}")
        except asyncio.CancelledError:
            logger.info("Session watcher task cancelled")
        except Exception as e:
            logger.error(f"Session watcher error: {e}")
        finally:
            self._running = False

    def _classify_changes(self, changes: set[tuple[Change, str]]) -> list[tuple[str, Path]]:
        """Classify raw watchfiles changes into (change_type, path) pairs.

        Only returns session file types (.json, .jsonl).
        """
        result = []
        for change_type, path_str in changes:
            path = Path(path_str)

            if path.suffix.lower() not in _SESSION_SUFFIXES:
                continue

            if change_type == Change.deleted:
                result.append(("deleted", path))
            elif change_type in (Change.modified, Change.added):
                result.append(("modified", path))

        return result

    def apply_changes(self, changes: list[tuple[str, Path]]) -> None:
        for change_type, path in changes:
            if is_trajectory_file(path):
                if change_type == "deleted":
                    self.forget_trajectory(path)
                else:
                    self.reload_trajectory(path)
            elif change_type == "modified" and self._is_loaded_file(path):
                self.reload_session(path)

    def _is_loaded_file(self, path: Path) -> bool:
        loaded = self._store.loaded
        if loaded is None or not loaded.sourceFile:
            return False
        return Path(loaded.sourceFile).resolve() == path.resolve()

    def reload_session(self, path: Path) -> bool:
        loaded = self._store.loaded
        try:
            session = load_session_file(path, source_id=loaded.sessionId if loaded else None)
        except (FormatError, OSError) as e:
            # Keep the previous Session published.
            logger.warning(f"Could not reload {path}: {e}")
            return False
        self._store.load(session, source_file=str(path))
        return True

    def reload_trajectory(self, path: Path) -> bool:
        try:
            raw = json.loads(path.read_text(encoding="utf-8", errors="replace"))
            parsed = self._trajectories.add(raw)
        except (FormatError, OSError, json.JSONDecodeError) as e:
            logger.warning(f"Could not read trajectory {path}: {e}")
            return False
        previous = self._trajectory_files.get(path)
        if previous and previous != parsed.session_id:
            self._trajectories.remove(previous)
        self._trajectory_files[path] = parsed.session_id
        logger.debug("Loaded trajectory %s from %s", parsed.session_id, path)
        return True

    def forget_trajectory(self, path: Path) -> bool:
        session_id = self._trajectory_files.pop(path, None)
        if session_id is None:
            return False
        return self._trajectories.remove(session_id)


# Singleton instance
session_watcher = SessionWatcher()
