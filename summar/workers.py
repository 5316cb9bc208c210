"""
Producers: background QThread workers that stream model output, and the
drivers that feed that output into a :class:`RecordStore`.

The worker runs a command-line model backend and emits each parsed stdout
line as it arrives.  Workers never touch the store; drivers live on the GUI
thread and receive the worker's signals through Qt's queued connections,
so every store mutation happens on the GUI thread in arrival order.
"""
import json
import os
import signal
import subprocess
import threading
from typing import Callable, Dict, List, Optional, Sequence

from PyQt6.QtCore import QObject, QThread, pyqtSignal

from summar.constants import logger
from summar.conversation_window import build_conversation_window
from summar.record_store import RecordStore
from summar.records import Role

PLACEHOLDER_TEXT = "..."


# ---------------------------------------------------------------------------
# Stream parsers: (raw_line: str) -> Optional[str]
# ---------------------------------------------------------------------------

def _stream_parser_raw(raw_line: str) -> Optional[str]:
    """Pass every line through, newline kept so fragments concatenate."""
    return raw_line


def _stream_parser_json(raw_line: str) -> Optional[str]:
    """Extract text from ``{"text": ...}`` or content-block JSON lines."""
    line = raw_line.strip()
    if not line:
        return None
    try:
        obj = json.loads(line)
    except (json.JSONDecodeError, ValueError):
        return raw_line  # fall back to raw
    if not isinstance(obj, dict):
        return None
    if isinstance(obj.get("text"), str):
        return obj["text"]

    msg = obj.get("message", {})
    blocks = msg.get("content", []) if isinstance(msg, dict) else []
    parts = [b.get("text", "") for b in blocks
             if isinstance(b, dict) and b.get("type") == "text"]
    text = "".join(parts)
    return text or None


STREAM_PARSERS = {
    "raw": _stream_parser_raw,
    "json": _stream_parser_json,
}


def parser_for(stream_format: str) -> Callable[[str], Optional[str]]:
    """Parser for a ``stream_format`` setting; unknown formats read raw."""
    parser = STREAM_PARSERS.get(stream_format)
    if parser is None:
        logger.warning(f"StreamingCLIWorker: unknown stream format {stream_format!r}, "
                       f"reading raw lines")
        return _stream_parser_raw
    return parser


def build_reply_prompt(window: Sequence[Dict[str, str]]) -> str:
    """Flatten a conversation window into a plain-text prompt."""
    parts: List[str] = []
    for item in window:
        if item.get("type") != "conversation":
            parts.append(f"--- Document ---\n{item.get('text', '').strip()}")
            continue
        role_tag = "User" if item.get("role") == Role.USER.value else "Assistant"
        parts.append(f"\n{role_tag}: {item.get('text', '')}")
    parts.append("\nAssistant:")
    return "\n".join(parts)


def _get_user_env() -> dict:
    """Return an environment dict with the user's login-shell PATH.

    GUI apps often inherit a minimal PATH that lacks user directories such
    as ``~/.local/bin`` where model CLIs are usually installed.
    """
    env = os.environ.copy()
    try:
        shell = os.environ.get("SHELL", "/bin/sh")
        result = subprocess.run(
            [shell, "-l", "-c", "echo $PATH"],
            capture_output=True, text=True, timeout=5,
        )
        if result.returncode == 0 and result.stdout.strip():
            env["PATH"] = result.stdout.strip()
        else:
            logger.warning(f"StreamingCLIWorker: login shell returned rc={result.returncode}")
    except subprocess.TimeoutExpired:
        logger.warning("StreamingCLIWorker: login shell timed out after 5s")
    except Exception as exc:
        logger.warning(f"StreamingCLIWorker: failed to resolve user PATH: {exc}")
    return env


class StreamingCLIWorker(QThread):
    """Run a model CLI and stream its stdout line by line.

    ``fragment`` fires for each parsed line; ``completed`` fires once with
    the full text, stderr and exit code (``-1`` on spawn failure, ``-2`` when
    cancelled).
    """

    fragment = pyqtSignal(str)
    completed = pyqtSignal(str, str, int)  # full_text, stderr, exit_code

    def __init__(self, command: List[str], prompt: str = "",
                 parser_fn: Optional[Callable[[str], Optional[str]]] = None,
                 cwd: Optional[str] = None, parent=None):
        super().__init__(parent)
        self.command = command
        self.prompt = prompt
        self.cwd = cwd
        self._parser_fn = parser_fn or _stream_parser_raw
        self._process: Optional[subprocess.Popen] = None
        self._cancelled = False

    @classmethod
    def for_model(cls, cli_binary: str, model: str, prompt: str,
                  extra_args: Optional[List[str]] = None,
                  stream_format: str = "raw", parent=None):
        command = [cli_binary]
        if model:
            command += ["--model", model]
        command += list(extra_args or [])
        return cls(command, prompt=prompt, parser_fn=parser_for(stream_format),
                   parent=parent)

    def run(self):
        logger.debug(f"StreamingCLIWorker.run: starting, command={self.command}")
        try:
            self._process = subprocess.Popen(
                self.command,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                cwd=self.cwd,
                env=_get_user_env(),
                start_new_session=True,
            )
            pid = self._process.pid
            logger.info(f"StreamingCLIWorker.run: spawned pid={pid}")

            stderr_lines: List[str] = []

            def _read_stderr():
                try:
                    for err_line in self._process.stderr:
                        stderr_lines.append(err_line)
                except (OSError, ValueError) as exc:
                    logger.debug(f"StreamingCLIWorker: stderr reader stopped: {exc}")

            stderr_thread = threading.Thread(target=_read_stderr, daemon=True)
            stderr_thread.start()

            try:
                self._process.stdin.write(self.prompt)
                self._process.stdin.close()
            except BrokenPipeError:
                logger.warning(f"StreamingCLIWorker: pid={pid} closed stdin early")

            text_parts: List[str] = []
            for line in self._process.stdout:
                try:
                    parsed = self._parser_fn(line)
                except Exception as exc:
                    logger.debug(f"StreamingCLIWorker: parser error: {exc}")
                    parsed = line
                if parsed:
                    text_parts.append(parsed)
                    self.fragment.emit(parsed)

            self._process.wait()
            stderr_thread.join(timeout=5)
            rc = self._process.returncode
            logger.debug(f"StreamingCLIWorker.run: finished, pid={pid}, rc={rc}, "
                         f"cancelled={self._cancelled}, fragments={len(text_parts)}")

            if self._cancelled:
                self.completed.emit("".join(text_parts), "Cancelled by user.", -2)
            else:
                self.completed.emit("".join(text_parts), "".join(stderr_lines), rc)
        except Exception as e:
            logger.error(f"StreamingCLIWorker.run: exception: {type(e).__name__}: {e}",
                         exc_info=True)
            if self._cancelled:
                self.completed.emit("", "Cancelled by user.", -2)
            else:
                self.completed.emit("", f"Error running model CLI: {e}", -1)

    def cancel(self):
        """Terminate the process group; escalate to SIGKILL after 3s."""
        self._cancelled = True
        proc = self._process
        if proc is None or proc.poll() is not None:
            return
        try:
            pgid = os.getpgid(proc.pid)
            os.killpg(pgid, signal.SIGTERM)
        except ProcessLookupError:
            return
        except OSError as exc:
            logger.warning(f"StreamingCLIWorker.cancel: SIGTERM failed: {exc}, "
                           f"falling back to proc.kill()")
            proc.kill()
            return
        try:
            proc.wait(timeout=3)
        except subprocess.TimeoutExpired:
            logger.warning(f"StreamingCLIWorker.cancel: SIGTERM timed out, "
                           f"sending SIGKILL to pgid={pgid}")
            try:
                os.killpg(pgid, signal.SIGKILL)
            except ProcessLookupError:
                pass


def _error_summary(stderr: str, exit_code: int) -> str:
    if exit_code == -2:
        return "*Cancelled.*"
    lines = [l for l in (stderr or "").strip().splitlines() if l.strip()]
    detail = lines[-1] if lines else f"exit code {exit_code}"
    return f"**Error:** {detail}"


# ---------------------------------------------------------------------------
# Drivers: connect a worker's signals to store mutations
# ---------------------------------------------------------------------------

class TaskStreamDriver(QObject):
    """Stream one task's output into a record.

    Each fragment is appended (``mode="append"``) or replaces the shown
    text (``mode="replace"``); completion seals the full text with one
    final ``replace_text``.  A failed run leaves the streamed text in view
    without sealing it and emits ``error``.  A non-empty *stat_id* is
    stamped on the record when the task starts and saved with it.
    """

    finished = pyqtSignal(str)   # key
    error = pyqtSignal(str, str)  # key, message

    def __init__(self, store: RecordStore, key: str, label: str,
                 worker, mode: str = "append", stat_id: str = "", parent=None):
        super().__init__(parent)
        if mode not in ("append", "replace"):
            raise ValueError(f"unknown stream mode: {mode}")
        self.store = store
        self.key = key
        self.label = label
        self.mode = mode
        self.stat_id = stat_id
        self.worker = worker
        self._shown = ""
        worker.fragment.connect(self.on_fragment)
        worker.completed.connect(self.on_completed)

    def start(self) -> None:
        self.store.create_record(self.key, self.label)
        if self.stat_id:
            self.store.set_stat_id(self.key, self.stat_id)
        logger.info(f"TaskStreamDriver: starting key={self.key} label={self.label!r}")
        self.worker.start()

    def on_fragment(self, text: str) -> None:
        if self.mode == "append":
            self.store.append_text(self.key, self.label, text)
        else:
            self._shown += text
            self.store.replace_text(self.key, self.label, self._shown, False)

    def on_completed(self, full_text: str, stderr: str, exit_code: int) -> None:
        if exit_code != 0:
            message = _error_summary(stderr, exit_code)
            logger.warning(f"TaskStreamDriver: key={self.key} failed (rc={exit_code})")
            self.error.emit(self.key, message)
            return
        self.store.replace_text(self.key, self.label, full_text, True)
        logger.info(f"TaskStreamDriver: key={self.key} completed, {len(full_text)} chars")
        self.finished.emit(self.key)


class ConversationDriver(QObject):
    """Run one reply turn of a record's dialogue.

    The user turn and an assistant placeholder are appended immediately;
    the placeholder is rewritten in place as fragments arrive and once more
    with the final answer (or an error message).
    """

    finished = pyqtSignal(str)
    error = pyqtSignal(str, str)

    def __init__(self, store: RecordStore, key: str, model: str,
                 worker_factory: Callable[[str], object], parent=None):
        super().__init__(parent)
        self.store = store
        self.key = key
        self.model = model
        self._worker_factory = worker_factory
        self.worker = None
        self.placeholder_index = -1
        self._streamed = ""

    def send(self, user_text: str) -> bool:
        """Append the user turn and start the model call.  False if dropped."""
        _, user_index = self.store.add_conversation_turn(self.key, Role.USER, user_text)
        if user_index < 0:
            return False
        window = build_conversation_window(self.store.get_conversation(self.key), self.model)
        prompt = build_reply_prompt(window)
        _, self.placeholder_index = self.store.add_conversation_turn(
            self.key, Role.ASSISTANT, PLACEHOLDER_TEXT)

        self.worker = self._worker_factory(prompt)
        self.worker.fragment.connect(self.on_fragment)
        self.worker.completed.connect(self.on_completed)
        logger.info(f"ConversationDriver: reply for key={self.key}, model={self.model}, "
                    f"window={len(window)} entries")
        self.worker.start()
        return True

    def on_fragment(self, text: str) -> None:
        self._streamed += text
        self.store.update_conversation_turn(self.key, self.placeholder_index, self._streamed)

    def on_completed(self, full_text: str, stderr: str, exit_code: int) -> None:
        if exit_code != 0 and not full_text.strip():
            message = _error_summary(stderr, exit_code)
            self.store.update_conversation_turn(self.key, self.placeholder_index, message)
            logger.warning(f"ConversationDriver: key={self.key} failed (rc={exit_code})")
            self.error.emit(self.key, message)
            return
        self.store.update_conversation_turn(self.key, self.placeholder_index, full_text)
        self.finished.emit(self.key)
