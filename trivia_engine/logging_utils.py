import json
import logging
import os
import sys
import typing as _t
from contextvars import ContextVar
from typing import Any, Dict, Optional

# Context var to carry a settlement run id through one settlement pass
run_id_ctx: ContextVar[Optional[str]] = ContextVar("run_id", default=None)

_EXTRA_FIELDS = (
    "event",
    "period_id",
    "session_id",
    "user_id",
    "mode",
    "risk_level",
    "reasons",
    "winners",
    "amount",
    "error",
)


class JsonFormatter(logging.Formatter):
    """Simple JSON log formatter suitable for engine logs and log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "level": record.levelname,
            "time": self.formatTime(record, datefmt="%Y-%m-%dT%H:%M:%S%z"),
            "logger": record.name,
            "message": record.getMessage(),
        }
        rid = run_id_ctx.get()
        if rid:
            payload["run_id"] = rid
        # Pick up known extra fields added via logger.extra (as attributes on record)
        for key in _EXTRA_FIELDS:
            val = getattr(record, key, None)
            if val is not None:
                payload[key] = val
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


class ColorFormatter(logging.Formatter):
    """Human-friendly, colorized formatter that uses structured fields when present."""

    RESET = "\033[0m"
    BOLD = "\033[1m"
    COLORS = {
        "DEBUG": "\033[36m",   # cyan
        "INFO": "\033[32m",    # green
        "WARNING": "\033[33m", # yellow
        "ERROR": "\033[31m",   # red
        "CRITICAL": "\033[35m",# magenta
    }
    RISK_COLORS = {
        "LOW": "\033[32m",
        "MEDIUM": "\033[33m",
        "HIGH": "\033[31m",
    }

    def __init__(self, use_color: bool = True):
        super().__init__()
        self.use_color = use_color

    def _color(self, text: str, color: str) -> str:
        if not self.use_color:
            return text
        return f"{color}{text}{self.RESET}"

    def _subject_line(self, record: logging.LogRecord) -> Optional[str]:
        parts: _t.List[str] = []
        for key in ("period_id", "session_id", "user_id", "mode"):
            val = getattr(record, key, None)
            if val is not None:
                parts.append(self._color(f"{key}={val}", "\033[36m"))
        risk = getattr(record, "risk_level", None)
        if risk is not None:
            parts.append(self._color(f"risk={risk}", self.RISK_COLORS.get(str(risk), "")))
        return " ".join(parts) if parts else None

    def _context_str(self, record: logging.LogRecord) -> Optional[str]:
        ctx: _t.List[str] = []
        for key in ("reasons", "winners", "amount", "error"):
            val = getattr(record, key, None)
            if val is None:
                continue
            text = str(val)
            if len(text) > 80:
                text = text[:77] + "..."
            ctx.append(f"{key}={text}")
        return "[" + " ".join(ctx) + "]" if ctx else None

    def format(self, record: logging.LogRecord) -> str:
        level = record.levelname
        ts = self.formatTime(record, datefmt="%H:%M:%S")
        rid = run_id_ctx.get()

        parts: _t.List[str] = [
            self._color(level, self.COLORS.get(level, "")),
            ts,
        ]
        if rid:
            parts.append(self._color(f"run={rid}", "\033[35m"))
        parts.append(self._color(record.name, "\033[34m"))

        subject = self._subject_line(record)
        if subject:
            parts.append(subject)

        msg = record.getMessage()
        if msg:
            parts.extend(["-", self._color(msg, self.BOLD)])

        ctx = self._context_str(record)
        if ctx:
            parts.append(self._color(ctx, "\033[90m"))

        if record.exc_info:
            parts.append("\n" + self.formatException(record.exc_info))

        return " ".join(parts)


def _isatty(stream) -> bool:
    isatty = getattr(stream, "isatty", None)
    return bool(isatty and isatty())


def setup_logging(level: int = logging.INFO, stream=None) -> logging.Logger:
    """Configure the root logger for the engine and its host service.

    Chooses JSON (default) or colorized pretty format based on env/TTY:
    - LOG_FORMAT=pretty forces pretty
    - LOG_FORMAT=json forces JSON
    - otherwise: pretty if the stream is a TTY, else JSON
    - LOG_COLOR=0 disables ANSI colors in pretty mode
    """
    stream = stream or sys.stdout
    root = logging.getLogger()
    root.setLevel(level)
    # Clear existing handlers to avoid duplicate logs
    for h in root.handlers[:]:
        root.removeHandler(h)

    fmt_env = os.getenv("LOG_FORMAT", "").lower()
    color_env = os.getenv("LOG_COLOR", "1").lower()
    use_pretty = (fmt_env == "pretty") or (fmt_env == "" and _isatty(stream))
    use_color = use_pretty and color_env not in ("0", "false", "no")

    handler = logging.StreamHandler(stream)
    if use_pretty:
        handler.setFormatter(ColorFormatter(use_color=use_color))
    else:
        handler.setFormatter(JsonFormatter())
    root.addHandler(handler)

    # SQLAlchemy echoes through its own logger; keep it on our handler and quiet
    sa = logging.getLogger("sqlalchemy.engine")
    sa.handlers = [handler]
    sa.setLevel(max(level, logging.WARNING))
    sa.propagate = False

    return root


def get_logger(name: str = "trivia_engine") -> logging.Logger:
    return logging.getLogger(name)
