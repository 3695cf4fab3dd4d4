"""
Logging capability — console sink plus one shipping sink.

Sinks:
    • seq            — CLEF events POSTed to a Seq server (httpx)
    • awscloudwatch  — CloudWatch Logs log group (boto3 ``logs`` client)

Both always write to the console as well. Shipping handlers sit behind a
QueueHandler/QueueListener pair so callers never wait on the network.

═══════════════════════════════════════════════════════════════════════════
MESSAGE TEMPLATES
═══════════════════════════════════════════════════════════════════════════

    service.log_information("Settings {Key} saved by {User}", "theme", "ada")

    rendered  → "Settings theme saved by ada"
    template  → "Settings {Key} saved by {User}"
    properties→ {"Key": "theme", "User": "ada"}

Seq receives the template and properties separately (``@mt``), so events
group by template on the server side.
"""

from __future__ import annotations

import json
import logging
import os
import queue
import re
import socket
import sys
from datetime import datetime, timezone
from logging.handlers import QueueHandler, QueueListener
from typing import Any, Dict, List, Optional, Tuple

import httpx
from botocore.exceptions import BotoCoreError, ClientError

from service_template.app.core.errors import ConfigurationError
from service_template.app.core.logging_config import (
    JSONFormatter,
    RequestContextFilter,
    console_formatter,
    record_context,
)
from service_template.app.providers.aws import AwsClientFactory, AwsConnection, plain_http_endpoint
from service_template.app.providers.models import ConnectionTimeouts, ProviderSelection

logger = logging.getLogger(__name__)

CAPABILITY_LOGGER_NAME = "service_template.capability"
LOGGING_SECTION = "ModuleConfiguration:Logging"

_PLACEHOLDER = re.compile(r"\{([@$]?)([A-Za-z_][A-Za-z0-9_]*)(?::[^}]*)?\}")


def render_template(template: str, values: Tuple[Any, ...]) -> Tuple[str, Dict[str, Any]]:
    """
    Bind positional values to ``{Name}`` placeholders, in order of appearance.

    Repeated names reuse the first bound value. Surplus values are kept as
    ``__1``, ``__2``... so nothing passed in is lost.
    """
    properties: Dict[str, Any] = {}
    remaining = list(values)

    for match in _PLACEHOLDER.finditer(template):
        name = match.group(2)
        if name in properties or not remaining:
            continue
        properties[name] = remaining.pop(0)

    for index, extra in enumerate(remaining, start=1):
        properties[f"__{index}"] = extra

    def _sub(match: re.Match) -> str:
        name = match.group(2)
        if name not in properties:
            return match.group(0)
        value = properties[name]
        return value if isinstance(value, str) else json.dumps(value, default=str)

    return _PLACEHOLDER.sub(_sub, template), properties


# ═══════════════════════════════════════════════════════════════════════════
# Logging Service (the interface handlers see)
# ═══════════════════════════════════════════════════════════════════════════

class LoggingService:
    """log_error / log_information / log_warning over a configured logger."""

    def __init__(
        self,
        logger: logging.Logger,
        sink: str,
        listener: Optional[QueueListener] = None,
    ):
        self._logger = logger
        self.sink = sink
        self._listener = listener

    @property
    def logger(self) -> logging.Logger:
        return self._logger

    @property
    def sink_handlers(self) -> Tuple[logging.Handler, ...]:
        """Handlers behind the queue (empty for console-only)."""
        return tuple(self._listener.handlers) if self._listener is not None else ()

    def _log(self, level: int, template: str, values: Tuple[Any, ...], exc_info: Any = None) -> None:
        if not self._logger.isEnabledFor(level):
            return
        message, properties = render_template(template, values)
        self._logger.log(
            level,
            "%s",
            message,
            exc_info=exc_info,
            extra={"message_template": template, "properties": properties},
            stacklevel=3,
        )

    def log_error(self, template: str, *values: Any, exc_info: Any = None) -> None:
        self._log(logging.ERROR, template, values, exc_info)

    def log_information(self, template: str, *values: Any) -> None:
        self._log(logging.INFO, template, values)

    def log_warning(self, template: str, *values: Any) -> None:
        self._log(logging.WARNING, template, values)

    def describe(self) -> Dict[str, Any]:
        return {"provider": self.sink, "handlers": describe_handlers(self)}

    def close(self) -> None:
        """Flush queued events to the sink. Called once at shutdown."""
        if self._listener is not None:
            self._listener.stop()
            self._listener = None
        for handler in self._logger.handlers:
            handler.flush()


# ═══════════════════════════════════════════════════════════════════════════
# Sink Handlers
# ═══════════════════════════════════════════════════════════════════════════

_CLEF_LEVELS = {
    "DEBUG": "Debug",
    "INFO": "Information",
    "WARNING": "Warning",
    "ERROR": "Error",
    "CRITICAL": "Fatal",
}


class SeqHandler(logging.Handler):
    """Ships records to Seq's raw ingestion endpoint in CLEF format."""

    def __init__(
        self,
        server_url: str,
        api_key: Optional[str] = None,
        *,
        client: Optional[httpx.Client] = None,
        timeout_seconds: float = 5.0,
    ):
        super().__init__()
        headers = {"Content-Type": "application/vnd.serilog.clef"}
        if api_key:
            headers["X-Seq-ApiKey"] = api_key
        self.server_url = server_url.rstrip("/")
        self._client = client or httpx.Client(timeout=timeout_seconds)
        self._headers = headers

    def to_clef(self, record: logging.LogRecord) -> Dict[str, Any]:
        event: Dict[str, Any] = {
            "@t": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "@l": _CLEF_LEVELS.get(record.levelname, record.levelname),
            "SourceContext": record.name,
        }
        template = getattr(record, "message_template", None)
        if template:
            event["@mt"] = template
            for key, value in (getattr(record, "properties", None) or {}).items():
                event.setdefault(key, value)
        else:
            event["@m"] = record.getMessage()
        for key, value in record_context(record).items():
            event.setdefault(key, value)
        if record.exc_info and record.exc_info[1] is not None:
            event["@x"] = logging.Formatter().formatException(record.exc_info)
        return event

    def emit(self, record: logging.LogRecord) -> None:
        try:
            body = json.dumps(self.to_clef(record), default=str)
            response = self._client.post(
                f"{self.server_url}/api/events/raw",
                content=body,
                headers=self._headers,
            )
            response.raise_for_status()
        except Exception:
            self.handleError(record)

    def close(self) -> None:
        self._client.close()
        super().close()


class CloudWatchLogsHandler(logging.Handler):
    """Ships records to one CloudWatch Logs stream, creating it on first use."""

    def __init__(self, client: Any, log_group: str, log_stream: Optional[str] = None):
        super().__init__()
        self._client = client
        self.log_group = log_group
        self.log_stream = log_stream or f"{socket.gethostname()}/{os.getpid()}"
        self._stream_ready = False
        self.setFormatter(JSONFormatter())

    def _create(self, operation: str, **kwargs: Any) -> None:
        try:
            getattr(self._client, operation)(**kwargs)
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") != "ResourceAlreadyExistsException":
                raise

    def _ensure_stream(self) -> None:
        if self._stream_ready:
            return
        self._create("create_log_group", logGroupName=self.log_group)
        self._create(
            "create_log_stream",
            logGroupName=self.log_group,
            logStreamName=self.log_stream,
        )
        self._stream_ready = True

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self._ensure_stream()
            self._client.put_log_events(
                logGroupName=self.log_group,
                logStreamName=self.log_stream,
                logEvents=[{
                    "timestamp": int(record.created * 1000),
                    "message": self.format(record),
                }],
            )
        except (ClientError, BotoCoreError):
            self.handleError(record)


# ═══════════════════════════════════════════════════════════════════════════
# Assembly
# ═══════════════════════════════════════════════════════════════════════════

def _assemble(
    sink: str,
    sink_handler: Optional[logging.Handler],
    view_level: str,
    json_console: bool,
) -> LoggingService:
    """Console handler + (queued) sink handler on a dedicated logger."""
    log = logging.getLogger(CAPABILITY_LOGGER_NAME)
    for old in list(log.handlers):
        log.removeHandler(old)
        old.close()
    log.setLevel(getattr(logging, view_level.upper(), logging.INFO))
    log.propagate = False

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(console_formatter(json_console))
    log.addHandler(console)

    listener: Optional[QueueListener] = None
    if sink_handler is not None:
        events: "queue.Queue[logging.LogRecord]" = queue.Queue(-1)
        queued = QueueHandler(events)
        queued.addFilter(RequestContextFilter())
        log.addHandler(queued)
        listener = QueueListener(events, sink_handler, respect_handler_level=True)
        listener.start()

    return LoggingService(log, sink=sink, listener=listener)


def _console_options(selection: ProviderSelection) -> Tuple[str, bool]:
    logging_view = selection.view.section(LOGGING_SECTION)
    return (
        logging_view.get_str("MinimumLevel") or "INFO",
        logging_view.get_bool("ConsoleJson", False),
    )


def build_seq_logger(selection: ProviderSelection) -> LoggingService:
    """``Sink = Seq`` → console + Seq."""
    server_url = selection.param("LocalTestEndpoint") or selection.param("ServerUrl")
    if server_url is None:
        raise ConfigurationError(
            "Seq sink selected but ModuleConfiguration:Logging:Seq:ServerUrl is empty",
            key=f"{LOGGING_SECTION}:Seq:ServerUrl",
        )
    if selection.param("LocalTestEndpoint"):
        server_url = plain_http_endpoint(server_url)

    timeouts = ConnectionTimeouts.from_view(selection.view)
    handler = SeqHandler(
        server_url,
        selection.param("ApiKey"),
        timeout_seconds=timeouts.connect_seconds,
    )
    level, json_console = _console_options(selection)
    logger.info("Logging sink: Seq at %s (+ console)", handler.server_url)
    return _assemble("seq", handler, level, json_console)


def make_cloudwatch_logger_factory(aws: AwsClientFactory):
    """``Sink = AwsCloudWatch`` → console + CloudWatch Logs log group."""

    def build_cloudwatch_logger(selection: ProviderSelection) -> LoggingService:
        level, json_console = _console_options(selection)
        log_group = selection.param("LogGroupName")

        if log_group is None:
            # Inside Lambda, stdout already lands in the function's log group.
            logger.info("Logging sink: AWS CloudWatch default log group via console")
            return _assemble("awscloudwatch", None, level, json_console)

        conn = AwsConnection.from_selection(selection)
        client = aws.client("logs", conn)
        handler = CloudWatchLogsHandler(client, log_group)
        logger.info("Logging sink: AWS CloudWatch log group %s (+ console)", log_group)
        return _assemble("awscloudwatch", handler, level, json_console)

    return build_cloudwatch_logger


def describe_handlers(service: LoggingService) -> List[str]:
    """Handler class names on the capability logger (health/diagnostics)."""
    names = [type(h).__name__ for h in service.logger.handlers]
    names.extend(type(h).__name__ for h in service.sink_handlers)
    return names
