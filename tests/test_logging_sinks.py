"""
Tests for the logging capability.

Covers:
    • Message-template rendering and property binding
    • LoggingService records (template + properties attached)
    • Seq handler: CLEF body, endpoint, API key (httpx.MockTransport)
    • CloudWatch Logs handler: group/stream creation, put_log_events
    • Factories: Seq local endpoint, CloudWatch console-only mode
"""

from __future__ import annotations

import json
import logging
from unittest.mock import MagicMock

import httpx
import pytest
from botocore.exceptions import ClientError

from service_template.app.core.configuration import ConfigurationView
from service_template.app.core.errors import ConfigurationError
from service_template.app.core.logging_config import set_request_context
from service_template.app.providers.logging_sinks import (
    CAPABILITY_LOGGER_NAME,
    CloudWatchLogsHandler,
    LoggingService,
    SeqHandler,
    build_seq_logger,
    describe_handlers,
    make_cloudwatch_logger_factory,
    render_template,
)
from service_template.app.providers.models import Capability, ProviderSelection


class _Capture(logging.Handler):
    def __init__(self):
        super().__init__()
        self.records = []

    def emit(self, record):
        self.records.append(record)


def _record(template="User {UserId} signed in", properties=None, level=logging.INFO):
    record = logging.LogRecord("svc", level, __file__, 1, "User 42 signed in", None, None)
    record.message_template = template
    record.properties = {"UserId": 42} if properties is None else properties
    return record


def _selection(section: str, values: dict) -> ProviderSelection:
    view = ConfigurationView({f"{section}:{k}": v for k, v in values.items()})
    return ProviderSelection(Capability.LOGGER, "test", view.section(section), view)


# ═══════════════════════════════════════════════════════════════════════════
# Templates
# ═══════════════════════════════════════════════════════════════════════════

class TestRenderTemplate:
    def test_positional_binding(self):
        message, props = render_template("Settings {Key} saved by {User}", ("theme", "ada"))
        assert message == "Settings theme saved by ada"
        assert props == {"Key": "theme", "User": "ada"}

    def test_non_string_values(self):
        message, props = render_template("Took {Elapsed} ms", (12.5,))
        assert message == "Took 12.5 ms"
        assert props == {"Elapsed": 12.5}

    def test_repeated_name_binds_once(self):
        message, props = render_template("{Id} then {Id} then {Other}", (1, 2))
        assert message == "1 then 1 then 2"
        assert props == {"Id": 1, "Other": 2}

    def test_surplus_values_kept(self):
        _, props = render_template("Only {One}", ("a", "b", "c"))
        assert props == {"One": "a", "__1": "b", "__2": "c"}

    def test_missing_values_leave_placeholder(self):
        message, props = render_template("{A} and {B}", ("x",))
        assert message == "x and {B}"
        assert props == {"A": "x"}

    def test_destructuring_and_format_specifiers(self):
        message, props = render_template("Got {@Payload} at {When:HH:mm}", ({"a": 1}, "10:00"))
        assert props == {"Payload": {"a": 1}, "When": "10:00"}
        assert message == 'Got {"a": 1} at 10:00'


# ═══════════════════════════════════════════════════════════════════════════
# LoggingService
# ═══════════════════════════════════════════════════════════════════════════

class TestLoggingService:
    def setup_method(self):
        self.logger = logging.getLogger("tests.capability")
        self.logger.handlers.clear()
        self.logger.setLevel(logging.DEBUG)
        self.logger.propagate = False
        self.capture = _Capture()
        self.logger.addHandler(self.capture)
        self.service = LoggingService(self.logger, sink="test")

    def test_levels(self):
        self.service.log_error("e {A}", 1)
        self.service.log_warning("w {A}", 2)
        self.service.log_information("i {A}", 3)
        assert [r.levelno for r in self.capture.records] == [logging.ERROR, logging.WARNING, logging.INFO]

    def test_template_and_properties_attached(self):
        self.service.log_information("Setting {Key} updated", "theme")
        record = self.capture.records[0]
        assert record.getMessage() == "Setting theme updated"
        assert record.message_template == "Setting {Key} updated"
        assert record.properties == {"Key": "theme"}

    def test_caller_location(self):
        self.service.log_warning("here")
        assert self.capture.records[0].funcName == "test_caller_location"

    def test_disabled_level_skipped(self):
        self.logger.setLevel(logging.ERROR)
        self.service.log_information("quiet {X}", 1)
        assert self.capture.records == []

    def test_error_with_exception(self):
        try:
            raise RuntimeError("boom")
        except RuntimeError as exc:
            self.service.log_error("Failed {Op}", "put", exc_info=exc)
        assert self.capture.records[0].exc_info[0] is RuntimeError

    def test_describe_console_only(self):
        assert self.service.describe() == {"provider": "test", "handlers": ["_Capture"]}


# ═══════════════════════════════════════════════════════════════════════════
# Seq
# ═══════════════════════════════════════════════════════════════════════════

class TestSeqHandler:
    def setup_method(self):
        self.requests = []

        def handle(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return httpx.Response(201)

        self.client = httpx.Client(transport=httpx.MockTransport(handle))

    def test_posts_clef_event(self):
        handler = SeqHandler("http://seq:5341/", "key-123", client=self.client)
        handler.emit(_record())

        request = self.requests[0]
        assert str(request.url) == "http://seq:5341/api/events/raw"
        assert request.headers["X-Seq-ApiKey"] == "key-123"
        assert request.headers["Content-Type"] == "application/vnd.serilog.clef"
        event = json.loads(request.content)
        assert event["@mt"] == "User {UserId} signed in"
        assert event["@l"] == "Information"
        assert event["UserId"] == 42

    def test_no_api_key_header_when_unset(self):
        SeqHandler("http://seq:5341", client=self.client).emit(_record())
        assert "X-Seq-ApiKey" not in self.requests[0].headers

    def test_plain_record_uses_rendered_message(self):
        handler = SeqHandler("http://seq:5341", client=self.client)
        record = logging.LogRecord("svc", logging.WARNING, __file__, 1, "plain %s", ("text",), None)
        event = handler.to_clef(record)
        assert event["@m"] == "plain text"
        assert "@mt" not in event
        assert event["@l"] == "Warning"

    def test_stamped_context_in_clef_event(self):
        handler = SeqHandler("http://seq:5341", client=self.client)
        record = _record()
        record.context = {"request_id": "req-9", "endpoint": "/feature/Beta"}
        event = handler.to_clef(record)
        assert event["request_id"] == "req-9"
        assert event["endpoint"] == "/feature/Beta"

    def test_server_error_does_not_raise(self, monkeypatch):
        client = httpx.Client(transport=httpx.MockTransport(lambda r: httpx.Response(500)))
        handler = SeqHandler("http://seq:5341", client=client)
        monkeypatch.setattr(logging, "raiseExceptions", False)
        handler.emit(_record())


class TestBuildSeqLogger:
    def test_local_endpoint_overrides_server_url(self):
        service = build_seq_logger(_selection("ModuleConfiguration:Logging:Seq", {
            "ServerUrl": "https://seq.example.com",
            "LocalTestEndpoint": "localhost:5341",
            "ApiKey": "k",
        }))
        try:
            assert service.sink == "seq"
            seq = service.sink_handlers[0]
            assert isinstance(seq, SeqHandler)
            assert seq.server_url == "http://localhost:5341"
            assert service.logger.name == CAPABILITY_LOGGER_NAME
            assert service.logger.propagate is False
            assert "StreamHandler" in describe_handlers(service)
        finally:
            service.close()

    def test_server_url_required(self):
        with pytest.raises(ConfigurationError):
            build_seq_logger(_selection("ModuleConfiguration:Logging:Seq", {"ApiKey": "k"}))


# ═══════════════════════════════════════════════════════════════════════════
# CloudWatch Logs
# ═══════════════════════════════════════════════════════════════════════════

class TestCloudWatchLogsHandler:
    def test_creates_stream_once_then_puts(self):
        client = MagicMock()
        handler = CloudWatchLogsHandler(client, "/svc/app", "host/1")
        handler.emit(_record())
        handler.emit(_record())

        client.create_log_group.assert_called_once_with(logGroupName="/svc/app")
        client.create_log_stream.assert_called_once_with(logGroupName="/svc/app", logStreamName="host/1")
        assert client.put_log_events.call_count == 2
        event = client.put_log_events.call_args.kwargs["logEvents"][0]
        assert json.loads(event["message"])["template"] == "User {UserId} signed in"

    def test_existing_group_tolerated(self):
        client = MagicMock()
        client.create_log_group.side_effect = ClientError(
            {"Error": {"Code": "ResourceAlreadyExistsException", "Message": "exists"}}, "CreateLogGroup",
        )
        CloudWatchLogsHandler(client, "/svc/app").emit(_record())
        client.put_log_events.assert_called_once()

    def test_default_stream_name(self):
        handler = CloudWatchLogsHandler(MagicMock(), "/svc/app")
        assert "/" in handler.log_stream


class TestCloudWatchFactory:
    SECTION = "ModuleConfiguration:Logging:AwsCloudWatch"

    def test_empty_log_group_is_console_only(self):
        aws = MagicMock()
        service = make_cloudwatch_logger_factory(aws)(_selection(self.SECTION, {"LogGroupName": ""}))
        assert service.sink == "awscloudwatch"
        assert service.sink_handlers == ()
        aws.client.assert_not_called()
        service.close()

    def test_log_group_uses_logs_client(self):
        aws = MagicMock()
        service = make_cloudwatch_logger_factory(aws)(_selection(self.SECTION, {
            "LogGroupName": "/svc/app", "RegionEndpoint": "us-east-1",
            "AccessKey": "a", "SecretKey": "s", "LocalTestEndpoint": "localhost:4566",
        }))
        try:
            service_name, conn = aws.client.call_args.args
            assert service_name == "logs"
            assert conn.region == "us-east-1"
            assert conn.credential_mode == "explicit"
            assert conn.endpoint_url == "http://localhost:4566"
            assert isinstance(service.sink_handlers[0], CloudWatchLogsHandler)
        finally:
            service.close()

    def test_shipped_event_carries_request_context(self):
        aws = MagicMock()
        client = aws.client.return_value
        service = make_cloudwatch_logger_factory(aws)(_selection(self.SECTION, {
            "LogGroupName": "/svc/app", "RegionEndpoint": "us-east-1",
        }))
        set_request_context(request_id="req-123", endpoint="/api/v1/settings/theme", method="PUT")
        try:
            service.log_information("hello {Name}", "bob")
        finally:
            set_request_context()
            service.close()

        shipped = json.loads(client.put_log_events.call_args.kwargs["logEvents"][0]["message"])
        assert shipped["context"]["request_id"] == "req-123"
        assert shipped["context"]["method"] == "PUT"
        assert shipped["properties"] == {"Name": "bob"}

    def test_log_group_needs_region(self):
        with pytest.raises(ConfigurationError):
            make_cloudwatch_logger_factory(MagicMock())(_selection(self.SECTION, {"LogGroupName": "/svc/app"}))
