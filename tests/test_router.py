import os
import uuid
from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest

from remote_print.config import ServerConfig
from remote_print.protocol.codec import encode_auth_request, encode_print_request, parse_auth_response
from remote_print.protocol.router import RouterState, StreamRouter
from tests.mocks import PASSWORD, FakePrintCommand, FakeWriter, make_reader


def make_router(data, registry, dispatcher, config, writer=None, eof=True):
    return StreamRouter(
        make_reader(data, eof=eof),
        writer or FakeWriter(stream_id=4),
        registry=registry,
        dispatcher=dispatcher,
        config=config,
        stream_id=4,
    )


def print_request(session_id, body=b"%PDF-1.7", filename="report.pdf", extension="pdf"):
    return encode_print_request(filename, extension, session_id) + body


class TestAuthenticate:
    @pytest.mark.asyncio
    async def test_success_returns_session(self, registry, dispatcher, server_config, clock):
        writer = FakeWriter()
        router = make_router(
            encode_auth_request(PASSWORD), registry, dispatcher, server_config, writer
        )

        response = await router.run()

        session = parse_auth_response(response)
        assert bytes(writer.data) == response
        assert writer.eof is True
        assert router.state is RouterState.CLOSED
        assert session.expires_at == clock() + timedelta(hours=4)
        assert await registry.get(session.id) == session

    @pytest.mark.asyncio
    async def test_wrong_password(self, registry, dispatcher, server_config):
        writer = FakeWriter()
        router = make_router(
            encode_auth_request("hunter2"), registry, dispatcher, server_config, writer
        )

        response = await router.run()

        assert response == b"Failed to process request: Invalid Password\n"
        assert bytes(writer.data) == response
        assert writer.eof is True
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_password_too_long(self, registry, dispatcher, tmp_path):
        config = ServerConfig(data_dir=tmp_path, max_password_bytes=8)
        router = make_router(encode_auth_request("x" * 9), registry, dispatcher, config)

        response = await router.run()

        assert response == b"Failed to process request: Password too long\n"
        assert len(registry) == 0


class TestPrint:
    @pytest.mark.asyncio
    async def test_valid_session_prints_once(self, registry, dispatcher, server_config):
        session = await registry.authenticate(PASSWORD)
        command = FakePrintCommand()
        writer = FakeWriter()
        router = make_router(
            print_request(session.id), registry, dispatcher, server_config, writer
        )

        with patch("remote_print.print_dispatcher.asyncio.create_subprocess_exec", command):
            response = await router.run()

        assert response == b"done"
        assert bytes(writer.data) == b"done"
        assert writer.eof is True
        assert len(command.print_calls) == 1
        args, content = command.print_calls[0]
        assert args[1].endswith(".pdf")
        assert content == b"%PDF-1.7"
        assert os.listdir(dispatcher.temp_dir) == []

    @pytest.mark.asyncio
    async def test_missing_session_header(self, registry, dispatcher, server_config):
        command = FakePrintCommand()
        router = make_router(
            b'POST "a.txt"\r\nExtension: "txt"\r\n\r\nsecret data',
            registry,
            dispatcher,
            server_config,
        )

        with patch("remote_print.print_dispatcher.asyncio.create_subprocess_exec", command):
            response = await router.run()

        assert response.startswith(b"Failed to process request: Missing session")
        assert command.print_calls == []
        assert os.listdir(dispatcher.temp_dir) == []
        # The rejected body was consumed
        assert router.reader.at_eof()

    @pytest.mark.asyncio
    async def test_unknown_session(self, registry, dispatcher, server_config):
        command = FakePrintCommand()
        router = make_router(print_request(uuid.uuid4()), registry, dispatcher, server_config)

        with patch("remote_print.print_dispatcher.asyncio.create_subprocess_exec", command):
            response = await router.run()

        assert response == b"Failed to process request: Invalid or missing session\n"
        assert command.print_calls == []

    @pytest.mark.asyncio
    async def test_expired_session(self, registry, dispatcher, server_config, clock):
        session = await registry.authenticate(PASSWORD)
        clock.advance(timedelta(hours=4, seconds=1))
        command = FakePrintCommand()
        router = make_router(print_request(session.id), registry, dispatcher, server_config)

        with patch("remote_print.print_dispatcher.asyncio.create_subprocess_exec", command):
            response = await router.run()

        assert response == (
            b"Failed to process request: Session expired, please authenticate again\n"
        )
        assert command.print_calls == []

    @pytest.mark.asyncio
    async def test_printer_failure_is_reported(self, registry, dispatcher, server_config):
        session = await registry.authenticate(PASSWORD)
        command = FakePrintCommand(
            returncode=1,
            stderr=b"lpr: The printer or class does not exist.",
            lpstat_output=b"printer Office_Laser is idle.\n",
        )
        router = make_router(print_request(session.id), registry, dispatcher, server_config)

        with patch("remote_print.print_dispatcher.asyncio.create_subprocess_exec", command):
            response = await router.run()

        text = response.decode()
        assert text.startswith("Failed to process request: lpr: The printer or class")
        assert "Available printers: Office_Laser" in text

    @pytest.mark.asyncio
    async def test_unexpected_error_still_answers(self, registry, server_config):
        session = await registry.authenticate(PASSWORD)
        dispatcher = AsyncMock()
        dispatcher.print_job.side_effect = RuntimeError("boom")
        writer = FakeWriter()
        router = make_router(print_request(session.id), registry, dispatcher, server_config, writer)

        response = await router.run()

        assert response == b"Failed to process request: boom\n"
        assert writer.eof is True


class TestMalformedRequests:
    @pytest.mark.asyncio
    async def test_too_many_header_lines(self, registry, dispatcher, server_config):
        header = b"POST a.txt\r\n" + b"X-Pad: 1\r\n" * 20 + b"\r\n"
        router = make_router(header, registry, dispatcher, server_config)

        response = await router.run()

        assert response.startswith(b"Failed to process request: Too many header lines")
        assert router.state is RouterState.CLOSED

    @pytest.mark.asyncio
    async def test_malformed_session_id(self, registry, dispatcher, server_config):
        command = FakePrintCommand()
        router = make_router(
            b"POST a.txt\r\nSession: 12345\r\n\r\nbody", registry, dispatcher, server_config
        )

        with patch("remote_print.print_dispatcher.asyncio.create_subprocess_exec", command):
            response = await router.run()

        assert response == b"Failed to process request: Malformed session identifier\n"
        assert command.print_calls == []

    @pytest.mark.asyncio
    async def test_unknown_verb(self, registry, dispatcher, server_config):
        router = make_router(b"PUT a.txt\r\n\r\n", registry, dispatcher, server_config)
        assert await router.run() == b"Failed to process request: Invalid Request\n"

    @pytest.mark.asyncio
    async def test_header_timeout(self, registry, dispatcher, tmp_path):
        config = ServerConfig(data_dir=tmp_path, header_timeout=0.05)
        router = make_router(b"POST a.txt\r\n", registry, dispatcher, config, eof=False)

        response = await router.run()

        assert response == b"Failed to process request: Timed out waiting for request headers\n"


class TestResponseDelivery:
    @pytest.mark.asyncio
    async def test_write_failure_is_contained(self, registry, dispatcher, server_config):
        writer = FakeWriter(fail=True)
        router = make_router(
            encode_auth_request(PASSWORD), registry, dispatcher, server_config, writer
        )

        response = await router.run()

        assert response.startswith(b"success&")
        assert writer.eof is False
        assert router.state is RouterState.CLOSED

    @pytest.mark.asyncio
    async def test_sessions_are_shared_between_streams(self, registry, dispatcher, server_config):
        auth = make_router(encode_auth_request(PASSWORD), registry, dispatcher, server_config)
        session = parse_auth_response(await auth.run())

        command = FakePrintCommand()
        upload = make_router(print_request(session.id), registry, dispatcher, server_config)
        with patch("remote_print.print_dispatcher.asyncio.create_subprocess_exec", command):
            assert await upload.run() == b"done"
