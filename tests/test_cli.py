"""Tests for ollama_session.cli (the Session class is mocked)."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import click
import pytest
from click.testing import CliRunner

from ollama_session.cli import _parse_option, cli
from ollama_session.errors import RemoteError, UnavailableError, ValidationError
from ollama_session.messages import Reply
from ollama_session.transport import ModelInfo, ModelSummary, ResponseStats


@pytest.fixture
def runner():
    return CliRunner(env={"OLLAMA_HOST": None})


@pytest.fixture
def session():
    mock = MagicMock()
    mock.active_model = "llama3:8b"
    mock.server_url = "http://localhost:11434"
    mock.history = ()
    with patch("ollama_session.cli.Session", return_value=mock) as factory:
        mock.factory = factory
        yield mock


class TestParseOption:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("temperature=0.2", ("temperature", 0.2)),
            ("num_ctx=4096", ("num_ctx", 4096)),
            ("use_mmap=false", ("use_mmap", False)),
            ("seed=", ("seed", None)),
            (" top_k = 5", ("top_k", 5)),
        ],
    )
    def test_typed_values(self, raw, expected):
        assert _parse_option(raw) == expected

    @pytest.mark.parametrize("raw", ["temperature", "=1", "top_p=high"])
    def test_malformed(self, raw):
        with pytest.raises(click.BadParameter):
            _parse_option(raw)


class TestAsk:
    def test_prints_reply(self, runner, session):
        session.query.return_value = Reply(text="The **answer**", thinking="let me see")
        result = runner.invoke(
            cli, ["ask", "why?", "-m", "llama3:8b", "-o", "temperature=0.1", "--think", "high"]
        )
        assert result.exit_code == 0, result.output
        assert "answer" in result.output
        assert "let me see" in result.output
        session.factory.assert_called_once_with(None, model="llama3:8b", mode="query")
        session.set_options.assert_called_once_with(temperature=0.1)
        assert session.thinking == "high"
        session.query.assert_called_once_with("why?", None)

    def test_hide_thinking_and_stats(self, runner, session):
        session.query.return_value = Reply(text="42", thinking="secret")
        session.last_stats = ResponseStats(model="llama3:8b", eval_count=7)
        result = runner.invoke(cli, ["ask", "q", "-m", "m", "--hide-thinking", "--stats"])
        assert result.exit_code == 0, result.output
        assert "secret" not in result.output
        assert "Evaluation count" in result.output

    def test_images_forwarded(self, runner, session):
        session.query.return_value = Reply(text="a cat")
        runner.invoke(cli, ["ask", "what?", "-m", "m", "--image", "abc", "--image", "def"])
        session.query.assert_called_once_with("what?", ["abc", "def"])

    def test_session_error_exits_nonzero(self, runner, session):
        session.query.side_effect = RemoteError("generate: boom")
        result = runner.invoke(cli, ["ask", "q", "-m", "m"])
        assert result.exit_code == 1
        assert "boom" in result.output

    def test_invalid_image_reported_cleanly(self, runner, session):
        session.query.side_effect = ValidationError(
            "image data is neither a file name nor valid base64.", field="images"
        )
        result = runner.invoke(cli, ["ask", "what?", "-m", "m", "--image", "notbase64!"])
        assert result.exit_code == 1
        assert "valid base64" in result.output
        assert not isinstance(result.exception, ValidationError)

    def test_unreachable_server(self, runner):
        with patch("ollama_session.cli.Session", side_effect=UnavailableError("no server")):
            result = runner.invoke(cli, ["--host", "http://nowhere:1", "ask", "q", "-m", "m"])
        assert result.exit_code == 1
        assert "no server" in result.output


class TestManagement:
    def test_models_table(self, runner, session):
        session.describe_models.return_value = [
            ModelSummary("llama3:8b", family="llama", size_bytes=4_700_000_000),
        ]
        result = runner.invoke(cli, ["models"])
        assert result.exit_code == 0, result.output
        assert "llama3:8b" in result.output
        assert "4.70" in result.output
        session.describe_models.assert_called_once_with(running=False)

    def test_no_models(self, runner, session):
        session.describe_models.return_value = []
        result = runner.invoke(cli, ["models", "--running"])
        assert "No models found" in result.output

    def test_show_by_index(self, runner, session):
        session.model_info.return_value = ModelInfo("llama3:8b", capabilities=("completion", "tools"))
        result = runner.invoke(cli, ["show", "2"])
        assert result.exit_code == 0, result.output
        session.model_info.assert_called_once_with(2)
        assert "completion, tools" in result.output

    def test_copy(self, runner, session):
        result = runner.invoke(cli, ["copy", "1", "mine"])
        assert result.exit_code == 0, result.output
        session.copy_model.assert_called_once_with(1, "mine")

    def test_rm_failure(self, runner, session):
        session.delete_model.side_effect = RemoteError("delete: not found")
        result = runner.invoke(cli, ["rm", "ghost"])
        assert result.exit_code == 1
        assert "not found" in result.output

    def test_status(self, runner):
        with patch("ollama_session.cli.OllamaTransport") as transport_cls:
            transport_cls.return_value.server_version.return_value = "0.12.3"
            transport_cls.return_value.host = "http://localhost:11434"
            result = runner.invoke(cli, ["status"])
        assert result.exit_code == 0, result.output
        assert "0.12.3" in result.output


class TestChat:
    def test_conversation_and_commands(self, runner, session):
        session.chat.return_value = Reply(text="Hello human")
        stdin = "hi there\n\n/undo\n/new\nbye\n/send\n"
        result = runner.invoke(cli, ["chat", "-m", "llama3:8b"], input=stdin)
        assert result.exit_code == 0, result.output
        assert [c.args[0] for c in session.chat.call_args_list] == ["hi there", "bye"]
        assert session.clear_history.call_args_list[0].args == ("last",)
        assert session.clear_history.call_args_list[1].args == ()
        assert "Hello human" in result.output
        assert "Good" in result.output

    def test_error_keeps_loop_alive(self, runner, session):
        session.chat.side_effect = [RemoteError("chat: boom"), Reply(text="recovered")]
        result = runner.invoke(cli, ["chat", "-m", "m"], input="one\n\ntwo\n\n")
        assert result.exit_code == 0, result.output
        assert "boom" in result.output
        assert "recovered" in result.output


class TestEmbed:
    def test_prints_vectors(self, runner, session):
        session.embed.return_value = [[0.5, 0.25]]
        result = runner.invoke(cli, ["embed", "hello", "-m", "nomic", "--dims", "2"])
        assert result.exit_code == 0, result.output
        assert "[[0.5, 0.25]]" in result.output
        session.factory.assert_called_once_with(None, model="nomic", mode="embed")
        session.embed.assert_called_once_with(["hello"], 2)
