import json

import pytest

import braindump.cli as cli
from braindump import audio_processor
from braindump.models import TranscriptionResult

from conftest import FakeApi


def test_run_prints_structured_output(tmp_path, monkeypatch, capsys):
    recording = tmp_path / "opptak.wav"
    recording.write_bytes(b"RIFF")
    api = FakeApi()
    monkeypatch.setattr(cli, "ApiClient", lambda settings: api)

    code = cli.main(
        ["run", str(recording), "--name", "Q3 ideas", "--description", "Team offsite", "--objective", "Bets", "--save"]
    )

    assert code == 0
    output = json.loads(capsys.readouterr().out)
    assert output["id"] == "session-1"
    assert output["structuredOutput"]["categories"]


def test_run_reports_transcription_failure(tmp_path, monkeypatch, capsys):
    recording = tmp_path / "opptak.wav"
    recording.write_bytes(b"RIFF")
    api = FakeApi(transcription=TranscriptionResult.failure("Transcript was empty"))
    monkeypatch.setattr(cli, "ApiClient", lambda settings: api)

    code = cli.main(["run", str(recording), "--name", "n", "--description", "d", "--objective", "o"])
    assert code == 1
    assert "Transcript was empty" in capsys.readouterr().out


def test_no_command_prints_help(capsys):
    assert cli.main([]) == 1
    assert "usage: braindump" in capsys.readouterr().out


@pytest.mark.parametrize(
    "name, content_type",
    [("opptak.mp4", "audio/m4a"), ("opptak.OPUS", "audio/ogg"), ("opptak.webm", "audio/webm")],
)
def test_content_type_comes_from_the_extension(name, content_type):
    assert cli._guess_content_type(name) == content_type


def test_every_mapped_extension_is_accepted_by_the_server():
    for ext, content_type in cli._CONTENT_TYPES.items():
        assert audio_processor.is_allowed_content_type(content_type)
        assert ext in audio_processor.SUPPORTED_EXTENSIONS


def test_run_refuses_unknown_audio_type(tmp_path, monkeypatch, capsys):
    recording = tmp_path / "opptak.mov"
    recording.write_bytes(b"\x00")
    api = FakeApi()
    monkeypatch.setattr(cli, "ApiClient", lambda settings: api)

    code = cli.main(["run", str(recording), "--name", "n", "--description", "d", "--objective", "o"])
    assert code == 1
    assert "Unsupported audio file" in capsys.readouterr().out
