import json
import sys
import textwrap
from pathlib import Path

import pytest

from common.config import EngineSettings
from common.schemas import Language
from transcriber.bridge import RecognitionBridge, normalize_language, parse_engine_output
from transcriber.errors import (
    AudioStorageError,
    EngineEnvironmentError,
    EngineInvocationError,
    EngineOutputError,
    EngineTimeoutError,
)
from transcriber.models import AudioSegment

# Every fake engine records the audio path it was given and whether the file existed.
ENGINE_HEADER = """\
import json, pathlib, sys
audio = pathlib.Path(sys.argv[1])
pathlib.Path(__file__).with_name("seen.json").write_text(json.dumps(
    {"path": str(audio), "existed": audio.exists(), "argv": sys.argv[1:]}
))
"""

OK_RECORD = {
    "schema_version": 1,
    "success": True,
    "text": "We use Kubernetes in production",
    "confidence": 0.87,
    "language": "english",
    "word_timestamps": [{"word": "We", "start": 0.0, "end": 0.2}],
}


def make_bridge(tmp_path: Path, body: str, timeout_s: float = 10.0, **overrides) -> RecognitionBridge:
    script = tmp_path / "engine.py"
    script.write_text(ENGINE_HEADER + textwrap.dedent(body))
    settings = EngineSettings(
        python_path=overrides.pop("python_path", sys.executable),
        script_path=str(script),
        scratch_dir=overrides.pop("scratch_dir", tmp_path / "scratch"),
        timeout_s=timeout_s,
        **overrides,
    )
    return RecognitionBridge(settings)


def seen(tmp_path: Path) -> dict:
    return json.loads((tmp_path / "seen.json").read_text())


def assert_no_temp_files(tmp_path: Path) -> None:
    assert not Path(seen(tmp_path)["path"]).exists()
    assert list((tmp_path / "scratch").glob("*.wav")) == []


class TestInvoke:
    @pytest.mark.asyncio
    async def test_success(self, tmp_path):
        bridge = make_bridge(tmp_path, f"print(json.dumps({OK_RECORD!r}))")
        result = await bridge.invoke(AudioSegment(audio=b"RIFF...."), "the prompt")

        assert result.text == "We use Kubernetes in production"
        assert result.confidence == pytest.approx(0.87)
        assert result.language == Language.en
        assert result.word_timestamps[0].word == "We"
        assert result.latency_ms > 0

        info = seen(tmp_path)
        assert info["existed"] is True
        assert info["argv"][1:] == ["--model", "large-v3", "--faster", "--context", "the prompt"]
        assert_no_temp_files(tmp_path)

    @pytest.mark.asyncio
    async def test_unrecognized_language_becomes_mixed(self, tmp_path):
        record = dict(OK_RECORD, language="french")
        bridge = make_bridge(tmp_path, f"print(json.dumps({record!r}))")
        result = await bridge.invoke(AudioSegment(audio=b"x"), "p")
        assert result.language == Language.mixed

    @pytest.mark.asyncio
    async def test_log_lines_before_record_are_ignored(self, tmp_path):
        bridge = make_bridge(tmp_path, f"print('loading model...')\nprint(json.dumps({OK_RECORD!r}))")
        result = await bridge.invoke(AudioSegment(audio=b"x"), "p")
        assert result.text == OK_RECORD["text"]

    @pytest.mark.asyncio
    async def test_nonzero_exit(self, tmp_path):
        bridge = make_bridge(tmp_path, "sys.stderr.write('CUDA out of memory')\nsys.exit(3)")
        with pytest.raises(EngineInvocationError) as exc_info:
            await bridge.invoke(AudioSegment(audio=b"x"), "p")

        assert exc_info.value.exit_code == 3
        assert "CUDA out of memory" in exc_info.value.stderr
        assert not isinstance(exc_info.value, EngineTimeoutError)
        assert_no_temp_files(tmp_path)

    @pytest.mark.asyncio
    async def test_malformed_output(self, tmp_path):
        bridge = make_bridge(tmp_path, "print('{not json')")
        with pytest.raises(EngineOutputError) as exc_info:
            await bridge.invoke(AudioSegment(audio=b"x"), "p")
        assert "{not json" in exc_info.value.raw
        assert_no_temp_files(tmp_path)

    @pytest.mark.asyncio
    async def test_missing_required_fields(self, tmp_path):
        bridge = make_bridge(tmp_path, "print(json.dumps({'text': 'hi'}))")
        with pytest.raises(EngineOutputError):
            await bridge.invoke(AudioSegment(audio=b"x"), "p")
        assert_no_temp_files(tmp_path)

    @pytest.mark.asyncio
    async def test_reported_failure(self, tmp_path):
        bridge = make_bridge(tmp_path, "print(json.dumps({'success': False, 'error': 'model missing'}))")
        with pytest.raises(EngineInvocationError, match="model missing"):
            await bridge.invoke(AudioSegment(audio=b"x"), "p")
        assert_no_temp_files(tmp_path)

    @pytest.mark.asyncio
    async def test_timeout_kills_process(self, tmp_path):
        bridge = make_bridge(tmp_path, "import time\ntime.sleep(30)", timeout_s=0.5)
        with pytest.raises(EngineTimeoutError):
            await bridge.invoke(AudioSegment(audio=b"x"), "p")
        assert_no_temp_files(tmp_path)

    @pytest.mark.asyncio
    async def test_spawn_failure(self, tmp_path):
        bridge = make_bridge(tmp_path, "", python_path=str(tmp_path / "no-such-python"))
        with pytest.raises(EngineInvocationError, match="spawn"):
            await bridge.invoke(AudioSegment(audio=b"x"), "p")
        assert list((tmp_path / "scratch").glob("*.wav")) == []

    @pytest.mark.asyncio
    async def test_write_failure(self, tmp_path):
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("")
        bridge = make_bridge(tmp_path, "", scratch_dir=blocker / "scratch")
        with pytest.raises(AudioStorageError):
            await bridge.invoke(AudioSegment(audio=b"x"), "p")
        assert not (tmp_path / "seen.json").exists()

    def test_variant_flag_can_be_disabled(self, tmp_path):
        bridge = make_bridge(tmp_path, "", engine_variant="")
        cmd = bridge.build_command(Path("/tmp/a.wav"), "prompt")
        assert cmd[2:] == ["/tmp/a.wav", "--model", "large-v3", "--context", "prompt"]

    def test_temp_names_are_unique(self, tmp_path):
        bridge = make_bridge(tmp_path, "")
        names = {bridge._temp_path().name for _ in range(500)}
        assert len(names) == 500


class TestInitialize:
    @pytest.mark.asyncio
    async def test_validates_runtime_and_runs_canary(self, tmp_path):
        record = dict(OK_RECORD, text="", confidence=0.0)
        bridge = make_bridge(tmp_path, f"print(json.dumps({record!r}))")
        await bridge.initialize()

        info = seen(tmp_path)
        assert info["argv"][-1] == "Test initialization"
        assert_no_temp_files(tmp_path)

    @pytest.mark.asyncio
    async def test_missing_runtime_is_fatal(self, tmp_path):
        bridge = make_bridge(tmp_path, "", python_path=str(tmp_path / "no-such-python"))
        with pytest.raises(EngineEnvironmentError, match="runtime not found"):
            await bridge.initialize()

    @pytest.mark.asyncio
    async def test_missing_script_is_fatal(self, tmp_path):
        bridge = make_bridge(tmp_path, "")
        bridge.settings.script_path = str(tmp_path / "missing.py")
        with pytest.raises(EngineEnvironmentError, match="script not found"):
            await bridge.initialize()

    @pytest.mark.asyncio
    async def test_canary_failure_is_fatal(self, tmp_path):
        bridge = make_bridge(tmp_path, "sys.stderr.write('no model')\nsys.exit(1)")
        with pytest.raises(EngineEnvironmentError) as exc_info:
            await bridge.initialize()
        assert isinstance(exc_info.value.__cause__, EngineInvocationError)
        assert_no_temp_files(tmp_path)


class TestParsing:
    def test_normalize_language(self):
        assert normalize_language("ru") == Language.ru
        assert normalize_language("Russian") == Language.ru
        assert normalize_language("EN") == Language.en
        assert normalize_language("english") == Language.en
        assert normalize_language("french") == Language.mixed
        assert normalize_language(None) == Language.mixed

    def test_empty_output(self):
        with pytest.raises(EngineOutputError, match="no output"):
            parse_engine_output("\n  \n")

    def test_unsupported_schema_version(self):
        with pytest.raises(EngineOutputError):
            parse_engine_output(json.dumps(dict(OK_RECORD, schema_version=2)))

    def test_confidence_out_of_range(self):
        with pytest.raises(EngineOutputError):
            parse_engine_output(json.dumps(dict(OK_RECORD, confidence=1.5)))

    def test_word_timestamps_optional(self):
        record = {k: v for k, v in OK_RECORD.items() if k != "word_timestamps"}
        output = parse_engine_output(json.dumps(record))
        assert output.word_timestamps == []
