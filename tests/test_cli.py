from pathlib import Path
import textwrap

from typer.testing import CliRunner

from fnmanifest.cli import app

runner = CliRunner()


def write(p: Path, s: str) -> None:
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(textwrap.dedent(s), encoding="utf-8")


def test_build_writes_manifest(tmp_path: Path):
    write(tmp_path / "main.py", 'firebase.https.on_request(name="helloWorld", handler=h)\n')
    out = tmp_path / "dist-manifest" / "functions.yaml"

    result = runner.invoke(app, ["build", str(tmp_path), "--out", str(out)])

    assert result.exit_code == 0, result.output
    assert "Endpoints:" in result.output
    assert out.read_text(encoding="utf-8").startswith("specVersion: v1alpha1\n")


def test_build_failure_exits_non_zero(tmp_path: Path):
    write(tmp_path / "a.py", 'firebase.https.on_request(name="dup", handler=h)\n')
    write(tmp_path / "b.py", 'firebase.https.on_request(name="dup", handler=h)\n')

    result = runner.invoke(app, ["build", str(tmp_path)])

    assert result.exit_code == 1
    assert "DuplicateEndpointKey" in result.output
    assert not (tmp_path / ".fnmanifest").exists()


def test_build_rejects_bad_format(tmp_path: Path):
    result = runner.invoke(app, ["build", str(tmp_path), "--format", "xml"])
    assert result.exit_code == 1
    assert "ConfigError" in result.output


def test_endpoints_lists_without_writing(tmp_path: Path):
    write(
        tmp_path / "main.py",
        """
        @pubsub_fn.on_message_published(topic="jobs")
        def on_job(event):
            pass
        """,
    )

    result = runner.invoke(app, ["endpoints", str(tmp_path), "--format", "json"])

    assert result.exit_code == 0, result.output
    assert '"onMessagePublished_jobs"' in result.output
    assert not (tmp_path / ".fnmanifest").exists()


def test_missing_project_path(tmp_path: Path):
    result = runner.invoke(app, ["build", str(tmp_path / "missing")])
    assert result.exit_code == 2


def test_ping():
    result = runner.invoke(app, ["ping"])
    assert result.exit_code == 0
    assert "pong" in result.output
