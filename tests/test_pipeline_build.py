from pathlib import Path
import textwrap

import pytest
import yaml

from fnmanifest.config import BuildConfig
from fnmanifest.domain.errors import (
    DuplicateEndpointKey,
    DuplicateParamDeclaration,
    MissingRequiredArgument,
    SourceSyntaxError,
    UnrecognizedTriggerShape,
    UnsupportedExpression,
)
from fnmanifest.orchestrator.pipeline import run_build


def write(p: Path, s: str) -> None:
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(textwrap.dedent(s), encoding="utf-8")


def load(path: str) -> dict:
    return yaml.safe_load(Path(path).read_text(encoding="utf-8"))


def test_https_trigger_with_defaults(tmp_path: Path):
    write(
        tmp_path / "main.py",
        """
        from firebase_functions import https_fn

        def register(firebase):
            firebase.https.on_request(name="helloWorld", handler=hello)

        def hello(req):
            return "hi"
        """,
    )
    r = run_build(tmp_path)
    assert r.output_path == str(tmp_path.resolve() / ".fnmanifest" / "functions.yaml")
    doc = load(r.output_path)
    assert doc == {
        "specVersion": "v1alpha1",
        "requiredAPIs": [
            {"api": "cloudfunctions.googleapis.com", "reason": "Required for Cloud Functions"}
        ],
        "endpoints": {
            "helloWorld": {
                "entryPoint": "helloWorld",
                "platform": "gcfv2",
                "region": ["us-central1"],
                "httpsTrigger": {},
            }
        },
    }


def test_topic_trigger(tmp_path: Path):
    write(
        tmp_path / "main.py",
        """
        from firebase_functions import pubsub_fn

        @pubsub_fn.on_message_published(topic="my-topic")
        def on_message(event):
            pass
        """,
    )
    doc = load(run_build(tmp_path).output_path)
    trigger = doc["endpoints"]["onMessagePublished_my_topic"]["eventTrigger"]
    assert trigger["eventFilters"]["topic"] == "my-topic"
    assert trigger["retry"] is False


def test_schedule_trigger_key(tmp_path: Path):
    write(
        tmp_path / "jobs.py",
        """
        @scheduler_fn.on_schedule(schedule="0 0 * * *")
        def nightly(event):
            pass
        """,
    )
    r = run_build(tmp_path)
    assert [e.key for e in r.manifest.endpoints] == ["onSchedule_0_0___"]
    doc = load(r.output_path)
    assert doc["endpoints"]["onSchedule_0_0___"]["scheduleTrigger"] == {"schedule": "0 0 * * *"}


def test_then_else_renders_conditional_substitution(tmp_path: Path):
    write(
        tmp_path / "main.py",
        """
        from firebase_functions import params
        from firebase_functions.options import HttpsOptions

        IS_PRODUCTION = params.define_boolean("IS_PRODUCTION", default=False)

        def register(firebase):
            firebase.https.on_request(
                name="api",
                options=HttpsOptions(memory=IS_PRODUCTION.thenElse(2048, 512)),
                handler=api,
            )
        """,
    )
    r = run_build(tmp_path)
    assert "availableMemoryMb: '{{ params.IS_PRODUCTION ? 2048 : 512 }}'" in r.text
    doc = load(r.output_path)
    assert doc["params"] == [{"name": "IS_PRODUCTION", "type": "boolean", "default": False}]
    assert doc["endpoints"]["api"]["availableMemoryMb"] == "{{ params.IS_PRODUCTION ? 2048 : 512 }}"


def test_duplicate_keys_name_both_locations(tmp_path: Path):
    write(
        tmp_path / "a.py",
        """
        firebase.database.on_value_created(ref="/users/{userId}", handler=one)
        """,
    )
    write(
        tmp_path / "b.py",
        """


        firebase.database.on_value_created(ref="users/{userId}/", handler=two)
        """,
    )
    with pytest.raises(DuplicateEndpointKey) as exc:
        run_build(tmp_path)
    err = exc.value
    assert err.key == "onValueCreated_users_userId"
    assert str(err.first) == "a.py:2:1"
    assert str(err.second) == "b.py:4:1"
    assert "a.py:2:1" in str(err) and str(err).startswith("b.py:4:1")
    assert not (tmp_path / ".fnmanifest").exists()


def test_local_variable_option_is_unsupported(tmp_path: Path):
    write(
        tmp_path / "main.py",
        """
        from firebase_functions.options import HttpsOptions

        def register(firebase):
            size = pick_memory()
            firebase.https.on_request(
                name="api",
                options=HttpsOptions(memory=size),
                handler=api,
            )
        """,
    )
    with pytest.raises(UnsupportedExpression) as exc:
        run_build(tmp_path)
    assert str(exc.value.location) == "main.py:8:37"


def test_rerun_is_byte_identical(tmp_path: Path):
    write(
        tmp_path / "functions" / "main.py",
        """
        from firebase_functions import params
        from firebase_functions.options import HttpsOptions, RESET_VALUE
        from functions.settings import REGION

        MIN = params.define_int("MIN_INSTANCES", default=1, description="warm pool")

        def register(firebase):
            firebase.https.on_request(
                name="api",
                options=HttpsOptions(region=REGION, min_instances=MIN, max_instances=RESET_VALUE),
                handler=api,
            )
            firebase.firestore.on_document_written(document="orders/{orderId}", handler=orders)
        """,
    )
    write(
        tmp_path / "functions" / "settings.py",
        """
        REGION = "europe-west1"
        """,
    )
    first = run_build(tmp_path)
    text_1 = Path(first.output_path).read_bytes()
    second = run_build(tmp_path, BuildConfig(workers=1))
    text_2 = Path(second.output_path).read_bytes()
    assert text_1 == text_2
    doc = yaml.safe_load(text_1)
    assert "maxInstances" not in doc["endpoints"]["api"]
    assert doc["endpoints"]["api"]["region"] == ["europe-west1"]


def test_params_follow_file_then_source_order(tmp_path: Path):
    write(
        tmp_path / "b.py",
        """
        from firebase_functions import params
        Z = params.define_string("Z_NAME")
        A = params.define_json_secret("A_CONFIG")
        """,
    )
    write(
        tmp_path / "a.py",
        """
        from firebase_functions import params
        COUNT = params.define_int("COUNT", params.ParamOptions(default=3, label="Count"))
        """,
    )
    r = run_build(tmp_path, write=False)
    assert r.output_path is None
    assert [p.name for p in r.manifest.params] == ["COUNT", "Z_NAME", "A_CONFIG"]
    doc = yaml.safe_load(r.text)
    assert doc["params"][0] == {"name": "COUNT", "type": "int", "default": 3, "label": "Count"}
    assert doc["params"][2] == {"name": "A_CONFIG", "type": "secret", "format": "json"}
    assert doc["endpoints"] == {}


def test_duplicate_param_declaration(tmp_path: Path):
    write(tmp_path / "a.py", 'X = params.define_string("REGION")\n')
    write(tmp_path / "b.py", 'Y = params.define_string("REGION")\n')
    with pytest.raises(DuplicateParamDeclaration) as exc:
        run_build(tmp_path)
    assert exc.value.location.rel_path == "b.py"


def test_syntax_error_aborts_without_writing(tmp_path: Path):
    out = tmp_path / ".fnmanifest" / "functions.yaml"
    write(out, "previous\n")
    write(tmp_path / "good.py", 'firebase.https.on_request(name="a", handler=h)\n')
    write(tmp_path / "pkg" / "broken.py", "def oops(\n")
    with pytest.raises(SourceSyntaxError) as exc:
        run_build(tmp_path)
    assert exc.value.location.rel_path == "pkg/broken.py"
    assert out.read_text(encoding="utf-8") == "previous\n"


def test_source_encodings_follow_interpreter_rules(tmp_path: Path):
    (tmp_path / "bom.py").write_bytes(
        b'\xef\xbb\xbffirebase.https.on_request(name="fromBom", handler=h)\n'
    )
    (tmp_path / "legacy.py").write_bytes(
        b"# -*- coding: latin-1 -*-\n"
        b'GREETING = "caf\xe9"\n'
        b'firebase.https.on_request(name="fromLatin1", handler=h)\n'
    )
    doc = load(run_build(tmp_path).output_path)
    assert set(doc["endpoints"]) == {"fromBom", "fromLatin1"}

    (tmp_path / "bad.py").write_bytes(b'GREETING = "caf\xe9"\n')
    with pytest.raises(SourceSyntaxError) as exc:
        run_build(tmp_path)
    assert exc.value.location.rel_path == "bad.py"


def test_call_shape_errors(tmp_path: Path):
    write(tmp_path / "main.py", "firebase.pubsub.on_message_published(handler=h)\n")
    with pytest.raises(MissingRequiredArgument):
        run_build(tmp_path)

    write(tmp_path / "main.py", 'firebase.https.on_request(name="a", handler=h, timeout=3)\n')
    with pytest.raises(UnrecognizedTriggerShape):
        run_build(tmp_path)

    write(tmp_path / "main.py", 'firebase.https.on_request("a", h)\n')
    with pytest.raises(UnrecognizedTriggerShape):
        run_build(tmp_path)

    write(tmp_path / "main.py", 'firebase.https.on_request(name="a", options=build_opts(), handler=h)\n')
    with pytest.raises(UnrecognizedTriggerShape):
        run_build(tmp_path)


def test_module_level_options_alias_and_json_output(tmp_path: Path):
    write(
        tmp_path / "pyproject.toml",
        """
        [tool.fnmanifest]
        output = "build-out/functions.json"
        format = "json"
        """,
    )
    write(
        tmp_path / "main.py",
        """
        from firebase_functions.options import HttpsOptions, MemoryOption

        OPTS = HttpsOptions(memory=MemoryOption.MB_256, cors=["https://example.com"])

        def register(firebase):
            firebase.https.on_request(name="api", options=OPTS, handler=api, from_json=True)
        """,
    )
    r = run_build(tmp_path)
    assert r.format == "json"
    assert r.output_path == str(tmp_path.resolve() / "build-out" / "functions.json")
    assert '"availableMemoryMb": 256' in Path(r.output_path).read_text(encoding="utf-8")
    assert "cors" not in r.text


def test_output_directory_is_not_scanned(tmp_path: Path):
    write(tmp_path / "main.py", 'firebase.https.on_request(name="a", handler=h)\n')
    write(tmp_path / ".fnmanifest" / "stale.py", 'firebase.https.on_request(name="a", handler=h)\n')
    write(tmp_path / "vendor" / "copy.py", 'firebase.https.on_request(name="a", handler=h)\n')
    r = run_build(tmp_path, BuildConfig(exclude=["vendor"]))
    assert r.files_scanned == 1
    assert [e.key for e in r.manifest.endpoints] == ["a"]
