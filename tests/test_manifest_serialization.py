from pathlib import Path

import pytest
import yaml

from fnmanifest.domain.values import (
    RESET,
    Literal,
    Param,
    ParamKind,
    ParamRef,
    SourceLocation,
    Ternary,
    literal_list,
    literal_map,
)
from fnmanifest.manifest.assemble import assemble_manifest
from fnmanifest.manifest.serialize import (
    dump_manifest,
    endpoint_to_wire,
    param_to_wire,
    render_value,
    write_atomic,
)
from fnmanifest.manifest.triggers import CallableTrigger, Endpoint, HttpsTrigger

LOC = SourceLocation("main.py", 1, 1)


def test_render_param_refs_and_ternaries():
    assert render_value(ParamRef("MIN")) == "{{ params.MIN }}"
    flag = ParamRef("IS_PRODUCTION")
    assert render_value(Ternary(flag, Literal(2048), Literal(512))) == (
        "{{ params.IS_PRODUCTION ? 2048 : 512 }}"
    )
    assert render_value(Ternary(flag, Literal("prod"), ParamRef("OTHER"))) == (
        '{{ params.IS_PRODUCTION ? "prod" : params.OTHER }}'
    )
    assert render_value(Ternary(flag, Literal(True), Literal(False))) == (
        "{{ params.IS_PRODUCTION ? true : false }}"
    )


def test_render_containers_and_scalars():
    value = literal_map({"a": literal_list([Literal(1), ParamRef("X")]), "b": Literal(False)})
    assert render_value(value) == {"a": [1, "{{ params.X }}"], "b": False}
    with pytest.raises(TypeError):
        render_value(RESET)


def test_param_to_wire_skips_absent_fields():
    assert param_to_wire(Param("API_KEY", ParamKind.SECRET)) == {"name": "API_KEY", "type": "secret"}
    assert param_to_wire(
        Param("CFG", ParamKind.SECRET, format="json", description="service config")
    ) == {"name": "CFG", "type": "secret", "format": "json", "description": "service config"}
    assert param_to_wire(Param("MIN", ParamKind.INT, default=Literal(0), label="Min")) == {
        "name": "MIN",
        "type": "int",
        "default": 0,
        "label": "Min",
    }


def test_reset_options_never_reach_the_wire():
    e = Endpoint(
        key="a",
        entry_point="a",
        region=None,
        trigger=HttpsTrigger(),
        location=LOC,
        options={"maxInstances": RESET, "minInstances": Literal(1)},
    )
    assert endpoint_to_wire(e) == {
        "entryPoint": "a",
        "platform": "gcfv2",
        "minInstances": 1,
        "httpsTrigger": {},
    }


def test_dump_manifest_top_level_order():
    m = assemble_manifest(
        [],
        [Endpoint("b", "b", literal_list([Literal("us-central1")]), CallableTrigger(), LOC)],
    )
    text = dump_manifest(m)
    assert text.startswith("specVersion: v1alpha1\nrequiredAPIs:\n")
    doc = yaml.safe_load(text)
    assert list(doc) == ["specVersion", "requiredAPIs", "endpoints"]
    assert doc["endpoints"]["b"] == {
        "entryPoint": "b",
        "platform": "gcfv2",
        "region": ["us-central1"],
        "callableTrigger": {},
    }


def test_empty_manifest_keeps_endpoints_map():
    text = dump_manifest(assemble_manifest([], []), "json")
    assert '"endpoints": {}' in text
    assert '"params"' not in text
    with pytest.raises(ValueError):
        dump_manifest(assemble_manifest([], []), "toml")


def test_write_atomic_replaces_and_leaves_no_temp_files(tmp_path: Path):
    target = tmp_path / "out" / "functions.yaml"
    write_atomic(target, "first\n")
    write_atomic(target, "second\n")
    assert target.read_text(encoding="utf-8") == "second\n"
    assert [p.name for p in target.parent.iterdir()] == ["functions.yaml"]


def test_write_atomic_failed_replace_keeps_previous_file(tmp_path: Path, monkeypatch):
    target = tmp_path / "functions.yaml"
    write_atomic(target, "first\n")

    def fail(src, dst):
        raise OSError("disk full")

    monkeypatch.setattr("fnmanifest.manifest.serialize.os.replace", fail)
    with pytest.raises(OSError):
        write_atomic(target, "second\n")
    assert target.read_text(encoding="utf-8") == "first\n"
    assert [p.name for p in tmp_path.iterdir()] == ["functions.yaml"]
