from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional

from fnmanifest.config import BuildConfig, load_config
from fnmanifest.domain.values import Param
from fnmanifest.extractors.firebase.callsites import ModuleScan, scan_module_file
from fnmanifest.extractors.firebase.evaluator import Evaluator
from fnmanifest.extractors.firebase.resolver import resolve_call, resolve_param
from fnmanifest.extractors.firebase.symbols import ParamTable, SymbolIndex
from fnmanifest.manifest.assemble import Manifest, assemble_manifest
from fnmanifest.manifest.normalize import normalize_call
from fnmanifest.manifest.serialize import dump_manifest, write_atomic
from fnmanifest.manifest.triggers import Endpoint
from fnmanifest.repo.scanner import scan_python_files

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class CompileResult:
    source_root: str
    files_scanned: int
    manifest: Manifest


@dataclass(frozen=True)
class BuildResult:
    root: str
    files_scanned: int
    manifest: Manifest
    text: str
    output_path: Optional[str]
    format: str


def build_param_table(scans: Iterable[ModuleScan]) -> ParamTable:
    """Declare every param in file order, then source order."""
    table = ParamTable()
    for scan in scans:
        for decl in scan.symbols.params:
            table.declare(
                Param(name=decl.name, kind=decl.kind, format=decl.format, location=decl.location)
            )
    return table


def _module_endpoints(scan: ModuleScan, index: SymbolIndex) -> list[Endpoint]:
    out: list[Endpoint] = []
    for site in scan.call_sites:
        ev = Evaluator(index, scan.symbols, site.local_names, site.local_params)
        resolved = resolve_call(site, ev)
        out.append(normalize_call(resolved, index.params))
    return out


def compile_manifest(root: Path, config: Optional[BuildConfig] = None) -> CompileResult:
    """
    Scan, evaluate and assemble the manifest for a source tree without
    writing anything.

    Modules are parsed in parallel. The param table is built after every
    module is parsed, then call sites are evaluated per module in parallel.
    Results are always gathered in file order, so the first error and the
    output are deterministic.
    """
    config = config or BuildConfig()
    source_root = config.source_root(root)
    files = scan_python_files(source_root, exclude=config.exclude)

    with ThreadPoolExecutor(max_workers=config.workers) as pool:
        scans = list(pool.map(lambda p: scan_module_file(p, source_root), files))

        params = build_param_table(scans)
        index = SymbolIndex((s.symbols for s in scans), params)
        for scan in scans:
            ev = Evaluator(index, scan.symbols)
            for decl in scan.symbols.params:
                params.complete(resolve_param(decl, ev))

        per_module = list(pool.map(lambda s: _module_endpoints(s, index), scans))

    endpoints = [e for batch in per_module for e in batch]
    manifest = assemble_manifest(params, endpoints)
    log.info(
        "compiled %d endpoint(s) and %d param(s) from %d file(s)",
        len(manifest.endpoints),
        len(manifest.params),
        len(files),
    )
    return CompileResult(source_root=str(source_root), files_scanned=len(files), manifest=manifest)


def run_build(root: Path, config: Optional[BuildConfig] = None, write: bool = True) -> BuildResult:
    root = root.resolve()
    config = config or load_config(root)

    compiled = compile_manifest(root, config)
    text = dump_manifest(compiled.manifest, config.format)

    output_path: Optional[Path] = None
    if write:
        output_path = config.output_path(root)
        write_atomic(output_path, text)

    return BuildResult(
        root=str(root),
        files_scanned=compiled.files_scanned,
        manifest=compiled.manifest,
        text=text,
        output_path=str(output_path) if output_path is not None else None,
        format=config.format,
    )
