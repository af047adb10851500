from __future__ import annotations

import ast
import logging
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Mapping, Optional, Union

from fnmanifest.domain.errors import SourceSyntaxError
from fnmanifest.domain.values import SourceLocation
from fnmanifest.extractors.firebase.registry import TriggerMethod, match_registration
from fnmanifest.extractors.firebase.symbols import (
    ModuleSymbols,
    bound_names,
    collect_symbols,
    declared_param,
    location_of,
)
from fnmanifest.repo.scanner import rel_posix

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class CallSite:
    """
    One registration call found in a module.

    ``node`` is the registration expression itself: an ``ast.Call`` for the
    normal forms, or an ``ast.Attribute`` when a registration method is used
    as a bare decorator. ``decorated`` names the function under a decorator.
    """

    method: TriggerMethod
    node: ast.expr
    location: SourceLocation
    decorated: Optional[str] = None
    local_names: frozenset[str] = frozenset()
    local_params: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))


@dataclass(frozen=True)
class ModuleScan:
    symbols: ModuleSymbols
    call_sites: tuple[CallSite, ...]

    @property
    def rel_path(self) -> str:
        return self.symbols.rel_path


@dataclass
class _Scope:
    names: frozenset[str]
    params: dict[str, str]


def _function_scope(node: ast.AST, rel_path: str) -> _Scope:
    args = node.args  # type: ignore[attr-defined]
    names = {a.arg for a in (*args.posonlyargs, *args.args, *args.kwonlyargs)}
    if args.vararg is not None:
        names.add(args.vararg.arg)
    if args.kwarg is not None:
        names.add(args.kwarg.arg)

    params: dict[str, str] = {}
    body = node.body if isinstance(node.body, list) else [node.body]  # Lambda body is an expr
    declared_global: set[str] = set()
    for stmt in ast.walk(ast.Module(body=body, type_ignores=[])):
        if isinstance(stmt, (ast.Global, ast.Nonlocal)):
            declared_global.update(stmt.names)

    if isinstance(node.body, list):
        names.update(bound_names(body))
        for stmt in body:
            if (
                isinstance(stmt, ast.Assign)
                and len(stmt.targets) == 1
                and isinstance(stmt.targets[0], ast.Name)
            ):
                decl = declared_param(stmt.value, rel_path)
                if decl is not None:
                    params[stmt.targets[0].id] = decl.name

    names -= declared_global
    return _Scope(names=frozenset(names), params=params)


class _CallSiteVisitor(ast.NodeVisitor):
    def __init__(self, rel_path: str) -> None:
        self.rel_path = rel_path
        self.sites: list[CallSite] = []
        self._scopes: list[_Scope] = []
        self._handled: set[int] = set()

    def _record(self, method: TriggerMethod, node: ast.expr, decorated: Optional[str]) -> None:
        local_names: set[str] = set()
        local_params: dict[str, str] = {}
        for scope in self._scopes:
            local_names |= scope.names
            local_params.update(scope.params)
        self.sites.append(
            CallSite(
                method=method,
                node=node,
                location=location_of(self.rel_path, node),
                decorated=decorated,
                local_names=frozenset(local_names),
                local_params=MappingProxyType(local_params),
            )
        )

    def _visit_decorators(self, node: ast.AST, name: str) -> None:
        for dec in node.decorator_list:  # type: ignore[attr-defined]
            if isinstance(dec, ast.Call):
                method = match_registration(dec.func)
                if method is not None:
                    self._record(method, dec, decorated=name)
                    self._handled.add(id(dec))
            elif isinstance(dec, ast.Attribute):
                method = match_registration(dec)
                if method is not None:
                    self._record(method, dec, decorated=name)
            self.visit(dec)

    def visit_FunctionDef(self, node: ast.FunctionDef) -> None:
        self._visit_decorators(node, node.name)
        # defaults and annotations belong to the enclosing scope
        for default in (*node.args.defaults, *node.args.kw_defaults):
            if default is not None:
                self.visit(default)
        self._scopes.append(_function_scope(node, self.rel_path))
        for stmt in node.body:
            self.visit(stmt)
        self._scopes.pop()

    visit_AsyncFunctionDef = visit_FunctionDef  # type: ignore[assignment]

    def visit_Lambda(self, node: ast.Lambda) -> None:
        self._scopes.append(_function_scope(node, self.rel_path))
        self.visit(node.body)
        self._scopes.pop()

    def visit_ClassDef(self, node: ast.ClassDef) -> None:
        self._visit_decorators(node, node.name)
        for base in node.bases:
            self.visit(base)
        for stmt in node.body:
            self.visit(stmt)

    def visit_Call(self, node: ast.Call) -> None:
        if id(node) not in self._handled:
            method = match_registration(node.func)
            if method is not None:
                self._record(method, node, decorated=None)
        self.generic_visit(node)


def scan_module_source(source: Union[str, bytes], rel_path: str) -> ModuleScan:
    """
    Parse one module and collect its bindings and registration call sites.

    Uses ast only; the scanned code is never imported or executed. Bytes are
    decoded the way the interpreter does (BOM, ``# -*- coding: ... -*-``).
    """
    try:
        tree = ast.parse(source, filename=rel_path)
    except SyntaxError as e:
        raise SourceSyntaxError(
            e.msg or "invalid syntax",
            SourceLocation(rel_path=rel_path, line=e.lineno or 1, col=e.offset or 1),
        ) from e
    except ValueError as e:
        # undecodable bytes, null bytes on older interpreters
        raise SourceSyntaxError(
            f"cannot decode source: {e}", SourceLocation(rel_path=rel_path, line=1, col=1)
        ) from e

    symbols = collect_symbols(tree, rel_path)

    visitor = _CallSiteVisitor(rel_path)
    visitor.visit(tree)

    # stable ordering: by line, then column
    sites = sorted(visitor.sites, key=lambda s: (s.location.line, s.location.col))
    return ModuleScan(symbols=symbols, call_sites=tuple(sites))


def scan_module_file(path: Path, root: Path) -> ModuleScan:
    rel_path = rel_posix(path, root)
    scan = scan_module_source(path.read_bytes(), rel_path)
    log.debug("%s: %d registration(s)", rel_path, len(scan.call_sites))
    return scan
