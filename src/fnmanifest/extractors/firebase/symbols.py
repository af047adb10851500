from __future__ import annotations

import ast
import dataclasses
from dataclasses import dataclass
from types import MappingProxyType
from typing import Iterable, Iterator, Mapping, Optional

from fnmanifest.domain.errors import DuplicateParamDeclaration, UnsupportedExpression
from fnmanifest.domain.values import Param, ParamKind, SourceLocation
from fnmanifest.extractors.firebase.registry import param_factory


@dataclass(frozen=True)
class ImportBinding:
    module: str  # absolute dotted module name
    name: Optional[str]  # None for `import a.b as c`


@dataclass(frozen=True)
class ParamDecl:
    name: str
    kind: ParamKind
    format: Optional[str]
    call: ast.Call
    location: SourceLocation
    var: Optional[str] = None  # module-level variable bound to the declaration


@dataclass(frozen=True)
class ModuleSymbols:
    """
    Module-level bindings gathered from one parsed source file.

    ``assigns`` only holds names assigned exactly once at module level, so a
    value found there can be folded. Everything else the module binds is in
    ``bound`` and is treated as non-constant.
    """

    module: str
    rel_path: str
    is_package: bool
    assigns: Mapping[str, ast.expr]
    classes: Mapping[str, Mapping[str, ast.expr]]
    imports: Mapping[str, ImportBinding]
    bound: frozenset[str]
    params: tuple[ParamDecl, ...]
    param_vars: Mapping[str, str]
    attr_stores: frozenset[tuple[str, str]] = frozenset()

    def location(self, node: ast.AST) -> SourceLocation:
        return location_of(self.rel_path, node)


def location_of(rel_path: str, node: ast.AST) -> SourceLocation:
    return SourceLocation(
        rel_path=rel_path,
        line=getattr(node, "lineno", 1) or 1,
        col=(getattr(node, "col_offset", 0) or 0) + 1,
    )


def module_name_for(rel_path: str) -> tuple[str, bool]:
    # app/config.py -> ("app.config", False); app/__init__.py -> ("app", True)
    parts = rel_path[:-3].split("/") if rel_path.endswith(".py") else rel_path.split("/")
    if parts and parts[-1] == "__init__":
        return ".".join(parts[:-1]), True
    return ".".join(parts), False


def _module_statements(body: Iterable[ast.stmt]) -> Iterator[ast.stmt]:
    # statements executed at module level, including those nested in if/try/with/for
    for stmt in body:
        yield stmt
        if isinstance(stmt, (ast.If, ast.For, ast.AsyncFor, ast.While)):
            yield from _module_statements(stmt.body)
            yield from _module_statements(stmt.orelse)
        elif isinstance(stmt, (ast.With, ast.AsyncWith)):
            yield from _module_statements(stmt.body)
        elif isinstance(stmt, ast.Try):
            yield from _module_statements(stmt.body)
            for handler in stmt.handlers:
                yield from _module_statements(handler.body)
            yield from _module_statements(stmt.orelse)
            yield from _module_statements(stmt.finalbody)


def _target_names(target: ast.AST) -> Iterator[str]:
    for node in ast.walk(target):
        if isinstance(node, ast.Name):
            yield node.id


def _statement_targets(stmt: ast.stmt) -> Iterator[str]:
    if isinstance(stmt, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef)):
        yield stmt.name
    elif isinstance(stmt, ast.Assign):
        for target in stmt.targets:
            yield from _target_names(target)
    elif isinstance(stmt, (ast.AnnAssign, ast.AugAssign)):
        yield from _target_names(stmt.target)
    elif isinstance(stmt, (ast.For, ast.AsyncFor)):
        yield from _target_names(stmt.target)
    elif isinstance(stmt, (ast.With, ast.AsyncWith)):
        for item in stmt.items:
            if item.optional_vars is not None:
                yield from _target_names(item.optional_vars)
    elif isinstance(stmt, (ast.Import, ast.ImportFrom)):
        for alias in stmt.names:
            yield (alias.asname or alias.name).split(".")[0]


def _resolve_relative(module: str, is_package: bool, level: int, target: Optional[str]) -> str:
    base = module.split(".") if module else []
    if not is_package and base:
        base = base[:-1]
    if level > 1:
        base = base[: max(len(base) - (level - 1), 0)]
    if target:
        base = base + target.split(".")
    return ".".join(base)


def bound_names(body: Iterable[ast.stmt]) -> Iterator[str]:
    """
    Names bound by statements in a scope, without descending into nested
    function or class bodies.
    """
    stack: list[ast.AST] = list(body)
    while stack:
        node = stack.pop()
        if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef)):
            yield node.name
            continue
        if isinstance(node, ast.Lambda):
            continue
        if isinstance(node, ast.Name) and isinstance(node.ctx, (ast.Store, ast.Del)):
            yield node.id
        elif isinstance(node, (ast.Import, ast.ImportFrom)):
            for alias in node.names:
                yield (alias.asname or alias.name).split(".")[0]
        elif isinstance(node, ast.ExceptHandler) and node.name:
            yield node.name
        stack.extend(ast.iter_child_nodes(node))


def declared_param(node: ast.AST, rel_path: str) -> Optional[ParamDecl]:
    if not isinstance(node, ast.Call):
        return None
    factory = param_factory(node)
    if factory is None:
        return None

    name_node: Optional[ast.expr] = node.args[0] if node.args else None
    for kw in node.keywords:
        if kw.arg == "name":
            name_node = kw.value
    if not (isinstance(name_node, ast.Constant) and isinstance(name_node.value, str)):
        raise UnsupportedExpression(
            "param name must be a string literal", location_of(rel_path, node)
        )

    kind, fmt = factory
    return ParamDecl(
        name=name_node.value,
        kind=kind,
        format=fmt,
        call=node,
        location=location_of(rel_path, node),
    )


def collect_symbols(tree: ast.Module, rel_path: str) -> ModuleSymbols:
    module, is_package = module_name_for(rel_path)

    assign_counts: dict[str, int] = {}
    assigns: dict[str, ast.expr] = {}
    classes: dict[str, Mapping[str, ast.expr]] = {}
    imports: dict[str, ImportBinding] = {}
    param_vars: dict[str, str] = {}

    statements = list(_module_statements(tree.body))
    for stmt in statements:
        if isinstance(stmt, ast.Assign) and len(stmt.targets) == 1 and isinstance(stmt.targets[0], ast.Name):
            assigns[stmt.targets[0].id] = stmt.value
        elif isinstance(stmt, ast.AnnAssign) and isinstance(stmt.target, ast.Name) and stmt.value is not None:
            assigns[stmt.target.id] = stmt.value
        elif isinstance(stmt, ast.ClassDef):
            body: dict[str, ast.expr] = {}
            for item in stmt.body:
                if isinstance(item, ast.Assign) and len(item.targets) == 1 and isinstance(item.targets[0], ast.Name):
                    body[item.targets[0].id] = item.value
                elif isinstance(item, ast.AnnAssign) and isinstance(item.target, ast.Name) and item.value is not None:
                    body[item.target.id] = item.value
            classes[stmt.name] = MappingProxyType(body)
        elif isinstance(stmt, ast.ImportFrom):
            source = (
                _resolve_relative(module, is_package, stmt.level, stmt.module)
                if stmt.level
                else (stmt.module or "")
            )
            for alias in stmt.names:
                if alias.name == "*":
                    continue
                imports[alias.asname or alias.name] = ImportBinding(source, alias.name)
        elif isinstance(stmt, ast.Import):
            for alias in stmt.names:
                if alias.asname:
                    imports[alias.asname] = ImportBinding(alias.name, None)
                else:
                    head = alias.name.split(".")[0]
                    imports[head] = ImportBinding(head, None)

    # names bound more than once at module level cannot be folded
    for stmt in statements:
        for name in _statement_targets(stmt):
            assign_counts[name] = assign_counts.get(name, 0) + 1
    for name, count in assign_counts.items():
        if count > 1:
            assigns.pop(name, None)

    # `global NAME` in a function rebinds a module name, `Owner.attr = ...` an attribute
    global_names: set[str] = set()
    attr_stores: set[tuple[str, str]] = set()
    for node in ast.walk(tree):
        if isinstance(node, ast.Global):
            global_names.update(node.names)
        elif (
            isinstance(node, ast.Attribute)
            and isinstance(node.ctx, (ast.Store, ast.Del))
            and isinstance(node.value, ast.Name)
        ):
            attr_stores.add((node.value.id, node.attr))
    for name in global_names:
        assigns.pop(name, None)
    for owner, attr in attr_stores:
        if owner in classes and attr in classes[owner]:
            classes[owner] = MappingProxyType(
                {k: v for k, v in classes[owner].items() if k != attr}
            )

    bound = set(bound_names(tree.body)) | global_names

    # params: every declaration in the module, in source order
    decls: list[ParamDecl] = []
    for node in ast.walk(tree):
        decl = declared_param(node, rel_path)
        if decl is not None:
            decls.append(decl)
    decls.sort(key=lambda d: (d.location.line, d.location.col))

    for var, value in assigns.items():
        decl = declared_param(value, rel_path)
        if decl is not None:
            param_vars[var] = decl.name
    var_by_param = {v: k for k, v in param_vars.items()}
    decls = [dataclasses.replace(d, var=var_by_param.get(d.name)) for d in decls]

    return ModuleSymbols(
        module=module,
        rel_path=rel_path,
        is_package=is_package,
        assigns=MappingProxyType(assigns),
        classes=MappingProxyType(classes),
        imports=MappingProxyType(imports),
        bound=frozenset(bound),
        params=tuple(decls),
        param_vars=MappingProxyType(param_vars),
        attr_stores=frozenset(attr_stores),
    )


class ParamTable:
    """
    Process-wide registry of declared params, in declaration order.

    Built once after every module has been scanned and then threaded through
    evaluation explicitly. A param name may be declared only once.
    """

    def __init__(self) -> None:
        self._params: dict[str, Param] = {}

    def declare(self, param: Param) -> None:
        existing = self._params.get(param.name)
        if existing is not None:
            raise DuplicateParamDeclaration(
                f"param {param.name!r} is already declared at {existing.location}",
                param.location,
            )
        self._params[param.name] = param

    def complete(self, param: Param) -> None:
        # replace a declared entry with its evaluated options, keeping order
        if param.name not in self._params:
            raise KeyError(param.name)
        self._params[param.name] = param

    def get(self, name: str) -> Optional[Param]:
        return self._params.get(name)

    def kind_of(self, name: str) -> Optional[ParamKind]:
        param = self._params.get(name)
        return param.kind if param is not None else None

    def __contains__(self, name: object) -> bool:
        return name in self._params

    def __iter__(self) -> Iterator[Param]:
        return iter(list(self._params.values()))

    def __len__(self) -> int:
        return len(self._params)


class SymbolIndex:
    """Cross-module lookup over every scanned module."""

    def __init__(self, modules: Iterable[ModuleSymbols], params: ParamTable) -> None:
        self.params = params
        self._by_name: dict[str, ModuleSymbols] = {}
        for symbols in modules:
            self._by_name.setdefault(symbols.module, symbols)
        self._rebound = self._collect_rebound()

    def module(self, dotted: str) -> Optional[ModuleSymbols]:
        found = self._by_name.get(dotted)
        if found is not None:
            return found
        # src/ layouts: "pkg.config" is scanned as "src.pkg.config"
        suffix = "." + dotted
        matches = sorted(
            (name for name in self._by_name if name.endswith(suffix)),
            key=lambda n: (len(n), n),
        )
        return self._by_name[matches[0]] if matches else None

    def imported_module(self, symbols: ModuleSymbols, name: str) -> Optional[ModuleSymbols]:
        # `import app.settings as s` or `from app import settings`
        binding = symbols.imports.get(name)
        if binding is None:
            return None
        if binding.name is None:
            return self.module(binding.module)
        package = self.module(binding.module)
        if package is not None and binding.name in package.bound:
            return None
        return self.module(f"{binding.module}.{binding.name}")

    def _collect_rebound(self) -> frozenset[tuple[str, str]]:
        # (module, "NAME") or (module, "Class.ATTR") stored to from another module
        rebound: set[tuple[str, str]] = set()
        for symbols in self._by_name.values():
            for owner, attr in symbols.attr_stores:
                target = self.imported_module(symbols, owner)
                if target is not None:
                    rebound.add((target.module, attr))
                    continue
                binding = symbols.imports.get(owner)
                if binding is None or binding.name is None:
                    continue
                source = self.module(binding.module)
                if source is not None and binding.name in source.classes:
                    rebound.add((source.module, f"{binding.name}.{attr}"))
        return frozenset(rebound)

    def is_rebound(self, module: str, name: str) -> bool:
        return (module, name) in self._rebound
