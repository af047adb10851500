from __future__ import annotations

import ast
import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping, Optional, Union

from fnmanifest.domain.errors import (
    InvalidOptionValue,
    MissingRequiredArgument,
    UnrecognizedTriggerShape,
    UnsupportedExpression,
)
from fnmanifest.domain.values import (
    Literal,
    OptionValue,
    Param,
    ParamKind,
    ParamRef,
    Reset,
    SourceLocation,
)
from fnmanifest.extractors.firebase.callsites import CallSite
from fnmanifest.extractors.firebase.evaluator import Evaluator
from fnmanifest.extractors.firebase.registry import (
    RUNTIME_ONLY_ARGUMENTS,
    RUNTIME_ONLY_OPTIONS,
    TriggerMethod,
    callee_name,
    is_bundle_call,
    snake,
)
from fnmanifest.extractors.firebase.symbols import ParamDecl

log = logging.getLogger(__name__)

_MAX_ALIAS_DEPTH = 16


@dataclass(frozen=True)
class OptionBundle:
    type_name: str
    fields: Mapping[str, Union[OptionValue, "OptionBundle"]]
    location: SourceLocation


@dataclass(frozen=True)
class ResolvedCall:
    site: CallSite
    address: Optional[str]
    options: Optional[OptionBundle]
    handler: str

    @property
    def method(self) -> TriggerMethod:
        return self.site.method

    @property
    def location(self) -> SourceLocation:
        return self.site.location


def _handler_name(node: ast.expr) -> Optional[str]:
    if isinstance(node, ast.Name):
        return node.id
    if isinstance(node, ast.Attribute):
        return ast.unparse(node)
    if isinstance(node, ast.Lambda):
        return "<lambda>"
    return None


def _bundle_source(
    node: ast.expr, ev: Evaluator, depth: int = 0
) -> Optional[tuple[Evaluator, ast.Call]]:
    # an options constructor call, directly or through a module-level alias
    if is_bundle_call(node):
        return ev, node  # type: ignore[return-value]
    if depth >= _MAX_ALIAS_DEPTH or not isinstance(node, (ast.Name, ast.Attribute)):
        return None
    found = ev.lookup(node)
    if found is None:
        return None
    owner, expr = found
    return _bundle_source(expr, owner, depth + 1)


def resolve_bundle(call: ast.Call, ev: Evaluator) -> OptionBundle:
    location = ev.symbols.location(call)
    type_name = callee_name(call.func) or "Options"
    if call.args:
        raise UnrecognizedTriggerShape(f"{type_name} takes keyword arguments only", location)

    fields: dict[str, Union[OptionValue, OptionBundle]] = {}
    for kw in call.keywords:
        if kw.arg is None:
            raise UnrecognizedTriggerShape(f"**kwargs is not supported in {type_name}", location)
        name = snake(kw.arg)
        if name in RUNTIME_ONLY_OPTIONS:
            log.debug("%s: dropping runtime-only option %s", location, name)
            continue
        nested = _bundle_source(kw.value, ev)
        if nested is not None:
            owner, nested_call = nested
            fields[name] = resolve_bundle(nested_call, owner)
            continue
        value = ev.evaluate(kw.value)
        if value is None:
            continue
        fields[name] = value

    return OptionBundle(type_name=type_name, fields=MappingProxyType(fields), location=location)


def resolve_call(site: CallSite, ev: Evaluator) -> ResolvedCall:
    """
    Check a call site against its method's argument shape and evaluate the
    trigger address and options bundle.
    """
    method = site.method
    location = site.location
    node = site.node

    if not isinstance(node, ast.Call):
        raise UnrecognizedTriggerShape(
            f"{method.qualified} must be called, e.g. @{method.namespace}.{method.name}(...)",
            location,
        )
    if any(isinstance(a, ast.Starred) for a in node.args):
        raise UnrecognizedTriggerShape("*args is not supported in a registration call", location)

    handler = site.decorated
    if node.args:
        if len(node.args) > 1 or site.decorated is not None:
            raise UnrecognizedTriggerShape(
                f"{method.qualified} accepts keyword arguments and a single handler", location
            )
        handler = _handler_name(node.args[0])
        if handler is None:
            raise UnrecognizedTriggerShape(
                "the positional argument must be the handler function", location
            )

    allowed = {"options", "handler"}
    if method.address:
        allowed.add(method.address)

    kws: dict[str, ast.expr] = {}
    for kw in node.keywords:
        if kw.arg is None:
            raise UnrecognizedTriggerShape("**kwargs is not supported in a registration call", location)
        name = snake(kw.arg)
        if name in RUNTIME_ONLY_ARGUMENTS:
            continue
        if name not in allowed:
            raise UnrecognizedTriggerShape(
                f"unexpected argument {kw.arg!r} for {method.qualified}", location
            )
        kws[name] = kw.value

    if "handler" in kws:
        if handler is not None:
            raise UnrecognizedTriggerShape("handler is given more than once", location)
        handler = _handler_name(kws["handler"])
        if handler is None:
            raise UnrecognizedTriggerShape("handler must be a function reference", location)
    if handler is None:
        raise UnrecognizedTriggerShape(f"{method.qualified} is missing its handler", location)

    address: Optional[str] = None
    if method.address:
        address = _resolve_address(method, kws.get(method.address), ev, location)

    options: Optional[OptionBundle] = None
    options_node = kws.get("options")
    if options_node is not None and not (
        isinstance(options_node, ast.Constant) and options_node.value is None
    ):
        source = _bundle_source(options_node, ev)
        if source is None:
            if isinstance(options_node, (ast.Name, ast.Attribute)):
                raise UnsupportedExpression(
                    "options must be bound to a module-level options constructor",
                    ev.symbols.location(options_node),
                )
            raise UnrecognizedTriggerShape(
                "options must be an options constructor call such as HttpsOptions(...)",
                ev.symbols.location(options_node),
            )
        owner, call = source
        options = resolve_bundle(call, owner)

    return ResolvedCall(site=site, address=address, options=options, handler=handler)


def _resolve_address(
    method: TriggerMethod, node: Optional[ast.expr], ev: Evaluator, location: SourceLocation
) -> str:
    if node is None:
        raise MissingRequiredArgument(
            f"{method.qualified} requires {method.address}=", location
        )
    value = ev.evaluate(node)
    if value is None:
        raise MissingRequiredArgument(f"{method.address} must not be None", location)
    if isinstance(value, Literal) and isinstance(value.value, str):
        if not value.value.strip():
            raise MissingRequiredArgument(f"{method.address} must not be empty", location)
        return value.value
    if isinstance(value, Literal):
        raise InvalidOptionValue(f"{method.address} must be a string", location)
    raise UnsupportedExpression(
        f"{method.address} must be a string constant", ev.symbols.location(node)
    )


_PARAM_OPTIONS = {"default", "label", "description"}


def _default_matches(kind: ParamKind, value: object) -> bool:
    if kind is ParamKind.STRING:
        return isinstance(value, str)
    if kind is ParamKind.INT:
        return isinstance(value, int) and not isinstance(value, bool)
    if kind is ParamKind.FLOAT:
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    if kind is ParamKind.BOOLEAN:
        return isinstance(value, bool)
    if kind is ParamKind.LIST:
        return isinstance(value, tuple) and all(
            isinstance(item, Literal) and isinstance(item.value, str) for item in value
        )
    return False


def resolve_param(decl: ParamDecl, ev: Evaluator) -> Param:
    """Evaluate the options of a param declaration (default, label, description)."""
    call = decl.call
    nodes: dict[str, ast.expr] = {}

    def take(keywords: list[ast.keyword]) -> None:
        for kw in keywords:
            if kw.arg is None:
                raise UnsupportedExpression("**kwargs is not supported", decl.location)
            name = snake(kw.arg)
            if name == "default_value":
                name = "default"
            if name == "name":
                continue
            if name == "options" and is_bundle_call(kw.value):
                take(kw.value.keywords)  # type: ignore[attr-defined]
                continue
            if name not in _PARAM_OPTIONS:
                raise InvalidOptionValue(f"unknown param option {kw.arg!r}", decl.location)
            nodes[name] = kw.value

    for arg in call.args[1:]:
        if not is_bundle_call(arg):
            raise UnsupportedExpression(
                "param options must be keywords or ParamOptions(...)", ev.symbols.location(arg)
            )
        take(arg.keywords)  # type: ignore[attr-defined]
    take(call.keywords)

    default: Optional[OptionValue] = None
    if "default" in nodes:
        default = ev.evaluate(nodes["default"])
        if isinstance(default, Reset):
            raise InvalidOptionValue("a param default cannot be RESET_VALUE", decl.location)
        if default is not None and decl.kind is ParamKind.SECRET:
            raise InvalidOptionValue(f"secret {decl.name!r} cannot have a default", decl.location)
        if isinstance(default, Literal) and not _default_matches(decl.kind, default.value):
            raise InvalidOptionValue(
                f"default for {decl.kind.value} param {decl.name!r} has the wrong type",
                decl.location,
            )
        if default is not None and not isinstance(default, (Literal, ParamRef)):
            raise UnsupportedExpression(
                "a param default must be a literal or another param", decl.location
            )

    text: dict[str, Optional[str]] = {"label": None, "description": None}
    for key in text:
        if key not in nodes:
            continue
        value = ev.evaluate(nodes[key])
        if value is None:
            continue
        if not (isinstance(value, Literal) and isinstance(value.value, str)):
            raise InvalidOptionValue(f"param {key} must be a string", decl.location)
        text[key] = value.value

    return Param(
        name=decl.name,
        kind=decl.kind,
        default=default,
        label=text["label"],
        description=text["description"],
        format=decl.format,
        location=decl.location,
    )
