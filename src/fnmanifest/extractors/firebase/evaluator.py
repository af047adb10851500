from __future__ import annotations

import ast
from types import MappingProxyType
from typing import Mapping, Optional, Union

from fnmanifest.domain.errors import UnknownParamReference, UnsupportedExpression
from fnmanifest.domain.values import (
    RESET,
    Literal,
    OptionValue,
    ParamKind,
    ParamRef,
    SourceLocation,
    Ternary,
    literal_list,
    literal_map,
)
from fnmanifest.extractors.firebase.registry import callee_name
from fnmanifest.extractors.firebase.symbols import ModuleSymbols, SymbolIndex

RESET_NAMES = {"RESET_VALUE", "resetValue"}
TERNARY_METHODS = {"then_else", "thenElse"}

_MEMORY_MB = {
    "MB_128": 128,
    "MB_256": 256,
    "MB_512": 512,
    "GB_1": 1024,
    "GB_2": 2048,
    "GB_4": 4096,
    "GB_8": 8192,
    "GB_16": 16384,
    "GB_32": 32768,
}

_REGIONS = (
    "asia-east1",
    "asia-east2",
    "asia-northeast1",
    "asia-northeast2",
    "asia-northeast3",
    "asia-south1",
    "asia-southeast1",
    "asia-southeast2",
    "australia-southeast1",
    "europe-central2",
    "europe-north1",
    "europe-west1",
    "europe-west2",
    "europe-west3",
    "europe-west4",
    "europe-west6",
    "northamerica-northeast1",
    "southamerica-east1",
    "us-central1",
    "us-east1",
    "us-east4",
    "us-west1",
    "us-west2",
    "us-west3",
    "us-west4",
)

_ALERT_TYPES = (
    "crashlytics.newFatalIssue",
    "crashlytics.newNonfatalIssue",
    "crashlytics.regression",
    "crashlytics.stabilityDigest",
    "crashlytics.velocity",
    "crashlytics.newAnrIssue",
    "billing.planUpdate",
    "billing.planAutomatedUpdate",
    "appDistribution.newTesterIosDevice",
    "appDistribution.inAppFeedback",
    "performance.threshold",
)


def _alert_member(alert_type: str) -> str:
    # crashlytics.newFatalIssue -> CRASHLYTICS_NEW_FATAL_ISSUE
    out = []
    for ch in alert_type.replace(".", "_"):
        if ch.isupper():
            out.append("_")
        out.append(ch.upper())
    return "".join(out)


# SDK enumerations folded to their wire values: Enum.MEMBER -> value
ENUMS: dict[str, dict[str, Union[str, int]]] = {
    "MemoryOption": dict(_MEMORY_MB),
    "SupportedRegion": {r.replace("-", "_").upper(): r for r in _REGIONS},
    "IngressSetting": {
        v: v for v in ("ALLOW_ALL", "ALLOW_INTERNAL_ONLY", "ALLOW_INTERNAL_AND_GCLB")
    },
    "VpcEgressSetting": {v: v for v in ("PRIVATE_RANGES_ONLY", "ALL_TRAFFIC")},
    "AlertType": {_alert_member(t): t for t in _ALERT_TYPES},
}

KNOWN_REGIONS = frozenset(_REGIONS)
MEMORY_VALUES = frozenset(_MEMORY_MB.values())


class Evaluator:
    """
    Folds option expressions into OptionValues for one module context.

    The accepted grammar is closed: literals, SDK enum members, RESET_VALUE,
    names bound to module constants or declared params (also across scanned
    modules), and ``cond.then_else(a, b)`` over a boolean param. Anything else
    raises UnsupportedExpression. ``None`` evaluates to ``None`` (not provided).
    """

    def __init__(
        self,
        index: SymbolIndex,
        symbols: ModuleSymbols,
        local_names: frozenset[str] = frozenset(),
        local_params: Mapping[str, str] = MappingProxyType({}),
        _active: Optional[set[tuple[str, str]]] = None,
    ) -> None:
        self.index = index
        self.symbols = symbols
        self.local_names = local_names
        self.local_params = local_params
        self._active = _active if _active is not None else set()

    def _unsupported(self, node: ast.AST, what: str) -> UnsupportedExpression:
        return UnsupportedExpression(what, self.symbols.location(node))

    def _module_evaluator(self, symbols: ModuleSymbols) -> "Evaluator":
        return Evaluator(self.index, symbols, _active=self._active)

    # -- public API -------------------------------------------------------

    def evaluate(self, node: ast.expr) -> Optional[OptionValue]:
        if isinstance(node, ast.Constant):
            if node.value is None:
                return None
            if isinstance(node.value, (bool, int, float, str)):
                return Literal(node.value)
            raise self._unsupported(node, f"unsupported literal {node.value!r}")

        if isinstance(node, ast.UnaryOp) and isinstance(node.op, (ast.USub, ast.UAdd)):
            operand = node.operand
            if (
                isinstance(operand, ast.Constant)
                and isinstance(operand.value, (int, float))
                and not isinstance(operand.value, bool)
            ):
                return Literal(-operand.value if isinstance(node.op, ast.USub) else operand.value)
            raise self._unsupported(node, "only numeric literals can be negated")

        if isinstance(node, (ast.List, ast.Tuple)):
            items = []
            for elt in node.elts:
                if isinstance(elt, ast.Starred):
                    raise self._unsupported(elt, "starred expressions are not supported")
                value = self.evaluate(elt)
                if value is None:
                    raise self._unsupported(elt, "None is not allowed inside a list")
                items.append(value)
            return literal_list(items)

        if isinstance(node, ast.Dict):
            out: dict[str, OptionValue] = {}
            for key, value in zip(node.keys, node.values):
                if key is None:
                    raise self._unsupported(value, "dict unpacking is not supported")
                k = self.evaluate(key)
                if not (isinstance(k, Literal) and isinstance(k.value, str)):
                    raise self._unsupported(key, "map keys must be string literals")
                v = self.evaluate(value)
                if v is None:
                    raise self._unsupported(value, "None is not allowed as a map value")
                out[k.value] = v
            return literal_map(out)

        if isinstance(node, ast.Name):
            return self._resolve_name(node)

        if isinstance(node, ast.Attribute):
            return self._resolve_attribute(node)

        if isinstance(node, ast.Call):
            func = node.func
            if isinstance(func, ast.Attribute) and func.attr in TERNARY_METHODS:
                return self._ternary(node, func)
            raise self._unsupported(
                node, f"call to {callee_name(func) or 'expression'} cannot be evaluated statically"
            )

        raise self._unsupported(node, f"{type(node).__name__} expressions are not supported")

    def lookup(self, node: ast.expr) -> Optional[tuple["Evaluator", ast.expr]]:
        """
        Find the module-level expression a name (or ``module.name``) is bound
        to, together with an evaluator for the defining module.
        """
        if isinstance(node, ast.Name):
            if node.id in self.local_names:
                return None
            return self._binding_of(node.id)
        if isinstance(node, ast.Attribute) and isinstance(node.value, ast.Name):
            target = self._imported_module(node.value.id)
            if target is not None:
                return self._module_evaluator(target)._binding_of(node.attr)
        return None

    def _imported_module(self, name: str) -> Optional[ModuleSymbols]:
        if name in self.local_names:
            return None
        return self.index.imported_module(self.symbols, name)

    def _rebound(self, name: str) -> bool:
        return self.index.is_rebound(self.symbols.module, name)

    # -- names ------------------------------------------------------------

    def _binding_of(self, name: str) -> Optional[tuple["Evaluator", ast.expr]]:
        if name in self.symbols.assigns and not self._rebound(name):
            return self, self.symbols.assigns[name]
        binding = self.symbols.imports.get(name)
        if binding is not None and binding.name is not None:
            target = self.index.module(binding.module)
            if target is not None:
                return self._module_evaluator(target)._binding_of(binding.name)
        return None

    def _resolve_name(self, node: ast.Name) -> Optional[OptionValue]:
        name = node.id
        if name in self.local_params:
            return ParamRef(self.local_params[name])
        if name in self.local_names:
            raise self._unsupported(node, f"{name!r} is a local variable, not a constant")
        return self._resolve_module_name(name, self.symbols.location(node))

    def _resolve_module_name(self, name: str, at: SourceLocation) -> Optional[OptionValue]:
        # `at` is the use site; errors point there even when resolution crossed modules
        symbols = self.symbols
        if name in symbols.assigns and self._rebound(name):
            raise UnsupportedExpression(
                f"{symbols.module}.{name} is reassigned from another module", at
            )
        if name in symbols.param_vars:
            return ParamRef(symbols.param_vars[name])

        if name in symbols.assigns:
            key = (symbols.module, name)
            if key in self._active:
                raise UnsupportedExpression(f"{name!r} is defined in terms of itself", at)
            self._active.add(key)
            try:
                return self.evaluate(symbols.assigns[name])
            finally:
                self._active.discard(key)

        binding = symbols.imports.get(name)
        if binding is not None:
            target = self.index.module(binding.module)
            if binding.name is not None and target is not None:
                return self._module_evaluator(target)._resolve_module_name(binding.name, at)
            if binding.name in RESET_NAMES:
                return RESET
            raise UnsupportedExpression(
                f"{name!r} is imported from {binding.module}, which is not scanned source", at
            )

        if name in symbols.bound:
            raise UnsupportedExpression(f"{name!r} is not bound to a constant", at)
        if name in RESET_NAMES:
            return RESET
        raise UnknownParamReference(f"{name!r} does not name a declared param or constant", at)

    def _resolve_attribute(self, node: ast.Attribute) -> OptionValue:
        attr = node.attr
        if attr in RESET_NAMES:
            return RESET

        owner = callee_name(node.value)
        if owner in ENUMS:
            members = ENUMS[owner]
            if attr not in members:
                raise self._unsupported(node, f"{owner} has no member {attr}")
            return Literal(members[attr])

        if isinstance(node.value, ast.Name):
            base = node.value.id
            # Class.CONSTANT defined in this module
            if base in self.symbols.classes and base not in self.local_names:
                body = self.symbols.classes[base]
                if self._rebound(f"{base}.{attr}"):
                    raise self._unsupported(node, f"{base}.{attr} is reassigned from another module")
                if attr not in body:
                    raise self._unsupported(node, f"{base}.{attr} is not a class constant")
                value = self.evaluate(body[attr])
                if value is None:
                    raise self._unsupported(node, f"{base}.{attr} is None")
                return value
            # module.NAME for an imported scanned module
            target = self._imported_module(base)
            if target is not None:
                value = self._module_evaluator(target)._resolve_module_name(
                    attr, self.symbols.location(node)
                )
                if value is None:
                    raise self._unsupported(node, f"{base}.{attr} is None")
                return value

        raise self._unsupported(node, f"attribute access {attr!r} cannot be evaluated statically")

    # -- ternary ----------------------------------------------------------

    def _ternary(self, node: ast.Call, func: ast.Attribute) -> Ternary:
        condition = self.evaluate(func.value)
        if not isinstance(condition, ParamRef):
            raise self._unsupported(node, "then_else condition must be a boolean param")
        if self.index.params.kind_of(condition.name) is not ParamKind.BOOLEAN:
            raise self._unsupported(
                node, f"then_else condition {condition.name!r} is not a boolean param"
            )

        if node.keywords or len(node.args) != 2:
            raise self._unsupported(node, "then_else takes exactly two positional arguments")

        branches = []
        for arg in node.args:
            value = self.evaluate(arg)
            if isinstance(value, Ternary):
                raise self._unsupported(arg, "nested then_else is not supported")
            if isinstance(value, ParamRef) or (isinstance(value, Literal) and value.is_scalar):
                branches.append(value)
                continue
            raise self._unsupported(arg, "then_else branches must be scalar literals or params")
        return Ternary(condition=condition, then=branches[0], otherwise=branches[1])
