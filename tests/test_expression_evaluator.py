import ast
import textwrap

import pytest

from fnmanifest.domain.errors import UnknownParamReference, UnsupportedExpression
from fnmanifest.domain.values import RESET, Literal, ParamRef, Ternary
from fnmanifest.extractors.firebase.callsites import scan_module_source
from fnmanifest.extractors.firebase.evaluator import Evaluator
from fnmanifest.extractors.firebase.symbols import SymbolIndex
from fnmanifest.orchestrator.pipeline import build_param_table


def evaluate(src: str, others: dict[str, str] | None = None, name: str = "VALUE"):
    """Evaluate the module-level binding ``name`` of main.py."""
    scans = [scan_module_source(textwrap.dedent(src), "main.py")]
    for rel_path, other in (others or {}).items():
        scans.append(scan_module_source(textwrap.dedent(other), rel_path))
    index = SymbolIndex((s.symbols for s in scans), build_param_table(scans))
    symbols = scans[0].symbols
    return Evaluator(index, symbols).evaluate(symbols.assigns[name])


def test_literals_and_containers():
    assert evaluate('VALUE = "x"') == Literal("x")
    assert evaluate("VALUE = -5") == Literal(-5)
    assert evaluate("VALUE = None") is None

    value = evaluate('VALUE = [1, 2.5, "a", True]')
    assert value.value == (Literal(1), Literal(2.5), Literal("a"), Literal(True))

    mapping = evaluate('VALUE = {"env": "prod", "tier": "gold"}')
    assert dict(mapping.value) == {"env": Literal("prod"), "tier": Literal("gold")}


def test_sdk_enums_fold_to_wire_values():
    assert evaluate("VALUE = MemoryOption.GB_1") == Literal(1024)
    assert evaluate("VALUE = options.SupportedRegion.US_EAST1") == Literal("us-east1")
    assert evaluate("VALUE = IngressSetting.ALLOW_ALL") == Literal("ALLOW_ALL")
    assert evaluate("VALUE = AlertType.CRASHLYTICS_NEW_FATAL_ISSUE") == Literal(
        "crashlytics.newFatalIssue"
    )
    with pytest.raises(UnsupportedExpression):
        evaluate("VALUE = MemoryOption.GB_3")


def test_reset_value_bare_and_qualified():
    assert (
        evaluate(
            """
            from firebase_functions.options import RESET_VALUE
            VALUE = RESET_VALUE
            """
        )
        is RESET
    )
    assert evaluate("VALUE = options.RESET_VALUE") is RESET


def test_param_references_and_ternary():
    src = """
    from firebase_functions import params
    MIN = params.define_int("MIN_INSTANCES", default=0)
    IS_PROD = params.define_boolean("IS_PRODUCTION", default=False)
    REF = MIN
    VALUE = IS_PROD.then_else(2048, 512)
    """
    assert evaluate(src, name="REF") == ParamRef("MIN_INSTANCES")
    assert evaluate(src) == Ternary(
        condition=ParamRef("IS_PRODUCTION"), then=Literal(2048), otherwise=Literal(512)
    )


def test_ternary_requires_boolean_param():
    with pytest.raises(UnsupportedExpression):
        evaluate(
            """
            from firebase_functions import params
            MIN = params.define_int("MIN_INSTANCES")
            VALUE = MIN.thenElse(1, 2)
            """
        )


def test_nested_ternary_is_rejected():
    with pytest.raises(UnsupportedExpression):
        evaluate(
            """
            from firebase_functions import params
            A = params.define_boolean("A")
            B = params.define_boolean("B")
            VALUE = A.then_else(B.then_else(1, 2), 3)
            """
        )


@pytest.mark.parametrize(
    "expr",
    [
        "compute()",
        'os.environ["MEMORY"]',
        "256 * 2",
        "[*SIZES]",
        'f"{1}"',
    ],
)
def test_non_constant_expressions_are_rejected(expr):
    with pytest.raises(UnsupportedExpression):
        evaluate(f"SIZES = [1]\nVALUE = {expr}")


def test_names_bound_to_non_constants_are_rejected():
    with pytest.raises(UnsupportedExpression):
        evaluate(
            """
            def size():
                return 1
            VALUE = size
            """
        )
    with pytest.raises(UnsupportedExpression):
        evaluate(
            """
            COUNT = 1
            COUNT = 2
            VALUE = COUNT
            """
        )


def test_unbound_name_is_unknown_param_reference():
    with pytest.raises(UnknownParamReference) as exc:
        evaluate("VALUE = MISSING_PARAM")
    assert exc.value.location.rel_path == "main.py"


def test_self_referential_constants_are_rejected():
    with pytest.raises(UnsupportedExpression):
        evaluate("A = B\nB = A\nVALUE = A")


def test_class_constants_fold():
    value = evaluate(
        """
        class Names:
            CUSTOM = "custom"
        VALUE = Names.CUSTOM
        """
    )
    assert value == Literal("custom")


def test_globally_rebound_names_are_rejected():
    with pytest.raises(UnsupportedExpression):
        evaluate(
            """
            MEM = 256
            def bump():
                global MEM
                MEM = 1024
            VALUE = MEM
            """
        )


def test_class_attribute_stores_are_rejected():
    with pytest.raises(UnsupportedExpression):
        evaluate(
            """
            class Cfg:
                MEM = 256
            Cfg.MEM = 1024
            VALUE = Cfg.MEM
            """
        )


def test_module_attribute_stores_are_rejected_across_modules():
    settings = "REGION = 'europe-west1'\n"
    with pytest.raises(UnsupportedExpression) as exc:
        evaluate(
            """
            from app import settings
            settings.REGION = "us-east1"
            VALUE = settings.REGION
            """,
            others={"app/settings.py": settings, "app/__init__.py": ""},
        )
    assert "reassigned" in str(exc.value)

    with pytest.raises(UnsupportedExpression):
        evaluate(
            """
            from app.settings import REGION
            VALUE = REGION
            """,
            others={
                "app/settings.py": settings,
                "app/boot.py": "import app.settings as s\ns.REGION = 'us-east1'\n",
            },
        )

    with pytest.raises(UnsupportedExpression):
        evaluate(
            """
            from app.settings import MEM
            VALUE = MEM
            """,
            others={
                "app/settings.py": "class Cfg:\n    MEM = 256\nMEM = Cfg.MEM\n",
                "app/boot.py": "from app.settings import Cfg\nCfg.MEM = 1024\n",
            },
        )


def test_constants_and_params_resolve_across_modules():
    settings = """
    from firebase_functions import params
    REGION = "europe-west1"
    MIN = params.define_int("MIN")
    """
    value = evaluate(
        """
        from app.settings import REGION, MIN
        VALUE = [REGION, MIN]
        """,
        others={"app/settings.py": settings},
    )
    assert value.value == (Literal("europe-west1"), ParamRef("MIN"))

    value = evaluate(
        """
        from app import settings
        VALUE = settings.REGION
        """,
        others={"app/settings.py": settings, "app/__init__.py": ""},
    )
    assert value == Literal("europe-west1")


def test_cross_module_errors_point_at_use_site():
    with pytest.raises(UnknownParamReference) as exc:
        evaluate(
            """
            from app.settings import NOPE
            VALUE = NOPE
            """,
            others={"app/settings.py": "REGION = 'x'\n"},
        )
    assert exc.value.location.rel_path == "main.py"
    assert exc.value.location.line == 3


def test_unscanned_imports_are_rejected():
    with pytest.raises(UnsupportedExpression):
        evaluate(
            """
            from somewhere_else import SIZE
            VALUE = SIZE
            """
        )


def test_enclosing_function_locals_shadow_module_names():
    scan = scan_module_source("MEMORY = 512\n", "main.py")
    index = SymbolIndex([scan.symbols], build_param_table([scan]))
    ev = Evaluator(index, scan.symbols, local_names=frozenset({"MEMORY"}))
    with pytest.raises(UnsupportedExpression):
        ev.evaluate(ast.parse("MEMORY", mode="eval").body)
