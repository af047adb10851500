from __future__ import annotations

import ast
import re
from dataclasses import dataclass
from typing import Optional

from fnmanifest.domain.values import ParamKind

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def snake(name: str) -> str:
    # onDocumentCreated -> on_document_created, on_request stays as-is
    return _CAMEL_BOUNDARY.sub("_", name).lower()


def camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(p[:1].upper() + p[1:] for p in rest)


# Trigger families. Each registration method belongs to exactly one.
HTTPS = "https"
CALLABLE = "callable"
PUBSUB = "pubsub"
FIRESTORE = "firestore"
DATABASE = "database"
STORAGE = "storage"
ALERTS = "alerts"
EVENTARC = "eventarc"
REMOTE_CONFIG = "remote_config"
TEST_LAB = "test_lab"
BLOCKING = "blocking"
SCHEDULER = "scheduler"
TASKS = "tasks"


@dataclass(frozen=True)
class TriggerMethod:
    namespace: str
    name: str
    family: str
    address: Optional[str] = None  # keyword carrying the trigger address
    event: str = ""  # operation, auth event or fixed alert type

    @property
    def camel(self) -> str:
        return camel(self.name)

    @property
    def qualified(self) -> str:
        return f"{self.namespace}.{self.name}"


def _methods() -> dict[tuple[str, str], TriggerMethod]:
    out: list[TriggerMethod] = [
        TriggerMethod("https", "on_request", HTTPS, "name"),
        TriggerMethod("https", "on_call", CALLABLE, "name"),
        TriggerMethod("https", "on_call_with_data", CALLABLE, "name"),
        TriggerMethod("pubsub", "on_message_published", PUBSUB, "topic"),
        TriggerMethod("alerts", "on_alert_published", ALERTS, "alert_type"),
        TriggerMethod("eventarc", "on_custom_event_published", EVENTARC, "event_type"),
        TriggerMethod("remote_config", "on_config_updated", REMOTE_CONFIG),
        TriggerMethod("test_lab", "on_test_matrix_completed", TEST_LAB),
        TriggerMethod("scheduler", "on_schedule", SCHEDULER, "schedule"),
        TriggerMethod("tasks", "on_task_dispatched", TASKS, "name"),
        TriggerMethod("identity", "before_user_created", BLOCKING, event="beforeCreate"),
        TriggerMethod("identity", "before_user_signed_in", BLOCKING, event="beforeSignIn"),
        TriggerMethod("identity", "before_email_sent", BLOCKING, event="beforeSendEmail"),
        TriggerMethod("identity", "before_sms_sent", BLOCKING, event="beforeSendSms"),
    ]

    for op in ("created", "updated", "deleted", "written"):
        out.append(TriggerMethod("firestore", f"on_document_{op}", FIRESTORE, "document", op))
        out.append(
            TriggerMethod(
                "firestore", f"on_document_{op}_with_auth_context", FIRESTORE, "document", op
            )
        )
        out.append(TriggerMethod("database", f"on_value_{op}", DATABASE, "ref", op))

    for op in ("finalized", "archived", "deleted", "metadata_updated"):
        out.append(TriggerMethod("storage", f"on_object_{op}", STORAGE, "bucket", camel(op)))

    fixed_alerts = {
        "crashlytics": {
            "on_new_fatal_issue_published": "crashlytics.newFatalIssue",
            "on_new_nonfatal_issue_published": "crashlytics.newNonfatalIssue",
            "on_regression_alert_published": "crashlytics.regression",
            "on_stability_digest_published": "crashlytics.stabilityDigest",
            "on_velocity_alert_published": "crashlytics.velocity",
            "on_new_anr_issue_published": "crashlytics.newAnrIssue",
        },
        "billing": {
            "on_plan_update_published": "billing.planUpdate",
            "on_plan_automated_update_published": "billing.planAutomatedUpdate",
        },
        "app_distribution": {
            "on_new_tester_ios_device_published": "appDistribution.newTesterIosDevice",
            "on_in_app_feedback_published": "appDistribution.inAppFeedback",
        },
        "performance": {
            "on_threshold_alert_published": "performance.threshold",
        },
    }
    for namespace, methods in fixed_alerts.items():
        for name, alert_type in methods.items():
            out.append(TriggerMethod(namespace, name, ALERTS, event=alert_type))

    return {(m.namespace, m.name): m for m in out}


METHODS: dict[tuple[str, str], TriggerMethod] = _methods()

# SDK module aliases, e.g. `from firebase_functions import db_fn`
_NAMESPACE_ALIASES = {"db": "database"}

# Option bundle constructors that are not spelled *Options
BUNDLE_TYPES = {"RetryConfig", "RateLimits"}

# Accepted by the runtime but irrelevant to deployment.
RUNTIME_ONLY_OPTIONS = {
    "cors",
    "enforce_app_check",
    "consume_app_check_token",
    "heartbeat_seconds",
    "preserve_external_changes",
}

# Registration keywords read by the runtime only.
RUNTIME_ONLY_ARGUMENTS = {"from_json"}

PARAM_FACTORIES: dict[str, tuple[ParamKind, Optional[str]]] = {
    "define_string": (ParamKind.STRING, None),
    "define_int": (ParamKind.INT, None),
    "define_float": (ParamKind.FLOAT, None),
    "define_double": (ParamKind.FLOAT, None),
    "define_boolean": (ParamKind.BOOLEAN, None),
    "define_bool": (ParamKind.BOOLEAN, None),
    "define_list": (ParamKind.LIST, None),
    "define_secret": (ParamKind.SECRET, None),
    "define_json_secret": (ParamKind.SECRET, "json"),
}


def callee_name(func: ast.AST) -> Optional[str]:
    if isinstance(func, ast.Name):
        return func.id
    if isinstance(func, ast.Attribute):
        return func.attr
    return None


def namespace_of(receiver: ast.AST) -> Optional[str]:
    name = callee_name(receiver)
    if name is None:
        return None
    ns = snake(name)
    if ns.endswith("_fn"):
        ns = ns[: -len("_fn")]
    return _NAMESPACE_ALIASES.get(ns, ns)


def match_registration(func: ast.AST) -> Optional[TriggerMethod]:
    """
    Recognize ``<receiver>.<namespace>.<method>`` and ``<namespace>.<method>``.

    Both snake_case and camelCase spellings resolve to the same method.
    """
    if not isinstance(func, ast.Attribute):
        return None
    namespace = namespace_of(func.value)
    if namespace is None:
        return None
    return METHODS.get((namespace, snake(func.attr)))


def param_factory(call: ast.Call) -> Optional[tuple[ParamKind, Optional[str]]]:
    name = callee_name(call.func)
    if name is None:
        return None
    return PARAM_FACTORIES.get(snake(name))


def is_bundle_call(node: ast.AST) -> bool:
    if not isinstance(node, ast.Call):
        return False
    name = callee_name(node.func)
    if name is None:
        return False
    return name.endswith("Options") or name in BUNDLE_TYPES
