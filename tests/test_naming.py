import json
from pathlib import Path

import pytest

from fnmanifest.extractors.firebase.registry import METHODS
from fnmanifest.manifest.naming import (
    REMOTE_CONFIG_KEY,
    TEST_LAB_KEY,
    alert_key,
    endpoint_key,
    path_key,
    pubsub_key,
    schedule_key,
    storage_key,
)

VECTORS = json.loads(
    (Path(__file__).parent / "fixtures" / "naming_vectors.json").read_text(encoding="utf-8")
)


@pytest.mark.parametrize("vector", VECTORS, ids=[v["key"] for v in VECTORS])
def test_endpoint_key_matches_shared_vectors(vector):
    method = METHODS[(vector["namespace"], vector["method"])]
    assert endpoint_key(method, vector["address"]) == vector["key"]


def test_pubsub_key_uses_last_topic_segment():
    assert pubsub_key("my-topic") == "onMessagePublished_my_topic"
    assert pubsub_key("projects/p/topics/a-b-c/") == "onMessagePublished_a_b_c"


def test_path_key_strips_separators_braces_and_hyphens():
    assert path_key("onValueCreated", "/users/{userId}") == "onValueCreated_users_userId"
    assert path_key("onValueCreated", "users/{userId}/") == "onValueCreated_users_userId"
    assert path_key("onDocumentDeleted", "my-col/{doc-id}") == "onDocumentDeleted_mycol_docid"


def test_schedule_key_drops_cron_punctuation():
    assert schedule_key("0 0 * * *") == "onSchedule_0_0___"
    assert schedule_key("*/5 * * * *") == "onSchedule_5____"


def test_storage_and_alert_keys():
    assert storage_key("onObjectArchived", "a_b-c.d") == "onObjectArchived_abcd"
    assert alert_key("billing.planUpdate") == "onAlertPublished_billing_planUpdate"


def test_fixed_keys_for_addressless_families():
    assert endpoint_key(METHODS[("remote_config", "on_config_updated")], None) == REMOTE_CONFIG_KEY
    assert endpoint_key(METHODS[("test_lab", "on_test_matrix_completed")], None) == TEST_LAB_KEY
    assert endpoint_key(METHODS[("identity", "before_user_created")], None) == "beforeCreate"
    assert endpoint_key(METHODS[("identity", "before_sms_sent")], None) == "beforeSendSms"


def test_fixed_alert_methods_use_their_alert_type():
    method = METHODS[("crashlytics", "on_new_fatal_issue_published")]
    assert endpoint_key(method, None) == "onAlertPublished_crashlytics_newFatalIssue"
