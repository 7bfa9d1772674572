"""Tests for capability descriptors."""

import pytest
from pydantic import ValidationError

from kvcheckpoint.models.capability_models import BackendCapabilityProfile
from kvcheckpoint.models.checkpoint_models import ThreadNamespace


def test_full_profile():
    profile = BackendCapabilityProfile.full()
    assert profile.missing(
        "supports_ordered_list", "supports_cas", "persistent"
    ) == []


def test_plain_kv_profile():
    profile = BackendCapabilityProfile.plain_kv()
    assert profile.supports_cas
    assert profile.missing("supports_ordered_list", "supports_key_enumeration") == [
        "supports_ordered_list",
        "supports_key_enumeration",
    ]


def test_profiles_are_immutable():
    profile = BackendCapabilityProfile.plain_kv()
    with pytest.raises(ValidationError):
        profile.supports_ordered_list = True


def test_thread_id_required():
    with pytest.raises(ValidationError):
        ThreadNamespace(thread_id="")
    assert ThreadNamespace(thread_id="t").namespace == ""
