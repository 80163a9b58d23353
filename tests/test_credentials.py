"""Tests for registry credential loading and pull secret layering."""

import base64
import json
from unittest.mock import Mock, patch

import pytest
from kubernetes import client
from kubernetes.client import ApiException

from conftest import make_pull_secret
from imago.credentials import (
    CredentialStore,
    SecretCache,
    load_docker_config,
    parse_docker_config,
)
from imago.exceptions import CredentialFetchError


def refs(*names):
    return [client.V1LocalObjectReference(name=n) for n in names]


class TestParseDockerConfig:
    def test_extracts_auth_tokens(self):
        data = {"auths": {"ghcr.io": {"auth": "Z2g6dG9r"}, "https://index.docker.io/v1/": {"auth": "aHViOnB3"}}}
        assert parse_docker_config(data) == {
            "ghcr.io": "Z2g6dG9r",
            "registry.hub.docker.com": "aHViOnB3",
        }

    def test_skips_entries_without_auth(self):
        """Credential helper entries carry no inline token."""
        data = {"auths": {"gcr.io": {}, "quay.io": {"auth": "cTpw"}}, "credHelpers": {"gcr.io": "gcloud"}}
        assert parse_docker_config(data) == {"quay.io": "cTpw"}

    def test_missing_auths_is_empty(self):
        assert parse_docker_config({}) == {}

    def test_rejects_non_object(self):
        with pytest.raises(ValueError):
            parse_docker_config(["ghcr.io"])


class TestLoadDockerConfig:
    """Tests for load_docker_config."""

    def test_loads_explicit_file(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"auths": {"ghcr.io": {"auth": "dG9r"}}}))
        assert load_docker_config(path) == {"ghcr.io": "dG9r"}

    def test_missing_default_file_is_anonymous(self, tmp_path):
        """No ~/.docker/config.json means anonymous access, not an error."""
        with patch("imago.credentials.DEFAULT_DOCKER_CONFIG", tmp_path / "absent.json"):
            assert load_docker_config() == {}

    def test_missing_explicit_file_raises(self, tmp_path):
        with pytest.raises(CredentialFetchError, match="not found"):
            load_docker_config(tmp_path / "absent.json")

    def test_empty_file_is_empty(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("  \n")
        assert load_docker_config(path) == {}

    def test_invalid_json_raises(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("{not json")
        with pytest.raises(CredentialFetchError, match="Invalid docker config"):
            load_docker_config(path)


class TestSecretCache:
    def test_fetches_each_secret_once(self):
        """Repeated lookups of one secret hit the API server only once."""
        reader = Mock(return_value=make_pull_secret({"ghcr.io": "dG9r"}))
        cache = SecretCache(reader)

        first = cache.get("team", "regcred")
        second = cache.get("team", "regcred")

        assert first is second
        reader.assert_called_once_with("team", "regcred")
        assert len(cache) == 1

    def test_same_name_in_other_namespace_is_separate(self):
        reader = Mock(return_value=make_pull_secret({}))
        cache = SecretCache(reader)
        cache.get("a", "regcred")
        cache.get("b", "regcred")
        assert reader.call_count == 2

    def test_api_error_becomes_credential_error(self):
        reader = Mock(side_effect=ApiException(status=404, reason="Not Found"))
        cache = SecretCache(reader)
        with pytest.raises(CredentialFetchError, match="team/missing"):
            cache.get("team", "missing")


class TestCredentialStore:
    """Tests for layering pull secrets over the default credential set."""

    def test_no_pull_secrets_returns_defaults(self):
        store = CredentialStore({"ghcr.io": "ZGVm"}, SecretCache(Mock()))
        assert store.effective_auth("team", None) == {"ghcr.io": "ZGVm"}

    def test_secret_overrides_default_host(self):
        secrets = {"regcred": make_pull_secret({"ghcr.io": "c2VjcmV0"})}
        store = CredentialStore(
            {"ghcr.io": "ZGVm", "quay.io": "cXVheQ=="},
            SecretCache(lambda ns, name: secrets[name]),
        )

        auth = store.effective_auth("team", refs("regcred"))

        assert auth == {"ghcr.io": "c2VjcmV0", "quay.io": "cXVheQ=="}

    def test_later_secret_wins(self):
        secrets = {
            "first": make_pull_secret({"ghcr.io": "Zmlyc3Q="}),
            "second": make_pull_secret({"ghcr.io": "c2Vjb25k"}),
        }
        store = CredentialStore({}, SecretCache(lambda ns, name: secrets[name]))
        assert store.effective_auth("team", refs("first", "second")) == {"ghcr.io": "c2Vjb25k"}

    def test_defaults_are_not_mutated(self):
        """Overlaying a secret for one workload must not leak into the next."""
        secrets = {"regcred": make_pull_secret({"ghcr.io": "c2VjcmV0"})}
        store = CredentialStore({"ghcr.io": "ZGVm"}, SecretCache(lambda ns, name: secrets[name]))

        store.effective_auth("team", refs("regcred"))

        assert store.default_auth() == {"ghcr.io": "ZGVm"}
        assert store.effective_auth("other", None) == {"ghcr.io": "ZGVm"}

    def test_secret_without_docker_config_key_raises(self):
        secret = client.V1Secret(data={"token": "eA=="})
        store = CredentialStore({}, SecretCache(lambda ns, name: secret))
        with pytest.raises(CredentialFetchError, match=".dockerconfigjson"):
            store.effective_auth("team", refs("opaque"))

    def test_secret_with_invalid_payload_raises(self):
        secret = client.V1Secret(data={".dockerconfigjson": base64.b64encode(b"{oops").decode()})
        store = CredentialStore({}, SecretCache(lambda ns, name: secret))
        with pytest.raises(CredentialFetchError, match="Invalid registry credentials"):
            store.effective_auth("team", refs("broken"))
