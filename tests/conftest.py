"""Pytest configuration and fixtures."""

import base64
import json
from unittest.mock import Mock

import pytest
from kubernetes import client
from requests.structures import CaseInsensitiveDict

DIGEST_OLD = "sha256:" + "a" * 64
DIGEST_NEW = "sha256:" + "b" * 64


def make_response(status_code=200, headers=None, json_body=None, reason="", url=""):
    """Build a mock requests.Response."""
    response = Mock()
    response.status_code = status_code
    response.reason = reason
    response.url = url
    response.headers = CaseInsensitiveDict(headers or {})
    if json_body is None:
        response.json.side_effect = ValueError("No JSON object could be decoded")
    else:
        response.json.return_value = json_body
    return response


def make_pod_spec(containers, init_containers=None, pull_secrets=None):
    """Build a V1PodSpec from {name: image} dicts."""
    return client.V1PodSpec(
        containers=[client.V1Container(name=n, image=i) for n, i in containers.items()],
        init_containers=[client.V1Container(name=n, image=i) for n, i in (init_containers or {}).items()] or None,
        image_pull_secrets=[client.V1LocalObjectReference(name=s) for s in pull_secrets or []] or None,
    )


def make_template(containers, init_containers=None, pull_secrets=None, labels=None):
    return client.V1PodTemplateSpec(
        metadata=client.V1ObjectMeta(labels=labels or {"app": "web"}),
        spec=make_pod_spec(containers, init_containers, pull_secrets),
    )


def make_deployment(
    name="web",
    namespace="default",
    containers=None,
    init_containers=None,
    annotations=None,
    pull_secrets=None,
    labels=None,
):
    """Build a V1Deployment."""
    return client.V1Deployment(
        metadata=client.V1ObjectMeta(
            name=name, namespace=namespace, annotations=annotations, resource_version="1"
        ),
        spec=client.V1DeploymentSpec(
            selector=client.V1LabelSelector(match_labels=labels or {"app": "web"}),
            template=make_template(containers or {"app": "nginx:1.25"}, init_containers, pull_secrets, labels),
        ),
    )


def make_cronjob(name="nightly", namespace="default", containers=None):
    """Build a V1CronJob."""
    return client.V1CronJob(
        metadata=client.V1ObjectMeta(name=name, namespace=namespace, resource_version="1"),
        spec=client.V1CronJobSpec(
            schedule="0 0 * * *",
            job_template=client.V1JobTemplateSpec(
                spec=client.V1JobSpec(template=make_template(containers or {"job": "busybox:1.36"}))
            ),
        ),
    )


def make_pull_secret(auths):
    """Build a V1Secret carrying a base64 encoded .dockerconfigjson payload."""
    payload = json.dumps({"auths": {host: {"auth": token} for host, token in auths.items()}})
    return client.V1Secret(
        data={".dockerconfigjson": base64.b64encode(payload.encode()).decode()},
        type="kubernetes.io/dockerconfigjson",
    )


@pytest.fixture
def registry():
    """Mock RegistryClient resolving every image to DIGEST_NEW."""
    from imago.registry import RegistryClient

    mock = Mock(spec=RegistryClient)
    mock.get_digest.return_value = DIGEST_NEW
    return mock


@pytest.fixture
def core_api():
    """Mock CoreV1Api without any secrets or pods."""
    api = Mock()
    api.list_namespaced_pod.return_value = client.V1PodList(items=[])
    return api
