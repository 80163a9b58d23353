"""Tests for collecting running digests from pods."""

from unittest.mock import Mock

from kubernetes import client
from kubernetes.client import ApiException

from conftest import DIGEST_NEW, DIGEST_OLD, make_deployment
from imago.pods import RunningDigestCollector, label_selector
from imago.workloads import WorkloadKind


def owner(kind, name):
    return client.V1OwnerReference(api_version="apps/v1", kind=kind, name=name, uid=f"{name}-uid")


def container_status(name, image_id):
    return client.V1ContainerStatus(
        name=name, image="nginx:1.25", image_id=image_id, ready=True, restart_count=0
    )


def make_pod(name, owners, statuses, init_statuses=None):
    return client.V1Pod(
        metadata=client.V1ObjectMeta(name=name, owner_references=owners),
        status=client.V1PodStatus(container_statuses=statuses, init_container_statuses=init_statuses),
    )


def replica_set(owner_kind, owner_name):
    return client.V1ReplicaSet(metadata=client.V1ObjectMeta(owner_references=[owner(owner_kind, owner_name)]))


class TestLabelSelector:
    def test_sorted_pairs(self):
        assert label_selector({"tier": "front", "app": "web"}) == "app=web,tier=front"

    def test_empty(self):
        assert label_selector(None) == ""


class TestRunningDigestCollector:
    """Tests for RunningDigestCollector.collect."""

    def test_deployment_pods_matched_through_replica_set(self, core_api):
        apps_api = Mock()
        apps_api.read_namespaced_replica_set.return_value = replica_set("Deployment", "web")
        core_api.list_namespaced_pod.return_value = client.V1PodList(
            items=[
                make_pod(
                    "web-1",
                    [owner("ReplicaSet", "web-abc")],
                    [container_status("app", f"docker-pullable://nginx@{DIGEST_NEW}")],
                    [container_status("init", f"docker.io/library/busybox@{DIGEST_OLD}")],
                ),
                make_pod(
                    "web-2",
                    [owner("ReplicaSet", "web-abc")],
                    [container_status("app", f"docker-pullable://nginx@{DIGEST_OLD}")],
                ),
            ]
        )
        workload = make_deployment()

        running_init, running = RunningDigestCollector(core_api, apps_api).collect(
            WorkloadKind.DEPLOYMENT, workload, workload.spec.template
        )

        assert running == {"app": {"web-1": f"nginx@{DIGEST_NEW}", "web-2": f"nginx@{DIGEST_OLD}"}}
        assert running_init == {"init": {"web-1": f"docker.io/library/busybox@{DIGEST_OLD}"}}
        core_api.list_namespaced_pod.assert_called_once_with("default", label_selector="app=web")
        apps_api.read_namespaced_replica_set.assert_called_once_with("web-abc", "default")

    def test_pods_of_other_deployment_ignored(self, core_api):
        """Pods sharing the labels but owned by another Deployment are skipped."""
        apps_api = Mock()
        apps_api.read_namespaced_replica_set.return_value = replica_set("Deployment", "web-canary")
        core_api.list_namespaced_pod.return_value = client.V1PodList(
            items=[make_pod("canary-1", [owner("ReplicaSet", "canary-abc")], [container_status("app", f"nginx@{DIGEST_OLD}")])]
        )
        workload = make_deployment()

        _, running = RunningDigestCollector(core_api, apps_api).collect(
            WorkloadKind.DEPLOYMENT, workload, workload.spec.template
        )

        assert running == {}

    def test_statefulset_pods_matched_directly(self, core_api):
        apps_api = Mock()
        core_api.list_namespaced_pod.return_value = client.V1PodList(
            items=[make_pod("db-0", [owner("StatefulSet", "web")], [container_status("app", f"nginx@{DIGEST_NEW}")])]
        )
        workload = make_deployment()

        _, running = RunningDigestCollector(core_api, apps_api).collect(
            WorkloadKind.STATEFULSET, workload, workload.spec.template
        )

        assert running == {"app": {"db-0": f"nginx@{DIGEST_NEW}"}}
        apps_api.read_namespaced_replica_set.assert_not_called()

    def test_missing_replica_set_is_skipped(self, core_api):
        apps_api = Mock()
        apps_api.read_namespaced_replica_set.side_effect = ApiException(status=404, reason="Not Found")
        core_api.list_namespaced_pod.return_value = client.V1PodList(
            items=[make_pod("web-1", [owner("ReplicaSet", "web-old")], [container_status("app", f"nginx@{DIGEST_NEW}")])]
        )
        workload = make_deployment()

        _, running = RunningDigestCollector(core_api, apps_api).collect(
            WorkloadKind.DEPLOYMENT, workload, workload.spec.template
        )

        assert running == {}

    def test_unparsable_image_id_is_ignored(self, core_api):
        """Containers still pulling report an image ID without a digest."""
        apps_api = Mock()
        core_api.list_namespaced_pod.return_value = client.V1PodList(
            items=[
                make_pod(
                    "ds-1",
                    [owner("DaemonSet", "web")],
                    [container_status("app", ""), container_status("sidecar", f"envoy@{DIGEST_NEW}")],
                )
            ]
        )
        workload = make_deployment()

        _, running = RunningDigestCollector(core_api, apps_api).collect(
            WorkloadKind.DAEMONSET, workload, workload.spec.template
        )

        assert running == {"sidecar": {"ds-1": f"envoy@{DIGEST_NEW}"}}

    def test_cronjob_pods_never_matched(self, core_api):
        apps_api = Mock()
        job_owner = client.V1OwnerReference(api_version="batch/v1", kind="Job", name="nightly-123", uid="u")
        core_api.list_namespaced_pod.return_value = client.V1PodList(
            items=[make_pod("nightly-123-x", [job_owner], [container_status("job", f"busybox@{DIGEST_NEW}")])]
        )
        workload = make_deployment(name="nightly")

        _, running = RunningDigestCollector(core_api, apps_api).collect(
            WorkloadKind.CRONJOB, workload, workload.spec.template
        )

        assert running == {}
