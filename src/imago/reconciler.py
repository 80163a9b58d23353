"""
Reconciliation of workloads against the registry.

A RunContext owns everything that must not leak between runs (digest cache,
secret cache, credentials). The Reconciler drives each workload through

    merge -> plan -> (empty or dry run ? done : apply)

and aggregates per-workload failures so one broken workload never stops the
others from being checked.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from kubernetes.client import ApiException

from imago.annotation import ConfigAnnotation, merge_config
from imago.applier import ReconciliationApplier
from imago.constants import CONFIG_ANNOTATION
from imago.credentials import CredentialSet, CredentialStore, SecretCache
from imago.exceptions import ImagoError, ReconcileError
from imago.planner import UpdatePlan, UpdatePlanner
from imago.pods import RunningDigestCollector
from imago.registry import DigestCache, RegistryClient
from imago.workloads import WorkloadAccessor, WorkloadKind

logger = logging.getLogger(__name__)


@dataclass
class RunContext:
    """State owned by a single reconciliation run.

    Attributes:
        registry: Registry client holding the run's digest cache.
        credentials: Credential store holding the run's secret cache.
        update: Apply plans (False means dry run: only report).
        check_pods: Compare against digests running in pods instead of the spec.
        excluded_namespaces: Namespaces to skip.
    """

    registry: RegistryClient
    credentials: CredentialStore
    update: bool = False
    check_pods: bool = False
    excluded_namespaces: frozenset[str] = field(default_factory=frozenset)

    @classmethod
    def create(
        cls,
        core_api: Any,
        default_auth: CredentialSet,
        registry_timeout: float,
        update: bool = False,
        check_pods: bool = False,
        excluded_namespaces: Optional[list[str]] = None,
        session: Any = None,
    ) -> "RunContext":
        """Build a context with fresh caches."""
        secrets = SecretCache(
            lambda namespace, name: core_api.read_namespaced_secret(name, namespace)
        )
        return cls(
            registry=RegistryClient(session=session, timeout=registry_timeout, cache=DigestCache()),
            credentials=CredentialStore(default_auth, secrets),
            update=update,
            check_pods=check_pods,
            excluded_namespaces=frozenset(excluded_namespaces or []),
        )


class Reconciler:
    """Checks and optionally updates all selected workloads."""

    def __init__(
        self,
        ctx: RunContext,
        accessors: dict[WorkloadKind, WorkloadAccessor],
        core_api: Any,
        apps_api: Any,
        applier: Optional[ReconciliationApplier] = None,
    ):
        self.ctx = ctx
        self.accessors = accessors
        self.planner = UpdatePlanner(ctx.registry)
        self.applier = applier or ReconciliationApplier()
        self._core = core_api
        self._apps = apps_api

    def run(self, namespace: str = "", field_selector: str = "", label_selector: str = "") -> None:
        """
        Reconcile every selected workload of every supported kind.

        Args:
            namespace: Namespace to process, "" for all namespaces
            field_selector: Kubernetes field selector applied to workloads
            label_selector: Kubernetes label selector applied to workloads

        Raises:
            ApiException: If a workload list call fails
            ReconcileError: If any workload failed, after all were attempted
        """
        failed: list[str] = []
        for kind, accessor in self.accessors.items():
            for workload in accessor.list(namespace, field_selector, label_selector):
                meta = workload.metadata
                try:
                    self.reconcile(accessor, workload)
                except (ImagoError, ApiException) as e:
                    message = f"failed to check {meta.namespace}/{kind.value}/{meta.name}: {e}"
                    logger.error(message)
                    failed.append(message)

        if failed:
            raise ReconcileError(failed)

    def reconcile(self, accessor: WorkloadAccessor, workload: Any) -> UpdatePlan:
        """
        Reconcile a single workload.

        Returns:
            The computed plan (empty for excluded namespaces)

        Raises:
            CredentialFetchError: If a pull secret cannot be used
            AnnotationDecodeError: If the stored annotation is invalid
            ConcurrentUpdateError: If the update kept conflicting
            ApiException: On other API errors
        """
        meta = workload.metadata
        kind = accessor.kind
        if meta.namespace in self.ctx.excluded_namespaces:
            logger.debug(f"skipping {meta.namespace}/{kind.value}/{meta.name} (namespace excluded)")
            return UpdatePlan()

        logger.info(f"checking {meta.namespace}/{kind.value}/{meta.name}")
        template = accessor.pod_template(workload)
        pod_spec = template.spec

        auth = self.ctx.credentials.effective_auth(meta.namespace, pod_spec.image_pull_secrets)
        config = merge_config((meta.annotations or {}).get(CONFIG_ANNOTATION), pod_spec)

        running_init, running = {}, {}
        if self.ctx.check_pods:
            collector = RunningDigestCollector(self._core, self._apps)
            running_init, running = collector.collect(kind, workload, template)

        plan = self.planner.plan_workload(config, pod_spec, running_init, running, auth)
        if plan.is_empty or not self.ctx.update:
            return plan

        def replan(fresh: Any) -> tuple[UpdatePlan, ConfigAnnotation]:
            fresh_spec = accessor.pod_template(fresh).spec
            fresh_config = merge_config((fresh.metadata.annotations or {}).get(CONFIG_ANNOTATION), fresh_spec)
            return self.planner.plan_workload(fresh_config, fresh_spec, running_init, running, auth), fresh_config

        logger.info(f"update {meta.namespace}/{kind.value}/{meta.name}")
        self.applier.apply(accessor, meta.namespace, meta.name, plan, config, replan=replan)
        return plan
