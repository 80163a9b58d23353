"""imago CLI entry point.

Usage:
    imago                               Check workloads in the current namespace
    imago -n ns1 -n ns2                 Check workloads in the given namespaces
    imago -A                            Check workloads in all namespaces
    imago -x kube-system                All namespaces except kube-system
    imago --update                      Pin out-of-date images to their latest digest
    imago --check-pods                  Compare against digests running in pods
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path

import requests
import yaml
from kubernetes import client, config as kube_config
from kubernetes.client import ApiException
from kubernetes.config import ConfigException
from pydantic import ValidationError
from pydantic_settings import SettingsError

from imago import __version__
from imago.applier import ReconciliationApplier
from imago.config import Settings
from imago.constants import DEFAULT_NAMESPACE, SERVICE_ACCOUNT_DIR
from imago.credentials import load_docker_config
from imago.exceptions import ImagoError, ReconcileError
from imago.reconciler import Reconciler, RunContext
from imago.workloads import build_accessors

logger = logging.getLogger(__name__)


def default_kubeconfig() -> Path:
    """Return $KUBECONFIG or ~/.kube/config."""
    return Path(os.environ.get("KUBECONFIG") or Path.home() / ".kube" / "config")


def build_parser(settings: Settings) -> argparse.ArgumentParser:
    """Build the argument parser, using settings for defaults."""
    parser = argparse.ArgumentParser(
        prog="imago",
        description="Check and pin Kubernetes workload images to their latest registry digest.",
    )
    parser.add_argument(
        "--kubeconfig",
        type=Path,
        default=settings.kubeconfig or default_kubeconfig(),
        help="kube config file",
    )
    parser.add_argument(
        "-n",
        dest="namespaces",
        action="append",
        default=[],
        metavar="NAMESPACE",
        help="Check workloads in given namespaces (default to current namespace)",
    )
    parser.add_argument(
        "-x",
        dest="excluded_namespaces",
        action="append",
        default=[],
        metavar="NAMESPACE",
        help="Check workloads in all namespaces except given namespaces (implies --all-namespaces)",
    )
    parser.add_argument(
        "-A",
        "--all-namespaces",
        action="store_true",
        help="Check workloads in all namespaces",
    )
    parser.add_argument(
        "-l",
        dest="label_selector",
        default="",
        help="Kubernetes label selector. Applies to Deployment, DaemonSet, StatefulSet and CronJob, not pods",
    )
    parser.add_argument(
        "--field-selector",
        default="",
        help="Kubernetes field selector, e.g. metadata.name=myapp",
    )
    parser.add_argument(
        "--update",
        action="store_true",
        help="Update workloads to use newer images (default: only report)",
    )
    parser.add_argument(
        "--check-pods",
        action="store_true",
        help="Check image digests of running pods",
    )
    parser.add_argument(
        "--docker-config",
        type=Path,
        default=settings.docker_config,
        help="Docker config file with registry credentials (default ~/.docker/config.json)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument("-V", "--version", action="version", version=f"imago {__version__}")
    return parser


def validate_args(parser: argparse.ArgumentParser, args: argparse.Namespace) -> None:
    """Reject ambiguous namespace selections (exits with status 2)."""
    if args.namespaces and args.all_namespaces:
        parser.error("You can't use -n with --all-namespaces")
    if args.namespaces and args.excluded_namespaces:
        parser.error("You can't use -n with -x")
    if args.excluded_namespaces:
        args.all_namespaces = True


def setup_logging(level: str) -> None:
    """Configure root logging for console output."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(message)s",
        stream=sys.stderr,
    )
    for noisy in ("kubernetes", "urllib3"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def in_cluster_possible() -> bool:
    """Check whether in-cluster service account credentials are available."""
    token = Path(SERVICE_ACCOUNT_DIR) / "token"
    return bool(
        os.environ.get("KUBERNETES_SERVICE_HOST")
        and os.environ.get("KUBERNETES_SERVICE_PORT")
        and token.is_file()
    )


def load_cluster_config(kubeconfig: Path) -> bool:
    """
    Configure the kubernetes client.

    Returns:
        True when running with in-cluster credentials

    Raises:
        ConfigException: If the configuration cannot be loaded
    """
    if in_cluster_possible():
        kube_config.load_incluster_config()
        return True
    kube_config.load_kube_config(config_file=str(kubeconfig))
    return False


def current_namespace(kubeconfig: Path, in_cluster: bool) -> str:
    """
    Namespace of the service account or of the active kubeconfig context.

    Raises:
        ConfigException: If the kubeconfig has no active context
    """
    if in_cluster:
        namespace = (Path(SERVICE_ACCOUNT_DIR) / "namespace").read_text().strip()
    else:
        _, active = kube_config.list_kube_config_contexts(config_file=str(kubeconfig))
        if not active:
            raise ConfigException("No kubernetes contexts available")
        namespace = (active.get("context") or {}).get("namespace", "")
    return namespace or DEFAULT_NAMESPACE


def resolve_namespaces(args: argparse.Namespace, in_cluster: bool) -> list[str]:
    """Namespaces to process; "" stands for all namespaces."""
    if args.all_namespaces:
        return [""]
    if args.namespaces:
        return list(args.namespaces)
    return [current_namespace(args.kubeconfig, in_cluster)]


def run(args: argparse.Namespace, settings: Settings) -> int:
    """
    Reconcile the selected namespaces.

    Returns:
        0 if every workload was checked, 1 otherwise
    """
    try:
        in_cluster = load_cluster_config(args.kubeconfig)
        namespaces = resolve_namespaces(args, in_cluster)
        default_auth = load_docker_config(args.docker_config)
    except (ConfigException, OSError, ImagoError) as e:
        logger.error(f"Error: {e}")
        return 1

    core_api = client.CoreV1Api()
    apps_api = client.AppsV1Api()
    accessors = build_accessors()
    applier = ReconciliationApplier(
        max_attempts=settings.conflict_retries,
        backoff=settings.conflict_backoff_seconds,
    )

    failures: list[str] = []
    # One connection pool for the whole run; digest caches stay per namespace
    with requests.Session() as session:
        for namespace in namespaces:
            ctx = RunContext.create(
                core_api,
                default_auth,
                registry_timeout=settings.registry_timeout,
                update=args.update,
                check_pods=args.check_pods,
                excluded_namespaces=args.excluded_namespaces,
                session=session,
            )
            reconciler = Reconciler(ctx, accessors, core_api, apps_api, applier)
            try:
                reconciler.run(namespace, args.field_selector, args.label_selector)
            except ReconcileError as e:
                failures.extend(e.failures)
            except ApiException as e:
                message = f"failed to list workloads in {namespace or 'all namespaces'}: {e.status} {e.reason}"
                logger.error(message)
                failures.append(message)

    if failures:
        logger.error(str(ReconcileError(failures)))
        return 1
    return 0


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    try:
        settings = Settings()
    except (ValidationError, SettingsError, yaml.YAMLError) as e:
        setup_logging("INFO")
        logger.error(f"Error: invalid settings: {e}")
        return 1

    parser = build_parser(settings)
    args = parser.parse_args(argv)
    validate_args(parser, args)
    setup_logging("DEBUG" if args.verbose else settings.log_level)
    return run(args, settings)


if __name__ == "__main__":
    sys.exit(main())
