"""
Kubernetes connection for the operator.

The cluster configuration is resolved once at startup: in-cluster service
account credentials when running in a pod, otherwise a kubeconfig file.
"""
from kubernetes_asyncio import client, config

from rds_operator.config.logging import get_logger
from rds_operator.config.settings import Settings
from rds_operator.exceptions import KubernetesError

logger = get_logger(__name__)


class KubernetesClientSet:
    """Container for Kubernetes API clients."""

    def __init__(self, api_client: client.ApiClient):
        self.api_client = api_client
        self.custom_api = client.CustomObjectsApi(api_client)
        self.core_api = client.CoreV1Api(api_client)
        self.apiext_api = client.ApiextensionsV1Api(api_client)

    async def close(self):
        """Close all API clients."""
        if self.api_client:
            await self.api_client.close()


async def load_client_set(settings: Settings) -> KubernetesClientSet:
    """
    Load Kubernetes configuration and build the API clients.

    Args:
        settings: Operator settings (``k8s_in_cluster``, ``kubeconfig_path``)

    Returns:
        KubernetesClientSet bound to the resolved cluster

    Raises:
        KubernetesError: If no usable configuration is found
    """
    try:
        config.load_incluster_config()
        logger.info("kubernetes_config_loaded", source="in-cluster")
    except config.ConfigException as e:
        if settings.k8s_in_cluster:
            raise KubernetesError(f"in-cluster configuration requested but unavailable: {e}")
        logger.info("not_running_in_cluster", kubeconfig=settings.kubeconfig_path or "default")
        try:
            await config.load_kube_config(config_file=settings.kubeconfig_path)
        except (config.ConfigException, FileNotFoundError) as kubeconfig_error:
            raise KubernetesError(
                f"Failed to load kubeconfig {settings.kubeconfig_path or '(default)'}: {kubeconfig_error}"
            )
        logger.info("kubernetes_config_loaded", source="kubeconfig")

    return KubernetesClientSet(client.ApiClient())
