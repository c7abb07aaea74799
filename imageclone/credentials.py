"""
Credential resolution for registry copies. Credentials come from
kubernetes.io/dockerconfigjson pull secrets in the controller's own namespace.
"""

# Standard
from dataclasses import dataclass, field
from typing import Iterable, Optional
import abc
import base64
import binascii
import json

# Third Party
from kubernetes.client.rest import ApiException
import kubernetes
import urllib3

# First Party
import alog

# Local
from . import config, constants
from .exceptions import CredentialResolutionError

log = alog.use_channel("CREDS")


@dataclass(frozen=True)
class Credentials:
    """Username/password pair for a single registry"""

    registry: str
    username: str
    password: str = field(repr=False)

    def as_creds_arg(self) -> str:
        """Format as the user:password argument registry tools accept"""
        return f"{self.username}:{self.password}"


## Reference helpers ###########################################################


def registry_host(image: str) -> str:
    """Get the registry host of an image reference, applying docker's rule that
    the first path component is only a host if it looks like one
    """
    name = image.split("@", 1)[0]
    first, sep, _ = name.partition("/")
    if sep and ("." in first or ":" in first or first == "localhost"):
        return normalize_registry(first)
    return constants.DEFAULT_REGISTRY


def normalize_registry(registry: str) -> str:
    """Reduce a registry key from a docker config (which may carry a scheme
    and path) to a bare lowercase host
    """
    if registry in constants.DEFAULT_REGISTRY_ALIASES:
        return constants.DEFAULT_REGISTRY
    host = registry.lower()
    for scheme in ("https://", "http://"):
        if host.startswith(scheme):
            host = host[len(scheme) :]
    host = host.split("/", 1)[0]
    if host in constants.DEFAULT_REGISTRY_ALIASES:
        return constants.DEFAULT_REGISTRY
    return host


## Providers ###################################################################


class CredentialProviderBase(abc.ABC):
    """Resolves pull/push credentials for an image reference"""

    @abc.abstractmethod
    def resolve_credentials(self, image: str) -> Optional[Credentials]:
        """Look up credentials for the registry hosting the image

        Args:
            image:  str
                The image reference the credentials are for

        Returns:
            credentials:  Optional[Credentials]
                The credentials to use or None for anonymous access

        Raises:
            CredentialResolutionError: The credential source could not be read
        """


class StaticCredentialProvider(CredentialProviderBase):
    """Serves credentials from a fixed per-registry mapping. Registries without
    an entry are accessed anonymously.
    """

    def __init__(self, credentials: Optional[Iterable[Credentials]] = None):
        self.credentials = {
            normalize_registry(creds.registry): creds for creds in credentials or []
        }

    def resolve_credentials(self, image: str) -> Optional[Credentials]:
        registry = registry_host(image)
        creds = self.credentials.get(registry)
        log.debug2(
            "Static credentials for [%s]: %s", registry, "found" if creds else "none"
        )
        return creds


class KubernetesSecretCredentialProvider(CredentialProviderBase):
    """Reads docker config pull secrets from the controller namespace on every
    resolution so rotated secrets are picked up without a restart
    """

    def __init__(
        self,
        namespace: Optional[str] = None,
        secret_names: Optional[Iterable[str]] = None,
        core_api: Optional[kubernetes.client.CoreV1Api] = None,
    ):
        """
        Args:
            namespace:  Optional[str]
                The namespace holding the pull secrets. Defaults to
                config.controller_namespace
            secret_names:  Optional[Iterable[str]]
                The names of the pull secrets to search in order. Defaults to
                config.pull_secret_names
            core_api:  Optional[kubernetes.client.CoreV1Api]
                Client used to read secrets. Created lazily if not given.
        """
        self.namespace = namespace or config.controller_namespace
        self.secret_names = list(
            config.pull_secret_names if secret_names is None else secret_names
        )
        self._core_api = core_api

    @property
    def core_api(self) -> kubernetes.client.CoreV1Api:
        """Lazy property access to the core api client"""
        if self._core_api is None:
            try:
                kubernetes.config.load_incluster_config()
            except kubernetes.config.ConfigException:
                kubernetes.config.load_kube_config()
            self._core_api = kubernetes.client.CoreV1Api()
        return self._core_api

    def resolve_credentials(self, image: str) -> Optional[Credentials]:
        registry = registry_host(image)
        for secret_name in self.secret_names:
            auths = self._read_auths(secret_name, image)
            for auth_key, auth_data in auths.items():
                if normalize_registry(auth_key) != registry:
                    continue
                credentials = self._parse_auth(registry, auth_data)
                if credentials:
                    log.debug2(
                        "Using credentials from secret [%s/%s] for registry [%s]",
                        self.namespace,
                        secret_name,
                        registry,
                    )
                    return credentials

        log.debug("No credentials found for registry [%s]. Using anonymous", registry)
        return None

    ## Implementation ##########################################################

    def _read_auths(self, secret_name: str, image: str) -> dict:
        """Read the auths section of a single docker config secret"""
        try:
            secret = self.core_api.read_namespaced_secret(
                name=secret_name, namespace=self.namespace
            )
        except ApiException as err:
            if err.status == 404:
                log.debug(
                    "Pull secret [%s/%s] not found", self.namespace, secret_name
                )
                return {}
            raise CredentialResolutionError(
                f"Failed to read pull secret {self.namespace}/{secret_name}: {err}",
                image=image,
            ) from err
        except (kubernetes.config.ConfigException, urllib3.exceptions.HTTPError) as err:
            raise CredentialResolutionError(
                "Unable to reach the API server for pull secret "
                f"{self.namespace}/{secret_name}: {err}",
                image=image,
            ) from err

        data = secret.data or {}
        if constants.DOCKER_CONFIG_JSON_KEY not in data:
            log.debug(
                "Secret [%s/%s] does not contain %s",
                self.namespace,
                secret_name,
                constants.DOCKER_CONFIG_JSON_KEY,
            )
            return {}

        try:
            docker_config = json.loads(
                base64.b64decode(data[constants.DOCKER_CONFIG_JSON_KEY])
            )
        except (binascii.Error, ValueError) as err:
            raise CredentialResolutionError(
                f"Pull secret {self.namespace}/{secret_name} is not valid docker config",
                image=image,
            ) from err
        if not isinstance(docker_config, dict):
            raise CredentialResolutionError(
                f"Pull secret {self.namespace}/{secret_name} is not a docker config object",
                image=image,
            )
        return docker_config.get("auths") or {}

    @staticmethod
    def _parse_auth(registry: str, auth_data: dict) -> Optional[Credentials]:
        """Pull username/password out of a single auths entry"""
        username = auth_data.get("username")
        password = auth_data.get("password")
        if not (username and password) and auth_data.get("auth"):
            try:
                decoded = base64.b64decode(auth_data["auth"]).decode("utf-8")
            except (binascii.Error, UnicodeDecodeError):
                log.warning("Ignoring undecodable auth entry for [%s]", registry)
                return None
            username, _, password = decoded.partition(":")
        if not (username and password):
            return None
        return Credentials(registry=registry, username=username, password=password)
