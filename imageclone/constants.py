"""
Shared module to hold constant values for the library
"""

# Delimiter used for nested dict keys
NESTED_DICT_DELIM = "."

# Path to the pod template container list inside a workload manifest
CONTAINERS_PATH = ["spec", "template", "spec", "containers"]

# Data key of a kubernetes.io/dockerconfigjson secret
DOCKER_CONFIG_JSON_KEY = ".dockerconfigjson"

# Default registry used by docker when a reference carries no host
DEFAULT_REGISTRY = "docker.io"
DEFAULT_REGISTRY_ALIASES = [
    "docker.io",
    "index.docker.io",
    "registry-1.docker.io",
    "https://index.docker.io/v1/",
]

# Separators used when flattening an image reference into a single repository
# name under the mirror prefix
MIRROR_SEPARATOR = "_"
MIRROR_HASH_SEPARATOR = "__"
MIRROR_HASH_LENGTH = 16

# Field manager name reported on updates
FIELD_MANAGER = "image-clone-controller"
