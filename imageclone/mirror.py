"""
The image rewrite planner. Given the containers of a workload it decides which
images still need to be cloned and computes where each clone lives.

Mirror references are derived as follows:

    * A simple reference (name[:tag] where each part is lowercase letters and
      digits joined by single '.' or runs of '-') flattens to
      <prefix>/<name>_<tag>, so nginx:1.21 becomes imageclone/nginx_1.21
    * Any other reference is lowercased, every run of characters that is not a
      legal repository separator becomes a single '_', and the result is
      suffixed with '__' plus a sha256 prefix of the original reference

Both forms are valid repository path components. Simple outputs never contain
'__', so the two forms cannot collide, and the hash keeps distinct complex
references apart.
"""

# Standard
from dataclasses import dataclass, field
from typing import List, Optional, Sequence
import hashlib
import re

# First Party
import alog

# Local
from . import config, constants
from .workload import Container

log = alog.use_channel("MIRROR")

_SIMPLE_PART = r"[a-z0-9]+(?:(?:\.|-+)[a-z0-9]+)*"
_SIMPLE_REFERENCE = re.compile(
    rf"(?P<name>{_SIMPLE_PART})(?::(?P<tag>{_SIMPLE_PART}))?"
)
_LEGAL_SEPARATOR = re.compile(r"\.|-+")
_NON_ALPHANUMERIC_RUN = re.compile(r"[^a-z0-9]+")


## Reference functions #########################################################


def _prefix(prefix: Optional[str]) -> str:
    prefix = config.mirror_prefix if prefix is None else prefix
    return prefix.rstrip("/")


def _flatten(image: str) -> str:
    """Reduce a reference to lowercase alphanumerics joined by single legal
    separators. Leading and trailing separators are dropped.
    """

    def _separator(match):
        if _LEGAL_SEPARATOR.fullmatch(match.group(0)):
            return match.group(0)
        return constants.MIRROR_SEPARATOR

    flattened = _NON_ALPHANUMERIC_RUN.sub(_separator, image.lower())
    return flattened.strip("._-")


def is_mirrored(image: str, prefix: Optional[str] = None) -> bool:
    """Whether the image reference already points into the mirror"""
    return image.startswith(_prefix(prefix) + "/")


def mirror_reference(image: str, prefix: Optional[str] = None) -> str:
    """Compute the mirror reference for a source image reference. References
    that are already mirrored are returned unchanged.

    Args:
        image:  str
            The source image reference
        prefix:  Optional[str]
            The mirror repository prefix. Defaults to config.mirror_prefix

    Returns:
        mirrored:  str
            The reference the image is cloned to
    """
    prefix = _prefix(prefix)
    if is_mirrored(image, prefix):
        return image

    match = _SIMPLE_REFERENCE.fullmatch(image)
    if match:
        flattened = match.group("name")
        if match.group("tag") is not None:
            flattened += constants.MIRROR_SEPARATOR + match.group("tag")
    else:
        digest = hashlib.sha256(image.encode("utf-8")).hexdigest()
        flattened = _flatten(image)
        if flattened:
            flattened += constants.MIRROR_HASH_SEPARATOR
        flattened += digest[: constants.MIRROR_HASH_LENGTH]
    return f"{prefix}/{flattened}"


## Planner #####################################################################


@dataclass(frozen=True)
class ImageRewrite:
    """A container image that must be cloned before it can be rewritten"""

    index: int
    container_name: str
    source: str
    destination: str


@dataclass
class RewritePlan:
    """The result of planning: the desired containers plus the pending clones"""

    containers: List[Container]
    rewrites: List[ImageRewrite] = field(default_factory=list)
    already_mirrored: List[Container] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.rewrites)


def plan_rewrites(
    containers: Sequence[Container],
    prefix: Optional[str] = None,
) -> RewritePlan:
    """Classify each container and compute the rewritten container list. The
    order and number of containers never change; only images are replaced.
    No I/O happens here.
    """
    plan = RewritePlan(containers=[])
    for index, container in enumerate(containers):
        if is_mirrored(container.image, prefix):
            log.debug2(
                "Container [%s] already uses [%s]", container.name, container.image
            )
            plan.already_mirrored.append(container)
            plan.containers.append(container)
            continue

        destination = mirror_reference(container.image, prefix)
        plan.rewrites.append(
            ImageRewrite(
                index=index,
                container_name=container.name,
                source=container.image,
                destination=destination,
            )
        )
        plan.containers.append(Container(name=container.name, image=destination))

    log.debug3(
        "Planned %d rewrites, %d already mirrored",
        len(plan.rewrites),
        len(plan.already_mirrored),
    )
    return plan
