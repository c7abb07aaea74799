"""
Registry mirror clients copy an image from its source reference to its mirror
reference. The copy itself is delegated to skopeo.
"""

# Standard
from typing import List, Optional
import abc
import subprocess
import threading
import time

# First Party
import alog

# Local
from . import config
from .credentials import Credentials
from .exceptions import MirrorCopyError

log = alog.use_channel("REGISTRY")

DOCKER_TRANSPORT = "docker://"


class RegistryMirrorClientBase(abc.ABC):
    """Copies images between registries"""

    @abc.abstractmethod
    def copy(
        self,
        source: str,
        destination: str,
        source_credentials: Optional[Credentials] = None,
        destination_credentials: Optional[Credentials] = None,
        cancel_event: Optional[threading.Event] = None,
    ):
        """Copy the source image to the destination reference

        Args:
            source:  str
                The image reference to copy from
            destination:  str
                The image reference to copy to
            source_credentials:  Optional[Credentials]
                Credentials for the source registry, or None for anonymous
            destination_credentials:  Optional[Credentials]
                Credentials for the destination registry, or None for anonymous
            cancel_event:  Optional[threading.Event]
                When set, an in-flight copy is aborted

        Raises:
            MirrorCopyError: The copy failed or was cancelled
        """


class DryRunMirrorClient(RegistryMirrorClientBase):
    """Mirror client that only logs the copies it would make"""

    def __init__(self):
        self.copies = []

    def copy(
        self,
        source,
        destination,
        source_credentials=None,
        destination_credentials=None,
        cancel_event=None,
    ):
        log.info("DRY RUN copy [%s] -> [%s]", source, destination)
        self.copies.append((source, destination))


class SkopeoMirrorClient(RegistryMirrorClientBase):
    """Mirror client that shells out to `skopeo copy`"""

    def __init__(
        self,
        binary: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        poll_seconds: Optional[float] = None,
        dest_tls_verify: Optional[bool] = None,
        all_platforms: Optional[bool] = None,
    ):
        """All arguments default to the matching skopeo.* library config"""
        skopeo_config = config.skopeo
        self.binary = binary or skopeo_config.binary
        self.timeout_seconds = float(
            timeout_seconds
            if timeout_seconds is not None
            else skopeo_config.timeout_seconds
        )
        self.poll_seconds = float(
            poll_seconds if poll_seconds is not None else skopeo_config.poll_seconds
        )
        self.dest_tls_verify = (
            skopeo_config.dest_tls_verify if dest_tls_verify is None else dest_tls_verify
        )
        self.all_platforms = (
            skopeo_config.all_platforms if all_platforms is None else all_platforms
        )

    def copy(
        self,
        source,
        destination,
        source_credentials=None,
        destination_credentials=None,
        cancel_event=None,
    ):
        cmd = self.build_command(
            source, destination, source_credentials, destination_credentials
        )
        log_cmd = " ".join(self.redact_command(cmd))
        log.debug("Running: %s", log_cmd)

        try:
            proc = subprocess.Popen(  # pylint: disable=consider-using-with
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
            )
        except OSError as err:
            raise MirrorCopyError(
                f"Unable to run {self.binary}: {err}",
                source=source,
                destination=destination,
            ) from err

        _, stderr = self._wait(proc, source, destination, cancel_event)
        if proc.returncode != 0:
            log.debug("Failed command: %s", log_cmd)
            raise MirrorCopyError(
                f"{self.binary} copy exited with {proc.returncode}: "
                f"{(stderr or '').strip()}",
                source=source,
                destination=destination,
            )
        log.debug2("Copied [%s] -> [%s]", source, destination)

    ## Command construction ####################################################

    def build_command(
        self,
        source: str,
        destination: str,
        source_credentials: Optional[Credentials] = None,
        destination_credentials: Optional[Credentials] = None,
    ) -> List[str]:
        """Build the full skopeo copy command line"""
        cmd = [self.binary, "copy"]
        if self.all_platforms:
            cmd.append("--all")
        if source_credentials:
            cmd.extend(["--src-creds", source_credentials.as_creds_arg()])
        if destination_credentials:
            cmd.extend(["--dest-creds", destination_credentials.as_creds_arg()])
        if not self.dest_tls_verify:
            cmd.append("--dest-tls-verify=false")
        cmd.extend([DOCKER_TRANSPORT + source, DOCKER_TRANSPORT + destination])
        return cmd

    @staticmethod
    def redact_command(cmd: List[str]) -> List[str]:
        """Return a copy of the command with credential passwords masked"""
        redacted = list(cmd)
        for i, token in enumerate(redacted[:-1]):
            if token in ("--src-creds", "--dest-creds"):
                user, _, _ = redacted[i + 1].partition(":")
                redacted[i + 1] = f"{user}:****"
        return redacted

    ## Implementation ##########################################################

    def _wait(self, proc, source, destination, cancel_event):
        """Wait for the copy, killing it on timeout or cancellation"""
        deadline = time.monotonic() + self.timeout_seconds
        while True:
            try:
                return proc.communicate(timeout=self.poll_seconds)
            except subprocess.TimeoutExpired:
                pass

            if cancel_event is not None and cancel_event.is_set():
                reason = "cancelled"
            elif time.monotonic() >= deadline:
                reason = f"timed out after {self.timeout_seconds}s"
            else:
                continue

            proc.kill()
            proc.communicate()
            raise MirrorCopyError(
                f"Copy {reason}", source=source, destination=destination
            )
