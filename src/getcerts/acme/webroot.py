"""HTTP-01 challenge webroot (RFC 8555 §8.3).

The web server serves ``<challenge_dir>/<token>`` unauthenticated at
``http://<identifier>/.well-known/acme-challenge/<token>``.  This module
writes the key authorization there, optionally checks that the file is
reachable before the CA is notified, and removes the files afterwards.
"""

from __future__ import annotations

import logging
import re
import secrets
import urllib.error
import urllib.request
from typing import TYPE_CHECKING, Any

from getcerts.core.errors import ChallengeFailedError
from getcerts.core.fileio import write_atomic

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable
    from pathlib import Path

log = logging.getLogger(__name__)

# RFC 8555 §8.3: token is base64url, no padding
_TOKEN_RE = re.compile(r"^[A-Za-z0-9_-]+$")

_OK = 200
_MAX_BODY_BYTES = 4096


class ChallengeWebroot:
    """Publishes HTTP-01 key authorizations into the challenge directory.

    Parameters
    ----------
    challenge_dir:
        Directory served at ``/.well-known/acme-challenge/``.
    timeout:
        Seconds the reachability self-check waits for the web server.
    urlopen:
        Opener used by the self-check.

    """

    def __init__(
        self,
        challenge_dir: Path,
        *,
        timeout: float = 15,
        urlopen: Callable[..., Any] = urllib.request.urlopen,
    ) -> None:
        self._dir = challenge_dir
        self._timeout = timeout
        self._urlopen = urlopen

    def path_for(self, token: str) -> Path:
        if not _TOKEN_RE.match(token):
            msg = f"refusing unsafe challenge token '{token}'"
            raise ChallengeFailedError(msg, path=self._dir)
        return self._dir / token

    def publish(self, token: str, key_authorization: str) -> Path:
        """Write *key_authorization* to ``<challenge_dir>/<token>``."""
        path = self.path_for(token)
        try:
            write_atomic(path, key_authorization.encode("ascii"), mode=0o644)
        except OSError as exc:
            msg = f"cannot write challenge file: {exc.strerror or exc}"
            raise ChallengeFailedError(msg, path=path, step="fulfill") from exc
        log.debug("Challenge file written: %s", path)
        return path

    def self_check(self, identifier: str, token: str, key_authorization: str) -> None:
        """Fetch the challenge URL and compare it with *key_authorization*.

        Raises
        ------
        ChallengeFailedError
            If the URL is unreachable, does not answer 200, or serves
            different content.

        """
        url = f"http://{identifier}/.well-known/acme-challenge/{token}"
        log.debug("HTTP-01 self-check: fetching %s", url)
        try:
            req = urllib.request.Request(url, method="GET")
            with self._urlopen(req, timeout=self._timeout) as resp:
                status = resp.status
                raw = resp.read(_MAX_BODY_BYTES)
        except urllib.error.HTTPError as exc:
            msg = f"challenge URL {url} returned HTTP {exc.code}"
            raise ChallengeFailedError(msg, domain=identifier, step="self-check") from exc
        except (urllib.error.URLError, OSError) as exc:
            msg = f"challenge URL {url} is not reachable: {exc}"
            raise ChallengeFailedError(msg, domain=identifier, step="self-check") from exc

        if status != _OK:
            msg = f"challenge URL {url} returned HTTP {status}"
            raise ChallengeFailedError(msg, domain=identifier, step="self-check")

        body = raw.decode("utf-8", errors="replace").strip()
        if not secrets.compare_digest(body.encode(), key_authorization.encode()):
            msg = f"challenge URL {url} does not serve the expected key authorization"
            raise ChallengeFailedError(msg, domain=identifier, step="self-check")

        log.info("HTTP-01 self-check succeeded for %s", identifier)

    def cleanup(self, tokens: Iterable[str]) -> int:
        """Remove the challenge files of *tokens*; return how many were removed.

        Failures are logged, not raised: stale challenge files are harmless.
        """
        removed = 0
        for token in tokens:
            path = self._dir / token
            try:
                path.unlink()
            except FileNotFoundError:
                log.debug("Challenge file already gone: %s", path)
            except OSError as exc:
                log.warning("Cannot remove challenge file %s: %s", path, exc)
            else:
                removed += 1
        if removed:
            log.info("Removed %d challenge file(s) from %s", removed, self._dir)
        return removed
