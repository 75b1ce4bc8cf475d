"""ACME HTTP-01 client (RFC 8555) on top of the ``acme`` library.

One :meth:`AcmeClient.issue` call walks the order state machine for a
single signing request::

    Init -> NewOrder -> Fulfill -> Poll -> Finalize -> Issued
                                                    \\-> Failed (exception)

*Init* fetches the directory of the configured endpoint (production or
staging, never both) and looks the account up by its key; the account
must already be registered.  JWS signing, nonce bookkeeping and the
single ``badNonce`` retry are left to :class:`acme.client.ClientNetwork`.

Transient failures (connection errors, 5xx answers, ``serverInternal``
and ``rateLimited`` problems) are retried with exponential backoff by
calling the library operation again, so every attempt is signed anew
with a fresh nonce.

The client never writes to the certificate directory.  Challenge files
published into the webroot are recorded in :attr:`AcmeClient.published_tokens`
so the caller can remove them, whether issuance succeeded or not.
"""

from __future__ import annotations

import datetime
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, TypeVar

import josepy as jose
import requests
from acme import challenges, errors, messages
from acme import client as acme_client
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa

from getcerts.core.errors import (
    AcmeNetworkError,
    AcmeRejectedError,
    AcmeTimeoutError,
    ChallengeFailedError,
    KeyReadError,
    NoSanDefinedError,
)
from getcerts.csr.builder import dns_names
from getcerts.logging.sanitize import sanitize_for_logs

if TYPE_CHECKING:
    from collections.abc import Callable

    from cryptography import x509
    from cryptography.hazmat.primitives.asymmetric.types import PrivateKeyTypes

    from getcerts.acme.webroot import ChallengeWebroot
    from getcerts.config.settings import AcmeSettings

log = logging.getLogger(__name__)

T = TypeVar("T")

_REQUIRED_DIRECTORY_KEYS = ("newNonce", "newAccount", "newOrder")

# problem codes worth another attempt; badNonce is handled by ClientNetwork
_TRANSIENT_PROBLEMS = frozenset({"serverInternal", "rateLimited"})
_TOO_MANY_REQUESTS = 429
_SERVER_ERROR = 500

_ACCOUNT_DOES_NOT_EXIST = "accountDoesNotExist"

_EC_ALGORITHMS = {
    "secp256r1": jose.ES256,
    "secp384r1": jose.ES384,
    "secp521r1": jose.ES512,
}


def account_jwk(account_key: PrivateKeyTypes) -> tuple[jose.JWK, jose.JWASignature]:
    """Wrap *account_key* as a JWK and pick its JWS algorithm.

    RSA keys sign with RS256; EC keys on P-256, P-384 or P-521 with the
    matching ES algorithm.

    Raises
    ------
    KeyReadError
        For any other key type or curve.

    """
    if isinstance(account_key, rsa.RSAPrivateKey):
        return jose.JWKRSA(key=account_key), jose.RS256
    if isinstance(account_key, ec.EllipticCurvePrivateKey):
        alg = _EC_ALGORITHMS.get(account_key.curve.name)
        if alg is not None:
            return jose.JWKEC(key=account_key), alg
        msg = f"account key curve {account_key.curve.name} cannot sign ACME requests"
    else:
        msg = f"account key type {type(account_key).__name__} cannot sign ACME requests"
    raise KeyReadError(msg)


@dataclass(frozen=True)
class IssuedChain:
    """Terminal ``Issued`` state: the raw PEM chain and how it was obtained."""

    pem: str
    order_url: str
    identifiers: tuple[str, ...]
    challenge_tokens: tuple[str, ...]


class AcmeClient:
    """Obtain a certificate chain for a signing request via HTTP-01.

    Parameters
    ----------
    settings:
        Directory selection, retry, polling and self-check configuration.
    account_key:
        Private key of the already-registered ACME account.
    webroot:
        Where key authorizations are published.
    session:
        ``requests`` session handed to the library's network layer;
        defaults to the one :class:`acme.client.ClientNetwork` creates.
    sleep:
        Called between polls and retries.

    """

    def __init__(
        self,
        settings: AcmeSettings,
        account_key: PrivateKeyTypes,
        webroot: ChallengeWebroot,
        *,
        session: requests.Session | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._settings = settings
        self._jwk, self._alg = account_jwk(account_key)
        self._webroot = webroot
        self._session = session
        self._sleep = sleep
        self._acme: acme_client.ClientV2 | None = None
        self.published_tokens: list[str] = []

    @property
    def directory_url(self) -> str:
        return self._settings.active_directory_url

    @property
    def account_url(self) -> str:
        """URL of the account the key belongs to, looked up on first use."""
        return self._connect().net.account.uri

    # -- init --------------------------------------------------------------

    def _connect(self) -> acme_client.ClientV2:
        if self._acme is not None:
            return self._acme

        net = acme_client.ClientNetwork(
            self._jwk,
            alg=self._alg,
            user_agent=self._settings.user_agent,
            timeout=self._settings.timeout_seconds,
        )
        if self._session is not None:
            net.session = self._session

        directory = self._call("directory", self._fetch_directory, net)
        acme = acme_client.ClientV2(directory, net=net)
        self._login(acme)
        self._acme = acme
        return acme

    def _fetch_directory(self, net: acme_client.ClientNetwork) -> messages.Directory:
        log.debug("Fetching ACME directory %s", self.directory_url)
        directory = messages.Directory.from_json(net.get(self.directory_url).json())
        missing = []
        for name in _REQUIRED_DIRECTORY_KEYS:
            try:
                directory[name]
            except KeyError:
                missing.append(name)
        if missing:
            msg = f"directory {self.directory_url} lacks {', '.join(missing)}"
            raise AcmeRejectedError(msg, step="directory")
        return directory

    def _login(self, acme: acme_client.ClientV2) -> None:
        def lookup() -> messages.RegistrationResource:
            query = messages.NewRegistration(only_return_existing=True)
            try:
                return acme.new_account(query)
            except errors.ConflictError as exc:
                # an existing account answers 200 with its URL in Location
                regr = messages.RegistrationResource(
                    uri=exc.location,
                    body=messages.Registration(),
                )
                acme.net.account = regr
                return regr

        try:
            regr = self._call("account", lookup)
        except AcmeRejectedError as exc:
            if exc.problem_type == messages.ERROR_PREFIX + _ACCOUNT_DOES_NOT_EXIST:
                msg = "account key is not registered with the CA"
                raise AcmeRejectedError(
                    msg,
                    problem_type=exc.problem_type,
                    step="account",
                ) from exc
            raise

        if not regr.uri:
            msg = "CA returned no account URL"
            raise AcmeRejectedError(msg, step="account")
        log.info("Using ACME account %s", regr.uri)

    # -- retries -----------------------------------------------------------

    def _call(self, step: str, operation: Callable[..., T], *args: Any) -> T:  # noqa: ANN401
        """Run one library operation, retrying transient failures.

        Raises
        ------
        AcmeNetworkError
            When every attempt failed transiently.
        AcmeRejectedError, AcmeTimeoutError
            For a terminal answer of the CA.

        """
        attempts = self._settings.max_retries + 1
        attempt = 0
        while True:
            try:
                return operation(*args)
            except (errors.Error, jose.DeserializationError, requests.RequestException) as exc:
                failure = exc
            except ValueError as exc:
                # ClientNetwork wraps connection errors as "Requesting host/path:..."
                if not str(exc).startswith("Requesting "):
                    raise
                failure = exc

            if not _is_transient(failure):
                raise _translate(step, failure) from failure
            attempt += 1
            if attempt == attempts:
                msg = f"{step} failed after {attempts} attempt(s): {_describe(failure)}"
                raise AcmeNetworkError(msg, step=step) from failure

            delay = self._settings.retry_delay_seconds * 2 ** (attempt - 1)
            log.warning(
                "%s failed (%s), attempt %d/%d, retrying in %.1fs",
                step,
                _describe(failure),
                attempt,
                attempts,
                delay,
            )
            self._sleep(delay)

    # -- order flow --------------------------------------------------------

    def issue(
        self,
        csr: x509.CertificateSigningRequest,
        *,
        domain: str | None = None,
    ) -> IssuedChain:
        """Run the order for *csr* and return the issued chain.

        Identifiers are the CSR's subject-alternative DNS names.

        Raises
        ------
        NoSanDefinedError
            If the CSR names no DNS identifier.
        AcmeNetworkError, AcmeRejectedError, ChallengeFailedError, AcmeTimeoutError
            For failures of the respective state.

        """
        identifiers = dns_names(csr)
        if not identifiers:
            msg = "signing request carries no DNS subject alternative name"
            raise NoSanDefinedError(msg, domain=domain)

        self.published_tokens = []
        acme = self._connect()

        csr_pem = csr.public_bytes(serialization.Encoding.PEM)
        orderr = self._call("new-order", acme.new_order, csr_pem)
        log.info(
            "Order %s created for %s (%d authorization(s))",
            orderr.uri,
            ", ".join(identifiers),
            len(orderr.authorizations),
        )
        log.debug("Order: %s", sanitize_for_logs(orderr.body.to_json()))

        for authzr in orderr.authorizations:
            self._authorize(acme, authzr)

        # ClientV2 compares the deadline with naive local time
        deadline = datetime.datetime.now() + datetime.timedelta(  # noqa: DTZ005
            seconds=self._settings.finalize_timeout_seconds,
        )
        orderr = self._call("finalize", acme.finalize_order, orderr, deadline)
        log.info("Certificate issued for order %s", orderr.uri)

        return IssuedChain(
            pem=orderr.fullchain_pem,
            order_url=orderr.uri,
            identifiers=tuple(identifiers),
            challenge_tokens=tuple(self.published_tokens),
        )

    def cleanup(self) -> int:
        """Remove the challenge files published by the last :meth:`issue`."""
        removed = self._webroot.cleanup(self.published_tokens)
        self.published_tokens = []
        return removed

    def _authorize(
        self,
        acme: acme_client.ClientV2,
        authzr: messages.AuthorizationResource,
    ) -> None:
        identifier = authzr.body.identifier.value
        status = authzr.body.status
        if status == messages.STATUS_VALID:
            log.info("Authorization for %s is already valid", identifier)
            return
        if status != messages.STATUS_PENDING:
            msg = f"authorization for {identifier} is {status.name}"
            raise ChallengeFailedError(msg, domain=identifier, step="fulfill")

        challb = next(
            (c for c in authzr.body.challenges if isinstance(c.chall, challenges.HTTP01)),
            None,
        )
        if challb is None:
            msg = f"CA offered no http-01 challenge for {identifier}"
            raise AcmeRejectedError(msg, domain=identifier, step="fulfill")

        response, key_authorization = challb.chall.response_and_validation(self._jwk)
        token = challb.chall.encode("token")
        self._webroot.publish(token, key_authorization)
        self.published_tokens.append(token)
        if self._settings.self_check:
            self._webroot.self_check(identifier, token, key_authorization)

        self._call("notify", acme.answer_challenge, challb, response)
        log.info("Challenge for %s submitted, polling %s", identifier, authzr.uri)
        self._poll(acme, authzr, identifier)

    def _poll(
        self,
        acme: acme_client.ClientV2,
        authzr: messages.AuthorizationResource,
        identifier: str,
    ) -> None:
        max_attempts = self._settings.poll_max_attempts
        for attempt in range(1, max_attempts + 1):
            self._sleep(self._settings.poll_interval_seconds)
            authzr, _ = self._call("poll", acme.poll, authzr)
            status = authzr.body.status
            if status == messages.STATUS_VALID:
                log.info("Authorization for %s is valid", identifier)
                return
            if status != messages.STATUS_PENDING:
                msg = (
                    f"authorization for {identifier} is {status.name}: "
                    f"{_challenge_error(authzr)}"
                )
                raise ChallengeFailedError(msg, domain=identifier, step="poll")
            log.debug(
                "Authorization for %s still pending (%d/%d)",
                identifier,
                attempt,
                max_attempts,
            )

        msg = f"authorization for {identifier} still pending after {max_attempts} polls"
        raise AcmeTimeoutError(msg, domain=identifier, step="poll")


# ---------------------------------------------------------------------------
# Failure classification
# ---------------------------------------------------------------------------


def _http_status(exc: errors.ClientError) -> int | None:
    # ClientError carries the response, or (response, decode error)
    detail = exc.args[0] if exc.args else None
    if isinstance(detail, tuple):
        detail = detail[0]
    return getattr(detail, "status_code", None)


def _is_transient(exc: Exception) -> bool:
    if isinstance(exc, (requests.RequestException, ValueError)):
        return True
    if isinstance(exc, messages.Error):
        return exc.code in _TRANSIENT_PROBLEMS
    if isinstance(exc, errors.ClientError):
        status = _http_status(exc)
        return status is not None and (status >= _SERVER_ERROR or status == _TOO_MANY_REQUESTS)
    return False


def _describe(exc: Exception) -> str:
    if isinstance(exc, messages.Error):
        return exc.detail or exc.typ
    if isinstance(exc, errors.ClientError):
        return f"HTTP {_http_status(exc)}"
    return str(exc) or type(exc).__name__


def _translate(step: str, exc: Exception) -> Exception:
    if isinstance(exc, errors.TimeoutError):
        msg = f"{step} did not complete before the deadline"
        return AcmeTimeoutError(msg, step=step)
    if isinstance(exc, errors.IssuanceError):
        error = exc.error
        msg = f"order became invalid: {error.detail or error.typ}"
        return AcmeRejectedError(msg, problem_type=error.typ, step=step)
    if isinstance(exc, messages.Error):
        msg = f"{step} rejected: {exc.detail or exc.typ}"
        return AcmeRejectedError(msg, problem_type=exc.typ, step=step)
    if isinstance(exc, errors.ClientError):
        status = _http_status(exc)
        msg = f"{step} got an unexpected response (HTTP {status})"
        return AcmeRejectedError(msg, status=status, step=step)
    msg = f"{step} failed: {exc}"
    return AcmeRejectedError(msg, step=step)


def _challenge_error(authzr: messages.AuthorizationResource) -> str:
    for challb in authzr.body.challenges:
        if challb.error is not None:
            return challb.error.detail or challb.error.typ
    return "no error detail"
