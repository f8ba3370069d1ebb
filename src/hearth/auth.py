"""OAuth client registration against the identity provider."""

from __future__ import annotations

import hashlib
import logging
from typing import Any, Mapping, Protocol, Sequence

from msgspec import DecodeError

from .config import AppConfig
from .exceptions import RegistrationError
from .models import AppRegistration
from .serialization import json_decode, json_encode
from .transport import HttpRequest, HttpResponse, TransportCallable, TransportError, default_transport, send

logger = logging.getLogger(__name__)

SIGNING_ALG = "RS256"


class AuthRegistrar(Protocol):
    """Register an OAuth client allowed to redirect to ``redirect_uris``."""

    async def register_client(self, redirect_uris: Sequence[str]) -> AppRegistration: ...


class HttpAuthRegistrar:
    """Register the application as a resource client of a Keycloak-style realm."""

    def __init__(self, config: AppConfig, *, transport: TransportCallable | None = None) -> None:
        self.config = config
        self._transport = transport or default_transport

    @property
    def issuer(self) -> str:
        return self.config.realm_url

    @property
    def registration_url(self) -> str:
        return f"{self.issuer}/{self.config.registration_path.strip('/')}"

    @property
    def certs_url(self) -> str:
        return f"{self.issuer}/protocol/openid-connect/certs"

    async def register_client(self, redirect_uris: Sequence[str]) -> AppRegistration:
        """Create the client, then read the realm's public key and its key id.

        ``kid`` comes from the realm's JWKS: the first ``RS256`` signing key.
        When the realm publishes none, it falls back to the first 16 hex digits
        of the SHA-256 of the public key as the realm returned it.
        """
        payload = {
            "name": f"Resource Server for {self.config.app_name}",
            "description": f"Client registered by {self.config.app_name} {self.config.version}",
            "redirect_uris": list(redirect_uris),
        }
        response = await self._request(
            HttpRequest(
                method="POST",
                url=self.registration_url,
                headers={"Content-Type": "application/json", "Accept": "application/json"},
                body=json_encode(payload),
                timeout=self.config.http_timeout,
            )
        )
        client = _json_object(response, "client registration")
        client_id = _required_str(client, "client_id", "client registration")
        client_secret = _required_str(client, "client_secret", "client registration")

        realm = _json_object(await self._get(self.issuer), "realm metadata")
        public_key = _required_str(realm, "public_key", "realm metadata")
        kid = await self._signing_key_id(public_key)
        logger.info("Registered OAuth client %s with %s", client_id, self.issuer)
        return AppRegistration(
            public_key=public_key,
            kid=kid,
            issuer=self.issuer,
            client_id=client_id,
            client_secret=client_secret,
            alg=SIGNING_ALG,
        )

    async def _signing_key_id(self, public_key: str) -> str:
        jwks = _json_object(await self._get(self.certs_url), "realm certs")
        keys = jwks.get("keys")
        if isinstance(keys, list):
            for key in keys:
                if not isinstance(key, dict) or key.get("alg") != SIGNING_ALG or key.get("use", "sig") != "sig":
                    continue
                kid = key.get("kid")
                if isinstance(kid, str) and kid:
                    return kid
        logger.warning(
            "Realm %s publishes no %s signing key; deriving kid from its public key", self.issuer, SIGNING_ALG
        )
        return hashlib.sha256(public_key.encode("utf-8")).hexdigest()[:16]

    async def _get(self, url: str) -> HttpResponse:
        return await self._request(
            HttpRequest(method="GET", url=url, headers={"Accept": "application/json"}, timeout=self.config.http_timeout)
        )

    async def _request(self, request: HttpRequest) -> HttpResponse:
        try:
            response = await send(self._transport, request)
        except TransportError as exc:
            raise RegistrationError(f"error connecting to identity provider: {exc}") from exc
        if not response.ok:
            raise RegistrationError(
                f"identity provider returned status {response.status} for {request.method} {request.url}"
            )
        return response


def _json_object(response: HttpResponse, what: str) -> Mapping[str, Any]:
    try:
        document = json_decode(response.body)
    except DecodeError as exc:
        raise RegistrationError(f"invalid {what} response from identity provider") from exc
    if not isinstance(document, dict):
        raise RegistrationError(f"invalid {what} response from identity provider")
    return document


def _required_str(document: Mapping[str, Any], key: str, what: str) -> str:
    value = document.get(key)
    if not isinstance(value, str) or not value:
        raise RegistrationError(f"{what} response is missing '{key}'")
    return value


__all__ = ["AuthRegistrar", "HttpAuthRegistrar"]
