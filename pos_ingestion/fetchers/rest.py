"""
RestFetcher: one templated JSON endpoint per configuration (source kind api).

Configuration options:
    headers, params, body   request templates; ``{{NAME}}`` placeholders are
                            substituted in these and in the URL
    body_type               ``json`` (default) or ``form``
    auth                    optional token step run before the data call:
                            url, method (POST), headers, params, body,
                            body_type, token_path (``data``), header_name,
                            header_prefix

The token is exposed to the data-call templates as ``{{Authorization}}``;
with ``header_name`` set it is also sent as that header.
"""

from __future__ import annotations

from datetime import date
from typing import Any, Mapping

from pos_kernel.exceptions import AuthenticationFailedError

from pos_ingestion.domain.types import Configuration
from pos_ingestion.fetchers.base import render_placeholders
from pos_ingestion.fetchers.http import HttpFetcher, logger
from pos_ingestion.mapping.paths import is_absent, resolve

FORM_BODY_TYPES = frozenset({"form", "x-www-form-urlencoded"})


def body_kwargs(body: Any, body_type: str | None) -> dict[str, Any]:
    """requests keyword for a rendered body."""
    if body is None:
        return {}
    if (body_type or "json").lower() in FORM_BODY_TYPES:
        if isinstance(body, Mapping):
            body = {k: v for k, v in body.items() if v is not None}
        return {"data": body}
    if isinstance(body, (Mapping, list)):
        return {"json": body}
    return {"data": body}


class RestFetcher(HttpFetcher):
    """Calls one JSON endpoint and returns the decoded tree."""

    source_kind = "api"

    def fetch(self, config: Configuration, since: date) -> Any:
        context = self.placeholder_context(config, since)
        headers: dict[str, Any] = {}

        auth = config.option("auth")
        if auth:
            token = self.fetch_token(config, auth, context)
            context["Authorization"] = token
            if auth.get("header_name"):
                headers[auth["header_name"]] = f"{auth.get('header_prefix', '')}{token}"

        url = render_placeholders(config.api_url, context)
        headers.update(render_placeholders(dict(config.option("headers") or {}), context))
        params = render_placeholders(dict(config.option("params") or {}), context)
        body = render_placeholders(config.option("body"), context)

        response = self.send(
            config.http_method or "GET",
            url,
            config,
            headers=headers,
            params=params,
            **body_kwargs(body, config.option("body_type")),
        )
        payload = self.json_body(response, url)
        logger.info(
            "vendor_payload_fetched",
            extra={"source_kind": self.source_kind, "since": since.isoformat()},
        )
        return payload

    def fetch_token(
        self,
        config: Configuration,
        auth: Mapping[str, Any],
        context: Mapping[str, Any],
    ) -> str:
        """
        Run the token step and return the token text.

        Raises:
            AuthenticationFailedError: rejected, or no token at ``token_path``.
        """
        url = render_placeholders(auth.get("url"), context)
        token_path = auth.get("token_path") or "data"
        response = self.send(
            auth.get("method") or "POST",
            url,
            config,
            headers=render_placeholders(dict(auth.get("headers") or {}), context),
            params=render_placeholders(dict(auth.get("params") or {}), context),
            **body_kwargs(render_placeholders(auth.get("body"), context), auth.get("body_type")),
        )
        token = resolve(self.json_body(response, url), token_path)
        if is_absent(token) or token is None or token == "":
            raise AuthenticationFailedError(
                f"Token not found at path {token_path!r}",
                source_kind=self.source_kind,
                url=url,
            )
        logger.info("auth_token_retrieved", extra={"token_path": token_path})
        return str(token)
