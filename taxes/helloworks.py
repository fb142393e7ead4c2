"""
HelloWorks e-signature adapter.

The tax form flow only needs two operations from the provider: create a
workflow instance for a single participant, and exchange one of its steps
for an authenticated link. ``SignatureWorkflowClient`` describes that
surface; ``HelloWorksClient`` implements it over the HelloWorks v3 REST API.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Protocol

import requests
from django.conf import settings

logger = logging.getLogger(__name__)


class HelloWorksError(Exception):
    def __init__(self, message: str, status_code: int | None = None, payload: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload


class HelloWorksConfigurationError(HelloWorksError):
    pass


@dataclass(frozen=True)
class WorkflowStep:
    step: str
    url: str


@dataclass(frozen=True)
class WorkflowInstance:
    id: str
    steps: list[WorkflowStep] = field(default_factory=list)
    raw: dict = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: dict) -> "WorkflowInstance":
        steps = [
            WorkflowStep(step=str(s.get("step")), url=s.get("url") or "")
            for s in (payload.get("steps") or [])
        ]
        return cls(id=str(payload["id"]), steps=steps, raw=payload)


class SignatureWorkflowClient(Protocol):
    def create_instance(
        self,
        *,
        callback_url: str,
        workflow_id: str,
        participants: dict,
        metadata: dict,
        document_delivery: bool = True,
        delegated_authentication: bool = True,
    ) -> WorkflowInstance:
        ...

    def get_authenticated_link_for_step(self, *, instance_id: str, step: str) -> str:
        ...


def _flatten_form(prefix: str, value: dict) -> dict:
    """participants={"p": {"type": "email"}} -> {"participants[p][type]": "email"}"""
    flat = {}
    for key, inner in value.items():
        name = f"{prefix}[{key}]"
        if isinstance(inner, dict):
            flat.update(_flatten_form(name, inner))
        elif inner is not None:
            flat[name] = _form_value(inner)
    return flat


def _form_value(value) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class HelloWorksClient:
    # Refresh the JWT slightly before HelloWorks expires it
    TOKEN_EXPIRY_MARGIN_SECONDS = 30

    def __init__(
        self,
        api_key_id: str,
        api_key_secret: str,
        *,
        api_base: str = "https://api.helloworks.com/v3",
        timeout: int = 30,
        session: requests.Session | None = None,
    ):
        if not api_key_id or not api_key_secret:
            raise HelloWorksConfigurationError("HelloWorks API key id and secret are required")
        self.api_key_id = api_key_id
        self.api_key_secret = api_key_secret
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self._token: str | None = None
        self._token_expires_at = 0.0

    # --- auth ---

    def _get_token(self) -> str:
        if self._token and time.time() < self._token_expires_at - self.TOKEN_EXPIRY_MARGIN_SECONDS:
            return self._token

        data = self._request(
            "GET",
            f"/token/{self.api_key_id}",
            headers={"Authorization": f"Bearer {self.api_key_secret}"},
            authenticated=False,
        )
        token = (data or {}).get("token")
        if not token:
            raise HelloWorksError("HelloWorks token response did not include a token", payload=data)
        self._token = token
        self._token_expires_at = float(data.get("expires_at") or time.time() + 3600)
        return token

    def _request(self, method: str, path: str, *, headers=None, authenticated=True, **kwargs):
        headers = dict(headers or {})
        if authenticated:
            headers["Authorization"] = f"Bearer {self._get_token()}"
        url = f"{self.api_base}{path}"
        try:
            response = self.session.request(method, url, headers=headers, timeout=self.timeout, **kwargs)
        except requests.exceptions.Timeout as exc:
            raise HelloWorksError(f"HelloWorks request timed out after {self.timeout}s ({method} {path})") from exc
        except requests.exceptions.RequestException as exc:
            raise HelloWorksError(f"HelloWorks request failed ({method} {path}): {exc}") from exc

        try:
            body = response.json()
        except ValueError:
            body = None

        if response.status_code >= 400:
            message = None
            if isinstance(body, dict):
                message = body.get("message") or body.get("error")
            raise HelloWorksError(
                f"HelloWorks returned {response.status_code} for {method} {path}: {message or response.reason}",
                status_code=response.status_code,
                payload=body,
            )
        if isinstance(body, dict) and "data" in body:
            return body["data"]
        return body

    # --- workflow instances ---

    def create_instance(
        self,
        *,
        callback_url: str,
        workflow_id: str,
        participants: dict,
        metadata: dict,
        document_delivery: bool = True,
        delegated_authentication: bool = True,
    ) -> WorkflowInstance:
        if len(participants) != 1:
            raise HelloWorksError("HelloWorks instances support exactly one participant")

        form = {
            "workflow_id": workflow_id,
            "callback_url": callback_url,
            "document_delivery": _form_value(document_delivery),
            "delegated_authentication": _form_value(delegated_authentication),
        }
        for participant_id, participant in participants.items():
            form.update(
                _flatten_form(
                    f"participants[{participant_id}]",
                    {
                        "type": participant.get("type"),
                        "value": participant.get("value"),
                        "full_name": participant.get("fullName"),
                    },
                )
            )
        form.update(_flatten_form("metadata", metadata or {}))

        logger.info("HelloWorks: creating instance of workflow %s", workflow_id)
        data = self._request("POST", "/workflow_instances", data=form)
        if not isinstance(data, dict) or not data.get("id"):
            raise HelloWorksError("HelloWorks create instance response did not include an id", payload=data)
        return WorkflowInstance.from_payload(data)

    def get_authenticated_link_for_step(self, *, instance_id: str, step: str) -> str:
        data = self._request(
            "GET",
            f"/workflow_instances/{instance_id}/authenticated_link",
            params={"step": step},
        )
        url = data.get("url") if isinstance(data, dict) else data
        if not url:
            raise HelloWorksError(f"HelloWorks returned no authenticated link for {instance_id}", payload=data)
        return url


def get_helloworks_client() -> HelloWorksClient:
    return HelloWorksClient(
        getattr(settings, "HELLOWORKS_API_KEY_ID", ""),
        getattr(settings, "HELLOWORKS_API_KEY_SECRET", ""),
        api_base=getattr(settings, "HELLOWORKS_API_BASE", "https://api.helloworks.com/v3"),
        timeout=getattr(settings, "HELLOWORKS_TIMEOUT_SECONDS", 30),
    )
