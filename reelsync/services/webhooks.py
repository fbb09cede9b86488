"""Verify, normalise and dispatch inbound provider deliveries.

Handlers raise ``SignatureInvalid`` before touching any state; everything that
passes verification is acknowledged with an outcome, including payloads the
normaliser does not recognise.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping, Optional

from reelsync.core.config import Settings
from reelsync.core.errors import InvalidRequest, SignatureInvalid
from reelsync.core.jobs import EnrichmentJobSpec
from reelsync.core.logging import bound_context, get_logger
from reelsync.services.reconciler import LifecycleReconciler
from reelsync.services.users import UserStore, identity_display_name
from reelsync.webhooks.events import Unrecognized, normalize, parse_envelope
from reelsync.webhooks.signatures import (
    Rejected,
    VerificationResult,
    verify_identity_signature,
    verify_media_signature,
    verify_workflow_signature,
)

USER_CREATED = "user.created"
USER_UPDATED = "user.updated"
USER_DELETED = "user.deleted"


@dataclass(frozen=True)
class WebhookAck:
    outcome: str
    note: Optional[str] = None

    def as_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"status": "ok", "outcome": self.outcome}
        if self.note:
            body["note"] = self.note
        return body


def _decode(raw_body: bytes) -> Any:
    try:
        return json.loads(raw_body)
    except (UnicodeDecodeError, json.JSONDecodeError):
        return None


class WebhookService:
    def __init__(self, settings: Settings, reconciler: LifecycleReconciler, users: UserStore):
        self.settings = settings
        self.reconciler = reconciler
        self.users = users
        self.logger = get_logger(component="webhooks")

    def _gate(self, result: VerificationResult) -> Optional[str]:
        if isinstance(result, Rejected):
            self.logger.warning("webhook_rejected", provider=result.provider, reason=result.reason)
            raise SignatureInvalid(result.reason, provider=result.provider)
        return result.delivery_id

    def _verify_workflow(self, raw_body: bytes, headers: Mapping[str, str]) -> Optional[str]:
        secrets = self.settings.secrets
        return self._gate(
            verify_workflow_signature(
                raw_body,
                headers,
                secrets.workflow_current_signing_key,
                secrets.workflow_next_signing_key,
                tolerance_s=self.settings.webhook_tolerance_seconds,
            )
        )

    async def handle_media(self, raw_body: bytes, headers: Mapping[str, str]) -> WebhookAck:
        delivery_id = self._gate(
            verify_media_signature(
                raw_body,
                headers,
                self.settings.secrets.media_webhook_secret,
                tolerance_s=self.settings.webhook_tolerance_seconds,
            )
        )
        with bound_context(provider="media", delivery_id=delivery_id):
            return await self._reconcile(raw_body)

    async def handle_workflow(self, raw_body: bytes, headers: Mapping[str, str]) -> WebhookAck:
        delivery_id = self._verify_workflow(raw_body, headers)
        with bound_context(provider="workflow", delivery_id=delivery_id):
            return await self._reconcile(raw_body)

    async def _reconcile(self, raw_body: bytes) -> WebhookAck:
        parsed = parse_envelope(_decode(raw_body))
        if isinstance(parsed, Unrecognized):
            return self._unrecognized(parsed)
        event_type, data = parsed
        event = normalize(event_type, data)
        if isinstance(event, Unrecognized):
            return self._unrecognized(event)
        result = await self.reconciler.apply(event)
        return WebhookAck(result.outcome.value, result.note)

    def _unrecognized(self, event: Unrecognized) -> WebhookAck:
        self.logger.info("webhook_unrecognized", event_type=event.event_type, reason=event.reason)
        return WebhookAck("unrecognized", event.reason)

    async def handle_identity(self, raw_body: bytes, headers: Mapping[str, str]) -> WebhookAck:
        secrets = self.settings.secrets
        delivery_id = self._gate(
            verify_identity_signature(
                raw_body,
                headers,
                secrets.identity_webhook_secret,
                tolerance_s=self.settings.webhook_tolerance_seconds,
            )
        )
        with bound_context(provider="identity", delivery_id=delivery_id):
            parsed = parse_envelope(_decode(raw_body))
            if isinstance(parsed, Unrecognized):
                return self._unrecognized(parsed)
            event_type, data = parsed
            user_id = data.get("id")
            if not isinstance(user_id, str) or not user_id:
                return self._unrecognized(Unrecognized(event_type, "missing_user_id"))

            if event_type in (USER_CREATED, USER_UPDATED):
                await self.users.upsert(user_id, name=identity_display_name(data), image_url=data.get("image_url"))
                self.logger.info("identity_user_synced", user_id=user_id, event_type=event_type)
                return WebhookAck("applied")
            if event_type == USER_DELETED:
                deleted = await self.users.delete(user_id)
                self.logger.info("identity_user_deleted", user_id=user_id, existed=deleted)
                return WebhookAck("applied" if deleted else "noop")
            return self._unrecognized(Unrecognized(event_type, "unknown_event_type"))

    async def handle_worker(
        self,
        raw_body: bytes,
        headers: Mapping[str, str],
        run: Callable[[EnrichmentJobSpec], Awaitable[None]],
    ) -> EnrichmentJobSpec:
        """Execute a job delivered by the managed workflow queue to our worker route."""
        delivery_id = self._verify_workflow(raw_body, headers)
        payload = _decode(raw_body)
        try:
            spec = EnrichmentJobSpec.from_payload(payload)
        except (KeyError, TypeError, ValueError) as exc:
            self.logger.warning("worker_payload_invalid", delivery_id=delivery_id, error=str(exc))
            raise InvalidRequest("invalid_job_payload") from exc
        with bound_context(provider="workflow", delivery_id=delivery_id, job_id=spec.job_id):
            await run(spec)
        return spec


__all__ = ["WebhookService", "WebhookAck", "USER_CREATED", "USER_UPDATED", "USER_DELETED"]
