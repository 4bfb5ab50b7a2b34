"""Paystack webhook handler.

Webhook error taxonomy:
  (A) Invalid JSON / malformed envelope / malformed payment → 400
  (B) Signature mismatch → 401
  (C) Signature header missing while PAYSTACK_WEBHOOK_SECRET is set → 400
  Anything past validation → 200. Store failures during reconciliation are
  logged and alerted (reconcile.step_failed) but never turned into 5xx, so
  Paystack does not enter a retry storm over a partially applied event.
"""

import hashlib
import hmac
import json as _json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse

from netpass_api.billing.errors import ValidationError
from netpass_api.billing.reconciler import WebhookReconciler
from netpass_api.config.env import get_paystack_webhook_secret
from netpass_api.context import request_id_var
from netpass_api.routers.deps import get_reconciler
from netpass_api.schemas import WebhookAck
from netpass_api.utils.sanitize import payload_hash_bytes, sanitize_str

router = APIRouter(prefix="/api/webhook", tags=["webhooks"])
logger = logging.getLogger(__name__)

_PROVIDER = "paystack"


def _webhook_problem(
    request: Request,
    status: int,
    *,
    code: str,
    title: str,
    detail: str | None,
    payload_hash: str | None,
    extra: dict | None = None,
) -> JSONResponse:
    """Log once + return RFC 9457 Problem Details response with webhook extensions.

    Response extensions (beyond RFC 9457 base):
      provider, payload_hash, error_code  (safe; never contain raw payload/secrets)
    """
    request_id = request_id_var.get(None)
    instance = request_id or str(request.url.path)

    log_extra: dict = {
        "event": f"webhook.{code.lower()}",
        "provider": _PROVIDER,
        "payload_hash": payload_hash,
        "error_code": code,
    }
    if extra:
        log_extra.update(extra)
    logger.warning(code, extra=log_extra)

    content: dict = {
        "type": f"urn:netpass:webhook:{code.lower()}",
        "title": title,
        "status": status,
        "provider": _PROVIDER,
        "error_code": code,
    }
    if detail is not None:
        content["detail"] = detail
    if payload_hash is not None:
        content["payload_hash"] = payload_hash
    if instance:
        content["instance"] = instance

    return JSONResponse(
        status_code=status,
        content=content,
        headers={"Content-Type": "application/problem+json"},
    )


@router.post("/paystack", response_model=WebhookAck)
async def paystack_webhook(
    request: Request,
    x_paystack_signature: Optional[str] = Header(None, alias="x-paystack-signature"),
    reconciler: WebhookReconciler = Depends(get_reconciler),
):
    """Paystack webhook handler.

    HMAC signature (optional):
      Set PAYSTACK_WEBHOOK_SECRET to enforce the x-paystack-signature header
      (HMAC-SHA512 of the raw body). Without it, signatures are not checked.
    """
    # ── Step 0: Raw body ingestion ───────────────────────────────────────────
    raw_body: bytes = await request.body()
    payload_hash = payload_hash_bytes(raw_body)
    payload_size = len(raw_body)
    request.state.payload_hash = payload_hash
    request.state.payload_size = payload_size

    # ── Step 1: JSON parsing (A → 400) ──────────────────────────────────────
    try:
        webhook_body = _json.loads(raw_body)
    except (_json.JSONDecodeError, UnicodeDecodeError):
        return _webhook_problem(
            request, 400,
            code="WEBHOOK_INVALID_JSON",
            title="Invalid JSON payload",
            detail="Request body is not valid JSON",
            payload_hash=payload_hash,
        )

    logger.info(
        "WEBHOOK_RECEIVED",
        extra={"provider": _PROVIDER, "payload_hash": payload_hash, "payload_size": payload_size},
    )

    # ── Step 2: HMAC signature verification (if PAYSTACK_WEBHOOK_SECRET is set)
    webhook_secret = get_paystack_webhook_secret()
    if webhook_secret:
        # C → 400: required header missing when secret is configured
        if not x_paystack_signature:
            return _webhook_problem(
                request, 400,
                code="WEBHOOK_MISSING_SIGNATURE_HEADER",
                title="Missing signature header",
                detail="x-paystack-signature header is required",
                payload_hash=payload_hash,
            )
        # B → 401: HMAC mismatch
        expected_sig = hmac.new(
            webhook_secret.encode("utf-8"),
            raw_body,
            hashlib.sha512,
        ).hexdigest()
        if not hmac.compare_digest(expected_sig, x_paystack_signature):
            return _webhook_problem(
                request, 401,
                code="WEBHOOK_SIGNATURE_INVALID",
                title="Webhook signature verification failed",
                detail="HMAC-SHA512 signature mismatch",
                payload_hash=payload_hash,
            )

    # ── Step 3: Envelope validation (A → 400) ───────────────────────────────
    if not isinstance(webhook_body, dict) or not webhook_body.get("event"):
        return _webhook_problem(
            request, 400,
            code="WEBHOOK_INVALID_PAYLOAD",
            title="Invalid webhook payload",
            detail="Missing required field: event",
            payload_hash=payload_hash,
        )

    event_kind = str(webhook_body["event"])

    # ── Step 4: Reconciliation (malformed payment → 400, otherwise 200) ─────
    try:
        outcome = reconciler.dispatch(event_kind, webhook_body.get("data"), payload_hash)
    except ValidationError as exc:
        return _webhook_problem(
            request, 400,
            code="WEBHOOK_INVALID_PAYLOAD",
            title="Invalid payment payload",
            detail=sanitize_str(exc.message),
            payload_hash=payload_hash,
            extra={"event_kind": event_kind, "field": exc.field},
        )

    logger.info(
        "WEBHOOK_ACKNOWLEDGED",
        extra={
            "provider": _PROVIDER,
            "event_kind": event_kind,
            "payload_hash": payload_hash,
            "status": outcome.status,
            "failed_steps": outcome.failed_steps,
        },
    )
    return WebhookAck(status=outcome.status)
