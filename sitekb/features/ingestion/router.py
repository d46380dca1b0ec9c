"""Pub/Sub push endpoint for the ingestion worker."""

import binascii
import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Response, status
from pydantic import ValidationError

from .models import PushEnvelope
from .worker import IngestionWorker, get_ingestion_worker

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/ingestion", tags=["ingestion"])


@router.post("/push", status_code=status.HTTP_204_NO_CONTENT)
async def receive_push(
    envelope: PushEnvelope,
    worker: IngestionWorker = Depends(get_ingestion_worker),
):
    """
    Handle a message pushed by the ingestion subscription.

    A 2xx response acknowledges the message. Undecodable messages get a 400
    so the subscription's dead-letter policy can take them.
    """
    try:
        message = envelope.message.decode()
    except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError, ValidationError) as e:
        logger.error(f"Undecodable ingestion message {envelope.message.message_id}: {e}")
        raise HTTPException(status_code=400, detail="Invalid ingestion message")

    logger.info(f"[{message.id}] Received {message.target.value} message {envelope.message.message_id}")
    await worker.handle(message)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
