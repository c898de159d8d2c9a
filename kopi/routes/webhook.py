"""routes/webhook.py – GET/PUT /webhook, POST /webhook/test"""
from fastapi import APIRouter, HTTPException

from ..deps import get_notifier
from ..errors import KopiError
from ..models import WebhookSettings, WebhookSettingsIn, WebhookTestRequest, WebhookTestResponse

router = APIRouter(tags=["Webhook"])


@router.get("/webhook", response_model=WebhookSettings)
async def get_webhook():
    return await get_notifier().get_settings()


@router.put("/webhook", response_model=WebhookSettings)
async def save_webhook(req: WebhookSettingsIn):
    try:
        return await get_notifier().save_settings(req.url, req.is_enabled)
    except KopiError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/webhook/test", response_model=WebhookTestResponse)
async def test_webhook(req: WebhookTestRequest):
    """Posts a sample `test` event; the outcome is in the body, not the status."""
    return await get_notifier().send_test(req.url)
