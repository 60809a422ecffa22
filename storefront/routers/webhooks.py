from fastapi import APIRouter, Depends, Header, Request

from storefront.container import Container
from storefront.deps import get_container
from storefront.services.webhooks import SIGNATURE_HEADER, WebhookResult

router = APIRouter()


@router.post("/transactions", response_model=WebhookResult)
async def transaction_webhook(
    request: Request,
    x_webhook_signature: str | None = Header(None, alias=SIGNATURE_HEADER),
    container: Container = Depends(get_container),
):
    """Gateway status notification. 401 bad signature, 404 unknown order, 200 otherwise (repeats included)."""
    body = await request.body()
    return await container.webhooks.handle(body, x_webhook_signature)
