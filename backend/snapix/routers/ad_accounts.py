"""Ad account connection endpoints.

WHAT:
    Account selection step of the Facebook connection flow, plus lookup and
    disconnect of the user's connected ad account.

WHY:
    The OAuth code exchange happens elsewhere; this router only receives the
    resulting user token together with the account the user picked.

REFERENCES:
    - backend/snapix/services/ad_account_service.py
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from snapix.database import get_db
from snapix.deps import get_current_user
from snapix.models import User
from snapix.schemas import (
    AdAccountConnectRequest,
    AdAccountConnectResponse,
    AdAccountOut,
    ConnectedAdAccountResponse,
    MessageResponse,
)
from snapix.services.ad_account_service import (
    connect_ad_account,
    disconnect_ad_account,
    resolve_connected_ad_account,
)
from snapix.services.meta_ads_client import (
    MetaAdsAuthenticationError,
    MetaAdsClient,
    MetaAdsClientError,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ad-accounts", tags=["Ad Accounts"])


def get_meta_client_factory():
    """Client factory used to look up account details on connect."""
    return MetaAdsClient


@router.get("/connected", response_model=ConnectedAdAccountResponse)
def get_connected_account(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ConnectedAdAccountResponse:
    account = resolve_connected_ad_account(db, current_user.email)
    if account is None:
        return ConnectedAdAccountResponse(connected=False)
    return ConnectedAdAccountResponse(connected=True, account=AdAccountOut.model_validate(account))


@router.post("/connect", response_model=AdAccountConnectResponse)
def connect_account(
    payload: AdAccountConnectRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    client_factory=Depends(get_meta_client_factory),
) -> AdAccountConnectResponse:
    """Store the selected ad account, replacing any previous one."""
    logger.info("[AD_ACCOUNTS] Connect requested by %s", current_user.email)
    try:
        account = connect_ad_account(
            db,
            current_user.email,
            payload.account_id,
            payload.access_token,
            account_name=payload.account_name,
            currency=payload.currency,
            client_factory=client_factory,
        )
    except MetaAdsAuthenticationError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Facebook rejected the access token")
    except MetaAdsClientError:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Could not load ad account from Facebook")

    return AdAccountConnectResponse(
        message="Ad account connected successfully",
        account=AdAccountOut.model_validate(account),
    )


@router.post("/disconnect", response_model=MessageResponse)
def disconnect_account(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> MessageResponse:
    account = disconnect_ad_account(db, current_user.email)
    if account is None:
        return MessageResponse(message="No ad account connected")
    return MessageResponse(message="Ad account disconnected successfully")
