"""Ad account service for resolving and persisting Facebook ad accounts.

WHAT:
    Looks up the user's connected ad account, decrypts its token, and
    implements the connect / disconnect / token-expired transitions.

WHY:
    - Owner identity is spread over three columns on older rows
      (`created_by`, then the legacy `created_by_email` and `owner_email`).
      Resolution checks them in that fixed order so users with inconsistent
      legacy data always get the same account back.
    - Connecting purges the owner's previous rows before inserting, which
      keeps "one connected account per user" true without a partial index.
    - Connecting or disconnecting drops the user's cached responses, so a
      response cached under the previous account (including a stale
      reconnect_required flag) is never served afterwards.

REFERENCES:
    - backend/snapix/security.py (encrypt_secret / decrypt_secret)
    - backend/snapix/routers/ad_accounts.py
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from snapix.models import AdAccount, AdAccountStatusEnum, CacheEntry, utcnow
from snapix.security import encrypt_secret, decrypt_secret
from snapix.services.meta_ads_client import MetaAdsClient, strip_account_prefix

logger = logging.getLogger(__name__)

# Precedence for legacy owner columns
OWNER_FIELDS = ("created_by", "created_by_email", "owner_email")


def resolve_connected_ad_account(db: Session, user_email: str) -> Optional[AdAccount]:
    """Return the user's connected ad account, or None.

    Checks OWNER_FIELDS in order; the first field with a connected row wins.
    Within one field the most recently updated row is returned.
    """
    for field_name in OWNER_FIELDS:
        column = getattr(AdAccount, field_name)
        account = (
            db.query(AdAccount)
            .filter(
                column == user_email,
                AdAccount.status == AdAccountStatusEnum.connected,
            )
            .order_by(AdAccount.updated_at.desc())
            .first()
        )
        if account is not None:
            logger.debug(
                "[AD_ACCOUNTS] Resolved act_%s for %s via %s",
                account.account_id, user_email, field_name,
            )
            return account

    logger.info("[AD_ACCOUNTS] No connected ad account for %s", user_email)
    return None


def _drop_cached_responses(db: Session, user_email: str) -> int:
    """Delete the user's response cache rows. The caller commits."""
    return (
        db.query(CacheEntry)
        .filter(CacheEntry.user_email == user_email)
        .delete(synchronize_session=False)
    )


def get_access_token(account: AdAccount) -> Optional[str]:
    """Return the decrypted access token, or None when it is not usable."""
    if not account.access_token_enc:
        return None
    try:
        return decrypt_secret(account.access_token_enc, context=f"act_{account.account_id}")
    except ValueError:
        logger.warning("[AD_ACCOUNTS] Stored token for act_%s cannot be decrypted", account.account_id)
        return None


def connect_ad_account(
    db: Session,
    user_email: str,
    account_id: str,
    access_token: str,
    *,
    account_name: Optional[str] = None,
    currency: Optional[str] = None,
    client_factory: Callable[[str], MetaAdsClient] = MetaAdsClient,
) -> AdAccount:
    """Replace the user's ad account with a newly selected one.

    WHAT:
        Deletes every row the user owns (under any owner column), then
        inserts a connected row with the encrypted token. Name and currency
        are fetched from Facebook when the caller does not supply them.

    Raises:
        MetaAdsClientError: When account details had to be fetched and
            Facebook rejected the request. Nothing is written in that case.
    """
    bare_id = strip_account_prefix(account_id)

    if account_name is None or currency is None:
        details = client_factory(access_token).get_ad_account(bare_id)
        account_name = account_name or details.get("name") or f"act_{bare_id}"
        currency = currency or details.get("currency") or "USD"

    purged = (
        db.query(AdAccount)
        .filter(or_(
            AdAccount.created_by == user_email,
            AdAccount.created_by_email == user_email,
            AdAccount.owner_email == user_email,
        ))
        .delete(synchronize_session=False)
    )

    _drop_cached_responses(db, user_email)

    account = AdAccount(
        account_id=bare_id,
        account_name=account_name,
        access_token_enc=encrypt_secret(access_token, context=f"{user_email}:act_{bare_id}"),
        currency=currency,
        status=AdAccountStatusEnum.connected,
        created_by=user_email,
    )
    db.add(account)
    db.commit()
    db.refresh(account)

    logger.info(
        "[AD_ACCOUNTS] Connected act_%s for %s (purged %d previous rows)",
        bare_id, user_email, purged,
    )
    return account


def disconnect_ad_account(db: Session, user_email: str) -> Optional[AdAccount]:
    """Mark the user's connected account disconnected and drop its token.

    Returns:
        The updated account, or None when nothing was connected.
    """
    account = resolve_connected_ad_account(db, user_email)
    if account is None:
        return None

    account.status = AdAccountStatusEnum.disconnected
    account.access_token_enc = None
    _drop_cached_responses(db, user_email)
    db.commit()

    logger.info("[AD_ACCOUNTS] Disconnected act_%s for %s", account.account_id, user_email)
    return account


def mark_token_expired(db: Session, account: AdAccount, error: str) -> None:
    """Flag an account whose token Facebook rejected.

    The row stops resolving as connected, so later syncs go straight to the
    stored campaigns until the user reconnects.
    """
    account.status = AdAccountStatusEnum.token_expired
    account.last_error = error
    account.updated_at = utcnow()
    db.commit()
    logger.warning("[AD_ACCOUNTS] Token expired for act_%s: %s", account.account_id, error)
