"""In-memory store for the signed-in user and the accounts it drives."""
from __future__ import annotations

from typing import Optional

from .logging_utils import _extractor_event
from .models import Account, UserProfile


class SessionStore:
    def __init__(self, user: Optional[UserProfile] = None) -> None:
        self.current_user = user
        self.accounts: dict[str, Account] = {}

    def account_for(self, tab_id: str) -> Account:
        account = self.accounts.get(tab_id)
        if account is None:
            account = Account(tab_id=tab_id)
            self.accounts[tab_id] = account
        return account

    def clear_account(self, tab_id: str) -> None:
        account = self.accounts.get(tab_id)
        if account is not None:
            account.clear_identity()
        _extractor_event("state", phase="session", kind="account_cleared", tab_id=tab_id)

    def clear_current_user(self) -> None:
        email = self.current_user.email if self.current_user else None
        self.current_user = None
        _extractor_event("state", phase="session", kind="user_cleared", user=email)


__all__ = ["SessionStore"]
