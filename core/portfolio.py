# core/portfolio.py
from __future__ import annotations

import logging
import uuid
from typing import Any, Callable, Dict, Optional

from pydantic import ValidationError

from .memory import StoreError
from .models import PartialPortfolio, Portfolio, create_empty_portfolio, utc_now_iso
from .templates import TemplateRegistry, default_registry

logger = logging.getLogger(__name__)


class UnknownTemplateError(ValueError):
    pass


def portfolio_path(user_id: str, draft: bool = True) -> str:
    return f"portfolios/{user_id}/{'draft' if draft else 'published'}"


def _new_id() -> str:
    return uuid.uuid4().hex


class PortfolioService:
    """Draft and published copies of each user's portfolio."""

    def __init__(self, store, templates: Optional[TemplateRegistry] = None):
        self.store = store
        self.templates = templates or default_registry()

    def get_portfolio(self, user_id: str, draft: bool = True) -> Optional[Portfolio]:
        data = self.store.get(portfolio_path(user_id, draft))
        return Portfolio.model_validate(data) if data else None

    def get_public_portfolio(self, user_id: str) -> Optional[Portfolio]:
        try:
            return self.get_portfolio(user_id, draft=False)
        except (StoreError, ValidationError) as e:
            logger.warning("Error fetching published portfolio for %s: %s", user_id, e)
            return None

    def save_portfolio(self, user_id: str, portfolio: Portfolio, draft: bool = True) -> Portfolio:
        if not self.templates.has(portfolio.template_id):
            raise UnknownTemplateError(f"Template {portfolio.template_id} not found")
        saved = portfolio.model_copy(update={
            "last_updated": utc_now_iso(),
            "created_at": portfolio.created_at or utc_now_iso(),
        })
        try:
            self.store.set(portfolio_path(user_id, draft), saved.to_store())
        except StoreError as e:
            logger.error("Error saving portfolio for %s: %s", user_id, e)
            raise
        return saved

    def delete_portfolio(self, user_id: str, draft: bool = True) -> None:
        self.store.remove(portfolio_path(user_id, draft))

    def current_draft(self, user_id: str) -> Portfolio:
        return self.get_portfolio(user_id, draft=True) or create_empty_portfolio()

    def update_draft(self, user_id: str, updates: Dict[str, Any]) -> Portfolio:
        """Shallow merge of wire-format (camelCase) top-level keys into the draft."""
        data = self.current_draft(user_id).to_store()
        data.update(updates)
        return self.save_portfolio(user_id, Portfolio.model_validate(data), draft=True)

    def publish(self, user_id: str) -> Portfolio:
        portfolio = self.current_draft(user_id).model_copy(update={"status": "published"})
        published = self.save_portfolio(user_id, portfolio, draft=False)
        self.save_portfolio(user_id, published, draft=True)
        logger.info("Published portfolio for %s", user_id)
        return published

    def import_cv(self, user_id: str, partial: PartialPortfolio) -> Portfolio:
        """
        Fold an extracted CV into the draft: profile fields overwrite one by
        one, extracted lists replace the draft's lists.
        """
        draft = self.current_draft(user_id)
        update: Dict[str, Any] = {}

        if partial.profile is not None:
            found = partial.profile.model_dump(exclude_unset=True, exclude_none=True)
            update["profile"] = draft.profile.model_copy(update={
                k: getattr(partial.profile, k) for k in found
            })

        for section in ("skills", "experience", "projects"):
            items = getattr(partial, section)
            if items:
                update[section] = [
                    item if item.id else item.model_copy(update={"id": _new_id()})
                    for item in items
                ]

        return self.save_portfolio(user_id, draft.model_copy(update=update), draft=True)

    def watch_portfolio(
        self, user_id: str, callback: Callable[[Optional[Portfolio]], None], draft: bool = True
    ) -> Callable[[], None]:
        def on_value(data):
            callback(Portfolio.model_validate(data) if data else None)

        return self.store.watch(portfolio_path(user_id, draft), on_value)
