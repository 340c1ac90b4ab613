"""Article catalog of a business."""

from __future__ import annotations

import logging

from errors import NotFound, ValidationError
from extensions import db
from models import Article, InvoiceItem
from services import money
from services.audit import log_action
from services.business import get_business
from services.policy import Action, Actor
from utils import is_numeric

logger = logging.getLogger(__name__)


def _apply_fields(article: Article, data: dict, creating: bool = False) -> None:
    if creating or "name" in data:
        name = data.get("name")
        name = name.strip() if isinstance(name, str) else ""
        if not name:
            raise ValidationError("Article name is required", field="name")
        article.name = name
    if creating or "unit_price" in data:
        price = data.get("unit_price")
        if not is_numeric(price):
            raise ValidationError(
                "Unit price is required and must be a number", field="unit_price"
            )
        price = money.bounded(price, "unit_price")
        if price < 0:
            raise ValidationError("Unit price cannot be negative", field="unit_price")
        article.unit_price = price
    if "description" in data:
        article.description = data["description"] or None
    if "unit" in data:
        article.unit = str(data["unit"] or "").strip() or None


def list_articles(actor: Actor, business_id: int) -> list[Article]:
    business = get_business(actor, business_id)
    return Article.query.filter_by(business_id=business.id).order_by(Article.name).all()


def get_article(
    actor: Actor, business_id: int, article_id: int, action: Action = Action.READ
) -> Article:
    business = get_business(actor, business_id, action)
    article = Article.query.filter_by(id=article_id, business_id=business.id).first()
    if article is None:
        raise NotFound("Article not found")
    return article


def create_article(actor: Actor, business_id: int, data: dict) -> Article:
    business = get_business(actor, business_id, Action.WRITE)
    article = Article(business_id=business.id)
    _apply_fields(article, data, creating=True)
    db.session.add(article)
    db.session.flush()
    log_action(actor, "create", "article", article.id, article.name)
    db.session.commit()
    logger.info("Article %s created for business %s", article.id, business.id)
    return article


def update_article(actor: Actor, business_id: int, article_id: int, data: dict) -> Article:
    article = get_article(actor, business_id, article_id, Action.WRITE)
    _apply_fields(article, data)
    log_action(actor, "update", "article", article.id, f"fields={sorted(data)}")
    db.session.commit()
    return article


def delete_article(actor: Actor, business_id: int, article_id: int) -> None:
    """Delete an article; invoice lines keep their data and lose the link."""
    article = get_article(actor, business_id, article_id, Action.WRITE)
    InvoiceItem.query.filter_by(article_id=article.id).update(
        {InvoiceItem.article_id: None}, synchronize_session=False
    )
    db.session.delete(article)
    log_action(actor, "delete", "article", article_id, article.name)
    db.session.commit()
