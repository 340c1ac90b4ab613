"""Article catalog routes, nested under a business."""

from flask import Blueprint, jsonify

from services import article as article_service
from services.auth import current_actor, login_required
from services.serialization import article_to_dict
from utils import json_body

articles_bp = Blueprint(
    "articles", __name__, url_prefix="/api/businesses/<int:business_id>/articles"
)


@articles_bp.route("", methods=["GET"])
@login_required
def list_articles(business_id: int):
    articles = article_service.list_articles(current_actor(), business_id)
    return jsonify([article_to_dict(a) for a in articles])


@articles_bp.route("/<int:article_id>", methods=["GET"])
@login_required
def get_article(business_id: int, article_id: int):
    return jsonify(
        article_to_dict(article_service.get_article(current_actor(), business_id, article_id))
    )


@articles_bp.route("", methods=["POST"])
@login_required
def create_article(business_id: int):
    article = article_service.create_article(current_actor(), business_id, json_body())
    return jsonify(article_to_dict(article)), 201


@articles_bp.route("/<int:article_id>", methods=["PUT", "PATCH"])
@login_required
def update_article(business_id: int, article_id: int):
    article = article_service.update_article(
        current_actor(), business_id, article_id, json_body()
    )
    return jsonify(article_to_dict(article))


@articles_bp.route("/<int:article_id>", methods=["DELETE"])
@login_required
def delete_article(business_id: int, article_id: int):
    article_service.delete_article(current_actor(), business_id, article_id)
    return jsonify({"message": "Article deleted successfully"})
