from flask import Blueprint, jsonify

from .auth import auth_bp
from .appointments import appointments_bp
from .refunds import refunds_bp
from .payments import payments_bp
from .stripe_webhook import webhook_bp

health_bp = Blueprint("health", __name__)

@health_bp.get("/health")
def health():
    return jsonify(status="ok"), 200
