"""Web routes for aclauth."""

from flask import Blueprint, Flask

main_bp = Blueprint("main", __name__)


@main_bp.route("/health")
def health() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy"}


def init_app(app: Flask) -> None:
    """Register blueprints with the Flask app."""
    from aclauth.web.routes.oidc import acl_oidc_bp

    app.register_blueprint(main_bp)
    app.register_blueprint(acl_oidc_bp)
