import logging

from flask import Flask, flash, g, redirect, render_template, request, session, url_for

from .auth import clear_tokens, is_authenticated
from .config import Config
from .errors import ApiError, AuthenticationError, TransportError
from .services.transitions import InFlightRegistry
from .utils.formatting import register_filters
from .utils.responses import err
from .views.auth import bp as auth_bp
from .views.orders import bp as orders_bp
from .views.payment import bp as payment_bp
from .views.users import bp as users_bp

# Configure logging
logging.basicConfig(level=logging.INFO)


def create_app(config: dict | None = None) -> Flask:
    app = Flask(__name__, template_folder="templates")
    app.config.from_object(Config)
    if config:
        app.config.update(config)

    app.extensions["escrow_inflight"] = InFlightRegistry()
    register_filters(app)

    app.register_blueprint(auth_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(payment_bp)
    app.register_blueprint(users_bp)

    @app.errorhandler(AuthenticationError)
    def on_auth_failure(e):
        # a 401 from the API anywhere ends the session
        app.logger.info("API rejected the cached token on %s", request.path)
        clear_tokens()
        if request.method == "GET":
            session["next_after_login"] = request.full_path.rstrip("?")
        flash("Your session has expired. Please log in again.", "error")
        return redirect(url_for("auth.login"))

    @app.errorhandler(TransportError)
    def on_upstream_unreachable(e):
        app.logger.error("escrow API unreachable on %s: %s", request.path, e)
        if request.path.startswith("/api/"):
            return err("escrow_upstream_unreachable", 502)
        flash("Could not reach the escrow service.", "error")
        return render_template("unavailable.html"), 502

    @app.errorhandler(ApiError)
    def on_upstream_error(e):
        app.logger.error("escrow API error on %s (%s): %s", request.path, e.status_code, e.detail)
        if request.path.startswith("/api/"):
            return err(e.detail, 502)
        flash(e.detail or "The escrow service returned an error.", "error")
        return render_template("unavailable.html"), 502

    @app.context_processor
    def inject_viewer():
        # whatever the view already fetched; the layout never calls the API itself
        return {"viewer": g.get("viewer"), "signed_in": is_authenticated()}

    @app.get("/health")
    def health():
        return {"service": "escrow-gateway", "status": "ok"}, 200

    return app


app = create_app()


if __name__ == "__main__":
    app.run(host="0.0.0.0", port=Config.PORT, debug=Config.DEBUG)
