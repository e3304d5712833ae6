from flask import Blueprint, current_app, flash, redirect, render_template, request, session, url_for

from ..auth import clear_tokens, get_api, store_tokens
from ..errors import ApiError, TransportError
from ..models import BUSINESS_CATEGORIES, SOCIAL_NETWORKS

bp = Blueprint("auth", __name__)


@bp.route("/login", methods=["GET", "POST"], endpoint="login")
def login():
    if request.method == "POST":
        username = request.form.get("username", "").strip()
        password = request.form.get("password", "")
        if not username or not password:
            flash("Please enter your email and password.", "error")
            return render_template("login.html", username=username)
        try:
            tokens = get_api().login(username, password)
        except TransportError:
            flash("Could not reach the escrow service.", "error")
            return render_template("login.html", username=username)
        except (ApiError, ValueError) as e:
            flash(str(e) or "Login failed.", "error")
            return render_template("login.html", username=username)

        store_tokens(tokens)
        current_app.logger.info("login ok for %s", username)
        next_url = request.args.get("next") or session.pop("next_after_login", None)
        if next_url and (not next_url.startswith("/") or next_url.startswith("//")):
            next_url = None  # only local redirects
        return redirect(next_url or url_for("orders.dashboard"))
    return render_template("login.html")


def _registration_payload(form) -> dict:
    payload = {
        "name": form.get("name", "").strip(),
        "email": form.get("email", "").strip().lower(),
        "password": form.get("password", ""),
        "contact": form.get("contact", "").strip(),
        "is_business": form.get("is_business") in ("1", "on", "true"),
    }
    if payload["is_business"]:
        payload["business_category"] = form.get("business_category") or None
    links = {k: form.get(k, "").strip() for k in SOCIAL_NETWORKS if form.get(k, "").strip()}
    if links:
        payload["social_media_links"] = links
    return payload


@bp.route("/register", methods=["GET", "POST"], endpoint="register")
def register():
    ctx = {"categories": BUSINESS_CATEGORIES, "networks": SOCIAL_NETWORKS}
    if request.method == "POST":
        form = request.form
        if form.get("password", "") != form.get("confirm_password", ""):
            flash("Passwords do not match.", "error")
            return render_template("register.html", form=form, **ctx)
        payload = _registration_payload(form)
        missing = [k for k in ("name", "email", "password", "contact") if not payload[k]]
        if missing:
            flash("Missing fields: " + ", ".join(missing), "error")
            return render_template("register.html", form=form, **ctx)
        if payload["is_business"] and payload.get("business_category") not in BUSINESS_CATEGORIES:
            flash("Please choose a business category.", "error")
            return render_template("register.html", form=form, **ctx)
        try:
            get_api().register(payload)
        except TransportError:
            flash("Could not reach the escrow service.", "error")
            return render_template("register.html", form=form, **ctx)
        except ApiError as e:
            flash(e.detail or "Registration failed.", "error")
            return render_template("register.html", form=form, **ctx)
        flash("Account created. You can log in now.", "success")
        return redirect(url_for("auth.login"))
    return render_template("register.html", form={}, **ctx)


@bp.get("/logout", endpoint="logout")
def logout():
    clear_tokens()
    session.pop("next_after_login", None)
    flash("You have been logged out.", "success")
    return redirect(url_for("auth.login"))
