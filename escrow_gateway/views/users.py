from flask import Blueprint, current_app, flash, redirect, render_template, request, url_for

from ..auth import current_viewer, get_api, login_required
from ..errors import ApiError, TransportError
from ..models import BUSINESS_CATEGORIES, SOCIAL_NETWORKS, AccountType
from ..utils.formatting import matches

bp = Blueprint("users", __name__)

RATING_CHOICES = range(1, 6)


def _others(users, viewer_id):
    return [u for u in users if str(u.id) != str(viewer_id)]


def _search_users(users, q):
    return [u for u in users if matches(q, u.name, u.email, u.business_category, u.location)]


# ===================== Users + rating =====================
@bp.get("/users", endpoint="list_users")
@login_required
def list_users():
    viewer = current_viewer()
    q = request.args.get("q", "").strip()
    try:
        users = _others(get_api().list_users(), viewer.id)
    except (ApiError, TransportError) as e:
        current_app.logger.error("users: cannot load: %s", e)
        flash("Could not load users.", "error")
        users = []
    return render_template("users.html", users=_search_users(users, q), q=q, ratings=RATING_CHOICES)


@bp.post("/users/<int:user_id>/rate", endpoint="rate_user")
@login_required
def rate_user(user_id: int):
    viewer = current_viewer()
    if str(user_id) == str(viewer.id):
        flash("You cannot rate yourself.", "error")
        return redirect(url_for("users.list_users"))
    try:
        rating = int(request.form.get("rating", ""))
    except ValueError:
        rating = 0
    if rating not in RATING_CHOICES:
        flash("Rating must be between 1 and 5.", "error")
        return redirect(url_for("users.list_users"))

    api = get_api()
    try:
        users = _others(api.list_users(), viewer.id)
        api.rate_user(user_id, rating)
    except (ApiError, TransportError) as e:
        current_app.logger.error("rating user %s failed: %s", user_id, e)
        flash("Failed to rate user.", "error")
        return redirect(url_for("users.list_users"))

    # fold the new rating into the listed copy instead of fetching again
    users = [u.with_rating(rating) if u.id == user_id else u for u in users]
    flash("Thanks for your rating!", "success")
    return render_template("users.html", users=users, q="", ratings=RATING_CHOICES)


# ===================== Marketplace =====================
@bp.get("/marketplace", endpoint="marketplace")
@login_required
def marketplace():
    q = request.args.get("q", "").strip()
    category = request.args.get("category", "").strip()
    try:
        sellers = get_api().business_users()
    except (ApiError, TransportError) as e:
        current_app.logger.error("marketplace: cannot load sellers: %s", e)
        flash("Could not load sellers.", "error")
        sellers = []
    sellers = [
        s for s in sellers
        if matches(q, s.name, s.business_category, s.location) and (not category or s.business_category == category)
    ]
    return render_template(
        "marketplace.html",
        sellers=sellers,
        q=q,
        category=category,
        categories=BUSINESS_CATEGORIES,
    )


# ===================== Profile =====================
def _profile_payload(form) -> dict:
    payload = {
        "name": form.get("name", "").strip(),
        "contact": form.get("contact", "").strip(),
        "location": form.get("location", "").strip() or None,
        "is_business": form.get("is_business") in ("1", "on", "true"),
    }
    payload["business_category"] = (form.get("business_category") or None) if payload["is_business"] else None
    payload["social_media_links"] = {k: form.get(k, "").strip() for k in SOCIAL_NETWORKS if form.get(k, "").strip()}
    return payload


@bp.route("/profile", methods=["GET", "POST"], endpoint="profile")
@login_required
def profile():
    user = current_viewer()
    if request.method == "POST":
        payload = _profile_payload(request.form)
        if not payload["name"]:
            flash("Name is required.", "error")
        else:
            try:
                user = get_api().update_user(payload)
            except (ApiError, TransportError) as e:
                detail = getattr(e, "detail", None)
                flash(detail or "Failed to update profile.", "error")
            else:
                flash("Profile updated.", "success")
    return render_template(
        "profile.html",
        user=user,
        categories=BUSINESS_CATEGORIES,
        networks=SOCIAL_NETWORKS,
    )


# ===================== Accounts =====================
@bp.get("/accounts", endpoint="accounts")
@login_required
def accounts():
    try:
        items = get_api().list_accounts()
    except (ApiError, TransportError, ValueError) as e:
        current_app.logger.error("accounts: cannot load: %s", e)
        flash("Could not load your accounts.", "error")
        items = []
    grouped = {t: [a for a in items if a.type is t] for t in AccountType}
    return render_template("accounts.html", grouped=grouped)
