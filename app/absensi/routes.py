from flask import Blueprint, current_app, g, redirect, render_template, url_for

bp = Blueprint("routes", __name__)


@bp.get("/")
def index():
    # signed-in users go straight to the admin home
    if getattr(g, "current_user", None):
        return redirect(url_for("admin.index"))
    return render_template("public/index.html")


@bp.get("/health")
def health():
    """Liveness plus the cached schema check; `schema_missing` lists what `alembic upgrade head` would add."""
    missing = current_app.config.get("_schema_health_missing") or []
    return {"ok": True, "schema_ok": not missing, "schema_missing": missing}


@bp.get("/healthz")
def healthz():
    """Load balancer probe. No DB access."""
    return "ok", 200
