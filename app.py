"""
Dream Analyzer web app.
Analysis form, JSON analysis endpoint, dream journal and account routes.
"""

import logging
import secrets
import sys
from functools import wraps
from typing import Optional

from flask import Flask, flash, g, jsonify, redirect, render_template, request, session, url_for

import auth
import config
import database as db
from analysis import EMOTION_LABELS, AnalysisError, request_analysis, validate_submission
from auth import SIGNED_IN, AuthError, AuthSession, SessionObserver
from normalizer import normalize

logging.basicConfig(
    stream=sys.stdout,
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = Flask(__name__)
app.logger.setLevel(config.LOG_LEVEL)

if config.FLASK_SECRET_KEY:
    app.secret_key = config.FLASK_SECRET_KEY
else:
    app.logger.warning("FLASK_SECRET_KEY not set; sessions will not survive a restart")
    app.secret_key = secrets.token_hex(32)

SESSION_KEY = "auth"


# ---------------------------
# Session plumbing
# ---------------------------

def _store_session_cookie(event: str, auth_session: Optional[AuthSession]) -> None:
    if auth_session is None:
        session.pop(SESSION_KEY, None)
    else:
        session[SESSION_KEY] = auth_session.to_dict()


def _ensure_profile(event: str, auth_session: Optional[AuthSession]) -> None:
    if event != SIGNED_IN or auth_session is None:
        return
    try:
        db.upsert_profile(auth_session)
    except db.StoreError as exc:
        app.logger.warning("Profile upsert failed for %s: %s", auth_session.user_id, exc)


@app.before_request
def load_session_observer():
    """Give each request its own observer, restored from the session cookie."""
    observer = SessionObserver(AuthSession.from_dict(session.get(SESSION_KEY)))
    g.observer = observer
    g.subscriptions = [
        observer.subscribe(_store_session_cookie),
        observer.subscribe(_ensure_profile),
    ]

    current = observer.current
    if current is not None and current.is_expired():
        try:
            observer.refresh(auth.refresh_session(current.refresh_token))
        except AuthError as exc:
            app.logger.info("Token refresh failed for %s: %s", current.user_id, exc)
            observer.sign_out()


@app.teardown_request
def release_session_observer(exc):
    for subscription in g.pop("subscriptions", []):
        subscription.unsubscribe()


@app.context_processor
def inject_user():
    observer = g.get("observer")
    return {"current_user": observer.current if observer else None}


def login_required(f):
    """Decorator to require a signed-in user."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not g.observer.is_signed_in:
            flash("Please log in to see your dream journal.", "error")
            return redirect(url_for("login", next=request.path))
        return f(*args, **kwargs)
    return decorated_function


def _safe_next(target: Optional[str]) -> str:
    if target and target.startswith("/") and not target.startswith("//"):
        return target
    return url_for("index")


# ---------------------------
# Analysis
# ---------------------------

@app.route("/", methods=["GET"])
def index():
    return render_template("index.html", emotions=EMOTION_LABELS, selected=[])


@app.route("/analyze", methods=["GET", "POST"])
def analyze():
    if request.method == "POST":
        return handle_analyze()
    return redirect(url_for("index"))


def handle_analyze():
    dream_text = request.form.get("dream_text", "").strip()
    emotions = request.form.getlist("emotions")

    form_state = {"emotions": EMOTION_LABELS, "selected": emotions, "dream_text": dream_text}

    error = validate_submission(dream_text, emotions)
    if error:
        return render_template("index.html", error=error, **form_state)

    try:
        analysis_text = request_analysis(dream_text, emotions)
    except AnalysisError as exc:
        app.logger.warning("Analysis failed (%s): %s", exc.kind, exc)
        return render_template("index.html", error=exc.user_message, **form_state), 500

    saved = False
    current = g.observer.current
    if current is not None:
        outcome = db.save_analysis(current, dream_text, emotions, analysis_text, logger=app.logger)
        saved = outcome.saved

    return render_template(
        "result.html",
        dream_text=dream_text,
        emotions=emotions,
        sections=normalize(analysis_text),
        saved=saved,
    )


@app.route("/api/analyze", methods=["POST"])
def api_analyze():
    data = request.get_json(silent=True) or {}
    dream = data.get("dream") or ""
    emotions = data.get("emotions") or []
    if not isinstance(dream, str) or not isinstance(emotions, list):
        return jsonify({"error": "Expected {dream: string, emotions: string[]}"}), 400

    error = validate_submission(dream, emotions)
    if error:
        return jsonify({"error": error}), 400

    app.logger.info("API analysis request (signed_in=%s)", g.observer.is_signed_in)

    try:
        analysis_text = request_analysis(dream, emotions)
    except AnalysisError as exc:
        app.logger.warning("Analysis failed (%s): %s", exc.kind, exc)
        return jsonify({
            "error": "Failed to analyze dream",
            "kind": exc.kind,
            "retryable": exc.retryable,
        }), 500

    return jsonify({"analysis": analysis_text})


# ---------------------------
# Journal
# ---------------------------

@app.route("/journal")
@login_required
def journal():
    current = g.observer.current
    error = None
    try:
        dreams = db.list_dreams(current)
    except db.StoreError as exc:
        app.logger.error("Could not load journal for %s: %s", current.user_id, exc)
        dreams = []
        error = "We couldn't load your dreams right now."

    try:
        profile = db.get_profile(current)
    except db.StoreError as exc:
        app.logger.warning("Could not load profile for %s: %s", current.user_id, exc)
        profile = None

    entries = [
        {"dream": dream, "sections": normalize(dream.analysis) if dream.analysis else []}
        for dream in dreams
    ]
    display_name = (profile.display_name if profile else None) or current.email
    return render_template("journal.html", entries=entries, error=error, display_name=display_name)


@app.route("/journal/<dream_id>/delete", methods=["POST"])
@login_required
def delete_dream(dream_id):
    current = g.observer.current
    try:
        deleted = db.delete_dream(current, dream_id)
    except db.StoreError as exc:
        app.logger.error("Delete of dream %s failed: %s", dream_id, exc)
        flash("Failed to delete dream. Please try again.", "error")
        return redirect(url_for("journal"))

    if deleted:
        flash("Dream deleted.", "success")
    else:
        flash("Dream not found.", "error")
    return redirect(url_for("journal"))


# ---------------------------
# Accounts
# ---------------------------

@app.route("/login", methods=["GET", "POST"])
def login():
    next_url = request.args.get("next") or request.form.get("next")
    if g.observer.is_signed_in:
        return redirect(_safe_next(next_url))

    if request.method == "POST":
        email = request.form.get("email", "").strip()
        password = request.form.get("password", "")
        if not email or not password:
            flash("Email and password are required.", "error")
            return render_template("login.html", email=email, next=next_url)

        try:
            auth_session = auth.sign_in_with_password(email, password)
        except AuthError as exc:
            app.logger.info("Login failed for %s: %s", email, exc)
            flash("Invalid email or password.", "error")
            return render_template("login.html", email=email, next=next_url)

        g.observer.sign_in(auth_session)
        return redirect(_safe_next(next_url))

    return render_template("login.html", next=next_url)


@app.route("/signup", methods=["GET", "POST"])
def signup():
    if g.observer.is_signed_in:
        return redirect(url_for("index"))

    if request.method == "POST":
        email = request.form.get("email", "").strip()
        password = request.form.get("password", "")
        if not email or not password:
            flash("Email and password are required.", "error")
            return render_template("signup.html", email=email)

        try:
            auth_session = auth.sign_up(email, password)
        except AuthError as exc:
            app.logger.info("Sign-up failed for %s: %s", email, exc)
            flash(f"Sign-up failed: {exc}", "error")
            return render_template("signup.html", email=email)

        if auth_session is None:
            flash("Check your email to confirm your account, then log in.", "success")
            return redirect(url_for("login"))

        g.observer.sign_in(auth_session)
        return redirect(url_for("index"))

    return render_template("signup.html")


@app.route("/logout", methods=["POST"])
def logout():
    current = g.observer.current
    if current is not None:
        try:
            auth.sign_out_remote(current)
        except AuthError as exc:
            app.logger.info("Remote sign-out failed for %s: %s", current.user_id, exc)
        g.observer.sign_out()
    flash("Logged out.", "success")
    return redirect(url_for("index"))


@app.route("/healthz")
def healthz():
    return jsonify({"status": "ok"})


if __name__ == "__main__":
    app.run(debug=True)
