from __future__ import annotations

import logging
from datetime import date, datetime, time
from decimal import Decimal
from functools import wraps
from typing import Optional

from flask import (
    Flask,
    abort,
    jsonify,
    request,
    send_from_directory,
    session,
)
from sqlalchemy.exc import SQLAlchemyError

from zefit import settings
from zefit.auth_service import authenticate
from zefit.calendar_window import get_monday, shift_week
from zefit.init_db import init_db
from zefit.member_service import (
    EDITABLE_MEMBER_FIELDS,
    add_package,
    add_payment,
    create_member,
    delete_member,
    find_by_barcode,
    list_members,
    list_membership_types,
    load_member_details,
    record_arrival,
    record_departure,
    search_members,
    update_member_info,
)
from zefit.metrics_service import get_dashboard_metrics
from zefit.models.base import get_session
from zefit.post_service import create_post, delete_post, list_posts, update_post
from zefit.profile_service import get_or_create_profile, update_profile
from zefit.schedule_service import (
    add_member_to_session,
    create_recurring_sessions,
    delete_training_session,
    get_session_roster,
    get_week_schedule,
    list_session_candidates,
    remove_member_from_session,
    save_training_session,
    session_duration_minutes,
)
from zefit.storage import StorageError, default_store
from zefit.trainer_service import (
    add_member_to_trainer,
    get_trainer_members,
    list_promotion_candidates,
    list_roster_candidates,
    list_trainers_with_counts,
    promote_to_trainer,
    remove_member_from_trainer,
)

logger = logging.getLogger(__name__)

MIN_SESSION_MINUTES = 10

app = Flask(__name__)
app.config["SECRET_KEY"] = settings.SECRET_KEY
app.config["OBJECT_STORE"] = default_store()

# Ensure all ORM tables exist
init_db()


# -------------------------------------------------
# Helpers
# -------------------------------------------------
def _store():
    return app.config["OBJECT_STORE"]


def _payload() -> dict:
    data = request.get_json(silent=True)
    if isinstance(data, dict):
        return data
    return request.form.to_dict()


def _parse_date(value, field: str) -> Optional[date]:
    if value in (None, ""):
        return None
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        raise ValueError(f"Invalid date for {field}: {value!r}")


def _parse_time(value, field: str) -> Optional[time]:
    if value in (None, ""):
        return None
    try:
        return time.fromisoformat(str(value))
    except ValueError:
        raise ValueError(f"Invalid time for {field}: {value!r}")


def _parse_int(value, field: str) -> Optional[int]:
    if value in (None, ""):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValueError(f"{field} must be a whole number")


def _uploaded(field: str):
    file = request.files.get(field)
    if not file or not file.filename:
        return None
    data = file.read()
    if not data:
        return None
    return file.filename, data, file.mimetype or "application/octet-stream"


def _money(value) -> float:
    return float(value if isinstance(value, Decimal) else Decimal(str(value or 0)))


def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _error(message: str, status: int):
    return jsonify({"error": message}), status


def current_user_id() -> Optional[int]:
    return session.get("user_id")


def require_login() -> int:
    """Abort with 401 unless a staff user is logged in."""
    user_id = current_user_id()
    if not user_id:
        abort(401)
    return user_id


def api_action(operation: str):
    """
    Turn service errors into short JSON messages: validation problems are 400
    (404 for missing entities), store failures are logged and become 500.
    """
    def decorator(view):
        @wraps(view)
        def wrapper(*args, **kwargs):
            require_login()
            try:
                return view(*args, **kwargs)
            except ValueError as e:
                message = str(e)
                status = 404 if message.endswith("not found") else 400
                logger.info("%s rejected (%s): %s", operation, kwargs, message)
                return _error(message, status)
            except (SQLAlchemyError, StorageError) as e:
                logger.error("%s failed (%s): %s", operation, kwargs, e)
                return _error(f"{operation} failed, please try again.", 500)
        return wrapper
    return decorator


def _member_json(m) -> dict:
    return {
        "member_id": m.member_id,
        "card_code": m.card_code,
        "full_name": m.full_name,
        "phone": m.phone,
        "email": m.email,
        "status": m.status,
        "created_at": _iso(m.created_at),
        "note": m.note,
    }


def _training_json(t) -> dict:
    return {
        "session_id": t.session_id,
        "trainer_id": t.trainer_id,
        "trainer_name": t.trainer.member.full_name if t.trainer and t.trainer.member else None,
        "title": t.title,
        "description": t.description,
        "start_time": _iso(t.start_time),
        "end_time": _iso(t.end_time),
        "duration_minutes": session_duration_minutes(t),
    }


def _post_json(p) -> dict:
    return {
        "post_id": p.post_id,
        "title": p.title,
        "content": p.content,
        "image_url": p.image_url,
        "created_at": _iso(p.created_at),
        "updated_at": _iso(p.updated_at),
    }


# -------------------------------------------------
# Auth
# -------------------------------------------------
@app.post("/api/login")
def login():
    data = _payload()
    with get_session() as db:
        user = authenticate(db, data.get("email", ""), data.get("password", ""))
        if not user:
            return _error("Invalid credentials", 401)
        session.clear()
        session["user_id"] = user.user_id
        session["email"] = user.email
        logger.info("Staff user %s logged in", user.user_id)
        return jsonify({"user_id": user.user_id, "email": user.email})


@app.post("/api/logout")
def logout():
    session.clear()
    return jsonify({"ok": True})


@app.get("/api/me")
def me():
    user_id = require_login()
    return jsonify({"user_id": user_id, "email": session.get("email")})


# -------------------------------------------------
# Dashboard
# -------------------------------------------------
@app.get("/api/dashboard")
@api_action("Loading dashboard")
def dashboard():
    today = date.today()
    date_from = _parse_date(request.args.get("from"), "from") or today.replace(day=1)
    date_to = _parse_date(request.args.get("to"), "to") or today
    with get_session() as db:
        metrics = get_dashboard_metrics(db, date_from, date_to)

    return jsonify(
        {
            "from": date_from.isoformat(),
            "to": date_to.isoformat(),
            "new_member_count": metrics["new_member_count"],
            "average_membership_price": _money(metrics["average_membership_price"]),
            "best_selling_membership_type": metrics["best_selling_membership_type"],
            "total_payments": _money(metrics["total_payments"]),
            "daily_payments": [
                {"date": day.isoformat(), "total": _money(total)}
                for day, total in metrics["daily_payment_series"]
            ],
            "daily_visits": [
                {"date": day.isoformat(), "count": count}
                for day, count in metrics["daily_visit_series"]
            ],
            "attendance_chart": metrics["attendance_chart"],
            "top_active_members": metrics["top_active_members"],
            "expiring_soon": [
                {**row, "end_date": row["end_date"].isoformat()}
                for row in metrics["expiring_soon"]
            ],
            "currently_present": metrics["currently_present"],
        }
    )


# -------------------------------------------------
# Posts
# -------------------------------------------------
@app.get("/api/posts")
@api_action("Loading posts")
def posts_list():
    with get_session() as db:
        return jsonify({"posts": [_post_json(p) for p in list_posts(db)]})


@app.post("/api/posts")
@api_action("Saving post")
def posts_create():
    data = _payload()
    with get_session() as db:
        post = create_post(
            db,
            title=data.get("title"),
            content=data.get("content"),
            image=_uploaded("image"),
            store=_store(),
        )
        return jsonify(_post_json(post)), 201


@app.route("/api/posts/<int:post_id>", methods=["PUT", "POST"])
@api_action("Updating post")
def posts_update(post_id: int):
    data = _payload()
    with get_session() as db:
        post = update_post(
            db,
            post_id,
            title=data.get("title"),
            content=data.get("content"),
            image=_uploaded("image"),
            store=_store(),
        )
        return jsonify(_post_json(post))


@app.delete("/api/posts/<int:post_id>")
@api_action("Deleting post")
def posts_delete(post_id: int):
    with get_session() as db:
        delete_post(db, post_id)
    return jsonify({"ok": True})


# -------------------------------------------------
# Client directory
# -------------------------------------------------
@app.get("/api/clients")
@api_action("Loading clients")
def clients_list():
    args = request.args
    with get_session() as db:
        members = search_members(
            list_members(db),
            name=args.get("name", ""),
            phone=args.get("phone", ""),
            card_code=args.get("code", ""),
            status=args.get("status", "all"),
        )
        return jsonify({"clients": [_member_json(m) for m in members]})


@app.get("/api/clients/barcode")
@api_action("Barcode lookup")
def clients_barcode():
    with get_session() as db:
        match = find_by_barcode(list_members(db), request.args.get("code", ""))
        return jsonify({"client": _member_json(match) if match else None})


@app.post("/api/clients")
@api_action("Registering client")
def clients_create():
    data = _payload()
    with get_session() as db:
        member = create_member(
            db,
            full_name=data.get("full_name", ""),
            card_code=data.get("card_code"),
            phone=data.get("phone"),
            email=data.get("email"),
            status=data.get("status") or "active",
            note=data.get("note"),
        )
        return jsonify(_member_json(member)), 201


@app.get("/api/membership-types")
@api_action("Loading membership types")
def membership_types():
    with get_session() as db:
        return jsonify(
            {
                "types": [
                    {
                        "type_id": t.type_id,
                        "name": t.name,
                        "default_duration_days": t.default_duration_days,
                        "default_price": _money(t.default_price),
                    }
                    for t in list_membership_types(db)
                ]
            }
        )


@app.get("/api/clients/<int:member_id>")
@api_action("Loading client details")
def clients_detail(member_id: int):
    with get_session() as db:
        details = load_member_details(db, member_id)
    active = details["active_package"]
    return jsonify(
        {
            "member_id": details["member_id"],
            "client": _member_json(details["member"]),
            "active_package": active["name"],
            "days_to_expiry": active["days_to_expiry"],
            "expired": active["expired"],
            "packages": [
                {
                    **pkg,
                    "start_date": _iso(pkg["start_date"]),
                    "end_date": _iso(pkg["end_date"]),
                    "price": _money(pkg["price"]),
                }
                for pkg in details["packages"]
            ],
            "payments": [
                {
                    **pay,
                    "payment_date": _iso(pay["payment_date"]),
                    "amount": _money(pay["amount"]),
                }
                for pay in details["payments"]
            ],
        }
    )


@app.route("/api/clients/<int:member_id>", methods=["PATCH", "PUT"])
@api_action("Saving client")
def clients_update(member_id: int):
    data = _payload()
    with get_session() as db:
        changes = {key: data[key] for key in EDITABLE_MEMBER_FIELDS if key in data}
        member = update_member_info(db, member_id, **changes)
        return jsonify(_member_json(member))


@app.post("/api/clients/<int:member_id>/packages")
@api_action("Adding package")
def clients_add_package(member_id: int):
    data = _payload()
    with get_session() as db:
        period = add_package(
            db,
            member_id=member_id,
            type_id=_parse_int(data.get("type_id"), "type_id"),
            start_date=_parse_date(data.get("start_date"), "start_date"),
            end_date=_parse_date(data.get("end_date"), "end_date"),
            price=data.get("price"),
        )
        return jsonify(
            {
                "period_id": period.period_id,
                "type_id": period.type_id,
                "price": _money(period.price),
                "start_date": _iso(period.start_date),
                "end_date": _iso(period.end_date),
                "status": period.status,
            }
        ), 201


@app.post("/api/clients/<int:member_id>/payments")
@api_action("Adding payment")
def clients_add_payment(member_id: int):
    data = _payload()
    with get_session() as db:
        payment = add_payment(
            db,
            member_id=member_id,
            period_id=_parse_int(data.get("period_id"), "period_id"),
            amount=data.get("amount"),
            payment_date=_parse_date(data.get("payment_date"), "payment_date"),
        )
        return jsonify(
            {
                "payment_id": payment.payment_id,
                "period_id": payment.period_id,
                "amount": _money(payment.amount),
                "payment_date": _iso(payment.payment_date),
            }
        ), 201


@app.delete("/api/clients/<int:member_id>")
@api_action("Deleting client")
def clients_delete(member_id: int):
    with get_session() as db:
        delete_member(db, member_id)
    return jsonify({"ok": True})


@app.post("/api/clients/<int:member_id>/arrival")
@api_action("Recording arrival")
def clients_arrival(member_id: int):
    with get_session() as db:
        visit = record_arrival(db, member_id)
        return jsonify({"visit_id": visit.visit_id, "arrival_time": _iso(visit.arrival_time)}), 201


@app.post("/api/clients/<int:member_id>/departure")
@api_action("Recording departure")
def clients_departure(member_id: int):
    with get_session() as db:
        visit = record_departure(db, member_id)
        return jsonify(
            {
                "visit_id": visit.visit_id,
                "arrival_time": _iso(visit.arrival_time),
                "departure_time": _iso(visit.departure_time),
            }
        )


# -------------------------------------------------
# Trainers
# -------------------------------------------------
@app.get("/api/trainers")
@api_action("Loading trainers")
def trainers_list():
    with get_session() as db:
        rows = list_trainers_with_counts(db)
        return jsonify(
            {
                "trainers": [
                    {
                        "trainer_id": row["trainer"].trainer_id,
                        "member_id": row["trainer"].member_id,
                        "name": row["name"],
                        "note": row["trainer"].note,
                        "members_count": row["members_count"],
                    }
                    for row in rows
                ]
            }
        )


@app.get("/api/trainers/candidates")
@api_action("Loading trainer candidates")
def trainers_candidates():
    with get_session() as db:
        return jsonify({"members": [_member_json(m) for m in list_promotion_candidates(db)]})


@app.post("/api/trainers")
@api_action("Promoting trainer")
def trainers_promote():
    data = _payload()
    with get_session() as db:
        trainer = promote_to_trainer(
            db,
            member_id=_parse_int(data.get("member_id"), "member_id"),
            note=data.get("note"),
        )
        return jsonify({"trainer_id": trainer.trainer_id, "member_id": trainer.member_id}), 201


@app.get("/api/trainers/<int:trainer_id>/members")
@api_action("Loading trainer members")
def trainers_members(trainer_id: int):
    with get_session() as db:
        members = get_trainer_members(db, trainer_id)
        return jsonify({"members": [_member_json(m) for m in members]})


@app.get("/api/trainers/<int:trainer_id>/candidates")
@api_action("Loading roster candidates")
def trainers_roster_candidates(trainer_id: int):
    with get_session() as db:
        members = list_roster_candidates(db, trainer_id)
        return jsonify({"members": [_member_json(m) for m in members]})


@app.post("/api/trainers/<int:trainer_id>/members")
@api_action("Adding member to trainer")
def trainers_add_member(trainer_id: int):
    data = _payload()
    with get_session() as db:
        entry = add_member_to_trainer(
            db,
            trainer_id=trainer_id,
            member_id=_parse_int(data.get("member_id"), "member_id"),
        )
        return jsonify({"entry_id": entry.entry_id, "session_id": entry.session_id}), 201


@app.delete("/api/trainers/<int:trainer_id>/members/<int:member_id>")
@api_action("Removing member from trainer")
def trainers_remove_member(trainer_id: int, member_id: int):
    with get_session() as db:
        removed = remove_member_from_trainer(db, trainer_id=trainer_id, member_id=member_id)
    return jsonify({"removed": removed})


# -------------------------------------------------
# Weekly scheduler
# -------------------------------------------------
@app.get("/api/trainings")
@api_action("Loading trainings")
def trainings_week():
    reference = _parse_date(request.args.get("week"), "week") or date.today()
    # offset=-1 / offset=1 step to the previous / next week
    offset = _parse_int(request.args.get("offset"), "offset") or 0
    week_start = shift_week(get_monday(reference), offset)
    with get_session() as db:
        week = get_week_schedule(db, week_start)
        return jsonify(
            {
                "week_start": _iso(week["week_start"]),
                "week_end": _iso(week["week_end"]),
                "previous_week": shift_week(week["week_start"], -1).date().isoformat(),
                "next_week": shift_week(week["week_start"], 1).date().isoformat(),
                "days": [
                    {
                        "date": day["date"].isoformat(),
                        "empty": day["empty"],
                        "sessions": [_training_json(t) for t in day["sessions"]],
                    }
                    for day in week["days"]
                ],
            }
        )


def _save_training(session_id: Optional[int]):
    data = _payload()
    with get_session() as db:
        training = save_training_session(
            db,
            trainer_id=_parse_int(data.get("trainer_id"), "trainer_id"),
            title=data.get("title"),
            day=_parse_date(data.get("date"), "date"),
            start_at=_parse_time(data.get("time"), "time"),
            duration_minutes=_parse_int(data.get("duration_minutes"), "duration_minutes"),
            description=data.get("description"),
            session_id=session_id,
            min_duration_minutes=MIN_SESSION_MINUTES,
        )
        db.refresh(training, ["trainer"])
        return jsonify(_training_json(training))


@app.post("/api/trainings")
@api_action("Creating training")
def trainings_create():
    response = _save_training(None)
    return response, 201


@app.put("/api/trainings/<int:session_id>")
@api_action("Updating training")
def trainings_update(session_id: int):
    return _save_training(session_id)


@app.delete("/api/trainings/<int:session_id>")
@api_action("Deleting training")
def trainings_delete(session_id: int):
    with get_session() as db:
        delete_training_session(db, session_id)
    return jsonify({"ok": True})


@app.post("/api/trainings/<int:session_id>/recurring")
@api_action("Booking following weeks")
def trainings_recurring(session_id: int):
    data = _payload()
    weeks = _parse_int(data.get("weeks"), "weeks")
    if weeks is None:
        raise ValueError("Number of weeks is required")
    with get_session() as db:
        created = create_recurring_sessions(db, source_session_id=session_id, weeks=weeks)
        return jsonify(
            {
                "created": [
                    {
                        "session_id": t.session_id,
                        "start_time": _iso(t.start_time),
                        "end_time": _iso(t.end_time),
                    }
                    for t in created
                ]
            }
        ), 201


@app.get("/api/trainings/<int:session_id>/members")
@api_action("Loading training roster")
def trainings_roster(session_id: int):
    with get_session() as db:
        entries = get_session_roster(db, session_id)
        return jsonify(
            {
                "members": [
                    {**_member_json(e.member), "enrollment_status": e.status}
                    for e in entries
                ]
            }
        )


@app.get("/api/trainings/<int:session_id>/candidates")
@api_action("Loading training candidates")
def trainings_candidates(session_id: int):
    with get_session() as db:
        members = list_session_candidates(db, session_id, name_query=request.args.get("q", ""))
        return jsonify({"members": [_member_json(m) for m in members]})


@app.post("/api/trainings/<int:session_id>/members")
@api_action("Adding member to training")
def trainings_add_member(session_id: int):
    data = _payload()
    with get_session() as db:
        entry = add_member_to_session(
            db,
            session_id=session_id,
            member_id=_parse_int(data.get("member_id"), "member_id"),
        )
        return jsonify({"entry_id": entry.entry_id, "status": entry.status}), 201


@app.delete("/api/trainings/<int:session_id>/members/<int:member_id>")
@api_action("Removing member from training")
def trainings_remove_member(session_id: int, member_id: int):
    with get_session() as db:
        remove_member_from_session(db, session_id=session_id, member_id=member_id)
    return jsonify({"ok": True})


# -------------------------------------------------
# Staff profile
# -------------------------------------------------
def _profile_json(profile) -> dict:
    return {
        "user_id": profile.user_id,
        "email": session.get("email"),
        "full_name": profile.full_name,
        "phone": profile.phone,
        "avatar_url": profile.avatar_url,
    }


@app.get("/api/profile")
@api_action("Loading profile")
def profile_get():
    with get_session() as db:
        return jsonify(_profile_json(get_or_create_profile(db, current_user_id())))


@app.post("/api/profile")
@api_action("Saving profile")
def profile_update():
    data = _payload()
    with get_session() as db:
        profile = update_profile(
            db,
            current_user_id(),
            full_name=data.get("full_name", ""),
            phone=data.get("phone", ""),
            new_password=data.get("new_password", ""),
            avatar=_uploaded("avatar"),
            store=_store(),
        )
        return jsonify(_profile_json(profile))


# -------------------------------------------------
# Object storage
# -------------------------------------------------
@app.get("/storage/<bucket>/<path:object_path>")
def storage_object(bucket: str, object_path: str):
    store = _store()
    return send_from_directory(store.root / bucket, object_path)


if __name__ == "__main__":
    settings.configure_logging()
    app.run(debug=True)
