"""Flask REST API exposing the expense tracker services."""

from __future__ import annotations

import io
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from flask import Blueprint, Flask, jsonify, request, send_file
from flask_cors import CORS
from flask_jwt_extended import (
    JWTManager,
    create_access_token,
    get_jwt_identity,
    set_access_cookies,
    unset_jwt_cookies,
    verify_jwt_in_request,
)

from common import export
from common.exceptions import (
    AuthenticationError,
    PermissionDeniedError,
    PersistenceError,
    RecordNotFoundError,
    ValidationError,
)
from common.models import Caller
from common.seed import seed_admin, seed_demo
from common.services import ExpenseService, ReportService, UserService
from common.storage import ExpenseStore, SQLStorage, UserStore

from .config import Settings


def create_app(settings: Optional[Settings] = None) -> Flask:
    settings = settings or Settings.from_env()
    app = Flask(__name__)

    app.config.update(
        JWT_SECRET_KEY=settings.jwt_secret,
        JWT_TOKEN_LOCATION=["cookies"],
        JWT_ACCESS_COOKIE_NAME=settings.cookie_name,
        JWT_ACCESS_COOKIE_PATH="/",
        JWT_ACCESS_TOKEN_EXPIRES=settings.jwt_expires,
        JWT_COOKIE_SECURE=settings.cookie_secure,
        JWT_COOKIE_SAMESITE="Lax",
        JWT_COOKIE_CSRF_PROTECT=False,
    )
    jwt = JWTManager(app)

    if settings.is_development:
        origins = list(settings.allowed_origins) or ["http://localhost:3000"]
        CORS(app, resources={r"/*": {"origins": origins}}, supports_credentials=True)
    elif settings.allowed_origins:
        CORS(app, resources={r"/*": {"origins": list(settings.allowed_origins)}}, supports_credentials=True)
    else:
        CORS(app)

    storage = SQLStorage(settings.database_url)
    storage.create_schema()
    expense_store = ExpenseStore(storage)
    user_service = UserService(UserStore(storage))
    expense_service = ExpenseService(expense_store)
    report_service = ReportService(expense_store)

    seed_admin(user_service, settings.admin_email, settings.admin_password)
    if settings.seed_demo:
        seed_demo(user_service, expense_store)

    app.extensions["expense_tracker"] = {
        "settings": settings,
        "storage": storage,
        "users": user_service,
        "expenses": expense_service,
        "reports": report_service,
    }

    def _success(payload: Any, status: int = 200):
        return jsonify(payload), status

    def _handle_error(exc: Exception, status: int, message: str):
        if status >= 500:
            app.logger.error("%s: %s", message, exc)
        else:
            app.logger.warning("%s: %s", message, exc)
        return jsonify({"error": message, "details": str(exc)}), status

    @app.errorhandler(ValidationError)
    def handle_validation_error(exc: ValidationError):
        return _handle_error(exc, 400, "Validation error")

    @app.errorhandler(AuthenticationError)
    def handle_authentication_error(exc: AuthenticationError):
        return _handle_error(exc, 401, "Unauthorized")

    @app.errorhandler(PermissionDeniedError)
    def handle_permission_denied(exc: PermissionDeniedError):
        return _handle_error(exc, 403, "Forbidden")

    @app.errorhandler(RecordNotFoundError)
    def handle_not_found(exc: RecordNotFoundError):
        return _handle_error(exc, 404, "Record not found")

    @app.errorhandler(PersistenceError)
    def handle_persistence_error(exc: PersistenceError):
        return _handle_error(exc, 500, "Persistence error")

    @jwt.unauthorized_loader
    def handle_missing_token(reason: str):
        return _handle_error(AuthenticationError(reason), 401, "Unauthorized")

    @jwt.invalid_token_loader
    def handle_invalid_token(reason: str):
        return _handle_error(AuthenticationError(reason), 401, "Unauthorized")

    @jwt.expired_token_loader
    def handle_expired_token(jwt_header: Dict[str, Any], jwt_payload: Dict[str, Any]):
        return _handle_error(AuthenticationError("Token has expired"), 401, "Unauthorized")

    def _json_body() -> Dict[str, Any]:
        if not request.is_json:
            raise ValidationError("Request content must be application/json")
        data = request.get_json(silent=True)
        if data is None:
            raise ValidationError("Malformed JSON body")
        if not isinstance(data, dict):
            raise ValidationError("JSON body must be an object")
        return data

    def _current_caller() -> Caller:
        # Cookie credential -> verified token -> caller from the identity store.
        verify_jwt_in_request()
        return user_service.resolve_caller(get_jwt_identity())

    def _report_owner(caller: Caller) -> Optional[int]:
        return None if caller.is_admin else caller.id

    api = Blueprint("api", __name__, url_prefix=settings.api_prefix.rstrip("/") or None)

    @api.get("/health")
    def health():
        return _success({"status": "ok"})

    @api.post("/auth/login")
    def login():
        payload = _json_body()
        user = user_service.authenticate(payload.get("email"), payload.get("password"))
        token = create_access_token(
            identity=str(user.id),
            additional_claims={"role": user.role.value, "email": user.email},
        )
        response = jsonify(user.to_dict())
        set_access_cookies(response, token)
        app.logger.info("User %s logged in", user.id)
        return response, 200

    @api.get("/auth/me")
    def me():
        caller = _current_caller()
        return _success(caller.to_dict())

    @api.post("/auth/logout")
    def logout():
        response = jsonify({"message": "Logged out"})
        unset_jwt_cookies(response)
        return response, 200

    @api.get("/expenses")
    def list_expenses():
        caller = _current_caller()
        page = expense_service.list_paged(
            caller,
            page=request.args.get("page"),
            limit=request.args.get("limit"),
            category=request.args.get("category"),
            search=request.args.get("query"),
        )
        return _success(page.to_dict())

    @api.get("/expenses/admin/all")
    def list_all_expenses():
        caller = _current_caller()
        page = expense_service.list_all(
            caller,
            page=request.args.get("page"),
            limit=request.args.get("limit"),
        )
        return _success(page.to_dict())

    @api.get("/expenses/search")
    def search_expenses():
        caller = _current_caller()
        expenses = expense_service.search(caller, request.args.get("query"))
        return _success([expense.to_dict() for expense in expenses])

    @api.get("/expenses/category")
    def filter_expenses_by_category():
        caller = _current_caller()
        page = expense_service.filter_by_category(
            caller,
            request.args.get("category"),
            page=request.args.get("page"),
            limit=request.args.get("limit"),
        )
        return _success(page.to_dict())

    @api.get("/expenses/export")
    def export_expenses():
        caller = _current_caller()
        expenses = expense_service.list_for_export(
            caller,
            search=request.args.get("query"),
            category=request.args.get("category"),
        )
        document = export.render(request.args.get("format", "csv"), expenses)
        stamp = datetime.now(timezone.utc).date().isoformat()
        return send_file(
            io.BytesIO(document.content),
            mimetype=document.mimetype,
            as_attachment=True,
            download_name=f"expenses_{stamp}.{document.extension}",
        )

    @api.post("/expenses")
    def create_expense():
        caller = _current_caller()
        payload = _json_body()
        expense = expense_service.create(caller, payload)
        return _success(expense.to_dict(include_owner=True), 201)

    @api.get("/expenses/<int:expense_id>")
    def get_expense(expense_id: int):
        caller = _current_caller()
        expense = expense_service.get_one(caller, expense_id)
        return _success(expense.to_dict())

    @api.put("/expenses/<int:expense_id>")
    def update_expense(expense_id: int):
        caller = _current_caller()
        payload = _json_body()
        expense = expense_service.update(caller, expense_id, payload)
        return _success(expense.to_dict())

    @api.delete("/expenses/<int:expense_id>")
    def delete_expense(expense_id: int):
        caller = _current_caller()
        return _success(expense_service.remove(caller, expense_id))

    @api.get("/reports/expenses/by-category")
    def report_by_category():
        caller = _current_caller()
        rows = report_service.by_category(
            request.args.get("from"),
            request.args.get("to"),
            category=request.args.get("category"),
            owner_id=_report_owner(caller),
        )
        return _success([row.to_dict() for row in rows])

    @api.get("/reports/expenses/by-period")
    def report_by_period():
        caller = _current_caller()
        rows = report_service.by_period(
            request.args.get("from"),
            request.args.get("to"),
            group=request.args.get("group", "month"),
            category=request.args.get("category"),
            owner_id=_report_owner(caller),
        )
        return _success([row.to_dict() for row in rows])

    app.register_blueprint(api)
    return app
