"""Flask application exposing the inventory core as a local JSON API."""
from __future__ import annotations

from datetime import timedelta
from typing import Any, Dict, List, Optional
import logging

from flask import Flask, Response, jsonify, request
from itsdangerous import BadData, URLSafeTimedSerializer

from .config import DEFAULT_SECRET_KEY, Settings, get_settings
from .errors import NotFoundError, ParseError, ValidationError
from .exchange import (
    backup_filename,
    csv_filename,
    dump_backup,
    export_csv,
    import_csv,
    restore_backup,
)
from .inventory import InventoryStore
from .models import Item
from .preferences import (
    LowStockNotifier,
    NotifyCallback,
    Preferences,
    SecurityState,
    load_preferences,
    save_preferences,
)
from .storage import FileStorage, KeyValueStorage

logger = logging.getLogger(__name__)

_OPEN_ENDPOINTS = {"unlock", "static"}


def _log_notification(items: List[Item]) -> None:
    names = ", ".join(item.title for item in items[:5])
    logger.warning("%d item(s) need attention: %s", len(items), names)


def _item_payload(item: Item) -> Dict[str, Any]:
    payload = item.to_dict()
    payload["level"] = item.stock_level.value
    payload["title"] = item.title
    return payload


def _parse_flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value or "").strip().lower() in {"1", "true", "yes", "on"}


def create_app(
    settings: Optional[Settings] = None,
    storage: Optional[KeyValueStorage] = None,
    notify: Optional[NotifyCallback] = None,
) -> Flask:
    settings = settings or get_settings()
    logging.getLogger("stockroom").setLevel(settings.log_level)
    if settings.secret_key == DEFAULT_SECRET_KEY and settings.environment != "test":
        logger.warning(
            "Unlock tokens are signed with the built-in secret key; set STOCKROOM_SECRET_KEY"
        )
    if storage is None:
        storage = FileStorage(settings.data_dir)

    store = InventoryStore(storage, settings)
    security = SecurityState(storage)
    notifier = LowStockNotifier(
        store,
        security,
        notify or _log_notification,
        cooldown=timedelta(hours=settings.notification_cooldown_hours),
    )

    app = Flask(__name__)
    app.config["SECRET_KEY"] = settings.secret_key
    app.config["STOCKROOM_SETTINGS"] = settings
    app.extensions["stockroom"] = {
        "store": store,
        "security": security,
        "notifier": notifier,
        "storage": storage,
    }
    token_serializer = URLSafeTimedSerializer(settings.secret_key, salt="stockroom-unlock")

    def _json_error(message: str, status: int) -> Any:
        return jsonify({"error": message}), status

    def _get_payload() -> Dict[str, Any]:
        payload = request.get_json(silent=True)
        if isinstance(payload, dict):
            return payload
        return request.form.to_dict()

    def _uploaded_payload() -> bytes:
        upload = request.files.get("file")
        if upload is not None:
            return upload.read()
        return request.get_data()

    def _extract_token() -> Optional[str]:
        header = request.headers.get("Authorization", "")
        if header.lower().startswith("bearer "):
            return header[7:].strip() or None
        return request.headers.get("X-Unlock-Token")

    def _after_mutation() -> None:
        notifier.check()

    @app.errorhandler(ValidationError)
    def handle_validation_error(exc: ValidationError) -> Any:
        return _json_error(str(exc), 400)

    @app.errorhandler(ParseError)
    def handle_parse_error(exc: ParseError) -> Any:
        return _json_error(str(exc), 400)

    @app.errorhandler(NotFoundError)
    def handle_not_found(exc: NotFoundError) -> Any:
        return _json_error(str(exc), 404)

    @app.before_request
    def require_unlock() -> Any:
        if request.endpoint in _OPEN_ENDPOINTS or not security.has_pin():
            return None
        token = _extract_token()
        if not token:
            return _json_error("Locked", 401)
        try:
            token_serializer.loads(token, max_age=settings.unlock_token_max_age)
        except BadData:
            return _json_error("Locked", 401)
        return None

    # ------------------------------------------------------------------
    # Access
    # ------------------------------------------------------------------
    @app.post("/api/unlock", endpoint="unlock")
    def unlock() -> Any:
        payload = _get_payload()
        if not security.has_pin():
            return jsonify({"locked": False, "token": None})
        if not security.verify_pin(payload.get("pin")):
            logger.info("Rejected unlock attempt")
            return _json_error("Invalid PIN", 401)
        token = token_serializer.dumps({"unlocked": True})
        return jsonify(
            {"locked": True, "token": token, "expires_in": settings.unlock_token_max_age}
        )

    @app.put("/api/pin")
    def set_pin() -> Any:
        security.set_pin(_get_payload().get("pin"))
        return jsonify({"locked": True})

    @app.delete("/api/pin")
    def clear_pin() -> Any:
        security.clear_pin()
        return jsonify({"locked": False})

    @app.put("/api/notifications")
    def set_notifications() -> Any:
        enabled = _parse_flag(_get_payload().get("enabled"))
        security.set_notify_enabled(enabled)
        fired = notifier.check() if enabled else False
        return jsonify({"enabled": enabled, "notified": fired})

    # ------------------------------------------------------------------
    # Items
    # ------------------------------------------------------------------
    @app.get("/api/items")
    def list_items() -> Any:
        items = store.query(
            search=request.args.get("search", ""),
            group=request.args.get("group") or None,
            only_attention=_parse_flag(request.args.get("only_attention")),
            sort=request.args.get("sort", "triage"),
        )
        return jsonify([_item_payload(item) for item in items])

    @app.post("/api/items")
    def create_item() -> Any:
        item = store.create(_get_payload())
        _after_mutation()
        return jsonify(_item_payload(item)), 201

    @app.get("/api/items/<int(signed=True):item_id>")
    def get_item(item_id: int) -> Any:
        item = store.get(item_id)
        payload = _item_payload(item)
        payload["movements"] = [
            movement.to_record() for movement in store.movements_for(item_id)
        ]
        return jsonify(payload)

    @app.put("/api/items/<int(signed=True):item_id>")
    def update_item(item_id: int) -> Any:
        item = store.update(item_id, _get_payload())
        _after_mutation()
        return jsonify(_item_payload(item))

    @app.delete("/api/items/<int(signed=True):item_id>")
    def delete_item(item_id: int) -> Any:
        store.delete(item_id)
        return jsonify({"deleted": item_id})

    @app.post("/api/items/<int(signed=True):item_id>/adjust")
    def adjust_item(item_id: int) -> Any:
        payload = _get_payload()
        item = store.adjust_quantity(
            item_id, payload.get("delta"), str(payload.get("note") or "")
        )
        _after_mutation()
        return jsonify(_item_payload(item))

    @app.get("/api/items/<int(signed=True):item_id>/movements")
    def item_movements(item_id: int) -> Any:
        store.get(item_id)
        return jsonify([movement.to_record() for movement in store.movements_for(item_id)])

    @app.get("/api/movements")
    def list_movements() -> Any:
        return jsonify([movement.to_record() for movement in store.ledger.query_all()])

    @app.delete("/api/movements")
    def clear_movements() -> Any:
        cleared = store.clear_movements()
        return jsonify({"cleared": True, "count": cleared})

    @app.get("/api/summary")
    def summary() -> Any:
        return jsonify(store.summary())

    # ------------------------------------------------------------------
    # Groups
    # ------------------------------------------------------------------
    @app.get("/api/groups")
    def list_groups() -> Any:
        return jsonify(store.groups)

    @app.post("/api/groups")
    def create_group() -> Any:
        name = store.ensure_group(_get_payload().get("name"))
        return jsonify({"name": name}), 201

    @app.put("/api/groups/<path:name>")
    def rename_group(name: str) -> Any:
        renamed = store.rename_group(name, _get_payload().get("name"))
        return jsonify({"name": renamed})

    @app.delete("/api/groups/<path:name>")
    def delete_group(name: str) -> Any:
        moved = store.delete_group(name)
        return jsonify({"deleted": name, "reassigned": moved})

    @app.post("/api/groups/<path:name>/merge")
    def merge_group(name: str) -> Any:
        target = _get_payload().get("target")
        moved = store.merge_groups(name, target)
        return jsonify({"merged": name, "target": store.ensure_group(target), "moved": moved})

    # ------------------------------------------------------------------
    # Backup, restore, CSV
    # ------------------------------------------------------------------
    @app.get("/api/backup")
    def download_backup() -> Response:
        response = Response(dump_backup(store), mimetype="application/json")
        response.headers["Content-Disposition"] = f"attachment; filename={backup_filename()}"
        return response

    @app.post("/api/restore")
    def restore() -> Any:
        count = restore_backup(store, _uploaded_payload())
        _after_mutation()
        return jsonify({"restored": count})

    @app.get("/api/export.csv")
    def download_csv() -> Response:
        response = Response(export_csv(store.items), mimetype="text/csv")
        response.headers["Content-Disposition"] = f"attachment; filename={csv_filename()}"
        return response

    @app.post("/api/import.csv")
    def upload_csv() -> Any:
        count = import_csv(store, _uploaded_payload())
        _after_mutation()
        return jsonify({"imported": count})

    # ------------------------------------------------------------------
    # Preferences
    # ------------------------------------------------------------------
    @app.get("/api/preferences")
    def get_preferences() -> Any:
        return jsonify(load_preferences(storage).to_record())

    @app.put("/api/preferences")
    def put_preferences() -> Any:
        payload = _get_payload()
        current = load_preferences(storage)
        updated = save_preferences(
            storage,
            Preferences(
                sort_mode=payload.get("sortMode", current.sort_mode),
                only_attention=_parse_flag(payload.get("onlyAttention", current.only_attention)),
                group_filter=payload.get("groupFilter", current.group_filter),
            ),
        )
        return jsonify(updated.to_record())

    return app


__all__ = ["create_app"]
