"""Control API for a running switcher (JSON over HTTP).

Settings keys on the wire are camelCase (``triggerLow``, ``sceneNormal`` ...);
anything else in a settings payload is stored as-is in flat form.
"""
from __future__ import annotations
from functools import wraps
from typing import Any, Optional
import hmac, logging

from flask import Flask, jsonify, request

from bitrate_guard import __version__
from bitrate_guard.config import ConfigStore

log = logging.getLogger(__name__)

# wire name -> settings-file key
SETTINGS_KEYS = {
    "enabled": "enabled",
    "onlyWhenStreaming": "only_when_streaming",
    "instantRecover": "instant_recover",
    "retryAttempts": "retry_attempts",
    "triggerLow": "trigger_low",
    "triggerRtt": "trigger_rtt",
    "triggerOffline": "trigger_offline",
    "triggerRttOffline": "trigger_rtt_offline",
    "sceneNormal": "scene_normal",
    "sceneLow": "scene_low",
    "sceneOffline": "scene_offline",
    "sceneStarting": "scene_starting",
    "sceneEnding": "scene_ending",
    "scenePrivacy": "scene_privacy",
    "sceneRefresh": "scene_refresh",
    "offlineTimeout": "offline_timeout",
    "recordWhileStreaming": "record_while_streaming",
    "switchToStarting": "switch_to_starting",
    "switchFromStarting": "switch_from_starting",
    "servers": "servers",
}


def settings_to_wire(store: ConfigStore) -> dict[str, Any]:
    cfg = store.config
    t = cfg.thresholds
    return {
        "enabled": cfg.enabled,
        "onlyWhenStreaming": cfg.only_when_streaming,
        "instantRecover": cfg.instant_recover,
        "retryAttempts": cfg.retry_attempts,
        "triggerLow": t.low,
        "triggerRtt": t.rtt_low,
        "triggerOffline": t.offline,
        "triggerRttOffline": t.rtt_offline,
        "sceneNormal": cfg.scenes.normal,
        "sceneLow": cfg.scenes.low,
        "sceneOffline": cfg.scenes.offline,
        "sceneStarting": cfg.optional_scenes.starting,
        "sceneEnding": cfg.optional_scenes.ending,
        "scenePrivacy": cfg.optional_scenes.privacy,
        "sceneRefresh": cfg.optional_scenes.refresh,
        "serverCount": len(cfg.servers),
    }


def create_app(switcher, store: ConfigStore, api_key: Optional[str] = None, chat=None) -> Flask:
    app = Flask(__name__)

    # every route needs X-Api-Key when a key is configured
    def key_required(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if api_key:
                given = request.headers.get("X-Api-Key", "")
                if not hmac.compare_digest(given, api_key):
                    return jsonify({"success": False, "error": "Unauthorized"}), 401
            return f(*args, **kwargs)
        return decorated_function

    @app.get("/api/version")
    @key_required
    def version():
        return jsonify({"success": True, "version": __version__})

    @app.get("/api/settings")
    @key_required
    def get_settings():
        return jsonify({"success": True, "settings": settings_to_wire(store)})

    @app.post("/api/settings")
    @key_required
    def set_settings():
        js = request.get_json(silent=True)
        if not isinstance(js, dict):
            return jsonify({"success": False, "error": "Expected a JSON object"}), 400
        changes = {SETTINGS_KEYS[k]: v for k, v in js.items() if k in SETTINGS_KEYS}
        if not changes:
            return jsonify({"success": False, "error": "No known settings in payload"}), 400
        if "servers" in changes and not isinstance(changes["servers"], list):
            return jsonify({"success": False, "error": "servers must be a list"}), 400

        store.update(changes)
        saved = store.save()
        switcher.reload_servers()
        log.info("Settings updated via API: %s", ", ".join(sorted(js)))
        return jsonify({"success": True, "saved": saved, "settings": settings_to_wire(store)})

    @app.get("/api/status")
    @key_required
    def status():
        snap = switcher.status_snapshot()
        if chat is not None:
            snap["chat"] = chat.snapshot()
        return jsonify({"success": True, **snap})

    @app.post("/api/switch_scene")
    @key_required
    def switch_scene():
        js = request.get_json(silent=True) or {}
        scene = (js.get("scene") or js.get("sceneName") or "").strip()
        if not scene:
            return jsonify({"success": False, "error": "Scene name is required"}), 400
        if not switcher.switch_to_scene_by_name(scene):
            return jsonify({"success": False, "error": f"Scene not found: {scene}"}), 404
        return jsonify({"success": True, "currentScene": switcher.current_scene})

    # configured scene roles; the optional ones fail when left blank
    scene_actions = {
        "live": switcher.switch_to_live,
        "low": switcher.switch_to_low,
        "brb": switcher.switch_to_brb,
        "starting": switcher.switch_to_starting,
        "ending": switcher.switch_to_ending,
        "privacy": switcher.switch_to_privacy,
    }

    @app.post("/api/scene/<role>")
    @key_required
    def switch_role(role):
        action = scene_actions.get(role.lower())
        if action is None:
            return jsonify({"success": False, "error": f"Unknown scene role: {role}"}), 404
        if not action():
            return jsonify({"success": False, "error": f"No usable {role} scene configured"}), 409
        return jsonify({"success": True, "currentScene": switcher.current_scene})

    @app.post("/api/start_stream")
    @key_required
    def start_stream():
        if switcher.start_stream():
            return jsonify({"success": True})
        return jsonify({"success": False, "error": "Stream is already running or OBS is unreachable"}), 409

    @app.post("/api/stop_stream")
    @key_required
    def stop_stream():
        if switcher.stop_stream():
            return jsonify({"success": True})
        return jsonify({"success": False, "error": "Stream is not running or OBS is unreachable"}), 409

    @app.post("/api/trigger")
    @key_required
    def trigger():
        target = switcher.trigger_switch()
        return jsonify({"success": True, "switchedTo": target, "status": switcher.get_status_string()})

    @app.errorhandler(404)
    def not_found(_e):
        return jsonify({"success": False, "error": "Not found"}), 404

    @app.errorhandler(500)
    def server_error(e):
        log.error("Control API error: %s", e)
        return jsonify({"success": False, "error": "Internal error"}), 500

    return app
