from __future__ import annotations

import os
import traceback
from dataclasses import asdict
from typing import Any, Dict, Optional

from flask import Flask, request, jsonify, Response

from compasskit.core.logging import log_path
from compasskit.navigation import SensorUnavailable
from compasskit.runtime import CompassRuntime


def _count_arg(default: int, limit: int) -> Optional[int]:
    """?n= as an int clamped to [0, limit]; None when not an integer."""
    try:
        n = int(request.args.get("n", default))
    except (TypeError, ValueError):
        return None
    return max(0, min(n, limit))


def create_app(runtime: Optional[CompassRuntime] = None) -> Flask:
    app = Flask(__name__, static_folder=None)
    rt = runtime or CompassRuntime()
    logger = rt.logger
    app.config["COMPASS_RUNTIME"] = rt

    @app.post("/api/start")
    def api_start():
        data: Dict[str, Any] = request.get_json(force=True, silent=True) or {}
        sensors = data.get("sensors")
        if not isinstance(sensors, list):
            return jsonify({"error": "sensors[] required"}), 400
        try:
            variant = rt.start(sensors)
        except SensorUnavailable as exc:
            return jsonify({"ok": False, "error": str(exc)}), 409
        logger.info("api/start | sensors=%s variant=%s", sensors, variant)
        return jsonify({"ok": True, "variant": variant, "session": rt.snapshot().session})

    @app.post("/api/stop")
    def api_stop():
        rt.stop()
        logger.info("api/stop")
        return jsonify({"ok": True})

    @app.post("/api/sample")
    def api_sample():
        payload = request.get_json(force=True, silent=True) or {}
        sensor = payload.get("sensor")
        values = payload.get("values")
        if not isinstance(sensor, str) or not isinstance(values, list):
            return jsonify({"error": "sensor and values[] required"}), 400
        try:
            floats = [float(v) for v in values]
        except (TypeError, ValueError):
            return jsonify({"error": "values must be numeric"}), 400
        update = rt.handle_sample(sensor, floats)
        return jsonify({"update": asdict(update) if update else None})

    @app.post("/api/accuracy")
    def api_accuracy():
        payload = request.get_json(force=True, silent=True) or {}
        sensor = payload.get("sensor") or "unknown"
        try:
            accuracy = int(payload.get("accuracy"))
        except (TypeError, ValueError):
            return jsonify({"error": "accuracy must be an integer"}), 400
        rt.on_accuracy_changed(str(sensor), accuracy)
        return jsonify({"ok": True})

    @app.get("/api/status")
    def api_status():
        s = rt.snapshot()
        out = asdict(s)
        out["settings"] = asdict(rt.settings)
        return jsonify(out)

    @app.get("/api/timeline")
    def api_timeline():
        n = _count_arg(50, rt.settings.timeline_size)
        if n is None:
            return jsonify({"error": "n must be an integer"}), 400
        return jsonify(rt.get_timeline(n))

    @app.get("/api/logs/tail")
    def api_logs_tail():
        n = _count_arg(200, 5000)
        if n is None:
            return jsonify({"error": "n must be an integer"}), 400
        path = log_path()
        if not os.path.exists(path):
            return ("", 204)
        try:
            with open(path, "r", encoding="utf-8", errors="ignore") as f:
                lines = f.readlines()[-n:] if n else []
            return Response("".join(lines), mimetype="text/plain")
        except OSError:
            return Response(traceback.format_exc(), mimetype="text/plain", status=500)

    return app


def main() -> None:
    app = create_app()
    port = int(os.environ.get("PORT", "8083"))
    app.run(host="127.0.0.1", port=port, debug=False, threaded=True)


if __name__ == "__main__":
    main()
