from __future__ import annotations

from flask import Flask, jsonify, request

from ..common.datetime_utils import now_local
from ..core.exceptions import StoreUnavailableError, ValidationError
from ..container import Container


def register(app: Flask, container: Container) -> None:
    @app.route("/ledger/health", methods=["GET"], endpoint="ledger_health")
    def ledger_health():
        try:
            report = container.health_service.report(now=now_local())
        except StoreUnavailableError as exc:
            return jsonify({"error": "store_unavailable", "message": str(exc)}), 503
        return jsonify(report.as_dict())

    @app.route("/ledger/chain", methods=["GET"], endpoint="ledger_chain")
    def ledger_chain():
        from_sequence_id = request.args.get("from_sequence_id", type=int)
        limit = request.args.get("limit", default=1000, type=int)
        try:
            report = container.health_service.verify_processed_chain(from_sequence_id=from_sequence_id, limit=limit)
        except ValidationError as exc:
            return jsonify({"error": "invalid_request", "message": str(exc)}), 400
        except StoreUnavailableError as exc:
            return jsonify({"error": "store_unavailable", "message": str(exc)}), 503
        return jsonify(report.as_dict())
