from flask import Flask, request, jsonify
from flask_cors import CORS
from rebates import Database, RebateService
import os
import logging

# Configure logging
logging.basicConfig(level=os.environ.get("LOG_LEVEL", "INFO"))
logger = logging.getLogger(__name__)

ENVIRONMENT = os.environ.get("ENVIRONMENT", "dev")

app = Flask(__name__)

# Enable CORS for all routes
CORS(app)

# Initialize the rebate service
database = Database.from_env()
database.create_all()
service = RebateService(database)


@app.route("/api", methods=["GET"])
def api_info():
    """API information endpoint"""
    return jsonify({
        "status": "ok",
        "message": "Talent Rebate Engine API",
        "version": "1.0",
        "endpoints": {
            "rebates": "/rebates [GET, POST]",
            "health": "/health [GET]"
        },
        "actions": sorted(service.actions)
    }), 200


@app.route("/health", methods=["GET"])
def health():
    """Health check for monitoring"""
    return jsonify({"status": "healthy", "environment": ENVIRONMENT}), 200


@app.route("/rebates", methods=["GET", "POST"])
def rebates():
    """
    Dispatch a rebate action. Query parameters and JSON body are merged, body wins.
    """
    params = request.args.to_dict()

    if request.method == "POST" and request.get_data():
        body = request.get_json(silent=True)
        if not isinstance(body, dict):
            return jsonify({
                "success": False,
                "message": "Request body must be a JSON object"
            }), 400
        params.update(body)

    action = params.pop("action", None)
    status_code, body = service.handle(action, params)

    if status_code == 200:
        logger.info(f"Action processed successfully: {action}")

    return jsonify(body), status_code


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 8080))
    app.run(host="0.0.0.0", port=port, debug=False)
