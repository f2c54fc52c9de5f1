"""Flask app entrypoint for Kitchen Eco AI.

This file wires up the Flask app, the credential manager and recipe
service, and the settings / recipe endpoints used by the frontend. The
credential manager is constructed once here and shared by every route.
"""

import os
import logging
from datetime import datetime
from flask import Flask, request, jsonify
from flask_cors import CORS
from dotenv import load_dotenv

load_dotenv()

from app_models import (  # noqa: E402
    APIError,
    ValidationError,
    NotConfigured,
    GenerationError,
    StorageError,
    RecipeRequest,
    MODEL_CANDIDATES,
    clean_model_name,
    get_model_name,
    init_db,
)
from app_services import CredentialManager, RecipeService  # noqa: E402
from app_storage import create_credential_store  # noqa: E402

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

init_db()

# Initialize Flask app
app = Flask(__name__)
app.config["MAX_CONTENT_LENGTH"] = int(os.getenv("MAX_UPLOAD_MB", 10)) * 1024 * 1024

# CORS configuration - configure for production
CORS_METHODS = ["GET", "POST", "PUT", "DELETE", "OPTIONS"]
cors_config = {
    "origins": "*",
    "methods": CORS_METHODS,
    "allow_headers": ["Content-Type"],
    "max_age": 3600,
}
CORS(app, resources={r"/api/*": cors_config})

# Initialize services
credential_manager = CredentialManager(create_credential_store(os.getenv("CREDENTIAL_STORE", "database")))
credential_manager.initialize()
recipe_service = RecipeService(credential_manager)

start_time = datetime.now()


def error_response(error: APIError, error_type: str):
    body = {
        "success": False,
        "error": error.message,
        "type": error_type,
    }
    if isinstance(error, ValidationError) and error.field:
        body["field"] = error.field
    details = getattr(error, "details", None)
    if details:
        body["details"] = details
    return jsonify(body), error.status_code


def settings_payload():
    return {
        "configured": credential_manager.is_ready,
        "maskedApiKey": credential_manager.masked_credential,
        "model": credential_manager.model_name,
        "models": [clean_model_name(name) for name in MODEL_CANDIDATES],
    }


# --- SETTINGS ENDPOINTS ---
@app.route("/api/settings", methods=["GET"])
def get_settings():
    """Report whether a key is stored (masked) and which model is in use."""
    return jsonify(settings_payload()), 200


@app.route("/api/settings/api-key", methods=["PUT", "POST"])
def save_api_key():
    """Store a new Gemini API key and rebuild the model client."""
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        data = {}
    api_key = data.get("apiKey")
    if api_key is not None and not isinstance(api_key, str):
        return jsonify({"success": False, "error": "apiKey must be a string", "field": "apiKey"}), 400

    try:
        credential_manager.save_credential(api_key)
    except ValidationError as e:
        logger.warning(f"Rejected API key: {e.message}")
        return error_response(e, "validation_error")
    except StorageError as e:
        logger.error(f"Could not save API key: {e.details or e.message}")
        return error_response(e, "storage_error")

    return jsonify({
        "success": True,
        "message": "API key saved",
        "settings": settings_payload(),
    }), 200


@app.route("/api/settings/api-key", methods=["DELETE"])
def clear_api_key():
    """Remove the stored API key."""
    credential_manager.clear_credential()
    return jsonify({
        "success": True,
        "message": "API key cleared",
        "settings": settings_payload(),
    }), 200


@app.route("/api/settings/test-connection", methods=["POST"])
def test_connection():
    """
    Ping Gemini with the current key.

    Request JSON (optional): {"apiKey": "..."} saves that key first, the
    way the settings screen stores what the user typed before testing it.
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        data = {}
    api_key = data.get("apiKey")

    if api_key is not None:
        if not isinstance(api_key, str):
            return jsonify({"success": False, "error": "apiKey must be a string", "field": "apiKey"}), 400
        try:
            credential_manager.save_credential(api_key)
        except ValidationError as e:
            logger.warning(f"Rejected API key: {e.message}")
            return error_response(e, "validation_error")
        except StorageError as e:
            logger.error(f"Could not save API key: {e.details or e.message}")
            return error_response(e, "storage_error")

    success = credential_manager.test_connection()
    logger.info(f"Connection test {'succeeded' if success else 'failed'}")
    return jsonify({
        "success": success,
        "model": credential_manager.model_name,
    }), 200


@app.route("/api/settings/model", methods=["PUT"])
def select_model():
    """
    Switch the Gemini model.

    Request JSON: {"index": 1} or {"model": "models/gemini-1.5-flash"}
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        data = {}

    if "index" in data:
        index = data.get("index")
        if not isinstance(index, int) or isinstance(index, bool):
            return jsonify({"success": False, "error": "index must be an integer", "field": "index"}), 400
        model_name = get_model_name(index)
    elif data.get("model"):
        model_name = clean_model_name(str(data["model"]))
        if model_name not in [clean_model_name(name) for name in MODEL_CANDIDATES]:
            return jsonify({"success": False, "error": f"Unknown model '{model_name}'", "field": "model"}), 400
    else:
        return jsonify({"success": False, "error": "Provide 'index' or 'model'"}), 400

    credential_manager.use_model(model_name)
    return jsonify({
        "success": True,
        "settings": settings_payload(),
    }), 200


# --- RECIPE ENDPOINTS ---
@app.route("/api/recipes", methods=["POST"])
def generate_recipe():
    """
    Main endpoint: turn an ingredient list (and optional photo) into recipes.

    Request JSON:
    {
        "ingredients": "onion, carrot, potato",
        "image_base64": "...",      (optional)
        "image_name": "fridge.jpg"  (optional)
    }
    or multipart/form-data with an "ingredients" field and an "image" file.

    Response (success):
    {
        "success": true,
        "recipe": "## 1. ...",
        "model": "gemini-3-flash-preview",
        "used_image": false,
        "empty_response": false
    }
    """
    try:
        try:
            if request.is_json:
                data = request.get_json(silent=True)
                if not data or not isinstance(data, dict):
                    logger.warning("Empty request body")
                    return jsonify({
                        "success": False,
                        "error": "Request body must be a JSON object or multipart form data"
                    }), 400
                recipe_request = RecipeRequest.from_dict(data)
            else:
                upload = request.files.get("image")
                image_bytes = upload.read() if upload else None
                recipe_request = RecipeRequest.create(
                    request.form.get("ingredients"),
                    image_bytes=image_bytes,
                    image_name=upload.filename if upload else None,
                )
        except ValidationError as e:
            logger.warning(f"Validation error: {e.message}")
            return error_response(e, "validation_error")

        logger.info(f"Processing recipe request - image: {'yes' if recipe_request.has_image else 'no'}")

        try:
            result = recipe_service.generate(recipe_request)
        except NotConfigured as e:
            logger.warning("Recipe requested without a configured API key")
            return error_response(e, "not_configured")
        except GenerationError as e:
            logger.error(f"Generation error: {e.message}")
            return error_response(e, "generation_error")

        response = {"success": True}
        response.update(result.to_dict())
        return jsonify(response), 200

    except Exception as e:
        logger.exception(f"Unexpected error in /api/recipes: {str(e)}")
        return jsonify({
            "success": False,
            "error": "Internal server error",
            "type": "internal_error"
        }), 500


# --- UTILITY ENDPOINTS ---
@app.route("/health", methods=["GET"])
def health_check():
    """Health check endpoint for deployment monitoring."""
    uptime_seconds = (datetime.now() - start_time).total_seconds()
    return jsonify({
        "status": "ok",
        "uptime_seconds": int(uptime_seconds),
        "configured": credential_manager.is_ready,
        "timestamp": datetime.now().isoformat()
    }), 200


@app.errorhandler(400)
def handle_bad_request(e):
    """Handle 400 errors."""
    logger.warning(f"Bad request: {str(e)}")
    return jsonify({
        "success": False,
        "error": "Bad request"
    }), 400


@app.errorhandler(404)
def handle_not_found(e):
    """Handle 404 errors."""
    return jsonify({
        "success": False,
        "error": "Endpoint not found"
    }), 404


@app.errorhandler(413)
def handle_too_large(e):
    """Handle oversized image uploads."""
    return jsonify({
        "success": False,
        "error": "Uploaded image is too large"
    }), 413


@app.errorhandler(500)
def handle_server_error(e):
    """Handle 500 errors."""
    logger.error(f"Server error: {str(e)}")
    return jsonify({
        "success": False,
        "error": "Internal server error"
    }), 500


if __name__ == "__main__":
    port = int(os.getenv("PORT", 5001))
    debug = os.getenv("FLASK_ENV", "production") == "development"

    logger.info(f"Starting Flask app on port {port} (debug={debug})")
    logger.info("CORS allowed origins: * (all sites)")
    logger.info(f"Gemini API: {'configured' if credential_manager.is_ready else 'NOT SET'}")
    logger.info(f"Gemini model: {credential_manager.model_name}")

    app.run(host="0.0.0.0", port=port, debug=debug)
