"""
Data models, configuration constants and errors for Kitchen Eco AI.
Handles request validation and the settings table backing the API key.
"""

import base64
import binascii
import datetime
import os
from dataclasses import dataclass
from typing import Optional, Dict, Any
from sqlalchemy import Column, Integer, String, DateTime, Text, create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

Base = declarative_base()

# SQLite setup for local dev
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///kitchen_eco_ai.db")
engine = create_engine(DATABASE_URL, echo=False)
SessionLocal = sessionmaker(bind=engine)

# Storage keys
API_KEY_STORAGE_KEY = "gemini_api_key"

# Gemini model configuration
MODEL_CANDIDATES = [
    "gemini-3-flash-preview",  # default
    "gemini-1.5-flash",        # stable
    "gemini-2.0-flash-exp",    # latest experimental
]
DEFAULT_MODEL_INDEX = 0


class AppSetting(Base):
    __tablename__ = 'app_settings'
    id = Column(Integer, primary_key=True)
    key = Column(String(64), unique=True, nullable=False)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime, default=datetime.datetime.utcnow, onupdate=datetime.datetime.utcnow)


def init_db(bind=None):
    Base.metadata.create_all(bind=bind or engine)


def clean_model_name(model_name: str) -> str:
    """Handle both 'models/gemini-x' and 'gemini-x' formats."""
    if "/" in model_name:
        return model_name.split("/")[-1]
    return model_name


def get_model_name(index: int) -> str:
    """Get a candidate model by index, falling back to the first one."""
    if 0 <= index < len(MODEL_CANDIDATES):
        return clean_model_name(MODEL_CANDIDATES[index])
    return clean_model_name(MODEL_CANDIDATES[0])


def get_current_model_name() -> str:
    try:
        index = int(os.getenv("GEMINI_MODEL_INDEX", DEFAULT_MODEL_INDEX))
    except ValueError:
        index = DEFAULT_MODEL_INDEX
    return get_model_name(index)


class APIError(Exception):
    """Base exception for API errors."""
    def __init__(self, message: str, status_code: int = 500):
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class ValidationError(APIError):
    """Custom exception for validation errors."""
    def __init__(self, message: str, field: str = None):
        self.field = field
        super().__init__(message, status_code=400)


class InvalidInput(ValidationError):
    """A required settings value was empty."""
    pass


class NotConfigured(APIError):
    """No usable API key / model client at call time."""
    def __init__(self, message: str = "Gemini API key is not configured. Save one in the settings first."):
        super().__init__(message, status_code=409)


class GenerationError(APIError):
    """Exception for Gemini model call failures."""
    def __init__(self, message: str, details: str = None):
        self.details = details
        super().__init__(message, status_code=502)


class StorageError(APIError):
    """Exception for settings persistence failures."""
    def __init__(self, message: str, details: str = None):
        self.details = details
        super().__init__(message, status_code=500)


@dataclass
class RecipeRequest:
    """Validated recipe request from the frontend."""
    ingredients: str
    image_bytes: Optional[bytes] = None
    image_name: Optional[str] = None

    @property
    def has_image(self) -> bool:
        return bool(self.image_bytes)

    @staticmethod
    def create(
        ingredients: Optional[str],
        image_bytes: Optional[bytes] = None,
        image_name: Optional[str] = None
    ) -> "RecipeRequest":
        """
        Build a RecipeRequest, rejecting blank ingredients.

        The ingredient text is kept verbatim; only the blank check trims it.

        Raises:
            ValidationError: If ingredients are missing, not a string or
                whitespace only
        """
        if ingredients is not None and not isinstance(ingredients, str):
            raise ValidationError("ingredients must be a string", "ingredients")
        if ingredients is None or not ingredients.strip():
            raise ValidationError("ingredients must not be empty", "ingredients")

        return RecipeRequest(
            ingredients=ingredients,
            image_bytes=image_bytes or None,
            image_name=image_name or None
        )

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "RecipeRequest":
        """
        Create RecipeRequest from a JSON body.

        Args:
            data: Dictionary with "ingredients" and optional
                "image_base64" / "image_name"

        Returns:
            RecipeRequest with decoded image bytes

        Raises:
            ValidationError: If ingredients are blank or the image is not valid base64
        """
        image_bytes = None
        encoded = data.get("image_base64")
        if encoded:
            if not isinstance(encoded, str):
                raise ValidationError("image_base64 must be a string", "image_base64")
            # Accept data URLs as produced by browsers
            if encoded.startswith("data:") and "," in encoded:
                encoded = encoded.split(",", 1)[1]
            try:
                image_bytes = base64.b64decode(encoded, validate=True)
            except (binascii.Error, ValueError):
                raise ValidationError("image_base64 is not valid base64", "image_base64")

        return RecipeRequest.create(
            data.get("ingredients"),
            image_bytes=image_bytes,
            image_name=data.get("image_name")
        )


@dataclass
class RecipeResult:
    """Markdown recipe text returned by the model."""
    markdown: str
    model_name: str
    used_image: bool = False
    is_empty: bool = False

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON response."""
        return {
            "recipe": self.markdown,
            "model": self.model_name,
            "used_image": self.used_image,
            "empty_response": self.is_empty
        }
