"""
Service layer for Gemini calls and API key lifecycle.
Handles the model client, the credential manager and recipe generation.
"""

import logging
from typing import List, Optional
from google import genai
from google.genai import types
from app_models import (
    RecipeRequest, RecipeResult, InvalidInput, NotConfigured,
    GenerationError, StorageError, clean_model_name, get_current_model_name
)
from app_storage import CredentialStore

logger = logging.getLogger(__name__)

HARM_CATEGORIES = [
    types.HarmCategory.HARM_CATEGORY_HARASSMENT,
    types.HarmCategory.HARM_CATEGORY_HATE_SPEECH,
    types.HarmCategory.HARM_CATEGORY_SEXUALLY_EXPLICIT,
    types.HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT,
]

RECIPE_PROMPT_TEMPLATE = """You are a professional budget-cooking expert. Using the ingredients below, suggest exactly 3 recipes that can each be made in 15 minutes or less.
Ingredients: {ingredients}
Format your answer in Markdown so it is easy to read.
"""

EMPTY_RESPONSE_TEXT = "The model returned an empty response."


def build_safety_settings() -> List[types.SafetySetting]:
    """No blocking on any of the four harm categories."""
    return [
        types.SafetySetting(category=category, threshold=types.HarmBlockThreshold.BLOCK_NONE)
        for category in HARM_CATEGORIES
    ]


def build_recipe_prompt(ingredients: str) -> str:
    return RECIPE_PROMPT_TEMPLATE.format(ingredients=ingredients)


def build_recipe_contents(prompt: str, image_bytes: Optional[bytes] = None) -> List[types.Content]:
    """
    Build the request payload for a recipe prompt.

    Args:
        prompt: Recipe instruction text
        image_bytes: Optional photo of the ingredients

    Returns:
        A single user message; multi-part with a JPEG image part when
        image bytes are given, text-only otherwise
    """
    parts = [types.Part.from_text(text=prompt)]
    if image_bytes:
        parts.append(types.Part.from_bytes(data=image_bytes, mime_type="image/jpeg"))
    return [types.Content(role="user", parts=parts)]


class GeminiModelClient:
    """Gemini client bound to one API key, model name and safety config."""

    def __init__(self, api_key: str, model_name: str):
        self.client = genai.Client(api_key=api_key)
        self.model = model_name
        self.config = types.GenerateContentConfig(safety_settings=build_safety_settings())

    def generate_content(self, contents) -> Optional[str]:
        response = self.client.models.generate_content(
            model=self.model,
            contents=contents,
            config=self.config
        )
        return response.text


class CredentialManager:
    """
    Owns the Gemini API key and the model client built from it.

    One instance is created at app startup and shared by the routes. The
    client is rebuilt whenever the key or model name changes and is never
    handed out; calls go through generate_content().
    """

    MASK_PREFIX_LENGTH = 10
    MASK_MARKER = "..."
    PING_PROMPT = "Hi"

    def __init__(
        self,
        store: CredentialStore,
        client_factory=GeminiModelClient,
        model_name: Optional[str] = None
    ):
        self.store = store
        self.client_factory = client_factory
        self.model_name = clean_model_name(model_name or get_current_model_name())
        self._api_key: Optional[str] = None
        self._client = None
        # Key the current client was built from
        self._client_key: Optional[str] = None
        # Key that clear_credential() could not delete from the store
        self._revoked_key: Optional[str] = None
        self._initialized = False

    def initialize(self) -> None:
        """
        Load the stored key and build a client for it.

        Always reads the store afresh so that keys written by another
        process are picked up. An unchanged key with a live client is a
        no-op. Storage errors degrade to "no key", and so does a key that
        was cleared but could not be deleted from the store.
        """
        try:
            api_key = self.store.read()
        except StorageError as e:
            logger.warning(f"Could not read stored API key, treating as absent: {e.details or e.message}")
            api_key = None

        if api_key is not None and api_key == self._revoked_key:
            logger.warning("Stored API key was cleared but not deleted, ignoring it")
            api_key = None

        if api_key and api_key.strip():
            if api_key == self._api_key and self._client is not None and self._client_key == api_key:
                logger.debug("CredentialManager already initialized with current key, skipping")
            else:
                self._api_key = api_key
                logger.info(f"API key loaded from storage: {self.masked_credential}")
                self._build_client()
        else:
            logger.info("No API key found in storage")
            self._api_key = None
            self._drop_client()

        self._initialized = True

    def save_credential(self, value: str) -> None:
        """
        Persist a new API key and rebuild the client.

        Raises:
            InvalidInput: If value is blank
            StorageError: If the key could not be written
        """
        if value is None or not value.strip():
            raise InvalidInput("API key must not be empty", "apiKey")

        api_key = value.strip()
        self.store.save(api_key)

        self._revoked_key = None
        self._api_key = api_key
        self._build_client()
        self._initialized = True
        logger.info(f"API key saved: {self.masked_credential}")

    def clear_credential(self) -> None:
        """
        Forget the API key. Never raises.

        If the store refuses the delete, the stale key is remembered so a
        later initialize() does not load it back.
        """
        try:
            self.store.delete()
        except StorageError as e:
            logger.error(f"Error clearing stored API key: {e.details or e.message}")
            stale_key = self._api_key
            if stale_key is None:
                try:
                    stale_key = self.store.read()
                except StorageError:
                    stale_key = None
            self._revoked_key = stale_key

        self._api_key = None
        self._drop_client()
        self._initialized = False
        logger.info("API key cleared")

    def use_model(self, model_name: str) -> None:
        """Switch the model and rebuild the client if a key is held."""
        cleaned = clean_model_name(model_name)
        if cleaned == self.model_name:
            return
        self.model_name = cleaned
        logger.info(f"Model switched to {cleaned}")
        if self._api_key:
            self._build_client()

    def test_connection(self) -> bool:
        """Send a short ping through a freshly built client. Never raises."""
        self._build_client()
        if self._client is None:
            return False

        try:
            text = self._client.generate_content(
                build_recipe_contents(self.PING_PROMPT)
            )
            return bool(text and text.strip())
        except Exception as e:
            logger.warning(f"Connection test failed: {str(e)}")
            return False

    def generate_content(self, contents) -> Optional[str]:
        if not self.is_ready:
            raise NotConfigured()
        return self._client.generate_content(contents)

    @property
    def is_ready(self) -> bool:
        has_api_key = bool(self._api_key)
        has_client = self._client is not None and self._client_key == self._api_key
        return has_api_key and has_client and self._initialized

    @property
    def masked_credential(self) -> Optional[str]:
        """First characters of the key plus a marker; never the full key."""
        if not self._api_key:
            return None
        if len(self._api_key) > self.MASK_PREFIX_LENGTH:
            visible = self.MASK_PREFIX_LENGTH
        else:
            visible = len(self._api_key) // 2
        return f"{self._api_key[:visible]}{self.MASK_MARKER}"

    def _build_client(self) -> None:
        if not self._api_key:
            self._drop_client()
            return

        logger.info(f"Initializing model with {self.model_name}")
        try:
            self._client = self.client_factory(self._api_key, self.model_name)
            self._client_key = self._api_key
        except Exception as e:
            logger.error(f"Model client initialization failed: {str(e)}")
            self._drop_client()

    def _drop_client(self) -> None:
        self._client = None
        self._client_key = None


class RecipeService:
    """Turn one ingredient list into one model call."""

    def __init__(self, credential_manager: CredentialManager):
        self.credentials = credential_manager

    def generate_recipe(
        self,
        ingredients: str,
        image_bytes: Optional[bytes] = None,
        image_name: Optional[str] = None
    ) -> RecipeResult:
        """
        Generate three quick budget recipes for the given ingredients.

        Args:
            ingredients: Free-text ingredient list, embedded verbatim
            image_bytes: Optional JPEG photo of the ingredients
            image_name: Optional file name of the photo (logging only)

        Returns:
            RecipeResult with markdown text, or the fallback text if the
            model answered with nothing

        Raises:
            ValidationError: If ingredients are blank
            NotConfigured: If no API key / client is available
            GenerationError: If the Gemini call fails
        """
        recipe_request = RecipeRequest.create(ingredients, image_bytes, image_name)
        return self.generate(recipe_request)

    def generate(self, recipe_request: RecipeRequest) -> RecipeResult:
        if not self.credentials.is_ready:
            # Cold start: nobody has initialized the manager yet
            logger.info("Credential manager not ready, initializing before generation")
            self.credentials.initialize()

        if not self.credentials.is_ready:
            raise NotConfigured()

        prompt = build_recipe_prompt(recipe_request.ingredients)
        contents = build_recipe_contents(prompt, recipe_request.image_bytes)

        if recipe_request.has_image:
            logger.info(f"Generating recipe with image {recipe_request.image_name or '(unnamed)'}")
        else:
            logger.info("Generating recipe from text only")

        try:
            text = self.credentials.generate_content(contents)
        except Exception as e:
            logger.error(f"Recipe generation error: {str(e)}")
            raise GenerationError(f"Recipe generation failed: {str(e)}", details=str(e))

        if not text or not text.strip():
            logger.warning("Gemini returned an empty response")
            return RecipeResult(
                markdown=EMPTY_RESPONSE_TEXT,
                model_name=self.credentials.model_name,
                used_image=recipe_request.has_image,
                is_empty=True
            )

        logger.info(f"Recipe generated ({len(text)} chars)")
        return RecipeResult(
            markdown=text,
            model_name=self.credentials.model_name,
            used_image=recipe_request.has_image
        )
