"""
Settings for the journal translator.

- Defaults (prompt, model, polling)
- Load/save of the JSON settings file
- OPENAI_API_KEY environment fallback
"""

import json
import os
from dataclasses import dataclass, asdict, fields
from typing import Dict, Any

# ==============================================================================
# CONSTANTS
# ==============================================================================

MODULE_ID = "foundry-translation"

TRANSLATION_MODES = {
    "new": "Create New Journal",
    "prepend": "Prepend to Original Journal",
    "append": "Append to Original Journal",
    "replace": "Replace Original Journal",
}

DEFAULT_CUSTOM_PROMPT = "Translate the following text to English, preserving all original HTML formatting."
DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful assistant that translates text found inside journal entries for a "
    "tabletop roleplaying game. You should preserve the original HTML formatting (headings, "
    "paragraphs, lists, bold, italics, classes etc.) in your translation as well as any tags "
    "starting with @ such as @Check."
)
DEFAULT_MODEL = "gpt-4o"

# Polling limits (seconds / attempts)
POLLING_DELAY_RANGE = (10, 300)
MAX_POLLING_ATTEMPTS_RANGE = (10, 500)


@dataclass
class Settings:
    api_key: str = ""
    custom_prompt: str = DEFAULT_CUSTOM_PROMPT
    translation_mode: str = "new"
    model_version: str = DEFAULT_MODEL
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    polling_delay: int = 30
    max_polling_attempts: int = 120

    def has_api_key(self) -> bool:
        return bool(self.api_key and self.api_key.strip())

    def validate(self) -> None:
        """Raise ValueError if a setting is outside its allowed values."""
        if self.translation_mode not in TRANSLATION_MODES:
            raise ValueError(
                f"Translation mode '{self.translation_mode}' not supported. "
                f"Choose one of: {', '.join(TRANSLATION_MODES)}"
            )
        low, high = POLLING_DELAY_RANGE
        if not low <= self.polling_delay <= high:
            raise ValueError(f"Polling delay must be between {low} and {high} seconds.")
        low, high = MAX_POLLING_ATTEMPTS_RANGE
        if not low <= self.max_polling_attempts <= high:
            raise ValueError(f"Maximum polling attempts must be between {low} and {high}.")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def load_settings(settings_file: str) -> Settings:
    """
    Load settings from a JSON file.

    Unknown keys are ignored. An empty API key is filled from the
    OPENAI_API_KEY environment variable.
    """
    data: Dict[str, Any] = {}
    try:
        with open(settings_file, "r", encoding="utf-8") as f:
            data = json.load(f)
        print(f"✓ Loaded settings from {settings_file}")
    except FileNotFoundError:
        print(f"  Settings file not found: {settings_file}. Using defaults.")
    except json.JSONDecodeError as e:
        print(f"  ⚠ Warning: Could not parse settings file {settings_file}: {e}. Using defaults.")

    known = {f.name for f in fields(Settings)}
    settings = Settings(**{k: v for k, v in data.items() if k in known})

    if not settings.has_api_key():
        settings.api_key = os.environ.get("OPENAI_API_KEY", "")
    return settings


def save_settings(settings_file: str, settings: Settings) -> None:
    """Write settings to a JSON file."""
    with open(settings_file, "w", encoding="utf-8") as f:
        json.dump(settings.to_dict(), f, indent=2, ensure_ascii=False)
    print(f"✓ Saved settings to {settings_file}")
