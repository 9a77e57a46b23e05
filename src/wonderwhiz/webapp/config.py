"""Configuration constants for the WonderWhiz web service."""
from __future__ import annotations

import os
from datetime import timedelta

from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.environ.get("WONDERWHIZ_DATABASE_URL", "sqlite:///wonderwhiz.db")
GROQ_API_KEY = os.environ.get("GROQ_API_KEY", "")
GENERATOR_URL = os.environ.get("WONDERWHIZ_GENERATOR_URL", "https://api.groq.com/openai/v1/chat/completions")
GENERATOR_MODEL = os.environ.get("WONDERWHIZ_GENERATOR_MODEL", "llama-3.1-70b-versatile")
IMAGE_GENERATOR_URL = os.environ.get("WONDERWHIZ_IMAGE_URL", "")
GENERATION_TIMEOUT_SECONDS = float(os.environ.get("WONDERWHIZ_GENERATION_TIMEOUT", "20"))
CELEBRATION_COOLDOWN = timedelta(seconds=float(os.environ.get("WONDERWHIZ_CELEBRATION_COOLDOWN", "5")))
LOG_PATH = os.environ.get("WONDERWHIZ_LOG_PATH", "")
FEATURE_FLAGS = os.environ.get("WONDERWHIZ_FEATURE_FLAGS", "")

__all__ = [
    "CELEBRATION_COOLDOWN",
    "DATABASE_URL",
    "FEATURE_FLAGS",
    "GENERATION_TIMEOUT_SECONDS",
    "GENERATOR_MODEL",
    "GENERATOR_URL",
    "GROQ_API_KEY",
    "IMAGE_GENERATOR_URL",
    "LOG_PATH",
]
