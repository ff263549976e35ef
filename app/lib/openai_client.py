# app/lib/openai_client.py
from openai import OpenAI
from app.config import config

_client = None

def get_client() -> OpenAI:
    global _client
    if _client is None:
        _client = OpenAI(api_key=config.openai_api_key or None)
    return _client
