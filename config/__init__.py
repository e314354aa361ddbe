"""Mind Map Platform Configuration"""

from .app_config import (
    AppConfig, DatabaseConfig, LLMConfig, SecurityConfig,
    get_config, reload_config, get_prompt_templates
)
from .llm_config import LLMClient, LLMEndpoint, get_llm_client

__all__ = [
    'AppConfig', 'DatabaseConfig', 'LLMConfig', 'SecurityConfig',
    'get_config', 'reload_config', 'get_prompt_templates',
    'LLMClient', 'LLMEndpoint', 'get_llm_client'
]
