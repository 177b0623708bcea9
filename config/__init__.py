import os
import json
from pathlib import Path
from dotenv import load_dotenv
from .logging_config import setup_app_logging
import logging

# Load environment variables from .env file
load_dotenv()

# Get the config directory path (where this file is located)
CONFIG_DIR = Path(__file__).parent

PROJECT_ROOT = CONFIG_DIR.parent

# Load configuration from config.json
config_path = CONFIG_DIR / 'config.json'
with open(config_path, 'r', encoding='utf-8') as f:
    CONFIG = json.load(f)

# CONFIG is the runtime representation of config.json, enriched with derived paths below.
CONFIG['project_root'] = str(PROJECT_ROOT)

if 'paths' not in CONFIG:
    CONFIG['paths'] = {}


def _resolve_path(relative: str) -> str:
    path = Path(relative)
    return str(path if path.is_absolute() else PROJECT_ROOT / path)


CONFIG['paths']['upload_dir_full_path'] = _resolve_path(
    CONFIG.get('media', {}).get('upload_dir', 'user_data/uploads')
)
CONFIG['paths']['db_full_path'] = _resolve_path(
    CONFIG.get('storage', {}).get('db_path', 'user_data/messages.sqlite')
)

# --- Sorting Prompt Loading ---
sorting_prompt_path = CONFIG_DIR / 'sorting_system_prompt.txt'
try:
    with open(sorting_prompt_path, 'r', encoding='utf-8') as f:
        CONFIG['sorting_system_prompt'] = f.read().strip()
except FileNotFoundError:
    raise FileNotFoundError(
        f"Sorting system prompt file not found: {sorting_prompt_path}\n"
        f"Please ensure sorting_system_prompt.txt exists in the config directory."
    )

# Environment variables (secrets). They are validated when a client is built, not here.
ENV = {
    'LLM_API_KEY': os.getenv('LLM_API_KEY') or os.getenv('OPENAI_API_KEY'),
    'BRAVE_API_KEY': os.getenv('BRAVE_API_KEY'),
}


def validate_config():
    """Validate that the configuration sections the engine depends on are present.

    Secrets are not checked here: the provider layer validates API keys when a client
    is actually constructed, so the package stays importable in tests and tooling.
    """
    required_sections = ['llm', 'models', 'chat', 'sorting', 'retrieval']
    for section in required_sections:
        if section not in CONFIG:
            raise ValueError(f"Missing configuration section: {section}")

    defaults = CONFIG['models'].get('defaults', {})
    for capability in ('CHAT', 'SORT'):
        if capability not in defaults:
            raise ValueError(f"Missing default model for capability: {capability}")


# Validate configuration on module import
validate_config()


# --- Helper function to get config value from CONFIG or environment variable ---
def get_config_value(json_keys: list, env_var_name: str, default_value: any = None):
    """
    Retrieves a configuration value.
    Priority:
    1. Environment variable (if env_var_name is provided and variable is set).
    2. Value from CONFIG dictionary (using json_keys).
    3. default_value.
    """
    if env_var_name:
        env_value = os.getenv(env_var_name)
        if env_value is not None:
            # bool must be checked before int: bool is a subclass of int
            if isinstance(default_value, bool):
                if env_value.lower() == 'true': return True
                if env_value.lower() == 'false': return False
            elif isinstance(default_value, int):
                try:
                    return int(env_value)
                except ValueError:
                    pass
            elif isinstance(default_value, float):
                try:
                    return float(env_value)
                except ValueError:
                    pass
            return env_value

    current_level = CONFIG
    try:
        for key in json_keys:
            current_level = current_level[key]
        if current_level is None:
            return default_value
        if isinstance(current_level, (str, int, bool, float, list, dict)):
            return current_level
    except (KeyError, TypeError):
        pass

    return default_value


# --- Logging Configuration ---
# Environment variables take precedence over config.json.
CONFIG['logging'] = {
    'level': get_config_value(['logging', 'level'], 'LOG_LEVEL', 'INFO'),
    'file_path': get_config_value(['logging', 'file_path'], 'LOG_FILE_PATH', 'logs/message_router.log'),
    'max_bytes': get_config_value(['logging', 'max_bytes'], 'LOG_MAX_BYTES', 5*1024*1024), # 5MB
    'backup_count': get_config_value(['logging', 'backup_count'], 'LOG_BACKUP_COUNT', 3),
    'date_format': get_config_value(
        ['logging', 'date_format'],
        'LOG_DATE_FORMAT',
        '%Y-%m-%d %H:%M:%S'
    )
}

# --- Setup Application Logging ---
setup_app_logging(config=CONFIG.get('logging'))

config_init_logger = logging.getLogger(__name__)
config_init_logger.info("[config_init] Logging initialized from config/__init__.py using setup_app_logging.")
