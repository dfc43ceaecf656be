import os
import logging
from typing import Dict, List, Any, Optional
from dataclasses import dataclass, field

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

_TRUE_VALUES = ('true', '1', 'yes')


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning(f"{name} invalide ({value!r}), utilisation de la valeur par défaut {default}")
        return default


def _redact(secret: Optional[str], keep: int = 4) -> str:
    if not secret:
        return "MISSING"
    return f"set ({secret[:keep]}…)"


@dataclass
class LedgerConfig:
    """Configuration du ledger de licences Copyright.sh"""
    api_url: str = "https://ledger.copyright.sh"
    api_key: Optional[str] = None
    enable_tracking: bool = True
    enable_cache: bool = False
    cache_ttl_seconds: int = 300
    cache_max_entries: int = 1000
    license_check_timeout_ms: int = 5000
    license_acquire_timeout_ms: int = 8000
    usage_log_timeout_ms: int = 3000
    verify_tls: bool = True


@dataclass
class SearchApiConfig:
    """Configuration de l'API de recherche Exa"""
    base_url: str = "https://api.exa.ai"
    api_key: Optional[str] = None
    timeout_ms: int = 30000


@dataclass
class FetchConfig:
    """Configuration de la récupération de contenu (directe et licenciée)"""
    # The licensed retry shares this budget.
    direct_fetch_timeout_ms: int = 15000
    default_max_chars: int = 200000
    concurrency: int = 1
    user_agent: str = "LicensedSearchMCP/0.1 (+https://copyright.sh)"


@dataclass
class MCPConfig:
    """Configuration principale du serveur MCP"""
    # Serveur (mode HTTP uniquement)
    host: str = "0.0.0.0"
    port: int = 8001
    debug: bool = False
    server_mode: str = "stdio"

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None

    # Composants
    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    search_api: SearchApiConfig = field(default_factory=SearchApiConfig)
    fetch: FetchConfig = field(default_factory=FetchConfig)


class Settings:
    """Gestionnaire de configuration centralisé"""

    def __init__(self, load_env_file: bool = True):
        if load_env_file:
            load_dotenv()
        self.config = MCPConfig()
        self._load_from_environment()

    def _load_from_environment(self):
        """Charge la configuration depuis les variables d'environnement"""

        # Configuration serveur
        if os.getenv('MCP_HOST'):
            self.config.host = os.getenv('MCP_HOST')
        self.config.port = _env_int('MCP_PORT', self.config.port)
        self.config.debug = _env_bool('MCP_DEBUG', _env_bool('DEBUG', self.config.debug))
        if os.getenv('SERVER_MODE'):
            self.config.server_mode = os.getenv('SERVER_MODE').strip().lower()

        # Configuration logging
        if os.getenv('LOG_LEVEL'):
            self.config.log_level = os.getenv('LOG_LEVEL').upper()
        if os.getenv('LOG_FILE'):
            self.config.log_file = os.getenv('LOG_FILE')

        self._load_ledger_from_env()
        self._load_search_api_from_env()
        self._load_fetch_from_env()

    def _load_ledger_from_env(self):
        """Charge la configuration du ledger"""
        ledger = self.config.ledger

        if os.getenv('COPYRIGHTSH_LEDGER_API'):
            ledger.api_url = os.getenv('COPYRIGHTSH_LEDGER_API').rstrip('/')
        ledger.api_key = os.getenv('COPYRIGHTSH_LEDGER_API_KEY') or None

        ledger.enable_tracking = _env_bool('ENABLE_LICENSE_TRACKING', ledger.enable_tracking)
        ledger.enable_cache = _env_bool('ENABLE_LICENSE_CACHE', ledger.enable_cache)
        ledger.verify_tls = _env_bool('LEDGER_VERIFY_TLS', ledger.verify_tls)

        ledger.cache_ttl_seconds = _env_int('LICENSE_CACHE_TTL_SECONDS', ledger.cache_ttl_seconds)
        ledger.cache_max_entries = _env_int('LICENSE_CACHE_MAX_ENTRIES', ledger.cache_max_entries)
        ledger.license_check_timeout_ms = _env_int('LICENSE_CHECK_TIMEOUT_MS', ledger.license_check_timeout_ms)
        ledger.license_acquire_timeout_ms = _env_int('LICENSE_ACQUIRE_TIMEOUT_MS', ledger.license_acquire_timeout_ms)
        ledger.usage_log_timeout_ms = _env_int('USAGE_LOG_TIMEOUT_MS', ledger.usage_log_timeout_ms)

    def _load_search_api_from_env(self):
        """Charge la configuration de l'API de recherche"""
        search_api = self.config.search_api

        if os.getenv('EXA_API_URL'):
            search_api.base_url = os.getenv('EXA_API_URL').rstrip('/')
        search_api.api_key = os.getenv('EXA_API_KEY') or None
        search_api.timeout_ms = _env_int('SEARCH_TIMEOUT_MS', search_api.timeout_ms)

    def _load_fetch_from_env(self):
        """Charge la configuration de récupération de contenu"""
        fetch = self.config.fetch

        fetch.direct_fetch_timeout_ms = _env_int('DIRECT_FETCH_TIMEOUT_MS', fetch.direct_fetch_timeout_ms)
        fetch.default_max_chars = _env_int('FETCH_MAX_CHARS', fetch.default_max_chars)
        fetch.concurrency = _env_int('FETCH_CONCURRENCY', fetch.concurrency)
        if os.getenv('FETCH_USER_AGENT'):
            fetch.user_agent = os.getenv('FETCH_USER_AGENT')

    def setup_logging(self):
        """Configure le logging basé sur les paramètres"""
        log_level = getattr(logging, self.config.log_level, logging.INFO)

        log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

        # stdout is reserved for the MCP stdio transport
        logging.basicConfig(
            level=log_level,
            format=log_format,
            datefmt="%Y-%m-%d %H:%M:%S"
        )

        if self.config.log_file:
            file_handler = logging.FileHandler(self.config.log_file)
            file_handler.setLevel(log_level)
            file_handler.setFormatter(logging.Formatter(log_format))

            for logger_name in ['__main__', 'licensed_search']:
                logging.getLogger(logger_name).addHandler(file_handler)

        external_loggers = {
            'httpx': logging.WARNING,
            'httpcore': logging.WARNING,
            'mcp': logging.WARNING,
            'uvicorn.access': logging.WARNING,
        }

        for logger_name, level in external_loggers.items():
            logging.getLogger(logger_name).setLevel(level)

    def validate_config(self) -> List[str]:
        """Valide la configuration et retourne la liste des erreurs bloquantes"""
        errors = []

        if not (1 <= self.config.port <= 65535):
            errors.append(f"Port invalide: {self.config.port}")

        if self.config.server_mode not in ('stdio', 'http'):
            errors.append(f"SERVER_MODE invalide: {self.config.server_mode}")

        if not self.config.search_api.api_key:
            errors.append("EXA_API_KEY manquant")

        timeouts = {
            'LICENSE_CHECK_TIMEOUT_MS': self.config.ledger.license_check_timeout_ms,
            'LICENSE_ACQUIRE_TIMEOUT_MS': self.config.ledger.license_acquire_timeout_ms,
            'USAGE_LOG_TIMEOUT_MS': self.config.ledger.usage_log_timeout_ms,
            'DIRECT_FETCH_TIMEOUT_MS': self.config.fetch.direct_fetch_timeout_ms,
            'SEARCH_TIMEOUT_MS': self.config.search_api.timeout_ms,
        }
        for name, value in timeouts.items():
            if value <= 0:
                errors.append(f"{name} doit être > 0 (reçu {value})")

        if self.config.ledger.cache_ttl_seconds <= 0:
            errors.append("LICENSE_CACHE_TTL_SECONDS doit être > 0")

        if self.config.fetch.concurrency < 1:
            errors.append("FETCH_CONCURRENCY doit être >= 1")

        if self.config.fetch.default_max_chars <= 0:
            errors.append("FETCH_MAX_CHARS doit être > 0")

        for error in errors:
            logger.error(f"Configuration invalide: {error}")

        return errors

    def to_dict(self) -> Dict[str, Any]:
        """Convertit la configuration en dictionnaire (pour debug, clés masquées)"""
        ledger = self.config.ledger
        return {
            'server': {
                'mode': self.config.server_mode,
                'host': self.config.host,
                'port': self.config.port,
                'debug': self.config.debug
            },
            'ledger': {
                'api_url': ledger.api_url,
                'api_key': _redact(ledger.api_key),
                'enable_tracking': ledger.enable_tracking,
                'enable_cache': ledger.enable_cache,
                'cache_ttl_seconds': ledger.cache_ttl_seconds,
                'license_check_timeout_ms': ledger.license_check_timeout_ms,
                'license_acquire_timeout_ms': ledger.license_acquire_timeout_ms,
                'usage_log_timeout_ms': ledger.usage_log_timeout_ms,
                'verify_tls': ledger.verify_tls
            },
            'search_api': {
                'base_url': self.config.search_api.base_url,
                'api_key': _redact(self.config.search_api.api_key, keep=6),
                'timeout_ms': self.config.search_api.timeout_ms
            },
            'fetch': {
                'direct_fetch_timeout_ms': self.config.fetch.direct_fetch_timeout_ms,
                'default_max_chars': self.config.fetch.default_max_chars,
                'concurrency': self.config.fetch.concurrency
            }
        }

# Instance globale
settings = Settings()
