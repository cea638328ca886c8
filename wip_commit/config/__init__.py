"""
Configuration management for WIP Commit.

This module handles loading, validation, and management of configuration
settings. Every pipeline component gets its own settings object; the whole
tree is built once per invocation and injected, never read from globals.
"""

import os
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Dict, Any, Tuple, List
from dotenv import dotenv_values

from ..exceptions import ConfigurationError, ValidationError
from ..security import APIKeyManager, InputValidator, mask_api_key

logger = logging.getLogger(__name__)


DEFAULT_NOISE_PATTERNS = (
    '*.md',
    '*.markdown',
    '*.rst',
    '*.txt',
    'docs/*',
    '*/docs/*',
    'README*',
    '*/README*',
    '.private-journal/*',
    '*/.private-journal/*',
    '*.embedding',
    '*.log',
    'logs/*',
    '*/logs/*',
)


@dataclass
class ChunkingConfig:
    """Settings for splitting a diff into file-boundary chunks."""

    max_chunk_bytes: int = 8000
    compression_threshold_bytes: int = 5000

    def validate(self) -> None:
        if self.max_chunk_bytes < 256:
            raise ConfigurationError("max_chunk_bytes must be at least 256")
        if self.compression_threshold_bytes < 0:
            raise ConfigurationError("compression_threshold_bytes must not be negative")


@dataclass
class CompressionConfig:
    """Settings for the chunk summarization stage."""

    enabled: bool = True
    concurrency_cap: int = 5
    call_timeout: float = 15.0
    chunk_fallback_bytes: int = 400
    raw_fallback_max_bytes: int = 10000

    def validate(self) -> None:
        if self.concurrency_cap < 1 or self.concurrency_cap > 32:
            raise ConfigurationError("concurrency_cap must be between 1 and 32")
        if self.call_timeout <= 0:
            raise ConfigurationError("compression call_timeout must be positive")
        if self.raw_fallback_max_bytes < 200:
            raise ConfigurationError("raw_fallback_max_bytes must be at least 200")


@dataclass
class ClassificationConfig:
    """Settings for the task-alignment review."""

    timeout: float = 60.0
    max_turns: int = 5
    max_requirements_chars: int = 2000
    max_messages_chars: int = 2000
    max_raw_diff_chars: int = 10000
    transcript_message_limit: int = 20

    def validate(self) -> None:
        if self.timeout <= 0:
            raise ConfigurationError("classification timeout must be positive")
        if self.max_turns < 1:
            raise ConfigurationError("max_turns must be at least 1")


@dataclass
class CommitConfig:
    """Settings for commit message selection and git mutation."""

    push_enabled: bool = False
    remote: str = "origin"
    generate_messages: bool = True
    message_timeout: float = 30.0

    def validate(self) -> None:
        if not self.remote or not self.remote.strip():
            raise ConfigurationError("remote must not be empty")
        if self.message_timeout <= 0:
            raise ConfigurationError("message_timeout must be positive")


@dataclass
class StatusConfig:
    """Settings for the hook result and the status display artifact."""

    path: str = ".claude/hook-status.json"
    source: str = "stop_review"
    excluded_messages: Tuple[str, ...] = ("no changes",)
    block_on_deviation: bool = False

    def validate(self) -> None:
        if not self.path:
            raise ConfigurationError("status path must not be empty")


@dataclass
class PipelineConfig:
    """Complete settings for one review-and-commit run."""

    chunking: ChunkingConfig = field(default_factory=ChunkingConfig)
    compression: CompressionConfig = field(default_factory=CompressionConfig)
    classification: ClassificationConfig = field(default_factory=ClassificationConfig)
    commit: CommitConfig = field(default_factory=CommitConfig)
    status: StatusConfig = field(default_factory=StatusConfig)
    noise_patterns: Tuple[str, ...] = DEFAULT_NOISE_PATTERNS
    total_budget: float = 120.0

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """
        Validate every component configuration.

        Raises:
            ConfigurationError: If configuration is invalid
        """
        for component in (self.chunking, self.compression, self.classification,
                          self.commit, self.status):
            component.validate()

        if self.total_budget <= 0:
            raise ConfigurationError("total_budget must be positive")


@dataclass
class OracleConfig:
    """Connection settings for the OpenAI-compatible oracle backend."""

    api_key: str
    base_url: str = "https://api.openai.com/v1"
    summary_model: str = "gpt-4o-mini"
    review_model: str = "gpt-4o"
    max_retries: int = 3
    timeout: int = 60

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """
        Validate configuration values.

        Raises:
            ConfigurationError: If configuration is invalid
        """
        try:
            InputValidator.validate_api_key(self.api_key, "openai")
        except ValidationError as e:
            raise ConfigurationError(f"Invalid OPENAI_API_KEY: {e}")

        if not self.base_url.startswith(('http://', 'https://')):
            raise ConfigurationError("OPENAI_BASE_URL must be a valid URL")

        if not self.summary_model or not self.review_model:
            raise ConfigurationError("Oracle model names must not be empty")

        if self.max_retries < 1 or self.max_retries > 10:
            raise ConfigurationError("max_retries must be between 1 and 10")

        if self.timeout < 5 or self.timeout > 300:
            raise ConfigurationError("timeout must be between 5 and 300 seconds")


@dataclass
class WipCommitConfig:
    """Top-level configuration for WIP Commit."""

    oracle: Optional[OracleConfig] = None
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)
    log_path: str = str(Path.home() / ".wip-commit" / "logs")
    log_level: str = "INFO"

    def get_masked_config(self) -> Dict[str, Any]:
        """
        Get configuration with sensitive values masked.

        Returns:
            Dictionary with masked sensitive information
        """
        pipeline = self.pipeline
        masked = {
            'oracle_configured': self.oracle is not None,
            'push_enabled': pipeline.commit.push_enabled,
            'remote': pipeline.commit.remote,
            'concurrency_cap': pipeline.compression.concurrency_cap,
            'compression_threshold_bytes': pipeline.chunking.compression_threshold_bytes,
            'max_chunk_bytes': pipeline.chunking.max_chunk_bytes,
            'total_budget': pipeline.total_budget,
            'block_on_deviation': pipeline.status.block_on_deviation,
            'status_path': pipeline.status.path,
            'log_path': self.log_path,
            'log_level': self.log_level,
        }
        if self.oracle:
            masked.update({
                'api_key': mask_api_key(self.oracle.api_key),
                'base_url': self.oracle.base_url,
                'summary_model': self.oracle.summary_model,
                'review_model': self.oracle.review_model,
                'max_retries': self.oracle.max_retries,
            })
        return masked


class ConfigurationLoader:
    """Handles loading configuration from various sources."""

    ENV_VARS = [
        'OPENAI_API_KEY', 'ANTHROPIC_AUTH_TOKEN', 'OPENAI_BASE_URL', 'ANTHROPIC_BASE_URL',
        'OPENAI_MODEL', 'WIP_SUMMARY_MODEL', 'WIP_REVIEW_MODEL', 'MAX_RETRIES',
        'WIP_PUSH', 'WIP_REMOTE', 'WIP_CONCURRENCY', 'WIP_COMPRESSION_THRESHOLD',
        'WIP_MAX_CHUNK_BYTES', 'WIP_TOTAL_BUDGET', 'WIP_BLOCK_ON_DEVIATION',
        'WIP_GENERATE_MESSAGES', 'WIP_STATUS_PATH', 'LOG_PATH', 'LOG_LEVEL',
    ]

    BOOL_FIELDS = ['WIP_PUSH', 'WIP_BLOCK_ON_DEVIATION', 'WIP_GENERATE_MESSAGES']
    INT_FIELDS = ['MAX_RETRIES', 'WIP_CONCURRENCY', 'WIP_COMPRESSION_THRESHOLD', 'WIP_MAX_CHUNK_BYTES']

    def __init__(self, api_key_manager: Optional[APIKeyManager] = None):
        """Initialize configuration loader."""
        self.api_key_manager = api_key_manager or APIKeyManager()

    def load_config(self, config_path: Optional[str] = None,
                    start_dir: Optional[Path] = None) -> WipCommitConfig:
        """
        Load configuration from all available sources.

        Configuration priority (highest to lowest):
        1. Configuration files (.wipcommit, .env)
        2. Secure storage (keyring)
        3. Environment variables

        A missing API key is not an error: the pipeline then runs without
        oracles and falls back to templated commit messages.

        Args:
            config_path: Optional path to specific config file
            start_dir: Directory to start the upward config file search from

        Returns:
            Loaded and validated configuration

        Raises:
            ConfigurationError: If configuration is invalid
        """
        config: Dict[str, str] = {}
        config_sources = []

        env_config = self._load_from_environment()
        if env_config:
            config.update(env_config)
            config_sources.append("environment variables")

        secure_config = self._load_from_secure_storage()
        if secure_config:
            config.update(secure_config)
            config_sources.append("secure storage")

        config_type, config_file = self._find_config_files(config_path, start_dir)
        if config_file:
            file_config = self._load_from_file(config_type, config_file)
            if file_config:
                config.update(file_config)
                config_sources.append(f"{config_type} file ({config_file})")

        if config_sources:
            logger.debug(f"Configuration loaded from: {' → '.join(config_sources)}")

        return self._create_config_object(config)

    def _load_from_environment(self) -> Dict[str, str]:
        """Load configuration from environment variables."""
        return self._map_aliases({key: os.environ[key] for key in self.ENV_VARS if key in os.environ})

    def _load_from_secure_storage(self) -> Dict[str, str]:
        """Load API key from secure storage."""
        try:
            api_key = self.api_key_manager.get_api_key("openai")
            if api_key:
                return {'OPENAI_API_KEY': api_key}
        except Exception as e:
            logger.debug(f"Could not load from secure storage: {e}")
        return {}

    @staticmethod
    def _map_aliases(config: Dict[str, str]) -> Dict[str, str]:
        """Map ANTHROPIC_* variables onto their OPENAI_* equivalents."""
        mapped = dict(config)
        if 'ANTHROPIC_AUTH_TOKEN' in mapped:
            mapped['OPENAI_API_KEY'] = mapped.pop('ANTHROPIC_AUTH_TOKEN')
        if 'ANTHROPIC_BASE_URL' in mapped:
            mapped['OPENAI_BASE_URL'] = mapped.pop('ANTHROPIC_BASE_URL')
        return mapped

    def _find_config_files(
            self, config_path: Optional[str] = None,
            start_dir: Optional[Path] = None) -> Tuple[Optional[str], Optional[Path]]:
        """
        Find configuration files.

        Args:
            config_path: Optional specific config file path
            start_dir: Directory to start searching from

        Returns:
            Tuple of (config_type, config_file_path)
        """
        if config_path:
            config_file = Path(config_path)
            if config_file.exists():
                return ('custom', config_file)
            raise ConfigurationError(f"Config file not found: {config_path}")

        current = Path(start_dir or Path.cwd()).resolve()
        while True:
            wipcommit_file = current / '.wipcommit'
            env_file = current / '.env'

            if wipcommit_file.exists():
                return ('wipcommit', wipcommit_file)
            if env_file.exists():
                return ('env', env_file)

            if current == current.parent:
                break
            current = current.parent

        return (None, None)

    def _load_from_file(self, config_type: str, config_file: Path) -> Dict[str, str]:
        """
        Load configuration from file.

        Args:
            config_type: Type of config file
            config_file: Path to config file

        Returns:
            Configuration dictionary
        """
        try:
            if config_type == 'env':
                values = dotenv_values(config_file)
                config = {key: value for key, value in values.items()
                          if key in self.ENV_VARS and value}
            else:
                config = self._load_wipcommit_config(config_file)
            return self._map_aliases(config)
        except OSError as e:
            raise ConfigurationError(f"Failed to load configuration from {config_file}: {e}")

    def _load_wipcommit_config(self, config_file: Path) -> Dict[str, str]:
        """Load configuration from .wipcommit file."""
        config = {}
        with open(config_file, 'r', encoding='utf-8') as f:
            for line_num, line in enumerate(f, 1):
                line = line.strip()
                if not line or line.startswith('#'):
                    continue

                if '=' not in line:
                    logger.warning(f"Invalid config line {line_num} in {config_file}: {line}")
                    continue

                key, value = line.split('=', 1)
                config[key.strip()] = value.strip().strip('"').strip("'")

        return config

    def _create_config_object(self, config: Dict[str, str]) -> WipCommitConfig:
        """
        Create WipCommitConfig object from configuration dictionary.

        Args:
            config: Configuration dictionary

        Returns:
            Validated configuration object

        Raises:
            ConfigurationError: If a value is invalid
        """
        ints: Dict[str, int] = {}
        for key in self.INT_FIELDS:
            if key in config:
                try:
                    ints[key] = int(config[key])
                except ValueError:
                    raise ConfigurationError(f"Invalid integer value for {key}: {config[key]}")

        bools = {key: config[key].lower() in ('true', '1', 'yes', 'on')
                 for key in self.BOOL_FIELDS if key in config}

        total_budget = PipelineConfig.total_budget
        if 'WIP_TOTAL_BUDGET' in config:
            try:
                total_budget = float(config['WIP_TOTAL_BUDGET'])
            except ValueError:
                raise ConfigurationError(
                    f"Invalid number for WIP_TOTAL_BUDGET: {config['WIP_TOTAL_BUDGET']}")

        pipeline = PipelineConfig(
            chunking=ChunkingConfig(
                max_chunk_bytes=ints.get('WIP_MAX_CHUNK_BYTES', ChunkingConfig.max_chunk_bytes),
                compression_threshold_bytes=ints.get(
                    'WIP_COMPRESSION_THRESHOLD', ChunkingConfig.compression_threshold_bytes),
            ),
            compression=CompressionConfig(
                concurrency_cap=ints.get('WIP_CONCURRENCY', CompressionConfig.concurrency_cap),
            ),
            commit=CommitConfig(
                push_enabled=bools.get('WIP_PUSH', False),
                remote=config.get('WIP_REMOTE', CommitConfig.remote),
                generate_messages=bools.get('WIP_GENERATE_MESSAGES', True),
            ),
            status=StatusConfig(
                path=config.get('WIP_STATUS_PATH', StatusConfig.path),
                block_on_deviation=bools.get('WIP_BLOCK_ON_DEVIATION', False),
            ),
            total_budget=total_budget,
        )

        oracle = None
        if config.get('OPENAI_API_KEY'):
            model = config.get('OPENAI_MODEL')
            oracle = OracleConfig(
                api_key=config['OPENAI_API_KEY'],
                base_url=config.get('OPENAI_BASE_URL', OracleConfig.base_url),
                summary_model=config.get('WIP_SUMMARY_MODEL') or model or OracleConfig.summary_model,
                review_model=config.get('WIP_REVIEW_MODEL') or model or OracleConfig.review_model,
                max_retries=ints.get('MAX_RETRIES', OracleConfig.max_retries),
            )
        else:
            logger.info("No oracle API key configured; reviews will fall back to templates")

        result = WipCommitConfig(oracle=oracle, pipeline=pipeline)
        if config.get('LOG_PATH'):
            result.log_path = config['LOG_PATH']
        if config.get('LOG_LEVEL'):
            result.log_level = config['LOG_LEVEL'].upper()
        return result

    def get_active_config_sources(self, start_dir: Optional[Path] = None) -> List[str]:
        """
        Get list of active configuration sources.

        Returns:
            List of configuration source names
        """
        sources = []

        if any(os.environ.get(var) for var in self.ENV_VARS):
            sources.append('environment')

        if self._load_from_secure_storage():
            sources.append('secure_storage')

        config_type, config_file = self._find_config_files(start_dir=start_dir)
        if config_file:
            sources.append(f'{config_type}_file')

        return sources if sources else ['none']
