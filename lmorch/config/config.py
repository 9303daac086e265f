"""
Read and write configuration file.

This file also contains the definitions of the model providers
supported in the package, and the defaults used by the agent loop,
the memory subsystem and the MCP server registry.
"""

from pathlib import Path
from typing import Any, Literal, Self

from pydantic import (
    Field,
    field_validator,
    model_validator,
    BaseModel,
)
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    TomlConfigSettingsSource,
)

# Define supported model providers. These providers must also be
# handled in the model factory of the language framework
ModelSource = Literal[
    'OpenAI',
    'Anthropic',
    'Mistral',
    'Gemini',
    'Grok',
    'DeepSeek',
    'Perplexity',
    'Ollama',
    'Debug',
]

# Values admitted in provider-specific parameters
ParameterValue = str | int | float | bool | None
ParameterValueWithList = ParameterValue | list[ParameterValue]

# Constants for better maintainability
DEFAULT_CONFIG_FILE = "config.toml"
ENV_PREFIX = "LMORCH_"


class LanguageModelSettings(BaseModel):
    """
    Specification of language sources and models.

    Attributes:
        model: model specification
        temperature: float between 0.0 and 2.0
        max_tokens: max number of generated tokens
        max_retries: max number retries attempts
        timeout: timeout when waiting for response
        provider_params: provider-specific parameters
    """

    # Required
    model: str = Field(
        description="Model specification in the form "
        + "'model_provider/model' (e.g., 'OpenAI/gpt-4o')"
    )

    # Common configurable parameters
    temperature: float = Field(
        default=0.1,
        ge=0.0,
        le=2.0,
        description="Controls randomness in model responses (0.0-2.0)",
    )
    max_tokens: int | None = Field(
        default=None,
        ge=1,
        description="Maximum number of tokens to generate",
    )
    max_retries: int = Field(
        default=2,
        ge=0,
        description="Maximum number of retry attempts",
    )
    timeout: float | None = Field(
        default=None, gt=0, description="Request timeout in seconds"
    )

    # Provider-specific parameters
    provider_params: dict[str, ParameterValue] = Field(
        default_factory=dict,
        description="Provider-specific parameters (e.g., frequency_penalty for OpenAI)",
    )

    model_config = SettingsConfigDict(frozen=True, extra='forbid')

    def __hash__(self) -> int:
        """Make the object hashable by converting provider_params to a sorted tuple."""
        provider_params_tuple = tuple(
            sorted(self.provider_params.items())
        )
        return hash(
            (
                self.model,
                self.temperature,
                self.max_tokens,
                self.max_retries,
                self.timeout,
                provider_params_tuple,
            )
        )

    def get_model_source(self) -> ModelSource:
        return self.model.split('/')[0]  # type: ignore

    def get_model_name(self) -> str:
        return self.model.split('/', 1)[1]

    # A method to create a new instance with some fields modified
    def from_instance(
        self,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        max_retries: int | None = None,
        timeout: float | None = None,
        provider_params: dict[str, ParameterValue] | None = None,
    ) -> 'LanguageModelSettings':
        return LanguageModelSettings(
            model=model if model is not None else self.model,
            temperature=(
                temperature
                if temperature is not None
                else self.temperature
            ),
            max_tokens=(
                max_tokens
                if max_tokens is not None
                else self.max_tokens
            ),
            max_retries=(
                max_retries
                if max_retries is not None
                else self.max_retries
            ),
            timeout=timeout if timeout is not None else self.timeout,
            provider_params=(
                provider_params
                if provider_params is not None
                else self.provider_params
            ),
        )

    @field_validator('model', mode='after')
    @classmethod
    def validate_model_spec(cls, spec: str) -> str:
        cleaned_spec = spec.strip()
        if not (bool(cleaned_spec)):
            raise ValueError("Model specification is empty")
        if '\n' in cleaned_spec or '\r' in cleaned_spec:
            raise ValueError(
                "Model specification cannot contain newlines or carriage"
                + " returns."
            )
        # Ollama model names may contain a further '/' (namespaces)
        tokens = cleaned_spec.split('/', 1)
        if len(tokens) != 2 or not tokens[1].strip():
            raise ValueError(
                "Model specification must contain the model provider and "
                + "the model name separated by a '/'.",
            )
        model_spec = tokens[0].strip()
        if model_spec not in ModelSource.__args__:
            raise ValueError(
                f"Invalid model provider: '{model_spec}'. "
                + f"Must be one of {ModelSource.__args__}."
            )
        return model_spec + '/' + tokens[1].strip()

    @model_validator(mode='after')
    def validate_provider_params(self) -> Self:
        """Validate provider-specific parameters based on the source."""
        params = self.provider_params

        # Define allowed parameters per provider (keeping it simple).
        # Every provider accepts an api_key override.
        openai_compatible = {
            'api_key',
            'base_url',
            'frequency_penalty',
            'presence_penalty',
            'top_p',
            'seed',
        }
        ALLOWED_PARAMS = {
            'OpenAI': openai_compatible | {'logprobs', 'top_logprobs'},
            'Grok': openai_compatible,
            'DeepSeek': openai_compatible,
            'Perplexity': openai_compatible,
            'Anthropic': {'api_key', 'top_p', 'top_k'},
            'Mistral': {'api_key', 'top_p', 'random_seed', 'safe_mode'},
            'Gemini': {'api_key', 'top_p', 'top_k'},
            'Ollama': {'base_url', 'top_p', 'top_k', 'num_ctx', 'seed'},
        }

        source: ModelSource = self.get_model_source()
        if source and source in ALLOWED_PARAMS:
            allowed = ALLOWED_PARAMS[source]
            invalid_params = set(params.keys()) - allowed

            if invalid_params:
                raise ValueError(
                    f"Invalid provider_params for {source}: {invalid_params}. Allowed: {allowed}"
                )

        return self


class AgentSettings(BaseModel):
    """
    Defaults of the tool-calling agent loop.

    Attributes:
        max_iterations: maximum number of round-trips to the model
            before the loop is aborted
    """

    max_iterations: int = Field(
        default=10,
        ge=1,
        description="Maximum number of model round-trips per run",
    )

    model_config = SettingsConfigDict(frozen=True, extra='forbid')


class MemorySettings(BaseModel):
    """
    Defaults of the memory subsystem.

    Attributes:
        max_messages: window size of windowed and session memory
        summary_max_messages: size limit of summary memory
        summary_threshold: number of recent messages that summary
            memory keeps verbatim
        session_key: default persistence key of session memory
    """

    max_messages: int = Field(default=100, ge=1)
    summary_max_messages: int = Field(default=20, ge=2)
    summary_threshold: int = Field(default=10, ge=1)
    session_key: str = Field(default="default", min_length=1)

    model_config = SettingsConfigDict(frozen=True, extra='forbid')

    @model_validator(mode='after')
    def validate_threshold(self) -> Self:
        if self.summary_threshold >= self.summary_max_messages:
            raise ValueError(
                "summary_threshold must be smaller than "
                + "summary_max_messages"
            )
        return self


class MCPSettings(BaseModel):
    """
    Defaults of the MCP servers and clients.

    Attributes:
        default_server: name of the server created when none is given
        timeout: timeout in seconds of remote client calls
        protocol_version: protocol version announced at initialization
        server_version: version reported by newly created servers
    """

    default_server: str = Field(default="default", min_length=1)
    timeout: float = Field(default=30.0, gt=0)
    protocol_version: str = "2024-11-05"
    server_version: str = "1.0.0"

    model_config = SettingsConfigDict(frozen=True, extra='forbid')


class Settings(BaseSettings):
    """
    A pydantic settings object containing the fields with the
    configuration information.

    Settings are saved and read from the configuration file in TOML
    format.

    Attributes:
        model: language model used by default by agents and model
            runnables
        summary_model: language model used by summary memory to
            condense the conversation
        agent: agent loop defaults
        memory: memory defaults
        mcp: MCP defaults

    Note:
        At present, the Settings object only reads from config.toml in
        the project folder, and from environment variables with the
        LMORCH_ prefix.
    """

    model: LanguageModelSettings = Field(
        default_factory=lambda: LanguageModelSettings(
            model="OpenAI/gpt-4.1-mini",
        ),
        description="Default language model",
    )
    summary_model: LanguageModelSettings = Field(
        default_factory=lambda: LanguageModelSettings(
            model="OpenAI/gpt-4.1-nano",
        ),
        description="Language model used to summarize conversations",
    )
    agent: AgentSettings = Field(default_factory=AgentSettings)
    memory: MemorySettings = Field(default_factory=MemorySettings)
    mcp: MCPSettings = Field(default_factory=MCPSettings)

    model_config = SettingsConfigDict(
        toml_file=DEFAULT_CONFIG_FILE,
        env_prefix=ENV_PREFIX,
        env_nested_delimiter="__",
        frozen=True,
        validate_assignment=True,
        extra='allow',  # Do not prevent unexpected fields
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Customize the order of settings sources."""
        return (
            init_settings,
            TomlConfigSettingsSource(settings_cls),
            env_settings,
        )

    def __str__(self) -> str:
        return serialize_settings(self)


def serialize_settings(sets: BaseSettings) -> str:
    """Transform the settings into a string in TOML format.

    Args:
        sets: The settings object to serialize

    Returns:
        TOML formatted string representation of settings
    """
    import tomlkit

    doc = tomlkit.document()
    doc.add(tomlkit.comment("Configuration file"))
    doc.add(tomlkit.nl())

    data: dict[str, Any] = sets.model_dump()
    for key, value in data.items():
        if isinstance(value, dict):
            # Handle nested dictionaries (from BaseModel members)
            tbl = tomlkit.table()
            for kkey, vvalue in value.items():  # type: ignore
                # Skip None values as they can't be serialized to TOML
                if vvalue is not None:
                    tbl[kkey] = vvalue
            doc[key] = tbl
        else:
            if value is not None:
                doc[key] = value

    return str(tomlkit.dumps(doc))  # type: ignore


def export_settings(
    settings: BaseSettings, file_path: str | Path | None = None
) -> None:
    """Save settings to file in TOML format.

    Args:
        settings: A settings object to save
        file_path: The settings file path (defaults to config.toml)

    Raises:
        OSError: If file cannot be written
    """
    if file_path is None:
        file_path = DEFAULT_CONFIG_FILE

    file_path = Path(file_path)
    file_path.parent.mkdir(parents=True, exist_ok=True)

    with file_path.open("w", encoding="utf-8") as f:
        f.write(serialize_settings(settings))


def create_default_config_file(
    file_path: str | Path | None = None,
) -> None:
    """Create a default settings file.

    Args:
        file_path: Target file path (defaults to config.toml)

    Example:
        ```python
        # Creates config.toml in base folder with default values
        create_default_config_file()

        # Creates custom config file
        create_default_config_file(file_path="custom_config.toml")
        ```
    """
    if file_path is None:
        file_path = DEFAULT_CONFIG_FILE

    file_path = Path(file_path)

    if file_path.exists():
        # otherwise, it will be read in
        file_path.unlink()

    export_settings(Settings(), file_path)


def print_settings(settings: BaseSettings) -> None:
    """Print settings in TOML format to stdout."""
    print(serialize_settings(settings))


def load_settings(file_path: str | Path | None = None) -> Settings:
    """Load settings from TOML file.

    Args:
        file_path: Path to settings file (defaults to config.toml)

    Returns:
        Loaded settings object

    Raises:
        FileNotFoundError: If settings file doesn't exist
        ValueError: If settings file is invalid
    """
    if file_path is None:
        file_path = DEFAULT_CONFIG_FILE

    file_path = Path(file_path)

    if not file_path.exists():
        raise FileNotFoundError(
            f"Settings file not found: {file_path}"
        )

    try:
        # Create a temporary settings class with the specified file
        class TempSettings(Settings):
            model_config = SettingsConfigDict(
                toml_file=str(file_path),
                env_prefix=ENV_PREFIX,
                env_nested_delimiter="__",
                frozen=True,
                validate_assignment=True,
                extra='allow',
            )

        return TempSettings()
    except Exception as e:
        raise ValueError(
            f"Failed to load settings from {file_path}: {e}"
        ) from e


def format_pydantic_error_message(error_message: str) -> str:
    """Filter out verbose lines from pydantic error messages.

    Args:
        error_message: Raw pydantic error message

    Returns:
        Cleaned error message without verbose help text
    """
    lines = error_message.split('\n')
    filtered_lines = [
        line
        for line in lines
        if "For further information visit" not in line
    ]
    return '\n'.join(filtered_lines)
