"""
Configuration management for AWS services and chat pipeline settings.
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


@dataclass
class BedrockLLMConfig:
    """Configuration for Amazon Bedrock LLM service."""
    region: str
    model_id: str
    max_tokens: int
    temperature: float
    retry_attempts: int
    retry_delay: float


@dataclass
class BedrockEmbedConfig:
    """Configuration for Amazon Bedrock Embed service."""
    region: str
    model_id: str
    dimension: int
    retry_attempts: int
    retry_delay: float


@dataclass
class NeptuneConfig:
    """Configuration for Amazon Neptune graph database."""
    endpoint: str
    port: int
    region: str


@dataclass
class OpenSearchConfig:
    """Configuration for OpenSearch."""
    endpoint: str
    port: int
    region: str
    index_name: str
    dimension: int


@dataclass
class ChatConfig:
    """Latency budget and per-stage timeouts (seconds) for the chat pipeline."""
    response_budget_ms: int
    frontdesk_timeout: float
    intent_timeout: float
    greeting_timeout: float
    expansion_timeout: float
    anchor_timeout: float
    query_embedding_timeout: float
    reasoning_timeout: float
    translation_timeout: float
    persist_pipeline_logs: bool


@dataclass
class MCPConfig:
    """Configuration for MCP interface."""
    transport: str
    host: str
    port: int


@dataclass
class AppConfig:
    """Main application configuration."""
    environment: str
    log_level: str
    bedrock_llm: BedrockLLMConfig
    bedrock_embed: BedrockEmbedConfig
    neptune: NeptuneConfig
    opensearch: OpenSearchConfig
    chat: ChatConfig
    mcp: MCPConfig


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ('1', 'true', 'yes', 'on')


def load_config() -> AppConfig:
    """Load configuration from environment variables with defaults."""
    environment = os.getenv('ENVIRONMENT', 'development')

    # Bedrock configuration
    bedrock_llm_config = BedrockLLMConfig(region=os.getenv('BEDROCK_LLM_AWS_REGION', 'us-east-1'),
                                          model_id=os.getenv('BEDROCK_LLM_MODEL_ID', 'anthropic.claude-3-haiku-20240307-v1:0'),
                                          max_tokens=int(os.getenv('BEDROCK_LLM_MAX_TOKENS', '1024')),
                                          temperature=float(os.getenv('BEDROCK_LLM_TEMPERATURE', '0.2')),
                                          retry_attempts=int(os.getenv('BEDROCK_LLM_RETRY_ATTEMPTS', '2')),
                                          retry_delay=float(os.getenv('BEDROCK_LLM_RETRY_DELAY', '0.2')))

    # Bedrock Embed configuration
    bedrock_embed_config = BedrockEmbedConfig(region=os.getenv('BEDROCK_EMBED_AWS_REGION', 'us-east-1'),
                                              model_id=os.getenv('BEDROCK_EMBED_MODEL_ID', 'amazon.titan-embed-text-v2:0'),
                                              dimension=int(os.getenv('BEDROCK_EMBED_DIMENSION', '1024')),
                                              retry_attempts=int(os.getenv('BEDROCK_EMBED_RETRY_ATTEMPTS', '2')),
                                              retry_delay=float(os.getenv('BEDROCK_EMBED_RETRY_DELAY', '0.2')))

    # Neptune configuration
    neptune_config = NeptuneConfig(endpoint=os.getenv('NEPTUNE_ENDPOINT', 'localhost'),
                                   port=int(os.getenv('NEPTUNE_PORT', '8182')),
                                   region=os.getenv('NEPTUNE_AWS_REGION', 'us-east-1'))

    # Session memory, embeddings and pipeline logs
    opensearch_config = OpenSearchConfig(endpoint=os.getenv('OPENSEARCH_ENDPOINT', 'localhost'),
                                         port=int(os.getenv('OPENSEARCH_PORT', '443')),
                                         region=os.getenv('OPENSEARCH_AWS_REGION', 'us-east-1'),
                                         index_name=os.getenv('OPENSEARCH_INDEX', 'repochat'),
                                         dimension=int(os.getenv('OPENSEARCH_DIMENSION', '1024')))

    # Chat pipeline budget
    chat_config = ChatConfig(response_budget_ms=int(os.getenv('CHAT_RESPONSE_BUDGET_MS', '1900')),
                             frontdesk_timeout=float(os.getenv('CHAT_FRONTDESK_TIMEOUT', '0.45')),
                             intent_timeout=float(os.getenv('CHAT_INTENT_TIMEOUT', '0.7')),
                             greeting_timeout=float(os.getenv('CHAT_GREETING_TIMEOUT', '0.45')),
                             expansion_timeout=float(os.getenv('CHAT_EXPANSION_TIMEOUT', '0.5')),
                             anchor_timeout=float(os.getenv('CHAT_ANCHOR_TIMEOUT', '0.5')),
                             query_embedding_timeout=float(os.getenv('CHAT_QUERY_EMBEDDING_TIMEOUT', '0.5')),
                             reasoning_timeout=float(os.getenv('CHAT_REASONING_TIMEOUT', '0.6')),
                             translation_timeout=float(os.getenv('CHAT_TRANSLATION_TIMEOUT', '0.45')),
                             persist_pipeline_logs=_env_flag('CHAT_PERSIST_PIPELINE_LOGS', 'true'))

    # MCP configuration
    mcp_config = MCPConfig(transport=os.getenv('MCP_TRANSPORT', 'sse'),
                           host=os.getenv('MCP_HOST', '127.0.0.1'),
                           port=int(os.getenv('MCP_PORT', '8000')))

    return AppConfig(environment=environment,
                     log_level=os.getenv('LOG_LEVEL', 'INFO'),
                     bedrock_llm=bedrock_llm_config,
                     bedrock_embed=bedrock_embed_config,
                     neptune=neptune_config,
                     opensearch=opensearch_config,
                     chat=chat_config,
                     mcp=mcp_config)


# Global configuration instance
config = load_config()
