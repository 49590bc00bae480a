"""
Amazon Bedrock LLM client wrapper with retry logic and fallback-safe completions.
"""

import json
import random
import time
from typing import Any, Dict, List, Optional, Tuple, TypeVar

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from .config import BedrockLLMConfig
from .json_utils import parse_json_object
from .logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar('T')


class BedrockLLMError(Exception):
    """Custom exception for Bedrock LLM errors."""
    pass


class BedrockLLM:
    """Amazon Bedrock LLM client with retry logic and error handling."""

    def __init__(self, config: BedrockLLMConfig):
        """
        Initialize Bedrock LLM client.

        Args:
            config: BedrockLLMConfig instance with connection parameters
        """
        self.config = config
        self.model_id = config.model_id

        # Chat stages are time-boxed by the caller; keep socket timeouts short
        self.bedrock_runtime = boto3.client(
            'bedrock-runtime',
            region_name=config.region,
            config=BotoConfig(
                connect_timeout=5,
                read_timeout=30,
                retries={'max_attempts': 0}  # We handle retries manually
            ))

        logger.info(f'Initialized Bedrock LLM client with model: {self.model_id}')

    def generate_response(self,
                          messages: List[Dict[str, Any]],
                          system_prompt: str,
                          max_tokens: Optional[int] = None,
                          temperature: Optional[float] = None,
                          stop_sequences: Optional[List[str]] = None) -> Tuple[str, Optional[Dict[str, Any]]]:
        """
        Generate response using Bedrock LLM with retry logic.

        Args:
            messages: List of message dictionaries in Bedrock format
            system_prompt: System prompt for the conversation
            max_tokens: Maximum tokens to generate (uses config default if None)
            temperature: Temperature for generation (uses config default if None)
            stop_sequences: Stop sequences for generation

        Returns:
            Tuple of (response_text, invoke_metrics)

        Raises:
            BedrockLLMError: If all retry attempts fail
        """
        max_tokens = max_tokens or self.config.max_tokens
        temperature = temperature if temperature is not None else self.config.temperature
        stop_sequences = stop_sequences or []

        system = [{'text': system_prompt}]
        inf_params = {
            'maxTokens': max_tokens,
            'temperature': temperature,
            'stopSequences': stop_sequences,
        }

        for attempt in range(self.config.retry_attempts):
            try:
                logger.debug(f'Bedrock LLM request attempt {attempt + 1}/{self.config.retry_attempts}')

                stream = self.bedrock_runtime.converse_stream(modelId=self.model_id,
                                                              messages=messages,
                                                              system=system,
                                                              inferenceConfig=inf_params).get('stream')

                msg = ''
                invoke_metrics = None

                if stream:
                    for event in stream:
                        if 'contentBlockDelta' in event:
                            msg += event['contentBlockDelta']['delta']['text']
                        if 'metadata' in event:
                            invoke_metrics = {**event['metadata']['usage'], **event['metadata']['metrics']}

                logger.debug(f'Bedrock LLM response generated successfully (length: {len(msg)})')
                return msg, invoke_metrics

            except (ClientError, BotoCoreError) as e:
                logger.warning(f'Bedrock LLM attempt {attempt + 1}/{self.config.retry_attempts} failed: {e}')

                if attempt < self.config.retry_attempts - 1:
                    # Exponential backoff with jitter
                    delay = self.config.retry_delay * (2**attempt) + random.uniform(0, self.config.retry_delay)
                    time.sleep(delay)
                else:
                    raise BedrockLLMError(f'Bedrock LLM failed after {self.config.retry_attempts} attempts: {e}')

            except Exception as e:
                logger.error(f'Unexpected error in Bedrock LLM: {e}')
                raise BedrockLLMError(f'Unexpected Bedrock LLM error: {e}')

        raise BedrockLLMError(f'Bedrock LLM failed after {self.config.retry_attempts} attempts')

    def complete_json(self, system_prompt: str, payload: Dict[str, Any], fallback: T) -> T:
        """Ask for a JSON object answer; never raises.

        Args:
            system_prompt: Instructions describing the expected JSON shape
            payload: Structured user input, serialized as JSON
            fallback: Value returned on any failure or malformed output

        Returns:
            Parsed JSON object, or the fallback
        """
        llm_messages = [{
            'role': 'user',
            'content': [{
                'text': json.dumps(payload, default=str)
            }]
        }, {
            'role': 'assistant',
            'content': [{
                'text': '```json'
            }]
        }]

        try:
            response, _ = self.generate_response(messages=llm_messages, system_prompt=system_prompt, stop_sequences=['```'])
        except BedrockLLMError as e:
            logger.warning(f'JSON completion failed, using fallback: {e}')
            return fallback

        parsed = parse_json_object(response)
        if parsed is None:
            logger.warning('JSON completion returned malformed output, using fallback')
            return fallback
        return parsed

    def complete_text(self, system_prompt: str, payload: Dict[str, Any], fallback: str) -> str:
        """Ask for a plain-text answer; never raises.

        Returns:
            Model text, or the fallback when the call fails or returns nothing
        """
        llm_messages = [{'role': 'user', 'content': [{'text': json.dumps(payload, default=str)}]}]

        try:
            response, _ = self.generate_response(messages=llm_messages, system_prompt=system_prompt)
        except BedrockLLMError as e:
            logger.warning(f'Text completion failed, using fallback: {e}')
            return fallback

        return response.strip() or fallback

    def health_check(self) -> bool:
        """
        Perform a health check on the Bedrock LLM service.

        Returns:
            True if service is healthy, False otherwise
        """
        try:
            test_messages = [{'role': 'user', 'content': [{'text': 'Hi'}]}]
            response, _ = self.generate_response(messages=test_messages,
                                                 system_prompt="You are a helpful assistant. Respond with just 'OK'.",
                                                 max_tokens=10,
                                                 temperature=0.0)
            return len(response.strip()) > 0

        except Exception as e:
            logger.error(f'Bedrock LLM health check failed: {e}')
            return False
