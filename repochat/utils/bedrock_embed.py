"""
Amazon Bedrock embedding client wrapper with retry logic and error handling.
"""

import json
import random
import time
from typing import List

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .config import BedrockEmbedConfig
from .logging_config import get_logger

logger = get_logger(__name__)


class BedrockEmbedError(Exception):
    """Custom exception for Bedrock embedding errors."""
    pass


class BedrockEmbed:
    """Amazon Bedrock embedding client with retry logic and error handling."""

    def __init__(self, config: BedrockEmbedConfig):
        """
        Initialize Bedrock embedding client.

        Args:
            config: BedrockEmbedConfig instance with connection parameters
        """
        self.config = config
        self.model_id = config.model_id
        self.output_embedding_length = config.dimension

        self.bedrock = boto3.client(service_name='bedrock-runtime', region_name=config.region)

        logger.info(f'Initialized Bedrock Embed client with model: {self.model_id}')

    def _call_with_retry(self, data: dict) -> dict:
        """
        Make a Bedrock API call with retry logic.

        Args:
            data: Request data dictionary

        Returns:
            Response dictionary from Bedrock API

        Raises:
            BedrockEmbedError: If all retry attempts fail
        """
        body = json.dumps(data)

        for attempt in range(self.config.retry_attempts):
            try:
                logger.debug(f'Bedrock Embed request attempt {attempt + 1}/{self.config.retry_attempts}')

                response = self.bedrock.invoke_model(body=body,
                                                     modelId=self.model_id,
                                                     accept='application/json',
                                                     contentType='application/json')
                return json.loads(response.get('body').read())

            except (ClientError, BotoCoreError) as e:
                logger.warning(f'Bedrock Embed attempt {attempt + 1}/{self.config.retry_attempts} failed: {e}')

                if attempt < self.config.retry_attempts - 1:
                    delay = self.config.retry_delay * (2**attempt) + random.uniform(0, self.config.retry_delay)
                    time.sleep(delay)
                else:
                    raise BedrockEmbedError(f'Bedrock Embed failed after {self.config.retry_attempts} attempts: {e}')

            except Exception as e:
                logger.error(f'Unexpected error in Bedrock Embed: {e}')
                raise BedrockEmbedError(f'Unexpected Bedrock Embed error: {e}')

        raise BedrockEmbedError(f'Bedrock Embed failed after {self.config.retry_attempts} attempts')

    def _embed_one(self, text: str, input_type: str) -> List[float]:
        """Embed a single text.

        Args:
            text: Text to embed
            input_type: 'search_document' or 'search_query' (Cohere models only)

        Raises:
            BedrockEmbedError: If the model is unsupported or returns no vector
        """
        model = self.model_id.lower()
        if 'titan' in model:
            response = self._call_with_retry({'inputText': text, 'dimensions': self.output_embedding_length})
            vector = response.get('embedding') or []
        elif 'cohere' in model:
            if self.output_embedding_length != 1024:
                raise BedrockEmbedError(f'Cohere models only support 1024 dimensions, got {self.output_embedding_length}')
            response = self._call_with_retry({'input_type': input_type, 'texts': [text]})
            embeddings = response.get('embeddings') or []
            vector = embeddings[0] if embeddings else []
        else:
            raise BedrockEmbedError(f'Unsupported embedding model: {self.model_id}')

        vector = [float(v) for v in vector if isinstance(v, (int, float))]
        if not vector:
            raise BedrockEmbedError('Embedding model returned an empty vector')
        return vector

    def embed_query(self, text: str) -> List[float]:
        """
        Generate embeddings for query text.

        Raises:
            BedrockEmbedError: If embedding generation fails
        """
        if not text or not text.strip():
            raise BedrockEmbedError('Empty text provided for query embedding')
        return self._embed_one(text, 'search_query')

    def embed_texts(self, texts: List[str], input_type: str = 'search_document') -> List[List[float]]:
        """Embed a batch of texts; never raises.

        Args:
            texts: Texts to embed, in order
            input_type: 'search_document' or 'search_query'

        Returns:
            One vector per input text, or an empty list if any embedding failed
        """
        if not texts:
            return []

        vectors = []
        try:
            for text in texts:
                if not text or not text.strip():
                    raise BedrockEmbedError('Empty text provided for embedding')
                vectors.append(self._embed_one(text, input_type))
        except BedrockEmbedError as e:
            logger.warning(f'Embedding batch of {len(texts)} failed: {e}')
            return []

        logger.debug(f'Embedded {len(vectors)} texts')
        return vectors

    def health_check(self) -> bool:
        """
        Perform a health check on the Bedrock embedding service.

        Returns:
            True if service is healthy, False otherwise
        """
        try:
            test_embedding = self.embed_query('test')
            return len(test_embedding) == self.output_embedding_length

        except Exception as e:
            logger.error(f'Bedrock Embed health check failed: {e}')
            return False
