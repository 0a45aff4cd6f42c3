import numpy as np
from loguru import logger
from numpy.typing import NDArray
from openai import AsyncOpenAI, OpenAIError

from messaging_toolkit.embeddings.base import EmbeddingsModel
from messaging_toolkit.errors import EmbeddingFailed
from messaging_toolkit.utils.model_errors import map_openai_error


class OpenAIEmbeddings(EmbeddingsModel):
    """
    Embeddings from the OpenAI embeddings endpoint.

    The client is created with 'max_retries=0' and a hard timeout: retrying is
    decided by the caller from the error family, never inside the client.
    """

    def __init__(
        self,
        model_name: str = "text-embedding-3-small",
        embedding_size: int = 1536,
        openai_api_key: str | None = None,
        timeout: float = 30.0,
    ):
        self.model_name = model_name
        self.embedding_size = embedding_size
        self.client = AsyncOpenAI(api_key=openai_api_key, max_retries=0, timeout=timeout)

    async def get_embeddings(self, texts: str | list[str]) -> NDArray[np.float64]:
        if isinstance(texts, str):
            texts = [texts]
        try:
            response = await self.client.embeddings.create(
                model=self.model_name, input=texts, dimensions=self.embedding_size
            )
        except OpenAIError as e:
            logger.warning(f"Embedding request for {len(texts)} text(s) failed: {e}")
            raise map_openai_error(e, EmbeddingFailed) from e

        embeddings = np.array([item.embedding for item in response.data], dtype=np.float64)
        logger.debug(f"{self.model_name} embeddings shape: {embeddings.shape}")
        return embeddings
