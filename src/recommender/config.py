import os

from .lib.cache import DEFAULT_TTL_SECONDS
from .lib.embeddings import DEFAULT_MODEL, LOCAL_MODEL, EmbeddingConfig
from .lib.scoring.base import DEFAULT_CANDIDATE_POOL_SIZE, DEFAULT_EMBEDDING_TIMEOUT
from .lib.similarity import DEFAULT_MIN_SIMILARITY, DEFAULT_SCAN_SIZE
from .models import ScoringWeights


class Settings:
    def __init__(self):
        # Elasticsearch
        self.elasticsearch_url = os.getenv("ELASTICSEARCH_URL", "http://localhost:9200")
        self.elasticsearch_api_key = os.getenv("ELASTICSEARCH_API_KEY", "")

        # Identity tokens issued by the web app
        self.auth_secret = os.getenv("AUTH_SECRET", "changeme")
        self.auth_token_max_age_seconds = int(os.getenv("AUTH_TOKEN_MAX_AGE_SECONDS", "86400"))

        # Embeddings
        self.embedding_provider = os.getenv("EMBEDDING_PROVIDER", "local").lower()
        self.embedding_model = os.getenv("EMBEDDING_MODEL", DEFAULT_MODEL)
        self.embedding_api_key = os.getenv("EMBEDDING_API_KEY") or os.getenv("OPENAI_API_KEY", "")
        self.embedding_endpoint = os.getenv("EMBEDDING_ENDPOINT", "")
        self.embedding_timeout_seconds = float(
            os.getenv("EMBEDDING_TIMEOUT_SECONDS", str(DEFAULT_EMBEDDING_TIMEOUT))
        )

        # Recommendation cache
        self.redis_url = os.getenv("REDIS_URL", "redis://localhost:6379/0")
        self.cache_ttl_seconds = float(
            os.getenv("RECOMMENDATION_CACHE_TTL_SECONDS", str(DEFAULT_TTL_SECONDS))
        )

        # Recommendations
        self.similarity_min = float(os.getenv("SIMILARITY_MIN", str(DEFAULT_MIN_SIMILARITY)))
        self.similarity_scan_size = int(os.getenv("SIMILARITY_SCAN_SIZE", str(DEFAULT_SCAN_SIZE)))
        self.candidate_pool_size = int(
            os.getenv("CANDIDATE_POOL_SIZE", str(DEFAULT_CANDIDATE_POOL_SIZE))
        )
        defaults = ScoringWeights()
        self.weight_recency = float(os.getenv("RECOMMENDATION_WEIGHT_RECENCY", defaults.recency))
        self.weight_network = float(os.getenv("RECOMMENDATION_WEIGHT_NETWORK", defaults.network))
        self.weight_topical = float(os.getenv("RECOMMENDATION_WEIGHT_TOPICAL", defaults.topical))
        self.weight_popularity = float(
            os.getenv("RECOMMENDATION_WEIGHT_POPULARITY", defaults.popularity)
        )

        self.log_level = os.getenv("LOG_LEVEL", "INFO").upper()

    @property
    def scoring_weights(self) -> ScoringWeights:
        """Control weights; raises ``ValidationError`` if they do not sum to 1."""
        return ScoringWeights(
            recency=self.weight_recency,
            network=self.weight_network,
            topical=self.weight_topical,
            popularity=self.weight_popularity,
        )

    @property
    def embedding_model_key(self) -> str:
        """Model name stored with each vector; the hash fallback always uses its own."""
        if self.embedding_provider == "local":
            return LOCAL_MODEL
        return self.embedding_model

    @property
    def embedding_config(self) -> EmbeddingConfig:
        return EmbeddingConfig(
            provider=self.embedding_provider,
            model=self.embedding_model_key,
            api_key=self.embedding_api_key or None,
            endpoint=self.embedding_endpoint or None,
        )
