"""Global configuration — loaded from environment variables."""

from pathlib import Path

from pydantic_settings import BaseSettings


class ArtcadeSettings(BaseSettings):
    db_path: Path = Path(".artcade/patterns.db")
    log_level: str = "INFO"

    # Embedding provider (OpenAI-compatible /embeddings endpoint)
    embedding_url: str = "https://api.openai.com/v1"
    embedding_api_key: str = ""
    embedding_model: str = "text-embedding-3-small"
    embedding_dimension: int = 1536
    embedding_timeout_seconds: float = 30.0
    embedding_max_retries: int = 3
    embedding_retry_base_delay: float = 0.5
    embedding_max_concurrency: int = 4

    # Evolution defaults
    evolution_population_size: int = 10
    evolution_generation_limit: int = 50
    evolution_mutation_rate: float = 0.3
    evolution_crossover_rate: float = 0.7
    evolution_elitism_count: int = 2
    evolution_similarity_threshold: float = 0.85
    evolution_fitness_threshold: float = 0.7

    model_config = {"env_prefix": "ARTCADE_"}


settings = ArtcadeSettings()
