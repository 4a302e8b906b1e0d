from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # OpenRouter (text generation)
    openrouter_api_key: str = ""
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    quick_model: str = "anthropic/claude-3.5-haiku"
    standard_model: str = "anthropic/claude-sonnet-4"

    # Search provider
    search_provider: str = "brave"  # brave | tavily
    brave_api_key: str = ""
    tavily_api_key: str = ""
    search_fallback_to_tavily: bool = True
    search_results_per_query: int = 8
    search_country: str = "us"
    search_language: str = "en"

    # Content extraction
    extract_provider: str = "firecrawl"  # firecrawl | http | auto
    firecrawl_base_url: str = "https://api.firecrawl.dev"
    firecrawl_api_key: str = ""
    extractor_max_page_chars: int = 20000
    extract_max_parallel: int = 3

    # Rate-limit windows (calls per window, per capability)
    rate_limit_window_seconds: float = 60.0
    llm_requests_per_minute: int = 50
    search_requests_per_minute: int = 100
    extract_requests_per_minute: int = 20

    # Retry policies
    llm_max_retries: int = 4
    llm_base_delay: float = 2.0
    llm_max_delay: float = 30.0
    llm_timeout_seconds: float = 120.0
    llm_stream_timeout_seconds: float = 300.0
    search_max_retries: int = 3
    search_base_delay: float = 1.0
    search_max_delay: float = 10.0
    search_timeout_seconds: float = 30.0
    extract_max_retries: int = 3
    extract_base_delay: float = 1.0
    extract_max_delay: float = 10.0
    extract_timeout_seconds: float = 70.0

    # Inter-request pacing (seconds between calls to the same capability)
    llm_pacing_seconds: float = 0.25
    search_pacing_seconds: float = 0.5
    extract_pacing_seconds: float = 0.0

    # Pipeline
    default_industry: str = "Technology"
    skip_website_scraping: bool = False
    company_extract_limit: int = 5
    industry_extract_limit: int = 3
    financial_extract_limit: int = 2
    news_extract_limit: int = 4
    news_max_age_days: int = 730
    curator_batch_size: int = 5
    curator_relevance_threshold: float = 0.4
    curator_default_score: float = 0.5
    enrich_max_documents: int = 5
    enrich_recent_months: int = 12
    enrich_excerpt_chars: int = 300
    briefing_max_documents: int = 10
    briefing_excerpt_chars: int = 500

    # Cost estimation (USD per external call)
    search_cost_per_call: float = 0.001
    extract_cost_per_call: float = 0.002

    # Prompt catalog override (empty uses the bundled prompts.json)
    prompts_path: str = ""

    # App
    app_log_level: str = "INFO"
    noisy_log_level: str = "WARNING"
    log_to_file: bool = True
    log_dir: str = "logs"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    def extract_limit_for(self, category: str) -> int:
        return {
            "company": self.company_extract_limit,
            "industry": self.industry_extract_limit,
            "financial": self.financial_extract_limit,
            "news": self.news_extract_limit,
        }.get(category, self.industry_extract_limit)


settings = Settings()
