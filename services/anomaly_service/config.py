# config.py - Service configuration for anomaly_service
# This file contains configuration settings for ingestion, workflows and the AI oracle.

from pydantic import Field
from pydantic_settings import BaseSettings
from typing import Optional

class Settings(BaseSettings):
    # Redis Configuration
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_db: int = 4  # Different DB from the other services
    redis_password: Optional[str] = None
    
    # Service Configuration
    service_name: str = "anomaly-service"
    service_port: int = 8005
    log_level: str = "INFO"
    store_backend: str = "redis"  # "redis" or "memory"
    
    # AI Oracle (Azure OpenAI)
    openai_endpoint: Optional[str] = None
    openai_api_key: Optional[str] = None
    openai_api_version: str = "2024-02-15-preview"
    openai_deployment: str = "gpt-4o-mini"
    openai_max_tokens: int = 1000
    openai_temperature: float = 0.2
    
    # Decision Policy
    autonomous_mode: bool = False
    auto_approve_threshold: float = Field(default=0.95, ge=0.0, le=1.0)
    
    # Ingestion Configuration
    ingestion_enabled: bool = True
    ingestion_schedule: str = "*/15 * * * *"
    ingestion_initial_delay: float = 5.0  # seconds
    source_fetch_timeout: float = 30.0  # seconds
    source_user_agent: str = "AnomalyService/1.0 Anomaly Detection System"
    openweathermap_api_key: Optional[str] = None
    openweathermap_lat: float = 40.7128
    openweathermap_lon: float = -74.0060
    
    # Workflow Configuration
    max_concurrent_workflows: int = 50
    default_step_timeout: int = 300  # seconds
    workflow_cleanup_interval: int = 60  # seconds
    
    # Event Bus
    communication_service_url: Optional[str] = None  # e.g. http://localhost:8004
    event_publish_timeout: float = 5.0
    
    class Config:
        env_prefix = "ANOMALY_SERVICE_"
        env_file = ".env"

settings = Settings()
